"""
Ledger layer test fixtures.

IMPORTANT: Nothing here talks to a real node. The RPC client is driven
through a fake aiohttp session that replays canned HTTP responses.
"""
import json
from unittest.mock import MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from parimutuel_engine.ledger import SolanaRpcClient


# =============================================================================
# Key Fixtures
# =============================================================================


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def payer(keypair):
    return keypair.pubkey()


@pytest.fixture
def blockhash():
    return Hash.new_unique()


@pytest.fixture
def program_id():
    return Pubkey.new_unique()


# =============================================================================
# HTTP Fixtures
# =============================================================================


class FakeResponse:
    """Async context manager standing in for aiohttp's ClientResponse."""

    def __init__(self, status=200, body=None):
        self.status = status
        self._body = body if body is not None else {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return json.dumps(self._body)

    async def json(self, content_type=None):
        return self._body


@pytest.fixture
def rpc_response():
    """Build a fake HTTP response; `result` wraps a JSON-RPC success."""

    def build(result=None, status=200, error=None):
        body = {"jsonrpc": "2.0", "id": 1}
        if error is not None:
            body["error"] = error
        else:
            body["result"] = result
        return FakeResponse(status=status, body=body)

    return build


@pytest.fixture
def mock_session():
    """aiohttp session whose post() replays queued responses."""
    session = MagicMock()
    session.close = MagicMock()
    return session


@pytest.fixture
def rpc_client(mock_session):
    """RPC client with no real delays."""
    return SolanaRpcClient(
        "http://127.0.0.1:8899",
        session=mock_session,
        rate_limit=1000,
        max_retries=3,
        retry_delay=0,
        confirm_timeout=0,
        confirm_poll_interval=0,
    )
