"""
Markets layer test fixtures.

The ledger is an AsyncMock; market accounts are produced with the real
codec so decoding is exercised end to end.
"""
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
from solders.pubkey import Pubkey

from parimutuel_engine.core import BackoffPolicy
from parimutuel_engine.ledger import AccountInfo, Cluster, StaticNetworkSelector
from parimutuel_engine.markets import OPEN, Market, MarketRepository, QueryCache, encode_market

NOW = 1_700_000_000


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture
def now():
    """Fixed unix time for every read-time derivation."""
    return NOW


@pytest.fixture
def program_id():
    return Pubkey.new_unique()


@pytest.fixture
def network():
    return StaticNetworkSelector(Cluster.DEVNET)


@pytest.fixture
def mock_ledger():
    """Ledger with nothing on it."""
    ledger = AsyncMock()
    ledger.get_account_info = AsyncMock(return_value=None)
    ledger.get_multiple_accounts = AsyncMock(return_value=[])
    ledger.get_program_accounts = AsyncMock(return_value=[])
    ledger.get_token_accounts_by_owner = AsyncMock(return_value=[])
    return ledger


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def repository(mock_ledger, network, program_id, cache, now):
    return MarketRepository(
        mock_ledger,
        network,
        program_id,
        cache=cache,
        retry_policy=BackoffPolicy(max_attempts=3, base_delay=0, max_delay=0),
        clock=lambda: now,
    )


# =============================================================================
# Market Fixtures
# =============================================================================


@pytest.fixture
def make_market(program_id):
    """Factory for markets; override any field by keyword."""

    def build(**overrides):
        market = Market(
            address=Pubkey.new_unique(),
            creator=Pubkey.new_unique(),
            title="Will it rain tomorrow?",
            description="Resolves YES on any measurable rain.",
            bet_mint=Pubkey.new_unique(),
            vault=Pubkey.new_unique(),
            yes_mint=Pubkey.new_unique(),
            no_mint=Pubkey.new_unique(),
            yes_pool=100,
            no_pool=60,
            expiry_timestamp=NOW + 3600,
            status=OPEN,
            bump=254,
        )
        return replace(market, **overrides)

    return build


@pytest.fixture
def account_for(program_id):
    """Wrap a market as the raw ledger account holding it."""

    def build(market, padding=0):
        return AccountInfo(
            address=market.address,
            lamports=5_000_000,
            owner=program_id,
            data=encode_market(market) + b"\x00" * padding,
        )

    return build
