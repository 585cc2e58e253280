"""
Execution layer test fixtures.

The ledger is an AsyncMock backed by a dict of accounts, so writers see
a consistent view of what exists. Orchestrator tests use a mock
submitter and inspect the OperationBatch it was handed; submitter tests
drive the real pipeline against the mock ledger.

All ledger calls are mocked - nothing here reaches a node.
"""
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from parimutuel_engine.core import TOKEN_PROGRAM_ID, AddressSpace, BackoffPolicy
from parimutuel_engine.ledger import (
    AccountInfo,
    Cluster,
    KeypairSigner,
    SimulationResult,
    StaticNetworkSelector,
    TransactionStatus,
)
from parimutuel_engine.ledger.accounts import encode_token_account
from parimutuel_engine.markets import (
    OPEN,
    CacheInvalidationPolicy,
    Market,
    MarketRepository,
    QueryCache,
    encode_market,
)

NOW = 1_700_000_000
TOKEN_RENT = 2_039_280
NO_DELAY = BackoffPolicy(max_attempts=3, base_delay=0, max_delay=0)


# =============================================================================
# Identity Fixtures
# =============================================================================


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def program_id():
    return Pubkey.new_unique()


@pytest.fixture
def address_space(program_id):
    return AddressSpace(program_id)


@pytest.fixture
def network():
    return StaticNetworkSelector(Cluster.DEVNET)


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def signer(keypair):
    """Real keypair signer wrapped so calls can be asserted."""
    real = KeypairSigner(keypair)
    handle = MagicMock()
    handle.public_key = real.public_key
    handle.sign_transaction = AsyncMock(side_effect=real.sign_transaction)
    return handle


# =============================================================================
# Ledger Fixtures
# =============================================================================


@pytest.fixture
def accounts():
    """Address -> AccountInfo; what the mock ledger reports as existing."""
    return {}


@pytest.fixture
def mock_ledger(accounts):
    ledger = AsyncMock()

    async def get_account_info(address):
        return accounts.get(address)

    async def get_multiple_accounts(addresses):
        return [accounts.get(a) for a in addresses]

    ledger.get_account_info = AsyncMock(side_effect=get_account_info)
    ledger.get_multiple_accounts = AsyncMock(side_effect=get_multiple_accounts)
    ledger.get_program_accounts = AsyncMock(
        side_effect=lambda program_id, disc: [a for a in accounts.values() if a.owner == program_id]
    )
    ledger.get_token_accounts_by_owner = AsyncMock(return_value=[])
    ledger.get_balance = AsyncMock(return_value=10_000_000_000)
    ledger.get_minimum_balance_for_rent_exemption = AsyncMock(return_value=TOKEN_RENT)
    ledger.get_latest_blockhash = AsyncMock(side_effect=lambda: Hash.new_unique())
    ledger.simulate_transaction = AsyncMock(return_value=SimulationResult())
    ledger.send_transaction = AsyncMock(
        side_effect=lambda tx: str(tx.signatures[0])
    )
    ledger.confirm_transaction = AsyncMock(
        side_effect=lambda sig: TransactionStatus(sig, "confirmed")
    )
    ledger.get_signature_status = AsyncMock(return_value=None)
    return ledger


@pytest.fixture
def put_market(accounts, program_id):
    """Store a market on the mock ledger."""

    def put(market):
        accounts[market.address] = AccountInfo(
            address=market.address,
            lamports=5_000_000,
            owner=program_id,
            data=encode_market(market),
        )
        return market

    return put


@pytest.fixture
def put_token_account(accounts):
    """Store a token account of `owner` for `mint` at its associated address."""

    def put(owner, mint, amount):
        address = AddressSpace.derive_owner_asset_account(owner, mint)
        accounts[address] = AccountInfo(
            address=address,
            lamports=TOKEN_RENT,
            owner=TOKEN_PROGRAM_ID,
            data=encode_token_account(mint, owner, amount),
        )
        return address

    return put


# =============================================================================
# Market Fixtures
# =============================================================================


@pytest.fixture
def make_market(address_space, signer, now):
    """Market whose addresses are derived like the program does; creator is the signer."""

    def build(**overrides):
        creator = overrides.pop("creator", signer.public_key)
        bet_mint = overrides.pop("bet_mint", Pubkey.new_unique())
        expiry = overrides.pop("expiry_timestamp", now + 3600)
        derived = address_space.derive_all(creator, bet_mint, expiry)
        market = Market(
            address=derived.market,
            creator=creator,
            title="Will it rain tomorrow?",
            description="",
            bet_mint=bet_mint,
            vault=derived.vault,
            yes_mint=derived.yes_mint,
            no_mint=derived.no_mint,
            yes_pool=100,
            no_pool=60,
            expiry_timestamp=expiry,
            status=OPEN,
            bump=derived.market_bump,
        )
        return replace(market, **overrides)

    return build


# =============================================================================
# Orchestrator Fixtures
# =============================================================================


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def repository(mock_ledger, network, program_id, cache, now):
    return MarketRepository(
        mock_ledger, network, program_id, cache=cache, retry_policy=NO_DELAY, clock=lambda: now
    )


@pytest.fixture
def invalidation(cache, network):
    policy = CacheInvalidationPolicy(cache, network)
    policy.on_market_mutated = MagicMock(wraps=policy.on_market_mutated)
    return policy


@pytest.fixture
def mock_submitter():
    """Submitter that accepts every batch."""
    submitter = MagicMock()
    submitter.submit = AsyncMock(return_value="5igSig")
    return submitter


@pytest.fixture
def build_orchestrator(mock_ledger, signer, network, address_space, repository, mock_submitter, invalidation, now):
    """Construct any Orchestrator subclass wired to the shared fixtures."""

    def build(cls, **kwargs):
        return cls(
            mock_ledger,
            signer,
            network,
            address_space,
            repository=repository,
            submitter=mock_submitter,
            invalidation=invalidation,
            clock=lambda: now,
            **kwargs,
        )

    return build


@pytest.fixture
def submitted_batch(mock_submitter):
    """The OperationBatch handed to the last submit() call."""

    def get():
        return mock_submitter.submit.call_args.args[0]

    return get


@pytest.fixture
def token_rent():
    """Rent-exempt deposit the mock ledger reports for a token account."""
    return TOKEN_RENT


@pytest.fixture
def no_delay():
    return NO_DELAY
