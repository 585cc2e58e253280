"""
Core layer test fixtures.

Everything in core is pure: no ledger, no network. Fixtures only
provide deterministic keys and pool states.
"""
import pytest
from solders.pubkey import Pubkey

from parimutuel_engine.core import AddressSpace, BackoffPolicy, PoolState


# =============================================================================
# Key Fixtures
# =============================================================================


@pytest.fixture
def program_id():
    """Arbitrary but fixed program id."""
    return Pubkey.from_string("AQR7DVzsy1dKM3TdRqLMbzAb5waubBJYdXd9BGuCtVpR")


@pytest.fixture
def creator():
    return Pubkey.new_unique()


@pytest.fixture
def bet_mint():
    return Pubkey.new_unique()


@pytest.fixture
def address_space(program_id):
    return AddressSpace(program_id)


# =============================================================================
# Pool Fixtures
# =============================================================================


@pytest.fixture
def empty_pool():
    return PoolState(yes_pool=0, no_pool=0)


@pytest.fixture
def skewed_pool():
    """The 100 YES / 60 NO pool used throughout the payout examples."""
    return PoolState(yes_pool=100, no_pool=60)


# =============================================================================
# Retry Fixtures
# =============================================================================


@pytest.fixture
def fast_policy():
    """Three attempts with tiny delays."""
    return BackoffPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05)


@pytest.fixture
def recorded_sleeps():
    """A sleep replacement that records delays instead of waiting."""
    delays = []

    async def sleep(delay):
        delays.append(delay)

    sleep.delays = delays
    return sleep
