"""
Market domain types and read-side views.

Market and MarketStatus mirror the program's account state exactly.
MarketView and PositionView are what read APIs hand to collaborators:
every derived field (volume, probabilities, expiry flags) is computed at
read time from a timestamp and never persisted.

MarketStatus is a closed sum type:

    MarketStatus = Open | Settled(outcome)

A settled market without an outcome cannot be represented.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict
from solders.pubkey import Pubkey

from parimutuel_engine.core.pool_accounting import PoolState, Side, implied_probability


# =============================================================================
# STATUS
# =============================================================================


@dataclass(frozen=True)
class Open:
    """Accepting bets until expiry; awaiting settlement after."""

    name = "open"


@dataclass(frozen=True)
class Settled:
    """Terminal state; `outcome` True means YES won."""

    outcome: bool

    name = "settled"

    @property
    def winning_side(self) -> Side:
        return Side.from_bool(self.outcome)


MarketStatus = Union[Open, Settled]

OPEN = Open()


# =============================================================================
# MARKET
# =============================================================================


@dataclass(frozen=True)
class Market:
    """Decoded market account."""

    address: Pubkey
    creator: Pubkey
    title: str
    description: str
    bet_mint: Pubkey
    vault: Pubkey
    yes_mint: Pubkey
    no_mint: Pubkey
    yes_pool: int
    no_pool: int
    expiry_timestamp: int
    status: MarketStatus
    bump: int

    @property
    def pool_state(self) -> PoolState:
        return PoolState(yes_pool=self.yes_pool, no_pool=self.no_pool)

    @property
    def total_volume(self) -> int:
        return self.yes_pool + self.no_pool

    @property
    def is_open(self) -> bool:
        return isinstance(self.status, Open)

    @property
    def is_settled(self) -> bool:
        return isinstance(self.status, Settled)

    @property
    def outcome(self) -> Optional[bool]:
        if isinstance(self.status, Settled):
            return self.status.outcome
        return None

    @property
    def winning_side(self) -> Optional[Side]:
        if isinstance(self.status, Settled):
            return self.status.winning_side
        return None

    def share_mint(self, side: Side) -> Pubkey:
        return self.yes_mint if side is Side.YES else self.no_mint

    def is_expired(self, now: int) -> bool:
        return now >= self.expiry_timestamp

    def time_remaining(self, now: int) -> int:
        return max(0, self.expiry_timestamp - now)


# =============================================================================
# VIEWS
# =============================================================================


class MarketView(BaseModel):
    """Market as presented to readers, with read-time derived fields."""

    model_config = ConfigDict(frozen=True)

    address: str
    creator: str
    title: str
    description: str
    bet_mint: str
    vault: str
    yes_mint: str
    no_mint: str
    yes_pool: int
    no_pool: int
    expiry_timestamp: int
    status: str
    outcome: Optional[bool] = None

    # Derived
    total_volume: int
    yes_probability: Decimal
    no_probability: Decimal
    is_expired: bool
    is_resolved: bool
    time_remaining: int

    @classmethod
    def from_market(cls, market: Market, now: int) -> "MarketView":
        pool = market.pool_state
        return cls(
            address=str(market.address),
            creator=str(market.creator),
            title=market.title,
            description=market.description,
            bet_mint=str(market.bet_mint),
            vault=str(market.vault),
            yes_mint=str(market.yes_mint),
            no_mint=str(market.no_mint),
            yes_pool=market.yes_pool,
            no_pool=market.no_pool,
            expiry_timestamp=market.expiry_timestamp,
            status=market.status.name,
            outcome=market.outcome,
            total_volume=pool.total,
            yes_probability=implied_probability(pool, Side.YES),
            no_probability=implied_probability(pool, Side.NO),
            is_expired=market.is_expired(now),
            is_resolved=market.is_settled,
            time_remaining=market.time_remaining(now),
        )


class PositionView(BaseModel):
    """
    An owner's share-token holdings in one market.

    Always recomputed from ledger token balances. The value fields are
    pool-based payout estimates for each side's holding if that side
    wins (0 when the side's pool is empty).
    """

    model_config = ConfigDict(frozen=True)

    owner: str
    market_address: str
    yes_balance: int
    no_balance: int
    yes_value: int
    no_value: int
    has_account: bool
    market: MarketView

    @property
    def has_active_position(self) -> bool:
        return self.yes_balance > 0 or self.no_balance > 0
