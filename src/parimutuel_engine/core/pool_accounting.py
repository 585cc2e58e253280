"""
Pari-mutuel pool accounting.

All settlement-relevant math is integer math in base units of the bet
asset. Probabilities are reported as Decimal for display only; nothing
that moves funds is ever computed in floating point.

Payout rule (winning side W, q share-tokens burned):
    payout = floor(q * (yes_pool + no_pool) / pool[W])

The program computes the authoritative payout from the live vault
balance and share-token supply, so every figure here is an estimate.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

U64_MAX = 2**64 - 1

HALF = Decimal("0.5")


class Side(str, Enum):
    """Side of a binary market."""

    YES = "yes"
    NO = "no"

    @property
    def opposite(self) -> "Side":
        return Side.NO if self is Side.YES else Side.YES

    @property
    def as_bool(self) -> bool:
        """Wire encoding: true = YES, false = NO."""
        return self is Side.YES

    @classmethod
    def from_bool(cls, value: bool) -> "Side":
        return cls.YES if value else cls.NO


class PoolArithmeticError(ArithmeticError):
    """Raised when a pool update would leave the u64 range."""


class NoWinningBetsError(ArithmeticError):
    """Raised when the winning pool is empty and a payout is undefined."""


@dataclass(frozen=True)
class PoolState:
    """
    Both side pools of a market, in base units.

    Pools are a permanent record of total wagered per side: they only
    grow with bets and are never reduced by redemption.
    """

    yes_pool: int
    no_pool: int

    def __post_init__(self):
        for name in ("yes_pool", "no_pool"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"{name} must be an int, got {type(value).__name__}")
            if value < 0 or value > U64_MAX:
                raise ValueError(f"{name} out of u64 range: {value}")

    @property
    def total(self) -> int:
        return self.yes_pool + self.no_pool

    def pool(self, side: Side) -> int:
        return self.yes_pool if side is Side.YES else self.no_pool

    def after_bet(self, side: Side, amount: int) -> "PoolState":
        """
        Pool state after a bet of `amount` on `side`.

        Raises:
            ValueError: If amount is not positive
            PoolArithmeticError: If the side pool would overflow u64
        """
        if amount <= 0:
            raise ValueError(f"Bet amount must be positive, got {amount}")
        new_value = self.pool(side) + amount
        if new_value > U64_MAX:
            raise PoolArithmeticError(
                f"{side.value} pool overflow: {self.pool(side)} + {amount}"
            )
        if side is Side.YES:
            return PoolState(yes_pool=new_value, no_pool=self.no_pool)
        return PoolState(yes_pool=self.yes_pool, no_pool=new_value)


def implied_probability(pool: PoolState, side: Side) -> Decimal:
    """
    Share of total volume wagered on `side`.

    Returns exactly 0.5 for both sides when nothing has been wagered.
    """
    total = pool.total
    if total == 0:
        return HALF
    return Decimal(pool.pool(side)) / Decimal(total)


def redemption_payout(amount: int, pool: PoolState, winning_side: Side) -> int:
    """
    Base units paid for burning `amount` winning share-tokens.

    Raises:
        ValueError: If amount is not positive
        NoWinningBetsError: If nothing was wagered on the winning side
    """
    if amount <= 0:
        raise ValueError(f"Redemption amount must be positive, got {amount}")
    winning_pool = pool.pool(winning_side)
    if winning_pool == 0:
        raise NoWinningBetsError("No winning bets to redeem against")
    return (amount * pool.total) // winning_pool


@dataclass(frozen=True)
class BetQuote:
    """
    Illustrative pre-trade estimate for a proposed bet.

    This is NOT a guaranteed payout: any bet confirmed before this one
    shifts the pool ratio, and the program pays from the live vault.
    """

    side: Side
    amount: int
    share: Decimal
    estimated_return: int
    implied_probability_after: Decimal


def quote_bet(pool: PoolState, side: Side, amount: int) -> BetQuote:
    """
    Estimate the return of betting `amount` on `side` if that side wins.

        share = amount / (pool[side] + amount)
        estimated_return = share * (pool[side] + amount + pool[opposite])
    """
    after = pool.after_bet(side, amount)
    side_pool = after.pool(side)
    share = Decimal(amount) / Decimal(side_pool)
    estimated_return = (amount * after.total) // side_pool
    return BetQuote(
        side=side,
        amount=amount,
        share=share,
        estimated_return=estimated_return,
        implied_probability_after=implied_probability(after, side),
    )
