"""
Settlement state machine.

    Open --settle(outcome)--> Settled(outcome)     (terminal)

A transition requires, checked in this order:
    1. the market exists
    2. status is Open            else AlreadySettled
    3. now >= expiry             else MarketNotExpired
    4. caller is the creator     else Unauthorized

The same checks run locally before any submission. The program
re-validates independently and its ruling is final.
"""
from __future__ import annotations

import logging
from typing import Optional

from solders.pubkey import Pubkey

from parimutuel_engine.core.errors import (
    ClassifiedError,
    ErrorKind,
    PreflightError,
    ProgramErrorCode,
)
from parimutuel_engine.ledger.instructions import MarketInstructions, OperationBatch
from parimutuel_engine.markets.models import Market

from .base import Orchestrator
from .results import ExecutionResult

logger = logging.getLogger(__name__)


def settlement_violation(market: Market, caller: Pubkey, now: int) -> Optional[ProgramErrorCode]:
    """First rule a settlement of `market` by `caller` at `now` would break."""
    if not market.is_open:
        return ProgramErrorCode.ALREADY_SETTLED
    if not market.is_expired(now):
        return ProgramErrorCode.MARKET_NOT_EXPIRED
    if market.creator != caller:
        return ProgramErrorCode.UNAUTHORIZED
    return None


class SettlementController(Orchestrator):
    """
    Settles markets created by the signer's identity.

    Usage:
        controller = SettlementController(ledger, signer, network, space)
        result = await controller.settle_market(market, outcome=True)
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.instructions = MarketInstructions(self.address_space.program_id)

    async def settle_market(self, market: Pubkey, outcome: bool) -> ExecutionResult:
        """Settle `market` with `outcome` (True = YES won)."""
        return await self._guarded(
            f"Settlement of {market}",
            market,
            lambda: self._settle(market, outcome),
        )

    async def preflight(self, market_address: Pubkey) -> Market:
        """
        Run the local transition checks against fresh market state.

        Raises:
            PreflightError: Naming the first violated rule
        """
        market = await self.repository.fetch_one(market_address, fresh=True)
        if market is None:
            raise PreflightError(ClassifiedError.of_kind(
                ErrorKind.ACCOUNT_NOT_FOUND,
                detail=f"Market {market_address} does not exist",
                local=True,
            ))
        violation = settlement_violation(market, self.signer.public_key, self.clock())
        if violation is not None:
            raise PreflightError.program(violation)
        return market

    async def _settle(self, market_address: Pubkey, outcome: bool) -> ExecutionResult:
        if not isinstance(outcome, bool):
            raise TypeError(f"Outcome must be a bool, got {type(outcome).__name__}")

        await self.preflight(market_address)

        creator = self.signer.public_key
        batch = OperationBatch(payer=creator)
        batch.append(self.instructions.settle_market(creator, market_address, outcome))

        label = "YES" if outcome else "NO"
        signature = await self.submitter.submit(
            batch, description=f"settle {market_address} as {label}"
        )

        self.invalidation.on_market_mutated(market_address, creator)
        logger.info(f"Settled {market_address} as {label}: {signature}")
        return ExecutionResult.succeeded(signature, market=market_address)
