"""
Redemption of winning share tokens.

Single redemption burns `amount` winning share tokens for a pro-rata
share of the vault. The pool-based payout reported here is an estimate;
the program pays from the live vault balance and share-token supply.

Batch redemption processes items strictly one after another and records
each outcome independently: one failure never stops the rest.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from solders.pubkey import Pubkey

from parimutuel_engine.core.addresses import NATIVE_MINT
from parimutuel_engine.core.errors import (
    ClassifiedError,
    ErrorKind,
    InsufficientBalanceError,
    PreflightError,
    ProgramErrorCode,
    classify_failure,
)
from parimutuel_engine.core.pool_accounting import NoWinningBetsError, redemption_payout
from parimutuel_engine.core.retry import retry_with_backoff
from parimutuel_engine.ledger.accounts import TokenAccount
from parimutuel_engine.ledger.instructions import (
    MarketInstructions,
    OperationBatch,
    close_account,
    create_associated_account,
)
from parimutuel_engine.markets.models import Market

from .base import Orchestrator
from .results import BatchRedemptionResult, ExecutionResult, RedemptionFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionRequest:
    market: Pubkey
    amount: int


class RedemptionEngine(Orchestrator):
    """
    Redeems winning positions for the signer's identity.

    Usage:
        engine = RedemptionEngine(ledger, signer, network, space)
        result = await engine.redeem(market, amount=100)
        batch = await engine.redeem_all([RedemptionRequest(m1, 100), ...])
        for failure in batch.failed:
            print(failure.market, failure.error.message)
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.instructions = MarketInstructions(self.address_space.program_id)

    async def redeem(self, market: Pubkey, amount: int) -> ExecutionResult:
        """Burn `amount` winning share tokens of `market`; partial amounts are allowed."""
        return await self._guarded(
            f"Redemption of {amount} in {market}",
            market,
            lambda: self._redeem(market, amount),
        )

    async def redeem_all(self, requests: Sequence[RedemptionRequest]) -> BatchRedemptionResult:
        """
        Redeem every request in order, one at a time.

        Returns:
            BatchRedemptionResult with each market in exactly one of
            `succeeded` / `failed`
        """
        if self._in_flight.locked():
            logger.warning("Ignoring batch redemption: a submission is already in flight")
            return BatchRedemptionResult(skipped=True)

        result = BatchRedemptionResult()
        async with self._in_flight:
            for index, request in enumerate(requests, start=1):
                logger.info(f"Batch redemption {index}/{len(requests)}: {request.market}")
                try:
                    result.succeeded.append(await self._redeem(request.market, request.amount))
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    classified = classify_failure(e)
                    logger.warning(f"Redemption in {request.market} failed: {classified.message}")
                    result.failed.append(RedemptionFailure(market=request.market, error=classified))

        logger.info(
            f"Batch redemption done: {len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    async def _load_settled(self, market_address: Pubkey) -> Market:
        market = await self.repository.fetch_one(market_address, fresh=True)
        if market is None:
            raise PreflightError(ClassifiedError.of_kind(
                ErrorKind.ACCOUNT_NOT_FOUND,
                detail=f"Market {market_address} does not exist",
                local=True,
            ))
        if not market.is_settled:
            raise PreflightError.program(ProgramErrorCode.NOT_SETTLED)
        return market

    async def _redeem(self, market_address: Pubkey, amount: int) -> ExecutionResult:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise PreflightError.program(ProgramErrorCode.INVALID_AMOUNT)

        market = await self._load_settled(market_address)
        winning_side = market.winning_side
        try:
            payout_estimate = redemption_payout(amount, market.pool_state, winning_side)
        except NoWinningBetsError:
            raise PreflightError.program(ProgramErrorCode.NO_WINNING_BETS) from None

        redeemer = self.signer.public_key
        space = self.address_space
        winning_mint = market.share_mint(winning_side)
        winning_account = space.derive_owner_asset_account(redeemer, winning_mint)
        asset_account = space.derive_owner_asset_account(redeemer, market.bet_mint)

        winning_info, asset_info = await retry_with_backoff(
            lambda: self.ledger.get_multiple_accounts([winning_account, asset_account]),
            self.repository.retry_policy,
            description="check redeemer token accounts",
        )
        held = TokenAccount.from_account(winning_info).amount if winning_info else 0
        if held < amount:
            raise InsufficientBalanceError(amount, held, f"{winning_side.value} shares")

        batch = OperationBatch(payer=redeemer)
        if asset_info is None:
            batch.append(create_associated_account(redeemer, asset_account, redeemer, market.bet_mint))
        batch.append(self.instructions.redeem(
            redeemer=redeemer,
            market=market_address,
            vault=market.vault,
            winning_mint=winning_mint,
            redeemer_winning_account=winning_account,
            redeemer_asset_account=asset_account,
            amount=amount,
        ))
        if market.bet_mint == NATIVE_MINT:
            batch.append(close_account(asset_account, redeemer, redeemer))

        signature = await self.submitter.submit(
            batch, description=f"redeem {amount} in {market_address}"
        )

        self.invalidation.on_market_mutated(
            market_address, redeemer, [winning_account, asset_account]
        )
        logger.info(
            f"Redeemed {amount} {winning_side.value} shares in {market_address} "
            f"(estimated payout {payout_estimate}): {signature}"
        )
        return ExecutionResult.succeeded(
            signature, market=market_address, payout_estimate=payout_estimate
        )

