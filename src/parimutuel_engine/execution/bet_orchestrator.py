"""
Bet submission.

Protocol for a wager of `amount` on `side`:
    1. Reject a non-positive amount locally
    2. Derive share-token mints, vault and the bettor's three token accounts
    3. Provision each missing account (fresh existence check first)
    4. Native asset: check native balance covers amount + worst-case
       overhead, then wrap `amount` (transfer + sync)
    5. Other assets: check the bettor's token balance covers `amount`
    6. Append the place-bet operation
    7-8. Simulate, sign, send, confirm (TransactionSubmitter)
    9. Invalidate caches for (market, bettor)
"""
from __future__ import annotations

import logging
from typing import Optional

from solders.pubkey import Pubkey

from parimutuel_engine.core.addresses import NATIVE_MINT
from parimutuel_engine.core.errors import (
    InsufficientBalanceError,
    PreflightError,
    ProgramErrorCode,
)
from parimutuel_engine.core.pool_accounting import U64_MAX, Side
from parimutuel_engine.core.retry import retry_with_backoff
from parimutuel_engine.ledger.accounts import TOKEN_ACCOUNT_SIZE, TokenAccount
from parimutuel_engine.ledger.instructions import (
    MarketInstructions,
    OperationBatch,
    OperationKind,
    create_associated_account,
    native_transfer,
    sync_native,
)

from .base import Orchestrator
from .results import ExecutionResult

logger = logging.getLogger(__name__)

DEFAULT_SUBMISSION_FEE_LAMPORTS = 5000


class BetOrchestrator(Orchestrator):
    """
    Places bets for the signer's identity.

    Usage:
        bets = BetOrchestrator(ledger, signer, network, AddressSpace(program_id))
        result = await bets.place_bet(market, bet_mint, 1_000_000, Side.YES)
        if result.success:
            print(result.signature)
    """

    def __init__(self, *args, submission_fee: int = DEFAULT_SUBMISSION_FEE_LAMPORTS, **kwargs):
        super().__init__(*args, **kwargs)
        self.submission_fee = submission_fee
        self.instructions = MarketInstructions(self.address_space.program_id)

    async def place_bet(
        self,
        market: Pubkey,
        bet_mint: Pubkey,
        amount: int,
        side: Side,
    ) -> ExecutionResult:
        """
        Wager `amount` base units of `bet_mint` on `side` of `market`.

        Returns:
            ExecutionResult with the signature, or the classified failure.
            Local rejections (non-positive amount, insufficient balance)
            never touch the network.
        """
        return await self._guarded(
            f"Bet of {amount} on {side.value} in {market}",
            market,
            lambda: self._place_bet(market, bet_mint, amount, side),
        )

    async def _place_bet(
        self,
        market: Pubkey,
        bet_mint: Pubkey,
        amount: int,
        side: Side,
    ) -> ExecutionResult:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise PreflightError.program(ProgramErrorCode.INVALID_BET_AMOUNT)
        if amount > U64_MAX:
            raise PreflightError.program(ProgramErrorCode.ARITHMETIC_OVERFLOW)

        bettor = self.signer.public_key
        space = self.address_space
        yes_mint = space.derive_yes_mint(market)
        no_mint = space.derive_no_mint(market)
        vault = space.derive_vault(market)
        asset_account = space.derive_owner_asset_account(bettor, bet_mint)
        yes_account = space.derive_owner_asset_account(bettor, yes_mint)
        no_account = space.derive_owner_asset_account(bettor, no_mint)
        is_native = bet_mint == NATIVE_MINT

        existing = await retry_with_backoff(
            lambda: self.ledger.get_multiple_accounts([yes_account, no_account, asset_account]),
            self.repository.retry_policy,
            description="check bettor token accounts",
        )
        yes_info, no_info, asset_info = existing

        batch = OperationBatch(payer=bettor)
        if yes_info is None:
            batch.append(create_associated_account(bettor, yes_account, bettor, yes_mint))
        if no_info is None:
            batch.append(create_associated_account(bettor, no_account, bettor, no_mint))

        if is_native:
            if asset_info is None:
                batch.append(create_associated_account(bettor, asset_account, bettor, bet_mint))
            await self._check_native_balance(bettor, amount, batch.count(OperationKind.PROVISION_ACCOUNT))
            batch.append(native_transfer(bettor, asset_account, amount))
            batch.append(sync_native(asset_account))
        elif asset_info is None:
            # No token account: nothing to spend, but the program has the final say
            logger.info(f"Bettor has no {bet_mint} account; provisioning it and deferring to the program")
            batch.append(create_associated_account(bettor, asset_account, bettor, bet_mint))
        else:
            available = TokenAccount.from_account(asset_info).amount
            if available < amount:
                raise InsufficientBalanceError(amount, available, str(bet_mint))

        batch.append(self.instructions.place_bet(
            bettor=bettor,
            market=market,
            bet_mint=bet_mint,
            yes_mint=yes_mint,
            no_mint=no_mint,
            vault=vault,
            bettor_asset_account=asset_account,
            bettor_yes_account=yes_account,
            bettor_no_account=no_account,
            amount=amount,
            side=side.as_bool,
        ))

        signature = await self.submitter.submit(
            batch, description=f"bet {amount} on {side.value} in {market}"
        )

        self.invalidation.on_market_mutated(
            market, bettor, [asset_account, yes_account, no_account]
        )
        logger.info(f"Placed bet of {amount} on {side.value} in {market}: {signature}")
        return ExecutionResult.succeeded(signature, market=market)

    async def _check_native_balance(self, bettor: Pubkey, amount: int, provisions: int) -> None:
        """Native balance must cover the wager plus every provisioning deposit and the fee."""
        policy = self.repository.retry_policy
        rent = 0
        if provisions:
            rent = await retry_with_backoff(
                lambda: self.ledger.get_minimum_balance_for_rent_exemption(TOKEN_ACCOUNT_SIZE),
                policy,
                description="fetch token account rent",
            )
        overhead = provisions * rent + self.submission_fee
        available = await retry_with_backoff(
            lambda: self.ledger.get_balance(bettor),
            policy,
            description="fetch native balance",
        )
        required = amount + overhead
        if available < required:
            raise InsufficientBalanceError(required, available, "native")
        logger.debug(
            f"Native balance {available} covers bet {amount} + overhead {overhead}"
        )
