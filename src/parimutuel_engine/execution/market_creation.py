"""
Market creation flow.

The market address is derived from (creator, bet asset, expiry). If an
account already lives at that address, the expiry is pushed out by one
second and the address re-derived, a bounded number of times.

Creation is submitted with the market address as the expected resulting
account, so an ambiguous "already processed" answer is settled by
polling for that account instead of resubmitting into a duplicate.
"""
from __future__ import annotations

import logging

from solders.pubkey import Pubkey

from parimutuel_engine.core.addresses import MarketAddresses
from parimutuel_engine.core.errors import ClassifiedError, ErrorKind, PreflightError, ProgramErrorCode
from parimutuel_engine.core.retry import retry_with_backoff
from parimutuel_engine.ledger.instructions import MarketInstructions, OperationBatch
from parimutuel_engine.markets.codec import MAX_DESCRIPTION_LENGTH, MAX_TITLE_LENGTH

from .base import Orchestrator
from .results import ExecutionResult

logger = logging.getLogger(__name__)

MAX_COLLISION_RETRIES = 5


class MarketCreator(Orchestrator):
    """
    Creates markets with the signer as creator (and settlement authority).

    Usage:
        creator = MarketCreator(ledger, signer, network, space)
        result = await creator.create_market(title, description, bet_mint, expiry)
        print(result.market)
    """

    def __init__(self, *args, max_collision_retries: int = MAX_COLLISION_RETRIES, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_collision_retries = max_collision_retries
        self.instructions = MarketInstructions(self.address_space.program_id)

    async def create_market(
        self,
        title: str,
        description: str,
        bet_mint: Pubkey,
        expiry_timestamp: int,
    ) -> ExecutionResult:
        return await self._guarded(
            f"Creation of market '{title}'",
            None,
            lambda: self._create(title, description, bet_mint, expiry_timestamp),
        )

    def validate(self, title: str, description: str, expiry_timestamp: int) -> None:
        """
        Local checks mirroring the program's create_market rules.

        Raises:
            PreflightError: ExpiryInPast, TitleTooLong or DescriptionTooLong
        """
        if expiry_timestamp <= self.clock():
            raise PreflightError.program(ProgramErrorCode.EXPIRY_IN_PAST)
        if len(title.encode("utf-8")) > MAX_TITLE_LENGTH:
            raise PreflightError.program(ProgramErrorCode.TITLE_TOO_LONG)
        if len(description.encode("utf-8")) > MAX_DESCRIPTION_LENGTH:
            raise PreflightError.program(ProgramErrorCode.DESCRIPTION_TOO_LONG)

    async def _free_addresses(
        self, creator: Pubkey, bet_mint: Pubkey, expiry_timestamp: int
    ) -> tuple[int, MarketAddresses]:
        """First (expiry, addresses) at or after `expiry_timestamp` with no existing market."""
        expiry = expiry_timestamp
        for attempt in range(self.max_collision_retries + 1):
            addresses = self.address_space.derive_all(creator, bet_mint, expiry)
            existing = await retry_with_backoff(
                lambda: self.ledger.get_account_info(addresses.market),
                self.repository.retry_policy,
                description="check market address",
            )
            if existing is None:
                return expiry, addresses
            logger.info(
                f"Market address {addresses.market} already taken, "
                f"retrying with expiry {expiry + 1} ({attempt + 1}/{self.max_collision_retries})"
            )
            expiry += 1

        raise PreflightError(ClassifiedError.of_kind(
            ErrorKind.UNKNOWN,
            detail=f"No free market address after {self.max_collision_retries} expiry adjustments",
            local=True,
        ))

    async def _create(
        self,
        title: str,
        description: str,
        bet_mint: Pubkey,
        expiry_timestamp: int,
    ) -> ExecutionResult:
        self.validate(title, description, expiry_timestamp)

        creator = self.signer.public_key
        expiry, addresses = await self._free_addresses(creator, bet_mint, expiry_timestamp)

        batch = OperationBatch(payer=creator)
        batch.append(self.instructions.create_market(
            creator=creator,
            market=addresses.market,
            bet_mint=bet_mint,
            yes_mint=addresses.yes_mint,
            no_mint=addresses.no_mint,
            vault=addresses.vault,
            title=title,
            description=description,
            expiry_timestamp=expiry,
        ))

        signature = await self.submitter.submit(
            batch,
            expected_account=addresses.market,
            description=f"create market {addresses.market}",
        )

        self.invalidation.on_market_mutated(addresses.market, creator)
        logger.info(f"Created market {addresses.market} expiring at {expiry}: {signature}")
        return ExecutionResult.succeeded(signature, market=addresses.market)
