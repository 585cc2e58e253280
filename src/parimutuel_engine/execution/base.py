"""
Shared plumbing for write orchestrators.

Each orchestrator instance allows one in-flight submission at a time. A
call made while another is pending is a no-op that returns a skipped
result; it is never queued.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from solders.pubkey import Pubkey

from parimutuel_engine.core.addresses import AddressSpace
from parimutuel_engine.core.errors import EngineError, classify_failure
from parimutuel_engine.ledger.interfaces import LedgerClient, NetworkSelector, SignerHandle
from parimutuel_engine.markets.cache import CacheInvalidationPolicy
from parimutuel_engine.markets.repository import MarketRepository, unix_now

from .results import ExecutionResult
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class Orchestrator:
    """Dependencies and the in-flight guard common to every writer."""

    def __init__(
        self,
        ledger: LedgerClient,
        signer: SignerHandle,
        network: NetworkSelector,
        address_space: AddressSpace,
        repository: Optional[MarketRepository] = None,
        submitter: Optional[TransactionSubmitter] = None,
        invalidation: Optional[CacheInvalidationPolicy] = None,
        clock: Callable[[], int] = unix_now,
    ):
        self.ledger = ledger
        self.signer = signer
        self.network = network
        self.address_space = address_space
        self.repository = repository or MarketRepository(
            ledger, network, address_space.program_id, clock=clock
        )
        self.submitter = submitter or TransactionSubmitter(ledger, signer)
        self.invalidation = invalidation or CacheInvalidationPolicy(self.repository.cache, network)
        self.clock = clock
        self._in_flight = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    async def _guarded(
        self,
        description: str,
        market: Optional[Pubkey],
        action: Callable[[], Awaitable[ExecutionResult]],
    ) -> ExecutionResult:
        """Run `action` under the in-flight guard, classifying any failure."""
        if self._in_flight.locked():
            logger.warning(f"Ignoring {description}: a submission is already in flight")
            return ExecutionResult.busy(market)

        async with self._in_flight:
            try:
                return await action()
            except asyncio.CancelledError:
                raise
            except EngineError as e:
                classified = e.classified
                log = logger.info if classified.local else logger.warning
                log(f"{description} rejected: {classified.message}")
                return ExecutionResult.failed(classified, market)
            except Exception as e:
                classified = classify_failure(e)
                logger.error(f"{description} failed: {classified.message}")
                logger.debug(f"Raw failure for {description}: {e!r}")
                return ExecutionResult.failed(classified, market)
