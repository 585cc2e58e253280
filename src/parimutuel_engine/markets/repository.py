"""
Market read queries.

Reads are pure with respect to engine state: they never lock and are
safe to run concurrently with writers or each other. A missing market
is a normal answer (None) and is never retried; connectivity failures
are retried with backoff and then propagate.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, List, Optional, Sequence

from solders.pubkey import Pubkey

from parimutuel_engine.core.retry import BackoffPolicy, retry_with_backoff
from parimutuel_engine.ledger.interfaces import AccountInfo, LedgerClient, NetworkSelector

from .cache import QueryCache, market_key, markets_key
from .codec import MARKET_DISCRIMINATOR, MarketDecodeError, decode_market
from .models import Market, MarketView

logger = logging.getLogger(__name__)


def unix_now() -> int:
    return int(time.time())


class MarketRepository:
    """
    Read access to market accounts.

    Usage:
        repo = MarketRepository(ledger, network, program_id)
        market = await repo.fetch_one(address)
        if market is None:
            ...  # not found
        views = repo.views(await repo.fetch_all())
    """

    def __init__(
        self,
        ledger: LedgerClient,
        network: NetworkSelector,
        program_id: Pubkey,
        cache: Optional[QueryCache] = None,
        retry_policy: Optional[BackoffPolicy] = None,
        market_ttl: float = 5.0,
        markets_ttl: float = 10.0,
        clock: Callable[[], int] = unix_now,
    ):
        self.ledger = ledger
        self.network = network
        self.program_id = program_id
        self.cache = cache if cache is not None else QueryCache()
        self.retry_policy = retry_policy or BackoffPolicy()
        self.market_ttl = market_ttl
        self.markets_ttl = markets_ttl
        self.clock = clock

    # =========================================================================
    # Decoding
    # =========================================================================

    @staticmethod
    def _decode_many(accounts: Iterable[Optional[AccountInfo]]) -> List[Market]:
        """Decode what decodes; drop absent and malformed records."""
        markets = []
        for info in accounts:
            if info is None:
                continue
            try:
                markets.append(decode_market(info.address, info.data))
            except MarketDecodeError as e:
                logger.warning(f"Skipping undecodable market {info.address}: {e}")
        return markets

    # =========================================================================
    # Queries
    # =========================================================================

    async def fetch_one(self, address: Pubkey, fresh: bool = False) -> Optional[Market]:
        """
        Fetch and decode one market.

        Args:
            address: Market account address
            fresh: Bypass the cache (writers use this for pre-flight checks)

        Returns:
            The Market, or None if no well-formed market lives at `address`
        """
        async def load() -> Optional[Market]:
            info = await retry_with_backoff(
                lambda: self.ledger.get_account_info(address),
                self.retry_policy,
                description=f"fetch market {address}",
            )
            if info is None:
                logger.debug(f"Market {address} not found")
                return None
            try:
                return decode_market(address, info.data)
            except MarketDecodeError as e:
                logger.warning(f"Account {address} is not a valid market: {e}")
                return None

        if fresh:
            market = await load()
            self.cache.set(market_key(self.network.cluster, address), market, self.market_ttl)
            return market

        return await self.cache.get_or_load(
            market_key(self.network.cluster, address), self.market_ttl, load
        )

    async def fetch_many(self, addresses: Sequence[Pubkey]) -> List[Market]:
        """Batch fetch; missing and undecodable records are filtered out."""
        if not addresses:
            return []
        accounts = await retry_with_backoff(
            lambda: self.ledger.get_multiple_accounts(list(addresses)),
            self.retry_policy,
            description=f"fetch {len(addresses)} markets",
        )
        return self._decode_many(accounts)

    async def fetch_all(self) -> List[Market]:
        """Every market owned by the program, highest volume first."""
        async def load() -> List[Market]:
            accounts = await retry_with_backoff(
                lambda: self.ledger.get_program_accounts(self.program_id, MARKET_DISCRIMINATOR),
                self.retry_policy,
                description="fetch all markets",
            )
            markets = self._decode_many(accounts)
            markets.sort(key=lambda m: m.total_volume, reverse=True)
            logger.debug(f"Loaded {len(markets)} markets from {len(accounts)} accounts")
            return markets

        return await self.cache.get_or_load(
            markets_key(self.network.cluster), self.markets_ttl, load
        )

    async def fetch_active(self) -> List[Market]:
        """Unresolved markets, including those past expiry awaiting settlement."""
        return [m for m in await self.fetch_all() if not m.is_settled]

    async def fetch_awaiting_settlement(self) -> List[Market]:
        """Open markets past expiry."""
        now = self.clock()
        return [m for m in await self.fetch_all() if m.is_open and m.is_expired(now)]

    async def fetch_resolved(self) -> List[Market]:
        return [m for m in await self.fetch_all() if m.is_settled]

    async def fetch_by_creator(self, creator: Pubkey) -> List[Market]:
        return [m for m in await self.fetch_all() if m.creator == creator]

    # =========================================================================
    # Views
    # =========================================================================

    def view(self, market: Market) -> MarketView:
        return MarketView.from_market(market, self.clock())

    def views(self, markets: Iterable[Market]) -> List[MarketView]:
        now = self.clock()
        return [MarketView.from_market(m, now) for m in markets]
