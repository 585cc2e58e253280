"""
Transient read caches and the invalidation contract for writers.

Cache keys are tuples whose first two members are the query family and
the active cluster, so invalidation is a prefix match:

    ("markets", cluster, filter)             aggregate market lists
    ("market", cluster, market)              one market
    ("positions", cluster, owner)            owner's aggregate positions
    ("position", cluster, market, owner)     owner's position in one market
    ("token_balance", cluster, account)      one token account balance

Nothing here is persisted.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, Optional, Tuple

from solders.pubkey import Pubkey

from parimutuel_engine.ledger.interfaces import NetworkSelector

logger = logging.getLogger(__name__)

CacheKey = Tuple[Hashable, ...]

MARKETS = "markets"
MARKET = "market"
POSITIONS = "positions"
POSITION = "position"
TOKEN_BALANCE = "token_balance"


@dataclass
class _Entry:
    value: Any
    expires_at: float


class QueryCache:
    """
    In-memory TTL cache keyed by tuples.

    Concurrent misses on one key share a single loader call. Expired
    entries are swept whenever a new value is stored.

    Usage:
        cache = QueryCache()
        market = await cache.get_or_load(key, ttl=5.0, loader=fetch)
        cache.invalidate(("market", "devnet"))  # every market on devnet
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[CacheKey, _Entry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self._clock = clock

    def get(self, key: CacheKey) -> Tuple[bool, Any]:
        """(hit, value); expired entries count as misses and are dropped."""
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return False, None
        return True, entry.value

    def set(self, key: CacheKey, value: Any, ttl: float) -> None:
        now = self._clock()
        self._sweep(now)
        self._entries[key] = _Entry(value=value, expires_at=now + ttl)

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]

    async def get_or_load(
        self,
        key: CacheKey,
        ttl: float,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        hit, value = self.get(key)
        if hit:
            return value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, ttl, loader))
            self._inflight[key] = task
        # One caller being cancelled must not cancel the load for the others
        return await asyncio.shield(task)

    async def _load(
        self,
        key: CacheKey,
        ttl: float,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        try:
            value = await loader()
            # Invalidated while loading: hand the value to the waiters but do not store it
            if ttl > 0 and self._inflight.get(key) is asyncio.current_task():
                self.set(key, value, ttl)
            return value
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def invalidate(self, prefix: CacheKey) -> int:
        """Drop every key starting with `prefix`; returns how many were dropped."""
        size = len(prefix)
        stale = [key for key in self._entries if key[:size] == prefix]
        for key in stale:
            del self._entries[key]
        for key in [key for key in self._inflight if key[:size] == prefix]:
            del self._inflight[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return self.get(key)[0]

    def __len__(self) -> int:
        return len(self._entries)


def markets_key(cluster: str, view: str = "all") -> CacheKey:
    return (MARKETS, cluster, view)


def market_key(cluster: str, market: Pubkey) -> CacheKey:
    return (MARKET, cluster, str(market))


def positions_key(cluster: str, owner: Pubkey) -> CacheKey:
    return (POSITIONS, cluster, str(owner))


def position_key(cluster: str, market: Pubkey, owner: Pubkey) -> CacheKey:
    return (POSITION, cluster, str(market), str(owner))


def token_balance_key(cluster: str, account: Pubkey) -> CacheKey:
    return (TOKEN_BALANCE, cluster, str(account))


class CacheInvalidationPolicy:
    """
    What a successful write must invalidate, scoped to the active cluster.

    A mutation of market M by owner O drops:
        - every aggregate market list
        - M's own record
        - O's aggregate position list and O's position in M
        - the balance of every token account the write touched

    Records of unrelated markets stay cached.
    """

    def __init__(self, cache: QueryCache, network: NetworkSelector) -> None:
        self.cache = cache
        self.network = network

    def on_market_mutated(
        self,
        market: Pubkey,
        owner: Pubkey,
        touched_accounts: Iterable[Pubkey] = (),
    ) -> None:
        cluster = self.network.cluster
        prefixes = [
            (MARKETS, cluster),
            market_key(cluster, market),
            positions_key(cluster, owner),
            position_key(cluster, market, owner),
        ]
        prefixes.extend(token_balance_key(cluster, account) for account in touched_accounts)

        dropped = sum(self.cache.invalidate(prefix) for prefix in prefixes)
        logger.debug(f"Invalidated {dropped} cache entries after write to {market} on {cluster}")

    def on_network_changed(self, previous: Optional[str] = None) -> None:
        """Drop everything; the new cluster shares no state with the old one."""
        self.cache.clear()
        logger.info(f"Cleared read caches after leaving cluster {previous or 'unknown'}")
