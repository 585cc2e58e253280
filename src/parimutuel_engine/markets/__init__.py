"""
Markets Layer - Read side: decoding, queries, positions and caches.

This module provides:
    - Market / MarketStatus (Open | Settled): Decoded program state
    - MarketView / PositionView: Pydantic views with read-time derived fields
    - decode_market / encode_market: Account codec
    - MarketRepository: fetch_one / fetch_many / fetch_all queries
    - PositionReader: Positions recomputed from token balances
    - QueryCache / CacheInvalidationPolicy: Cluster-scoped transient caches
"""

from .cache import (
    CacheInvalidationPolicy,
    QueryCache,
    market_key,
    markets_key,
    position_key,
    positions_key,
    token_balance_key,
)
from .codec import (
    MARKET_DISCRIMINATOR,
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    MarketDecodeError,
    decode_market,
    encode_market,
)
from .models import OPEN, Market, MarketStatus, MarketView, Open, PositionView, Settled
from .positions import PositionReader, position_values
from .repository import MarketRepository, unix_now

__all__ = [
    # Models
    "Market",
    "MarketStatus",
    "Open",
    "Settled",
    "OPEN",
    "MarketView",
    "PositionView",
    # Codec
    "MARKET_DISCRIMINATOR",
    "MAX_TITLE_LENGTH",
    "MAX_DESCRIPTION_LENGTH",
    "MarketDecodeError",
    "decode_market",
    "encode_market",
    # Queries
    "MarketRepository",
    "PositionReader",
    "position_values",
    "unix_now",
    # Caching
    "QueryCache",
    "CacheInvalidationPolicy",
    "markets_key",
    "market_key",
    "positions_key",
    "position_key",
    "token_balance_key",
]
