"""
Market account codec (Anchor/borsh layout).

    discriminator    8   sha256("account:Market")[:8]
    creator          32
    title            u32 len + utf-8
    description      u32 len + utf-8
    bet_token_mint   32
    vault            32
    yes_mint         32
    no_mint          32
    yes_pool         u64
    no_pool          u64
    expiry_timestamp i64
    status           u8   (0 = Open, 1 = Settled)
    outcome          Option<bool>
    bump             u8

Anything that does not match this layout raises MarketDecodeError, so
batch readers can drop the record and carry on.
"""
from __future__ import annotations

import struct

from solders.pubkey import Pubkey

from parimutuel_engine.ledger.instructions import account_discriminator

from .models import OPEN, Market, MarketStatus, Open, Settled

MARKET_DISCRIMINATOR = account_discriminator("Market")

MAX_TITLE_LENGTH = 128
MAX_DESCRIPTION_LENGTH = 512

STATUS_OPEN = 0
STATUS_SETTLED = 1


class MarketDecodeError(ValueError):
    """Raised when account data is not a well-formed market."""


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise MarketDecodeError(
                f"Unexpected end of data at offset {self._offset} (need {size} bytes)"
            )
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self.take(8))[0]

    def i64(self) -> int:
        return struct.unpack("<q", self.take(8))[0]

    def pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self.take(32))

    def string(self, max_length: int) -> str:
        length = self.u32()
        if length > max_length:
            raise MarketDecodeError(f"String length {length} exceeds {max_length}")
        try:
            return self.take(length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MarketDecodeError(f"Invalid utf-8 string: {e}") from e

    def boolean(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            raise MarketDecodeError(f"Invalid bool byte {value}")
        return value == 1


def _decode_status(reader: _Reader) -> MarketStatus:
    tag = reader.u8()
    has_outcome = reader.u8()
    if has_outcome not in (0, 1):
        raise MarketDecodeError(f"Invalid Option tag {has_outcome}")
    outcome = reader.boolean() if has_outcome else None

    if tag == STATUS_OPEN:
        return OPEN
    if tag == STATUS_SETTLED:
        if outcome is None:
            raise MarketDecodeError("Settled market has no outcome")
        return Settled(outcome=outcome)
    raise MarketDecodeError(f"Unknown market status {tag}")


def decode_market(address: Pubkey, data: bytes) -> Market:
    """
    Decode raw account data into a Market.

    Raises:
        MarketDecodeError: On a wrong discriminator or malformed layout
    """
    if data[:8] != MARKET_DISCRIMINATOR:
        raise MarketDecodeError(f"Account {address} is not a market")

    reader = _Reader(data)
    reader.take(8)
    creator = reader.pubkey()
    title = reader.string(MAX_TITLE_LENGTH)
    description = reader.string(MAX_DESCRIPTION_LENGTH)
    bet_mint = reader.pubkey()
    vault = reader.pubkey()
    yes_mint = reader.pubkey()
    no_mint = reader.pubkey()
    yes_pool = reader.u64()
    no_pool = reader.u64()
    expiry_timestamp = reader.i64()
    status = _decode_status(reader)
    bump = reader.u8()

    return Market(
        address=address,
        creator=creator,
        title=title,
        description=description,
        bet_mint=bet_mint,
        vault=vault,
        yes_mint=yes_mint,
        no_mint=no_mint,
        yes_pool=yes_pool,
        no_pool=no_pool,
        expiry_timestamp=expiry_timestamp,
        status=status,
        bump=bump,
    )


def encode_market(market: Market) -> bytes:
    """Serialize a Market in the program's account layout."""

    def string(value: str) -> bytes:
        encoded = value.encode("utf-8")
        return struct.pack("<I", len(encoded)) + encoded

    if isinstance(market.status, Open):
        status = bytes([STATUS_OPEN, 0])
    else:
        status = bytes([STATUS_SETTLED, 1, 1 if market.status.outcome else 0])

    return b"".join([
        MARKET_DISCRIMINATOR,
        bytes(market.creator),
        string(market.title),
        string(market.description),
        bytes(market.bet_mint),
        bytes(market.vault),
        bytes(market.yes_mint),
        bytes(market.no_mint),
        struct.pack("<QQq", market.yes_pool, market.no_pool, market.expiry_timestamp),
        status,
        bytes([market.bump]),
    ])
