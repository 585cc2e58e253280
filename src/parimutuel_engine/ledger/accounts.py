"""
Token program account layouts and balance lookups.

Token account (165 bytes):
    mint      [0:32]
    owner     [32:64]
    amount    [64:72]  u64 LE
    ...

Mint account (82 bytes):
    mint_authority  COption<Pubkey> [0:36]
    supply          [36:44]  u64 LE
    decimals        [44]
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

from solders.pubkey import Pubkey

from .interfaces import AccountInfo, LedgerClient

logger = logging.getLogger(__name__)

TOKEN_ACCOUNT_SIZE = 165
MINT_ACCOUNT_SIZE = 82


class AccountLayoutError(ValueError):
    """Raised when account data does not match the expected token layout."""


@dataclass(frozen=True)
class TokenAccount:
    """Decoded token account."""

    address: Pubkey
    mint: Pubkey
    owner: Pubkey
    amount: int

    @classmethod
    def decode(cls, address: Pubkey, data: bytes) -> "TokenAccount":
        if len(data) < TOKEN_ACCOUNT_SIZE:
            raise AccountLayoutError(
                f"Token account {address} too short: {len(data)} bytes"
            )
        (amount,) = struct.unpack_from("<Q", data, 64)
        return cls(
            address=address,
            mint=Pubkey.from_bytes(data[0:32]),
            owner=Pubkey.from_bytes(data[32:64]),
            amount=amount,
        )

    @classmethod
    def from_account(cls, info: AccountInfo) -> "TokenAccount":
        return cls.decode(info.address, info.data)


@dataclass(frozen=True)
class MintInfo:
    """Decoded mint account."""

    address: Pubkey
    supply: int
    decimals: int

    @classmethod
    def decode(cls, address: Pubkey, data: bytes) -> "MintInfo":
        if len(data) < MINT_ACCOUNT_SIZE:
            raise AccountLayoutError(f"Mint {address} too short: {len(data)} bytes")
        (supply,) = struct.unpack_from("<Q", data, 36)
        return cls(address=address, supply=supply, decimals=data[44])


@dataclass(frozen=True)
class TokenBalance:
    """
    Balance of one token account.

    An account that does not exist is a normal answer, reported as
    amount 0 with exists=False.
    """

    address: Pubkey
    amount: int
    exists: bool

    @classmethod
    def absent(cls, address: Pubkey) -> "TokenBalance":
        return cls(address=address, amount=0, exists=False)


async def fetch_token_balance(ledger: LedgerClient, address: Pubkey) -> TokenBalance:
    """Read a token account balance; absence yields a zero balance."""
    info = await ledger.get_account_info(address)
    if info is None:
        return TokenBalance.absent(address)
    token = TokenAccount.from_account(info)
    return TokenBalance(address=address, amount=token.amount, exists=True)


async def fetch_mint_supply(ledger: LedgerClient, mint: Pubkey) -> int:
    """Circulating supply of a mint; 0 when the mint does not exist."""
    info = await ledger.get_account_info(mint)
    if info is None:
        logger.debug(f"Mint {mint} not found, treating supply as 0")
        return 0
    return MintInfo.decode(mint, info.data).supply


async def account_exists(ledger: LedgerClient, address: Pubkey) -> bool:
    return await ledger.get_account_info(address) is not None


def encode_token_account(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    """
    Minimal initialized token account image.

    Used by local ledger emulators; only the fields the engine reads are
    meaningful.
    """
    data = bytearray(TOKEN_ACCOUNT_SIZE)
    data[0:32] = bytes(mint)
    data[32:64] = bytes(owner)
    struct.pack_into("<Q", data, 64, amount)
    data[108] = 1  # AccountState::Initialized
    return bytes(data)


def encode_mint(supply: int, decimals: int = 9) -> bytes:
    data = bytearray(MINT_ACCOUNT_SIZE)
    struct.pack_into("<Q", data, 36, supply)
    data[44] = decimals
    data[45] = 1  # is_initialized
    return bytes(data)
