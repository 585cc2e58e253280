"""
Deterministic address derivation for market accounts.

Every address the program owns is a program-derived address (PDA): the
sha256 digest of the seeds, a one-byte bump, the program id and a fixed
marker, accepted only when the digest is NOT a point on the ed25519
curve. No private key can exist for such an address, and the program
re-derives the same address independently, so client and ledger must
agree bit for bit.

Seed layout used by the market program:
    market   = ["market", creator, bet_mint, expiry_i64_le]
    yes_mint = ["yes_mint", market]
    no_mint  = ["no_mint", market]
    vault    = ["vault", market]

Owner/asset sub-accounts follow the associated-token convention:
    ata = [owner, token_program, mint] under the associated-token program
"""
from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Sequence, Tuple

from solders.pubkey import Pubkey

DEFAULT_PROGRAM_ID = Pubkey.from_string("AQR7DVzsy1dKM3TdRqLMbzAb5waubBJYdXd9BGuCtVpR")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
RENT_SYSVAR_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
NATIVE_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

MARKET_SEED = b"market"
YES_MINT_SEED = b"yes_mint"
NO_MINT_SEED = b"no_mint"
VAULT_SEED = b"vault"

PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEEDS = 16
MAX_SEED_LENGTH = 32


class AddressDerivationError(Exception):
    """Raised when seeds are malformed or no off-curve bump exists."""


def find_program_address(
    seeds: Sequence[bytes],
    program_id: Pubkey,
) -> Tuple[Pubkey, int]:
    """
    Derive a program address and its bump.

    Tries bump 255 down to 0 and returns the first candidate whose
    digest is off the ed25519 curve.

    Raises:
        AddressDerivationError: On too many / too long seeds, or when
            every bump lands on the curve (astronomically unlikely).
    """
    if len(seeds) > MAX_SEEDS - 1:
        raise AddressDerivationError(f"Too many seeds: {len(seeds)}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise AddressDerivationError(
                f"Seed exceeds {MAX_SEED_LENGTH} bytes: {len(seed)}"
            )

    prefix = b"".join(seeds)
    suffix = bytes(program_id) + PDA_MARKER

    for bump in range(255, -1, -1):
        digest = hashlib.sha256(prefix + bytes([bump]) + suffix).digest()
        candidate = Pubkey.from_bytes(digest)
        if not candidate.is_on_curve():
            return candidate, bump

    raise AddressDerivationError("No off-curve bump found for seeds")


def expiry_seed(expiry_timestamp: int) -> bytes:
    """8-byte little-endian signed encoding of the expiry (i64)."""
    return struct.pack("<q", expiry_timestamp)


@dataclass(frozen=True)
class MarketAddresses:
    """Every program-owned address belonging to one market."""

    market: Pubkey
    market_bump: int
    yes_mint: Pubkey
    yes_mint_bump: int
    no_mint: Pubkey
    no_mint_bump: int
    vault: Pubkey
    vault_bump: int


class AddressSpace:
    """
    Pure address derivation bound to one program id.

    Usage:
        space = AddressSpace(program_id)
        market, bump = space.derive_market_address(creator, mint, expiry)
        yes_mint, _ = space.derive_sub_address(YES_MINT_SEED, market)
        ata = space.derive_owner_asset_account(owner, yes_mint)
    """

    def __init__(self, program_id: Pubkey = DEFAULT_PROGRAM_ID) -> None:
        self._program_id = program_id

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    def derive_market_address(
        self,
        creator: Pubkey,
        bet_mint: Pubkey,
        expiry_timestamp: int,
    ) -> Tuple[Pubkey, int]:
        """Market address and bump for (creator, bet asset, expiry)."""
        return find_program_address(
            [MARKET_SEED, bytes(creator), bytes(bet_mint), expiry_seed(expiry_timestamp)],
            self._program_id,
        )

    def derive_sub_address(self, domain_tag: bytes, market: Pubkey) -> Tuple[Pubkey, int]:
        """Share-token mint or vault address for a market, keyed by domain tag."""
        return find_program_address([domain_tag, bytes(market)], self._program_id)

    def derive_yes_mint(self, market: Pubkey) -> Pubkey:
        return self.derive_sub_address(YES_MINT_SEED, market)[0]

    def derive_no_mint(self, market: Pubkey) -> Pubkey:
        return self.derive_sub_address(NO_MINT_SEED, market)[0]

    def derive_vault(self, market: Pubkey) -> Pubkey:
        return self.derive_sub_address(VAULT_SEED, market)[0]

    def derive_all(
        self,
        creator: Pubkey,
        bet_mint: Pubkey,
        expiry_timestamp: int,
    ) -> MarketAddresses:
        """Derive the market address and all of its sub-addresses at once."""
        market, market_bump = self.derive_market_address(creator, bet_mint, expiry_timestamp)
        yes_mint, yes_bump = self.derive_sub_address(YES_MINT_SEED, market)
        no_mint, no_bump = self.derive_sub_address(NO_MINT_SEED, market)
        vault, vault_bump = self.derive_sub_address(VAULT_SEED, market)
        return MarketAddresses(
            market=market,
            market_bump=market_bump,
            yes_mint=yes_mint,
            yes_mint_bump=yes_bump,
            no_mint=no_mint,
            no_mint_bump=no_bump,
            vault=vault,
            vault_bump=vault_bump,
        )

    @staticmethod
    def derive_owner_asset_account(owner: Pubkey, mint: Pubkey) -> Pubkey:
        """Associated token account of `owner` for `mint`."""
        address, _ = find_program_address(
            [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
            ASSOCIATED_TOKEN_PROGRAM_ID,
        )
        return address
