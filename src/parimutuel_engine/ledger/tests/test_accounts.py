"""
Tests for token account layouts and balance lookups.
"""
from unittest.mock import AsyncMock

import pytest
from solders.pubkey import Pubkey

from parimutuel_engine.core import TOKEN_PROGRAM_ID
from parimutuel_engine.ledger import (
    AccountInfo,
    AccountLayoutError,
    MintInfo,
    TokenAccount,
    account_exists,
    fetch_mint_supply,
    fetch_token_balance,
)
from parimutuel_engine.ledger.accounts import encode_mint, encode_token_account


def _account(address, data):
    return AccountInfo(address=address, lamports=2_039_280, owner=TOKEN_PROGRAM_ID, data=data)


class TestLayouts:
    def test_token_account_decode(self):
        mint, owner, address = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()

        token = TokenAccount.decode(address, encode_token_account(mint, owner, 12345))

        assert token.mint == mint
        assert token.owner == owner
        assert token.amount == 12345

    def test_token_account_too_short(self):
        with pytest.raises(AccountLayoutError):
            TokenAccount.decode(Pubkey.new_unique(), b"\x00" * 100)

    def test_mint_decode(self):
        mint = MintInfo.decode(Pubkey.new_unique(), encode_mint(supply=900, decimals=6))

        assert mint.supply == 900
        assert mint.decimals == 6

    def test_mint_too_short(self):
        with pytest.raises(AccountLayoutError):
            MintInfo.decode(Pubkey.new_unique(), b"")


class TestBalanceLookups:
    """Absent accounts are a normal answer, not an error."""

    @pytest.mark.asyncio
    async def test_missing_account_is_zero_balance(self):
        ledger = AsyncMock()
        ledger.get_account_info.return_value = None
        address = Pubkey.new_unique()

        balance = await fetch_token_balance(ledger, address)

        assert balance.amount == 0
        assert balance.exists is False

    @pytest.mark.asyncio
    async def test_existing_account_balance(self):
        address = Pubkey.new_unique()
        ledger = AsyncMock()
        ledger.get_account_info.return_value = _account(
            address, encode_token_account(Pubkey.new_unique(), Pubkey.new_unique(), 42)
        )

        balance = await fetch_token_balance(ledger, address)

        assert balance.amount == 42
        assert balance.exists is True

    @pytest.mark.asyncio
    async def test_missing_mint_supply_is_zero(self):
        ledger = AsyncMock()
        ledger.get_account_info.return_value = None

        assert await fetch_mint_supply(ledger, Pubkey.new_unique()) == 0

    @pytest.mark.asyncio
    async def test_mint_supply(self):
        mint = Pubkey.new_unique()
        ledger = AsyncMock()
        ledger.get_account_info.return_value = _account(mint, encode_mint(500))

        assert await fetch_mint_supply(ledger, mint) == 500

    @pytest.mark.asyncio
    async def test_account_exists(self):
        ledger = AsyncMock()
        ledger.get_account_info.return_value = None

        assert await account_exists(ledger, Pubkey.new_unique()) is False
