"""
Operation builders and batch compilation.

An Operation is one ledger instruction plus the kind tag the engine uses
to reason about a pending batch (how many provisioning steps it holds,
whether a close-and-reclaim step follows a redemption, ...).

Market program instructions are Anchor-encoded:
    data = sha256("global:<name>")[:8] || borsh(args)
"""
from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from parimutuel_engine.core.addresses import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    RENT_SYSVAR_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

SYSTEM_TRANSFER_INDEX = 2
TOKEN_CLOSE_ACCOUNT_INDEX = 9
TOKEN_SYNC_NATIVE_INDEX = 17


def anchor_discriminator(instruction_name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{instruction_name}".encode()).digest()[:8]


def account_discriminator(account_name: str) -> bytes:
    """First 8 bytes of sha256("account:<Name>")."""
    return hashlib.sha256(f"account:{account_name}".encode()).digest()[:8]


def borsh_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<I", len(encoded)) + encoded


def borsh_bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


class OperationKind(str, Enum):
    """What a pending operation does."""

    PROVISION_ACCOUNT = "provision_account"
    NATIVE_TRANSFER = "native_transfer"
    SYNC_NATIVE = "sync_native"
    CLOSE_ACCOUNT = "close_account"
    CREATE_MARKET = "create_market"
    PLACE_BET = "place_bet"
    SETTLE_MARKET = "settle_market"
    REDEEM = "redeem"


@dataclass(frozen=True)
class AccountRef:
    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False

    def to_meta(self) -> AccountMeta:
        return AccountMeta(self.pubkey, self.is_signer, self.is_writable)


@dataclass(frozen=True)
class Operation:
    """One instruction in a pending batch."""

    kind: OperationKind
    program_id: Pubkey
    accounts: Tuple[AccountRef, ...]
    data: bytes

    def to_instruction(self) -> Instruction:
        return Instruction(
            self.program_id,
            self.data,
            [account.to_meta() for account in self.accounts],
        )

    def account(self, index: int) -> Pubkey:
        return self.accounts[index].pubkey


class OperationBatch:
    """
    Ordered list of operations submitted as one transaction.

    Usage:
        batch = OperationBatch(payer=bettor)
        batch.append(create_associated_account(bettor, ata, bettor, mint))
        batch.append(instructions.place_bet(...))
        tx = batch.compile(blockhash)
    """

    def __init__(self, payer: Pubkey) -> None:
        self.payer = payer
        self._operations: List[Operation] = []

    def append(self, operation: Operation) -> None:
        self._operations.append(operation)

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)

    @property
    def operations(self) -> List[Operation]:
        return list(self._operations)

    @property
    def kinds(self) -> List[OperationKind]:
        return [op.kind for op in self._operations]

    def count(self, kind: OperationKind) -> int:
        return sum(1 for op in self._operations if op.kind is kind)

    def compile(self, recent_blockhash: Hash) -> Transaction:
        """Unsigned transaction over all operations, fee paid by `payer`."""
        if not self._operations:
            raise ValueError("Cannot compile an empty operation batch")
        message = Message.new_with_blockhash(
            [op.to_instruction() for op in self._operations],
            self.payer,
            recent_blockhash,
        )
        return Transaction.new_unsigned(message)


# =============================================================================
# Token / system helper operations
# =============================================================================


def create_associated_account(
    payer: Pubkey,
    account: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
) -> Operation:
    """Provision the associated token account of `owner` for `mint`."""
    return Operation(
        kind=OperationKind.PROVISION_ACCOUNT,
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=(
            AccountRef(payer, is_signer=True, is_writable=True),
            AccountRef(account, is_writable=True),
            AccountRef(owner),
            AccountRef(mint),
            AccountRef(SYSTEM_PROGRAM_ID),
            AccountRef(TOKEN_PROGRAM_ID),
        ),
        data=b"",
    )


def native_transfer(source: Pubkey, destination: Pubkey, lamports: int) -> Operation:
    """Move native lamports between accounts."""
    return Operation(
        kind=OperationKind.NATIVE_TRANSFER,
        program_id=SYSTEM_PROGRAM_ID,
        accounts=(
            AccountRef(source, is_signer=True, is_writable=True),
            AccountRef(destination, is_writable=True),
        ),
        data=struct.pack("<IQ", SYSTEM_TRANSFER_INDEX, lamports),
    )


def sync_native(account: Pubkey) -> Operation:
    """Make the token program recognise lamports deposited into a wrapped account."""
    return Operation(
        kind=OperationKind.SYNC_NATIVE,
        program_id=TOKEN_PROGRAM_ID,
        accounts=(AccountRef(account, is_writable=True),),
        data=bytes([TOKEN_SYNC_NATIVE_INDEX]),
    )


def close_account(account: Pubkey, destination: Pubkey, owner: Pubkey) -> Operation:
    """Close a token account and reclaim its lamports."""
    return Operation(
        kind=OperationKind.CLOSE_ACCOUNT,
        program_id=TOKEN_PROGRAM_ID,
        accounts=(
            AccountRef(account, is_writable=True),
            AccountRef(destination, is_writable=True),
            AccountRef(owner, is_signer=True),
        ),
        data=bytes([TOKEN_CLOSE_ACCOUNT_INDEX]),
    )


# =============================================================================
# Market program operations
# =============================================================================


class MarketInstructions:
    """Builders for the market program's four instructions."""

    def __init__(self, program_id: Pubkey) -> None:
        self.program_id = program_id

    def create_market(
        self,
        creator: Pubkey,
        market: Pubkey,
        bet_mint: Pubkey,
        yes_mint: Pubkey,
        no_mint: Pubkey,
        vault: Pubkey,
        title: str,
        description: str,
        expiry_timestamp: int,
    ) -> Operation:
        data = (
            anchor_discriminator("create_market")
            + borsh_string(title)
            + borsh_string(description)
            + struct.pack("<q", expiry_timestamp)
        )
        return Operation(
            kind=OperationKind.CREATE_MARKET,
            program_id=self.program_id,
            accounts=(
                AccountRef(creator, is_signer=True, is_writable=True),
                AccountRef(market, is_writable=True),
                AccountRef(bet_mint),
                AccountRef(yes_mint, is_writable=True),
                AccountRef(no_mint, is_writable=True),
                AccountRef(vault, is_writable=True),
                AccountRef(SYSTEM_PROGRAM_ID),
                AccountRef(TOKEN_PROGRAM_ID),
                AccountRef(RENT_SYSVAR_ID),
            ),
            data=data,
        )

    def place_bet(
        self,
        bettor: Pubkey,
        market: Pubkey,
        bet_mint: Pubkey,
        yes_mint: Pubkey,
        no_mint: Pubkey,
        vault: Pubkey,
        bettor_asset_account: Pubkey,
        bettor_yes_account: Pubkey,
        bettor_no_account: Pubkey,
        amount: int,
        side: bool,
    ) -> Operation:
        data = anchor_discriminator("place_bet") + struct.pack("<Q", amount) + borsh_bool(side)
        return Operation(
            kind=OperationKind.PLACE_BET,
            program_id=self.program_id,
            accounts=(
                AccountRef(bettor, is_signer=True, is_writable=True),
                AccountRef(market, is_writable=True),
                AccountRef(bet_mint),
                AccountRef(yes_mint, is_writable=True),
                AccountRef(no_mint, is_writable=True),
                AccountRef(vault, is_writable=True),
                AccountRef(bettor_asset_account, is_writable=True),
                AccountRef(bettor_yes_account, is_writable=True),
                AccountRef(bettor_no_account, is_writable=True),
                AccountRef(TOKEN_PROGRAM_ID),
            ),
            data=data,
        )

    def settle_market(self, creator: Pubkey, market: Pubkey, outcome: bool) -> Operation:
        return Operation(
            kind=OperationKind.SETTLE_MARKET,
            program_id=self.program_id,
            accounts=(
                AccountRef(creator, is_signer=True),
                AccountRef(market, is_writable=True),
            ),
            data=anchor_discriminator("settle_market") + borsh_bool(outcome),
        )

    def redeem(
        self,
        redeemer: Pubkey,
        market: Pubkey,
        vault: Pubkey,
        winning_mint: Pubkey,
        redeemer_winning_account: Pubkey,
        redeemer_asset_account: Pubkey,
        amount: int,
    ) -> Operation:
        return Operation(
            kind=OperationKind.REDEEM,
            program_id=self.program_id,
            accounts=(
                AccountRef(redeemer, is_signer=True),
                AccountRef(market, is_writable=True),
                AccountRef(vault, is_writable=True),
                AccountRef(winning_mint, is_writable=True),
                AccountRef(redeemer_winning_account, is_writable=True),
                AccountRef(redeemer_asset_account, is_writable=True),
                AccountRef(TOKEN_PROGRAM_ID),
            ),
            data=anchor_discriminator("redeem") + struct.pack("<Q", amount),
        )
