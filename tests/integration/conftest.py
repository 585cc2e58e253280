"""
Integration test fixtures.

FakeLedger executes compiled transactions against an in-memory account
store, emulating just enough of the system, associated-token, token and
market programs for whole lifecycles to run: create, bet, settle and
redeem, with the program's own validation order and error codes.

Every submission is atomic: a failing instruction discards all state
changes of its transaction. Simulation runs on a copy of the state.
"""
import hashlib
import struct
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from parimutuel_engine.core import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    NATIVE_MINT,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    AddressSpace,
    BackoffPolicy,
    ProgramErrorCode,
)
from parimutuel_engine.execution import MarketEngine
from parimutuel_engine.ledger import (
    AccountInfo,
    Cluster,
    ConfirmationTimeoutError,
    KeypairSigner,
    MintInfo,
    RpcError,
    SimulationResult,
    StaticNetworkSelector,
    TokenAccount,
    TransactionStatus,
)
from parimutuel_engine.ledger.accounts import encode_mint, encode_token_account
from parimutuel_engine.markets import OPEN, Market, Settled, decode_market, encode_market

START_TIME = 1_700_000_000
TOKEN_RENT = 2_039_280
MINT_RENT = 1_461_600
MARKET_RENT = 5_435_760
FEE = 5_000
NO_DELAY = BackoffPolicy(max_attempts=3, base_delay=0, max_delay=0)


# =============================================================================
# Ledger Emulator
# =============================================================================


class InstructionFailure(Exception):
    """An instruction failed; carries the wire error and program logs."""

    def __init__(self, err, logs: List[str]):
        super().__init__(str(err))
        self.err = err
        self.logs = logs


def _program_error(code: ProgramErrorCode) -> InstructionFailure:
    return InstructionFailure(
        {"Custom": int(code)},
        [
            f"Program log: AnchorError occurred. Error Code: {code.program_name}. "
            f"Error Number: {int(code)}. Error Message: {code.message}."
        ],
    )


def _token_error(message: str) -> InstructionFailure:
    return InstructionFailure({"Custom": 1}, [f"Program log: Error: {message}"])


def _discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


class _State:
    """Mutable account store used while executing one transaction."""

    def __init__(self, accounts: Dict[Pubkey, AccountInfo]):
        self.accounts = dict(accounts)

    def get(self, address: Pubkey) -> Optional[AccountInfo]:
        return self.accounts.get(address)

    def put(self, address: Pubkey, lamports: int, owner: Pubkey, data: bytes) -> None:
        self.accounts[address] = AccountInfo(address=address, lamports=lamports, owner=owner, data=data)

    def lamports(self, address: Pubkey) -> int:
        info = self.get(address)
        return info.lamports if info else 0

    def add_lamports(self, address: Pubkey, delta: int) -> None:
        info = self.get(address)
        if info is None:
            self.put(address, delta, SYSTEM_PROGRAM_ID, b"")
            return
        if info.lamports + delta < 0:
            raise InstructionFailure(
                {"InsufficientFundsForRent": None},
                [f"Transfer: insufficient lamports {info.lamports}, need {-delta}"],
            )
        self.put(address, info.lamports + delta, info.owner, info.data)

    def token(self, address: Pubkey) -> TokenAccount:
        info = self.get(address)
        if info is None or info.owner != TOKEN_PROGRAM_ID:
            raise InstructionFailure("InvalidAccountData", [f"Program log: {address} is not a token account"])
        return TokenAccount.from_account(info)

    def set_token_amount(self, address: Pubkey, amount: int) -> None:
        info = self.get(address)
        token = TokenAccount.from_account(info)
        self.put(address, info.lamports, TOKEN_PROGRAM_ID, encode_token_account(token.mint, token.owner, amount))

    def mint_supply(self, mint: Pubkey) -> int:
        return MintInfo.decode(mint, self.get(mint).data).supply

    def set_mint_supply(self, mint: Pubkey, supply: int) -> None:
        info = self.get(mint)
        self.put(mint, info.lamports, TOKEN_PROGRAM_ID, encode_mint(supply))

    def market(self, address: Pubkey) -> Market:
        info = self.get(address)
        if info is None:
            raise InstructionFailure("AccountNotInitialized", ["Program log: market account not initialized"])
        return decode_market(address, info.data)

    def put_market(self, market: Market, program_id: Pubkey) -> None:
        lamports = self.lamports(market.address) or MARKET_RENT
        self.put(market.address, lamports, program_id, encode_market(market))


class FakeLedger:
    """
    In-memory LedgerClient that runs the market program's rules.

    Attributes:
        now: Unix time the emulated program validates against
        sent: Signatures of every transaction submitted with send_transaction
        simulations: Number of simulate_transaction calls
    """

    def __init__(self, program_id: Pubkey):
        self.program_id = program_id
        self.accounts: Dict[Pubkey, AccountInfo] = {}
        self.statuses: Dict[str, TransactionStatus] = {}
        self.now = START_TIME
        self.sent: List[str] = []
        self.simulations = 0
        self.timeout_next_confirmation = False
        self.report_next_send_as_processed = False
        self.next_confirmation_error: Optional[Exception] = None

    # -------------------------------------------------------------------------
    # Setup helpers
    # -------------------------------------------------------------------------

    def airdrop(self, owner: Pubkey, lamports: int) -> None:
        state = _State(self.accounts)
        state.add_lamports(owner, lamports)
        self.accounts = state.accounts

    def create_mint(self) -> Pubkey:
        mint = Pubkey.new_unique()
        self.accounts[mint] = AccountInfo(mint, MINT_RENT, TOKEN_PROGRAM_ID, encode_mint(0, 6))
        return mint

    def fund_tokens(self, owner: Pubkey, mint: Pubkey, amount: int) -> Pubkey:
        address = AddressSpace.derive_owner_asset_account(owner, mint)
        self.accounts[address] = AccountInfo(
            address, TOKEN_RENT, TOKEN_PROGRAM_ID, encode_token_account(mint, owner, amount)
        )
        return address

    def token_amount(self, address: Pubkey) -> int:
        info = self.accounts.get(address)
        return TokenAccount.from_account(info).amount if info else 0

    def supply(self, mint: Pubkey) -> int:
        return MintInfo.decode(mint, self.accounts[mint].data).supply

    def market(self, address: Pubkey) -> Market:
        return decode_market(address, self.accounts[address].data)

    # -------------------------------------------------------------------------
    # LedgerClient
    # -------------------------------------------------------------------------

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        return self.accounts.get(address)

    async def get_multiple_accounts(self, addresses: Sequence[Pubkey]) -> List[Optional[AccountInfo]]:
        return [self.accounts.get(a) for a in addresses]

    async def get_program_accounts(self, program_id: Pubkey, discriminator: bytes) -> List[AccountInfo]:
        return [
            info for info in self.accounts.values()
            if info.owner == program_id and info.data.startswith(discriminator)
        ]

    async def get_token_accounts_by_owner(self, owner: Pubkey, token_program: Pubkey) -> List[AccountInfo]:
        return [
            info for info in self.accounts.values()
            if info.owner == token_program
            and len(info.data) == 165
            and TokenAccount.from_account(info).owner == owner
        ]

    async def get_balance(self, address: Pubkey) -> int:
        info = self.accounts.get(address)
        return info.lamports if info else 0

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return TOKEN_RENT

    async def get_latest_blockhash(self) -> Hash:
        return Hash.new_unique()

    async def simulate_transaction(self, transaction: Transaction) -> SimulationResult:
        self.simulations += 1
        try:
            self._execute(transaction, _State(self.accounts))
        except InstructionFailure as failure:
            return SimulationResult(err=failure.err, logs=failure.logs)
        return SimulationResult(logs=["Program log: simulation ok"])

    async def send_transaction(self, transaction: Transaction) -> str:
        signature = str(transaction.signatures[0])
        payer = transaction.message.account_keys[0]
        self.sent.append(signature)

        state = _State(self.accounts)
        state.add_lamports(payer, -FEE)
        err = None
        try:
            self._execute(transaction, state)
        except InstructionFailure as failure:
            err = failure.err
            state = _State(self.accounts)
            state.add_lamports(payer, -FEE)
        self.accounts = state.accounts
        self.statuses[signature] = TransactionStatus(signature, "confirmed", err=err, slot=len(self.sent))

        if self.report_next_send_as_processed:
            self.report_next_send_as_processed = False
            raise RpcError("Transaction simulation failed: This transaction has already been processed")
        return signature

    async def get_signature_status(self, signature: str) -> Optional[TransactionStatus]:
        return self.statuses.get(signature)

    async def confirm_transaction(self, signature: str) -> TransactionStatus:
        if self.timeout_next_confirmation:
            self.timeout_next_confirmation = False
            raise ConfirmationTimeoutError(signature, 60)
        if self.next_confirmation_error is not None:
            error, self.next_confirmation_error = self.next_confirmation_error, None
            raise error
        return self.statuses[signature]

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _execute(self, transaction: Transaction, state: _State) -> None:
        message = transaction.message
        keys = message.account_keys
        for index, instruction in enumerate(message.instructions):
            program = keys[instruction.program_id_index]
            accounts = [keys[i] for i in instruction.accounts]
            data = bytes(instruction.data)
            try:
                self._dispatch(state, program, accounts, data)
            except InstructionFailure as failure:
                if isinstance(failure.err, dict) and "Custom" in failure.err:
                    failure.err = {"InstructionError": [index, failure.err]}
                raise

    def _dispatch(self, state: _State, program: Pubkey, accounts: List[Pubkey], data: bytes) -> None:
        if program == SYSTEM_PROGRAM_ID:
            _, lamports = struct.unpack("<IQ", data)
            state.add_lamports(accounts[0], -lamports)
            state.add_lamports(accounts[1], lamports)
        elif program == ASSOCIATED_TOKEN_PROGRAM_ID:
            self._create_associated(state, *accounts[:4])
        elif program == TOKEN_PROGRAM_ID:
            self._token(state, accounts, data)
        elif program == self.program_id:
            self._market_program(state, accounts, data)
        else:
            raise InstructionFailure("UnsupportedProgramId", [f"Unknown program {program}"])

    def _create_associated(self, state, payer, account, owner, mint) -> None:
        if state.get(account) is not None:
            raise InstructionFailure("AccountAlreadyInitialized", ["Allocate: account already in use"])
        if account != AddressSpace.derive_owner_asset_account(owner, mint):
            raise InstructionFailure("InvalidSeeds", ["Associated address does not match seed derivation"])
        state.add_lamports(payer, -TOKEN_RENT)
        state.put(account, TOKEN_RENT, TOKEN_PROGRAM_ID, encode_token_account(mint, owner, 0))

    def _token(self, state: _State, accounts: List[Pubkey], data: bytes) -> None:
        if data == bytes([17]):  # SyncNative
            state.token(accounts[0])
            state.set_token_amount(accounts[0], state.lamports(accounts[0]) - TOKEN_RENT)
        elif data == bytes([9]):  # CloseAccount
            account, destination, _owner = accounts
            token = state.token(account)
            if token.mint != NATIVE_MINT and token.amount:
                raise _token_error("Non-native account can only be closed if its balance is zero")
            state.add_lamports(destination, state.lamports(account))
            del state.accounts[account]
        else:
            raise InstructionFailure("InvalidInstructionData", ["Unsupported token instruction"])

    def _move_tokens(self, state: _State, source: Pubkey, destination: Pubkey, amount: int) -> None:
        src = state.token(source)
        dst = state.token(destination)
        if src.amount < amount:
            raise _token_error("insufficient funds")
        state.set_token_amount(source, src.amount - amount)
        state.set_token_amount(destination, dst.amount + amount)
        if src.mint == NATIVE_MINT:
            state.add_lamports(source, -amount)
            state.add_lamports(destination, amount)

    # -------------------------------------------------------------------------
    # Market program
    # -------------------------------------------------------------------------

    def _market_program(self, state: _State, accounts: List[Pubkey], data: bytes) -> None:
        tag, body = data[:8], data[8:]
        if tag == _discriminator("create_market"):
            self._create_market(state, accounts, body)
        elif tag == _discriminator("place_bet"):
            amount, side = struct.unpack("<Q?", body)
            self._place_bet(state, accounts, amount, side)
        elif tag == _discriminator("settle_market"):
            self._settle_market(state, accounts, body[0] == 1)
        elif tag == _discriminator("redeem"):
            (amount,) = struct.unpack("<Q", body)
            self._redeem(state, accounts, amount)
        else:
            raise InstructionFailure({"Custom": 101}, ["Program log: Fallback functions are not supported"])

    def _create_market(self, state: _State, accounts: List[Pubkey], body: bytes) -> None:
        creator, market_address, bet_mint, yes_mint, no_mint, vault = accounts[:6]
        offset = 0
        strings = []
        for _ in range(2):
            (length,) = struct.unpack_from("<I", body, offset)
            strings.append(body[offset + 4:offset + 4 + length].decode("utf-8"))
            offset += 4 + length
        title, description = strings
        (expiry,) = struct.unpack_from("<q", body, offset)

        space = AddressSpace(self.program_id)
        expected, bump = space.derive_market_address(creator, bet_mint, expiry)
        if market_address != expected:
            raise InstructionFailure("ConstraintSeeds", ["Program log: market seeds mismatch"])
        if state.get(market_address) is not None:
            raise InstructionFailure("AccountAlreadyInitialized", ["Allocate: account already in use"])
        if expiry <= self.now:
            raise _program_error(ProgramErrorCode.EXPIRY_IN_PAST)
        if len(title.encode()) > 128:
            raise _program_error(ProgramErrorCode.TITLE_TOO_LONG)
        if len(description.encode()) > 512:
            raise _program_error(ProgramErrorCode.DESCRIPTION_TOO_LONG)

        state.add_lamports(creator, -(MARKET_RENT + 2 * MINT_RENT + TOKEN_RENT))
        state.put(yes_mint, MINT_RENT, TOKEN_PROGRAM_ID, encode_mint(0))
        state.put(no_mint, MINT_RENT, TOKEN_PROGRAM_ID, encode_mint(0))
        state.put(vault, TOKEN_RENT, TOKEN_PROGRAM_ID, encode_token_account(bet_mint, market_address, 0))
        state.put_market(
            Market(
                address=market_address,
                creator=creator,
                title=title,
                description=description,
                bet_mint=bet_mint,
                vault=vault,
                yes_mint=yes_mint,
                no_mint=no_mint,
                yes_pool=0,
                no_pool=0,
                expiry_timestamp=expiry,
                status=OPEN,
                bump=bump,
            ),
            self.program_id,
        )

    def _place_bet(self, state: _State, accounts: List[Pubkey], amount: int, side: bool) -> None:
        _bettor, market_address, bet_mint, yes_mint, no_mint, vault, asset, yes_acc, no_acc = accounts[:9]
        market = state.market(market_address)
        if market.bet_mint != bet_mint:
            raise _program_error(ProgramErrorCode.INVALID_BET_TOKEN)
        if (market.yes_mint, market.no_mint) != (yes_mint, no_mint):
            raise _program_error(ProgramErrorCode.INVALID_MINT)
        if market.vault != vault:
            raise _program_error(ProgramErrorCode.INVALID_VAULT)
        if amount == 0:
            raise _program_error(ProgramErrorCode.INVALID_BET_AMOUNT)
        if not market.is_open:
            raise _program_error(ProgramErrorCode.MARKET_NOT_OPEN)
        if self.now >= market.expiry_timestamp:
            raise _program_error(ProgramErrorCode.MARKET_EXPIRED)

        self._move_tokens(state, asset, vault, amount)
        share_mint, share_account = (yes_mint, yes_acc) if side else (no_mint, no_acc)
        state.set_token_amount(share_account, state.token(share_account).amount + amount)
        state.set_mint_supply(share_mint, state.mint_supply(share_mint) + amount)

        if side:
            updated = replace(market, yes_pool=market.yes_pool + amount)
        else:
            updated = replace(market, no_pool=market.no_pool + amount)
        state.put_market(updated, self.program_id)

    def _settle_market(self, state: _State, accounts: List[Pubkey], outcome: bool) -> None:
        caller, market_address = accounts[:2]
        market = state.market(market_address)
        # account constraints run before the handler body
        if market.creator != caller:
            raise _program_error(ProgramErrorCode.UNAUTHORIZED)
        if not market.is_open:
            raise _program_error(ProgramErrorCode.ALREADY_SETTLED)
        if self.now < market.expiry_timestamp:
            raise _program_error(ProgramErrorCode.MARKET_NOT_EXPIRED)
        state.put_market(replace(market, status=Settled(outcome=outcome)), self.program_id)

    def _redeem(self, state: _State, accounts: List[Pubkey], amount: int) -> None:
        _redeemer, market_address, vault, winning_mint, winning_acc, asset = accounts[:6]
        market = state.market(market_address)
        if amount == 0:
            raise _program_error(ProgramErrorCode.INVALID_AMOUNT)
        if not market.is_settled:
            raise _program_error(ProgramErrorCode.NOT_SETTLED)
        if winning_mint != market.share_mint(market.winning_side):
            raise _program_error(ProgramErrorCode.WRONG_MINT)

        supply = state.mint_supply(winning_mint)
        if supply == 0:
            raise _program_error(ProgramErrorCode.NO_WINNING_BETS)
        vault_amount = state.token(vault).amount
        if vault_amount == 0:
            raise _program_error(ProgramErrorCode.VAULT_EMPTY)
        payout = min((amount * vault_amount) // supply, vault_amount)
        if payout == 0:
            raise _program_error(ProgramErrorCode.PAYOUT_TOO_SMALL)

        held = state.token(winning_acc).amount
        if held < amount:
            raise _token_error("insufficient funds")
        state.set_token_amount(winning_acc, held - amount)
        state.set_mint_supply(winning_mint, supply - amount)
        self._move_tokens(state, vault, asset, payout)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def program_id():
    return Pubkey.new_unique()


@pytest.fixture
def ledger(program_id):
    return FakeLedger(program_id)


@pytest.fixture
def bet_mint(ledger):
    """A non-native bet asset with 6 decimals."""
    return ledger.create_mint()


@pytest.fixture
def make_engine(ledger, program_id):
    """Engine for a fresh, funded identity."""

    def build(lamports: int = 10_000_000_000):
        keypair = Keypair()
        ledger.airdrop(keypair.pubkey(), lamports)
        return MarketEngine(
            ledger,
            StaticNetworkSelector(Cluster.LOCALNET),
            program_id,
            signer=KeypairSigner(keypair),
            retry_policy=NO_DELAY,
            ambiguous_policy=NO_DELAY,
            clock=lambda: ledger.now,
        )

    return build


@pytest.fixture
def creator(make_engine):
    return make_engine()


@pytest.fixture
def alice(make_engine):
    return make_engine()


@pytest.fixture
def bob(make_engine):
    return make_engine()


@pytest.fixture
def open_market(creator, bet_mint, ledger):
    """Create a market expiring in one hour; returns its address."""

    async def create(title: str = "Will it rain tomorrow?", mint: Optional[Pubkey] = None):
        result = await creator.create_market(title, "", mint or bet_mint, ledger.now + 3600)
        assert result.success, result.to_dict(debug=True)
        return result.market

    return create


@pytest.fixture
def token_rent():
    return TOKEN_RENT


@pytest.fixture
def fee():
    return FEE


@pytest.fixture
def no_delay():
    return NO_DELAY
