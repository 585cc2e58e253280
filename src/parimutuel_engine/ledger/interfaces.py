"""
Collaborator interfaces consumed by the engine.

The engine never reaches for global state: every orchestrator is built
with an explicit LedgerClient, SignerHandle and NetworkSelector.

    LedgerClient    - account/balance queries, fee and storage estimates,
                      simulation, submission and confirmation
    SignerHandle    - signs proposed transactions; may refuse
    NetworkSelector - the active cluster, used only to scope cache keys

Absent accounts are a normal answer (None), never an exception.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction


@dataclass(frozen=True)
class AccountInfo:
    """Raw ledger account."""

    address: Pubkey
    lamports: int
    owner: Pubkey
    data: bytes
    executable: bool = False


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of simulating a transaction against current state."""

    err: Optional[Any] = None
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.err is None


@dataclass(frozen=True)
class TransactionStatus:
    """Confirmation status of a submitted transaction."""

    signature: str
    confirmation_status: Optional[str] = None  # processed / confirmed / finalized
    err: Optional[Any] = None
    slot: Optional[int] = None

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_status in ("confirmed", "finalized")

    @property
    def failed(self) -> bool:
        return self.err is not None


@runtime_checkable
class LedgerClient(Protocol):
    """Async access to ledger state and submission."""

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        ...

    async def get_multiple_accounts(
        self, addresses: Sequence[Pubkey]
    ) -> List[Optional[AccountInfo]]:
        ...

    async def get_program_accounts(
        self, program_id: Pubkey, discriminator: bytes
    ) -> List[AccountInfo]:
        ...

    async def get_token_accounts_by_owner(
        self, owner: Pubkey, token_program: Pubkey
    ) -> List[AccountInfo]:
        ...

    async def get_balance(self, address: Pubkey) -> int:
        ...

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        ...

    async def get_latest_blockhash(self) -> Hash:
        ...

    async def simulate_transaction(self, transaction: Transaction) -> SimulationResult:
        ...

    async def send_transaction(self, transaction: Transaction) -> str:
        ...

    async def get_signature_status(self, signature: str) -> Optional[TransactionStatus]:
        ...

    async def confirm_transaction(self, signature: str) -> TransactionStatus:
        ...


@runtime_checkable
class SignerHandle(Protocol):
    """
    Produces signatures for proposed transactions.

    Implementations raise SignerRejectedError when they decline.
    """

    @property
    def public_key(self) -> Pubkey:
        ...

    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        ...


@runtime_checkable
class NetworkSelector(Protocol):
    """Identity of the active network."""

    @property
    def cluster(self) -> str:
        ...
