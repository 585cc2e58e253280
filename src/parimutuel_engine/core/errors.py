"""
Failure taxonomy shared by every writer.

Any failure the engine can see (a local pre-flight rejection, a signer
refusal, an RPC transport error, a simulation error with its program
logs, a confirmation-level failure) is turned into exactly one
ClassifiedError. Kinds are matched in priority order:

    UserRejected > StaleSubmission > RateLimited > Timeout >
    NetworkUnavailable > ProgramError(code) > AccountNotFound >
    InsufficientBalance > Unknown

Program error codes are the Anchor custom codes of the market program
(6000 + variant index). Unknown messages are truncated to
MAX_MESSAGE_LENGTH before they reach a caller.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional, Sequence

MAX_MESSAGE_LENGTH = 256


class ErrorKind(str, Enum):
    """Top-level failure categories."""

    USER_REJECTED = "user_rejected"
    STALE_SUBMISSION = "stale_submission"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK_UNAVAILABLE = "network_unavailable"
    PROGRAM_ERROR = "program_error"
    ACCOUNT_NOT_FOUND = "account_not_found"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK_UNAVAILABLE,
})


class ProgramErrorCode(IntEnum):
    """Custom error codes raised by the market program."""

    EXPIRY_IN_PAST = 6000
    TITLE_TOO_LONG = 6001
    DESCRIPTION_TOO_LONG = 6002
    MARKET_NOT_OPEN = 6003
    MARKET_EXPIRED = 6004
    INVALID_BET_TOKEN = 6005
    INVALID_MINT = 6006
    INVALID_VAULT = 6007
    INVALID_BET_AMOUNT = 6008
    ARITHMETIC_OVERFLOW = 6009
    UNAUTHORIZED = 6010
    ALREADY_SETTLED = 6011
    MARKET_NOT_EXPIRED = 6012
    NOT_SETTLED = 6013
    WRONG_MINT = 6014
    INVALID_AMOUNT = 6015
    NO_WINNING_BETS = 6016
    VAULT_EMPTY = 6017
    PAYOUT_TOO_SMALL = 6018

    @property
    def program_name(self) -> str:
        """Variant name as the program logs it (e.g. MarketNotExpired)."""
        return "".join(part.capitalize() for part in self.name.split("_"))

    @property
    def message(self) -> str:
        return PROGRAM_ERROR_MESSAGES[self]

    @property
    def category(self) -> str:
        return PROGRAM_ERROR_CATEGORIES[self]


PROGRAM_ERROR_MESSAGES = {
    ProgramErrorCode.EXPIRY_IN_PAST: "Expiry timestamp must be in the future",
    ProgramErrorCode.TITLE_TOO_LONG: "Title exceeds maximum length of 128 characters",
    ProgramErrorCode.DESCRIPTION_TOO_LONG: "Description exceeds maximum length of 512 characters",
    ProgramErrorCode.MARKET_NOT_OPEN: "Market is not open",
    ProgramErrorCode.MARKET_EXPIRED: "Market has expired",
    ProgramErrorCode.INVALID_BET_TOKEN: "Invalid bet token",
    ProgramErrorCode.INVALID_MINT: "Invalid mint",
    ProgramErrorCode.INVALID_VAULT: "Invalid vault",
    ProgramErrorCode.INVALID_BET_AMOUNT: "Bet amount must be positive",
    ProgramErrorCode.ARITHMETIC_OVERFLOW: "Arithmetic overflow",
    ProgramErrorCode.UNAUTHORIZED: "Only the market creator can settle this market",
    ProgramErrorCode.ALREADY_SETTLED: "Market has already been settled",
    ProgramErrorCode.MARKET_NOT_EXPIRED: "Market has not expired yet",
    ProgramErrorCode.NOT_SETTLED: "Market not settled yet",
    ProgramErrorCode.WRONG_MINT: "Wrong mint for redemption",
    ProgramErrorCode.INVALID_AMOUNT: "Amount must be positive",
    ProgramErrorCode.NO_WINNING_BETS: "No winning bets to redeem against",
    ProgramErrorCode.VAULT_EMPTY: "Vault is empty",
    ProgramErrorCode.PAYOUT_TOO_SMALL: "Payout amount is too small",
}

PROGRAM_ERROR_CATEGORIES = {
    ProgramErrorCode.EXPIRY_IN_PAST: "validation",
    ProgramErrorCode.TITLE_TOO_LONG: "validation",
    ProgramErrorCode.DESCRIPTION_TOO_LONG: "validation",
    ProgramErrorCode.INVALID_BET_AMOUNT: "validation",
    ProgramErrorCode.INVALID_AMOUNT: "validation",
    ProgramErrorCode.INVALID_BET_TOKEN: "validation",
    ProgramErrorCode.INVALID_MINT: "validation",
    ProgramErrorCode.INVALID_VAULT: "validation",
    ProgramErrorCode.UNAUTHORIZED: "authorization",
    ProgramErrorCode.MARKET_NOT_OPEN: "state",
    ProgramErrorCode.MARKET_EXPIRED: "state",
    ProgramErrorCode.ALREADY_SETTLED: "state",
    ProgramErrorCode.MARKET_NOT_EXPIRED: "state",
    ProgramErrorCode.NOT_SETTLED: "state",
    ProgramErrorCode.WRONG_MINT: "state",
    ProgramErrorCode.ARITHMETIC_OVERFLOW: "arithmetic",
    ProgramErrorCode.NO_WINNING_BETS: "payout",
    ProgramErrorCode.VAULT_EMPTY: "payout",
    ProgramErrorCode.PAYOUT_TOO_SMALL: "payout",
}

_PROGRAM_CODES_BY_NAME = {code.program_name: code for code in ProgramErrorCode}

KIND_MESSAGES = {
    ErrorKind.USER_REJECTED: "Transaction was rejected by the wallet",
    ErrorKind.STALE_SUBMISSION: "Transaction expired. Please try again.",
    ErrorKind.RATE_LIMITED: "RPC rate limit reached. Please wait a moment and try again.",
    ErrorKind.TIMEOUT: "Request timed out. The RPC endpoint may be overloaded.",
    ErrorKind.NETWORK_UNAVAILABLE: "Network error. Please check your connection and try again.",
    ErrorKind.ACCOUNT_NOT_FOUND: "Account not found on chain",
}

_USER_REJECTED = ("user rejected", "transaction rejected", "rejected the request")
_STALE = ("blockhash not found", "blockhashnotfound", "block height exceeded")
_RATE_LIMITED = ("too many requests", "rate limit")
_HTTP_429 = re.compile(r"\b429\b")
_TIMEOUT = ("timeout", "timed out", "etimedout")
_NETWORK = ("failed to fetch", "networkerror", "econnrefused", "cannot connect", "connection refused")
_ACCOUNT_NOT_FOUND = ("account does not exist", "could not find account", "accountnotfound")
_INSUFFICIENT_LOGS = ("insufficient funds", "insufficient lamports")

_HEX_CODE = re.compile(r"custom program error:\s*0x([0-9a-fA-F]+)", re.IGNORECASE)
_CUSTOM_CODE = re.compile(r"""['"]?Custom['"]?\s*:\s*(\d+)""")
_ERROR_NUMBER = re.compile(r"Error Number:\s*(\d+)")
_ERROR_NAME = re.compile(r"Error Code:\s*(\w+)")


def truncate(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Bound a diagnostic message before it is surfaced."""
    if len(message) > limit:
        return message[:limit] + "..."
    return message


@dataclass(frozen=True)
class ClassifiedError:
    """
    One tagged failure.

    Attributes:
        kind: Taxonomy category
        message: Taxonomy-level text, safe to show an end user
        code: Program error code for PROGRAM_ERROR (known or not)
        detail: Truncated raw diagnostic text, for development contexts
        local: True when raised by pre-flight checks before any network call
    """

    kind: ErrorKind
    message: str
    code: Optional[int] = None
    detail: Optional[str] = None
    local: bool = False

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def program_error(self) -> Optional[ProgramErrorCode]:
        if self.code is None:
            return None
        try:
            return ProgramErrorCode(self.code)
        except ValueError:
            return None

    def describe(self, debug: bool = False) -> str:
        """Message for a caller; raw detail is only appended in debug mode."""
        if debug and self.detail and self.detail != self.message:
            return f"{self.message} ({self.detail})"
        return self.message

    @classmethod
    def program(
        cls,
        code: int,
        local: bool = False,
        detail: Optional[str] = None,
    ) -> "ClassifiedError":
        """Program error from a numeric code, known or not."""
        try:
            message = ProgramErrorCode(code).message
        except ValueError:
            message = f"Program error (code {code})"
        return cls(
            kind=ErrorKind.PROGRAM_ERROR,
            message=message,
            code=int(code),
            detail=detail,
            local=local,
        )

    @classmethod
    def of_kind(
        cls,
        kind: ErrorKind,
        detail: Optional[str] = None,
        local: bool = False,
    ) -> "ClassifiedError":
        message = KIND_MESSAGES.get(kind) or truncate(detail or "An unknown error occurred")
        return cls(kind=kind, message=message, detail=detail, local=local)


class EngineError(Exception):
    """Base class for failures that already carry a classification."""

    def __init__(self, classified: ClassifiedError):
        super().__init__(classified.message)
        self.classified = classified


class PreflightError(EngineError):
    """
    Raised by local checks BEFORE anything touches the network.

    No fee was spent and nothing was submitted.
    """

    @classmethod
    def program(cls, code: ProgramErrorCode) -> "PreflightError":
        return cls(ClassifiedError.program(code, local=True))


class InsufficientBalanceError(PreflightError):
    """Raised when a local balance check fails."""

    def __init__(self, required: int, available: int, asset: Optional[str] = None):
        self.required = required
        self.available = available
        self.asset = asset
        suffix = f" of {asset}" if asset else ""
        message = f"Insufficient balance{suffix}: required {required}, available {available}"
        super().__init__(ClassifiedError(
            kind=ErrorKind.INSUFFICIENT_BALANCE,
            message=message,
            detail=message,
            local=True,
        ))


class SignerRejectedError(Exception):
    """Raised by a signer that declines to sign."""

    def __init__(self, message: str = "User rejected the request"):
        super().__init__(message)


def _describe(failure: Any) -> str:
    """Flatten any failure shape into searchable text."""
    if failure is None:
        return ""
    if isinstance(failure, BaseException):
        text = str(failure) or type(failure).__name__
        data = getattr(failure, "data", None)
        if data:
            text = f"{text} {_describe(data)}"
        return text
    if isinstance(failure, str):
        return failure
    try:
        return json.dumps(failure, default=str)
    except (TypeError, ValueError):
        return repr(failure)


def _contains(text: str, needles: Sequence[str]) -> bool:
    return any(needle in text for needle in needles)


def find_program_code(text: str) -> Optional[int]:
    """Extract a program error code from a message or log line."""
    for pattern, base in ((_HEX_CODE, 16), (_CUSTOM_CODE, 10), (_ERROR_NUMBER, 10)):
        match = pattern.search(text)
        if match:
            return int(match.group(1), base)
    match = _ERROR_NAME.search(text)
    if match and match.group(1) in _PROGRAM_CODES_BY_NAME:
        return int(_PROGRAM_CODES_BY_NAME[match.group(1)])
    return None


def classify_failure(failure: Any) -> ClassifiedError:
    """
    Map a raw failure (exception, message, RPC error object) to one kind.

    Failures that were already classified (EngineError) pass through
    unchanged.
    """
    if isinstance(failure, EngineError):
        return failure.classified

    text = _describe(failure)
    lowered = text.lower()
    detail = truncate(text) if text else None

    if isinstance(failure, SignerRejectedError) or _contains(lowered, _USER_REJECTED):
        return ClassifiedError.of_kind(ErrorKind.USER_REJECTED, detail)
    if _contains(lowered, _STALE):
        return ClassifiedError.of_kind(ErrorKind.STALE_SUBMISSION, detail)
    if _contains(lowered, _RATE_LIMITED) or _HTTP_429.search(text):
        return ClassifiedError.of_kind(ErrorKind.RATE_LIMITED, detail)
    # TimeoutError is an OSError subclass; it must win over ConnectionError
    if isinstance(failure, TimeoutError) or _contains(lowered, _TIMEOUT):
        return ClassifiedError.of_kind(ErrorKind.TIMEOUT, detail)
    if isinstance(failure, ConnectionError) or _contains(lowered, _NETWORK):
        return ClassifiedError.of_kind(ErrorKind.NETWORK_UNAVAILABLE, detail)

    code = find_program_code(text)
    if code is not None:
        return ClassifiedError.program(code, detail=detail)

    if _contains(lowered, _ACCOUNT_NOT_FOUND):
        return ClassifiedError.of_kind(ErrorKind.ACCOUNT_NOT_FOUND, detail)
    if text.startswith("Insufficient") or _contains(lowered, _INSUFFICIENT_LOGS):
        return ClassifiedError(
            kind=ErrorKind.INSUFFICIENT_BALANCE,
            message=truncate(text),
            detail=detail,
        )

    return ClassifiedError.of_kind(ErrorKind.UNKNOWN, detail)


def classify_simulation(err: Any, logs: Optional[Sequence[str]] = None) -> ClassifiedError:
    """
    Classify a failed simulation, preferring program logs over the error.

    Market program codes found in the logs win; then insufficient-funds
    lines from the token/system programs; then the error object itself.
    """
    log_lines = list(logs or [])
    for line in log_lines:
        code = find_program_code(line)
        if code is not None and code in PROGRAM_ERROR_MESSAGES:
            return ClassifiedError.program(code, detail=truncate(line))
    for line in log_lines:
        if _contains(line.lower(), _INSUFFICIENT_LOGS):
            return ClassifiedError(
                kind=ErrorKind.INSUFFICIENT_BALANCE,
                message="Insufficient funds for this transaction",
                detail=truncate(line),
            )
    return classify_failure(err if err is not None else " ".join(log_lines))
