"""
Core Layer - Pure building blocks shared by every writer and reader.

This module provides:
    - AddressSpace: Deterministic program-derived address derivation
    - PoolState / Side: Pari-mutuel pool accounting in integer base units
    - ClassifiedError / ErrorKind / ProgramErrorCode: Failure taxonomy
    - classify_failure / classify_simulation: Raw failure -> taxonomy
    - BackoffPolicy / retry_with_backoff / poll_until: Bounded retry combinators

Nothing in this layer performs I/O.
"""

from .addresses import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    DEFAULT_PROGRAM_ID,
    NATIVE_MINT,
    RENT_SYSVAR_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    AddressDerivationError,
    AddressSpace,
    MarketAddresses,
    find_program_address,
)
from .errors import (
    MAX_MESSAGE_LENGTH,
    ClassifiedError,
    EngineError,
    ErrorKind,
    InsufficientBalanceError,
    PreflightError,
    ProgramErrorCode,
    SignerRejectedError,
    classify_failure,
    classify_simulation,
    find_program_code,
    truncate,
)
from .pool_accounting import (
    U64_MAX,
    BetQuote,
    NoWinningBetsError,
    PoolArithmeticError,
    PoolState,
    Side,
    implied_probability,
    quote_bet,
    redemption_payout,
)
from .retry import BackoffPolicy, is_transient, poll_until, retry_with_backoff

__all__ = [
    # Addresses
    "AddressSpace",
    "AddressDerivationError",
    "MarketAddresses",
    "find_program_address",
    "DEFAULT_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "SYSTEM_PROGRAM_ID",
    "RENT_SYSVAR_ID",
    "NATIVE_MINT",
    # Pool accounting
    "Side",
    "PoolState",
    "BetQuote",
    "U64_MAX",
    "PoolArithmeticError",
    "NoWinningBetsError",
    "implied_probability",
    "quote_bet",
    "redemption_payout",
    # Errors
    "ErrorKind",
    "ProgramErrorCode",
    "ClassifiedError",
    "EngineError",
    "PreflightError",
    "InsufficientBalanceError",
    "SignerRejectedError",
    "MAX_MESSAGE_LENGTH",
    "classify_failure",
    "classify_simulation",
    "find_program_code",
    "truncate",
    # Retry
    "BackoffPolicy",
    "retry_with_backoff",
    "poll_until",
    "is_transient",
]
