"""
Result types returned by the write APIs.

Writers never raise for classified failures: they return an
ExecutionResult whose `error` carries the ClassifiedError.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from solders.pubkey import Pubkey

from parimutuel_engine.core.errors import ClassifiedError


@dataclass
class ExecutionResult:
    """Result of one write attempt."""

    success: bool
    signature: Optional[str] = None
    market: Optional[Pubkey] = None
    error: Optional[ClassifiedError] = None
    payout_estimate: Optional[int] = None  # redemption only; never authoritative
    skipped: bool = False  # another submission was already in flight

    @property
    def error_type(self) -> Optional[str]:
        return self.error.kind.value if self.error else None

    def message(self, debug: bool = False) -> Optional[str]:
        return self.error.describe(debug) if self.error else None

    @classmethod
    def succeeded(
        cls,
        signature: str,
        market: Optional[Pubkey] = None,
        payout_estimate: Optional[int] = None,
    ) -> "ExecutionResult":
        return cls(
            success=True,
            signature=signature,
            market=market,
            payout_estimate=payout_estimate,
        )

    @classmethod
    def failed(
        cls,
        error: ClassifiedError,
        market: Optional[Pubkey] = None,
    ) -> "ExecutionResult":
        return cls(success=False, market=market, error=error)

    @classmethod
    def busy(cls, market: Optional[Pubkey] = None) -> "ExecutionResult":
        return cls(success=False, market=market, skipped=True)

    def to_dict(self, debug: bool = False) -> dict:
        return {
            "success": self.success,
            "signature": self.signature,
            "market": str(self.market) if self.market else None,
            "error": self.message(debug),
            "error_type": self.error_type,
            "error_code": self.error.code if self.error else None,
            "payout_estimate": self.payout_estimate,
            "skipped": self.skipped,
        }


@dataclass
class RedemptionFailure:
    market: Pubkey
    error: ClassifiedError

    def to_dict(self, debug: bool = False) -> dict:
        return {
            "market": str(self.market),
            "error": self.error.describe(debug),
            "error_type": self.error.kind.value,
            "error_code": self.error.code,
        }


@dataclass
class BatchRedemptionResult:
    """
    Outcome of a sequential batch redemption.

    Every item lands in exactly one list, in input order.
    """

    succeeded: List[ExecutionResult] = field(default_factory=list)
    failed: List[RedemptionFailure] = field(default_factory=list)
    skipped: bool = False

    @property
    def succeeded_markets(self) -> List[Pubkey]:
        return [r.market for r in self.succeeded if r.market is not None]

    @property
    def failed_markets(self) -> List[Pubkey]:
        return [f.market for f in self.failed]

    def to_dict(self, debug: bool = False) -> dict:
        return {
            "succeeded": [r.to_dict(debug) for r in self.succeeded],
            "failed": [f.to_dict(debug) for f in self.failed],
            "skipped": self.skipped,
        }
