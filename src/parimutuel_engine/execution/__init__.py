"""
Execution Layer - Write orchestration.

This module provides:
    - TransactionSubmitter: simulate / sign / send / confirm pipeline with
      bounded polling for ambiguous outcomes
    - BetOrchestrator: bet placement with idempotent account provisioning
    - SettlementController: Open -> Settled state machine
    - RedemptionEngine: single and sequential batch redemption
    - MarketCreator: market creation with address-collision retry
    - MarketEngine: facade wiring all of the above to one ledger and cache

Every writer returns an ExecutionResult instead of raising for
classified failures.
"""

from .base import Orchestrator
from .bet_orchestrator import DEFAULT_SUBMISSION_FEE_LAMPORTS, BetOrchestrator
from .market_creation import MAX_COLLISION_RETRIES, MarketCreator
from .redemption import RedemptionEngine, RedemptionRequest
from .results import BatchRedemptionResult, ExecutionResult, RedemptionFailure
from .service import MarketEngine, SignerRequiredError
from .settlement import SettlementController, settlement_violation
from .submitter import SubmissionError, TransactionSubmitter

__all__ = [
    # Facade
    "MarketEngine",
    "SignerRequiredError",
    # Writers
    "Orchestrator",
    "BetOrchestrator",
    "SettlementController",
    "RedemptionEngine",
    "RedemptionRequest",
    "MarketCreator",
    "settlement_violation",
    "DEFAULT_SUBMISSION_FEE_LAMPORTS",
    "MAX_COLLISION_RETRIES",
    # Submission
    "TransactionSubmitter",
    "SubmissionError",
    # Results
    "ExecutionResult",
    "BatchRedemptionResult",
    "RedemptionFailure",
]
