"""
Transaction submission pipeline shared by every writer.

    compile -> simulate -> sign -> send -> confirm

Simulation runs on the unsigned batch, so a doomed batch is rejected
before the signer is asked and before any fee is spent. Every failure
leaves this module as a SubmissionError carrying its ClassifiedError.

An outcome is ambiguous when the node reports the transaction was
already processed, when the send times out or loses its connection, or
when confirmation fails transiently after the node accepted the send.
Ambiguous outcomes are resolved by polling a bounded number of times
for proof of success: the expected resulting account when the caller
names one, the signature status otherwise.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from solders.pubkey import Pubkey
from solders.transaction import Transaction

from parimutuel_engine.core.errors import (
    ClassifiedError,
    EngineError,
    classify_failure,
    classify_simulation,
)
from parimutuel_engine.core.retry import BackoffPolicy, is_transient, poll_until, retry_with_backoff
from parimutuel_engine.ledger.instructions import OperationBatch
from parimutuel_engine.ledger.interfaces import LedgerClient, SignerHandle
from parimutuel_engine.ledger.rpc_client import ConfirmationTimeoutError

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "already been processed"


class SubmissionError(EngineError):
    """Raised when a batch fails at any stage of the pipeline."""

    def __init__(self, classified: ClassifiedError, stage: str):
        super().__init__(classified)
        self.stage = stage


def _is_ambiguous(error: BaseException, sent: bool) -> bool:
    """
    True when the transaction may have landed despite `error`.

    A send that timed out or lost its connection may still have reached
    the node. Once the node has accepted the transaction, any transient
    failure while confirming leaves the outcome unknown.
    """
    if isinstance(error, (ConfirmationTimeoutError, TimeoutError, ConnectionError)):
        return True
    if ALREADY_PROCESSED in str(error).lower():
        return True
    return sent and is_transient(error)


class TransactionSubmitter:
    """
    Runs one operation batch through the submission pipeline.

    Usage:
        submitter = TransactionSubmitter(ledger, signer)
        signature = await submitter.submit(batch, description="place bet")
    """

    def __init__(
        self,
        ledger: LedgerClient,
        signer: SignerHandle,
        retry_policy: Optional[BackoffPolicy] = None,
        ambiguous_policy: Optional[BackoffPolicy] = None,
    ):
        self.ledger = ledger
        self.signer = signer
        self.retry_policy = retry_policy or BackoffPolicy()
        self.ambiguous_policy = ambiguous_policy or BackoffPolicy(max_attempts=10, base_delay=1.0)

    async def submit(
        self,
        batch: OperationBatch,
        expected_account: Optional[Pubkey] = None,
        description: str = "transaction",
    ) -> str:
        """
        Simulate, sign, send and confirm `batch`.

        Args:
            batch: Operations to submit as one transaction
            expected_account: Account whose existence proves success when
                the outcome is ambiguous (e.g. a newly created market)
            description: Label for logs

        Returns:
            The transaction signature

        Raises:
            SubmissionError: Classified failure, with the failing stage
        """
        blockhash = await self._stage(
            "blockhash",
            retry_with_backoff(
                self.ledger.get_latest_blockhash,
                self.retry_policy,
                description="fetch latest blockhash",
            ),
        )
        transaction = batch.compile(blockhash)

        simulation = await self._stage(
            "simulation",
            retry_with_backoff(
                lambda: self.ledger.simulate_transaction(transaction),
                self.retry_policy,
                description=f"simulate {description}",
            ),
        )
        if not simulation.success:
            classified = classify_simulation(simulation.err, simulation.logs)
            logger.warning(f"Simulation of {description} failed: {classified.message}")
            logger.debug(f"Simulation logs for {description}: {simulation.logs}")
            raise SubmissionError(classified, stage="simulation")

        signed = await self._stage("signing", self.signer.sign_transaction(transaction))
        signature = str(signed.signatures[0])
        logger.info(f"Submitting {description} ({len(batch)} operations): {signature}")

        sent = False
        try:
            signature = await self._send(signed)
            sent = True
            status = await self.ledger.confirm_transaction(signature)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not _is_ambiguous(e, sent):
                raise self._failure(e, "submission", description) from e
            logger.warning(f"Outcome of {description} is ambiguous ({e}), polling for proof")
            if await self._resolve_ambiguous(signature, expected_account, description):
                logger.info(f"Confirmed {description} after ambiguous outcome: {signature}")
                return signature
            raise self._failure(e, "confirmation", description) from e

        if status.failed:
            classified = classify_failure(status.err)
            logger.warning(f"{description} failed on confirmation: {classified.message}")
            logger.debug(f"Confirmation error for {signature}: {status.err}")
            raise SubmissionError(classified, stage="confirmation")

        logger.info(f"Confirmed {description}: {signature}")
        return signature

    async def _stage(self, stage: str, awaitable):
        try:
            return await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise self._failure(e, stage, stage) from e

    @staticmethod
    def _failure(error: BaseException, stage: str, description: str) -> SubmissionError:
        if isinstance(error, SubmissionError):
            return error
        classified = classify_failure(error)
        logger.debug(f"Raw {stage} failure for {description}: {error!r}")
        return SubmissionError(classified, stage=stage)

    async def _send(self, signed: Transaction) -> str:
        return await retry_with_backoff(
            lambda: self.ledger.send_transaction(signed),
            self.retry_policy,
            description="send transaction",
        )

    async def _resolve_ambiguous(
        self,
        signature: str,
        expected_account: Optional[Pubkey],
        description: str,
    ) -> bool:
        async def landed() -> bool:
            if expected_account is not None:
                return await self.ledger.get_account_info(expected_account) is not None
            status = await self.ledger.get_signature_status(signature)
            if status is None:
                return False
            if status.failed:
                raise SubmissionError(classify_failure(status.err), stage="confirmation")
            return status.is_confirmed

        return await poll_until(landed, self.ambiguous_policy, description=description)
