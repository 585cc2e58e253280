"""
JSON-RPC client for a Solana-compatible ledger node.

Implements the LedgerClient interface over HTTP with aiohttp.

Features:
    - Rate limiting to stay under public endpoint quotas
    - Automatic retries with exponential backoff for 429 / 5xx / timeouts
    - JSON-RPC error objects surfaced as RpcError with the node's data
      (simulation logs included) so the error taxonomy can classify them
    - Absent accounts returned as None, never raised
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .interfaces import AccountInfo, SimulationResult, TransactionStatus

logger = logging.getLogger(__name__)

MAX_ACCOUNTS_PER_REQUEST = 100


class RpcError(Exception):
    """JSON-RPC or HTTP level failure."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Optional[Any] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.data = data
        self.status_code = status_code


class RateLimitError(RpcError):
    """HTTP 429 from the node."""
    pass


class RpcTransportError(RpcError, ConnectionError):
    """The node could not be reached."""
    pass


class RpcTimeoutError(RpcError, TimeoutError):
    """A request did not complete in time."""
    pass


class ConfirmationTimeoutError(RpcTimeoutError):
    """A submitted transaction was not confirmed before the deadline."""

    def __init__(self, signature: str, timeout: float):
        super().__init__(
            f"Transaction {signature} was not confirmed within {timeout:.0f}s"
        )
        self.signature = signature


def _decode_account(address: Pubkey, value: Optional[Dict[str, Any]]) -> Optional[AccountInfo]:
    if value is None:
        return None
    raw, _encoding = value["data"]
    return AccountInfo(
        address=address,
        lamports=int(value["lamports"]),
        owner=Pubkey.from_string(value["owner"]),
        data=base64.b64decode(raw),
        executable=bool(value.get("executable", False)),
    )


def _encode_transaction(transaction: Transaction) -> str:
    return base64.b64encode(bytes(transaction)).decode("ascii")


class SolanaRpcClient:
    """
    Async JSON-RPC client.

    Usage:
        async with SolanaRpcClient("https://api.devnet.solana.com") as client:
            info = await client.get_account_info(market_address)
            blockhash = await client.get_latest_blockhash()
    """

    def __init__(
        self,
        endpoint: str,
        session: Optional[aiohttp.ClientSession] = None,
        commitment: str = "confirmed",
        rate_limit: float = 10.0,  # requests per second
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        max_delay: float = 15.0,
        confirm_timeout: float = 60.0,
        confirm_poll_interval: float = 1.0,
    ):
        """
        Initialize the RPC client.

        Args:
            endpoint: HTTP JSON-RPC URL of the node
            session: Optional aiohttp session (created if not provided)
            commitment: Commitment level for reads and confirmation
            rate_limit: Maximum requests per second
            timeout: Request timeout in seconds
            max_retries: Number of attempts for failed requests
            retry_delay: Base delay between retries (exponential backoff)
            max_delay: Ceiling on any single retry delay
            confirm_timeout: Deadline for confirm_transaction
            confirm_poll_interval: Delay between signature status polls
        """
        self.endpoint = endpoint
        self.commitment = commitment
        self._session = session
        self._owns_session = session is None
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._max_delay = max_delay
        self._confirm_timeout = confirm_timeout
        self._confirm_poll_interval = confirm_poll_interval
        self._request_id = 0

        # Rate limiting
        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

    async def __aenter__(self) -> "SolanaRpcClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._rate_lock:
            now = time.time()

            # Remove old timestamps outside the 1-second window
            self._request_times = [t for t in self._request_times if now - t < 1.0]

            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())

    async def _call(self, method: str, params: Optional[list] = None) -> Any:
        """
        Make a JSON-RPC call with rate limiting and retries.

        Returns:
            The "result" member of the response

        Raises:
            RpcError: JSON-RPC error object or non-retryable HTTP error
            RateLimitError: Still rate limited after all retries
            RpcTimeoutError: Still timing out after all retries
            RpcTransportError: Node unreachable after all retries
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            delay = min(self._max_delay, self._retry_delay * (2 ** attempt))
            try:
                await self._rate_limit_wait()

                async with self._session.post(self.endpoint, json=payload) as response:
                    if response.status == 429:
                        raise RateLimitError(
                            "Rate limit exceeded (HTTP 429)", status_code=429
                        )

                    if 400 <= response.status < 500:
                        text = await response.text()
                        raise RpcError(
                            f"HTTP {response.status} from {method}: {text}",
                            status_code=response.status,
                        )

                    if response.status >= 500:
                        text = await response.text()
                        raise RpcError(
                            f"Server error {response.status} from {method}: {text}",
                            status_code=response.status,
                        )

                    body = await response.json(content_type=None)

            except RateLimitError as e:
                # Longer delay for rate limiting
                delay *= 2
                delay = min(self._max_delay, delay)
                logger.warning(f"Rate limited on {method}, waiting {delay}s before retry")
                last_error = e

            except RpcError as e:
                if e.status_code and e.status_code >= 500:
                    logger.warning(
                        f"Server error {e.status_code} on {method}, retry {attempt + 1}/{self._max_retries}"
                    )
                    last_error = e
                else:
                    raise

            except asyncio.TimeoutError:
                logger.warning(
                    f"Request timeout on {method}, retry {attempt + 1}/{self._max_retries}"
                )
                last_error = RpcTimeoutError(f"{method} timed out")

            except asyncio.CancelledError:
                logger.debug(f"{method} cancelled")
                raise

            except aiohttp.ClientError as e:
                logger.warning(
                    f"{method} failed: {e}, retry {attempt + 1}/{self._max_retries}"
                )
                last_error = RpcTransportError(f"{method} failed: {e}")

            else:
                error = body.get("error")
                if error:
                    raise RpcError(
                        error.get("message", "RPC error"),
                        code=error.get("code"),
                        data=error.get("data"),
                    )
                return body.get("result")

            if attempt < self._max_retries - 1:
                await asyncio.sleep(delay)

        raise last_error or RpcError(f"{method} failed after retries")

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        result = await self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        return _decode_account(address, result["value"])

    async def get_multiple_accounts(
        self, addresses: Sequence[Pubkey]
    ) -> List[Optional[AccountInfo]]:
        """Batched account lookup; order matches `addresses`."""
        accounts: List[Optional[AccountInfo]] = []
        for start in range(0, len(addresses), MAX_ACCOUNTS_PER_REQUEST):
            chunk = list(addresses[start:start + MAX_ACCOUNTS_PER_REQUEST])
            result = await self._call(
                "getMultipleAccounts",
                [
                    [str(a) for a in chunk],
                    {"encoding": "base64", "commitment": self.commitment},
                ],
            )
            accounts.extend(
                _decode_account(address, value)
                for address, value in zip(chunk, result["value"])
            )
        return accounts

    async def get_program_accounts(
        self, program_id: Pubkey, discriminator: bytes
    ) -> List[AccountInfo]:
        """All accounts owned by `program_id` whose data starts with `discriminator`."""
        result = await self._call(
            "getProgramAccounts",
            [
                str(program_id),
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "filters": [{
                        "memcmp": {
                            "offset": 0,
                            "bytes": base64.b64encode(discriminator).decode("ascii"),
                            "encoding": "base64",
                        }
                    }],
                },
            ],
        )
        return [
            _decode_account(Pubkey.from_string(item["pubkey"]), item["account"])
            for item in result
        ]

    async def get_token_accounts_by_owner(
        self, owner: Pubkey, token_program: Pubkey
    ) -> List[AccountInfo]:
        result = await self._call(
            "getTokenAccountsByOwner",
            [
                str(owner),
                {"programId": str(token_program)},
                {"encoding": "base64", "commitment": self.commitment},
            ],
        )
        return [
            _decode_account(Pubkey.from_string(item["pubkey"]), item["account"])
            for item in result["value"]
        ]

    async def get_balance(self, address: Pubkey) -> int:
        result = await self._call(
            "getBalance", [str(address), {"commitment": self.commitment}]
        )
        return int(result["value"])

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        result = await self._call("getMinimumBalanceForRentExemption", [size])
        return int(result)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def get_latest_blockhash(self) -> Hash:
        result = await self._call(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        return Hash.from_string(result["value"]["blockhash"])

    async def simulate_transaction(self, transaction: Transaction) -> SimulationResult:
        result = await self._call(
            "simulateTransaction",
            [
                _encode_transaction(transaction),
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "sigVerify": False,
                },
            ],
        )
        value = result["value"]
        return SimulationResult(
            err=value.get("err"),
            logs=list(value.get("logs") or []),
            units_consumed=value.get("unitsConsumed"),
        )

    async def send_transaction(self, transaction: Transaction) -> str:
        """Submit a signed transaction; simulation is done separately."""
        return await self._call(
            "sendTransaction",
            [
                _encode_transaction(transaction),
                {
                    "encoding": "base64",
                    "skipPreflight": True,
                    "preflightCommitment": self.commitment,
                },
            ],
        )

    async def get_signature_status(self, signature: str) -> Optional[TransactionStatus]:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        value = result["value"][0]
        if value is None:
            return None
        return TransactionStatus(
            signature=signature,
            confirmation_status=value.get("confirmationStatus"),
            err=value.get("err"),
            slot=value.get("slot"),
        )

    async def confirm_transaction(self, signature: str) -> TransactionStatus:
        """
        Poll until the transaction is confirmed or fails.

        A failed transaction is returned with `err` set; the caller
        classifies it.

        Raises:
            ConfirmationTimeoutError: Not confirmed before the deadline
        """
        deadline = time.monotonic() + self._confirm_timeout
        while True:
            status = await self.get_signature_status(signature)
            if status is not None and (status.failed or status.is_confirmed):
                return status
            if time.monotonic() >= deadline:
                raise ConfirmationTimeoutError(signature, self._confirm_timeout)
            await asyncio.sleep(self._confirm_poll_interval)
