"""
Engine configuration.

Environment Variables:
    SOLANA_RPC_URL              JSON-RPC endpoint (default: the cluster's public endpoint)
    SOLANA_CLUSTER              localnet / devnet / testnet / mainnet-beta (default: inferred, else devnet)
    MARKET_PROGRAM_ID           Market program id
    COMMITMENT                  Commitment for reads and confirmation (default: confirmed)
    RPC_TIMEOUT_SECONDS         Per-request timeout (default: 30)
    RPC_MAX_RETRIES             Attempts per RPC request (default: 3)
    RPC_RATE_LIMIT              Requests per second (default: 10)
    RETRY_BASE_DELAY            First backoff delay in seconds (default: 0.5)
    RETRY_MAX_DELAY             Backoff ceiling in seconds (default: 15)
    CONFIRM_TIMEOUT_SECONDS     Confirmation deadline (default: 60)
    AMBIGUOUS_POLL_ATTEMPTS     Polls before an ambiguous submission is a failure (default: 10)
    MARKET_CACHE_TTL_SECONDS    Single market / balance cache lifetime (default: 5)
    MARKETS_CACHE_TTL_SECONDS   Market list / position cache lifetime (default: 10)
    SUBMISSION_FEE_LAMPORTS     Flat fee reserved in native balance checks (default: 5000)
    ENGINE_DEBUG                Append raw diagnostics to error messages (default: false)
    KEYPAIR_PATH                Solana CLI keypair file for writes
    LOG_LEVEL                   Logging level (DEBUG/INFO/WARNING/ERROR)
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from solders.pubkey import Pubkey

from parimutuel_engine.core.addresses import DEFAULT_PROGRAM_ID
from parimutuel_engine.core.retry import BackoffPolicy
from parimutuel_engine.ledger.network import DEFAULT_CLUSTER, DEFAULT_ENDPOINTS, Cluster, resolve_cluster

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, at the entry point."""
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class EngineConfig:
    """Complete engine configuration."""

    # Network
    cluster: Cluster = DEFAULT_CLUSTER
    rpc_url: str = DEFAULT_ENDPOINTS[DEFAULT_CLUSTER]
    program_id: Pubkey = DEFAULT_PROGRAM_ID
    commitment: str = "confirmed"

    # RPC transport
    rpc_timeout_seconds: float = 30.0
    rpc_max_retries: int = 3
    rpc_rate_limit: float = 10.0

    # Retry / confirmation
    retry_base_delay: float = 0.5
    retry_max_delay: float = 15.0
    retry_max_attempts: int = 5
    confirm_timeout_seconds: float = 60.0
    ambiguous_poll_attempts: int = 10

    # Caches
    market_cache_ttl_seconds: float = 5.0
    markets_cache_ttl_seconds: float = 10.0

    # Writes
    submission_fee_lamports: int = 5000
    keypair_path: Optional[str] = None

    debug: bool = False

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        rpc_url = os.environ.get("SOLANA_RPC_URL", "").strip() or None
        cluster = resolve_cluster(os.environ.get("SOLANA_CLUSTER"), rpc_url)
        if cluster is None:
            if rpc_url:
                logger.warning(
                    f"Could not infer cluster from {rpc_url}; labelling it {DEFAULT_CLUSTER.value}. "
                    "Set SOLANA_CLUSTER so caches are scoped correctly."
                )
            cluster = DEFAULT_CLUSTER

        program_id = os.environ.get("MARKET_PROGRAM_ID", "").strip()

        return cls(
            cluster=cluster,
            rpc_url=rpc_url or DEFAULT_ENDPOINTS[cluster],
            program_id=Pubkey.from_string(program_id) if program_id else DEFAULT_PROGRAM_ID,
            commitment=os.environ.get("COMMITMENT", "confirmed"),
            rpc_timeout_seconds=float(os.environ.get("RPC_TIMEOUT_SECONDS", "30")),
            rpc_max_retries=int(os.environ.get("RPC_MAX_RETRIES", "3")),
            rpc_rate_limit=float(os.environ.get("RPC_RATE_LIMIT", "10")),
            retry_base_delay=float(os.environ.get("RETRY_BASE_DELAY", "0.5")),
            retry_max_delay=float(os.environ.get("RETRY_MAX_DELAY", "15")),
            confirm_timeout_seconds=float(os.environ.get("CONFIRM_TIMEOUT_SECONDS", "60")),
            ambiguous_poll_attempts=int(os.environ.get("AMBIGUOUS_POLL_ATTEMPTS", "10")),
            market_cache_ttl_seconds=float(os.environ.get("MARKET_CACHE_TTL_SECONDS", "5")),
            markets_cache_ttl_seconds=float(os.environ.get("MARKETS_CACHE_TTL_SECONDS", "10")),
            submission_fee_lamports=int(os.environ.get("SUBMISSION_FEE_LAMPORTS", "5000")),
            keypair_path=os.environ.get("KEYPAIR_PATH") or None,
            debug=_env_bool("ENGINE_DEBUG"),
        )

    @property
    def retry_policy(self) -> BackoffPolicy:
        """Backoff for transient read/submit failures."""
        return BackoffPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    @property
    def ambiguous_policy(self) -> BackoffPolicy:
        """Bounded polling for ambiguous submission outcomes."""
        return BackoffPolicy(
            max_attempts=self.ambiguous_poll_attempts,
            base_delay=max(self.retry_base_delay, 1.0),
            max_delay=self.retry_max_delay,
        )
