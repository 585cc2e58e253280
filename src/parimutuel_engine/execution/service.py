"""
MarketEngine - Facade over the read and write components.

Wires one LedgerClient, one NetworkSelector and an optional SignerHandle
into the repository, position reader and the four writers, all sharing
one cluster-scoped cache so that every successful write invalidates
what the readers serve.

Reads work without a signer; writes raise SignerRequiredError.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from solders.pubkey import Pubkey

from parimutuel_engine.core.addresses import AddressSpace
from parimutuel_engine.core.pool_accounting import BetQuote, Side, quote_bet
from parimutuel_engine.core.retry import BackoffPolicy, retry_with_backoff
from parimutuel_engine.ledger.accounts import TokenBalance
from parimutuel_engine.ledger.interfaces import LedgerClient, NetworkSelector, SignerHandle
from parimutuel_engine.ledger.network import StaticNetworkSelector
from parimutuel_engine.ledger.rpc_client import SolanaRpcClient
from parimutuel_engine.markets.cache import CacheInvalidationPolicy, QueryCache
from parimutuel_engine.markets.models import Market, MarketView, PositionView
from parimutuel_engine.markets.positions import PositionReader
from parimutuel_engine.markets.repository import MarketRepository, unix_now

from .bet_orchestrator import DEFAULT_SUBMISSION_FEE_LAMPORTS, BetOrchestrator
from .market_creation import MarketCreator
from .redemption import RedemptionEngine, RedemptionRequest
from .results import BatchRedemptionResult, ExecutionResult
from .settlement import SettlementController
from .submitter import TransactionSubmitter

if TYPE_CHECKING:
    from parimutuel_engine.config import EngineConfig

logger = logging.getLogger(__name__)


class SignerRequiredError(RuntimeError):
    """Raised when a write is attempted without a signer."""


class MarketEngine:
    """
    Read and write APIs for one program on one cluster.

    Usage:
        async with MarketEngine.from_config(config, signer) as engine:
            markets = await engine.fetch_all()
            result = await engine.place_bet(market, mint, 1_000_000, Side.YES)
            batch = await engine.redeem_all(await engine.redeemable(owner))
    """

    def __init__(
        self,
        ledger: LedgerClient,
        network: NetworkSelector,
        program_id: Pubkey,
        signer: Optional[SignerHandle] = None,
        cache: Optional[QueryCache] = None,
        retry_policy: Optional[BackoffPolicy] = None,
        ambiguous_policy: Optional[BackoffPolicy] = None,
        market_ttl: float = 5.0,
        markets_ttl: float = 10.0,
        submission_fee: int = DEFAULT_SUBMISSION_FEE_LAMPORTS,
        clock: Callable[[], int] = unix_now,
        debug: bool = False,
    ):
        """
        Initialize the engine.

        Args:
            ledger: Ledger access
            network: Active cluster identity (scopes cache keys)
            program_id: Market program id
            signer: Identity for writes (None for read-only use)
            cache: Shared read cache (created if not provided)
            retry_policy: Backoff for transient failures
            ambiguous_policy: Bounded polling for ambiguous submissions
            market_ttl: Lifetime of single-record cache entries
            markets_ttl: Lifetime of list cache entries
            submission_fee: Flat fee reserved by native balance checks
            clock: Unix time source
            debug: Include raw diagnostics in error messages
        """
        self.ledger = ledger
        self.network = network
        self.signer = signer
        self.debug = debug
        self.clock = clock
        self.address_space = AddressSpace(program_id)
        self.cache = cache if cache is not None else QueryCache()
        self.retry_policy = retry_policy or BackoffPolicy()

        self.repository = MarketRepository(
            ledger,
            network,
            program_id,
            cache=self.cache,
            retry_policy=self.retry_policy,
            market_ttl=market_ttl,
            markets_ttl=markets_ttl,
            clock=clock,
        )
        self.positions = PositionReader(self.repository, position_ttl=markets_ttl)
        self.invalidation = CacheInvalidationPolicy(self.cache, network)

        self._bets: Optional[BetOrchestrator] = None
        self._settlement: Optional[SettlementController] = None
        self._redemption: Optional[RedemptionEngine] = None
        self._creator: Optional[MarketCreator] = None
        self._owned_resources: list = []

        if signer is not None:
            submitter = TransactionSubmitter(
                ledger, signer, retry_policy=self.retry_policy, ambiguous_policy=ambiguous_policy
            )
            shared = dict(
                repository=self.repository,
                submitter=submitter,
                invalidation=self.invalidation,
                clock=clock,
            )
            args = (ledger, signer, network, self.address_space)
            self._bets = BetOrchestrator(*args, submission_fee=submission_fee, **shared)
            self._settlement = SettlementController(*args, **shared)
            self._redemption = RedemptionEngine(*args, **shared)
            self._creator = MarketCreator(*args, **shared)

    @classmethod
    def from_config(
        cls,
        config: "EngineConfig",
        signer: Optional[SignerHandle] = None,
    ) -> "MarketEngine":
        """Build an engine with a JSON-RPC ledger client from configuration."""
        ledger = SolanaRpcClient(
            config.rpc_url,
            commitment=config.commitment,
            rate_limit=config.rpc_rate_limit,
            timeout=config.rpc_timeout_seconds,
            max_retries=config.rpc_max_retries,
            retry_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            confirm_timeout=config.confirm_timeout_seconds,
        )
        engine = cls(
            ledger=ledger,
            network=StaticNetworkSelector(config.cluster, config.rpc_url),
            program_id=config.program_id,
            signer=signer,
            retry_policy=config.retry_policy,
            ambiguous_policy=config.ambiguous_policy,
            market_ttl=config.market_cache_ttl_seconds,
            markets_ttl=config.markets_cache_ttl_seconds,
            submission_fee=config.submission_fee_lamports,
            debug=config.debug,
        )
        engine._owned_resources.append(ledger)
        logger.info(
            f"Engine on {config.cluster.value} ({config.rpc_url}), program {config.program_id}"
        )
        return engine

    async def __aenter__(self) -> "MarketEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        for resource in self._owned_resources:
            await resource.close()
        self._owned_resources.clear()

    def _require(self, writer):
        if writer is None:
            raise SignerRequiredError("A signer is required for writes")
        return writer

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_one(self, address: Pubkey) -> Optional[MarketView]:
        market = await self.repository.fetch_one(address)
        return self.repository.view(market) if market is not None else None

    async def fetch_many(self, addresses: Sequence[Pubkey]) -> List[MarketView]:
        return self.repository.views(await self.repository.fetch_many(addresses))

    async def fetch_all(self) -> List[MarketView]:
        return self.repository.views(await self.repository.fetch_all())

    async def fetch_active(self) -> List[MarketView]:
        return self.repository.views(await self.repository.fetch_active())

    async def fetch_resolved(self) -> List[MarketView]:
        return self.repository.views(await self.repository.fetch_resolved())

    async def fetch_position(self, market: Pubkey, owner: Pubkey) -> Optional[PositionView]:
        return await self.positions.fetch_position(market, owner)

    async def fetch_positions(self, owner: Pubkey) -> List[PositionView]:
        return await self.positions.fetch_positions(owner)

    async def fetch_token_balance(self, account: Pubkey) -> TokenBalance:
        return await self.positions.fetch_token_balance(account)

    async def fetch_native_balance(self, owner: Pubkey) -> int:
        return await retry_with_backoff(
            lambda: self.ledger.get_balance(owner),
            self.retry_policy,
            description=f"fetch native balance of {owner}",
        )

    async def quote_bet(self, market: Pubkey, side: Side, amount: int) -> Optional[BetQuote]:
        """Illustrative estimate only: later bets shift the pools before this one lands."""
        decoded = await self.repository.fetch_one(market)
        if decoded is None:
            return None
        return quote_bet(decoded.pool_state, side, amount)

    async def redeemable(self, owner: Pubkey) -> List[RedemptionRequest]:
        """Full winning balance of every settled market `owner` holds."""
        requests = []
        for position in await self.positions.fetch_positions(owner):
            view = position.market
            if not view.is_resolved:
                continue
            balance = position.yes_balance if view.outcome else position.no_balance
            if balance > 0:
                requests.append(RedemptionRequest(Pubkey.from_string(view.address), balance))
        return requests

    async def get_market(self, address: Pubkey) -> Optional[Market]:
        """Uncached decoded market, for callers that need ledger-fresh state."""
        return await self.repository.fetch_one(address, fresh=True)

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_market(
        self,
        title: str,
        description: str,
        bet_mint: Pubkey,
        expiry_timestamp: int,
    ) -> ExecutionResult:
        return await self._require(self._creator).create_market(
            title, description, bet_mint, expiry_timestamp
        )

    async def place_bet(
        self,
        market: Pubkey,
        bet_mint: Pubkey,
        amount: int,
        side: Side,
    ) -> ExecutionResult:
        return await self._require(self._bets).place_bet(market, bet_mint, amount, side)

    async def settle_market(self, market: Pubkey, outcome: bool) -> ExecutionResult:
        return await self._require(self._settlement).settle_market(market, outcome)

    async def redeem(self, market: Pubkey, amount: int) -> ExecutionResult:
        return await self._require(self._redemption).redeem(market, amount)

    async def redeem_all(self, requests: Sequence[RedemptionRequest]) -> BatchRedemptionResult:
        return await self._require(self._redemption).redeem_all(requests)

