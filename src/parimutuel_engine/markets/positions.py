"""
Owner positions, recomputed from ledger token balances on every read.

A position is never stored: it is the owner's YES and NO share-token
balances for one market. An owner's aggregate list includes a market
when either balance is positive, or when the market is resolved and the
owner still holds a share-token account for it (a spent position).
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from solders.pubkey import Pubkey

from parimutuel_engine.core.addresses import TOKEN_PROGRAM_ID, AddressSpace
from parimutuel_engine.core.pool_accounting import Side, redemption_payout
from parimutuel_engine.core.retry import retry_with_backoff
from parimutuel_engine.ledger.accounts import (
    AccountLayoutError,
    TokenAccount,
    TokenBalance,
    fetch_token_balance,
)

from .cache import position_key, positions_key, token_balance_key
from .models import Market, MarketView, PositionView
from .repository import MarketRepository

logger = logging.getLogger(__name__)


def position_values(market: Market, yes_balance: int, no_balance: int) -> Tuple[int, int]:
    """Estimated payout of each side's holding should that side win."""
    pool = market.pool_state

    def estimate(balance: int, side: Side) -> int:
        if balance <= 0 or pool.pool(side) == 0:
            return 0
        return redemption_payout(balance, pool, side)

    return estimate(yes_balance, Side.YES), estimate(no_balance, Side.NO)


class PositionReader:
    """
    Position and balance queries built on a MarketRepository.

    Shares the repository's ledger, cache and cluster scope so that the
    writers' invalidation reaches these keys too.
    """

    def __init__(self, repository: MarketRepository, position_ttl: float = 10.0):
        self.repository = repository
        self.position_ttl = position_ttl

    @property
    def _cluster(self) -> str:
        return self.repository.network.cluster

    def _build(
        self,
        owner: Pubkey,
        market: Market,
        view: MarketView,
        yes_balance: int,
        no_balance: int,
        has_account: bool,
    ) -> PositionView:
        yes_value, no_value = position_values(market, yes_balance, no_balance)
        return PositionView(
            owner=str(owner),
            market_address=str(market.address),
            yes_balance=yes_balance,
            no_balance=no_balance,
            yes_value=yes_value,
            no_value=no_value,
            has_account=has_account,
            market=view,
        )

    async def fetch_token_balance(self, account: Pubkey) -> TokenBalance:
        """Balance of one token account; absence is a zero balance."""
        repo = self.repository
        return await repo.cache.get_or_load(
            token_balance_key(self._cluster, account),
            repo.market_ttl,
            lambda: retry_with_backoff(
                lambda: fetch_token_balance(repo.ledger, account),
                repo.retry_policy,
                description=f"fetch balance of {account}",
            ),
        )

    async def fetch_position(self, market_address: Pubkey, owner: Pubkey) -> Optional[PositionView]:
        """Owner's position in one market; None when the market does not exist."""
        async def load() -> Optional[PositionView]:
            market = await self.repository.fetch_one(market_address)
            if market is None:
                return None
            yes_account = AddressSpace.derive_owner_asset_account(owner, market.yes_mint)
            no_account = AddressSpace.derive_owner_asset_account(owner, market.no_mint)
            yes, no = await asyncio.gather(
                self.fetch_token_balance(yes_account),
                self.fetch_token_balance(no_account),
            )
            return self._build(
                owner,
                market,
                self.repository.view(market),
                yes.amount,
                no.amount,
                yes.exists or no.exists,
            )

        return await self.repository.cache.get_or_load(
            position_key(self._cluster, market_address, owner), self.position_ttl, load
        )

    async def _balances_by_mint(self, owner: Pubkey) -> Dict[Pubkey, int]:
        repo = self.repository
        accounts = await retry_with_backoff(
            lambda: repo.ledger.get_token_accounts_by_owner(owner, TOKEN_PROGRAM_ID),
            repo.retry_policy,
            description=f"fetch token accounts of {owner}",
        )
        balances: Dict[Pubkey, int] = defaultdict(int)
        for info in accounts:
            try:
                token = TokenAccount.from_account(info)
            except AccountLayoutError as e:
                logger.warning(f"Skipping malformed token account {info.address}: {e}")
                continue
            balances[token.mint] += token.amount
        return balances

    async def fetch_positions(self, owner: Pubkey) -> List[PositionView]:
        """Every market where `owner` holds, or held, share tokens."""
        async def load() -> List[PositionView]:
            markets, balances = await asyncio.gather(
                self.repository.fetch_all(),
                self._balances_by_mint(owner),
            )
            positions = []
            for market in markets:
                yes_balance = balances.get(market.yes_mint, 0)
                no_balance = balances.get(market.no_mint, 0)
                has_account = market.yes_mint in balances or market.no_mint in balances
                active = yes_balance > 0 or no_balance > 0
                if not (active or (market.is_settled and has_account)):
                    continue
                positions.append(self._build(
                    owner,
                    market,
                    self.repository.view(market),
                    yes_balance,
                    no_balance,
                    has_account,
                ))
            return positions

        return await self.repository.cache.get_or_load(
            positions_key(self._cluster, owner), self.position_ttl, load
        )
