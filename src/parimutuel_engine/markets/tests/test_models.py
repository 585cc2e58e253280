"""
Tests for market state and read-time derived views.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from parimutuel_engine.core import Side
from parimutuel_engine.markets import MarketView, Settled


class TestMarket:
    def test_open_market(self, make_market, now):
        market = make_market(expiry_timestamp=now + 10)

        assert market.is_open
        assert market.outcome is None
        assert market.winning_side is None
        assert not market.is_expired(now)
        assert market.time_remaining(now) == 10

    def test_expiry_is_inclusive(self, make_market, now):
        assert make_market(expiry_timestamp=now).is_expired(now)

    def test_settled_market(self, make_market):
        market = make_market(status=Settled(outcome=True))

        assert market.is_settled
        assert market.winning_side is Side.YES
        assert market.share_mint(Side.YES) == market.yes_mint


class TestMarketView:
    """Derived fields are computed from the pools and a timestamp."""

    def test_derived_fields(self, make_market, now):
        market = make_market(expiry_timestamp=now - 5)

        view = MarketView.from_market(market, now)

        assert view.total_volume == 160
        assert view.yes_probability == Decimal("0.625")
        assert view.no_probability == Decimal("0.375")
        assert view.is_expired
        assert view.time_remaining == 0
        assert view.status == "open"
        assert not view.is_resolved

    def test_empty_pools_are_even(self, make_market, now):
        view = MarketView.from_market(make_market(yes_pool=0, no_pool=0), now)

        assert view.yes_probability == Decimal("0.5")
        assert view.no_probability == Decimal("0.5")

    def test_settled_view(self, make_market, now):
        view = MarketView.from_market(make_market(status=Settled(outcome=False)), now)

        assert view.status == "settled"
        assert view.outcome is False
        assert view.is_resolved

    def test_json_dump_uses_strings_for_keys(self, make_market, now):
        market = make_market()

        dumped = MarketView.from_market(market, now).model_dump(mode="json")

        assert dumped["address"] == str(market.address)
        assert dumped["yes_pool"] == 100

    def test_view_is_frozen(self, make_market, now):
        view = MarketView.from_market(make_market(), now)

        with pytest.raises(ValidationError):
            view.yes_pool = 1
