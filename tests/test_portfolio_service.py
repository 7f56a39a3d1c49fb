"""Tests for PortfolioService against the temporary DuckDB."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from practice_os.services.portfolio_service import PortfolioService


@pytest.fixture()
def svc() -> PortfolioService:
    return PortfolioService()


@pytest.fixture()
def account(svc):
    household = svc.create_household("Tremblay Family")
    return svc.create_account(household.id, "individual", "RRSP")


class TestHouseholdsAndAccounts:

    def test_create_and_fetch(self, svc) -> None:
        household = svc.create_household("  Nguyen Household ")
        assert household.name == "Nguyen Household"
        assert svc.get_household(household.id).name == "Nguyen Household"

        acct = svc.create_account(household.id, "joint", "Joint cash")
        assert acct.household_id == household.id
        assert [a.id for a in svc.list_accounts(household.id)] == [acct.id]
        assert svc.get_account(acct.id).nickname == "Joint cash"

    def test_unknown_household(self, svc) -> None:
        assert svc.get_household("nope") is None
        assert svc.create_account("nope", "individual") is None

    def test_bad_account_type(self, svc) -> None:
        household = svc.create_household("Lee")
        with pytest.raises(ValueError, match="account type"):
            svc.create_account(household.id, "offshore")


class TestPositions:

    def test_add_list_update_delete(self, svc, account) -> None:
        pos = svc.add_position(account.id, "xic.to", 10, 30.0)
        assert pos.symbol == "XIC.TO"
        assert pos.current_price == 30.0

        assert svc.update_position_price(pos.id, 32.5) is True
        [stored] = svc.list_positions(account.id)
        assert stored.current_price == 32.5
        assert stored.entry_price == 30.0

        assert svc.delete_position(pos.id) is True
        assert svc.list_positions(account.id) == []
        assert svc.delete_position(pos.id) is False

    def test_negative_values_rejected(self, svc, account) -> None:
        with pytest.raises(ValueError):
            svc.add_position(account.id, "AAA", -1, 10)
        with pytest.raises(ValueError):
            svc.update_position_price("whatever", -5)

    def test_unknown_account(self, svc) -> None:
        assert svc.add_position("nope", "AAA", 1, 1) is None
        assert svc.update_position_price("nope", 1.0) is False


class TestHoldings:

    def test_upsert_updates_price(self, svc) -> None:
        first = svc.upsert_holding("zqt1", name="Test ETF")
        assert first.ticker == "ZQT1"
        assert svc.holding_price("ZQT1") is None

        updated = svc.upsert_holding("ZQT1", price=12.5)
        assert updated.id == first.id
        assert updated.name == "Test ETF"
        assert svc.holding_price("zqt1") == 12.5
        assert svc.get_holding("ZQT1").price_updated_at is not None

    def test_unknown_holding_has_no_price(self, svc) -> None:
        assert svc.holding_price("NEVER-SEEN") is None


class TestTargetAllocations:

    def test_set_and_replace(self, svc, account) -> None:
        first = svc.set_target_allocation(account.id, "XIC", 60)
        again = svc.set_target_allocation(account.id, "xic", 40)
        assert again.id == first.id
        [alloc] = svc.list_target_allocations(account.id)
        assert alloc.target_percentage == 40

    def test_total_cannot_exceed_100(self, svc, account) -> None:
        svc.set_target_allocation(account.id, "XIC", 60)
        svc.set_target_allocation(account.id, "VFV", 40)
        with pytest.raises(ValueError, match="100%"):
            svc.set_target_allocation(account.id, "ZAG", 5)
        # Replacing an existing target only counts the new value
        svc.set_target_allocation(account.id, "VFV", 35)
        svc.set_target_allocation(account.id, "ZAG", 5)
        total = sum(a.target_percentage for a in svc.list_target_allocations(account.id))
        assert total == 100

    @pytest.mark.parametrize("pct", [0, -5, 100.5])
    def test_percentage_range(self, svc, account, pct) -> None:
        with pytest.raises(ValueError):
            svc.set_target_allocation(account.id, "XIC", pct)

    def test_delete(self, svc, account) -> None:
        alloc = svc.set_target_allocation(account.id, "XIC", 50)
        assert svc.delete_target_allocation(alloc.id) is True
        assert svc.delete_target_allocation(alloc.id) is False
        assert svc.list_target_allocations(account.id) == []


class TestModelPortfolios:

    def test_standard_capped_at_100(self, svc) -> None:
        portfolio = svc.create_model_portfolio("Balanced", "standard")
        svc.add_model_allocation(portfolio.id, "XIC", 60)
        svc.add_model_allocation(portfolio.id, "ZAG", 40)
        with pytest.raises(ValueError, match="watchlist"):
            svc.add_model_allocation(portfolio.id, "VFV", 1)

    def test_watchlist_may_exceed_100(self, svc) -> None:
        portfolio = svc.create_model_portfolio("Ideas", "watchlist")
        svc.add_model_allocation(portfolio.id, "XIC", 80)
        result = svc.add_model_allocation(portfolio.id, "VFV", 70)
        assert result.total_percentage == 150

    def test_bad_type(self, svc) -> None:
        with pytest.raises(ValueError):
            svc.create_model_portfolio("Odd", "hedge")

    def test_copy_into_account(self, svc, account) -> None:
        portfolio = svc.create_model_portfolio("Growth", "standard")
        svc.add_model_allocation(portfolio.id, "VFV", 70)
        svc.add_model_allocation(portfolio.id, "XIC", 30)
        svc.set_target_allocation(account.id, "ZAG", 100)

        result = svc.copy_allocations_from_portfolio(account.id, portfolio.id)
        assert result == {"success": True, "copied_from": "Growth", "allocations_count": 2}
        tickers = {a.ticker for a in svc.list_target_allocations(account.id)}
        assert tickers == {"VFV", "XIC"}

    def test_same_ticker_replaces_percentage(self, svc, account) -> None:
        portfolio = svc.create_model_portfolio("Core", "standard")
        svc.add_model_allocation(portfolio.id, "XIC", 40)
        svc.add_model_allocation(portfolio.id, "xic", 40)
        result = svc.add_model_allocation(portfolio.id, "XIC", 70)
        assert len(result.allocations) == 1
        assert result.total_percentage == 70

        svc.add_position(account.id, "XIC.TO", 10, 100.0)
        svc.copy_allocations_from_portfolio(account.id, portfolio.id)
        report = svc.compare_account(account.id)
        [item] = report.items
        assert report.total_target_percentage == 70
        assert item.actual_value == 1000
        assert item.action_dollar_amount == -300

    def test_replacing_counts_only_new_value(self, svc) -> None:
        portfolio = svc.create_model_portfolio("Tight", "standard")
        svc.add_model_allocation(portfolio.id, "XIC", 60)
        svc.add_model_allocation(portfolio.id, "ZAG", 40)
        result = svc.add_model_allocation(portfolio.id, "ZAG", 30)
        assert result.total_percentage == 90

    def test_watchlist_over_100_not_copied(self, svc, account) -> None:
        watchlist = svc.create_model_portfolio("Wishlist", "watchlist")
        svc.add_model_allocation(watchlist.id, "XIC", 80)
        svc.add_model_allocation(watchlist.id, "VFV", 70)
        svc.set_target_allocation(account.id, "ZAG", 60)

        with pytest.raises(ValueError, match="100%"):
            svc.copy_allocations_from_portfolio(account.id, watchlist.id)

        [kept] = svc.list_target_allocations(account.id)
        assert kept.ticker == "ZAG"
        svc.set_target_allocation(account.id, "XIC", 40)

    def test_watchlist_within_100_copies(self, svc, account) -> None:
        watchlist = svc.create_model_portfolio("Short list", "watchlist")
        svc.add_model_allocation(watchlist.id, "XIC", 50)
        result = svc.copy_allocations_from_portfolio(account.id, watchlist.id)
        assert result["allocations_count"] == 1

    def test_copy_unknown(self, svc, account) -> None:
        assert svc.copy_allocations_from_portfolio(account.id, "nope") is None
        assert svc.copy_allocations_from_portfolio("nope", "nope") is None


class TestCompareAccount:

    def test_account_comparison(self, svc, account) -> None:
        svc.add_position(account.id, "XIC.TO", 10, 100.0)
        svc.add_position(account.id, "OLDCO", 5, 20.0)
        svc.set_target_allocation(account.id, "XIC", 50)
        svc.set_target_allocation(account.id, "VFQ1", 50)
        svc.upsert_holding("VFQ1", price=50.0)

        report = svc.compare_account(account.id)
        by_ticker = {i.ticker: i for i in report.items}
        assert report.total_actual_value == 1100
        assert by_ticker["XIC"].status == "over"
        assert by_ticker["OLDCO"].status == "unexpected"
        assert by_ticker["OLDCO"].action_dollar_amount == -100
        missing = by_ticker["VFQ1"]
        assert missing.is_missing
        assert missing.action_dollar_amount == 550
        assert missing.action_shares == 11

    def test_tolerance_override(self, svc, account) -> None:
        svc.add_position(account.id, "AAA", 53, 1.0)
        svc.add_position(account.id, "BBB", 47, 1.0)
        svc.set_target_allocation(account.id, "AAA", 50)
        svc.set_target_allocation(account.id, "BBB", 50)

        assert {i.status for i in svc.compare_account(account.id).items} == {"over", "under"}
        relaxed = svc.compare_account(account.id, tolerance=5)
        assert {i.status for i in relaxed.items} == {"on-target"}

    def test_unknown_account(self, svc) -> None:
        assert svc.compare_account("nope") is None


class TestRefreshPrices:

    @pytest.mark.asyncio()
    async def test_refresh_updates_positions_and_holdings(self, svc, account) -> None:
        svc.add_position(account.id, "RFA", 2, 10.0)
        svc.add_position(account.id, "CASH", 100, 1.0)
        svc.set_target_allocation(account.id, "RFB", 50)

        fake = AsyncMock(return_value={"RFA": 12.0})
        with patch("practice_os.services.portfolio_service.market_data.fetch_prices", fake):
            result = await svc.refresh_prices(account.id)

        fake.assert_awaited_once_with(["RFA", "RFB"])
        assert result == {
            "requested": 2,
            "priced": 1,
            "positions_updated": 1,
            "missing": ["RFB"],
        }
        prices = {p.symbol: p.current_price for p in svc.list_positions(account.id)}
        assert prices == {"CASH": 1.0, "RFA": 12.0}
        assert svc.holding_price("RFA") == 12.0

    @pytest.mark.asyncio()
    async def test_unknown_account(self, svc) -> None:
        assert await svc.refresh_prices("nope") is None
