"""Portfolio Service — households, accounts, positions and target allocations.

All state lives in DuckDB. This is the storage side of rebalancing: it hands
plain ``Position`` / ``TargetAllocation`` lists to the comparison engine and
enforces the allocation-total policy (a standard portfolio may not exceed
100%, a watchlist portfolio may).
"""

from __future__ import annotations

import uuid
from datetime import datetime

from practice_os.config import settings
from practice_os.database import get_db
from practice_os.engine.comparison import compare
from practice_os.models.portfolio import (
    Account,
    ComparisonReport,
    Holding,
    Household,
    ModelPortfolio,
    Position,
    TargetAllocation,
)
from practice_os.services import market_data
from practice_os.utils.logger import logger

ACCOUNT_TYPES = ("individual", "corporate", "joint")
PORTFOLIO_TYPES = ("standard", "watchlist")

# Float slack when checking a total against 100%
_PCT_EPSILON = 1e-9


def _new_id() -> str:
    return str(uuid.uuid4())


def _check_percentage(pct: float) -> None:
    if not 0 < pct <= 100:
        msg = f"Target percentage must be in (0, 100], got {pct}"
        raise ValueError(msg)


class PortfolioService:
    """CRUD for the book of business plus the account comparison."""

    # ------------------------------------------------------------------
    # Households & accounts
    # ------------------------------------------------------------------

    def create_household(self, name: str) -> Household:
        db = get_db()
        household = Household(id=_new_id(), name=name.strip(), created_at=datetime.now())
        db.execute(
            "INSERT INTO households (id, name, created_at) VALUES (?, ?, ?)",
            [household.id, household.name, household.created_at],
        )
        db.commit()
        logger.info("[Portfolio] Created household %s (%s)", household.name, household.id)
        return household

    def get_household(self, household_id: str) -> Household | None:
        row = get_db().execute(
            "SELECT id, name, created_at FROM households WHERE id = ?",
            [household_id],
        ).fetchone()
        if not row:
            return None
        return Household(id=row[0], name=row[1], created_at=row[2])

    def list_households(self) -> list[Household]:
        rows = get_db().execute(
            "SELECT id, name, created_at FROM households ORDER BY name"
        ).fetchall()
        return [Household(id=r[0], name=r[1], created_at=r[2]) for r in rows]

    def create_account(
        self, household_id: str, account_type: str, nickname: str = "",
    ) -> Account | None:
        """Open an account. None if the household does not exist."""
        if account_type not in ACCOUNT_TYPES:
            msg = f"Invalid account type: {account_type}"
            raise ValueError(msg)
        if self.get_household(household_id) is None:
            return None

        db = get_db()
        account = Account(
            id=_new_id(),
            household_id=household_id,
            account_type=account_type,
            nickname=nickname,
            created_at=datetime.now(),
        )
        db.execute(
            "INSERT INTO accounts (id, household_id, account_type, nickname, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            [account.id, household_id, account_type, nickname, account.created_at],
        )
        db.commit()
        logger.info(
            "[Portfolio] Opened %s account %s for household %s",
            account_type, account.id, household_id,
        )
        return account

    def get_account(self, account_id: str) -> Account | None:
        row = get_db().execute(
            "SELECT id, household_id, account_type, nickname, created_at "
            "FROM accounts WHERE id = ?",
            [account_id],
        ).fetchone()
        if not row:
            return None
        return Account(
            id=row[0], household_id=row[1], account_type=row[2],
            nickname=row[3] or "", created_at=row[4],
        )

    def list_accounts(self, household_id: str | None = None) -> list[Account]:
        sql = "SELECT id, household_id, account_type, nickname, created_at FROM accounts"
        params: list = []
        if household_id:
            sql += " WHERE household_id = ?"
            params.append(household_id)
        rows = get_db().execute(sql + " ORDER BY created_at", params).fetchall()
        return [
            Account(
                id=r[0], household_id=r[1], account_type=r[2],
                nickname=r[3] or "", created_at=r[4],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Universal holdings
    # ------------------------------------------------------------------

    def upsert_holding(
        self, ticker: str, name: str | None = None, price: float | None = None,
    ) -> Holding:
        """Create the holding for ``ticker`` or update its name/price."""
        ticker = ticker.strip().upper()
        db = get_db()
        existing = self.get_holding(ticker)
        now = datetime.now()

        if existing is None:
            holding = Holding(
                id=_new_id(),
                ticker=ticker,
                name=name or ticker,
                price=price or 0.0,
                price_updated_at=now if price is not None else None,
            )
            db.execute(
                "INSERT INTO universal_holdings (id, ticker, name, price, price_updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [holding.id, ticker, holding.name, holding.price, holding.price_updated_at],
            )
            db.commit()
            return holding

        updates: dict = {}
        if name:
            updates["name"] = name
        if price is not None:
            updates["price"] = price
            updates["price_updated_at"] = now
        if updates:
            sets = ", ".join(f"{col} = ?" for col in updates)
            db.execute(
                f"UPDATE universal_holdings SET {sets} WHERE id = ?",
                [*updates.values(), existing.id],
            )
            db.commit()
        return existing.model_copy(update=updates)

    def get_holding(self, ticker: str) -> Holding | None:
        row = get_db().execute(
            "SELECT id, ticker, name, price, price_updated_at "
            "FROM universal_holdings WHERE ticker = ?",
            [ticker.strip().upper()],
        ).fetchone()
        if not row:
            return None
        return Holding(
            id=row[0], ticker=row[1], name=row[2],
            price=row[3] or 0.0, price_updated_at=row[4],
        )

    def list_holdings(self) -> list[Holding]:
        rows = get_db().execute(
            "SELECT id, ticker, name, price, price_updated_at "
            "FROM universal_holdings ORDER BY ticker"
        ).fetchall()
        return [
            Holding(id=r[0], ticker=r[1], name=r[2], price=r[3] or 0.0,
                    price_updated_at=r[4])
            for r in rows
        ]

    def holding_price(self, ticker: str) -> float | None:
        """Last known price for a holding, None if unknown or never priced."""
        holding = self.get_holding(ticker)
        if holding is None or holding.price <= 0:
            return None
        return holding.price

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def add_position(
        self,
        account_id: str,
        symbol: str,
        quantity: float,
        entry_price: float,
        current_price: float | None = None,
    ) -> Position | None:
        """Record a position. None if the account does not exist."""
        if quantity < 0 or entry_price < 0 or (current_price or 0) < 0:
            msg = "Quantity and prices must be non-negative"
            raise ValueError(msg)
        if self.get_account(account_id) is None:
            return None

        now = datetime.now()
        position = Position(
            id=_new_id(),
            symbol=symbol.strip().upper(),
            quantity=quantity,
            entry_price=entry_price,
            current_price=entry_price if current_price is None else current_price,
            price_updated_at=now,
        )
        db = get_db()
        db.execute(
            """
            INSERT INTO positions
                (id, account_id, symbol, quantity, entry_price, current_price,
                 price_updated_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [position.id, account_id, position.symbol, quantity, entry_price,
             position.current_price, now, now],
        )
        db.commit()
        logger.info(
            "[Portfolio] Position %s x%.4f @ $%.2f added to %s",
            position.symbol, quantity, position.current_price, account_id,
        )
        return position

    def list_positions(self, account_id: str) -> list[Position]:
        rows = get_db().execute(
            "SELECT id, symbol, quantity, entry_price, current_price, price_updated_at "
            "FROM positions WHERE account_id = ? ORDER BY symbol",
            [account_id],
        ).fetchall()
        return [
            Position(
                id=r[0], symbol=r[1], quantity=r[2], entry_price=r[3],
                current_price=r[4], price_updated_at=r[5],
            )
            for r in rows
        ]

    def update_position_price(self, position_id: str, price: float) -> bool:
        if price < 0:
            msg = "Price must be non-negative"
            raise ValueError(msg)
        db = get_db()
        row = db.execute(
            "SELECT id FROM positions WHERE id = ?", [position_id]
        ).fetchone()
        if not row:
            return False
        db.execute(
            "UPDATE positions SET current_price = ?, price_updated_at = ? WHERE id = ?",
            [price, datetime.now(), position_id],
        )
        db.commit()
        return True

    def delete_position(self, position_id: str) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT id FROM positions WHERE id = ?", [position_id]
        ).fetchone()
        if not row:
            return False
        db.execute("DELETE FROM positions WHERE id = ?", [position_id])
        db.commit()
        return True

    # ------------------------------------------------------------------
    # Target allocations
    # ------------------------------------------------------------------

    def list_target_allocations(self, account_id: str) -> list[TargetAllocation]:
        rows = get_db().execute(
            """
            SELECT a.id, h.ticker, h.name, a.target_percentage, h.id
            FROM target_allocations a
            JOIN universal_holdings h ON h.id = a.holding_id
            WHERE a.account_id = ?
            ORDER BY a.target_percentage DESC, h.ticker
            """,
            [account_id],
        ).fetchall()
        return [
            TargetAllocation(
                id=r[0], ticker=r[1], name=r[2], target_percentage=r[3], holding_id=r[4],
            )
            for r in rows
        ]

    def set_target_allocation(
        self,
        account_id: str,
        ticker: str,
        target_percentage: float,
        name: str | None = None,
    ) -> TargetAllocation | None:
        """Create or replace the account's target for one holding.

        Raises ValueError if the account's targets would exceed 100%.
        """
        _check_percentage(target_percentage)
        if self.get_account(account_id) is None:
            return None

        holding = self.upsert_holding(ticker, name=name)
        current = self.list_target_allocations(account_id)
        others = sum(a.target_percentage for a in current if a.holding_id != holding.id)
        if others + target_percentage > 100 + _PCT_EPSILON:
            msg = (
                f"Target allocations would total {others + target_percentage:.2f}%; "
                "a standard account may not exceed 100%"
            )
            raise ValueError(msg)

        db = get_db()
        existing = next((a for a in current if a.holding_id == holding.id), None)
        if existing:
            db.execute(
                "UPDATE target_allocations SET target_percentage = ? WHERE id = ?",
                [target_percentage, existing.id],
            )
            alloc_id = existing.id
        else:
            alloc_id = _new_id()
            db.execute(
                "INSERT INTO target_allocations "
                "(id, account_id, holding_id, target_percentage, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [alloc_id, account_id, holding.id, target_percentage, datetime.now()],
            )
        db.commit()
        return TargetAllocation(
            id=alloc_id,
            ticker=holding.ticker,
            name=holding.name,
            target_percentage=target_percentage,
            holding_id=holding.id,
        )

    def delete_target_allocation(self, allocation_id: str) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT id FROM target_allocations WHERE id = ?", [allocation_id]
        ).fetchone()
        if not row:
            return False
        db.execute("DELETE FROM target_allocations WHERE id = ?", [allocation_id])
        db.commit()
        return True

    def clear_target_allocations(self, account_id: str) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) FROM target_allocations WHERE account_id = ?",
            [account_id],
        ).fetchone()
        db.execute("DELETE FROM target_allocations WHERE account_id = ?", [account_id])
        db.commit()
        return row[0] if row else 0

    # ------------------------------------------------------------------
    # Model portfolios
    # ------------------------------------------------------------------

    def create_model_portfolio(
        self, name: str, portfolio_type: str = "standard",
    ) -> ModelPortfolio:
        if portfolio_type not in PORTFOLIO_TYPES:
            msg = f"Invalid portfolio type: {portfolio_type}"
            raise ValueError(msg)
        db = get_db()
        portfolio = ModelPortfolio(id=_new_id(), name=name, portfolio_type=portfolio_type)
        db.execute(
            "INSERT INTO model_portfolios (id, name, portfolio_type, created_at) "
            "VALUES (?, ?, ?, ?)",
            [portfolio.id, name, portfolio_type, datetime.now()],
        )
        db.commit()
        logger.info("[Portfolio] Created %s model portfolio '%s'", portfolio_type, name)
        return portfolio

    def get_model_portfolio(self, portfolio_id: str) -> ModelPortfolio | None:
        db = get_db()
        row = db.execute(
            "SELECT id, name, portfolio_type FROM model_portfolios WHERE id = ?",
            [portfolio_id],
        ).fetchone()
        if not row:
            return None
        allocs = db.execute(
            """
            SELECT m.id, h.ticker, h.name, m.target_percentage, h.id
            FROM model_portfolio_allocations m
            JOIN universal_holdings h ON h.id = m.holding_id
            WHERE m.portfolio_id = ?
            ORDER BY m.target_percentage DESC, h.ticker
            """,
            [portfolio_id],
        ).fetchall()
        return ModelPortfolio(
            id=row[0],
            name=row[1],
            portfolio_type=row[2] or "standard",
            allocations=[
                TargetAllocation(
                    id=a[0], ticker=a[1], name=a[2], target_percentage=a[3], holding_id=a[4],
                )
                for a in allocs
            ],
        )

    def list_model_portfolios(self) -> list[ModelPortfolio]:
        rows = get_db().execute(
            "SELECT id FROM model_portfolios ORDER BY name"
        ).fetchall()
        return [p for p in (self.get_model_portfolio(r[0]) for r in rows) if p]

    def add_model_allocation(
        self,
        portfolio_id: str,
        ticker: str,
        target_percentage: float,
        name: str | None = None,
    ) -> ModelPortfolio | None:
        """Add a holding to a model portfolio, or replace its percentage.

        Standard portfolios must stay at or under 100%; watchlists may exceed it.
        """
        _check_percentage(target_percentage)
        portfolio = self.get_model_portfolio(portfolio_id)
        if portfolio is None:
            return None

        holding = self.upsert_holding(ticker, name=name)
        existing = next(
            (a for a in portfolio.allocations if a.holding_id == holding.id), None,
        )
        others = portfolio.total_percentage - (existing.target_percentage if existing else 0)
        total = others + target_percentage
        if portfolio.portfolio_type == "standard" and total > 100 + _PCT_EPSILON:
            msg = (
                f"Allocations would total {total:.2f}%; "
                "only watchlist portfolios may exceed 100%"
            )
            raise ValueError(msg)

        db = get_db()
        if existing:
            db.execute(
                "UPDATE model_portfolio_allocations SET target_percentage = ? WHERE id = ?",
                [target_percentage, existing.id],
            )
        else:
            db.execute(
                "INSERT INTO model_portfolio_allocations "
                "(id, portfolio_id, holding_id, target_percentage) VALUES (?, ?, ?, ?)",
                [_new_id(), portfolio_id, holding.id, target_percentage],
            )
        db.commit()
        return self.get_model_portfolio(portfolio_id)

    def copy_allocations_from_portfolio(
        self, account_id: str, portfolio_id: str,
    ) -> dict | None:
        """Replace the account's targets with a model portfolio's.

        Raises ValueError if the portfolio totals over 100% (a watchlist),
        since account targets are capped at 100%.
        """
        if self.get_account(account_id) is None:
            return None
        portfolio = self.get_model_portfolio(portfolio_id)
        if portfolio is None:
            return None
        if portfolio.total_percentage > 100 + _PCT_EPSILON:
            msg = (
                f"'{portfolio.name}' totals {portfolio.total_percentage:.2f}%; "
                "account targets may not exceed 100%"
            )
            raise ValueError(msg)

        self.clear_target_allocations(account_id)
        db = get_db()
        now = datetime.now()
        for alloc in portfolio.allocations:
            db.execute(
                "INSERT INTO target_allocations "
                "(id, account_id, holding_id, target_percentage, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [_new_id(), account_id, alloc.holding_id, alloc.target_percentage, now],
            )
        db.commit()
        logger.info(
            "[Portfolio] Copied %d allocations from '%s' to account %s",
            len(portfolio.allocations), portfolio.name, account_id,
        )
        return {
            "success": True,
            "copied_from": portfolio.name,
            "allocations_count": len(portfolio.allocations),
        }

    # ------------------------------------------------------------------
    # Comparison & prices
    # ------------------------------------------------------------------

    def compare_account(
        self, account_id: str, tolerance: float | None = None,
    ) -> ComparisonReport | None:
        """Run the comparison engine on an account's stored data."""
        if self.get_account(account_id) is None:
            return None

        positions = self.list_positions(account_id)
        allocations = self.list_target_allocations(account_id)
        report = compare(
            positions,
            allocations,
            price_lookup=self.holding_price,
            tolerance=settings.REBALANCE_TOLERANCE_PCT if tolerance is None else tolerance,
        )
        logger.info(
            "[Portfolio] Compared account %s: %d items, %d missing, %d unexpected",
            account_id, len(report.items), len(report.missing), len(report.unexpected),
        )
        return report

    async def refresh_prices(self, account_id: str) -> dict | None:
        """Pull live prices for an account's positions and targeted holdings."""
        if self.get_account(account_id) is None:
            return None

        positions = self.list_positions(account_id)
        allocations = self.list_target_allocations(account_id)
        # Cash is pegged by convention, never priced
        tickers = sorted(
            {p.symbol for p in positions if p.symbol != "CASH"}
            | {a.ticker for a in allocations if a.ticker != "CASH"}
        )
        prices = await market_data.fetch_prices(tickers)

        updated = 0
        for pos in positions:
            price = prices.get(pos.symbol)
            if price is not None and self.update_position_price(pos.id, price):
                updated += 1
        for ticker, price in prices.items():
            self.upsert_holding(ticker, price=price)

        return {
            "requested": len(tickers),
            "priced": len(prices),
            "positions_updated": updated,
            "missing": [t for t in tickers if t not in prices],
        }
