"""Portfolio models — Position, TargetAllocation and the comparison report.

Positions and allocations are the plain inputs of the comparison engine.
Comparison items are discriminated on ``status``: holdings with a target
(over / under / on-target) carry their allocation id, unexpected holdings
never do.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

HoldingStatus = Literal["over", "under", "on-target", "unexpected"]
ActionType = Literal["buy", "sell", "hold"]
AccountType = Literal["individual", "corporate", "joint"]
PortfolioType = Literal["standard", "watchlist"]


class Position(BaseModel):
    """A held position in one account."""

    id: str = ""
    symbol: str
    quantity: float = 0.0
    entry_price: float = 0.0
    current_price: float = 0.0
    price_updated_at: datetime | None = None


class TargetAllocation(BaseModel):
    """Desired share of an account's value for one holding."""

    id: str
    ticker: str
    name: str = ""
    target_percentage: float = Field(gt=0, le=100)
    holding_id: str | None = None


class ComparisonItem(BaseModel):
    """One row of the target-vs-actual comparison."""

    allocation_id: str | None = None
    ticker: str
    name: str
    target_percentage: float = 0.0
    actual_percentage: float = 0.0
    variance: float = 0.0
    actual_value: float = 0.0
    target_value: float = 0.0
    quantity: float = 0.0
    status: HoldingStatus
    action_type: ActionType
    action_dollar_amount: float = 0.0
    action_shares: float = 0.0
    current_price: float = 0.0

    @property
    def is_missing(self) -> bool:
        """Targeted but not held at all."""
        return self.target_percentage > 0 and self.actual_percentage == 0


class TargetedItem(ComparisonItem):
    """A holding that has a target allocation (held or missing)."""

    allocation_id: str
    status: Literal["over", "under", "on-target"]


class UnexpectedItem(ComparisonItem):
    """A held position with no target: always a full liquidation."""

    allocation_id: None = None
    target_percentage: float = 0.0
    target_value: float = 0.0
    status: Literal["unexpected"] = "unexpected"
    action_type: Literal["sell"] = "sell"


AnyComparisonItem = Annotated[
    Union[TargetedItem, UnexpectedItem], Field(discriminator="status")
]


class ComparisonReport(BaseModel):
    """Full comparison for one account."""

    has_target_allocations: bool = False
    total_actual_value: float = 0.0
    total_target_percentage: float = 0.0
    items: list[AnyComparisonItem] = Field(default_factory=list)

    @property
    def missing(self) -> list[ComparisonItem]:
        return [i for i in self.items if i.is_missing]

    @property
    def unexpected(self) -> list[ComparisonItem]:
        return [i for i in self.items if i.status == "unexpected"]

    @property
    def buys(self) -> list[ComparisonItem]:
        return [i for i in self.items if i.action_type == "buy"]

    @property
    def sells(self) -> list[ComparisonItem]:
        return [i for i in self.items if i.action_type == "sell"]

    def display(self) -> dict:
        """Serialize rounded for presentation: currency 2dp, percentages 1dp."""
        rows = []
        for item in self.items:
            row = item.model_dump()
            for key in ("actual_value", "target_value", "action_dollar_amount",
                        "current_price"):
                row[key] = round(row[key], 2)
            for key in ("target_percentage", "actual_percentage", "variance"):
                row[key] = round(row[key], 1)
            row["action_shares"] = round(row["action_shares"], 4)
            row["is_missing"] = item.is_missing
            rows.append(row)
        return {
            "has_target_allocations": self.has_target_allocations,
            "total_actual_value": round(self.total_actual_value, 2),
            "total_target_percentage": round(self.total_target_percentage, 1),
            "comparison": rows,
            "missing_count": len(self.missing),
            "unexpected_count": len(self.unexpected),
        }


class Household(BaseModel):
    """A client household grouping one or more accounts."""

    id: str
    name: str
    created_at: datetime | None = None


class Account(BaseModel):
    """An investment account owned by a household."""

    id: str
    household_id: str
    account_type: AccountType
    nickname: str = ""
    created_at: datetime | None = None


class Holding(BaseModel):
    """A security known to the practice, shared across accounts."""

    id: str
    ticker: str
    name: str
    price: float = 0.0
    price_updated_at: datetime | None = None


class ModelPortfolio(BaseModel):
    """A reusable set of target allocations."""

    id: str
    name: str
    portfolio_type: PortfolioType = "standard"
    allocations: list[TargetAllocation] = Field(default_factory=list)

    @property
    def total_percentage(self) -> float:
        return sum(a.target_percentage for a in self.allocations)
