"""Comparison engine — actual holdings vs. target allocations.

Given an account's positions and its target percentages, works out how far
each holding sits from its target and the trade that closes the gap:

  - Positions and targets are matched on the normalized ticker
    (``XIC.TO`` and ``xic`` are the same holding).
  - Held positions with no target are *unexpected* and fully liquidated.
  - Targets with no held position are *missing*: actual 0%, and the full
    target value is a buy.

Pure and synchronous; no I/O. Values carry full float precision, rounding
is left to ``ComparisonReport.display()``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import Optional

from practice_os.models.portfolio import (
    ActionType,
    ComparisonReport,
    Position,
    TargetAllocation,
    TargetedItem,
    UnexpectedItem,
)

DEFAULT_TOLERANCE_PCT = 2.0

# Trades smaller than half a cent are not worth placing
_MIN_ACTION_DOLLARS = 0.005

EXCHANGE_SUFFIXES = ("TO", "V", "CN", "NE", "TSX", "NYSE", "NASDAQ")
_SUFFIX_RE = re.compile(r"\.(?:%s)$" % "|".join(EXCHANGE_SUFFIXES))

PriceLookup = Callable[[str], Optional[float]]


def normalize_ticker(symbol: str) -> str:
    """Uppercase and strip one trailing exchange suffix (``XIC.TO`` → ``XIC``)."""
    return _SUFFIX_RE.sub("", symbol.strip().upper(), count=1)


def _pct(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


class _Held:
    """Positions aggregated under one normalized ticker (quantity always > 0)."""

    __slots__ = ("symbol", "quantity", "value")

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        self.quantity = 0.0
        self.value = 0.0

    def add(self, pos: Position) -> None:
        self.quantity += pos.quantity
        self.value += pos.quantity * pos.current_price

    @property
    def price(self) -> float:
        return self.value / self.quantity


def classify(variance: float, tolerance: float = DEFAULT_TOLERANCE_PCT) -> str:
    """Map a variance (actual − target, in points) to over / under / on-target."""
    if variance > tolerance:
        return "over"
    if variance < -tolerance:
        return "under"
    return "on-target"


def action_for(status: str, dollar_amount: float) -> ActionType:
    """Pick buy / sell / hold for a status and the dollar gap to close."""
    if status == "unexpected":
        return "sell"
    if status == "on-target" or abs(dollar_amount) < _MIN_ACTION_DOLLARS:
        return "hold"
    if status in ("over", "under"):
        return "buy" if dollar_amount > 0 else "sell"
    msg = f"Unknown holding status: {status!r}"
    raise ValueError(msg)


def _shares(dollar_amount: float, price: float) -> float:
    return dollar_amount / price if price > 0 else 0.0


def compare(
    positions: Iterable[Position],
    allocations: Iterable[TargetAllocation],
    price_lookup: PriceLookup | None = None,
    tolerance: float = DEFAULT_TOLERANCE_PCT,
) -> ComparisonReport:
    """Compare held positions against target allocations.

    ``price_lookup`` supplies a price for targets that are not held so the
    share count of the buy can be worked out; without one those items get
    ``action_shares = 0``.
    """
    allocations = list(allocations)

    held: dict[str, _Held] = {}
    for pos in positions:
        if pos.quantity <= 0:
            continue
        key = normalize_ticker(pos.symbol)
        if key not in held:
            held[key] = _Held(pos.symbol.strip().upper())
        held[key].add(pos)

    total_value = sum(h.value for h in held.values())
    items: list[TargetedItem | UnexpectedItem] = []
    targeted: set[str] = set()

    for alloc in allocations:
        key = normalize_ticker(alloc.ticker)
        targeted.add(key)
        match = held.get(key)

        actual_value = match.value if match else 0.0
        quantity = match.quantity if match else 0.0
        if match:
            price = match.price
        else:
            price = (price_lookup(alloc.ticker) if price_lookup else None) or 0.0

        actual_pct = _pct(actual_value, total_value)
        target_value = total_value * alloc.target_percentage / 100
        variance = actual_pct - alloc.target_percentage
        status = classify(variance, tolerance)
        dollars = target_value - actual_value

        items.append(TargetedItem(
            allocation_id=alloc.id,
            ticker=alloc.ticker.strip().upper(),
            name=alloc.name or alloc.ticker.upper(),
            target_percentage=alloc.target_percentage,
            actual_percentage=actual_pct,
            variance=variance,
            actual_value=actual_value,
            target_value=target_value,
            quantity=quantity,
            status=status,
            action_type=action_for(status, dollars),
            action_dollar_amount=dollars,
            action_shares=_shares(dollars, price),
            current_price=price,
        ))

    for key, h in held.items():
        if key in targeted:
            continue
        actual_pct = _pct(h.value, total_value)
        items.append(UnexpectedItem(
            ticker=h.symbol,
            name=h.symbol,
            actual_percentage=actual_pct,
            variance=actual_pct,
            actual_value=h.value,
            quantity=h.quantity,
            action_dollar_amount=-h.value,
            action_shares=-h.quantity,
            current_price=h.price,
        ))

    # Largest discrepancy first
    items.sort(key=lambda i: abs(i.variance), reverse=True)

    return ComparisonReport(
        has_target_allocations=len(allocations) > 0,
        total_actual_value=total_value,
        total_target_percentage=sum(a.target_percentage for a in allocations),
        items=items,
    )
