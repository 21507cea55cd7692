"""Merchant running-balance ledger.

A merchant's position is never stored.  It is replayed from the opening
balances and the merchant's trades in chronological order:

* ``due`` is what the merchant owes the business.
* ``owe`` is what the business owes the merchant.

After every trade the two sides are netted off so that at most one of them
is positive.  All functions here are pure folds over in-memory records.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from .models import MerchantBalance, Trade, TradeWithBalance


def sort_chronologically(trades: Iterable[Trade]) -> list[Trade]:
    """Return ``trades`` ordered by effective date, keeping input order on ties."""

    return sorted(trades, key=lambda trade: trade.effective_timestamp)


def apply_trade(due: float, owe: float, trade: Trade) -> tuple[float, float]:
    """Apply a single trade to ``(due, owe)`` and net the result off."""

    total = trade.total_amount or 0.0

    if trade.type == "buy":
        paid = trade.amount_paid if trade.amount_paid is not None else 0.0
        diff = paid - total
        if diff < 0:
            unpaid = -diff
            if due >= unpaid:
                due -= unpaid
            else:
                owe += unpaid - due
                due = 0.0
        elif diff > 0:
            # Overpaying a buy is booked against the merchant, not as an advance we owe.
            due += diff

    elif trade.type == "sell":
        due += total
        if trade.amount_received is not None:
            due -= trade.amount_received
            if due < 0:
                owe += abs(due)
                due = 0.0

    elif trade.type == "settlement":
        if trade.settlement_direction == "receiving":
            if due > 0:
                excess = total - due
                due = max(0.0, due - total)
                if excess > 0:
                    owe += excess
            else:
                owe += total
        elif trade.settlement_direction == "paying":
            due += total

    # transfers do not move the balance

    return net_off(due, owe)


def net_off(due: float, owe: float) -> tuple[float, float]:
    """Collapse simultaneous due and owe positions into one side."""

    if due > 0 and owe > 0:
        if due >= owe:
            return due - owe, 0.0
        return 0.0, owe - due
    return due, owe


def calculate_balance(trades: Iterable[Trade], initial_due: float = 0.0, initial_owe: float = 0.0) -> MerchantBalance:
    """Fold ``trades`` into a final balance.

    The trades are sorted internally, so callers may pass them in any order.
    Both sides of the result are clamped at zero.
    """

    due = initial_due or 0.0
    owe = initial_owe or 0.0
    for trade in sort_chronologically(trades):
        due, owe = apply_trade(due, owe, trade)
    return MerchantBalance(due=max(0.0, due), owe=max(0.0, owe))


def calculate_running_balances(
    trades: Iterable[Trade],
    initial_due: float = 0.0,
    initial_owe: float = 0.0,
) -> list[TradeWithBalance]:
    """Return one balance snapshot per trade, most recent trade first.

    Snapshots are taken after the net-off step of each trade and clamped at
    zero for display; the fold itself carries the unclamped accumulators so
    the final row always matches :func:`calculate_balance`.
    """

    due = initial_due or 0.0
    owe = initial_owe or 0.0
    rows: list[TradeWithBalance] = []
    for trade in sort_chronologically(trades):
        due, owe = apply_trade(due, owe, trade)
        rows.append(TradeWithBalance(trade=trade, due=max(0.0, due), owe=max(0.0, owe)))
    rows.reverse()
    return rows


def trades_for_merchant(merchant_id: str, trades: Iterable[Trade]) -> list[Trade]:
    return [trade for trade in trades if trade.merchant_id == merchant_id]


def calculate_merchant_balance(
    merchant_id: str,
    trades: Iterable[Trade],
    initial_due: float = 0.0,
    initial_owe: float = 0.0,
) -> MerchantBalance:
    """Balance of one merchant; trades of other merchants are ignored."""

    return calculate_balance(trades_for_merchant(merchant_id, trades), initial_due, initial_owe)


def calculate_merchant_running_balances(
    merchant_id: str,
    trades: Iterable[Trade],
    initial_due: float = 0.0,
    initial_owe: float = 0.0,
) -> list[TradeWithBalance]:
    return calculate_running_balances(trades_for_merchant(merchant_id, trades), initial_due, initial_owe)


def filter_by_date_range(
    rows: Iterable[TradeWithBalance],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[TradeWithBalance]:
    """Keep statement rows whose effective date lies within the inclusive range.

    Filtering happens after the fold so the balances on the remaining rows
    still account for the trades outside the range.
    """

    selected: list[TradeWithBalance] = []
    for row in rows:
        day = row.trade.effective_timestamp.date()
        if start_date is not None and day < start_date:
            continue
        if end_date is not None and day > end_date:
            continue
        selected.append(row)
    return selected


__all__ = [
    "apply_trade",
    "net_off",
    "calculate_balance",
    "calculate_running_balances",
    "calculate_merchant_balance",
    "calculate_merchant_running_balances",
    "filter_by_date_range",
    "sort_chronologically",
    "trades_for_merchant",
]
