"""Calculators for the jewellery fabrication (ghaat) subledger.

Stock treats every sell as gold that has left the business, whether or not
the merchant has confirmed it yet.  Profit only recognises confirmed and
legacy sales.  Buy-backs created when a merchant returns pieces are ordinary
``buy`` rows tied to the merchant, so they restore stock without counting as
a purchase from a karigar.
"""
from __future__ import annotations

from typing import Iterable, Optional

from .models import (
    GhaatMonthlyProfit,
    GhaatPnL,
    GhaatStockItem,
    GhaatTransaction,
    MerchantJewelleryDues,
    PendingSaleGroup,
    RawGoldLedgerEntry,
)


def is_karigar_purchase(txn: GhaatTransaction) -> bool:
    """True for buys that cost the business gold: from a karigar, or unattributed."""

    if txn.type != "buy":
        return False
    return bool(txn.karigar_id) or not txn.merchant_id


def realised_sale_fine_gold(txn: GhaatTransaction) -> Optional[float]:
    """Fine gold a sell contributes to profit, or ``None`` while it is pending."""

    if txn.type != "sell":
        return None
    if txn.status == "sold":
        if txn.confirmed_fine_gold is not None:
            return txn.confirmed_fine_gold
        return txn.fine_gold
    if txn.status is None:
        return txn.fine_gold
    return None


def stock_effect(txn: GhaatTransaction) -> float:
    return txn.fine_gold if txn.type == "buy" else -txn.fine_gold


def calculate_stock(transactions: Iterable[GhaatTransaction]) -> list[GhaatStockItem]:
    """Fold transactions into per-category stock, sorted by category name."""

    totals: dict[str, list[float]] = {}
    for txn in transactions:
        entry = totals.setdefault(txn.category, [0, 0.0, 0.0])
        sign = 1 if txn.type == "buy" else -1
        entry[0] += sign * txn.units
        entry[1] += sign * txn.total_gross_weight
        entry[2] += sign * txn.fine_gold

    return [
        GhaatStockItem(
            category=category,
            units=int(units),
            total_gross_weight=gross,
            total_fine_gold=fine,
        )
        for category, (units, gross, fine) in sorted(totals.items())
    ]


def calculate_pnl(transactions: Iterable[GhaatTransaction]) -> GhaatPnL:
    """Realised fine-gold profit; pending sells are excluded entirely."""

    total_buy = 0.0
    total_sell = 0.0
    gold_labor = 0.0
    cash_labor = 0.0

    for txn in transactions:
        if txn.type == "buy":
            if not is_karigar_purchase(txn):
                continue
            total_buy += txn.fine_gold
            if txn.labor_type == "gold" and txn.labor_amount:
                gold_labor += txn.labor_amount
            elif txn.labor_type == "cash" and txn.labor_amount:
                cash_labor += txn.labor_amount
        else:
            sold = realised_sale_fine_gold(txn)
            if sold is not None:
                total_sell += sold

    return GhaatPnL(
        total_buy_fine_gold=total_buy,
        total_sell_fine_gold=total_sell,
        gold_labor_paid=gold_labor,
        cash_labor_paid=cash_labor,
        # cash labour is a different currency and stays out of the gold profit
        net_gold_profit=total_sell - total_buy - gold_labor,
    )


def calculate_monthly_profit(transactions: Iterable[GhaatTransaction]) -> list[GhaatMonthlyProfit]:
    """Per-month profit by stock delta and by realised transactions.

    The running fine-gold balance is carried across months and never reset,
    so ``end_fine_gold`` of one month is ``start_fine_gold`` of the next.
    """

    ordered = sorted(transactions, key=lambda txn: txn.effective_date)

    months: dict[str, list[GhaatTransaction]] = {}
    for txn in ordered:
        months.setdefault(txn.effective_date.strftime("%Y-%m"), []).append(txn)

    running = 0.0
    results: list[GhaatMonthlyProfit] = []
    for month in sorted(months):
        start = running
        buy_fine = 0.0
        sell_fine = 0.0
        labor_gold = 0.0

        for txn in months[month]:
            running += stock_effect(txn)
            if txn.type == "buy":
                if is_karigar_purchase(txn):
                    buy_fine += txn.fine_gold
                    if txn.labor_type == "gold" and txn.labor_amount:
                        labor_gold += txn.labor_amount
            else:
                sold = realised_sale_fine_gold(txn)
                if sold is not None:
                    sell_fine += sold

        results.append(
            GhaatMonthlyProfit(
                month=month,
                start_fine_gold=start,
                end_fine_gold=running,
                stock_delta_profit=running - start,
                buy_fine_gold=buy_fine,
                sell_fine_gold=sell_fine,
                labor_gold=labor_gold,
                transaction_profit=sell_fine - buy_fine - labor_gold,
            )
        )
    return results


def group_pending_sales(transactions: Iterable[GhaatTransaction]) -> list[PendingSaleGroup]:
    """Group pending sells by ``group_id`` (the row id for ungrouped rows).

    Groups keep the order in which they first appear in ``transactions``.
    """

    grouped: dict[str, list[GhaatTransaction]] = {}
    for txn in transactions:
        if txn.type != "sell" or txn.status != "pending":
            continue
        grouped.setdefault(txn.group_id or txn.id, []).append(txn)

    groups: list[PendingSaleGroup] = []
    for group_id, items in grouped.items():
        first = items[0]
        groups.append(
            PendingSaleGroup(
                group_id=group_id,
                merchant_id=first.merchant_id or "",
                merchant_name=first.merchant_name or "",
                date_given=first.transaction_date,
                items=items,
                total_units=sum(item.units for item in items),
                total_gross_weight=sum(item.total_gross_weight for item in items),
                total_fine_gold=sum(item.fine_gold for item in items),
            )
        )
    return groups


def calculate_merchant_jewellery_dues(
    merchant_id: str,
    transactions: Iterable[GhaatTransaction],
) -> MerchantJewelleryDues:
    """Cash shortfall from confirmed sales and fine gold still out on approval."""

    cash_due = 0.0
    fine_pending = 0.0
    for txn in transactions:
        if txn.merchant_id != merchant_id or txn.type != "sell":
            continue
        if txn.status == "sold":
            cash_due += txn.dues_shortfall or 0.0
        elif txn.status == "pending":
            fine_pending += txn.fine_gold
    return MerchantJewelleryDues(fine_gold_pending=fine_pending, cash_due=cash_due)


def calculate_raw_gold_balance(entries: Iterable[RawGoldLedgerEntry]) -> float:
    balance = 0.0
    for entry in entries:
        if entry.type == "in":
            balance += entry.fine_gold
        else:
            balance -= entry.fine_gold
    return balance


__all__ = [
    "calculate_stock",
    "calculate_pnl",
    "calculate_monthly_profit",
    "group_pending_sales",
    "calculate_merchant_jewellery_dues",
    "calculate_raw_gold_balance",
    "is_karigar_purchase",
    "realised_sale_fine_gold",
]
