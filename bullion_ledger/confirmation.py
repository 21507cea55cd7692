"""Confirmation of pending jewellery sales.

Jewellery handed to a merchant is recorded as ``pending`` sells sharing a
``group_id``.  When the merchant books the sale, :func:`plan_confirmation`
turns the pending rows into ``sold`` rows priced at the agreed rate, returns
unsold pieces to stock as buy-back rows and works out how much of the sale
value is still owed by the merchant.

Planning is pure.  The repository applies a plan in a single database
transaction (see :meth:`SQLiteRepository.persist_ghaat_confirmation`).
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Iterable, Optional

from .models import (
    GHAAT_SETTLEMENT_TYPES,
    GhaatSettlementType,
    GhaatTransaction,
    RawGoldLedgerEntry,
    fine_weight,
    utcnow,
    value_at_rate,
)


class SaleConfirmationError(ValueError):
    """A confirmation request was rejected before anything was written."""


@dataclass(slots=True)
class ConfirmedItem:
    """Quantity the merchant actually kept out of one pending line item."""

    transaction_id: str
    confirmed_units: int


@dataclass(slots=True)
class SaleConfirmation:
    group_id: str
    items: list[ConfirmedItem]
    rate_per_10gm: float
    settlement_type: GhaatSettlementType
    confirmed_date: date
    gold_returned_weight: Optional[float] = None
    gold_returned_purity: Optional[float] = None
    cash_received: Optional[float] = None


@dataclass(slots=True)
class ConfirmationPlan:
    """Every write a confirmation needs, plus the settlement figures."""

    group_id: str
    updates: list[GhaatTransaction] = field(default_factory=list)
    returns: list[GhaatTransaction] = field(default_factory=list)
    ledger_entries: list[RawGoldLedgerEntry] = field(default_factory=list)
    total_amount: float = 0.0
    gold_returned_fine: float = 0.0
    total_received: float = 0.0
    dues_shortfall: float = 0.0


def return_key(group_id: str, transaction_id: str) -> str:
    return f"{group_id}:{transaction_id}"


def _validate(request: SaleConfirmation, by_id: dict[str, GhaatTransaction]) -> None:
    if not _is_number(request.rate_per_10gm) or request.rate_per_10gm <= 0:
        raise SaleConfirmationError("Rate per 10 gm must be > 0.")
    if request.settlement_type not in GHAAT_SETTLEMENT_TYPES:
        raise SaleConfirmationError("Invalid settlement type. Use 'gold', 'cash' or 'mixed'.")
    if not request.items:
        raise SaleConfirmationError("At least one line item must be confirmed.")

    seen: set[str] = set()
    for item in request.items:
        if item.transaction_id in seen:
            raise SaleConfirmationError(f"Line item {item.transaction_id} is listed twice.")
        seen.add(item.transaction_id)

        txn = by_id.get(item.transaction_id)
        if txn is None:
            raise SaleConfirmationError(
                f"Line item {item.transaction_id} is not part of pending sale {request.group_id}."
            )
        if txn.status == "sold":
            raise SaleConfirmationError(f"Line item {txn.id} has already been confirmed.")
        if txn.type != "sell" or txn.status != "pending":
            raise SaleConfirmationError(f"Line item {txn.id} is not a pending sale.")
        if item.confirmed_units < 0 or item.confirmed_units > txn.units:
            raise SaleConfirmationError(
                f"Confirmed units for {txn.category} must be between 0 and {txn.units}."
            )

    if request.settlement_type != "cash":
        weight = request.gold_returned_weight or 0
        purity = request.gold_returned_purity or 0
        if not _is_number(weight) or weight < 0:
            raise SaleConfirmationError("Gold returned weight must be a non-negative number.")
        if not _is_number(purity) or not 0 <= purity <= 100:
            raise SaleConfirmationError("Gold returned purity must be between 0 and 100.")
    if request.settlement_type != "gold":
        cash = request.cash_received or 0
        if not _is_number(cash) or cash < 0:
            raise SaleConfirmationError("Cash received must be a non-negative number.")


def _is_number(value: Optional[float]) -> bool:
    # NaN and infinities slip past the range checks.
    return value is not None and math.isfinite(value)


def plan_confirmation(request: SaleConfirmation, group_items: Iterable[GhaatTransaction]) -> ConfirmationPlan:
    """Compute the rows written by confirming ``request`` against its pending group.

    Raises:
        SaleConfirmationError: if the request violates a precondition.  No
            plan is produced in that case, so nothing can be written.
    """

    by_id = {txn.id: txn for txn in group_items}
    _validate(request, by_id)

    rate = request.rate_per_10gm
    takes_gold = request.settlement_type != "cash"
    takes_cash = request.settlement_type != "gold"

    gold_weight = request.gold_returned_weight if takes_gold else None
    gold_purity = request.gold_returned_purity if takes_gold else None
    gold_fine = fine_weight(gold_weight, gold_purity) if gold_weight and gold_purity else 0.0
    cash = (request.cash_received or 0.0) if takes_cash else 0.0

    confirmed: list[tuple[GhaatTransaction, int, float, float]] = []
    for item in request.items:
        txn = by_id[item.transaction_id]
        gross = item.confirmed_units * txn.gross_weight_per_unit
        # purity always comes from the original line item
        confirmed.append((txn, item.confirmed_units, gross, fine_weight(gross, txn.purity)))

    total_amount = value_at_rate(sum(entry[3] for entry in confirmed), rate)
    total_received = value_at_rate(gold_fine, rate) + cash
    shortfall = max(0.0, total_amount - total_received)
    # Shortfall is split evenly across line items, not weighted by value.
    shortfall_per_item = shortfall / len(confirmed)

    plan = ConfirmationPlan(
        group_id=request.group_id,
        total_amount=total_amount,
        gold_returned_fine=gold_fine,
        total_received=total_received,
        dues_shortfall=shortfall,
    )
    now = utcnow()

    for txn, units, gross, fine in confirmed:
        plan.updates.append(
            replace(
                txn,
                status="sold",
                rate_per_10gm=rate,
                total_amount=value_at_rate(fine, rate),
                settlement_type=request.settlement_type,
                gold_returned_weight=gold_weight,
                gold_returned_purity=gold_purity,
                gold_returned_fine=gold_fine or None,
                cash_received=cash or None,
                confirmed_date=request.confirmed_date,
                confirmed_units=units,
                confirmed_gross_weight=gross,
                confirmed_fine_gold=fine,
                dues_shortfall=shortfall_per_item,
                updated_at=now,
            )
        )

        returned_units = txn.units - units
        if returned_units > 0:
            plan.returns.append(
                GhaatTransaction(
                    type="buy",
                    category=txn.category,
                    units=returned_units,
                    gross_weight_per_unit=txn.gross_weight_per_unit,
                    purity=txn.purity,
                    merchant_id=txn.merchant_id,
                    merchant_name=txn.merchant_name,
                    notes=f"Returned from pending sale (group: {request.group_id})",
                    transaction_date=request.confirmed_date,
                    return_key=return_key(request.group_id, txn.id),
                )
            )

    if gold_fine > 0:
        first = confirmed[0][0]
        plan.ledger_entries.append(
            RawGoldLedgerEntry(
                type="in",
                source="merchant_return",
                gross_weight=gold_weight,
                purity=gold_purity,
                transaction_date=request.confirmed_date,
                counterparty_name=first.merchant_name or "",
                counterparty_id=first.merchant_id,
                reference_id=request.group_id,
                notes=f"Gold returned from merchant sale (group: {request.group_id})",
            )
        )

    return plan


__all__ = [
    "ConfirmedItem",
    "ConfirmationPlan",
    "SaleConfirmation",
    "SaleConfirmationError",
    "plan_confirmation",
    "return_key",
]
