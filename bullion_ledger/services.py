"""High-level application services orchestrating the bullion_ledger backend."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Iterable, Optional

from .config import AppConfig
from .confirmation import ConfirmationPlan, SaleConfirmation, SaleConfirmationError, plan_confirmation
from .database import SQLiteRepository
from .ghaat import (
    calculate_merchant_jewellery_dues,
    calculate_monthly_profit,
    calculate_pnl,
    calculate_raw_gold_balance,
    calculate_stock,
    group_pending_sales,
)
from .importers import TradeSheetImporter
from .ledger import calculate_merchant_balance, calculate_merchant_running_balances, filter_by_date_range
from .models import (
    SETTLEMENT_DIRECTIONS,
    TRADE_TYPES,
    GhaatMonthlyProfit,
    GhaatPnL,
    GhaatStockItem,
    GhaatTransaction,
    GoldRate,
    Merchant,
    MerchantBalance,
    MerchantJewelleryDues,
    PendingSaleGroup,
    RawGoldLedgerEntry,
    Trade,
    TradeWithBalance,
    new_id,
    utcnow,
)
from .price_service import GoldRateService

logger = logging.getLogger(__name__)


class LedgerService:
    """Coordinates persistence with the ledger and ghaat calculators."""

    def __init__(self, config: AppConfig, repository: SQLiteRepository, rate_service: GoldRateService) -> None:
        self._config = config
        self._repository = repository
        self._rate_service = rate_service

    # ------------------------------------------------------------------
    # Merchants and their running balance
    # ------------------------------------------------------------------
    def add_merchant(self, merchant: Merchant) -> Merchant:
        if not merchant.name.strip():
            raise ValueError("Merchant name is required.")
        return self._repository.add_merchant(merchant)

    def get_merchant(self, merchant_id: str) -> Merchant:
        merchant = self._repository.get_merchant(merchant_id)
        if merchant is None:
            raise LookupError(f"Merchant {merchant_id} not found.")
        return merchant

    def list_merchants(self) -> list[Merchant]:
        return self._repository.list_merchants()

    def update_merchant(self, merchant_id: str, merchant: Merchant) -> Merchant:
        """Replace a merchant's details, keeping its id and creation time."""

        existing = self.get_merchant(merchant_id)
        if not merchant.name.strip():
            raise ValueError("Merchant name is required.")
        merchant = replace(merchant, id=existing.id, created_at=existing.created_at)
        if not self._repository.update_merchant(merchant):
            raise LookupError(f"Merchant {merchant_id} not found.")
        logger.info("Updated merchant %s", merchant.name)
        return merchant

    def delete_merchant(self, merchant_id: str) -> None:
        merchant = self.get_merchant(merchant_id)
        if not self._repository.delete_merchant(merchant_id):
            raise LookupError(f"Merchant {merchant_id} not found.")
        logger.info("Deleted merchant %s", merchant.name)

    def merchant_balance(self, merchant_id: str) -> MerchantBalance:
        """Replay the merchant's trades on top of opening and jewellery dues.

        Shortfalls left by confirmed jewellery sales are not trades, so they
        are added to the opening due before the fold.
        """

        merchant = self.get_merchant(merchant_id)
        initial_due, initial_owe = self._opening_balance(merchant, self._repository.fetch_ghaat_transactions())
        trades = self._repository.fetch_trades(merchant_id)
        return calculate_merchant_balance(merchant_id, trades, initial_due, initial_owe)

    def merchant_statement(
        self,
        merchant_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[TradeWithBalance]:
        """Trades of one merchant with the running balance, newest first."""

        merchant = self.get_merchant(merchant_id)
        initial_due, initial_owe = self._opening_balance(merchant, self._repository.fetch_ghaat_transactions())
        rows = calculate_merchant_running_balances(
            merchant_id,
            self._repository.fetch_trades(merchant_id),
            initial_due,
            initial_owe,
        )
        return filter_by_date_range(rows, start_date, end_date)

    def merchant_overview(self) -> list[tuple[Merchant, MerchantBalance]]:
        """Every merchant with its balance, largest outstanding position first."""

        trades = self._repository.fetch_trades()
        ghaat = self._repository.fetch_ghaat_transactions()
        overview = []
        for merchant in self._repository.list_merchants():
            initial_due, initial_owe = self._opening_balance(merchant, ghaat)
            overview.append((merchant, calculate_merchant_balance(merchant.id, trades, initial_due, initial_owe)))
        overview.sort(key=lambda pair: pair[1].due + pair[1].owe, reverse=True)
        return overview

    @staticmethod
    def _opening_balance(merchant: Merchant, ghaat: Iterable[GhaatTransaction]) -> tuple[float, float]:
        dues = calculate_merchant_jewellery_dues(merchant.id, ghaat)
        return merchant.total_due + dues.cash_due, merchant.total_owe

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------
    def record_trade(self, trade: Trade) -> Trade:
        trade, merchant = self._validate_trade(trade)
        self._repository.add_trade(trade)
        logger.info("Recorded %s trade %s for merchant %s", trade.type, trade.id, merchant.name)
        return trade

    def update_trade(self, trade_id: str, trade: Trade) -> Trade:
        """Replace a trade in place; balances are replayed from history on the next read."""

        existing = self._repository.get_trade(trade_id)
        if existing is None:
            raise LookupError(f"Trade {trade_id} not found.")
        trade, merchant = self._validate_trade(replace(trade, id=existing.id, created_at=existing.created_at))
        if not self._repository.update_trade(trade):
            raise LookupError(f"Trade {trade_id} not found.")
        logger.info("Updated %s trade %s for merchant %s", trade.type, trade.id, merchant.name)
        return trade

    def delete_trade(self, trade_id: str) -> None:
        if not self._repository.delete_trade(trade_id):
            raise LookupError(f"Trade {trade_id} not found.")

    def _validate_trade(self, trade: Trade) -> tuple[Trade, Merchant]:
        if trade.type not in TRADE_TYPES:
            raise ValueError(f"Unknown trade type '{trade.type}'.")
        if trade.type == "settlement" and trade.settlement_direction not in SETTLEMENT_DIRECTIONS:
            raise ValueError("Settlement direction must be 'receiving' or 'paying'.")
        merchant = self.get_merchant(trade.merchant_id)
        if not trade.merchant_name:
            trade = replace(trade, merchant_name=merchant.name)
        return trade, merchant

    def import_trades(self, sheet_path: Optional[Path] = None) -> int:
        """Import a trade sheet and persist every row in one transaction."""

        path = sheet_path or self._config.trades_file
        lookup: dict[str, Merchant] = {}
        for merchant in self._repository.list_merchants():
            lookup[merchant.id] = merchant
            lookup[merchant.name] = merchant
        trades = TradeSheetImporter(path, lookup).load()
        return self._repository.add_trades(trades)

    # ------------------------------------------------------------------
    # Ghaat (jewellery) subledger
    # ------------------------------------------------------------------
    def ghaat_transactions(self) -> list[GhaatTransaction]:
        return self._repository.fetch_ghaat_transactions()

    def ghaat_stock(self) -> list[GhaatStockItem]:
        return calculate_stock(self._repository.fetch_ghaat_transactions())

    def ghaat_pnl(self) -> GhaatPnL:
        return calculate_pnl(self._repository.fetch_ghaat_transactions())

    def ghaat_monthly_profit(self) -> list[GhaatMonthlyProfit]:
        return calculate_monthly_profit(self._repository.fetch_ghaat_transactions())

    def pending_sales(self) -> list[PendingSaleGroup]:
        return group_pending_sales(self._repository.fetch_ghaat_transactions())

    def jewellery_dues(self, merchant_id: str) -> MerchantJewelleryDues:
        self.get_merchant(merchant_id)
        return calculate_merchant_jewellery_dues(merchant_id, self._repository.fetch_ghaat_transactions())

    def record_ghaat_transaction(self, txn: GhaatTransaction) -> GhaatTransaction:
        """Store a buy (or a legacy direct sell) and any gold paid to the karigar."""

        _validate_line_item(txn)
        if txn.type == "sell" and txn.status == "pending":
            raise ValueError("Pending sales are created by giving jewellery to a merchant.")

        self._repository.add_ghaat_transactions([txn], _karigar_payment_entries(txn))
        return txn

    def update_ghaat_transaction(self, transaction_id: str, txn: GhaatTransaction) -> GhaatTransaction:
        """Edit a buy or a direct sell; the karigar payment in raw gold follows the edit.

        Rows in the pending-sale workflow are changed only by confirming the sale.
        """

        existing = self._repository.get_ghaat_transaction(transaction_id)
        if existing is None:
            raise LookupError(f"Ghaat transaction {transaction_id} not found.")
        if existing.status is not None:
            raise ValueError(f"Ghaat transaction {transaction_id} is {existing.status} and cannot be edited.")
        _validate_line_item(txn)
        txn = replace(
            txn,
            id=existing.id,
            type=existing.type,
            status=None,
            group_id=existing.group_id,
            return_key=existing.return_key,
            created_at=existing.created_at,
            updated_at=utcnow(),
        )
        if not self._repository.update_ghaat_transaction(txn, _karigar_payment_entries(txn)):
            raise ValueError(f"Ghaat transaction {transaction_id} changed while being edited.")
        logger.info("Updated ghaat %s %s", txn.type, txn.id)
        return txn

    def give_to_merchant(
        self,
        merchant_id: str,
        items: Iterable[GhaatTransaction],
        transaction_date: date,
        notes: Optional[str] = None,
    ) -> PendingSaleGroup:
        """Hand jewellery to a merchant on approval as one pending sale group."""

        merchant = self.get_merchant(merchant_id)
        group_id = new_id()
        pending: list[GhaatTransaction] = []
        for item in items:
            _validate_line_item(item)
            pending.append(
                replace(
                    item,
                    type="sell",
                    status="pending",
                    group_id=group_id,
                    merchant_id=merchant.id,
                    merchant_name=merchant.name,
                    karigar_id=None,
                    karigar_name=None,
                    transaction_date=transaction_date,
                    notes=item.notes or notes,
                )
            )
        if not pending:
            raise ValueError("At least one line item is required.")

        self._repository.add_ghaat_transactions(pending)
        logger.info("Gave %d line item(s) to %s as pending group %s", len(pending), merchant.name, group_id)
        return group_pending_sales(pending)[0]

    def confirm_sale(self, request: SaleConfirmation) -> ConfirmationPlan:
        """Confirm a pending sale group and persist the outcome atomically."""

        group = self._repository.list_ghaat_group(request.group_id)
        if not group:
            raise LookupError(f"Pending sale {request.group_id} not found.")
        try:
            plan = plan_confirmation(request, group)
        except SaleConfirmationError as exc:
            logger.warning("Rejected confirmation of group %s: %s", request.group_id, exc)
            raise

        self._repository.persist_ghaat_confirmation(plan.updates, plan.returns, plan.ledger_entries)
        logger.info(
            "Confirmed group %s: %d item(s), %d buy-back(s), shortfall %.2f",
            request.group_id,
            len(plan.updates),
            len(plan.returns),
            plan.dues_shortfall,
        )
        return plan

    def delete_ghaat_transaction(self, transaction_id: str) -> None:
        if not self._repository.delete_ghaat_transaction(transaction_id):
            raise LookupError(f"Ghaat transaction {transaction_id} not found.")

    def raw_gold_entries(self, counterparty_id: Optional[str] = None) -> list[RawGoldLedgerEntry]:
        return self._repository.list_raw_gold_entries(counterparty_id)

    def raw_gold_balance(self) -> float:
        return calculate_raw_gold_balance(self._repository.list_raw_gold_entries())

    def record_raw_gold_entry(self, entry: RawGoldLedgerEntry) -> RawGoldLedgerEntry:
        """Book a manual adjustment or an opening balance of raw gold."""

        if entry.gross_weight <= 0:
            raise ValueError("Gross weight must be > 0.")
        if not 0 < entry.purity <= 100:
            raise ValueError("Purity must be between 0 and 100.")
        self._repository.add_raw_gold_entry(entry)
        logger.info("Recorded raw gold %s of %.3f g fine (%s)", entry.type, entry.fine_gold, entry.source)
        return entry

    # ------------------------------------------------------------------
    # Market data utilities
    # ------------------------------------------------------------------
    def refresh_gold_rate(self, currency: Optional[str] = None) -> Optional[GoldRate]:
        rate = self._rate_service.fetch_rate_per_10gm(currency or self._config.currency)
        if rate:
            self._repository.upsert_gold_rate(rate)
        return rate

    def latest_gold_rate(self, currency: Optional[str] = None) -> Optional[GoldRate]:
        return self._repository.get_latest_gold_rate(currency or self._config.currency)


def _karigar_payment_entries(txn: GhaatTransaction) -> list[RawGoldLedgerEntry]:
    """The raw gold handed to the karigar for a buy, if any."""

    if txn.type != "buy" or not txn.gold_given_fine:
        return []
    return [
        RawGoldLedgerEntry(
            type="out",
            source="karigar_payment",
            gross_weight=txn.gold_given_weight,
            purity=txn.gold_given_purity,
            transaction_date=txn.effective_date,
            cash_amount=txn.cash_paid,
            counterparty_name=txn.karigar_name or "",
            counterparty_id=txn.karigar_id,
            reference_id=txn.id,
            notes=f"Payment for {txn.units} x {txn.category}",
        )
    ]


def _validate_line_item(txn: GhaatTransaction) -> None:
    if not txn.category.strip():
        raise ValueError("Category is required.")
    if txn.units <= 0:
        raise ValueError("Units must be > 0.")
    if txn.gross_weight_per_unit <= 0:
        raise ValueError("Gross weight per unit must be > 0.")
    if not 0 < txn.purity <= 100:
        raise ValueError("Purity must be between 0 and 100.")
