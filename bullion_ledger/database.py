"""SQLite persistence layer for the bullion_ledger backend.

The repository provides a small, well-typed API that hides SQL details from the
rest of the code.  It relies on the standard library :mod:`sqlite3` module and
hands fully materialised domain records to the calculators.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

from .confirmation import SaleConfirmationError
from .models import GhaatTransaction, GoldRate, Merchant, RawGoldLedgerEntry, Trade

logger = logging.getLogger(__name__)

TRADE_COLUMNS = (
    "id",
    "type",
    "merchant_id",
    "merchant_name",
    "total_amount",
    "amount_paid",
    "amount_received",
    "settlement_direction",
    "metal_type",
    "weight",
    "price_per_unit",
    "notes",
    "trade_date",
    "created_at",
)

GHAAT_COLUMNS = (
    "id",
    "type",
    "karigar_id",
    "karigar_name",
    "merchant_id",
    "merchant_name",
    "category",
    "units",
    "gross_weight_per_unit",
    "purity",
    "labor_type",
    "labor_amount",
    "amount_received",
    "notes",
    "transaction_date",
    "gold_given_weight",
    "gold_given_purity",
    "cash_paid",
    "status",
    "group_id",
    "rate_per_10gm",
    "total_amount",
    "settlement_type",
    "gold_returned_weight",
    "gold_returned_purity",
    "gold_returned_fine",
    "cash_received",
    "confirmed_date",
    "confirmed_units",
    "confirmed_gross_weight",
    "confirmed_fine_gold",
    "dues_shortfall",
    "return_key",
    "created_at",
    "updated_at",
)

# Derived from the columns above; stored for ad-hoc reporting, never read back.
GHAAT_DERIVED_COLUMNS = ("total_gross_weight", "fine_gold", "gold_given_fine")

CONFIRMATION_COLUMNS = (
    "status",
    "rate_per_10gm",
    "total_amount",
    "settlement_type",
    "gold_returned_weight",
    "gold_returned_purity",
    "gold_returned_fine",
    "cash_received",
    "confirmed_date",
    "confirmed_units",
    "confirmed_gross_weight",
    "confirmed_fine_gold",
    "dues_shortfall",
    "updated_at",
)

RAW_GOLD_COLUMNS = (
    "id",
    "type",
    "source",
    "reference_id",
    "gross_weight",
    "purity",
    "cash_amount",
    "counterparty_name",
    "counterparty_id",
    "notes",
    "transaction_date",
    "created_at",
)

DATE_COLUMNS = frozenset({"trade_date", "transaction_date", "confirmed_date"})
DATETIME_COLUMNS = frozenset({"created_at", "updated_at"})


class SQLiteRepository:
    """Encapsulates all SQLite access for the application.

    One connection is shared by every request thread; ``_lock`` serialises
    access to it so that a commit issued by one thread can never flush
    another thread's half-finished transaction.
    """

    def __init__(self, database_path: Path | str) -> None:
        # FastAPI runs sync routes on a worker thread pool.
        self._lock = threading.RLock()
        self._connection = sqlite3.connect(str(database_path), check_same_thread=False)
        self._connection.execute("PRAGMA foreign_keys = ON;")
        self._connection.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        with self._lock:
            self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        with self._lock:
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS merchants (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    phone TEXT,
                    email TEXT,
                    address TEXT,
                    total_due REAL NOT NULL DEFAULT 0,
                    total_owe REAL NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );
    
                CREATE TABLE IF NOT EXISTS trades (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL CHECK (type IN ('buy', 'sell', 'transfer', 'settlement')),
                    merchant_id TEXT NOT NULL,
                    merchant_name TEXT NOT NULL DEFAULT '',
                    total_amount REAL NOT NULL DEFAULT 0,
                    amount_paid REAL,
                    amount_received REAL,
                    settlement_direction TEXT CHECK (settlement_direction IN ('receiving', 'paying')),
                    metal_type TEXT,
                    weight REAL,
                    price_per_unit REAL,
                    notes TEXT,
                    trade_date TEXT,
                    created_at TEXT NOT NULL
                );
    
                CREATE INDEX IF NOT EXISTS idx_trades_merchant ON trades(merchant_id);
    
                CREATE TABLE IF NOT EXISTS ghaat_transactions (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL CHECK (type IN ('buy', 'sell')),
                    karigar_id TEXT,
                    karigar_name TEXT,
                    merchant_id TEXT,
                    merchant_name TEXT,
                    category TEXT NOT NULL,
                    units INTEGER NOT NULL DEFAULT 1,
                    gross_weight_per_unit REAL NOT NULL,
                    purity REAL NOT NULL,
                    total_gross_weight REAL NOT NULL,
                    fine_gold REAL NOT NULL,
                    labor_type TEXT CHECK (labor_type IN ('cash', 'gold')),
                    labor_amount REAL NOT NULL DEFAULT 0,
                    amount_received REAL,
                    notes TEXT,
                    transaction_date TEXT,
                    gold_given_weight REAL,
                    gold_given_purity REAL,
                    gold_given_fine REAL,
                    cash_paid REAL,
                    status TEXT CHECK (status IN ('pending', 'sold')),
                    group_id TEXT,
                    rate_per_10gm REAL,
                    total_amount REAL,
                    settlement_type TEXT CHECK (settlement_type IN ('gold', 'cash', 'mixed')),
                    gold_returned_weight REAL,
                    gold_returned_purity REAL,
                    gold_returned_fine REAL,
                    cash_received REAL,
                    confirmed_date TEXT,
                    confirmed_units INTEGER,
                    confirmed_gross_weight REAL,
                    confirmed_fine_gold REAL,
                    dues_shortfall REAL,
                    return_key TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
    
                CREATE INDEX IF NOT EXISTS idx_ghaat_group_id ON ghaat_transactions(group_id);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_ghaat_return_key ON ghaat_transactions(return_key);
    
                CREATE TABLE IF NOT EXISTS raw_gold_ledger (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL CHECK (type IN ('in', 'out')),
                    source TEXT NOT NULL CHECK (
                        source IN ('merchant_return', 'karigar_payment', 'manual_adjustment', 'initial_balance')
                    ),
                    reference_id TEXT,
                    gross_weight REAL NOT NULL DEFAULT 0,
                    purity REAL NOT NULL DEFAULT 0,
                    fine_gold REAL NOT NULL DEFAULT 0,
                    cash_amount REAL,
                    counterparty_name TEXT NOT NULL DEFAULT '',
                    counterparty_id TEXT,
                    notes TEXT,
                    transaction_date TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
    
                CREATE INDEX IF NOT EXISTS idx_raw_gold_reference ON raw_gold_ledger(reference_id);
    
                CREATE TABLE IF NOT EXISTS gold_rates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    currency TEXT NOT NULL,
                    valuation_date TEXT NOT NULL,
                    rate_per_10gm REAL NOT NULL,
                    source TEXT NOT NULL,
                    UNIQUE(currency, valuation_date, source)
                );
                """
            )
            self._connection.commit()

    # ------------------------------------------------------------------
    # Merchants
    # ------------------------------------------------------------------
    def add_merchant(self, merchant: Merchant) -> Merchant:
        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT INTO merchants (id, name, phone, email, address, total_due, total_owe, created_at)
                VALUES (:id, :name, :phone, :email, :address, :total_due, :total_owe, :created_at)
                """,
                _merchant_params(merchant),
            )
        return merchant

    def update_merchant(self, merchant: Merchant) -> bool:
        """Overwrite a merchant's details; ``id`` and ``created_at`` never change."""

        with self._lock, self._connection:
            cursor = self._connection.execute(
                """
                UPDATE merchants
                SET name = :name, phone = :phone, email = :email, address = :address,
                    total_due = :total_due, total_owe = :total_owe
                WHERE id = :id
                """,
                _merchant_params(merchant),
            )
        return cursor.rowcount > 0

    def delete_merchant(self, merchant_id: str) -> bool:
        """Delete a merchant that no trade or ghaat transaction refers to.

        Raises:
            ValueError: if the merchant still has history.
        """

        with self._lock, self._connection:
            trades = self._connection.execute(
                "SELECT COUNT(*) FROM trades WHERE merchant_id = ?", (merchant_id,)
            ).fetchone()[0]
            ghaat = self._connection.execute(
                "SELECT COUNT(*) FROM ghaat_transactions WHERE merchant_id = ?", (merchant_id,)
            ).fetchone()[0]
            if trades or ghaat:
                raise ValueError(
                    f"Merchant {merchant_id} has {trades} trades and {ghaat} ghaat transactions; delete those first."
                )
            cursor = self._connection.execute("DELETE FROM merchants WHERE id = ?", (merchant_id,))
        return cursor.rowcount > 0

    def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        with self._lock:
            row = self._connection.execute("SELECT * FROM merchants WHERE id = ?", (merchant_id,)).fetchone()
        if row is None:
            return None
        return _row_to_merchant(row)

    def list_merchants(self) -> list[Merchant]:
        with self._lock:
            rows = self._connection.execute("SELECT * FROM merchants ORDER BY name ASC").fetchall()
        return [_row_to_merchant(row) for row in rows]

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------
    def add_trade(self, trade: Trade) -> Trade:
        self.add_trades([trade])
        return trade

    def add_trades(self, trades: Iterable[Trade]) -> int:
        """Insert trades in one transaction and return how many were written."""

        count = 0
        with self._lock, self._connection:
            for trade in trades:
                self._connection.execute(_insert_sql("trades", TRADE_COLUMNS), _to_params(trade, TRADE_COLUMNS))
                count += 1
        return count

    def update_trade(self, trade: Trade) -> bool:
        """Overwrite every column of an existing trade except ``created_at``."""

        with self._lock, self._connection:
            cursor = self._connection.execute(
                _update_sql("trades", TRADE_COLUMNS),
                _to_params(trade, TRADE_COLUMNS),
            )
        return cursor.rowcount > 0

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        with self._lock:
            row = self._connection.execute("SELECT * FROM trades WHERE id = ?", (trade_id,)).fetchone()
        if row is None:
            return None
        return Trade(**_from_row(row, TRADE_COLUMNS))

    def fetch_trades(self, merchant_id: Optional[str] = None) -> list[Trade]:
        """Return all trades, optionally for one merchant, in insertion order."""

        with self._lock:
            if merchant_id is None:
                rows = self._connection.execute("SELECT * FROM trades ORDER BY rowid").fetchall()
            else:
                rows = self._connection.execute(
                    "SELECT * FROM trades WHERE merchant_id = ? ORDER BY rowid",
                    (merchant_id,),
                ).fetchall()
        return [Trade(**_from_row(row, TRADE_COLUMNS)) for row in rows]

    def delete_trade(self, trade_id: str) -> bool:
        with self._lock, self._connection:
            cursor = self._connection.execute("DELETE FROM trades WHERE id = ?", (trade_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Ghaat transactions
    # ------------------------------------------------------------------
    def add_ghaat_transactions(
        self,
        transactions: Iterable[GhaatTransaction],
        ledger_entries: Iterable[RawGoldLedgerEntry] = (),
    ) -> None:
        """Insert transactions and their raw gold movements atomically."""

        with self._lock, self._connection:
            for txn in transactions:
                self._connection.execute(_insert_ghaat_sql(), _ghaat_params(txn))
            for entry in ledger_entries:
                self._connection.execute(_insert_raw_gold_sql(), _raw_gold_params(entry))

    def update_ghaat_transaction(
        self,
        txn: GhaatTransaction,
        ledger_entries: Iterable[RawGoldLedgerEntry] = (),
    ) -> bool:
        """Rewrite a ghaat row outside the sale workflow and resync its karigar payment.

        Only rows without a sale status are touched.  The raw gold entry the
        row created as a karigar payment is replaced by ``ledger_entries`` in
        the same transaction.
        """

        with self._lock, self._connection:
            cursor = self._connection.execute(
                _update_sql("ghaat_transactions", GHAAT_COLUMNS + GHAAT_DERIVED_COLUMNS) + " AND status IS NULL",
                _ghaat_params(txn),
            )
            if cursor.rowcount != 1:
                return False
            self._connection.execute(
                "DELETE FROM raw_gold_ledger WHERE reference_id = ? AND source = 'karigar_payment'",
                (txn.id,),
            )
            for entry in ledger_entries:
                self._connection.execute(_insert_raw_gold_sql(), _raw_gold_params(entry))
        return True

    def get_ghaat_transaction(self, transaction_id: str) -> Optional[GhaatTransaction]:
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM ghaat_transactions WHERE id = ?",
                (transaction_id,),
            ).fetchone()
        if row is None:
            return None
        return GhaatTransaction(**_from_row(row, GHAAT_COLUMNS))

    def fetch_ghaat_transactions(self) -> list[GhaatTransaction]:
        with self._lock:
            rows = self._connection.execute("SELECT * FROM ghaat_transactions ORDER BY rowid").fetchall()
        return [GhaatTransaction(**_from_row(row, GHAAT_COLUMNS)) for row in rows]

    def list_ghaat_group(self, group_id: str) -> list[GhaatTransaction]:
        """Return the sell rows of one sale group; ungrouped rows form a group of one."""

        with self._lock:
            rows = self._connection.execute(
                """
                SELECT * FROM ghaat_transactions
                WHERE type = 'sell' AND (group_id = :group_id OR (group_id IS NULL AND id = :group_id))
                ORDER BY rowid
                """,
                {"group_id": group_id},
            ).fetchall()
        return [GhaatTransaction(**_from_row(row, GHAAT_COLUMNS)) for row in rows]

    def delete_ghaat_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction together with the raw gold entries it created."""

        with self._lock, self._connection:
            self._connection.execute("DELETE FROM raw_gold_ledger WHERE reference_id = ?", (transaction_id,))
            cursor = self._connection.execute("DELETE FROM ghaat_transactions WHERE id = ?", (transaction_id,))
        return cursor.rowcount > 0

    def persist_ghaat_confirmation(
        self,
        updates: Iterable[GhaatTransaction],
        inserts: Iterable[GhaatTransaction],
        ledger_entries: Iterable[RawGoldLedgerEntry] = (),
    ) -> None:
        """Apply every write of one sale confirmation in a single transaction.

        Updates only touch rows that are still pending, so a second attempt
        at the same confirmation fails instead of re-applying it.  Buy-back
        rows are keyed by ``return_key`` and silently skipped if they already
        exist.  Any error rolls back the whole confirmation.
        """

        assignments = ", ".join(f"{column} = :{column}" for column in CONFIRMATION_COLUMNS)
        updated = returned = 0
        with self._lock, self._connection:
            for txn in updates:
                params = _ghaat_params(txn)
                cursor = self._connection.execute(
                    f"UPDATE ghaat_transactions SET {assignments} WHERE id = :id AND status = 'pending'",
                    {column: params[column] for column in CONFIRMATION_COLUMNS + ("id",)},
                )
                if cursor.rowcount != 1:
                    raise SaleConfirmationError(f"Line item {txn.id} is no longer pending.")
                updated += 1
            for txn in inserts:
                cursor = self._connection.execute(_insert_ghaat_sql(or_ignore=True), _ghaat_params(txn))
                returned += cursor.rowcount
            for entry in ledger_entries:
                self._connection.execute(_insert_raw_gold_sql(), _raw_gold_params(entry))
        logger.debug("Persisted confirmation: %d sold, %d buy-backs", updated, returned)

    # ------------------------------------------------------------------
    # Raw gold ledger
    # ------------------------------------------------------------------
    def add_raw_gold_entry(self, entry: RawGoldLedgerEntry) -> RawGoldLedgerEntry:
        with self._lock, self._connection:
            self._connection.execute(_insert_raw_gold_sql(), _raw_gold_params(entry))
        return entry

    def list_raw_gold_entries(self, counterparty_id: Optional[str] = None) -> list[RawGoldLedgerEntry]:
        with self._lock:
            if counterparty_id is None:
                rows = self._connection.execute(
                    "SELECT * FROM raw_gold_ledger ORDER BY transaction_date DESC, rowid DESC"
                ).fetchall()
            else:
                rows = self._connection.execute(
                    "SELECT * FROM raw_gold_ledger WHERE counterparty_id = ? ORDER BY transaction_date DESC, rowid DESC",
                    (counterparty_id,),
                ).fetchall()
        return [RawGoldLedgerEntry(**_from_row(row, RAW_GOLD_COLUMNS)) for row in rows]

    # ------------------------------------------------------------------
    # Gold rates
    # ------------------------------------------------------------------
    def upsert_gold_rate(self, rate: GoldRate) -> None:
        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT OR REPLACE INTO gold_rates (currency, valuation_date, rate_per_10gm, source)
                VALUES (:currency, :valuation_date, :rate_per_10gm, :source)
                """,
                {
                    "currency": rate.currency.upper(),
                    "valuation_date": rate.valuation_date.isoformat(),
                    "rate_per_10gm": rate.rate_per_10gm,
                    "source": rate.source,
                },
            )

    def get_latest_gold_rate(self, currency: str) -> Optional[GoldRate]:
        with self._lock:
            row = self._connection.execute(
                """
                SELECT currency, valuation_date, rate_per_10gm, source
                FROM gold_rates
                WHERE currency = ?
                ORDER BY date(valuation_date) DESC, id DESC
                LIMIT 1
                """,
                (currency.upper(),),
            ).fetchone()
        if row is None:
            return None
        return GoldRate(
            currency=row["currency"],
            valuation_date=date.fromisoformat(row["valuation_date"]),
            rate_per_10gm=float(row["rate_per_10gm"]),
            source=row["source"],
        )


# ---------------------------------------------------------------------------
# Row mapping helpers
# ---------------------------------------------------------------------------

def _insert_sql(table: str, columns: tuple[str, ...], or_ignore: bool = False) -> str:
    verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
    names = ", ".join(columns)
    placeholders = ", ".join(f":{column}" for column in columns)
    return f"{verb} INTO {table} ({names}) VALUES ({placeholders})"


def _insert_ghaat_sql(or_ignore: bool = False) -> str:
    return _insert_sql("ghaat_transactions", GHAAT_COLUMNS + GHAAT_DERIVED_COLUMNS, or_ignore)


def _update_sql(table: str, columns: tuple[str, ...]) -> str:
    assignments = ", ".join(f"{column} = :{column}" for column in columns if column not in ("id", "created_at"))
    return f"UPDATE {table} SET {assignments} WHERE id = :id"


def _insert_raw_gold_sql() -> str:
    return _insert_sql("raw_gold_ledger", RAW_GOLD_COLUMNS + ("fine_gold",))


def _merchant_params(merchant: Merchant) -> dict[str, object]:
    return {
        "id": merchant.id,
        "name": merchant.name,
        "phone": merchant.phone,
        "email": merchant.email,
        "address": merchant.address,
        "total_due": merchant.total_due,
        "total_owe": merchant.total_owe,
        "created_at": _datetime_to_iso(merchant.created_at),
    }


def _to_params(record: object, columns: tuple[str, ...]) -> dict[str, object]:
    params: dict[str, object] = {}
    for column in columns:
        value = getattr(record, column)
        if column in DATETIME_COLUMNS:
            value = _datetime_to_iso(value)
        elif column in DATE_COLUMNS:
            value = _date_to_iso(value)
        params[column] = value
    return params


def _ghaat_params(txn: GhaatTransaction) -> dict[str, object]:
    params = _to_params(txn, GHAAT_COLUMNS)
    params["total_gross_weight"] = txn.total_gross_weight
    params["fine_gold"] = txn.fine_gold
    params["gold_given_fine"] = txn.gold_given_fine
    return params


def _raw_gold_params(entry: RawGoldLedgerEntry) -> dict[str, object]:
    params = _to_params(entry, RAW_GOLD_COLUMNS)
    params["fine_gold"] = entry.fine_gold
    return params


def _from_row(row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, object]:
    values: dict[str, object] = {}
    for column in columns:
        value = row[column]
        if column in DATETIME_COLUMNS:
            value = _parse_datetime(value)
        elif column in DATE_COLUMNS:
            value = _parse_date(value)
        values[column] = value
    return values


def _row_to_merchant(row: sqlite3.Row) -> Merchant:
    return Merchant(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        address=row["address"],
        total_due=float(row["total_due"] or 0.0),
        total_owe=float(row["total_owe"] or 0.0),
        created_at=_parse_datetime(row["created_at"]),
    )


def _date_to_iso(value: Optional[date | str]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _datetime_to_iso(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)
