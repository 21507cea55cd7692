"""Spreadsheet importer for bulk trade entry."""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterator, Mapping

import pandas as pd
from dateutil import parser as date_parser

from .models import SETTLEMENT_DIRECTIONS, TRADE_TYPES, Merchant, Trade

logger = logging.getLogger(__name__)


class TradeSheetImporter:
    """Load trades from an ``.xlsx`` or ``.csv`` sheet.

    Expected columns (case-insensitive): ``type``, ``merchant`` (name or id),
    ``total_amount``, ``amount_paid``, ``amount_received``,
    ``settlement_direction``, ``trade_date``, ``metal_type``, ``weight``,
    ``price_per_unit`` and ``notes``.  Only ``type``, ``merchant`` and
    ``total_amount`` are required.

    Blank payment cells stay ``None`` rather than ``0`` because the ledger
    gives a missing sell receipt a different meaning from a zero one.
    """

    def __init__(self, sheet_path: str | Path, merchants: Mapping[str, Merchant]) -> None:
        self.sheet_path = Path(sheet_path)
        self._merchants = {key.strip().lower(): merchant for key, merchant in merchants.items()}

    def load(self, sheet_name: str | int = 0) -> list[Trade]:
        """Read the sheet and return one :class:`Trade` per non-empty row.

        Raises:
            ValueError: naming the first row that cannot be converted.
        """

        dataframe = self._load_sheet(sheet_name)
        trades = list(self._iter_trades(dataframe))
        logger.info("Loaded %d trades from %s", len(trades), self.sheet_path.name)
        return trades

    def _load_sheet(self, sheet_name: str | int) -> pd.DataFrame:
        if self.sheet_path.suffix.lower() == ".csv":
            dataframe = pd.read_csv(self.sheet_path, dtype=str)
        else:
            dataframe = pd.read_excel(self.sheet_path, sheet_name=sheet_name, dtype=str)
        dataframe.columns = [str(column).strip().lower() for column in dataframe.columns]
        missing = {"type", "merchant", "total_amount"} - set(dataframe.columns)
        if missing:
            raise ValueError(f"Trade sheet is missing columns: {', '.join(sorted(missing))}")
        return dataframe.fillna("")

    def _iter_trades(self, dataframe: pd.DataFrame) -> Iterator[Trade]:
        for index, row in dataframe.iterrows():
            # Spreadsheet row number: header is row 1.
            line = int(index) + 2
            trade_type = _clean_string(row.get("type")).lower()
            if not trade_type and not _clean_string(row.get("merchant")):
                continue
            if trade_type not in TRADE_TYPES:
                raise ValueError(f"Row {line}: unknown trade type '{trade_type}'.")

            merchant = self._merchants.get(_clean_string(row.get("merchant")).lower())
            if merchant is None:
                raise ValueError(f"Row {line}: unknown merchant '{_clean_string(row.get('merchant'))}'.")

            total_amount = _parse_decimal(row.get("total_amount"), line, "total_amount")
            if total_amount is None:
                raise ValueError(f"Row {line}: total_amount is required.")

            direction = _clean_string(row.get("settlement_direction")).lower() or None
            if trade_type == "settlement" and direction not in SETTLEMENT_DIRECTIONS:
                raise ValueError(f"Row {line}: settlement_direction must be 'receiving' or 'paying'.")

            yield Trade(
                type=trade_type,
                merchant_id=merchant.id,
                merchant_name=merchant.name,
                total_amount=total_amount,
                amount_paid=_parse_decimal(row.get("amount_paid"), line, "amount_paid") if trade_type == "buy" else None,
                amount_received=_parse_decimal(row.get("amount_received"), line, "amount_received") if trade_type == "sell" else None,
                settlement_direction=direction if trade_type == "settlement" else None,
                metal_type=_clean_string(row.get("metal_type")).lower() or None,
                weight=_parse_decimal(row.get("weight"), line, "weight"),
                price_per_unit=_parse_decimal(row.get("price_per_unit"), line, "price_per_unit"),
                notes=_clean_string(row.get("notes")) or None,
                trade_date=_parse_date(row.get("trade_date")),
            )


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def _clean_string(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_decimal(value: object, line: int, column: str) -> float | None:
    """Parse a money or weight cell; blank cells are ``None``, garbage is an error."""

    if value is None:
        return None
    stringified = str(value).strip()
    if not stringified:
        return None
    normalised = stringified.replace(",", "").replace(" ", "").replace("₹", "")
    try:
        parsed = Decimal(normalised)
    except (InvalidOperation, ValueError):
        raise ValueError(f"Row {line}: invalid {column} '{stringified}'") from None
    if not parsed.is_finite():
        raise ValueError(f"Row {line}: invalid {column} '{stringified}'")
    return float(parsed)


def _parse_date(value: object) -> date | None:
    if value is None:
        return None
    stringified = str(value).strip()
    if not stringified or stringified in {"NaT", "nan"}:
        return None
    # Excel cells read as str come out ISO formatted; everything else is typed by hand.
    try:
        return date.fromisoformat(stringified[:10])
    except ValueError:
        pass
    try:
        parsed = date_parser.parse(stringified, dayfirst=True)
        return parsed.date()
    except (ValueError, OverflowError):
        return None
