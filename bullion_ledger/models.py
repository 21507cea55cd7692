"""Domain models used by the bullion_ledger backend.

The classes defined here are lightweight data containers that know nothing
about persistence or transport.  The calculators in :mod:`bullion_ledger.ledger`
and :mod:`bullion_ledger.ghaat` consume and produce these records only, so
they can be exercised in tests without a database.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Literal, Optional
from uuid import uuid4

TradeType = Literal["buy", "sell", "transfer", "settlement"]
SettlementDirection = Literal["receiving", "paying"]
GhaatType = Literal["buy", "sell"]
LaborType = Literal["cash", "gold"]
SaleStatus = Literal["pending", "sold"]
GhaatSettlementType = Literal["gold", "cash", "mixed"]
RawGoldType = Literal["in", "out"]
RawGoldSource = Literal["merchant_return", "karigar_payment", "manual_adjustment", "initial_balance"]

TRADE_TYPES = frozenset({"buy", "sell", "transfer", "settlement"})
SETTLEMENT_DIRECTIONS = frozenset({"receiving", "paying"})
GHAAT_SETTLEMENT_TYPES = frozenset({"gold", "cash", "mixed"})


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    # Naive UTC so stored timestamps compare with dates promoted to midnight.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def fine_weight(gross_weight: float, purity: float) -> float:
    """Return the pure gold content of ``gross_weight`` at ``purity`` percent."""

    return gross_weight * purity / 100


def value_at_rate(fine_gold: float, rate_per_10gm: float) -> float:
    """Price ``fine_gold`` grams at a rate quoted per 10 g of fine gold."""

    return fine_gold * rate_per_10gm / 10


@dataclass(slots=True)
class Merchant:
    """Counterparty of the business.

    ``total_due`` and ``total_owe`` are opening balances captured when the
    merchant is created.  They are never updated by trades; the current
    position is always replayed from the trade history.
    """

    name: str
    total_due: float = 0.0
    total_owe: float = 0.0
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Trade:
    """One financial event between the business and a merchant.

    ``amount_paid`` (buys) and ``amount_received`` (sells) are deliberately
    left as ``None`` when absent: the ledger treats a missing payment on a buy
    as zero but a missing receipt on a sell as "not tracked".
    """

    type: TradeType
    merchant_id: str
    total_amount: float = 0.0
    merchant_name: str = ""
    amount_paid: Optional[float] = None
    amount_received: Optional[float] = None
    settlement_direction: Optional[SettlementDirection] = None
    metal_type: Optional[str] = None
    weight: Optional[float] = None
    price_per_unit: Optional[float] = None
    notes: Optional[str] = None
    trade_date: Optional[date] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def effective_timestamp(self) -> datetime:
        """Ordering key: the trade date at midnight, else the creation time."""

        if self.trade_date is not None:
            return datetime.combine(self.trade_date, time.min)
        return self.created_at


@dataclass(slots=True)
class TradeWithBalance:
    """A trade paired with the merchant position right after it was applied."""

    trade: Trade
    due: float
    owe: float


@dataclass(slots=True)
class MerchantBalance:
    due: float
    owe: float


@dataclass(slots=True)
class GhaatTransaction:
    """A jewellery fabrication event: a buy from a karigar or a sell to a merchant.

    The weight totals are properties so they always agree with ``units``,
    ``gross_weight_per_unit`` and ``purity``; the database columns holding
    them are written for reporting and ignored on read.

    Sells move through ``pending`` (handed to the merchant) to ``sold``
    (confirmed at a market rate).  A sell without a status is a legacy direct
    sale.
    """

    type: GhaatType
    category: str
    units: int
    gross_weight_per_unit: float
    purity: float
    karigar_id: Optional[str] = None
    karigar_name: Optional[str] = None
    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None
    labor_type: Optional[LaborType] = None
    labor_amount: float = 0.0
    amount_received: Optional[float] = None
    notes: Optional[str] = None
    transaction_date: Optional[date] = None
    # Payment to the karigar (buys).
    gold_given_weight: Optional[float] = None
    gold_given_purity: Optional[float] = None
    cash_paid: Optional[float] = None
    # Pending/sold flow (sells).
    status: Optional[SaleStatus] = None
    group_id: Optional[str] = None
    rate_per_10gm: Optional[float] = None
    total_amount: Optional[float] = None
    settlement_type: Optional[GhaatSettlementType] = None
    gold_returned_weight: Optional[float] = None
    gold_returned_purity: Optional[float] = None
    gold_returned_fine: Optional[float] = None
    cash_received: Optional[float] = None
    confirmed_date: Optional[date] = None
    confirmed_units: Optional[int] = None
    confirmed_gross_weight: Optional[float] = None
    confirmed_fine_gold: Optional[float] = None
    dues_shortfall: Optional[float] = None
    # Set on buy-backs created by a sale confirmation: "<group_id>:<item_id>".
    return_key: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def total_gross_weight(self) -> float:
        return self.units * self.gross_weight_per_unit

    @property
    def fine_gold(self) -> float:
        return fine_weight(self.total_gross_weight, self.purity)

    @property
    def gold_given_fine(self) -> Optional[float]:
        if not self.gold_given_weight or not self.gold_given_purity:
            return None
        return fine_weight(self.gold_given_weight, self.gold_given_purity)

    @property
    def effective_date(self) -> date:
        if self.transaction_date is not None:
            return self.transaction_date
        return self.created_at.date()


@dataclass(slots=True)
class GhaatStockItem:
    category: str
    units: int
    total_gross_weight: float
    total_fine_gold: float


@dataclass(slots=True)
class GhaatPnL:
    total_buy_fine_gold: float
    total_sell_fine_gold: float
    gold_labor_paid: float
    cash_labor_paid: float
    net_gold_profit: float


@dataclass(slots=True)
class GhaatMonthlyProfit:
    """Profit of one calendar month measured two ways.

    ``stock_delta_profit`` is the change of the running fine-gold stock over
    the month; ``transaction_profit`` counts only realised sales against
    karigar purchases.  Pending sales make the two diverge.
    """

    month: str
    start_fine_gold: float
    end_fine_gold: float
    stock_delta_profit: float
    buy_fine_gold: float
    sell_fine_gold: float
    labor_gold: float
    transaction_profit: float


@dataclass(slots=True)
class PendingSaleGroup:
    group_id: str
    merchant_id: str
    merchant_name: str
    date_given: Optional[date]
    items: list[GhaatTransaction]
    total_units: int
    total_gross_weight: float
    total_fine_gold: float


@dataclass(slots=True)
class MerchantJewelleryDues:
    fine_gold_pending: float
    cash_due: float


@dataclass(slots=True)
class RawGoldLedgerEntry:
    """Movement of raw (unfabricated) gold in or out of the business."""

    type: RawGoldType
    source: RawGoldSource
    gross_weight: float
    purity: float
    transaction_date: date
    counterparty_name: str = ""
    counterparty_id: Optional[str] = None
    reference_id: Optional[str] = None
    cash_amount: Optional[float] = None
    notes: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def fine_gold(self) -> float:
        return fine_weight(self.gross_weight, self.purity)


@dataclass(slots=True)
class GoldRate:
    """Market price of fine gold quoted per 10 g."""

    currency: str
    valuation_date: date
    rate_per_10gm: float
    source: str


__all__ = [
    "Merchant",
    "Trade",
    "TradeWithBalance",
    "MerchantBalance",
    "GhaatTransaction",
    "GhaatStockItem",
    "GhaatPnL",
    "GhaatMonthlyProfit",
    "PendingSaleGroup",
    "MerchantJewelleryDues",
    "RawGoldLedgerEntry",
    "GoldRate",
    "fine_weight",
    "value_at_rate",
    "new_id",
    "utcnow",
]
