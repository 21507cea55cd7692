"""FastAPI application exposing the bullion_ledger backend."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Annotated, Iterator, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import load_config
from .confirmation import ConfirmedItem, SaleConfirmation
from .database import SQLiteRepository
from .models import GhaatTransaction, GoldRate, Merchant, RawGoldLedgerEntry, Trade
from .price_service import GoldRateService
from .services import LedgerService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    rate_service = GoldRateService(config)
    ledger_service = LedgerService(config, repository, rate_service)

    app.state.config = config
    app.state.repository = repository
    app.state.ledger = ledger_service
    logger.info("Using database %s", config.database_file)

    yield

    repository.close()


app = FastAPI(lifespan=lifespan, title="bullion_ledger backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency injection ------------------------------------------------------

def get_ledger_service() -> LedgerService:
    service: LedgerService = app.state.ledger
    return service


@contextmanager
def domain_errors() -> Iterator[None]:
    """Translate service exceptions into HTTP errors."""

    try:
        yield
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# Request bodies ------------------------------------------------------------


class MerchantIn(BaseModel):
    name: str
    total_due: float = 0.0
    total_owe: float = 0.0
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class TradeIn(BaseModel):
    type: Literal["buy", "sell", "transfer", "settlement"]
    merchant_id: str
    total_amount: float = Field(ge=0)
    amount_paid: Optional[float] = None
    amount_received: Optional[float] = None
    settlement_direction: Optional[Literal["receiving", "paying"]] = None
    metal_type: Optional[Literal["gold", "silver"]] = None
    weight: Optional[float] = None
    price_per_unit: Optional[float] = None
    notes: Optional[str] = None
    trade_date: Optional[date] = None


class GhaatLineIn(BaseModel):
    category: str
    units: int = Field(gt=0)
    gross_weight_per_unit: float = Field(gt=0)
    purity: float = Field(gt=0, le=100)
    notes: Optional[str] = None


class GhaatTransactionIn(GhaatLineIn):
    type: Literal["buy", "sell"] = "buy"
    karigar_id: Optional[str] = None
    karigar_name: Optional[str] = None
    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None
    labor_type: Optional[Literal["cash", "gold"]] = None
    labor_amount: float = 0.0
    transaction_date: Optional[date] = None
    gold_given_weight: Optional[float] = None
    gold_given_purity: Optional[float] = None
    cash_paid: Optional[float] = None


class PendingSaleIn(BaseModel):
    merchant_id: str
    transaction_date: date
    items: list[GhaatLineIn]
    notes: Optional[str] = None


class ConfirmItemIn(BaseModel):
    transaction_id: str
    confirmed_units: int


class ConfirmSaleIn(BaseModel):
    items: list[ConfirmItemIn]
    rate_per_10gm: float
    settlement_type: Literal["gold", "cash", "mixed"]
    confirmed_date: date
    gold_returned_weight: Optional[float] = None
    gold_returned_purity: Optional[float] = None
    cash_received: Optional[float] = None


class RawGoldEntryIn(BaseModel):
    type: Literal["in", "out"]
    source: Literal["manual_adjustment", "initial_balance"] = "manual_adjustment"
    gross_weight: float = Field(gt=0)
    purity: float = Field(gt=0, le=100)
    transaction_date: date
    counterparty_name: str = ""
    counterparty_id: Optional[str] = None
    cash_amount: Optional[float] = None
    notes: Optional[str] = None


# Payload helpers -----------------------------------------------------------


def ghaat_payload(txn: GhaatTransaction) -> dict[str, object]:
    payload = asdict(txn)
    payload["total_gross_weight"] = txn.total_gross_weight
    payload["fine_gold"] = txn.fine_gold
    return payload


def rate_payload(rate: GoldRate) -> dict[str, object]:
    return {
        "currency": rate.currency,
        "valuation_date": rate.valuation_date.isoformat(),
        "rate_per_10gm": rate.rate_per_10gm,
        "source": rate.source,
    }


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.post("/merchants", status_code=201)
def add_merchant(
    body: MerchantIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        merchant = ledger.add_merchant(Merchant(**body.model_dump()))
    return asdict(merchant)


@app.get("/merchants")
def list_merchants(ledger: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, object]:
    """Merchants with their current balance, largest outstanding position first."""

    merchants = [
        {**asdict(merchant), "due": balance.due, "owe": balance.owe}
        for merchant, balance in ledger.merchant_overview()
    ]
    return {"merchants": merchants, "count": len(merchants)}


@app.put("/merchants/{merchant_id}")
def update_merchant(
    merchant_id: str,
    body: MerchantIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        merchant = ledger.update_merchant(merchant_id, Merchant(**body.model_dump()))
    return asdict(merchant)


@app.delete("/merchants/{merchant_id}", status_code=204)
def delete_merchant(
    merchant_id: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> None:
    """Delete a merchant without trade or jewellery history."""

    with domain_errors():
        ledger.delete_merchant(merchant_id)


@app.get("/merchants/{merchant_id}/balance")
def merchant_balance(
    merchant_id: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        balance = ledger.merchant_balance(merchant_id)
    return {"merchant_id": merchant_id, "due": balance.due, "owe": balance.owe}


@app.get("/merchants/{merchant_id}/statement")
def merchant_statement(
    merchant_id: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> dict[str, object]:
    with domain_errors():
        rows = ledger.merchant_statement(merchant_id, start_date, end_date)
    return {"merchant_id": merchant_id, "trades": [asdict(row) for row in rows], "count": len(rows)}


@app.get("/merchants/{merchant_id}/jewellery-dues")
def jewellery_dues(
    merchant_id: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        dues = ledger.jewellery_dues(merchant_id)
    return {"merchant_id": merchant_id, **asdict(dues)}


@app.post("/trades", status_code=201)
def record_trade(
    body: TradeIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        trade = ledger.record_trade(Trade(**body.model_dump()))
    return asdict(trade)


@app.put("/trades/{trade_id}")
def update_trade(
    trade_id: str,
    body: TradeIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        trade = ledger.update_trade(trade_id, Trade(**body.model_dump()))
    return asdict(trade)


@app.delete("/trades/{trade_id}", status_code=204)
def delete_trade(
    trade_id: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> None:
    with domain_errors():
        ledger.delete_trade(trade_id)


@app.post("/trades/import")
def import_trades(
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    sheet_path: Annotated[Optional[str], Query(description="Sheet to import; defaults to the configured file")] = None,
) -> dict[str, object]:
    """Import the trade sheet and persist every row."""

    with domain_errors():
        try:
            imported = ledger.import_trades(Path(sheet_path) if sheet_path else None)
        except FileNotFoundError as exc:
            raise LookupError(f"Trade sheet not found: {exc.filename}") from exc
    return {"imported": imported}


@app.get("/ghaat/transactions")
def list_ghaat_transactions(ledger: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, object]:
    transactions = [ghaat_payload(txn) for txn in ledger.ghaat_transactions()]
    return {"transactions": transactions, "count": len(transactions)}


@app.post("/ghaat/transactions", status_code=201)
def record_ghaat_transaction(
    body: GhaatTransactionIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        txn = ledger.record_ghaat_transaction(GhaatTransaction(**body.model_dump()))
    return ghaat_payload(txn)


@app.put("/ghaat/transactions/{transaction_id}")
def update_ghaat_transaction(
    transaction_id: str,
    body: GhaatTransactionIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        txn = ledger.update_ghaat_transaction(transaction_id, GhaatTransaction(**body.model_dump()))
    return ghaat_payload(txn)


@app.delete("/ghaat/transactions/{transaction_id}", status_code=204)
def delete_ghaat_transaction(
    transaction_id: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> None:
    with domain_errors():
        ledger.delete_ghaat_transaction(transaction_id)


@app.get("/ghaat/stock")
def ghaat_stock(ledger: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, object]:
    return {"stock": [asdict(item) for item in ledger.ghaat_stock()]}


@app.get("/ghaat/pnl")
def ghaat_pnl(ledger: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, object]:
    return asdict(ledger.ghaat_pnl())


@app.get("/ghaat/monthly-profit")
def ghaat_monthly_profit(ledger: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, object]:
    return {"months": [asdict(month) for month in ledger.ghaat_monthly_profit()]}


@app.post("/ghaat/pending", status_code=201)
def give_to_merchant(
    body: PendingSaleIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    items = [
        GhaatTransaction(
            type="sell",
            category=line.category,
            units=line.units,
            gross_weight_per_unit=line.gross_weight_per_unit,
            purity=line.purity,
            notes=line.notes,
        )
        for line in body.items
    ]
    with domain_errors():
        group = ledger.give_to_merchant(body.merchant_id, items, body.transaction_date, body.notes)
    return {**asdict(group), "items": [ghaat_payload(item) for item in group.items]}


@app.get("/ghaat/pending")
def pending_sales(ledger: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, object]:
    groups = [
        {**asdict(group), "items": [ghaat_payload(item) for item in group.items]}
        for group in ledger.pending_sales()
    ]
    return {"groups": groups, "count": len(groups)}


@app.post("/ghaat/pending/{group_id}/confirm")
def confirm_sale(
    group_id: str,
    body: ConfirmSaleIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    request = SaleConfirmation(
        group_id=group_id,
        items=[ConfirmedItem(item.transaction_id, item.confirmed_units) for item in body.items],
        rate_per_10gm=body.rate_per_10gm,
        settlement_type=body.settlement_type,
        confirmed_date=body.confirmed_date,
        gold_returned_weight=body.gold_returned_weight,
        gold_returned_purity=body.gold_returned_purity,
        cash_received=body.cash_received,
    )
    with domain_errors():
        plan = ledger.confirm_sale(request)
    return {
        "group_id": group_id,
        "total_amount": plan.total_amount,
        "gold_returned_fine": plan.gold_returned_fine,
        "total_received": plan.total_received,
        "dues_shortfall": plan.dues_shortfall,
        "sold": [ghaat_payload(txn) for txn in plan.updates],
        "returned": [ghaat_payload(txn) for txn in plan.returns],
    }


@app.get("/raw-gold/balance")
def raw_gold_balance(ledger: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, float]:
    return {"fine_gold": ledger.raw_gold_balance()}


@app.get("/raw-gold/entries")
def raw_gold_entries(
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    counterparty_id: Optional[str] = None,
) -> dict[str, object]:
    entries = [{**asdict(entry), "fine_gold": entry.fine_gold} for entry in ledger.raw_gold_entries(counterparty_id)]
    return {"entries": entries, "count": len(entries)}


@app.post("/raw-gold/entries", status_code=201)
def record_raw_gold_entry(
    body: RawGoldEntryIn,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    with domain_errors():
        entry = ledger.record_raw_gold_entry(RawGoldLedgerEntry(**body.model_dump()))
    return {**asdict(entry), "fine_gold": entry.fine_gold}


@app.post("/rates/gold/refresh")
def refresh_gold_rate(
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    currency: Annotated[Optional[str], Query(pattern="^[A-Za-z]{3}$")] = None,
) -> dict[str, object]:
    rate = ledger.refresh_gold_rate(currency.upper() if currency else None)
    if not rate:
        raise HTTPException(status_code=503, detail="Gold rate unavailable. Ensure the Alpha Vantage API key is configured.")
    return rate_payload(rate)


@app.get("/rates/gold/latest")
def latest_gold_rate(
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    currency: Annotated[Optional[str], Query(pattern="^[A-Za-z]{3}$")] = None,
) -> dict[str, object]:
    rate = ledger.latest_gold_rate(currency.upper() if currency else None)
    if not rate:
        raise HTTPException(status_code=404, detail="No gold rate stored yet.")
    return rate_payload(rate)
