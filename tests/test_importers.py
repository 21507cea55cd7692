from datetime import date

import pytest

from bullion_ledger.importers import TradeSheetImporter
from bullion_ledger.models import Merchant


@pytest.fixture
def merchants():
    shree = Merchant(name="Shree Jewellers", id="m1")
    return {shree.id: shree, shree.name: shree}


def write_sheet(tmp_path, body):
    path = tmp_path / "trades.csv"
    path.write_text(body, encoding="utf-8")
    return path


def test_load_parses_every_trade_type(tmp_path, merchants):
    path = write_sheet(
        tmp_path,
        "type,merchant,total_amount,amount_paid,amount_received,settlement_direction,trade_date,notes\n"
        "Buy,shree jewellers,\"₹ 12,500\",10000,999,,05/02/2024,bar\n"
        "sell,m1,800,,,,2024-02-06,\n"
        ",,,,,,,\n"
        "settlement,Shree Jewellers,300,,,Receiving,,\n"
        "transfer,m1,50,,,,,\n",
    )

    trades = TradeSheetImporter(path, merchants).load()

    assert [trade.type for trade in trades] == ["buy", "sell", "settlement", "transfer"]
    buy, sell, settlement, transfer = trades
    assert buy.total_amount == 12500.0
    assert buy.amount_paid == 10000.0
    # receipts only apply to sells
    assert buy.amount_received is None
    assert buy.trade_date == date(2024, 2, 5)
    assert buy.notes == "bar"
    assert buy.merchant_id == "m1"
    assert buy.merchant_name == "Shree Jewellers"
    assert sell.amount_received is None
    assert sell.trade_date == date(2024, 2, 6)
    assert settlement.settlement_direction == "receiving"
    assert settlement.trade_date is None
    assert transfer.total_amount == 50.0


def test_missing_columns_are_reported(tmp_path, merchants):
    path = write_sheet(tmp_path, "type,merchant\nsell,m1\n")

    with pytest.raises(ValueError, match="missing columns: total_amount"):
        TradeSheetImporter(path, merchants).load()


@pytest.mark.parametrize(
    "row, message",
    [
        ("swap,m1,100,", "Row 2: unknown trade type"),
        ("sell,nobody,100,", "Row 2: unknown merchant"),
        ("sell,m1,,", "Row 2: total_amount is required"),
        ("settlement,m1,100,", "Row 2: settlement_direction"),
        ("sell,m1,1OO,", "Row 2: invalid total_amount '1OO'"),
        ("sell,m1,inf,", "Row 2: invalid total_amount 'inf'"),
    ],
)
def test_invalid_rows_name_the_sheet_row(tmp_path, merchants, row, message):
    path = write_sheet(tmp_path, f"type,merchant,total_amount,settlement_direction\n{row}\n")

    with pytest.raises(ValueError, match=message):
        TradeSheetImporter(path, merchants).load()


def test_unparseable_optional_amounts_are_rejected(tmp_path, merchants):
    path = write_sheet(
        tmp_path,
        "type,merchant,total_amount,amount_received\n"
        "sell,Shree Jewellers,1000,900\n"
        "sell,Shree Jewellers,1000,1O00\n",
    )

    with pytest.raises(ValueError, match="Row 3: invalid amount_received '1O00'"):
        TradeSheetImporter(path, merchants).load()
