import pytest
from fastapi.testclient import TestClient

from bullion_ledger.api import app


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("BULLION_LEDGER_DB_FILE", str(tmp_path / "api.db"))
    monkeypatch.setenv("BULLION_LEDGER_CURRENCY", "INR")
    monkeypatch.delenv("ALPHAVANTAGE_API_KEY", raising=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def merchant_id(client):
    response = client.post("/merchants", json={"name": "Shree Jewellers", "total_due": 100.0})
    assert response.status_code == 201
    return response.json()["id"]


def test_health_check(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_trades_drive_the_merchant_balance(client, merchant_id):
    sell = client.post(
        "/trades",
        json={"type": "sell", "merchant_id": merchant_id, "total_amount": 1000, "trade_date": "2024-01-02"},
    )
    assert sell.status_code == 201
    assert sell.json()["merchant_name"] == "Shree Jewellers"

    client.post(
        "/trades",
        json={
            "type": "settlement",
            "merchant_id": merchant_id,
            "total_amount": 400,
            "settlement_direction": "receiving",
            "trade_date": "2024-01-03",
        },
    )

    balance = client.get(f"/merchants/{merchant_id}/balance").json()
    assert (balance["due"], balance["owe"]) == (700.0, 0.0)

    statement = client.get(f"/merchants/{merchant_id}/statement").json()
    assert [row["due"] for row in statement["trades"]] == [700.0, 1100.0]

    window = client.get(
        f"/merchants/{merchant_id}/statement",
        params={"start_date": "2024-01-02", "end_date": "2024-01-02"},
    ).json()
    assert window["count"] == 1

    merchants = client.get("/merchants").json()
    assert merchants["count"] == 1
    assert merchants["merchants"][0]["due"] == 700.0


def test_delete_trade(client, merchant_id):
    trade_id = client.post(
        "/trades",
        json={"type": "sell", "merchant_id": merchant_id, "total_amount": 50},
    ).json()["id"]

    assert client.delete(f"/trades/{trade_id}").status_code == 204
    assert client.delete(f"/trades/{trade_id}").status_code == 404


def test_unknown_merchant_is_404_and_bad_input_is_400(client, merchant_id):
    assert client.get("/merchants/missing/balance").status_code == 404
    response = client.post(
        "/trades",
        json={"type": "settlement", "merchant_id": merchant_id, "total_amount": 10},
    )
    assert response.status_code == 400


def test_pending_sale_confirmation_flow(client, merchant_id):
    created = client.post(
        "/ghaat/transactions",
        json={"category": "Ring", "units": 4, "gross_weight_per_unit": 2.0, "purity": 75.0, "karigar_id": "k1", "transaction_date": "2024-01-05"},
    )
    assert created.status_code == 201
    assert created.json()["fine_gold"] == 6.0

    group = client.post(
        "/ghaat/pending",
        json={
            "merchant_id": merchant_id,
            "transaction_date": "2024-01-10",
            "items": [{"category": "Ring", "units": 3, "gross_weight_per_unit": 2.0, "purity": 75.0}],
        },
    ).json()
    assert group["total_units"] == 3

    pending = client.get("/ghaat/pending").json()
    assert pending["count"] == 1

    item_id = group["items"][0]["id"]
    confirm = client.post(
        f"/ghaat/pending/{group['group_id']}/confirm",
        json={
            "items": [{"transaction_id": item_id, "confirmed_units": 2}],
            "rate_per_10gm": 6000,
            "settlement_type": "cash",
            "confirmed_date": "2024-01-20",
            "cash_received": 1000,
        },
    )
    assert confirm.status_code == 200
    body = confirm.json()
    assert body["total_amount"] == pytest.approx(1800.0)
    assert body["dues_shortfall"] == pytest.approx(800.0)
    assert [row["units"] for row in body["returned"]] == [1]

    again = client.post(
        f"/ghaat/pending/{group['group_id']}/confirm",
        json={
            "items": [{"transaction_id": item_id, "confirmed_units": 2}],
            "rate_per_10gm": 6000,
            "settlement_type": "cash",
            "confirmed_date": "2024-01-20",
        },
    )
    assert again.status_code == 400

    stock = client.get("/ghaat/stock").json()["stock"]
    assert [(item["category"], item["units"]) for item in stock] == [("Ring", 2)]

    pnl = client.get("/ghaat/pnl").json()
    assert pnl["total_sell_fine_gold"] == pytest.approx(3.0)

    dues = client.get(f"/merchants/{merchant_id}/jewellery-dues").json()
    assert dues["cash_due"] == pytest.approx(800.0)

    balance = client.get(f"/merchants/{merchant_id}/balance").json()
    assert balance["due"] == pytest.approx(900.0)

    months = client.get("/ghaat/monthly-profit").json()["months"]
    assert [month["month"] for month in months] == ["2024-01"]


def test_confirming_unknown_group_is_404(client):
    response = client.post(
        "/ghaat/pending/missing/confirm",
        json={
            "items": [{"transaction_id": "x", "confirmed_units": 1}],
            "rate_per_10gm": 6000,
            "settlement_type": "cash",
            "confirmed_date": "2024-01-20",
        },
    )

    assert response.status_code == 404


def test_raw_gold_entries(client):
    created = client.post(
        "/raw-gold/entries",
        json={"type": "in", "source": "initial_balance", "gross_weight": 10.0, "purity": 100.0, "transaction_date": "2024-01-01"},
    )
    assert created.status_code == 201

    assert client.get("/raw-gold/balance").json() == {"fine_gold": 10.0}
    assert client.get("/raw-gold/entries").json()["count"] == 1


def test_gold_rate_routes_without_provider(client):
    assert client.post("/rates/gold/refresh").status_code == 503
    assert client.get("/rates/gold/latest").status_code == 404


def test_merchant_can_be_edited_and_deleted(client, merchant_id):
    updated = client.put(f"/merchants/{merchant_id}", json={"name": "Shree Gold House", "total_due": 300.0})
    assert updated.status_code == 200
    assert updated.json()["id"] == merchant_id
    assert client.get(f"/merchants/{merchant_id}/balance").json()["due"] == 300.0

    trade_id = client.post("/trades", json={"type": "sell", "merchant_id": merchant_id, "total_amount": 50}).json()["id"]
    refused = client.delete(f"/merchants/{merchant_id}")
    assert refused.status_code == 400
    assert "1 trades" in refused.json()["detail"]

    client.delete(f"/trades/{trade_id}")
    assert client.delete(f"/merchants/{merchant_id}").status_code == 204
    assert client.put(f"/merchants/{merchant_id}", json={"name": "Gone"}).status_code == 404


def test_trade_can_be_edited(client, merchant_id):
    trade_id = client.post(
        "/trades",
        json={"type": "sell", "merchant_id": merchant_id, "total_amount": 1000, "trade_date": "2024-01-02"},
    ).json()["id"]

    response = client.put(
        f"/trades/{trade_id}",
        json={"type": "sell", "merchant_id": merchant_id, "total_amount": 1000, "amount_received": 1000, "trade_date": "2024-01-02"},
    )

    assert response.status_code == 200
    assert response.json()["id"] == trade_id
    assert client.get(f"/merchants/{merchant_id}/balance").json()["due"] == 100.0
    assert client.put("/trades/missing", json={"type": "sell", "merchant_id": merchant_id, "total_amount": 1}).status_code == 404


def test_ghaat_buy_edit_moves_the_karigar_payment(client):
    created = client.post(
        "/ghaat/transactions",
        json={
            "category": "Ring",
            "units": 2,
            "gross_weight_per_unit": 2.0,
            "purity": 75.0,
            "karigar_id": "k1",
            "gold_given_weight": 4.0,
            "gold_given_purity": 75.0,
        },
    ).json()
    assert client.get("/raw-gold/balance").json() == {"fine_gold": -3.0}

    response = client.put(
        f"/ghaat/transactions/{created['id']}",
        json={
            "category": "Ring",
            "units": 2,
            "gross_weight_per_unit": 2.0,
            "purity": 75.0,
            "karigar_id": "k1",
            "gold_given_weight": 2.0,
            "gold_given_purity": 75.0,
        },
    )

    assert response.status_code == 200
    assert client.get("/raw-gold/balance").json() == {"fine_gold": -1.5}
    assert client.get("/raw-gold/entries").json()["count"] == 1


def test_unknown_settlement_type_is_422(client, merchant_id):
    group = client.post(
        "/ghaat/pending",
        json={
            "merchant_id": merchant_id,
            "transaction_date": "2024-01-10",
            "items": [{"category": "Ring", "units": 1, "gross_weight_per_unit": 2.0, "purity": 75.0}],
        },
    ).json()

    response = client.post(
        f"/ghaat/pending/{group['group_id']}/confirm",
        json={
            "items": [{"transaction_id": group["items"][0]["id"], "confirmed_units": 1}],
            "rate_per_10gm": 6000,
            "settlement_type": "barter",
            "confirmed_date": "2024-01-20",
        },
    )

    assert response.status_code == 422
    assert client.get("/ghaat/pending").json()["count"] == 1
