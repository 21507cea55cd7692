import itertools
import random
from datetime import date, datetime

from bullion_ledger.ledger import (
    apply_trade,
    calculate_balance,
    calculate_merchant_balance,
    calculate_merchant_running_balances,
    calculate_running_balances,
    filter_by_date_range,
    net_off,
)
from bullion_ledger.models import Trade
from tests.conftest import make_trade


def test_underpaid_buy_then_overpaid_buy_nets_to_zero():
    first = make_trade("buy", 1000, day=1, amount_paid=600)
    second = make_trade("buy", 500, day=2, amount_paid=900)

    assert apply_trade(0.0, 0.0, first) == (0.0, 400.0)
    assert calculate_balance([first, second]).due == 0
    assert calculate_balance([first, second]).owe == 0


def test_underpaid_buy_reduces_existing_due_first():
    buy = make_trade("buy", 1000, day=1, amount_paid=700)

    assert apply_trade(500.0, 0.0, buy) == (200.0, 0.0)
    assert apply_trade(100.0, 0.0, buy) == (0.0, 200.0)


def test_buy_without_amount_paid_is_fully_unpaid():
    buy = make_trade("buy", 800, day=1)

    balance = calculate_balance([buy])

    assert (balance.due, balance.owe) == (0, 800)


def test_overpaid_buy_increases_due():
    buy = make_trade("buy", 500, day=1, amount_paid=650)

    balance = calculate_balance([buy])

    assert (balance.due, balance.owe) == (150, 0)


def test_sell_without_amount_received_keeps_full_due():
    sell = make_trade("sell", 1200, day=1)

    balance = calculate_balance([sell])

    assert (balance.due, balance.owe) == (1200, 0)


def test_sell_with_zero_received_is_the_same_as_untracked():
    tracked = calculate_balance([make_trade("sell", 1200, day=1, amount_received=0)])
    untracked = calculate_balance([make_trade("sell", 1200, day=1)])

    assert tracked == untracked


def test_sell_overpayment_becomes_owe():
    sell = make_trade("sell", 1000, day=1, amount_received=1300)

    balance = calculate_balance([sell], initial_due=100)

    assert (balance.due, balance.owe) == (0, 200)


def test_receiving_settlement_clears_due_and_excess_becomes_owe():
    settlement = make_trade("settlement", 700, day=2, settlement_direction="receiving")

    assert calculate_balance([settlement], initial_due=1000).due == 300
    balance = calculate_balance([settlement], initial_due=500)
    assert (balance.due, balance.owe) == (0, 200)


def test_receiving_settlement_without_due_is_an_advance():
    settlement = make_trade("settlement", 400, day=1, settlement_direction="receiving")

    balance = calculate_balance([settlement])

    assert (balance.due, balance.owe) == (0, 400)


def test_paying_settlement_increases_due_and_nets_off_owe():
    settlement = make_trade("settlement", 300, day=1, settlement_direction="paying")

    balance = calculate_balance([settlement], initial_owe=1000)

    assert (balance.due, balance.owe) == (0, 700)


def test_transfer_does_not_move_balance():
    transfer = make_trade("transfer", 5000, day=1)

    balance = calculate_balance([transfer], initial_due=250)

    assert (balance.due, balance.owe) == (250, 0)


def test_net_off():
    assert net_off(500.0, 200.0) == (300.0, 0.0)
    assert net_off(200.0, 500.0) == (0.0, 300.0)
    assert net_off(200.0, 200.0) == (0.0, 0.0)
    assert net_off(0.0, 50.0) == (0.0, 50.0)


def test_invariants_hold_after_every_trade():
    rng = random.Random(7)
    directions = ["receiving", "paying"]

    for _ in range(200):
        due = rng.choice([0.0, 250.0, 1000.0])
        owe = rng.choice([0.0, 300.0])
        for _ in range(20):
            kind = rng.choice(["buy", "sell", "transfer", "settlement"])
            amount = float(rng.randint(0, 2000))
            extra = {}
            if kind == "buy" and rng.random() < 0.8:
                extra["amount_paid"] = float(rng.randint(0, 2500))
            if kind == "sell" and rng.random() < 0.5:
                extra["amount_received"] = float(rng.randint(0, 2500))
            if kind == "settlement":
                extra["settlement_direction"] = rng.choice(directions)
            due, owe = apply_trade(due, owe, Trade(type=kind, merchant_id="m1", total_amount=amount, **extra))

            assert not (due > 0 and owe > 0)
            assert due >= 0 and owe >= 0


def test_result_does_not_depend_on_input_order():
    trades = [
        make_trade("sell", 1000, day=1),
        make_trade("settlement", 1500, day=2, settlement_direction="receiving"),
        make_trade("buy", 900, day=3, amount_paid=200),
        make_trade("sell", 400, day=4, amount_received=100),
    ]
    expected = calculate_balance(trades, initial_due=50)

    for permutation in itertools.permutations(trades):
        assert calculate_balance(list(permutation), initial_due=50) == expected


def test_trade_date_wins_over_created_at_for_ordering():
    # Created later but dated earlier: must be applied first.
    backdated = Trade(
        type="settlement",
        merchant_id="m1",
        total_amount=500,
        settlement_direction="receiving",
        trade_date=date(2024, 1, 1),
        created_at=datetime(2024, 2, 1, 12, 0),
    )
    sell = Trade(type="sell", merchant_id="m1", total_amount=500, created_at=datetime(2024, 1, 15, 12, 0))

    balance = calculate_balance([sell, backdated])

    # settlement first (no due yet -> advance), then the sell nets it off
    assert (balance.due, balance.owe) == (0, 0)


def test_running_balances_are_newest_first_and_end_at_final_balance():
    trades = [
        make_trade("sell", 1000, day=3),
        make_trade("sell", 500, day=1),
        make_trade("settlement", 300, day=2, settlement_direction="receiving"),
    ]

    rows = calculate_running_balances(trades)

    assert [row.trade.trade_date.day for row in rows] == [3, 2, 1]
    assert [(row.due, row.owe) for row in rows] == [(1200, 0), (200, 0), (500, 0)]
    final = calculate_balance(trades)
    assert (rows[0].due, rows[0].owe) == (final.due, final.owe)


def test_running_balances_empty_history():
    assert calculate_running_balances([], initial_due=100) == []


def test_other_merchants_are_ignored():
    trades = [
        make_trade("sell", 1000, day=1, merchant_id="m1"),
        make_trade("sell", 9999, day=1, merchant_id="m2"),
    ]

    assert calculate_merchant_balance("m1", trades).due == 1000
    assert len(calculate_merchant_running_balances("m1", trades)) == 1


def test_opening_balances_without_trades_are_returned_as_is():
    balance = calculate_balance([], initial_due=100, initial_owe=40)

    assert (balance.due, balance.owe) == (100, 40)


def test_date_range_filter_keeps_running_balances():
    trades = [make_trade("sell", 100, day=day) for day in (1, 5, 10)]
    rows = calculate_running_balances(trades)

    selected = filter_by_date_range(rows, date(2024, 1, 5), date(2024, 1, 10))

    assert [row.trade.trade_date.day for row in selected] == [10, 5]
    assert [row.due for row in selected] == [300, 200]
