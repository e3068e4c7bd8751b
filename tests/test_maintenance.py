from decimal import Decimal

import pytest

from bitget_trading.errors import ModeConflictError, NetworkError, ValidationError
from bitget_trading.exchange import OpenOrderSnapshot, PlanOrderSnapshot
from bitget_trading.maintenance import MaintenanceOperations, is_take_profit_like
from bitget_trading.memory_exchange import InMemoryExchange
from bitget_trading.models import MarginMode, PositionMode, Side

BTC = "BTC/USDT:USDT"


@pytest.fixture
def exchange():
    return InMemoryExchange()


class TestFlatten:
    def test_no_positions_makes_no_calls(self, exchange):
        report = MaintenanceOperations(exchange).flatten(BTC)

        assert report.items == []
        assert report.succeeded
        assert exchange.calls == []

    def test_hedged_account_closes_both_sides(self):
        exchange = InMemoryExchange(position_mode=PositionMode.HEDGED)
        exchange.set_position(BTC, Side.LONG, Decimal("1"))
        exchange.set_position(BTC, Side.SHORT, Decimal("0.5"))

        report = MaintenanceOperations(exchange, PositionMode.HEDGED).flatten(BTC)

        assert [(item.side, item.amount, item.status) for item in report.items] == [
            ("long", Decimal("1"), "done"),
            ("short", Decimal("0.5"), "done"),
        ]
        requests = [payload for _, payload in exchange.calls]
        assert [r.side for r in requests] == ["sell", "buy"]
        assert all(r.reduce_only and r.hedged for r in requests)
        assert exchange.positions == {}

    def test_sides_filter(self):
        exchange = InMemoryExchange(position_mode=PositionMode.HEDGED)
        exchange.set_position(BTC, Side.LONG, Decimal("1"))
        exchange.set_position(BTC, Side.SHORT, Decimal("0.5"))

        report = MaintenanceOperations(exchange, PositionMode.HEDGED).flatten(BTC, sides={Side.SHORT})

        assert [item.side for item in report.items] == ["short"]
        assert exchange.positions == {(BTC, Side.LONG): Decimal("1")}

    def test_mode_conflict_switches_to_hedged_and_retries(self, exchange):
        exchange.set_position(BTC, Side.LONG, Decimal("1"))
        exchange.fail_next("place_order", ModeConflictError("unilateral position", code="40774"))
        ops = MaintenanceOperations(exchange)

        report = ops.flatten(BTC)

        assert exchange.call_names == ["place_order", "set_position_mode", "place_order"]
        assert exchange.calls[-1][1].hedged is True
        assert report.position_mode is PositionMode.HEDGED
        assert ops.position_mode is PositionMode.HEDGED
        assert report.succeeded

    def test_conflict_after_switch_propagates(self, exchange):
        exchange.set_position(BTC, Side.LONG, Decimal("1"))
        conflict = ModeConflictError("unilateral position", code="40774")
        exchange.fail_next("place_order", conflict, times=2)

        with pytest.raises(ModeConflictError):
            MaintenanceOperations(exchange).flatten(BTC)

    def test_failed_close_is_recorded_and_batch_continues(self):
        exchange = InMemoryExchange(position_mode=PositionMode.HEDGED)
        exchange.set_position(BTC, Side.LONG, Decimal("1"))
        exchange.set_position(BTC, Side.SHORT, Decimal("2"))
        exchange.fail_next("place_order", ValidationError("Insufficient position", code="22002"))

        report = MaintenanceOperations(exchange, PositionMode.HEDGED).flatten(BTC)

        assert [item.status for item in report.items] == ["failed", "done"]
        assert "Insufficient position" in report.failures[0].detail
        assert not report.succeeded

    def test_dry_run_reports_planned_closes(self, exchange):
        exchange.set_position(BTC, Side.LONG, Decimal("1"))

        report = MaintenanceOperations(exchange, dry_run=True).flatten(BTC)

        assert [(item.side, item.amount, item.status) for item in report.items] == [
            ("long", Decimal("1"), "planned"),
        ]
        assert report.succeeded
        assert exchange.calls == []
        assert exchange.positions == {(BTC, Side.LONG): Decimal("1")}

    def test_position_query_failure_raises(self, exchange):
        exchange.fail_next("fetch_positions", NetworkError("timeout"))

        with pytest.raises(NetworkError):
            MaintenanceOperations(exchange).flatten(BTC)


class TestCancelTakeProfits:
    def test_cancels_only_take_profit_like_orders(self, exchange):
        exchange.orders = {
            "o1": OpenOrderSnapshot(id="o1", symbol=BTC, side="sell", order_type="limit",
                                    amount=Decimal("1"), price=Decimal("61000"), reduce_only=True),
            "o2": OpenOrderSnapshot(id="o2", symbol=BTC, side="buy", order_type="limit",
                                    amount=Decimal("1"), price=Decimal("59000")),
            "o3": OpenOrderSnapshot(id="o3", symbol=BTC, side="sell", order_type="limit",
                                    amount=Decimal("1"), price=Decimal("62000"), client_oid="tp-1-1"),
        }
        exchange.plan_orders = {
            "p1": PlanOrderSnapshot(id="p1", symbol=BTC, side="sell", order_type="market",
                                    amount=Decimal("1"), plan_type="profit_plan", trigger_price=Decimal("63000")),
            "p2": PlanOrderSnapshot(id="p2", symbol=BTC, side="sell", order_type="market",
                                    amount=Decimal("1"), plan_type="loss_plan", trigger_price=Decimal("58000")),
        }

        report = MaintenanceOperations(exchange).cancel_take_profits(BTC)

        assert sorted(item.order_id for item in report.items) == ["o1", "o3", "p1"]
        assert set(exchange.orders) == {"o2"}
        assert set(exchange.plan_orders) == {"p2"}

    def test_cancel_failure_is_recorded(self, exchange):
        exchange.orders = {
            "o1": OpenOrderSnapshot(id="o1", symbol=BTC, side="sell", order_type="limit",
                                    amount=Decimal("1"), price=Decimal("61000"), reduce_only=True),
            "o2": OpenOrderSnapshot(id="o2", symbol=BTC, side="sell", order_type="limit",
                                    amount=Decimal("1"), price=Decimal("62000"), reduce_only=True),
        }
        exchange.fail_next("cancel_order", ValidationError("Order does not exist", code="40768"))

        report = MaintenanceOperations(exchange).cancel_take_profits(BTC)

        assert [item.status for item in report.items] == ["failed", "done"]
        assert set(exchange.orders) == {"o1"}

    def test_nothing_to_cancel(self, exchange):
        report = MaintenanceOperations(exchange).cancel_take_profits(BTC)
        assert report.items == []
        assert exchange.calls == []


def test_is_take_profit_like():
    stop = PlanOrderSnapshot(id="x", symbol=BTC, side="sell", order_type="market",
                             amount=Decimal("1"), plan_type="pos_loss")
    assert not is_take_profit_like(stop)
    assert is_take_profit_like(
        PlanOrderSnapshot(id="y", symbol=BTC, side="sell", order_type="market",
                          amount=Decimal("1"), plan_type="pos_profit")
    )


class TestMarginLoans:
    def test_borrow_and_repay(self, exchange):
        ops = MaintenanceOperations(exchange)

        borrowed = ops.borrow("usdt", Decimal("100"), MarginMode.CROSS)
        assert borrowed.action == "borrow"
        assert borrowed.items[0].side == "USDT"
        assert borrowed.items[0].detail == "cross margin"
        assert borrowed.items[0].order_id is not None
        assert exchange.loans["USDT"] == Decimal("100")

        repaid = ops.repay("usdt", Decimal("40"), MarginMode.CROSS)
        assert repaid.succeeded
        assert exchange.loans["USDT"] == Decimal("60")

    def test_dry_run_loan_is_planned_only(self, exchange):
        report = MaintenanceOperations(exchange, dry_run=True).repay("usdt", Decimal("40"), MarginMode.CROSS)

        assert report.items[0].status == "planned"
        assert report.items[0].order_id is None
        assert exchange.calls == []

    def test_isolated_borrow_requires_symbol(self, exchange):
        with pytest.raises(ValidationError):
            MaintenanceOperations(exchange).borrow("usdt", Decimal("100"), MarginMode.ISOLATED)
