from decimal import Decimal

import pytest

from bitget_trading.errors import ModeConflictError, ValidationError
from bitget_trading.exchange import OrderRequest, TriggerOrderRequest
from bitget_trading.memory_exchange import InMemoryExchange
from bitget_trading.models import EntryType, PositionMode, ProductType, Side

BTC = "BTC/USDT:USDT"


def market(side, amount, **kwargs):
    return OrderRequest(symbol=BTC, side=side, order_type=EntryType.MARKET, amount=Decimal(amount), **kwargs)


def test_one_way_fills_net_opposite_exposure():
    exchange = InMemoryExchange()
    exchange.place_order(market("buy", "1"))
    exchange.place_order(market("sell", "1.5"))

    positions = exchange.fetch_positions(BTC)
    assert [(p.side, p.size) for p in positions] == [(Side.SHORT, Decimal("0.5"))]


def test_hedged_account_keeps_both_sides_and_rejects_unilateral():
    exchange = InMemoryExchange(position_mode=PositionMode.HEDGED)
    exchange.place_order(market("buy", "1", hedged=True))
    exchange.place_order(market("sell", "2", hedged=True))

    assert len(exchange.fetch_positions(BTC)) == 2
    with pytest.raises(ModeConflictError) as exc_info:
        exchange.place_order(market("buy", "1"))
    assert exc_info.value.code == "40774"


def test_reduce_only_without_position_fails():
    exchange = InMemoryExchange()
    with pytest.raises(ValidationError, match="No position to close"):
        exchange.place_order(market("sell", "1", reduce_only=True))


def test_limit_orders_rest_and_preset_triggers_become_plan_orders():
    exchange = InMemoryExchange()
    ack = exchange.place_order(OrderRequest(
        symbol=BTC, side="buy", order_type=EntryType.LIMIT, amount=Decimal("1"), price=Decimal("59000"),
        stop_loss_price=Decimal("58000"), take_profit_price=Decimal("61000"),
    ))

    assert [o.id for o in exchange.fetch_open_orders(BTC)] == [ack.order_id]
    assert sorted(o.plan_type for o in exchange.fetch_plan_orders(BTC)) == ["pos_loss", "pos_profit"]
    assert exchange.fetch_positions(BTC) == []


def test_fail_next_after_lets_calls_through():
    exchange = InMemoryExchange()
    exchange.fail_next("set_leverage", ValidationError("too high"), after=1)

    exchange.set_leverage(BTC, 5)
    with pytest.raises(ValidationError):
        exchange.set_leverage(BTC, 200)
    exchange.set_leverage(BTC, 10)

    assert exchange.leverage[BTC] == 10
    assert exchange.call_names == ["set_leverage"] * 3


def test_trigger_order_and_cancel():
    exchange = InMemoryExchange()
    ack = exchange.place_trigger_order(TriggerOrderRequest(
        symbol=BTC, side="sell", amount=Decimal("1"), trigger_price=Decimal("59000"),
    ))

    exchange.cancel_plan_order(BTC, order_id=ack.order_id)
    assert exchange.plan_orders == {}
    with pytest.raises(ValidationError):
        exchange.cancel_plan_order(BTC, order_id=ack.order_id)


def test_market_data_and_close_all():
    exchange = InMemoryExchange()
    exchange.set_position(BTC, Side.LONG, Decimal("1"))

    assert set(exchange.load_markets(ProductType.SPOT)) == {"BTC/USDT", "ETH/USDT"}
    assert exchange.fetch_order_book(BTC).asks == [(Decimal("60000.1"), Decimal("1"))]
    assert exchange.fetch_candles(BTC)[0].close == Decimal("60000.1")

    exchange.close_all_positions(BTC)
    assert exchange.fetch_positions() == []


def test_spot_fill_updates_balances():
    exchange = InMemoryExchange()
    exchange.balances["USDT"] = Decimal("1000")
    exchange.place_order(OrderRequest(
        symbol="ETH/USDT", side="buy", order_type=EntryType.MARKET, amount=Decimal("0.1"), cost=Decimal("300.001"),
    ))

    balances = {b.asset: b.free for b in exchange.fetch_balances()}
    assert balances["ETH"] == Decimal("0.1")
    assert balances["USDT"] == Decimal("699.999")
