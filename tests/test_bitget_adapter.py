import base64
import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from bitget_trading.bitget_adapter import BitgetAdapter
from bitget_trading.config import TradingConfig
from bitget_trading.errors import (
    AuthenticationError,
    ModeConflictError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from bitget_trading.exchange import OrderRequest, TriggerOrderRequest
from bitget_trading.models import EntryType, MarginMode, PositionMode, ProductType, Side
from bitget_trading.rate_limit_policy import RateLimitManager, RateLimitQuota
from bitget_trading.secrets import BitgetCredentials

SESSION_REQUEST = "bitget_trading.bitget_adapter.requests.Session.request"


def make_response(data=None, code="00000", status=200, msg="success"):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    payload = {"code": code, "msg": msg, "data": data}
    resp.json.return_value = payload
    resp.text = json.dumps(payload)
    return resp


def sent_body(mock_request, call=-1):
    return json.loads(mock_request.call_args_list[call][1]["data"])


@pytest.fixture
def adapter():
    return BitgetAdapter(api_key="key", secret="secret", passphrase="pass")


@patch("bitget_trading.bitget_adapter.time.time", return_value=1700000000.0)
@patch(SESSION_REQUEST)
def test_signed_request_headers(mock_request, _mock_time, adapter):
    """Verify ACCESS-* headers and the HMAC-SHA256 signature over ts + method + path + query."""
    mock_request.return_value = make_response([])

    adapter.fetch_positions()

    method, url = mock_request.call_args[0]
    headers = mock_request.call_args[1]["headers"]
    request_path = "/api/v2/mix/position/all-position?productType=USDT-FUTURES&marginCoin=USDT"
    expected = base64.b64encode(
        hmac.new(b"secret", ("1700000000000GET" + request_path).encode(), hashlib.sha256).digest()
    ).decode()

    assert method == "GET"
    assert url == "https://api.bitget.com" + request_path
    assert headers["ACCESS-KEY"] == "key"
    assert headers["ACCESS-PASSPHRASE"] == "pass"
    assert headers["ACCESS-TIMESTAMP"] == "1700000000000"
    assert headers["ACCESS-SIGN"] == expected
    assert "paptrading" not in headers
    assert mock_request.call_args[1]["timeout"] == 25


@patch(SESSION_REQUEST)
def test_sandbox_adds_paptrading_header(mock_request):
    mock_request.return_value = make_response({"lastPr": "1"})
    adapter = BitgetAdapter(sandbox=True)

    adapter.fetch_ticker("BTC/USDT:USDT")

    headers = mock_request.call_args[1]["headers"]
    assert headers["paptrading"] == "1"
    assert "ACCESS-KEY" not in headers


@patch(SESSION_REQUEST)
def test_private_call_without_credentials_raises(mock_request):
    adapter = BitgetAdapter()

    with pytest.raises(AuthenticationError):
        adapter.fetch_positions()
    mock_request.assert_not_called()


@pytest.mark.parametrize(
    "status, payload, expected",
    [
        (401, {"code": "40037", "msg": "Apikey does not exist"}, AuthenticationError),
        (400, {"code": "40009", "msg": "sign signature error"}, AuthenticationError),
        (429, None, RateLimitError),
        (400, {"code": "40014", "msg": "Too many requests"}, RateLimitError),
        (400, {"code": "40774", "msg": "The order type for unilateral position must also be the unilateral position type."}, ModeConflictError),
        (400, {"code": "22002", "msg": "unilateral position mismatch"}, ModeConflictError),
        (502, None, NetworkError),
        (200, None, NetworkError),
        (400, {"code": "45110", "msg": "less than the minimum order quantity"}, ValidationError),
    ],
)
def test_classify(status, payload, expected):
    error = BitgetAdapter._classify(status, payload, "/api/v2/mix/order/place-order", "raw body")

    assert type(error) is expected
    assert error.endpoint == "/api/v2/mix/order/place-order"
    if payload:
        assert error.code == payload["code"]


@patch(SESSION_REQUEST)
def test_error_code_in_ok_response_raises(mock_request, adapter):
    mock_request.return_value = make_response(None, code="40774", msg="unilateral position")

    with pytest.raises(ModeConflictError) as exc_info:
        adapter.set_position_mode(PositionMode.HEDGED)
    assert exc_info.value.code == "40774"


@patch(SESSION_REQUEST)
def test_unparseable_response_is_network_error(mock_request, adapter):
    resp = make_response()
    resp.json.side_effect = ValueError("not json")
    mock_request.return_value = resp

    with pytest.raises(NetworkError):
        adapter.fetch_ticker("BTC/USDT:USDT")


@patch(SESSION_REQUEST)
def test_timeout_is_network_error_and_not_retried(mock_request, adapter):
    mock_request.side_effect = requests.exceptions.Timeout("read timed out")

    with pytest.raises(NetworkError, match="timed out"):
        adapter.place_order(
            OrderRequest(symbol="BTC/USDT:USDT", side="buy", order_type=EntryType.MARKET, amount=Decimal("0.01"))
        )
    assert mock_request.call_count == 1


def test_transport_retry_is_get_only(adapter):
    retries = adapter.session.get_adapter("https://api.bitget.com").max_retries

    assert retries.allowed_methods == frozenset(["GET"])
    assert 502 in retries.status_forcelist
    assert retries.read == 0


@patch(SESSION_REQUEST)
def test_load_contract_markets(mock_request, adapter):
    mock_request.return_value = make_response([
        {
            "symbol": "BTCUSDT", "baseCoin": "BTC", "quoteCoin": "USDT", "pricePlace": "1",
            "priceEndStep": "1", "volumePlace": "3", "sizeMultiplier": "0.001",
            "minTradeNum": "0.001", "symbolStatus": "normal",
        },
        {
            "symbol": "XYZUSDT", "baseCoin": "XYZ", "quoteCoin": "USDT", "pricePlace": "4",
            "priceEndStep": "5", "volumePlace": "0", "symbolStatus": "off",
        },
    ])

    markets = adapter.load_markets(ProductType.SWAP)

    btc = markets["BTC/USDT:USDT"]
    assert btc.id == "BTCUSDT"
    assert btc.price_tick == Decimal("0.1")
    assert btc.amount_step == Decimal("0.001")
    assert btc.min_amount == Decimal("0.001")
    assert btc.contract and btc.active
    xyz = markets["XYZ/USDT:USDT"]
    assert xyz.price_tick == Decimal("0.0005")
    assert xyz.amount_step == Decimal("1")
    assert not xyz.active


@patch(SESSION_REQUEST)
def test_load_spot_markets(mock_request, adapter):
    mock_request.return_value = make_response([
        {
            "symbol": "ETHUSDT", "baseCoin": "ETH", "quoteCoin": "USDT", "pricePrecision": "2",
            "quantityPrecision": "4", "minTradeAmount": "0.0001", "maxTradeAmount": "0", "status": "online",
        },
    ])

    eth = adapter.load_markets(ProductType.SPOT)["ETH/USDT"]

    assert eth.spot
    assert eth.price_tick == Decimal("0.01")
    assert eth.amount_step == Decimal("0.0001")
    assert eth.max_amount is None


@patch(SESSION_REQUEST)
def test_fetch_ticker_accepts_list_payload(mock_request, adapter):
    mock_request.return_value = make_response(
        [{"symbol": "BTCUSDT", "lastPr": "60000", "bidPr": "59999.9", "askPr": "60000.1", "ts": "1700000000000"}]
    )

    ticker = adapter.fetch_ticker("BTC/USDT")

    assert mock_request.call_args[0][1].startswith("https://api.bitget.com/api/v2/spot/market/tickers?symbol=BTCUSDT")
    assert ticker.reference_price == Decimal("60000.1")
    assert ticker.timestamp == 1700000000000


@patch(SESSION_REQUEST)
def test_fetch_positions_filters_symbol_and_empty_rows(mock_request, adapter):
    mock_request.return_value = make_response([
        {"symbol": "BTCUSDT", "holdSide": "long", "total": "0.5", "openPriceAvg": "60000", "marginMode": "crossed", "leverage": "10"},
        {"symbol": "BTCUSDT", "holdSide": "short", "total": "0"},
        {"symbol": "ETHUSDT", "holdSide": "short", "total": "2"},
    ])

    positions = adapter.fetch_positions("BTC/USDT:USDT")

    assert len(positions) == 1
    assert positions[0].side is Side.LONG
    assert positions[0].size == Decimal("0.5")
    assert positions[0].margin_mode is MarginMode.CROSS
    assert positions[0].leverage == 10


@patch(SESSION_REQUEST)
def test_fetch_open_orders_marks_reduce_only(mock_request, adapter):
    mock_request.return_value = make_response({
        "entrustedList": [
            {"orderId": "1", "symbol": "BTCUSDT", "side": "sell", "orderType": "limit", "size": "0.01", "price": "61000", "reduceOnly": "YES"},
            {"orderId": "2", "symbol": "BTCUSDT", "side": "buy", "orderType": "limit", "size": "0.01", "price": "61000", "tradeSide": "close"},
            {"orderId": "3", "symbol": "BTCUSDT", "side": "buy", "orderType": "limit", "size": "0.01", "price": "59000", "tradeSide": "open"},
        ]
    })

    orders = adapter.fetch_open_orders("BTC/USDT:USDT")

    assert [o.reduce_only for o in orders] == [True, True, False]
    assert orders[0].symbol == "BTC/USDT:USDT"


@patch(SESSION_REQUEST)
def test_one_way_reduce_only_order(mock_request, adapter):
    mock_request.return_value = make_response({"orderId": "123", "clientOid": "tp-1-0"})

    ack = adapter.place_order(OrderRequest(
        symbol="BTC/USDT:USDT", side="sell", order_type=EntryType.LIMIT, amount=Decimal("0.010"),
        price=Decimal("61000.0"), margin_mode=MarginMode.CROSS, reduce_only=True, client_oid="tp-1-0",
    ))

    body = sent_body(mock_request)
    assert mock_request.call_args[0][0] == "POST"
    assert body["side"] == "sell"
    assert body["reduceOnly"] == "YES"
    assert "tradeSide" not in body
    assert body["marginMode"] == "crossed"
    assert body["size"] == "0.01"
    assert body["price"] == "61000"
    assert body["force"] == "gtc"
    assert ack.order_id == "123"


@patch(SESSION_REQUEST)
def test_hedged_orders_use_trade_side(mock_request, adapter):
    mock_request.return_value = make_response({"orderId": "1"})

    adapter.place_order(OrderRequest(
        symbol="BTC/USDT:USDT", side="sell", order_type=EntryType.MARKET, amount=Decimal("1"),
        reduce_only=True, hedged=True,
    ))
    close_body = sent_body(mock_request)
    assert close_body["side"] == "buy"
    assert close_body["tradeSide"] == "close"
    assert "reduceOnly" not in close_body

    adapter.place_order(OrderRequest(
        symbol="BTC/USDT:USDT", side="buy", order_type=EntryType.MARKET, amount=Decimal("1"), hedged=True,
        stop_loss_price=Decimal("59400.1"), take_profit_price=Decimal("61200.1"),
    ))
    open_body = sent_body(mock_request)
    assert open_body["side"] == "buy"
    assert open_body["tradeSide"] == "open"
    assert open_body["presetStopLossPrice"] == "59400.1"
    assert open_body["presetStopSurplusPrice"] == "61200.1"
    assert open_body["marginMode"] == "isolated"


@patch(SESSION_REQUEST)
def test_spot_market_buy_sized_by_cost(mock_request, adapter):
    mock_request.return_value = make_response({"orderId": "9"})

    adapter.place_order(OrderRequest(
        symbol="BTC/USDT", side="buy", order_type=EntryType.MARKET, amount=Decimal("0.01"), cost=Decimal("600.001"),
    ))

    assert mock_request.call_args[0][1] == "https://api.bitget.com/api/v2/spot/trade/place-order"
    assert sent_body(mock_request)["size"] == "600.001"


@patch(SESSION_REQUEST)
def test_spot_margin_order_uses_margin_endpoint(mock_request, adapter):
    mock_request.return_value = make_response({"orderId": "9"})

    adapter.place_order(OrderRequest(
        symbol="BTC/USDT", side="sell", order_type=EntryType.MARKET, amount=Decimal("0.01"),
        margin_mode=MarginMode.ISOLATED,
    ))

    assert mock_request.call_args[0][1] == "https://api.bitget.com/api/v2/margin/isolated/place-order"
    body = sent_body(mock_request)
    assert body["baseSize"] == "0.01"
    assert body["loanType"] == "normal"


@pytest.mark.parametrize("hedged, side, hold_side", [(True, "sell", "long"), (True, "buy", "short"), (False, "sell", "buy")])
@patch(SESSION_REQUEST)
def test_trigger_order_hold_side(mock_request, hedged, side, hold_side, adapter):
    mock_request.return_value = make_response({"orderId": "5"})

    adapter.place_trigger_order(TriggerOrderRequest(
        symbol="BTC/USDT:USDT", side=side, amount=Decimal("0.01"), trigger_price=Decimal("59400.1"), hedged=hedged,
    ))

    body = sent_body(mock_request)
    assert body["holdSide"] == hold_side
    assert body["planType"] == "loss_plan"
    assert body["triggerPrice"] == "59400.1"
    assert body["executePrice"] == "0"


@pytest.mark.parametrize("mode, expected", [(PositionMode.HEDGED, "hedge_mode"), (PositionMode.ONE_WAY, "one_way_mode")])
@patch(SESSION_REQUEST)
def test_set_position_mode(mock_request, mode, expected, adapter):
    mock_request.return_value = make_response({})

    adapter.set_position_mode(mode)

    assert sent_body(mock_request) == {"productType": "USDT-FUTURES", "posMode": expected}


@patch(SESSION_REQUEST)
def test_cancel_plan_order_requires_identifier(mock_request, adapter):
    with pytest.raises(ValidationError):
        adapter.cancel_plan_order("BTC/USDT:USDT")
    mock_request.assert_not_called()


@patch(SESSION_REQUEST)
def test_margin_borrow(mock_request, adapter):
    mock_request.return_value = make_response({"loanId": "L1", "coin": "USDT", "borrowAmount": "100"})

    data = adapter.borrow_margin("usdt", Decimal("100"), MarginMode.CROSS)

    assert mock_request.call_args[0][1] == "https://api.bitget.com/api/v2/margin/crossed/account/borrow"
    assert sent_body(mock_request) == {"coin": "USDT", "borrowAmount": "100"}
    assert data["loanId"] == "L1"


@patch(SESSION_REQUEST)
def test_isolated_repay_requires_symbol(mock_request, adapter):
    with pytest.raises(ValidationError):
        adapter.repay_margin("usdt", Decimal("10"), MarginMode.ISOLATED)
    mock_request.assert_not_called()


@patch(SESSION_REQUEST)
def test_rate_limiter_blocks_before_request(mock_request):
    limiter = RateLimitManager({"default": RateLimitQuota(requests_per_window=1, window_seconds=60)})
    adapter = BitgetAdapter(rate_limiter=limiter)
    mock_request.return_value = make_response({"lastPr": "1"})

    adapter.fetch_ticker("BTC/USDT:USDT")
    with pytest.raises(RateLimitError):
        adapter.fetch_ticker("BTC/USDT:USDT")
    assert mock_request.call_count == 1


def test_from_config_applies_sandbox_override():
    config = TradingConfig()
    config.exchange.timeout = 7

    adapter = BitgetAdapter.from_config(config, BitgetCredentials("k", "s", "p"), sandbox=True)

    assert adapter.sandbox is True
    assert adapter.timeout == 7
    assert adapter.api_key == "k"
    assert adapter.rate_limiter is not None


@patch(SESSION_REQUEST)
def test_fetch_candles_interval_mapping(mock_request, adapter):
    mock_request.return_value = make_response([["1700000000000", "1", "2", "0.5", "1.5", "10", "15"]])

    candles = adapter.fetch_candles("BTC/USDT:USDT", interval="1h", limit=1)
    assert "granularity=1H" in mock_request.call_args[0][1]
    assert candles[0].close == Decimal("1.5")

    adapter.fetch_candles("BTC/USDT", interval="15m")
    assert "granularity=15min" in mock_request.call_args[0][1]


@patch(SESSION_REQUEST)
def test_fetch_order_book(mock_request, adapter):
    mock_request.return_value = make_response({
        "bids": [["59999.9", "1.2"]], "asks": [["60000.1", "0.8"]], "ts": "1700000000000",
    })

    book = adapter.fetch_order_book("BTC/USDT:USDT", depth=5)

    assert "/api/v2/mix/market/depth" in mock_request.call_args[0][1]
    assert book.bids == [(Decimal("59999.9"), Decimal("1.2"))]
    assert book.asks[0][0] == Decimal("60000.1")


@patch(SESSION_REQUEST)
def test_fetch_balances_filters_asset(mock_request, adapter):
    mock_request.return_value = make_response([
        {"coin": "USDT", "available": "100", "frozen": "5"},
        {"coin": "BTC", "available": "0.1", "frozen": "0"},
    ])

    balances = adapter.fetch_balances("usdt")

    assert [b.asset for b in balances] == ["USDT"]
    assert balances[0].total == Decimal("105")


@patch(SESSION_REQUEST)
def test_close_all_positions(mock_request, adapter):
    mock_request.return_value = make_response({"successList": [], "failureList": []})

    adapter.close_all_positions("ETH/USDT:USDT")

    assert mock_request.call_args[0][1].endswith("/api/v2/mix/order/close-positions")
    assert sent_body(mock_request) == {"productType": "USDT-FUTURES", "symbol": "ETHUSDT"}
