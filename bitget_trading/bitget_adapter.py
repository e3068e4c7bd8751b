import base64
import hashlib
import hmac
import json
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import TradingConfig
from .errors import (
    AuthenticationError,
    ExchangeError,
    ModeConflictError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from .exchange import (
    Balance,
    Candle,
    ExchangeAdapter,
    MarketInfo,
    OpenOrderSnapshot,
    OrderAck,
    OrderBook,
    OrderRequest,
    PlanOrderSnapshot,
    PositionSnapshot,
    Ticker,
    TriggerOrderRequest,
)
from .logging_setup import logger
from .models import EntryType, MarginMode, PositionMode, ProductType, Side
from .rate_limit_policy import RateLimitManager
from .secrets import BitgetCredentials

SUCCESS_CODE = "00000"
AUTH_CODES = frozenset(["40006", "40009", "40011", "40012", "40037"])
RATE_LIMIT_CODES = frozenset(["429", "40014"])
MODE_CONFLICT_CODES = frozenset(["40774"])


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _fmt(value: Decimal) -> str:
    """Plain (non-exponent) decimal string as Bitget expects."""
    return format(value.normalize(), "f")


def _futures_interval(interval: str) -> str:
    lower = interval.lower()
    if lower.endswith("m") and lower[:-1].isdigit():
        return lower
    if "h" in lower:
        return lower.replace("h", "H")
    if lower.endswith(("d", "w")):
        return lower.upper()
    return interval


def _spot_interval(interval: str) -> str:
    lower = interval.lower()
    if lower[:-1].isdigit():
        suffix = {"m": "min", "h": "h", "d": "day", "w": "week"}.get(lower[-1])
        if suffix:
            return lower[:-1] + suffix
    return interval


class BitgetAdapter(ExchangeAdapter):
    """Bitget REST v2 adapter with request signing, rate limiting and error classification.

    Features:
    - Request signing (ACCESS-* headers, HMAC-SHA256 over ts + METHOD + path + body).
    - Sandbox (demo) trading via the ``paptrading: 1`` header; same host and product type.
    - Automatic transport retry with urllib3.Retry for 5xx errors on GET only.
      Order submissions and timeouts are never retried.
    - Every failure is raised as a typed ExchangeError subclass; Bitget code 40774
      and "unilateral" messages become ModeConflictError.

    Notes:
    - Symbols are canonical ("BTC/USDT:USDT" for contracts, "BTC/USDT" for spot);
      the exchange id is the pair without separators ("BTCUSDT").
    - Public market-data calls work without credentials.
    """

    def __init__(
        self,
        api_key: str = "",
        secret: str = "",
        passphrase: str = "",
        *,
        base_url: str = "https://api.bitget.com",
        sandbox: bool = False,
        product_type: str = "USDT-FUTURES",
        margin_coin: str = "USDT",
        timeout: int = 25,
        max_retries: int = 2,
        rate_limiter: Optional[RateLimitManager] = None,
    ):
        self.api_key = api_key
        self.secret = secret
        self.passphrase = passphrase
        self.base_url = base_url.rstrip("/")
        self.sandbox = sandbox
        self.product_type = product_type
        self.margin_coin = margin_coin
        self.timeout = timeout
        self.rate_limiter = rate_limiter

        self.session = requests.Session()
        retries = Retry(
            total=max_retries,
            read=0,
            backoff_factor=0.5,
            status_forcelist=(500, 502, 503, 504),
            allowed_methods=frozenset(["GET"]),
            raise_on_status=False,
        )
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session.mount("http://", HTTPAdapter(max_retries=retries))

    @classmethod
    def from_config(
        cls,
        config: TradingConfig,
        credentials: Optional[BitgetCredentials] = None,
        sandbox: Optional[bool] = None,
    ) -> "BitgetAdapter":
        """Create BitgetAdapter from TradingConfig and credentials (loaded via secrets module)."""
        credentials = credentials or BitgetCredentials("", "", "")
        limiter = RateLimitManager(
            RateLimitManager.default_quotas(
                requests_per_second=config.rate_limit.requests_per_second,
                orders_per_second=config.rate_limit.orders_per_second,
            )
        )
        return cls(
            api_key=credentials.api_key,
            secret=credentials.api_secret,
            passphrase=credentials.passphrase,
            base_url=config.exchange.base_url,
            sandbox=config.exchange.sandbox if sandbox is None else sandbox,
            product_type=config.exchange.product_type,
            margin_coin=config.exchange.margin_coin,
            timeout=config.exchange.timeout,
            max_retries=config.exchange.max_retries,
            rate_limiter=limiter,
        )

    # ------------------------------------------------------------------ wire

    def _sign(self, method: str, request_path: str, body: str) -> dict:
        if not (self.api_key and self.secret and self.passphrase):
            raise AuthenticationError(
                "Bitget credentials are required for private endpoints", endpoint=request_path
            )
        timestamp = str(int(time.time() * 1000))
        message = timestamp + method.upper() + request_path + body
        signature = hmac.new(self.secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256)
        return {
            "ACCESS-KEY": self.api_key,
            "ACCESS-SIGN": base64.b64encode(signature.digest()).decode(),
            "ACCESS-TIMESTAMP": timestamp,
            "ACCESS-PASSPHRASE": self.passphrase,
        }

    @staticmethod
    def _classify(status: int, payload: Any, path: str, text: str) -> ExchangeError:
        """Map an unsuccessful response onto the error taxonomy."""
        code = None
        msg = text
        if isinstance(payload, dict):
            if payload.get("code") is not None:
                code = str(payload["code"])
            msg = payload.get("msg") or msg
        message = f"Bitget {path} failed: {msg} (code={code}, http={status})"

        if status in (401, 403) or code in AUTH_CODES:
            return AuthenticationError(message, code=code, endpoint=path)
        if status == 429 or code in RATE_LIMIT_CODES:
            return RateLimitError(message, code=code, endpoint=path)
        if code in MODE_CONFLICT_CODES or "unilateral" in str(msg).lower():
            return ModeConflictError(message, code=code, endpoint=path)
        if status >= 500 or not isinstance(payload, dict):
            return NetworkError(message, code=code, endpoint=path)
        return ValidationError(message, code=code, endpoint=path)

    def _request(self, method: str, path: str, params: Optional[dict] = None, body: Optional[dict] = None, signed: bool = True):
        if self.rate_limiter is not None:
            self.rate_limiter.acquire(path)

        query = urlencode({k: v for k, v in (params or {}).items() if v is not None})
        request_path = f"{path}?{query}" if query else path
        body_str = json.dumps(body) if body is not None else ""

        headers = {"Content-Type": "application/json", "locale": "en-US"}
        if signed:
            headers.update(self._sign(method, request_path, body_str))
        if self.sandbox:
            headers["paptrading"] = "1"

        logger.debug(f"Bitget request: method={method} path={request_path} sandbox={self.sandbox}")
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}{request_path}",
                headers=headers,
                data=body_str or None,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Request timed out after {self.timeout}s: {method} {path}", endpoint=path) from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request failed: {e}", endpoint=path) from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if not resp.ok or not isinstance(payload, dict) or str(payload.get("code")) != SUCCESS_CODE:
            raise self._classify(resp.status_code, payload, path, resp.text)
        return payload.get("data")

    # --------------------------------------------------------------- symbols

    @staticmethod
    def _market_id(symbol: str) -> str:
        return symbol.split(":")[0].replace("/", "").upper()

    @staticmethod
    def _is_spot(symbol: str) -> bool:
        return "/" in symbol and ":" not in symbol

    def _canonical(self, market_id: str, product_type: ProductType) -> str:
        quote = self.margin_coin
        if not market_id.endswith(quote) or len(market_id) == len(quote):
            return market_id
        base = market_id[: -len(quote)]
        if product_type is ProductType.SPOT:
            return f"{base}/{quote}"
        return f"{base}/{quote}:{quote}"

    def _bitget_margin_mode(self, margin_mode: Optional[MarginMode]) -> str:
        return "crossed" if margin_mode is MarginMode.CROSS else "isolated"

    # ----------------------------------------------------------- market data

    def load_markets(self, product_type: ProductType) -> Dict[str, MarketInfo]:
        markets: Dict[str, MarketInfo] = {}
        if product_type is ProductType.SPOT:
            rows = self._request("GET", "/api/v2/spot/public/symbols", signed=False) or []
            for row in rows:
                base, quote = row.get("baseCoin"), row.get("quoteCoin")
                if not base or not quote:
                    continue
                max_amount = _to_decimal(row.get("maxTradeAmount"))
                info = MarketInfo(
                    symbol=f"{base}/{quote}",
                    id=row.get("symbol") or f"{base}{quote}",
                    base=base,
                    quote=quote,
                    product_type=ProductType.SPOT,
                    price_tick=Decimal(1).scaleb(-int(row.get("pricePrecision") or 0)),
                    amount_step=Decimal(1).scaleb(-int(row.get("quantityPrecision") or 0)),
                    min_amount=_to_decimal(row.get("minTradeAmount")),
                    max_amount=max_amount if max_amount else None,
                    active=row.get("status", "online") == "online",
                )
                markets[info.symbol] = info
            return markets

        rows = self._request(
            "GET", "/api/v2/mix/market/contracts", params={"productType": self.product_type}, signed=False
        ) or []
        for row in rows:
            base, quote = row.get("baseCoin"), row.get("quoteCoin")
            if not base or not quote:
                continue
            price_place = int(row.get("pricePlace") or 0)
            end_step = _to_decimal(row.get("priceEndStep")) or Decimal(1)
            amount_step = _to_decimal(row.get("sizeMultiplier"))
            if not amount_step:
                amount_step = Decimal(1).scaleb(-int(row.get("volumePlace") or 0))
            info = MarketInfo(
                symbol=f"{base}/{quote}:{quote}",
                id=row.get("symbol") or f"{base}{quote}",
                base=base,
                quote=quote,
                settle=quote,
                product_type=ProductType.SWAP,
                price_tick=end_step.scaleb(-price_place),
                amount_step=amount_step,
                min_amount=_to_decimal(row.get("minTradeNum")),
                max_amount=_to_decimal(row.get("maxOrderQty")),
                active=row.get("symbolStatus", "normal") == "normal",
            )
            markets[info.symbol] = info
        return markets

    def fetch_ticker(self, symbol: str) -> Ticker:
        market_id = self._market_id(symbol)
        if self._is_spot(symbol):
            data = self._request("GET", "/api/v2/spot/market/tickers", params={"symbol": market_id}, signed=False)
        else:
            data = self._request(
                "GET",
                "/api/v2/mix/market/ticker",
                params={"symbol": market_id, "productType": self.product_type},
                signed=False,
            )
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise ValidationError(f"No ticker returned for {symbol}", endpoint="ticker")
        return Ticker(
            symbol=symbol,
            last=_to_decimal(data.get("lastPr")),
            bid=_to_decimal(data.get("bidPr")),
            ask=_to_decimal(data.get("askPr")),
            high_24h=_to_decimal(data.get("high24h")),
            low_24h=_to_decimal(data.get("low24h")),
            volume_24h=_to_decimal(data.get("baseVolume")),
            timestamp=int(data.get("ts") or 0),
        )

    def fetch_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        market_id = self._market_id(symbol)
        if self._is_spot(symbol):
            data = self._request(
                "GET",
                "/api/v2/spot/market/orderbook",
                params={"symbol": market_id, "type": "step0", "limit": str(depth)},
                signed=False,
            )
        else:
            data = self._request(
                "GET",
                "/api/v2/mix/market/depth",
                params={"symbol": market_id, "productType": self.product_type, "limit": str(depth)},
                signed=False,
            )
        data = data or {}

        def levels(rows):
            return [(Decimal(str(price)), Decimal(str(size))) for price, size in (rows or [])]

        return OrderBook(
            symbol=symbol,
            bids=levels(data.get("bids")),
            asks=levels(data.get("asks")),
            timestamp=int(data.get("ts") or data.get("timestamp") or 0),
        )

    def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        market_id = self._market_id(symbol)
        if self._is_spot(symbol):
            rows = self._request(
                "GET",
                "/api/v2/spot/market/candles",
                params={"symbol": market_id, "granularity": _spot_interval(interval), "limit": str(limit)},
                signed=False,
            )
        else:
            rows = self._request(
                "GET",
                "/api/v2/mix/market/candles",
                params={
                    "symbol": market_id,
                    "productType": self.product_type,
                    "granularity": _futures_interval(interval),
                    "limit": str(limit),
                },
                signed=False,
            )
        return [
            Candle(
                timestamp=int(row[0]),
                open=Decimal(str(row[1])),
                high=Decimal(str(row[2])),
                low=Decimal(str(row[3])),
                close=Decimal(str(row[4])),
                volume=Decimal(str(row[5])),
            )
            for row in (rows or [])
        ]

    # --------------------------------------------------------------- account

    def fetch_balances(self, asset: Optional[str] = None) -> List[Balance]:
        rows = self._request("GET", "/api/v2/spot/account/assets", params={"coin": asset}) or []
        balances = [
            Balance(
                asset=row.get("coin", ""),
                free=_to_decimal(row.get("available")) or Decimal("0"),
                locked=_to_decimal(row.get("frozen")) or Decimal("0"),
            )
            for row in rows
        ]
        if asset:
            balances = [b for b in balances if b.asset.upper() == asset.upper()]
        return balances

    def fetch_positions(self, symbol: Optional[str] = None) -> List[PositionSnapshot]:
        rows = self._request(
            "GET",
            "/api/v2/mix/position/all-position",
            params={"productType": self.product_type, "marginCoin": self.margin_coin},
        ) or []
        positions = []
        for row in rows:
            canonical = self._canonical(row.get("symbol", ""), ProductType.SWAP)
            if symbol and canonical != symbol:
                continue
            size = _to_decimal(row.get("total")) or _to_decimal(row.get("size")) or Decimal("0")
            if size == 0:
                continue
            hold_side = (row.get("holdSide") or "").lower()
            side = Side.SHORT if hold_side in ("short", "sell") else Side.LONG
            leverage = _to_decimal(row.get("leverage"))
            margin_mode = row.get("marginMode")
            positions.append(
                PositionSnapshot(
                    symbol=canonical,
                    side=side,
                    size=abs(size),
                    entry_price=_to_decimal(row.get("openPriceAvg")),
                    mark_price=_to_decimal(row.get("markPrice")),
                    unrealized_pnl=_to_decimal(row.get("unrealizedPL")),
                    leverage=int(leverage) if leverage else None,
                    margin_mode=(MarginMode.CROSS if margin_mode == "crossed" else MarginMode.ISOLATED) if margin_mode else None,
                )
            )
        return positions

    def fetch_open_orders(self, symbol: Optional[str] = None) -> List[OpenOrderSnapshot]:
        if symbol and self._is_spot(symbol):
            rows = self._request(
                "GET", "/api/v2/spot/trade/unfilled-orders", params={"symbol": self._market_id(symbol)}
            ) or []
            return [
                OpenOrderSnapshot(
                    id=str(row.get("orderId")),
                    symbol=symbol,
                    side=row.get("side", ""),
                    order_type=row.get("orderType", ""),
                    amount=_to_decimal(row.get("size")) or Decimal("0"),
                    price=_to_decimal(row.get("priceAvg") or row.get("price")),
                    client_oid=row.get("clientOid"),
                    status=row.get("status") or "open",
                    info=row,
                )
                for row in rows
            ]

        params = {"productType": self.product_type}
        if symbol:
            params["symbol"] = self._market_id(symbol)
        data = self._request("GET", "/api/v2/mix/order/orders-pending", params=params) or {}
        orders = []
        for row in data.get("entrustedList") or []:
            orders.append(
                OpenOrderSnapshot(
                    id=str(row.get("orderId")),
                    symbol=self._canonical(row.get("symbol", ""), ProductType.SWAP),
                    side=row.get("side", ""),
                    order_type=row.get("orderType", ""),
                    amount=_to_decimal(row.get("size")) or Decimal("0"),
                    price=_to_decimal(row.get("price")),
                    reduce_only=row.get("reduceOnly") == "YES" or row.get("tradeSide") == "close",
                    client_oid=row.get("clientOid"),
                    status=row.get("status") or "live",
                    info=row,
                )
            )
        return orders

    def fetch_plan_orders(self, symbol: Optional[str] = None, plan_type: str = "profit_loss") -> List[PlanOrderSnapshot]:
        params = {"productType": self.product_type, "planType": plan_type}
        if symbol:
            params["symbol"] = self._market_id(symbol)
        data = self._request("GET", "/api/v2/mix/order/orders-plan-pending", params=params) or {}
        return [
            PlanOrderSnapshot(
                id=str(row.get("orderId")),
                symbol=self._canonical(row.get("symbol", ""), ProductType.SWAP),
                side=row.get("side", ""),
                order_type=row.get("orderType") or "plan",
                amount=_to_decimal(row.get("size")) or Decimal("0"),
                price=_to_decimal(row.get("executePrice") or row.get("price")),
                reduce_only=True,
                client_oid=row.get("clientOid"),
                status=row.get("planStatus") or "live",
                plan_type=row.get("planType"),
                trigger_price=_to_decimal(row.get("triggerPrice")),
                info=row,
            )
            for row in data.get("entrustedList") or []
        ]

    # ---------------------------------------------------------------- orders

    def place_order(self, request: OrderRequest) -> OrderAck:
        if self._is_spot(request.symbol):
            return self._place_spot_order(request)

        side = request.side
        body: Dict[str, Any] = {
            "symbol": self._market_id(request.symbol),
            "productType": self.product_type,
            "marginMode": self._bitget_margin_mode(request.margin_mode),
            "marginCoin": self.margin_coin,
            "size": _fmt(request.amount),
            "orderType": request.order_type.value,
        }
        if request.hedged:
            if request.reduce_only:
                # hedge mode names the position direction, not the execution direction
                side = "buy" if request.side == "sell" else "sell"
                body["tradeSide"] = "close"
            else:
                body["tradeSide"] = "open"
        elif request.reduce_only:
            body["reduceOnly"] = "YES"
        body["side"] = side

        if request.order_type is EntryType.LIMIT:
            if request.price is None:
                raise ValidationError("Limit order requires a price", endpoint="/api/v2/mix/order/place-order")
            body["price"] = _fmt(request.price)
            body["force"] = request.time_in_force
        if request.client_oid:
            body["clientOid"] = request.client_oid
        if request.stop_loss_price is not None:
            body["presetStopLossPrice"] = _fmt(request.stop_loss_price)
        if request.take_profit_price is not None:
            body["presetStopSurplusPrice"] = _fmt(request.take_profit_price)

        data = self._request("POST", "/api/v2/mix/order/place-order", body=body) or {}
        logger.info(
            f"Futures order placed: symbol={request.symbol} side={side} type={request.order_type.value} "
            f"size={body['size']} price={body.get('price')} reduce_only={request.reduce_only} hedged={request.hedged}"
        )
        return OrderAck(
            order_id=str(data.get("orderId", "")),
            symbol=request.symbol,
            client_oid=data.get("clientOid") or request.client_oid,
            side=side,
            order_type=request.order_type.value,
            amount=request.amount,
            price=request.price,
        )

    def _place_spot_order(self, request: OrderRequest) -> OrderAck:
        body: Dict[str, Any] = {
            "symbol": self._market_id(request.symbol),
            "side": request.side,
            "orderType": request.order_type.value,
        }
        if request.order_type is EntryType.LIMIT:
            body["price"] = _fmt(request.price)
            body["force"] = request.time_in_force
        if request.client_oid:
            body["clientOid"] = request.client_oid

        if request.margin_mode is not None:
            path = f"/api/v2/margin/{self._bitget_margin_mode(request.margin_mode)}/place-order"
            body["loanType"] = "normal"
            if request.cost is not None and request.order_type is EntryType.MARKET and request.side == "buy":
                body["quoteSize"] = _fmt(request.cost)
            else:
                body["baseSize"] = _fmt(request.amount)
        else:
            path = "/api/v2/spot/trade/place-order"
            # market buys are sized in quote currency
            size = request.cost if (request.cost is not None and request.order_type is EntryType.MARKET and request.side == "buy") else request.amount
            body["size"] = _fmt(size)
            body.setdefault("force", "gtc")

        data = self._request("POST", path, body=body) or {}
        logger.info(f"Spot order placed: symbol={request.symbol} side={request.side} type={request.order_type.value} path={path}")
        return OrderAck(
            order_id=str(data.get("orderId", "")),
            symbol=request.symbol,
            client_oid=data.get("clientOid") or request.client_oid,
            side=request.side,
            order_type=request.order_type.value,
            amount=request.amount,
            price=request.price,
        )

    def place_trigger_order(self, request: TriggerOrderRequest) -> OrderAck:
        closes_long = request.side == "sell"
        if request.hedged:
            hold_side = "long" if closes_long else "short"
        else:
            hold_side = "buy" if closes_long else "sell"
        body = {
            "symbol": self._market_id(request.symbol),
            "productType": self.product_type,
            "marginCoin": self.margin_coin,
            "planType": request.plan_type,
            "triggerPrice": _fmt(request.trigger_price),
            "triggerType": "mark_price",
            "executePrice": _fmt(request.execute_price) if request.execute_price is not None else "0",
            "holdSide": hold_side,
            "size": _fmt(request.amount),
        }
        if request.client_oid:
            body["clientOid"] = request.client_oid
        data = self._request("POST", "/api/v2/mix/order/place-tpsl-order", body=body) or {}
        logger.info(
            f"Trigger order placed: symbol={request.symbol} plan={request.plan_type} "
            f"trigger={body['triggerPrice']} size={body['size']} hold_side={hold_side}"
        )
        return OrderAck(
            order_id=str(data.get("orderId", "")),
            symbol=request.symbol,
            client_oid=data.get("clientOid") or request.client_oid,
            side=request.side,
            order_type=request.plan_type,
            amount=request.amount,
            price=request.trigger_price,
        )

    def cancel_order(self, order_id: str, symbol: str) -> None:
        if self._is_spot(symbol):
            self._request(
                "POST", "/api/v2/spot/trade/cancel-order", body={"symbol": self._market_id(symbol), "orderId": order_id}
            )
            return
        self._request(
            "POST",
            "/api/v2/mix/order/cancel-order",
            body={
                "symbol": self._market_id(symbol),
                "productType": self.product_type,
                "marginCoin": self.margin_coin,
                "orderId": order_id,
            },
        )

    def cancel_plan_order(
        self,
        symbol: str,
        order_id: Optional[str] = None,
        client_oid: Optional[str] = None,
        plan_type: str = "profit_loss",
    ) -> None:
        if not order_id and not client_oid:
            raise ValidationError("cancel_plan_order needs an order id or client oid", endpoint="/api/v2/mix/order/cancel-plan-order")
        body = {
            "symbol": self._market_id(symbol),
            "productType": self.product_type,
            "marginCoin": self.margin_coin,
            "planType": plan_type,
        }
        if order_id:
            body["orderId"] = order_id
        if client_oid:
            body["clientOid"] = client_oid
        self._request("POST", "/api/v2/mix/order/cancel-plan-order", body=body)

    # ----------------------------------------------------------- account modes

    def set_leverage(self, symbol: str, leverage: int, margin_mode: Optional[MarginMode] = None) -> None:
        self._request(
            "POST",
            "/api/v2/mix/account/set-leverage",
            body={
                "symbol": self._market_id(symbol),
                "productType": self.product_type,
                "marginCoin": self.margin_coin,
                "leverage": str(leverage),
            },
        )

    def set_margin_mode(self, symbol: str, margin_mode: MarginMode) -> None:
        self._request(
            "POST",
            "/api/v2/mix/account/set-margin-mode",
            body={
                "symbol": self._market_id(symbol),
                "productType": self.product_type,
                "marginCoin": self.margin_coin,
                "marginMode": self._bitget_margin_mode(margin_mode),
            },
        )

    def set_position_mode(self, mode: PositionMode) -> None:
        pos_mode = "hedge_mode" if mode is PositionMode.HEDGED else "one_way_mode"
        self._request(
            "POST",
            "/api/v2/mix/account/set-position-mode",
            body={"productType": self.product_type, "posMode": pos_mode},
        )
        logger.info(f"Position mode set: mode={pos_mode}")

    def close_all_positions(self, symbol: Optional[str] = None) -> None:
        body = {"productType": self.product_type}
        if symbol:
            body["symbol"] = self._market_id(symbol)
        self._request("POST", "/api/v2/mix/order/close-positions", body=body)

    # ---------------------------------------------------------- spot margin

    def _margin_loan(self, action: str, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str]) -> Dict[str, Any]:
        amount_field = "borrowAmount" if action == "borrow" else "repayAmount"
        body = {"coin": asset.upper(), amount_field: _fmt(amount)}
        if margin_mode is MarginMode.ISOLATED:
            if not symbol:
                raise ValidationError(f"Isolated {action} requires a symbol")
            body["symbol"] = self._market_id(symbol)
            path = f"/api/v2/margin/isolated/account/{action}"
        else:
            path = f"/api/v2/margin/crossed/account/{action}"
        data = self._request("POST", path, body=body)
        logger.info(f"Margin {action}: asset={asset.upper()} amount={_fmt(amount)} mode={margin_mode.value} symbol={symbol}")
        return data if isinstance(data, dict) else {"result": data}

    def borrow_margin(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> Dict[str, Any]:
        return self._margin_loan("borrow", asset, amount, margin_mode, symbol)

    def repay_margin(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> Dict[str, Any]:
        return self._margin_loan("repay", asset, amount, margin_mode, symbol)
