"""Deterministic in-memory exchange.

Implements the full ExchangeAdapter interface against local state so the
orchestrator and maintenance operations can be exercised without a network:

- market orders fill immediately at the ticker reference price and open,
  increase or reduce positions (one-way accounts net opposite fills);
- limit orders rest as open orders unless ``fill_limit_orders`` is set;
- preset stop-loss / take-profit prices become position plan orders;
- an account in hedged mode rejects unilateral orders with ModeConflictError,
  like Bitget's 40774 response;
- ``fail_next`` queues an exception for the next call of any method.

Every state-mutating call is appended to ``calls``.
"""
from collections import defaultdict
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ModeConflictError, ValidationError
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
from .models import EntryType, MarginMode, PositionMode, ProductType, Side


def default_markets() -> List[MarketInfo]:
    return [
        MarketInfo(
            symbol="BTC/USDT:USDT", id="BTCUSDT", base="BTC", quote="USDT", settle="USDT",
            product_type=ProductType.SWAP, price_tick=Decimal("0.1"), amount_step=Decimal("0.001"),
            min_amount=Decimal("0.001"), max_amount=Decimal("100"),
        ),
        MarketInfo(
            symbol="ETH/USDT:USDT", id="ETHUSDT", base="ETH", quote="USDT", settle="USDT",
            product_type=ProductType.SWAP, price_tick=Decimal("0.01"), amount_step=Decimal("0.01"),
            min_amount=Decimal("0.01"), max_amount=Decimal("1000"),
        ),
        MarketInfo(
            symbol="BTC/USDT", id="BTCUSDT", base="BTC", quote="USDT",
            product_type=ProductType.SPOT, price_tick=Decimal("0.01"), amount_step=Decimal("0.000001"),
            min_amount=Decimal("0.00001"),
        ),
        MarketInfo(
            symbol="ETH/USDT", id="ETHUSDT", base="ETH", quote="USDT",
            product_type=ProductType.SPOT, price_tick=Decimal("0.01"), amount_step=Decimal("0.0001"),
            min_amount=Decimal("0.0001"),
        ),
    ]


def default_tickers() -> Dict[str, Ticker]:
    btc = dict(last=Decimal("60000"), bid=Decimal("59999.9"), ask=Decimal("60000.1"))
    eth = dict(last=Decimal("3000"), bid=Decimal("2999.99"), ask=Decimal("3000.01"))
    return {
        "BTC/USDT:USDT": Ticker(symbol="BTC/USDT:USDT", **btc),
        "BTC/USDT": Ticker(symbol="BTC/USDT", **btc),
        "ETH/USDT:USDT": Ticker(symbol="ETH/USDT:USDT", **eth),
        "ETH/USDT": Ticker(symbol="ETH/USDT", **eth),
    }


class InMemoryExchange(ExchangeAdapter):
    """Simulated exchange that records calls and lets tests drive failures."""

    def __init__(
        self,
        markets: Optional[Iterable[MarketInfo]] = None,
        tickers: Optional[Dict[str, Ticker]] = None,
        *,
        position_mode: PositionMode = PositionMode.ONE_WAY,
        fill_limit_orders: bool = False,
        sandbox: bool = False,
    ):
        self.markets = {m.symbol: m for m in (markets if markets is not None else default_markets())}
        self.tickers = dict(tickers if tickers is not None else default_tickers())
        self.position_mode = position_mode
        self.fill_limit_orders = fill_limit_orders
        self.sandbox = sandbox

        self.positions: Dict[Tuple[str, Side], Decimal] = {}
        self.entry_prices: Dict[Tuple[str, Side], Decimal] = {}
        self.orders: Dict[str, OpenOrderSnapshot] = {}
        self.plan_orders: Dict[str, PlanOrderSnapshot] = {}
        self.balances: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        self.loans: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        self.leverage: Dict[str, int] = {}
        self.margin_modes: Dict[str, MarginMode] = {}

        self.calls: List[Tuple[str, Any]] = []
        self.failures: Dict[str, List[Optional[Exception]]] = defaultdict(list)
        self.next_id = 1

    # ------------------------------------------------------------- helpers

    def _gen_id(self) -> str:
        oid = f"m{self.next_id}"
        self.next_id += 1
        return oid

    def fail_next(self, method: str, error: Exception, times: int = 1, after: int = 0) -> None:
        """Make ``times`` calls of ``method`` raise ``error`` once ``after`` calls went through."""
        self.failures[method].extend([None] * after + [error] * times)

    def _maybe_fail(self, method: str) -> None:
        if self.failures.get(method):
            error = self.failures[method].pop(0)
            if error is not None:
                raise error

    def _record(self, method: str, payload: Any) -> None:
        self.calls.append((method, payload))

    @property
    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def set_position(self, symbol: str, side: Side, size: Decimal, entry_price: Optional[Decimal] = None) -> None:
        """Seed an open position (test setup, not recorded as a call)."""
        key = (symbol, side)
        if size > 0:
            self.positions[key] = Decimal(size)
            self.entry_prices[key] = entry_price or self._reference_price(symbol)
        else:
            self.positions.pop(key, None)
            self.entry_prices.pop(key, None)

    def _reference_price(self, symbol: str) -> Decimal:
        ticker = self.tickers.get(symbol)
        if ticker is None or ticker.reference_price is None:
            raise ValidationError(f"No ticker for {symbol}", code="40034")
        return ticker.reference_price

    def _check_mode(self, hedged: bool) -> None:
        if self.position_mode is PositionMode.HEDGED and not hedged:
            raise ModeConflictError(
                "The order type for unilateral position must also be the unilateral position type.",
                code="40774",
            )

    def _market(self, symbol: str) -> MarketInfo:
        market = self.markets.get(symbol)
        if market is None:
            raise ValidationError(f"Unknown symbol {symbol}", code="40034")
        return market

    def _fill(self, symbol: str, side: str, amount: Decimal, price: Decimal, reduce_only: bool) -> None:
        buying = side == "buy"
        if reduce_only:
            target = (symbol, Side.SHORT if buying else Side.LONG)
            held = self.positions.get(target, Decimal("0"))
            if held <= 0:
                raise ValidationError("No position to close", code="22002")
            self.set_position(symbol, target[1], held - min(amount, held), self.entry_prices.get(target))
            return

        opening = Side.LONG if buying else Side.SHORT
        remaining = amount
        if self.position_mode is PositionMode.ONE_WAY:
            opposing = (symbol, opening.opposite)
            held = self.positions.get(opposing, Decimal("0"))
            netted = min(held, remaining)
            if netted:
                self.set_position(symbol, opening.opposite, held - netted, self.entry_prices.get(opposing))
                remaining -= netted
        if remaining > 0:
            key = (symbol, opening)
            held = self.positions.get(key, Decimal("0"))
            avg = ((self.entry_prices.get(key, price) * held) + price * remaining) / (held + remaining)
            self.set_position(symbol, opening, held + remaining, avg)

    # ---------------------------------------------------------- market data

    def load_markets(self, product_type: ProductType) -> Dict[str, MarketInfo]:
        self._maybe_fail("load_markets")
        return {s: m for s, m in self.markets.items() if m.product_type is product_type}

    def fetch_ticker(self, symbol: str) -> Ticker:
        self._maybe_fail("fetch_ticker")
        if symbol not in self.tickers:
            raise ValidationError(f"No ticker for {symbol}", code="40034")
        return self.tickers[symbol]

    def fetch_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        self._maybe_fail("fetch_order_book")
        ticker = self.fetch_ticker(symbol)
        bids = [(ticker.bid, Decimal("1"))] if ticker.bid else []
        asks = [(ticker.ask, Decimal("1"))] if ticker.ask else []
        return OrderBook(symbol=symbol, bids=bids[:depth], asks=asks[:depth], timestamp=ticker.timestamp)

    def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        self._maybe_fail("fetch_candles")
        last = self._reference_price(symbol)
        return [Candle(timestamp=0, open=last, high=last, low=last, close=last, volume=Decimal("0"))][:limit]

    def fetch_balances(self, asset: Optional[str] = None) -> List[Balance]:
        self._maybe_fail("fetch_balances")
        return [
            Balance(asset=coin, free=amount)
            for coin, amount in sorted(self.balances.items())
            if asset is None or coin == asset.upper()
        ]

    # -------------------------------------------------------------- account

    def fetch_positions(self, symbol: Optional[str] = None) -> List[PositionSnapshot]:
        self._maybe_fail("fetch_positions")
        return [
            PositionSnapshot(
                symbol=sym,
                side=side,
                size=size,
                entry_price=self.entry_prices.get((sym, side)),
                mark_price=self.tickers[sym].last if sym in self.tickers else None,
                leverage=self.leverage.get(sym),
                margin_mode=self.margin_modes.get(sym),
            )
            for (sym, side), size in sorted(self.positions.items(), key=lambda kv: (kv[0][0], kv[0][1].value))
            if size > 0 and (symbol is None or sym == symbol)
        ]

    def fetch_open_orders(self, symbol: Optional[str] = None) -> List[OpenOrderSnapshot]:
        self._maybe_fail("fetch_open_orders")
        return [o for o in self.orders.values() if symbol is None or o.symbol == symbol]

    def fetch_plan_orders(self, symbol: Optional[str] = None, plan_type: str = "profit_loss") -> List[PlanOrderSnapshot]:
        self._maybe_fail("fetch_plan_orders")
        return [o for o in self.plan_orders.values() if symbol is None or o.symbol == symbol]

    # --------------------------------------------------------------- orders

    def place_order(self, request: OrderRequest) -> OrderAck:
        self._record("place_order", replace(request))
        self._maybe_fail("place_order")
        market = self._market(request.symbol)
        if market.contract:
            self._check_mode(request.hedged)
        if request.amount <= 0 and request.cost is None:
            raise ValidationError("Order size must be positive", code="45110")

        oid = self._gen_id()
        fills_now = request.order_type is EntryType.MARKET or (self.fill_limit_orders and not request.reduce_only)
        if fills_now:
            price = request.price if request.order_type is EntryType.LIMIT else self._reference_price(request.symbol)
            if market.contract:
                self._fill(request.symbol, request.side, request.amount, price, request.reduce_only)
            else:
                base_amount = request.amount if request.cost is None else request.cost / price
                sign = 1 if request.side == "buy" else -1
                self.balances[market.base] += sign * base_amount
                self.balances[market.quote] -= sign * base_amount * price
        else:
            self.orders[oid] = OpenOrderSnapshot(
                id=oid,
                symbol=request.symbol,
                side=request.side,
                order_type=request.order_type.value,
                amount=request.amount,
                price=request.price,
                reduce_only=request.reduce_only,
                client_oid=request.client_oid,
            )

        holder = Side.LONG if request.side == "buy" else Side.SHORT
        for plan_type, trigger in (("pos_loss", request.stop_loss_price), ("pos_profit", request.take_profit_price)):
            if trigger is not None:
                plan_id = self._gen_id()
                self.plan_orders[plan_id] = PlanOrderSnapshot(
                    id=plan_id,
                    symbol=request.symbol,
                    side=holder.close_side,
                    order_type="market",
                    amount=request.amount,
                    reduce_only=True,
                    plan_type=plan_type,
                    trigger_price=trigger,
                )

        return OrderAck(
            order_id=oid,
            symbol=request.symbol,
            client_oid=request.client_oid,
            side=request.side,
            order_type=request.order_type.value,
            amount=request.amount,
            price=request.price,
        )

    def place_trigger_order(self, request: TriggerOrderRequest) -> OrderAck:
        self._record("place_trigger_order", replace(request))
        self._maybe_fail("place_trigger_order")
        self._market(request.symbol)
        self._check_mode(request.hedged)
        oid = self._gen_id()
        self.plan_orders[oid] = PlanOrderSnapshot(
            id=oid,
            symbol=request.symbol,
            side=request.side,
            order_type="market" if request.execute_price is None else "limit",
            amount=request.amount,
            price=request.execute_price,
            reduce_only=True,
            client_oid=request.client_oid,
            plan_type=request.plan_type,
            trigger_price=request.trigger_price,
        )
        return OrderAck(
            order_id=oid,
            symbol=request.symbol,
            client_oid=request.client_oid,
            side=request.side,
            order_type=request.plan_type,
            amount=request.amount,
            price=request.trigger_price,
        )

    def cancel_order(self, order_id: str, symbol: str) -> None:
        self._record("cancel_order", order_id)
        self._maybe_fail("cancel_order")
        if self.orders.pop(order_id, None) is None:
            raise ValidationError(f"Order {order_id} does not exist", code="40768")

    def cancel_plan_order(
        self,
        symbol: str,
        order_id: Optional[str] = None,
        client_oid: Optional[str] = None,
        plan_type: str = "profit_loss",
    ) -> None:
        self._record("cancel_plan_order", order_id or client_oid)
        self._maybe_fail("cancel_plan_order")
        for oid, order in list(self.plan_orders.items()):
            if (order_id and oid == order_id) or (client_oid and order.client_oid == client_oid):
                del self.plan_orders[oid]
                return
        raise ValidationError(f"Plan order {order_id or client_oid} does not exist", code="40768")

    # ---------------------------------------------------------------- modes

    def set_leverage(self, symbol: str, leverage: int, margin_mode: Optional[MarginMode] = None) -> None:
        self._record("set_leverage", (symbol, leverage))
        self._maybe_fail("set_leverage")
        self.leverage[symbol] = leverage

    def set_margin_mode(self, symbol: str, margin_mode: MarginMode) -> None:
        self._record("set_margin_mode", (symbol, margin_mode))
        self._maybe_fail("set_margin_mode")
        self.margin_modes[symbol] = margin_mode

    def set_position_mode(self, mode: PositionMode) -> None:
        self._record("set_position_mode", mode)
        self._maybe_fail("set_position_mode")
        self.position_mode = mode

    def close_all_positions(self, symbol: Optional[str] = None) -> None:
        self._record("close_all_positions", symbol)
        self._maybe_fail("close_all_positions")
        for key in [k for k in self.positions if symbol is None or k[0] == symbol]:
            self.set_position(key[0], key[1], Decimal("0"))

    # ----------------------------------------------------------- spot margin

    def borrow_margin(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> Dict[str, Any]:
        self._record("borrow_margin", (asset, amount, margin_mode, symbol))
        self._maybe_fail("borrow_margin")
        if margin_mode is MarginMode.ISOLATED and not symbol:
            raise ValidationError("Isolated borrow requires a symbol")
        coin = asset.upper()
        self.loans[coin] += amount
        self.balances[coin] += amount
        return {"loanId": self._gen_id(), "coin": coin, "borrowAmount": str(amount)}

    def repay_margin(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> Dict[str, Any]:
        self._record("repay_margin", (asset, amount, margin_mode, symbol))
        self._maybe_fail("repay_margin")
        if margin_mode is MarginMode.ISOLATED and not symbol:
            raise ValidationError("Isolated repay requires a symbol")
        coin = asset.upper()
        repaid = min(amount, self.loans[coin])
        self.loans[coin] -= repaid
        self.balances[coin] -= repaid
        return {"remainDebtAmount": str(self.loans[coin]), "coin": coin, "repayAmount": str(repaid)}
