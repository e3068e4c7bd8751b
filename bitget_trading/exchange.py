"""
Exchange capability interface.

Defines the abstract adapter the orchestrator and maintenance operations call,
together with the typed snapshots and requests that cross that boundary.
All price/qty values use Decimal for precision and consistency.

Symbols crossing this interface are canonical:
    "BTC/USDT:USDT"  USDT-margined perpetual contract
    "BTC/USDT"       spot pair
Adapters translate them to exchange ids (e.g. "BTCUSDT").
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .models import EntryType, MarginMode, PositionMode, ProductType, Side


@dataclass(frozen=True)
class MarketInfo:
    """Trading rules for one market, as declared by the exchange catalog."""

    symbol: str
    id: str
    base: str
    quote: str
    product_type: ProductType
    price_tick: Decimal
    amount_step: Decimal
    settle: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    active: bool = True

    @property
    def contract(self) -> bool:
        return self.product_type is ProductType.SWAP

    @property
    def spot(self) -> bool:
        return self.product_type is ProductType.SPOT


@dataclass(frozen=True)
class Ticker:
    symbol: str
    last: Optional[Decimal]
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    high_24h: Optional[Decimal] = None
    low_24h: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    timestamp: int = 0

    @property
    def reference_price(self) -> Optional[Decimal]:
        """Price used as the market entry reference: ask, else last, else bid."""
        for candidate in (self.ask, self.last, self.bid):
            if candidate:
                return candidate
        return None


@dataclass(frozen=True)
class OrderBook:
    symbol: str
    bids: List[Tuple[Decimal, Decimal]]
    asks: List[Tuple[Decimal, Decimal]]
    timestamp: int = 0


@dataclass(frozen=True)
class Candle:
    timestamp: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


@dataclass(frozen=True)
class Balance:
    asset: str
    free: Decimal
    locked: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.free + self.locked


@dataclass(frozen=True)
class PositionSnapshot:
    """Open exposure on one side of a symbol. ``size`` is always positive."""

    symbol: str
    side: Side
    size: Decimal
    entry_price: Optional[Decimal] = None
    mark_price: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None
    leverage: Optional[int] = None
    margin_mode: Optional[MarginMode] = None


@dataclass(frozen=True)
class OpenOrderSnapshot:
    id: str
    symbol: str
    side: str
    order_type: str
    amount: Decimal
    price: Optional[Decimal] = None
    reduce_only: bool = False
    client_oid: Optional[str] = None
    status: str = "open"
    plan_type: Optional[str] = None
    info: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PlanOrderSnapshot(OpenOrderSnapshot):
    """Pending trigger (stop-loss / take-profit plan) order."""

    trigger_price: Optional[Decimal] = None


@dataclass
class OrderRequest:
    """Regular order submission.

    ``side`` is the exchange side ("buy"/"sell"). ``hedged`` tells the adapter
    the account is in hedged position mode (one-way otherwise).
    ``stop_loss_price``/``take_profit_price`` are preset triggers attached to
    the entry in a single shot; each closes the whole position when hit.
    ``cost`` is the quote amount for spot market buys.
    """

    symbol: str
    side: str
    order_type: EntryType
    amount: Decimal
    price: Optional[Decimal] = None
    margin_mode: Optional[MarginMode] = None
    reduce_only: bool = False
    hedged: bool = False
    client_oid: Optional[str] = None
    time_in_force: str = "gtc"
    stop_loss_price: Optional[Decimal] = None
    take_profit_price: Optional[Decimal] = None
    cost: Optional[Decimal] = None


@dataclass
class TriggerOrderRequest:
    """Reduce-only trigger order protecting an open position.

    ``side`` is the executing side (sell closes a long).
    """

    symbol: str
    side: str
    amount: Decimal
    trigger_price: Decimal
    plan_type: str = "loss_plan"
    hedged: bool = False
    margin_mode: Optional[MarginMode] = None
    execute_price: Optional[Decimal] = None
    client_oid: Optional[str] = None


@dataclass(frozen=True)
class OrderAck:
    order_id: str
    symbol: str
    client_oid: Optional[str] = None
    side: Optional[str] = None
    order_type: Optional[str] = None
    amount: Optional[Decimal] = None
    price: Optional[Decimal] = None


class ExchangeAdapter(ABC):
    """Abstract exchange adapter.

    Every method raises a subclass of ``errors.ExchangeError`` on failure:
    AuthenticationError, RateLimitError, ValidationError (ModeConflictError for
    position-mode conflicts) or NetworkError.
    """

    sandbox: bool = False

    @abstractmethod
    def load_markets(self, product_type: ProductType) -> Dict[str, MarketInfo]:
        """Return the market catalog for a product type keyed by canonical symbol."""

    @abstractmethod
    def fetch_ticker(self, symbol: str) -> Ticker:
        pass

    @abstractmethod
    def fetch_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        pass

    @abstractmethod
    def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        pass

    @abstractmethod
    def fetch_balances(self, asset: Optional[str] = None) -> List[Balance]:
        pass

    @abstractmethod
    def fetch_positions(self, symbol: Optional[str] = None) -> List[PositionSnapshot]:
        """Open positions, optionally filtered by canonical contract symbol."""

    @abstractmethod
    def fetch_open_orders(self, symbol: Optional[str] = None) -> List[OpenOrderSnapshot]:
        pass

    @abstractmethod
    def fetch_plan_orders(self, symbol: Optional[str] = None, plan_type: str = "profit_loss") -> List[PlanOrderSnapshot]:
        pass

    @abstractmethod
    def place_order(self, request: OrderRequest) -> OrderAck:
        """Submit a market or limit order (spot or contract)."""

    @abstractmethod
    def place_trigger_order(self, request: TriggerOrderRequest) -> OrderAck:
        """Submit a stop-loss / take-profit trigger (plan) order."""

    @abstractmethod
    def cancel_order(self, order_id: str, symbol: str) -> None:
        pass

    @abstractmethod
    def cancel_plan_order(
        self,
        symbol: str,
        order_id: Optional[str] = None,
        client_oid: Optional[str] = None,
        plan_type: str = "profit_loss",
    ) -> None:
        pass

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: int, margin_mode: Optional[MarginMode] = None) -> None:
        pass

    @abstractmethod
    def set_margin_mode(self, symbol: str, margin_mode: MarginMode) -> None:
        pass

    @abstractmethod
    def set_position_mode(self, mode: PositionMode) -> None:
        """Switch the account-wide position mode."""

    @abstractmethod
    def close_all_positions(self, symbol: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def borrow_margin(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    def repay_margin(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> Dict[str, Any]:
        pass
