"""
Maintenance operations: flatten positions, cancel take-profit orders, and
spot-margin borrow/repay.

Each operation returns a MaintenanceReport whose items record the outcome of
every individual order or loan call, so partial failures are explicit rather
than logged and forgotten:

    report = MaintenanceOperations(exchange).flatten("BTC/USDT:USDT")
    for item in report.failures:
        ...

Only failures that make the rest of the batch meaningless propagate: the
initial position/order query, and a flatten that still fails after switching
the account to hedged mode.

With ``dry_run=True`` only the reads are issued; every order or loan call that
would have been made is reported as a "planned" item instead.
"""
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .errors import ExchangeError, ModeConflictError
from .exchange import ExchangeAdapter, OpenOrderSnapshot, OrderRequest
from .logging_setup import logger
from .models import EntryType, MarginMode, PositionMode, Side

PROFIT_PLAN_TYPES = frozenset(["profit", "profit_plan", "pos_profit"])


def _now_ms() -> int:
    return int(time.time() * 1000)


def is_take_profit_like(order: OpenOrderSnapshot) -> bool:
    """True for reduce-only limits, "tp-" client ids, and profit plan orders."""
    if order.reduce_only and order.order_type == "limit":
        return True
    if order.client_oid and order.client_oid.startswith("tp-"):
        return True
    return (order.plan_type or "") in PROFIT_PLAN_TYPES


@dataclass
class MaintenanceItem:
    action: str
    symbol: Optional[str]
    status: str  # "done" | "failed" | "planned"
    side: Optional[str] = None
    amount: Optional[Decimal] = None
    order_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "symbol": self.symbol,
            "side": self.side,
            "amount": self.amount,
            "orderId": self.order_id,
            "status": self.status,
            "detail": self.detail,
        }


@dataclass
class MaintenanceReport:
    action: str
    symbol: Optional[str]
    position_mode: PositionMode
    items: List[MaintenanceItem] = field(default_factory=list)

    @property
    def failures(self) -> List[MaintenanceItem]:
        return [item for item in self.items if not item.ok]

    @property
    def succeeded(self) -> bool:
        return not self.failures


class MaintenanceOperations:
    """Position and order housekeeping against an ExchangeAdapter.

    Attributes:
        exchange: Adapter used for every call
        position_mode: Account position mode as currently known; flipped to
            HEDGED when a flatten has to switch modes
        dry_run: Report what would be done without mutating the account
    """

    def __init__(
        self,
        exchange: ExchangeAdapter,
        position_mode: PositionMode = PositionMode.ONE_WAY,
        dry_run: bool = False,
    ):
        self.exchange = exchange
        self.position_mode = position_mode
        self.dry_run = dry_run

    def flatten(
        self,
        symbol: str,
        sides: Optional[Iterable[Side]] = None,
        margin_mode: Optional[MarginMode] = None,
    ) -> MaintenanceReport:
        """Close every open position of ``symbol`` with reduce-only market orders.

        Args:
            symbol: Canonical contract symbol
            sides: Restrict to these position sides (default: both)
            margin_mode: Margin mode sent with the closing orders when the
                position does not report its own

        Raises:
            ExchangeError: If positions cannot be fetched, or a close still
                fails after switching the account to hedged mode
        """
        wanted = set(sides) if sides is not None else None
        positions = self.exchange.fetch_positions(symbol)
        report = MaintenanceReport(action="flatten", symbol=symbol, position_mode=self.position_mode)

        for position in positions:
            if position.size <= 0 or (wanted is not None and position.side not in wanted):
                continue
            request = OrderRequest(
                symbol=symbol,
                side=position.side.close_side,
                order_type=EntryType.MARKET,
                amount=position.size,
                margin_mode=position.margin_mode or margin_mode,
                reduce_only=True,
                hedged=self.position_mode is PositionMode.HEDGED,
                client_oid=f"flatten-{_now_ms()}-{position.side.value}",
            )
            if self.dry_run:
                report.items.append(
                    MaintenanceItem(
                        action="flatten", symbol=symbol, status="planned",
                        side=position.side.value, amount=position.size, detail="reduce-only market",
                    )
                )
                continue
            try:
                ack = self.exchange.place_order(request)
            except ModeConflictError as e:
                if request.hedged:
                    raise
                logger.warning(f"Flatten hit position-mode conflict, switching to hedged: symbol={symbol} error={e}")
                self.exchange.set_position_mode(PositionMode.HEDGED)
                self.position_mode = PositionMode.HEDGED
                report.position_mode = PositionMode.HEDGED
                request.hedged = True
                ack = self.exchange.place_order(request)
            except ExchangeError as e:
                logger.warning(f"Flatten failed: symbol={symbol} side={position.side.value} size={position.size} error={e}")
                report.items.append(
                    MaintenanceItem(
                        action="flatten", symbol=symbol, status="failed",
                        side=position.side.value, amount=position.size, detail=str(e),
                    )
                )
                continue

            logger.info(f"Position flattened: symbol={symbol} side={position.side.value} size={position.size} order_id={ack.order_id}")
            report.items.append(
                MaintenanceItem(
                    action="flatten", symbol=symbol, status="done",
                    side=position.side.value, amount=position.size, order_id=ack.order_id,
                )
            )

        if not report.items:
            logger.info(f"Nothing to flatten: symbol={symbol}")
        return report

    def cancel_take_profits(self, symbol: str) -> MaintenanceReport:
        """Cancel take-profit-like open orders and profit plan orders for ``symbol``."""
        open_orders = self.exchange.fetch_open_orders(symbol)
        plan_orders = self.exchange.fetch_plan_orders(symbol, plan_type="profit_loss")
        report = MaintenanceReport(action="cancel_tps", symbol=symbol, position_mode=self.position_mode)

        for order in open_orders:
            if is_take_profit_like(order):
                self._cancel(report, order, lambda o=order: self.exchange.cancel_order(o.id, symbol))
        for order in plan_orders:
            if is_take_profit_like(order):
                self._cancel(
                    report,
                    order,
                    lambda o=order: self.exchange.cancel_plan_order(symbol, order_id=o.id, plan_type="profit_loss"),
                )

        logger.info(f"Take-profit cancel finished: symbol={symbol} matched={len(report.items)} failed={len(report.failures)} dry_run={self.dry_run}")
        return report

    def _cancel(self, report: MaintenanceReport, order: OpenOrderSnapshot, cancel) -> None:
        if self.dry_run:
            report.items.append(
                MaintenanceItem(
                    action="cancel", symbol=order.symbol, status="planned",
                    side=order.side, amount=order.amount, order_id=order.id,
                    detail=order.plan_type or order.client_oid,
                )
            )
            return
        try:
            cancel()
        except ExchangeError as e:
            logger.warning(f"Cancel failed: symbol={order.symbol} order_id={order.id} error={e}")
            report.items.append(
                MaintenanceItem(
                    action="cancel", symbol=order.symbol, status="failed",
                    side=order.side, amount=order.amount, order_id=order.id, detail=str(e),
                )
            )
            return
        report.items.append(
            MaintenanceItem(
                action="cancel", symbol=order.symbol, status="done",
                side=order.side, amount=order.amount, order_id=order.id,
                detail=order.plan_type or order.client_oid,
            )
        )

    def borrow(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> MaintenanceReport:
        if self.dry_run:
            return self._loan_report("borrow", asset, amount, margin_mode, symbol, None)
        data = self.exchange.borrow_margin(asset, amount, margin_mode, symbol)
        return self._loan_report("borrow", asset, amount, margin_mode, symbol, data)

    def repay(self, asset: str, amount: Decimal, margin_mode: MarginMode, symbol: Optional[str] = None) -> MaintenanceReport:
        if self.dry_run:
            return self._loan_report("repay", asset, amount, margin_mode, symbol, None)
        data = self.exchange.repay_margin(asset, amount, margin_mode, symbol)
        return self._loan_report("repay", asset, amount, margin_mode, symbol, data)

    def _loan_report(self, action, asset, amount, margin_mode, symbol, data) -> MaintenanceReport:
        report = MaintenanceReport(action=action, symbol=symbol, position_mode=self.position_mode)
        if data is None:
            report.items.append(
                MaintenanceItem(
                    action=action, symbol=symbol, status="planned", side=asset.upper(), amount=amount,
                    detail=f"{margin_mode.value} margin",
                )
            )
            return report
        report.items.append(
            MaintenanceItem(
                action=action, symbol=symbol, status="done", side=asset.upper(), amount=amount,
                order_id=str(data.get("loanId") or data.get("orderId") or "") or None,
                detail=f"{margin_mode.value} margin",
            )
        )
        return report
