"""
Order orchestration state machine.

Drives a parsed TradingIntent to completion against an ExchangeAdapter whose
account-wide position mode may reject the request. Every exchange call made
by a step is wrapped into a StepResult so partial failures stay visible.

State Transitions:
    RESOLVING → PREPARING → PRE_FLATTENING (strict one-way only) → ENTERING
        → ATTACHING_STOP_LOSS → ATTACHING_TAKE_PROFITS → SUMMARIZING → COMPLETED

    Any fatal step → FAILED (the error is re-raised to the caller)
    Dry run: RESOLVING → COMPLETED, with zero state-mutating calls

Failure policy:
    - entry: a position-mode conflict switches the account to hedged mode and
      resubmits once when the intent allows it; any other failure is fatal
    - account preparation, pre-flatten, stop-loss and each take-profit: failures
      become warnings and never roll back what already succeeded

Typical Flow:
    >>> orchestrator = OrderOrchestrator(InMemoryExchange())
    >>> result = orchestrator.run(parse_command("10x long btc/usdt @ market tp 2%"))
    >>> result.state
    <OrchestratorState.COMPLETED: 9>
"""
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Any, Callable, List, Optional

from .config import TradeDefaults
from .errors import ModeConflictError, TradingError, ValidationError
from .exchange import (
    ExchangeAdapter,
    OpenOrderSnapshot,
    OrderAck,
    OrderRequest,
    PositionSnapshot,
    TriggerOrderRequest,
)
from .logging_setup import logger
from .maintenance import MaintenanceOperations, MaintenanceReport
from .models import EntryType, MarginMode, PositionMode, Side, TakeProfitTarget, TradingIntent
from .pricing import TargetKind, resolve_target_price, resting_price
from .resolver import ResolvedSymbol, SymbolResolver


class OrchestratorState(Enum):
    """Orchestration lifecycle states."""

    RESOLVING = auto()  # symbol, prices and sizes
    PREPARING = auto()  # best-effort position mode / margin mode / leverage
    PRE_FLATTENING = auto()  # close opposing exposure (strict one-way)
    ENTERING = auto()
    ATTACHING_STOP_LOSS = auto()
    ATTACHING_TAKE_PROFITS = auto()
    SUMMARIZING = auto()
    FAILED = auto()
    COMPLETED = auto()


class StepOutcome(Enum):
    SUCCESS = auto()
    CONFLICT = auto()  # position-mode conflict, recoverable by switching to hedged
    FATAL = auto()
    SKIPPED = auto()


@dataclass
class StepResult:
    state: OrchestratorState
    outcome: StepOutcome
    detail: str = ""
    payload: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.outcome is StepOutcome.SUCCESS


@dataclass
class TakeProfitLeg:
    """One take-profit target with its absolute price and, once placed, its size.

    status: "pending" | "inline" | "placed" | "skipped" | "failed"

    An inline leg is a preset trigger on the entry order that closes the whole
    position; it holds no size, so placed leg sizes alone sum to at most the
    live exposure.
    """

    index: int
    target: TakeProfitTarget
    price: Decimal
    size: Optional[Decimal] = None
    order_id: Optional[str] = None
    status: str = "pending"


@dataclass
class OrderPlan:
    """Working state for one orchestration run; mutated only by the orchestrator."""

    symbol: ResolvedSymbol
    side: Side
    leverage: int
    amount: Decimal
    reference_price: Decimal
    effective_entry_price: Decimal
    effective_open_type: EntryType
    effective_margin_mode: Optional[MarginMode]
    effective_position_mode: PositionMode
    resting_depth: Optional[str] = None
    stop_loss_price: Optional[Decimal] = None
    take_profit_plan: List[TakeProfitLeg] = field(default_factory=list)
    remaining_long_exposure: Decimal = Decimal("0")
    remaining_short_exposure: Decimal = Decimal("0")

    @property
    def hedged(self) -> bool:
        return self.effective_position_mode is PositionMode.HEDGED

    def set_remaining_exposure(self, side: Side, value: Decimal) -> None:
        if side is Side.LONG:
            self.remaining_long_exposure = value
        else:
            self.remaining_short_exposure = value


@dataclass
class OrchestrationResult:
    intent: TradingIntent
    plan: OrderPlan
    state: OrchestratorState
    steps: List[StepResult]
    warnings: List[str]
    positions: List[PositionSnapshot] = field(default_factory=list)
    open_orders: List[OpenOrderSnapshot] = field(default_factory=list)
    entry: Optional[OrderAck] = None
    sandbox: bool = False

    @property
    def dry_run(self) -> bool:
        return self.intent.dry_run


def _now_ms() -> int:
    return int(time.time() * 1000)


class OrderOrchestrator:
    """Explicit state machine placing entry, stop-loss and take-profit orders.

    Attributes:
        state: Current OrchestratorState (FAILED after a fatal step)
        steps: Ordered StepResult log of the current/last run
        warnings: Non-fatal problems collected during the current/last run
    """

    def __init__(
        self,
        exchange: ExchangeAdapter,
        resolver: Optional[SymbolResolver] = None,
        defaults: Optional[TradeDefaults] = None,
        maintenance: Optional[MaintenanceOperations] = None,
    ):
        self.exchange = exchange
        self.defaults = defaults or TradeDefaults()
        self.resolver = resolver or SymbolResolver(exchange, self.defaults)
        self.maintenance = maintenance or MaintenanceOperations(exchange)
        self.state = OrchestratorState.RESOLVING
        self.steps: List[StepResult] = []
        self.warnings: List[str] = []

    # -------------------------------------------------------------- helpers

    def _transition(self, state: OrchestratorState) -> None:
        logger.debug(f"Orchestrator transition: {self.state.name} -> {state.name}")
        self.state = state

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def _attempt(self, state: OrchestratorState, detail: str, fn: Callable, *args, **kwargs) -> StepResult:
        """Run one exchange call and classify its outcome."""
        try:
            payload = fn(*args, **kwargs)
        except ModeConflictError as e:
            result = StepResult(state, StepOutcome.CONFLICT, detail, error=e)
        except TradingError as e:
            result = StepResult(state, StepOutcome.FATAL, detail, error=e)
        else:
            result = StepResult(state, StepOutcome.SUCCESS, detail, payload=payload)
        self.steps.append(result)
        return result

    def _skip(self, state: OrchestratorState, detail: str) -> None:
        self.steps.append(StepResult(state, StepOutcome.SKIPPED, detail))

    def _fail(self, error: Exception) -> None:
        self._transition(OrchestratorState.FAILED)
        logger.error(f"Orchestration failed: state={self.steps[-1].state.name if self.steps else 'RESOLVING'} error={error}")
        raise error

    # ----------------------------------------------------------------- plan

    def build_plan(self, intent: TradingIntent, resolved: ResolvedSymbol) -> OrderPlan:
        """Compute entry price/type, amount, stop-loss and take-profit prices.

        Only reads from the exchange (ticker). Raises ValidationError when no
        market price is available or the requested amount is below minimum.
        """
        side = intent.side
        ticker = self.exchange.fetch_ticker(resolved.symbol)
        reference = ticker.reference_price
        if reference is None:
            raise ValidationError(f"No market price available for {resolved.symbol}", endpoint="ticker")

        if intent.entry_type is EntryType.LIMIT and intent.entry_price is not None:
            entry = resolved.apply_price_rules(intent.entry_price)
        else:
            entry = resolved.apply_price_rules(reference)
        open_type = intent.entry_type

        if intent.quantity is not None:
            amount = resolved.normalize_amount(intent.quantity)
        else:
            amount = resolved.default_amount()

        depth = None
        if intent.resting and open_type is EntryType.MARKET:
            depth = intent.resting_depth or self.defaults.resting_depth
            entry = resolved.apply_price_rules(resting_price(entry, side, depth))
            open_type = EntryType.LIMIT

        if resolved.contract:
            margin_mode = self.resolver.margin_mode_for(intent)
        else:
            margin_mode = intent.margin_mode

        plan = OrderPlan(
            symbol=resolved,
            side=side,
            leverage=intent.leverage,
            amount=amount,
            reference_price=reference,
            effective_entry_price=entry,
            effective_open_type=open_type,
            effective_margin_mode=margin_mode,
            effective_position_mode=self.resolver.position_mode_for(intent),
            resting_depth=depth,
        )
        if intent.stop_loss is not None:
            plan.stop_loss_price = resolved.apply_price_rules(
                resolve_target_price(intent.stop_loss, entry, side, TargetKind.STOP_LOSS)
            )
        for index, tp in enumerate(intent.take_profits):
            price = resolved.apply_price_rules(resolve_target_price(tp.target, entry, side, TargetKind.TAKE_PROFIT))
            plan.take_profit_plan.append(TakeProfitLeg(index=index, target=tp, price=price))

        logger.info(
            f"Order plan: symbol={resolved.symbol} side={side.value} type={open_type.value} "
            f"amount={amount} entry={entry} sl={plan.stop_loss_price} tps={len(plan.take_profit_plan)}"
        )
        return plan

    # ------------------------------------------------------------------ run

    def run(self, intent: TradingIntent) -> OrchestrationResult:
        """Execute a trade intent.

        Returns:
            OrchestrationResult in COMPLETED state (dry runs included)

        Raises:
            TradingError: On symbol resolution failure, an invalid plan, or a
                fatal entry failure; ``self.state`` is FAILED afterwards
        """
        self.state = OrchestratorState.RESOLVING
        self.steps = []
        self.warnings = []
        self.maintenance.position_mode = self.resolver.position_mode_for(intent)

        try:
            resolved = self.resolver.resolve(intent.symbol_token, intent.product_type)
            plan = self.build_plan(intent, resolved)
        except TradingError as e:
            self._fail(e)

        result = OrchestrationResult(
            intent=intent,
            plan=plan,
            state=self.state,
            steps=self.steps,
            warnings=self.warnings,
            sandbox=bool(self.exchange.sandbox),
        )

        if intent.dry_run:
            self._skip(OrchestratorState.ENTERING, "dry run")
            self._transition(OrchestratorState.COMPLETED)
            result.state = self.state
            return result

        if resolved.contract:
            self._prepare_account(intent, plan)
            if intent.one_way_strict and not plan.hedged:
                self._pre_flatten(plan)
            result.entry = self._enter(intent, plan)
            self._attach_stop_loss(intent, plan)
            self._attach_take_profits(intent, plan)
        else:
            result.entry = self._enter_spot(intent, plan)

        self._summarize(result)
        self._transition(OrchestratorState.COMPLETED)
        result.state = self.state
        return result

    # ---------------------------------------------------------------- steps

    def _prepare_account(self, intent: TradingIntent, plan: OrderPlan) -> None:
        self._transition(OrchestratorState.PREPARING)
        symbol = plan.symbol.symbol
        calls = [
            ("set position mode", self.exchange.set_position_mode, (plan.effective_position_mode,)),
            ("set margin mode", self.exchange.set_margin_mode, (symbol, plan.effective_margin_mode)),
            ("set leverage", self.exchange.set_leverage, (symbol, plan.leverage, plan.effective_margin_mode)),
        ]
        for detail, fn, args in calls:
            step = self._attempt(OrchestratorState.PREPARING, detail, fn, *args)
            if not step.ok:
                self._warn(f"Could not {detail} for {symbol}: {step.error}")

    def _pre_flatten(self, plan: OrderPlan) -> None:
        self._transition(OrchestratorState.PRE_FLATTENING)
        opposite = plan.side.opposite
        step = self._attempt(
            OrchestratorState.PRE_FLATTENING,
            f"flatten {opposite.value}",
            self.maintenance.flatten,
            plan.symbol.symbol,
            sides={opposite},
            margin_mode=plan.effective_margin_mode,
        )
        if not step.ok:
            self._warn(f"Pre-flatten of {opposite.value} exposure failed: {step.error}")
            return
        report: MaintenanceReport = step.payload
        for item in report.failures:
            self._warn(f"Pre-flatten of {item.side} {item.amount} failed: {item.detail}")
        if report.position_mode is PositionMode.HEDGED:
            plan.effective_position_mode = PositionMode.HEDGED

    def _enter(self, intent: TradingIntent, plan: OrderPlan) -> OrderAck:
        self._transition(OrchestratorState.ENTERING)
        strict = intent.one_way_strict
        inline_tp = plan.take_profit_plan[0] if (plan.take_profit_plan and not strict) else None
        request = OrderRequest(
            symbol=plan.symbol.symbol,
            side=plan.side.open_side,
            order_type=plan.effective_open_type,
            amount=plan.amount,
            price=plan.effective_entry_price if plan.effective_open_type is EntryType.LIMIT else None,
            margin_mode=plan.effective_margin_mode,
            hedged=plan.hedged,
            client_oid=f"entry-{_now_ms()}",
            stop_loss_price=None if strict else plan.stop_loss_price,
            take_profit_price=inline_tp.price if inline_tp else None,
        )

        step = self._attempt(OrchestratorState.ENTERING, "entry", self.exchange.place_order, request)
        if step.outcome is StepOutcome.CONFLICT:
            if not intent.allow_hedged_fallback:
                self._fail(step.error)
            self._warn(f"Position mode conflict on entry, switching account to hedged mode: {step.error}")
            switch = self._attempt(
                OrchestratorState.ENTERING, "switch to hedged", self.exchange.set_position_mode, PositionMode.HEDGED
            )
            if not switch.ok:
                self._fail(switch.error)
            plan.effective_position_mode = PositionMode.HEDGED
            self.maintenance.position_mode = PositionMode.HEDGED
            request.hedged = True
            step = self._attempt(OrchestratorState.ENTERING, "entry (hedged)", self.exchange.place_order, request)

        if not step.ok:
            self._fail(step.error)

        ack: OrderAck = step.payload
        if inline_tp is not None:
            inline_tp.status = "inline"
        logger.info(
            f"Entry placed: symbol={plan.symbol.symbol} side={plan.side.value} order_id={ack.order_id} "
            f"mode={plan.effective_position_mode.value}"
        )
        return ack

    def _enter_spot(self, intent: TradingIntent, plan: OrderPlan) -> OrderAck:
        self._transition(OrchestratorState.ENTERING)
        if intent.stop_loss is not None or intent.take_profits:
            self._warn("Stop-loss and take-profit targets are ignored for spot orders")
        cost = None
        if plan.effective_open_type is EntryType.MARKET and plan.side is Side.LONG:
            cost = plan.amount * plan.effective_entry_price
        request = OrderRequest(
            symbol=plan.symbol.symbol,
            side=plan.side.open_side,
            order_type=plan.effective_open_type,
            amount=plan.amount,
            price=plan.effective_entry_price if plan.effective_open_type is EntryType.LIMIT else None,
            margin_mode=plan.effective_margin_mode,
            client_oid=f"entry-{_now_ms()}",
            cost=cost,
        )
        step = self._attempt(OrchestratorState.ENTERING, "spot entry", self.exchange.place_order, request)
        if not step.ok:
            self._fail(step.error)
        return step.payload

    def _attach_stop_loss(self, intent: TradingIntent, plan: OrderPlan) -> None:
        self._transition(OrchestratorState.ATTACHING_STOP_LOSS)
        if plan.stop_loss_price is None:
            self._skip(OrchestratorState.ATTACHING_STOP_LOSS, "no stop-loss")
            return
        if not intent.one_way_strict:
            self._skip(OrchestratorState.ATTACHING_STOP_LOSS, "attached inline")
            return

        request = TriggerOrderRequest(
            symbol=plan.symbol.symbol,
            side=plan.side.close_side,
            amount=plan.amount,
            trigger_price=plan.stop_loss_price,
            plan_type="loss_plan",
            hedged=plan.hedged,
            margin_mode=plan.effective_margin_mode,
            client_oid=f"sl-{_now_ms()}",
        )
        step = self._attempt(OrchestratorState.ATTACHING_STOP_LOSS, "stop-loss", self.exchange.place_trigger_order, request)
        if not step.ok:
            self._warn(f"Stop-loss at {plan.stop_loss_price} was not placed: {step.error}")

    def _live_exposure(self, symbol: str, side: Side) -> Decimal:
        positions = self.exchange.fetch_positions(symbol)
        return sum((p.size for p in positions if p.side is side), Decimal("0"))

    def _attach_take_profits(self, intent: TradingIntent, plan: OrderPlan) -> None:
        self._transition(OrchestratorState.ATTACHING_TAKE_PROFITS)
        legs = plan.take_profit_plan if intent.one_way_strict else plan.take_profit_plan[1:]
        if not legs:
            self._skip(OrchestratorState.ATTACHING_TAKE_PROFITS, "no separate take-profits")
            return

        resolved = plan.symbol
        symbol = resolved.symbol
        placed_total = Decimal("0")

        for position, leg in enumerate(legs):
            remaining_targets = len(legs) - position

            exposure = self._attempt(
                OrchestratorState.ATTACHING_TAKE_PROFITS, f"exposure for tp {leg.index}",
                self._live_exposure, symbol, plan.side,
            )
            if not exposure.ok:
                leg.status = "failed"
                self._warn(f"Take-profit {leg.index + 1} skipped, exposure query failed: {exposure.error}")
                continue
            live: Decimal = exposure.payload
            available = max(Decimal("0"), live - placed_total)

            size_spec = leg.target.size
            if size_spec is None:
                wanted = available / remaining_targets
            elif size_spec.is_percent:
                wanted = live * size_spec.value / Decimal("100")
            else:
                wanted = size_spec.value
            size = resolved.amount_to_precision(min(wanted, available))

            if size <= 0 or size < resolved.min_amount:
                leg.status = "skipped"
                self._skip(OrchestratorState.ATTACHING_TAKE_PROFITS, f"tp {leg.index} below minimum")
                self._warn(
                    f"Take-profit {leg.index + 1} at {leg.price} skipped: size {size} below minimum "
                    f"{resolved.min_amount} (available {available})"
                )
                continue

            request = OrderRequest(
                symbol=symbol,
                side=plan.side.close_side,
                order_type=EntryType.LIMIT,
                amount=size,
                price=leg.price,
                margin_mode=plan.effective_margin_mode,
                reduce_only=True,
                hedged=plan.hedged,
                client_oid=f"tp-{_now_ms()}-{leg.index}",
            )
            step = self._attempt(OrchestratorState.ATTACHING_TAKE_PROFITS, f"tp {leg.index}", self.exchange.place_order, request)
            if not step.ok:
                leg.status = "failed"
                self._warn(f"Take-profit {leg.index + 1} at {leg.price} was not placed: {step.error}")
                continue

            placed_total += size
            leg.size = size
            leg.order_id = step.payload.order_id
            leg.status = "placed"
            plan.set_remaining_exposure(plan.side, available - size)
            logger.info(f"Take-profit placed: symbol={symbol} idx={leg.index} price={leg.price} size={size}")

    def _summarize(self, result: OrchestrationResult) -> None:
        self._transition(OrchestratorState.SUMMARIZING)
        symbol = result.plan.symbol.symbol
        if result.plan.symbol.contract:
            step = self._attempt(OrchestratorState.SUMMARIZING, "positions", self.exchange.fetch_positions, symbol)
            if step.ok:
                result.positions = step.payload
            else:
                self._warn(f"Could not fetch positions for summary: {step.error}")
        step = self._attempt(OrchestratorState.SUMMARIZING, "open orders", self.exchange.fetch_open_orders, symbol)
        if step.ok:
            result.open_orders = step.payload
        else:
            self._warn(f"Could not fetch open orders for summary: {step.error}")
