"""Dry-run preview and post-trade summary rendering (JSON payloads and text)."""
import json
from dataclasses import asdict, is_dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .exchange import Ticker
from .maintenance import MaintenanceReport
from .models import TradingIntent
from .orchestrator import OrchestrationResult


def _jsonable(value: Any) -> Any:
    """Decimals become floats, enums their values, dataclasses dicts."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _position_dict(position) -> Dict[str, Any]:
    return {
        "symbol": position.symbol,
        "side": position.side,
        "size": position.size,
        "entryPrice": position.entry_price,
        "markPrice": position.mark_price,
        "unrealizedPnl": position.unrealized_pnl,
        "leverage": position.leverage,
        "marginMode": position.margin_mode,
    }


def _order_dict(order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "symbol": order.symbol,
        "side": order.side,
        "type": order.order_type,
        "price": order.price,
        "amount": order.amount,
        "reduceOnly": order.reduce_only,
        "clientOid": order.client_oid,
        "status": order.status,
    }


def trade_payload(result: OrchestrationResult) -> Dict[str, Any]:
    """JSON-ready payload for a trade run; dry runs add the preview fields."""
    plan = result.plan
    intent = result.intent
    payload: Dict[str, Any] = {
        "input": intent.raw_text,
        "sandbox": result.sandbox,
        "symbol": plan.symbol.symbol,
        "side": plan.side,
        "leverage": plan.leverage,
        "marginMode": plan.effective_margin_mode,
        "positionMode": plan.effective_position_mode,
        "orderType": plan.effective_open_type,
        "amount": plan.amount,
        "entryPrice": plan.effective_entry_price,
        "resting": intent.resting,
        "restingDepth": plan.resting_depth,
        "positions": [_position_dict(p) for p in result.positions],
        "openOrders": [_order_dict(o) for o in result.open_orders],
        "warnings": list(result.warnings),
    }
    if result.dry_run:
        payload["openType"] = plan.effective_open_type
        payload["slPrice"] = plan.stop_loss_price
        payload["tpPreview"] = [
            {
                "idx": leg.index + 1,
                "target": leg.target.target.raw,
                "price": leg.price,
                "size": leg.target.size.raw if leg.target.size else None,
            }
            for leg in plan.take_profit_plan
        ]
    return _jsonable(payload)


def maintenance_payload(intent: TradingIntent, report: MaintenanceReport, sandbox: bool) -> Dict[str, Any]:
    return _jsonable(
        {
            "input": intent.raw_text,
            "sandbox": sandbox,
            "dryRun": intent.dry_run,
            "action": report.action,
            "symbol": report.symbol,
            "positionMode": report.position_mode,
            "items": [item.to_dict() for item in report.items],
        }
    )


def to_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2)


def _num(value: Optional[Decimal]) -> str:
    return "-" if value is None else f"{value:f}"


def render_trade_text(result: OrchestrationResult) -> str:
    plan = result.plan
    lines: List[str] = []
    title = "Dry run preview" if result.dry_run else "Order summary"
    lines.append(f"=== {title}: {plan.symbol.symbol} {'(sandbox)' if result.sandbox else ''}".rstrip())
    lines.append(
        f"Side: {plan.side.value}  Leverage: {plan.leverage}x  "
        f"Margin: {plan.effective_margin_mode.value if plan.effective_margin_mode else '-'}  "
        f"Position mode: {plan.effective_position_mode.value}"
    )
    lines.append(f"Entry: {plan.effective_open_type.value} @ {_num(plan.effective_entry_price)}  Amount: {_num(plan.amount)}")
    if plan.resting_depth:
        lines.append(f"Resting depth: {plan.resting_depth} (market {_num(plan.reference_price)})")
    if plan.stop_loss_price is not None:
        lines.append(f"Stop-loss: {_num(plan.stop_loss_price)}")
    for leg in plan.take_profit_plan:
        if leg.status == "inline":
            size = "position"
        else:
            size = _num(leg.size) if leg.size is not None else (leg.target.size.raw if leg.target.size else "auto")
        lines.append(f"TP{leg.index + 1}: {leg.target.target.raw} -> {_num(leg.price)}  size={size}  [{leg.status}]")

    if not result.dry_run:
        lines.append("")
        lines.append(f"Positions ({len(result.positions)}):")
        for p in result.positions:
            lines.append(f"  {p.symbol:<16} {p.side.value:<6} size={_num(p.size)} entry={_num(p.entry_price)}")
        lines.append(f"Open orders ({len(result.open_orders)}):")
        for o in result.open_orders:
            lines.append(f"  {o.id:<12} {o.side:<5} {o.order_type:<7} {_num(o.amount)} @ {_num(o.price)} reduce_only={o.reduce_only}")

    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  - {w}" for w in result.warnings)
    return "\n".join(lines)


def render_maintenance_text(report: MaintenanceReport) -> str:
    lines = [f"=== {report.action}: {report.symbol or '-'} (position mode {report.position_mode.value})"]
    if not report.items:
        lines.append("Nothing to do")
    for item in report.items:
        detail = f" ({item.detail})" if item.detail else ""
        lines.append(
            f"  {item.status.upper():<7} {item.action:<8} {item.side or '-':<6} {_num(item.amount)} "
            f"order={item.order_id or '-'}{detail}"
        )
    return "\n".join(lines)


def render_ticker_text(ticker: Ticker) -> str:
    return (
        f"{ticker.timestamp} {ticker.symbol:<16} last={_num(ticker.last)} "
        f"bid={_num(ticker.bid)} ask={_num(ticker.ask)}"
    )
