"""Price rules: percent targets and resting-entry offsets.

Percent convention:
    "+2%" / "-1%"   explicit sign, applied as entry * (1 + p/100) for either side
    "2%"  take-profit   profitable direction (up for long, down for short)
    "1%"  stop-loss     loss direction (down for long, up for short)
"""
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Tuple

from .errors import ParseError
from .models import PriceTarget, Side

HUNDRED = Decimal("100")


class TargetKind(str, Enum):
    TAKE_PROFIT = "tp"
    STOP_LOSS = "sl"


def resolve_target_price(target: PriceTarget, entry_price: Decimal, side: Side, kind: TargetKind) -> Decimal:
    """Absolute trigger/limit price for a stop-loss or take-profit target."""
    if not target.is_percent:
        return target.value

    pct = target.value
    if not target.signed:
        profitable = Decimal(1) if side is Side.LONG else Decimal(-1)
        direction = profitable if kind is TargetKind.TAKE_PROFIT else -profitable
        pct = direction * abs(pct)
    return entry_price * (1 + pct / HUNDRED)


def parse_offset(text: str) -> Tuple[Decimal, bool]:
    """Parse a resting depth such as "0.5%" or "25" into (value, is_percent)."""
    raw = text.strip()
    is_percent = raw.endswith("%")
    try:
        value = Decimal(raw.rstrip("%"))
    except InvalidOperation:
        raise ParseError(f"Invalid resting depth: {text}", field="resting_depth")
    if not value.is_finite() or value < 0:
        raise ParseError(f"Invalid resting depth: {text}", field="resting_depth")
    return value, is_percent


def resting_price(reference: Decimal, side: Side, depth: str) -> Decimal:
    """Limit price that rests away from the market: below for long, above for short."""
    value, is_percent = parse_offset(depth)
    offset = reference * value / HUNDRED if is_percent else value
    return reference - offset if side is Side.LONG else reference + offset
