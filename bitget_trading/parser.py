"""Command parser: free-form trade text -> TradingIntent.

Examples:
    10x long btc/usdt isolated @ limit 60000 amount 0.01 sl -1% tp 1%@50%, 2%
    5x short eth/usdt @ market sl 3100 tp 2900, 2800:0.5 --dry-run --json
    flatten btc/usdt sandbox
    cancel tps eth/usdt
    spot borrow usdt 100 cross

Tokens may appear in any order. Every token must be recognised; anything
else raises ParseError so a typo never turns into a silently different order.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import pydantic

from .errors import ParseError
from .models import (
    CommandAction,
    EntryType,
    MarginMode,
    PositionMode,
    PriceTarget,
    ProductType,
    Side,
    SizeSpec,
    TakeProfitTarget,
    TradingIntent,
)
from .pricing import parse_offset

USAGE = (
    'Usage: "<N>x <long|short|buy|sell> <base>/<quote> [isolated|cross] [oneway|hedged] '
    '@ <market|limit [price]> [amount <qty>] [sl <price|pct%>] [tp <target[@size]>[, ...]] '
    '[sandbox] [--resting [<val|pct%>]] [--resting-depth <val|pct%>] [--oneway-strict] [--no-hedged-fallback] '
    '[--dry-run] [--json]"\n'
    '       "flatten <symbol> [sandbox]" | "cancel tps <symbol> [sandbox]" | '
    '"spot <borrow|repay> <asset> <qty> [cross|isolated <symbol>]"'
)
EXAMPLE = '"10x short avax/usdt @ market sl 12.5 tp 12.0, 11.5 amount 1"'

LEVERAGE_RE = re.compile(r"(\d+)x")
PAIR_RE = re.compile(r"[a-z0-9]+[/-][a-z0-9]+(?::[a-z0-9]+)?")
TARGET_RE = re.compile(r"([+-]?)(\d+(?:\.\d+)?|\.\d+)(%?)")
SIZE_RE = re.compile(r"(\d+(?:\.\d+)?|\.\d+)(%?)")
ASSET_RE = re.compile(r"[a-z0-9]{2,10}")

SIDE_WORDS = {"long": Side.LONG, "buy": Side.LONG, "short": Side.SHORT, "sell": Side.SHORT}
MARGIN_WORDS = {"isolated": MarginMode.ISOLATED, "cross": MarginMode.CROSS, "crossed": MarginMode.CROSS}
ONE_WAY_WORDS = ("oneway", "one-way", "one_way")
HEDGED_WORDS = ("hedged", "hedge")
ENTRY_WORDS = {"market": EntryType.MARKET, "limit": EntryType.LIMIT}
QUANTITY_WORDS = ("amount", "size", "qty")
TP_WORDS = ("tp", "tps")
CANCEL_TARGET_WORDS = ("tps", "tp", "targets")
SANDBOX_WORDS = ("sandbox", "demo")
DRY_RUN_WORDS = ("--dry-run", "dry-run", "--dry", "dry")
JSON_WORDS = ("--json", "json")
RESTING_WORDS = ("--resting", "resting")
RESTING_DEPTH_WORDS = ("--resting-depth", "resting-depth")
TRADE_ONLY_FIELDS = (
    "leverage", "side", "entry_type", "entry_price", "stop_loss", "take_profits",
    "resting", "resting_depth", "one_way_strict", "allow_hedged_fallback",
)
POSITION_COMMAND_EXTRA_FIELDS = ("quantity", "product_type")


def parse_price_target(raw: str, field: str) -> PriceTarget:
    """Parse "60000", "2%", "-1%" or "+1.5%"."""
    match = TARGET_RE.fullmatch(raw)
    if not match:
        raise ParseError(f"Invalid {field} value: {raw!r}", field=field)
    sign, number, percent = match.groups()
    value = Decimal(sign + number)
    if not percent:
        if sign:
            raise ParseError(f"Absolute {field} price cannot be signed: {raw!r}", field=field)
        if value <= 0:
            raise ParseError(f"{field} price must be positive: {raw!r}", field=field)
    return PriceTarget(raw=raw, value=value, is_percent=bool(percent), signed=bool(sign))


def parse_size_spec(raw: str) -> SizeSpec:
    """Parse a take-profit size: "0.5" (absolute) or "50%" (of live exposure)."""
    match = SIZE_RE.fullmatch(raw)
    if not match:
        raise ParseError(f"Invalid take-profit size: {raw!r}", field="take_profits")
    number, percent = match.groups()
    value = Decimal(number)
    if value <= 0 or (percent and value > 100):
        raise ParseError(f"Take-profit size out of range: {raw!r}", field="take_profits")
    return SizeSpec(raw=raw, value=value, is_percent=bool(percent))


def _decimal(raw: Optional[str], field: str) -> Decimal:
    if raw is None:
        raise ParseError(f"Missing value for {field}", field=field)
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ParseError(f"Invalid number for {field}: {raw!r}", field=field)
    if not value.is_finite() or value <= 0:
        raise ParseError(f"{field} must be a positive number: {raw!r}", field=field)
    return value


def _tokenize(text: str) -> List[str]:
    return text.lower().replace(",", " , ").split()


class _CommandParser:
    def __init__(self, text: str):
        self.text = text.strip()
        self.tokens = _tokenize(self.text)
        self.pos = 0
        self.fields: Dict[str, Any] = {"raw_text": self.text}
        self.actions: List[CommandAction] = []

    def _peek(self, offset: int = 0) -> Optional[str]:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def _next(self, field: str) -> str:
        token = self._peek()
        if token is None:
            raise ParseError(f"Missing value for {field}", field=field)
        self.pos += 1
        return token

    def _set(self, name: str, value: Any, conflict: str) -> None:
        if name in self.fields and self.fields[name] != value:
            raise ParseError(conflict, field=name)
        self.fields[name] = value

    def _set_action(self, action: CommandAction) -> None:
        if self.actions and self.actions[-1] is not action:
            raise ParseError(
                f"Conflicting commands: {self.actions[-1].value} and {action.value}", field="action"
            )
        self.actions.append(action)

    # -------------------------------------------------------------- clauses

    def _entry(self, word: str) -> None:
        entry_type = ENTRY_WORDS.get(word)
        if entry_type is None:
            raise ParseError(f"Expected market or limit after '@', got {word!r}", field="entry_type")
        self._set("entry_type", entry_type, "Conflicting entry types")
        nxt = self._peek()
        if entry_type is EntryType.LIMIT and nxt and SIZE_RE.fullmatch(nxt) and not nxt.endswith("%"):
            self.fields["entry_price"] = _decimal(self._next("entry_price"), "entry_price")

    def _take_profits(self) -> None:
        targets = list(self.fields.get("take_profits", ()))
        while True:
            item = self._next("take_profits")
            size_raw = None
            for separator in ("@", ":"):
                if separator in item:
                    item, size_raw = item.split(separator, 1)
                    break
            if size_raw == "":
                size_raw = self._next("take_profits")
            elif size_raw is None:
                nxt = self._peek()
                if nxt in ("@", ":") and self._peek(1) not in ENTRY_WORDS:
                    self.pos += 1
                    size_raw = self._next("take_profits")
                elif nxt and nxt.startswith("@") and nxt[1:] and nxt[1:] not in ENTRY_WORDS:
                    self.pos += 1
                    size_raw = nxt[1:]

            target = parse_price_target(item, "take_profits")
            size = parse_size_spec(size_raw) if size_raw is not None else None
            targets.append(TakeProfitTarget(target=target, size=size))

            if self._peek() != ",":
                break
            self.pos += 1
        self.fields["take_profits"] = tuple(targets)

    def _margin_loan(self, action: CommandAction) -> None:
        self._set_action(action)
        asset = self._next("asset")
        if not ASSET_RE.fullmatch(asset):
            raise ParseError(f"Invalid asset for {action.value}: {asset!r}", field="asset")
        self.fields["asset"] = asset.upper()
        self.fields["product_type"] = ProductType.SPOT
        nxt = self._peek()
        if nxt is not None and SIZE_RE.fullmatch(nxt) and not nxt.endswith("%"):
            self.fields["quantity"] = _decimal(self._next("quantity"), "quantity")

    # ------------------------------------------------------------------ main

    def parse(self) -> TradingIntent:
        while self._peek() is not None:
            token = self._next("token")
            leverage = LEVERAGE_RE.fullmatch(token)

            if leverage:
                value = int(leverage.group(1))
                if value < 1:
                    raise ParseError(f"Leverage must be at least 1x: {token!r}", field="leverage")
                self._set("leverage", value, "Conflicting leverage values")
            elif token in SIDE_WORDS:
                self._set("side", SIDE_WORDS[token], "Conflicting sides: choose long/buy or short/sell")
            elif token in MARGIN_WORDS:
                self._set("margin_mode", MARGIN_WORDS[token], "Conflicting margin modes")
            elif token in ONE_WAY_WORDS:
                self._set("position_mode", PositionMode.ONE_WAY, "Conflicting position modes")
                if self._peek() == "strict":
                    self.pos += 1
                    self.fields["one_way_strict"] = True
            elif token == "--oneway-strict":
                self._set("position_mode", PositionMode.ONE_WAY, "Conflicting position modes")
                self.fields["one_way_strict"] = True
            elif token in HEDGED_WORDS:
                self._set("position_mode", PositionMode.HEDGED, "Conflicting position modes")
            elif token == "@":
                self._entry(self._next("entry_type"))
            elif token.startswith("@") and token[1:] in ENTRY_WORDS:
                self._entry(token[1:])
            elif token in ENTRY_WORDS:
                self._entry(token)
            elif token in QUANTITY_WORDS:
                self.fields["quantity"] = _decimal(self._next("quantity"), "quantity")
            elif token == "sl":
                self.fields["stop_loss"] = parse_price_target(self._next("stop_loss"), "stop_loss")
            elif token in TP_WORDS:
                self._take_profits()
            elif token in SANDBOX_WORDS:
                self.fields["sandbox"] = True
            elif token in RESTING_WORDS:
                self.fields["resting"] = True
                nxt = self._peek()
                if nxt is not None and SIZE_RE.fullmatch(nxt):
                    self.pos += 1
                    parse_offset(nxt)
                    self.fields["resting_depth"] = nxt
            elif token in RESTING_DEPTH_WORDS:
                depth = self._next("resting_depth")
                parse_offset(depth)
                self.fields["resting_depth"] = depth
                self.fields["resting"] = True
            elif token == "--no-hedged-fallback":
                self.fields["allow_hedged_fallback"] = False
            elif token in DRY_RUN_WORDS:
                self.fields["dry_run"] = True
            elif token in JSON_WORDS:
                self.fields["json_output"] = True
            elif token == "spot":
                self.fields["product_type"] = ProductType.SPOT
            elif token in ("borrow", "repay"):
                self._margin_loan(CommandAction(token))
            elif token == "flatten":
                self._set_action(CommandAction.FLATTEN)
            elif token == "close" and self._peek() == "all":
                self.pos += 1
                self._set_action(CommandAction.FLATTEN)
            elif token == "cancel" and self._peek() in CANCEL_TARGET_WORDS:
                self.pos += 1
                self._set_action(CommandAction.CANCEL_TPS)
            elif PAIR_RE.fullmatch(token):
                self._set("symbol_token", token.upper().replace("-", "/"), "Conflicting symbols")
            else:
                raise ParseError(f"Unrecognized token {token!r}", field="token")

        return self._build()

    def _reject_fields(self, action: CommandAction, names) -> None:
        for name in names:
            if name in self.fields:
                raise ParseError(f"'{name}' does not apply to {action.value}", field=name)

    def _build(self) -> TradingIntent:
        action = self.actions[-1] if self.actions else CommandAction.TRADE
        self.fields["action"] = action
        fields = self.fields

        if action is CommandAction.TRADE:
            if not fields.get("side") or not fields.get("symbol_token"):
                missing = "side" if not fields.get("side") else "symbol"
                raise ParseError(f"Missing side or symbol. Example: {EXAMPLE}", field=missing)
            if fields.get("entry_type") is EntryType.LIMIT and fields.get("entry_price") is None:
                raise ParseError("Limit entry requires a price: '@ limit <price>'", field="entry_price")
        elif action in (CommandAction.FLATTEN, CommandAction.CANCEL_TPS):
            if not fields.get("symbol_token"):
                raise ParseError(f"{action.value} requires a symbol, e.g. 'flatten btc/usdt'", field="symbol")
            self._reject_fields(action, TRADE_ONLY_FIELDS + POSITION_COMMAND_EXTRA_FIELDS)
        else:
            self._reject_fields(action, TRADE_ONLY_FIELDS)
            if not fields.get("quantity"):
                raise ParseError(f"{action.value} requires an amount, e.g. 'spot {action.value} usdt 100'", field="quantity")
            if fields.get("margin_mode") is MarginMode.ISOLATED and not fields.get("symbol_token"):
                raise ParseError(f"Isolated {action.value} requires a symbol, e.g. 'btc/usdt'", field="symbol")

        try:
            return TradingIntent(**fields)
        except pydantic.ValidationError as e:
            raise ParseError(f"Invalid command: {e}") from e


def parse_command(text: str) -> TradingIntent:
    """Parse command text into an immutable TradingIntent.

    Raises:
        ParseError: If the text is empty, contains an unrecognised token, or
            is missing a field the command needs
    """
    if not text or not text.strip():
        raise ParseError("Empty command", field="text")
    return _CommandParser(text).parse()
