from decimal import Decimal

import pydantic
import pytest

from bitget_trading.errors import ParseError
from bitget_trading.models import CommandAction, EntryType, MarginMode, PositionMode, ProductType, Side
from bitget_trading.parser import parse_command, parse_price_target, parse_size_spec


def test_full_command():
    intent = parse_command(
        "10x long btc/usdt cross oneway --resting --resting-depth 1% @ market "
        "amount 0.002 sl -1% tp 1%,2% --dry-run --json"
    )

    assert intent.action is CommandAction.TRADE
    assert intent.leverage == 10
    assert intent.side is Side.LONG
    assert intent.symbol_token == "BTC/USDT"
    assert intent.margin_mode is MarginMode.CROSS
    assert intent.position_mode is PositionMode.ONE_WAY
    assert intent.resting is True
    assert intent.resting_depth == "1%"
    assert intent.entry_type is EntryType.MARKET
    assert intent.quantity == Decimal("0.002")
    assert intent.stop_loss.value == Decimal("-1")
    assert intent.stop_loss.is_percent and intent.stop_loss.signed
    assert [tp.target.raw for tp in intent.take_profits] == ["1%", "2%"]
    assert intent.dry_run and intent.json_output
    assert intent.sandbox is None


def test_token_order_does_not_matter():
    intent = parse_command("btc/usdt @ limit 61000 short 5x amount 1")

    assert intent.side is Side.SHORT
    assert intent.leverage == 5
    assert intent.entry_type is EntryType.LIMIT
    assert intent.entry_price == Decimal("61000")


def test_compact_entry_forms():
    assert parse_command("long eth/usdt @market").entry_type is EntryType.MARKET
    intent = parse_command("long eth/usdt @limit 2950.5")
    assert intent.entry_type is EntryType.LIMIT
    assert intent.entry_price == Decimal("2950.5")


def test_defaults():
    intent = parse_command("long btc/usdt")

    assert intent.leverage == 1
    assert intent.entry_type is EntryType.MARKET
    assert intent.margin_mode is None
    assert intent.position_mode is None
    assert intent.allow_hedged_fallback is True
    assert intent.take_profits == ()


def test_take_profit_sizes():
    intent = parse_command("long btc/usdt tp 61000@50%, 62000:0.5, 63000")

    first, second, third = intent.take_profits
    assert first.target.value == Decimal("61000")
    assert first.size.is_percent and first.size.value == Decimal("50")
    assert not second.size.is_percent and second.size.value == Decimal("0.5")
    assert third.size is None


def test_take_profit_size_with_spaces_and_following_entry():
    intent = parse_command("short btc/usdt tp 1% @ 50% , 2% @ market")

    assert [tp.target.raw for tp in intent.take_profits] == ["1%", "2%"]
    assert intent.take_profits[0].size.raw == "50%"
    assert intent.take_profits[1].size is None
    assert intent.entry_type is EntryType.MARKET


def test_buy_sell_map_to_long_short():
    assert parse_command("buy btc/usdt").side is Side.LONG
    intent = parse_command("spot sell eth/usdt amount 0.5")
    assert intent.side is Side.SHORT
    assert intent.product_type is ProductType.SPOT


def test_flags():
    intent = parse_command("long btc/usdt oneway strict --no-hedged-fallback demo")

    assert intent.one_way_strict is True
    assert intent.allow_hedged_fallback is False
    assert intent.sandbox is True


def test_resting_shorthand_takes_depth():
    intent = parse_command("long btc/usdt resting 5")
    assert intent.resting is True
    assert intent.resting_depth == "5"

    assert parse_command("short eth/usdt --resting 0.2%").resting_depth == "0.2%"
    assert parse_command("short eth/usdt --resting").resting_depth is None


def test_maintenance_keeps_mode_and_output_flags():
    intent = parse_command("flatten btc/usdt isolated hedged --dry-run --json")
    assert intent.margin_mode is MarginMode.ISOLATED
    assert intent.position_mode is PositionMode.HEDGED
    assert intent.dry_run and intent.json_output


def test_oneway_strict_flag_sets_one_way():
    intent = parse_command("long btc/usdt --oneway-strict")
    assert intent.one_way_strict is True
    assert intent.position_mode is PositionMode.ONE_WAY


def test_hedged_mode():
    assert parse_command("short btc/usdt hedged").position_mode is PositionMode.HEDGED


def test_maintenance_commands():
    flatten = parse_command("flatten btc/usdt sandbox")
    assert flatten.action is CommandAction.FLATTEN
    assert flatten.symbol_token == "BTC/USDT"
    assert flatten.sandbox is True

    assert parse_command("close all eth/usdt").action is CommandAction.FLATTEN
    assert parse_command("cancel tps btc/usdt").action is CommandAction.CANCEL_TPS
    assert parse_command("cancel targets btc/usdt").action is CommandAction.CANCEL_TPS
    assert parse_command("cancel tp btc/usdt --json").json_output is True


def test_borrow_and_repay():
    borrow = parse_command("spot borrow usdt 100 cross")
    assert borrow.action is CommandAction.BORROW
    assert borrow.asset == "USDT"
    assert borrow.quantity == Decimal("100")
    assert borrow.margin_mode is MarginMode.CROSS
    assert borrow.product_type is ProductType.SPOT

    repay = parse_command("spot repay usdt 50 isolated btc/usdt")
    assert repay.action is CommandAction.REPAY
    assert repay.symbol_token == "BTC/USDT"


@pytest.mark.parametrize(
    "text, field",
    [
        ("10x long @ market", "symbol"),
        ("10x btc/usdt @ market", "side"),
        ("long short btc/usdt", "side"),
        ("long btc/usdt @ limit", "entry_price"),
        ("long btc/usdt yolo", "token"),
        ("flatten", "symbol"),
        ("cancel tps", "symbol"),
        ("spot borrow usdt", "quantity"),
        ("spot repay usdt 50 isolated", "symbol"),
        ("0x long btc/usdt", "leverage"),
        ("long btc/usdt sl abc", "stop_loss"),
        ("long btc/usdt sl +60000", "stop_loss"),
        ("long btc/usdt tp 1%@-5%", "take_profits"),
        ("long btc/usdt tp 1%,", "take_profits"),
        ("long btc/usdt amount -1", "quantity"),
        ("long btc/usdt hedged oneway", "position_mode"),
        ("long btc/usdt --resting-depth lots", "resting_depth"),
        ("flatten btc/usdt borrow usdt 10", "action"),
        ("flatten btc/usdt 10x long tp 1%", "leverage"),
        ("cancel tps btc/usdt sl 1%", "stop_loss"),
        ("flatten btc/usdt amount 1", "quantity"),
        ("spot borrow usdt 100 long", "side"),
        ("long btc/usdt resting -1", "token"),
    ],
)
def test_invalid_commands(text, field):
    with pytest.raises(ParseError) as exc_info:
        parse_command(text)
    assert exc_info.value.field == field


def test_empty_command():
    with pytest.raises(ParseError):
        parse_command("   ")


def test_missing_side_message_has_example():
    with pytest.raises(ParseError, match="Missing side or symbol"):
        parse_command("10x @ market")


def test_price_target_variants():
    assert parse_price_target("60000", "sl").is_percent is False
    unsigned = parse_price_target("2%", "tp")
    assert unsigned.is_percent and not unsigned.signed
    signed = parse_price_target("+1.5%", "tp")
    assert signed.signed and signed.value == Decimal("1.5")


def test_size_spec_rejects_over_100_percent():
    with pytest.raises(ParseError):
        parse_size_spec("150%")
    assert parse_size_spec("100%").value == Decimal("100")


def test_intent_is_immutable():
    intent = parse_command("long btc/usdt")
    with pytest.raises(pydantic.ValidationError):
        intent.leverage = 5
