"""Command-line front-end: ``bitget-trade "<command text>"``.

stdout carries only the result (JSON with --json, otherwise a text summary);
logs, warnings and the failure cause go to stderr.

Exit codes:
    0  success, dry run, or usage text
    1  parse error or fatal trading failure
"""
import argparse
import asyncio
import sys
from typing import Callable, List, Optional, TextIO

from aiohttp import ClientError

from .bitget_adapter import BitgetAdapter
from .config import TradingConfig
from .errors import TradingError
from .exchange import ExchangeAdapter
from .formatter import (
    maintenance_payload,
    render_maintenance_text,
    render_ticker_text,
    render_trade_text,
    to_json,
    trade_payload,
)
from .logging_setup import logger, setup_logging
from .maintenance import MaintenanceOperations, MaintenanceReport
from .models import CommandAction, ProductType, TradingIntent
from .orchestrator import OrderOrchestrator
from .parser import USAGE, parse_command
from .resolver import SymbolResolver
from .secrets import load_credentials
from .ws_client import BitgetTickerStream, stream_symbol

ExchangeFactory = Callable[[TradingConfig, bool], ExchangeAdapter]
StreamFactory = Callable[[str], BitgetTickerStream]


def default_exchange_factory(config: TradingConfig, sandbox: bool) -> ExchangeAdapter:
    """Build the live Bitget adapter; credentials are optional for dry runs and public data."""
    credentials = load_credentials(required=False)
    return BitgetAdapter.from_config(config, credentials, sandbox=sandbox)


def run_maintenance(intent: TradingIntent, exchange: ExchangeAdapter, config: TradingConfig) -> MaintenanceReport:
    """Dispatch flatten / cancel-tps / borrow / repay commands.

    A dry run only reads positions and orders; the report lists planned items.
    """
    resolver = SymbolResolver(exchange, config.defaults)
    operations = MaintenanceOperations(exchange, resolver.position_mode_for(intent), dry_run=intent.dry_run)
    margin_mode = resolver.margin_mode_for(intent)

    if intent.action in (CommandAction.FLATTEN, CommandAction.CANCEL_TPS):
        symbol = resolver.resolve(intent.symbol_token, ProductType.SWAP).symbol
        if intent.action is CommandAction.FLATTEN:
            return operations.flatten(symbol, margin_mode=margin_mode)
        return operations.cancel_take_profits(symbol)

    symbol = None
    if intent.symbol_token:
        symbol = resolver.resolve(intent.symbol_token, ProductType.SPOT).symbol
    if intent.action is CommandAction.BORROW:
        return operations.borrow(intent.asset, intent.quantity, margin_mode, symbol)
    return operations.repay(intent.asset, intent.quantity, margin_mode, symbol)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bitget-trade",
        description="Natural-language trade commands for Bitget spot and USDT-M futures",
        epilog=USAGE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="YAML config file (default: $BITGET_CONFIG)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command text, e.g. 10x long btc/usdt @ market")
    return parser


def main(
    argv: Optional[List[str]] = None,
    *,
    exchange_factory: Optional[ExchangeFactory] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    args = build_arg_parser().parse_args(argv)
    out = stdout or sys.stdout
    text = " ".join(args.command).strip()
    if not text:
        print(USAGE, file=out)
        return 0

    try:
        config = TradingConfig.load(args.config)
        setup_logging(level=args.log_level or config.logging.level, log_file=config.logging.log_file)

        intent = parse_command(text)
        sandbox = intent.sandbox if intent.sandbox is not None else config.exchange.sandbox
        exchange = (exchange_factory or default_exchange_factory)(config, sandbox)
        logger.info(f"Command: action={intent.action.value} sandbox={sandbox} dry_run={intent.dry_run} text={text!r}")

        if intent.is_maintenance or intent.is_margin_loan:
            report = run_maintenance(intent, exchange, config)
            if intent.json_output:
                print(to_json(maintenance_payload(intent, report, sandbox)), file=out)
            else:
                print(render_maintenance_text(report), file=out)
            return 0

        result = OrderOrchestrator(exchange, SymbolResolver(exchange, config.defaults), config.defaults).run(intent)
        if intent.json_output:
            print(to_json(trade_payload(result)), file=out)
        else:
            print(render_trade_text(result), file=out)
        return 0
    except (TradingError, ValueError, FileNotFoundError) as e:
        logger.debug(f"Command failed with {type(e).__name__}")
        print(f"Command failed: {e}", file=sys.stderr)
        return 1


async def _watch(stream: BitgetTickerStream, symbols: List[str], seconds: float, out: TextIO) -> None:
    async def on_ticker(ticker):
        print(render_ticker_text(ticker), file=out)

    await stream.start(symbols, on_ticker)
    try:
        await asyncio.sleep(seconds)
    finally:
        await stream.stop()


def build_watch_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bitget-ticker",
        description="Stream live Bitget tickers, e.g. to pick a resting depth before a trade",
    )
    parser.add_argument("symbols", nargs="+", help="Pairs such as btc/usdt or eth")
    parser.add_argument("--spot", action="store_true", help="Spot tickers instead of USDT-M contracts")
    parser.add_argument("--seconds", type=float, default=30.0, help="How long to stream (default: 30)")
    parser.add_argument("--sandbox", action="store_true", default=None, help="Use the demo-trading stream")
    parser.add_argument("--config", help="YAML config file (default: $BITGET_CONFIG)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)")
    return parser


def watch_main(
    argv: Optional[List[str]] = None,
    *,
    stream_factory: Optional[StreamFactory] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    """Entry point of ``bitget-ticker``: print ticker pushes for a fixed time."""
    args = build_watch_arg_parser().parse_args(argv)
    out = stdout or sys.stdout
    try:
        config = TradingConfig.load(args.config)
        setup_logging(level=args.log_level or config.logging.level, log_file=config.logging.log_file)
        sandbox = args.sandbox if args.sandbox is not None else config.exchange.sandbox
        url = config.ws_url_for(sandbox)
        symbols = [stream_symbol(token, spot=args.spot) for token in args.symbols]
        stream = (stream_factory or BitgetTickerStream)(url)
        asyncio.run(_watch(stream, symbols, args.seconds, out))
        return 0
    except (TradingError, ValueError, FileNotFoundError, ClientError) as e:
        logger.debug(f"Ticker stream failed with {type(e).__name__}")
        print(f"Ticker stream failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
