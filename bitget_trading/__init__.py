"""
Bitget Trade Command.

Natural-language trade commands for Bitget spot and USDT-margined perpetual
futures, featuring:
- Tokenizing command parser with exhaustive validation (pydantic intent model)
- Symbol resolution with market precision and bounds
- Explicit order-orchestration state machine: entry, stop-loss and multiple
  take-profits, each independently fallible
- Automatic hedged-mode fallback on position-mode conflicts
- Resting (post-away) limit entries and strict one-way pre-flattening
- Maintenance operations: flatten, cancel take-profits, spot-margin borrow/repay
- Sandbox (demo) trading, dry-run previews and JSON output
- Rate-limit policy enforcement per endpoint
- Structured logging via loguru
- Configuration-driven (YAML + environment)

Core Modules:
    parser: Command text to TradingIntent
    resolver: Symbol, precision and mode defaults
    orchestrator: Order orchestration state machine
    maintenance: Flatten / cancel take-profits / borrow / repay
    exchange: Exchange capability interface
    bitget_adapter: Bitget REST v2 integration
    memory_exchange: Deterministic in-memory exchange
    ws_client: Public ticker WebSocket stream
    formatter: JSON payloads and text summaries
    cli: Command-line entry point
    config: Configuration loading
    secrets: Credential management

Example:
    >>> from bitget_trading.bitget_adapter import BitgetAdapter
    >>> from bitget_trading.config import TradingConfig
    >>> from bitget_trading.orchestrator import OrderOrchestrator
    >>> from bitget_trading.parser import parse_command
    >>> from bitget_trading.secrets import load_credentials
    >>>
    >>> config = TradingConfig.load()
    >>> adapter = BitgetAdapter.from_config(config, load_credentials())
    >>> result = OrderOrchestrator(adapter).run(parse_command("10x long btc/usdt @ market --dry-run"))
"""

__version__ = "0.1.0"
__all__ = [
    "parser",
    "resolver",
    "pricing",
    "orchestrator",
    "maintenance",
    "exchange",
    "bitget_adapter",
    "memory_exchange",
    "ws_client",
    "formatter",
    "cli",
    "config",
    "secrets",
    "errors",
    "models",
]
