#!/usr/bin/env python
"""Trade command CLI without installing the package.

Usage:
    python scripts/trade_command.py 10x long btc/usdt @ market sl -1% tp 1%,2% --dry-run
    python scripts/trade_command.py --config trade.yaml flatten btc/usdt sandbox
    python scripts/trade_command.py cancel tps eth/usdt --json
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from bitget_trading.cli import main


if __name__ == "__main__":
    sys.exit(main())
