"""Realtime WebSocket client using aiohttp to subscribe to Bitget public ticker channels.

Ticker pushes are converted to ``exchange.Ticker`` objects (canonical symbols)
and forwarded to a provided async callback. Bitget closes idle connections,
so a text "ping" is sent periodically; the server answers "pong".
"""
import asyncio
import json
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, List, Optional

from aiohttp import ClientSession, ClientWebSocketResponse, WSMsgType

from .exchange import Ticker
from .logging_setup import logger

DEFAULT_WS_URL = "wss://ws.bitget.com/v2/ws/public"
FUTURES_INST_TYPE = "USDT-FUTURES"
SPOT_INST_TYPE = "SPOT"


def _dec(value) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def stream_symbol(token: str, spot: bool = False, quote: str = "USDT") -> str:
    """Canonical symbol for a pair token: "btc" or "btc/usdt" -> "BTC/USDT:USDT" (or "BTC/USDT" for spot)."""
    pair = token.upper().replace("-", "/").split(":")[0]
    if "/" not in pair:
        pair = f"{pair}/{quote}"
    return pair if spot else f"{pair}:{pair.split('/')[1]}"


def subscription_args(symbols: List[str], channel: str = "ticker") -> List[dict]:
    """Subscription args for canonical symbols ("BTC/USDT:USDT" or "BTC/USDT")."""
    args = []
    for symbol in symbols:
        inst_type = FUTURES_INST_TYPE if ":" in symbol else SPOT_INST_TYPE
        inst_id = symbol.split(":")[0].replace("/", "").upper()
        args.append({"instType": inst_type, "channel": channel, "instId": inst_id})
    return args


def parse_ticker_message(message: dict, quote: str = "USDT") -> List[Ticker]:
    """Convert a ticker push into Ticker objects; other messages yield nothing."""
    arg = message.get("arg") or {}
    if arg.get("channel") != "ticker" or not message.get("data"):
        return []
    contract = arg.get("instType") == FUTURES_INST_TYPE
    tickers = []
    for row in message["data"]:
        inst_id = row.get("instId") or arg.get("instId") or ""
        if inst_id.endswith(quote) and len(inst_id) > len(quote):
            base = inst_id[: -len(quote)]
            symbol = f"{base}/{quote}:{quote}" if contract else f"{base}/{quote}"
        else:
            symbol = inst_id
        tickers.append(
            Ticker(
                symbol=symbol,
                last=_dec(row.get("lastPr")),
                bid=_dec(row.get("bidPr")),
                ask=_dec(row.get("askPr")),
                high_24h=_dec(row.get("high24h")),
                low_24h=_dec(row.get("low24h")),
                volume_24h=_dec(row.get("baseVolume")),
                timestamp=int(row.get("ts") or message.get("ts") or 0),
            )
        )
    return tickers


class BitgetTickerStream:
    def __init__(
        self,
        ws_url: str = DEFAULT_WS_URL,
        ping_interval: float = 30.0,
        session_factory: Callable[[], ClientSession] = ClientSession,
    ):
        self.ws_url = ws_url
        self.ping_interval = ping_interval
        self._session_factory = session_factory
        self._session: Optional[ClientSession] = None
        self._ws: Optional[ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._running = False

    async def connect(self, symbols: List[str], channel: str = "ticker"):
        self._session = self._session_factory()
        self._ws = await self._session.ws_connect(self.ws_url)
        subscribe_msg = {"op": "subscribe", "args": subscription_args(symbols, channel)}
        await self._ws.send_str(json.dumps(subscribe_msg))
        logger.info(f"WebSocket subscribed: url={self.ws_url} symbols={symbols} channel={channel}")

    async def _run_loop(self, on_ticker: Callable[[Ticker], Awaitable[None]]):
        assert self._ws is not None
        self._running = True
        try:
            async for msg in self._ws:
                if msg.type == WSMsgType.TEXT:
                    if msg.data == "pong":
                        continue
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        logger.warning(f"WebSocket message is not JSON: data={msg.data[:100]!r}")
                        continue
                    if data.get("event") == "error":
                        logger.error(f"WebSocket error event: code={data.get('code')} msg={data.get('msg')}")
                        continue
                    for ticker in parse_ticker_message(data):
                        await on_ticker(ticker)
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR):
                    break
        finally:
            self._running = False

    async def _ping_loop(self):
        while self._running and self._ws is not None and not self._ws.closed:
            await asyncio.sleep(self.ping_interval)
            await self._ws.send_str("ping")

    async def start(self, symbols: List[str], on_ticker: Callable[[Ticker], Awaitable[None]], channel: str = "ticker"):
        """Connect and start message loop. This method returns immediately and runs a background task."""
        await self.connect(symbols, channel=channel)
        loop = asyncio.get_running_loop()
        self._running = True
        self._task = loop.create_task(self._run_loop(on_ticker))
        self._ping_task = loop.create_task(self._ping_loop())

    async def stop(self):
        self._running = False
        if self._ping_task:
            self._ping_task.cancel()
            try:
                await self._ping_task
            except asyncio.CancelledError:
                pass
        if self._ws:
            await self._ws.close()
        if self._session:
            await self._session.close()
        if self._task:
            await asyncio.shield(self._task)

