"""Symbol and mode resolution.

Turns a casual pair token ("btc/usdt", "ETH", "solusdt") into a canonical
symbol backed by the exchange's market rules, and applies the configured
margin / position mode defaults.
"""
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Tuple

from .config import TradeDefaults
from .errors import SymbolResolutionError, ValidationError
from .exchange import ExchangeAdapter, MarketInfo
from .logging_setup import logger
from .models import MarginMode, PositionMode, ProductType, TradingIntent

STANDARD_QUOTE = "USDT"
FALLBACK_SYMBOLS = {
    ProductType.SWAP: "BTC/USDT:USDT",
    ProductType.SPOT: "BTC/USDT",
}


@dataclass(frozen=True)
class ResolvedSymbol:
    """Canonical symbol plus the market rules used to round prices and sizes."""

    symbol: str
    market: MarketInfo

    @property
    def contract(self) -> bool:
        return self.market.contract

    @property
    def min_amount(self) -> Decimal:
        return self.market.min_amount or self.market.amount_step

    def price_to_precision(self, price: Decimal) -> Decimal:
        """Round a price to the nearest tick."""
        tick = self.market.price_tick
        steps = (Decimal(price) / tick).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return (steps * tick).quantize(tick)

    def amount_to_precision(self, amount: Decimal, rounding: str = ROUND_DOWN) -> Decimal:
        """Round an amount to the amount step; truncates by default so sizes never grow."""
        step = self.market.amount_step
        steps = (Decimal(amount) / step).quantize(Decimal(1), rounding=rounding)
        return (steps * step).quantize(step)

    def clamp_price(self, price: Decimal) -> Decimal:
        if self.market.min_price is not None and price < self.market.min_price:
            return self.market.min_price
        if self.market.max_price is not None and price > self.market.max_price:
            return self.market.max_price
        return price

    def apply_price_rules(self, price: Decimal) -> Decimal:
        """Clamp to the market's price bounds, then round to tick precision."""
        return self.price_to_precision(self.clamp_price(Decimal(price)))

    def normalize_amount(self, amount: Decimal) -> Decimal:
        """Apply amount precision and the max bound.

        Raises:
            ValidationError: If the amount is below the market minimum after rounding
        """
        normalized = self.amount_to_precision(amount)
        if self.market.max_amount is not None and normalized > self.market.max_amount:
            logger.warning(f"Amount clamped to market max: symbol={self.symbol} requested={amount} max={self.market.max_amount}")
            normalized = self.amount_to_precision(self.market.max_amount)
        if normalized <= 0 or normalized < self.min_amount:
            raise ValidationError(
                f"Amount {amount} is below the minimum {self.min_amount} for {self.symbol}",
                endpoint="amount",
            )
        return normalized

    def default_amount(self) -> Decimal:
        """Smallest tradable amount, used when the command names no quantity."""
        return self.amount_to_precision(self.min_amount, rounding=ROUND_HALF_UP).max(self.market.amount_step)


def split_pair(token: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split "btc/usdt:usdt" into ("BTC", "USDT", "USDT").

    Tokens without a separator are split on a trailing USDT ("SOLUSDT").
    """
    text = token.strip().upper().replace("-", "/")
    settle = None
    if ":" in text:
        text, settle = text.split(":", 1)
    if "/" in text:
        base, quote = text.split("/", 1)
        return base, quote or None, settle or None
    if text.endswith(STANDARD_QUOTE) and len(text) > len(STANDARD_QUOTE):
        return text[: -len(STANDARD_QUOTE)], STANDARD_QUOTE, settle
    return text, None, settle


class SymbolResolver:
    """Resolve pair tokens against the exchange catalog for a product type.

    Preference order: the canonical form of the token as written, the same base
    with the standard USDT quote (and settle), the BTC fallback (logged as a
    warning), then the first tradable market.
    """

    def __init__(self, exchange: ExchangeAdapter, defaults: Optional[TradeDefaults] = None):
        self.exchange = exchange
        self.defaults = defaults or TradeDefaults()

    def _tradable(self, product_type: ProductType) -> Dict[str, MarketInfo]:
        markets = self.exchange.load_markets(product_type)
        return {
            symbol: market
            for symbol, market in markets.items()
            if market.active and market.product_type is product_type and market.quote == STANDARD_QUOTE
        }

    def resolve(self, token: Optional[str], product_type: ProductType = ProductType.SWAP) -> ResolvedSymbol:
        markets = self._tradable(product_type)
        if not markets:
            raise SymbolResolutionError(f"No tradable USDT {product_type.value} symbols available")

        candidates = []
        if token:
            base, quote, settle = split_pair(token)
            if product_type is ProductType.SWAP:
                if quote:
                    candidates.append(f"{base}/{quote}:{settle or quote}")
                candidates.append(f"{base}/{STANDARD_QUOTE}:{STANDARD_QUOTE}")
            else:
                if quote:
                    candidates.append(f"{base}/{quote}")
                candidates.append(f"{base}/{STANDARD_QUOTE}")

        for candidate in candidates:
            if candidate in markets:
                return ResolvedSymbol(symbol=candidate, market=markets[candidate])

        fallback = FALLBACK_SYMBOLS[product_type]
        if fallback not in markets:
            fallback = sorted(markets)[0]
        logger.warning(f"Symbol not found, using fallback: token={token} product={product_type.value} symbol={fallback}")
        return ResolvedSymbol(symbol=fallback, market=markets[fallback])

    def margin_mode_for(self, intent: TradingIntent) -> MarginMode:
        if intent.margin_mode is not None:
            return intent.margin_mode
        default = self.defaults.borrow_margin_mode if intent.is_margin_loan else self.defaults.margin_mode
        return MarginMode(default)

    def position_mode_for(self, intent: TradingIntent) -> PositionMode:
        if intent.position_mode is not None:
            return intent.position_mode
        return PositionMode(self.defaults.position_mode)
