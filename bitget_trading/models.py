"""Domain model for parsed trade commands.

TradingIntent is built once by the parser and is immutable afterwards.
"""
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Side(str, Enum):
    """Position direction. buy/sell in spot commands map onto long/short."""

    LONG = "long"
    SHORT = "short"

    @property
    def open_side(self) -> str:
        """Exchange order side that opens/increases this direction."""
        return "buy" if self is Side.LONG else "sell"

    @property
    def close_side(self) -> str:
        """Exchange order side that reduces this direction."""
        return "sell" if self is Side.LONG else "buy"

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG


class EntryType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class MarginMode(str, Enum):
    ISOLATED = "isolated"
    CROSS = "cross"


class PositionMode(str, Enum):
    ONE_WAY = "oneway"
    HEDGED = "hedged"


class ProductType(str, Enum):
    SWAP = "swap"  # USDT-margined perpetual contracts
    SPOT = "spot"


class CommandAction(str, Enum):
    TRADE = "trade"
    FLATTEN = "flatten"
    CANCEL_TPS = "cancel_tps"
    BORROW = "borrow"
    REPAY = "repay"


class PriceTarget(BaseModel):
    """An absolute price or a percent offset from the entry price.

    ``value`` keeps its sign for percents written as "+2%" / "-1%"; ``signed``
    records whether the user wrote an explicit sign, which changes how the
    direction is chosen (see pricing.resolve_target_price).
    """

    model_config = ConfigDict(frozen=True)

    raw: str
    value: Decimal
    is_percent: bool = False
    signed: bool = False


class SizeSpec(BaseModel):
    """Take-profit size: absolute contracts/coins, or percent of exposure."""

    model_config = ConfigDict(frozen=True)

    raw: str
    value: Decimal = Field(gt=0)
    is_percent: bool = False


class TakeProfitTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: PriceTarget
    size: Optional[SizeSpec] = None


class TradingIntent(BaseModel):
    """Immutable, fully-validated request parsed from command text."""

    model_config = ConfigDict(frozen=True)

    raw_text: str = ""
    action: CommandAction = CommandAction.TRADE
    product_type: ProductType = ProductType.SWAP
    leverage: int = Field(default=1, ge=1)
    side: Optional[Side] = None
    entry_type: EntryType = EntryType.MARKET
    entry_price: Optional[Decimal] = Field(default=None, gt=0)
    symbol_token: Optional[str] = None
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    stop_loss: Optional[PriceTarget] = None
    take_profits: Tuple[TakeProfitTarget, ...] = ()
    margin_mode: Optional[MarginMode] = None
    position_mode: Optional[PositionMode] = None
    sandbox: Optional[bool] = None
    resting: bool = False
    resting_depth: Optional[str] = None
    one_way_strict: bool = False
    allow_hedged_fallback: bool = True
    dry_run: bool = False
    json_output: bool = False
    asset: Optional[str] = None

    @property
    def is_maintenance(self) -> bool:
        return self.action in (CommandAction.FLATTEN, CommandAction.CANCEL_TPS)

    @property
    def is_margin_loan(self) -> bool:
        return self.action in (CommandAction.BORROW, CommandAction.REPAY)
