from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Tuple

TradeAction = Literal["BUY", "SELL"]
TradeEffect = Literal["BUY_TO_OPEN", "SELL_TO_CLOSE", "SELL_TO_OPEN", "BUY_TO_CLOSE"]
TradeType = Literal["Stock", "Call", "Put"]
PositionStatus = Literal["OPEN", "CLOSED"]
PositionSide = Literal["LONG", "SHORT"]
RowType = Literal["Position", "Trade"]

# "direction": BUY/SELL only, oversized closes flip
# "intent": explicit BTO/STC/STO/BTC on options, closes never flip
EffectModel = Literal["direction", "intent"]


@dataclass(frozen=True)
class TradeEvent:
    """
    One economic event for one contract on one date.

    qty is always positive; the sign lives in action/effect.
    price is per share/contract, NOT multiplied by the option multiplier.
    """
    account: str
    date: str                       # YYYY-MM-DD
    action: TradeAction
    contract_key: str
    ticker: str
    trade_type: TradeType
    qty: float
    price: float
    multiplier: int = 1
    time: Optional[str] = None      # display only, e.g. "9:41 AM"
    effect: Optional[TradeEffect] = None
    dedupe_key: str = ""
    order_id: Optional[str] = None


@dataclass
class PositionState:
    """Running accumulator for one (account, contract) episode."""
    account: str
    contract_key: str
    ticker: str
    trade_type: TradeType
    multiplier: int = 1

    open_qty: float = 0.0           # signed: >0 long, <0 short
    avg_open_price: float = 0.0     # of the currently open qty only

    total_opened_qty: float = 0.0
    total_opened_notional: float = 0.0
    total_closed_qty: float = 0.0
    total_closed_notional: float = 0.0

    realized_pl: float = 0.0

    side: Optional[PositionSide] = None
    open_date: Optional[str] = None
    open_time: Optional[str] = None
    close_date: Optional[str] = None
    close_time: Optional[str] = None
    last_add_date: Optional[str] = None


@dataclass(frozen=True)
class ManualStrategyTags:
    strategy: Optional[str] = None
    tags: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not self.strategy and not self.tags


@dataclass(frozen=True)
class LedgerRecord:
    """
    One journal row. Position rows are one per episode; Trade rows are one per fill.

    strategy/tags are user-owned: writers never set them except through a manual merge.
    """
    title: str
    ticker: str
    contract_key: str
    account: str
    broker: str
    row_type: RowType = "Position"
    status: Optional[PositionStatus] = None
    trade_type: Optional[TradeType] = None
    side: Optional[str] = None

    qty: Optional[float] = None
    fill_price: Optional[float] = None          # display-scaled by multiplier
    trade_date: Optional[str] = None
    trade_time: Optional[str] = None
    last_add_date: Optional[str] = None
    close_date: Optional[str] = None
    close_time: Optional[str] = None
    close_price: Optional[float] = None         # display-scaled by multiplier
    pl: Optional[float] = None

    strategy: Optional[str] = None
    tags: Tuple[str, ...] = ()

    order_id: Optional[str] = None
    snaptrade_id: Optional[str] = None

    id: Optional[str] = None
    archived: bool = False


# Fields the engine derives; everything else on a record is either identity or user-owned.
ENGINE_FIELDS: Tuple[str, ...] = (
    "status",
    "trade_type",
    "side",
    "qty",
    "fill_price",
    "trade_date",
    "trade_time",
    "last_add_date",
    "close_date",
    "close_time",
    "close_price",
    "pl",
)

MANUAL_FIELDS: Tuple[str, ...] = ("strategy", "tags")


@dataclass(frozen=True)
class SourceAccount:
    id: str
    name: Optional[str] = None
    number: Optional[str] = None
    brokerage: Optional[str] = None


@dataclass(frozen=True)
class PositionSnapshot:
    """A currently-held position as reported by a live source."""
    account: str
    contract_key: str
    ticker: str
    units: float
    average_price: Optional[float] = None       # display-scaled (per contract for options)
    price: Optional[float] = None
    side: PositionSide = "LONG"


@dataclass
class ParseResult:
    events: list[TradeEvent] = field(default_factory=list)
    parsed_rows: int = 0
    dropped_rows: int = 0
    files: list[str] = field(default_factory=list)
