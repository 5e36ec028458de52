# agentfleet/datastructures.py
import math
from dataclasses import asdict, dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Literal, Optional, Tuple

Action = Literal['BUY', 'SELL', 'HOLD']
Side = Literal['BUY', 'SELL']
OrderType = Literal['MARKET', 'LIMIT', 'STOP', 'STOP_MARKET', 'TAKE_PROFIT', 'TAKE_PROFIT_MARKET']


def to_float(value, default: float = 0.0) -> float:
    """Lenient numeric coercion for exchange payloads: None, junk and NaN/inf become `default`."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def floor_to_step(quantity: float, step: float) -> float:
    """Floors a quantity to a multiple of `step` without binary float drift."""
    if step <= 0 or quantity <= 0:
        return max(quantity, 0.0)
    step_dec = Decimal(str(step))
    units = (Decimal(str(quantity)) / step_dec).to_integral_value(rounding=ROUND_DOWN)
    return float(units * step_dec)


@dataclass(frozen=True)
class FeeRates:
    maker: float = 0.0001
    taker: float = 0.00035


def compute_commission(price: float, quantity: float, maker: bool, fee_rates: FeeRates = FeeRates()) -> float:
    rate = fee_rates.maker if maker else fee_rates.taker
    return round(abs(price * quantity) * rate, 6)


@dataclass(frozen=True)
class Credentials:
    """Signing identity of one agent. The secret never leaves this process."""
    agent_id: str
    signer: str
    api_key: str
    api_secret: str = field(repr=False)

    def is_complete(self) -> bool:
        return bool(self.api_key) and bool(self.api_secret)

    @property
    def masked_key(self) -> str:
        if len(self.api_key) <= 8:
            return "***"
        return f"{self.api_key[:4]}...{self.api_key[-4:]}"


@dataclass(frozen=True)
class Position:
    symbol: str
    quantity: float  # signed: > 0 long, < 0 short
    side: Literal['LONG', 'SHORT']
    entry_price: float
    mark_price: float = 0.0
    leverage: float = 1.0
    unrealized_pnl: float = 0.0
    liquidation_price: float = 0.0
    initial_margin: float = 0.0
    maint_margin: float = 0.0
    notional: float = 0.0
    isolated: bool = False
    update_time: int = 0

    @property
    def size(self) -> float:
        return abs(self.quantity)

    @classmethod
    def from_exchange(cls, raw: dict) -> Optional['Position']:
        """Parses an account/positionRisk entry. Returns None for flat positions."""
        quantity = to_float(raw.get("positionAmt"))
        if quantity == 0:
            return None
        reported_side = str(raw.get("positionSide") or "BOTH").upper()
        if reported_side in ("LONG", "SHORT"):
            side = reported_side
        else:
            side = "LONG" if quantity > 0 else "SHORT"
        unrealized = raw.get("unrealizedProfit", raw.get("unRealizedProfit"))
        return cls(
            symbol=str(raw.get("symbol", "")),
            quantity=quantity,
            side=side,
            entry_price=to_float(raw.get("entryPrice")),
            mark_price=to_float(raw.get("markPrice")),
            leverage=to_float(raw.get("leverage"), default=1.0) or 1.0,
            unrealized_pnl=to_float(unrealized),
            liquidation_price=to_float(raw.get("liquidationPrice")),
            initial_margin=to_float(raw.get("initialMargin", raw.get("positionInitialMargin"))),
            maint_margin=to_float(raw.get("maintMargin")),
            notional=to_float(raw.get("notional")),
            isolated=str(raw.get("isolated", False)).lower() == "true",
            update_time=int(to_float(raw.get("updateTime"))),
        )


def parse_positions(raw_positions: Iterable[dict]) -> Tuple[Position, ...]:
    positions = []
    for raw in raw_positions or ():
        position = Position.from_exchange(raw)
        if position is not None:
            positions.append(position)
    return tuple(positions)


@dataclass(frozen=True)
class Account:
    """Snapshot of an agent's account. Replaced wholesale every tick."""
    equity: float
    available_balance: float
    wallet_balance: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    total_pnl: float = 0.0
    roi: float = 0.0
    positions: Tuple[Position, ...] = ()

    def position_for(self, symbol: str) -> Optional[Position]:
        for position in self.positions:
            if position.symbol == symbol and position.quantity != 0:
                return position
        return None

    @classmethod
    def from_exchange(cls, raw: dict) -> 'Account':
        wallet = to_float(raw.get("totalWalletBalance"))
        unrealized = to_float(raw.get("totalUnrealizedProfit"))
        cross_collateral = to_float(raw.get("totalCrossCollateral"))
        available = to_float(raw.get("availableBalance"), default=wallet)
        return cls(
            equity=wallet + unrealized,
            available_balance=available,
            wallet_balance=wallet,
            unrealized_pnl=unrealized,
            realized_pnl=to_float(raw.get("totalRealizedProfit")),
            total_pnl=unrealized + cross_collateral,
            roi=(unrealized / wallet * 100) if wallet > 0 else 0.0,
            positions=parse_positions(raw.get("positions", [])),
        )


@dataclass(frozen=True)
class Trade:
    symbol: str
    trade_id: int
    order_id: int
    side: Side
    price: float
    quantity: float
    quote_quantity: float
    realized_pnl: float
    commission: float
    commission_asset: str
    maker: bool
    position_side: str
    time: int

    @classmethod
    def from_exchange(cls, raw: dict, fee_rates: FeeRates = FeeRates()) -> 'Trade':
        price = to_float(raw.get("price"))
        quantity = to_float(raw.get("qty"))
        if "maker" in raw:
            maker = bool(raw.get("maker"))
        else:
            maker = raw.get("isBuyerMaker") is True
        if raw.get("commission") is not None:
            commission = abs(to_float(raw.get("commission")))
        else:
            commission = compute_commission(price, quantity, maker, fee_rates)
        side = str(raw.get("side") or ("BUY" if raw.get("buyer") else "SELL")).upper()
        return cls(
            symbol=str(raw.get("symbol", "")),
            trade_id=int(to_float(raw.get("id"))),
            order_id=int(to_float(raw.get("orderId"))),
            side=side,
            price=price,
            quantity=quantity,
            quote_quantity=to_float(raw.get("quoteQty"), default=price * quantity),
            realized_pnl=to_float(raw.get("realizedPnl")),
            commission=commission,
            commission_asset=str(raw.get("commissionAsset") or "USDT"),
            maker=maker,
            position_side=str(raw.get("positionSide") or "BOTH"),
            time=int(to_float(raw.get("time"))),
        )


@dataclass(frozen=True)
class TradeSummary:
    total_trades: int = 0
    winning_trades: int = 0
    net_realized_pnl: float = 0.0
    total_fees: float = 0.0

    @property
    def win_rate(self) -> float:
        if self.total_trades == 0:
            return 0.0
        return self.winning_trades / self.total_trades


def summarize_trades(trades: Iterable[Trade]) -> TradeSummary:
    """Counts only closing fills (non-zero realized P&L) as decided trades."""
    total = wins = 0
    pnl = fees = 0.0
    for trade in trades:
        fees += trade.commission
        pnl += trade.realized_pnl
        if trade.realized_pnl != 0:
            total += 1
            if trade.realized_pnl > 0:
                wins += 1
    return TradeSummary(total_trades=total, winning_trades=wins, net_realized_pnl=pnl, total_fees=round(fees, 6))


@dataclass(frozen=True)
class TradeSignal:
    """What a strategy wants to do with its symbol on this tick."""
    action: Action
    quantity: float = 0.0
    confidence: float = 0.0
    reason: str = ""
    price: Optional[float] = None  # limit price; None means market
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    # Order intent: entry, accumulate, scale_out, exit or signal
    tag: Optional[str] = None

    def __post_init__(self):
        if self.action not in ('BUY', 'SELL', 'HOLD'):
            raise ValueError(f"Unknown action {self.action!r}")
        if not math.isfinite(self.quantity) or self.quantity < 0:
            raise ValueError(f"quantity must be a finite number >= 0, got {self.quantity}")
        if self.action != 'HOLD' and self.quantity <= 0:
            raise ValueError(f"{self.action} signal needs a positive quantity")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @property
    def is_actionable(self) -> bool:
        return self.action != 'HOLD' and self.quantity > 0

    @classmethod
    def hold(cls, reason: str, confidence: float = 0.0) -> 'TradeSignal':
        return cls(action='HOLD', quantity=0.0, confidence=confidence, reason=reason)


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: Side
    order_type: OrderType
    quantity: float
    price: Optional[float] = None  # required for LIMIT orders
    time_in_force: Optional[str] = None
    stop_price: Optional[float] = None
    position_side: Optional[str] = None
    reduce_only: Optional[bool] = None
    client_order_id: Optional[str] = None

    def to_params(self) -> dict:
        if self.order_type == 'LIMIT' and self.price is None:
            raise ValueError("LIMIT order requires a price")
        if self.order_type in ('STOP', 'STOP_MARKET', 'TAKE_PROFIT', 'TAKE_PROFIT_MARKET') and self.stop_price is None:
            raise ValueError(f"{self.order_type} order requires a stop price")
        time_in_force = self.time_in_force
        if self.order_type == 'LIMIT' and time_in_force is None:
            time_in_force = 'GTC'
        params = {
            "symbol": self.symbol,
            "side": self.side,
            "type": self.order_type,
            "quantity": self.quantity,
            "price": self.price,
            "timeInForce": time_in_force,
            "stopPrice": self.stop_price,
            "positionSide": self.position_side,
            "reduceOnly": self.reduce_only,
            "newClientOrderId": self.client_order_id,
        }
        return {key: value for key, value in params.items() if value is not None}


@dataclass(frozen=True)
class OrderAck:
    order_id: int
    symbol: str
    status: str
    side: str
    executed_quantity: float = 0.0
    average_price: float = 0.0
    cumulative_quote: float = 0.0
    client_order_id: str = ""

    @classmethod
    def from_exchange(cls, raw: dict) -> 'OrderAck':
        return cls(
            order_id=int(to_float(raw.get("orderId"))),
            symbol=str(raw.get("symbol", "")),
            status=str(raw.get("status", "")),
            side=str(raw.get("side", "")),
            executed_quantity=to_float(raw.get("executedQty")),
            average_price=to_float(raw.get("avgPrice")),
            cumulative_quote=to_float(raw.get("cumQuote")),
            client_order_id=str(raw.get("clientOrderId", "")),
        )


@dataclass(frozen=True)
class SymbolFilters:
    """Trading rules for one symbol, taken from exchangeInfo."""
    symbol: str
    step_size: float = 1.0
    tick_size: float = 0.0
    min_quantity: float = 0.0
    min_notional: float = 0.0
    status: str = "TRADING"

    def round_quantity(self, quantity: float) -> float:
        return floor_to_step(quantity, self.step_size)

    def round_price(self, price: float) -> float:
        if self.tick_size <= 0:
            return price
        return floor_to_step(price, self.tick_size)

    @classmethod
    def from_exchange(cls, raw: dict) -> 'SymbolFilters':
        step = tick = min_qty = min_notional = 0.0
        for rule in raw.get("filters", []):
            kind = rule.get("filterType")
            if kind == "LOT_SIZE":
                step = to_float(rule.get("stepSize"))
                min_qty = to_float(rule.get("minQty"))
            elif kind == "PRICE_FILTER":
                tick = to_float(rule.get("tickSize"))
            elif kind == "MIN_NOTIONAL":
                min_notional = to_float(rule.get("notional", rule.get("minNotional")))
        return cls(
            symbol=str(raw.get("symbol", "")),
            step_size=step or 1.0,
            tick_size=tick,
            min_quantity=min_qty,
            min_notional=min_notional,
            status=str(raw.get("status", "TRADING")),
        )


@dataclass(frozen=True)
class RiskLimits:
    max_drawdown_percent: float = 15.0
    max_position_size_percent: float = 10.0
    max_trades_per_day: int = 20
    min_win_rate: float = 0.4
    slippage_percent: float = 0.15
    min_order_notional: float = 5.0


@dataclass
class TickRecord:
    """One line of the observability stream: what a runner decided and what happened."""
    agent_id: str
    symbol: str
    action: Action
    quantity: float
    confidence: float
    reason: str
    timestamp: int
    order_id: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    tag: Optional[str] = None
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}
