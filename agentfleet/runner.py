# agentfleet/runner.py
import asyncio
import logging
import math
import time
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from agentfleet.datastructures import OrderAck, OrderRequest, SymbolFilters, TickRecord, TradeSignal, TradeSummary, summarize_trades
from agentfleet.errors import ApplicationFault, AuthFault, ErrorKind, ExchangeError, TransportFault
from agentfleet.exchange_client import ExchangeClient
from agentfleet.observability import TickSink
from agentfleet.price_feed import PriceFeed
from agentfleet.retry import RetryPolicy
from agentfleet.risk_manager import RiskManager
from agentfleet.strategies import Strategy


class RunnerStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    CRASHED = "crashed"


def _valid_positive(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


class AgentRunner:
    """
    Poll-decide-act loop for one (agent, symbol).

    Each tick is strictly sequential: price and account fetch, signal,
    risk checks, at most one order. Transport and exchange rejections end
    the tick as a HOLD; an AuthFault ends the runner.
    """
    def __init__(
        self,
        agent_id: str,
        symbol: str,
        strategy: Strategy,
        client: ExchangeClient,
        price_feed: PriceFeed,
        risk_manager: RiskManager,
        sink: TickSink,
        tick_interval: float = 15.0,
        dry_run: bool = False,
        filters: Optional[SymbolFilters] = None,
        summary_refresh_ticks: int = 20,
        clock: Callable[[], float] = time.time,
        sleep=asyncio.sleep,
    ):
        self.agent_id = agent_id
        self.symbol = symbol
        self.strategy = strategy
        self.client = client
        self.price_feed = price_feed
        self.risk_manager = risk_manager
        self.sink = sink
        self.tick_interval = tick_interval
        self.dry_run = dry_run
        self.filters = filters
        self.summary_refresh_ticks = summary_refresh_ticks
        self._clock = clock
        self._sleep = sleep

        self.status = RunnerStatus.PENDING
        self.error: Optional[str] = None
        self.tick_count = 0
        self.peak_equity = 0.0
        self.starting_equity: Optional[float] = None
        self.trades_today = 0
        self._trade_day = None
        self.summary: Optional[TradeSummary] = None
        self.last_record: Optional[TickRecord] = None

    @property
    def label(self) -> str:
        return f"{self.agent_id}:{self.symbol}"

    async def run(self):
        """Ticks until cancelled or an AuthFault. Never restarts itself."""
        self.status = RunnerStatus.RUNNING
        logging.info(f"[{self.label}] Runner started ({self.strategy.kind.value}, every {self.tick_interval}s{', DRY RUN' if self.dry_run else ''}).")
        try:
            if not self.client.credentials.is_complete():
                raise AuthFault(f"Missing API credentials for {self.agent_id}", kind="missing_credentials")
            await self._sync_clock()
            while True:
                try:
                    await self.tick()
                except AuthFault:
                    raise
                except Exception:
                    logging.critical(f"[{self.label}] Unexpected error during tick", exc_info=True)
                await self._sleep(self.tick_interval)
        except asyncio.CancelledError:
            self.status = RunnerStatus.STOPPED
            logging.info(f"[{self.label}] Runner stopped.")
            raise
        except AuthFault as e:
            self.status = RunnerStatus.CRASHED
            self.error = str(e)
            logging.error(f"[{self.label}] Authentication failure, runner exiting: {e}")
            raise

    async def tick(self) -> TickRecord:
        self.tick_count += 1
        try:
            price = await self.price_feed.get_price(self.symbol)
            account = await self.client.get_account_info()
        except (TransportFault, ApplicationFault) as e:
            await self._after_exchange_error(e)
            return self._emit(TradeSignal.hold(f"Market data unavailable: {e}"), error=e)

        if _valid_positive(account.equity):
            self._track_equity(account.equity)
        await self._refresh_summary()

        signal = self.strategy.generate_signal(price, account, account.positions)
        if not signal.is_actionable:
            if not (_valid_positive(price) and _valid_positive(account.equity)):
                return self._emit(signal, error_kind=ErrorKind.INPUT)
            return self._emit(signal)

        signal = self._normalize(signal, price)
        if not signal.is_actionable:
            return self._emit(signal, error_kind=ErrorKind.RISK)

        decision = self.risk_manager.evaluate(
            signal, price, account.equity, self.peak_equity,
            trades_today=self._trades_today(), summary=self.summary, starting_equity=self.starting_equity,
        )
        if not decision.approved:
            logging.warning(f"[{self.label}] {signal.action} {signal.quantity} downgraded to HOLD: {decision.reason}")
            return self._emit(TradeSignal.hold(f"Risk: {decision.reason}"), error_kind=ErrorKind.RISK)

        return await self._submit(signal)

    # --- Order submission ---

    def _normalize(self, signal: TradeSignal, price: float) -> TradeSignal:
        """Fits the quantity to the symbol's lot size; too small becomes HOLD."""
        if self.filters is None:
            return signal
        quantity = self.filters.round_quantity(signal.quantity)
        if quantity <= 0 or quantity < self.filters.min_quantity:
            return TradeSignal.hold(f"Quantity {signal.quantity} below lot size {self.filters.step_size} for {self.symbol}")
        if self.filters.min_notional and quantity * price < self.filters.min_notional:
            return TradeSignal.hold(f"Notional ${quantity * price:.2f} below exchange minimum ${self.filters.min_notional:.2f}")
        if quantity == signal.quantity:
            return signal
        return replace(signal, quantity=quantity)

    def _build_order(self, signal: TradeSignal) -> OrderRequest:
        limit = self.strategy.params.use_limit_orders and signal.price is not None
        price = signal.price
        if limit and self.filters is not None:
            price = self.filters.round_price(price)
        return OrderRequest(
            symbol=self.symbol,
            side=signal.action,
            order_type='LIMIT' if limit else 'MARKET',
            quantity=signal.quantity,
            price=price if limit else None,
            reduce_only=True if signal.action == 'SELL' else None,
        )

    async def _submit(self, signal: TradeSignal) -> TickRecord:
        order = self._build_order(signal)
        if self.dry_run:
            logging.info(f"[{self.label}] DRY RUN: would place {order}")
            self.strategy.on_order_result(signal, True)
            self._count_trade()
            return self._emit(signal, dry_run=True)

        # In-flight orders run to completion even when the runner is cancelled
        in_flight = asyncio.ensure_future(self.client.place_order(order))
        try:
            ack = await asyncio.shield(in_flight)
        except asyncio.CancelledError:
            await self._settle_in_flight(signal, in_flight)
            raise
        except (TransportFault, ApplicationFault) as e:
            self.strategy.on_order_result(signal, False)
            if isinstance(e, TransportFault) and e.kind == "timeout":
                logging.warning(f"[{self.label}] Order outcome unknown after timeout. Next tick reconciles from the account.")
            await self._after_exchange_error(e)
            return self._emit(signal, error=e)
        except AuthFault:
            self.strategy.on_order_result(signal, False)
            raise

        self.strategy.on_order_result(signal, True)
        self._count_trade()
        return self._emit(signal, order_id=ack.order_id)

    async def _settle_in_flight(self, signal: TradeSignal, in_flight: asyncio.Future):
        logging.warning(f"[{self.label}] Stop requested during order submission. Waiting for the exchange response.")
        ack: Optional[OrderAck] = None
        try:
            ack = await in_flight
        except ExchangeError as e:
            logging.warning(f"[{self.label}] In-flight order failed during shutdown: {e}")
        self.strategy.on_order_result(signal, ack is not None)
        if ack is not None:
            self._count_trade()
            self._emit(signal, order_id=ack.order_id)

    # --- Bookkeeping ---

    async def _sync_clock(self):
        try:
            await RetryPolicy(max_attempts=2, base_delay=1.0).call(self.client.sync_server_time, description=f"[{self.label}] clock sync")
        except (TransportFault, ApplicationFault) as e:
            logging.warning(f"[{self.label}] Server time sync failed, using local clock: {e}")

    async def _after_exchange_error(self, error: ExchangeError):
        if isinstance(error, ApplicationFault) and error.is_timestamp_error:
            logging.warning(f"[{self.label}] Timestamp outside recvWindow. Resyncing server time.")
            await self._sync_clock()

    def _track_equity(self, equity: float):
        if self.starting_equity is None:
            self.starting_equity = equity
        if equity > self.peak_equity:
            self.peak_equity = equity

    def _trades_today(self) -> int:
        today = datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()
        if today != self._trade_day:
            self._trade_day = today
            self.trades_today = 0
        return self.trades_today

    def _count_trade(self):
        self._trades_today()
        self.trades_today += 1

    async def _refresh_summary(self):
        if self.risk_manager.limits.min_win_rate <= 0 or self.summary_refresh_ticks <= 0:
            return
        if self.summary is not None and self.tick_count % self.summary_refresh_ticks != 0:
            return
        try:
            trades = await self.client.get_trades(self.symbol, limit=500)
        except (TransportFault, ApplicationFault) as e:
            logging.warning(f"[{self.label}] Trade history refresh failed: {e}")
            return
        self.summary = summarize_trades(trades)
        logging.info(f"[{self.label}] Trade summary: {self.summary.total_trades} closed, win rate {self.summary.win_rate:.0%}, net P&L ${self.summary.net_realized_pnl:.2f}")

    def _emit(self, signal: TradeSignal, order_id: Optional[int] = None, error: Optional[ExchangeError] = None,
              error_kind: Optional[ErrorKind] = None, dry_run: bool = False) -> TickRecord:
        if error is not None and error_kind is None:
            error_kind = error.error_kind
        record = TickRecord(
            agent_id=self.agent_id,
            symbol=self.symbol,
            action=signal.action,
            quantity=signal.quantity,
            confidence=signal.confidence,
            reason=signal.reason,
            timestamp=int(self._clock() * 1000),
            order_id=order_id,
            error=str(error) if error is not None else None,
            error_kind=error_kind.value if error_kind is not None else None,
            tag=signal.tag,
            dry_run=dry_run,
        )
        self.last_record = record
        self.sink.emit(record)
        return record

    def snapshot(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "symbol": self.symbol,
            "strategy": self.strategy.kind.value,
            "status": self.status.value,
            "error": self.error,
            "ticks": self.tick_count,
            "peak_equity": self.peak_equity,
            "trades_today": self.trades_today,
            "last": self.last_record.to_dict() if self.last_record else None,
        }
