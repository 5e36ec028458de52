# agentfleet/supervisor.py
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from agentfleet.account_stream import AccountStream
from agentfleet.config import AgentSpec, Config, config
from agentfleet.errors import ConfigurationError, ExchangeError
from agentfleet.exchange_client import ExchangeClient
from agentfleet.observability import TickSink
from agentfleet.price_feed import BinancePriceFeed, ExchangePriceFeed, PriceFeed
from agentfleet.risk_manager import RiskManager
from agentfleet.runner import AgentRunner
from agentfleet.strategies import build_strategy
from agentfleet.symbol_source import HttpSymbolSource, StaticSymbolSource, SymbolSource, resolve_symbols

RunnerKey = Tuple[str, str]


def default_client_factory(spec: AgentSpec, settings: Config) -> ExchangeClient:
    return ExchangeClient(
        spec.credentials,
        base_url=settings.ASTER_API_URL,
        recv_window=settings.RECV_WINDOW_MS,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
        fee_rates=settings.fee_rates,
    )


def default_price_feed_factory(client: ExchangeClient, settings: Config) -> PriceFeed:
    if settings.PRICE_SOURCE == 'exchange':
        return ExchangePriceFeed(client)
    return BinancePriceFeed(settings.BINANCE_PRICE_URL, timeout=settings.PRICE_TIMEOUT_SECONDS)


class Supervisor:
    """
    Creates, tracks, and stops one AgentRunner task per (agent, symbol).
    A runner that ends (AuthFault, missing credentials) is logged and left
    stopped; its siblings keep running and nothing is restarted.
    """
    def __init__(
        self,
        specs: Iterable[AgentSpec],
        sink: TickSink,
        settings: Config = config,
        client_factory: Callable[[AgentSpec, Config], ExchangeClient] = default_client_factory,
        price_feed_factory: Callable[[ExchangeClient, Config], PriceFeed] = default_price_feed_factory,
        symbol_sources: Optional[List[SymbolSource]] = None,
        sleep=asyncio.sleep,
    ):
        self.specs = list(specs)
        self.sink = sink
        self.settings = settings
        self.client_factory = client_factory
        self.price_feed_factory = price_feed_factory
        self._sleep = sleep
        if symbol_sources is None:
            symbol_sources = [HttpSymbolSource(settings.SYMBOL_CONFIG_URL)] if settings.SYMBOL_CONFIG_URL else []
        self.symbol_sources = symbol_sources

        self.runners: Dict[RunnerKey, AgentRunner] = {}
        self.active_runners: Dict[RunnerKey, asyncio.Task] = {}
        self.clients: Dict[str, ExchangeClient] = {}
        self.price_feeds: Dict[str, PriceFeed] = {}
        self.streams: Dict[str, asyncio.Task] = {}

    async def start(self):
        logging.info(f"SUPERVISOR: Starting {len(self.specs)} agent(s) in {self.settings.MODE} mode.")
        for spec in self.specs:
            await self.start_agent(spec)
        logging.info(f"SUPERVISOR: {len(self.active_runners)} runner(s) active.")

    async def start_agent(self, spec: AgentSpec):
        """Resolves the agent's symbols and spawns a runner for each."""
        if spec.agent_id in self.clients:
            logging.warning(f"Agent {spec.agent_id} is already running.")
            return
        logging.info(f"SUPERVISOR: Starting {spec.name} ({spec.agent_id}) with API key {spec.credentials.masked_key}.")
        client = self.client_factory(spec, self.settings)
        self.clients[spec.agent_id] = client
        self.price_feeds[spec.agent_id] = self.price_feed_factory(client, self.settings)

        sources = [StaticSymbolSource({spec.agent_id: spec.symbols or []})] + list(self.symbol_sources)
        symbols = await resolve_symbols(spec.agent_id, sources, self.settings.DEFAULT_SYMBOL)
        for symbol in symbols:
            try:
                await self.start_runner(spec, symbol)
            except ConfigurationError as e:
                logging.error(f"[{spec.agent_id}] Not starting {spec.name}: {e}")
                return

        if self.settings.ACCOUNT_STREAM and spec.credentials.is_complete():
            stream = AccountStream(client, self.settings.ASTER_WS_URL)
            task = asyncio.create_task(stream.run(), name=f"stream-{spec.agent_id}")
            task.add_done_callback(self._on_stream_done)
            self.streams[spec.agent_id] = task

    async def start_runner(self, spec: AgentSpec, symbol: str) -> AgentRunner:
        key = (spec.agent_id, symbol)
        if key in self.active_runners and not self.active_runners[key].done():
            logging.warning(f"Runner for {spec.agent_id}:{symbol} is already running.")
            return self.runners[key]

        client = self.clients[spec.agent_id]
        risk_manager = RiskManager(spec.risk_limits)
        strategy = build_strategy(spec.strategy, symbol, risk_manager=risk_manager)
        filters = None
        if spec.credentials.is_complete():
            try:
                filters = await client.get_symbol_filters(symbol)
            except ExchangeError as e:
                logging.warning(f"[{spec.agent_id}:{symbol}] Symbol filters unavailable, orders use strategy rounding: {e}")

        runner = AgentRunner(
            agent_id=spec.agent_id,
            symbol=symbol,
            strategy=strategy,
            client=client,
            price_feed=self.price_feeds[spec.agent_id],
            risk_manager=risk_manager,
            sink=self.sink,
            tick_interval=self.settings.TICK_INTERVAL_SECONDS,
            dry_run=self.settings.dry_run,
            filters=filters,
            sleep=self._sleep,
        )
        task = asyncio.create_task(runner.run(), name=f"runner-{spec.agent_id}-{symbol}")
        task.add_done_callback(self._on_runner_done)
        self.runners[key] = runner
        self.active_runners[key] = task
        logging.info(f"SUPERVISOR: {spec.name} ({spec.strategy}) active on {symbol}.")
        return runner

    def _on_runner_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logging.error(f"SUPERVISOR: {task.get_name()} ended: {error}. Not restarting.")

    def _on_stream_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logging.error(f"SUPERVISOR: {task.get_name()} ended: {error}. Trading continues without it.")

    async def stop_runner(self, agent_id: str, symbol: str) -> bool:
        key = (agent_id, symbol.upper())
        task = self.active_runners.get(key)
        if task is None:
            return False
        logging.info(f"SUPERVISOR: Stopping runner {agent_id}:{key[1]}.")
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def stop_all(self):
        logging.info("SUPERVISOR: Stopping all runners...")
        tasks = list(self.active_runners.values()) + list(self.streams.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for feed in self.price_feeds.values():
            await feed.close()
        for client in self.clients.values():
            await client.close()
        for source in self.symbol_sources:
            if isinstance(source, HttpSymbolSource):
                await source.close()
        self.streams.clear()
        self.price_feeds.clear()
        self.clients.clear()
        logging.info("SUPERVISOR: All runners stopped.")

    async def wait(self):
        """Returns once every runner has ended."""
        await asyncio.gather(*self.active_runners.values(), return_exceptions=True)

    def status(self) -> List[dict]:
        return [runner.snapshot() for runner in self.runners.values()]
