# agentfleet/config.py
import os
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from agentfleet.datastructures import Credentials, FeeRates, RiskLimits

# Load environment variables from a .env file for local development
load_dotenv()

MAX_AGENTS = 5


class Config:
    """Process-wide settings loaded from environment variables."""
    # --- Run Mode ---
    # 'LIVE' submits orders, 'DRY_RUN' only logs what would be sent
    MODE = os.getenv('MODE', 'LIVE').upper()

    # --- Endpoints ---
    ASTER_API_URL = os.getenv('ASTER_API_URL', 'https://fapi.asterdex.com')
    ASTER_WS_URL = os.getenv('ASTER_WS_URL', 'wss://fstream.asterdex.com')
    BINANCE_PRICE_URL = os.getenv('BINANCE_PRICE_URL', 'https://api.binance.com/api/v3/ticker/price')
    SYMBOL_CONFIG_URL = os.getenv('SYMBOL_CONFIG_URL')  # admin service, optional

    # --- Exchange Client ---
    RECV_WINDOW_MS = int(os.getenv('RECV_WINDOW_MS', 10000))
    REQUEST_TIMEOUT_SECONDS = float(os.getenv('REQUEST_TIMEOUT_SECONDS', 8))
    PRICE_TIMEOUT_SECONDS = float(os.getenv('PRICE_TIMEOUT_SECONDS', 5))
    TAKER_FEE = float(os.getenv('TAKER_FEE', 0.00035))  # As fraction
    MAKER_FEE = float(os.getenv('MAKER_FEE', 0.0001))  # As fraction

    # --- Runner ---
    TICK_INTERVAL_SECONDS = float(os.getenv('TICK_INTERVAL_SECONDS', 15))
    DEFAULT_SYMBOL = os.getenv('TRADING_SYMBOL', 'ASTERUSDT')
    PRICE_SOURCE = os.getenv('PRICE_SOURCE', 'binance').lower()  # 'binance' or 'exchange'
    ACCOUNT_STREAM = os.getenv('ACCOUNT_STREAM', 'false').lower() == 'true'
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    @property
    def dry_run(self) -> bool:
        return self.MODE != 'LIVE'

    @property
    def fee_rates(self) -> FeeRates:
        return FeeRates(maker=self.MAKER_FEE, taker=self.TAKER_FEE)


config = Config()


# Strategy and risk profile used when an agent slot does not override them.
DEFAULT_AGENT_PROFILES = {
    1: ('arbitrage', RiskLimits(max_drawdown_percent=15, max_position_size_percent=12, max_trades_per_day=25, min_win_rate=0.50, slippage_percent=0.25)),
    2: ('momentum', RiskLimits(max_drawdown_percent=14, max_position_size_percent=12, max_trades_per_day=28, min_win_rate=0.48, slippage_percent=0.20)),
    3: ('grid', RiskLimits(max_drawdown_percent=16, max_position_size_percent=15, max_trades_per_day=50, min_win_rate=0.52, slippage_percent=0.15)),
    4: ('ml_signal', RiskLimits(max_drawdown_percent=12, max_position_size_percent=15, max_trades_per_day=30, min_win_rate=0.45, slippage_percent=0.20)),
    5: ('buy_and_hold', RiskLimits(max_drawdown_percent=100, max_position_size_percent=100, max_trades_per_day=5, min_win_rate=0.0, slippage_percent=0.15)),
}


@dataclass(frozen=True)
class AgentSpec:
    """Everything the supervisor needs to start one agent."""
    agent_id: str
    name: str
    strategy: str
    credentials: Credentials
    risk_limits: RiskLimits
    symbols: Optional[List[str]] = field(default=None)


def _split_symbols(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    symbols = [part.strip().upper() for part in raw.split(',') if part.strip()]
    return symbols or None


def _env_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if raw is None or raw == '':
        return default
    return float(raw)


def load_agent_specs(environ: Optional[Mapping[str, str]] = None) -> List[AgentSpec]:
    """
    Reads AGENT_<n>_* variables for n = 1..5. A slot is active when it has an
    API key or an explicit strategy. Missing secrets are kept as-is so the
    runner can fail with a credentials error instead of silently skipping.
    """
    environ = os.environ if environ is None else environ
    specs = []
    for n in range(1, MAX_AGENTS + 1):
        prefix = f'AGENT_{n}_'
        api_key = environ.get(prefix + 'API_KEY', '')
        strategy = environ.get(prefix + 'STRATEGY')
        if not api_key and not strategy:
            continue
        if environ.get(prefix + 'ENABLED', 'true').lower() == 'false':
            logging.info(f"Agent slot {n} disabled via {prefix}ENABLED.")
            continue

        default_strategy, default_limits = DEFAULT_AGENT_PROFILES[n]
        agent_id = environ.get(prefix + 'ID', f'agent-{n}')
        limits = RiskLimits(
            max_drawdown_percent=_env_float(environ, prefix + 'MAX_DRAWDOWN', default_limits.max_drawdown_percent),
            max_position_size_percent=_env_float(environ, prefix + 'MAX_POSITION_PERCENT', default_limits.max_position_size_percent),
            max_trades_per_day=int(_env_float(environ, prefix + 'MAX_TRADES_PER_DAY', default_limits.max_trades_per_day)),
            min_win_rate=_env_float(environ, prefix + 'MIN_WIN_RATE', default_limits.min_win_rate),
            slippage_percent=_env_float(environ, prefix + 'SLIPPAGE_PERCENT', default_limits.slippage_percent),
            min_order_notional=_env_float(environ, prefix + 'MIN_ORDER_NOTIONAL', default_limits.min_order_notional),
        )
        credentials = Credentials(
            agent_id=agent_id,
            signer=environ.get(prefix + 'SIGNER', ''),
            api_key=api_key,
            api_secret=environ.get(prefix + 'API_SECRET', ''),
        )
        if not credentials.is_complete():
            logging.warning(f"API key or secret missing for {agent_id}. Its runners will stop on start.")

        specs.append(AgentSpec(
            agent_id=agent_id,
            name=environ.get(prefix + 'NAME', agent_id),
            strategy=(strategy or default_strategy).lower(),
            credentials=credentials,
            risk_limits=limits,
            symbols=_split_symbols(environ.get(prefix + 'SYMBOLS')),
        ))

    if not specs:
        logging.warning("No AGENT_<n>_API_KEY or AGENT_<n>_STRATEGY found in environment variables.")
    return specs
