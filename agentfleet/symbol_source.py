# agentfleet/symbol_source.py
import asyncio
import logging
from typing import Dict, Iterable, List, Optional

import aiohttp

from agentfleet.errors import TransportFault
from agentfleet.retry import RetryPolicy


def _normalize(symbols) -> List[str]:
    if isinstance(symbols, str):
        symbols = symbols.split(",")
    seen = []
    for symbol in symbols or []:
        symbol = str(symbol).strip().upper()
        if symbol and symbol not in seen:
            seen.append(symbol)
    return seen


class SymbolSource:
    """Where an agent's symbol list comes from. None means 'not configured here'."""
    async def symbols_for(self, agent_id: str) -> Optional[List[str]]:
        raise NotImplementedError


class StaticSymbolSource(SymbolSource):
    """Symbols fixed at startup, e.g. AGENT_<n>_SYMBOLS."""
    def __init__(self, mapping: Dict[str, Iterable[str]]):
        self.mapping = {agent_id: _normalize(symbols) for agent_id, symbols in mapping.items() if symbols}

    async def symbols_for(self, agent_id: str) -> Optional[List[str]]:
        return self.mapping.get(agent_id) or None


class HttpSymbolSource(SymbolSource):
    """
    Admin service answering GET <url>?agent_id=<id> with {"symbols": [...]}.
    Network trouble raises TransportFault so the caller's retry policy applies;
    a well-formed answer without symbols is treated as 'not configured'.
    """
    def __init__(self, url: str, timeout: float = 5.0, session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def symbols_for(self, agent_id: str) -> Optional[List[str]]:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        try:
            async with self._session.get(self.url, params={"agent_id": agent_id}, timeout=self.timeout) as response:
                if response.status != 200:
                    logging.warning(f"[{agent_id}] Symbol config service returned HTTP {response.status}")
                    return None
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportFault(f"Symbol config service unreachable: {e}", kind="connection")
        except ValueError:
            raise TransportFault("Symbol config service returned malformed JSON", kind="bad_json")
        if not isinstance(payload, dict):
            return None
        return _normalize(payload.get("symbols")) or None

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


async def resolve_symbols(
    agent_id: str,
    sources: Iterable[SymbolSource],
    default_symbol: str,
    retry_policy: RetryPolicy = RetryPolicy(),
) -> List[str]:
    """First source with an answer wins; otherwise the built-in default symbol."""
    for source in sources:
        try:
            symbols = await retry_policy.call(source.symbols_for, agent_id, description=f"[{agent_id}] symbol lookup")
        except TransportFault as e:
            logging.warning(f"[{agent_id}] {type(source).__name__} unavailable ({e}). Trying next source.")
            continue
        if symbols:
            logging.info(f"[{agent_id}] Trading symbols from {type(source).__name__}: {', '.join(symbols)}")
            return symbols
    logging.info(f"[{agent_id}] No symbol configuration found. Using default {default_symbol}")
    return [default_symbol.upper()]
