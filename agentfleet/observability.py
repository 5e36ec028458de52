# agentfleet/observability.py
import json
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from agentfleet.datastructures import TickRecord
from agentfleet.logger import TICK_LOGGER_NAME


class TickSink:
    """Receives one TickRecord per runner tick."""
    def emit(self, record: TickRecord):
        raise NotImplementedError


class LoggingSink(TickSink):
    """Writes each record as a JSON line on the tick logger."""
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(TICK_LOGGER_NAME)

    def emit(self, record: TickRecord):
        level = logging.WARNING if record.error else logging.INFO
        self.logger.log(level, json.dumps(record.to_dict(), sort_keys=True))


class RecentTicks(TickSink):
    """Bounded in-memory history, plus the latest record per (agent, symbol)."""
    def __init__(self, maxlen: int = 500):
        self.records: Deque[TickRecord] = deque(maxlen=maxlen)
        self.latest: Dict[Tuple[str, str], TickRecord] = {}

    def emit(self, record: TickRecord):
        self.records.append(record)
        self.latest[(record.agent_id, record.symbol)] = record

    def for_runner(self, agent_id: str, symbol: str) -> List[TickRecord]:
        return [r for r in self.records if r.agent_id == agent_id and r.symbol == symbol]


class CompositeSink(TickSink):
    def __init__(self, *sinks: TickSink):
        self.sinks = list(sinks)

    def emit(self, record: TickRecord):
        for sink in self.sinks:
            try:
                sink.emit(record)
            except Exception:
                logging.error(f"Tick sink {type(sink).__name__} failed", exc_info=True)
