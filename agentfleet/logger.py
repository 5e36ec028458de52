# agentfleet/logger.py
import logging
import sys

TICK_LOGGER_NAME = "agentfleet.ticks"


def setup_logging(level: str = "INFO"):
    """Configures structured logging for the fleet."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s.%(msecs)03dZ [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout
    )
    # Library loggers stay at WARNING
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
