# main.py
import asyncio
import logging
import signal

from agentfleet.config import config, load_agent_specs
from agentfleet.logger import setup_logging
from agentfleet.observability import CompositeSink, LoggingSink, RecentTicks
from agentfleet.supervisor import Supervisor

recent_ticks = RecentTicks()


def build_supervisor() -> Supervisor:
    specs = load_agent_specs()
    return Supervisor(specs, CompositeSink(LoggingSink(), recent_ticks))


def handle_shutdown(sig, main_task: asyncio.Task):
    logging.info(f"Received shutdown signal {sig.name}. Stopping agents...")
    main_task.cancel()


async def main(supervisor: Supervisor = None):
    if supervisor is None:
        supervisor = build_supervisor()
    logging.info(f"Initializing agent fleet in {config.MODE} mode...")
    try:
        await supervisor.start()
        await supervisor.wait()
        logging.info("All runners have ended.")
    except asyncio.CancelledError:
        logging.info("Main task cancelled. Fleet is shutting down.")
    finally:
        await supervisor.stop_all()


async def run_until_signalled():
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_shutdown, sig, main_task)
    await main()


if __name__ == "__main__":
    # For container deployment, app.py adds the HTTP control surface
    setup_logging(config.LOG_LEVEL)
    try:
        asyncio.run(run_until_signalled())
    finally:
        logging.info("Fleet shutdown complete.")
