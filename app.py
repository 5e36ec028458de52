# app.py
import asyncio
import logging
import os
import threading
from concurrent.futures import Future
from typing import Callable, Optional

from flask import Flask, jsonify

# Import the fleet's main coroutine and setup function
from main import build_supervisor, main as run_fleet_main
from agentfleet.config import config
from agentfleet.logger import setup_logging
from agentfleet.supervisor import Supervisor

# Configure logging
setup_logging(config.LOG_LEVEL)

CONTROL_TIMEOUT_SECONDS = 30


class FleetController:
    """
    Runs the supervisor on a dedicated event loop thread so Flask request
    handlers stay synchronous. All supervisor calls cross over with
    run_coroutine_threadsafe.
    """
    def __init__(self, supervisor_factory: Callable[[], Supervisor] = build_supervisor):
        self.supervisor_factory = supervisor_factory
        self.supervisor: Optional[Supervisor] = None
        self.future: Optional[Future] = None
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run_loop, name="fleet-loop", daemon=True)
        self.thread.start()

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def _call(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout=CONTROL_TIMEOUT_SECONDS)

    def is_running(self) -> bool:
        return self.future is not None and not self.future.done()

    def start(self) -> bool:
        if self.is_running():
            return False
        self.supervisor = self.supervisor_factory()
        self.future = asyncio.run_coroutine_threadsafe(run_fleet_main(self.supervisor), self.loop)
        return True

    def stop(self) -> bool:
        if not self.is_running():
            return False
        self._call(self.supervisor.stop_all())
        self.future.result(timeout=CONTROL_TIMEOUT_SECONDS)
        return True

    def stop_runner(self, agent_id: str, symbol: str) -> bool:
        if self.supervisor is None:
            return False
        return self._call(self.supervisor.stop_runner(agent_id, symbol))

    async def _snapshot(self):
        return self.supervisor.status()

    def status(self) -> dict:
        if self.future is None:
            return {"status": "not_started", "runners": []}
        runners = self._call(self._snapshot())
        if not self.future.done():
            return {"status": "running", "runners": runners}
        exception = self.future.exception()
        if exception:
            return {"status": "crashed", "error": str(exception), "runners": runners}
        return {"status": "stopped", "runners": runners}


# --- Flask App Initialization ---
app = Flask(__name__)
app.config["AUTO_START"] = os.getenv('AUTO_START', 'true').lower() == 'true'

fleet = FleetController()


@app.before_request
def startup():
    """
    On the first request, start the fleet in the background.
    This ensures the agents start automatically when the container runs.
    """
    if app.config["AUTO_START"] and fleet.future is None:
        logging.info("Flask server started. Launching agent fleet in the background...")
        fleet.start()


@app.route('/status', methods=['GET'])
def status():
    """Fleet state plus one snapshot per runner."""
    body = fleet.status()
    if body["status"] == "crashed":
        logging.error(f"Fleet finished with an exception: {body['error']}")
        return jsonify(body), 500
    return jsonify(body), 200


@app.route('/start', methods=['POST'])
def start_fleet():
    if fleet.start():
        logging.info("Received /start command. Launching agent fleet...")
        return jsonify({"status": "started"}), 201
    return jsonify({"status": "already_running"}), 409


@app.route('/stop', methods=['POST'])
def stop_fleet():
    if fleet.stop():
        logging.info("Received /stop command. Agent fleet stopped.")
        return jsonify({"status": "stopped"}), 200
    return jsonify({"status": "not_running"}), 404


@app.route('/runners/<agent_id>/<symbol>/stop', methods=['POST'])
def stop_runner(agent_id, symbol):
    if fleet.stop_runner(agent_id, symbol):
        return jsonify({"status": "stopped", "agent_id": agent_id, "symbol": symbol.upper()}), 200
    return jsonify({"status": "not_found", "agent_id": agent_id, "symbol": symbol.upper()}), 404
