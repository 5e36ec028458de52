"""Tests for the HTTP control surface."""
import asyncio
import time

import pytest

import app as app_module


class FakeSupervisor:
    def __init__(self):
        self.stopped = None
        self.stop_calls = 0

    async def start(self):
        self.stopped = asyncio.Event()

    async def wait(self):
        await self.stopped.wait()

    async def stop_all(self):
        self.stop_calls += 1
        if self.stopped is not None:
            self.stopped.set()

    async def stop_runner(self, agent_id, symbol):
        return (agent_id, symbol.upper()) == ("agent-1", "ASTERUSDT")

    def status(self):
        return [{"agent_id": "agent-1", "symbol": "ASTERUSDT", "status": "running"}]


@pytest.fixture
def fake_supervisor():
    return FakeSupervisor()


@pytest.fixture
def client(monkeypatch, fake_supervisor):
    controller = app_module.FleetController(supervisor_factory=lambda: fake_supervisor)
    monkeypatch.setattr(app_module, "fleet", controller)
    app_module.app.config["AUTO_START"] = False
    app_module.app.config["TESTING"] = True
    yield app_module.app.test_client()
    if controller.is_running():
        controller.stop()
    controller.loop.call_soon_threadsafe(controller.loop.stop)


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_status_before_start(client):
    response = client.get("/status")
    assert response.status_code == 200
    assert response.get_json() == {"status": "not_started", "runners": []}


def test_stop_when_not_running(client):
    assert client.post("/stop").status_code == 404


def test_start_status_stop_cycle(client, fake_supervisor):
    response = client.post("/start")
    assert response.status_code == 201
    assert wait_until(lambda: fake_supervisor.stopped is not None)

    assert client.post("/start").status_code == 409

    body = client.get("/status").get_json()
    assert body["status"] == "running"
    assert body["runners"][0]["agent_id"] == "agent-1"

    response = client.post("/stop")
    assert response.status_code == 200
    assert fake_supervisor.stop_calls >= 1
    assert client.get("/status").get_json()["status"] == "stopped"


def test_stop_single_runner(client, fake_supervisor):
    client.post("/start")
    assert wait_until(lambda: fake_supervisor.stopped is not None)

    assert client.post("/runners/agent-1/asterusdt/stop").status_code == 200
    response = client.post("/runners/agent-9/BTCUSDT/stop")
    assert response.status_code == 404
    assert response.get_json()["symbol"] == "BTCUSDT"


def test_runner_stop_before_start_is_not_found(client):
    assert client.post("/runners/agent-1/ASTERUSDT/stop").status_code == 404
