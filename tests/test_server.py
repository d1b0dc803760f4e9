"""
Tests for the latency dispatcher and the WebSocket control server.
"""

import asyncio
import json
import logging
import math
import socket
import subprocess
import sys
import time
from pathlib import Path

import pytest
from websockets.asyncio.client import connect

from mpc_control.pipeline import Reply
from mpc_control.server import ControlServer, CustomFormatter, ResponseDispatcher
from mpc_control.solver import KinematicMPC

from stubs import FakeWebSocket, StubSolver

REPO_ROOT = Path(__file__).resolve().parent.parent


def _frame(name, data):
    return "42" + json.dumps([name, data])


class TestResponseDispatcher:
    def test_actuation_reply_waits_for_latency(self):
        dispatcher = ResponseDispatcher(latency_seconds=0.05)
        websocket = FakeWebSocket()

        start = time.monotonic()
        sent = asyncio.run(dispatcher.dispatch(websocket, Reply("42[\"steer\",{}]", actuation=True)))
        elapsed = time.monotonic() - start

        assert sent is True
        assert websocket.sent == ['42["steer",{}]']
        assert elapsed >= 0.05

    def test_manual_reply_is_immediate(self):
        dispatcher = ResponseDispatcher(latency_seconds=5.0)
        websocket = FakeWebSocket()

        start = time.monotonic()
        asyncio.run(dispatcher.dispatch(websocket, Reply('42["manual",{}]', actuation=False)))

        assert time.monotonic() - start < 1.0
        assert websocket.sent == ['42["manual",{}]']

    def test_closed_connection_is_reported_not_raised(self):
        dispatcher = ResponseDispatcher(latency_seconds=0.0)
        websocket = FakeWebSocket(closed_on_send=True)

        sent = asyncio.run(dispatcher.dispatch(websocket, Reply("42[]", actuation=True)))

        assert sent is False
        assert dispatcher.failed == 1
        assert dispatcher.sent == 0

    def test_negative_latency_rejected(self):
        with pytest.raises(ValueError):
            ResponseDispatcher(latency_seconds=-0.1)


class TestHandleConnection:
    def test_replies_in_order(self, telemetry_data):
        server = ControlServer(latency_seconds=0.0, solver_factory=StubSolver)
        websocket = FakeWebSocket(
            [
                _frame("telemetry", telemetry_data),
                '42["telemetry",null]',
                "2",
                _frame("telemetry", telemetry_data),
            ]
        )

        asyncio.run(server.handle_connection(websocket))

        names = [json.loads(text[2:])[0] for text in websocket.sent]
        assert names == ["steer", "manual", "steer"]
        assert websocket.closed is True

    def test_each_connection_gets_its_own_solver(self, telemetry_data):
        solvers = []

        def factory():
            solvers.append(StubSolver())
            return solvers[-1]

        server = ControlServer(latency_seconds=0.0, solver_factory=factory)

        async def two_connections():
            await asyncio.gather(
                server.handle_connection(FakeWebSocket([_frame("telemetry", telemetry_data)])),
                server.handle_connection(FakeWebSocket([_frame("telemetry", telemetry_data)] * 2)),
            )

        asyncio.run(two_connections())

        assert len(solvers) == 2
        assert sorted(len(s.calls) for s in solvers) == [1, 2]
        assert server.connections == 2


class TestMakeLoop:
    def test_default_solver_shares_steering_limit(self):
        limit = math.radians(10)
        loop = ControlServer(max_steering_angle=limit).make_loop()

        assert isinstance(loop.adapter.solver, KinematicMPC)
        assert loop.adapter.solver.max_steering_angle == loop.max_steering_angle == limit
        assert loop.adapter.solver.bounds[0] == (-limit, limit)

    def test_sharp_curve_within_limit_is_not_clamped(self, telemetry_data, caplog):
        telemetry_data["ptsy"] = [0.05 * x**2 for x in telemetry_data["ptsx"]]
        loop = ControlServer(max_steering_angle=math.radians(10)).make_loop()

        with caplog.at_level(logging.WARNING):
            reply = loop.handle_message(_frame("telemetry", telemetry_data))

        name, data = json.loads(reply.text[2:])
        assert name == "steer"
        assert -1.0 <= data["steering_angle"] <= 1.0
        assert not any("clamping" in r.getMessage() for r in caplog.records)

    def test_custom_factory_is_used(self):
        loop = ControlServer(solver_factory=StubSolver).make_loop()
        assert isinstance(loop.adapter.solver, StubSolver)


def test_end_to_end_over_websocket(telemetry_data):
    async def scenario():
        server = ControlServer(host="127.0.0.1", port=0, latency_seconds=0.05, solver_factory=StubSolver)
        task = asyncio.create_task(server.run())
        await asyncio.wait_for(server.wait_ready(), timeout=5)

        async with connect(f"ws://127.0.0.1:{server.bound_port}") as ws:
            start = time.monotonic()
            await ws.send(_frame("telemetry", telemetry_data))
            steer = await asyncio.wait_for(ws.recv(), timeout=5)
            elapsed = time.monotonic() - start

            await ws.send('42["telemetry",null]')
            manual = await asyncio.wait_for(ws.recv(), timeout=5)

        server.stop()
        await asyncio.wait_for(task, timeout=5)
        return steer, manual, elapsed

    steer, manual, elapsed = asyncio.run(scenario())

    name, data = json.loads(steer[2:])
    assert name == "steer"
    assert data["throttle"] == 0.5
    assert elapsed >= 0.05
    assert manual == '42["manual",{}]'


def test_bind_failure_raises_oserror():
    async def scenario():
        first = ControlServer(host="127.0.0.1", port=0, solver_factory=StubSolver)
        task = asyncio.create_task(first.run())
        await asyncio.wait_for(first.wait_ready(), timeout=5)
        try:
            second = ControlServer(host="127.0.0.1", port=first.bound_port, solver_factory=StubSolver)
            with pytest.raises(OSError):
                await second.run()
        finally:
            first.stop()
            await asyncio.wait_for(task, timeout=5)

    asyncio.run(scenario())


def test_cli_exits_with_status_1_when_port_is_taken():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]

        result = subprocess.run(
            [sys.executable, "-m", "mpc_control", "--host", "127.0.0.1", "--port", str(port)],
            cwd=REPO_ROOT,
            capture_output=True,
            text=True,
            timeout=30,
        )

    assert result.returncode == 1
    assert f"Failed to listen to port {port}" in result.stderr

class TestCustomFormatter:
    def _record(self, level):
        return logging.LogRecord("test", level, __file__, 1, "hello", None, None)

    def test_info_is_bare(self):
        assert CustomFormatter().format(self._record(logging.INFO)) == "hello"

    def test_warning_has_level_and_time(self):
        text = CustomFormatter().format(self._record(logging.WARNING))
        assert text.endswith("WARNING - hello")
