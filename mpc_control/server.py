#!/usr/bin/env python3
"""
WebSocket Control Server for the Driving Simulator

This module serves the MPC control loop to the simulator. Each connection gets
its own control loop and optimizer instance; every telemetry frame is handled
to completion (transform, fit, solve, latency delay, send) before the next
frame on that connection is read.
"""

import asyncio
import logging
import signal
from typing import Any, Callable, Optional

import websockets
from websockets.asyncio.server import serve

from .config import (
    ACTUATION_LATENCY_SECONDS,
    MAX_STEERING_ANGLE_RAD,
    TERM_BLUE,
    TERM_RESET,
    WS_HOST,
    WS_PORT,
)
from .data_collector import CycleRecorder
from .pipeline import ControlLoop, CycleSink, Reply
from .solver import KinematicMPC, Solver


class CustomFormatter(logging.Formatter):
    """Custom logging formatter that removes timestamps from INFO messages.

    This formatter provides clean console output by showing INFO messages without
    timestamps while preserving full context for WARNING, ERROR, and DEBUG messages.
    """

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno == logging.INFO:
            return record.getMessage()
        else:
            return f"{self.formatTime(record, self.datefmt)} - {record.levelname} - {record.getMessage()}"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, show all levels with timestamps. If False, show INFO
                 without timestamps and WARNING/ERROR with timestamps.
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        handler = logging.StreamHandler()
        formatter = CustomFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        handler.setFormatter(formatter)
        logger = logging.getLogger()
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)
        # The library logs every handshake at INFO
        logging.getLogger("websockets").setLevel(logging.WARNING)


class ResponseDispatcher:
    """Sends replies, holding actuation replies back by a fixed latency.

    The delay models actuator lag: a reply is sent no earlier than
    `latency_seconds` after it was computed. It is a pure delay, nothing is
    coalesced or dropped. Awaiting it inside the connection handler keeps
    further frames on that connection queued behind it, while other
    connections keep being served.

    Attributes:
        latency_seconds: Delay applied before actuation replies.
        sent: Number of replies successfully sent.
        failed: Number of replies lost to a closed connection.
    """

    def __init__(self, latency_seconds: float = ACTUATION_LATENCY_SECONDS) -> None:
        if latency_seconds < 0:
            raise ValueError(f"Latency must be non-negative, got {latency_seconds}")
        self.latency_seconds = latency_seconds
        self.sent: int = 0
        self.failed: int = 0

    async def dispatch(self, websocket: Any, reply: Reply) -> bool:
        """Send one reply, after the latency delay if it carries actuation.

        Args:
            websocket: Connection to send on.
            reply: Frame to send.

        Returns:
            True if the frame was sent, False if the connection was closed.
        """
        if reply.actuation and self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

        try:
            await websocket.send(reply.text)
        except websockets.exceptions.ConnectionClosed as e:
            logging.warning(f"Reply not sent, connection closed: {e}")
            self.failed += 1
            return False

        self.sent += 1
        return True


class ControlServer:
    """WebSocket server running one control loop per simulator connection.

    Attributes:
        host: Interface to listen on.
        port: Port to listen on (0 picks a free port).
        solver_factory: Builds a fresh optimizer for each connection. If None,
            a KinematicMPC bounded by max_steering_angle is built.
        max_steering_angle: Steering angle mapped to +/-1 (radians).
        recorder: Optional cycle sink shared by all connections.
        dispatcher: Latency-delayed reply sender.
        bound_port: Actual listening port once the server is running.
    """

    def __init__(
        self,
        host: str = WS_HOST,
        port: int = WS_PORT,
        latency_seconds: float = ACTUATION_LATENCY_SECONDS,
        max_steering_angle: float = MAX_STEERING_ANGLE_RAD,
        solver_factory: Optional[Callable[[], Solver]] = None,
        recorder: Optional[CycleSink] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.solver_factory = solver_factory
        self.max_steering_angle = max_steering_angle
        self.recorder = recorder
        self.dispatcher = ResponseDispatcher(latency_seconds)
        self.bound_port: Optional[int] = None
        self.connections: int = 0
        self._stop: Optional[asyncio.Event] = None
        self._ready: Optional[asyncio.Event] = None

    def make_loop(self) -> ControlLoop:
        """Build the control loop (and its own solver) for a new connection."""
        if self.solver_factory is None:
            solver: Solver = KinematicMPC(max_steering_angle=self.max_steering_angle)
        else:
            solver = self.solver_factory()
        return ControlLoop(
            solver,
            max_steering_angle=self.max_steering_angle,
            recorder=self.recorder,
        )

    async def handle_connection(self, websocket: Any) -> None:
        """Serve one simulator connection until it disconnects.

        Frames are processed strictly in order. The solve runs in a worker
        thread so a slow optimizer on one connection does not stall others.
        """
        self.connections += 1
        logging.info(f"{TERM_BLUE}✓ Connected{TERM_RESET}")
        loop = self.make_loop()
        try:
            async for message in websocket:
                reply = await asyncio.to_thread(loop.handle_message, message)
                if reply is not None:
                    await self.dispatcher.dispatch(websocket, reply)
        except websockets.exceptions.ConnectionClosedError as e:
            logging.warning(f"Connection lost: {e}")
        finally:
            await websocket.close()
            logging.info("Disconnected")

    async def wait_ready(self) -> None:
        """Wait until the server is listening."""
        while self._ready is None:
            await asyncio.sleep(0)
        await self._ready.wait()

    async def run(self) -> None:
        """Listen and serve until stop() is called.

        Raises:
            OSError: If the port cannot be bound.
        """
        self._stop = asyncio.Event()
        self._ready = asyncio.Event()
        async with serve(self.handle_connection, self.host, self.port) as server:
            self.bound_port = next(iter(server.sockets)).getsockname()[1]
            logging.info(f"{TERM_BLUE}Listening to port {self.bound_port}{TERM_RESET}")
            self._ready.set()
            await self._stop.wait()

    def stop(self) -> None:
        """Signal the server to shut down."""
        if self._stop is not None:
            self._stop.set()


async def main(
    host: str = WS_HOST,
    port: int = WS_PORT,
    latency_seconds: float = ACTUATION_LATENCY_SECONDS,
    max_steering_angle: float = MAX_STEERING_ANGLE_RAD,
    record: bool = False,
    solver_factory: Optional[Callable[[], Solver]] = None,
) -> None:
    """Main entry point for the control server.

    Creates a ControlServer, sets up signal handlers for graceful shutdown,
    and serves until interrupted.

    Args:
        host: Interface to listen on.
        port: Port to listen on.
        latency_seconds: Actuation latency applied to steer replies.
        max_steering_angle: Steering angle mapped to +/-1 (radians).
        record: If True, write every cycle to results/run_*/cycles.csv.
        solver_factory: Builds one optimizer per connection (default: a
            KinematicMPC bounded by max_steering_angle).
    """
    recorder = CycleRecorder() if record else None
    if recorder is not None:
        recorder.setup()

    server = ControlServer(
        host=host,
        port=port,
        latency_seconds=latency_seconds,
        max_steering_angle=max_steering_angle,
        solver_factory=solver_factory,
        recorder=recorder,
    )

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        """Handle shutdown signals (SIGINT, SIGTERM)."""
        logging.info("\nShutdown signal received...")
        server.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await server.run()
    finally:
        if recorder is not None:
            recorder.cleanup()
