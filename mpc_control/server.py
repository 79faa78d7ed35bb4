#!/usr/bin/env python3
"""
WebSocket Server for MPC Trajectory Tracking

This module provides the WebSocket server the driving simulator connects to.
Every telemetry frame runs one control cycle (frame transform, polynomial
fit, error estimation, MPC solve, actuator mapping) and the resulting steer
command is sent back after the configured actuation latency. Each connection
gets its own control session; cycles of a session are processed in arrival
order in a worker thread so one session's solve never blocks another.
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
import time
from dataclasses import dataclass
from typing import Any, Optional, Set, Union

import websockets
from websockets.exceptions import ConnectionClosed

from mpc_control.config import (
    ACTUATION_LATENCY_SECONDS,
    TERM_BLUE,
    TERM_ORANGE,
    TERM_RESET,
    WS_HOST,
    WS_PORT,
    MPCConfig,
)
from mpc_control.controller import CycleResult, CycleStatus, MPCController
from mpc_control.data_collector import DataCollector
from mpc_control.exceptions import InvalidInput, SolverDivergence
from mpc_control.options import ControllerOptions, parse_option_flags
from mpc_control.telemetry import (
    MANUAL_FRAME,
    STEER_EVENT,
    TELEMETRY_EVENT,
    Telemetry,
    decode_frame,
    encode_event,
)


class CustomFormatter(logging.Formatter):
    """Custom logging formatter that removes timestamps from INFO messages.

    This formatter provides clean console output by showing INFO messages without
    timestamps while preserving full context for WARNING, ERROR, and DEBUG messages.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record based on its level.

        Args:
            record: The log record to format.

        Returns:
            Formatted log message string.
        """
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


@dataclass
class FrameOutcome:
    """What to do with one inbound frame.

    Attributes:
        reply: Frame to send back, or None to send nothing.
        delayed: True if the reply carries a command subject to actuation latency.
        result: Control cycle result to record, if a cycle ran.
    """

    reply: Optional[str] = None
    delayed: bool = False
    result: Optional[CycleResult] = None


class ControlSession:
    """Control state for one simulator connection.

    Attributes:
        session_id: Sequential connection number.
        controller: Control loop owning this session's warm start.
        cycle: Number of telemetry cycles processed.
    """

    def __init__(
        self,
        session_id: int,
        config: Optional[MPCConfig] = None,
        options: Optional[ControllerOptions] = None,
        controller: Optional[MPCController] = None,
    ) -> None:
        self.session_id = session_id
        self.controller = controller or MPCController(config=config, options=options)
        self.cycle: int = 0

    @property
    def mapper(self):
        return self.controller.mapper

    def handle_frame(self, message: Union[str, bytes]) -> FrameOutcome:
        """Process one inbound frame synchronously.

        Never raises for bad input: malformed frames are ignored or answered
        with the manual acknowledgment.

        Args:
            message: Raw WebSocket message.

        Returns:
            FrameOutcome describing the reply and the cycle result.
        """
        frame = decode_frame(message)
        if frame is None:
            return FrameOutcome()

        if not frame.has_data:
            # Manual driving
            return FrameOutcome(reply=MANUAL_FRAME)

        if frame.event != TELEMETRY_EVENT:
            logging.debug(f"Ignoring event '{frame.event}'")
            return FrameOutcome()

        self.cycle += 1

        try:
            telemetry = Telemetry.from_payload(frame.payload)
        except InvalidInput as e:
            logging.warning(f"Session {self.session_id}: invalid telemetry: {e}")
            result = CycleResult(status=CycleStatus.INVALID_INPUT, message=str(e))
            return FrameOutcome(reply=MANUAL_FRAME, result=result)

        try:
            result = self.controller.process(telemetry)
        except SolverDivergence as e:
            logging.error(f"Session {self.session_id}: solver divergence propagated: {e}")
            result = CycleResult(
                status=CycleStatus.DIVERGED_ZERO, speed=telemetry.speed, message=str(e)
            )
            return FrameOutcome(reply=MANUAL_FRAME, result=result)

        if result.manual:
            return FrameOutcome(reply=MANUAL_FRAME, result=result)

        reply = encode_event(STEER_EVENT, result.to_payload())
        return FrameOutcome(reply=reply, delayed=True, result=result)


class MPCServer:
    """MPC control server with WebSocket communication and data logging.

    This class manages the complete serving pipeline:
    - WebSocket server the simulator connects to
    - One control session per connection
    - Deferred command release (actuation latency)
    - Data logging to CSV files

    Attributes:
        host: Interface to bind.
        config: Validated controller configuration (includes the port).
        options: Control loop options.
        data_collector: CSV logger, or None when recording is disabled.
        session_count: Number of connections accepted so far.
    """

    def __init__(
        self,
        host: str = WS_HOST,
        config: Optional[MPCConfig] = None,
        options: Optional[ControllerOptions] = None,
        output_dir: str = ".",
    ) -> None:
        """Initialize the server.

        Args:
            host: Interface to bind.
            config: Controller configuration (validated here).
            options: Control loop options.
            output_dir: Base directory for recorded runs.

        Raises:
            ValueError: If the configuration is invalid.
        """
        self.host = host
        self.config = (config or MPCConfig()).validate()
        self.options = options or ControllerOptions()
        self.data_collector: Optional[DataCollector] = (
            DataCollector(output_dir=output_dir) if self.options.record else None
        )
        self.session_count: int = 0
        self._stop_event: Optional[asyncio.Event] = None

        logging.info(f"{TERM_BLUE}Options: {self.options}{TERM_RESET}")

    def record(self, session: ControlSession, outcome: FrameOutcome) -> None:
        """Log a cycle result, if recording is enabled."""
        if self.data_collector is None or outcome.result is None:
            return
        self.data_collector.log_cycle(time.time(), session.session_id, session.cycle, outcome.result)

    async def _deliver(self, websocket: Any, session: ControlSession, reply: str) -> None:
        try:
            await session.mapper.release(reply, websocket.send)
        except ConnectionClosed:
            logging.debug(f"Session {session.session_id}: dropped command, connection closed")

    async def handle_connection(self, websocket: Any) -> None:
        """Serve one simulator connection until it closes.

        Args:
            websocket: Connected WebSocket.
        """
        self.session_count += 1
        session = ControlSession(self.session_count, config=self.config, options=self.options)
        logging.info(f"{TERM_BLUE}✓ Simulator connected (session {session.session_id}){TERM_RESET}")

        pending: Set[asyncio.Task] = set()
        try:
            async for message in websocket:
                try:
                    outcome = await asyncio.to_thread(session.handle_frame, message)
                except Exception as e:
                    logging.error(f"Unexpected error processing frame: {e}", exc_info=True)
                    outcome = FrameOutcome(reply=MANUAL_FRAME)

                self.record(session, outcome)

                if outcome.reply is None:
                    continue
                if outcome.delayed:
                    task = asyncio.create_task(self._deliver(websocket, session, outcome.reply))
                    pending.add(task)
                    task.add_done_callback(pending.discard)
                else:
                    await websocket.send(outcome.reply)

        except ConnectionClosed:
            logging.warning(f"Session {session.session_id}: connection closed by simulator")
        finally:
            for task in pending:
                task.cancel()
            logging.info(
                f"{TERM_ORANGE}✗ Disconnected (session {session.session_id}, "
                f"{session.cycle} cycles){TERM_RESET}"
            )

    async def run(self) -> None:
        """Listen for simulator connections until `stop` is called."""
        self._stop_event = asyncio.Event()
        async with websockets.serve(self.handle_connection, self.host, self.config.port):
            logging.info(f"{TERM_BLUE}Listening on {self.host}:{self.config.port}{TERM_RESET}")
            await self._stop_event.wait()

    def stop(self) -> None:
        """Signal the server to stop."""
        if self._stop_event is not None:
            self._stop_event.set()

    def __enter__(self) -> "MPCServer":
        """Context manager entry point.

        Returns:
            Self reference for use in with statement.
        """
        if self.data_collector is not None:
            self.data_collector.setup()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit point - ensures cleanup is called."""
        if self.data_collector is not None:
            self.data_collector.cleanup()


async def main(
    config: Optional[MPCConfig] = None,
    options: Optional[ControllerOptions] = None,
    host: str = WS_HOST,
    output_dir: str = ".",
) -> None:
    """Main entry point for the WebSocket server.

    Creates an MPCServer instance, sets up signal handlers for graceful
    shutdown, and serves until stopped.

    Args:
        config: Controller configuration.
        options: Control loop options.
        host: Interface to bind.
        output_dir: Base directory for recorded runs.
    """
    with MPCServer(host=host, config=config, options=options, output_dir=output_dir) as server:
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            """Handle shutdown signals (SIGINT, SIGTERM)."""
            logging.info("\nShutdown signal received...")
            server.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        await server.run()


def build_arg_parser() -> argparse.ArgumentParser:
    """Command-line arguments not covered by `parse_option_flags`."""
    parser = argparse.ArgumentParser(
        description="MPC trajectory tracking server for the driving simulator"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging with timestamps"
    )
    parser.add_argument("--host", default=WS_HOST, help=f"Interface to bind (default: {WS_HOST})")
    parser.add_argument("--port", type=int, default=WS_PORT, help=f"Port (default: {WS_PORT})")
    parser.add_argument("--v-ref", type=float, default=None, help="Reference speed override")
    parser.add_argument(
        "--latency",
        type=float,
        default=ACTUATION_LATENCY_SECONDS,
        help=f"Actuation latency in seconds (default: {ACTUATION_LATENCY_SECONDS})",
    )
    parser.add_argument(
        "--output-dir", default=".", help="Base directory for recorded runs (default: .)"
    )
    return parser


def run_cli(argv: Optional[list] = None) -> int:
    """Parse arguments, configure logging and serve.

    Returns:
        Process exit code.
    """
    options, remaining_args = parse_option_flags(argv)
    args = build_arg_parser().parse_args(remaining_args)

    setup_logging(args.verbose)

    overrides = {"port": args.port, "latency_seconds": args.latency}
    if args.v_ref is not None:
        overrides["v_ref"] = args.v_ref

    try:
        config = dataclasses.replace(MPCConfig(), **overrides).validate()
    except ValueError as e:
        logging.error(f"Invalid configuration: {e}")
        return 2

    try:
        asyncio.run(main(config=config, options=options, host=args.host, output_dir=args.output_dir))
    except OSError as e:
        logging.error(f"Failed to listen on {args.host}:{args.port}: {e}")
        return 1
    except KeyboardInterrupt:
        logging.info("\nExiting...")
    return 0


if __name__ == "__main__":
    sys.exit(run_cli())
