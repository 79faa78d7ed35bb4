"""
Tests for session frame handling and the connection loop.
"""

import asyncio
import csv
import dataclasses
import json
from unittest.mock import MagicMock

import numpy as np
from websockets.exceptions import ConnectionClosedError

from mpc_control.config import MPCConfig
from mpc_control.controller import CycleStatus, MPCController
from mpc_control.exceptions import SolverDivergence
from mpc_control.mpc import HorizonSolution, WarmStart
from mpc_control.options import ControllerOptions, DivergencePolicy
from mpc_control.server import ControlSession, MPCServer
from mpc_control.telemetry import MANUAL_FRAME

TELEMETRY = {
    "ptsx": [10.0, 20.0, 30.0, 40.0],
    "ptsy": [0.0, 0.0, 0.0, 0.0],
    "x": 0.0,
    "y": 0.0,
    "psi": 0.0,
    "speed": 20.0,
}


def make_config(**overrides):
    base = dataclasses.replace(
        MPCConfig(), solver_max_cpu_time=5.0, solver_max_iter=500, latency_seconds=0.01
    )
    return dataclasses.replace(base, **overrides).validate()


def telemetry_frame(**overrides):
    payload = dict(TELEMETRY)
    payload.update(overrides)
    return "42" + json.dumps(["telemetry", payload])


def make_session(*outcomes, policy=DivergencePolicy.HOLD_LAST):
    """Session whose optimizer returns a fixed plan or raises, in order."""
    optimizer = MagicMock()
    side_effect = []
    for outcome in outcomes:
        if isinstance(outcome, Exception):
            side_effect.append(outcome)
        else:
            side_effect.append((outcome, WarmStart(outcome.delta, outcome.a)))
    optimizer.solve.side_effect = side_effect

    controller = MPCController(
        config=make_config(),
        options=ControllerOptions(divergence_policy=policy),
        optimizer=optimizer,
    )
    return ControlSession(1, controller=controller)


def make_solution(delta0=0.05, a0=0.5):
    zeros = np.zeros(3)
    return HorizonSolution(
        x=np.array([0.0, 2.0, 4.0]),
        y=zeros.copy(),
        psi=zeros.copy(),
        v=zeros.copy(),
        cte=zeros.copy(),
        epsi=zeros.copy(),
        delta=np.full(2, delta0),
        a=np.full(2, a0),
    )


class FakeWebSocket:
    """Async-iterable connection that records what is sent back."""

    def __init__(self, messages, linger=0.3, error=None):
        self.messages = messages
        self.linger = linger
        self.error = error
        self.sent = []

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error
        # Keep the connection open long enough for delayed commands
        await asyncio.sleep(self.linger)

    async def send(self, message):
        self.sent.append(message)


def test_telemetry_frame_produces_delayed_steer():
    """A valid telemetry frame is answered with a steer event subject to latency."""
    session = make_session(make_solution(delta0=0.05, a0=0.5))
    outcome = session.handle_frame(telemetry_frame())

    assert outcome.delayed
    assert outcome.result.status is CycleStatus.OK
    assert outcome.reply.startswith('42["steer",')

    event, payload = json.loads(outcome.reply[2:])
    assert event == "steer"
    assert set(payload) == {"steering_angle", "throttle", "mpc_x", "mpc_y", "next_x", "next_y"}
    assert payload["throttle"] == 0.5
    assert payload["steering_angle"] < 0.0
    assert session.cycle == 1


def test_null_frame_gets_manual_reply():
    """No data: manual acknowledgment, sent immediately, no cycle."""
    session = make_session()
    outcome = session.handle_frame('42["telemetry",null]')

    assert outcome.reply == MANUAL_FRAME
    assert not outcome.delayed
    assert outcome.result is None
    assert session.cycle == 0


def test_non_event_and_other_events_are_ignored():
    """Transport chatter and unknown events get no reply."""
    session = make_session()
    assert session.handle_frame("2").reply is None
    assert session.handle_frame('42["ping",{}]').reply is None
    assert session.cycle == 0


def test_invalid_telemetry_gets_manual_reply():
    """Missing fields skip the cycle without raising."""
    session = make_session()
    frame = "42" + json.dumps(["telemetry", {"ptsx": [1.0, 2.0], "ptsy": [0.0, 0.0]}])
    outcome = session.handle_frame(frame)

    assert outcome.reply == MANUAL_FRAME
    assert outcome.result.status is CycleStatus.INVALID_INPUT
    session.controller.optimizer.solve.assert_not_called()


def test_propagated_divergence_gets_manual_reply():
    """Propagate policy: the session answers with manual mode."""
    session = make_session(SolverDivergence("budget"), policy=DivergencePolicy.PROPAGATE)
    outcome = session.handle_frame(telemetry_frame())

    assert outcome.reply == MANUAL_FRAME
    assert not outcome.delayed
    assert outcome.result.status is CycleStatus.DIVERGED_ZERO


def test_held_command_is_sent_on_divergence():
    """Hold-last policy: the previous steer command is sent again."""
    session = make_session(make_solution(delta0=0.1), SolverDivergence("budget"))
    first = session.handle_frame(telemetry_frame())
    second = session.handle_frame(telemetry_frame())

    assert second.delayed
    assert second.result.status is CycleStatus.DIVERGED_HOLD
    assert json.loads(second.reply[2:])[1]["steering_angle"] == json.loads(first.reply[2:])[1]["steering_angle"]


def test_connection_loop_replies_in_order(tmp_path, monkeypatch):
    """Manual replies go out immediately, steer commands after the latency; cycles are recorded."""
    monkeypatch.delenv("RUN_DIR", raising=False)
    websocket = FakeWebSocket([telemetry_frame(), '42["telemetry",null]'])

    config = make_config(latency_seconds=0.15)
    with MPCServer(config=config, options=ControllerOptions(), output_dir=str(tmp_path)) as server:
        asyncio.run(server.handle_connection(websocket))

    assert len(websocket.sent) == 2
    assert websocket.sent[0] == MANUAL_FRAME
    assert websocket.sent[1].startswith('42["steer",')
    assert server.session_count == 1

    with open(server.data_collector.cycle_output_path, newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 1
    assert rows[0]["status"] == "ok"


def test_connection_loop_survives_abnormal_close():
    """A dropped connection ends the session without raising."""
    websocket = FakeWebSocket(
        ['42["telemetry",null]'],
        error=ConnectionClosedError(None, None),
    )
    server = MPCServer(config=make_config(), options=ControllerOptions(record=False))

    asyncio.run(server.handle_connection(websocket))

    assert websocket.sent == [MANUAL_FRAME]
    assert server.data_collector is None
