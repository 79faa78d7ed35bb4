"""
Tests for the per-session control loop.
"""

import dataclasses
import math
from unittest.mock import MagicMock

import numpy as np
import pytest

from mpc_control.actuator import ZERO_COMMAND
from mpc_control.config import MPCConfig
from mpc_control.controller import CycleStatus, MPCController
from mpc_control.exceptions import SolverDivergence
from mpc_control.mpc import HorizonSolution, WarmStart
from mpc_control.options import ControllerOptions, DivergencePolicy
from mpc_control.telemetry import Telemetry


def make_config(**overrides):
    """Default configuration with a solver budget that does not depend on machine speed."""
    base = dataclasses.replace(
        MPCConfig(), solver_max_cpu_time=5.0, solver_max_iter=500, latency_seconds=0.0
    )
    return dataclasses.replace(base, **overrides).validate()


def make_telemetry(ptsy=(0.0, 0.0, 0.0, 0.0), speed=20.0, **overrides):
    fields = dict(
        ptsx=[10.0, 20.0, 30.0, 40.0],
        ptsy=list(ptsy),
        x=0.0,
        y=0.0,
        psi=0.0,
        speed=speed,
    )
    fields.update(overrides)
    return Telemetry(**fields)


def make_solution(delta0=0.1, a0=0.2, horizon=3):
    steps = horizon - 1
    zeros = np.zeros(horizon)
    return HorizonSolution(
        x=np.arange(horizon, dtype=float),
        y=zeros.copy(),
        psi=zeros.copy(),
        v=zeros.copy(),
        cte=zeros.copy(),
        epsi=zeros.copy(),
        delta=np.full(steps, delta0),
        a=np.full(steps, a0),
    )


def make_stub_optimizer(*outcomes):
    """Optimizer double returning solutions or raising, in order."""
    optimizer = MagicMock()
    optimizer.solve.side_effect = [
        outcome if isinstance(outcome, Exception) else (outcome, WarmStart(outcome.delta, outcome.a))
        for outcome in outcomes
    ]
    return optimizer


@pytest.fixture(scope="module")
def controller():
    return MPCController(config=make_config())


def test_straight_path(controller):
    """Waypoints straight ahead: no steering, throttle toward v_ref."""
    controller.reset()
    result = controller.process(make_telemetry(speed=20.0))

    assert result.status is CycleStatus.OK
    assert result.errors.cte == pytest.approx(0.0, abs=1e-6)
    assert result.errors.epsi == pytest.approx(0.0, abs=1e-6)
    assert result.command.steering == pytest.approx(0.0, abs=1e-2)
    # 20 is below the reference speed
    assert result.command.throttle > 0.0


def test_offset_path(controller):
    """Path 5 m to the left: cte is -5, steering turns left (negative in simulator units)."""
    controller.reset()
    result = controller.process(make_telemetry(ptsy=(5.0, 5.0, 5.0, 5.0), speed=10.0))

    assert result.status is CycleStatus.OK
    assert result.errors.cte == pytest.approx(-5.0, abs=1e-6)
    assert result.command.steering < 0.0
    assert -1.0 <= result.command.steering <= 1.0


def test_rotated_global_pose(controller):
    """Same straight-ahead scenario with the vehicle elsewhere facing +y."""
    controller.reset()
    telemetry = make_telemetry(
        ptsx=[100.0, 100.0, 100.0, 100.0],
        ptsy=[60.0, 70.0, 80.0, 90.0],
        x=100.0,
        y=50.0,
        psi=math.pi / 2 + 4 * math.pi,
    )
    result = controller.process(telemetry)

    assert result.status is CycleStatus.OK
    assert result.errors.cte == pytest.approx(0.0, abs=1e-6)
    assert result.errors.epsi == pytest.approx(0.0, abs=1e-6)
    assert result.command.steering == pytest.approx(0.0, abs=1e-2)
    np.testing.assert_allclose(result.next_x, [10.0, 20.0, 30.0, 40.0], atol=1e-9)
    np.testing.assert_allclose(result.next_y, 0.0, atol=1e-9)


def test_visualization_payload(controller):
    """Steer payload carries the command plus predicted and reference paths."""
    controller.reset()
    result = controller.process(make_telemetry(ptsy=(1.0, 1.5, 2.0, 2.5)))
    payload = result.to_payload()

    assert set(payload) == {"steering_angle", "throttle", "mpc_x", "mpc_y", "next_x", "next_y"}
    assert len(payload["mpc_x"]) == controller.config.horizon
    assert len(payload["mpc_y"]) == controller.config.horizon
    assert payload["next_x"] == pytest.approx([10.0, 20.0, 30.0, 40.0])
    assert payload["next_y"] == pytest.approx([1.0, 1.5, 2.0, 2.5])


def test_warm_start_is_carried_between_cycles(controller):
    """A converged solve leaves a warm start for the next cycle."""
    controller.reset()
    controller.process(make_telemetry())
    assert controller.warm_start is not None
    assert len(controller.warm_start.delta) == controller.config.horizon - 1


def test_degenerate_waypoints_skip_cycle():
    """All waypoints at one point: fit fails, no command, manual acknowledgment."""
    controller = MPCController(config=make_config(), optimizer=make_stub_optimizer())
    result = controller.process(make_telemetry(ptsx=[5.0, 5.0, 5.0], ptsy=[1.0, 1.0, 1.0]))

    assert result.status is CycleStatus.FIT_FAILURE
    assert result.command is None
    assert result.manual
    controller.optimizer.solve.assert_not_called()
    with pytest.raises(ValueError):
        result.to_payload()


def test_hold_last_policy_resends_previous_command():
    """Divergence after a good cycle repeats the last command and drops the warm start."""
    optimizer = make_stub_optimizer(make_solution(delta0=0.1), SolverDivergence("budget"))
    controller = MPCController(
        config=make_config(),
        options=ControllerOptions(divergence_policy=DivergencePolicy.HOLD_LAST),
        optimizer=optimizer,
    )

    first = controller.process(make_telemetry())
    second = controller.process(make_telemetry())

    assert first.status is CycleStatus.OK
    assert second.status is CycleStatus.DIVERGED_HOLD
    assert second.command == first.command
    assert controller.warm_start is None


def test_hold_last_without_history_sends_zero():
    """Nothing to hold on the first cycle: zero command."""
    controller = MPCController(
        config=make_config(),
        options=ControllerOptions(divergence_policy=DivergencePolicy.HOLD_LAST),
        optimizer=make_stub_optimizer(SolverDivergence("budget")),
    )
    result = controller.process(make_telemetry())

    assert result.status is CycleStatus.DIVERGED_ZERO
    assert result.command == ZERO_COMMAND


def test_zero_policy():
    """Zero policy ignores the previous command."""
    controller = MPCController(
        config=make_config(),
        options=ControllerOptions(divergence_policy=DivergencePolicy.ZERO),
        optimizer=make_stub_optimizer(make_solution(), SolverDivergence("budget")),
    )
    controller.process(make_telemetry())
    result = controller.process(make_telemetry())

    assert result.status is CycleStatus.DIVERGED_ZERO
    assert result.command == ZERO_COMMAND
    assert result.to_payload()["steering_angle"] == 0.0


def test_propagate_policy_raises():
    """Propagate hands the divergence to the caller."""
    controller = MPCController(
        config=make_config(),
        options=ControllerOptions(divergence_policy=DivergencePolicy.PROPAGATE),
        optimizer=make_stub_optimizer(SolverDivergence("budget")),
    )
    with pytest.raises(SolverDivergence):
        controller.process(make_telemetry())


def test_warm_start_passed_only_when_enabled():
    """Cold-start option never seeds the solver."""
    optimizer = make_stub_optimizer(make_solution(), make_solution())
    controller = MPCController(
        config=make_config(),
        options=ControllerOptions(use_warm_start=False),
        optimizer=optimizer,
    )
    controller.process(make_telemetry())
    controller.process(make_telemetry())

    for call in optimizer.solve.call_args_list:
        assert call.args[2] is None


def test_warm_start_passed_when_enabled():
    """The second solve gets the plan returned by the first."""
    optimizer = make_stub_optimizer(make_solution(delta0=0.3), make_solution())
    controller = MPCController(config=make_config(), optimizer=optimizer)
    controller.process(make_telemetry())
    controller.process(make_telemetry())

    seeded = optimizer.solve.call_args_list[1].args[2]
    assert list(seeded.delta) == [0.3, 0.3]


def test_real_solver_divergence_uses_policy():
    """An exhausted iteration budget on the real solver falls back to zero."""
    controller = MPCController(
        config=make_config(solver_max_iter=1),
        options=ControllerOptions(divergence_policy=DivergencePolicy.ZERO),
    )
    result = controller.process(make_telemetry(ptsy=(5.0, 5.0, 5.0, 5.0), speed=10.0))

    assert result.status is CycleStatus.DIVERGED_ZERO
    assert result.command == ZERO_COMMAND
