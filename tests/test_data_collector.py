"""
Tests for CSV run recording.
"""

import csv

from mpc_control.actuator import ActuatorCommand
from mpc_control.controller import CycleResult, CycleStatus
from mpc_control.data_collector import DataCollector
from mpc_control.estimator import TrackingErrors


def read_rows(path):
    with open(path, newline="") as f:
        return list(csv.DictReader(f))


def make_ok_result(cte=-0.5):
    return CycleResult(
        status=CycleStatus.OK,
        command=ActuatorCommand(steering=-0.2, throttle=0.4),
        errors=TrackingErrors(cte=cte, epsi=0.01, desired_heading=0.0),
        speed=22.0,
        poly_degree=3,
        solve_time_ms=12.5,
        mpc_x=[0.0, 2.0, 4.0],
        mpc_y=[0.0, 0.1, 0.3],
        next_x=[10.0, 20.0],
        next_y=[1.0, 1.0],
    )


def test_creates_timestamped_run_directory(tmp_path, monkeypatch):
    """Default location is results/run_YYYYMMDD_HHMMSS under the output directory."""
    monkeypatch.delenv("RUN_DIR", raising=False)
    collector = DataCollector(output_dir=str(tmp_path))

    assert collector.run_dir.parent == tmp_path / "results"
    assert collector.run_dir.name.startswith("run_")
    assert collector.run_dir.is_dir()


def test_run_dir_from_environment(tmp_path, monkeypatch):
    """RUN_DIR overrides the timestamped directory."""
    target = tmp_path / "custom"
    monkeypatch.setenv("RUN_DIR", str(target))
    collector = DataCollector(output_dir=str(tmp_path))
    assert collector.run_dir == target
    assert target.is_dir()


def test_logs_cycles_and_trajectories(tmp_path):
    """One row per cycle; one row per trajectory point."""
    with DataCollector(run_dir=str(tmp_path / "run")) as collector:
        collector.log_cycle(100.0, 1, 1, make_ok_result())
        collector.log_cycle(
            100.1, 1, 2, CycleResult(status=CycleStatus.INVALID_INPUT, message="bad")
        )

    cycles = read_rows(collector.cycle_output_path)
    assert len(cycles) == 2
    assert cycles[0]["status"] == "ok"
    assert float(cycles[0]["cte"]) == -0.5
    assert float(cycles[0]["steering_angle"]) == -0.2
    assert cycles[0]["poly_degree"] == "3"
    assert cycles[1]["status"] == "invalid_input"
    assert cycles[1]["cte"] == ""
    assert cycles[1]["steering_angle"] == ""

    points = read_rows(collector.trajectory_output_path)
    kinds = [row["kind"] for row in points]
    assert kinds.count("mpc") == 3
    assert kinds.count("reference") == 2
    assert all(row["cycle"] == "1" for row in points)


def test_summary(tmp_path):
    """Summary counts cycles per status and averages |cte|."""
    collector = DataCollector(run_dir=str(tmp_path / "run"))
    collector.setup()
    collector.log_cycle(1.0, 1, 1, make_ok_result(cte=-1.0))
    collector.log_cycle(2.0, 1, 2, make_ok_result(cte=3.0))
    collector.log_cycle(3.0, 1, 3, CycleResult(status=CycleStatus.DIVERGED_ZERO))
    collector.cleanup()

    summary = collector.summary_output_path.read_text()
    assert "cycles: 3" in summary
    assert "ok: 2" in summary
    assert "diverged_zero: 1" in summary
    assert "mean_abs_cte: 2.000000" in summary
