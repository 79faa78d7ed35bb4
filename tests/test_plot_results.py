"""
Tests for post-run plotting.
"""

import matplotlib

matplotlib.use("Agg")

from mpc_control.actuator import ActuatorCommand  # noqa: E402
from mpc_control.controller import CycleResult, CycleStatus  # noqa: E402
from mpc_control.data_collector import DataCollector  # noqa: E402
from mpc_control.estimator import TrackingErrors  # noqa: E402
from mpc_control.plot_results import find_latest_run, main, plot_run_summary  # noqa: E402


def record_run(run_dir, cycles=5):
    with DataCollector(run_dir=str(run_dir)) as collector:
        for i in range(cycles):
            result = CycleResult(
                status=CycleStatus.OK,
                command=ActuatorCommand(steering=-0.1 * i, throttle=0.5),
                errors=TrackingErrors(cte=1.0 - 0.2 * i, epsi=0.01 * i, desired_heading=0.0),
                speed=20.0 + i,
                poly_degree=3,
                solve_time_ms=10.0 + i,
                mpc_x=[0.0, 2.0, 4.0],
                mpc_y=[0.0, 0.1 * i, 0.2 * i],
                next_x=[10.0, 20.0, 30.0],
                next_y=[1.0, 1.0, 1.0],
            )
            collector.log_cycle(float(i), 1, i + 1, result)
        collector.log_cycle(float(cycles), 1, cycles + 1, CycleResult(status=CycleStatus.FIT_FAILURE))


def test_plot_run_summary_saves_figures(tmp_path):
    """Saved plots land in the run directory."""
    run_dir = tmp_path / "results" / "run_20250101_120000"
    record_run(run_dir)

    plot_run_summary(run_dir, save_plots=True, show_plots=False)

    assert (run_dir / "tracking_errors.png").exists()
    assert (run_dir / "actuators.png").exists()
    assert (run_dir / "last_trajectory.png").exists()


def test_find_latest_run(tmp_path):
    """Run directories sort by timestamp name."""
    for name in ("run_20250101_120000", "run_20250102_080000", "other"):
        (tmp_path / name).mkdir()
    assert find_latest_run(tmp_path).name == "run_20250102_080000"


def test_main_plots_latest_run(tmp_path):
    """CLI plots the most recent run without opening windows."""
    results_dir = tmp_path / "results"
    record_run(results_dir / "run_20250101_120000")

    exit_code = main(["--results-dir", str(results_dir), "--save", "--no-show"])

    assert exit_code == 0
    assert (results_dir / "run_20250101_120000" / "actuators.png").exists()


def test_main_reports_missing_runs(tmp_path):
    """Missing results directory or run name fails with exit code 1."""
    assert main(["--results-dir", str(tmp_path / "nothing"), "--no-show"]) == 1

    (tmp_path / "results").mkdir()
    assert main(["--results-dir", str(tmp_path / "results"), "--run", "run_x", "--no-show"]) == 1
    assert main(["--results-dir", str(tmp_path / "results"), "--list"]) == 0
