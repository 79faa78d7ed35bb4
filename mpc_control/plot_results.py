#!/usr/bin/env python3
"""
Visualize recorded MPC control runs.

Loads cycle_data.csv and trajectory_data.csv from a run directory and plots
tracking errors, actuator commands with solve times, and the last predicted
trajectory against the reference waypoints.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure

from .config import RESULTS_DIR, SOLVER_MAX_CPU_TIME, TERM_BLUE, TERM_RESET
from .plot_styles import (
    PLOT_BLUE,
    PLOT_ORANGE,
    PLOT_TAUPE,
    PLOT_YELLOW_ORANGE,
    add_branded_legend,
    load_csv_rows,
    load_csv_to_dict,
    save_figure,
    style_axis,
)


def plot_tracking_errors(cycle_data: Dict[str, np.ndarray], title: str = "Tracking Errors") -> Figure:
    """Plot cross-track and orientation error per cycle.

    Args:
        cycle_data: Columns of cycle_data.csv.
        title: Figure title.

    Returns:
        Matplotlib figure object.
    """
    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
    fig.suptitle(title, fontsize=14, fontweight="bold")

    cycles = np.arange(len(cycle_data["cte"]))

    ax1.plot(cycles, cycle_data["cte"], color=PLOT_ORANGE, label="cte")
    ax1.axhline(0.0, color=PLOT_TAUPE, linewidth=0.8)
    style_axis(ax1, title="Cross-track error", ylabel="cte (m)")
    add_branded_legend(ax1)

    ax2.plot(cycles, cycle_data["epsi"], color=PLOT_BLUE, label="epsi")
    ax2.axhline(0.0, color=PLOT_TAUPE, linewidth=0.8)
    style_axis(ax2, title="Orientation error", xlabel="Cycle", ylabel="epsi (rad)")
    add_branded_legend(ax2)

    fig.tight_layout()
    return fig


def plot_actuators(cycle_data: Dict[str, np.ndarray], title: str = "Actuators") -> Figure:
    """Plot normalized steering, throttle and solver time per cycle.

    Args:
        cycle_data: Columns of cycle_data.csv.
        title: Figure title.

    Returns:
        Matplotlib figure object.
    """
    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
    fig.suptitle(title, fontsize=14, fontweight="bold")

    cycles = np.arange(len(cycle_data["steering_angle"]))

    ax1.plot(cycles, cycle_data["steering_angle"], color=PLOT_ORANGE, label="steering")
    ax1.plot(cycles, cycle_data["throttle"], color=PLOT_BLUE, label="throttle")
    ax1.set_ylim(-1.1, 1.1)
    style_axis(ax1, title="Commands", ylabel="Normalized")
    add_branded_legend(ax1)

    ax2.plot(cycles, cycle_data["solve_time_ms"], color=PLOT_YELLOW_ORANGE, label="solve time")
    ax2.axhline(
        SOLVER_MAX_CPU_TIME * 1000.0, color=PLOT_TAUPE, linestyle="--", label="solver budget"
    )
    style_axis(ax2, title="Solver", xlabel="Cycle", ylabel="Time (ms)")
    add_branded_legend(ax2)

    fig.tight_layout()
    return fig


def plot_last_trajectory(trajectory_csv: Path, title: str = "Last Cycle") -> Optional[Figure]:
    """Plot the last recorded predicted path against its reference waypoints.

    Args:
        trajectory_csv: Path to trajectory_data.csv.
        title: Figure title.

    Returns:
        Matplotlib figure object, or None if no trajectory was recorded.
    """
    rows = load_csv_rows(trajectory_csv)
    if not rows:
        return None

    last = (rows[-1]["session"], rows[-1]["cycle"])
    points: Dict[str, list] = {"mpc": [], "reference": []}
    for row in rows:
        if (row["session"], row["cycle"]) == last and row["kind"] in points:
            points[row["kind"]].append((float(row["x"]), float(row["y"])))

    fig, ax = plt.subplots(figsize=(10, 6))
    fig.suptitle(title, fontsize=14, fontweight="bold")

    if points["reference"]:
        ref = np.array(points["reference"])
        ax.plot(ref[:, 0], ref[:, 1], "o-", color=PLOT_YELLOW_ORANGE, label="reference")
    if points["mpc"]:
        mpc = np.array(points["mpc"])
        ax.plot(mpc[:, 0], mpc[:, 1], "o-", color=PLOT_BLUE, label="predicted")
    ax.plot([0.0], [0.0], marker=">", color=PLOT_ORANGE, markersize=12, label="vehicle")

    style_axis(ax, title=f"Session {last[0]}, cycle {last[1]}", xlabel="x (m)", ylabel="y (m)")
    ax.set_aspect("equal", adjustable="datalim")
    add_branded_legend(ax)

    fig.tight_layout()
    return fig


def plot_run_summary(run_dir: Path, save_plots: bool = False, show_plots: bool = True) -> None:
    """Generate summary plots for a complete run.

    Args:
        run_dir: Directory containing cycle_data.csv and trajectory_data.csv.
        save_plots: If True, save plots to run directory.
        show_plots: If True, display plots interactively.

    Raises:
        FileNotFoundError: If required CSV files are not found.
    """
    cycle_data = load_csv_to_dict(run_dir / "cycle_data.csv")
    run_name = run_dir.name

    figures = {
        "tracking_errors.png": plot_tracking_errors(cycle_data, title=f"{run_name} - Tracking Errors"),
        "actuators.png": plot_actuators(cycle_data, title=f"{run_name} - Actuators"),
    }
    trajectory_fig = plot_last_trajectory(
        run_dir / "trajectory_data.csv", title=f"{run_name} - Last Cycle"
    )
    if trajectory_fig is not None:
        figures["last_trajectory.png"] = trajectory_fig

    if save_plots:
        for filename, fig in figures.items():
            save_figure(fig, run_dir / filename)

    if show_plots:
        plt.show()
    else:
        for fig in figures.values():
            plt.close(fig)


def find_latest_run(results_dir: Path) -> Path:
    """Find the most recent run directory.

    Args:
        results_dir: Path to the results directory.

    Returns:
        Path to the most recent run directory.

    Raises:
        FileNotFoundError: If no run directories are found.
    """
    if not results_dir.exists():
        raise FileNotFoundError(f"Results directory not found: {results_dir}")

    run_dirs = sorted(
        [d for d in results_dir.iterdir() if d.is_dir() and d.name.startswith("run_")]
    )

    if not run_dirs:
        raise FileNotFoundError(f"No run directories found in {results_dir}")

    return run_dirs[-1]


def list_available_runs(results_dir: Path) -> None:
    """List all available run directories.

    Args:
        results_dir: Path to the results directory.
    """
    if not results_dir.exists():
        logging.error(f"Results directory not found: {results_dir}")
        return

    run_dirs = sorted(
        [d for d in results_dir.iterdir() if d.is_dir() and d.name.startswith("run_")]
    )

    if not run_dirs:
        logging.info(f"No run directories found in {results_dir}")
        return

    logging.info("Available runs:")
    for i, run_dir in enumerate(run_dirs, 1):
        logging.info(f"  {i}. {run_dir.name}")


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the plotting script."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    parser = argparse.ArgumentParser(
        description="Visualize recorded MPC control runs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Plot the most recent run
  python -m mpc_control.plot_results

  # Plot a specific run by name
  python -m mpc_control.plot_results --run run_20251114_184704

  # Save figures to the run directory without opening windows
  python -m mpc_control.plot_results --save --no-show

  # List all available runs
  python -m mpc_control.plot_results --list
        """,
    )
    parser.add_argument(
        "--run",
        type=str,
        default=None,
        help="Name of the run directory to plot (e.g., run_20251114_184704). "
        "If not specified, plots the most recent run.",
    )
    parser.add_argument(
        "--results-dir",
        type=str,
        default=RESULTS_DIR,
        help=f"Path to the results directory (default: {RESULTS_DIR})",
    )
    parser.add_argument(
        "--save", action="store_true", help="Save plots as PNG files in the run directory"
    )
    parser.add_argument(
        "--no-show",
        action="store_true",
        help="Do not display plots interactively (useful with --save)",
    )
    parser.add_argument("--list", action="store_true", help="List all available runs and exit")

    args = parser.parse_args(argv)
    results_dir = Path(args.results_dir)

    if args.list:
        list_available_runs(results_dir)
        return 0

    if args.run:
        run_dir = results_dir / args.run
        if not run_dir.exists():
            logging.error(f"Error: Run directory not found: {run_dir}")
            list_available_runs(results_dir)
            return 1
    else:
        try:
            run_dir = find_latest_run(results_dir)
            logging.info(f"{TERM_BLUE}Plotting most recent run: {run_dir}{TERM_RESET}")
        except FileNotFoundError as e:
            logging.error(f"Error: {e}")
            return 1

    try:
        plot_run_summary(run_dir=run_dir, save_plots=args.save, show_plots=not args.no_show)
    except FileNotFoundError as e:
        logging.error(f"Error: {e}")
        logging.info(f"Make sure {run_dir} contains cycle_data.csv and trajectory_data.csv")
        return 1

    if args.save:
        logging.info(f"{TERM_BLUE}✓ Saved plots to {run_dir}/{TERM_RESET}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
