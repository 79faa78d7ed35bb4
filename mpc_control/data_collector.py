"""Data collection and CSV logging for MPC control runs.

This module provides CSV data logging for:
- Control cycles (status, tracking errors, commands, solve time)
- Trajectories (predicted MPC path and reference waypoints, vehicle frame)
- Run summary (cycle counts per status, mean absolute cte)
"""

import csv
import os
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, TextIO

from .config import RESULTS_DIR, TERM_BLUE, TERM_RESET
from .controller import CycleResult


class DataCollector:
    """Manages CSV file creation and logging for control runs.

    This class handles all data logging responsibilities:
    - Creates timestamped output directories
    - Initializes CSV files with headers
    - Writes per-cycle control data and trajectories
    - Writes a summary and closes files on shutdown

    Attributes:
        run_dir: Directory path for this run's output files.
        cycle_csv_file: File handle for cycle data CSV.
        trajectory_csv_file: File handle for trajectory CSV.
        summary_output_path: Path for the run summary text file.
    """

    def __init__(self, output_dir: str = ".", run_dir: Optional[str] = None) -> None:
        """Initialize the data collector.

        Args:
            output_dir: Base directory for output files (default: current directory).
            run_dir: Optional specific run directory. If None, creates timestamped
                directory. Can also be set via RUN_DIR environment variable.

        Raises:
            ValueError: If output_dir is not a valid directory.
        """
        output_path = Path(output_dir)
        if output_path.exists() and not output_path.is_dir():
            raise ValueError(f"Output path exists but is not a directory: {output_dir}")

        self.cycle_csv_file: Optional[TextIO] = None
        self.cycle_csv_writer: Any = None
        self.trajectory_csv_file: Optional[TextIO] = None
        self.trajectory_csv_writer: Any = None

        # Running statistics for the summary
        self.status_counts: Counter = Counter()
        self.abs_cte_sum: float = 0.0
        self.cte_samples: int = 0

        if run_dir:
            self.run_dir: Path = Path(run_dir)
        elif env_run_dir := os.environ.get("RUN_DIR"):
            self.run_dir = Path(env_run_dir)
        else:
            # Create timestamped directory: results/run_YYYYMMDD_HHMMSS/
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.run_dir = output_path / RESULTS_DIR / f"run_{timestamp}"

        self.run_dir.mkdir(parents=True, exist_ok=True)

        self.cycle_output_path: Path = self.run_dir / "cycle_data.csv"
        self.trajectory_output_path: Path = self.run_dir / "trajectory_data.csv"
        self.summary_output_path: Path = self.run_dir / "summary.txt"

    def setup(self) -> None:
        """Initialize CSV files with headers.

        Must be called before writing data.
        """
        self.cycle_csv_file = open(self.cycle_output_path, "w", newline="")
        self.cycle_csv_writer = csv.writer(self.cycle_csv_file)
        self.cycle_csv_writer.writerow(
            [
                "timestamp",
                "session",
                "cycle",
                "status",
                "speed",
                "cte",
                "epsi",
                "steering_angle",
                "throttle",
                "poly_degree",
                "solve_time_ms",
            ]
        )
        self.cycle_csv_file.flush()

        self.trajectory_csv_file = open(self.trajectory_output_path, "w", newline="")
        self.trajectory_csv_writer = csv.writer(self.trajectory_csv_file)
        self.trajectory_csv_writer.writerow(
            ["timestamp", "session", "cycle", "kind", "index", "x", "y"]
        )
        self.trajectory_csv_file.flush()

        print(f"{TERM_BLUE}✓ Initialized data collection to {self.run_dir}/{TERM_RESET}")

    def log_cycle(self, timestamp: float, session: int, cycle: int, result: CycleResult) -> None:
        """Log one control cycle to CSV.

        Args:
            timestamp: Wall clock time of the cycle (seconds).
            session: Session (connection) number.
            cycle: Cycle number within the session.
            result: Control loop result for the cycle.
        """
        errors = result.errors
        command = result.command
        self.cycle_csv_writer.writerow(
            [
                timestamp,
                session,
                cycle,
                result.status.value,
                result.speed,
                errors.cte if errors is not None else "",
                errors.epsi if errors is not None else "",
                command.steering if command is not None else "",
                command.throttle if command is not None else "",
                result.poly_degree,
                f"{result.solve_time_ms:.3f}",
            ]
        )
        if self.cycle_csv_file:
            self.cycle_csv_file.flush()

        self.status_counts[result.status.value] += 1
        if errors is not None:
            self.abs_cte_sum += abs(errors.cte)
            self.cte_samples += 1

        self.log_trajectory(timestamp, session, cycle, "mpc", result.mpc_x, result.mpc_y)
        self.log_trajectory(timestamp, session, cycle, "reference", result.next_x, result.next_y)

    def log_trajectory(
        self,
        timestamp: float,
        session: int,
        cycle: int,
        kind: str,
        xs: List[float],
        ys: List[float],
    ) -> None:
        """Log a vehicle-frame trajectory to CSV, one row per point.

        Args:
            timestamp: Wall clock time of the cycle (seconds).
            session: Session (connection) number.
            cycle: Cycle number within the session.
            kind: "mpc" for the predicted path, "reference" for waypoints.
            xs: Point x coordinates.
            ys: Point y coordinates.
        """
        for i, (x, y) in enumerate(zip(xs, ys)):
            self.trajectory_csv_writer.writerow([timestamp, session, cycle, kind, i, x, y])
        if self.trajectory_csv_file:
            self.trajectory_csv_file.flush()

    def write_summary(self) -> None:
        """Write cycle counts and mean |cte| to the summary file."""
        total = sum(self.status_counts.values())
        with open(self.summary_output_path, "w") as f:
            f.write(f"cycles: {total}\n")
            for status, count in sorted(self.status_counts.items()):
                f.write(f"{status}: {count}\n")
            if self.cte_samples:
                f.write(f"mean_abs_cte: {self.abs_cte_sum / self.cte_samples:.6f}\n")

    def cleanup(self) -> None:
        """Write the summary, close all CSV files and log final output location."""
        self.write_summary()
        if self.cycle_csv_file:
            self.cycle_csv_file.close()
        if self.trajectory_csv_file:
            self.trajectory_csv_file.close()

        print(f"{TERM_BLUE}✓ Saved control data to {self.run_dir}/{TERM_RESET}")

    def __enter__(self) -> "DataCollector":
        """Context manager entry point.

        Returns:
            Self reference for use in with statement.
        """
        self.setup()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit point - ensures cleanup is called."""
        self.cleanup()
