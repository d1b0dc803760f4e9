"""CSV recording of control cycles.

Each processed telemetry event is written as one row of cycles.csv in a
timestamped run directory (results/run_YYYYMMDD_HHMMSS/), which
plot_results.py reads back for post-run analysis.
"""

import csv
import math
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, TextIO

from .config import RESULTS_DIR, TERM_BLUE, TERM_RESET
from .pipeline import CycleRecord

CYCLE_COLUMNS = ["timestamp", "outcome", "cte", "epsi", "steering", "throttle", "solve_ms"]


class CycleRecorder:
    """Manages the cycle CSV file for one server run.

    Rows may arrive from several connections' worker threads, so writes are
    serialized with a lock.

    Attributes:
        run_dir: Directory path for this run's output files.
        cycles_output_path: Path of the cycle CSV file.
        rows_written: Number of cycle rows written so far.
    """

    def __init__(self, output_dir: str = RESULTS_DIR, run_dir: Optional[str] = None) -> None:
        """Initialize the recorder.

        Args:
            output_dir: Base results directory (default: config RESULTS_DIR).
            run_dir: Optional specific run directory. If None, creates a
                timestamped directory. Can also be set via RUN_DIR environment
                variable.

        Raises:
            ValueError: If output_dir exists and is not a directory.
        """
        output_path = Path(output_dir)
        if output_path.exists() and not output_path.is_dir():
            raise ValueError(f"Output path exists but is not a directory: {output_dir}")

        if run_dir:
            self.run_dir: Path = Path(run_dir)
        elif env_run_dir := os.environ.get("RUN_DIR"):
            self.run_dir = Path(env_run_dir)
        else:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.run_dir = output_path / f"run_{timestamp}"

        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.cycles_output_path: Path = self.run_dir / "cycles.csv"

        self.cycles_csv_file: Optional[TextIO] = None
        self.cycles_csv_writer: Any = None
        self.rows_written: int = 0
        self._lock = threading.Lock()

    def setup(self) -> None:
        """Create the CSV file and write the header row."""
        self.cycles_csv_file = open(self.cycles_output_path, "w", newline="")
        self.cycles_csv_writer = csv.writer(self.cycles_csv_file)
        self.cycles_csv_writer.writerow(CYCLE_COLUMNS)
        self.cycles_csv_file.flush()

        print(f"{TERM_BLUE}✓ Recording control cycles to {self.run_dir}/{TERM_RESET}")

    def log_cycle(self, record: CycleRecord) -> None:
        """Append one cycle row. NaN fields are written as empty cells.

        Raises:
            RuntimeError: If setup() has not been called.
        """
        if self.cycles_csv_writer is None:
            raise RuntimeError("CycleRecorder.setup() must be called before logging")

        row = [record.timestamp, record.outcome]
        for value in (record.cte, record.epsi, record.steering, record.throttle, record.solve_ms):
            row.append("" if math.isnan(value) else value)

        with self._lock:
            self.cycles_csv_writer.writerow(row)
            if self.cycles_csv_file:
                self.cycles_csv_file.flush()
            self.rows_written += 1

    def cleanup(self) -> None:
        """Close the CSV file and report the output location."""
        if self.cycles_csv_file:
            self.cycles_csv_file.close()
            self.cycles_csv_file = None
            self.cycles_csv_writer = None

        print(f"{TERM_BLUE}✓ Saved {self.rows_written} cycles to {self.run_dir}/{TERM_RESET}")

    def __enter__(self) -> "CycleRecorder":
        self.setup()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.cleanup()
