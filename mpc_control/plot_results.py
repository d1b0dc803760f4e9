#!/usr/bin/env python3
"""
Standalone script to visualize recorded control cycles.

Loads cycles.csv from a run directory written with `--record` and plots the
tracking errors (cte, epsi) and the commands sent (steering, throttle) over
time, marking cycles that fell back to manual or a neutral command.
"""

import argparse
import csv
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.axes import Axes
from matplotlib.figure import Figure

from .config import (
    PLOT_NEUTRAL,
    PLOT_PRIMARY,
    PLOT_SECONDARY,
    RESULTS_DIR,
    TERM_BLUE,
    TERM_RESET,
)


def load_cycles(csv_path: Path) -> Dict[str, np.ndarray]:
    """Load cycles.csv into a dictionary of numpy arrays.

    Numeric columns become float arrays (empty cells become NaN); the
    `outcome` column stays a string array.

    Raises:
        FileNotFoundError: If the CSV file does not exist.
    """
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    with open(csv_path, newline="") as f:
        reader = csv.DictReader(f)
        data: Dict[str, List] = {}
        for row in reader:
            for key, value in row.items():
                data.setdefault(key, [])
                if key == "outcome":
                    data[key].append(value)
                    continue
                try:
                    data[key].append(float(value))
                except (ValueError, TypeError):
                    data[key].append(np.nan)

    return {key: np.array(values) for key, values in data.items()}


def style_axis(ax: Axes, title: str = "", ylabel: str = "") -> None:
    """Apply consistent title, label and grid styling to an axis."""
    if title:
        ax.set_title(title, fontweight="bold")
    if ylabel:
        ax.set_ylabel(ylabel)
    ax.grid(True, alpha=0.3, linestyle="--", linewidth=0.5)
    ax.axhline(0.0, color=PLOT_NEUTRAL, linewidth=0.8, alpha=0.6)


def plot_cycles(cycles: Dict[str, np.ndarray], save_path: Optional[Path] = None) -> Figure:
    """Plot tracking errors and commands of one run.

    Args:
        cycles: Output of load_cycles().
        save_path: If given, the figure is saved there as PNG.

    Returns:
        The matplotlib figure.
    """
    t = cycles["timestamp"] - cycles["timestamp"][0] if len(cycles["timestamp"]) else cycles["timestamp"]
    fallback = cycles["outcome"] != "ok"

    fig, axes = plt.subplots(4, 1, figsize=(12, 10), sharex=True)
    fig.suptitle("Control Cycles", fontsize=14, fontweight="bold")

    panels = [
        ("cte", "Cross-Track Error", "cte"),
        ("epsi", "Heading Error", "epsi (rad)"),
        ("steering", "Steering Command", "steering [-1, 1]"),
        ("throttle", "Throttle Command", "throttle"),
    ]
    for ax, (column, title, ylabel) in zip(axes, panels):
        color = PLOT_PRIMARY if column in ("steering", "throttle") else PLOT_SECONDARY
        ax.plot(t, cycles[column], color=color, linewidth=1.5)
        style_axis(ax, title=title, ylabel=ylabel)
        for ft in t[fallback]:
            ax.axvline(ft, color=PLOT_NEUTRAL, linewidth=0.5, alpha=0.4)

    axes[-1].set_xlabel("Time (s)")
    fig.tight_layout()

    if save_path is not None:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig


def summarize(cycles: Dict[str, np.ndarray]) -> Dict[str, float]:
    """Headline numbers for a run: cycle counts, RMS errors, mean solve time."""
    ok = cycles["outcome"] == "ok"
    total = len(cycles["outcome"])
    return {
        "cycles": float(total),
        "fallbacks": float(total - int(np.sum(ok))),
        "rms_cte": float(np.sqrt(np.nanmean(cycles["cte"][ok] ** 2))) if np.any(ok) else float("nan"),
        "rms_epsi": float(np.sqrt(np.nanmean(cycles["epsi"][ok] ** 2))) if np.any(ok) else float("nan"),
        "mean_solve_ms": float(np.nanmean(cycles["solve_ms"][ok])) if np.any(ok) else float("nan"),
    }


def find_latest_run(results_dir: Path) -> Path:
    """Find the most recent run directory.

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
    """List all available run directories."""
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


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the plotting script."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    parser = argparse.ArgumentParser(
        description="Visualize recorded control cycles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Plot the most recent run
  python -m mpc_control.plot_results

  # Plot a specific run by name
  python -m mpc_control.plot_results --run run_20260301_101500

  # Save the figure to the run directory without showing it
  python -m mpc_control.plot_results --save --no-show

  # List all available runs
  python -m mpc_control.plot_results --list
        """,
    )
    parser.add_argument(
        "--run",
        type=str,
        default=None,
        help="Name of the run directory to plot. If not specified, plots the most recent run.",
    )
    parser.add_argument(
        "--results-dir",
        type=str,
        default=RESULTS_DIR,
        help=f"Path to the results directory (default: {RESULTS_DIR})",
    )
    parser.add_argument("--save", action="store_true", help="Save the plot as PNG in the run directory")
    parser.add_argument("--no-show", action="store_true", help="Do not display the plot interactively")
    parser.add_argument("--list", action="store_true", help="List all available runs and exit")

    args = parser.parse_args(argv)
    results_dir = Path(args.results_dir)

    if args.list:
        list_available_runs(results_dir)
        return

    if args.run:
        run_dir = results_dir / args.run
        if not run_dir.exists():
            logging.error(f"Error: Run directory not found: {run_dir}")
            list_available_runs(results_dir)
            sys.exit(1)
    else:
        try:
            run_dir = find_latest_run(results_dir)
            logging.info(f"{TERM_BLUE}Plotting most recent run: {run_dir.name}{TERM_RESET}")
        except FileNotFoundError as e:
            logging.error(f"Error: {e}")
            sys.exit(1)

    try:
        cycles = load_cycles(run_dir / "cycles.csv")
    except FileNotFoundError as e:
        logging.error(f"Error: {e}")
        logging.info(f"Make sure {run_dir} was recorded with --record")
        sys.exit(1)

    stats = summarize(cycles)
    logging.info(
        f"{int(stats['cycles'])} cycles, {int(stats['fallbacks'])} fallbacks, "
        f"RMS cte {stats['rms_cte']:.3f}, RMS epsi {stats['rms_epsi']:.4f} rad, "
        f"solve {stats['mean_solve_ms']:.1f}ms"
    )

    save_path = run_dir / "cycles.png" if args.save else None
    plot_cycles(cycles, save_path=save_path)
    if save_path is not None:
        logging.info(f"{TERM_BLUE}✓ Saved plot to {save_path}{TERM_RESET}")
    if not args.no_show:
        plt.show()


if __name__ == "__main__":
    main()
