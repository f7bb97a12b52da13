"""
Performance Report
==================
Compares simulated WOT test figures with published reference data and
writes the summary, CSV tables and plots for a run.
"""

from __future__ import annotations

import csv
import os
from dataclasses import dataclass
from datetime import datetime
from typing import List, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt

from force_model import MPS_TO_MPH, VehicleParams


# =============================================================================
# Reference Data
# =============================================================================
REFERENCE_SOURCE = "Car and Driver"

# The reference figures are not mutually consistent (the 0-60 mph time is
# shorter than the 5-60 mph rolling start). They are reported as published.
REFERENCE_PERFORMANCE: List[Tuple[str, float]] = [
    ("Rollout, 1 ft (s)", 0.2),
    ("60 mph (s)", 2.4),
    ("100 mph (s)", 6.0),
    ("150 mph (s)", 15.2),
    ("Rolling start, 5-60 mph (s)", 2.9),
    ("Top gear, 30-50 mph (s)", 1.1),
    ("Top gear, 50-70 mph (s)", 1.6),
    ("¼-mile time (s)", 10.5),
    ("¼-mile speed (mph)", 130.0),
]

# Rows further than this from the reference are flagged in the summary
FLAG_THRESHOLD_PCT = 10.0


@dataclass(frozen=True)
class ComparisonRow:
    """One simulated figure next to its reference value."""
    description: str
    reference: float
    simulated: float

    @property
    def absolute_error(self) -> float:
        return self.simulated - self.reference

    @property
    def relative_error_pct(self) -> float:
        return self.absolute_error / self.reference * 100

    @property
    def flagged(self) -> bool:
        return abs(self.relative_error_pct) > FLAG_THRESHOLD_PCT


def build_comparison(
    metrics: Sequence,
    reference: Sequence[Tuple[str, float]] = REFERENCE_PERFORMANCE
) -> List[ComparisonRow]:
    """
    Pair each reference figure with the simulated metric of the same name.

    Args:
        metrics: Simulated metrics with `name` and `value`
        reference: (description, value) pairs, in report order

    Returns:
        One ComparisonRow per reference entry
    """
    simulated = {m.name: m.value for m in metrics}
    rows = []
    for description, value in reference:
        if description not in simulated:
            raise KeyError(f"No simulated metric for '{description}'")
        rows.append(ComparisonRow(description, value, simulated[description]))
    return rows


def format_comparison_table(rows: Sequence[ComparisonRow]) -> str:
    width = max(len(r.description) for r in rows) + 2
    lines = [
        f"  {'Test':<{width}}{REFERENCE_SOURCE:>16}{'Simulation':>12}{'Abs Err':>10}{'Rel Err':>10}",
    ]
    for r in rows:
        flag = '  !' if r.flagged else ''
        lines.append(
            f"  {r.description:<{width}}{r.reference:>16.2f}{r.simulated:>12.3f}"
            f"{r.absolute_error:>10.3f}{r.relative_error_pct:>9.1f}%{flag}"
        )
    return "\n".join(lines)


# =============================================================================
# Summary Text
# =============================================================================
def generate_summary_text(vehicle: VehicleParams, run, comparison: Sequence[ComparisonRow]) -> str:
    """Generate summary text for console and file output."""
    flagged = [r for r in comparison if r.flagged]
    top_speed_mph = run.zero_to_150.final_velocity * MPS_TO_MPH
    peak_accel = float(np.max(run.zero_to_150.acceleration))

    if flagged:
        flag_text = "\n".join(
            f"  ! {r.description}: {r.relative_error_pct:+.1f}% from reference" for r in flagged
        )
    else:
        flag_text = f"  All figures within {FLAG_THRESHOLD_PCT:.0f}% of reference"

    summary = f"""
{'='*70}
WOT ACCELERATION SIMULATION RESULTS
{'='*70}

Simulation Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}

{'-'*70}
VEHICLE PARAMETERS
{'-'*70}
{vehicle}

{'-'*70}
RUN STATISTICS
{'-'*70}
  Rollout run:   {run.rollout.terminal_time:.4f} s ({len(run.rollout)} samples)
  0-60 mph run:  {run.zero_to_60.terminal_time:.4f} s ({len(run.zero_to_60)} samples)
  0-150 mph run: {run.zero_to_150.terminal_time:.4f} s ({len(run.zero_to_150)} samples)
  Final Speed:   {top_speed_mph:.1f} mph
  Peak Accel:    {peak_accel:.2f} m/s² ({peak_accel / vehicle.gravity:.3f} g)

{'-'*70}
ENERGY BALANCE (0-60 mph)
{'-'*70}
  Tractive Work:   {run.energy.tractive_work / 1e3:.2f} kJ
  Drag Loss:       {run.energy.drag_loss / 1e3:.2f} kJ
  Rolling Loss:    {run.energy.rolling_loss / 1e3:.2f} kJ
  Kinetic Energy:  {run.energy.kinetic_energy / 1e3:.2f} kJ
  Residual:        {run.energy.residual:.2e}

{'-'*70}
COMPARISON WITH {REFERENCE_SOURCE.upper()}
{'-'*70}
{format_comparison_table(comparison)}

{flag_text}

{'='*70}
"""
    return summary


# =============================================================================
# Output Functions
# =============================================================================
def create_output_directory(base_path: str, run_name: str, timestamp: str) -> str:
    """Create outputs directory with run-specific subfolder."""
    safe_name = "".join(c if c.isalnum() or c in '-_' else '_' for c in run_name)
    full_path = os.path.join(base_path, f"{safe_name}_{timestamp}")
    os.makedirs(full_path, exist_ok=True)
    return full_path


def save_summary_text(summary: str, output_dir: str) -> str:
    """Save summary to text file."""
    filepath = os.path.join(output_dir, "summary.txt")
    with open(filepath, 'w', encoding='utf-8') as f:
        f.write(summary)
    return filepath


def save_comparison_csv(rows: Sequence[ComparisonRow], output_dir: str) -> str:
    filepath = os.path.join(output_dir, "comparison.csv")

    with open(filepath, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow([
            'test', 'reference', 'simulated', 'absolute_error', 'relative_error_pct', 'flagged'
        ])
        for r in rows:
            writer.writerow([
                r.description,
                f"{r.reference:.3f}",
                f"{r.simulated:.4f}",
                f"{r.absolute_error:.4f}",
                f"{r.relative_error_pct:.2f}",
                int(r.flagged),
            ])

    return filepath


def save_trajectory_csv(trajectory, force_model, output_dir: str, filename: str = "timeseries.csv") -> str:
    """Save a run's time series with the force breakdown at every sample."""
    filepath = os.path.join(output_dir, filename)
    tractive, drag, rolling = force_model.components(trajectory.velocity, trajectory.time)

    with open(filepath, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow([
            'time_s', 'position_m', 'speed_mps', 'speed_mph', 'acceleration_mps2',
            'force_tractive_N', 'force_drag_N', 'force_rolling_N'
        ])
        for i in range(len(trajectory.time)):
            writer.writerow([
                f"{trajectory.time[i]:.6f}",
                f"{trajectory.position[i]:.4f}",
                f"{trajectory.velocity[i]:.5f}",
                f"{trajectory.velocity[i] * MPS_TO_MPH:.4f}",
                f"{trajectory.acceleration[i]:.5f}",
                f"{tractive[i]:.2f}",
                f"{drag[i]:.2f}",
                f"{rolling[i]:.2f}",
            ])

    return filepath


def generate_plots(run, comparison: Sequence[ComparisonRow], run_name: str, output_dir: str) -> str:
    """
    Generate and save plots.

    Creates a 2x2 subplot figure with:
        - Speed vs Time
        - Acceleration vs Time
        - Distance vs Time
        - Relative error per reference figure

    Returns:
        Path to saved plot file
    """
    traj = run.zero_to_150
    speed_mph = traj.velocity * MPS_TO_MPH

    fig, axes = plt.subplots(2, 2, figsize=(14, 10))
    fig.suptitle(f'WOT Acceleration: {run_name}', fontsize=14, fontweight='bold')

    ax1 = axes[0, 0]
    ax1.plot(traj.time, speed_mph, 'b-', linewidth=1.5)
    for mph in (60, 100):
        ax1.axhline(y=mph, color='r', linestyle='--', alpha=0.4)
    ax1.axvline(x=run.zero_to_60.terminal_time, color='r', linestyle='--', alpha=0.4)
    ax1.annotate(f'0-60 mph: {run.zero_to_60.terminal_time:.2f}s',
                 xy=(run.zero_to_60.terminal_time, 60),
                 xytext=(10, -20), textcoords='offset points',
                 fontsize=10, color='r')
    ax1.set_xlabel('Time (s)')
    ax1.set_ylabel('Speed (mph)')
    ax1.grid(True, alpha=0.3)
    ax1.set_title('Vehicle Speed')

    ax2 = axes[0, 1]
    ax2.plot(traj.time, traj.acceleration, 'r-', linewidth=1.5)
    ax2.set_xlabel('Time (s)')
    ax2.set_ylabel('Acceleration (m/s²)')
    ax2.grid(True, alpha=0.3)
    ax2.set_title('Acceleration')

    ax3 = axes[1, 0]
    ax3.plot(traj.time, traj.position, 'g-', linewidth=1.5)
    ax3.axhline(y=402.336, color='k', linestyle='--', linewidth=0.8, label='¼ mile')
    ax3.set_xlabel('Time (s)')
    ax3.set_ylabel('Distance (m)')
    ax3.grid(True, alpha=0.3)
    ax3.legend(loc='upper left')
    ax3.set_title('Distance')

    ax4 = axes[1, 1]
    labels = [r.description for r in comparison]
    errors = [r.relative_error_pct for r in comparison]
    colors = ['red' if r.flagged else 'steelblue' for r in comparison]
    ax4.barh(labels, errors, color=colors, alpha=0.7)
    ax4.axvline(x=0, color='k', linewidth=0.5)
    ax4.invert_yaxis()
    ax4.set_xlabel(f'Error vs {REFERENCE_SOURCE} (%)')
    ax4.grid(True, axis='x', alpha=0.3)
    ax4.set_title('Reference Comparison')

    plt.tight_layout()

    plot_path = os.path.join(output_dir, "plots.png")
    plt.savefig(plot_path, dpi=150, bbox_inches='tight')
    plt.close(fig)

    return plot_path
