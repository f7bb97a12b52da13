"""
WOT Acceleration Simulator
==========================
Integrates a vehicle from rest at wide-open throttle with a stiff ODE solver,
stops exactly where a speed or distance target is crossed, and turns the
resulting trajectories into standard acceleration test figures
(rollout, 0-60 mph, 5-60 mph, quarter mile, ...).

The ODE state is (position, velocity). Acceleration is an output of the
force model evaluated at the same sample times, not an integrated state.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from scipy.integrate import solve_ivp, trapezoid

from force_model import (
    DEFAULT_PRESETS_FILE,
    FT_TO_M,
    MPH_TO_MPS,
    MPS_TO_MPH,
    PropulsiveForce,
    VehicleParams,
    build_force_model,
    load_vehicle_preset,
    preset_names,
)
from torque_curves import DEFAULT_DATA_DIR, BoostCalibration, build_powertrain
import performance_report


# =============================================================================
# Constants
# =============================================================================
MILE_TO_M = 1609.344
ROLLOUT_M = 1 * FT_TO_M
QUARTER_MILE_M = 0.25 * MILE_TO_M

# Relative slack for threshold search: the event-located terminal sample can
# sit a rounding error below its own target.
THRESHOLD_RTOL = 1e-9

ENERGY_TOLERANCE = 1e-3

STATE_INDEX = {'position': 0, 'velocity': 1}

DEFAULT_PRESET = 'Porsche Taycan Turbo S'

# Metric names, matching the reference performance table
ROLLOUT = "Rollout, 1 ft (s)"
ZERO_TO_60 = "60 mph (s)"
ZERO_TO_100 = "100 mph (s)"
ZERO_TO_150 = "150 mph (s)"
FIVE_TO_60 = "Rolling start, 5-60 mph (s)"
THIRTY_TO_50 = "Top gear, 30-50 mph (s)"
FIFTY_TO_70 = "Top gear, 50-70 mph (s)"
QUARTER_MILE_TIME = "¼-mile time (s)"
QUARTER_MILE_SPEED = "¼-mile speed (mph)"


# =============================================================================
# Errors
# =============================================================================
class SimulationError(Exception):
    """Base class for simulation failures."""


class TerminationNotReachedError(SimulationError):
    """The integration span ended before the termination condition fired."""


class ThresholdNotReachedError(SimulationError):
    """No trajectory sample reaches the requested threshold."""


class EnergyBalanceError(SimulationError):
    """Work-energy residual is larger than the accepted tolerance."""


# =============================================================================
# Data Classes
# =============================================================================
@dataclass(frozen=True)
class SolverSettings:
    """Integration settings shared by every run."""
    max_time: float = 20.0  # s, a run that needs longer has failed
    sample_interval: float = 1e-3  # s
    rtol: float = 1e-9
    atol: float = 1e-9
    method: str = 'Radau'

    @property
    def sample_times(self) -> np.ndarray:
        n = int(round(self.max_time / self.sample_interval)) + 1
        return np.linspace(0.0, self.max_time, n)


@dataclass(frozen=True)
class TerminationCondition:
    """
    Ends a run when a state variable rises through a target value.

    Instances are called by the solver as event functions of (t, y).
    """
    name: str
    variable: str  # 'position' or 'velocity'
    target: float

    terminal = True
    direction = 1

    def __post_init__(self):
        if self.variable not in STATE_INDEX:
            raise ValueError(f"Unknown state variable '{self.variable}'")

    @classmethod
    def speed(cls, name: str, target_mps: float) -> TerminationCondition:
        return cls(name, 'velocity', target_mps)

    @classmethod
    def distance(cls, name: str, target_m: float) -> TerminationCondition:
        return cls(name, 'position', target_m)

    def __call__(self, t, y) -> float:
        return y[STATE_INDEX[self.variable]] - self.target


@dataclass(frozen=True)
class Trajectory:
    """Dense time history of one run, ending at its termination point."""
    time: np.ndarray
    position: np.ndarray
    velocity: np.ndarray
    acceleration: np.ndarray
    condition: Optional[TerminationCondition] = None

    def __len__(self) -> int:
        return len(self.time)

    @property
    def terminal_time(self) -> float:
        return float(self.time[-1])

    @property
    def final_velocity(self) -> float:
        return float(self.velocity[-1])

    def series(self, variable: str) -> np.ndarray:
        if variable == 'position':
            return self.position
        if variable == 'velocity':
            return self.velocity
        if variable == 'acceleration':
            return self.acceleration
        raise ValueError(f"Unknown trajectory variable '{variable}'")


@dataclass(frozen=True)
class Threshold:
    """A named target on position (m) or velocity (m/s)."""
    name: str
    variable: str
    target: float

    @classmethod
    def mph(cls, name: str, mph: float) -> Threshold:
        return cls(name, 'velocity', mph * MPH_TO_MPS)

    @classmethod
    def feet(cls, name: str, feet: float) -> Threshold:
        return cls(name, 'position', feet * FT_TO_M)

    @classmethod
    def miles(cls, name: str, miles: float) -> Threshold:
        return cls(name, 'position', miles * MILE_TO_M)


@dataclass(frozen=True)
class Crossing:
    """First trajectory sample at or past a threshold."""
    index: int
    time: float
    position: float
    velocity: float


@dataclass(frozen=True)
class PerformanceMetric:
    name: str
    value: float
    unit: str = 's'


@dataclass(frozen=True)
class EnergyBalance:
    """Work done on the vehicle over a run against its kinetic energy gain."""
    tractive_work: float  # J
    drag_loss: float  # J
    rolling_loss: float  # J
    kinetic_energy: float  # J

    @property
    def net_work(self) -> float:
        return self.tractive_work - self.drag_loss - self.rolling_loss

    @property
    def residual(self) -> float:
        """Relative mismatch (net work - kinetic energy) / kinetic energy."""
        scale = self.kinetic_energy if self.kinetic_energy > 0 else 1.0
        return (self.net_work - self.kinetic_energy) / scale


@dataclass(frozen=True)
class PerformanceRun:
    """Everything produced by one full set of WOT runs."""
    rollout: Trajectory
    zero_to_60: Trajectory
    zero_to_150: Trajectory
    metrics: List[PerformanceMetric]
    energy: EnergyBalance

    def metric(self, name: str) -> float:
        for m in self.metrics:
            if m.name == name:
                return m.value
        raise KeyError(name)


# =============================================================================
# Equation of State
# =============================================================================
def equation_of_state(acceleration: Callable) -> Callable:
    """
    Build the ODE right-hand side for state y = (position, velocity).

    Args:
        acceleration: a(v, t) in m/s²

    Returns:
        f(t, y) -> (dx/dt, dv/dt)
    """
    def derivative(t, y):
        return [y[1], float(acceleration(y[1], t))]

    return derivative


def sample_acceleration(acceleration: Callable, velocity: np.ndarray, time: np.ndarray) -> np.ndarray:
    """Evaluate a(v, t) at every trajectory sample."""
    values = np.asarray(acceleration(velocity, time), dtype=float)
    return np.broadcast_to(values, time.shape).copy()


# =============================================================================
# Integration & Events
# =============================================================================
def integrate_wot(
    acceleration: Callable,
    condition: Optional[TerminationCondition] = None,
    settings: SolverSettings = SolverSettings(),
    initial_state: Sequence[float] = (0.0, 0.0)
) -> Trajectory:
    """
    Integrate the vehicle from `initial_state` until `condition` fires.

    The solver locates the crossing with a root-find on its dense output and
    the trajectory ends at that exact point, after samples every
    `settings.sample_interval` seconds. Without a condition the run covers
    the whole span.

    Args:
        acceleration: a(v, t) in m/s², must accept numpy arrays
        condition: Termination condition, or None for a fixed-span run
        settings: Solver tolerances, span and sampling
        initial_state: (position, velocity) at t = 0

    Returns:
        Trajectory of the run

    Raises:
        TerminationNotReachedError: condition did not fire within max_time
        SimulationError: the solver itself failed
    """
    sol = solve_ivp(
        equation_of_state(acceleration),
        (0.0, settings.max_time),
        list(initial_state),
        method=settings.method,
        t_eval=settings.sample_times,
        events=[condition] if condition is not None else None,
        rtol=settings.rtol,
        atol=settings.atol,
    )

    if sol.status == -1:
        raise SimulationError(f"Integration failed: {sol.message}")

    time = sol.t
    position = sol.y[0]
    velocity = sol.y[1]

    if condition is not None:
        if sol.status != 1 or len(sol.t_events[0]) == 0:
            raise TerminationNotReachedError(
                f"{condition.name}: {condition.variable} did not reach "
                f"{condition.target:g} within {settings.max_time:g} s"
            )
        t_event = sol.t_events[0][0]
        y_event = sol.y_events[0][0]
        keep = time < t_event
        time = np.append(time[keep], t_event)
        position = np.append(position[keep], y_event[0])
        velocity = np.append(velocity[keep], y_event[1])

    return Trajectory(
        time=time,
        position=position,
        velocity=velocity,
        acceleration=sample_acceleration(acceleration, velocity, time),
        condition=condition,
    )


# =============================================================================
# Metric Extraction
# =============================================================================
def find_threshold_index(
    trajectory: Trajectory,
    variable: str,
    target: float,
    rtol: float = THRESHOLD_RTOL
) -> int:
    """
    Index of the first sample where `variable` reaches `target`.

    Raises:
        ThresholdNotReachedError: no sample reaches the target
    """
    values = trajectory.series(variable)
    hits = np.nonzero(values >= target - rtol * abs(target))[0]
    if len(hits) == 0:
        raise ThresholdNotReachedError(
            f"{variable} never reaches {target:g} "
            f"(max {np.max(values):g} at t = {trajectory.terminal_time:g} s)"
        )
    return int(hits[0])


def find_threshold_time(trajectory: Trajectory, variable: str, target: float) -> float:
    return float(trajectory.time[find_threshold_index(trajectory, variable, target)])


def locate_thresholds(trajectory: Trajectory, thresholds: Sequence[Threshold]) -> Dict[str, Crossing]:
    """First crossing of each named threshold."""
    crossings = {}
    for threshold in thresholds:
        i = find_threshold_index(trajectory, threshold.variable, threshold.target)
        crossings[threshold.name] = Crossing(
            index=i,
            time=float(trajectory.time[i]),
            position=float(trajectory.position[i]),
            velocity=float(trajectory.velocity[i]),
        )
    return crossings


PERFORMANCE_THRESHOLDS = [
    Threshold.mph('5 mph', 5),
    Threshold.mph('30 mph', 30),
    Threshold.mph('50 mph', 50),
    Threshold.mph('70 mph', 70),
    Threshold.mph('100 mph', 100),
    Threshold.miles('quarter mile', 0.25),
]


def extract_performance_metrics(
    rollout: Trajectory,
    zero_to_60: Trajectory,
    zero_to_150: Trajectory
) -> List[PerformanceMetric]:
    """
    Test figures from the three standard runs.

    Standing-start times are measured from the end of the one-foot rollout.
    Rolling-start and top-gear intervals are differences of raw crossing
    times.
    """
    ro_t = rollout.terminal_time
    t60 = zero_to_60.terminal_time
    c = locate_thresholds(zero_to_150, PERFORMANCE_THRESHOLDS)
    quarter = c['quarter mile']

    return [
        PerformanceMetric(ROLLOUT, ro_t),
        PerformanceMetric(ZERO_TO_60, t60 - ro_t),
        PerformanceMetric(ZERO_TO_100, c['100 mph'].time - ro_t),
        PerformanceMetric(ZERO_TO_150, zero_to_150.terminal_time - ro_t),
        PerformanceMetric(FIVE_TO_60, t60 - c['5 mph'].time),
        PerformanceMetric(THIRTY_TO_50, c['50 mph'].time - c['30 mph'].time),
        PerformanceMetric(FIFTY_TO_70, c['70 mph'].time - c['50 mph'].time),
        PerformanceMetric(QUARTER_MILE_TIME, quarter.time - ro_t),
        PerformanceMetric(QUARTER_MILE_SPEED, quarter.velocity * MPS_TO_MPH, 'mph'),
    ]


# =============================================================================
# Energy Conservation
# =============================================================================
def energy_balance(trajectory: Trajectory, force_model: PropulsiveForce) -> EnergyBalance:
    """
    Integrate tractive, drag and rolling power over a trajectory.

    For an accurate integration, tractive work minus both losses equals the
    kinetic energy gained.
    """
    t = trajectory.time
    v = trajectory.velocity
    tractive, drag, rolling = force_model.components(v, t)

    return EnergyBalance(
        tractive_work=float(trapezoid(tractive * v, t)),
        drag_loss=float(trapezoid(drag * v, t)),
        rolling_loss=float(trapezoid(rolling * v, t)),
        kinetic_energy=0.5 * force_model.mass * (v[-1] ** 2 - v[0] ** 2),
    )


def check_energy_balance(balance: EnergyBalance, tolerance: float = ENERGY_TOLERANCE) -> EnergyBalance:
    if not abs(balance.residual) < tolerance:
        raise EnergyBalanceError(
            f"Energy residual {balance.residual:.3e} exceeds {tolerance:.1e} "
            f"(net work {balance.net_work:.1f} J, kinetic energy {balance.kinetic_energy:.1f} J)"
        )
    return balance


# =============================================================================
# Standard Runs
# =============================================================================
def simulate_performance(
    force_model: PropulsiveForce,
    settings: SolverSettings = SolverSettings(),
    verbose: bool = False
) -> PerformanceRun:
    """Run rollout, 0-60 mph and 0-150 mph from rest and extract metrics."""
    runs = []
    for condition in (
        TerminationCondition.distance('rollout', ROLLOUT_M),
        TerminationCondition.speed('0-60 mph', 60 * MPH_TO_MPS),
        TerminationCondition.speed('0-150 mph', 150 * MPH_TO_MPS),
    ):
        trajectory = integrate_wot(force_model.acceleration, condition, settings)
        if verbose:
            print(f"  ✓ {condition.name}: {trajectory.terminal_time:.4f} s ({len(trajectory)} samples)")
        runs.append(trajectory)

    rollout, zero_to_60, zero_to_150 = runs
    return PerformanceRun(
        rollout=rollout,
        zero_to_60=zero_to_60,
        zero_to_150=zero_to_150,
        metrics=extract_performance_metrics(rollout, zero_to_60, zero_to_150),
        energy=energy_balance(zero_to_60, force_model),
    )


# =============================================================================
# Main Simulation Function
# =============================================================================
def run_simulation(
    vehicle: VehicleParams,
    data_dir: str = DEFAULT_DATA_DIR,
    calibration: BoostCalibration = BoostCalibration(),
    settings: SolverSettings = SolverSettings(),
    output_dir: Optional[str] = 'outputs'
) -> PerformanceRun:
    """
    Run the complete WOT comparison.

    Args:
        vehicle: Vehicle parameters
        data_dir: Directory holding the torque curve CSV files
        calibration: Boost curve-shaping constants
        settings: Solver settings
        output_dir: Directory for output files, None to skip saving

    Returns:
        PerformanceRun with trajectories, metrics and the energy balance
    """
    print(f"\nLoading torque curves: {data_dir}")
    powertrain = build_powertrain(vehicle, data_dir, calibration)
    print(f"  Front axle boost fit: degree {calibration.front_fit_degree} "
          f"from sample {powertrain.boosted_front_torque.fit_start_index}")

    force_model = build_force_model(vehicle, powertrain.boosted, powertrain.nominal)

    print("Running WOT simulations...")
    run = simulate_performance(force_model, settings, verbose=True)

    check_energy_balance(run.energy)
    print(f"  ✓ Energy residual (0-60 mph): {run.energy.residual:.2e}")

    comparison = performance_report.build_comparison(run.metrics)
    summary = performance_report.generate_summary_text(vehicle, run, comparison)
    print(summary)

    if output_dir is None:
        return run

    timestamp = datetime.now().strftime('%Y-%m-%d_%H%M%S')
    run_output_dir = performance_report.create_output_directory(output_dir, vehicle.name, timestamp)
    print(f"Saving outputs to '{run_output_dir}/'...")

    txt_path = performance_report.save_summary_text(summary, run_output_dir)
    print(f"  ✓ Summary: {os.path.basename(txt_path)}")

    csv_path = performance_report.save_comparison_csv(comparison, run_output_dir)
    print(f"  ✓ Comparison: {os.path.basename(csv_path)}")

    ts_path = performance_report.save_trajectory_csv(run.zero_to_150, force_model, run_output_dir)
    print(f"  ✓ Time-series: {os.path.basename(ts_path)}")

    plot_path = performance_report.generate_plots(run, comparison, vehicle.name, run_output_dir)
    print(f"  ✓ Plots: {os.path.basename(plot_path)}")

    print("\nSimulation complete!")

    return run


# =============================================================================
# Example Usage / Main Entry Point
# =============================================================================
def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Simulate a WOT acceleration test and compare with reference data.")
    parser.add_argument("--preset", default=DEFAULT_PRESET, help="Vehicle preset name.")
    parser.add_argument("--presets-file", default=DEFAULT_PRESETS_FILE, help="Vehicle presets JSON file.")
    parser.add_argument("--data-dir", default=DEFAULT_DATA_DIR, help="Directory with torque curve CSV files.")
    parser.add_argument("--output-dir", default="outputs", help="Directory for output files.")
    parser.add_argument("--max-time", type=float, default=SolverSettings.max_time, help="Integration span in seconds.")
    parser.add_argument("--list-presets", action="store_true", help="List available presets and exit.")
    args = parser.parse_args(argv)

    if args.list_presets:
        for name in preset_names(args.presets_file):
            print(name)
        return

    vehicle = load_vehicle_preset(args.preset, args.presets_file)
    run_simulation(
        vehicle=vehicle,
        data_dir=args.data_dir,
        settings=SolverSettings(max_time=args.max_time),
        output_dir=args.output_dir,
    )


if __name__ == "__main__":
    main()
