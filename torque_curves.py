"""
Torque Curves
=============
Loads powertrain torque-vs-speed samples and turns them into continuous
torque functions and axle force functions for the WOT acceleration model.

Curves are functions of vehicle speed in km/h returning axle torque in Nm.
Force functions take vehicle speed in m/s and return tractive force in N.
"""

from __future__ import annotations

import csv
import os
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np
from numpy.polynomial import Polynomial
from scipy.interpolate import interp1d

from force_model import MPS_TO_KPH, VehicleParams


# =============================================================================
# Constants
# =============================================================================
DEFAULT_DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'torque_data')

FULL_AVAILABILITY_FILE = 'taycan_pt_tq.csv'
FRONT_AXLE_FILE = 'taycan_pt_tq_fa.csv'
REAR_AXLE_1_FILE = 'taycan_pt_tq_ra1.csv'
REAR_AXLE_2_FILE = 'taycan_pt_tq_ra2.csv'


class Extrapolation(str, Enum):
    """Out-of-range policy for an interpolated torque curve."""
    LINE = 'line'  # continue the boundary segment's slope
    FLAT = 'flat'  # hold the boundary sample's value


@dataclass(frozen=True)
class BoostCalibration:
    """Curve-shaping constants for the temporary boost calibration."""
    rear_boost_ratio: float = 370.0 / 335.0
    rear_torque_ceiling: float = 610.0 * 15.33  # Nm at the axle
    front_torque_floor: float = 3100.0  # Nm, start of the fitted front region
    front_fit_degree: int = 4
    front_torque_ceiling: float = 440.0 * 8.05  # Nm at the axle


# =============================================================================
# Data Classes
# =============================================================================
@dataclass(frozen=True)
class TorqueSamples:
    """Ordered (speed, torque) samples for one curve."""
    speed_kph: np.ndarray
    torque_nm: np.ndarray

    def __post_init__(self):
        speed = np.asarray(self.speed_kph, dtype=float)
        torque = np.asarray(self.torque_nm, dtype=float)
        if speed.ndim != 1 or speed.shape != torque.shape:
            raise ValueError("Speed and torque samples must be 1-D arrays of equal length")
        if len(speed) < 2:
            raise ValueError("A torque curve needs at least two samples")
        if np.any(np.diff(speed) <= 0):
            raise ValueError("Torque curve speeds must be strictly increasing")
        object.__setattr__(self, 'speed_kph', speed)
        object.__setattr__(self, 'torque_nm', torque)

    def __len__(self) -> int:
        return len(self.speed_kph)


@dataclass(frozen=True)
class TorqueCurveSet:
    """The four measured curves the Taycan powertrain model is built from."""
    full_availability: TorqueSamples
    front_axle: TorqueSamples
    rear_axle_1: TorqueSamples
    rear_axle_2: TorqueSamples


# =============================================================================
# Curve Loading
# =============================================================================
def load_torque_curve(filepath: str, zero_first_speed: bool = False) -> TorqueSamples:
    """
    Load a torque curve from a delimited text file.

    Expected format:
        speed_kph,torque_nm
        0,3400
        10,3400
        ...

    Args:
        filepath: Path to the CSV file
        zero_first_speed: Clamp the first sample's speed to 0 km/h. Some
            exported curves start slightly above standstill.

    Returns:
        TorqueSamples with the file's rows in order
    """
    speeds = []
    torques = []

    with open(filepath, 'r', newline='') as f:
        reader = csv.reader(f)
        next(reader, None)  # header
        for row in reader:
            if not row:
                continue
            speeds.append(float(row[0]))
            torques.append(float(row[1]))

    if zero_first_speed and speeds:
        speeds[0] = 0.0

    return TorqueSamples(speed_kph=np.array(speeds), torque_nm=np.array(torques))


def load_curve_set(data_dir: str = DEFAULT_DATA_DIR) -> TorqueCurveSet:
    """Load the full-availability, front-axle and both rear-axle curves."""
    return TorqueCurveSet(
        full_availability=load_torque_curve(os.path.join(data_dir, FULL_AVAILABILITY_FILE)),
        front_axle=load_torque_curve(os.path.join(data_dir, FRONT_AXLE_FILE)),
        rear_axle_1=load_torque_curve(os.path.join(data_dir, REAR_AXLE_1_FILE), zero_first_speed=True),
        rear_axle_2=load_torque_curve(os.path.join(data_dir, REAR_AXLE_2_FILE)),
    )


# =============================================================================
# Continuous Torque Curves
# =============================================================================
class TorqueCurve:
    """Piecewise-linear torque curve, total over all speeds."""

    def __init__(self, samples: TorqueSamples, extrapolation: Extrapolation = Extrapolation.LINE):
        self.samples = samples
        self.extrapolation = Extrapolation(extrapolation)

        if self.extrapolation is Extrapolation.LINE:
            fill_value = 'extrapolate'
        else:
            fill_value = (samples.torque_nm[0], samples.torque_nm[-1])

        self._interp = interp1d(
            samples.speed_kph,
            samples.torque_nm,
            kind='linear',
            bounds_error=False,
            fill_value=fill_value,
            assume_sorted=True,
        )

    def __call__(self, speed_kph):
        return self._interp(speed_kph)


class MaxTorqueCurve:
    """Pointwise maximum of several curves (best of the drive-mode calibrations)."""

    def __init__(self, curves: Sequence):
        if not curves:
            raise ValueError("MaxTorqueCurve needs at least one curve")
        self.curves = list(curves)

    def __call__(self, speed_kph):
        result = self.curves[0](speed_kph)
        for curve in self.curves[1:]:
            result = np.maximum(result, curve(speed_kph))
        return result


class BoostedTorqueCurve:
    """A base curve scaled by a boost ratio and clamped to a hardware ceiling."""

    def __init__(self, base, ratio: float, ceiling: float):
        self.base = base
        self.ratio = ratio
        self.ceiling = ceiling

    def __call__(self, speed_kph):
        return np.minimum(self.base(speed_kph) * self.ratio, self.ceiling)


class PolyFitTorqueCurve:
    """
    Least-squares polynomial fitted to the tail of a curve, clamped to a ceiling.

    The fit starts at the first sample whose torque is below `torque_floor`
    and uses every sample after it. Below that speed the polynomial is
    extrapolated and the ceiling takes over.
    """

    def __init__(self, samples: TorqueSamples, torque_floor: float, degree: int, ceiling: float):
        below = np.nonzero(samples.torque_nm < torque_floor)[0]
        if len(below) == 0:
            raise ValueError(f"No torque sample below the fit floor of {torque_floor} Nm")

        self.fit_start_index = int(below[0])
        fit_speed = samples.speed_kph[self.fit_start_index:]
        fit_torque = samples.torque_nm[self.fit_start_index:]
        if len(fit_speed) < degree + 1:
            raise ValueError(
                f"Degree {degree} fit needs {degree + 1} samples, "
                f"only {len(fit_speed)} at or after index {self.fit_start_index}"
            )

        self.samples = samples
        self.degree = degree
        self.ceiling = ceiling
        self.polynomial = Polynomial.fit(fit_speed, fit_torque, degree)

    def __call__(self, speed_kph):
        return np.minimum(self.polynomial(speed_kph), self.ceiling)


# =============================================================================
# Powertrain Force
# =============================================================================
class PowertrainForce:
    """
    Tractive force available from the powertrain as a function of speed.

    `boosted(v)` sums front and rear boosted axle torque, each divided by its
    own tire radius. `nominal(v)` uses the full-availability curve over the
    mean tire radius. Both look the curves up at 3.6 * v * slip_ratio km/h.
    """

    def __init__(
        self,
        curves: TorqueCurveSet,
        vehicle: VehicleParams,
        calibration: BoostCalibration = BoostCalibration()
    ):
        self.vehicle = vehicle
        self.calibration = calibration

        self.max_torque = TorqueCurve(curves.full_availability, Extrapolation.FLAT)
        self.front_torque = TorqueCurve(curves.front_axle, Extrapolation.LINE)
        self.rear_torque = MaxTorqueCurve([
            TorqueCurve(curves.rear_axle_1, Extrapolation.LINE),
            TorqueCurve(curves.rear_axle_2, Extrapolation.LINE),
        ])
        self.boosted_rear_torque = BoostedTorqueCurve(
            self.rear_torque,
            calibration.rear_boost_ratio,
            calibration.rear_torque_ceiling,
        )
        self.boosted_front_torque = PolyFitTorqueCurve(
            curves.front_axle,
            calibration.front_torque_floor,
            calibration.front_fit_degree,
            calibration.front_torque_ceiling,
        )

    def curve_speed(self, v):
        """Vehicle speed (m/s) to curve lookup speed (km/h)."""
        return MPS_TO_KPH * v * self.vehicle.slip_ratio

    def boosted(self, v):
        speed_kph = self.curve_speed(v)
        return (
            self.boosted_front_torque(speed_kph) / self.vehicle.tire_radius_front
            + self.boosted_rear_torque(speed_kph) / self.vehicle.tire_radius_rear
        )

    def nominal(self, v):
        return self.max_torque(self.curve_speed(v)) / self.vehicle.mean_tire_radius


def build_powertrain(
    vehicle: VehicleParams,
    data_dir: str = DEFAULT_DATA_DIR,
    calibration: BoostCalibration = BoostCalibration()
) -> PowertrainForce:
    """Load the standard curve files and build the powertrain force functions."""
    return PowertrainForce(load_curve_set(data_dir), vehicle, calibration)
