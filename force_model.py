"""
Force Model
===========
Vehicle parameters and the longitudinal force terms of the WOT model:
aerodynamic drag, rolling resistance, the time-gated boost switch and the
traction limit, composed into one net propulsive force of (v, t).

Every term is a small immutable object with a single evaluation method, so
each can be tested on its own with synthetic inputs. All terms accept
scalars or numpy arrays.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np


# =============================================================================
# Constants
# =============================================================================
AIR_DENSITY = 1.2  # kg/m³
GRAVITY = 9.81  # m/s²

# Unit conversion factors
MPS_TO_MPH = 2.23694
MPS_TO_KPH = 3.6
MPH_TO_MPS = 0.44704
FT_TO_M = 0.3048
KG_TO_LB = 2.20462
M2_TO_FT2 = 10.7639
N_TO_LBF = 0.224809

DEFAULT_PRESETS_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'vehicle_presets.json')


# =============================================================================
# Vehicle Parameters
# =============================================================================
@dataclass(frozen=True)
class VehicleParams:
    """Vehicle parameters for the longitudinal WOT model."""
    mass: float  # kg
    frontal_area: float  # m²
    drag_coefficient: float  # dimensionless
    tire_radius_front: float  # m
    tire_radius_rear: float  # m
    boost_duration: float  # s
    traction_utilization: float  # fraction of vehicle weight usable as tractive force
    slip_ratio: float  # vehicle speed to curve lookup speed
    rolling_resistance: float  # dimensionless
    air_density: float = AIR_DENSITY  # kg/m³
    gravity: float = GRAVITY  # m/s²
    name: str = 'vehicle'

    @property
    def mean_tire_radius(self) -> float:
        return (self.tire_radius_front + self.tire_radius_rear) / 2

    @property
    def max_traction_force(self) -> float:
        """Tractive force ceiling in N."""
        return self.traction_utilization * self.mass * self.gravity

    def __str__(self) -> str:
        return (
            f"Vehicle Parameters: {self.name}\n"
            f"  Mass: {self.mass:.1f} kg ({self.mass * KG_TO_LB:.1f} lb)\n"
            f"  Frontal Area: {self.frontal_area:.2f} m² ({self.frontal_area * M2_TO_FT2:.2f} ft²)\n"
            f"  Drag Coefficient: {self.drag_coefficient:.3f}\n"
            f"  Air Density: {self.air_density:.3f} kg/m³\n"
            f"  Rolling Resistance: {self.rolling_resistance:.4f}\n"
            f"  Tire Radius (front/rear): {self.tire_radius_front:.3f} / {self.tire_radius_rear:.3f} m\n"
            f"  Boost Duration: {self.boost_duration:.2f} s\n"
            f"  Traction Utilization: {self.traction_utilization:.3f} "
            f"({self.max_traction_force:.0f} N, {self.max_traction_force * N_TO_LBF:.0f} lbf)\n"
            f"  Slip Ratio: {self.slip_ratio:.3f}"
        )


def load_vehicle_preset(name: str, presets_file: str = DEFAULT_PRESETS_FILE) -> VehicleParams:
    """
    Load a named vehicle from a JSON presets file.

    Expected format:
        {"presets": [{"name": "...", "mass": 2370, ...}, ...]}
    """
    with open(presets_file, 'r') as f:
        data = json.load(f)

    preset = next((p for p in data.get('presets', []) if p.get('name') == name), None)
    if preset is None:
        raise KeyError(f"Vehicle preset '{name}' not found in {presets_file}")

    return VehicleParams(**preset)


def preset_names(presets_file: str = DEFAULT_PRESETS_FILE) -> list:
    with open(presets_file, 'r') as f:
        data = json.load(f)
    return [p['name'] for p in data.get('presets', [])]


# =============================================================================
# Resistive Forces
# =============================================================================
@dataclass(frozen=True)
class AeroDrag:
    """Quadratic aerodynamic drag: F = 0.5 * Cd * A * ρ * v²"""
    drag_coefficient: float
    frontal_area: float
    air_density: float = AIR_DENSITY

    @property
    def coefficient(self) -> float:
        return 0.5 * self.drag_coefficient * self.frontal_area * self.air_density

    def force(self, v):
        return self.coefficient * v * v


@dataclass(frozen=True)
class RollingResistance:
    """
    Rolling resistance: F = Crr * m * g for any nonzero speed, 0 at standstill.

    The magnitude does not depend on speed. The sign follows v so that,
    subtracted from the tractive force, it always opposes motion.
    """
    rolling_resistance: float
    mass: float
    gravity: float = GRAVITY

    @property
    def magnitude(self) -> float:
        return self.rolling_resistance * self.mass * self.gravity

    def force(self, v):
        return np.sign(v) * self.magnitude


# =============================================================================
# Tractive Force Limits
# =============================================================================
@dataclass(frozen=True)
class BoostLimit:
    """
    Time-gated powertrain output.

    Returns `boosted(v)` while t is strictly less than the boost duration and
    `nominal(v)` from then on. The switch is a hard step.
    """
    boost_duration: float
    boosted: Callable
    nominal: Callable

    def force(self, v, t):
        if np.ndim(t) == 0:
            return self.boosted(v) if t < self.boost_duration else self.nominal(v)
        return np.where(np.asarray(t) < self.boost_duration, self.boosted(v), self.nominal(v))


@dataclass(frozen=True)
class TractionLimit:
    """Clamps a force capability of (v, t) to the tire grip ceiling."""
    capability: Callable
    max_force: float

    def force(self, v, t):
        return np.minimum(self.capability(v, t), self.max_force)


# =============================================================================
# Net Force
# =============================================================================
@dataclass(frozen=True)
class PropulsiveForce:
    """
    Net longitudinal force and acceleration of the vehicle.

        F(v, t) = traction(boost(v, t)) - drag(v) - rolling(v)
        a(v, t) = F(v, t) / m
    """
    traction: TractionLimit
    drag: AeroDrag
    rolling: RollingResistance
    mass: float

    def components(self, v, t) -> Tuple:
        """(tractive, drag, rolling) forces in N."""
        return self.traction.force(v, t), self.drag.force(v), self.rolling.force(v)

    def force(self, v, t):
        tractive, drag, rolling = self.components(v, t)
        return tractive - drag - rolling

    def acceleration(self, v, t):
        return self.force(v, t) / self.mass


def build_force_model(vehicle: VehicleParams, boosted: Callable, nominal: Callable) -> PropulsiveForce:
    """
    Compose the force model for a vehicle.

    Args:
        vehicle: Vehicle parameters
        boosted: Powertrain force (N) of speed (m/s) during the boost window
        nominal: Powertrain force (N) of speed (m/s) after the boost window

    Returns:
        PropulsiveForce with the traction ceiling taken from the vehicle weight
    """
    boost = BoostLimit(vehicle.boost_duration, boosted, nominal)
    return PropulsiveForce(
        traction=TractionLimit(boost.force, vehicle.max_traction_force),
        drag=AeroDrag(vehicle.drag_coefficient, vehicle.frontal_area, vehicle.air_density),
        rolling=RollingResistance(vehicle.rolling_resistance, vehicle.mass, vehicle.gravity),
        mass=vehicle.mass,
    )
