import numpy as np
import pytest

from force_model import load_vehicle_preset
from torque_curves import (
    BoostCalibration,
    BoostedTorqueCurve,
    Extrapolation,
    MaxTorqueCurve,
    PolyFitTorqueCurve,
    PowertrainForce,
    TorqueCurve,
    TorqueSamples,
    load_curve_set,
    load_torque_curve,
)


def _samples(speeds, torques) -> TorqueSamples:
    return TorqueSamples(np.array(speeds, dtype=float), np.array(torques, dtype=float))


def test_load_torque_curve_skips_header(tmp_path):
    path = tmp_path / "curve.csv"
    path.write_text("speed_kph,torque_nm\n0,100\n10,200\n20,150\n")

    samples = load_torque_curve(str(path))

    np.testing.assert_array_equal(samples.speed_kph, [0.0, 10.0, 20.0])
    np.testing.assert_array_equal(samples.torque_nm, [100.0, 200.0, 150.0])
    assert len(samples) == 3


def test_load_torque_curve_zero_first_speed(tmp_path):
    path = tmp_path / "curve.csv"
    path.write_text("speed_kph,torque_nm\n0.7,100\n10,200\n")

    assert load_torque_curve(str(path)).speed_kph[0] == 0.7
    assert load_torque_curve(str(path), zero_first_speed=True).speed_kph[0] == 0.0


def test_samples_must_be_strictly_increasing():
    with pytest.raises(ValueError):
        _samples([0, 10, 10], [1, 2, 3])
    with pytest.raises(ValueError):
        _samples([0, 20, 10], [1, 2, 3])
    with pytest.raises(ValueError):
        _samples([0], [1])
    with pytest.raises(ValueError):
        _samples([0, 10], [1, 2, 3])


def test_line_extrapolation_continues_boundary_slope():
    curve = TorqueCurve(_samples([0, 10, 20], [100, 200, 250]), Extrapolation.LINE)

    assert curve(5.0) == pytest.approx(150.0)
    assert curve(30.0) == pytest.approx(300.0)
    assert curve(-10.0) == pytest.approx(0.0)


def test_flat_extrapolation_holds_boundary_value():
    curve = TorqueCurve(_samples([0, 10, 20], [100, 200, 250]), Extrapolation.FLAT)

    assert curve(15.0) == pytest.approx(225.0)
    assert curve(30.0) == pytest.approx(250.0)
    assert curve(1000.0) == pytest.approx(250.0)
    assert curve(-10.0) == pytest.approx(100.0)


def test_extrapolation_policy_accepts_string():
    assert TorqueCurve(_samples([0, 10], [0, 10]), 'flat').extrapolation is Extrapolation.FLAT


def test_max_curve_is_pointwise_maximum():
    a = TorqueCurve(_samples([0, 100], [500, 100]))
    b = TorqueCurve(_samples([0, 100], [300, 300]))
    combined = MaxTorqueCurve([a, b])

    np.testing.assert_allclose(combined(np.array([0.0, 50.0, 100.0])), [500.0, 300.0, 300.0])


def test_boosted_curve_scales_and_clamps():
    base = TorqueCurve(_samples([0, 100], [1000, 500]))
    boosted = BoostedTorqueCurve(base, ratio=1.5, ceiling=1200.0)

    assert boosted(0.0) == pytest.approx(1200.0)
    assert boosted(100.0) == pytest.approx(750.0)


def test_poly_fit_starts_at_first_sample_below_floor():
    speeds = np.arange(0.0, 11.0)
    torques = np.where(speeds < 3, 3500.0, 3050.0 - 10.0 * speeds)
    curve = PolyFitTorqueCurve(_samples(speeds, torques), torque_floor=3100.0, degree=4, ceiling=3040.0)

    assert curve.fit_start_index == 3
    assert curve(5.0) == pytest.approx(3000.0, abs=1e-6)
    assert curve(10.0) == pytest.approx(2950.0, abs=1e-6)
    # extrapolated back below the fitted region, then clamped
    assert curve(0.0) == pytest.approx(3040.0)


def test_poly_fit_errors():
    samples = _samples([0, 10, 20, 30, 40, 50], [3500, 3400, 3300, 3200, 3150, 3000])
    with pytest.raises(ValueError):
        PolyFitTorqueCurve(samples, torque_floor=2000.0, degree=4, ceiling=4000.0)
    with pytest.raises(ValueError):
        PolyFitTorqueCurve(samples, torque_floor=3100.0, degree=4, ceiling=4000.0)


def test_shipped_curve_set():
    curves = load_curve_set()

    assert curves.rear_axle_1.speed_kph[0] == 0.0
    for samples in (curves.full_availability, curves.front_axle, curves.rear_axle_1, curves.rear_axle_2):
        assert np.all(np.diff(samples.speed_kph) > 0)
        assert samples.speed_kph[-1] >= 250.0


def test_taycan_powertrain_force():
    vehicle = load_vehicle_preset("Porsche Taycan Turbo S")
    calibration = BoostCalibration()
    powertrain = PowertrainForce(load_curve_set(), vehicle, calibration)

    # first front-axle sample under 3100 Nm is the 80 km/h row
    assert powertrain.boosted_front_torque.fit_start_index == 8
    assert powertrain.front_torque(75.0) == pytest.approx((3400.0 + 3035.2) / 2)

    speeds = np.linspace(0.0, 70.0, 141)
    assert np.all(powertrain.boosted_rear_torque(powertrain.curve_speed(speeds)) <= calibration.rear_torque_ceiling)
    assert np.all(powertrain.boosted_front_torque(powertrain.curve_speed(speeds)) <= calibration.front_torque_ceiling)

    # at launch the powertrain can exceed tire grip
    assert powertrain.boosted(0.0) > vehicle.max_traction_force
    assert powertrain.nominal(0.0) == pytest.approx(12000.0 / vehicle.mean_tire_radius)

    # boost adds force over the whole speed range
    assert np.all(powertrain.boosted(speeds) > powertrain.nominal(speeds))


def test_curve_speed_applies_slip_ratio():
    vehicle = load_vehicle_preset("Porsche Taycan Turbo S")
    powertrain = PowertrainForce(load_curve_set(), vehicle)
    assert powertrain.curve_speed(10.0) == pytest.approx(36.0 * vehicle.slip_ratio)
