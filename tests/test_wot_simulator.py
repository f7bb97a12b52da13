import numpy as np
import pytest

from force_model import MPH_TO_MPS, VehicleParams, build_force_model
from performance_report import REFERENCE_PERFORMANCE
from wot_simulator import (
    FIVE_TO_60,
    QUARTER_MILE_M,
    QUARTER_MILE_SPEED,
    QUARTER_MILE_TIME,
    ROLLOUT,
    ZERO_TO_60,
    ZERO_TO_100,
    ZERO_TO_150,
    EnergyBalance,
    EnergyBalanceError,
    SolverSettings,
    TerminationCondition,
    TerminationNotReachedError,
    Threshold,
    ThresholdNotReachedError,
    Trajectory,
    check_energy_balance,
    energy_balance,
    equation_of_state,
    find_threshold_index,
    find_threshold_time,
    integrate_wot,
    locate_thresholds,
)


def _constant(a):
    return lambda v, t: a


def _trajectory(time, position, velocity) -> Trajectory:
    time = np.asarray(time, dtype=float)
    return Trajectory(
        time=time,
        position=np.asarray(position, dtype=float),
        velocity=np.asarray(velocity, dtype=float),
        acceleration=np.zeros_like(time),
    )


def _simple_vehicle() -> VehicleParams:
    return VehicleParams(
        mass=2000.0,
        frontal_area=2.2,
        drag_coefficient=0.3,
        tire_radius_front=0.35,
        tire_radius_rear=0.35,
        boost_duration=2.0,
        traction_utilization=1.0,
        slip_ratio=1.0,
        rolling_resistance=0.012,
        name="Simple",
    )


def test_equation_of_state():
    derivative = equation_of_state(lambda v, t: 2.0 * v + t)
    assert derivative(1.0, [5.0, 3.0]) == [3.0, 7.0]


def test_constant_acceleration_from_rest():
    trajectory = integrate_wot(_constant(1.0), settings=SolverSettings(max_time=10.0))

    assert trajectory.terminal_time == 10.0
    assert trajectory.final_velocity == pytest.approx(10.0, rel=1e-5)
    assert trajectory.position[-1] == pytest.approx(50.0, rel=1e-5)
    np.testing.assert_array_equal(trajectory.acceleration, np.ones(len(trajectory)))
    assert np.allclose(np.diff(trajectory.time), 1e-3)


def test_speed_condition_terminates_at_crossing():
    condition = TerminationCondition.speed("10 m/s", 10.0)
    trajectory = integrate_wot(_constant(2.0), condition)

    assert trajectory.terminal_time == pytest.approx(5.0, rel=1e-8)
    assert trajectory.final_velocity == pytest.approx(10.0, rel=1e-8)
    assert trajectory.condition is condition
    # dense samples up to the event, then the event itself
    assert trajectory.time[-1] - trajectory.time[-2] < 1e-3 + 1e-12
    assert np.all(trajectory.velocity[:-1] <= 10.0 + 1e-9)


def test_distance_condition_terminates_at_crossing():
    trajectory = integrate_wot(_constant(2.0), TerminationCondition.distance("25 m", 25.0))

    assert trajectory.terminal_time == pytest.approx(5.0, rel=1e-8)
    assert trajectory.position[-1] == pytest.approx(25.0, rel=1e-8)


def test_unreachable_condition_is_an_error():
    with pytest.raises(TerminationNotReachedError):
        integrate_wot(
            _constant(1.0),
            TerminationCondition.speed("100 m/s", 100.0),
            SolverSettings(max_time=10.0),
        )


def test_condition_rejects_unknown_variable():
    with pytest.raises(ValueError):
        TerminationCondition("bad", "jerk", 1.0)


def test_threshold_search_returns_first_sample_at_or_above_target():
    trajectory = _trajectory([0, 1, 2, 3], [0, 1, 3, 6], [0, 2, 3, 3])

    assert find_threshold_index(trajectory, "velocity", 2.5) == 2
    assert find_threshold_index(trajectory, "velocity", 2.0) == 1
    assert find_threshold_time(trajectory, "position", 6.0) == 3.0


def test_threshold_not_reached_is_an_error():
    trajectory = _trajectory([0, 1, 2], [0, 1, 2], [0, 1, 1])

    with pytest.raises(ThresholdNotReachedError):
        find_threshold_index(trajectory, "velocity", 5.0)
    with pytest.raises(ThresholdNotReachedError):
        locate_thresholds(trajectory, [Threshold.feet("far", 100.0)])


def test_locate_thresholds_reads_paired_state():
    trajectory = _trajectory([0, 1, 2, 3], [0, 10, 20, 30], [0, 5, 10, 15])
    crossings = locate_thresholds(trajectory, [Threshold("20 m", "position", 20.0)])

    crossing = crossings["20 m"]
    assert crossing.index == 2
    assert crossing.time == 2.0
    assert crossing.velocity == 10.0


def test_threshold_unit_conversions():
    assert Threshold.mph("60", 60).target == pytest.approx(26.8224)
    assert Threshold.feet("rollout", 1).target == pytest.approx(0.3048)
    assert Threshold.miles("quarter", 0.25).target == pytest.approx(402.336)


def test_round_trip_threshold_matches_terminal_time():
    target = 15.0
    trajectory = integrate_wot(lambda v, t: 3.0 - 0.05 * v, TerminationCondition.speed("15 m/s", target))

    assert find_threshold_time(trajectory, "velocity", target) == pytest.approx(trajectory.terminal_time, abs=1e-9)


def test_energy_balance_simple_model():
    vehicle = _simple_vehicle()
    model = build_force_model(vehicle, boosted=lambda v: 40000.0 + 0 * v, nominal=lambda v: 12000.0 + 0 * v)
    trajectory = integrate_wot(model.acceleration, TerminationCondition.speed("30 m/s", 30.0))

    balance = check_energy_balance(energy_balance(trajectory, model))

    assert balance.kinetic_energy == pytest.approx(0.5 * 2000.0 * 30.0 ** 2, rel=1e-8)
    assert balance.drag_loss > 0
    assert balance.rolling_loss > 0
    assert abs(balance.residual) < 1e-3


def test_energy_balance_error():
    with pytest.raises(EnergyBalanceError):
        check_energy_balance(EnergyBalance(tractive_work=1100.0, drag_loss=50.0, rolling_loss=0.0, kinetic_energy=1000.0))


def test_taycan_sixty_between_rollout_and_quarter_mile(taycan_run):
    t60 = taycan_run.zero_to_60.terminal_time
    quarter = find_threshold_time(taycan_run.zero_to_150, "position", QUARTER_MILE_M)

    assert taycan_run.rollout.terminal_time < t60 < quarter
    assert 2.7 < t60 < 3.0
    assert taycan_run.zero_to_60.final_velocity == pytest.approx(60 * MPH_TO_MPS, rel=1e-9)


def test_taycan_energy_residual(taycan_run):
    assert abs(taycan_run.energy.residual) < 1e-3


def test_taycan_round_trip(taycan_run):
    run = taycan_run.zero_to_150
    t = find_threshold_time(run, "velocity", 150 * MPH_TO_MPS)
    assert t == pytest.approx(run.terminal_time, abs=1e-9)

    rollout = taycan_run.rollout
    assert find_threshold_time(rollout, "position", 0.3048) == pytest.approx(rollout.terminal_time, abs=1e-9)


def test_taycan_acceleration_within_traction_limit(taycan_run, taycan):
    limit = taycan.max_traction_force / taycan.mass
    assert np.all(taycan_run.zero_to_150.acceleration <= limit + 1e-9)
    assert np.all(taycan_run.zero_to_150.acceleration > 0)
    assert np.all(np.diff(taycan_run.zero_to_150.velocity) >= 0)


def test_taycan_metrics(taycan_run):
    names = [m.name for m in taycan_run.metrics]
    assert names == [description for description, _ in REFERENCE_PERFORMANCE]

    assert taycan_run.metric(ROLLOUT) == taycan_run.rollout.terminal_time
    assert 0 < taycan_run.metric(ZERO_TO_60) < taycan_run.metric(ZERO_TO_100) < taycan_run.metric(ZERO_TO_150)
    assert taycan_run.metric(ZERO_TO_60) == pytest.approx(
        taycan_run.zero_to_60.terminal_time - taycan_run.rollout.terminal_time
    )
    assert taycan_run.metric(FIVE_TO_60) < taycan_run.zero_to_60.terminal_time
    assert taycan_run.metric(QUARTER_MILE_TIME) < taycan_run.metric(ZERO_TO_150)
    assert 100 < taycan_run.metric(QUARTER_MILE_SPEED) < 150

    with pytest.raises(KeyError):
        taycan_run.metric("0-200 mph (s)")
