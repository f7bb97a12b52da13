import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from force_model import load_vehicle_preset, build_force_model  # noqa: E402
from torque_curves import build_powertrain  # noqa: E402
from wot_simulator import DEFAULT_PRESET, simulate_performance  # noqa: E402


@pytest.fixture(scope="session")
def taycan():
    return load_vehicle_preset(DEFAULT_PRESET)


@pytest.fixture(scope="session")
def taycan_force_model(taycan):
    powertrain = build_powertrain(taycan)
    return build_force_model(taycan, powertrain.boosted, powertrain.nominal)


@pytest.fixture(scope="session")
def taycan_run(taycan_force_model):
    return simulate_performance(taycan_force_model)
