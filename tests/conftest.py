import logging

import numpy as np
import pytest

from config import SimulationConfig
from sorting import KernelLauncher


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture(params=[False, True], ids=["serial", "parallel"])
def launcher(request):
    return KernelLauncher(parallel=request.param)


@pytest.fixture
def scenario_config():
    """Four particles, one type, r_max 10."""
    return SimulationConfig(
        particle_count=4,
        type_count=1,
        interaction_radius=10.0,
        dt=0.01,
        force_factor=1.0,
        attraction_matrix=[0.5],
        parallel=False,
    )


@pytest.fixture
def scenario_positions():
    return np.array([[0.0, 0.0], [1.0, 0.0], [20.0, 20.0], [21.0, 20.0]])


@pytest.fixture
def make_positions(rng):
    def _make(count, size=200.0):
        return rng.uniform(0.0, size, size=(count, 2)).astype(np.float32)
    return _make


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
