import dataclasses
import logging

import numpy as np
import pytest

from config import (
    SimulationConfig, calculate_world_size, cells_per_side, friction_factor_for, make_random_matrix
)
from errors import ConfigInvalid


def test_friction_halves_velocity_over_one_half_life():
    assert friction_factor_for(0.02, 0.02) == pytest.approx(0.5)
    assert friction_factor_for(0.0, 0.02) == 1.0
    assert friction_factor_for(0.01, 0.02) == pytest.approx(0.5 ** 0.5)


@pytest.mark.parametrize("radius, size", [(10.0, 800), (50.0, 800), (30.0, 810), (75.0, 825), (1000.0, 1000)])
def test_world_is_whole_number_of_cells(radius, size):
    assert calculate_world_size(radius) == (size, size)
    assert cells_per_side(radius) * radius == pytest.approx(size, abs=0.5)


def test_random_matrix_range_and_determinism():
    a = make_random_matrix(4, np.random.default_rng(3))
    b = make_random_matrix(4, np.random.default_rng(3))
    assert a.shape == (4, 4)
    assert a.dtype == np.float32
    assert np.all(a >= -1.0) and np.all(a < 1.0)
    np.testing.assert_array_equal(a, b)


def test_derived_values():
    config = SimulationConfig(dt=0.01, friction_half_life=0.02, interaction_radius=30.0, particle_count=12)
    assert config.friction_factor == pytest.approx(0.5 ** 0.5)
    assert (config.world_width, config.world_height) == (810, 810)
    assert config.table_size == 12
    assert config.grid_cells == 27


def test_largest_radius_still_fits_one_cell():
    config = SimulationConfig(interaction_radius=1600.0, particle_count=3)
    assert config.grid_cells == 1
    assert (config.world_width, config.world_height) == (1600, 1600)


def test_flat_matrix_is_reshaped_row_major():
    config = SimulationConfig(type_count=2, attraction_matrix=[0.1, 0.2, 0.3, 0.4])
    assert config.attraction_matrix.shape == (2, 2)
    assert config.attraction_matrix[0, 1] == pytest.approx(0.2)
    assert config.attraction_matrix[1, 0] == pytest.approx(0.3)
    assert not config.attraction_matrix.flags.writeable


def test_matrix_is_drawn_from_seed_when_omitted():
    a = SimulationConfig(type_count=3, seed=5)
    b = SimulationConfig(type_count=3, seed=5)
    c = SimulationConfig(type_count=3, seed=6)
    np.testing.assert_array_equal(a.attraction_matrix, b.attraction_matrix)
    assert not np.array_equal(a.attraction_matrix, c.attraction_matrix)


@pytest.mark.parametrize("params", [
    {"type_count": 0},
    {"particle_count": -1},
    {"interaction_radius": 0.0},
    {"interaction_radius": -5.0},
    {"friction_half_life": 0.0},
    {"dt": -0.001},
    {"sort_strategy": "radix"},
    {"sort_workers": 0},
    {"interaction_radius": 2000.0},
    {"interaction_radius": 1600.5},
    {"type_count": 2, "attraction_matrix": [0.1, 0.2, 0.3]},
    {"type_count": 2, "attraction_matrix": [[0.1, 0.2, 0.3, 0.4]]},
    {"type_count": 1, "attraction_matrix": ["strong"]},
])
def test_invalid_parameters_are_rejected(params):
    with pytest.raises(ConfigInvalid):
        SimulationConfig(**params)


def test_config_invalid_is_a_value_error():
    with pytest.raises(ValueError):
        SimulationConfig(type_count=0)


def test_config_is_frozen():
    config = SimulationConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.dt = 0.5


def test_with_updates_recomputes_derived_values():
    config = SimulationConfig(type_count=2, attraction_matrix=[0.5, 0.5, 0.5, 0.5])
    wider = config.with_updates(interaction_radius=30.0)
    assert wider.world_width == 810
    np.testing.assert_array_equal(wider.attraction_matrix, config.attraction_matrix)
    assert config.interaction_radius == 50.0


def test_with_updates_redraws_matrix_for_new_type_count():
    config = SimulationConfig(type_count=2, attraction_matrix=[0.5, 0.5, 0.5, 0.5])
    more = config.with_updates(type_count=4)
    assert more.attraction_matrix.shape == (4, 4)

    explicit = config.with_updates(type_count=1, attraction_matrix=[0.25])
    assert explicit.attraction_matrix[0, 0] == pytest.approx(0.25)


def test_from_params_ignores_unknown_keys(caplog):
    with caplog.at_level(logging.WARNING):
        config = SimulationConfig.from_params({
            "particle_count": 10, "type_count": 2, "colour_scheme": "neon"
        })
    assert config.particle_count == 10
    assert "colour_scheme" in caplog.text


def test_from_params_does_not_accept_derived_fields():
    config = SimulationConfig.from_params({"world_width": 5, "friction_factor": 0.1})
    assert config.world_width == 800
    assert config.friction_factor == pytest.approx(friction_factor_for(config.dt, config.friction_half_life))
