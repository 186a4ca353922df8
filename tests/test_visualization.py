from types import SimpleNamespace

import pytest

pytest.importorskip("pygame")

from constants import VIBRANT_COLORS  # noqa: E402
from simulation import Simulation  # noqa: E402
from visualization import Visualizer, particle_colors  # noqa: E402


def test_grayscale_ramp():
    colors = particle_colors(3, grayscale=True)
    assert colors == [(80, 80, 80), (167, 167, 167), (255, 255, 255)]
    assert particle_colors(1, grayscale=True) == [(255, 255, 255)]


def test_default_palette_wraps():
    colors = particle_colors(8)
    assert len(colors) == 8
    assert colors[0] == VIBRANT_COLORS[0]
    assert colors[6] == VIBRANT_COLORS[0]


def test_config_colors_are_padded_and_truncated():
    colors = particle_colors(3, [[1, 2, 3]])
    assert colors == [(1, 2, 3), VIBRANT_COLORS[1], VIBRANT_COLORS[2]]
    assert particle_colors(1, [[1, 2, 3], [4, 5, 6]]) == [(1, 2, 3)]


def test_unparseable_colors_fall_back(caplog):
    colors = particle_colors(2, [["red", "green", "blue"]])
    assert colors == [VIBRANT_COLORS[0], VIBRANT_COLORS[1]]
    assert "Falling back" in caplog.text


def test_click_selects_nearest_particle(scenario_config, scenario_positions):
    sim = Simulation(scenario_config)
    sim.place_particles(scenario_positions)
    # Screen and world are both 800x800, so clicks map 1:1.
    window = SimpleNamespace(width=800, height=800, selected=None)
    try:
        Visualizer._inspect(window, sim, (20, 21))
        assert window.selected == 2
        Visualizer._inspect(window, sim, (400, 400))
        assert window.selected is None
    finally:
        sim.close()
