# config.py
"""
Experimental configuration of a particle-life run.

This module defines SimulationConfig, the single source of truth for the
parameters the simulation core reads every tick, together with the values
derived from them (friction factor and world size). A config is validated
when it is created and never mutated afterwards; edits produce a new config
through `with_updates`.
"""
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import numpy as np

from constants import (
    DEFAULT_DT, DEFAULT_FORCE_FACTOR, DEFAULT_FRICTION_HALF_LIFE,
    DEFAULT_INTERACTION_RADIUS, DEFAULT_PARTICLE_COUNT, DEFAULT_TYPE_COUNT,
    DESIRED_WORLD_SIZE, SORT_STRATEGIES
)
from errors import ConfigInvalid

# --- Data Contracts ---
#
# class SimulationConfig:
#   - Inputs: experimental parameters (see field list).
#   - Derived: friction_factor, world_width, world_height, grid_cells.
#   - Invariants:
#     - attraction_matrix is a read-only float32 array of shape
#       (type_count, type_count).
#     - type_count >= 1, particle_count >= 0, interaction_radius > 0,
#       friction_half_life > 0, dt >= 0.
#     - The world holds at least one cell per side (interaction_radius
#       at most 1600).
#
# SimulationConfig.from_params(params: Dict[str, Any]) -> SimulationConfig:
#   - Inputs: the "simulation_parameters" section of config.json.
#   - Raises: ConfigInvalid on any violated invariant.


def friction_factor_for(dt: float, friction_half_life: float) -> float:
    """Per-tick velocity decay for an exponential half-life."""
    return 0.5 ** (dt / friction_half_life)


def cells_per_side(interaction_radius: float) -> int:
    """Number of grid cells along each world edge, `round(800 / r_max)`."""
    return int(math.floor(DESIRED_WORLD_SIZE / interaction_radius + 0.5))


def calculate_world_size(interaction_radius: float) -> tuple:
    """
    Sizes the world to a whole number of grid cells.

    Both dimensions are `round(800 / r_max) * r_max`, so a cell always
    spans exactly one interaction radius.
    """
    size = int(math.floor(cells_per_side(interaction_radius) * interaction_radius + 0.5))
    logging.debug(f"World size: {size} x {size}")
    return size, size


def make_random_matrix(type_count: int, rng: np.random.Generator) -> np.ndarray:
    """Returns a (type_count, type_count) matrix of values in [-1, 1)."""
    return (rng.random((type_count, type_count)) * 2.0 - 1.0).astype(np.float32)


def _reject(msg: str) -> None:
    logging.critical(msg)
    raise ConfigInvalid(msg)


@dataclass(frozen=True, eq=False)
class SimulationConfig:
    """
    Parameters of one simulation instance.

    `attraction_matrix` may be given as a nested list, a flat row-major
    sequence of length type_count**2, or an array. When it is None a random
    matrix is drawn from `seed`.
    """
    particle_count: int = DEFAULT_PARTICLE_COUNT
    dt: float = DEFAULT_DT
    friction_half_life: float = DEFAULT_FRICTION_HALF_LIFE
    interaction_radius: float = DEFAULT_INTERACTION_RADIUS
    type_count: int = DEFAULT_TYPE_COUNT
    force_factor: float = DEFAULT_FORCE_FACTOR
    attraction_matrix: Optional[Any] = None
    grayscale: bool = True
    seed: int = 0
    include_self: bool = True
    sort_strategy: str = "comparison"
    parallel: bool = True
    sort_workers: int = 1
    wrap_world: bool = False

    friction_factor: float = field(init=False)
    world_width: int = field(init=False)
    world_height: int = field(init=False)
    grid_cells: int = field(init=False)

    def __post_init__(self):
        self._validate_scalars()

        if self.attraction_matrix is None:
            matrix = make_random_matrix(self.type_count, np.random.default_rng(self.seed))
        else:
            matrix = self._coerce_matrix(self.attraction_matrix)
        matrix.setflags(write=False)
        object.__setattr__(self, 'attraction_matrix', matrix)

        object.__setattr__(
            self, 'friction_factor',
            friction_factor_for(self.dt, self.friction_half_life)
        )
        width, height = calculate_world_size(self.interaction_radius)
        object.__setattr__(self, 'world_width', width)
        object.__setattr__(self, 'world_height', height)
        object.__setattr__(self, 'grid_cells', cells_per_side(self.interaction_radius))

    def _validate_scalars(self) -> None:
        if self.type_count < 1:
            _reject(f"Configuration error: type_count must be at least 1, got {self.type_count}.")
        if self.particle_count < 0:
            _reject(f"Configuration error: particle_count cannot be negative, got {self.particle_count}.")
        if not self.interaction_radius > 0:
            _reject(
                f"Configuration error: interaction_radius must be positive, got "
                f"{self.interaction_radius}. It is also the grid cell size."
            )
        elif cells_per_side(self.interaction_radius) < 1:
            _reject(
                f"Configuration error: interaction_radius {self.interaction_radius} is larger "
                f"than the world; it must be at most {2 * DESIRED_WORLD_SIZE:g} so the world "
                f"holds at least one grid cell."
            )
        if not self.friction_half_life > 0:
            _reject(
                f"Configuration error: friction_half_life must be positive, got "
                f"{self.friction_half_life}."
            )
        if self.dt < 0:
            _reject(f"Configuration error: dt cannot be negative, got {self.dt}.")
        if self.sort_strategy not in SORT_STRATEGIES:
            _reject(
                f"Configuration error: unknown sort_strategy '{self.sort_strategy}'. "
                f"Expected one of {SORT_STRATEGIES}."
            )
        if self.sort_workers < 1:
            _reject(f"Configuration error: sort_workers must be at least 1, got {self.sort_workers}.")

    def _coerce_matrix(self, raw) -> np.ndarray:
        try:
            matrix = np.array(raw, dtype=np.float32)
        except (TypeError, ValueError) as e:
            _reject(f"Configuration error: attraction_matrix is not numeric: {e}")

        expected = self.type_count * self.type_count
        if matrix.size != expected:
            _reject(
                f"Configuration error: attraction_matrix has {matrix.size} entries "
                f"but type_count ({self.type_count}) requires {expected}. The matrix must be "
                f"square and its dimensions must equal the number of particle types."
            )
        if matrix.ndim not in (1, 2) or (matrix.ndim == 2 and matrix.shape[0] != matrix.shape[1]):
            _reject(f"Configuration error: attraction_matrix shape {matrix.shape} is not square.")
        return matrix.reshape(self.type_count, self.type_count).copy()

    @property
    def table_size(self) -> int:
        """Number of hash buckets tracked by the neighbor index."""
        return self.particle_count

    def with_updates(self, **changes) -> "SimulationConfig":
        """
        Returns a new validated config with `changes` applied.

        Derived values are always recomputed. Changing `type_count` without
        supplying a matrix draws a new random attraction matrix.
        """
        if 'type_count' in changes and changes['type_count'] != self.type_count:
            changes.setdefault('attraction_matrix', None)
        return replace(self, **changes)

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "SimulationConfig":
        """Builds a config from the `simulation_parameters` section of config.json."""
        known = {f.name for f in cls.__dataclass_fields__.values() if f.init}
        unknown = sorted(set(params) - known)
        if unknown:
            logging.warning(f"Ignoring unknown simulation parameters: {unknown}")
        config = cls(**{k: v for k, v in params.items() if k in known})
        logging.info(
            f"Configuration validated: {config.particle_count} particles, "
            f"{config.type_count} types, r_max {config.interaction_radius}, "
            f"sort strategy '{config.sort_strategy}'."
        )
        return config
