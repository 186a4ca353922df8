# simulation.py
"""
Handles the core simulation loop.

This module defines the Simulation class, which owns the live
configuration, the particle buffer and the neighbor index, and advances
them one tick at a time through a fixed sequence of stages:

    BUILD_INDEX -> SORT_ENTRIES -> COMPUTE_OFFSETS
        -> COMPUTE_FORCES_AND_VELOCITIES -> INTEGRATE_POSITIONS -> BUILD_INDEX

New positions and velocities are written to scratch buffers and only
replace the particle buffer when the last stage finishes, so a tick that is
in progress (or aborted) is never visible through `snapshot()`.
"""
import logging
from enum import Enum
from typing import NamedTuple, Optional, Tuple

import numpy as np

from config import SimulationConfig, friction_factor_for, make_random_matrix
from errors import ConfigInvalid
from forces import integrate_positions_kernel, update_velocities_kernel, wrap_positions
from neighbor_index import NeighborIndex, NeighborIndexBuilder
from particle import Particle, ParticleSystem, Vec2
from sorting import KernelLauncher
from spatial_hash import WorldWrap

# --- Data Contracts ---
#
# class Simulation:
#   - __init__(self, config: SimulationConfig, particles: ParticleSystem = None):
#     - Inputs:
#       - config: A validated SimulationConfig.
#       - particles: Optional explicit buffer; generated from the config
#         when omitted.
#     - Raises: ConfigInvalid if the buffer does not match the config.
#
#   - step(self, frame_dt: float = None) -> None:
#     - Side Effects: Runs every remaining stage of the current tick and
#       commits new positions and velocities.
#     - Invariants: Particle count and order remain constant.
#
#   - reconfigure(self, config: SimulationConfig, regenerate: bool = False) -> None:
#     - Side Effects: Discards index and in-flight tick state. Regenerates
#       particles when the count, type count or seed changed.
#     - Raises: ConfigInvalid before touching any state.


class TickStage(Enum):
    BUILD_INDEX = "build_index"
    SORT_ENTRIES = "sort_entries"
    COMPUTE_OFFSETS = "compute_offsets"
    COMPUTE_FORCES_AND_VELOCITIES = "compute_forces_and_velocities"
    INTEGRATE_POSITIONS = "integrate_positions"


NEXT_STAGE = {
    TickStage.BUILD_INDEX: TickStage.SORT_ENTRIES,
    TickStage.SORT_ENTRIES: TickStage.COMPUTE_OFFSETS,
    TickStage.COMPUTE_OFFSETS: TickStage.COMPUTE_FORCES_AND_VELOCITIES,
    TickStage.COMPUTE_FORCES_AND_VELOCITIES: TickStage.INTEGRATE_POSITIONS,
    TickStage.INTEGRATE_POSITIONS: TickStage.BUILD_INDEX,
}


class Snapshot(NamedTuple):
    """Read-only views of the particle buffer after a completed tick."""
    positions: np.ndarray
    velocities: np.ndarray
    types: np.ndarray


def _read_only(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.flags.writeable = False
    return view


class Simulation:
    """
    Advances a particle-life system using a sorted spatial-hash index.
    """
    def __init__(self, config: SimulationConfig, particles: Optional[ParticleSystem] = None):
        """
        Initializes the simulation environment.

        Args:
            config (SimulationConfig): Validated experimental parameters.
            particles (ParticleSystem): Optional initial buffer.
        """
        if not isinstance(config, SimulationConfig):
            raise ConfigInvalid(f"Expected a SimulationConfig, got {type(config).__name__}.")

        self.config = config
        self.rng = np.random.default_rng(config.seed)
        self.tick_count = 0
        self._pending_config: Optional[SimulationConfig] = None
        self._frame_dt: Optional[float] = None
        self.builder: Optional[NeighborIndexBuilder] = None

        if particles is None:
            particles = ParticleSystem.generate(config, self.rng)
        else:
            self._check_buffer(particles, config)
        self.particles = particles

        self._build_pipeline()
        self._discard_tick()

        logging.info("Simulation logic initialized and configuration validated.")
        logging.info(
            f"Spatial hash enabled: {config.table_size} buckets, "
            f"cell size {config.interaction_radius:.2f}, "
            f"world {config.world_width}x{config.world_height}, "
            f"'{config.sort_strategy}' sort, "
            f"{'parallel' if config.parallel else 'serial'} kernels."
        )

    # --- Setup -----------------------------------------------------------

    @staticmethod
    def _check_buffer(particles: ParticleSystem, config: SimulationConfig) -> None:
        if particles.particle_count != config.particle_count:
            msg = (
                f"Configuration error: buffer holds {particles.particle_count} particles "
                f"but particle_count is {config.particle_count}."
            )
            logging.critical(msg)
            raise ConfigInvalid(msg)
        particles.check_types(config.type_count)

    def _build_pipeline(self) -> None:
        if self.builder is not None:
            self.builder.close()
        self.launcher = KernelLauncher(self.config.parallel)
        self.builder = NeighborIndexBuilder(
            strategy=self.config.sort_strategy,
            launcher=self.launcher,
            sort_workers=self.config.sort_workers
        )

    def _world_wrap(self) -> Optional[WorldWrap]:
        config = self.config
        if not config.wrap_world:
            return None
        return WorldWrap(config.world_width, config.world_height, config.grid_cells, config.grid_cells)

    def _discard_tick(self) -> None:
        self.stage = TickStage.BUILD_INDEX
        self.index: Optional[NeighborIndex] = None
        self._next_velocities: Optional[np.ndarray] = None
        self._tick_dt = self.config.dt
        self._tick_friction = self.config.friction_factor

    # --- Tick ------------------------------------------------------------

    def step(self, frame_dt: Optional[float] = None) -> None:
        """
        Executes one time step of the simulation.

        Args:
            frame_dt (float): Optional step length for this tick. When given,
                it replaces config.dt and the friction factor is derived
                for it. Ignored if a tick was already partly advanced.
        """
        if self.stage == TickStage.BUILD_INDEX and frame_dt is not None:
            if frame_dt < 0:
                raise ValueError(f"frame_dt cannot be negative, got {frame_dt}.")
            self._frame_dt = frame_dt
        self.advance()
        while self.stage != TickStage.BUILD_INDEX:
            self.advance()

    def advance(self) -> TickStage:
        """
        Executes the current stage only and moves to the next one.

        Returns:
            TickStage: The stage that was executed.
        """
        if self._pending_config is not None:
            pending, self._pending_config = self._pending_config, None
            if self.stage != TickStage.BUILD_INDEX:
                logging.info(f"Aborting in-flight tick at stage {self.stage.value} for reconfiguration.")
            self.reconfigure(pending)

        stage = self.stage
        try:
            self._run_stage(stage)
        except Exception:
            logging.critical(f"Tick {self.tick_count} aborted during stage {stage.value}.")
            self._discard_tick()
            raise
        self.stage = NEXT_STAGE[stage]
        return stage

    def _run_stage(self, stage: TickStage) -> None:
        config = self.config
        particles = self.particles

        if stage == TickStage.BUILD_INDEX:
            frame_dt = self._frame_dt
            self._frame_dt = None
            if frame_dt is None:
                self._tick_dt = config.dt
                self._tick_friction = config.friction_factor
            else:
                self._tick_dt = frame_dt
                self._tick_friction = friction_factor_for(frame_dt, config.friction_half_life)
            self.index = self.builder.compute_entries(
                particles.positions, config.interaction_radius, config.table_size,
                self._world_wrap()
            )

        elif stage == TickStage.SORT_ENTRIES:
            self.builder.sort_entries(self.index)

        elif stage == TickStage.COMPUTE_OFFSETS:
            self.builder.compute_offsets(self.index)

        elif stage == TickStage.COMPUTE_FORCES_AND_VELOCITIES:
            index = self.index
            out_velocities = np.empty_like(particles.velocities)
            if particles.particle_count:
                self.launcher.launch(
                    update_velocities_kernel, particles.particle_count,
                    particles.positions, particles.velocities, particles.types, out_velocities,
                    index.keys, index.hashes, index.indices, index.start_offsets,
                    np.int64(index.table_size), np.float64(index.cell_size), *index.wrap_params,
                    np.float64(config.interaction_radius), np.float64(config.force_factor),
                    config.attraction_matrix, np.float64(self._tick_dt),
                    np.float64(self._tick_friction), config.include_self
                )
            self._next_velocities = out_velocities

        elif stage == TickStage.INTEGRATE_POSITIONS:
            new_positions = particles.positions.copy()
            if particles.particle_count:
                self.launcher.launch(
                    integrate_positions_kernel, particles.particle_count,
                    new_positions, self._next_velocities, np.float64(self._tick_dt)
                )
            if config.wrap_world:
                wrap_positions(new_positions, config.world_width, config.world_height)

            # Commit. Arrays handed out by earlier snapshots are never written again.
            particles.positions = new_positions
            particles.velocities = self._next_velocities
            self._next_velocities = None
            self.tick_count += 1

    # --- Reconfiguration -------------------------------------------------

    def reconfigure(self, config: SimulationConfig, regenerate: bool = False) -> None:
        """
        Replaces the configuration and restarts at BUILD_INDEX.

        Args:
            config (SimulationConfig): The new configuration.
            regenerate (bool): Regenerate particles even if the count,
                type count and seed are unchanged.
        """
        if not isinstance(config, SimulationConfig):
            raise ConfigInvalid(f"Expected a SimulationConfig, got {type(config).__name__}.")

        old = self.config
        regenerate = (
            regenerate
            or config.particle_count != old.particle_count
            or config.type_count != old.type_count
            or config.seed != old.seed
        )
        if not regenerate:
            # Validate against the live buffer before anything changes.
            self._check_buffer(self.particles, config)

        self.config = config
        if regenerate:
            self.rng = np.random.default_rng(config.seed)
            self.particles = ParticleSystem.generate(config, self.rng)
            self.tick_count = 0
        self._build_pipeline()
        self._discard_tick()

        logging.info(
            f"Simulation reconfigured: {config.particle_count} particles, "
            f"{config.type_count} types, r_max {config.interaction_radius}"
            f"{' (particles regenerated)' if regenerate else ''}."
        )

    def request_reconfigure(self, config: SimulationConfig) -> None:
        """
        Queues a reconfiguration for the next stage boundary.

        A tick that is in progress when the request is applied is discarded
        wholesale; it is never resumed.
        """
        if not isinstance(config, SimulationConfig):
            raise ConfigInvalid(f"Expected a SimulationConfig, got {type(config).__name__}.")
        self._pending_config = config
        logging.debug("Reconfiguration requested.")

    def place_particles(self, positions, types=None, velocities=None) -> None:
        """Replaces the particle buffer with explicit particles."""
        particles = ParticleSystem(positions, velocities, types)
        self._check_buffer(particles, self.config)
        self.particles = particles
        self._discard_tick()
        logging.debug(f"Placed {particles.particle_count} particles explicitly.")

    # --- Attraction matrix -----------------------------------------------

    def randomize_attraction_matrix(self) -> None:
        """
        Replaces the current attraction matrix with random values between -1.0 and 1.0.
        """
        matrix = make_random_matrix(self.config.type_count, self.rng)
        self.config = self.config.with_updates(attraction_matrix=matrix)
        logging.info("Attraction matrix randomized.")

    def reset_attraction_matrix(self) -> None:
        """Sets every attraction coefficient to zero."""
        type_count = self.config.type_count
        self.config = self.config.with_updates(
            attraction_matrix=np.zeros((type_count, type_count), dtype=np.float32)
        )
        logging.info("Attraction matrix reset to all zeros.")

    def set_attraction(self, row: int, col: int, value: float) -> None:
        """Sets one coefficient, clipped to [-1, 1]."""
        matrix = np.array(self.config.attraction_matrix)
        old_value = matrix[row, col]
        matrix[row, col] = np.clip(value, -1.0, 1.0)
        self.config = self.config.with_updates(attraction_matrix=matrix)
        logging.info(
            f"Attraction matrix updated at ({row}, {col}). "
            f"Old: {old_value:.2f}, New: {matrix[row, col]:.2f}"
        )

    # --- Output ----------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Particle state as of the last completed tick, ordered by original index."""
        return Snapshot(
            _read_only(self.particles.positions),
            _read_only(self.particles.velocities),
            _read_only(self.particles.types)
        )

    def particle(self, i: int) -> Particle:
        """Particle `i` as of the last completed tick."""
        return self.particles.particle(i)

    def nearest_particle(self, point: Vec2, max_distance: float) -> Optional[Tuple[int, Particle]]:
        """
        Finds the particle closest to `point`, for inspecting the buffer.

        Args:
            point (Vec2): World coordinates.
            max_distance (float): Particles farther than this are ignored.

        Returns:
            (index, Particle), or None if no particle is close enough.
        """
        if self.particles.particle_count == 0:
            return None
        offsets = self.particles.positions - np.array(point, dtype=np.float32)
        i = int(np.argmin(np.einsum('ij,ij->i', offsets, offsets)))
        found = self.particle(i)
        if found.position.distance(point) > max_distance:
            return None
        return i, found

    def close(self) -> None:
        if self.builder is not None:
            self.builder.close()
