# particle.py
"""
Manages the state of all particles in the simulation.

This module defines the ParticleSystem class, which is responsible for
initializing and storing particle data (position, velocity, type) in
efficient NumPy arrays, and the small Vec2/Particle types used to hand
single particles across the core's boundary.
"""
import logging
import math
from typing import NamedTuple, Optional

import numpy as np

from errors import ConfigInvalid

# --- Data Contracts ---
#
# class ParticleSystem:
#   - __init__(self, positions, velocities, types):
#     - Inputs: arrays of shape (N, 2), (N, 2) and (N,).
#     - Invariants:
#       - self.positions is a NumPy array of shape (N, 2) of dtype float32.
#       - self.velocities is a NumPy array of shape (N, 2) of dtype float32.
#       - self.types is a NumPy array of shape (N,) of dtype uint32.
#       - Particle i keeps index i for the lifetime of the system.
#
#   - ParticleSystem.generate(config, rng) -> ParticleSystem:
#     - Positions uniform in [0, world_width) x [0, world_height),
#       velocities zero, types uniform in [0, type_count).


class Vec2(NamedTuple):
    """Minimal 2-D vector."""
    x: float
    y: float

    def __sub__(self, other):
        return Vec2(self.x - other[0], self.y - other[1])

    def length_squared(self) -> float:
        return self.x * self.x + self.y * self.y

    def distance_squared(self, other) -> float:
        return (self - other).length_squared()

    def distance(self, other) -> float:
        return math.sqrt(self.distance_squared(other))


class Particle(NamedTuple):
    position: Vec2
    velocity: Vec2
    particle_type: int


class ParticleSystem:
    """
    A container for all particles, managing their state via NumPy arrays.
    """
    def __init__(self, positions, velocities=None, types=None):
        """
        Wraps existing particle arrays.

        Args:
            positions: Array-like of shape (N, 2).
            velocities: Array-like of shape (N, 2); zeros when omitted.
            types: Array-like of shape (N,); all type 0 when omitted.
        """
        self.positions = np.array(positions, dtype=np.float32).reshape(-1, 2)
        self.particle_count = self.positions.shape[0]

        if velocities is None:
            self.velocities = np.zeros((self.particle_count, 2), dtype=np.float32)
        else:
            self.velocities = np.array(velocities, dtype=np.float32).reshape(-1, 2)

        if types is None:
            self.types = np.zeros(self.particle_count, dtype=np.uint32)
        else:
            types = np.asarray(types)
            if types.size and types.min() < 0:
                msg = "Particle types cannot be negative."
                logging.critical(msg)
                raise ConfigInvalid(msg)
            self.types = types.astype(np.uint32).reshape(-1)

        if self.velocities.shape[0] != self.particle_count or self.types.shape[0] != self.particle_count:
            msg = (
                f"Particle buffer mismatch: {self.particle_count} positions, "
                f"{self.velocities.shape[0]} velocities, {self.types.shape[0]} types."
            )
            logging.critical(msg)
            raise ConfigInvalid(msg)

    @classmethod
    def generate(cls, config, rng: Optional[np.random.Generator] = None) -> "ParticleSystem":
        """
        Creates `config.particle_count` particles scattered over the world.

        Args:
            config (SimulationConfig): Supplies count, type count and world size.
            rng (np.random.Generator): Source of randomness; seeded from
                `config.seed` when omitted.
        """
        if rng is None:
            rng = np.random.default_rng(config.seed)

        positions = rng.uniform(
            low=[0, 0],
            high=[config.world_width, config.world_height],
            size=(config.particle_count, 2)
        )
        types = rng.integers(
            low=0,
            high=config.type_count,
            size=config.particle_count,
            dtype=np.uint32
        )
        system = cls(positions, None, types)

        logging.info(
            f"ParticleSystem initialized with {system.particle_count} "
            f"particles of {config.type_count} types."
        )
        logging.debug(
            f"Particle data arrays created. "
            f"Positions shape: {system.positions.shape}, "
            f"Velocities shape: {system.velocities.shape}, "
            f"Types shape: {system.types.shape}"
        )
        return system

    def check_types(self, type_count: int) -> None:
        """Raises ConfigInvalid if any particle type is outside [0, type_count)."""
        if self.particle_count and int(self.types.max()) >= type_count:
            msg = (
                f"Particle type {int(self.types.max())} is out of range for "
                f"{type_count} particle types."
            )
            logging.critical(msg)
            raise ConfigInvalid(msg)

    def particle(self, i: int) -> Particle:
        pos = self.positions[i]
        vel = self.velocities[i]
        return Particle(
            Vec2(float(pos[0]), float(pos[1])),
            Vec2(float(vel[0]), float(vel[1])),
            int(self.types[i])
        )

    def __len__(self):
        return self.particle_count
