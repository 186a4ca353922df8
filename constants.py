# constants.py
"""
Application-level constants.

These values are static and do not change between simulation runs.
They are fundamental to the application's framework, such as the spatial
hash constants, the shape of the force law, or the display settings, and
are not part of the experimental configuration.
"""

# --- Spatial Hash ---
# Two large odd multipliers so that adjacent cells rarely share a key
# after the final modulo.
HASH_K1 = 15823
HASH_K2 = 9737333
# Hash arithmetic wraps like an unsigned 32-bit integer.
UINT32_MASK = 0xFFFFFFFF
# Key used for the padding entries of the sorting network. It sorts after
# every real key because real keys are always < table_size.
SENTINEL_KEY = 0xFFFFFFFF

# The 3x3 block of cells searched around a particle's own cell.
NEIGHBOR_OFFSETS = (
    (-1, 1), (0, 1), (1, 1),
    (-1, 0), (0, 0), (1, 0),
    (-1, -1), (0, -1), (1, -1),
)

# --- Force Law ---
# Fraction of the interaction radius occupied by the universal repulsion core.
FORCE_BETA = 0.3

# --- World Size ---
# The world is sized to a whole number of cells close to this edge length.
DESIRED_WORLD_SIZE = 800.0

# --- Default Experimental Parameters ---
DEFAULT_PARTICLE_COUNT = 10_000
DEFAULT_DT = 0.002
DEFAULT_FRICTION_HALF_LIFE = 0.02
DEFAULT_INTERACTION_RADIUS = 50.0
DEFAULT_TYPE_COUNT = 6
DEFAULT_FORCE_FACTOR = 15.0

SORT_STRATEGIES = ("comparison", "bitonic")

# Visualization settings
FPS = 60
BACKGROUND_COLOR = (0, 0, 0)
DEFAULT_PARTICLE_RADIUS = 2

# A curated list of vibrant default colors for particles, used if the
# config file does not provide a color list.
VIBRANT_COLORS = [
    (255, 0, 102),   # Hot Pink
    (0, 255, 255),   # Cyan
    (255, 204, 0),   # Gold
    (0, 255, 102),   # Bright Green
    (204, 0, 255),   # Purple
    (255, 102, 0)    # Orange
]
