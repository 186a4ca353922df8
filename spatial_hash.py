# spatial_hash.py
"""
Maps positions to grid cells, cells to hashes, and hashes to bucket keys.

The grid is a uniform 2-D grid whose cell size equals the interaction
radius, so every neighbor of a particle lies in the particle's own cell or
one of the 8 cells around it. Cells are never stored explicitly: a cell's
hash is folded into a bounded key, and the neighbor index buckets particles
by that key.

Different cells can fold to the same key. Callers must compare the full
hash to tell them apart.
"""
from typing import NamedTuple, Optional

import numpy as np
from numba import jit

from constants import HASH_K1, HASH_K2, NEIGHBOR_OFFSETS, UINT32_MASK

# Numba reads module-level arrays as compile-time constants.
NEIGHBOR_OFFSETS_ARRAY = np.array(NEIGHBOR_OFFSETS, dtype=np.int64)


@jit(nopython=True)
def cell_of(x, y, cell_size):
    """Returns the integer (cx, cy) cell containing the point (x, y)."""
    return int(np.floor(x / cell_size)), int(np.floor(y / cell_size))


@jit(nopython=True)
def hash_cell(cx, cy):
    """
    Hashes a cell coordinate to an unsigned 32-bit value.

    Negative coordinates are reinterpreted as their two's-complement u32
    value and the result wraps modulo 2**32.
    """
    ux = np.int64(cx) & UINT32_MASK
    uy = np.int64(cy) & UINT32_MASK
    return (ux * HASH_K1 + uy * HASH_K2) & UINT32_MASK


@jit(nopython=True)
def key_of(cell_hash, table_size):
    """Folds a cell hash into the range [0, table_size)."""
    return np.int64(cell_hash) % np.int64(table_size)


class WorldWrap(NamedTuple):
    """A toroidal world of `cells_x` by `cells_y` whole grid cells."""
    width: float
    height: float
    cells_x: int
    cells_y: int


def wrap_args(world_wrap: Optional[WorldWrap]) -> tuple:
    """Flattens an optional WorldWrap into the scalar arguments kernels take."""
    if world_wrap is None:
        return False, np.float64(0.0), np.float64(0.0), np.int64(1), np.int64(1)
    return (
        True, np.float64(world_wrap.width), np.float64(world_wrap.height),
        np.int64(world_wrap.cells_x), np.int64(world_wrap.cells_y)
    )


@jit(nopython=True)
def grid_cell(x, y, cell_size, wrap, cells_x, cells_y):
    """Like `cell_of`, but folded onto the grid when the world wraps."""
    cx, cy = cell_of(x, y, cell_size)
    if wrap:
        cx %= cells_x
        cy %= cells_y
    return cx, cy


@jit(nopython=True)
def neighbor_cell(cx, cy, o, wrap, cells_x, cells_y):
    """
    Returns (nx, ny, first): the cell at NEIGHBOR_OFFSETS[o] from (cx, cy).

    `first` is False when an earlier offset already reached the same cell,
    which only happens on a wrapped grid narrower than three cells. Callers
    skip such cells so no particle is visited twice.
    """
    nx = cx + NEIGHBOR_OFFSETS_ARRAY[o, 0]
    ny = cy + NEIGHBOR_OFFSETS_ARRAY[o, 1]
    if not wrap:
        return nx, ny, True
    nx %= cells_x
    ny %= cells_y
    if cells_x < 3 or cells_y < 3:
        for p in range(o):
            if ((cx + NEIGHBOR_OFFSETS_ARRAY[p, 0]) % cells_x == nx
                    and (cy + NEIGHBOR_OFFSETS_ARRAY[p, 1]) % cells_y == ny):
                return nx, ny, False
    return nx, ny, True


@jit(nopython=True)
def min_image(d, size, wrap):
    """Shortest signed offset along one axis of a wrapped world."""
    if wrap:
        return d - size * np.floor(d / size + 0.5)
    return d
