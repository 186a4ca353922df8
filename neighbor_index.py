# neighbor_index.py
"""
Sorted spatial-hash index over the particle buffer.

Every tick the index is rebuilt in three stages:

1. entries: one (original_index, hash, key) triple per particle.
2. sort: entries ordered by key, so each key's entries form one run.
3. offsets: start_offsets[key] = first position of that key's run.

A query then visits the 3x3 block of cells around a point, jumps to each
cell's run through start_offsets, and skips entries whose full hash differs
(another cell that folded to the same key).

On a wrapped world the 3x3 block wraps around the grid edges and offsets
use the nearest periodic image, so particles on opposite edges interact.
"""
import logging
from typing import Optional

import numpy as np
from numba import jit, prange

from errors import IndexBuildFailure
from sorting import ComparisonSorter, KernelLauncher, bitonic_sort, kernel
from spatial_hash import (
    NEIGHBOR_OFFSETS_ARRAY, WorldWrap, grid_cell, hash_cell, key_of, min_image, neighbor_cell,
    wrap_args
)

# --- Data Contracts ---
#
# class NeighborIndex:
#   - indices, hashes, keys: uint32 arrays of length N, sorted by key
#     once the sort stage has run.
#   - start_offsets: uint32 array of length table_size. Slots of empty
#     buckets hold the sentinel N (one past the last entry).
#   - Invariants: for every key k present, entries with key k are
#     contiguous and start_offsets[k] is the first of them.
#
# class NeighborIndexBuilder:
#   - build(positions, cell_size, table_size, world_wrap=None) -> NeighborIndex
#   - Raises: IndexBuildFailure if table_size <= 0 with particles present,
#     or if the sorted keys are out of order.


@kernel
def compute_entries_kernel(lanes, positions, cell_size, table_size, wrap, cells_x, cells_y,
                           indices, hashes, keys):
    for lane in prange(lanes):
        i = np.int64(lane)
        cx, cy = grid_cell(positions[i, 0], positions[i, 1], cell_size, wrap, cells_x, cells_y)
        h = hash_cell(cx, cy)
        indices[i] = i
        hashes[i] = h
        keys[i] = key_of(h, table_size)


@kernel
def compute_offsets_kernel(lanes, keys, start_offsets):
    # Only the first position of each run writes, so every slot is written
    # at most once. Even if two lanes raced on a slot they would write the
    # same value; no lock is needed.
    for lane in prange(lanes):
        p = np.int64(lane)
        key = keys[p]
        if p == 0 or key != keys[p - 1]:
            start_offsets[key] = p


@jit(nopython=True)
def bucket_run(keys, start_offsets, key):
    """Returns the [start, stop) slice of sorted entries holding `key`."""
    count = keys.shape[0]
    start = np.int64(start_offsets[key])
    stop = start
    while stop < count and keys[stop] == key:
        stop += 1
    return start, stop


@jit(nopython=True)
def pair_offset(positions, j, x, y, wrap, width, height):
    """Offset from (x, y) to particle j, taking the nearest image when the world wraps."""
    dx = min_image(np.float64(positions[j, 0]) - x, width, wrap)
    dy = min_image(np.float64(positions[j, 1]) - y, height, wrap)
    return dx, dy


@jit(nopython=True)
def _query_numba(keys, hashes, indices, start_offsets, table_size, cell_size,
                 wrap, width, height, cells_x, cells_y,
                 positions, x, y, radius_sq, exclude):
    count = keys.shape[0]
    found = []
    if count == 0:
        return np.empty(0, dtype=np.int64)

    cx, cy = grid_cell(x, y, cell_size, wrap, cells_x, cells_y)
    for o in range(NEIGHBOR_OFFSETS_ARRAY.shape[0]):
        nx, ny, first = neighbor_cell(cx, cy, o, wrap, cells_x, cells_y)
        if not first:
            continue
        h = hash_cell(nx, ny)
        start, stop = bucket_run(keys, start_offsets, key_of(h, table_size))
        for p in range(start, stop):
            if hashes[p] == h:
                j = np.int64(indices[p])
                if j != exclude:
                    dx, dy = pair_offset(positions, j, x, y, wrap, width, height)
                    if dx * dx + dy * dy <= radius_sq:
                        found.append(j)

    out = np.empty(len(found), dtype=np.int64)
    for k in range(len(found)):
        out[k] = found[k]
    return out


class NeighborIndex:
    """
    The entries and start-offset table of one tick.

    `world_wrap` is set when the index was built over a toroidal world;
    cell coordinates are then folded onto the grid and distances use the
    nearest periodic image.
    """
    def __init__(self, cell_size: float, table_size: int, particle_count: int,
                 world_wrap: Optional[WorldWrap] = None):
        self.cell_size = float(cell_size)
        self.table_size = int(table_size)
        self.particle_count = int(particle_count)
        self.world_wrap = world_wrap
        self.indices = np.zeros(particle_count, dtype=np.uint32)
        self.hashes = np.zeros(particle_count, dtype=np.uint32)
        self.keys = np.zeros(particle_count, dtype=np.uint32)
        self.start_offsets = np.full(max(table_size, 0), particle_count, dtype=np.uint32)
        self.is_sorted = False

    @property
    def sentinel(self) -> int:
        return self.particle_count

    @property
    def wrap_params(self) -> tuple:
        """(wrap, width, height, cells_x, cells_y) as passed to the kernels."""
        return wrap_args(self.world_wrap)

    def __len__(self):
        return self.particle_count

    def bucket(self, key: int) -> np.ndarray:
        """Original indices of every entry with this key (any cell)."""
        if self.particle_count == 0:
            return np.empty(0, dtype=np.int64)
        start, stop = bucket_run(self.keys, self.start_offsets, key)
        return self.indices[start:stop].astype(np.int64)

    def cell_members(self, cx: int, cy: int) -> np.ndarray:
        """Original indices of the particles in cell (cx, cy)."""
        if self.particle_count == 0:
            return np.empty(0, dtype=np.int64)
        if self.world_wrap is not None:
            cx %= self.world_wrap.cells_x
            cy %= self.world_wrap.cells_y
        h = hash_cell(cx, cy)
        start, stop = bucket_run(self.keys, self.start_offsets, key_of(h, self.table_size))
        run = slice(start, stop)
        return self.indices[run][self.hashes[run] == h].astype(np.int64)

    def query(self, positions: np.ndarray, x: float, y: float, radius: float,
              exclude: int = -1) -> np.ndarray:
        """
        Original indices of all particles within `radius` of (x, y).

        Only the 3x3 block of cells around (x, y) is searched, so `radius`
        must not exceed the cell size. A particle exactly at `radius` is
        included. Pass `exclude` to drop one index (usually the caller).
        """
        return _query_numba(
            self.keys, self.hashes, self.indices, self.start_offsets,
            self.table_size, self.cell_size, *self.wrap_params, positions,
            float(x), float(y), float(radius) ** 2, int(exclude)
        )


class NeighborIndexBuilder:
    """
    Builds a NeighborIndex from positions, stage by stage.

    Args:
        strategy (str): "comparison" or "bitonic".
        launcher (KernelLauncher): Backend for the data-parallel stages.
        sort_workers (int): Thread-pool size of the comparison sort.
    """
    def __init__(self, strategy: str = "comparison",
                 launcher: Optional[KernelLauncher] = None, sort_workers: int = 1):
        self.strategy = strategy
        self.launcher = launcher if launcher is not None else KernelLauncher()
        self.sorter = ComparisonSorter(sort_workers)

    def compute_entries(self, positions: np.ndarray, cell_size: float, table_size: int,
                        world_wrap: Optional[WorldWrap] = None) -> NeighborIndex:
        count = positions.shape[0]
        if count > 0 and table_size <= 0:
            msg = (
                f"Index build failed: table size resolved to {table_size} "
                f"for {count} particles."
            )
            logging.critical(msg)
            raise IndexBuildFailure(msg)

        index = NeighborIndex(cell_size, table_size, count, world_wrap)
        if count:
            wrap, _, _, cells_x, cells_y = index.wrap_params
            self.launcher.launch(
                compute_entries_kernel, count, positions, np.float64(cell_size),
                np.int64(table_size), wrap, cells_x, cells_y,
                index.indices, index.hashes, index.keys
            )
        return index

    def sort_entries(self, index: NeighborIndex) -> NeighborIndex:
        if self.strategy == "bitonic":
            keys, hashes, indices = bitonic_sort(index.keys, index.hashes, index.indices, self.launcher)
        else:
            keys, hashes, indices = self.sorter.sort(index.keys, index.hashes, index.indices)

        if keys.shape[0] > 1 and np.any(keys[1:] < keys[:-1]):
            msg = f"Index build failed: {self.strategy} sort left keys out of order."
            logging.critical(msg)
            raise IndexBuildFailure(msg)

        index.keys, index.hashes, index.indices = keys, hashes, indices
        index.is_sorted = True
        return index

    def compute_offsets(self, index: NeighborIndex) -> NeighborIndex:
        if not index.is_sorted:
            raise IndexBuildFailure("Index build failed: offsets requested before the sort stage.")
        index.start_offsets.fill(index.sentinel)
        if index.particle_count:
            self.launcher.launch(compute_offsets_kernel, index.particle_count, index.keys, index.start_offsets)
        return index

    def build(self, positions: np.ndarray, cell_size: float, table_size: int,
              world_wrap: Optional[WorldWrap] = None) -> NeighborIndex:
        index = self.compute_entries(positions, cell_size, table_size, world_wrap)
        self.sort_entries(index)
        self.compute_offsets(index)
        logging.debug(
            f"Neighbor index built: {index.particle_count} entries, "
            f"{np.count_nonzero(index.start_offsets != index.sentinel)} occupied buckets."
        )
        return index

    def close(self) -> None:
        self.sorter.close()
