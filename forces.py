# forces.py
"""
The particle-life force law and the velocity/position integration.

Forces are asymmetric: particle i feels attraction_matrix[type_i, type_j]
from particle j, which need not equal what j feels from i. Each particle's
velocity is computed independently from the previous tick's state and
written to a separate buffer, so the order in which particles are processed
never changes the result.
"""
import numpy as np
from numba import jit, prange

from constants import FORCE_BETA
from neighbor_index import bucket_run, pair_offset
from sorting import kernel
from spatial_hash import NEIGHBOR_OFFSETS_ARRAY, grid_cell, hash_cell, key_of, neighbor_cell

# --- Data Contracts ---
#
# force(r: float, a: float) -> float:
#   - Inputs: r = distance / r_max, a = attraction coefficient.
#   - Outputs: -1..0 inside the repulsion core (r < beta), a tent-shaped
#     value peaking at `a` for beta <= r < 1, and 0 beyond.
#
# update_velocities_kernel(...):
#   - Side Effects: writes out_velocities only. positions and velocities
#     are read-only for the whole pass.
#   - Walks the index with the same helpers as NeighborIndex.query, so the
#     candidate set (wrapped or not) matches a query of radius r_max.
#
# integrate_positions_kernel(...):
#   - Side Effects: positions += velocities * dt, in place.


@jit(nopython=True)
def force(r, a):
    if r < FORCE_BETA:
        return r / FORCE_BETA - 1.0
    # Both branches are 0 at r == beta; return it exactly.
    elif FORCE_BETA < r < 1.0:
        return a * (1.0 - abs(2.0 * r - 1.0 - FORCE_BETA) / (1.0 - FORCE_BETA))
    else:
        return 0.0


@jit(nopython=True)
def pair_force(dx, dy, r_max, force_factor, a):
    """
    Radial force exerted on a particle by a neighbor at offset (dx, dy).

    Zero at r == 0 (no direction) and at r >= r_max.
    """
    r = np.sqrt(dx * dx + dy * dy)
    if r > 0.0 and r < r_max:
        scale = force(r / r_max, a) * r_max * force_factor / r
        return dx * scale, dy * scale
    return 0.0, 0.0


@kernel
def update_velocities_kernel(lanes, positions, velocities, types, out_velocities,
                             keys, hashes, indices, start_offsets, table_size, cell_size,
                             wrap, width, height, cells_x, cells_y,
                             r_max, force_factor, attraction_matrix, dt, friction_factor,
                             include_self):
    r_max_sq = r_max * r_max
    for lane in prange(lanes):
        i = np.int64(lane)
        px = np.float64(positions[i, 0])
        py = np.float64(positions[i, 1])
        vx = velocities[i, 0]
        vy = velocities[i, 1]
        type_i = types[i]
        cx, cy = grid_cell(px, py, cell_size, wrap, cells_x, cells_y)

        fx = 0.0
        fy = 0.0
        for o in range(NEIGHBOR_OFFSETS_ARRAY.shape[0]):
            nx, ny, first = neighbor_cell(cx, cy, o, wrap, cells_x, cells_y)
            if not first:
                continue
            h = hash_cell(nx, ny)
            start, stop = bucket_run(keys, start_offsets, key_of(h, table_size))
            for p in range(start, stop):
                # Same key, different cell: skip without touching particle data.
                if hashes[p] != h:
                    continue
                j = np.int64(indices[p])
                if not include_self and j == i:
                    continue
                dx, dy = pair_offset(positions, j, px, py, wrap, width, height)
                if dx * dx + dy * dy <= r_max_sq:
                    a = attraction_matrix[type_i, types[j]]
                    rx, ry = pair_force(dx, dy, r_max, force_factor, a)
                    # Velocity alignment pulls toward the local mean velocity.
                    fx += rx + (velocities[j, 0] - vx)
                    fy += ry + (velocities[j, 1] - vy)

        out_velocities[i, 0] = (vx + fx * dt) * friction_factor
        out_velocities[i, 1] = (vy + fy * dt) * friction_factor


@kernel
def integrate_positions_kernel(lanes, positions, velocities, dt):
    for lane in prange(lanes):
        i = np.int64(lane)
        positions[i, 0] += velocities[i, 0] * dt
        positions[i, 1] += velocities[i, 1] * dt


def wrap_positions(positions: np.ndarray, width: float, height: float) -> None:
    """Wraps positions into [0, width) x [0, height) for an infinite-space effect."""
    positions[:, 0] %= width
    positions[:, 1] %= height
