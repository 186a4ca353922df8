# sorting.py
"""
Sorting strategies for the neighbor index, and the kernel-launch layer the
data-parallel stages run through.

Two strategies order index entries by key:

- comparison: a stable NumPy argsort, optionally split over a fixed-size
  thread pool with one final merge.
- bitonic: a fixed-topology sorting network. The host computes one
  SortDispatch per (stage, step) and launches a compare-and-swap kernel
  over `padded / 2` lanes for each. Lanes never share a slot within a
  dispatch, and each launch returns before the next starts, so every
  dispatch is a full barrier.

Both produce the same key order. Ties keep original index order under the
comparison strategy; the network gives no tie guarantee.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, NamedTuple, Optional

import numpy as np
from numba import jit, prange

from constants import SENTINEL_KEY

# --- Data Contracts ---
#
# class SortDispatch:
#   - stage_index, step_index: position in the network (step 0..stage).
#   - group_width: 2 ** (stage_index - step_index).
#   - group_height: 2 * group_width - 1.
#   - lanes: number of parallel compare-and-swap lanes (padded count / 2).
#
# bitonic_sort(keys, hashes, indices, launcher) -> (keys, hashes, indices):
#   - Inputs: three uint32 arrays of equal length N (any N >= 0).
#   - Outputs: new arrays of length N sorted by key ascending.
#   - Side Effects: none on the inputs.


class Kernel:
    """
    A data-parallel kernel body compiled once per backend.

    The body takes the lane count as its first argument and loops over it
    with `prange`, which the serial build treats as a plain `range`.
    """
    def __init__(self, func):
        self.name = func.__name__
        self.serial = jit(nopython=True)(func)
        self.parallel = jit(nopython=True, parallel=True)(func)


def kernel(func) -> Kernel:
    return Kernel(func)


class KernelLauncher:
    """
    Runs kernels on either the serial or the numba thread-parallel backend.

    Launch parameters (lane count, stage scalars) are always passed in by
    the caller, never baked into the kernel.
    """
    def __init__(self, parallel: bool = True):
        self.parallel = parallel
        self.dispatch_count = 0

    def launch(self, kern: Kernel, lanes: int, *args):
        compiled = kern.parallel if self.parallel else kern.serial
        self.dispatch_count += 1
        return compiled(lanes, *args)


class SortDispatch(NamedTuple):
    stage_index: int
    step_index: int
    group_width: int
    group_height: int
    lanes: int


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def bitonic_schedule(count: int) -> Iterator[SortDispatch]:
    """
    Yields the dispatches that sort `count` entries.

    The buffer is padded to a power of two, giving log2(padded) stages;
    stage s runs steps 0..s.
    """
    padded = next_power_of_two(count)
    num_stages = padded.bit_length() - 1
    lanes = padded // 2
    for stage_index in range(num_stages):
        for step_index in range(stage_index + 1):
            group_width = 1 << (stage_index - step_index)
            group_height = 2 * group_width - 1
            yield SortDispatch(stage_index, step_index, group_width, group_height, lanes)


@kernel
def bitonic_step_kernel(lanes, keys, hashes, indices, group_width, group_height, step_index):
    """
    One compare-and-swap step of the network.

    Step 0 of a stage compares mirrored pairs inside blocks of
    `group_height + 1` slots; later steps compare slots `group_width`
    apart. Either way each lane owns a distinct (left, right) pair.
    """
    n = keys.shape[0]
    for lane in prange(lanes):
        i = np.int64(lane)
        h = i & (group_width - 1)
        left = h + (group_height + 1) * (i // group_width)
        if step_index == 0:
            right = left + group_height - 2 * h
        else:
            right = left + (group_height + 1) // 2
        if right < n and keys[left] > keys[right]:
            keys[left], keys[right] = keys[right], keys[left]
            hashes[left], hashes[right] = hashes[right], hashes[left]
            indices[left], indices[right] = indices[right], indices[left]


def bitonic_sort(keys, hashes, indices, launcher: KernelLauncher):
    """Sorts entries by key with the bitonic network. See module docstring."""
    count = keys.shape[0]
    padded = next_power_of_two(count)

    sort_keys = np.full(padded, SENTINEL_KEY, dtype=np.uint32)
    sort_hashes = np.zeros(padded, dtype=np.uint32)
    sort_indices = np.full(padded, SENTINEL_KEY, dtype=np.uint32)
    sort_keys[:count] = keys
    sort_hashes[:count] = hashes
    sort_indices[:count] = indices

    dispatches = 0
    for dispatch in bitonic_schedule(count):
        launcher.launch(
            bitonic_step_kernel, dispatch.lanes,
            sort_keys, sort_hashes, sort_indices,
            dispatch.group_width, dispatch.group_height, dispatch.step_index
        )
        dispatches += 1

    logging.debug(
        f"Bitonic sort of {count} entries (padded to {padded}) "
        f"finished in {dispatches} dispatches."
    )
    return sort_keys[:count], sort_hashes[:count], sort_indices[:count]


class ComparisonSorter:
    """
    Stable key sort, optionally chunked over a reusable thread pool.

    Each worker argsorts one contiguous chunk; a final stable argsort over
    the concatenated runs merges them. NumPy releases the GIL while sorting,
    so the chunks run concurrently.
    """
    def __init__(self, workers: int = 1):
        self.workers = workers
        self._executor: Optional[ThreadPoolExecutor] = None
        if workers > 1:
            self._executor = ThreadPoolExecutor(max_workers=workers)

    def order(self, keys: np.ndarray) -> np.ndarray:
        """Returns the permutation that sorts `keys` stably."""
        n = keys.shape[0]
        if self._executor is None or n < 2 * self.workers:
            return np.argsort(keys, kind='stable')

        bounds = np.linspace(0, n, self.workers + 1).astype(np.int64)
        chunks = list(zip(bounds[:-1], bounds[1:]))

        def sort_chunk(chunk):
            start, stop = chunk
            return start + np.argsort(keys[start:stop], kind='stable')

        runs = np.concatenate(list(self._executor.map(sort_chunk, chunks)))
        merged = np.argsort(keys[runs], kind='stable')
        return runs[merged]

    def sort(self, keys, hashes, indices):
        perm = self.order(keys)
        return keys[perm], hashes[perm], indices[perm]

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
