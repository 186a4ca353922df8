import numpy as np
import pytest

from constants import SENTINEL_KEY
from sorting import (
    ComparisonSorter, KernelLauncher, SortDispatch, bitonic_schedule, bitonic_sort,
    next_power_of_two
)


def random_entries(rng, count, table_size=None):
    table_size = table_size or max(count, 1)
    keys = rng.integers(0, table_size, size=count).astype(np.uint32)
    hashes = rng.integers(0, 2**32, size=count, dtype=np.uint64).astype(np.uint32)
    indices = np.arange(count, dtype=np.uint32)
    return keys, hashes, indices


def as_records(keys, hashes, indices):
    return sorted(zip(keys.tolist(), hashes.tolist(), indices.tolist()))


@pytest.mark.parametrize("n, expected", [(0, 1), (1, 1), (2, 2), (3, 4), (8, 8), (9, 16), (1000, 1024)])
def test_next_power_of_two(n, expected):
    assert next_power_of_two(n) == expected


def test_schedule_for_eight_entries():
    schedule = list(bitonic_schedule(8))
    assert len(schedule) == 1 + 2 + 3
    assert schedule[0] == SortDispatch(0, 0, 1, 1, 4)
    last_stage = [d for d in schedule if d.stage_index == 2]
    assert [d.group_width for d in last_stage] == [4, 2, 1]
    assert [d.group_height for d in last_stage] == [7, 3, 1]
    assert all(d.lanes == 4 for d in schedule)


def test_schedule_pads_non_power_of_two():
    assert list(bitonic_schedule(5)) == list(bitonic_schedule(8))
    assert list(bitonic_schedule(1)) == []
    assert list(bitonic_schedule(0)) == []


@pytest.mark.parametrize("count", [0, 1, 2, 3, 5, 8, 17, 100, 255, 256, 1000, 1025])
def test_bitonic_matches_comparison_sort(rng, launcher, count):
    keys, hashes, indices = random_entries(rng, count)
    b_keys, b_hashes, b_indices = bitonic_sort(keys, hashes, indices, launcher)
    c_keys, c_hashes, c_indices = ComparisonSorter().sort(keys, hashes, indices)

    np.testing.assert_array_equal(b_keys, c_keys)
    assert len(b_keys) == count
    assert SENTINEL_KEY not in b_keys.tolist()
    # Same entries, possibly in a different order among equal keys.
    assert as_records(b_keys, b_hashes, b_indices) == as_records(c_keys, c_hashes, c_indices)


def test_bitonic_dispatch_count_follows_schedule(rng):
    keys, hashes, indices = random_entries(rng, 100)
    launcher = KernelLauncher(parallel=False)
    bitonic_sort(keys, hashes, indices, launcher)
    assert launcher.dispatch_count == len(list(bitonic_schedule(100)))


def test_bitonic_leaves_inputs_untouched(rng):
    keys, hashes, indices = random_entries(rng, 33)
    original = keys.copy()
    bitonic_sort(keys, hashes, indices, KernelLauncher(parallel=False))
    np.testing.assert_array_equal(keys, original)


@pytest.mark.parametrize("workers", [1, 2, 4, 7])
def test_thread_pool_sort_is_stable(rng, workers):
    keys, hashes, indices = random_entries(rng, 2000, table_size=50)
    sorter = ComparisonSorter(workers)
    try:
        order = sorter.order(keys)
    finally:
        sorter.close()
    np.testing.assert_array_equal(order, np.argsort(keys, kind='stable'))


def test_thread_pool_sort_handles_tiny_inputs(rng):
    sorter = ComparisonSorter(8)
    try:
        for count in (0, 1, 5, 15):
            keys, hashes, indices = random_entries(rng, count)
            s_keys, _, s_indices = sorter.sort(keys, hashes, indices)
            np.testing.assert_array_equal(s_keys, np.sort(keys))
            assert sorted(s_indices.tolist()) == list(range(count))
    finally:
        sorter.close()
