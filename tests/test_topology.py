"""
Unit tests for coordinate <-> index mapping and neighborhood enumeration.
"""
import numpy as np
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import pytest

from topology import Coordinator, Topology


@pytest.mark.parametrize("column_major", [False, True])
def test_index_and_coordinates_are_inverse(column_major):
    coord = Coordinator([3, 4, 5], use_column_major_ordering=column_major)
    assert coord.max_index == 59
    for index in range(coord.max_index + 1):
        coords = coord.compute_coordinates(index)
        assert all(0 <= c < d for c, d in zip(coords, coord.dimensions))
        assert coord.compute_index(coords) == index


def test_row_major_and_column_major_ordering_differ():
    row_major = Coordinator([2, 3])
    col_major = Coordinator([2, 3], use_column_major_ordering=True)
    # Last dimension moves fastest in row-major order
    assert row_major.compute_index([0, 1]) == 1
    assert row_major.compute_index([1, 0]) == 3
    # First dimension moves fastest in column-major order
    assert col_major.compute_index([1, 0]) == 1
    assert col_major.compute_index([0, 1]) == 2
    assert col_major.compute_coordinates(2) == [0, 1]


def test_bounded_neighborhood_is_clipped():
    topo = Topology([10])
    assert topo.neighborhood(0, 2).tolist() == [0, 1, 2]
    assert topo.neighborhood(5, 2).tolist() == [3, 4, 5, 6, 7]
    assert topo.neighborhood(9, 3).tolist() == [6, 7, 8, 9]


def test_wrapping_neighborhood_wraps_each_dimension():
    topo = Topology([10])
    assert sorted(topo.wrapping_neighborhood(0, 2).tolist()) == [0, 1, 2, 8, 9]
    assert sorted(topo.wrapping_neighborhood(9, 1).tolist()) == [0, 8, 9]


def test_wrapping_neighborhood_wider_than_dimension_has_no_duplicates():
    topo = Topology([4])
    assert sorted(topo.wrapping_neighborhood(1, 5).tolist()) == [0, 1, 2, 3]


def test_two_dimensional_neighborhoods():
    topo = Topology([5, 5])
    center = topo.compute_index([2, 2])
    assert len(topo.neighborhood(center, 1)) == 9
    # Corner: bounded keeps 2x2, wrapping keeps the full 3x3
    assert sorted(topo.neighborhood(0, 1).tolist()) == [0, 1, 5, 6]
    wrapped = topo.wrapping_neighborhood(0, 1)
    assert len(wrapped) == 9
    assert topo.compute_index([4, 4]) in wrapped.tolist()


def test_neighborhood_is_deterministic():
    topo = Topology([6, 7])
    first = topo.wrapping_neighborhood(17, 2)
    second = topo.wrapping_neighborhood(17, 2)
    assert np.array_equal(first, second)
    assert first.dtype == np.int64
