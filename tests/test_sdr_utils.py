"""
Unit tests for SDR helper functions.
"""
import numpy as np
import pandas as pd
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import pytest

from sdr_utils import (
    calc_array_similarity,
    create_vector,
    index_where,
    random_sparse_vector,
    similarity_matrix,
)


def test_create_vector_and_index_where():
    vector = create_vector(8, [6, 1, 3])
    assert vector.tolist() == [0, 1, 0, 1, 0, 0, 1, 0]
    assert index_where(vector).tolist() == [1, 3, 6]
    assert index_where([0, 2, 0, -1]).tolist() == [1, 3]


def test_random_sparse_vector():
    rng = np.random.default_rng(1)
    vector = random_sparse_vector(200, 15, rng)
    assert vector.size == 200
    assert np.count_nonzero(vector) == 15
    with pytest.raises(ValueError):
        random_sparse_vector(10, 11)


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ([1, 2, 3, 4], [1, 2, 3, 4], 1.0),
        ([1, 2, 3, 4], [3, 4, 5], 0.5),
        ([1, 2], [5, 6], 0.0),
        ([], [], 1.0),
        ([], [1], 0.0),
        ([7], [], 0.0),
    ],
)
def test_calc_array_similarity(a, b, expected):
    assert calc_array_similarity(a, b) == pytest.approx(expected)


def test_similarity_matrix():
    frame = similarity_matrix({"a": [1, 2, 3, 4], "b": [3, 4, 5, 6], "c": []})
    assert isinstance(frame, pd.DataFrame)
    assert list(frame.index) == ["a", "b", "c"]
    assert frame.loc["a", "a"] == 1.0
    assert frame.loc["a", "b"] == pytest.approx(0.5)
    assert frame.loc["b", "a"] == frame.loc["a", "b"]
    assert frame.loc["a", "c"] == 0.0
