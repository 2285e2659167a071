import numpy as np
import pandas as pd

from typing import (
    Mapping,
    Optional,
    Sequence,
    Union,
)

ArrayLike = Union[np.ndarray, Sequence[int]]


def index_where(vector: ArrayLike) -> np.ndarray:
    """Indices of the non-zero entries of a dense vector, ascending."""
    return np.flatnonzero(np.asarray(vector))


def create_vector(size: int, on_indices: ArrayLike) -> np.ndarray:
    """Dense 0/1 int vector of length `size` with ones at `on_indices`."""
    vector = np.zeros(size, dtype=np.int64)
    vector[np.asarray(on_indices, dtype=np.int64)] = 1
    return vector


def random_sparse_vector(size: int, num_on: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Dense 0/1 vector with `num_on` distinct random bits set."""
    if not 0 <= num_on <= size:
        raise ValueError(f"num_on must be in [0, {size}], got {num_on}")
    rng = rng if rng is not None else np.random.default_rng()
    return create_vector(size, rng.choice(size, size=num_on, replace=False))


def calc_array_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """Shared indices over the larger set size; both empty -> 1.0, one empty -> 0.0."""
    a = np.unique(np.asarray(a, dtype=np.int64))
    b = np.unique(np.asarray(b, dtype=np.int64))
    if a.size == 0 and b.size == 0:
        return 1.0
    if a.size == 0 or b.size == 0:
        return 0.0
    common = np.intersect1d(a, b, assume_unique=True).size
    return common / float(max(a.size, b.size))


def similarity_matrix(sdrs: Mapping[str, ArrayLike]) -> pd.DataFrame:
    """Pairwise `calc_array_similarity` between named SDRs (given as active indices)."""
    names = list(sdrs)
    values = [[calc_array_similarity(sdrs[r], sdrs[c]) for c in names] for r in names]
    return pd.DataFrame(values, index=names, columns=names)
