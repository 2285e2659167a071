import numpy as np

from typing import (
    Callable,
    Dict,
    Generic,
    Iterator,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from topology import Coordinator

T = TypeVar("T")


class SparseObjectMatrix(Coordinator, Generic[T]):
    """Dictionary-backed matrix of objects keyed by flat index.

    Only indices that were set (or lazily created through `get_or_create`)
    occupy memory.
    """

    def __init__(self, dimensions: Sequence[int], use_column_major_ordering: bool = False) -> None:
        super().__init__(dimensions, use_column_major_ordering)
        self._objects: Dict[int, T] = {}

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, index: int) -> bool:
        return index in self._objects

    def __iter__(self) -> Iterator[T]:
        for index in sorted(self._objects):
            yield self._objects[index]

    def set(self, index: int, obj: T) -> None:
        if not 0 <= index <= self.max_index:
            raise IndexError(f"Index {index} outside [0, {self.max_index}].")
        self._objects[index] = obj

    def get(self, index: int) -> Optional[T]:
        return self._objects.get(index)

    def get_or_create(self, index: int, factory: Callable[[int], T]) -> T:
        obj = self._objects.get(index)
        if obj is None:
            obj = factory(index)
            self.set(index, obj)
        return obj

    def get_sparse_indices(self) -> List[int]:
        """Indices that currently hold an object, ascending."""
        return sorted(self._objects)


class SparseBinaryMatrix(Coordinator):
    """Column x input connectivity bitmap with cached per-row true counts.

    The bitmap is allocated densely once, its size being known when the
    pooler is initialised.
    """

    def __init__(self, dimensions: Sequence[int]) -> None:
        super().__init__(dimensions)
        if len(self.dimensions) != 2:
            raise ValueError(f"SparseBinaryMatrix expects 2 dimensions, got {self.dimensions}.")
        self.backing = np.zeros(self.dimensions, dtype=bool)
        self.true_counts = np.zeros(self.dimensions[0], dtype=np.int64)

    def set_row(self, row: int, values: np.ndarray) -> None:
        """Replace a full row and refresh its cached true count."""
        self.backing[row, :] = np.asarray(values, dtype=bool)
        self.true_counts[row] = int(np.count_nonzero(self.backing[row]))

    def get_row(self, row: int) -> np.ndarray:
        return self.backing[row]

    def get_sparse_row(self, row: int) -> np.ndarray:
        return np.flatnonzero(self.backing[row])

    def get_true_count(self, row: int) -> int:
        return int(self.true_counts[row])

    def get_true_counts(self) -> np.ndarray:
        return self.true_counts.copy()

    def right_vec_sum_at_nz(
        self,
        input_vector: np.ndarray,
        stimulus_threshold: float = 0.0,
        rows: Optional[slice] = None,
    ) -> np.ndarray:
        """Per row, count true bits that line up with non-zero input bits.

        Rows whose count is below `stimulus_threshold` report 0.
        """
        active = np.asarray(input_vector) != 0
        block = self.backing if rows is None else self.backing[rows]
        counts = np.count_nonzero(block & active, axis=1).astype(np.int64)
        counts[counts < stimulus_threshold] = 0
        return counts
