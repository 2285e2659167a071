import numpy as np

from typing import (
    List,
    Sequence,
)


class Coordinator:
    """Converts between flat indices and N-dimensional coordinates."""

    dimensions: List[int]
    dimension_multiples: List[int]
    is_column_major: bool
    num_dimensions: int

    def __init__(self, shape: Sequence[int], use_column_major_ordering: bool = False) -> None:
        self.dimensions = [int(d) for d in shape]
        self.num_dimensions = len(self.dimensions)
        self.is_column_major = use_column_major_ordering
        ordered = self.dimensions[::-1] if use_column_major_ordering else self.dimensions
        self.dimension_multiples = self._init_dimension_multiples(ordered)

    @staticmethod
    def _init_dimension_multiples(dimensions: Sequence[int]) -> List[int]:
        """Stride of each dimension, last dimension moving fastest."""
        multiples = [1] * len(dimensions)
        holder = 1
        for i in range(len(dimensions) - 1, -1, -1):
            multiples[i] = holder
            holder *= dimensions[i]
        return multiples

    @property
    def max_index(self) -> int:
        return int(np.prod(self.dimensions)) - 1

    def compute_index(self, coordinates: Sequence[int]) -> int:
        """Return the flat index of the given coordinates."""
        mults = self.dimension_multiples[::-1] if self.is_column_major else self.dimension_multiples
        return int(sum(m * int(c) for m, c in zip(mults, coordinates)))

    def compute_coordinates(self, index: int) -> List[int]:
        """Return the coordinates of the given flat index."""
        coords = []
        remainder = int(index)
        for mult in self.dimension_multiples:
            coords.append(remainder // mult)
            remainder %= mult
        return coords[::-1] if self.is_column_major else coords


class Topology(Coordinator):
    """Coordinator that also enumerates neighborhoods around a center index."""

    def _neighborhood_ranges(self, center: int, radius: int, wrap: bool) -> List[np.ndarray]:
        center_coords = self.compute_coordinates(center)
        ranges = []
        for c, dim in zip(center_coords, self.dimensions):
            if wrap:
                # A window at least as wide as the dimension covers it exactly once
                if 2 * radius + 1 >= dim:
                    ranges.append(np.arange(dim))
                else:
                    ranges.append(np.arange(c - radius, c + radius + 1) % dim)
            else:
                ranges.append(np.arange(max(0, c - radius), min(dim - 1, c + radius) + 1))
        return ranges

    def _flatten(self, ranges: List[np.ndarray]) -> np.ndarray:
        grids = np.meshgrid(*ranges, indexing="ij")
        order = "F" if self.is_column_major else "C"
        flat = np.ravel_multi_index([g.ravel() for g in grids], self.dimensions, order=order)
        return np.asarray(flat, dtype=np.int64)

    def neighborhood(self, center: int, radius: int) -> np.ndarray:
        """Flat indices within Chebyshev distance `radius` of `center`, clipped to the bounds."""
        return self._flatten(self._neighborhood_ranges(center, radius, wrap=False))

    def wrapping_neighborhood(self, center: int, radius: int) -> np.ndarray:
        """Like `neighborhood`, but every dimension wraps around modulo its extent."""
        return self._flatten(self._neighborhood_ranges(center, radius, wrap=True))
