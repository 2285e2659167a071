from __future__ import annotations

import numpy as np
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

if TYPE_CHECKING:
    from connections import Connections


# ===== Basic Building Blocks =====

class Cell:
    """Single cell within a column.

    Identity is the global index ``column_index * cells_per_column + seq``;
    equality, hashing and ordering use that index only.
    """

    __slots__ = ("index", "column_index")

    def __init__(self, column_index: int, cells_per_column: int, col_seq: int) -> None:
        self.column_index: int = column_index
        self.index: int = column_index * cells_per_column + col_seq

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Cell) and other.index == self.index

    def __hash__(self) -> int:
        return hash(self.index)

    def __lt__(self, other: 'Cell') -> bool:
        return self.index < other.index

    def __repr__(self) -> str:
        return f"Cell(index={self.index}, column={self.column_index})"


class Synapse:
    """Connection from a presynaptic source (cell or input bit) onto a segment."""

    def __init__(
        self,
        presynaptic_index: int,
        permanence: float,
        segment_index: int = -1,
        synapse_index: int = -1,
    ) -> None:
        self.presynaptic_index: int = presynaptic_index
        self.permanence: float = permanence
        self.segment_index: int = segment_index
        self.synapse_index: int = synapse_index

    def adjust_permanence(self, delta: float, syn_perm_min: float = 0.0, syn_perm_max: float = 1.0) -> None:
        """Shift permanence by `delta`, clipped to the permanence bounds."""
        self.permanence = min(syn_perm_max, max(syn_perm_min, self.permanence + delta))

    def __repr__(self) -> str:
        return (
            f"Synapse(src={self.presynaptic_index}, seg={self.segment_index}, "
            f"perm={self.permanence:.5f})"
        )


class Pool:
    """Sparse permanence vector over one column's potential input bits.

    `potential` holds the input indices (ascending) and `permanences` the
    aligned permanence values. The pool is created once and then only mutated.
    """

    def __init__(self, column_index: int, potential: Sequence[int], num_inputs: int) -> None:
        potential = np.unique(np.asarray(potential, dtype=np.int64))
        if potential.size and (potential[0] < 0 or potential[-1] >= num_inputs):
            raise ValueError(f"Potential pool of column {column_index} exceeds input range [0, {num_inputs}).")
        self.column_index: int = column_index
        self.num_inputs: int = num_inputs
        self.potential: np.ndarray = potential
        self.permanences: np.ndarray = np.zeros(potential.size, dtype=np.float64)

    def __len__(self) -> int:
        return int(self.potential.size)

    def get_sparse_potential(self) -> np.ndarray:
        return self.potential.copy()

    def get_sparse_permanences(self) -> np.ndarray:
        return self.permanences.copy()

    def get_dense_permanences(self) -> np.ndarray:
        dense = np.zeros(self.num_inputs, dtype=np.float64)
        dense[self.potential] = self.permanences
        return dense

    def set_dense_permanences(self, dense: np.ndarray) -> None:
        self.permanences = np.asarray(dense, dtype=np.float64)[self.potential].copy()

    def set_sparse_permanences(self, values: np.ndarray) -> None:
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self.permanences.shape:
            raise ValueError(
                f"Expected {self.permanences.size} permanences for column {self.column_index}, got {values.size}."
            )
        self.permanences = values.copy()

    def get_permanence(self, input_index: int) -> float:
        pos = np.searchsorted(self.potential, input_index)
        if pos < self.potential.size and self.potential[pos] == input_index:
            return float(self.permanences[pos])
        return 0.0

    def get_synapse(self, input_index: int) -> Optional[Synapse]:
        """Synapse view onto one potential input bit, or None if not in the pool."""
        pos = int(np.searchsorted(self.potential, input_index))
        if pos < self.potential.size and self.potential[pos] == input_index:
            return Synapse(input_index, float(self.permanences[pos]), self.column_index, pos)
        return None

    def get_connected(self, syn_perm_connected: float) -> np.ndarray:
        return self.potential[self.permanences >= syn_perm_connected]


class Segment:
    """Dendritic segment identified by a flat index."""

    def __init__(self, index: int) -> None:
        self.index: int = index

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and other.index == self.index

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.index))

    def __lt__(self, other: 'Segment') -> bool:
        return self.index < other.index


class ProximalDendrite(Segment):
    """The single feed-forward segment of a column, onto the input space."""

    def __init__(self, column_index: int) -> None:
        super().__init__(column_index)
        self.pool: Optional[Pool] = None

    def create_pool(self, c: 'Connections', input_indexes: Sequence[int]) -> Pool:
        self.pool = Pool(self.index, input_indexes, c.num_inputs)
        c.connected_counts.set_row(self.index, np.zeros(c.num_inputs, dtype=bool))
        return self.pool

    def set_permanences(self, c: 'Connections', permanences: np.ndarray) -> None:
        """Store dense permanences and refresh this column's connectivity row."""
        self.pool.set_dense_permanences(permanences)
        self._refresh_connected(c)

    def set_permanences_sparse(self, c: 'Connections', permanences: np.ndarray, indexes: np.ndarray) -> None:
        if not np.array_equal(np.asarray(indexes), self.pool.potential):
            raise ValueError(f"Indexes do not match the potential pool of column {self.index}.")
        self.pool.set_sparse_permanences(permanences)
        self._refresh_connected(c)

    def _refresh_connected(self, c: 'Connections') -> None:
        row = np.zeros(c.num_inputs, dtype=bool)
        row[self.pool.get_connected(c.config.syn_perm_connected)] = True
        c.connected_counts.set_row(self.index, row)

    def get_connected_synapses_sparse(self, c: 'Connections') -> np.ndarray:
        return c.connected_counts.get_sparse_row(self.index)

    def get_connected_synapses_dense(self, c: 'Connections') -> np.ndarray:
        return c.connected_counts.get_row(self.index).astype(np.int64)

    def __repr__(self) -> str:
        return f"ProximalDendrite(column={self.index}, pool={0 if self.pool is None else len(self.pool)})"


class DistalDendrite(Segment):
    """Lateral segment owned by a cell; synapses reference other cells by index."""

    def __init__(self, parent_cell: Cell, flat_idx: int, last_used_iteration: int, ordinal: int) -> None:
        super().__init__(flat_idx)
        self.parent_cell: Cell = parent_cell
        self.last_used_iteration: int = last_used_iteration
        self.ordinal: int = ordinal

    def get_all_synapses(self, c: 'Connections') -> List[Synapse]:
        return c.get_synapses(self)

    def get_active_synapses(self, c: 'Connections', active_cells: Set[Cell]) -> List[Synapse]:
        """Synapses whose presynaptic cell is active (permanence ignored)."""
        active = {cell.index for cell in active_cells}
        return [syn for syn in c.get_synapses(self) if syn.presynaptic_index in active]

    def __repr__(self) -> str:
        return f"DistalDendrite(index={self.index}, cell={self.parent_cell.index})"


class Column:
    """Column owning a fixed set of cells and exactly one proximal dendrite."""

    def __init__(self, num_cells: int, index: int) -> None:
        self.index: int = index
        self.num_cells: int = num_cells
        self.cells: Tuple[Cell, ...] = tuple(Cell(index, num_cells, i) for i in range(num_cells))
        self.proximal_dendrite: ProximalDendrite = ProximalDendrite(index)

    def get_cell(self, col_seq: int) -> Cell:
        """Cell by its position within this column (not its global index)."""
        return self.cells[col_seq]

    def create_potential_pool(self, c: 'Connections', input_indexes: Sequence[int]) -> Pool:
        return self.proximal_dendrite.create_pool(c, input_indexes)

    def set_proximal_permanences(self, c: 'Connections', permanences: np.ndarray) -> None:
        self.proximal_dendrite.set_permanences(c, permanences)

    def set_proximal_permanences_sparse(self, c: 'Connections', permanences: np.ndarray, indexes: np.ndarray) -> None:
        self.proximal_dendrite.set_permanences_sparse(c, permanences, indexes)

    def get_least_used_cell(self, c: 'Connections', rng: np.random.Generator) -> Cell:
        """Random pick among the cells carrying the fewest distal segments."""
        min_segments = min(c.num_segments(cell) for cell in self.cells)
        candidates = sorted(cell for cell in self.cells if c.num_segments(cell) == min_segments)
        return candidates[int(rng.integers(len(candidates)))]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Column) and other.index == self.index

    def __hash__(self) -> int:
        return hash(self.index)

    def __lt__(self, other: 'Column') -> bool:
        return self.index < other.index

    def __repr__(self) -> str:
        return f"Column(index={self.index}, cells={self.num_cells})"


@dataclass
class ComputeCycle:
    """Snapshot of cell and segment state produced by one compute call."""

    active_cells: List[Cell] = field(default_factory=list)
    winner_cells: List[Cell] = field(default_factory=list)
    active_segments: List[DistalDendrite] = field(default_factory=list)
    matching_segments: List[DistalDendrite] = field(default_factory=list)
    _predictive_cells: List[Cell] = field(default_factory=list)

    @property
    def predictive_cells(self) -> List[Cell]:
        """Explicit predictive cells, or the parent cells of the active segments."""
        if self._predictive_cells:
            return self._predictive_cells
        cells: List[Cell] = []
        seen: Set[Cell] = set()
        for segment in self.active_segments:
            if segment.parent_cell not in seen:
                seen.add(segment.parent_cell)
                cells.append(segment.parent_cell)
        return cells

    @predictive_cells.setter
    def predictive_cells(self, cells: Sequence[Cell]) -> None:
        self._predictive_cells = list(cells)
