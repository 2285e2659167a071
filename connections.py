from __future__ import annotations

import logging
from statistics import fmean, pstdev
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
)

import numpy as np

from building_blocks import Cell, Column, DistalDendrite, Pool, Synapse
from htm_config import HtmConfig, resolve_config
from sparse_matrix import SparseBinaryMatrix, SparseObjectMatrix
from topology import Topology

logger = logging.getLogger(__name__)


class Connections:
    """Shared mutable state of the spatial pooler.

    Owns the columns, their potential pools and connectivity bitmap, the
    per-column duty cycle / boost arrays, the iteration counters, the
    inhibition radius and the random generator. Every algorithm step reads
    and writes through one instance of this class.

    `max_boost` and `min_pct_overlap_duty_cycles` start as copies of the
    configured values and may be changed at runtime by the homeostatic
    plasticity controller; the configuration itself stays frozen.
    """

    def __init__(self, config: Mapping[str, Any] | HtmConfig) -> None:
        self.config: HtmConfig = resolve_config(config)
        self.random: np.random.Generator = np.random.default_rng(self.config.seed)

        self.num_inputs: int = self.config.num_inputs
        self.num_columns: int = self.config.num_columns
        self.max_boost: float = self.config.max_boost
        self.min_pct_overlap_duty_cycles: float = self.config.min_pct_overlap_duty_cycles
        self.inhibition_radius: int = 0
        self.sp_iteration_num: int = 0
        self.sp_iteration_learn_num: int = 0

        self.memory: Optional[SparseObjectMatrix[Column]] = None
        self.potential_pools: Optional[SparseObjectMatrix[Pool]] = None
        self.connected_counts: Optional[SparseBinaryMatrix] = None
        self.column_topology: Topology = Topology(self.config.column_dimensions)
        self.input_topology: Topology = Topology(self.config.input_dimensions)

        self.overlap_duty_cycles: np.ndarray = np.zeros(0)
        self.active_duty_cycles: np.ndarray = np.zeros(0)
        self.min_overlap_duty_cycles: np.ndarray = np.zeros(0)
        self.min_active_duty_cycles: np.ndarray = np.zeros(0)
        self.boost_factors: np.ndarray = np.zeros(0)
        self.overlaps: np.ndarray = np.zeros(0, dtype=np.int64)
        self.boosted_overlaps: np.ndarray = np.zeros(0)

        # Distal segment bookkeeping
        self.iteration: int = 0
        self._segments: Dict[int, List[DistalDendrite]] = {}
        self._synapses: Dict[DistalDendrite, List[Synapse]] = {}
        self._receptor_synapses: Dict[int, List[Synapse]] = {}
        self._free_flat_idxs: List[int] = []
        self._next_flat_idx: int = 0
        self._next_segment_ordinal: int = 0
        self._next_synapse_ordinal: int = 0

    # ----- Proximal / column state -----

    def get_column(self, index: int) -> Column:
        column = self.memory.get(index)
        if column is None:
            raise KeyError(f"Column {index} does not exist.")
        return column

    def get_pool(self, index: int) -> Pool:
        pool = self.potential_pools.get(index)
        if pool is None:
            raise KeyError(f"Column {index} has no potential pool.")
        return pool

    def get_cell(self, index: int) -> Cell:
        cpc = self.config.cells_per_column
        return self.get_column(index // cpc).get_cell(index % cpc)

    @property
    def cells(self) -> List[Cell]:
        return [cell for column in self.memory for cell in column.cells]

    @property
    def is_wrap_around(self) -> bool:
        return self.config.wrap_around

    # ----- Distal segments and synapses -----

    def num_segments(self, cell: Optional[Cell] = None) -> int:
        if cell is None:
            return len(self._synapses)
        return len(self._segments.get(cell.index, []))

    def num_synapses(self, segment: Optional[DistalDendrite] = None) -> int:
        if segment is None:
            return sum(len(syns) for syns in self._synapses.values())
        return len(self._synapses.get(segment, []))

    def get_segments(self, cell: Cell) -> List[DistalDendrite]:
        return list(self._segments.get(cell.index, []))

    def get_synapses(self, segment: DistalDendrite) -> List[Synapse]:
        return list(self._synapses.get(segment, []))

    def get_receptor_synapses(self, cell: Cell) -> List[Synapse]:
        """Synapses that have `cell` as their presynaptic source."""
        return list(self._receptor_synapses.get(cell.index, []))

    def create_segment(self, cell: Cell) -> DistalDendrite:
        """Add a segment to `cell`, evicting its least recently used one when full."""
        segments = self._segments.setdefault(cell.index, [])
        while len(segments) >= self.config.max_segments_per_cell:
            oldest = min(segments, key=lambda s: (s.last_used_iteration, s.ordinal))
            self.destroy_segment(oldest)

        if self._free_flat_idxs:
            flat_idx = self._free_flat_idxs.pop()
        else:
            flat_idx = self._next_flat_idx
            self._next_flat_idx += 1

        segment = DistalDendrite(cell, flat_idx, self.iteration, self._next_segment_ordinal)
        self._next_segment_ordinal += 1
        segments.append(segment)
        self._synapses[segment] = []
        return segment

    def destroy_segment(self, segment: DistalDendrite) -> None:
        for synapse in self._synapses.pop(segment, []):
            self._remove_receptor(synapse)
        self._segments[segment.parent_cell.index].remove(segment)
        self._free_flat_idxs.append(segment.index)

    def create_synapse(self, segment: DistalDendrite, presynaptic_cell: Cell, permanence: float) -> Synapse:
        """Connect `presynaptic_cell` to `segment`, evicting the weakest synapse when full."""
        synapses = self._synapses[segment]
        while len(synapses) >= self.config.max_synapses_per_segment:
            weakest = min(synapses, key=lambda s: (s.permanence, s.synapse_index))
            self.destroy_synapse(segment, weakest)

        synapse = Synapse(presynaptic_cell.index, permanence, segment.index, self._next_synapse_ordinal)
        self._next_synapse_ordinal += 1
        synapses.append(synapse)
        self._receptor_synapses.setdefault(presynaptic_cell.index, []).append(synapse)
        return synapse

    def destroy_synapse(self, segment: DistalDendrite, synapse: Synapse) -> None:
        self._synapses[segment].remove(synapse)
        self._remove_receptor(synapse)

    def _remove_receptor(self, synapse: Synapse) -> None:
        receptors = self._receptor_synapses.get(synapse.presynaptic_index, [])
        if synapse in receptors:
            receptors.remove(synapse)

    def record_segment_activity(self, segment: DistalDendrite) -> None:
        segment.last_used_iteration = self.iteration

    def segment_position_sort_key(self, segment: DistalDendrite) -> float:
        """Orders segments by parent cell, then by creation order."""
        return segment.parent_cell.index + segment.ordinal / float(max(1, self._next_segment_ordinal))

    # ----- Reporting -----

    def print_stats(self) -> None:
        """Print statistics about permanences, duty cycles and boosting."""
        def describe(values: List[float]) -> Tuple[int, float, float, float, float]:
            if not values:
                return 0, 0.0, 0.0, 0.0, 0.0
            count = len(values)
            mean_val = fmean(values)
            std_val = pstdev(values) if count > 1 else 0.0
            return count, mean_val, std_val, min(values), max(values)

        def format_metric(label: str, stats: Tuple[int, float, float, float, float]) -> str:
            _, mean_val, std_val, min_val, max_val = stats
            return f"| {label:<22}| {mean_val:>8.3f} ± {std_val:<8.3f}| {min_val:>8.3f} | {max_val:>8.3f} |"

        permanences = [float(p) for pool in self.potential_pools for p in pool.permanences]
        connected = [float(n) for n in self.connected_counts.get_true_counts()]
        pool_sizes = [float(len(pool)) for pool in self.potential_pools]

        table_lines = [
            "+------------------------+--------------------+----------+----------+",
            "| Metric                 |   Mean ± Std      |      Min |      Max |",
            "+------------------------+--------------------+----------+----------+",
            format_metric("Pool size", describe(pool_sizes)),
            format_metric("Permanence", describe(permanences)),
            format_metric("Connected per column", describe(connected)),
            format_metric("Overlap duty cycle", describe(self.overlap_duty_cycles.tolist())),
            format_metric("Active duty cycle", describe(self.active_duty_cycles.tolist())),
            format_metric("Boost factor", describe(self.boost_factors.tolist())),
            "+------------------------+--------------------+----------+----------+",
        ]

        used = int(np.count_nonzero(self.active_duty_cycles > 0))
        share = used / self.num_columns if self.num_columns else 0.0
        print("Spatial pooler statistics:")
        print(
            f"  Columns: {self.num_columns} | Inputs: {self.num_inputs} | "
            f"Iterations: {self.sp_iteration_num} (learning {self.sp_iteration_learn_num}) | "
            f"Inhibition radius: {self.inhibition_radius}"
        )
        for line in table_lines:
            print(f"  {line}")
        print(f"  Columns with duty > 0: {used}/{self.num_columns} ({share:.1%})")
