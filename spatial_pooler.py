from __future__ import annotations

import concurrent.futures
import logging
import os
import numpy as np

from typing import (
    TYPE_CHECKING,
    List,
    Optional,
    Sequence,
    Union,
)

from building_blocks import Column
from connections import Connections
from htm_config import ConfigurationError
from sparse_matrix import SparseBinaryMatrix, SparseObjectMatrix
from topology import Topology

if TYPE_CHECKING:
    from homeostatic_plasticity import HomeostaticPlasticityController

logger = logging.getLogger(__name__)

PERMANENCE_PRECISION = 100000  # Initial permanences keep 5 decimal digits
MIN_WINNER_DELTA = 0.001  # Local tie-breaker used when every overlap is zero

InputVector = Union[np.ndarray, Sequence[int]]


class SpatialPooler:
    """Converts binary input vectors into sparse sets of active columns.

    All state lives in the `Connections` passed to `init`; the pooler itself
    only keeps a reference to it and to the optional plasticity controller.
    """

    def __init__(self, homeostatic_controller: Optional['HomeostaticPlasticityController'] = None) -> None:
        self.homeostatic_controller = homeostatic_controller
        self.connections: Optional[Connections] = None

    # ===== Initialisation =====

    def init(self, c: Connections) -> None:
        """Validate the configuration, build the columns and wire up their pools."""
        c.config.validate()
        self.connections = c
        self.init_matrices(c)
        self.connect_and_configure_inputs(c)
        logger.info(
            "Spatial pooler initialised: %d columns over %d inputs, inhibition radius %d",
            c.num_columns, c.num_inputs, c.inhibition_radius,
        )

    def init_matrices(self, c: Connections) -> None:
        cfg = c.config
        c.memory = SparseObjectMatrix(cfg.column_dimensions)
        c.column_topology = Topology(cfg.column_dimensions)
        c.input_topology = Topology(cfg.input_dimensions)

        num_inputs = c.input_topology.max_index + 1
        num_columns = c.memory.max_index + 1
        if num_columns <= 0:
            raise ConfigurationError(f"Invalid number of columns: {num_columns}")
        if num_inputs <= 0:
            raise ConfigurationError(f"Invalid number of inputs: {num_inputs}")
        c.num_inputs = num_inputs
        c.num_columns = num_columns

        for i in range(num_columns):
            c.memory.set(i, Column(cfg.cells_per_column, i))

        c.potential_pools = SparseObjectMatrix(cfg.column_dimensions)
        c.connected_counts = SparseBinaryMatrix([num_columns, num_inputs])

        c.overlap_duty_cycles = np.zeros(num_columns)
        c.active_duty_cycles = np.zeros(num_columns)
        c.min_overlap_duty_cycles = np.zeros(num_columns)
        c.min_active_duty_cycles = np.zeros(num_columns)
        c.boost_factors = np.ones(num_columns)
        c.overlaps = np.zeros(num_columns, dtype=np.int64)
        c.boosted_overlaps = np.zeros(num_columns)

    def connect_and_configure_inputs(self, c: Connections) -> None:
        """Sample every column's potential pool and give it initial permanences."""
        potentials = [self.map_potential(c, i, c.is_wrap_around) for i in range(c.num_columns)]
        for i, potential in enumerate(potentials):
            if len(potential) < c.config.stimulus_threshold:
                raise ValueError(
                    f"Potential pool of column {i} has {len(potential)} inputs, fewer than the stimulus "
                    f"threshold {c.config.stimulus_threshold}; the potential radius is too small."
                )

        for column in c.memory:
            pool = column.create_potential_pool(c, potentials[column.index])
            c.potential_pools.set(column.index, pool)
            perm = self.init_permanence(c, pool.potential, column.index, c.config.init_connected_pct)
            self.update_permanences_for_column(c, perm, column, pool.potential, True)

        self.update_inhibition_radius(c)

    def init_permanence(
        self,
        c: Connections,
        potential_pool: Sequence[int],
        col_index: int,
        connected_pct: float,
    ) -> np.ndarray:
        """Dense initial permanences for one column's potential pool.

        Each potential input is connected with probability `connected_pct`.
        Connected values are drawn from [syn_perm_connected, syn_perm_max),
        the others from [0, syn_perm_connected).
        """
        cfg = c.config
        perm = np.zeros(c.num_inputs)
        for idx in potential_pool:
            if c.random.random() <= connected_pct:
                p = self.init_perm_connected(c)
            else:
                p = self.init_perm_non_connected(c)
            perm[idx] = 0.0 if p < cfg.syn_perm_trim_threshold else p
        return perm

    @staticmethod
    def init_perm_connected(c: Connections) -> float:
        cfg = c.config
        p = cfg.syn_perm_connected + (cfg.syn_perm_max - cfg.syn_perm_connected) * c.random.random()
        return int(p * PERMANENCE_PRECISION) / float(PERMANENCE_PRECISION)

    @staticmethod
    def init_perm_non_connected(c: Connections) -> float:
        p = c.config.syn_perm_connected * c.random.random()
        return int(p * PERMANENCE_PRECISION) / float(PERMANENCE_PRECISION)

    # ===== Topology helpers =====

    def map_column(self, c: Connections, column_index: int) -> int:
        """Input index at the centre of a column's receptive field."""
        col_dims = np.asarray(c.config.column_dimensions, dtype=float)
        input_dims = np.asarray(c.config.input_dimensions, dtype=float)
        col_coords = np.asarray(c.memory.compute_coordinates(column_index), dtype=float)

        input_coords = col_coords / col_dims * input_dims
        input_coords += 0.5 * input_dims / col_dims
        input_coords = np.clip(input_coords.astype(np.int64), 0, input_dims.astype(np.int64) - 1)
        return c.input_topology.compute_index(input_coords.tolist())

    def map_potential(self, c: Connections, column_index: int, wrap_around: bool) -> np.ndarray:
        """Random subset (`potential_pct`) of the inputs within `potential_radius` of the column's centre."""
        center_input = self.map_column(c, column_index)
        column_inputs = self.get_input_neighborhood(c, center_input, c.config.potential_radius, wrap_around)

        num_potential = int(len(column_inputs) * c.config.potential_pct + 0.5)
        sample = c.random.choice(column_inputs, size=num_potential, replace=False)
        return np.sort(sample)

    def get_column_neighborhood(self, c: Connections, center_column: int, inhibition_radius: int) -> np.ndarray:
        if c.is_wrap_around:
            return c.column_topology.wrapping_neighborhood(center_column, inhibition_radius)
        return c.column_topology.neighborhood(center_column, inhibition_radius)

    def get_input_neighborhood(
        self,
        c: Connections,
        center_input: int,
        potential_radius: int,
        wrap_around: Optional[bool] = None,
    ) -> np.ndarray:
        if wrap_around is None:
            wrap_around = c.is_wrap_around
        if wrap_around:
            return c.input_topology.wrapping_neighborhood(center_input, potential_radius)
        return c.input_topology.neighborhood(center_input, potential_radius)

    # ===== Compute =====

    def compute(self, input_vector: InputVector, active_array: Union[np.ndarray, List[int]], learn: bool = True) -> np.ndarray:
        """Run one input through the pooler.

        `active_array` is overwritten with 1 at the winning columns and 0
        elsewhere. Returns the winning column indices in ascending order.
        """
        c = self.connections
        if c is None:
            raise RuntimeError("SpatialPooler.init must be called before compute.")
        input_vector = np.asarray(input_vector)
        if input_vector.ndim != 1:
            input_vector = input_vector.ravel()
        if input_vector.size != c.num_inputs:
            raise ValueError(
                f"Input array must be same size as the defined number of inputs: "
                f"expected {c.num_inputs}, got {input_vector.size}"
            )
        if len(active_array) != c.num_columns:
            raise ValueError(f"Active array must have {c.num_columns} entries, got {len(active_array)}")

        self.update_bookkeeping_vars(c, learn)

        overlaps = self.calculate_overlap(c, input_vector)
        c.overlaps = overlaps

        if learn:
            boosted_overlaps = c.boost_factors * overlaps
        else:
            boosted_overlaps = overlaps.astype(float)
        c.boosted_overlaps = boosted_overlaps

        active_columns = self.inhibit_columns(c, boosted_overlaps)

        if learn:
            self.adapt_synapses(c, input_vector, active_columns)
            self.update_duty_cycles(c, overlaps, active_columns)
            self.bump_up_weak_columns(c)
            self.update_boost_factors(c)
            if self.is_update_round(c):
                self.update_inhibition_radius(c)
                self.update_min_duty_cycles(c)

        dense = np.zeros(c.num_columns, dtype=np.int64)
        dense[active_columns] = 1
        active_array[:] = dense.tolist() if isinstance(active_array, list) else dense

        logger.debug(
            "Iteration %d: %d active columns (learn=%s)", c.sp_iteration_num, len(active_columns), learn
        )

        if learn and self.homeostatic_controller is not None:
            self.homeostatic_controller.compute(input_vector, active_array)

        return active_columns

    def update_bookkeeping_vars(self, c: Connections, learn: bool) -> None:
        c.sp_iteration_num += 1
        if learn:
            c.sp_iteration_learn_num += 1

    def is_update_round(self, c: Connections) -> bool:
        return c.sp_iteration_num % c.config.update_period == 0

    def calculate_overlap(self, c: Connections, input_vector: np.ndarray) -> np.ndarray:
        """Connected synapses on active input bits per column, zeroed below the stimulus threshold."""
        return c.connected_counts.right_vec_sum_at_nz(input_vector, c.config.stimulus_threshold)

    def calculate_overlap_pct(self, c: Connections, overlaps: np.ndarray) -> np.ndarray:
        true_counts = c.connected_counts.get_true_counts().astype(float)
        overlaps = np.asarray(overlaps, dtype=float)
        pct = np.zeros_like(overlaps)
        np.divide(overlaps, true_counts, out=pct, where=true_counts > 0)
        return pct

    def strip_unlearned_columns(self, c: Connections, active_columns: Sequence[int]) -> np.ndarray:
        """Drop the columns that were never active while learning."""
        active_columns = np.asarray(active_columns, dtype=np.int64)
        return active_columns[c.active_duty_cycles[active_columns] > 0]

    # ===== Inhibition =====

    def calc_inhibition_density(self, c: Connections) -> float:
        cfg = c.config
        if cfg.local_area_density > 0:
            return cfg.local_area_density
        inhibition_area = (2 * c.inhibition_radius + 1) ** c.column_topology.num_dimensions
        inhibition_area = min(c.num_columns, inhibition_area)
        density = cfg.num_active_columns_per_inh_area / inhibition_area
        return min(density, cfg.max_inhibition_density)

    def inhibit_columns(self, c: Connections, initial_overlaps: np.ndarray) -> np.ndarray:
        overlaps = np.array(initial_overlaps, dtype=float)
        density = self.calc_inhibition_density(c)
        if c.config.global_inhibition or c.inhibition_radius > max(c.config.column_dimensions):
            return self.inhibit_columns_global(c, overlaps, density)
        return self.inhibit_columns_local(c, overlaps, density)

    def inhibit_columns_global(self, c: Connections, overlaps: np.ndarray, density: float) -> np.ndarray:
        """Top `density * num_columns` columns by overlap, minus those below the stimulus threshold."""
        num_active = int(density * c.num_columns)
        if num_active <= 0:
            return np.zeros(0, dtype=np.int64)
        sorted_indices = np.argsort(overlaps, kind="stable")
        winners = sorted_indices[len(sorted_indices) - num_active:]
        # Ascending by overlap, so the sub-threshold columns form a prefix
        start = int(np.count_nonzero(overlaps[winners] < c.config.stimulus_threshold))
        return np.sort(winners[start:])

    def inhibit_columns_local(self, c: Connections, overlaps: np.ndarray, density: float) -> np.ndarray:
        """Each column competes only against its neighborhood.

        Columns are visited in ascending index order and every winner gets a
        small bonus on its tie-broken score, so earlier columns beat later
        ties within the same neighborhood.
        """
        winner_delta = float(overlaps.max()) / 1000.0 if overlaps.size else 0.0
        if winner_delta == 0:
            winner_delta = MIN_WINNER_DELTA

        tie_broken_overlaps = overlaps.copy()
        winners: List[int] = []
        for column in range(overlaps.size):
            if overlaps[column] < c.config.stimulus_threshold:
                continue
            neighborhood = self.get_column_neighborhood(c, column, c.inhibition_radius)
            num_bigger = int(np.count_nonzero(tie_broken_overlaps[neighborhood] > overlaps[column]))
            num_active = int(0.5 + density * len(neighborhood))
            if num_bigger < num_active:
                winners.append(column)
                tie_broken_overlaps[column] += winner_delta
        return np.asarray(winners, dtype=np.int64)

    # ===== Learning =====

    def adapt_synapses(self, c: Connections, input_vector: np.ndarray, active_columns: Sequence[int]) -> None:
        """Reinforce winners' synapses on active input bits and weaken the rest."""
        input_indices = np.flatnonzero(input_vector)
        perm_changes = np.full(c.num_inputs, -c.config.syn_perm_inactive_dec)
        perm_changes[input_indices] = c.config.syn_perm_active_inc
        for col_index in active_columns:
            pool = c.get_pool(int(col_index))
            perm = pool.get_dense_permanences()
            perm += perm_changes
            self.update_permanences_for_column(c, perm, c.get_column(int(col_index)), pool.potential, True)

    def bump_up_weak_columns(self, c: Connections) -> None:
        """Raise every permanence of columns whose overlap duty cycle fell below its minimum."""
        weak_columns = np.flatnonzero(c.overlap_duty_cycles < c.min_overlap_duty_cycles)
        for col_index in weak_columns:
            pool = c.get_pool(int(col_index))
            perm = pool.get_sparse_permanences() + c.config.syn_perm_below_stimulus_inc
            self.update_permanences_for_column_sparse(c, perm, c.get_column(int(col_index)), pool.potential, True)

    def raise_permanence_to_threshold(self, c: Connections, perm: np.ndarray, mask_potential: Sequence[int]) -> int:
        """Bump the pool's permanences until at least `stimulus_threshold` are connected.

        Works in place on the dense `perm`; returns the connected count.
        """
        mask_potential = np.asarray(mask_potential, dtype=np.int64)
        if len(mask_potential) < c.config.stimulus_threshold:
            raise ValueError(
                "This is likely due to a value of stimulus_threshold that is too large "
                "relative to the input size. [len(mask) < stimulus_threshold]"
            )
        np.clip(perm, c.config.syn_perm_min, c.config.syn_perm_max, out=perm)
        pool_perm = perm[mask_potential]
        num_connected = self._raise_until_connected(c, pool_perm)
        perm[mask_potential] = pool_perm
        return num_connected

    def raise_permanence_to_threshold_sparse(self, c: Connections, perm: np.ndarray) -> int:
        """Sparse variant of `raise_permanence_to_threshold`; `perm` holds only the pool's values."""
        if len(perm) < c.config.stimulus_threshold:
            raise ValueError(
                "This is likely due to a value of stimulus_threshold that is too large "
                "relative to the input size. [len(mask) < stimulus_threshold]"
            )
        np.clip(perm, c.config.syn_perm_min, c.config.syn_perm_max, out=perm)
        return self._raise_until_connected(c, perm)

    @staticmethod
    def _raise_until_connected(c: Connections, pool_perm: np.ndarray) -> int:
        cfg = c.config
        while True:
            num_connected = int(np.count_nonzero(pool_perm >= cfg.syn_perm_connected))
            if num_connected >= cfg.stimulus_threshold:
                return num_connected
            pool_perm += cfg.syn_perm_below_stimulus_inc

    def update_permanences_for_column(
        self,
        c: Connections,
        perm: np.ndarray,
        column: Column,
        mask_potential: Sequence[int],
        raise_perm: bool = True,
    ) -> None:
        """Trim, clip and store dense permanences, refreshing the column's connectivity."""
        perm = np.array(perm, dtype=float)
        if raise_perm:
            self.raise_permanence_to_threshold(c, perm, mask_potential)
        perm[perm <= c.config.syn_perm_trim_threshold] = 0.0
        np.clip(perm, c.config.syn_perm_min, c.config.syn_perm_max, out=perm)
        column.set_proximal_permanences(c, perm)

    def update_permanences_for_column_sparse(
        self,
        c: Connections,
        perm: np.ndarray,
        column: Column,
        mask_potential: Sequence[int],
        raise_perm: bool = True,
    ) -> None:
        perm = np.array(perm, dtype=float)
        if raise_perm:
            self.raise_permanence_to_threshold_sparse(c, perm)
        perm[perm <= c.config.syn_perm_trim_threshold] = 0.0
        np.clip(perm, c.config.syn_perm_min, c.config.syn_perm_max, out=perm)
        column.set_proximal_permanences_sparse(c, perm, np.asarray(mask_potential))

    # ===== Homeostasis =====

    def update_duty_cycles(self, c: Connections, overlaps: np.ndarray, active_columns: Sequence[int]) -> None:
        overlap_array = (np.asarray(overlaps) > 0).astype(float)
        active_array = np.zeros(c.num_columns)
        active_array[np.asarray(active_columns, dtype=np.int64)] = 1.0

        period = min(c.config.duty_cycle_period, c.sp_iteration_num)
        c.overlap_duty_cycles = self.update_duty_cycles_helper(c, c.overlap_duty_cycles, overlap_array, period)
        c.active_duty_cycles = self.update_duty_cycles_helper(c, c.active_duty_cycles, active_array, period)

    @staticmethod
    def update_duty_cycles_helper(c: Connections, duty_cycles: np.ndarray, new_input: np.ndarray, period: float) -> np.ndarray:
        """Moving average: (duty * (period - 1) + new) / period."""
        if period < 1:
            raise ValueError(f"Duty cycle period must be at least 1, got {period}")
        return (np.asarray(duty_cycles) * (period - 1) + np.asarray(new_input)) / period

    def update_boost_factors(self, c: Connections) -> None:
        """Linear boost from max_boost (never active) down to 1.0 (at the minimum duty cycle)."""
        active = c.active_duty_cycles
        min_active = c.min_active_duty_cycles

        if not np.any(min_active > 0):
            boost = c.boost_factors.copy()
        else:
            boost = np.full(c.num_columns, c.max_boost, dtype=float)
            mask = min_active > 0
            boost[mask] = (1.0 - c.max_boost) / min_active[mask] * active[mask] + c.max_boost

        boost[active > min_active] = 1.0
        c.boost_factors = boost

    def update_min_duty_cycles(self, c: Connections) -> None:
        if c.config.global_inhibition or c.inhibition_radius > c.num_inputs:
            self.update_min_duty_cycles_global(c)
        else:
            self.update_min_duty_cycles_local(c)

    def update_min_duty_cycles_global(self, c: Connections) -> None:
        c.min_overlap_duty_cycles = np.full(
            c.num_columns, c.min_pct_overlap_duty_cycles * float(c.overlap_duty_cycles.max())
        )
        c.min_active_duty_cycles = np.full(
            c.num_columns, c.config.min_pct_active_duty_cycles * float(c.active_duty_cycles.max())
        )

    def update_min_duty_cycles_local(self, c: Connections) -> None:
        self._update_min_duty_cycles_range(c, 0, c.num_columns)

    def _update_min_duty_cycles_range(self, c: Connections, start: int, stop: int) -> None:
        """Per-column minimums from the neighborhood maxima; writes only slots [start, stop)."""
        for i in range(start, stop):
            neighborhood = self.get_column_neighborhood(c, i, c.inhibition_radius)
            max_active = float(c.active_duty_cycles[neighborhood].max())
            max_overlap = float(c.overlap_duty_cycles[neighborhood].max())
            c.min_active_duty_cycles[i] = max_active * c.config.min_pct_active_duty_cycles
            c.min_overlap_duty_cycles[i] = max_overlap * c.min_pct_overlap_duty_cycles

    def update_inhibition_radius(self, c: Connections) -> None:
        previous = c.inhibition_radius
        if c.config.global_inhibition:
            c.inhibition_radius = max(c.config.column_dimensions)
        else:
            avg_connected_span = float(np.mean([
                self.get_avg_span_of_connected_synapses_for_column(c, i) for i in range(c.num_columns)
            ]))
            diameter = avg_connected_span * self.avg_columns_per_input(c)
            radius = max(1.0, (diameter - 1) / 2.0)
            c.inhibition_radius = int(radius + 0.5)
        if c.inhibition_radius != previous:
            logger.debug("Inhibition radius %d -> %d", previous, c.inhibition_radius)

    def avg_columns_per_input(self, c: Connections) -> float:
        col_dims = np.asarray(c.config.column_dimensions, dtype=float)
        input_dims = np.asarray(c.config.input_dimensions, dtype=float)
        return float(np.mean(col_dims / input_dims))

    def get_avg_span_of_connected_synapses_for_column(self, c: Connections, column_index: int) -> float:
        """Mean (over input dimensions) extent of the column's connected synapses; 0 if none."""
        connected = c.get_column(column_index).proximal_dendrite.get_connected_synapses_sparse(c)
        if connected.size == 0:
            return 0.0
        order = "F" if c.input_topology.is_column_major else "C"
        coords = np.stack(np.unravel_index(connected, c.input_topology.dimensions, order=order))
        spans = coords.max(axis=1) - coords.min(axis=1) + 1
        return float(np.mean(spans))


class SpatialPoolerMT(SpatialPooler):
    """Spatial pooler that fans the per-column reductions out over a thread pool.

    Overlap scoring is split into row blocks of the connectivity bitmap and
    the local minimum duty cycles into column index ranges. Each task writes
    only its own slice, so the output is identical to `SpatialPooler`.
    Initialisation and inhibition run sequentially.

    The pool is created on first use and reused for every compute call;
    `close` (or leaving a `with` block) shuts it down.
    """

    def __init__(
        self,
        homeostatic_controller: Optional['HomeostaticPlasticityController'] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        super().__init__(homeostatic_controller)
        self.max_workers = max_workers
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def __enter__(self) -> 'SpatialPoolerMT':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def executor(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self._num_workers(), thread_name_prefix="spatial-pooler"
            )
        return self._executor

    def close(self) -> None:
        """Shut down the worker threads; a later compute starts a new pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _num_workers(self) -> int:
        return self.max_workers or min(32, (os.cpu_count() or 1) + 4)

    def _chunks(self, total: int) -> List[slice]:
        size = max(1, -(-total // self._num_workers()))
        return [slice(start, min(start + size, total)) for start in range(0, total, size)]

    def calculate_overlap(self, c: Connections, input_vector: np.ndarray) -> np.ndarray:
        overlaps = np.zeros(c.num_columns, dtype=np.int64)

        def _block(rows: slice) -> None:
            overlaps[rows] = c.connected_counts.right_vec_sum_at_nz(
                input_vector, c.config.stimulus_threshold, rows=rows
            )

        for future in [self.executor.submit(_block, rows) for rows in self._chunks(c.num_columns)]:
            future.result()
        return overlaps

    def update_min_duty_cycles_local(self, c: Connections) -> None:
        futures = [
            self.executor.submit(self._update_min_duty_cycles_range, c, rows.start, rows.stop)
            for rows in self._chunks(c.num_columns)
        ]
        for future in futures:
            future.result()
