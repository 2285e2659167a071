from __future__ import annotations

import logging
from enum import Enum
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Union,
)

import mmh3
import numpy as np

from connections import Connections
from sdr_utils import calc_array_similarity, index_where

logger = logging.getLogger(__name__)

# (is_stable, num_patterns, avg_active_columns, total_inputs_seen)
StabilityCallback = Callable[[bool, int, float, int], None]


class StabilityState(Enum):
    NEWBORN = "newborn"
    STABILIZING = "stabilizing"
    STABLE = "stable"


class _InputRecord:
    __slots__ = ("previous_output", "num_similar_cycles", "last_similarity")

    def __init__(self) -> None:
        self.previous_output: Optional[np.ndarray] = None
        self.num_similar_cycles: int = 0
        self.last_similarity: float = 0.0


class HomeostaticPlasticityController:
    """Watches the pooler's output per input and reports when it stops changing.

    For the first `min_cycles` compute calls the pooler is NEWBORN: boosting
    is left on so that every column gets a chance to learn. Afterwards boosting
    and weak-column bumping are switched off on the connections and the
    controller tracks, for every distinct input, how many consecutive
    presentations produced an SDR at least `required_similarity_threshold`
    similar to the previous one. Once every input has been similar for
    `num_of_cycles_to_wait_on_change` presentations the pooler is STABLE.

    `max_cycles`, when given, is the most training cycles `train_until_stable`
    runs with this controller.
    """

    def __init__(
        self,
        connections: Connections,
        min_cycles: int,
        on_stability_status_changed: Optional[StabilityCallback] = None,
        num_of_cycles_to_wait_on_change: int = 50,
        required_similarity_threshold: float = 0.97,
        max_cycles: Optional[int] = None,
    ) -> None:
        if min_cycles < 0:
            raise ValueError(f"min_cycles must not be negative, got {min_cycles}")
        if num_of_cycles_to_wait_on_change < 1:
            raise ValueError("num_of_cycles_to_wait_on_change must be at least 1")
        if not 0.0 <= required_similarity_threshold <= 1.0:
            raise ValueError(f"required_similarity_threshold must be in [0, 1], got {required_similarity_threshold}")
        self.connections = connections
        self.min_cycles = min_cycles
        self.max_cycles = max_cycles
        self.on_stability_status_changed = on_stability_status_changed
        self.num_of_cycles_to_wait_on_change = num_of_cycles_to_wait_on_change
        self.required_similarity_threshold = required_similarity_threshold

        self.state: StabilityState = StabilityState.NEWBORN
        self.cycle: int = 0
        self._records: Dict[int, _InputRecord] = {}

    @property
    def is_stable(self) -> bool:
        return self.state is StabilityState.STABLE

    @property
    def num_patterns(self) -> int:
        return len(self._records)

    @staticmethod
    def get_hash(input_vector: Union[np.ndarray, Sequence[int]]) -> int:
        """Key identifying an input: 128-bit murmur hash of its packed bits."""
        bits = np.packbits(np.asarray(input_vector).ravel() != 0)
        return mmh3.hash128(bits.tobytes(), signed=False)

    def compute(self, input_vector: Union[np.ndarray, Sequence[int]], output: Union[np.ndarray, Sequence[int]]) -> bool:
        """Record the SDR produced for `input_vector`; returns True while stable."""
        self.cycle += 1
        active = index_where(output)
        record = self._records.setdefault(self.get_hash(input_vector), _InputRecord())

        if self.state is StabilityState.NEWBORN:
            record.previous_output = active
            if self.cycle >= self.min_cycles:
                self._exit_newborn_stage()
                self._set_state(StabilityState.STABILIZING)
            return False

        if record.previous_output is None:
            similarity = 0.0
        else:
            similarity = calc_array_similarity(record.previous_output, active)
        record.previous_output = active
        record.last_similarity = similarity

        if similarity >= self.required_similarity_threshold:
            record.num_similar_cycles += 1
        else:
            record.num_similar_cycles = 0

        if all(r.num_similar_cycles >= self.num_of_cycles_to_wait_on_change for r in self._records.values()):
            self._set_state(StabilityState.STABLE)
        else:
            self._set_state(StabilityState.STABILIZING)
        return self.is_stable

    def _exit_newborn_stage(self) -> None:
        c = self.connections
        c.max_boost = 1.0
        c.boost_factors = np.ones(c.num_columns)
        c.min_pct_overlap_duty_cycles = 0.0
        c.min_overlap_duty_cycles = np.zeros(c.num_columns)
        logger.info("Newborn stage finished after %d cycles; boosting disabled", self.cycle)

    def _set_state(self, new_state: StabilityState) -> None:
        if new_state is self.state:
            return
        old_state = self.state
        self.state = new_state
        if old_state is StabilityState.STABLE:
            logger.warning("Pooler left the stable state at cycle %d", self.cycle)
        else:
            logger.info("Pooler state %s -> %s at cycle %d", old_state.value, new_state.value, self.cycle)

        if self.on_stability_status_changed is not None:
            self.on_stability_status_changed(
                self.is_stable, self.num_patterns, self._avg_active_columns(), self.cycle
            )

    def _avg_active_columns(self) -> float:
        sizes = [len(r.previous_output) for r in self._records.values() if r.previous_output is not None]
        return float(np.mean(sizes)) if sizes else 0.0

    def trace_state(self) -> str:
        lines: List[str] = [
            f"State: {self.state.value} | Cycle: {self.cycle} | Patterns: {self.num_patterns}"
        ]
        for key, record in self._records.items():
            num_active = 0 if record.previous_output is None else len(record.previous_output)
            lines.append(
                f"  {key:032x} | similar cycles: {record.num_similar_cycles:>4} | "
                f"last similarity: {record.last_similarity:.3f} | active: {num_active}"
            )
        return "\n".join(lines)
