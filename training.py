from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (
    Dict,
    List,
    Optional,
    Sequence,
)

import numpy as np
from tqdm import tqdm

from sdr_utils import calc_array_similarity
from spatial_pooler import SpatialPooler

logger = logging.getLogger(__name__)


@dataclass
class TrainingResult:
    stable: bool
    cycles: int
    similarities: Dict[int, List[float]] = field(default_factory=dict)
    """
    * Per input position, the similarity of each cycle's SDR to the previous
    * cycle's SDR for the same input (from the second cycle on).
    """
    active_columns: List[np.ndarray] = field(default_factory=list)  # Last SDR per input position


def resolve_max_cycles(requested: Optional[int], controller_limit: Optional[int]) -> int:
    """Return the tighter of the caller's and the controller's cycle limits."""
    limits = [limit for limit in (requested, controller_limit) if limit is not None]
    if not limits:
        raise ValueError("max_cycles must be given when the controller sets no limit")
    max_cycles = min(limits)
    if max_cycles < 0:
        raise ValueError(f"max_cycles must not be negative, got {max_cycles}")
    return max_cycles


def train_until_stable(
    sp: SpatialPooler,
    inputs: Sequence[np.ndarray],
    max_cycles: Optional[int] = None,
    show_progress: bool = False,
) -> TrainingResult:
    """Present every input once per cycle with learning on until the pooler is stable.

    The pooler must carry a homeostatic plasticity controller; its stability
    verdict on the last input of a cycle ends training. The controller's own
    `max_cycles`, when set, caps the number of cycles as well.
    """
    controller = sp.homeostatic_controller
    if controller is None:
        raise ValueError("train_until_stable needs a SpatialPooler with a homeostatic controller")
    if sp.connections is None:
        raise ValueError("SpatialPooler.init must be called before training")
    max_cycles = resolve_max_cycles(max_cycles, controller.max_cycles)

    c = sp.connections
    active_array = np.zeros(c.num_columns, dtype=np.int64)
    previous: Dict[int, np.ndarray] = {}
    result = TrainingResult(stable=False, cycles=0)

    for cycle in tqdm(range(max_cycles), desc="Training", disable=not show_progress):
        for position, input_vector in enumerate(inputs):
            active = sp.compute(input_vector, active_array, learn=True)
            if position in previous:
                similarity = calc_array_similarity(previous[position], active)
                result.similarities.setdefault(position, []).append(similarity)
            previous[position] = active

        result.cycles = cycle + 1
        if controller.is_stable:
            result.stable = True
            logger.info("Stable after %d cycles", result.cycles)
            break
    else:
        logger.warning("Not stable after %d cycles", max_cycles)

    result.active_columns = [previous[position] for position in sorted(previous)]
    return result
