from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from math import prod
from pathlib import Path
from typing import Any, Mapping, Tuple


class ConfigurationError(ValueError):
    """Raised when an HtmConfig cannot drive a valid spatial pooler."""


@dataclass(frozen=True)
class HtmConfig:
    """
    Construction-time parameters of the spatial pooler and its memory.

    Members "num_active_columns_per_inh_area" and "local_area_density" are
    alternatives: a positive local_area_density wins, otherwise the density is
    derived from num_active_columns_per_inh_area and the inhibition area.
    """

    input_dimensions: Tuple[int, ...]
    column_dimensions: Tuple[int, ...]
    cells_per_column: int = 32

    potential_radius: int = 15
    """
    * Radius (in input space) of the receptive field a column samples its
    * potential pool from.
    """
    potential_pct: float = 0.75
    """
    * Fraction of the receptive field that ends up in the potential pool.
    """

    global_inhibition: bool = False
    local_area_density: float = -1.0
    num_active_columns_per_inh_area: float = 10.0
    max_inhibition_density: float = 0.5  # Cap on the density derived from the inhibition area
    stimulus_threshold: float = 0.0  # Minimum overlap for a column to compete in inhibition

    syn_perm_inactive_dec: float = 0.008  # Decrement for synapses onto inactive input bits
    syn_perm_active_inc: float = 0.05  # Increment for synapses onto active input bits
    syn_perm_connected: float = 0.10  # Permanence above which a synapse counts towards overlap
    syn_perm_below_stimulus_inc: float = 0.01  # Bump for columns that cannot reach the stimulus threshold
    syn_perm_trim_threshold: float = 0.025  # Permanences at or below this are zeroed
    syn_perm_min: float = 0.0
    syn_perm_max: float = 1.0
    init_connected_pct: float = 0.5  # Chance of a potential synapse starting out connected

    min_pct_overlap_duty_cycles: float = 0.001
    min_pct_active_duty_cycles: float = 0.001
    duty_cycle_period: int = 1000  # Window of the duty-cycle moving averages
    max_boost: float = 10.0
    update_period: int = 50  # Iterations between inhibition radius / min duty cycle updates

    wrap_around: bool = True
    max_segments_per_cell: int = 255
    max_synapses_per_segment: int = 255

    seed: int = 42
    """
    * Seed of the numpy generator used for potential pool sampling and
    * permanence initialisation. Two poolers with the same seed and
    * parameters produce identical outputs.
    """

    def __post_init__(self) -> None:
        object.__setattr__(self, "input_dimensions", tuple(int(d) for d in self.input_dimensions))
        object.__setattr__(self, "column_dimensions", tuple(int(d) for d in self.column_dimensions))

    @property
    def num_inputs(self) -> int:
        return prod(self.input_dimensions)

    @property
    def num_columns(self) -> int:
        return prod(self.column_dimensions)

    def replace(self, **changes: Any) -> "HtmConfig":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)

    def validate(self) -> None:
        """Raise ConfigurationError if the parameters are jointly invalid."""
        if not self.input_dimensions or any(d <= 0 for d in self.input_dimensions):
            raise ConfigurationError(f"Invalid input dimensions: {self.input_dimensions}")
        if not self.column_dimensions or any(d <= 0 for d in self.column_dimensions):
            raise ConfigurationError(f"Invalid column dimensions: {self.column_dimensions}")
        if self.num_active_columns_per_inh_area == 0 and (
            self.local_area_density == 0 or self.local_area_density > 0.5
        ):
            raise ConfigurationError("Inhibition parameters are invalid")
        if self.num_active_columns_per_inh_area <= 0 and self.local_area_density <= 0:
            raise ConfigurationError("Inhibition parameters are invalid")
        if not 0 < self.potential_pct <= 1:
            raise ConfigurationError(f"potential_pct must be in (0, 1], got {self.potential_pct}")
        if self.syn_perm_min > self.syn_perm_max:
            raise ConfigurationError("syn_perm_min must not exceed syn_perm_max")
        if self.syn_perm_connected > self.syn_perm_max:
            raise ConfigurationError("syn_perm_connected must not exceed syn_perm_max")
        # Raising a pool to the stimulus threshold only terminates with a positive step
        if self.stimulus_threshold > 0 and self.syn_perm_below_stimulus_inc <= 0:
            raise ConfigurationError(
                "syn_perm_below_stimulus_inc must be positive when stimulus_threshold is positive"
            )
        if self.duty_cycle_period <= 0 or self.update_period <= 0:
            raise ConfigurationError("duty_cycle_period and update_period must be positive")
        if self.cells_per_column < 1:
            raise ConfigurationError("cells_per_column must be at least 1")


def resolve_config(config: Mapping[str, Any] | HtmConfig | None) -> HtmConfig:
    if config is None:
        raise ConfigurationError("input_dimensions and column_dimensions are required")
    if isinstance(config, HtmConfig):
        return config
    try:
        return HtmConfig(**config)
    except TypeError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_config(path: str | Path) -> HtmConfig:
    """Read an HtmConfig from a JSON file of keyword arguments."""
    return resolve_config(json.loads(Path(path).read_text()))
