"""
Unit tests for HtmConfig construction, validation and loading.
"""
import dataclasses
import json
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import pytest

from htm_config import ConfigurationError, HtmConfig, load_config, resolve_config


def test_defaults_and_derived_sizes():
    cfg = HtmConfig(input_dimensions=[10, 20], column_dimensions=[64])
    assert cfg.input_dimensions == (10, 20)
    assert cfg.column_dimensions == (64,)
    assert cfg.num_inputs == 200
    assert cfg.num_columns == 64
    assert cfg.cells_per_column == 32
    assert cfg.syn_perm_connected == 0.10
    cfg.validate()


def test_config_is_frozen():
    cfg = HtmConfig(input_dimensions=(4,), column_dimensions=(4,))
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.max_boost = 3.0


def test_replace_returns_modified_copy():
    cfg = HtmConfig(input_dimensions=(4,), column_dimensions=(4,))
    other = cfg.replace(max_boost=2.0)
    assert other.max_boost == 2.0
    assert cfg.max_boost == 10.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"input_dimensions": ()},
        {"column_dimensions": (0,)},
        {"num_active_columns_per_inh_area": 0, "local_area_density": 0},
        {"num_active_columns_per_inh_area": 0, "local_area_density": 0.6},
        {"num_active_columns_per_inh_area": -1, "local_area_density": -1},
        {"potential_pct": 0.0},
        {"potential_pct": 1.5},
        {"syn_perm_min": 0.8, "syn_perm_max": 0.2},
        {"syn_perm_connected": 0.9, "syn_perm_max": 0.5},
        {"stimulus_threshold": 3.0, "syn_perm_below_stimulus_inc": 0.0},
        {"stimulus_threshold": 1.0, "syn_perm_below_stimulus_inc": -0.01},
        {"duty_cycle_period": 0},
        {"update_period": -3},
        {"cells_per_column": 0},
    ],
)
def test_validate_rejects_invalid_parameters(overrides):
    params = {"input_dimensions": (16,), "column_dimensions": (32,)}
    params.update(overrides)
    with pytest.raises(ConfigurationError):
        HtmConfig(**params).validate()


def test_local_area_density_alone_is_valid():
    cfg = HtmConfig(
        input_dimensions=(16,),
        column_dimensions=(32,),
        num_active_columns_per_inh_area=0,
        local_area_density=0.1,
    )
    cfg.validate()


def test_zero_below_stimulus_inc_allowed_without_threshold():
    HtmConfig(
        input_dimensions=(16,),
        column_dimensions=(32,),
        stimulus_threshold=0.0,
        syn_perm_below_stimulus_inc=0.0,
    ).validate()


def test_configuration_error_is_a_value_error():
    assert issubclass(ConfigurationError, ValueError)


def test_resolve_config_variants():
    cfg = HtmConfig(input_dimensions=(4,), column_dimensions=(8,))
    assert resolve_config(cfg) is cfg
    assert resolve_config({"input_dimensions": (4,), "column_dimensions": (8,)}) == cfg
    with pytest.raises(ConfigurationError):
        resolve_config(None)
    with pytest.raises(ConfigurationError):
        resolve_config({"input_dimensions": (4,), "column_dimensions": (8,), "bogus": 1})


def test_load_config_from_json(tmp_path):
    path = tmp_path / "sp.json"
    path.write_text(json.dumps({
        "input_dimensions": [200],
        "column_dimensions": [2048],
        "global_inhibition": True,
        "num_active_columns_per_inh_area": 41,
    }))
    cfg = load_config(path)
    assert cfg.input_dimensions == (200,)
    assert cfg.global_inhibition is True
    assert cfg.num_active_columns_per_inh_area == 41
