"""
Unit tests for the HomeostaticPlasticityController state machine.
"""
import logging
import numpy as np
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import pytest

from connections import Connections
from homeostatic_plasticity import HomeostaticPlasticityController, StabilityState
from sdr_utils import create_vector


def make_controller(min_cycles=3, wait=2, threshold=0.9):
    c = Connections({"input_dimensions": (10,), "column_dimensions": (8,), "max_boost": 5.0})
    c.boost_factors = np.full(8, 3.0)
    c.min_overlap_duty_cycles = np.full(8, 0.2)
    events = []

    def on_change(is_stable, num_patterns, avg_active_columns, total_inputs_seen):
        events.append((is_stable, num_patterns, avg_active_columns, total_inputs_seen))

    hpc = HomeostaticPlasticityController(
        c, min_cycles, on_change,
        num_of_cycles_to_wait_on_change=wait,
        required_similarity_threshold=threshold,
    )
    return hpc, c, events


INPUT_A = create_vector(10, [0, 3, 7])
INPUT_B = create_vector(10, [1, 2, 9])
OUT_A = create_vector(8, [1, 4])
OUT_B = create_vector(8, [0, 6])


def test_newborn_stage_then_boosting_is_switched_off():
    hpc, c, events = make_controller(min_cycles=3)
    assert hpc.state is StabilityState.NEWBORN
    assert hpc.compute(INPUT_A, OUT_A) is False
    assert hpc.compute(INPUT_A, OUT_A) is False
    assert hpc.state is StabilityState.NEWBORN
    assert c.max_boost == 5.0

    hpc.compute(INPUT_A, OUT_A)
    assert hpc.state is StabilityState.STABILIZING
    assert c.max_boost == 1.0
    assert np.all(c.boost_factors == 1.0)
    assert c.min_pct_overlap_duty_cycles == 0.0
    assert np.all(c.min_overlap_duty_cycles == 0.0)
    assert c.config.max_boost == 5.0
    assert events == [(False, 1, 2.0, 3)]


def test_stable_after_consecutive_similar_cycles():
    hpc, c, events = make_controller(min_cycles=1, wait=2)
    hpc.compute(INPUT_A, OUT_A)
    assert hpc.compute(INPUT_A, OUT_A) is False
    assert hpc.compute(INPUT_A, OUT_A) is True
    assert hpc.is_stable
    assert events[-1] == (True, 1, 2.0, 3)


def test_every_input_must_be_stable():
    hpc, c, events = make_controller(min_cycles=2, wait=2)
    hpc.compute(INPUT_A, OUT_A)
    hpc.compute(INPUT_B, OUT_B)
    for _ in range(2):
        hpc.compute(INPUT_A, OUT_A)
        assert not hpc.is_stable
        hpc.compute(INPUT_B, OUT_B)
    assert hpc.is_stable
    assert hpc.num_patterns == 2


def test_dissimilar_output_resets_counter_and_warns(caplog):
    hpc, c, events = make_controller(min_cycles=1, wait=1)
    hpc.compute(INPUT_A, OUT_A)
    assert hpc.compute(INPUT_A, OUT_A) is True

    with caplog.at_level(logging.WARNING, logger="homeostatic_plasticity"):
        assert hpc.compute(INPUT_A, OUT_B) is False
    assert hpc.state is StabilityState.STABILIZING
    assert any(r.levelno == logging.WARNING for r in caplog.records)
    assert events[-1][0] is False

    assert hpc.compute(INPUT_A, OUT_B) is True
    assert [e[0] for e in events] == [False, True, False, True]


def test_callback_is_optional():
    c = Connections({"input_dimensions": (10,), "column_dimensions": (8,)})
    hpc = HomeostaticPlasticityController(c, 0, num_of_cycles_to_wait_on_change=1)
    hpc.compute(INPUT_A, OUT_A)
    hpc.compute(INPUT_A, OUT_A)
    assert hpc.is_stable


def test_hash_depends_on_active_bits_only():
    as_list = [1, 0, 0, 1, 0, 0, 0, 1, 0, 0]
    assert HomeostaticPlasticityController.get_hash(as_list) == HomeostaticPlasticityController.get_hash(INPUT_A)
    assert HomeostaticPlasticityController.get_hash(INPUT_A.astype(bool)) == HomeostaticPlasticityController.get_hash(INPUT_A)
    assert HomeostaticPlasticityController.get_hash(INPUT_A) != HomeostaticPlasticityController.get_hash(INPUT_B)


def test_trace_state_lists_inputs():
    hpc, c, events = make_controller(min_cycles=1)
    hpc.compute(INPUT_A, OUT_A)
    hpc.compute(INPUT_B, OUT_B)
    trace = hpc.trace_state()
    assert trace.startswith("State: stabilizing")
    assert f"{hpc.get_hash(INPUT_A):032x}" in trace
    assert len(trace.splitlines()) == 3


@pytest.mark.parametrize(
    "kwargs",
    [
        {"min_cycles": -1},
        {"min_cycles": 1, "num_of_cycles_to_wait_on_change": 0},
        {"min_cycles": 1, "required_similarity_threshold": 1.5},
    ],
)
def test_invalid_arguments(kwargs):
    c = Connections({"input_dimensions": (10,), "column_dimensions": (8,)})
    with pytest.raises(ValueError):
        HomeostaticPlasticityController(c, **kwargs)
