"""Tests for the per-run VariableStore."""

import pytest

from promptchain.core import VariableStore
from promptchain.exceptions import ChainValidationError
from promptchain.types import GlobalVariable


def test_seed_from_defaults(sample_variables):
    store = VariableStore.seed(sample_variables)
    assert store.get("a") == 1
    assert store.get("b") == "s"
    assert store.get("missing") is None
    assert "a" in store and "missing" not in store


def test_inputs_overlay_defaults(sample_variables):
    store = VariableStore.seed(sample_variables, {"a": 5, "extra": [1]})
    assert store["a"] == 5
    assert store["extra"] == [1]


def test_required_variable_missing_raises():
    variables = (GlobalVariable(name="topic", type="string", required=True),)
    with pytest.raises(ChainValidationError) as exc_info:
        VariableStore.seed(variables)
    assert "topic" in exc_info.value.violations[0]


def test_input_type_mismatch_raises(sample_variables):
    with pytest.raises(ChainValidationError):
        VariableStore.seed(sample_variables, {"a": "not a number"})


def test_last_write_wins():
    store = VariableStore()
    store.set("x", 1)
    store.set("x", 2)
    assert store["x"] == 2
    assert len(store) == 1


def test_snapshot_is_deep_copy():
    store = VariableStore({"items": [1, 2]})
    snap = store.snapshot()
    store["items"].append(3)
    assert snap == {"items": [1, 2]}


def test_seed_does_not_share_default_objects():
    variables = (GlobalVariable(name="items", type="array", default_value=[1]),)
    first = VariableStore.seed(variables)
    first["items"].append(2)
    assert VariableStore.seed(variables)["items"] == [1]
