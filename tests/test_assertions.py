"""Tests for the assertion engine."""

from dataclasses import dataclass

import numpy as np
import pytest
from pydantic import BaseModel

from pitcrew.assertions import (
    assert_equal,
    assert_false,
    assert_not_equal,
    assert_not_null,
    assert_null,
    assert_throws,
    assert_true,
    assertion_context,
    fail,
    structural_diff,
)
from pitcrew.errors import AssertionFailed


@dataclass
class Line:
    sku: str
    qty: int


@dataclass
class Order:
    id: int
    lines: list


class Point(BaseModel):
    x: int
    y: int


class Box:
    def __init__(self, value):
        self.value = value


# --- assert_equal / structural_diff ---


def test_assert_equal_passes_for_equal_primitives():
    assert_equal(3, 3)
    assert_equal("a", "a")
    assert_equal(None, None)
    assert_equal(b"x", b"x")


def test_assert_equal_compares_dataclasses_field_by_field():
    expected = Order(1, [Line("a", 1), Line("b", 2)])
    actual = Order(1, [Line("a", 1), Line("b", 3)])

    with pytest.raises(AssertionFailed) as excinfo:
        assert_equal(expected, actual)

    failure = excinfo.value.failure
    assert failure.message == "value.lines[1].qty: expected 2, got 3"
    assert failure.expected is expected
    assert failure.actual is actual


def test_assert_equal_prefixes_custom_message():
    with pytest.raises(AssertionFailed) as excinfo:
        assert_equal(1, 2, "order total")
    assert excinfo.value.failure.message == "order total: value: expected 1, got 2"


@pytest.mark.parametrize(
    "expected, actual",
    [
        (1, "1"),
        (True, 1),
        (1, True),
        ([1], (1,)),
        (b"a", "a"),
        (0, None),
        ({"a": 1}, [("a", 1)]),
    ],
)
def test_incompatible_kinds_fail_instead_of_coercing(expected, actual):
    with pytest.raises(AssertionFailed) as excinfo:
        assert_equal(expected, actual)
    message = excinfo.value.failure.message
    assert message.startswith("value: expected")
    assert type(actual).__name__ in message


def test_int_and_float_compare_by_value():
    assert_equal(1, 1.0)
    assert structural_diff(2, 2.5) == "value: expected 2, got 2.5"


def test_mapping_differences():
    assert structural_diff({"a": 1}, {}) == "value: missing key(s) ['a']"
    assert structural_diff({}, {"b": 1}) == "value: unexpected key(s) ['b']"
    assert structural_diff({"a": [1, 2]}, {"a": [1, 3]}) == "value['a'][1]: expected 2, got 3"


def test_sequence_length_difference():
    assert structural_diff([1, 2], [1]) == "value: expected length 2, got 1"


def test_set_difference_names_missing_and_unexpected():
    diff = structural_diff({1, 2}, {1, 3})
    assert "missing ['2']" in diff
    assert "unexpected ['3']" in diff
    assert structural_diff({1, 2}, {2, 1}) is None


def test_pydantic_models_compared_by_field():
    assert structural_diff(Point(x=1, y=2), Point(x=1, y=2)) is None
    assert structural_diff(Point(x=1, y=2), Point(x=1, y=3)) == "value.y: expected 2, got 3"


def test_plain_objects_compared_by_attributes():
    assert structural_diff(Box(1), Box(1)) is None
    assert structural_diff(Box(1), Box(2)) == "value.value: expected 1, got 2"


def test_different_object_types_are_a_mismatch():
    diff = structural_diff(Box(1), Line("a", 1))
    assert diff.startswith("value: expected Box")


def test_numpy_arrays_compare_without_ambiguity_errors():
    assert structural_diff(np.array([1, 2]), np.array([1, 2])) is None
    assert "shape" in structural_diff(np.array([1, 2]), np.array([1, 2, 3]))
    assert "arrays differ" in structural_diff(np.array([1, 2]), np.array([1, 5]))


def test_failure_location_points_at_calling_code():
    with pytest.raises(AssertionFailed) as excinfo:
        assert_equal(1, 2)
    location = excinfo.value.failure.location
    assert location is not None
    assert location.filename.endswith("test_assertions.py")
    assert location.function == "test_failure_location_points_at_calling_code"


# --- other predicates ---


def test_assert_not_equal():
    assert_not_equal(1, 2)
    with pytest.raises(AssertionFailed) as excinfo:
        assert_not_equal([1], [1])
    assert "different from [1]" in excinfo.value.failure.message


def test_assert_true_and_false():
    assert_true(1 < 2)
    assert_false([])
    with pytest.raises(AssertionFailed):
        assert_true(False, "flag")
    with pytest.raises(AssertionFailed):
        assert_false("non-empty")


def test_assert_null_and_not_null():
    assert_null(None)
    assert_not_null(0)
    with pytest.raises(AssertionFailed) as excinfo:
        assert_null(0)
    assert excinfo.value.failure.message == "expected None, got int 0"
    with pytest.raises(AssertionFailed):
        assert_not_null(None)


def test_fail_always_raises():
    with pytest.raises(AssertionFailed) as excinfo:
        fail("not implemented yet")
    assert excinfo.value.failure.message == "not implemented yet"


# --- assert_throws ---


def test_assert_throws_returns_the_fault():
    exc = assert_throws(KeyError, lambda: {}["missing"])
    assert isinstance(exc, KeyError)


def test_assert_throws_forwards_arguments():
    assert_throws(ValueError, int, "not a number")


def test_assert_throws_rejects_subclasses():
    with pytest.raises(AssertionFailed) as excinfo:
        assert_throws(LookupError, lambda: {}["missing"])
    assert excinfo.value.failure.message.startswith(
        "expected fault LookupError, got fault KeyError"
    )


def test_assert_throws_without_fault():
    with pytest.raises(AssertionFailed) as excinfo:
        assert_throws(ValueError, lambda: None)
    assert excinfo.value.failure.message == "expected fault ValueError, no fault raised"


def test_assert_throws_requires_exception_class():
    with pytest.raises(TypeError):
        assert_throws("ValueError", lambda: None)


# --- counting ---


def test_context_counts_passing_and_failing_assertions():
    with assertion_context() as ctx:
        assert_true(True)
        assert_equal(1, 1)
        with pytest.raises(AssertionFailed):
            assert_null(1)
    assert ctx.count == 3


def test_assert_throws_counts_once():
    with assertion_context() as ctx:
        assert_throws(ValueError, int, "x")
    assert ctx.count == 1


def test_assertions_work_without_active_context():
    assert_equal([1, 2], [1, 2])


# --- cycles and hash-equal keys ---


class Node:
    def __init__(self, value):
        self.value = value
        self.peer = None


def _pair(first, second):
    a, b = Node(first), Node(second)
    a.peer, b.peer = b, a
    return a


def test_equal_cyclic_graphs_compare_equal():
    assert structural_diff(_pair(1, 2), _pair(1, 2)) is None
    assert_equal(_pair("x", "y"), _pair("x", "y"))


def test_unequal_cyclic_graphs_report_difference():
    assert structural_diff(_pair(1, 2), _pair(1, 3)) == "value.peer.value: expected 2, got 3"


def test_self_referencing_lists():
    expected, actual = [1], [1]
    expected.append(expected)
    actual.append(actual)
    assert structural_diff(expected, actual) is None


def test_mapping_keys_do_not_coerce_bool_and_int():
    assert structural_diff({1: "x"}, {True: "x"}) == "value key 1: expected int 1, got bool True"
    with pytest.raises(AssertionFailed):
        assert_equal({0: "zero"}, {False: "zero"})


def test_set_members_do_not_coerce_bool_and_int():
    assert structural_diff({1}, {True}) == "value member 1: expected int 1, got bool True"
    assert structural_diff({1, "a"}, {"a", 1}) is None
