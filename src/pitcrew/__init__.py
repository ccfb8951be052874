"""pitcrew: test runner with fixture lifecycles and capability mocks."""

from pitcrew.assertions import (
    AssertionFailure,
    assert_equal,
    assert_false,
    assert_not_equal,
    assert_not_null,
    assert_null,
    assert_throws,
    assert_true,
    fail,
)
from pitcrew.discovery import Suite, discover, timeout, uses
from pitcrew.errors import AssertionFailed, FixtureFault, UnconfiguredInvocation, UnitTimeout
from pitcrew.fixtures import Fixture, fixture, resource_fixture, run_with_fixture
from pitcrew.metrics import RunSummary
from pitcrew.mocking import ANY, Capability, Member, MockEngine, any_call, match
from pitcrew.models import FaultKind, FaultRecord, TestResult, TestStatus, TestUnit
from pitcrew.runner import TestRunner

__all__ = [
    "ANY",
    "AssertionFailed",
    "AssertionFailure",
    "Capability",
    "FaultKind",
    "FaultRecord",
    "Fixture",
    "FixtureFault",
    "Member",
    "MockEngine",
    "RunSummary",
    "Suite",
    "TestResult",
    "TestRunner",
    "TestStatus",
    "TestUnit",
    "UnconfiguredInvocation",
    "UnitTimeout",
    "any_call",
    "assert_equal",
    "assert_false",
    "assert_not_equal",
    "assert_not_null",
    "assert_null",
    "assert_throws",
    "assert_true",
    "discover",
    "fail",
    "fixture",
    "match",
    "resource_fixture",
    "run_with_fixture",
    "timeout",
    "uses",
]
