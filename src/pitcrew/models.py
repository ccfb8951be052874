"""Core dataclasses shared by the runner, fixtures and reporting."""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TYPE_CHECKING

from pitcrew.errors import FixtureFault, UnconfiguredInvocation, UnitTimeout

if TYPE_CHECKING:
    from pitcrew.assertions import AssertionFailure
    from pitcrew.fixtures import Fixture


class TestStatus(str, Enum):
    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    INCONCLUSIVE = "inconclusive"


class FaultKind(str, Enum):
    UNCONFIGURED_INVOCATION = "unconfigured_invocation"
    FIXTURE = "fixture"
    TIMEOUT = "timeout"
    UNCAUGHT = "uncaught"


@dataclass(frozen=True)
class FaultRecord:
    """A captured fault, detached from the live exception object."""

    kind: FaultKind
    phase: str
    type_name: str
    message: str
    traceback: str = ""

    @classmethod
    def from_exception(cls, exc: BaseException, phase: str) -> "FaultRecord":
        if isinstance(exc, FixtureFault):
            kind = FaultKind.FIXTURE
            phase = exc.phase
            source = exc.original
        elif isinstance(exc, UnitTimeout):
            kind = FaultKind.TIMEOUT
            source = exc
        else:
            kind = FaultKind.UNCAUGHT
            source = exc
        if isinstance(source, UnconfiguredInvocation):
            # a strict-mock miss outside the body, e.g. in set_up
            kind = FaultKind.UNCONFIGURED_INVOCATION
        tb = "".join(
            traceback.format_exception(type(source), source, source.__traceback__)
        )
        return cls(
            kind=kind,
            phase=phase,
            type_name=type(source).__name__,
            message=str(exc),
            traceback=tb,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "phase": self.phase,
            "type": self.type_name,
            "message": self.message,
        }


@dataclass(eq=False)
class TestUnit:
    """One discoverable, independently executable test case.

    ``group`` and ``name`` form the identity and cannot be reassigned once
    set. ``status`` is owned by the runner.
    """

    __test__ = False
    _IDENTITY = frozenset({"group", "name"})

    group: str
    name: str
    body: Callable[..., Any]
    set_up: Callable[..., Any] | None = None
    tear_down: Callable[..., Any] | None = None
    shared_fixture: Fixture | None = None
    timeout_s: float | None = None
    status: TestStatus = field(default=TestStatus.PENDING)

    def __post_init__(self) -> None:
        if not self.group or not self.name:
            raise ValueError("test units need both a group and a name")
        if "." in self.name:
            raise ValueError(f"Test name '{self.name}' must not contain a dot")
        if not callable(self.body):
            raise TypeError(f"Test body for '{self.qualified_name}' is not callable")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValueError(f"Timeout for '{self.qualified_name}' must be positive")

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self._IDENTITY and key in self.__dict__:
            raise AttributeError(f"TestUnit.{key} is immutable")
        super().__setattr__(key, value)

    @property
    def qualified_name(self) -> str:
        return f"{self.group}.{self.name}"

    def __repr__(self) -> str:
        return f"TestUnit({self.qualified_name!r}, status={self.status.value})"


@dataclass(frozen=True)
class TestResult:
    """Outcome of executing a single unit; never mutated once built."""

    __test__ = False

    unit: TestUnit
    status: TestStatus
    duration_s: float
    failures: tuple[AssertionFailure, ...] = ()
    faults: tuple[FaultRecord, ...] = ()

    @property
    def qualified_name(self) -> str:
        return self.unit.qualified_name

    @property
    def passed(self) -> bool:
        return self.status == TestStatus.PASSED

    @property
    def fault(self) -> FaultRecord | None:
        return self.faults[0] if self.faults else None

    @property
    def timed_out(self) -> bool:
        return any(f.kind == FaultKind.TIMEOUT for f in self.faults)

    def messages(self) -> list[str]:
        """Failure messages followed by fault messages, in recorded order."""
        return [f.message for f in self.failures] + [
            f"{f.phase}: {f.type_name}: {f.message}" for f in self.faults
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.qualified_name,
            "status": self.status.value,
            "duration_s": round(self.duration_s, 6),
            "failures": [f.to_dict() for f in self.failures],
            "faults": [f.to_dict() for f in self.faults],
        }


@dataclass(frozen=True)
class GroupFault:
    """A shared fixture fault that no single unit's result can own."""

    group: str
    fault: FaultRecord

    def to_dict(self) -> dict[str, Any]:
        return {"group": self.group, **self.fault.to_dict()}
