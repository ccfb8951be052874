"""Fault taxonomy raised and captured by the engine."""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from pitcrew.assertions import AssertionFailure


class AssertionFailed(AssertionError):
    """An expected condition did not hold."""

    def __init__(self, failure: AssertionFailure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class UnconfiguredInvocation(AssertionFailed):
    """A strict mock received a call no expectation matched."""

    def __init__(
        self,
        failure: AssertionFailure,
        mock_name: str,
        member: str,
        args: tuple[Any, ...],
    ) -> None:
        super().__init__(failure)
        self.mock_name = mock_name
        self.member = member
        self.args = args


class FixtureFault(Exception):
    """A set-up or tear-down callable raised."""

    def __init__(self, phase: str, original: BaseException) -> None:
        super().__init__(f"{phase} failed: {type(original).__name__}: {original}")
        self.phase = phase
        self.original = original


class UnitTimeout(Exception):
    """A test unit (or its tear-down) ran past its deadline."""

    def __init__(self, timeout_s: float, what: str = "test unit") -> None:
        super().__init__(f"{what} exceeded {timeout_s:.3f}s")
        self.timeout_s = timeout_s
