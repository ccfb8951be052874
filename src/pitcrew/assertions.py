"""Assertion engine: comparison predicates that raise structured failures.

Every assertion call, passing or failing, is counted against the active
:class:`AssertionContext` so the runner can flag bodies that asserted
nothing.
"""

from __future__ import annotations

import dataclasses
import inspect
import numbers
import os
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable, Iterator, NoReturn

import numpy as np
from pydantic import BaseModel

from pitcrew.errors import AssertionFailed

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__)) + os.sep


@dataclass(frozen=True)
class SourceLocation:
    filename: str
    lineno: int
    function: str

    def __str__(self) -> str:
        return f"{self.filename}:{self.lineno} in {self.function}"


@dataclass(frozen=True)
class AssertionFailure:
    """A failed assertion.

    Attributes:
        message: Human-readable description, including the first differing
            path for structural comparisons.
        expected: The value the assertion expected (``None`` when the
            assertion has no natural expected value).
        actual: The value that was observed.
        location: The first stack frame outside pitcrew, if any.
    """

    message: str
    expected: Any = None
    actual: Any = None
    location: SourceLocation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "expected": repr(self.expected),
            "actual": repr(self.actual),
            "location": str(self.location) if self.location else None,
        }


class AssertionContext:
    """Counts the assertions executed while a test body runs."""

    def __init__(self) -> None:
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def record(self) -> None:
        with self._lock:
            self._count += 1


_ACTIVE: ContextVar[AssertionContext | None] = ContextVar(
    "pitcrew_assertion_context", default=None
)


@contextmanager
def assertion_context(
    ctx: AssertionContext | None = None,
) -> Iterator[AssertionContext]:
    """Activate a counting context (a fresh one by default) for the block."""
    ctx = ctx if ctx is not None else AssertionContext()
    token = _ACTIVE.set(ctx)
    try:
        yield ctx
    finally:
        _ACTIVE.reset(token)


def _record() -> None:
    ctx = _ACTIVE.get()
    if ctx is not None:
        ctx.record()


def _caller_location() -> SourceLocation | None:
    frame = inspect.currentframe()
    try:
        while frame is not None:
            filename = os.path.abspath(frame.f_code.co_filename)
            if not filename.startswith(_PACKAGE_DIR):
                return SourceLocation(
                    filename=frame.f_code.co_filename,
                    lineno=frame.f_lineno,
                    function=frame.f_code.co_name,
                )
            frame = frame.f_back
    finally:
        del frame
    return None


def make_failure(
    message: str, *, expected: Any = None, actual: Any = None
) -> AssertionFailure:
    """Build a failure located at the calling user code, without counting it."""
    return AssertionFailure(
        message=message,
        expected=expected,
        actual=actual,
        location=_caller_location(),
    )


def fail_unless(
    condition: bool,
    message: str,
    *,
    expected: Any = None,
    actual: Any = None,
) -> None:
    """Count one assertion and raise :class:`AssertionFailed` if ``condition`` is false."""
    _record()
    if not condition:
        raise AssertionFailed(make_failure(message, expected=expected, actual=actual))


def fail(message: str, *, expected: Any = None, actual: Any = None) -> NoReturn:
    fail_unless(False, message, expected=expected, actual=actual)
    raise AssertionError("unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# Structural comparison
# ---------------------------------------------------------------------------


def _kind(value: Any) -> str:
    if value is None:
        return "none"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, numbers.Number):
        return "number"
    if isinstance(value, str):
        return "str"
    if isinstance(value, (bytes, bytearray)):
        return "bytes"
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, (set, frozenset)):
        return "set"
    if isinstance(value, list):
        return "list"
    if isinstance(value, tuple):
        return "tuple"
    if isinstance(value, np.ndarray):
        return "array"
    return "object"


def _values_equal(expected: Any, actual: Any) -> bool:
    try:
        return bool(expected == actual)
    except (TypeError, ValueError):
        return False


def _fields(value: Any) -> dict[str, Any] | None:
    """Field mapping for composite objects, or None to fall back to ``==``."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, BaseModel):
        return {name: getattr(value, name) for name in type(value).model_fields}
    if type(value).__eq__ is not object.__eq__:
        return None
    if hasattr(value, "__dict__"):
        return dict(vars(value))
    return None


def _describe(value: Any) -> str:
    return f"{type(value).__name__} {value!r}"


def _counterpart(item: Any, pool: Any) -> Any:
    """The member of ``pool`` that hashes equal to ``item``."""
    for candidate in pool:
        if candidate == item:
            return candidate
    return item


def structural_diff(
    expected: Any,
    actual: Any,
    path: str = "value",
    _seen: set[tuple[int, int]] | None = None,
) -> str | None:
    """Describe the first difference between two values, or return None if equal.

    Composites are compared field by field; primitives by value. Values of
    incompatible kinds (``1`` vs ``"1"``, ``True`` vs ``1``, ``[1]`` vs
    ``(1,)``) are always a difference, never coerced. Cyclic object graphs
    are compared once per pair of nodes.
    """
    expected_kind, actual_kind = _kind(expected), _kind(actual)
    if expected_kind != actual_kind:
        return f"{path}: expected {_describe(expected)}, got {_describe(actual)}"

    if expected_kind in ("mapping", "list", "tuple", "object"):
        _seen = set() if _seen is None else _seen
        pair = (id(expected), id(actual))
        if pair in _seen:
            return None
        _seen.add(pair)

    if expected_kind == "mapping":
        missing = [k for k in expected if k not in actual]
        if missing:
            return f"{path}: missing key(s) {missing!r}"
        extra = [k for k in actual if k not in expected]
        if extra:
            return f"{path}: unexpected key(s) {extra!r}"
        for key in expected:
            actual_key = _counterpart(key, actual.keys())
            diff = structural_diff(key, actual_key, f"{path} key {key!r}", _seen)
            if diff:
                return diff
            diff = structural_diff(expected[key], actual[key], f"{path}[{key!r}]", _seen)
            if diff:
                return diff
        return None

    if expected_kind in ("list", "tuple"):
        for index, (e, a) in enumerate(zip(expected, actual)):
            diff = structural_diff(e, a, f"{path}[{index}]", _seen)
            if diff:
                return diff
        if len(expected) != len(actual):
            return f"{path}: expected length {len(expected)}, got {len(actual)}"
        return None

    if expected_kind == "set":
        if expected != actual:
            missing = sorted(map(repr, expected - actual))
            extra = sorted(map(repr, actual - expected))
            return f"{path}: set differs (missing {missing}, unexpected {extra})"
        for member in expected:
            diff = structural_diff(
                member, _counterpart(member, actual), f"{path} member {member!r}", _seen
            )
            if diff:
                return diff
        return None

    if expected_kind == "array":
        if expected.shape != actual.shape:
            return f"{path}: expected shape {expected.shape}, got {actual.shape}"
        if np.array_equal(expected, actual):
            return None
        return f"{path}: arrays differ\nexpected: {expected!r}\nactual:   {actual!r}"

    if expected_kind == "object":
        if type(expected) is not type(actual):
            return f"{path}: expected {_describe(expected)}, got {_describe(actual)}"
        expected_fields = _fields(expected)
        if expected_fields is None:
            if _values_equal(expected, actual):
                return None
            return f"{path}: expected {expected!r}, got {actual!r}"
        actual_fields = _fields(actual) or {}
        for name, value in expected_fields.items():
            if name not in actual_fields:
                return f"{path}.{name}: missing on actual value"
            diff = structural_diff(value, actual_fields[name], f"{path}.{name}", _seen)
            if diff:
                return diff
        extra = [name for name in actual_fields if name not in expected_fields]
        if extra:
            return f"{path}: unexpected field(s) {extra!r}"
        return None

    if not _values_equal(expected, actual):
        return f"{path}: expected {expected!r}, got {actual!r}"
    return None


def _with_message(message: str | None, detail: str) -> str:
    return f"{message}: {detail}" if message else detail


# ---------------------------------------------------------------------------
# Public assertions
# ---------------------------------------------------------------------------


def assert_equal(expected: Any, actual: Any, message: str | None = None) -> None:
    diff = structural_diff(expected, actual)
    fail_unless(
        diff is None,
        _with_message(message, diff or ""),
        expected=expected,
        actual=actual,
    )


def assert_not_equal(unexpected: Any, actual: Any, message: str | None = None) -> None:
    fail_unless(
        structural_diff(unexpected, actual) is not None,
        _with_message(message, f"expected a value different from {unexpected!r}"),
        expected=unexpected,
        actual=actual,
    )


def assert_true(predicate: Any, message: str | None = None) -> None:
    fail_unless(
        bool(predicate),
        _with_message(message, f"expected a true predicate, got {predicate!r}"),
        expected=True,
        actual=predicate,
    )


def assert_false(predicate: Any, message: str | None = None) -> None:
    fail_unless(
        not predicate,
        _with_message(message, f"expected a false predicate, got {predicate!r}"),
        expected=False,
        actual=predicate,
    )


def assert_null(value: Any, message: str | None = None) -> None:
    fail_unless(
        value is None,
        _with_message(message, f"expected None, got {_describe(value)}"),
        expected=None,
        actual=value,
    )


def assert_not_null(value: Any, message: str | None = None) -> None:
    fail_unless(
        value is not None,
        _with_message(message, "expected a value, got None"),
        actual=value,
    )


def assert_throws(
    expected_kind: type[BaseException],
    fn: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> BaseException:
    """Call ``fn`` and require it to raise exactly ``expected_kind``.

    Subclasses do not count as a match. Returns the raised exception so the
    caller can inspect it.
    """
    if not (isinstance(expected_kind, type) and issubclass(expected_kind, BaseException)):
        raise TypeError(f"expected_kind must be an exception class, got {expected_kind!r}")

    expected_name = expected_kind.__name__
    try:
        fn(*args, **kwargs)
    except KeyboardInterrupt:
        raise
    except BaseException as exc:
        if type(exc) is expected_kind:
            _record()
            return exc
        _record()
        raise AssertionFailed(
            make_failure(
                f"expected fault {expected_name}, got fault {type(exc).__name__}: {exc}",
                expected=expected_kind,
                actual=exc,
            )
        ) from exc
    fail(f"expected fault {expected_name}, no fault raised", expected=expected_kind)
