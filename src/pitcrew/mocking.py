"""Mock engine: substitute implementations of capability interfaces.

A :class:`Mock` implements every member of a :class:`Capability`. Calls are
appended to the mock's invocation log and resolved against its expectations
in registration order; the first match wins. Unmatched calls raise
:class:`~pitcrew.errors.UnconfiguredInvocation` on strict mocks and return a
type-appropriate default on lenient ones.
"""

from __future__ import annotations

import inspect
import threading
import time
import typing
from collections.abc import Mapping, Sequence
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Protocol, Union

from pitcrew.assertions import fail_unless, make_failure, structural_diff
from pitcrew.errors import UnconfiguredInvocation

_ZERO_TYPES = (int, float, complex, str, bytes, bool, list, dict, set, frozenset, tuple)


def _default_for(annotation: Any) -> Any:
    origin = typing.get_origin(annotation) or annotation
    if origin in _ZERO_TYPES:
        return origin()
    return None


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Member:
    name: str
    params: tuple[str, ...] = ()
    returns: Any = None

    @property
    def arity(self) -> int:
        return len(self.params)

    def default(self) -> Any:
        return _default_for(self.returns)

    def bind(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> tuple[Any, ...]:
        """Map a call's arguments onto parameter positions."""
        if len(args) > self.arity:
            raise TypeError(
                f"{self.name}() takes {self.arity} positional argument(s) "
                f"but {len(args)} were given"
            )
        remaining = dict(kwargs)
        bound = list(args)
        for pname in self.params[: len(args)]:
            if pname in remaining:
                raise TypeError(f"{self.name}() got multiple values for argument '{pname}'")
        for pname in self.params[len(args) :]:
            if pname not in remaining:
                raise TypeError(f"{self.name}() missing required argument: '{pname}'")
            bound.append(remaining.pop(pname))
        if remaining:
            unexpected = ", ".join(sorted(remaining))
            raise TypeError(f"{self.name}() got unexpected keyword argument(s): {unexpected}")
        return tuple(bound)


MemberSpec = Union[int, Sequence[str], Member]


class Capability:
    """An abstract interface a mock can stand in for."""

    def __init__(self, name: str, members: Mapping[str, MemberSpec]) -> None:
        self.name = name
        self.members: dict[str, Member] = {}
        for member_name, spec in members.items():
            if not member_name or member_name.startswith("_"):
                raise ValueError(f"Invalid member name '{member_name}' on {name}")
            if isinstance(spec, Member):
                if spec.name != member_name:
                    raise ValueError(
                        f"Member '{spec.name}' registered under name '{member_name}'"
                    )
                member = spec
            elif isinstance(spec, int):
                if spec < 0:
                    raise ValueError(f"Arity of {name}.{member_name} must be >= 0")
                member = Member(member_name, tuple(f"arg{i}" for i in range(spec)))
            else:
                member = Member(member_name, tuple(spec))
            self.members[member_name] = member

    def member(self, name: str) -> Member:
        try:
            return self.members[name]
        except KeyError:
            raise AttributeError(f"{self.name} has no member '{name}'") from None

    def __repr__(self) -> str:
        return f"Capability({self.name!r}, members={sorted(self.members)})"

    @classmethod
    def from_interface(cls, interface: type, name: str | None = None) -> Capability:
        """Describe an ``abc.ABC`` (its abstract methods) or a ``typing.Protocol``.

        Concrete classes are rejected: a capability is an interface
        description, not a copy of an implementation.
        """
        is_protocol = bool(getattr(interface, "_is_protocol", False))
        if not is_protocol and not inspect.isabstract(interface):
            raise TypeError(
                f"{interface.__name__} is not an interface; "
                "use an abc.ABC with abstract methods or a typing.Protocol"
            )
        abstract = set(getattr(interface, "__abstractmethods__", ()))
        members: dict[str, Member] = {}
        for klass in reversed(interface.__mro__):
            if klass in (object, Protocol, typing.Generic):
                continue
            for attr, value in vars(klass).items():
                if attr.startswith("_"):
                    continue
                if not is_protocol and attr not in abstract:
                    continue
                if not inspect.isfunction(value):
                    if is_protocol:
                        continue
                    raise TypeError(
                        f"{interface.__name__}.{attr} is not a method; "
                        "only methods can be mocked"
                    )
                members[attr] = _member_from_function(attr, value)
        return cls(name or interface.__name__, members)


def _member_from_function(name: str, fn: Callable[..., Any]) -> Member:
    sig = inspect.signature(fn)
    params = list(sig.parameters.values())[1:]  # drop self
    names: list[str] = []
    for param in params:
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise TypeError(f"{name}() uses *args/**kwargs; its arity is undefined")
        names.append(param.name)
    try:
        returns = typing.get_type_hints(fn).get("return")
    except Exception:
        returns = sig.return_annotation
        if returns is inspect.Signature.empty or isinstance(returns, str):
            returns = None
    return Member(name, tuple(names), returns)


# ---------------------------------------------------------------------------
# Argument matching
# ---------------------------------------------------------------------------


class ArgMatcher(Protocol):
    def matches(self, value: Any) -> bool: ...


class _AnyArg:
    def matches(self, value: Any) -> bool:
        return True

    def __repr__(self) -> str:
        return "ANY"


ANY = _AnyArg()


@dataclass(frozen=True)
class Exact:
    value: Any

    def matches(self, value: Any) -> bool:
        return structural_diff(self.value, value) is None

    def __repr__(self) -> str:
        return repr(self.value)


def _as_matcher(value: Any) -> ArgMatcher:
    if isinstance(value, (_AnyArg, Exact)):
        return value
    return Exact(value)


@dataclass(frozen=True)
class MemberMatcher:
    """Member name plus one matcher per argument position.

    ``args=None`` stands for "any arguments" and is expanded to ``ANY`` for
    every position once the member's arity is known.
    """

    member: str
    args: tuple[ArgMatcher, ...] | None = None

    def matches(self, member: str, args: tuple[Any, ...]) -> bool:
        if member != self.member:
            return False
        if self.args is None:
            return True
        if len(args) != len(self.args):
            return False
        return all(m.matches(a) for m, a in zip(self.args, args))

    def resolve(self, member: Member) -> MemberMatcher:
        if self.args is None:
            return MemberMatcher(self.member, (ANY,) * member.arity)
        if len(self.args) != member.arity:
            raise ValueError(
                f"Matcher {self} has {len(self.args)} argument(s); "
                f"{member.name}() takes {member.arity}"
            )
        return self

    def __str__(self) -> str:
        if self.args is None:
            return f"{self.member}(...)"
        return f"{self.member}({', '.join(repr(a) for a in self.args)})"


def match(member: str, *args: Any) -> MemberMatcher:
    """Matcher for ``member`` called with exactly these argument matchers."""
    return MemberMatcher(member, tuple(_as_matcher(a) for a in args))


def any_call(member: str) -> MemberMatcher:
    """Matcher for ``member`` called with any arguments."""
    return MemberMatcher(member)


# ---------------------------------------------------------------------------
# Mocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Invocation:
    member: str
    args: tuple[Any, ...]
    timestamp: float
    sequence: int
    expectation: Expectation | None = field(default=None, compare=False, repr=False)


class Expectation:
    """A configured response rule for calls matching ``matcher``."""

    def __init__(self, mock: Mock, matcher: MemberMatcher, member: Member) -> None:
        self.mock = mock
        self.matcher = matcher
        self._member = member
        self._kind = "default"
        self._payload: Any = None

    def returns(self, value: Any) -> Expectation:
        self._kind, self._payload = "value", value
        return self

    def raises(self, fault: type[BaseException] | BaseException) -> Expectation:
        if not (
            isinstance(fault, BaseException)
            or (isinstance(fault, type) and issubclass(fault, BaseException))
        ):
            raise TypeError(f"raises() needs an exception class or instance, got {fault!r}")
        self._kind, self._payload = "fault", fault
        return self

    def answers(self, fn: Callable[..., Any]) -> Expectation:
        """Compute the return value from the call's arguments."""
        self._kind, self._payload = "answer", fn
        return self

    @property
    def invocation_count(self) -> int:
        """Recomputed from the owning mock's invocation log."""
        return sum(1 for inv in self.mock._snapshot() if inv.expectation is self)

    def respond(self, args: tuple[Any, ...]) -> Any:
        if self._kind == "value":
            return self._payload
        if self._kind == "fault":
            fault = self._payload
            raise fault() if isinstance(fault, type) else fault
        if self._kind == "answer":
            return self._payload(*args)
        return self._member.default()

    def __repr__(self) -> str:
        return f"Expectation({self.mock._name}.{self.matcher}, {self._kind})"


class Mock:
    """Stands in for a capability. Never forwards to a real implementation."""

    def __init__(
        self,
        capability: Capability,
        *,
        name: str | None = None,
        strict: bool = True,
        synchronized: bool = False,
    ) -> None:
        self._capability = capability
        self._name = name or capability.name
        self._strict = strict
        self._expectations: list[Expectation] = []
        self._log: list[Invocation] = []
        self._lock: ContextManager[Any] = threading.Lock() if synchronized else nullcontext()

    def __getattr__(self, attr: str) -> Callable[..., Any]:
        if attr.startswith("_"):
            raise AttributeError(attr)
        member = self._capability.member(attr)

        def call(*args: Any, **kwargs: Any) -> Any:
            return self._invoke(member, args, kwargs)

        call.__name__ = member.name
        call.__qualname__ = f"{self._name}.{member.name}"
        return call

    def __repr__(self) -> str:
        mode = "strict" if self._strict else "lenient"
        return f"<Mock {self._name} ({mode})>"

    def _register(self, expectation: Expectation) -> None:
        with self._lock:
            self._expectations.append(expectation)

    def _snapshot(self) -> tuple[Invocation, ...]:
        with self._lock:
            return tuple(self._log)

    def _invoke(self, member: Member, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        bound = member.bind(args, kwargs)
        with self._lock:
            expectation = next(
                (e for e in self._expectations if e.matcher.matches(member.name, bound)),
                None,
            )
            self._log.append(
                Invocation(
                    member=member.name,
                    args=bound,
                    timestamp=time.time(),
                    sequence=len(self._log),
                    expectation=expectation,
                )
            )
        if expectation is not None:
            return expectation.respond(bound)
        if self._strict:
            rendered = ", ".join(repr(a) for a in bound)
            raise UnconfiguredInvocation(
                make_failure(
                    f"unconfigured invocation {self._name}.{member.name}({rendered}) "
                    "on strict mock",
                    actual=bound,
                ),
                mock_name=self._name,
                member=member.name,
                args=bound,
            )
        return member.default()


class MockEngine:
    """Creates mocks, registers expectations and verifies call counts."""

    def __init__(self, *, strict: bool = True, synchronized: bool = False) -> None:
        self.strict = strict
        self.synchronized = synchronized

    def create_mock(
        self,
        capability: Capability | type,
        *,
        name: str | None = None,
        strict: bool | None = None,
        synchronized: bool | None = None,
    ) -> Mock:
        if isinstance(capability, type):
            capability = Capability.from_interface(capability)
        return Mock(
            capability,
            name=name,
            strict=self.strict if strict is None else strict,
            synchronized=self.synchronized if synchronized is None else synchronized,
        )

    def setup(self, mock: Mock, matcher: MemberMatcher) -> Expectation:
        member = mock._capability.member(matcher.member)
        expectation = Expectation(mock, matcher.resolve(member), member)
        mock._register(expectation)
        return expectation

    def verify(self, mock: Mock, matcher: MemberMatcher, expected_count: int) -> None:
        """Assert the log holds exactly ``expected_count`` calls matching ``matcher``."""
        if expected_count < 0:
            raise ValueError("expected_count must be >= 0")
        resolved = matcher.resolve(mock._capability.member(matcher.member))
        actual = sum(
            1 for inv in mock._snapshot() if resolved.matches(inv.member, inv.args)
        )
        fail_unless(
            actual == expected_count,
            f"expected {mock._name}.{resolved} to be invoked "
            f"{expected_count} time(s), got {actual}",
            expected=expected_count,
            actual=actual,
        )

    def invocations(self, mock: Mock) -> tuple[Invocation, ...]:
        return mock._snapshot()


default_engine = MockEngine()


def configure_default_engine(*, strict: bool, synchronized: bool) -> MockEngine:
    """Set the mode used by the module-level helpers for mocks created afterwards."""
    default_engine.strict = strict
    default_engine.synchronized = synchronized
    return default_engine


def create_mock(capability: Capability | type, **kwargs: Any) -> Mock:
    return default_engine.create_mock(capability, **kwargs)


def setup(mock: Mock, matcher: MemberMatcher) -> Expectation:
    return default_engine.setup(mock, matcher)


def verify(mock: Mock, matcher: MemberMatcher, expected_count: int) -> None:
    default_engine.verify(mock, matcher, expected_count)


def invocations(mock: Mock) -> tuple[Invocation, ...]:
    return default_engine.invocations(mock)
