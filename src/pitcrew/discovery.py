"""Discovery: turn suites, classes and modules into test units."""

from __future__ import annotations

import importlib
import inspect
import types
from typing import Any, Callable, Iterable, TypeVar

from pitcrew.fixtures import Fixture
from pitcrew.models import TestUnit

F = TypeVar("F", bound=Callable[..., Any])

_FIXTURE_ATTR = "__pitcrew_fixture__"
_TIMEOUT_ATTR = "__pitcrew_timeout__"


def uses(fixture: Fixture) -> Callable[[F], F]:
    """Attach a per-unit fixture to a test function."""
    if fixture.shared:
        raise ValueError("shared fixtures belong to a group, not to a single test")

    def decorate(fn: F) -> F:
        setattr(fn, _FIXTURE_ATTR, fixture)
        return fn

    return decorate


def timeout(seconds: float) -> Callable[[F], F]:
    """Override the runner's per-test timeout for one test."""
    if seconds <= 0:
        raise ValueError("timeout must be positive")

    def decorate(fn: F) -> F:
        setattr(fn, _TIMEOUT_ATTR, float(seconds))
        return fn

    return decorate


def _check_shared(fixture: Any, owner: str) -> Fixture | None:
    if fixture is None:
        return None
    if not isinstance(fixture, Fixture):
        raise TypeError(f"{owner}: shared_fixture must be a Fixture, got {fixture!r}")
    if not fixture.shared:
        raise ValueError(f"{owner}: shared_fixture must be created with shared=True")
    return fixture


def _function_unit(
    fn: Callable[..., Any],
    group: str,
    name: str | None = None,
    fixture: Fixture | None = None,
    shared_fixture: Fixture | None = None,
    timeout_s: float | None = None,
) -> TestUnit:
    fixture = getattr(fn, _FIXTURE_ATTR, fixture)
    set_up, tear_down = fixture.activate() if fixture else (None, None)
    return TestUnit(
        group=group,
        name=name or fn.__name__,
        body=fn,
        set_up=set_up,
        tear_down=tear_down,
        shared_fixture=shared_fixture,
        timeout_s=getattr(fn, _TIMEOUT_ATTR, timeout_s),
    )


class Suite:
    """Explicitly registered group of test functions.

    Example::

        accounts = Suite("Accounts", fixture=ledger_fixture)

        @accounts.case
        def test_deposit(ledger):
            ...
    """

    def __init__(
        self,
        name: str,
        *,
        fixture: Fixture | None = None,
        shared_fixture: Fixture | None = None,
        timeout_s: float | None = None,
    ) -> None:
        if fixture is not None and fixture.shared:
            raise ValueError(f"Suite '{name}': pass shared fixtures as shared_fixture")
        self.name = name
        self.fixture = fixture
        self.shared_fixture = _check_shared(shared_fixture, f"Suite '{name}'")
        self.timeout_s = timeout_s
        self._cases: list[tuple[str, Callable[..., Any]]] = []

    def case(self, fn: F | None = None, *, name: str | None = None) -> Any:
        def register(target: F) -> F:
            self._cases.append((name or target.__name__, target))
            return target

        if fn is None:
            return register
        return register(fn)

    def units(self) -> list[TestUnit]:
        return [
            _function_unit(
                fn,
                group=self.name,
                name=case_name,
                fixture=self.fixture,
                shared_fixture=self.shared_fixture,
                timeout_s=self.timeout_s,
            )
            for case_name, fn in self._cases
        ]

    def __repr__(self) -> str:
        return f"Suite({self.name!r}, cases={len(self._cases)})"


def _units_from_class(cls: type) -> list[TestUnit]:
    shared = _check_shared(getattr(cls, "shared_fixture", None), cls.__name__)
    class_timeout = getattr(cls, "timeout_s", None)
    units: list[TestUnit] = []
    for attr, value in vars(cls).items():
        if not (attr.startswith("test") and inspect.isfunction(value)):
            continue
        # fresh instance per unit: no state leaks between cases
        instance = cls()
        set_up = getattr(instance, "set_up", None)
        tear_down = getattr(instance, "tear_down", None)
        decorated = getattr(value, _FIXTURE_ATTR, None)
        if decorated is not None:
            if set_up is not None or tear_down is not None:
                raise ValueError(
                    f"{cls.__name__}.{attr}: @uses cannot be combined with set_up/tear_down"
                )
            set_up, tear_down = decorated.activate()
        units.append(
            TestUnit(
                group=cls.__name__,
                name=attr,
                body=getattr(instance, attr),
                set_up=set_up,
                tear_down=tear_down,
                shared_fixture=shared,
                timeout_s=getattr(value, _TIMEOUT_ATTR, class_timeout),
            )
        )
    return units


def _units_from_module(module: types.ModuleType) -> list[TestUnit]:
    group = module.__name__
    shared = _check_shared(getattr(module, "shared_fixture", None), group)
    units: list[TestUnit] = []
    for attr, value in vars(module).items():
        if isinstance(value, Suite):
            units.extend(value.units())
        elif (
            inspect.isclass(value)
            and attr.startswith("Test")
            and value.__module__ == module.__name__
        ):
            units.extend(_units_from_class(value))
        elif (
            inspect.isfunction(value)
            and attr.startswith("test_")
            and value.__module__ == module.__name__
        ):
            units.append(_function_unit(value, group=group, shared_fixture=shared))
    return units


def ensure_unique(units: Iterable[TestUnit]) -> None:
    seen: set[str] = set()
    duplicates: list[str] = []
    for unit in units:
        if unit.qualified_name in seen:
            duplicates.append(unit.qualified_name)
        seen.add(unit.qualified_name)
    if duplicates:
        raise ValueError(f"Duplicate test name(s): {', '.join(duplicates)}")


def discover(sources: Iterable[Any]) -> list[TestUnit]:
    """Resolve sources into test units, in the order they are given.

    A source may be a :class:`TestUnit`, a :class:`Suite`, a class, a module
    or a plain test function.
    """
    units: list[TestUnit] = []
    for source in sources:
        if isinstance(source, TestUnit):
            units.append(source)
        elif isinstance(source, Suite):
            units.extend(source.units())
        elif isinstance(source, types.ModuleType):
            units.extend(_units_from_module(source))
        elif inspect.isclass(source):
            units.extend(_units_from_class(source))
        elif callable(source):
            units.append(_function_unit(source, group=source.__module__))
        else:
            raise TypeError(f"Cannot discover tests from {source!r}")
    ensure_unique(units)
    return units


def load_modules(names: Iterable[str]) -> list[types.ModuleType]:
    """Import dotted module names, skipping blanks."""
    modules = []
    for name in names:
        name = name.strip()
        if not name:
            continue
        modules.append(importlib.import_module(name))
    return modules
