"""Fixture lifecycle: paired set-up / tear-down with guaranteed release."""

from __future__ import annotations

import contextvars
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol

from pitcrew.errors import FixtureFault, UnitTimeout

DEFAULT_GRACE_S = 5.0

_logger = logging.getLogger("pitcrew.fixtures")


class Resource(Protocol):
    """External collaborator such as an in-memory database."""

    def open(self) -> Any: ...

    def close(self, handle: Any) -> None: ...


def accepts_handle(fn: Callable[..., Any]) -> bool:
    """True if ``fn`` can take a positional argument."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    return any(
        p.kind
        in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.VAR_POSITIONAL,
        )
        for p in sig.parameters.values()
    )


def call_with_handle(fn: Callable[..., Any], handle: Any) -> Any:
    if accepts_handle(fn):
        return fn(handle)
    return fn()


@dataclass(frozen=True)
class Fixture:
    """A set-up / tear-down pair bound to one or more test units.

    ``shared=True`` runs the pair once per group instead of once per unit.
    Generator fixtures (see :func:`fixture`) keep per-activation state, so
    always go through :meth:`activate` rather than reading ``set_up`` and
    ``tear_down`` directly.
    """

    set_up: Callable[..., Any] | None = None
    tear_down: Callable[..., Any] | None = None
    shared: bool = False
    name: str | None = None
    generator: Callable[..., Iterator[Any]] | None = None

    @classmethod
    def from_generator(
        cls,
        fn: Callable[..., Iterator[Any]],
        *,
        shared: bool = False,
        name: str | None = None,
    ) -> Fixture:
        return cls(shared=shared, name=name or fn.__name__, generator=fn)

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        target = self.set_up or self.tear_down
        return getattr(target, "__name__", "fixture")

    def activate(
        self,
    ) -> tuple[Callable[..., Any] | None, Callable[..., Any] | None]:
        """Return a fresh (set_up, tear_down) pair for one activation."""
        if self.generator is None:
            return self.set_up, self.tear_down

        generator_fn = self.generator
        takes_handle = accepts_handle(generator_fn)
        running: list[Iterator[Any]] = []

        def set_up(handle: Any = None) -> Any:
            gen = generator_fn(handle) if takes_handle else generator_fn()
            running.append(gen)
            try:
                return next(gen)
            except StopIteration:
                raise ValueError(f"fixture '{self.label}' did not yield") from None

        def tear_down() -> None:
            if not running:
                return
            gen = running.pop()
            try:
                next(gen)
            except StopIteration:
                return
            raise ValueError(f"fixture '{self.label}' yielded more than once")

        return set_up, tear_down


def fixture(
    fn: Callable[..., Any] | None = None, *, shared: bool = False
) -> Any:
    """Decorator turning a single-``yield`` generator into a :class:`Fixture`.

    Code before the ``yield`` is set-up, the yielded value is the handle, code
    after it is tear-down. A plain function becomes a set-up-only fixture.
    """

    def wrap(target: Callable[..., Any]) -> Fixture:
        if inspect.isgeneratorfunction(target):
            return Fixture.from_generator(target, shared=shared)
        return Fixture(set_up=target, shared=shared, name=target.__name__)

    if fn is None:
        return wrap
    return wrap(fn)


def resource_fixture(
    resource: Resource, *, shared: bool = False, name: str | None = None
) -> Fixture:
    """Open ``resource`` on set-up and close the handle on tear-down."""
    return Fixture(
        set_up=resource.open,
        tear_down=resource.close,
        shared=shared,
        name=name or type(resource).__name__,
    )


@dataclass
class FixtureOutcome:
    handle: Any = None
    set_up_fault: FixtureFault | None = None
    body_fault: BaseException | None = None
    tear_down_fault: FixtureFault | None = None
    body_ran: bool = False
    timed_out: bool = False

    @property
    def faults(self) -> list[BaseException]:
        """Primary fault first (set-up or body), tear-down fault appended."""
        ordered: list[BaseException] = []
        if self.set_up_fault is not None:
            ordered.append(self.set_up_fault)
        if self.body_fault is not None:
            ordered.append(self.body_fault)
        if self.tear_down_fault is not None:
            ordered.append(self.tear_down_fault)
        return ordered

    @property
    def ok(self) -> bool:
        return not self.faults


def _enter(
    set_up: Callable[..., Any] | None,
    body: Callable[..., Any],
    handle: Any,
    outcome: FixtureOutcome,
) -> None:
    if set_up is not None:
        try:
            outcome.handle = call_with_handle(set_up, handle)
        except KeyboardInterrupt:
            raise
        except BaseException as exc:
            outcome.set_up_fault = FixtureFault("set_up", exc)
            return
    else:
        outcome.handle = handle

    outcome.body_ran = True
    try:
        call_with_handle(body, outcome.handle)
    except KeyboardInterrupt:
        raise
    except BaseException as exc:
        outcome.body_fault = exc


def _leave(tear_down: Callable[..., Any], handle: Any) -> FixtureFault | None:
    try:
        call_with_handle(tear_down, handle)
    except KeyboardInterrupt:
        raise
    except BaseException as exc:
        return FixtureFault("tear_down", exc)
    return None


def _run_bounded(target: Callable[[], None], timeout_s: float, name: str) -> bool:
    """Run ``target`` on a daemon thread; True if it finished within ``timeout_s``."""
    ctx = contextvars.copy_context()
    worker = threading.Thread(target=ctx.run, args=(target,), name=name, daemon=True)
    worker.start()
    worker.join(timeout_s)
    return not worker.is_alive()


def run_with_fixture(
    set_up: Callable[..., Any] | None,
    tear_down: Callable[..., Any] | None,
    body: Callable[..., Any],
    *,
    handle: Any = None,
    timeout_s: float | None = None,
    grace_s: float = DEFAULT_GRACE_S,
    logger: logging.Logger | None = None,
) -> FixtureOutcome:
    """Run ``body`` between ``set_up`` and ``tear_down``.

    ``tear_down`` runs exactly once on every exit path, including a set-up
    fault (with a ``None`` handle) and a timeout (best effort, bounded by
    ``grace_s``). Faults are collected on the returned outcome, never raised.
    """
    log = logger or _logger

    if timeout_s is None:
        outcome = FixtureOutcome()
        _enter(set_up, body, handle, outcome)
    else:
        attempt = FixtureOutcome()

        def _bounded_enter() -> None:
            try:
                _enter(set_up, body, handle, attempt)
            except KeyboardInterrupt as exc:
                # nothing above the worker thread would see it
                if attempt.body_ran:
                    attempt.body_fault = exc
                else:
                    attempt.set_up_fault = FixtureFault("set_up", exc)

        finished = _run_bounded(
            _bounded_enter,
            timeout_s,
            name="pitcrew-body",
        )
        if finished:
            outcome = attempt
        else:
            log.warning(f"Body exceeded {timeout_s:.3f}s, abandoning it")
            outcome = FixtureOutcome(
                handle=attempt.handle,
                body_fault=UnitTimeout(timeout_s),
                body_ran=attempt.body_ran,
                timed_out=True,
            )

    if tear_down is None:
        return outcome

    if not outcome.timed_out:
        outcome.tear_down_fault = _leave(tear_down, outcome.handle)
        return outcome

    fault_box: list[FixtureFault | None] = [None]

    def _bounded_leave() -> None:
        try:
            fault_box[0] = _leave(tear_down, outcome.handle)
        except KeyboardInterrupt as exc:
            fault_box[0] = FixtureFault("tear_down", exc)

    if _run_bounded(_bounded_leave, grace_s, name="pitcrew-tear-down"):
        outcome.tear_down_fault = fault_box[0]
    else:
        log.warning(f"Tear-down did not finish within the {grace_s:.3f}s grace period")
        outcome.tear_down_fault = FixtureFault(
            "tear_down", UnitTimeout(grace_s, what="tear_down")
        )
    return outcome
