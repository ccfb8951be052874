from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence, TYPE_CHECKING

from pitcrew.assertions import AssertionContext, assertion_context
from pitcrew.discovery import discover, ensure_unique
from pitcrew.errors import AssertionFailed, FixtureFault, UnitTimeout
from pitcrew.fixtures import DEFAULT_GRACE_S, Fixture, call_with_handle, run_with_fixture
from pitcrew.metrics import RunSummary
from pitcrew.models import (
    FaultKind,
    FaultRecord,
    GroupFault,
    TestResult,
    TestStatus,
    TestUnit,
)
from pitcrew.verbose import setup_logger

if TYPE_CHECKING:
    from pitcrew.config import RunConfig

__all__ = ["TestRunner", "discover"]

ResultCallback = Callable[[TestResult, int, int], None]


def _counted(body: Callable[..., Any], ctx: AssertionContext) -> Callable[[Any], Any]:
    """Activate ``ctx`` around ``body`` only; fixture assertions are not counted."""

    def run_body(handle: Any = None) -> Any:
        with assertion_context(ctx):
            return call_with_handle(body, handle)

    return run_body


@dataclass
class _SharedGroup:
    fixture: Fixture
    lock: threading.Lock
    remaining: int = 0
    started: bool = False
    handle: Any = None
    set_up_fault: FixtureFault | None = None
    tear_down: Callable[..., Any] | None = None


class _GroupFixtures:
    """Runs shared fixtures once per group: set-up before the first unit, tear-down after the last."""

    def __init__(self, units: Sequence[TestUnit], logger: logging.Logger) -> None:
        self._logger = logger
        self._groups: dict[str, _SharedGroup] = {}
        self._faults: list[GroupFault] = []
        self._faults_lock = threading.Lock()
        for unit in units:
            if unit.shared_fixture is None:
                continue
            group = self._groups.get(unit.group)
            if group is None:
                group = _SharedGroup(fixture=unit.shared_fixture, lock=threading.Lock())
                self._groups[unit.group] = group
            elif group.fixture is not unit.shared_fixture:
                raise ValueError(f"Group '{unit.group}' has conflicting shared fixtures")
            group.remaining += 1

    @property
    def faults(self) -> list[GroupFault]:
        with self._faults_lock:
            return list(self._faults)

    def acquire(self, unit: TestUnit) -> tuple[Any, FixtureFault | None]:
        group = self._groups.get(unit.group) if unit.shared_fixture else None
        if group is None:
            return None, None
        with group.lock:
            if not group.started:
                group.started = True
                set_up, group.tear_down = group.fixture.activate()
                if set_up is not None:
                    self._logger.debug(f"Shared set-up for group '{unit.group}'")
                    try:
                        group.handle = call_with_handle(set_up, None)
                    except KeyboardInterrupt:
                        raise
                    except BaseException as exc:
                        group.set_up_fault = FixtureFault("set_up", exc)
                        self._logger.warning(
                            f"Shared set-up for group '{unit.group}' failed: {exc}"
                        )
            return group.handle, group.set_up_fault

    def release(self, unit: TestUnit) -> None:
        group = self._groups.get(unit.group) if unit.shared_fixture else None
        if group is None:
            return
        with group.lock:
            group.remaining -= 1
            if group.remaining > 0 or not group.started or group.tear_down is None:
                return
            self._logger.debug(f"Shared tear-down for group '{unit.group}'")
            try:
                call_with_handle(group.tear_down, group.handle)
            except KeyboardInterrupt:
                raise
            except BaseException as exc:
                fault = FixtureFault("tear_down", exc)
                self._logger.warning(f"Shared tear-down for group '{unit.group}' failed: {exc}")
                with self._faults_lock:
                    self._faults.append(
                        GroupFault(unit.group, FaultRecord.from_exception(fault, "tear_down"))
                    )


class TestRunner:
    """Executes test units and returns one result per unit, in discovery order."""

    __test__ = False

    def __init__(
        self,
        *,
        concurrency_limit: int = 1,
        timeout_s: float | None = None,
        teardown_grace_s: float = DEFAULT_GRACE_S,
        deadline_s: float | None = None,
        verbose: bool = False,
        logger: logging.Logger | None = None,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        if timeout_s is not None and timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if deadline_s is not None and deadline_s <= 0:
            raise ValueError("deadline_s must be positive")
        self.concurrency_limit = concurrency_limit
        self.timeout_s = timeout_s
        self.teardown_grace_s = teardown_grace_s
        self.deadline_s = deadline_s
        self.verbose = verbose
        self.logger = logger or logging.getLogger("pitcrew")
        self.interrupted = False
        self.group_faults: list[GroupFault] = []
        self.wall_clock_s: float | None = None

    @classmethod
    def from_config(
        cls, config: RunConfig, verbose: bool = False, logger: logging.Logger | None = None
    ) -> TestRunner:
        return cls(
            concurrency_limit=config.concurrency_limit,
            timeout_s=config.timeout_s,
            teardown_grace_s=config.teardown_grace_s,
            deadline_s=config.deadline_s,
            verbose=verbose,
            logger=logger,
        )

    def summary(self, results: Iterable[TestResult]) -> RunSummary:
        return RunSummary.from_results(
            results, wall_clock_s=self.wall_clock_s, group_faults=self.group_faults
        )

    def execute(
        self,
        units: Sequence[TestUnit],
        output_dir: Path,
        *,
        on_result: ResultCallback | None = None,
    ) -> Path:
        """Run ``units`` and write reports. Returns the run directory."""
        from pitcrew.reporting.junit import write_junit, write_meta

        run_id = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
        run_dir = output_dir / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        self.logger = setup_logger(
            run_dir / "debug.log", verbose=self.verbose, logger_name="pitcrew"
        )
        self.logger.debug(f"Starting run {run_id} with {len(units)} unit(s)")

        results = self.run(units, on_result=on_result)
        summary = self.summary(results)

        write_junit(run_dir, results, summary)
        write_meta(
            run_dir,
            summary,
            settings={
                "concurrency_limit": self.concurrency_limit,
                "timeout_s": self.timeout_s,
                "teardown_grace_s": self.teardown_grace_s,
                "deadline_s": self.deadline_s,
            },
            interrupted=self.interrupted,
        )
        return run_dir

    def run(
        self,
        units: Iterable[TestUnit],
        concurrency_limit: int | None = None,
        *,
        on_result: ResultCallback | None = None,
    ) -> list[TestResult]:
        units = list(units)
        ensure_unique(units)
        limit = self.concurrency_limit if concurrency_limit is None else concurrency_limit
        if limit < 1:
            raise ValueError("concurrency_limit must be >= 1")

        groups = _GroupFixtures(units, self.logger)
        self.interrupted = False
        started = time.perf_counter()
        deadline_at = (
            time.monotonic() + self.deadline_s if self.deadline_s is not None else None
        )
        results: list[TestResult | None] = [None] * len(units)
        total = len(units)

        self.logger.debug(f"Running {total} unit(s) with concurrency {limit}")

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="pitcrew") as executor:
            future_to_index = {
                executor.submit(self._execute_unit, unit, groups, deadline_at): index
                for index, unit in enumerate(units)
            }
            completed_count = 0
            try:
                for future in as_completed(future_to_index):
                    index = future_to_index[future]
                    # _execute_unit captures every unit fault; anything raised here is a runner defect
                    results[index] = future.result()
                    completed_count += 1
                    if on_result:
                        on_result(results[index], completed_count, total)
            except KeyboardInterrupt:
                self.interrupted = True
                self.logger.warning("Run interrupted by user (Ctrl+C). Cancelling pending units...")
                cancelled_count = sum(1 for future in future_to_index if future.cancel())
                self.logger.info(
                    f"Cancelled {cancelled_count} pending unit(s). Running units will complete naturally."
                )

        for future, index in future_to_index.items():
            if results[index] is not None:
                continue
            if future.done() and not future.cancelled():
                results[index] = future.result()
            else:
                # never started, but still counts toward its group's shared tear-down
                groups.release(units[index])
                results[index] = self._interrupted_result(units[index])

        self.wall_clock_s = time.perf_counter() - started
        self.group_faults = groups.faults
        return [result for result in results if result is not None]

    def _effective_timeout(self, unit: TestUnit, deadline_at: float | None) -> float | None:
        timeout_s = unit.timeout_s if unit.timeout_s is not None else self.timeout_s
        if deadline_at is None:
            return timeout_s
        remaining = deadline_at - time.monotonic()
        return remaining if timeout_s is None else min(timeout_s, remaining)

    def _execute_unit(
        self, unit: TestUnit, groups: _GroupFixtures, deadline_at: float | None
    ) -> TestResult:
        unit.status = TestStatus.RUNNING
        self.logger.debug(f"Running {unit.qualified_name}")
        started = time.perf_counter()
        try:
            result = self._run_lifecycle(unit, groups, deadline_at, started)
        finally:
            groups.release(unit)
        unit.status = result.status

        if result.status == TestStatus.FAILED:
            self.logger.warning(f"{unit.qualified_name} failed: {'; '.join(result.messages())}")
        elif result.status == TestStatus.INCONCLUSIVE:
            self.logger.warning(f"{unit.qualified_name} executed no assertions")
        self.logger.debug(
            f"{unit.qualified_name} finished: {result.status.value} in {result.duration_s:.3f}s"
        )
        return result

    def _run_lifecycle(
        self,
        unit: TestUnit,
        groups: _GroupFixtures,
        deadline_at: float | None,
        started: float,
    ) -> TestResult:
        timeout_s = self._effective_timeout(unit, deadline_at)
        if timeout_s is not None and timeout_s <= 0:
            expired = UnitTimeout(self.deadline_s or 0.0, what="run deadline")
            return self._result(
                unit, started, faults=[FaultRecord.from_exception(expired, "body")]
            )

        shared_handle, shared_fault = groups.acquire(unit)
        if shared_fault is not None:
            return self._result(
                unit, started, faults=[FaultRecord.from_exception(shared_fault, "set_up")]
            )

        ctx = AssertionContext()
        outcome = run_with_fixture(
            unit.set_up,
            unit.tear_down,
            _counted(unit.body, ctx),
            handle=shared_handle,
            timeout_s=timeout_s,
            grace_s=self.teardown_grace_s,
            logger=self.logger,
        )

        failures = []
        faults = []
        phase = "body" if outcome.body_ran else "set_up"
        for exc in outcome.faults:
            if isinstance(exc, AssertionFailed):
                failures.append(exc.failure)
            else:
                faults.append(FaultRecord.from_exception(exc, phase))
        return self._result(
            unit, started, failures=failures, faults=faults, assertions=ctx.count
        )

    def _result(
        self,
        unit: TestUnit,
        started: float,
        *,
        failures: list[Any] | None = None,
        faults: list[FaultRecord] | None = None,
        assertions: int = 0,
    ) -> TestResult:
        failures = failures or []
        faults = faults or []
        if failures or faults:
            status = TestStatus.FAILED
        elif assertions == 0:
            status = TestStatus.INCONCLUSIVE
        else:
            status = TestStatus.PASSED
        return TestResult(
            unit=unit,
            status=status,
            duration_s=time.perf_counter() - started,
            failures=tuple(failures),
            faults=tuple(faults),
        )

    def _interrupted_result(self, unit: TestUnit) -> TestResult:
        unit.status = TestStatus.FAILED
        return TestResult(
            unit=unit,
            status=TestStatus.FAILED,
            duration_s=0.0,
            faults=(
                FaultRecord(
                    kind=FaultKind.UNCAUGHT,
                    phase="set_up",
                    type_name="KeyboardInterrupt",
                    message="run interrupted before this unit ran",
                ),
            ),
        )
