from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Any, Iterable

import numpy as np

from pitcrew.models import GroupFault, TestResult, TestStatus


@dataclass
class DurationStatistics:
    """Statistics for unit durations across a run."""

    avg: float | None
    min: float | None
    max: float | None
    stddev: float | None

    def to_dict(self) -> dict[str, float | None]:
        return asdict(self)


@dataclass
class FailureDetail:
    name: str
    status: str
    messages: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RunSummary:
    """Aggregate view over a run's results, computed on demand."""

    total: int
    passed: int
    failed: int
    inconclusive: int
    total_duration_s: float
    wall_clock_s: float | None
    durations: DurationStatistics
    failures: list[FailureDetail] = field(default_factory=list)
    inconclusive_names: list[str] = field(default_factory=list)
    group_faults: list[GroupFault] = field(default_factory=list)

    @property
    def successful(self) -> bool:
        return self.failed == 0 and not self.group_faults

    @property
    def pass_rate(self) -> float:
        return round(self.passed / self.total * 100, 2) if self.total else 0.0

    @classmethod
    def from_results(
        cls,
        results: Iterable[TestResult],
        wall_clock_s: float | None = None,
        group_faults: Iterable[GroupFault] = (),
    ) -> RunSummary:
        results = list(results)
        durations = [r.duration_s for r in results]
        failures = [
            FailureDetail(
                name=r.qualified_name, status=r.status.value, messages=r.messages()
            )
            for r in results
            if r.status == TestStatus.FAILED
        ]
        return cls(
            total=len(results),
            passed=sum(1 for r in results if r.status == TestStatus.PASSED),
            failed=len(failures),
            inconclusive=sum(1 for r in results if r.status == TestStatus.INCONCLUSIVE),
            total_duration_s=round(float(sum(durations)), 6),
            wall_clock_s=round(wall_clock_s, 6) if wall_clock_s is not None else None,
            durations=compute_stats(durations),
            failures=failures,
            inconclusive_names=[
                r.qualified_name for r in results if r.status == TestStatus.INCONCLUSIVE
            ],
            group_faults=list(group_faults),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "inconclusive": self.inconclusive,
            "pass_rate": self.pass_rate,
            "successful": self.successful,
            "total_duration_s": self.total_duration_s,
            "wall_clock_s": self.wall_clock_s,
            "durations": self.durations.to_dict(),
            "failures": [f.to_dict() for f in self.failures],
            "inconclusive_names": list(self.inconclusive_names),
            "group_faults": [g.to_dict() for g in self.group_faults],
        }


def compute_stats(values: list[float | int | None]) -> DurationStatistics:
    """Compute avg, min, max, stddev for a list of numeric values."""
    nums = [v for v in values if v is not None]
    if not nums:
        return DurationStatistics(avg=None, min=None, max=None, stddev=None)

    arr = np.array(nums)
    return DurationStatistics(
        avg=round(float(np.mean(arr)), 4),
        min=round(float(np.min(arr)), 4),
        max=round(float(np.max(arr)), 4),
        stddev=round(float(np.std(arr)), 4),
    )
