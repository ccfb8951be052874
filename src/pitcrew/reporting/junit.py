from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import yaml
from junitparser import Error, Failure, JUnitXml, Skipped, TestCase, TestSuite

from pitcrew.metrics import RunSummary
from pitcrew.models import TestResult, TestStatus


def _case_for(result: TestResult) -> TestCase:
    case = TestCase(result.unit.name)
    case.classname = result.unit.group
    case.time = round(result.duration_s, 6)

    outcomes = []
    for failure in result.failures:
        text = failure.message
        if failure.location is not None:
            text = f"{text}\n  at {failure.location}"
        element = Failure(failure.message, "AssertionFailed")
        element.text = text
        outcomes.append(element)
    for fault in result.faults:
        error = Error(f"{fault.phase}: {fault.message}", fault.type_name)
        error.text = fault.traceback or fault.message
        outcomes.append(error)
    if result.status == TestStatus.INCONCLUSIVE:
        outcomes.append(Skipped("inconclusive: no assertions executed"))
    if outcomes:
        case.result = outcomes
    return case


def write_junit(
    run_dir: Path, results: Sequence[TestResult], summary: RunSummary
) -> Path:
    """Write junit.xml with one suite per group, in discovery order; return path."""
    xml = JUnitXml()

    grouped: dict[str, list[TestResult]] = {}
    for result in results:
        grouped.setdefault(result.unit.group, []).append(result)

    group_faults: dict[str, list[Any]] = {}
    for group_fault in summary.group_faults:
        group_faults.setdefault(group_fault.group, []).append(group_fault)

    for group, group_results in grouped.items():
        suite = TestSuite(group)

        suite.add_property("passed", str(sum(1 for r in group_results if r.passed)))
        suite.add_property(
            "inconclusive",
            str(sum(1 for r in group_results if r.status == TestStatus.INCONCLUSIVE)),
        )
        for index, group_fault in enumerate(group_faults.get(group, [])):
            suite.add_property(
                f"group_fault_{index}",
                f"{group_fault.fault.phase}: {group_fault.fault.message}",
            )

        for result in group_results:
            suite.add_testcase(_case_for(result))

        # Set time after add_testcase (add_testcase resets it via update_statistics)
        suite.time = round(sum(r.duration_s for r in group_results), 6)

        # Use append (not +=) to preserve properties and time
        xml.append(suite)

    junit_path = run_dir / "junit.xml"
    xml.write(str(junit_path), pretty=True)
    return junit_path


def write_meta(
    run_dir: Path,
    summary: RunSummary,
    settings: dict[str, Any] | None = None,
    interrupted: bool = False,
) -> Path:
    """Write meta.yaml with run metadata and the aggregate summary."""
    try:
        import importlib.metadata

        pitcrew_version = importlib.metadata.version("pitcrew")
    except Exception:
        pitcrew_version = "unknown"

    meta: dict[str, Any] = {
        "run_id": run_dir.name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "pitcrew_version": pitcrew_version,
        "settings": settings or {},
        "summary": summary.to_dict(),
    }
    if interrupted:
        meta["interrupted"] = True

    meta_path = run_dir / "meta.yaml"
    meta_path.write_text(yaml.safe_dump(meta, default_flow_style=False, sort_keys=False))
    return meta_path
