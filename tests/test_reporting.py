import yaml
from junitparser import Error, Failure, JUnitXml, Skipped

from pitcrew.assertions import AssertionFailure, SourceLocation
from pitcrew.metrics import RunSummary
from pitcrew.models import (
    FaultKind,
    FaultRecord,
    GroupFault,
    TestResult,
    TestStatus,
    TestUnit,
)
from pitcrew.reporting import write_junit, write_meta


def _result(group, name, status, failures=(), faults=()):
    unit = TestUnit(group=group, name=name, body=lambda: None)
    return TestResult(
        unit=unit, status=status, duration_s=0.25, failures=failures, faults=faults
    )


def _sample_results():
    location = SourceLocation("tests/test_orders.py", 12, "test_total")
    return [
        _result("Orders", "test_total", TestStatus.FAILED,
                failures=(AssertionFailure("value: expected 3, got 4", 3, 4, location),)),
        _result("Orders", "test_empty", TestStatus.INCONCLUSIVE),
        _result("Billing", "test_charge", TestStatus.FAILED,
                faults=(FaultRecord(FaultKind.TIMEOUT, "body", "UnitTimeout",
                                    "test unit exceeded 1.000s", "Traceback ..."),)),
        _result("Billing", "test_refund", TestStatus.PASSED),
    ]


def test_write_junit_groups_cases_by_suite(tmp_path):
    results = _sample_results()
    summary = RunSummary.from_results(results)

    path = write_junit(tmp_path, results, summary)

    xml = JUnitXml.fromfile(str(path))
    suites = {suite.name: suite for suite in xml}
    assert list(suites) == ["Orders", "Billing"]

    orders = {case.name: case for case in suites["Orders"]}
    [failure] = orders["test_total"].result
    assert isinstance(failure, Failure)
    assert failure.message == "value: expected 3, got 4"
    assert "tests/test_orders.py:12 in test_total" in failure.text
    [skipped] = orders["test_empty"].result
    assert isinstance(skipped, Skipped)

    billing = {case.name: case for case in suites["Billing"]}
    [error] = billing["test_charge"].result
    assert isinstance(error, Error)
    assert error.type == "UnitTimeout"
    assert error.message == "body: test unit exceeded 1.000s"
    assert billing["test_refund"].result == []
    assert billing["test_refund"].classname == "Billing"


def test_write_junit_records_group_properties(tmp_path):
    results = _sample_results()
    fault = FaultRecord(FaultKind.FIXTURE, "tear_down", "OSError", "tear_down failed: OSError: x")
    summary = RunSummary.from_results(results, group_faults=[GroupFault("Billing", fault)])

    xml = JUnitXml.fromfile(str(write_junit(tmp_path, results, summary)))
    properties = {
        suite.name: {p.name: p.value for p in suite.properties()} for suite in xml
    }
    assert properties["Orders"] == {"passed": "0", "inconclusive": "1"}
    assert properties["Billing"]["passed"] == "1"
    assert properties["Billing"]["group_fault_0"] == "tear_down: tear_down failed: OSError: x"


def test_write_meta(tmp_path):
    results = _sample_results()
    summary = RunSummary.from_results(results, wall_clock_s=0.5)
    run_dir = tmp_path / "2026-01-01_000000"
    run_dir.mkdir()

    path = write_meta(run_dir, summary, settings={"concurrency_limit": 2})

    meta = yaml.safe_load(path.read_text())
    assert meta["run_id"] == "2026-01-01_000000"
    assert meta["settings"] == {"concurrency_limit": 2}
    assert meta["summary"]["total"] == 4
    assert meta["summary"]["inconclusive_names"] == ["Orders.test_empty"]
    assert [f["name"] for f in meta["summary"]["failures"]] == [
        "Orders.test_total",
        "Billing.test_charge",
    ]
    assert "interrupted" not in meta


def test_write_meta_marks_interrupted_runs(tmp_path):
    summary = RunSummary.from_results([])
    meta = yaml.safe_load(write_meta(tmp_path, summary, interrupted=True).read_text())
    assert meta["interrupted"] is True
