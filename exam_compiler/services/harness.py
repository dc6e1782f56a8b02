from __future__ import annotations

import logging
from dataclasses import dataclass, field

from exam_compiler.core.languages import Language
from exam_compiler.services.execution import (
    ExecutionClient,
    ExecutionError,
    RunKind,
    classify,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TestCase:
    __test__ = False  # not a pytest class

    input: str
    expected: str


@dataclass(frozen=True, slots=True)
class TestResult:
    __test__ = False

    success: bool
    actual: str | None = None
    error: str | None = None


@dataclass(slots=True)
class HarnessReport:
    total: int
    results: dict[int, TestResult] = field(default_factory=dict)
    log: list[str] = field(default_factory=list)
    rejection: str | None = None

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results.values() if r.success)

    @property
    def all_passed(self) -> bool:
        return self.rejection is None and self.total > 0 and self.passed == self.total

    @property
    def summary(self) -> str:
        if self.rejection is not None:
            return self.rejection
        return f"You have passed {self.passed}/{self.total} tests"

    @property
    def transcript(self) -> str:
        return "\n".join(self.log)


class TestHarness:
    """Runs one program against an ordered list of test cases.

    Cases run one after another through the session's execution client; the
    cooldown gate is checked once for the whole pass.
    """

    __test__ = False

    def __init__(self, client: ExecutionClient) -> None:
        self.client = client

    def run(self, source: str, language: Language, cases: list[TestCase]) -> HarnessReport | None:
        if not cases:
            return None

        report = HarnessReport(total=len(cases))
        try:
            self.client.check(source)
            self.client.gate.acquire()
        except ExecutionError as exc:
            report.rejection = exc.display()
            return report

        report.log.append("Running test cases...")
        for i, case in enumerate(cases):
            label = f"Test Case {i + 1}:"
            try:
                response = self.client.execute(source, case.input, language)
            except ExecutionError as exc:
                report.results[i] = TestResult(success=False, error=exc.display())
                report.log.append(f"{label} ERROR: {exc.display()}")
                continue

            outcome = classify(response)
            if outcome.kind is not RunKind.OUTPUT:
                report.results[i] = TestResult(success=False, error=outcome.output)
                report.log.append(f"{label} ERROR: {outcome.output}")
                continue

            actual = (response.run_output or "").strip()
            expected = case.expected.strip()
            passed = actual == expected
            report.results[i] = TestResult(success=passed, actual=actual)
            if passed:
                report.log.append(f"{label} PASSED")
            else:
                report.log.append(f"{label} FAILED")
                report.log.append(f"   Expected: {expected}")
                report.log.append(f"   Actual:   {actual}")

        report.log.append("")
        report.log.append(f"Result: {'ALL TESTS PASSED' if report.all_passed else 'SOME TESTS FAILED'}")
        logger.info(f"Test run finished: {report.passed}/{report.total} passed")
        return report
