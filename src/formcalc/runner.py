"""Runs the expectation cases embedded in a form definition.

Each case gets a fresh session, evaluates its inputs and compares the
expected field values and template renderings.
"""

import math
from dataclasses import dataclass
from typing import Any

from .definition import CaseSpec, FormDefinition


@dataclass
class CaseResult:
    """Result of one expectation (a field or a template) within a case."""

    case_name: str
    target: str
    passed: bool
    expected: Any
    actual: Any
    error: str | None = None


@dataclass
class CaseReport:
    """Summary of a case run."""

    results: list[CaseResult]

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def total(self) -> int:
        return len(self.results)


def values_match(expected: Any, actual: Any, tolerance: float = 1e-9) -> bool:
    if isinstance(expected, bool) or isinstance(actual, bool):
        return expected is actual
    if isinstance(expected, (int, float)) and isinstance(actual, (int, float)):
        return math.isclose(expected, actual, rel_tol=tolerance, abs_tol=tolerance)
    return expected == actual


def run_case(definition: FormDefinition, case: CaseSpec) -> list[CaseResult]:
    session = definition.build_session()
    try:
        inputs = {**definition.values, **case.inputs}
        output = session.evaluate_all(inputs)
        results = []
        for target, expected in case.expect.items():
            actual = output.get(target)
            results.append(
                CaseResult(
                    case_name=case.name,
                    target=target,
                    passed=values_match(expected, actual),
                    expected=expected,
                    actual=actual,
                    error=session.errors.get(target),
                )
            )
        for name, expected in case.templates.items():
            template = definition.templates.get(name)
            if template is None:
                results.append(
                    CaseResult(case.name, f"template:{name}", False, expected, None, "no such template")
                )
                continue
            actual = session.process_template(template, inputs)
            results.append(CaseResult(case.name, f"template:{name}", actual == expected, expected, actual))
        return results
    finally:
        session.close()


def run_cases(definition: FormDefinition) -> CaseReport:
    results: list[CaseResult] = []
    for case in definition.cases:
        results.extend(run_case(definition, case))
    return CaseReport(results=results)
