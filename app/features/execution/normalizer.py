"""Output normalisation and result classification shared by both engines.

Grading is exact: after normalisation (CRLF -> LF, outer whitespace stripped)
the captured output must equal the expected output character for character.
A match earns the test case's full marks, anything else earns zero.
"""

from __future__ import annotations

from typing import Optional

from app.features.execution.schemas import (
    SubmissionResult,
    TestCase,
    TestCaseResult,
    TestCaseStatus,
)

TIME_LIMIT_MESSAGE = "Time limit exceeded"
OUTPUT_LIMIT_MESSAGE = "Output limit exceeded"
ALL_SERVICES_UNAVAILABLE = "All code execution services are currently unavailable."


def normalize_output(text: Optional[str]) -> str:
    return (text or "").replace("\r\n", "\n").strip()


def outputs_match(actual: Optional[str], expected: Optional[str]) -> bool:
    return normalize_output(actual) == normalize_output(expected)


def grade_output(
    test_case: TestCase,
    stdout: Optional[str],
    *,
    execution_time: int = 0,
    memory_used: int = 0,
) -> TestCaseResult:
    output = normalize_output(stdout)
    passed = output == normalize_output(test_case.expected_output)
    return TestCaseResult(
        status=TestCaseStatus.PASSED if passed else TestCaseStatus.FAILED,
        execution_time=execution_time,
        memory_used=memory_used,
        output=output,
        marks_awarded=test_case.marks if passed else 0,
        max_marks=test_case.marks,
        is_hidden=test_case.is_hidden,
    )


def runtime_error_result(
    test_case: TestCase,
    error: Optional[str],
    *,
    stdout: Optional[str] = None,
    execution_time: int = 0,
    memory_used: int = 0,
) -> TestCaseResult:
    return TestCaseResult(
        status=TestCaseStatus.RUNTIME_ERROR,
        execution_time=execution_time,
        memory_used=memory_used,
        output=normalize_output(stdout),
        error=error or "Runtime error",
        max_marks=test_case.marks,
        is_hidden=test_case.is_hidden,
    )


def time_limit_result(
    test_case: TestCase,
    *,
    stdout: Optional[str] = None,
    execution_time: int = 0,
) -> TestCaseResult:
    return TestCaseResult(
        status=TestCaseStatus.TIME_LIMIT_EXCEEDED,
        execution_time=execution_time,
        output=normalize_output(stdout),
        error=TIME_LIMIT_MESSAGE,
        max_marks=test_case.marks,
        is_hidden=test_case.is_hidden,
    )


def compilation_failure(message: Optional[str], total_time: int = 0) -> SubmissionResult:
    return SubmissionResult(
        compilation_error=message or "Compilation failed",
        test_case_results=[],
        total_time=total_time,
    )


def unsupported_language(language: str, *, where: str = "on this judge", total_time: int = 0) -> SubmissionResult:
    return compilation_failure(f"Language {language} is not supported {where}.", total_time)
