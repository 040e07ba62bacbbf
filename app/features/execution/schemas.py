from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TestCaseStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    RUNTIME_ERROR = "runtime_error"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"


class TestCase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    input: str = ""
    expected_output: str = Field(default="", alias="expectedOutput")
    marks: int = Field(default=0, ge=0)
    is_hidden: bool = Field(default=False, alias="isHidden")


class Submission(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    language: str
    code: str
    test_cases: List[TestCase] = Field(default_factory=list, alias="testCases")
    time_limit: int = Field(default=2000, gt=0, alias="timeLimit")  # ms
    memory_limit: int = Field(default=256000, ge=0, alias="memoryLimit")  # KB, not enforced


class TestCaseResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, use_enum_values=True)

    status: TestCaseStatus
    execution_time: int = Field(default=0, alias="executionTime")
    memory_used: int = Field(default=0, alias="memoryUsed")
    output: str = ""
    error: str = ""
    marks_awarded: int = Field(default=0, alias="marksAwarded")
    max_marks: int = Field(default=0, alias="maxMarks")
    is_hidden: bool = Field(default=False, alias="isHidden")


class SubmissionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    compilation_error: str = Field(default="", alias="compilationError")
    test_case_results: List[TestCaseResult] = Field(default_factory=list, alias="testCaseResults")
    total_time: int = Field(default=0, alias="totalTime")

    @property
    def marks_awarded(self) -> int:
        return sum(r.marks_awarded for r in self.test_case_results)


class RemoteRunStatus(str, Enum):
    COMPILE_ERROR = "compile_error"
    OK = "ok"
    KILLED = "killed"
    RUNTIME_ERROR = "runtime_error"


class RemoteRun(BaseModel):
    """One remote execution decoded into the shared status taxonomy."""

    status: RemoteRunStatus
    stdout: str = ""
    stderr: str = ""
    compile_output: str = ""
    message: Optional[str] = None
    time_ms: Optional[int] = None
    memory_kb: int = 0


class LanguageSupport(BaseModel):
    language: str
    aliases: List[str]
    compiled: bool
    services: List[str]
