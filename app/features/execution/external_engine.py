"""Remote execution across one or more judge services with fallback.

Services are tried in ``SERVICE_PRIORITY`` order (free before credentialed).
Test cases run one at a time against the current service. A qualifying
failure (auth or server-side error) abandons that service's partial results
and restarts the whole run on the next one; on the last service such a
failure only costs the affected test case.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Protocol

from app.adapters.judge0_client import Judge0Client
from app.adapters.piston_client import PistonClient
from app.core.config import Settings, get_settings
from app.features.execution.errors import ServiceUnavailableError
from app.features.execution.languages import (
    SERVICE_PRIORITY,
    Language,
    ServiceTarget,
    resolve_language,
    service_supports,
)
from app.features.execution.normalizer import (
    ALL_SERVICES_UNAVAILABLE,
    compilation_failure,
    grade_output,
    runtime_error_result,
    time_limit_result,
    unsupported_language,
)
from app.features.execution.schemas import (
    RemoteRun,
    RemoteRunStatus,
    Submission,
    SubmissionResult,
    TestCase,
    TestCaseResult,
)

logger = logging.getLogger("judge.external")

_DISPLAY_NAMES = {ServiceTarget.PISTON: "Piston", ServiceTarget.JUDGE0: "Judge0"}


class RemoteExecutionClient(Protocol):
    service: ServiceTarget

    async def execute(self, language: Language, code: str, stdin: str, time_limit_ms: int) -> RemoteRun:
        ...


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ExternalJudgeOrchestrator:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        clients: Optional[Dict[ServiceTarget, RemoteExecutionClient]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clients: Dict[ServiceTarget, RemoteExecutionClient] = (
            clients if clients is not None else self._default_clients()
        )

    def _default_clients(self) -> Dict[ServiceTarget, RemoteExecutionClient]:
        provider = self.settings.judge_api_provider
        clients: Dict[ServiceTarget, RemoteExecutionClient] = {}
        if self.settings.piston_enabled and provider in ("", ServiceTarget.PISTON.value):
            clients[ServiceTarget.PISTON] = PistonClient(self.settings)
        if self.settings.judge0_configured and provider in ("", ServiceTarget.JUDGE0.value):
            clients[ServiceTarget.JUDGE0] = Judge0Client(self.settings)
        return clients

    def eligible_targets(self, language: Language) -> List[ServiceTarget]:
        return [
            target
            for target in SERVICE_PRIORITY
            if target in self.clients and service_supports(target, language)
        ]

    async def run_submission(self, submission: Submission) -> SubmissionResult:
        start = time.perf_counter()
        language = resolve_language(submission.language)
        targets = self.eligible_targets(language) if language is not None else []
        if not targets:
            names = ", ".join(_DISPLAY_NAMES[t] for t in SERVICE_PRIORITY if t in self.clients) or "no service configured"
            return unsupported_language(
                submission.language,
                where=f"by the external judge ({names})",
                total_time=_ms_since(start),
            )

        for idx, target in enumerate(targets):
            has_fallback = idx < len(targets) - 1
            logger.info("[ExternalJudge] Using %s API for language: %s", _DISPLAY_NAMES[target], language.value)
            result = await self._run_on_service(target, language, submission, has_fallback, start)
            if result is not None:
                return result
            if has_fallback:
                logger.warning(
                    "[ExternalJudge] %s unavailable; falling back to %s",
                    _DISPLAY_NAMES[target],
                    _DISPLAY_NAMES[targets[idx + 1]],
                )

        logger.error("[ExternalJudge] Every eligible service is unavailable")
        return compilation_failure(ALL_SERVICES_UNAVAILABLE, _ms_since(start))

    async def _run_on_service(
        self,
        target: ServiceTarget,
        language: Language,
        submission: Submission,
        has_fallback: bool,
        start: float,
    ) -> Optional[SubmissionResult]:
        """Run every test case on one service; ``None`` means the service produced nothing usable."""
        client = self.clients[target]
        results: List[TestCaseResult] = []
        unavailable = 0

        for test_case in submission.test_cases:
            call_start = time.perf_counter()
            try:
                run = await client.execute(language, submission.code, test_case.input, submission.time_limit)
            except ServiceUnavailableError as exc:
                if has_fallback:
                    logger.warning("[ExternalJudge] %s failed (%s): %s", _DISPLAY_NAMES[target], exc.status_code, exc)
                    return None
                unavailable += 1
                results.append(runtime_error_result(
                    test_case,
                    f"External judge unavailable: {exc}",
                    execution_time=_ms_since(call_start),
                ))
                continue
            except Exception as exc:
                logger.error("[ExternalJudge] Error: %s", exc)
                results.append(runtime_error_result(
                    test_case,
                    f"External judge error: {exc}",
                    execution_time=_ms_since(call_start),
                ))
                continue

            if run.status == RemoteRunStatus.COMPILE_ERROR:
                return compilation_failure(run.compile_output or run.stderr, _ms_since(start))
            results.append(self._to_test_result(test_case, run, _ms_since(call_start)))

        if results and unavailable == len(results):
            return None
        return SubmissionResult(
            compilation_error="",
            test_case_results=results,
            total_time=_ms_since(start),
        )

    @staticmethod
    def _to_test_result(test_case: TestCase, run: RemoteRun, elapsed_ms: int) -> TestCaseResult:
        execution_time = run.time_ms if run.time_ms is not None else elapsed_ms
        if run.status == RemoteRunStatus.KILLED:
            return time_limit_result(test_case, stdout=run.stdout, execution_time=execution_time)
        if run.status == RemoteRunStatus.RUNTIME_ERROR:
            return runtime_error_result(
                test_case,
                run.stderr or run.message,
                stdout=run.stdout,
                execution_time=execution_time,
                memory_used=run.memory_kb,
            )
        return grade_output(
            test_case,
            run.stdout,
            execution_time=execution_time,
            memory_used=run.memory_kb,
        )
