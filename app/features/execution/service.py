from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from app.core.config import Settings, get_settings
from app.features.execution.external_engine import ExternalJudgeOrchestrator
from app.features.execution.languages import (
    LOCAL_RECIPES,
    SERVICE_PRIORITY,
    Language,
    aliases_for,
    resolve_language,
    service_supports,
)
from app.features.execution.local_engine import LocalExecutionEngine
from app.features.execution.normalizer import ALL_SERVICES_UNAVAILABLE
from app.features.execution.schemas import LanguageSupport, Submission, SubmissionResult, TestCase

logger = logging.getLogger("judge")


class JudgeService:
    """Routes submissions to the local engine or the external judge.

    Deployments (Vercel, production, ``USE_EXTERNAL_JUDGE``) go external.
    When every external service is down, languages listed in
    ``JUDGE_LOCAL_FALLBACK`` are retried locally.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        local_engine: Optional[LocalExecutionEngine] = None,
        external_engine: Optional[ExternalJudgeOrchestrator] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.local_engine = local_engine or LocalExecutionEngine(self.settings)
        self.external_engine = external_engine or ExternalJudgeOrchestrator(self.settings)

    @property
    def mode(self) -> str:
        return "external" if self.settings.use_external_judge else "local"

    def _may_fallback_locally(self, language: str) -> bool:
        resolved = resolve_language(language)
        if resolved is None:
            return False
        allowed = {resolve_language(name) for name in self.settings.local_fallback_languages}
        return resolved in allowed

    async def run_submission(self, submission: Submission) -> SubmissionResult:
        if not self.settings.use_external_judge:
            logger.info("[judge] Using local compilers for language: %s", submission.language)
            return await self.local_engine.run_submission(submission)

        logger.info("[judge] Using external API for language: %s", submission.language)
        result = await self.external_engine.run_submission(submission)
        if result.compilation_error == ALL_SERVICES_UNAVAILABLE and self._may_fallback_locally(submission.language):
            logger.warning("[judge] External judge unavailable; running %s locally", submission.language)
            return await self.local_engine.run_submission(submission)
        return result

    def supported_languages(self) -> List[LanguageSupport]:
        return [
            LanguageSupport(
                language=language.value,
                aliases=aliases_for(language),
                compiled=LOCAL_RECIPES[language].compiled,
                services=[t.value for t in SERVICE_PRIORITY if service_supports(t, language)],
            )
            for language in Language
        ]


judge_service = JudgeService()


async def run_submission(
    *,
    language: str,
    code: str,
    test_cases: Iterable[Union[TestCase, Mapping[str, Any]]],
    time_limit: int = 2000,
    memory_limit: int = 256000,
) -> SubmissionResult:
    submission = Submission(
        language=language,
        code=code,
        test_cases=[tc if isinstance(tc, TestCase) else TestCase.model_validate(tc) for tc in test_cases],
        time_limit=time_limit,
        memory_limit=memory_limit,
    )
    return await judge_service.run_submission(submission)
