from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException

from app.features.execution.errors import UnsupportedLanguageError
from app.features.execution.languages import require_language
from app.features.execution.schemas import LanguageSupport, Submission, SubmissionResult
from app.features.execution.service import judge_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/judge", tags=["judge"])


@router.get("/languages", response_model=List[LanguageSupport])
async def get_supported_languages():
    return judge_service.supported_languages()


@router.get("/languages/{name}", response_model=LanguageSupport, summary="Resolve a language name or alias")
async def get_language(name: str):
    try:
        language = require_language(name)
    except UnsupportedLanguageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return next(row for row in judge_service.supported_languages() if row.language == language.value)


@router.post(
    "/run",
    response_model=SubmissionResult,
    response_model_by_alias=True,
    summary="Compile and run a submission against its test cases",
)
async def run_submission(submission: Submission):
    # Grading failures come back inside the result; only engine crashes land here.
    try:
        return await judge_service.run_submission(submission)
    except Exception as exc:
        logger.exception("Judge run failed for language %s", submission.language)
        raise HTTPException(status_code=500, detail=f"Failed to run submission: {exc}") from exc
