from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from app.adapters.remote_http import json_body, raise_for_service_status, request_with_retries
from app.core.config import Settings, get_settings
from app.features.execution.errors import RemoteExecutionError
from app.features.execution.languages import JUDGE0_LANGUAGE_IDS, Language, ServiceTarget
from app.features.execution.schemas import RemoteRun, RemoteRunStatus

# Judge0 CE rejects cpu_time_limit above this many seconds.
JUDGE0_MAX_CPU_TIME_S = 15.0

STATUS_ACCEPTED = 3
STATUS_WRONG_ANSWER = 4
STATUS_TIME_LIMIT = 5
STATUS_COMPILATION_ERROR = 6
_PENDING_STATUSES = (1, 2)


class Judge0SubmissionRequest(BaseModel):
    source_code: str
    language_id: int
    stdin: Optional[str] = None
    cpu_time_limit: Optional[float] = None
    wall_time_limit: Optional[float] = None
    memory_limit: Optional[int] = None
    redirect_stderr_to_stdout: Optional[bool] = None


class Judge0ExecutionResult(BaseModel):
    token: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    time: Optional[str] = None
    memory: Optional[int] = None
    status: dict


def _b64encode(text: Optional[str]) -> str:
    return base64.b64encode((text or "").encode("utf-8")).decode("ascii")


def _b64decode(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return base64.b64decode(value).decode("utf-8", errors="replace")
    except (ValueError, TypeError):
        return value


class Judge0Client:
    """Judge0 CE client (self-hosted or via RapidAPI)."""

    service = ServiceTarget.JUDGE0

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        base = (self.settings.judge0_base_url or "").strip()
        if base and not base.startswith("http://") and not base.startswith("https://"):
            # assume http if scheme omitted
            base = "http://" + base
        self.base_url = base.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        if self.settings.judge0_api_key:
            self.headers.update({
                "X-RapidAPI-Key": self.settings.judge0_api_key,
                "X-RapidAPI-Host": self.settings.judge0_host,
            })
        self._logger = logging.getLogger(__name__)

    @staticmethod
    def _ensure_status(payload: Dict[str, Any]) -> Dict[str, Any]:
        status_val = payload.get("status")
        if not status_val:
            status_id = payload.get("status_id")
            payload = dict(payload)
            payload["status"] = {
                "id": status_id,
                "description": payload.get("status_description") or "",
            }
        return payload

    async def execute(self, language: Language, code: str, stdin: str, time_limit_ms: int) -> RemoteRun:
        if not self.base_url:
            raise RemoteExecutionError("Judge0 base URL is not configured (JUDGE0_API_URL / JUDGE0_BASE_URL).")
        language_id = JUDGE0_LANGUAGE_IDS.get(language)
        if language_id is None:
            raise RemoteExecutionError(f"Language {language.value} is not supported by Judge0")

        request = Judge0SubmissionRequest(
            source_code=_b64encode(code),
            language_id=language_id,
            stdin=_b64encode(stdin),
            cpu_time_limit=min(max(time_limit_ms, 1) / 1000.0, JUDGE0_MAX_CPU_TIME_S),
        )
        response = await request_with_retries(
            self.service.value,
            "POST",
            f"{self.base_url}/submissions?base64_encoded=true&wait=true",
            headers=self.headers,
            read_timeout=self.settings.remote_timeout_s,
            json=request.model_dump(exclude_none=True),
        )
        raise_for_service_status(self.service.value, response)
        raw = Judge0ExecutionResult(**self._ensure_status(json_body(self.service.value, response)))
        return self._to_remote_run(raw)

    def _to_remote_run(self, raw: Judge0ExecutionResult) -> RemoteRun:
        status_id = raw.status.get("id")
        description = raw.status.get("description") or "Execution error"
        stdout = _b64decode(raw.stdout)
        stderr = _b64decode(raw.stderr)
        compile_output = _b64decode(raw.compile_output)
        try:
            time_ms = int(float(raw.time) * 1000) if raw.time else None
        except ValueError:
            time_ms = None

        if status_id in _PENDING_STATUSES:
            raise RemoteExecutionError(f"Judge0 submission {raw.token} is still {description.lower()}")
        if status_id == STATUS_COMPILATION_ERROR:
            status = RemoteRunStatus.COMPILE_ERROR
        elif status_id in (STATUS_ACCEPTED, STATUS_WRONG_ANSWER):
            status = RemoteRunStatus.OK
        elif status_id == STATUS_TIME_LIMIT:
            status = RemoteRunStatus.KILLED
        else:
            status = RemoteRunStatus.RUNTIME_ERROR
            if not stderr:
                stderr = _b64decode(raw.message) if raw.message else description

        self._logger.debug("Judge0 status %s (%s)", status_id, description)
        return RemoteRun(
            status=status,
            stdout=stdout,
            stderr=stderr,
            compile_output=compile_output,
            message=description,
            time_ms=time_ms,
            memory_kb=raw.memory or 0,
        )
