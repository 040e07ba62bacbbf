from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from app.adapters.remote_http import json_body, raise_for_service_status, request_with_retries
from app.core.config import Settings, get_settings
from app.features.execution.errors import RemoteExecutionError
from app.features.execution.languages import PISTON_RUNTIMES, Language, ServiceTarget
from app.features.execution.schemas import RemoteRun, RemoteRunStatus

COMPILE_TIMEOUT_MS = 10000

logger = logging.getLogger(__name__)


class PistonClient:
    """Piston execute API (free, no API key)."""

    service = ServiceTarget.PISTON

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.base_url = (self.settings.piston_api_url or "").rstrip("/")
        self.headers = {"Content-Type": "application/json"}

    def build_payload(self, language: Language, code: str, stdin: str, time_limit_ms: int) -> Dict[str, Any]:
        runtime = PISTON_RUNTIMES.get(language)
        if runtime is None:
            raise RemoteExecutionError(f"Language {language.value} not supported by Piston")
        run_timeout = max(1, min(time_limit_ms, self.settings.piston_max_run_timeout_ms))
        return {
            "language": runtime.language,
            "version": runtime.version,
            "files": [{"name": runtime.filename, "content": code}],
            "stdin": stdin or "",
            "compile_timeout": COMPILE_TIMEOUT_MS,
            "run_timeout": run_timeout,
            "compile_memory_limit": -1,
            "run_memory_limit": -1,
        }

    async def execute(self, language: Language, code: str, stdin: str, time_limit_ms: int) -> RemoteRun:
        payload = self.build_payload(language, code, stdin, time_limit_ms)
        start = time.perf_counter()
        response = await request_with_retries(
            self.service.value,
            "POST",
            f"{self.base_url}/execute",
            headers=self.headers,
            read_timeout=self.settings.remote_timeout_s,
            json=payload,
        )
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        raise_for_service_status(self.service.value, response, expected=(200,))
        return self.decode(json_body(self.service.value, response), elapsed_ms)

    @staticmethod
    def decode(data: Dict[str, Any], elapsed_ms: Optional[int] = None) -> RemoteRun:
        compile_stage = data.get("compile")
        if isinstance(compile_stage, dict) and compile_stage.get("code") != 0:
            return RemoteRun(
                status=RemoteRunStatus.COMPILE_ERROR,
                compile_output=compile_stage.get("stderr") or compile_stage.get("output") or "Compilation failed",
                time_ms=elapsed_ms,
            )

        run = data.get("run")
        if not isinstance(run, dict):
            raise RemoteExecutionError(data.get("message") or "Piston response missing run stage")

        stdout = run.get("stdout")
        if stdout is None:
            stdout = run.get("output") or ""
        stderr = run.get("stderr") or ""

        if run.get("signal") == "SIGKILL":
            status = RemoteRunStatus.KILLED
        elif run.get("code") != 0:
            status = RemoteRunStatus.RUNTIME_ERROR
            stderr = stderr or run.get("output") or "Runtime error"
        else:
            status = RemoteRunStatus.OK
        logger.debug("Piston run code=%s signal=%s", run.get("code"), run.get("signal"))
        return RemoteRun(status=status, stdout=stdout, stderr=stderr, time_ms=elapsed_ms)
