from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Set, Tuple, Union

from app.core.config import Settings, get_settings
from app.features.execution.languages import (
    LOCAL_RECIPES,
    Language,
    LocalRecipe,
    resolve_language,
)
from app.features.execution.normalizer import (
    OUTPUT_LIMIT_MESSAGE,
    compilation_failure,
    grade_output,
    runtime_error_result,
    time_limit_result,
    unsupported_language,
)
from app.features.execution.process import (
    NOT_FOUND_EXIT_CODE,
    ProcessOutcome,
    looks_like_missing_binary,
    run_process,
)
from app.features.execution.schemas import (
    Submission,
    SubmissionResult,
    TestCase,
    TestCaseResult,
)

logger = logging.getLogger("judge")

ARTIFACT_PREFIX = "submission_"
DEFAULT_JAVA_CLASS = "Main"
JAVA_VERSION_TIMEOUT_MS = 2000
JAVA_FALLBACK_RELEASE = 8
OUTPUT_PREVIEW_CHARS = 1000

# Identifiers of submissions running in this process; the stale sweep leaves them alone.
_LIVE_ARTIFACTS: Set[str] = set()

_JAVA_PUBLIC_CLASS_RE = re.compile(r"public\s+class\s+([A-Za-z_][A-Za-z0-9_]*)")
_JAVA_CLASS_RE = re.compile(r"class\s+([A-Za-z_][A-Za-z0-9_]*)")
_JAVA_VERSION_RE = re.compile(r'version\s+"([0-9_.]+)"', re.I)
_JAVAC_VERSION_RE = re.compile(r"javac\s+([0-9_.]+)", re.I)


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _artifact_identifier(name: str) -> str:
    return name[len(ARTIFACT_PREFIX):].split(".", 1)[0]


def sanitize_java_source(code: str) -> str:
    """Turn leading ``#`` placeholder lines (e.g. ``# Your code here``) into comments."""
    lines = code.splitlines()
    changed = False
    for idx in range(min(len(lines), 5)):
        if lines[idx].lstrip().startswith("#"):
            lines[idx] = re.sub(r"^(\s*)#", r"\1//", lines[idx], count=1)
            changed = True
    if not changed:
        return code
    logger.debug("[judge][java] rewrote leading # lines into // comments")
    return "\n".join(lines)


def detect_java_class(code: str) -> Optional[str]:
    match = _JAVA_PUBLIC_CLASS_RE.search(code) or _JAVA_CLASS_RE.search(code)
    return match.group(1) if match else None


def parse_java_major(text: str) -> Optional[int]:
    """Parse ``1.8.0_292`` / ``17.0.1`` / ``javac 21`` style version strings."""
    match = _JAVA_VERSION_RE.search(text or "") or _JAVAC_VERSION_RE.search(text or "")
    if not match:
        return None
    parts = re.split(r"[._]", match.group(1))
    try:
        if parts[0] == "1" and len(parts) > 1:
            return int(parts[1])
        return int(parts[0])
    except ValueError:
        return None


@dataclass
class CompilationArtifact:
    identifier: str
    source_path: str
    executable_path: Optional[str] = None
    work_dir: Optional[str] = None
    class_name: Optional[str] = None


@dataclass
class _RunState:
    """Per-submission execution state; never shared between submissions."""

    language: Language
    command: List[str]
    artifact: CompilationArtifact
    alternates: List[str] = field(default_factory=list)
    java_major: Optional[int] = None
    recompiled: bool = False


class LocalExecutionEngine:
    """Compiles and runs submissions with the toolchains installed on this host."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    async def run_submission(self, submission: Submission) -> SubmissionResult:
        start = time.perf_counter()
        language = resolve_language(submission.language)
        if language is None:
            return unsupported_language(submission.language, total_time=_ms_since(start))

        logger.info("[judge] Using local compilers for language: %s", language.value)
        await asyncio.to_thread(self._sweep_stale_artifacts, frozenset(_LIVE_ARTIFACTS))

        artifact: Optional[CompilationArtifact] = None
        try:
            try:
                artifact = self._write_source(language, submission.code)
            except UnicodeEncodeError as exc:
                logger.info("[judge] Rejected %s source that is not encodable as UTF-8", language.value)
                return compilation_failure(
                    f"Source code is not valid UTF-8 text: {exc.reason} at position {exc.start}",
                    _ms_since(start),
                )
            except OSError as exc:
                logger.error("Failed to write temp file: %s", exc)
                return compilation_failure(f"Failed to create temp file: {exc}", _ms_since(start))
            _LIVE_ARTIFACTS.add(artifact.identifier)

            prepared = await self._prepare(language, artifact)
            if isinstance(prepared, str):
                logger.info("[judge] Compilation failed for %s submission %s", language.value, artifact.identifier)
                return compilation_failure(prepared, _ms_since(start))

            state = prepared
            logger.info("[judge] Executing with: %s", state.command[0])
            results: List[TestCaseResult] = []
            for test_case in submission.test_cases:
                results.append(await self._run_test_case(state, test_case, submission.time_limit))
            return SubmissionResult(
                compilation_error="",
                test_case_results=results,
                total_time=_ms_since(start),
            )
        finally:
            if artifact is not None:
                self._cleanup(artifact)
                _LIVE_ARTIFACTS.discard(artifact.identifier)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def _write_source(self, language: Language, code: str) -> CompilationArtifact:
        temp_dir = self.settings.judge_temp_dir
        os.makedirs(temp_dir, exist_ok=True)
        identifier = uuid.uuid4().hex[:12]
        recipe = LOCAL_RECIPES[language]

        if language is Language.JAVA:
            # javac wants <ClassName>.java, so each submission gets its own directory.
            code = sanitize_java_source(code)
            data = code.encode("utf-8")
            class_name = detect_java_class(code) or DEFAULT_JAVA_CLASS
            work_dir = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}{identifier}")
            os.makedirs(work_dir)
            source_path = os.path.join(work_dir, f"{class_name}.java")
            with open(source_path, "xb") as fh:
                fh.write(data)
            return CompilationArtifact(identifier, source_path, work_dir=work_dir, class_name=class_name)

        # Encode before touching the filesystem so a rejected source leaves nothing behind.
        data = code.encode("utf-8")
        source_path = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}{identifier}.{recipe.extension}")
        with open(source_path, "xb") as fh:
            fh.write(data)
        logger.debug("Created temp file: %s", os.path.basename(source_path))
        executable = None
        if recipe.compiled:
            executable = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}{identifier}.out")
        return CompilationArtifact(identifier, source_path, executable_path=executable)

    def _remove_path(self, path: str, kind: str) -> None:
        try:
            if os.path.isdir(path):
                shutil.rmtree(path)
            else:
                os.unlink(path)
            logger.debug("Cleaned up %s: %s", kind, os.path.basename(path))
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to cleanup %s %s: %s", kind, path, exc)

    def _cleanup(self, artifact: CompilationArtifact) -> None:
        self._remove_path(artifact.source_path, "source file")
        # Executables are removed best-effort only; the stale sweep catches leftovers.
        if artifact.executable_path:
            self._remove_path(artifact.executable_path, "binary")
        if artifact.work_dir:
            self._remove_path(artifact.work_dir, "work dir")

    def _sweep_stale_artifacts(self, live: FrozenSet[str] = frozenset()) -> None:
        """Remove ``submission_*`` leftovers older than the stale age, skipping ``live`` identifiers.

        Runs in a worker thread; it only reads ``live``.
        """
        max_age = self.settings.judge_stale_file_age_s
        if max_age <= 0:
            return
        now = time.time()
        cleaned = 0
        try:
            entries = list(os.scandir(self.settings.judge_temp_dir))
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Temp cleanup error: %s", exc)
            return
        for entry in entries:
            if not entry.name.startswith(ARTIFACT_PREFIX):
                continue
            if _artifact_identifier(entry.name) in live:
                continue
            try:
                if now - entry.stat().st_mtime <= max_age:
                    continue
                if entry.is_dir():
                    shutil.rmtree(entry.path)
                else:
                    os.unlink(entry.path)
                cleaned += 1
            except OSError as exc:
                logger.debug("Could not remove stale artifact %s: %s", entry.path, exc)
        if cleaned:
            logger.info("Cleaned up %d old temp files", cleaned)

    # ------------------------------------------------------------------
    # Toolchain preparation
    # ------------------------------------------------------------------

    def _interpreters_for(self, language: Language) -> Tuple[str, ...]:
        if language is Language.PYTHON:
            return self.settings.python_binaries or LOCAL_RECIPES[language].interpreters
        if language is Language.JAVASCRIPT:
            return self.settings.node_binaries or LOCAL_RECIPES[language].interpreters
        return LOCAL_RECIPES[language].interpreters

    async def _probe(self, binary: str) -> bool:
        outcome = await run_process(
            [binary, "--version"],
            timeout_ms=int(self.settings.judge_probe_timeout_s * 1000),
        )
        return outcome.ok and not looks_like_missing_binary(outcome)

    async def _prepare(self, language: Language, artifact: CompilationArtifact) -> Union[_RunState, str]:
        """Return the run state, or the compilation error message."""
        recipe = LOCAL_RECIPES[language]
        if language is Language.JAVA:
            return await self._prepare_java(recipe, artifact)
        if recipe.compiled:
            return await self._prepare_native(language, recipe, artifact)

        binaries = list(self._interpreters_for(language))
        chosen, alternates = binaries[0], binaries[1:2]
        if not await self._probe(chosen) and alternates:
            alt = alternates[0]
            if await self._probe(alt):
                logger.info("[judge] Interpreter %s unavailable; using %s", chosen, alt)
                chosen, alternates = alt, []
        return _RunState(
            language=language,
            command=[chosen, artifact.source_path],
            artifact=artifact,
            alternates=alternates,
        )

    def _compile_error_message(self, recipe: LocalRecipe, outcome: ProcessOutcome) -> str:
        if outcome.timed_out:
            return f"Compilation timed out after {self.settings.judge_compile_timeout_s:g}s"
        if outcome.exit_code == NOT_FOUND_EXIT_CODE and looks_like_missing_binary(outcome):
            return recipe.missing_toolchain_hint or outcome.stderr
        return outcome.stderr or outcome.stdout or "Compilation failed"

    async def _compile(self, argv: List[str], cwd: Optional[str] = None) -> ProcessOutcome:
        return await run_process(
            argv,
            timeout_ms=int(self.settings.judge_compile_timeout_s * 1000),
            cwd=cwd,
            max_output_bytes=self.settings.judge_max_output_bytes,
        )

    async def _prepare_native(
        self, language: Language, recipe: LocalRecipe, artifact: CompilationArtifact
    ) -> Union[_RunState, str]:
        argv = [recipe.compiler, artifact.source_path, *recipe.compile_flags, "-o", artifact.executable_path]
        outcome = await self._compile(argv)
        if not outcome.ok:
            return self._compile_error_message(recipe, outcome)
        return _RunState(language=language, command=[artifact.executable_path], artifact=artifact)

    async def _java_versions(self) -> Tuple[Optional[int], Optional[int]]:
        java = await run_process(["java", "-version"], timeout_ms=JAVA_VERSION_TIMEOUT_MS)
        javac = await run_process(["javac", "-version"], timeout_ms=JAVA_VERSION_TIMEOUT_MS)
        java_major = parse_java_major(java.combined_output)
        javac_major = parse_java_major(javac.combined_output)
        logger.debug("[judge][java] java=%s javac=%s", java_major, javac_major)
        return java_major, javac_major

    async def _prepare_java(self, recipe: LocalRecipe, artifact: CompilationArtifact) -> Union[_RunState, str]:
        java_major, javac_major = await self._java_versions()
        attempts: List[List[str]] = []
        if java_major and javac_major and javac_major >= java_major:
            attempts.append([recipe.compiler, "--release", str(java_major), artifact.source_path])
        attempts.append([recipe.compiler, artifact.source_path])

        outcome: Optional[ProcessOutcome] = None
        for argv in attempts:
            outcome = await self._compile(argv, cwd=artifact.work_dir)
            if outcome.ok:
                break
        if outcome is None or not outcome.ok:
            return self._compile_error_message(recipe, outcome)

        return _RunState(
            language=Language.JAVA,
            command=["java", "-cp", artifact.work_dir, artifact.class_name or DEFAULT_JAVA_CLASS],
            artifact=artifact,
            java_major=java_major,
        )

    # ------------------------------------------------------------------
    # Test cases
    # ------------------------------------------------------------------

    def _classify(self, test_case: TestCase, outcome: ProcessOutcome) -> TestCaseResult:
        if outcome.output_limit_exceeded:
            return runtime_error_result(
                test_case,
                OUTPUT_LIMIT_MESSAGE,
                stdout=outcome.stdout[:OUTPUT_PREVIEW_CHARS],
                execution_time=outcome.elapsed_ms,
            )
        if outcome.timed_out:
            return time_limit_result(test_case, stdout=outcome.stdout, execution_time=outcome.elapsed_ms)
        if outcome.exit_code != 0:
            return runtime_error_result(
                test_case,
                outcome.stderr or "Runtime error",
                stdout=outcome.stdout,
                execution_time=outcome.elapsed_ms,
            )
        return grade_output(test_case, outcome.stdout, execution_time=outcome.elapsed_ms)

    async def _execute(self, command: List[str], state: _RunState, test_case: TestCase, time_limit: int) -> ProcessOutcome:
        return await run_process(
            command,
            stdin_text=test_case.input,
            timeout_ms=time_limit + self.settings.judge_grace_ms,
            cwd=state.artifact.work_dir,
            max_output_bytes=self.settings.judge_max_output_bytes,
        )

    async def _run_test_case(self, state: _RunState, test_case: TestCase, time_limit: int) -> TestCaseResult:
        try:
            outcome = await self._execute(state.command, state, test_case, time_limit)
            if not outcome.timed_out and not outcome.output_limit_exceeded and outcome.exit_code != 0:
                retried = await self._retry(state, test_case, outcome, time_limit)
                if retried is not None:
                    return retried
            return self._classify(test_case, outcome)
        except Exception as exc:
            logger.exception("[judge] Test case evaluation failed")
            return runtime_error_result(test_case, str(exc) or exc.__class__.__name__)

    async def _retry(
        self,
        state: _RunState,
        test_case: TestCase,
        failed: ProcessOutcome,
        time_limit: int,
    ) -> Optional[TestCaseResult]:
        """Re-run a failed test case when the failure is environmental rather than the program's."""
        combined = failed.combined_output

        if state.language is Language.JAVA and "UnsupportedClassVersionError" in combined and not state.recompiled:
            state.recompiled = True
            release = state.java_major or JAVA_FALLBACK_RELEASE
            logger.info("[judge] UnsupportedClassVersionError detected; recompiling with --release %s", release)
            recompile = await self._compile(
                ["javac", "--release", str(release), state.artifact.source_path],
                cwd=state.artifact.work_dir,
            )
            if not recompile.ok:
                first_line = (recompile.stderr.splitlines() or [""])[0]
                logger.info("[judge] Recompile with --release %s failed: %s", release, first_line)
                return None
            return self._classify(test_case, await self._execute(state.command, state, test_case, time_limit))

        if looks_like_missing_binary(failed) and state.alternates:
            alt = state.alternates[0]
            candidate = [alt, *state.command[1:]]
            logger.info("[judge] Interpreter %s not found; retrying with %s", state.command[0], alt)
            rerun = await self._execute(candidate, state, test_case, time_limit)
            if looks_like_missing_binary(rerun):
                return None
            if rerun.ok:
                state.command = candidate
                state.alternates = []
            return self._classify(test_case, rerun)

        return None
