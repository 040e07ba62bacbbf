"""Subprocess execution with a hard deadline and bounded output capture.

``run_process`` starts the child, then races its completion against a
deadline. Whichever settles first wins: on expiry the child is killed and the
pending reads are given a short window to drain before they are cancelled, so
a call never outlives ``timeout_ms`` by more than ``KILL_DRAIN_S``.

stdout and stderr are read in chunks. Once either stream passes
``max_output_bytes`` the child is killed and the outcome is flagged with
``output_limit_exceeded``; only the first ``max_output_bytes`` are kept.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)

KILL_DRAIN_S = 1.0
READ_CHUNK_BYTES = 64 * 1024
NOT_FOUND_EXIT_CODE = 127
CANNOT_EXECUTE_EXIT_CODE = 126

_LAUNCH_FAILURE_RE = re.compile(
    r"not recognized|not found|command not found|permission denied|cannot execute", re.I
)


@dataclass(frozen=True)
class ProcessOutcome:
    stdout: str
    stderr: str
    exit_code: Optional[int]
    timed_out: bool
    elapsed_ms: int
    output_limit_exceeded: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and not self.output_limit_exceeded and self.exit_code == 0

    @property
    def combined_output(self) -> str:
        return (self.stderr or "") + (self.stdout or "")


def looks_like_missing_binary(outcome: ProcessOutcome) -> bool:
    """True when the binary could not be launched at all (shell-style 126/127).

    Only stderr is inspected; a program printing "not found" on its own is not a launch failure.
    """
    if outcome.exit_code not in (NOT_FOUND_EXIT_CODE, CANNOT_EXECUTE_EXIT_CODE):
        return False
    return bool(_LAUNCH_FAILURE_RE.search(outcome.stderr or ""))


def _decode(raw: Optional[bytes]) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


def _launch_failure(argv: Sequence[str], exc: OSError, elapsed_ms: int) -> ProcessOutcome:
    # Report like a shell would so callers can apply the same fallback rules.
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
        code, message = NOT_FOUND_EXIT_CODE, f"{argv[0]}: command not found"
    elif isinstance(exc, PermissionError) or exc.errno == errno.EACCES:
        code, message = CANNOT_EXECUTE_EXIT_CODE, f"{argv[0]}: permission denied"
    else:
        code, message = CANNOT_EXECUTE_EXIT_CODE, f"{argv[0]}: cannot execute: {exc.strerror or exc}"
    logger.debug("Could not launch %s: %s", argv[0], exc)
    return ProcessOutcome(stdout="", stderr=message, exit_code=code, timed_out=False, elapsed_ms=elapsed_ms)


class _Capture:
    def __init__(self, limit: Optional[int]) -> None:
        self.limit = limit
        self.data = bytearray()
        self.overflowed = False


async def _pump(stream: asyncio.StreamReader, capture: _Capture, on_overflow: Callable[[], None]) -> None:
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        if capture.limit is not None and len(capture.data) + len(chunk) > capture.limit:
            capture.data.extend(chunk[: capture.limit - len(capture.data)])
            capture.overflowed = True
            on_overflow()
            return
        capture.data.extend(chunk)


async def _feed(proc: asyncio.subprocess.Process, data: bytes) -> None:
    try:
        if data:
            proc.stdin.write(data)
            await proc.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child exited without reading all of its input.
        pass
    finally:
        proc.stdin.close()


async def run_process(
    argv: Sequence[str],
    *,
    stdin_text: str = "",
    timeout_ms: int,
    cwd: Optional[str] = None,
    max_output_bytes: Optional[int] = None,
) -> ProcessOutcome:
    start = time.perf_counter()

    def _elapsed() -> int:
        return int((time.perf_counter() - start) * 1000)

    stdin_bytes = (stdin_text or "").encode("utf-8", errors="replace")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
    except OSError as exc:
        return _launch_failure(argv, exc, _elapsed())

    out = _Capture(max_output_bytes)
    err = _Capture(max_output_bytes)

    async def _run() -> None:
        await asyncio.gather(
            _feed(proc, stdin_bytes),
            _pump(proc.stdout, out, lambda: _kill(proc)),
            _pump(proc.stderr, err, lambda: _kill(proc)),
        )
        await proc.wait()

    def _outcome(timed_out: bool) -> ProcessOutcome:
        return ProcessOutcome(
            stdout=_decode(bytes(out.data)),
            stderr=_decode(bytes(err.data)),
            exit_code=proc.returncode,
            timed_out=timed_out,
            elapsed_ms=_elapsed(),
            output_limit_exceeded=out.overflowed or err.overflowed,
        )

    running = asyncio.ensure_future(_run())
    try:
        done, _ = await asyncio.wait({running}, timeout=max(0, timeout_ms) / 1000.0)
    except asyncio.CancelledError:
        _kill(proc)
        running.cancel()
        raise

    if running in done:
        running.result()
        if out.overflowed or err.overflowed:
            logger.info("Process %s exceeded the output limit of %s bytes", argv[0], max_output_bytes)
        return _outcome(timed_out=False)

    _kill(proc)
    try:
        await asyncio.wait_for(running, timeout=KILL_DRAIN_S)
    except asyncio.TimeoutError:
        logger.warning("Process %s did not release its pipes after kill", argv[0])
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_DRAIN_S)
        except asyncio.TimeoutError:
            pass
    return _outcome(timed_out=True)
