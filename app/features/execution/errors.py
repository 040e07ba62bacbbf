"""Exception types raised inside the execution feature.

Engines never let these reach the caller: they are folded into the
``compilationError`` / per-test ``runtime_error`` fields of a result.
"""

from __future__ import annotations

from typing import Optional


class UnsupportedLanguageError(ValueError):
    def __init__(self, language: str) -> None:
        super().__init__(f"Language {language} is not supported on this judge.")
        self.language = language


class ServiceUnavailableError(Exception):
    """Remote execution service rejected or failed the call in a way that warrants fallback."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class RemoteExecutionError(Exception):
    """Any other remote failure (unexpected status, malformed payload)."""
