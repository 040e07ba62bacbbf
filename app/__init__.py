"""Code judge backend.

Expose the FastAPI application as ``app`` lazily so the engines and scripts
can be imported without building the web app."""

from __future__ import annotations

__all__ = ["app"]


def __getattr__(name: str):
    if name == "app":
        from .main import app as fastapi_app
        return fastapi_app
    raise AttributeError(f"module {__name__} has no attribute {name!r}")
