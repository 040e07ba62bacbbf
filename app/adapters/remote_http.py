"""HTTP plumbing shared by the remote execution clients."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from app.features.execution.errors import RemoteExecutionError, ServiceUnavailableError

logger = logging.getLogger(__name__)

# Auth and server-side failures; these move the orchestrator on to the next service.
FALLBACK_STATUS_CODES = frozenset({401, 403, 500, 502, 503})

MAX_CONNECT_RETRIES = 3
_SENSITIVE_HEADERS = ("x-rapidapi-key", "authorization")


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    masked = {}
    for k, v in (headers or {}).items():
        if k.lower() in _SENSITIVE_HEADERS:
            masked[k] = "[REDACTED]"
        else:
            masked[k] = v
    return masked


async def request_with_retries(
    service: str,
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    read_timeout: float = 30.0,
    **kwargs: Any,
) -> httpx.Response:
    """Perform one HTTP call, retrying connection-level failures with linear backoff.

    Connection failures that survive every retry are reported as
    ``ServiceUnavailableError`` so the caller can fall back to another service.
    """
    logger.debug("%s request: %s %s headers=%s", service, method, url, mask_headers(headers))
    timeout = httpx.Timeout(connect=3.0, read=read_timeout, write=5.0, pool=5.0)
    for attempt in range(MAX_CONNECT_RETRIES):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                return await client.request(method, url, headers=headers, **kwargs)
        except (httpx.ConnectTimeout, httpx.ConnectError) as e:
            if attempt < MAX_CONNECT_RETRIES - 1:
                await asyncio.sleep(0.5 * (attempt + 1))
                continue
            raise ServiceUnavailableError(service, f"Failed to connect to {service} at {url}: {e}") from e
        except httpx.TimeoutException as e:
            raise RemoteExecutionError(f"{service} request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteExecutionError(f"{service} request failed: {e}") from e
    raise ServiceUnavailableError(service, f"Failed to connect to {service} at {url}")


def raise_for_service_status(service: str, response: httpx.Response, *, expected: tuple[int, ...] = (200, 201)) -> None:
    if response.status_code in expected:
        return
    body = response.text[:200] if response.text else ""
    if response.status_code in FALLBACK_STATUS_CODES:
        raise ServiceUnavailableError(
            service,
            f"{service} responded {response.status_code}: {body}",
            status_code=response.status_code,
        )
    raise RemoteExecutionError(f"{service} responded {response.status_code}: {body}")


def json_body(service: str, response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise RemoteExecutionError(f"Failed to parse {service} JSON: {e} body={response.text[:200]}") from e
    if not isinstance(data, dict):
        raise RemoteExecutionError(f"Unexpected {service} payload: {str(data)[:200]}")
    return data
