"""Error-response helpers shared by hypervisor providers."""

from __future__ import annotations

from typing import Any

import httpx

MAX_BODY_CHARS = 500


def response_body(response: httpx.Response) -> Any:
    """Decoded JSON body, else the stripped text capped at ``MAX_BODY_CHARS``, else ``None``."""
    try:
        return response.json()
    except ValueError:
        text = (response.text or "").strip()
        return text[:MAX_BODY_CHARS] or None


def error_text(response: httpx.Response) -> str:
    """Readable reason for a failed backend call.

    Proxmox reports parameter errors under ``errors``, other failures under
    ``message``, and sometimes only in the HTTP reason phrase.
    """
    body = response_body(response)
    if isinstance(body, dict):
        for key in ("errors", "message"):
            if body.get(key):
                return str(body[key])
        return str(body)
    if body:
        return str(body)
    return response.reason_phrase or f"HTTP {response.status_code}"


def http_error_extra(provider: str, endpoint: str, response: httpx.Response) -> dict[str, Any]:
    """``extra=`` payload logged for a non-2xx backend response."""
    extra: dict[str, Any] = {
        "event": "provider_http_error",
        "provider": provider,
        "endpoint": endpoint,
        "status_code": response.status_code,
    }
    body = response_body(response)
    if body is not None:
        extra["response_body"] = body
    return extra


__all__ = ["MAX_BODY_CHARS", "error_text", "http_error_extra", "response_body"]
