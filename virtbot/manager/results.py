"""Uniform result envelope returned across the manager boundary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from virtbot.core.exceptions import ErrorCode

T = TypeVar("T")


@dataclass
class ManagerResult(Generic[T]):
    """``success`` is true iff ``data`` is present; on failure ``error`` explains why."""

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    provider: str | None = None

    @classmethod
    def ok(cls, data: T, provider: str | None = None) -> "ManagerResult[T]":
        if data is None:
            raise ValueError("A successful result must carry data")
        return cls(success=True, data=data, provider=provider)

    @classmethod
    def fail(
        cls,
        error: str | None,
        code: ErrorCode | str | None = ErrorCode.UNKNOWN_ERROR,
        provider: str | None = None,
    ) -> "ManagerResult[T]":
        if isinstance(code, Enum):
            code = code.value
        return cls(
            success=False,
            error=error or "Unknown error",
            error_code=code,
            provider=provider,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view with camelCase keys used by the dashboard."""
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = _jsonable(self.data)
        else:
            payload["error"] = self.error
            if self.error_code:
                payload["errorCode"] = self.error_code
        if self.provider:
            payload["provider"] = self.provider
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


__all__ = ["ManagerResult"]
