"""Custom exception types."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    AUTHENTICATION_FAILED = "AUTH_FAILED"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    VM_NOT_FOUND = "VM_NOT_FOUND"
    ACTION_FAILED = "ACTION_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class VirtualizationError(Exception):
    """Base error raised by providers and translated by the manager."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class AuthenticationError(VirtualizationError):
    """Raised when the backend rejects credentials or the session expired."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.AUTHENTICATION_FAILED, details)


class ConnectionFailedError(VirtualizationError):
    """Raised for transport failures and unexpected HTTP statuses.

    ``status_code`` is ``None`` when the request never produced a response.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.CONNECTION_FAILED, details)
        self.status_code = status_code


class ResourceNotFoundError(VirtualizationError):
    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} with ID {resource_id} not found",
            ErrorCode.RESOURCE_NOT_FOUND,
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class VMNotFoundError(VirtualizationError):
    def __init__(self, vm_id: str) -> None:
        super().__init__(f"VM {vm_id} not found", ErrorCode.VM_NOT_FOUND, {"vm_id": vm_id})


class ActionExecutionError(VirtualizationError):
    def __init__(self, action: str, resource_id: str, message: str) -> None:
        super().__init__(
            f"Failed to execute {action} on {resource_id}: {message}",
            ErrorCode.ACTION_FAILED,
            {"action": action, "resource_id": resource_id},
        )


class ValidationFailedError(VirtualizationError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.VALIDATION_FAILED, details)


class UnsupportedProviderError(VirtualizationError):
    def __init__(self, provider_type: str) -> None:
        super().__init__(
            f"Unsupported provider type: {provider_type}",
            ErrorCode.UNSUPPORTED_PROVIDER,
            {"provider_type": provider_type},
        )
