"""Errors raised by the host-side assistant service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

__all__ = [
    "AssistantServiceError",
    "NotConfiguredError",
    "NotInitializedError",
    "SendFailedError",
    "SessionTimeoutError",
    "StartFailedError",
    "UnknownCommandError",
]


@dataclass
class AssistantServiceError(Exception):
    """Base class; ``str(error)`` is the message surfaced to the page."""

    message: str
    error_code: ClassVar[str] = "assistant_error"

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": str(self)}


@dataclass
class NotInitializedError(AssistantServiceError):
    message: str = "Assistant service not initialized"
    error_code: ClassVar[str] = "not_initialized"


@dataclass
class NotConfiguredError(AssistantServiceError):
    error_code: ClassVar[str] = "not_configured"


@dataclass
class StartFailedError(AssistantServiceError):
    error_code: ClassVar[str] = "start_failed"

    def __str__(self) -> str:
        return f"Failed to start assistant client: {self.message}"


@dataclass
class SendFailedError(AssistantServiceError):
    error_code: ClassVar[str] = "send_failed"

    def __str__(self) -> str:
        return f"Failed to send message: {self.message}"


@dataclass
class SessionTimeoutError(AssistantServiceError):
    message: str = "Session timeout"
    error_code: ClassVar[str] = "timeout"


@dataclass
class UnknownCommandError(AssistantServiceError):
    error_code: ClassVar[str] = "unknown_command"

    def __str__(self) -> str:
        return f"Unknown command: {self.message}"
