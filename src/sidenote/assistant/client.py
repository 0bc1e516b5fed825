"""Fail-soft client for the host-provided AI capability.

The capability lives on the other side of a host bridge: an object with a
single ``invoke(command, args)`` coroutine. A plain browser build has no
bridge at all, so ``CapabilityClient(bridge=None)`` is a normal, quiet state
rather than an error. Every public coroutine returns a status or ``None``;
transport failures are logged, handed to the optional error hook and never
re-raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

from .contexts import DiscussionContext, ReplyContext, StoryContext

__all__ = [
    "AssistantResponse",
    "CapabilityClient",
    "CapabilityStatus",
    "ErrorReport",
    "ErrorReporter",
    "HostBridge",
    "UNAVAILABLE_STATUS",
]

LOGGER = logging.getLogger(__name__)

CMD_CHECK = "copilot_check"
CMD_INIT = "copilot_init"
CMD_SUMMARIZE = "copilot_summarize"
CMD_ANALYZE_DISCUSSION = "copilot_analyze_discussion"
CMD_EXPLAIN = "copilot_explain"
CMD_DRAFT_REPLY = "copilot_draft_reply"
CMD_ASK = "copilot_ask"
CMD_SHUTDOWN = "copilot_shutdown"


class HostBridge(Protocol):
    """Transport primitive provided by the hosting runtime."""

    async def invoke(self, command: str, args: Mapping[str, Any] | None = None) -> Any:
        ...


@dataclass(frozen=True, slots=True)
class CapabilityStatus:
    available: bool = False
    running: bool = False
    cli_installed: bool = False
    cli_authenticated: bool = False
    message: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "CapabilityStatus":
        """Build a status from a host payload (mapping or attribute object)."""

        if isinstance(payload, CapabilityStatus):
            return payload

        def _read(name: str, alias: str, default: Any) -> Any:
            if isinstance(payload, Mapping):
                return payload.get(name, payload.get(alias, default))
            return getattr(payload, name, getattr(payload, alias, default))

        return cls(
            available=bool(_read("available", "available", False)),
            running=bool(_read("running", "running", False)),
            cli_installed=bool(_read("cli_installed", "cliInstalled", False)),
            cli_authenticated=bool(_read("cli_authenticated", "cliAuthenticated", False)),
            message=str(_read("message", "message", "") or ""),
        )


UNAVAILABLE_STATUS = CapabilityStatus(message="AI assistant requires the desktop app")


@dataclass(frozen=True, slots=True)
class AssistantResponse:
    content: str

    @classmethod
    def from_payload(cls, payload: Any) -> "AssistantResponse":
        if isinstance(payload, AssistantResponse):
            return payload
        if isinstance(payload, Mapping):
            return cls(content=str(payload.get("content") or ""))
        if isinstance(payload, str):
            return cls(content=payload)
        return cls(content=str(getattr(payload, "content", "") or ""))


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """Structured description of one failed host call."""

    operation: str
    command: str
    message: str
    exception: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ErrorReporter = Callable[[ErrorReport], None]


class CapabilityClient:
    """Gatekeeper and sole channel for assistant requests."""

    def __init__(
        self,
        bridge: HostBridge | None = None,
        *,
        error_reporter: ErrorReporter | None = None,
    ) -> None:
        self._bridge = bridge
        self._error_reporter = error_reporter
        self._initialized = False
        self._available = False
        self._last_status = UNAVAILABLE_STATUS

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def has_bridge(self) -> bool:
        return self._bridge is not None

    def is_available(self) -> bool:
        return self._available

    def is_initialized(self) -> bool:
        return self._initialized

    def get_last_status(self) -> CapabilityStatus:
        return self._last_status

    def set_error_reporter(self, reporter: ErrorReporter | None) -> None:
        self._error_reporter = reporter

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def check(self) -> CapabilityStatus:
        """Probe availability without initializing the capability."""

        if self._bridge is None:
            self._last_status = UNAVAILABLE_STATUS
            return self._last_status
        try:
            status = CapabilityStatus.from_payload(await self._bridge.invoke(CMD_CHECK))
        except Exception as exc:
            return self._degrade("check", CMD_CHECK, exc, default_message="Check failed")
        self._available = status.available
        self._last_status = status
        return status

    async def init(self) -> CapabilityStatus:
        """Start the capability; adopts the availability the host reports."""

        if self._bridge is None:
            self._last_status = UNAVAILABLE_STATUS
            return self._last_status
        try:
            status = CapabilityStatus.from_payload(await self._bridge.invoke(CMD_INIT))
        except Exception as exc:
            return self._degrade("init", CMD_INIT, exc, default_message="Failed to initialize")
        self._initialized = True
        self._available = status.available
        self._last_status = status
        LOGGER.debug("Assistant capability initialized (available=%s)", status.available)
        return status

    async def shutdown(self) -> None:
        if self._bridge is None or not self._initialized:
            return
        try:
            await self._bridge.invoke(CMD_SHUTDOWN)
        except Exception as exc:
            LOGGER.warning("Assistant shutdown failed: %s", exc)
            self._report("shutdown", CMD_SHUTDOWN, exc, default_message="Shutdown failed")
        finally:
            self._available = False
            self._initialized = False

    # ------------------------------------------------------------------
    # Content requests
    # ------------------------------------------------------------------
    async def summarize(self, context: StoryContext) -> AssistantResponse | None:
        return await self._request("summarize", CMD_SUMMARIZE, {"context": context.to_payload()})

    async def analyze_discussion(self, context: DiscussionContext) -> AssistantResponse | None:
        return await self._request(
            "analyze_discussion", CMD_ANALYZE_DISCUSSION, {"context": context.to_payload()}
        )

    async def explain(self, text: str, context: str | None = None) -> AssistantResponse | None:
        return await self._request("explain", CMD_EXPLAIN, {"text": text, "context": context})

    async def draft_reply(self, context: ReplyContext) -> AssistantResponse | None:
        return await self._request("draft_reply", CMD_DRAFT_REPLY, {"context": context.to_payload()})

    async def ask(self, prompt: str) -> AssistantResponse | None:
        return await self._request("ask", CMD_ASK, {"prompt": prompt}, quiet_when_unavailable=True)

    async def _request(
        self,
        operation: str,
        command: str,
        args: Mapping[str, Any],
        *,
        quiet_when_unavailable: bool = False,
    ) -> AssistantResponse | None:
        if not self._available or self._bridge is None:
            if not quiet_when_unavailable:
                LOGGER.debug("Assistant not available; skipping %s", operation)
            return None
        try:
            payload = await self._bridge.invoke(command, dict(args))
        except Exception as exc:
            LOGGER.error("Assistant %s failed: %s", operation, exc)
            self._report(operation, command, exc, default_message=f"{operation} failed")
            return None
        return AssistantResponse.from_payload(payload)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------
    def _degrade(self, operation: str, command: str, exc: Exception, *, default_message: str) -> CapabilityStatus:
        LOGGER.error("Assistant %s failed: %s", operation, exc)
        message = self._report(operation, command, exc, default_message=default_message)
        self._available = False
        self._last_status = replace(UNAVAILABLE_STATUS, message=message)
        return self._last_status

    def _report(self, operation: str, command: str, exc: Exception, *, default_message: str) -> str:
        message = str(exc).strip() or default_message
        if self._error_reporter is None:
            return message
        try:
            self._error_reporter(
                ErrorReport(operation=operation, command=command, message=message, exception=exc)
            )
        except Exception:
            LOGGER.debug("Error reporter raised while handling %s", operation, exc_info=True)
        return message
