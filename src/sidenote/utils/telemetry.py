"""Opt-in telemetry sink and the assistant error-reporting hook adapter."""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..assistant.client import ErrorReport

__all__ = [
    "TelemetryClient",
    "TelemetryEvent",
    "telemetry_enabled",
    "telemetry_error_reporter",
]

_DEFAULT_TELEMETRY_DIR = Path.home() / ".sidenote" / "telemetry"
_TRUE_VALUES = {"1", "true", "yes", "on"}
ERROR_EVENT_NAME = "assistant.error"


@dataclass(slots=True)
class TelemetryEvent:
    """Single event waiting to be written as one JSONL row."""

    name: str
    properties: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def serialize(self, session_id: str) -> str:
        payload = {
            "session_id": session_id,
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
            "properties": self.properties,
        }
        return json.dumps(payload, default=str, ensure_ascii=False)


@dataclass(slots=True)
class TelemetryClient:
    """Buffers events in memory and appends them to ``telemetry.jsonl``."""

    enabled: bool = False
    storage_dir: Path | str | None = None
    max_buffer: int = 16
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    _buffer: list[TelemetryEvent] = field(default_factory=list, init=False, repr=False)
    _counts: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def track_event(self, name: str, **props: Any) -> None:
        if not self.enabled:
            return
        self._counts[name] = self._counts.get(name, 0) + 1
        self._buffer.append(TelemetryEvent(name=name, properties=_sanitize_props(props)))
        if len(self._buffer) >= self.max_buffer:
            self.flush()

    def flush(self) -> Path | None:
        """Append buffered events to disk; returns the file written, if any."""

        if not self.enabled or not self._buffer:
            return None
        target_dir = Path(
            self.storage_dir or os.environ.get("SIDENOTE_TELEMETRY_DIR") or _DEFAULT_TELEMETRY_DIR
        ).expanduser()
        target_dir.mkdir(parents=True, exist_ok=True)
        log_path = target_dir / "telemetry.jsonl"
        with log_path.open("a", encoding="utf-8") as handle:
            for event in self._buffer:
                handle.write(event.serialize(self.session_id))
                handle.write("\n")
        self._buffer.clear()
        return log_path

    def pending_events(self) -> int:
        return len(self._buffer)

    def event_count(self, name: str) -> int:
        """Number of ``name`` events tracked this session, flushed or not."""

        return self._counts.get(name, 0)


def telemetry_enabled(settings: Any | None = None) -> bool:
    """``SIDENOTE_TELEMETRY`` wins over the ``telemetry_opt_in`` setting."""

    env_value = os.environ.get("SIDENOTE_TELEMETRY")
    if env_value is not None:
        return env_value.strip().lower() in _TRUE_VALUES
    return bool(getattr(settings, "telemetry_opt_in", False))


def telemetry_error_reporter(client: TelemetryClient) -> Callable[["ErrorReport"], None]:
    """Return an error hook that records capability failures as telemetry."""

    def _report(report: "ErrorReport") -> None:
        client.track_event(
            ERROR_EVENT_NAME,
            operation=report.operation,
            command=report.command,
            message=report.message,
            exception_type=type(report.exception).__name__ if report.exception else None,
            occurred_at=report.timestamp,
        )

    return _report


def _sanitize_props(props: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in props.items():
        if isinstance(value, Path):
            sanitized[key] = str(value)
        elif isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        else:
            sanitized[key] = value
    return sanitized
