"""Transcript rows and quick-action descriptors for the assistant panel."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal

ChatRole = Literal["user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One immutable entry of the conversation transcript."""

    role: ChatRole
    content: str
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class QuickAction:
    """Button offered above the transcript for the bound story."""

    key: Literal["summarize", "analyze_discussion", "ask_about"]
    label: str


SUMMARIZE_ACTION = QuickAction(key="summarize", label="📝 Summarize")
ANALYZE_DISCUSSION_ACTION = QuickAction(key="analyze_discussion", label="💬 Analyze Discussion")
ASK_ABOUT_ACTION = QuickAction(key="ask_about", label="❓ Ask About This")
