"""Shared test doubles for the assistant stack."""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping

from sidenote.assistant.client import CMD_CHECK, CMD_INIT, CMD_SHUTDOWN
from sidenote.assistant.contexts import CommentNode, StoryItem
from sidenote.host.ai_client import ClientSettings


class RecordingBridge:
    """Host bridge that records every command and answers from a script.

    ``failures`` maps a command to the exception it raises. When ``gate`` is
    set, content commands wait on it, which lets a test observe a request
    while it is in flight.
    """

    def __init__(
        self,
        *,
        available: bool = True,
        responses: Mapping[str, Any] | None = None,
        failures: Mapping[str, BaseException] | None = None,
    ) -> None:
        self.available = available
        self.responses = dict(responses or {})
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.gate: asyncio.Event | None = None

    async def invoke(self, command: str, args: Mapping[str, Any] | None = None) -> Any:
        self.calls.append((command, None if args is None else dict(args)))
        if self.gate is not None and command not in (CMD_CHECK, CMD_INIT, CMD_SHUTDOWN):
            await self.gate.wait()
        failure = self.failures.get(command)
        if failure is not None:
            raise failure
        if command in (CMD_CHECK, CMD_INIT):
            return {
                "available": self.available,
                "running": command == CMD_INIT and self.available,
                "cliInstalled": True,
                "cliAuthenticated": self.available,
                "message": "AI assistant ready" if self.available else "not configured",
            }
        if command == CMD_SHUTDOWN:
            return None
        return {"content": self.responses.get(command, f"reply to {command}")}

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]

    def args_for(self, command: str) -> dict[str, Any] | None:
        for name, args in reversed(self.calls):
            if name == command:
                return args
        raise AssertionError(f"{command} was never invoked")


class FakeAIClient:
    """Stands in for :class:`sidenote.host.ai_client.AIClient` in service tests."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        reply: str = "model reply",
        error: BaseException | None = None,
        delay: float = 0.0,
    ) -> None:
        self.settings = settings
        self.reply = reply
        self.error = error
        self.delay = delay
        self.requests: list[list[dict[str, Any]]] = []
        self.closed = False

    async def complete(self, messages: Iterable[Mapping[str, Any]]) -> str:
        self.requests.append([dict(message) for message in messages])
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    async def aclose(self) -> None:
        self.closed = True


def make_story(**overrides: Any) -> StoryItem:
    payload: dict[str, Any] = {
        "id": 101,
        "title": "Rust in the Linux kernel",
        "url": "https://www.example.com/rust-kernel",
        "score": 321,
        "by": "pg",
        "descendants": 42,
    }
    payload.update(overrides)
    return StoryItem.from_payload(payload)


def make_comment(comment_id: int = 1, author: str | None = "alice", text: str = "Great <i>point</i>", replies: int = 0) -> CommentNode:
    children = [CommentNode(id=comment_id * 100 + index, author="reply", text="ok") for index in range(replies)]
    return CommentNode(id=comment_id, author=author, text=text, children=children)
