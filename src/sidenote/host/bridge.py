"""In-process :class:`~sidenote.assistant.client.HostBridge` over :class:`AssistantService`."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict, Mapping

from ..assistant.client import (
    CMD_ANALYZE_DISCUSSION,
    CMD_ASK,
    CMD_CHECK,
    CMD_DRAFT_REPLY,
    CMD_EXPLAIN,
    CMD_INIT,
    CMD_SHUTDOWN,
    CMD_SUMMARIZE,
    AssistantResponse,
    CapabilityStatus,
)
from ..assistant.contexts import CommentSummary, DiscussionContext, ReplyContext, StoryContext
from .errors import UnknownCommandError
from .service import AssistantService

__all__ = ["LocalHostBridge"]

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]


class LocalHostBridge:
    """Routes ``copilot_*`` commands to an :class:`AssistantService` in this process."""

    def __init__(self, service: AssistantService) -> None:
        self._service = service
        self._handlers: Dict[str, Handler] = {
            CMD_CHECK: self._check,
            CMD_INIT: self._init,
            CMD_SUMMARIZE: self._summarize,
            CMD_ANALYZE_DISCUSSION: self._analyze_discussion,
            CMD_EXPLAIN: self._explain,
            CMD_DRAFT_REPLY: self._draft_reply,
            CMD_ASK: self._ask,
            CMD_SHUTDOWN: self._shutdown,
        }

    @property
    def service(self) -> AssistantService:
        return self._service

    @property
    def commands(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    async def invoke(self, command: str, args: Mapping[str, Any] | None = None) -> Any:
        handler = self._handlers.get(command)
        if handler is None:
            raise UnknownCommandError(command)
        LOGGER.debug("Host command %s", command)
        return await handler(args or {})

    async def _check(self, _args: Mapping[str, Any]) -> Dict[str, Any]:
        return _status_payload(self._service.status())

    async def _init(self, _args: Mapping[str, Any]) -> Dict[str, Any]:
        return _status_payload(await self._service.init())

    async def _summarize(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        context = StoryContext(**_context(args))
        return _response_payload(await self._service.summarize(context))

    async def _analyze_discussion(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        payload = _context(args)
        context = DiscussionContext(
            story_title=payload.get("story_title", ""),
            comment_count=int(payload.get("comment_count", 0)),
            top_comments=[CommentSummary(**comment) for comment in payload.get("top_comments", ())],
        )
        return _response_payload(await self._service.analyze_discussion(context))

    async def _explain(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._service.explain(str(args.get("text", "")), args.get("context"))
        return _response_payload(response)

    async def _draft_reply(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        context = ReplyContext(**_context(args))
        return _response_payload(await self._service.draft_reply(context))

    async def _ask(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return _response_payload(await self._service.ask(str(args.get("prompt", ""))))

    async def _shutdown(self, _args: Mapping[str, Any]) -> None:
        await self._service.stop()


def _context(args: Mapping[str, Any]) -> Dict[str, Any]:
    payload = args.get("context")
    if not isinstance(payload, Mapping):
        raise TypeError("Command requires a 'context' mapping")
    return dict(payload)


def _status_payload(status: CapabilityStatus) -> Dict[str, Any]:
    return asdict(status)


def _response_payload(response: AssistantResponse) -> Dict[str, Any]:
    return {"content": response.content}
