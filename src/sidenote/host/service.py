"""Host-side assistant service: prompts, lifecycle and the model round-trip.

This is what answers the ``copilot_*`` commands. It turns story, discussion
and reply contexts into prompts, keeps one :class:`~sidenote.host.ai_client.AIClient`
alive between :meth:`AssistantService.start` and :meth:`AssistantService.stop`,
and bounds every request by ``Settings.response_timeout``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from ..assistant.client import AssistantResponse, CapabilityStatus
from ..assistant.contexts import DiscussionContext, ReplyContext, StoryContext
from ..services.settings import Settings
from .ai_client import AIClient, ClientSettings
from .errors import (
    AssistantServiceError,
    NotConfiguredError,
    NotInitializedError,
    SendFailedError,
    SessionTimeoutError,
    StartFailedError,
)

__all__ = [
    "Availability",
    "AssistantService",
    "SYSTEM_PROMPT",
    "build_discussion_prompt",
    "build_explain_prompt",
    "build_reply_prompt",
    "build_summary_prompt",
]

LOGGER = logging.getLogger(__name__)

READY_MESSAGE = "AI assistant ready"

SYSTEM_PROMPT = """You are a knowledgeable Hacker News reader assistant.

<your_role>
- Summarize linked articles concisely (2-3 paragraphs unless asked for more)
- Explain technical concepts mentioned in stories or comments
- Analyze discussion threads for key viewpoints and sentiment
- Provide context for references to tech history, companies, or people
- Help draft thoughtful, HN-appropriate replies
</your_role>

<your_style>
- Neutral, informative tone (like a well-read HN commenter)
- When summarizing discussions, represent multiple viewpoints fairly
- Keep summaries concise; expand only when asked
- For explanations, assume technical competence but not domain expertise
- Never be condescending or overly enthusiastic
- Use markdown formatting for structure (headers, lists, bold)
</your_style>

<constraints>
- When summarizing articles, work with the title/URL/domain context provided
- For discussion analysis, cite specific perspectives fairly
- Keep replies HN-appropriate: substantive, not snarky
- Be concise - HN readers value brevity
</constraints>"""


def build_summary_prompt(context: StoryContext) -> str:
    lines = [f"Summarize what this Hacker News story is likely about:\n\nTitle: {context.title}\n"]
    if context.url:
        lines.append(f"URL: {context.url}\n")
    if context.domain:
        lines.append(f"Domain: {context.domain}\n")
    if context.text:
        lines.append(f"\nStory text:\n{context.text}\n")
    lines.append(f"\nScore: {context.score} points, {context.comment_count} comments\n")
    lines.append(
        "\nProvide a concise summary (2-3 paragraphs) of what this article likely covers based on the "
        "title and context. If it's an Ask HN or Show HN, explain the nature of the post."
    )
    return "".join(lines)


def build_discussion_prompt(context: DiscussionContext) -> str:
    lines = [
        "Analyze this Hacker News discussion:\n\n"
        f"Story: {context.story_title}\nTotal comments: {context.comment_count}\n\nTop-level comments:\n"
    ]
    for index, comment in enumerate(context.top_comments, start=1):
        lines.append(f'\n{index}. {comment.author} ({comment.reply_count} replies):\n"{comment.text_preview}"\n')
    lines.append(
        "\nProvide a brief analysis of this discussion:\n"
        "1. What are the main viewpoints or themes?\n"
        "2. Are there areas of agreement or contention?\n"
        "3. Any particularly notable perspectives?"
    )
    return "".join(lines)


def build_explain_prompt(text: str, context: Optional[str] = None) -> str:
    if context:
        return (
            "Explain this term/concept in the context of a Hacker News discussion:\n\n"
            f'Term: "{text}"\nContext: {context}\n\n'
            "Provide a brief explanation (1-2 paragraphs) that would help a technically-competent reader "
            "who may not be familiar with this specific topic."
        )
    return (
        "Explain this term/concept for a Hacker News reader:\n\n"
        f'Term: "{text}"\n\n'
        "Provide a brief explanation (1-2 paragraphs) that would help a technically-competent reader."
    )


def build_reply_prompt(context: ReplyContext) -> str:
    prompt = (
        "Help draft a thoughtful reply to this Hacker News comment:\n\n"
        f'Story: {context.story_title}\n\nComment by {context.parent_author}:\n"{context.parent_comment}"\n'
    )
    if context.user_draft:
        return (
            prompt
            + f'\nUser\'s draft so far:\n"{context.user_draft}"\n'
            + "\nHelp improve and expand this draft while maintaining the user's voice."
        )
    return prompt + (
        "\nSuggest 2-3 different angles for a thoughtful reply, with a brief draft for each. "
        "Keep them substantive but not too long."
    )


@dataclass(frozen=True, slots=True)
class Availability:
    available: bool
    cli_installed: bool
    cli_authenticated: bool
    message: str


ClientFactory = Callable[[ClientSettings], AIClient]


class AssistantService:
    """Answers assistant requests with an OpenAI-compatible model."""

    def __init__(
        self,
        settings: Settings,
        *,
        client_factory: ClientFactory | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._settings = settings
        self._client_factory: ClientFactory = client_factory or AIClient
        self._system_prompt = system_prompt
        self._client: AIClient | None = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._client is not None

    @property
    def settings(self) -> Settings:
        return self._settings

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def check_availability(self) -> Availability:
        """Report whether an endpoint and credentials are configured."""

        installed = bool((self._settings.base_url or "").strip() and (self._settings.model or "").strip())
        authenticated = bool((self._settings.api_key or "").strip())
        if installed and authenticated:
            message = "AI endpoint is configured"
        elif installed:
            message = "API key not configured. Set SIDENOTE_API_KEY to enable AI assistant."
        else:
            message = "AI endpoint not configured. Set base_url and model to enable AI assistant."
        return Availability(installed and authenticated, installed, authenticated, message)

    def status(self) -> CapabilityStatus:
        availability = self.check_availability()
        return CapabilityStatus(
            available=availability.available,
            running=self.is_running,
            cli_installed=availability.cli_installed,
            cli_authenticated=availability.cli_authenticated,
            message=READY_MESSAGE if self.is_running else availability.message,
        )

    async def init(self) -> CapabilityStatus:
        """Start the service if it can run; otherwise report why it cannot."""

        availability = self.check_availability()
        if not availability.available:
            return CapabilityStatus(
                available=False,
                running=False,
                cli_installed=availability.cli_installed,
                cli_authenticated=availability.cli_authenticated,
                message=availability.message,
            )
        await self.start()
        return CapabilityStatus(
            available=True,
            running=True,
            cli_installed=True,
            cli_authenticated=True,
            message=READY_MESSAGE,
        )

    async def start(self) -> None:
        async with self._lock:
            if self._client is not None:
                LOGGER.debug("Assistant client already running")
                return
            availability = self.check_availability()
            LOGGER.debug(
                "Availability: configured=%s, authenticated=%s, available=%s",
                availability.cli_installed,
                availability.cli_authenticated,
                availability.available,
            )
            if not availability.available:
                LOGGER.warning("Assistant not configured: %s", availability.message)
                raise NotConfiguredError(availability.message)
            try:
                self._client = self._client_factory(ClientSettings.from_settings(self._settings))
            except Exception as exc:
                LOGGER.error("Failed to build assistant client: %s", exc)
                raise StartFailedError(str(exc)) from exc
            LOGGER.info(READY_MESSAGE)

    async def stop(self) -> None:
        async with self._lock:
            client, self._client = self._client, None
            if client is None:
                return
            LOGGER.info("Stopping assistant client...")
            await client.aclose()
            LOGGER.info("Assistant client stopped")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    async def summarize(self, context: StoryContext) -> AssistantResponse:
        return await self.ask(build_summary_prompt(context))

    async def analyze_discussion(self, context: DiscussionContext) -> AssistantResponse:
        return await self.ask(build_discussion_prompt(context))

    async def explain(self, text: str, context: Optional[str] = None) -> AssistantResponse:
        return await self.ask(build_explain_prompt(text, context))

    async def draft_reply(self, context: ReplyContext) -> AssistantResponse:
        return await self.ask(build_reply_prompt(context))

    async def ask(self, prompt: str) -> AssistantResponse:
        client = self._client
        if client is None:
            raise NotInitializedError()
        messages: list[Mapping[str, Any]] = [
            {"role": "system", "content": self._system_prompt},
            {"role": "user", "content": prompt},
        ]
        LOGGER.debug("Sending message (%s chars)...", len(prompt))
        try:
            content = await asyncio.wait_for(client.complete(messages), timeout=self._settings.response_timeout)
        except asyncio.TimeoutError as exc:
            LOGGER.error("Timeout waiting for assistant response")
            raise SessionTimeoutError() from exc
        except AssistantServiceError:
            raise
        except Exception as exc:
            LOGGER.error("Failed to send message: %s", exc)
            raise SendFailedError(str(exc)) from exc
        LOGGER.info("Assistant response: %s chars", len(content))
        return AssistantResponse(content=content)
