"""Assistant panel controller.

Owns the conversation transcript, the open/loading flags, the bound story
context and the quick actions derived from it. All drawing goes through an
injected :class:`~sidenote.ui.surface.UISurface`, so the controller runs the
same way against the headless surface in tests and the Qt surface in the
reader.

Requests are single-flight: ``is_loading`` is raised synchronously before the
first suspension point, and any request started while it is raised is
ignored. Responses are therefore applied in the order they were issued.
"""

from __future__ import annotations

import asyncio
import html
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Iterable, Optional

from ..assistant.client import AssistantResponse, CapabilityClient
from ..assistant.contexts import (
    CommentNode,
    ReplyContext,
    StoryItem,
    build_discussion_context,
    build_story_context,
    extract_domain,
)
from ..ui.surface import SurfaceElement, SurfaceEvent, UISurface
from .markdown import render_markdown
from .message_model import (
    ANALYZE_DISCUSSION_ACTION,
    ASK_ABOUT_ACTION,
    SUMMARIZE_ACTION,
    ChatMessage,
    ChatRole,
    QuickAction,
)

__all__ = ["AppView", "AssistantPanel", "FALLBACK_REPLY", "assistant_visible"]

LOGGER = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I encountered an error. Please try again."
QUICK_ACTION_HINT = "Open a story to use quick actions"
WELCOME_MARKUP = '<div class="assistant-welcome"><p>Ask me about this story or discussion.</p></div>'
LOADING_MARKUP = (
    '<div class="assistant-message assistant-message-assistant">'
    '<div class="assistant-message-content assistant-loading">'
    '<span class="loading-dot"></span><span class="loading-dot"></span><span class="loading-dot"></span>'
    "</div></div>"
)

TOGGLE_ID = "assistant-toggle"
PANEL_ID = "assistant-panel"
QUICK_ACTIONS_ID = "assistant-quick-actions"
MESSAGES_ID = "assistant-messages"
INPUT_ID = "assistant-input"
SEND_ID = "assistant-send"
READABILITY_ID = "readability-toggle"
VISIBLE_MARKER_CLASS = "assistant-toggle-visible"
READING_MODE_CLASS = "light-reading-mode"


class AppView(str, Enum):
    LIST = "list"
    DETAIL = "detail"
    USER = "user"
    SEARCH = "search"
    SETTINGS = "settings"


def assistant_visible(zen_mode_active: bool, current_view: AppView | str) -> bool:
    """The assistant affordance only exists in zen mode on a story detail view."""

    view = current_view.value if isinstance(current_view, AppView) else str(current_view)
    return bool(zen_mode_active) and view == AppView.DETAIL.value


class AssistantPanel:
    """Conversation lifecycle, context binding and rendering for the panel."""

    def __init__(
        self,
        client: CapabilityClient,
        surface: UISurface,
        *,
        clear_transcript_on_context_change: bool = False,
        reading_mode: bool = False,
        on_reading_mode_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self._client = client
        self._surface = surface
        self._clear_transcript_on_context_change = clear_transcript_on_context_change
        self._reading_mode = reading_mode
        self._on_reading_mode_change = on_reading_mode_change
        self._messages: list[ChatMessage] = []
        self._is_open = False
        self._is_loading = False
        self._visible = False
        self._story: Optional[StoryItem] = None
        self._comments: list[CommentNode] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._init_task: Optional[asyncio.Task[Any]] = None
        self._init_attempted = False

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def reading_mode(self) -> bool:
        return self._reading_mode

    @property
    def story(self) -> Optional[StoryItem]:
        return self._story

    @property
    def comments(self) -> tuple[CommentNode, ...]:
        return tuple(self._comments)

    @property
    def context(self) -> tuple[Optional[StoryItem], tuple[CommentNode, ...]]:
        return self._story, tuple(self._comments)

    def history(self) -> list[ChatMessage]:
        """Return a copy of the transcript."""

        return list(self._messages)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render(self) -> None:
        """Create the toggle affordance and the panel if they do not exist yet."""

        self._render_toggle()
        self._render_panel()

    def _render_toggle(self) -> None:
        if self._surface.query(TOGGLE_ID) is not None:
            return
        button = self._surface.create_element("button", element_id=TOGGLE_ID, classes=("assistant-toggle",))
        button.set_attribute("aria-label", "Toggle AI assistant")
        button.set_attribute("aria-expanded", "false")
        button.set_attribute("aria-pressed", "false")
        button.set_attribute("title", "AI Assistant (a)")
        button.set_text("AI")
        button.set_style("display", "flex" if self._visible else "none")
        button.add_listener("click", lambda _event: self.toggle())
        self._surface.append(button)

    def _render_panel(self) -> None:
        if self._surface.query(PANEL_ID) is not None:
            return
        create = self._surface.create_element
        panel = create("div", element_id=PANEL_ID, classes=("assistant-panel",))
        panel.set_attribute("role", "complementary")
        panel.set_attribute("aria-label", "AI Assistant")
        panel.toggle_class(READING_MODE_CLASS, self._reading_mode)

        header = create("div", classes=("assistant-header",))
        title = create("h3")
        title.set_text("AI Assistant")
        readability = create("div", element_id=READABILITY_ID, classes=("readability-toggle",))
        readability.set_attribute("title", "Toggle High Comfort Reading Mode")
        readability.set_text("Reading Mode")
        readability.toggle_class("active", self._reading_mode)
        readability.add_listener("click", lambda _event: self.set_reading_mode(not self._reading_mode))
        close_button = create("button", classes=("assistant-close",))
        close_button.set_attribute("aria-label", "Close assistant")
        close_button.set_attribute("title", "Close (Esc)")
        close_button.set_text("×")
        close_button.add_listener("click", lambda _event: self.close())
        for child in (title, readability, close_button):
            header.append_child(child)

        quick_actions = create("div", element_id=QUICK_ACTIONS_ID, classes=("assistant-quick-actions",))
        messages = create("div", element_id=MESSAGES_ID, classes=("assistant-messages",))

        input_row = create("div", classes=("assistant-input-container",))
        input_field = create("input", element_id=INPUT_ID, classes=("assistant-input",))
        input_field.set_attribute("placeholder", "Ask a question...")
        input_field.set_attribute("autocomplete", "off")
        input_field.add_listener("keydown", self._handle_input_key)
        send_button = create("button", element_id=SEND_ID, classes=("assistant-send",))
        send_button.set_attribute("aria-label", "Send message")
        send_button.set_text("Send")
        send_button.add_listener("click", lambda _event: self.spawn(self.handle_send()))
        input_row.append_child(input_field)
        input_row.append_child(send_button)

        for child in (header, quick_actions, messages, input_row):
            panel.append_child(child)
        self._surface.append(panel)

        self.render_quick_actions()
        self.render_messages()

    def render_messages(self) -> None:
        container = self._surface.query(MESSAGES_ID)
        if container is None:
            return
        if not self._messages and not self._is_loading:
            container.set_html(WELCOME_MARKUP)
            return
        parts = [self._message_markup(message) for message in self._messages]
        if self._is_loading:
            parts.append(LOADING_MARKUP)
        container.set_html("".join(parts))

    @staticmethod
    def _message_markup(message: ChatMessage) -> str:
        if message.role == "assistant":
            body = render_markdown(message.content)
        else:
            body = html.escape(message.content)
        return (
            f'<div class="assistant-message assistant-message-{message.role}">'
            f'<div class="assistant-message-content">{body}</div></div>'
        )

    def quick_actions(self) -> tuple[QuickAction, ...]:
        """Actions offered for the bound story, in display order."""

        if self._story is None:
            return ()
        actions: list[QuickAction] = []
        if self._story.url:
            actions.append(SUMMARIZE_ACTION)
        if self._comments:
            actions.append(ANALYZE_DISCUSSION_ACTION)
        actions.append(ASK_ABOUT_ACTION)
        return tuple(actions)

    def render_quick_actions(self) -> None:
        container = self._surface.query(QUICK_ACTIONS_ID)
        if container is None:
            return
        container.clear_children()
        actions = self.quick_actions()
        if not actions:
            hint = self._surface.create_element("p", classes=("assistant-hint",))
            hint.set_text(QUICK_ACTION_HINT)
            container.append_child(hint)
            return
        for action in actions:
            button = self._surface.create_element("button", classes=("assistant-quick-action",))
            button.set_text(action.label)
            button.dataset["action"] = action.key
            button.add_listener("click", lambda _event, key=action.key: self.trigger_quick_action(key))
            container.append_child(button)

    def trigger_quick_action(self, key: str) -> None:
        if key == SUMMARIZE_ACTION.key:
            self.spawn(self.run_summarize())
        elif key == ANALYZE_DISCUSSION_ACTION.key:
            self.spawn(self.run_analyze_discussion())
        elif key == ASK_ABOUT_ACTION.key:
            self.ask_about()
        else:
            LOGGER.debug("Ignoring unknown quick action %s", key)

    # ------------------------------------------------------------------
    # Open/close + visibility
    # ------------------------------------------------------------------
    def toggle(self) -> bool:
        self._is_open = not self._is_open
        panel = self._surface.query(PANEL_ID)
        if panel is not None:
            panel.toggle_class("open", self._is_open)
        toggle_button = self._surface.query(TOGGLE_ID)
        if toggle_button is not None:
            toggle_button.toggle_class("active", self._is_open)
            toggle_button.set_attribute("aria-expanded", "true" if self._is_open else "false")
            toggle_button.set_attribute("aria-pressed", "true" if self._is_open else "false")
        if self._is_open:
            self._start_initialization()
            self._focus_input()
        return self._is_open

    def close(self) -> None:
        if self._is_open:
            self.toggle()

    def set_visibility(self, zen_mode_active: bool, current_view: AppView | str) -> bool:
        visible = assistant_visible(zen_mode_active, current_view)
        self._visible = visible
        toggle_button = self._surface.query(TOGGLE_ID)
        if toggle_button is not None:
            toggle_button.set_style("display", "flex" if visible else "none")
        self._surface.set_root_class(VISIBLE_MARKER_CLASS, visible)
        if not visible and self._is_open:
            self.close()
        return visible

    def set_reading_mode(self, enabled: bool) -> None:
        self._reading_mode = bool(enabled)
        panel = self._surface.query(PANEL_ID)
        if panel is not None:
            panel.toggle_class(READING_MODE_CLASS, self._reading_mode)
        readability = self._surface.query(READABILITY_ID)
        if readability is not None:
            readability.toggle_class("active", self._reading_mode)
        if self._on_reading_mode_change is not None:
            self._on_reading_mode_change(self._reading_mode)

    def ask_about(self) -> None:
        self._focus_input()

    def _focus_input(self) -> None:
        input_field = self._surface.query(INPUT_ID)
        if input_field is not None:
            input_field.focus()

    def _handle_input_key(self, event: SurfaceEvent) -> None:
        if event.key == "Enter" and not event.shift:
            event.prevent_default()
            self.spawn(self.handle_send())
        elif event.key == "Escape":
            self.close()

    # ------------------------------------------------------------------
    # Context binding
    # ------------------------------------------------------------------
    def set_context(self, item: StoryItem, comments: Iterable[CommentNode] = ()) -> None:
        switched = self._story is None or self._story.id != item.id
        self._story = item
        self._comments = list(comments)
        if switched and self._clear_transcript_on_context_change:
            self._reset_transcript()
        self.render_quick_actions()

    def clear_context(self) -> None:
        had_story = self._story is not None
        self._story = None
        self._comments = []
        if had_story and self._clear_transcript_on_context_change:
            self._reset_transcript()
        self.render_quick_actions()

    def _reset_transcript(self) -> None:
        if self._messages:
            self._messages.clear()
            self.render_messages()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    async def handle_send(self) -> bool:
        """Send the input field's text, clearing the field when accepted."""

        input_field = self._surface.query(INPUT_ID)
        text = input_field.value if input_field is not None else ""
        if not text.strip() or self._is_loading:
            return False
        if input_field is not None:
            input_field.value = ""
        return await self.send_freeform(text)

    async def send_freeform(self, text: str) -> bool:
        message = (text or "").strip()
        if not message or self._is_loading:
            return False
        self._append("user", message)
        prompt = message
        if self._story is not None:
            domain = extract_domain(self._story.url)
            suffix = f" ({domain})" if domain else ""
            prompt = f'[Context: Story "{self._story.title or ""}"{suffix}]\n\n{message}'
        await self._run_request(lambda: self._client.ask(prompt))
        return True

    async def run_summarize(self) -> bool:
        story = self._story
        if story is None or self._is_loading:
            return False
        self._append("user", f'Summarize: "{story.title or ""}"')
        context = build_story_context(story)
        await self._run_request(lambda: self._client.summarize(context))
        return True

    async def run_analyze_discussion(self) -> bool:
        story = self._story
        if story is None or self._is_loading:
            return False
        self._append("user", f'Analyze discussion: "{story.title or ""}"')
        context = build_discussion_context(story, self._comments)
        await self._run_request(lambda: self._client.analyze_discussion(context))
        return True

    async def run_explain(self, selected_text: str) -> bool:
        if not selected_text or self._is_loading:
            return False
        if not self._is_open:
            self.toggle()
        context = f'From story: "{self._story.title}"' if self._story is not None else None
        self._append("user", f'Explain: "{selected_text}"')
        await self._run_request(lambda: self._client.explain(selected_text, context))
        return True

    async def run_draft_reply(self, selected_text: str, author: str, comment_body: str) -> bool:
        if self._is_loading:
            return False
        if not self._is_open:
            self.toggle()
        story_title = (self._story.title if self._story is not None else None) or "this story"
        self._append("user", f"Help me reply to {author}'s comment")
        context = ReplyContext(
            parent_comment=comment_body,
            parent_author=author,
            story_title=story_title,
            user_draft=selected_text if len(selected_text) > 10 else None,
        )
        await self._run_request(lambda: self._client.draft_reply(context))
        return True

    async def _run_request(self, call: Callable[[], Awaitable[Optional[AssistantResponse]]]) -> None:
        self._set_loading(True)
        try:
            init_task = self._init_task
            if init_task is not None and not init_task.done():
                await init_task
            elif not self._init_attempted and not self._client.is_initialized():
                self._init_attempted = True
                await self._client.init()
            response = await call()
        finally:
            self._set_loading(False)
        self._append("assistant", response.content if response is not None else FALLBACK_REPLY)

    def _append(self, role: ChatRole, content: str) -> None:
        self._messages.append(ChatMessage(role=role, content=content))
        self.render_messages()

    def _set_loading(self, loading: bool) -> None:
        self._is_loading = loading
        self.render_messages()
        for element_id in (INPUT_ID, SEND_ID):
            element: Optional[SurfaceElement] = self._surface.query(element_id)
            if element is not None:
                element.set_disabled(loading)

    # ------------------------------------------------------------------
    # Background work started from synchronous UI callbacks
    # ------------------------------------------------------------------
    def _start_initialization(self) -> None:
        if self._client.is_initialized():
            return
        if self._init_task is not None and not self._init_task.done():
            return
        self._init_task = self.spawn(self._client.init())
        if self._init_task is not None:
            self._init_attempted = True

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Optional[asyncio.Task[Any]]:
        """Schedule ``coro`` on the running loop and keep a reference to it."""

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; dropping %s", getattr(coro, "__qualname__", coro))
            coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Assistant background task failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait until every task started through :meth:`spawn` has finished."""

        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        await asyncio.sleep(0)
