"""Assistant panel behaviour against the headless surface."""

from __future__ import annotations

import asyncio
from typing import Iterator

import pytest

from sidenote.assistant.client import (
    CMD_ANALYZE_DISCUSSION,
    CMD_ASK,
    CMD_CHECK,
    CMD_DRAFT_REPLY,
    CMD_EXPLAIN,
    CMD_INIT,
    CMD_SUMMARIZE,
    CapabilityClient,
)
from sidenote.assistant.contexts import build_story_context
from sidenote.chat.assistant_panel import (
    FALLBACK_REPLY,
    INPUT_ID,
    MESSAGES_ID,
    PANEL_ID,
    QUICK_ACTIONS_ID,
    READABILITY_ID,
    READING_MODE_CLASS,
    SEND_ID,
    TOGGLE_ID,
    VISIBLE_MARKER_CLASS,
    AppView,
    AssistantPanel,
    assistant_visible,
)
from sidenote.ui.surface import HeadlessSurface

from tests.helpers import RecordingBridge, make_comment, make_story


def _panel(client: CapabilityClient, surface: HeadlessSurface, **kwargs) -> AssistantPanel:
    panel = AssistantPanel(client, surface, **kwargs)
    panel.render()
    return panel


def _roles(panel: AssistantPanel) -> list[str]:
    return [message.role for message in panel.history()]


def _quick_action_labels(surface: HeadlessSurface) -> list[str]:
    container = surface.query(QUICK_ACTIONS_ID)
    assert container is not None
    return [child.text for child in container.children if child.has_class("assistant-quick-action")]


@pytest.fixture
def panel(client: CapabilityClient, surface: HeadlessSurface) -> Iterator[AssistantPanel]:
    yield _panel(client, surface)


@pytest.mark.parametrize(
    "zen, view, expected",
    [
        (True, AppView.DETAIL, True),
        (True, "detail", True),
        (True, AppView.LIST, False),
        (False, AppView.DETAIL, False),
        (False, "search", False),
    ],
)
def test_assistant_visible_requires_zen_mode_on_detail_view(zen: bool, view, expected: bool) -> None:
    assert assistant_visible(zen, view) is expected


def test_render_is_idempotent(client: CapabilityClient, surface: HeadlessSurface) -> None:
    panel = _panel(client, surface)
    panel.render()
    panel.render()

    ids = [child.id for child in surface.body.children]
    assert ids.count(TOGGLE_ID) == 1
    assert ids.count(PANEL_ID) == 1


def test_initial_render_state(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    toggle = surface.query(TOGGLE_ID)
    messages = surface.query(MESSAGES_ID)
    input_field = surface.query(INPUT_ID)

    assert toggle.get_style("display") == "none"
    assert toggle.get_attribute("aria-label") == "Toggle AI assistant"
    assert toggle.get_attribute("title") == "AI Assistant (a)"
    assert toggle.text == "AI"
    assert surface.query(PANEL_ID).get_attribute("role") == "complementary"
    assert input_field.get_attribute("placeholder") == "Ask a question..."
    assert "Ask me about this story" in messages.text
    assert surface.query(QUICK_ACTIONS_ID).text == "Open a story to use quick actions"
    assert not panel.is_open and not panel.is_loading


def test_set_visibility_shows_toggle_and_marks_root(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    assert panel.set_visibility(True, AppView.DETAIL) is True

    assert surface.query(TOGGLE_ID).get_style("display") == "flex"
    assert surface.root_has_class(VISIBLE_MARKER_CLASS)
    assert panel.is_visible


def test_leaving_visibility_force_closes_panel(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    panel.set_visibility(True, AppView.DETAIL)
    panel.toggle()

    assert panel.set_visibility(True, AppView.LIST) is False

    assert not panel.is_open
    assert not surface.query(PANEL_ID).has_class("open")
    assert surface.query(TOGGLE_ID).get_style("display") == "none"
    assert not surface.root_has_class(VISIBLE_MARKER_CLASS)


@pytest.mark.parametrize("toggles", [1, 2, 3, 5])
def test_leaving_visibility_closes_panel_after_repeated_toggles(
    panel: AssistantPanel, surface: HeadlessSurface, toggles: int
) -> None:
    panel.set_visibility(True, AppView.DETAIL)
    for _ in range(toggles):
        panel.toggle()

    panel.set_visibility(False, AppView.DETAIL)
    panel.set_visibility(True, AppView.SEARCH)

    assert not panel.is_open
    assert not surface.query(PANEL_ID).has_class("open")


def test_toggle_updates_panel_and_button_state(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    assert panel.toggle() is True

    toggle = surface.query(TOGGLE_ID)
    assert surface.query(PANEL_ID).has_class("open")
    assert toggle.has_class("active")
    assert toggle.get_attribute("aria-expanded") == "true"
    assert toggle.get_attribute("aria-pressed") == "true"
    assert surface.active_element() is surface.query(INPUT_ID)

    assert panel.toggle() is False
    assert not surface.query(PANEL_ID).has_class("open")
    assert toggle.get_attribute("aria-expanded") == "false"


def test_toggle_button_click_opens_panel(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    surface.click(surface.query(TOGGLE_ID))

    assert panel.is_open


def test_spawn_without_running_loop_is_dropped(panel: AssistantPanel) -> None:
    async def _never() -> None:  # pragma: no cover - closed before running
        raise AssertionError("should not run")

    assert panel.spawn(_never()) is None


@pytest.mark.asyncio
async def test_first_open_initializes_capability_once(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    panel = _panel(client, surface)

    panel.toggle()
    panel.toggle()
    panel.toggle()
    await panel.drain()
    panel.toggle()
    panel.toggle()
    await panel.drain()

    assert bridge.commands.count(CMD_INIT) == 1
    assert client.is_initialized()


@pytest.mark.asyncio
async def test_send_appends_user_and_assistant_messages(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    bridge.responses[CMD_ASK] = "**Short** answer"
    await client.check()
    panel = _panel(client, surface)

    assert await panel.send_freeform("  What is this?  ") is True

    history = panel.history()
    assert [(m.role, m.content) for m in history] == [
        ("user", "What is this?"),
        ("assistant", "**Short** answer"),
    ]
    assert bridge.args_for(CMD_ASK) == {"prompt": "What is this?"}
    markup = surface.query(MESSAGES_ID).markup
    assert '<div class="assistant-message assistant-message-user">' in markup
    assert "<strong>Short</strong> answer" in markup


@pytest.mark.asyncio
async def test_request_initializes_capability_when_needed(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)

    await panel.send_freeform("first")
    await panel.send_freeform("second")

    assert bridge.commands == [CMD_CHECK, CMD_INIT, CMD_ASK, CMD_ASK]


@pytest.mark.asyncio
async def test_failed_initialization_is_not_retried_per_request(surface: HeadlessSurface) -> None:
    bridge = RecordingBridge(failures={CMD_INIT: RuntimeError("host busy")})
    client = CapabilityClient(bridge)
    await client.check()
    panel = _panel(client, surface)

    await panel.send_freeform("first")
    await panel.send_freeform("second")

    assert bridge.commands == [CMD_CHECK, CMD_INIT]
    assert [message.content for message in panel.history() if message.role == "assistant"] == [
        FALLBACK_REPLY,
        FALLBACK_REPLY,
    ]


@pytest.mark.asyncio
async def test_send_prefixes_bound_story_context(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    panel.set_context(make_story())

    await panel.send_freeform("Is this safe?")

    assert bridge.args_for(CMD_ASK) == {
        "prompt": '[Context: Story "Rust in the Linux kernel" (example.com)]\n\nIs this safe?'
    }


@pytest.mark.asyncio
async def test_send_omits_domain_for_text_posts(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    panel.set_context(make_story(title="Ask HN: Tools?", url=None))

    await panel.send_freeform("Ideas?")

    assert bridge.args_for(CMD_ASK) == {"prompt": '[Context: Story "Ask HN: Tools?"]\n\nIdeas?'}


@pytest.mark.asyncio
async def test_blank_messages_are_ignored(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)

    assert await panel.send_freeform("   ") is False
    assert panel.history() == []
    assert bridge.commands == [CMD_CHECK]


@pytest.mark.asyncio
async def test_user_content_is_escaped(client: CapabilityClient, surface: HeadlessSurface) -> None:
    await client.check()
    panel = _panel(client, surface)

    await panel.send_freeform("<img src=x onerror=alert(1)>")

    markup = surface.query(MESSAGES_ID).markup
    assert "<img" not in markup
    assert "&lt;img src=x onerror=alert(1)&gt;" in markup


@pytest.mark.asyncio
async def test_requests_are_single_flight(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    panel.set_context(make_story(), [make_comment()])
    bridge.gate = asyncio.Event()

    panel.spawn(panel.send_freeform("first"))
    await asyncio.sleep(0)

    assert panel.is_loading
    assert surface.query(INPUT_ID).disabled
    assert surface.query(SEND_ID).disabled
    assert "loading-dot" in surface.query(MESSAGES_ID).markup
    assert await panel.send_freeform("second") is False
    assert await panel.run_summarize() is False
    assert await panel.run_analyze_discussion() is False
    assert await panel.run_explain("term") is False
    assert await panel.run_draft_reply("draft", "bob", "body") is False

    bridge.gate.set()
    await panel.drain()

    assert not panel.is_loading
    assert not surface.query(INPUT_ID).disabled
    assert _roles(panel) == ["user", "assistant"]
    assert bridge.commands.count(CMD_ASK) == 1


@pytest.mark.asyncio
async def test_failed_request_appends_fallback_reply(surface: HeadlessSurface) -> None:
    bridge = RecordingBridge(failures={CMD_ASK: RuntimeError("boom")})
    client = CapabilityClient(bridge)
    await client.check()
    panel = _panel(client, surface)

    assert await panel.send_freeform("hello") is True

    assert panel.history()[-1].content == FALLBACK_REPLY
    assert not panel.is_loading


@pytest.mark.asyncio
async def test_unavailable_capability_answers_with_fallback(surface: HeadlessSurface) -> None:
    client = CapabilityClient()
    panel = _panel(client, surface)

    await panel.send_freeform("hello")

    assert [m.content for m in panel.history()] == ["hello", FALLBACK_REPLY]


def test_quick_actions_follow_bound_story(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    panel.set_context(make_story(), [make_comment()])
    assert _quick_action_labels(surface) == ["📝 Summarize", "💬 Analyze Discussion", "❓ Ask About This"]

    panel.set_context(make_story(id=5, url=None), [])
    assert _quick_action_labels(surface) == ["❓ Ask About This"]

    panel.clear_context()
    assert _quick_action_labels(surface) == []
    assert "Open a story" in surface.query(QUICK_ACTIONS_ID).text


@pytest.mark.asyncio
async def test_summarize_quick_action_sends_story_context(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    story = make_story()
    panel.set_context(story)
    container = surface.query(QUICK_ACTIONS_ID)
    summarize = next(child for child in container.children if child.dataset.get("action") == "summarize")

    surface.click(summarize)
    await panel.drain()

    assert bridge.args_for(CMD_SUMMARIZE) == {"context": build_story_context(story).to_payload()}
    assert panel.history()[0].content == 'Summarize: "Rust in the Linux kernel"'


@pytest.mark.asyncio
async def test_analyze_discussion_sends_comment_summaries(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    panel.set_context(make_story(), [make_comment(1, replies=2), make_comment(2, author="bob")])

    assert await panel.run_analyze_discussion() is True

    context = bridge.args_for(CMD_ANALYZE_DISCUSSION)["context"]
    assert [c["author"] for c in context["top_comments"]] == ["alice", "bob"]
    assert context["top_comments"][0]["reply_count"] == 2
    assert panel.history()[0].content == 'Analyze discussion: "Rust in the Linux kernel"'


@pytest.mark.asyncio
async def test_story_actions_need_a_story(panel: AssistantPanel) -> None:
    assert await panel.run_summarize() is False
    assert await panel.run_analyze_discussion() is False
    assert panel.history() == []


def test_ask_about_focuses_input(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    panel.set_context(make_story(url=None))
    container = surface.query(QUICK_ACTIONS_ID)

    surface.click(container.children[0])

    assert surface.active_element() is surface.query(INPUT_ID)


@pytest.mark.asyncio
async def test_explain_opens_panel_and_waits_for_initialization(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    panel.set_context(make_story())

    assert await panel.run_explain("borrow checker") is True

    assert panel.is_open
    assert bridge.commands == [CMD_CHECK, CMD_INIT, CMD_EXPLAIN]
    assert bridge.args_for(CMD_EXPLAIN) == {
        "text": "borrow checker",
        "context": 'From story: "Rust in the Linux kernel"',
    }
    assert panel.history()[0].content == 'Explain: "borrow checker"'


@pytest.mark.asyncio
async def test_explain_without_story_has_no_context(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)

    await panel.run_explain("monad")

    assert bridge.args_for(CMD_EXPLAIN)["context"] is None


@pytest.mark.asyncio
async def test_draft_reply_only_keeps_long_selections_as_draft(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)

    await panel.run_draft_reply("too short", "bob", "Original comment")
    short = bridge.args_for(CMD_DRAFT_REPLY)["context"]
    await panel.run_draft_reply("this is long enough", "bob", "Original comment")
    long = bridge.args_for(CMD_DRAFT_REPLY)["context"]

    assert short == {
        "parent_comment": "Original comment",
        "parent_author": "bob",
        "story_title": "this story",
        "user_draft": None,
    }
    assert long["user_draft"] == "this is long enough"
    assert panel.history()[0].content == "Help me reply to bob's comment"
    assert panel.is_open


@pytest.mark.asyncio
async def test_enter_in_input_sends_and_clears(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    input_field = surface.query(INPUT_ID)

    input_field.value = "line one"
    shifted = surface.press_key("Enter", target=input_field, shift=True)
    await panel.drain()
    assert not shifted.default_prevented
    assert panel.history() == []

    event = surface.press_key("Enter", target=input_field)
    await panel.drain()

    assert event.default_prevented
    assert input_field.value == ""
    assert [m.content for m in panel.history()] == ["line one", f"reply to {CMD_ASK}"]


@pytest.mark.asyncio
async def test_send_button_uses_input_text(
    client: CapabilityClient, surface: HeadlessSurface, bridge: RecordingBridge
) -> None:
    await client.check()
    panel = _panel(client, surface)
    surface.query(INPUT_ID).value = "from button"

    surface.click(surface.query(SEND_ID))
    await panel.drain()

    assert bridge.args_for(CMD_ASK) == {"prompt": "from button"}


def test_escape_in_input_closes_panel(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    panel.toggle()

    surface.press_key("Escape", target=surface.query(INPUT_ID))

    assert not panel.is_open


@pytest.mark.asyncio
async def test_transcript_survives_context_changes_by_default(
    client: CapabilityClient, surface: HeadlessSurface
) -> None:
    await client.check()
    panel = _panel(client, surface)
    panel.set_context(make_story())
    await panel.send_freeform("hello")

    panel.set_context(make_story(id=202, title="Other"))
    panel.clear_context()

    assert len(panel.history()) == 2


@pytest.mark.asyncio
async def test_transcript_clears_on_context_change_when_enabled(
    client: CapabilityClient, surface: HeadlessSurface
) -> None:
    await client.check()
    panel = _panel(client, surface, clear_transcript_on_context_change=True)
    panel.set_context(make_story())
    await panel.send_freeform("hello")

    panel.set_context(make_story(), [make_comment()])
    assert len(panel.history()) == 2

    panel.set_context(make_story(id=202, title="Other"))
    assert panel.history() == []
    assert "Ask me about this story" in surface.query(MESSAGES_ID).text

    await panel.send_freeform("again")
    panel.clear_context()
    assert panel.history() == []
    assert panel.context == (None, ())


def test_reading_mode_toggle_notifies_callback(client: CapabilityClient, surface: HeadlessSurface) -> None:
    changes: list[bool] = []
    panel = _panel(client, surface, on_reading_mode_change=changes.append)

    surface.click(surface.query(READABILITY_ID))

    assert panel.reading_mode is True
    assert surface.query(PANEL_ID).has_class(READING_MODE_CLASS)
    assert surface.query(READABILITY_ID).has_class("active")

    panel.set_reading_mode(False)
    assert changes == [True, False]
    assert not surface.query(PANEL_ID).has_class(READING_MODE_CLASS)


def test_reading_mode_applies_on_first_render(client: CapabilityClient, surface: HeadlessSurface) -> None:
    _panel(client, surface, reading_mode=True)

    assert surface.query(PANEL_ID).has_class(READING_MODE_CLASS)
    assert surface.query(READABILITY_ID).has_class("active")


def test_close_button_closes_panel(panel: AssistantPanel, surface: HeadlessSurface) -> None:
    panel.toggle()
    close_button = surface.query(PANEL_ID).find_descendant("assistant-close")

    surface.click(close_button)

    assert not panel.is_open
