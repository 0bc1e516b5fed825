"""Floating menu offered over a text selection in the reading surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional

from ..ui.surface import Rect, SurfaceElement, SurfaceEvent, UISurface
from .assistant_panel import VISIBLE_MARKER_CLASS, AssistantPanel

__all__ = [
    "CONTEXT_MENU_HEIGHT",
    "CONTEXT_MENU_WIDTH",
    "MenuPosition",
    "SelectionContextMenu",
    "SelectionMenuState",
    "compute_menu_position",
]

LOGGER = logging.getLogger(__name__)

CONTEXT_MENU_WIDTH = 160
CONTEXT_MENU_HEIGHT = 80
VIEWPORT_MARGIN = 8
MIN_SELECTION_CHARS = 3
COMMENT_TEXT_LIMIT = 500

MENU_ID = "assistant-context-menu"
EXPLAIN_ACTION = "explain"
DRAFT_REPLY_ACTION = "draft-reply"
COMMENT_REGION_CLASSES = ("comment-text", "comment-body")
ARTICLE_REGION_CLASSES = ("article-content", "story-detail-text", "story-detail-content")

Region = Literal["comment", "article"]
Placement = Literal["above", "below"]


@dataclass(frozen=True, slots=True)
class MenuPosition:
    left: float
    top: float
    placement: Placement = "above"


def compute_menu_position(
    rect: Rect,
    menu_width: float,
    menu_height: float,
    viewport_width: float,
    viewport_height: float,
    margin: float = VIEWPORT_MARGIN,
) -> MenuPosition:
    """Center the menu above ``rect`` and keep it inside the viewport.

    Horizontally the menu is clamped to ``[margin, viewport_width - menu_width
    - margin]``; on a viewport narrower than the menu the left bound wins. When
    there is no room above, the menu flips below the selection.
    """

    left = rect.left + rect.width / 2 - menu_width / 2
    left = max(margin, min(left, viewport_width - menu_width - margin))
    top = rect.top - menu_height - margin
    if top >= margin:
        return MenuPosition(left, top, "above")
    return MenuPosition(left, rect.bottom + margin, "below")


@dataclass(slots=True)
class SelectionMenuState:
    selected_text: str = ""
    region: Optional[Region] = None
    comment_id: Optional[str] = None
    comment_author: Optional[str] = None
    comment_text: Optional[str] = None
    rect: Optional[Rect] = None
    position: Optional[MenuPosition] = None
    visible: bool = False


class SelectionContextMenu:
    """Offers "Explain This" everywhere and "Draft Reply" inside comments."""

    def __init__(
        self,
        panel: AssistantPanel,
        surface: UISurface,
        *,
        eligibility_class: str = VISIBLE_MARKER_CLASS,
    ) -> None:
        self._panel = panel
        self._surface = surface
        self._eligibility_class = eligibility_class
        self._state = SelectionMenuState()
        self._menu: Optional[SurfaceElement] = None
        self._draft_button: Optional[SurfaceElement] = None
        self._attached = False

    @property
    def state(self) -> SelectionMenuState:
        return self._state

    @property
    def is_visible(self) -> bool:
        return self._state.visible

    @property
    def element(self) -> Optional[SurfaceElement]:
        return self._menu

    def attach(self) -> None:
        if self._attached:
            return
        self._render()
        self._surface.listen("mouseup", self.handle_selection)
        self._surface.listen("mousedown", self.handle_pointer_down)
        self._surface.listen("keydown", self.handle_key)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._surface.unlisten("mouseup", self.handle_selection)
        self._surface.unlisten("mousedown", self.handle_pointer_down)
        self._surface.unlisten("keydown", self.handle_key)
        self._attached = False
        self.hide()

    def _render(self) -> None:
        existing = self._surface.query(MENU_ID)
        if existing is not None:
            self._menu = existing
            return
        menu = self._surface.create_element("div", element_id=MENU_ID, classes=("assistant-context-menu",))
        menu.set_attribute("role", "menu")
        explain = self._menu_item(EXPLAIN_ACTION, "Explain This")
        draft = self._menu_item(DRAFT_REPLY_ACTION, "Draft Reply")
        draft.set_style("display", "none")
        menu.append_child(explain)
        menu.append_child(draft)
        self._surface.append(menu)
        self._menu = menu
        self._draft_button = draft

    def _menu_item(self, action: str, label: str) -> SurfaceElement:
        button = self._surface.create_element("button", classes=("context-menu-item",))
        button.set_attribute("role", "menuitem")
        button.dataset["action"] = action
        button.set_text(label)
        button.add_listener("click", lambda event, key=action: self._handle_item_click(event, key))
        return button

    def _handle_item_click(self, event: SurfaceEvent, action: str) -> None:
        event.prevent_default()
        event.stop_propagation()
        self.hide()
        self._panel.spawn(self.dispatch(action))

    # ------------------------------------------------------------------
    # Document events
    # ------------------------------------------------------------------
    def handle_selection(self, event: Optional[SurfaceEvent] = None) -> bool:
        """Show the menu for the current selection if it qualifies."""

        if self._menu is None or not self._surface.root_has_class(self._eligibility_class):
            return False
        selection = self._surface.get_selection()
        if selection is None:
            return False
        text = (selection.text or "").strip()
        if len(text) < MIN_SELECTION_CHARS or selection.anchor is None:
            return False
        anchor = selection.anchor
        region: Optional[Region] = None
        if anchor.closest(*COMMENT_REGION_CLASSES) is not None:
            region = "comment"
        elif anchor.closest(*ARTICLE_REGION_CLASSES) is not None:
            region = "article"
        if region is None or selection.rect is None:
            return False

        state = SelectionMenuState(selected_text=text, region=region, rect=selection.rect)
        if region == "comment":
            comment = anchor.closest("comment")
            if comment is not None and comment.dataset.get("id"):
                state.comment_id = comment.dataset["id"]
                author = comment.find_descendant("comment-author")
                state.comment_author = (author.text if author is not None else "") or "unknown"
                body = comment.find_descendant("comment-text")
                state.comment_text = (body.text if body is not None else "")[:COMMENT_TEXT_LIMIT]

        viewport_width, viewport_height = self._surface.viewport_size()
        state.position = compute_menu_position(
            selection.rect, CONTEXT_MENU_WIDTH, CONTEXT_MENU_HEIGHT, viewport_width, viewport_height
        )
        state.visible = True
        self._state = state

        if self._draft_button is not None:
            self._draft_button.set_style("display", "flex" if region == "comment" else "none")
        self._menu.set_style("left", f"{state.position.left:g}px")
        self._menu.set_style("top", f"{state.position.top:g}px")
        self._menu.toggle_class("visible", True)
        return True

    def hide(self) -> None:
        self._state.visible = False
        if self._menu is not None:
            self._menu.toggle_class("visible", False)

    def handle_pointer_down(self, event: SurfaceEvent) -> None:
        if self._menu is not None and self._menu.contains(event.target):
            return
        self.hide()

    def handle_key(self, event: SurfaceEvent) -> None:
        if event.key == "Escape":
            self.hide()

    async def dispatch(self, action: str) -> bool:
        """Run a menu action against the remembered selection."""

        state = self._state
        self.hide()
        if action == EXPLAIN_ACTION:
            return await self._panel.run_explain(state.selected_text)
        if action == DRAFT_REPLY_ACTION:
            return await self._panel.run_draft_reply(
                state.selected_text,
                state.comment_author or "unknown",
                state.comment_text or "",
            )
        LOGGER.debug("Ignoring unknown context menu action %s", action)
        return False
