"""Application-facing entry points for the reading assistant."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..assistant.client import CapabilityClient
from ..assistant.contexts import CommentNode, StoryItem
from ..chat.assistant_panel import AppView, AssistantPanel
from ..chat.context_menu import SelectionContextMenu
from ..services.settings import Settings, SettingsStore
from ..utils.telemetry import TelemetryClient, telemetry_error_reporter
from .surface import SurfaceEvent, UISurface

__all__ = ["AssistantShell", "SHORTCUT_KEY"]

LOGGER = logging.getLogger(__name__)

SHORTCUT_KEY = "a"
_TEXT_ENTRY_TAGS = frozenset({"input", "textarea"})


class AssistantShell:
    """Owns the capability client, the panel and the selection menu.

    The host application drives it with story and zen-mode changes; nothing
    is drawn until :meth:`init_assistant` finds the capability available.
    """

    def __init__(
        self,
        client: CapabilityClient,
        surface: UISurface,
        *,
        settings: Optional[Settings] = None,
        settings_store: Optional[SettingsStore] = None,
        telemetry: Optional[TelemetryClient] = None,
    ) -> None:
        self._client = client
        self._surface = surface
        self._settings = settings or Settings()
        self._settings_store = settings_store
        self._telemetry = telemetry
        if telemetry is not None and telemetry.enabled:
            client.set_error_reporter(telemetry_error_reporter(telemetry))
        self._panel = AssistantPanel(
            client,
            surface,
            clear_transcript_on_context_change=self._settings.clear_transcript_on_context_change,
            reading_mode=self._settings.reading_mode,
            on_reading_mode_change=self._persist_reading_mode,
        )
        self._menu = SelectionContextMenu(self._panel, surface)
        self._zen_mode = False
        self._view: AppView | str = AppView.LIST
        self._initialized = False

    @property
    def client(self) -> CapabilityClient:
        return self._client

    @property
    def panel(self) -> AssistantPanel:
        return self._panel

    @property
    def menu(self) -> SelectionContextMenu:
        return self._menu

    @property
    def settings(self) -> Settings:
        return self._settings

    async def init_assistant(self) -> bool:
        """Probe the capability and mount the assistant when it is available."""

        if self._initialized:
            return self._client.is_available()
        status = await self._client.check()
        if not status.available:
            LOGGER.info("AI assistant not available: %s", status.message or "unknown reason")
            return False
        self._panel.render()
        self._panel.set_visibility(self._zen_mode, self._view)
        self._menu.attach()
        self._surface.listen("keydown", self.handle_global_key)
        self._initialized = True
        LOGGER.info("AI assistant ready")
        return True

    def set_story_context(self, item: StoryItem, comments: Iterable[CommentNode] = ()) -> None:
        self._panel.set_context(item, comments)

    def clear_story_context(self) -> None:
        self._panel.clear_context()

    def update_assistant_zen_mode(self, is_zen_mode: bool, current_view: AppView | str) -> bool:
        self._zen_mode = bool(is_zen_mode)
        self._view = current_view
        visible = self._panel.set_visibility(self._zen_mode, current_view)
        if not visible:
            self._menu.hide()
        return visible

    def toggle_assistant(self) -> bool:
        return self._panel.toggle()

    def close_assistant(self) -> None:
        self._panel.close()

    def is_assistant_open(self) -> bool:
        return self._panel.is_open

    def handle_global_key(self, event: SurfaceEvent) -> bool:
        """Toggle the panel on a bare ``a`` press while reading in zen mode."""

        if not self._initialized or event.key != SHORTCUT_KEY or event.has_command_modifier:
            return False
        if not self._zen_mode:
            return False
        for element in (self._surface.active_element(), event.target):
            if element is not None and getattr(element, "tag", "").lower() in _TEXT_ENTRY_TAGS:
                return False
        event.prevent_default()
        self._panel.toggle()
        return True

    async def shutdown(self) -> None:
        if self._initialized:
            self._surface.unlisten("keydown", self.handle_global_key)
            self._menu.detach()
            self._initialized = False
        await self._panel.drain()
        await self._client.shutdown()
        if self._telemetry is not None:
            self._telemetry.flush()

    def _persist_reading_mode(self, enabled: bool) -> None:
        self._settings.reading_mode = enabled
        if self._settings_store is None:
            return
        try:
            self._settings_store.update(reading_mode=enabled)
        except OSError as exc:
            LOGGER.warning("Unable to persist reading mode: %s", exc)
