"""Assistant panel, selection menu and reply rendering."""

from .assistant_panel import AppView, AssistantPanel, assistant_visible
from .context_menu import SelectionContextMenu, compute_menu_position
from .markdown import render_markdown
from .message_model import ChatMessage, QuickAction

__all__ = [
    "AppView",
    "AssistantPanel",
    "ChatMessage",
    "QuickAction",
    "SelectionContextMenu",
    "assistant_visible",
    "compute_menu_position",
    "render_markdown",
]
