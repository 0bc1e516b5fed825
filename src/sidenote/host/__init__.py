"""In-process host: the model-backed service and the bridge that exposes it."""

from .ai_client import AIClient, ClientSettings
from .bridge import LocalHostBridge
from .service import AssistantService

__all__ = ["AIClient", "AssistantService", "ClientSettings", "LocalHostBridge"]
