"""Capability client and the context payloads it sends to the host."""

from .client import AssistantResponse, CapabilityClient, CapabilityStatus, ErrorReport, HostBridge
from .contexts import CommentNode, StoryItem, build_discussion_context, build_story_context

__all__ = [
    "AssistantResponse",
    "CapabilityClient",
    "CapabilityStatus",
    "CommentNode",
    "ErrorReport",
    "HostBridge",
    "StoryItem",
    "build_discussion_context",
    "build_story_context",
]
