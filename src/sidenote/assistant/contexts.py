"""Browsed item model and the context payloads sent to the assistant."""

from __future__ import annotations

import html
from dataclasses import asdict, dataclass, field
from html.parser import HTMLParser
from typing import Any, Iterable, Mapping, Optional, Sequence
from urllib.parse import urlsplit

__all__ = [
    "StoryItem",
    "CommentNode",
    "StoryContext",
    "CommentSummary",
    "DiscussionContext",
    "ReplyContext",
    "extract_domain",
    "strip_html",
    "build_story_context",
    "build_discussion_context",
]

DISCUSSION_COMMENT_LIMIT = 10
COMMENT_PREVIEW_CHARS = 200


@dataclass(slots=True)
class CommentNode:
    """A comment and whatever part of its reply tree has been loaded."""

    id: int
    author: Optional[str] = None
    text: Optional[str] = None
    children: list["CommentNode"] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CommentNode":
        children = [cls.from_payload(child) for child in payload.get("children") or () if isinstance(child, Mapping)]
        return cls(
            id=int(payload.get("id", 0)),
            author=payload.get("by", payload.get("author")),
            text=payload.get("text"),
            children=children,
        )


@dataclass(slots=True)
class StoryItem:
    """The story currently shown in the detail view."""

    id: int
    title: Optional[str] = None
    url: Optional[str] = None
    score: int = 0
    author: Optional[str] = None
    text: Optional[str] = None
    descendants: int = 0
    kids: tuple[int, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StoryItem":
        return cls(
            id=int(payload.get("id", 0)),
            title=payload.get("title"),
            url=payload.get("url") or None,
            score=int(payload.get("score") or 0),
            author=payload.get("by", payload.get("author")),
            text=payload.get("text"),
            descendants=int(payload.get("descendants") or 0),
            kids=tuple(int(kid) for kid in payload.get("kids") or ()),
        )


@dataclass(slots=True)
class StoryContext:
    title: str
    url: Optional[str]
    domain: Optional[str]
    score: int
    comment_count: int
    author: Optional[str]
    text: Optional[str]

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CommentSummary:
    author: str
    text_preview: str
    reply_count: int

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DiscussionContext:
    story_title: str
    comment_count: int
    top_comments: list[CommentSummary] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "story_title": self.story_title,
            "comment_count": self.comment_count,
            "top_comments": [comment.to_payload() for comment in self.top_comments],
        }


@dataclass(slots=True)
class ReplyContext:
    parent_comment: str
    parent_author: str
    story_title: str
    user_draft: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Return the hostname of ``url`` without a leading ``www.``."""

    if not url:
        return None
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname[4:] if hostname.startswith("www.") else hostname


class _TextCollector(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.parts: list[str] = []

    def handle_data(self, data: str) -> None:
        self.parts.append(data)


def strip_html(markup: Optional[str]) -> str:
    """Plaintext content of an HTML fragment such as a comment body."""

    if not markup:
        return ""
    collector = _TextCollector()
    collector.feed(markup)
    collector.close()
    return html.unescape("".join(collector.parts))


def build_story_context(item: StoryItem) -> StoryContext:
    return StoryContext(
        title=item.title or "",
        url=item.url,
        domain=extract_domain(item.url),
        score=item.score,
        comment_count=item.descendants,
        author=item.author,
        text=item.text,
    )


def build_discussion_context(
    item: StoryItem,
    comments: Sequence[CommentNode] | Iterable[CommentNode],
    *,
    limit: int = DISCUSSION_COMMENT_LIMIT,
    preview_chars: int = COMMENT_PREVIEW_CHARS,
) -> DiscussionContext:
    """Reduce the first ``limit`` top-level comments to short summaries."""

    summaries = [
        CommentSummary(
            author=comment.author or "unknown",
            text_preview=strip_html(comment.text)[:preview_chars],
            reply_count=len(comment.children),
        )
        for comment in list(comments)[:limit]
    ]
    return DiscussionContext(
        story_title=item.title or "",
        comment_count=item.descendants,
        top_comments=summaries,
    )
