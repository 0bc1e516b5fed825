"""Story detail layout shared by the Qt reader and headless sessions."""

from __future__ import annotations

from typing import Iterable, Optional

from ..assistant.contexts import CommentNode, StoryItem, extract_domain, strip_html
from .surface import SurfaceElement, UISurface

__all__ = ["STORY_DETAIL_ID", "render_story"]

STORY_DETAIL_ID = "story-detail"


def render_story(surface: UISurface, item: StoryItem, comments: Iterable[CommentNode] = ()) -> SurfaceElement:
    """Draw ``item`` and its comment tree, replacing any previous story."""

    container = surface.query(STORY_DETAIL_ID)
    if container is None:
        container = surface.create_element("div", element_id=STORY_DETAIL_ID, classes=("story-detail",))
        surface.append(container)
    else:
        container.clear_children()

    title = surface.create_element("h2", classes=("story-detail-title",))
    title.set_text(item.title or "(untitled)")
    container.append_child(title)

    meta = surface.create_element("p", classes=("story-detail-meta",))
    meta.set_text(_meta_line(item))
    container.append_child(meta)

    content = surface.create_element("div", classes=("story-detail-content",))
    if item.text:
        body = surface.create_element("p", classes=("story-detail-text",))
        body.set_text(strip_html(item.text))
        content.append_child(body)
    container.append_child(content)

    section = surface.create_element("div", classes=("comments-section",))
    for comment in comments:
        section.append_child(_render_comment(surface, comment))
    container.append_child(section)
    return container


def _meta_line(item: StoryItem) -> str:
    parts = [f"{item.score} points"]
    if item.author:
        parts.append(f"by {item.author}")
    domain: Optional[str] = extract_domain(item.url)
    if domain:
        parts.append(f"({domain})")
    parts.append(f"| {item.descendants} comments")
    return " ".join(parts)


def _render_comment(surface: UISurface, comment: CommentNode) -> SurfaceElement:
    node = surface.create_element("div", classes=("comment",))
    node.dataset["id"] = str(comment.id)
    author = surface.create_element("span", classes=("comment-author",))
    author.set_text(comment.author or "")
    text = surface.create_element("p", classes=("comment-text",))
    text.set_text(strip_html(comment.text))
    node.append_child(author)
    node.append_child(text)
    if comment.children:
        replies = surface.create_element("div", classes=("comment-children",))
        for child in comment.children:
            replies.append_child(_render_comment(surface, child))
        node.append_child(replies)
    return node
