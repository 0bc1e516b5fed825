"""UI surface abstraction consumed by the assistant panel and context menu.

The controllers never touch a toolkit directly. They see a :class:`UISurface`
(lookup by id, element creation, document-level listeners, the current text
selection and the viewport size) and the :class:`SurfaceElement` handles it
returns. :class:`HeadlessSurface` is a complete in-memory implementation
used by the CLI and the test-suite; ``sidenote.ui.qt_surface`` adapts the
same contract to PySide6 widgets.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Iterator, MutableMapping, Optional, Protocol, Sequence

from ..assistant.contexts import strip_html

__all__ = [
    "ElementNode",
    "EventHandler",
    "HeadlessElement",
    "HeadlessSurface",
    "Rect",
    "Selection",
    "SurfaceElement",
    "SurfaceEvent",
    "UISurface",
    "propagate",
]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Rect:
    left: float
    top: float
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass(slots=True)
class SurfaceEvent:
    """Pointer or keyboard event delivered by a surface."""

    type: str
    target: Any = None
    key: Optional[str] = None
    shift: bool = False
    ctrl: bool = False
    meta: bool = False
    alt: bool = False
    default_prevented: bool = False
    propagation_stopped: bool = False

    @property
    def has_command_modifier(self) -> bool:
        return self.ctrl or self.meta or self.alt

    def prevent_default(self) -> None:
        self.default_prevented = True

    def stop_propagation(self) -> None:
        self.propagation_stopped = True


EventHandler = Callable[[SurfaceEvent], None]


class SurfaceElement(Protocol):
    """Handle to one element of the host document."""

    @property
    def id(self) -> Optional[str]: ...

    @property
    def tag(self) -> str: ...

    @property
    def parent(self) -> Optional["SurfaceElement"]: ...

    @property
    def dataset(self) -> MutableMapping[str, str]: ...

    @property
    def text(self) -> str: ...

    @property
    def value(self) -> str: ...

    @value.setter
    def value(self, value: str) -> None: ...

    def has_class(self, name: str) -> bool: ...

    def toggle_class(self, name: str, enabled: Optional[bool] = None) -> bool: ...

    def set_attribute(self, name: str, value: str) -> None: ...

    def get_attribute(self, name: str) -> Optional[str]: ...

    def set_style(self, name: str, value: str) -> None: ...

    def get_style(self, name: str) -> Optional[str]: ...

    def set_text(self, text: str) -> None: ...

    def set_html(self, markup: str) -> None: ...

    def set_disabled(self, disabled: bool) -> None: ...

    def focus(self) -> None: ...

    def append_child(self, child: "SurfaceElement") -> None: ...

    def clear_children(self) -> None: ...

    def add_listener(self, event_type: str, handler: EventHandler) -> None: ...

    def contains(self, other: Any) -> bool: ...

    def closest(self, *class_names: str) -> Optional["SurfaceElement"]: ...

    def find_descendant(self, class_name: str) -> Optional["SurfaceElement"]: ...


@dataclass(slots=True)
class Selection:
    """Current text selection: its text, anchoring element and bounding box."""

    text: str
    anchor: Optional[SurfaceElement] = None
    rect: Optional[Rect] = None


class UISurface(Protocol):
    def query(self, element_id: str) -> Optional[SurfaceElement]: ...

    def create_element(
        self, tag: str, *, element_id: Optional[str] = None, classes: Sequence[str] = ()
    ) -> SurfaceElement: ...

    def append(self, element: SurfaceElement) -> None: ...

    def listen(self, event_type: str, handler: EventHandler) -> None: ...

    def unlisten(self, event_type: str, handler: EventHandler) -> None: ...

    def get_selection(self) -> Optional[Selection]: ...

    def viewport_size(self) -> tuple[float, float]: ...

    def set_root_class(self, name: str, enabled: bool) -> None: ...

    def root_has_class(self, name: str) -> bool: ...

    def active_element(self) -> Optional[SurfaceElement]: ...


class ElementNode:
    """Class list, parent/child links and listeners shared by concrete elements."""

    def __init__(self, tag: str, *, element_id: Optional[str] = None, classes: Sequence[str] = ()) -> None:
        self._tag = tag
        self._id = element_id
        self._classes: list[str] = [name for name in classes if name]
        self._attributes: dict[str, str] = {}
        self._style: dict[str, str] = {}
        self._listeners: defaultdict[str, list[EventHandler]] = defaultdict(list)
        self._children: list[Any] = []
        self._parent: Optional[Any] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tag={self._tag!r}, id={self._id!r}, classes={self._classes!r})"

    @property
    def id(self) -> Optional[str]:
        return self._id

    @property
    def tag(self) -> str:
        return self._tag

    @property
    def parent(self) -> Optional[Any]:
        return self._parent

    @property
    def children(self) -> tuple[Any, ...]:
        return tuple(self._children)

    @property
    def classes(self) -> tuple[str, ...]:
        return tuple(self._classes)

    def has_class(self, name: str) -> bool:
        return name in self._classes

    def toggle_class(self, name: str, enabled: Optional[bool] = None) -> bool:
        state = (name not in self._classes) if enabled is None else bool(enabled)
        if state and name not in self._classes:
            self._classes.append(name)
            self._classes_changed()
        elif not state and name in self._classes:
            self._classes.remove(name)
            self._classes_changed()
        return state

    def _classes_changed(self) -> None:
        pass

    def get_attribute(self, name: str) -> Optional[str]:
        return self._attributes.get(name)

    def get_style(self, name: str) -> Optional[str]:
        return self._style.get(name)

    def add_listener(self, event_type: str, handler: EventHandler) -> None:
        self._listeners[event_type].append(handler)

    def contains(self, other: Any) -> bool:
        node = other if isinstance(other, ElementNode) else None
        while node is not None:
            if node is self:
                return True
            node = node._parent
        return False

    def closest(self, *class_names: str) -> Optional[Any]:
        node: Optional[ElementNode] = self
        while node is not None:
            if any(node.has_class(name) for name in class_names):
                return node
            node = node._parent
        return None

    def find_descendant(self, class_name: str) -> Optional[Any]:
        for node in self.iter_descendants():
            if node.has_class(class_name):
                return node
        return None

    def iter_descendants(self) -> Iterator[Any]:
        for child in self._children:
            yield child
            yield from child.iter_descendants()

    def _adopt(self, node: "ElementNode") -> None:
        if node._parent is not None:
            node._parent._children.remove(node)
        node._parent = self
        self._children.append(node)

    def _release_children(self) -> list[Any]:
        released = list(self._children)
        for child in released:
            child._parent = None
        self._children.clear()
        return released

    def _fire(self, event: SurfaceEvent) -> None:
        for handler in list(self._listeners.get(event.type, ())):
            handler(event)


class HeadlessElement(ElementNode):
    """In-memory element with DOM-like classes, attributes and bubbling."""

    def __init__(
        self,
        surface: "HeadlessSurface",
        tag: str,
        *,
        element_id: Optional[str] = None,
        classes: Sequence[str] = (),
    ) -> None:
        super().__init__(tag, element_id=element_id, classes=classes)
        self._surface = surface
        self._dataset: dict[str, str] = {}
        self._text = ""
        self.markup: Optional[str] = None
        self._value = ""
        self.disabled = False

    @property
    def dataset(self) -> dict[str, str]:
        return self._dataset

    @property
    def text(self) -> str:
        if self.markup is not None:
            return strip_html(self.markup)
        return self._text + "".join(child.text for child in self._children)

    @property
    def value(self) -> str:
        return self._value

    @value.setter
    def value(self, value: str) -> None:
        self._value = value

    def set_attribute(self, name: str, value: str) -> None:
        self._attributes[name] = str(value)

    def set_style(self, name: str, value: str) -> None:
        self._style[name] = str(value)

    def set_text(self, text: str) -> None:
        self._text = text
        self.markup = None

    def set_html(self, markup: str) -> None:
        self._release_children()
        self.markup = markup

    def set_disabled(self, disabled: bool) -> None:
        self.disabled = bool(disabled)

    def focus(self) -> None:
        self._surface._active = self

    def append_child(self, child: SurfaceElement) -> None:
        self._adopt(_require_headless(child))

    def clear_children(self) -> None:
        self._release_children()
        self.markup = None


class HeadlessSurface:
    """Toolkit-free :class:`UISurface` backed by :class:`HeadlessElement` trees."""

    def __init__(self, *, viewport: tuple[float, float] = (1280.0, 800.0)) -> None:
        self.body = HeadlessElement(self, "body")
        self._root_classes: set[str] = set()
        self._listeners: defaultdict[str, list[EventHandler]] = defaultdict(list)
        self._selection: Optional[Selection] = None
        self._viewport = viewport
        self._active: Optional[HeadlessElement] = None

    # UISurface -----------------------------------------------------------
    def query(self, element_id: str) -> Optional[HeadlessElement]:
        for node in self.body.iter_descendants():
            if node.id == element_id:
                return node
        return None

    def create_element(
        self, tag: str, *, element_id: Optional[str] = None, classes: Sequence[str] = ()
    ) -> HeadlessElement:
        return HeadlessElement(self, tag, element_id=element_id, classes=classes)

    def append(self, element: SurfaceElement) -> None:
        self.body.append_child(element)

    def listen(self, event_type: str, handler: EventHandler) -> None:
        self._listeners[event_type].append(handler)

    def unlisten(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def get_selection(self) -> Optional[Selection]:
        return self._selection

    def viewport_size(self) -> tuple[float, float]:
        return self._viewport

    def set_root_class(self, name: str, enabled: bool) -> None:
        if enabled:
            self._root_classes.add(name)
        else:
            self._root_classes.discard(name)

    def root_has_class(self, name: str) -> bool:
        return name in self._root_classes

    def active_element(self) -> Optional[HeadlessElement]:
        return self._active

    # Driving helpers -----------------------------------------------------
    def set_viewport(self, width: float, height: float) -> None:
        self._viewport = (width, height)

    def select(self, text: str, *, anchor: Optional[HeadlessElement] = None, rect: Optional[Rect] = None) -> None:
        self._selection = Selection(text=text, anchor=anchor, rect=rect)

    def clear_selection(self) -> None:
        self._selection = None

    def dispatch(self, event_type: str, target: Optional[HeadlessElement] = None, **fields: Any) -> SurfaceEvent:
        """Deliver an event to ``target``, its ancestors, then document listeners."""

        event = SurfaceEvent(type=event_type, target=target, **fields)
        return propagate(event, self._listeners.get(event_type, ()))

    def click(self, element: HeadlessElement) -> SurfaceEvent:
        return self.dispatch("click", element)

    def press_key(self, key: str, *, target: Optional[HeadlessElement] = None, **modifiers: bool) -> SurfaceEvent:
        return self.dispatch("keydown", target or self._active, key=key, **modifiers)


def _require_headless(element: Any) -> HeadlessElement:
    if not isinstance(element, HeadlessElement):
        raise TypeError(f"HeadlessSurface cannot adopt {type(element).__name__}")
    return element


def propagate(event: SurfaceEvent, document_handlers: Sequence[EventHandler] = ()) -> SurfaceEvent:
    """Run element listeners from ``event.target`` upwards, then document handlers."""

    node = event.target if isinstance(event.target, ElementNode) else None
    while node is not None and not event.propagation_stopped:
        node._fire(event)
        node = node.parent
    if not event.propagation_stopped:
        for handler in list(document_handlers):
            handler(event)
    return event
