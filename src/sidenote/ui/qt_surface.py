"""PySide6 implementation of :class:`~sidenote.ui.surface.UISurface`.

Elements are plain widgets: ``button`` becomes a ``QPushButton``, ``input`` a
``QLineEdit``, headings and paragraphs selectable ``QLabel`` objects and
everything else a ``QFrame`` with a box layout. The element id is the
widget's object name and the class list is mirrored into the ``class``
dynamic property so style sheets can target it.

Document-level mouse and key events are read by an application event filter
on the reader window, so every press is seen once, before any widget
handles it. Returning ``True`` from the filter is how ``prevent_default``
reaches Qt.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import MutableMapping
from typing import Any, Iterator, Optional, Sequence

from PySide6.QtCore import QEvent, QObject, QPoint, Qt
from PySide6.QtGui import QCursor, QWindow
from PySide6.QtWidgets import (
    QAbstractButton,
    QApplication,
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPlainTextEdit,
    QPushButton,
    QTextBrowser,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from ..assistant.contexts import strip_html
from .surface import ElementNode, EventHandler, Rect, Selection, SurfaceElement, SurfaceEvent, propagate

__all__ = ["DEFAULT_STYLESHEET", "QtElement", "QtSurface"]

LOGGER = logging.getLogger(__name__)

_LABEL_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6", "p", "span", "label"})
_ROW_CLASSES = frozenset({"assistant-header", "assistant-input-container", "assistant-quick-actions"})
# Base class -> state class that must be present for the widget to show.
_STATE_CLASSES = {"assistant-panel": "open", "assistant-context-menu": "visible"}
_KEY_NAMES = {
    Qt.Key.Key_Return: "Enter",
    Qt.Key.Key_Enter: "Enter",
    Qt.Key.Key_Escape: "Escape",
    Qt.Key.Key_Tab: "Tab",
    Qt.Key.Key_Backspace: "Backspace",
}

DEFAULT_STYLESHEET = """
#assistant-panel { border-left: 1px solid palette(mid); min-width: 320px; max-width: 420px; }
#assistant-context-menu { background: palette(base); border: 1px solid palette(mid); border-radius: 6px; }
#assistant-toggle { border-radius: 14px; min-width: 28px; min-height: 28px; }
"""


class _Dataset(MutableMapping[str, str]):
    """``data-*`` attributes mirrored into widget dynamic properties."""

    def __init__(self, widget: QWidget) -> None:
        self._widget = widget
        self._values: dict[str, str] = {}

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._values[key] = str(value)
        self._widget.setProperty(f"data-{key}", str(value))

    def __delitem__(self, key: str) -> None:
        del self._values[key]
        self._widget.setProperty(f"data-{key}", None)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)


class QtElement(ElementNode):
    def __init__(
        self,
        surface: "QtSurface",
        tag: str,
        widget: QWidget,
        *,
        element_id: Optional[str] = None,
        classes: Sequence[str] = (),
    ) -> None:
        super().__init__(tag, element_id=element_id, classes=classes)
        self._surface = surface
        self.widget = widget
        self._dataset = _Dataset(widget)
        self._markup: Optional[str] = None
        self._label: Optional[QLabel] = None
        self._browser: Optional[QTextBrowser] = None
        self._clicks_connected = False
        if element_id:
            widget.setObjectName(element_id)
        self._classes_changed()

    @property
    def dataset(self) -> _Dataset:
        return self._dataset

    @property
    def text(self) -> str:
        widget = self.widget
        if self._markup is not None:
            own = strip_html(self._markup)
        elif isinstance(widget, (QLabel, QAbstractButton, QLineEdit)):
            own = widget.text()
        elif isinstance(widget, (QTextEdit, QPlainTextEdit)):
            own = widget.toPlainText()
        elif self._label is not None:
            own = self._label.text()
        else:
            own = ""
        return own + "".join(child.text for child in self._children)

    @property
    def value(self) -> str:
        if isinstance(self.widget, QLineEdit):
            return self.widget.text()
        if isinstance(self.widget, QPlainTextEdit):
            return self.widget.toPlainText()
        return ""

    @value.setter
    def value(self, value: str) -> None:
        if isinstance(self.widget, QLineEdit):
            self.widget.setText(value)
        elif isinstance(self.widget, QPlainTextEdit):
            self.widget.setPlainText(value)

    def _classes_changed(self) -> None:
        self.widget.setProperty("class", " ".join(self._classes))
        style = self.widget.style()
        style.unpolish(self.widget)
        style.polish(self.widget)
        self._sync_visibility()

    def _sync_visibility(self) -> None:
        visible = self._style.get("display") != "none"
        for base, state in _STATE_CLASSES.items():
            if base in self._classes:
                visible = visible and state in self._classes
        if visible and self.widget.isWindow():
            # Detached widgets are top-level windows until appended.
            return
        self.widget.setVisible(visible)

    def set_attribute(self, name: str, value: str) -> None:
        value = str(value)
        self._attributes[name] = value
        if name == "aria-label":
            self.widget.setAccessibleName(value)
        elif name == "title":
            self.widget.setToolTip(value)
        elif name == "placeholder" and hasattr(self.widget, "setPlaceholderText"):
            self.widget.setPlaceholderText(value)
        else:
            self.widget.setProperty(name, value)

    def set_style(self, name: str, value: str) -> None:
        self._style[name] = str(value)
        if name == "display":
            self._sync_visibility()
        elif name in ("left", "top"):
            self._place()

    def _place(self) -> None:
        left = _pixels(self._style.get("left"))
        top = _pixels(self._style.get("top"))
        parent = self.widget.parentWidget()
        layout = parent.layout() if parent is not None else None
        if layout is not None and layout.indexOf(self.widget) >= 0:
            layout.removeWidget(self.widget)
        self.widget.adjustSize()
        self.widget.move(int(left), int(top))
        self.widget.raise_()

    def set_text(self, text: str) -> None:
        widget = self.widget
        self._markup = None
        if isinstance(widget, (QLabel, QAbstractButton, QLineEdit)):
            widget.setText(text)
        elif isinstance(widget, (QTextEdit, QPlainTextEdit)):
            widget.setPlainText(text)
        else:
            self._content_label().setText(text)

    def set_html(self, markup: str) -> None:
        self._destroy_children()
        self._markup = markup
        widget = self.widget
        if isinstance(widget, QLabel):
            widget.setTextFormat(Qt.TextFormat.RichText)
            widget.setText(markup)
        elif isinstance(widget, QTextEdit):
            widget.setHtml(markup)
        else:
            browser = self._content_browser()
            browser.setHtml(markup)
            scrollbar = browser.verticalScrollBar()
            scrollbar.setValue(scrollbar.maximum())

    def set_disabled(self, disabled: bool) -> None:
        self.widget.setEnabled(not disabled)

    def focus(self) -> None:
        self.widget.setFocus(Qt.FocusReason.OtherFocusReason)

    def append_child(self, child: SurfaceElement) -> None:
        node = _require_qt(child)
        self._adopt(node)
        node.widget.setParent(self.widget)
        layout = self.widget.layout()
        if layout is not None and "left" not in node._style:
            layout.addWidget(node.widget)
        node._sync_visibility()

    def clear_children(self) -> None:
        self._destroy_children()
        self._markup = None
        if self._browser is not None:
            self._browser.clear()

    def _destroy_children(self) -> None:
        for child in self._release_children():
            self._surface._forget(child)
            child.widget.setParent(None)
            child.widget.deleteLater()

    def add_listener(self, event_type: str, handler: EventHandler) -> None:
        super().add_listener(event_type, handler)
        if event_type == "click" and isinstance(self.widget, QAbstractButton) and not self._clicks_connected:
            self.widget.clicked.connect(lambda *_args: self._surface.emit("click", self))
            self._clicks_connected = True

    def selection(self) -> Optional[Selection]:
        """Selected text inside this element's own widget, if any."""

        widget = self.widget
        if isinstance(widget, QTextEdit):
            cursor = widget.textCursor()
            if not cursor.hasSelection():
                return None
            area = widget.cursorRect(cursor)
            origin = widget.viewport().mapTo(self._surface.window, area.topLeft())
            return Selection(
                text=cursor.selectedText().replace("\u2029", "\n"),
                anchor=self,
                rect=Rect(origin.x(), origin.y(), area.width(), area.height()),
            )
        label = widget if isinstance(widget, QLabel) else self._label
        if label is None or not label.hasSelectedText():
            return None
        origin = label.mapTo(self._surface.window, QPoint(0, 0))
        return Selection(
            text=label.selectedText(),
            anchor=self,
            rect=Rect(origin.x(), origin.y(), label.width(), label.height()),
        )

    def _content_label(self) -> QLabel:
        if self._label is None:
            label = QLabel(self.widget)
            label.setWordWrap(True)
            label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
            layout = self.widget.layout()
            if layout is not None:
                layout.insertWidget(0, label)
            self._label = label
        return self._label

    def _content_browser(self) -> QTextBrowser:
        if self._browser is None:
            browser = QTextBrowser(self.widget)
            browser.setOpenExternalLinks(True)
            layout = self.widget.layout()
            if layout is not None:
                layout.addWidget(browser, 1)
            self._browser = browser
        return self._browser


class _DocumentEventFilter(QObject):
    """Translates window-level Qt input events into surface events."""

    def __init__(self, surface: "QtSurface") -> None:
        super().__init__()
        self._surface = surface

    def eventFilter(self, obj: Any, event: Any) -> bool:  # type: ignore[override]
        if not isinstance(obj, QWindow) or obj is not self._surface.window.windowHandle():
            return False
        event_type = event.type()
        if event_type == QEvent.Type.MouseButtonPress:
            surface_event = self._surface.emit("mousedown", self._surface.element_at(QCursor.pos()))
        elif event_type == QEvent.Type.MouseButtonRelease:
            surface_event = self._surface.emit("mouseup", self._surface.element_at(QCursor.pos()))
        elif event_type == QEvent.Type.KeyPress:
            modifiers = event.modifiers()
            surface_event = self._surface.emit(
                "keydown",
                self._surface.active_element(),
                key=_KEY_NAMES.get(event.key()) or event.text(),
                shift=bool(modifiers & Qt.KeyboardModifier.ShiftModifier),
                ctrl=bool(modifiers & Qt.KeyboardModifier.ControlModifier),
                meta=bool(modifiers & Qt.KeyboardModifier.MetaModifier),
                alt=bool(modifiers & Qt.KeyboardModifier.AltModifier),
            )
        else:
            return False
        return surface_event.default_prevented


class QtSurface:
    """Hosts assistant elements inside a reader window."""

    def __init__(self, window: Optional[QWidget] = None, *, app: Optional[QApplication] = None) -> None:
        self._app = app or QApplication.instance()
        if self._app is None:
            raise RuntimeError("QtSurface requires a running QApplication")
        self.window = window or QWidget()
        if self.window.layout() is None:
            QHBoxLayout(self.window)
        self.body = QtElement(self, "body", self.window)
        self._by_widget: dict[QWidget, QtElement] = {self.window: self.body}
        self._listeners: defaultdict[str, list[EventHandler]] = defaultdict(list)
        self._root_classes: set[str] = set()
        self._filter = _DocumentEventFilter(self)
        self._app.installEventFilter(self._filter)

    def close(self) -> None:
        self._app.removeEventFilter(self._filter)

    # UISurface -----------------------------------------------------------
    def query(self, element_id: str) -> Optional[QtElement]:
        for node in self.body.iter_descendants():
            if node.id == element_id:
                return node
        return None

    def create_element(
        self, tag: str, *, element_id: Optional[str] = None, classes: Sequence[str] = ()
    ) -> QtElement:
        element = QtElement(self, tag, _make_widget(tag, classes), element_id=element_id, classes=classes)
        self._by_widget[element.widget] = element
        return element

    def append(self, element: SurfaceElement) -> None:
        self.body.append_child(element)

    def listen(self, event_type: str, handler: EventHandler) -> None:
        self._listeners[event_type].append(handler)

    def unlisten(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def get_selection(self) -> Optional[Selection]:
        for node in self.body.iter_descendants():
            selection = node.selection()
            if selection is not None:
                return selection
        return None

    def viewport_size(self) -> tuple[float, float]:
        return float(self.window.width()), float(self.window.height())

    def set_root_class(self, name: str, enabled: bool) -> None:
        if enabled:
            self._root_classes.add(name)
        else:
            self._root_classes.discard(name)
        self.window.setProperty("class", " ".join(sorted(self._root_classes)))

    def root_has_class(self, name: str) -> bool:
        return name in self._root_classes

    def active_element(self) -> Optional[QtElement]:
        return self.element_for(QApplication.focusWidget())

    # Qt plumbing ---------------------------------------------------------
    def element_for(self, widget: Optional[QWidget]) -> Optional[QtElement]:
        while widget is not None:
            element = self._by_widget.get(widget)
            if element is not None:
                return element
            widget = widget.parentWidget()
        return None

    def element_at(self, global_pos: QPoint) -> Optional[QtElement]:
        return self.element_for(QApplication.widgetAt(global_pos))

    def emit(self, event_type: str, target: Optional[QtElement], **fields: Any) -> SurfaceEvent:
        event = SurfaceEvent(type=event_type, target=target, **fields)
        return propagate(event, self._listeners.get(event_type, ()))

    def _forget(self, element: QtElement) -> None:
        self._by_widget.pop(element.widget, None)
        for node in element.iter_descendants():
            self._by_widget.pop(node.widget, None)


def _make_widget(tag: str, classes: Sequence[str]) -> QWidget:
    if tag == "button":
        return QPushButton()
    if tag == "input":
        return QLineEdit()
    if tag == "textarea":
        return QPlainTextEdit()
    if tag in _LABEL_TAGS:
        label = QLabel()
        label.setWordWrap(True)
        label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        return label
    frame = QFrame()
    layout = QHBoxLayout(frame) if _ROW_CLASSES.intersection(classes) else QVBoxLayout(frame)
    layout.setContentsMargins(4, 4, 4, 4)
    return frame


def _pixels(value: Optional[str]) -> float:
    if not value:
        return 0.0
    return float(value.removesuffix("px"))


def _require_qt(element: Any) -> QtElement:
    if not isinstance(element, QtElement):
        raise TypeError(f"QtSurface cannot adopt {type(element).__name__}")
    return element
