"""UI surfaces and the shell that mounts the assistant onto them."""

from importlib import import_module
from typing import Any

from . import surface

__all__ = ["reader", "shell", "surface"]

_LAZY_MODULES = frozenset({"reader", "shell", "qt_surface"})


def __getattr__(name: str) -> Any:
    # ``shell`` depends on ``sidenote.chat`` and ``qt_surface`` on PySide6.
    if name in _LAZY_MODULES:
        module = import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
