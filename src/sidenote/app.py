"""Command-line entry point: capability checks, headless asks and the Qt reader."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, cast, get_args, get_origin, get_type_hints

from .assistant.client import CapabilityClient
from .assistant.contexts import CommentNode, StoryItem
from .chat.assistant_panel import FALLBACK_REPLY, AppView
from .host.ai_client import AIClient
from .host.bridge import LocalHostBridge
from .host.service import AssistantService
from .services.settings import Settings, SettingsStore, redact_secret
from .ui.reader import render_story
from .ui.shell import AssistantShell
from .ui.surface import HeadlessSurface
from .utils import logging as logging_utils
from .utils.telemetry import TelemetryClient, telemetry_enabled

__all__ = ["QtRuntime", "build_client", "configure_logging", "create_qapp", "load_settings", "load_story", "main"]

LOGGER = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off"}
EXIT_OK = 0
EXIT_UNAVAILABLE = 1
EXIT_USAGE = 2


@dataclass(slots=True)
class QtRuntime:
    app: Any
    loop: asyncio.AbstractEventLoop


def configure_logging(debug: bool = False, *, force: bool = False) -> Path:
    level = logging_utils.resolve_level(debug)
    log_path = logging_utils.setup_logging(level, force=force)
    LOGGER.debug("Logging configured (level=%s, file=%s)", logging.getLevelName(level), log_path)
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings, falling back to defaults on unreadable files."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def load_story(path: Path) -> tuple[StoryItem, list[CommentNode]]:
    """Read a story JSON file: item fields plus an optional ``comments`` list."""

    payload = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"{path} does not contain a story object")
    comments = [CommentNode.from_payload(entry) for entry in payload.get("comments") or () if isinstance(entry, dict)]
    return StoryItem.from_payload(payload), comments


def build_client(settings: Settings) -> CapabilityClient:
    """Wire the in-process host service behind a capability client."""

    service = AssistantService(settings, client_factory=AIClient)
    return CapabilityClient(LocalHostBridge(service))


def create_qapp(settings: Settings) -> QtRuntime:
    """Create a QApplication driven by a qasync event loop."""

    try:
        from PySide6.QtWidgets import QApplication
    except ImportError as exc:
        raise RuntimeError("PySide6 must be installed to open the reader (pip install 'sidenote[ui]').") from exc
    try:
        from qasync import QEventLoop
    except ImportError as exc:
        raise RuntimeError("qasync is required to run the async Qt event loop.") from exc

    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    app = cast(Any, QApplication.instance() or QApplication(sys.argv[:1]))
    app.setApplicationName("Sidenote")
    app.setApplicationDisplayName("Sidenote")
    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)
    _install_qt_message_handler()
    LOGGER.debug("Qt runtime ready (reading_mode=%s)", settings.reading_mode)
    return QtRuntime(app=app, loop=loop)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``sidenote`` console script."""

    args = _build_parser().parse_args(argv)
    debug = _env_flag("SIDENOTE_DEBUG")
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("SIDENOTE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    store = SettingsStore(resolved_path)
    try:
        overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE
    settings = load_settings(resolved_path, store=store, overrides=overrides or None)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=overrides)
        return EXIT_OK
    if args.command is None:
        print("No command given; try 'sidenote check'.", file=sys.stderr)
        return EXIT_USAGE
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    telemetry = TelemetryClient(enabled=telemetry_enabled(settings))
    if args.command == "gui":
        return _run_gui(Path(args.story), settings, store, telemetry)
    return asyncio.run(_run_headless(args, settings, store, telemetry))


async def _run_headless(
    args: argparse.Namespace,
    settings: Settings,
    store: SettingsStore,
    telemetry: TelemetryClient,
    stream: TextIO | None = None,
) -> int:
    out = stream or sys.stdout
    client = build_client(settings)
    if args.command == "check":
        status = await client.check()
        json.dump(asdict(status), out, indent=2)
        out.write("\n")
        return EXIT_OK if status.available else EXIT_UNAVAILABLE

    shell = AssistantShell(client, HeadlessSurface(), settings=settings, settings_store=store, telemetry=telemetry)
    try:
        if not await shell.init_assistant():
            print(client.get_last_status().message, file=sys.stderr)
            return EXIT_UNAVAILABLE
        story_path = getattr(args, "story", None)
        if story_path:
            item, comments = load_story(Path(story_path))
            shell.set_story_context(item, comments)
        shell.update_assistant_zen_mode(True, AppView.DETAIL)
        shell.toggle_assistant()
        if args.command == "summarize":
            accepted = await shell.panel.run_summarize()
        else:
            accepted = await shell.panel.send_freeform(args.prompt)
        if not accepted:
            print("Nothing to send.", file=sys.stderr)
            return EXIT_USAGE
        reply = shell.panel.history()[-1].content
        out.write(reply.rstrip() + "\n")
        return EXIT_UNAVAILABLE if reply == FALLBACK_REPLY else EXIT_OK
    finally:
        await shell.shutdown()


def _run_gui(story_path: Path, settings: Settings, store: SettingsStore, telemetry: TelemetryClient) -> int:
    try:
        runtime = create_qapp(settings)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE
    from .ui.qt_surface import DEFAULT_STYLESHEET, QtSurface

    item, comments = load_story(story_path)
    runtime.app.setStyleSheet(DEFAULT_STYLESHEET)
    surface = QtSurface(app=runtime.app)
    surface.window.setWindowTitle(item.title or "Sidenote")
    surface.window.resize(1100, 760)
    render_story(surface, item, comments)
    shell = AssistantShell(build_client(settings), surface, settings=settings, settings_store=store, telemetry=telemetry)
    surface.window.show()

    loop = runtime.loop
    try:
        loop.run_until_complete(shell.init_assistant())
        shell.set_story_context(item, comments)
        shell.update_assistant_zen_mode(True, AppView.DETAIL)
        loop.run_forever()
    except KeyboardInterrupt:
        LOGGER.info("Shutdown requested by user.")
    finally:
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(shell.shutdown())
        _drain_event_loop(loop)
        surface.close()
        loop.close()
    return EXIT_OK


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel leftover tasks before the loop is closed."""

    if loop.is_closed():
        return

    async def _cleanup() -> None:
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if not task.done() and task is not current]
        if pending:
            LOGGER.debug("Canceling %s pending asyncio task(s) before shutdown.", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        await loop.shutdown_asyncgens()

    try:
        loop.run_until_complete(_cleanup())
    except RuntimeError as exc:
        LOGGER.debug("Unable to drain asyncio loop: %s", exc)


def _install_qt_message_handler() -> None:
    """Route Qt diagnostics into the ``PySide6`` logger."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    level_map = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }

    def _handler(mode, context, message):  # type: ignore[no-untyped-def]
        del context
        logging.getLogger("PySide6").log(level_map.get(mode, logging.INFO), message)

    qInstallMessageHandler(_handler)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sidenote",
        description="Reading assistant for Hacker News stories and discussions.",
    )
    parser.add_argument("--settings-path", metavar="PATH", help="Override ~/.sidenote/settings.json.")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override a setting for this run (repeatable).",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings (API key redacted) and exit.",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.add_parser("check", help="Report whether the AI capability is available.")
    ask = commands.add_parser("ask", help="Ask a question, optionally about a story.")
    ask.add_argument("prompt")
    ask.add_argument("--story", metavar="FILE", help="Story JSON used as context.")
    summarize = commands.add_parser("summarize", help="Summarize a story JSON file.")
    summarize.add_argument("story", metavar="FILE")
    gui = commands.add_parser("gui", help="Open a story in the Qt reader (requires the 'ui' extra).")
    gui.add_argument("story", metavar="FILE")
    return parser


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    known = {item.name: item for item in fields(Settings)}
    hints = get_type_hints(Settings)
    overrides: Dict[str, Any] = {}
    for entry in items:
        key, separator, raw_value = entry.partition("=")
        key = key.strip()
        if not separator:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in known:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(hints.get(key, known[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    origin = get_origin(annotation)
    optional = False
    if origin is not None and origin is not dict:
        members = [arg for arg in get_args(annotation) if arg is not type(None)]
        optional = len(members) < len(get_args(annotation))
        annotation = members[0] if members else str
        origin = get_origin(annotation)
    if optional and raw_value.lower() in {"none", "null"}:
        return None
    if annotation is bool:
        lowered = raw_value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"Cannot coerce '{raw_value}' to a boolean.")
    if annotation is int:
        return int(raw_value, 10)
    if annotation is float:
        return float(raw_value)
    if annotation is dict or origin is dict:
        try:
            value = json.loads(raw_value or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(value, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return value
    return raw_value


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    meta = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides),
        "environment_variables": sorted(name for name in os.environ if name.startswith("SIDENOTE_")),
    }
    json.dump({"settings": payload, "meta": meta}, destination, indent=2)
    destination.write("\n")
