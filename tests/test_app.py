"""Tests covering the application bootstrap helpers and CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from sidenote import app
from sidenote.chat.assistant_panel import FALLBACK_REPLY
from sidenote.services.settings import Settings, SettingsStore, redact_secret

from tests.helpers import FakeAIClient

STORY_PAYLOAD = {
    "id": 9,
    "title": "Postgres as a queue",
    "url": "https://www.example.org/pg-queue",
    "score": 77,
    "by": "dbfan",
    "descendants": 2,
    "comments": [
        {"id": 10, "by": "alice", "text": "SKIP LOCKED is great", "children": [{"id": 11, "by": "bob", "text": "Agreed"}]},
        "ignored",
    ],
}


class _ScriptedAIClient(FakeAIClient):
    created: list["_ScriptedAIClient"] = []
    reply_text = "Queues in **Postgres**"
    error: BaseException | None = None

    def __init__(self, settings: Any) -> None:
        super().__init__(settings, reply=type(self).reply_text, error=type(self).error)
        type(self).created.append(self)


@pytest.fixture
def scripted_ai(monkeypatch: pytest.MonkeyPatch) -> type[_ScriptedAIClient]:
    monkeypatch.setattr(_ScriptedAIClient, "created", [])
    monkeypatch.setattr(_ScriptedAIClient, "error", None)
    monkeypatch.setattr(app, "AIClient", _ScriptedAIClient)
    return _ScriptedAIClient


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    return tmp_path / "settings.json"


@pytest.fixture
def story_file(tmp_path: Path) -> Path:
    path = tmp_path / "story.json"
    path.write_text(json.dumps(STORY_PAYLOAD), encoding="utf-8")
    return path


def _run(settings_path: Path, *args: str) -> int:
    return app.main(["--settings-path", str(settings_path), *args])


def test_load_story_reads_item_and_comments(story_file: Path) -> None:
    item, comments = app.load_story(story_file)

    assert item.title == "Postgres as a queue"
    assert item.author == "dbfan"
    assert [comment.id for comment in comments] == [10]
    assert comments[0].children[0].author == "bob"


def test_load_story_rejects_non_objects(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError):
        app.load_story(path)


def test_load_settings_applies_overrides(settings_path: Path) -> None:
    SettingsStore(settings_path).save(Settings(model="saved"))

    settings = app.load_settings(settings_path, overrides={"temperature": 0.9})

    assert settings.model == "saved"
    assert settings.temperature == 0.9


def test_coerce_cli_overrides_uses_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "reading_mode=yes",
            "max_retries=4",
            "temperature=0.7",
            "organization=none",
            'default_headers={"X-App": "sidenote"}',
            "model= local ",
        ]
    )

    assert overrides == {
        "reading_mode": True,
        "max_retries": 4,
        "temperature": 0.7,
        "organization": None,
        "default_headers": {"X-App": "sidenote"},
        "model": "local",
    }


@pytest.mark.parametrize(
    "entry",
    ["model", "=value", "colour=blue", "reading_mode=maybe", "max_retries=two", "default_headers=[1]"],
)
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_invalid_override_exits_with_usage_error(settings_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(settings_path, "--set", "bogus=1", "check") == app.EXIT_USAGE

    assert "Invalid --set override" in capsys.readouterr().err


def test_missing_command_exits_with_usage_error(settings_path: Path) -> None:
    assert _run(settings_path) == app.EXIT_USAGE


def test_dump_settings_redacts_api_key(settings_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(settings_path, "--set", "api_key=sk-secret-value", "--dump-settings") == app.EXIT_OK

    output = capsys.readouterr().out
    assert "sk-secret-value" not in output
    dumped = json.loads(output)
    assert dumped["settings"]["api_key"] == redact_secret("sk-secret-value")
    assert dumped["meta"]["path"] == str(settings_path)
    assert dumped["meta"]["cli_overrides"] == ["api_key"]
    assert "SIDENOTE_LOG_DIR" in dumped["meta"]["environment_variables"]


def test_check_without_api_key_reports_unavailable(settings_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(settings_path, "check") == app.EXIT_UNAVAILABLE

    status = json.loads(capsys.readouterr().out)
    assert status["available"] is False
    assert status["cli_installed"] is True
    assert status["message"].startswith("API key not configured")


def test_check_with_api_key_reports_available(
    settings_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("SIDENOTE_API_KEY", "sk-env")

    assert _run(settings_path, "check") == app.EXIT_OK

    assert json.loads(capsys.readouterr().out)["available"] is True


def test_settings_path_can_come_from_environment(
    settings_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    SettingsStore(settings_path).save(Settings(model="from-file"))
    monkeypatch.setenv("SIDENOTE_SETTINGS_PATH", str(settings_path))

    assert app.main(["--dump-settings"]) == app.EXIT_OK

    assert json.loads(capsys.readouterr().out)["settings"]["model"] == "from-file"


def test_ask_prints_assistant_reply(
    settings_path: Path, scripted_ai: type[_ScriptedAIClient], capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(settings_path, "--set", "api_key=sk-test", "ask", "What is a queue?") == app.EXIT_OK

    assert capsys.readouterr().out.strip() == "Queues in **Postgres**"
    client = scripted_ai.created[0]
    assert client.requests[0][1] == {"role": "user", "content": "What is a queue?"}
    assert client.closed


def test_ask_with_story_adds_context(
    settings_path: Path, story_file: Path, scripted_ai: type[_ScriptedAIClient]
) -> None:
    assert _run(settings_path, "--set", "api_key=sk-test", "ask", "Is this sane?", "--story", str(story_file)) == 0

    prompt = scripted_ai.created[0].requests[0][1]["content"]
    assert prompt == '[Context: Story "Postgres as a queue" (example.org)]\n\nIs this sane?'


def test_summarize_sends_story_prompt(
    settings_path: Path, story_file: Path, scripted_ai: type[_ScriptedAIClient], capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(settings_path, "--set", "api_key=sk-test", "summarize", str(story_file)) == app.EXIT_OK

    prompt = scripted_ai.created[0].requests[0][1]["content"]
    assert "Title: Postgres as a queue" in prompt
    assert "Domain: example.org" in prompt
    assert capsys.readouterr().out.strip() == "Queues in **Postgres**"


def test_model_failure_prints_fallback_and_fails(
    settings_path: Path, scripted_ai: type[_ScriptedAIClient], monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(_ScriptedAIClient, "error", RuntimeError("model offline"))

    assert _run(settings_path, "--set", "api_key=sk-test", "ask", "hello") == app.EXIT_UNAVAILABLE

    assert capsys.readouterr().out.strip() == FALLBACK_REPLY


def test_ask_without_api_key_fails_before_sending(
    settings_path: Path, scripted_ai: type[_ScriptedAIClient], capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(settings_path, "ask", "hello") == app.EXIT_UNAVAILABLE

    assert scripted_ai.created == []
    assert "API key not configured" in capsys.readouterr().err


def test_main_writes_log_file(settings_path: Path, tmp_path: Path) -> None:
    _run(settings_path, "check")

    assert (tmp_path / "logs" / "sidenote.log").exists()
