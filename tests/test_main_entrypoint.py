"""Tests covering the CLI entry point and provider selection flags."""

from __future__ import annotations

import sys
from pathlib import Path
from textwrap import dedent
from typing import Any

import pytest

import main as cli
from ophiuchus.leaderboard import LeaderboardAggregator
from ophiuchus.models import GameSession, Room, RoomClue
from ophiuchus.persistence import FileDocumentStore


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    for name in (
        "OPHIUCHUS_STORE",
        "OPHIUCHUS_DATA_DIR",
        "OPHIUCHUS_LOG_LEVEL",
        "OPHIUCHUS_LLM_PROVIDER",
        "OPHIUCHUS_API_PORT",
        "OPHIUCHUS_LLM_MODELS",
        "OPHIUCHUS_LLM_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    levels: list[str] = []
    monkeypatch.setattr(cli, "configure_logging", levels.append)
    return levels


def test_leaderboard_with_empty_store(capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["leaderboard"])

    assert capsys.readouterr().out.strip() == "No archived quests yet."


def test_leaderboard_reads_file_store(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    cosmic_song,
    clean_environment: list[str],
) -> None:
    aggregator = LeaderboardAggregator(FileDocumentStore(tmp_path / "store"))
    for user_id, points in [("ana", 120), ("ben", 90)]:
        aggregator.archive(
            GameSession(
                id=f"session-{user_id}",
                user_id=user_id,
                spotify_user_id=user_id,
                cosmic_song=cosmic_song,
                intermediary_songs=[],
                initial_clue="",
                room_clues={Room.COMET: RoomClue(points=points, completed=True)},
                completed=True,
            ),
            username=user_id.upper(),
        )
    monkeypatch.setenv("OPHIUCHUS_STORE", "file")
    monkeypatch.setenv("OPHIUCHUS_DATA_DIR", str(tmp_path))

    cli.main(["--log-level", "debug", "leaderboard", "--limit", "5"])

    assert capsys.readouterr().out.splitlines() == [
        "  1. ANA: 120 points over 1 quests (best 120)",
        "  2. BEN: 90 points over 1 quests (best 90)",
    ]
    assert clean_environment == ["DEBUG"]


def test_invalid_configuration_exits(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("OPHIUCHUS_STORE", "mongo")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["leaderboard"])

    assert excinfo.value.code == 2
    assert "Invalid configuration: OPHIUCHUS_STORE" in capsys.readouterr().out


def test_invalid_page_exits(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["leaderboard", "--limit", "0"])

    assert excinfo.value.code == 2
    assert "Failed to read the leaderboard" in capsys.readouterr().out


def test_main_rejects_options_without_provider(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli.uvicorn, "run", lambda *args, **kwargs: pytest.fail("served"))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--llm-option", "note=clue", "serve"])

    assert excinfo.value.code == 2
    assert "no --llm-provider was specified" in capsys.readouterr().out


def test_unknown_provider_exits(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli.uvicorn, "run", lambda *args, **kwargs: pytest.fail("served"))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--llm-provider", "missing_provider_module:build", "serve"])

    assert excinfo.value.code == 2
    assert "Failed to initialise LLM provider" in capsys.readouterr().out


def test_serve_wires_provider_and_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    module_path = tmp_path / "dummy_llm_provider.py"
    module_path.write_text(
        dedent(
            """
            from ophiuchus.llm import LLMClient, LLMMessage, LLMResponse


            CREATED = []


            class DummyLLMClient(LLMClient):
                def __init__(self, text: str = "oracle", **options) -> None:
                    self.text = text
                    CREATED.append(options)

                def complete(self, messages, *, temperature=None):
                    return LLMResponse(LLMMessage(role="assistant", content=self.text))


            def build_client(**options):
                return DummyLLMClient(**options)
            """
        )
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.setenv("OPHIUCHUS_LLM_TIMEOUT", "12")
    monkeypatch.setenv("OPHIUCHUS_LLM_MODELS", "first,second")
    served: dict[str, Any] = {}

    def fake_run(app: Any, **kwargs: Any) -> None:
        served["app"] = app
        served.update(kwargs)

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)

    try:
        cli.main(
            [
                "--llm-provider",
                "dummy_llm_provider:build_client",
                "--llm-option",
                "text=starlight",
                "serve",
                "--host",
                "0.0.0.0",
                "--port",
                "9001",
            ]
        )
        created = sys.modules["dummy_llm_provider"].CREATED
    finally:
        sys.modules.pop("dummy_llm_provider", None)

    assert served["host"] == "0.0.0.0"
    assert served["port"] == 9001
    assert served["log_level"] == "info"
    service = served["app"].state.quest_service
    assert service.nebula.generate("Write a riddle") == "starlight"
    assert created == [
        {"timeout": 12.0, "model": "first"},
        {"timeout": 12.0, "model": "second"},
    ]
