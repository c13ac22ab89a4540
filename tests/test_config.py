from pathlib import Path

import pytest

from turnbridge.config import BridgeSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ("TURNBRIDGE_HANDLE_IDS", "TURNBRIDGE_TTS_ARGS", "TURNBRIDGE_RECIPIENT", "TURNBRIDGE_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    settings = BridgeSettings(_env_file=None)

    assert settings.rpc_port == 50151
    assert settings.handle_ids == []
    assert settings.reply_marker == "🤖"
    assert settings.relay_prefix == "📱"
    assert settings.default_agent_name == "my-agent"
    assert settings.problems() == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("3", [3]), ("3, 7", [3, 7]), ("[3, 7]", [3, 7]), ("", [])],
)
def test_handle_ids_from_env(monkeypatch, raw, expected):
    monkeypatch.setenv("TURNBRIDGE_HANDLE_IDS", raw)

    assert BridgeSettings(_env_file=None).handle_ids == expected


def test_tts_args_accept_json(monkeypatch):
    monkeypatch.setenv("TURNBRIDGE_TTS_ARGS", '["-r", "220"]')

    assert BridgeSettings(_env_file=None).tts_args == ["-r", "220"]


def test_env_file_is_read(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("turnbridge_recipient=+15550001111\nturnbridge_handle_ids=4\n")

    settings = BridgeSettings(_env_file=env_file)

    assert settings.recipient == "+15550001111"
    assert settings.handle_ids == [4]


def test_paths_expand_user():
    settings = BridgeSettings(_env_file=None, store_path="~/tb/events.db")

    assert settings.store_path == Path.home() / "tb" / "events.db"


def test_log_level_normalized():
    assert BridgeSettings(_env_file=None, log_level=" debug ").log_level == "DEBUG"


def test_problems_are_all_reported():
    settings = BridgeSettings(
        _env_file=None,
        poll_interval_seconds=0,
        rpc_port=70000,
        agent_process_pattern="(",
        recipient="me@example.com",
        reply_marker="  ",
        summary_model="mlx-community/Qwen3-1.7B-4bit",
    )

    problems = settings.problems()

    assert len(problems) == 6
    assert any("poll_interval_seconds" in p for p in problems)
    assert any("agent_process_pattern" in p for p in problems)
    assert any("handle_ids" in p for p in problems)
    assert any("summary_model_dir" in p for p in problems)


def test_process_pattern_matches_node_versions():
    pattern = BridgeSettings(_env_file=None).process_pattern()

    assert pattern.search("20.11.0")
    assert not pattern.search("zsh")
