import subprocess

import pytest

from conftest import pane
from turnbridge.models import AgentAddress
from turnbridge.presence import MacPresence
from turnbridge.tmux import TmuxDirectory, clean_label, node_semver_process, parse_pane_listing, pattern_predicate


@pytest.mark.parametrize(
    ("command", "expected"),
    [("20.11.0", True), ("2.1.34.7", True), ("node", False), ("1.2", False), ("zsh", False), ("1.x.3", False)],
)
def test_node_semver_process(command, expected):
    assert node_semver_process(command) is expected


def test_pattern_predicate():
    is_agent = pattern_predicate(r"^(claude|\d+\.\d+\.\d+)$")

    assert is_agent("claude")
    assert is_agent(" 22.3.0\n")
    assert not is_agent("vim")


def test_clean_label():
    assert clean_label("wörk  :0.1\t") == "wrk :0.1"


def test_parse_pane_listing_keeps_agents_only():
    output = "%1|work:0.0|20.11.0\n%2|shell:0.0|zsh\nnot a pane line\n%3|api:1.2|22.3.0\n"

    panes = parse_pane_listing(output, node_semver_process)

    assert [(p.target_id, p.label) for p in panes] == [("%1", "work:0.0"), ("%3", "api:1.2")]
    assert all(p.transport == "tmux" for p in panes)


class RecordingRun:
    def __init__(self, outputs=None, returncode=0):
        self.calls = []
        self.outputs = list(outputs or [])
        self.returncode = returncode

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        stdout = self.outputs.pop(0) if self.outputs else ""
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=stdout, stderr="")


def test_relay_sends_literal_text_then_enter(monkeypatch):
    run = RecordingRun()
    monkeypatch.setattr("turnbridge.tmux.subprocess.run", run)

    TmuxDirectory().relay(pane("%4", "work:0.0"), "📱 hi\x1b[2J there")

    assert run.calls == [
        ["tmux", "send-keys", "-t", "%4", "-l", "📱 hi there"],
        ["tmux", "send-keys", "-t", "%4", "Enter"],
    ]


def test_discover_returns_empty_when_tmux_missing(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError("tmux")

    monkeypatch.setattr("turnbridge.tmux.subprocess.run", missing)

    assert TmuxDirectory().discover() == []


def test_is_alive_checks_current_command(monkeypatch):
    monkeypatch.setattr("turnbridge.tmux.subprocess.run", RecordingRun(["20.11.0\n", "zsh\n"]))
    directory = TmuxDirectory()

    assert directory.is_alive(pane("%1", "work:0.0")) is True
    assert directory.is_alive(pane("%1", "work:0.0")) is False
    assert directory.is_alive(AgentAddress("other", "x", "x")) is False


def test_dead_pane_is_not_alive(monkeypatch):
    monkeypatch.setattr("turnbridge.tmux.subprocess.run", RecordingRun(returncode=1))

    assert TmuxDirectory().is_alive(pane("%9", "gone:0.0")) is False


class FocusDirectory:
    def __init__(self, client, sessions):
        self.client = client
        self.sessions = sessions

    def client_session(self):
        return self.client

    def session_of(self, pane_id):
        return self.sessions.get(pane_id)


def test_presence_focus_compares_sessions():
    presence = MacPresence(FocusDirectory("work", {"%1": "work", "%2": "api"}))

    assert presence.is_session_focused("%1") is True
    assert presence.is_session_focused("%2") is False
    assert MacPresence(FocusDirectory(None, {"%1": "work"})).is_session_focused("%1") is False


def test_screen_lock_probe(monkeypatch):
    monkeypatch.setattr("turnbridge.presence.subprocess.run", RecordingRun(["true\n", "false\n"]))
    presence = MacPresence(TmuxDirectory())

    assert presence.is_screen_locked() is True
    assert presence.is_screen_locked() is False
