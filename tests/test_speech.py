import subprocess

from turnbridge.process_registry import CompletedRun
from turnbridge.speech import LocalModelSummarizer, SayCommandSpeaker, extract_generation


def test_build_cmd():
    assert SayCommandSpeaker().build_cmd("done") == ["say", "done"]
    speaker = SayCommandSpeaker("say", voice="Samantha", args=["-r", "200"])
    assert speaker.build_cmd("done") == ["say", "-r", "200", "-v", "Samantha", "done"]


def test_speak_failure_is_logged(monkeypatch, caplog):
    def failing(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr("turnbridge.speech.subprocess.run", failing)
    caplog.set_level("WARNING")

    SayCommandSpeaker().speak("done")

    assert "TTS failed" in caplog.text


def test_extract_generation_between_markers():
    output = "Fetching 9 files\n==========\n<think>hmm</think> Fixed login bug\n==========\nPrompt: 40 tokens\n"

    assert extract_generation(output) == "Fixed login bug"


def test_extract_generation_without_markers():
    assert extract_generation('"Refactored the parser"') == "Refactored the parser"
    assert extract_generation("x" * 300) == "x" * 200
    assert extract_generation("   ") is None
    assert extract_generation("==========\n\n==========") is None


class FakeRegistry:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def run(self, purpose, cmd, timeout, cwd=None, env=None):
        self.calls.append((cmd, cwd))
        return self.result


def test_summarizer_runs_model_in_its_directory():
    registry = FakeRegistry(CompletedRun(0, "==========\nAdded retry logic\n==========\n", ""))
    summarizer = LocalModelSummarizer("mlx-community/Qwen3-1.7B-4bit", "/opt/models", processes=registry)

    assert summarizer.summarize("add retries to the client") == "Added retry logic"

    cmd, cwd = registry.calls[0]
    assert cwd == "/opt/models"
    assert cmd[:3] == ["uv", "run", "mlx_lm.generate"]
    assert cmd[cmd.index("--max-tokens") + 1] == "20"


def test_summarizer_failure_returns_none():
    assert LocalModelSummarizer("m", "/d", processes=FakeRegistry(None)).summarize("x") is None
    assert LocalModelSummarizer("", "", processes=FakeRegistry(None)).summarize("x") is None
