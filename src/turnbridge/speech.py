from __future__ import annotations

import logging
import subprocess

from .process_registry import ManagedProcessRegistry
from .utils import strip_think, truncate

logger = logging.getLogger("turnbridge.speech")

SUMMARY_SYSTEM_PROMPT = (
    "You are a notification assistant. Given a user's last request, "
    "write ONLY a brief 3-8 word summary of what was completed. "
    "Do not include any thinking, explanations, or extra text. "
    "Output format: Just the summary message."
)
SUMMARY_FALLBACK = "Work complete"
OUTPUT_MARKER = "=========="


class SayCommandSpeaker:
    """Speaks through a TTS command such as macOS ``say``."""

    def __init__(self, command: str = "say", voice: str = "", args: list[str] | None = None, timeout: float = 60.0):
        self.command = command
        self.voice = voice
        self.args = list(args or [])
        self.timeout = timeout

    def build_cmd(self, message: str) -> list[str]:
        cmd = [self.command, *self.args]
        if self.voice:
            cmd.extend(["-v", self.voice])
        cmd.append(message)
        return cmd

    def speak(self, message: str) -> None:
        try:
            subprocess.run(self.build_cmd(message), check=True, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("TTS failed: %s", exc)
            return
        logger.info("TTS notification spoken (%s chars)", len(message))


def extract_generation(output: str) -> str | None:
    """Pull the generated text out of ``mlx_lm.generate`` stdout.

    The generation sits between two ``==========`` lines; output without
    markers is taken whole (capped at 200 chars).
    """
    text = output.strip()
    if not text:
        return None
    if OUTPUT_MARKER in text:
        lines: list[str] = []
        in_content = False
        for line in text.splitlines():
            if line.strip() == OUTPUT_MARKER:
                if in_content:
                    break
                in_content = True
            elif in_content:
                lines.append(line.strip())
        cleaned = strip_think(" ".join(lines).strip().strip("\"'"))
        return cleaned or None
    cleaned = strip_think(text.strip("\"'"))
    return truncate(cleaned, 200) or None


class LocalModelSummarizer:
    """Summarizes a finished turn in a few words with a local MLX model run through ``uv``."""

    def __init__(
        self,
        model: str,
        model_dir: str,
        max_tokens: int = 20,
        timeout: float = 60.0,
        processes: ManagedProcessRegistry | None = None,
    ):
        self.model = model
        self.model_dir = model_dir
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._processes = processes or ManagedProcessRegistry("summarizer")

    def summarize(self, last_user_prompt: str) -> str | None:
        if not self.model or not self.model_dir:
            return None
        prompt = (
            f"User's last request: {truncate(last_user_prompt, 500)}\n\n"
            "Write a 3-8 word summary of what was done:"
        )
        cmd = [
            "uv",
            "run",
            "mlx_lm.generate",
            "--model",
            self.model,
            "--system-prompt",
            SUMMARY_SYSTEM_PROMPT,
            "--prompt",
            prompt,
            "--max-tokens",
            str(self.max_tokens),
        ]
        result = self._processes.run("summarize", cmd, timeout=self.timeout, cwd=self.model_dir)
        if result is None or result.returncode != 0:
            return None
        return extract_generation(result.stdout)
