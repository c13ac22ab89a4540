from __future__ import annotations

import json
import logging

from .process_registry import ManagedProcessRegistry
from .utils import ai_cli_env

logger = logging.getLogger("turnbridge.classifier")

CLASSIFIER_PROMPT = (
    "You are a routing classifier. Do NOT answer or respond to the message content.\n\n"
    "MESSAGE TO CLASSIFY:\n<message>\n{body}\n</message>\n\n"
    "ACTIVE TMUX PANES:\n{labels}\n\n"
    "Pane labels use hyphens where users may write spaces (e.g. 'my agent' refers to 'my-agent').\n"
    "Does the message contain EXPLICIT routing intent to a specific pane? "
    "(direct address like 'To X,', 'ask X', '[X]', 'my agent')\n"
    "If yes, reply on two lines:\n"
    "LINE1: exact pane label\n"
    "LINE2: message with routing prefix removed\n"
    "If no explicit routing intent, reply: none"
)


def build_prompt(body: str, labels: list[str]) -> str:
    # The closing tag is removed so the body cannot escape its <message> block.
    safe_body = body.replace("</message>", "")
    return CLASSIFIER_PROMPT.format(body=safe_body, labels="\n".join(f"- {label}" for label in labels))


def parse_answer(output: str, body: str) -> tuple[str, str] | None:
    """Parse the two-line ``LINE1/LINE2`` reply. ``none`` or empty output is no opinion."""
    text = output.strip()
    if not text or text.lower() == "none":
        return None
    lines = text.splitlines()
    answer = lines[0].strip().removeprefix("LINE1:").strip().strip("\"'")
    if not answer:
        return None
    cleaned = body
    if len(lines) > 1:
        cleaned = lines[1].strip().removeprefix("LINE2:").strip()
    return answer, cleaned


class ClaudeCliClassifier:
    """Asks the AI CLI (one non-interactive turn) whether a reply names a session."""

    def __init__(
        self,
        cli_path: str,
        model: str = "sonnet",
        timeout: float = 30.0,
        processes: ManagedProcessRegistry | None = None,
    ):
        self.cli_path = cli_path
        self.model = model
        self.timeout = timeout
        self._processes = processes or ManagedProcessRegistry("classifier")

    def _build_cmd(self, prompt: str) -> list[str]:
        return [
            self.cli_path,
            "-p",
            prompt,
            "--model",
            self.model,
            "--max-turns",
            "1",
            "--settings",
            json.dumps({"disableAllHooks": True}, separators=(",", ":")),
        ]

    def classify(self, body: str, labels: list[str]) -> tuple[str, str] | None:
        cmd = self._build_cmd(build_prompt(body, labels))
        # ai_cli_env() never forwards CLAUDECODE, so the CLI does not think it is nested.
        result = self._processes.run("classify", cmd, timeout=self.timeout, env=ai_cli_env())
        if result is None:
            return None
        if result.returncode != 0:
            logger.warning(
                "Classifier CLI failed: returncode=%s stderr=%s",
                result.returncode,
                result.stderr.strip()[:200],
            )
            return None
        logger.info("Classifier output: %r", result.stdout.strip()[:200])
        return parse_answer(result.stdout, body)
