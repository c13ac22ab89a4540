from __future__ import annotations

import logging
import re
import subprocess
from typing import Callable

from .models import AgentAddress, TmuxPaneAddress
from .utils import strip_control

logger = logging.getLogger("turnbridge.tmux")

PANE_FORMAT = "#{pane_id}|#{session_name}:#{window_index}.#{pane_index}|#{pane_current_command}"

ProcessPredicate = Callable[[str], bool]


def node_semver_process(command: str) -> bool:
    """True for version-shaped process names like ``20.11.0`` (how node shows up in tmux)."""
    parts = command.split(".")
    return len(parts) >= 3 and all(part.isascii() and part.isdigit() for part in parts)


def pattern_predicate(pattern: str | re.Pattern[str]) -> ProcessPredicate:
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern

    def _matches(command: str) -> bool:
        return compiled.search(command.strip()) is not None

    return _matches


def clean_label(raw: str) -> str:
    """Keep printable ASCII and collapse whitespace runs."""
    kept = "".join(ch for ch in raw if ch == " " or ("!" <= ch <= "~"))
    return " ".join(kept.split())


def parse_pane_listing(output: str, is_agent: ProcessPredicate) -> list[AgentAddress]:
    panes: list[AgentAddress] = []
    for line in output.splitlines():
        parts = line.split("|", 2)
        if len(parts) != 3:
            continue
        pane_id, label, command = parts
        if not is_agent(command.strip()):
            continue
        panes.append(TmuxPaneAddress(pane_id.strip(), clean_label(label)))
    return panes


class TmuxDirectory:
    """Finds agent sessions among tmux panes and types into them."""

    def __init__(
        self,
        is_agent: ProcessPredicate = node_semver_process,
        tmux_command: str = "tmux",
        timeout: float = 5.0,
    ):
        self.is_agent = is_agent
        self.tmux_command = tmux_command
        self.timeout = timeout

    def _tmux(self, *args: str) -> str | None:
        try:
            result = subprocess.run(
                [self.tmux_command, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("tmux %s failed: %s", args[0] if args else "", exc)
            return None
        if result.returncode != 0:
            logger.debug("tmux %s exited %s: %s", args[0] if args else "", result.returncode, result.stderr.strip())
            return None
        return result.stdout

    def discover(self) -> list[AgentAddress]:
        output = self._tmux("list-panes", "-a", "-F", PANE_FORMAT)
        if output is None:
            return []
        panes = parse_pane_listing(output, self.is_agent)
        logger.debug("Discovered %s agent pane(s): %s", len(panes), [p.label for p in panes])
        return panes

    def is_alive(self, address: AgentAddress) -> bool:
        if address.transport != "tmux":
            return False
        output = self._tmux("display-message", "-t", address.target_id, "-p", "#{pane_current_command}")
        return output is not None and self.is_agent(output.strip())

    def relay(self, address: AgentAddress, text: str) -> None:
        if address.transport != "tmux":
            logger.warning("Cannot relay to %s transport %r", address.label, address.transport)
            return
        safe = strip_control(text)
        logger.info("Relaying %s chars to pane %s (%s)", len(safe), address.target_id, address.label)
        if self._tmux("send-keys", "-t", address.target_id, "-l", safe) is None:
            logger.warning("send-keys failed for pane %s", address.target_id)
            return
        if self._tmux("send-keys", "-t", address.target_id, "Enter") is None:
            logger.warning("Enter key failed for pane %s", address.target_id)

    def session_of(self, pane_id: str) -> str | None:
        output = self._tmux("display-message", "-t", pane_id, "-p", "#{session_name}")
        return output.strip() or None if output is not None else None

    def client_session(self) -> str | None:
        """Session shown by the most recently active tmux client."""
        output = self._tmux("display-message", "-p", "#{session_name}")
        return output.strip() or None if output is not None else None
