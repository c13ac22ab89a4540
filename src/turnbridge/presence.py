from __future__ import annotations

import logging
import subprocess

from .tmux import TmuxDirectory

logger = logging.getLogger("turnbridge.presence")

SCREEN_LOCK_PROBE = "ioreg -n Root -d1 -a | plutil -extract IOConsoleLocked raw -"


class MacPresence:
    """Screen-lock state from IOKit and terminal focus from tmux."""

    def __init__(self, directory: TmuxDirectory, timeout: float = 5.0):
        self.directory = directory
        self.timeout = timeout

    def is_screen_locked(self) -> bool:
        try:
            result = subprocess.run(
                ["bash", "-c", SCREEN_LOCK_PROBE],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Screen lock probe failed: %s", exc)
            return False
        return result.stdout.strip() == "true"

    def is_session_focused(self, target_id: str) -> bool:
        focused = self.directory.client_session()
        if focused is None:
            return False
        return focused == self.directory.session_of(target_id)
