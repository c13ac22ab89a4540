from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger("turnbridge.process_registry")


@dataclass(frozen=True, slots=True)
class CompletedRun:
    returncode: int
    stdout: str
    stderr: str


class ManagedProcessRegistry:
    """Tracks helper subprocesses (classifier, summarizer) so shutdown can kill them."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._lock = threading.Lock()
        self._entries: dict[int, tuple[str, subprocess.Popen[str]]] = {}

    def register(self, purpose: str, proc: subprocess.Popen[str]) -> None:
        with self._lock:
            self._entries[int(proc.pid)] = (purpose, proc)

    def unregister(self, proc: subprocess.Popen[str]) -> None:
        with self._lock:
            self._entries.pop(int(proc.pid), None)

    def active_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def run(
        self,
        purpose: str,
        cmd: list[str],
        timeout: float,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CompletedRun | None:
        """Run ``cmd`` to completion in its own process group.

        Returns None (after logging) when the binary is missing or the
        timeout expires; the process group is killed in the latter case.
        """
        proc: subprocess.Popen[str] | None = None
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
            self.register(purpose, proc)
            stdout, stderr = proc.communicate(timeout=timeout)
            return CompletedRun(int(proc.returncode or 0), stdout or "", stderr or "")
        except subprocess.TimeoutExpired:
            if proc is not None:
                self.terminate(proc)
            logger.warning("%s %s timed out after %.1fs", self.label, purpose, timeout)
            return None
        except FileNotFoundError:
            logger.warning("%s binary not found: %s", self.label, cmd[0] if cmd else "")
            return None
        except OSError as exc:
            logger.warning("%s %s failed to start: %s", self.label, purpose, exc)
            return None
        finally:
            if proc is not None:
                self.unregister(proc)

    def cancel(self, purpose: str | None = None) -> int:
        with self._lock:
            targets = [
                proc
                for owner, proc in self._entries.values()
                if purpose is None or owner == purpose
            ]
        killed = 0
        for proc in targets:
            if self.terminate(proc):
                killed += 1
        if killed:
            logger.info("Terminated %s %s subprocess(es)", killed, self.label)
        return killed

    def terminate(self, proc: subprocess.Popen[str], grace_seconds: float = 0.35) -> bool:
        """Terminate a process group, escalating to SIGKILL if needed."""
        pid = int(proc.pid)
        if proc.poll() is not None:
            return False

        try:
            # start_new_session=True makes pid the process-group id.
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            return False
        except OSError:
            try:
                proc.terminate()
            except OSError:
                logger.debug("Failed SIGTERM for %s pid=%s", self.label, pid, exc_info=True)
                return False

        deadline = time.monotonic() + grace_seconds
        while time.monotonic() < deadline:
            if proc.poll() is not None:
                return True
            time.sleep(0.02)

        if proc.poll() is not None:
            return True

        try:
            os.killpg(pid, signal.SIGKILL)
        except OSError:
            try:
                proc.kill()
            except OSError:
                logger.debug("Failed SIGKILL for %s pid=%s", self.label, pid, exc_info=True)
        return True
