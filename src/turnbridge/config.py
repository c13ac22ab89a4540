from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BridgeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="turnbridge_",
        extra="ignore",
        env_file=".env",
        enable_decoding=False,
    )

    # Front door for turn-completion hooks
    rpc_host: str = "127.0.0.1"
    rpc_port: int = 50151
    rpc_token: str = ""  # empty = no bearer token required

    store_path: Path = Path.home() / ".turnbridge" / "events.db"

    # Messages database tailing
    messages_db_path: Path = Path.home() / "Library" / "Messages" / "chat.db"
    recipient: str = ""  # iMessage buddy (phone or email) for away notifications
    handle_ids: list[int] = Field(default_factory=list)  # chat.db handle.ROWID values
    track_self_sent: bool = True
    poll_interval_seconds: float = 5.0

    reply_marker: str = "🤖"
    relay_prefix: str = "📱"
    suppress_duplicate_outbound_seconds: float = 90.0

    # Session discovery
    default_agent_name: str = "my-agent"
    agent_process_pattern: str = r"^\d+(\.\d+){2,}$"  # node reports its version as the pane command

    # Semantic routing via the AI CLI (empty path = disabled)
    classifier_cli_path: str = ""
    classifier_model: str = "sonnet"
    classifier_timeout_seconds: float = 30.0

    # At-desk speech
    summary_model: str = ""  # e.g. "mlx-community/Qwen3-1.7B-4bit"
    summary_model_dir: str = ""
    tts_command: str = "say"
    tts_voice: str = ""
    tts_args: list[str] = Field(default_factory=list)
    skip_if_session_active: bool = True

    log_level: str = "INFO"

    @field_validator("handle_ids", "tts_args", mode="before")
    @classmethod
    def _parse_csv_or_json_list(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value
        if value is None:
            return []
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            if stripped.startswith("["):
                return json.loads(stripped)
            return [part.strip() for part in stripped.split(",") if part.strip()]
        if isinstance(value, int):
            return [value]
        return value

    @field_validator("store_path", "messages_db_path", mode="after")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("log_level", mode="after")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    def problems(self) -> list[str]:
        """Return every cross-field configuration problem found (empty when usable)."""
        found: list[str] = []
        if self.poll_interval_seconds <= 0:
            found.append("poll_interval_seconds must be positive")
        if not 0 < self.rpc_port < 65536:
            found.append(f"rpc_port {self.rpc_port} is out of range")
        if self.classifier_timeout_seconds <= 0:
            found.append("classifier_timeout_seconds must be positive")
        try:
            re.compile(self.agent_process_pattern)
        except re.error as exc:
            found.append(f"agent_process_pattern does not compile: {exc}")
        if self.recipient and not self.handle_ids:
            found.append("handle_ids are required when a recipient is set")
        if not self.reply_marker.strip():
            found.append("reply_marker must not be blank")
        if self.summary_model and not self.summary_model_dir:
            found.append("summary_model_dir is required when summary_model is set")
        return found

    def process_pattern(self) -> re.Pattern[str]:
        return re.compile(self.agent_process_pattern)
