"""Interactive self-check: presence probes, configuration, routing and a live notification."""

from __future__ import annotations

import time
from typing import Callable

from .config import BridgeSettings
from .daemon import Services
from .models import TurnCompleted
from .notifier import Notifier
from .resolution import ResolutionEngine
from .routing_memory import RoutingMemory

SAMPLE_PHRASES = ("to my agent, hi", "ask turnbridge to check logs", "hi")

DIAGNOSTIC_TURN = TurnCompleted(
    session_id="diag",
    session_label="turnbridge:0.0",
    last_user_prompt="diagnostic test",
    assistant_message="turnbridge diagnostic test complete.",
    main_context="turnbridge",
)


def run_diagnostics(
    settings: BridgeSettings,
    delay_seconds: int = 0,
    services: Services | None = None,
    out: Callable[[str], None] = print,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    problems = settings.problems()
    out("=== turnbridge diagnostics ===\n")
    if problems:
        for problem in problems:
            out(f"config error  : {problem}")
        return 1

    services = services or Services.from_settings(settings)

    if delay_seconds > 0:
        out(f"Waiting {delay_seconds}s; lock your screen now...")
        sleep(delay_seconds)

    locked = services.presence.is_screen_locked()
    out(f"screen_locked : {str(locked).lower()}")
    out(f"iMessage      : recipient={settings.recipient or '(not set)'} handle_ids={settings.handle_ids}")
    out(f"TTS           : command={settings.tts_command} voice={settings.tts_voice or '(default)'}")
    out(f"AI cli        : {settings.classifier_cli_path or '(not set)'}")

    out("\n--- Testing semantic resolver ---")
    sessions = services.directory.discover()
    out(f"live panes    : {[session.label for session in sessions]}")
    engine = ResolutionEngine(RoutingMemory(), classifier=services.classifier, default_name="")
    for phrase in SAMPLE_PHRASES:
        resolution = engine.resolve(None, phrase, sessions)
        if resolution is None:
            out(f'  "{phrase}" -> none')
        else:
            out(f'  "{phrase}" -> {resolution.address.label} (cleaned: "{resolution.body}")')

    out(f"\n--- Testing notify path (screen_locked={str(locked).lower()}) ---")
    notifier = Notifier(
        services.egress,
        services.speaker,
        services.presence,
        summarizer=services.summarizer,
        recipient=settings.recipient,
        skip_if_session_active=False,
    )
    if not locked:
        out("Running TTS...")
        notifier.notify_at_desk(DIAGNOSTIC_TURN)
        out("TTS done")
        return 0
    if not settings.recipient:
        out("iMessage NOT sent: recipient not configured")
        return 0
    out("Sending iMessage...")
    result = notifier.notify_away(DIAGNOSTIC_TURN)
    if result.source is None:
        out("iMessage NOT sent (duplicate or send failure; see log)")
    else:
        out("iMessage sent (check your phone)")
    out("\nDone.")
    return 0
