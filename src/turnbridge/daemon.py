from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from typing import Any, Iterator

import uvicorn

from .classifier import ClaudeCliClassifier
from .config import BridgeSettings
from .egress import IMessageEgress
from .errors import ConfigurationError
from .ingress import ChatDbIngress
from .main import build_app
from .notifier import Notifier
from .presence import MacPresence
from .process_registry import ManagedProcessRegistry
from .projector import FactProjector
from .protocols import Classifier, Presence, SessionDirectory, Speaker, Summarizer, TextSender
from .resolution import ResolutionEngine
from .router import ReplyRouter
from .routing_memory import RoutingMemory
from .speech import LocalModelSummarizer, SayCommandSpeaker
from .store import Projector, SQLiteEventStore
from .tailer import InboundTailer
from .tmux import TmuxDirectory, pattern_predicate

logger = logging.getLogger("turnbridge.daemon")


@dataclass
class Services:
    """The external capabilities the daemon talks to."""

    ingress: ChatDbIngress
    directory: SessionDirectory
    presence: Presence
    egress: TextSender
    speaker: Speaker
    classifier: Classifier | None
    summarizer: Summarizer | None
    processes: ManagedProcessRegistry

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> Services:
        processes = ManagedProcessRegistry("ai-cli")
        ingress = ChatDbIngress(settings.messages_db_path)
        directory = TmuxDirectory(is_agent=pattern_predicate(settings.process_pattern()))
        classifier = None
        if settings.classifier_cli_path:
            classifier = ClaudeCliClassifier(
                settings.classifier_cli_path,
                model=settings.classifier_model,
                timeout=settings.classifier_timeout_seconds,
                processes=processes,
            )
        summarizer = None
        if settings.summary_model:
            summarizer = LocalModelSummarizer(
                settings.summary_model,
                settings.summary_model_dir,
                processes=processes,
            )
        return cls(
            ingress=ingress,
            directory=directory,
            presence=MacPresence(directory),
            egress=IMessageEgress(
                settings.recipient,
                reply_marker=settings.reply_marker,
                ingress=ingress,
                handle_ids=settings.handle_ids,
                suppress_duplicate_outbound_seconds=settings.suppress_duplicate_outbound_seconds,
            ),
            speaker=SayCommandSpeaker(settings.tts_command, voice=settings.tts_voice, args=settings.tts_args),
            classifier=classifier,
            summarizer=summarizer,
            processes=processes,
        )


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the daemon."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class BridgeDaemon:
    def __init__(
        self,
        settings: BridgeSettings,
        services: Services | None = None,
        store: Any | None = None,
    ):
        problems = settings.problems()
        if problems:
            raise ConfigurationError(problems)

        self.settings = settings
        self.services = services or Services.from_settings(settings)
        self.store = store if store is not None else SQLiteEventStore(settings.store_path)
        self.store.bootstrap()
        self.memory = RoutingMemory()

        self.engine = ResolutionEngine(
            self.memory,
            classifier=self.services.classifier,
            default_name=settings.default_agent_name,
        )
        self.router = ReplyRouter(
            self.services.directory,
            self.engine,
            self.memory,
            self.services.egress,
            relay_prefix=settings.relay_prefix,
        )
        self.notifier = Notifier(
            self.services.egress,
            self.services.speaker,
            self.services.presence,
            summarizer=self.services.summarizer,
            recipient=settings.recipient,
            skip_if_session_active=settings.skip_if_session_active,
        )
        self.fact_projector = FactProjector(self.notifier, self.router, self.memory)
        self.projector = Projector(self.store)
        self.tailer = InboundTailer(
            self.services.ingress,
            self.store,
            settings.handle_ids,
            track_self_sent=settings.track_self_sent,
            poll_interval_seconds=settings.poll_interval_seconds,
            reply_marker=settings.reply_marker,
        )
        self.app = build_app(store=self.store, memory=self.memory, settings=settings)
        self._shutdown = asyncio.Event()

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the daemon."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
        self._shutdown.set()

    async def _serve(self, server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit:
            logger.error("RPC server failed to start on %s:%s", self.settings.rpc_host, self.settings.rpc_port)
        finally:
            # The server stopping for any reason takes the whole daemon down.
            self.request_shutdown()

    async def _propagate_shutdown(self, server: uvicorn.Server) -> None:
        await self._shutdown.wait()
        server.should_exit = True
        self.services.processes.cancel()

    async def run_forever(self) -> None:
        config = uvicorn.Config(
            self.app,
            host=self.settings.rpc_host,
            port=self.settings.rpc_port,
            log_level=self.settings.log_level.lower(),
            lifespan="off",
        )
        server = _EmbeddedServer(config)
        tasks = [
            asyncio.create_task(self._serve(server), name="rpc"),
            asyncio.create_task(self.tailer.run(self._shutdown), name="tailer"),
            asyncio.create_task(self.projector.run(self.fact_projector.handle, self._shutdown), name="projector"),
            asyncio.create_task(self._propagate_shutdown(server), name="shutdown"),
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException):
                logger.error("Task %s exited with error: %r", task.get_name(), result)

    def shutdown(self) -> None:
        """Flush and close resources. Call only after run_forever has returned."""
        logger.info("Shutting down...")
        self.services.processes.cancel()
        try:
            logger.info("Checkpointing WAL")
            self.store.checkpoint()
        except Exception as exc:
            logger.warning("WAL checkpoint failed on shutdown: %s", exc)
        try:
            self.store.close()
        except Exception as exc:
            logger.warning("Error closing store: %s", exc)
        self.services.ingress.close()
        logger.info("Shutdown complete")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


async def run() -> None:
    settings = BridgeSettings()
    configure_logging(settings.log_level)
    daemon = BridgeDaemon(settings)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("Received signal %s", sig.name)
        daemon.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    logger.info(
        "turnbridge listening on %s:%s; tailing %s for handle_ids=%s",
        settings.rpc_host,
        settings.rpc_port,
        settings.messages_db_path,
        settings.handle_ids,
    )
    if not settings.classifier_cli_path:
        logger.info("Semantic routing disabled (turnbridge_classifier_cli_path not set)")

    try:
        await daemon.run_forever()
    finally:
        daemon.shutdown()


if __name__ == "__main__":  # pragma: no cover
    asyncio.run(run())
