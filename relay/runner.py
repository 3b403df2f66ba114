"""Entry point for the relay process: bootstrap queue, router, ingress server and consumers."""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from relay.config_check import is_configured
from relay.consumers import log_event
from relay.events import EventRouter, QueueDestination, RoutingTable
from relay.ingress import IngressHandler, IngressServer
from relay.logging_config import setup_logging
from relay.queue import ConsumerWorker, MessageHandler, QueueStore
from relay.settings import get_setting, load_settings

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def build_store(settings: dict, project_root: Path = _PROJECT_ROOT) -> QueueStore:
    q_cfg = settings.get("queue", {})
    db_path = Path(q_cfg.get("db_path", "data/queue.db"))
    if not db_path.is_absolute():
        db_path = project_root / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return QueueStore(
        db_path=db_path,
        default_queue=q_cfg.get("name", "EventBridgeQueue"),
        max_receive_count=q_cfg.get("max_receive_count", 3),
        busy_timeout=q_cfg.get("busy_timeout", 5000),
        poll_interval=q_cfg.get("poll_interval", 0.5),
    )


def build_router(settings: dict, store: QueueStore) -> EventRouter:
    """Every destination named by a rule is a queue in the shared store."""
    table = RoutingTable.from_settings(settings)
    destinations = {
        name: QueueDestination(store, name) for name in table.destination_names()
    }
    return EventRouter(table, destinations)


def build_ingress_handler(settings: dict, router: EventRouter) -> IngressHandler:
    i_cfg = settings.get("ingress", {})
    return IngressHandler(
        router=router,
        source=i_cfg.get("source", "myapp"),
        detail_type=i_cfg.get("detail_type", "order"),
        defaults=dict(i_cfg.get("defaults") or {}),
    )


def build_workers(
    settings: dict, store: QueueStore, handler: MessageHandler = log_event
) -> list[ConsumerWorker]:
    c_cfg = settings.get("consumer", {})
    count = int(c_cfg.get("workers", 1))
    return [
        ConsumerWorker(
            store,
            handler,
            queue=store.default_queue,
            batch_size=c_cfg.get("batch_size", 10),
            visibility_timeout=get_setting(settings, "queue.visibility_timeout", 300),
            wait_time=c_cfg.get("wait_time", 1.0),
            handler_timeout=c_cfg.get("handler_timeout", 60),
            worker_id=f"worker-{i + 1}",
        )
        for i in range(count)
    ]


@dataclass
class Relay:
    """Wired relay components; start/stop them together."""

    store: QueueStore
    router: EventRouter
    handler: IngressHandler
    server: IngressServer
    workers: list[ConsumerWorker] = field(default_factory=list)

    @classmethod
    def from_settings(
        cls,
        settings: dict[str, Any],
        project_root: Path = _PROJECT_ROOT,
        consumer: MessageHandler = log_event,
    ) -> "Relay":
        store = build_store(settings, project_root)
        router = build_router(settings, store)
        handler = build_ingress_handler(settings, router)
        server = IngressServer(
            handler,
            host=get_setting(settings, "ingress.host", "127.0.0.1"),
            port=get_setting(settings, "ingress.port", 8080),
        )
        return cls(store, router, handler, server, build_workers(settings, store, consumer))

    async def start(self) -> None:
        for worker in self.workers:
            await worker.start()
        await self.server.start()

    async def stop(self) -> None:
        await self.server.stop()
        for worker in self.workers:
            await worker.stop()
        await self.store.close()


async def main_async() -> None:
    """Bootstrap: settings -> logging -> wire -> start -> wait for a signal -> stop."""
    settings = load_settings()
    setup_logging(_PROJECT_ROOT, settings)
    ok, reason = is_configured(settings)
    if not ok:
        logger.error("Relay not started, invalid settings: %s", reason)
        raise SystemExit(1)
    relay = Relay.from_settings(settings)
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt handled in main()
    await relay.start()
    logger.info(
        "Relay started: %d rule(s), %d worker(s)", len(relay.router.table), len(relay.workers)
    )
    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        await relay.stop()
        logger.info("Relay stopped")


def main() -> None:
    """Synchronous entry for the relay process."""
    load_dotenv(_PROJECT_ROOT / ".env")
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        pass


__all__ = ["Relay", "main"]
