"""Builds the ingest/alert components from a Config and owns their lifecycle."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple

from insideout_monitor.alerting.dispatcher import BatchDispatcher
from insideout_monitor.alerting.engine import AlertEngine
from insideout_monitor.alerting.sinks import AlertDeliverer
from insideout_monitor.alerting.webhooks import WebhookClient
from insideout_monitor.config.loader import Config
from insideout_monitor.ingest.pipeline import IngestPipeline
from insideout_monitor.scheduling import Scheduler
from insideout_monitor.server.udp import UdpIngestServer
from insideout_monitor.state.sql import SqlStatusStore
from insideout_monitor.state.store import InMemoryStatusStore, StatusStore

LOGGER = logging.getLogger(__name__)


def build_store(config: Config) -> StatusStore:
    if config.storage.in_memory:
        LOGGER.info("Using in-memory status store; state is lost on restart")
        return InMemoryStatusStore()
    LOGGER.info("Using status database %s", config.storage.database_url)
    return SqlStatusStore(config.storage.database_url)


class MonitorService:
    """Ingest server, status checks and alert dispatch for one configuration.

    Shutdown order matters: stop receiving, stop the status checks, then flush
    the pending alert batch and wait for in-flight deliveries.
    """

    def __init__(
        self,
        config: Config,
        key: bytes,
        *,
        store: Optional[StatusStore] = None,
        deliverer: Optional[AlertDeliverer] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else build_store(config)
        self._owns_store = store is None
        clock = clock or time.time
        behavior = config.alerting.behavior

        self._owned_client: Optional[WebhookClient] = None
        self.dispatcher: Optional[BatchDispatcher] = None
        if config.alerting.enabled:
            if deliverer is None:
                self._owned_client = WebhookClient(timeout_s=behavior.delivery_timeout_seconds)
                deliverer = self._owned_client
            self.dispatcher = BatchDispatcher(
                config.alerting.webhooks,
                deliverer,
                self.store,
                batch_delay_seconds=behavior.batch_delay_seconds,
                scheduler=scheduler,
                max_workers=max(1, len(config.alerting.webhooks)),
                delivery_timeout_seconds=behavior.delivery_timeout_seconds,
                clock=clock,
            )
            LOGGER.info("Alerting enabled with %d webhook sink(s)", len(config.alerting.webhooks))
        else:
            LOGGER.info("Alerting disabled")

        self.engine = AlertEngine(self.store, self.dispatcher, behavior=behavior, clock=clock)
        self.pipeline = IngestPipeline(
            key,
            self.engine,
            max_message_age_seconds=config.server.max_message_age_seconds,
            clock=clock,
        )
        self.udp = UdpIngestServer(
            self.pipeline.handle_datagram,
            host=config.server.host,
            port=config.server.udp_port,
            workers=config.server.workers,
            max_pending=config.server.max_pending,
        )
        self._stopped = False
        self._started = False

    def start(self) -> Tuple[str, int]:
        address = self.udp.start()
        self.engine.start()
        self._started = True
        LOGGER.info("Message age window: %ss", self.config.server.max_message_age_seconds)
        return address

    def stop(self) -> None:
        if self._stopped:
            return
        LOGGER.info("Shutting down")
        if self._started:
            self.udp.stop()
            self.engine.stop()
        if self.dispatcher is not None:
            self.dispatcher.close(flush=True)
        if self._owned_client is not None:
            self._owned_client.close()
        if self._owns_store and isinstance(self.store, SqlStatusStore):
            self.store.close()
        self._stopped = True

    def __enter__(self) -> "MonitorService":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


__all__ = ["MonitorService", "build_store"]
