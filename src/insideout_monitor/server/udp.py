"""UDP receive loop handing datagrams to a bounded worker pool."""

from __future__ import annotations

import logging
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Tuple

LOGGER = logging.getLogger(__name__)

# Largest UDP payload over IPv4; oversized datagrams are never reassembled here.
MAX_DATAGRAM_SIZE = 65507
RECV_TIMEOUT_S = 0.5
DROP_LOG_INTERVAL_S = 10.0

Handler = Callable[[bytes, Tuple[str, int]], object]


class UdpIngestServer:
    """Binds one IPv4 datagram socket and dispatches each packet to ``handler``.

    The receive loop runs on its own thread and never blocks on processing;
    ``handler`` is expected to log and swallow per-packet failures itself.
    At most ``max_pending`` datagrams are queued for or held by workers at a
    time. Packets arriving beyond that are dropped before any decryption.
    """

    def __init__(
        self,
        handler: Handler,
        *,
        host: str = "0.0.0.0",
        port: int = 4000,
        workers: int = 4,
        max_pending: int = 256,
    ) -> None:
        self._handler = handler
        self._host = host
        self._port = port
        self._workers = max(1, workers)
        self._max_pending = max(self._workers, max_pending)
        self._sock: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop = threading.Event()
        self._pending_lock = threading.Lock()
        self._pending = 0
        self._dropped = 0
        self._dropped_since_log = 0
        self._last_drop_log = float("-inf")

    @property
    def address(self) -> Tuple[str, int]:
        if self._sock is None:
            raise RuntimeError("UDP server is not running")
        return self._sock.getsockname()[:2]

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def max_pending(self) -> int:
        return self._max_pending

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return self._pending

    @property
    def dropped(self) -> int:
        return self._dropped

    def start(self) -> Tuple[str, int]:
        if self.running:
            return self.address
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._port))
        except OSError:
            sock.close()
            raise
        sock.settimeout(RECV_TIMEOUT_S)
        executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="udp-worker")
        self._sock = sock
        self._executor = executor
        self._stop.clear()
        self._thread = threading.Thread(target=self._serve, args=(sock, executor), name="udp-receive", daemon=True)
        self._thread.start()
        host, port = self.address
        LOGGER.info("UDP server listening on %s:%s (%d workers, backlog %d)", host, port, self._workers, self._max_pending)
        return host, port

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        if self._dropped:
            LOGGER.warning("UDP server stopped; %d datagram(s) dropped while the backlog was full", self._dropped)
        else:
            LOGGER.info("UDP server stopped")

    def _serve(self, sock: socket.socket, executor: ThreadPoolExecutor) -> None:
        while not self._stop.is_set():
            try:
                packet, addr = sock.recvfrom(MAX_DATAGRAM_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop.is_set():
                    break
                LOGGER.error("UDP receive failed: %s", exc)
                continue
            if not self._reserve():
                self._drop(addr)
                continue
            try:
                executor.submit(self._handle, packet, addr)
            except RuntimeError:
                self._release()
                LOGGER.warning("Worker pool shut down; dropping packet from %s:%s", addr[0], addr[1])

    def _reserve(self) -> bool:
        with self._pending_lock:
            if self._pending >= self._max_pending:
                return False
            self._pending += 1
            return True

    def _release(self) -> None:
        with self._pending_lock:
            self._pending -= 1

    def _drop(self, addr: Tuple[str, int]) -> None:
        # Only the receive thread touches the drop counters.
        self._dropped += 1
        self._dropped_since_log += 1
        now = time.monotonic()
        if now - self._last_drop_log < DROP_LOG_INTERVAL_S:
            return
        LOGGER.warning(
            "Worker backlog full (%d pending); dropped %d datagram(s), latest from %s:%s",
            self._max_pending,
            self._dropped_since_log,
            addr[0],
            addr[1],
        )
        self._dropped_since_log = 0
        self._last_drop_log = now

    def _handle(self, packet: bytes, addr: Tuple[str, int]) -> None:
        try:
            self._handler(packet, addr)
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Unhandled error processing packet from %s:%s", addr[0], addr[1])
        finally:
            self._release()


__all__ = ["MAX_DATAGRAM_SIZE", "UdpIngestServer"]
