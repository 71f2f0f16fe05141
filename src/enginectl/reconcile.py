"""
Subscription facade over the reconciliation loops.

The presentation layer talks to a Reconciler only: it subscribes to a
resource kind, a container's logs or the engine status, and closes the
returned Subscription when its view is torn down. The first subscriber of
a kind starts that kind's ListWorker; closing the last one stops it, so no
timer outlives the views that asked for it.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .backend import ResourceClient
from .config import AppConfig, config_manager
from .model import CONTAINERS, IMAGES, NETWORKS, VOLUMES, ResourceSnapshot
from .state import (
    StateManager, ListWorker, LogsWorker, EngineStatusWorker,
    SnapshotListener, LogListener, EngineListener,
)

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by Reconciler.subscribe*(); close() is idempotent."""

    def __init__(self, close_fn: Callable[[], None]):
        self._close_fn = close_fn
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._close_fn()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class Reconciler:
    def __init__(self, client: ResourceClient, state_manager: Optional[StateManager] = None,
                 config: Optional[AppConfig] = None):
        self.client = client
        self.state = state_manager or StateManager()
        self.config = config or config_manager.get_config()
        self._workers: Dict[str, ListWorker] = {}
        self._log_workers: List[LogsWorker] = []
        self._engine_worker: Optional[EngineStatusWorker] = None
        self._lock = threading.RLock()
        self._fetchers = {
            CONTAINERS: client.list_containers,
            IMAGES: client.list_images,
            NETWORKS: client.list_networks,
            VOLUMES: client.list_volumes,
        }

    def interval_for(self, kind: str) -> float:
        return float(getattr(self.config.polling, kind))

    def _new_worker(self, kind: str) -> ListWorker:
        if kind not in self._fetchers:
            raise ValueError(f"Unknown resource kind '{kind}'")
        return ListWorker(self.state, kind, self._fetchers[kind], self.interval_for(kind))

    # --- resource loops ---

    def start(self, kind: str) -> ListWorker:
        """Start reconciling kind (no-op when already polling)."""
        with self._lock:
            worker = self._workers.get(kind)
            if worker is not None and worker.running:
                return worker
            worker = self._new_worker(kind)
            self._workers[kind] = worker
            worker.start()
            logger.info(f"Started reconciliation of {kind} every {worker.interval}s")
            return worker

    def stop(self, kind: str) -> None:
        with self._lock:
            worker = self._workers.pop(kind, None)
        if worker is not None:
            worker.stop()
            logger.info(f"Stopped reconciliation of {kind}")

    def is_polling(self, kind: str) -> bool:
        with self._lock:
            worker = self._workers.get(kind)
            return worker is not None and worker.running

    def subscribe(self, kind: str, listener: SnapshotListener) -> Subscription:
        """
        Receive every snapshot publication of kind.

        listener(snapshot, error) runs on the publishing thread; error is
        None for a fresh snapshot, or the fetch failure alongside the
        unchanged previous snapshot.
        """
        with self._lock:
            self.state.subscribe(kind, listener)
            self.start(kind)

        def close():
            with self._lock:
                self.state.unsubscribe(kind, listener)
                if self.state.listener_count(kind) == 0:
                    self.stop(kind)

        return Subscription(close)

    def refresh(self, kind: str) -> bool:
        """
        Reconcile kind now, out of cycle, on the caller's thread.

        Uses the running loop when there is one so that stopping it also
        suppresses this publication; otherwise runs a one-off fetch.
        """
        with self._lock:
            worker = self._workers.get(kind)
            if worker is None or not worker.running:
                worker = self._new_worker(kind)
        logger.debug(f"Forced refresh of {kind}")
        return worker.refresh_now()

    def snapshot(self, kind: str) -> ResourceSnapshot:
        return self.state.get_snapshot(kind)

    # --- logs ---

    def subscribe_logs(self, container_id: str, listener: LogListener,
                       tail: Optional[int] = None, stdout: bool = True,
                       stderr: bool = True) -> Subscription:
        """Open a dedicated log poll session for one container."""
        worker = LogsWorker(
            self.client, container_id, listener,
            interval=self.config.polling.logs,
            tail=tail if tail is not None else self.config.logs.tail,
            max_lines=self.config.logs.max_lines,
            stdout=stdout, stderr=stderr,
        )
        with self._lock:
            self._log_workers.append(worker)
        worker.start()

        def close():
            worker.stop()
            with self._lock:
                if worker in self._log_workers:
                    self._log_workers.remove(worker)

        return Subscription(close)

    # --- engine status ---

    def subscribe_engine(self, listener: EngineListener) -> Subscription:
        with self._lock:
            self.state.subscribe_engine(listener)
            if self._engine_worker is None or not self._engine_worker.running:
                self._engine_worker = EngineStatusWorker(
                    self.state, self.client, self.config.polling.engine
                )
                self._engine_worker.start()

        def close():
            with self._lock:
                self.state.unsubscribe_engine(listener)
                if self.state.engine_listener_count() == 0 and self._engine_worker is not None:
                    self._engine_worker.stop()
                    self._engine_worker = None

        return Subscription(close)

    def stop_all(self) -> None:
        with self._lock:
            kinds = list(self._workers)
            log_workers = list(self._log_workers)
            self._log_workers.clear()
            engine_worker, self._engine_worker = self._engine_worker, None
        for kind in kinds:
            self.stop(kind)
        for worker in log_workers:
            worker.stop()
        if engine_worker is not None:
            engine_worker.stop()
