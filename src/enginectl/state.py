"""
Snapshot store and background poll sessions.

This module keeps the locally coherent view of the remote engine and the
worker threads that reconcile it.

Architecture:
  - StateManager: Thread-safe holder of the latest ResourceSnapshot per
    kind and of the EngineStatus, with per-kind listeners
  - PollSession: Daemon thread with states idle -> polling -> stopped
    - ListWorker: Reconciles one resource collection
    - LogsWorker: Polls one container's logs through the frame decoder
    - EngineStatusWorker: Tracks engine reachability (version + info)

Snapshot Semantics:
  - A successful fetch replaces the previous snapshot of its kind whole;
    nothing from an older fetch survives
  - A failed fetch re-publishes the previous snapshot together with the
    error, and the session keeps polling
  - Listeners run on the publishing session's thread, under that
    session's publish lock but never under the store lock. Sessions share
    no lock, so a listener may read the store or stop another session
  - Publications of one session reach its listeners in order

Ordering Window:
  A forced refresh (refresh_now) and a timer tick of the same kind may be
  in flight together. Whichever fetch completes last is published last and
  wins, even if it was started first. Snapshots carry no sequence numbers;
  the next tick converges the view.

Cancellation:
  stop() takes the session's publish lock and sets the cancel flag. Every
  publication re-checks the flag under that lock after the fetch returns,
  so once stop() has returned no further fetch starts and no result is
  published, including one that was in flight when stop() was called.
"""

import dataclasses
import logging
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from .errors import EngineControlError, TransportError
from .logstream import LogRing
from .model import EngineStatus, LogLine, ResourceSnapshot, RESOURCE_KINDS

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[ResourceSnapshot, Optional[Exception]], None]
EngineListener = Callable[[EngineStatus], None]
LogListener = Callable[[List[LogLine], Optional[Exception]], None]


class StateManager:
    """Thread-safe snapshot store."""

    def __init__(self):
        self._snapshots: Dict[str, ResourceSnapshot] = {
            kind: ResourceSnapshot(kind, [], fetched_at=0.0) for kind in RESOURCE_KINDS
        }
        self._errors: Dict[str, Optional[Exception]] = {}
        self._listeners: Dict[str, List[SnapshotListener]] = defaultdict(list)
        self._engine = EngineStatus()
        self._engine_listeners: List[EngineListener] = []
        self._lock = threading.RLock()
        self._version = 0

    def get_version(self) -> int:
        with self._lock: return self._version

    def _inc_version(self):
        # Assumes lock is held
        self._version += 1

    # --- listeners ---

    def subscribe(self, kind: str, listener: SnapshotListener) -> None:
        with self._lock:
            self._listeners[kind].append(listener)

    def unsubscribe(self, kind: str, listener: SnapshotListener) -> None:
        with self._lock:
            if listener in self._listeners[kind]:
                self._listeners[kind].remove(listener)

    def listener_count(self, kind: str) -> int:
        with self._lock:
            return len(self._listeners[kind])

    def subscribe_engine(self, listener: EngineListener) -> None:
        with self._lock:
            self._engine_listeners.append(listener)

    def unsubscribe_engine(self, listener: EngineListener) -> None:
        with self._lock:
            if listener in self._engine_listeners:
                self._engine_listeners.remove(listener)

    def engine_listener_count(self) -> int:
        with self._lock:
            return len(self._engine_listeners)

    def _notify(self, kind: str, listeners: List[SnapshotListener],
                snapshot: ResourceSnapshot, error: Optional[Exception]) -> None:
        # Called without the store lock held
        for listener in listeners:
            try:
                listener(snapshot, error)
            except Exception:
                logger.error(f"Snapshot listener for {kind} failed", exc_info=True)

    def _notify_engine(self, listeners: List[EngineListener], status: EngineStatus) -> None:
        # Called without the store lock held
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.error("Engine status listener failed", exc_info=True)

    # --- snapshots ---

    def publish(self, snapshot: ResourceSnapshot) -> None:
        """Replace the snapshot of snapshot.kind and notify its listeners."""
        with self._lock:
            self._snapshots[snapshot.kind] = snapshot
            self._errors[snapshot.kind] = None
            self._inc_version()
            listeners = list(self._listeners[snapshot.kind])
        self._notify(snapshot.kind, listeners, snapshot, None)

    def publish_error(self, kind: str, error: Exception) -> None:
        """Signal a failed fetch; listeners get the unchanged previous snapshot."""
        with self._lock:
            self._errors[kind] = error
            self._inc_version()
            previous = self._snapshots[kind]
            listeners = list(self._listeners[kind])
        self._notify(kind, listeners, previous, error)

    def get_snapshot(self, kind: str) -> ResourceSnapshot:
        with self._lock:
            return self._snapshots[kind]

    def get_error(self, kind: str) -> Optional[Exception]:
        with self._lock:
            return self._errors.get(kind)

    # --- engine status ---

    def get_engine_status(self) -> EngineStatus:
        with self._lock:
            return self._engine

    @property
    def engine_online(self) -> bool:
        with self._lock:
            return self._engine.online

    def set_engine_status(self, status: EngineStatus) -> None:
        with self._lock:
            self._engine = status
            self._inc_version()
            listeners = list(self._engine_listeners)
        self._notify_engine(listeners, status)

    def set_engine_reachable(self, online: bool, error: str = "") -> None:
        """Update reachability only, notifying when it flips."""
        with self._lock:
            if self._engine.online == online and self._engine.error == error:
                return
            self._engine = dataclasses.replace(
                self._engine, online=online, error=error, checked_at=time.time()
            )
            self._inc_version()
            status = self._engine
            listeners = list(self._engine_listeners)
        self._notify_engine(listeners, status)


class PollSession(threading.Thread):
    """
    Cancelable periodic fetch-and-publish loop.

    Subclasses implement fetch(), deliver(result) and deliver_error(error).
    deliver*() are only ever called under the publish lock with the cancel
    flag clear.
    """

    def __init__(self, name: str, interval: float):
        super().__init__(daemon=True, name=name)
        self.interval = interval
        self._cancel = threading.Event()
        self._wake = threading.Event()
        self._publish_lock = threading.RLock()
        self._tick_count = 0

    @property
    def state(self) -> str:
        if self._cancel.is_set():
            return "stopped"
        if self.is_alive():
            return "polling"
        return "idle"

    @property
    def running(self) -> bool:
        return not self._cancel.is_set()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def stop(self) -> None:
        """Stop polling. Idempotent; nothing is published after this returns."""
        with self._publish_lock:
            if not self._cancel.is_set():
                logger.debug(f"Stopping poll session {self.name}")
            self._cancel.set()
        self._wake.set()

    def force_refresh(self) -> None:
        """Run the next tick now on the session thread instead of waiting."""
        self._wake.set()

    def refresh_now(self) -> bool:
        """
        Run one out-of-band tick on the caller's thread.

        Returns:
            True if the result (or error) was published
        """
        return self.tick()

    def run(self) -> None:
        logger.debug(f"Poll session {self.name} started (interval {self.interval}s)")
        while not self._cancel.is_set():
            self.tick()
            # Wakeups that arrive mid-tick coalesce into one.
            self._wake.wait(self.interval)
            self._wake.clear()
        logger.debug(f"Poll session {self.name} exited")

    def tick(self) -> bool:
        with self._publish_lock:
            if self._cancel.is_set():
                return False
            self._tick_count += 1
        try:
            result = self.fetch()
        except EngineControlError as e:
            logger.warning(f"Fetch failed in {self.name}: {e}")
            return self._publish(self.deliver_error, e)
        except Exception as e:
            logger.error(f"Unexpected fetch failure in {self.name}", exc_info=True)
            return self._publish(self.deliver_error, e)
        return self._publish(self.deliver, result)

    def _publish(self, deliver: Callable[[Any], None], value: Any) -> bool:
        with self._publish_lock:
            if self._cancel.is_set():
                logger.debug(f"Dropping result of {self.name}: session stopped")
                return False
            deliver(value)
            return True

    def fetch(self) -> Any:
        raise NotImplementedError

    def deliver(self, result: Any) -> None:
        raise NotImplementedError

    def deliver_error(self, error: Exception) -> None:
        raise NotImplementedError


class ListWorker(PollSession):
    """Reconciles one resource collection into the StateManager."""

    def __init__(self, state_manager: StateManager, kind: str,
                 fetch: Callable[[], List[Any]], interval: float):
        super().__init__(name=f"list-{kind}", interval=interval)
        self.state_manager = state_manager
        self.kind = kind
        self._fetch = fetch

    def fetch(self) -> ResourceSnapshot:
        records = self._fetch()
        return ResourceSnapshot(self.kind, list(records), fetched_at=time.time())

    def deliver(self, snapshot: ResourceSnapshot) -> None:
        self.state_manager.set_engine_reachable(True)
        self.state_manager.publish(snapshot)

    def deliver_error(self, error: Exception) -> None:
        if isinstance(error, TransportError):
            self.state_manager.set_engine_reachable(False, str(error))
        self.state_manager.publish_error(self.kind, error)


class LogsWorker(PollSession):
    """
    Polls one container's logs and hands the decoded tail to a listener.

    Every tick streams the endpoint through a fresh decoder into a fresh
    ring; the listener receives the ring contents as a whole, replacing
    what it showed before. On failure the previous lines are re-sent with
    the error.
    """

    def __init__(self, client, container_id: str, listener: LogListener,
                 interval: float, tail: int = 200, max_lines: int = 1000,
                 stdout: bool = True, stderr: bool = True):
        super().__init__(name=f"logs-{container_id[:12]}", interval=interval)
        self.client = client
        self.container_id = container_id
        self.listener = listener
        self.tail = tail
        self.stdout = stdout
        self.stderr = stderr
        self.ring = LogRing(max_lines)

    def fetch(self) -> LogRing:
        ring = LogRing(self.ring.max_lines)
        lines = self.client.iter_container_logs(
            self.container_id,
            stdout=self.stdout,
            stderr=self.stderr,
            tail=self.tail,
            should_stop=self._cancel.is_set,
        )
        ring.extend(lines)
        return ring

    def deliver(self, ring: LogRing) -> None:
        self.ring = ring
        self.listener(ring.lines(), None)

    def deliver_error(self, error: Exception) -> None:
        self.listener(self.ring.lines(), error)


class EngineStatusWorker(PollSession):
    """
    Periodic engine health check.

    A TransportError here is the sustained "engine offline" state; other
    failures mean the engine answered but its status could not be read.
    """

    def __init__(self, state_manager: StateManager, client, interval: float):
        super().__init__(name="engine-status", interval=interval)
        self.state_manager = state_manager
        self.client = client

    def fetch(self) -> EngineStatus:
        return EngineStatus.from_api(self.client.version(), self.client.info())

    def deliver(self, status: EngineStatus) -> None:
        self.state_manager.set_engine_status(status)

    def deliver_error(self, error: Exception) -> None:
        previous = self.state_manager.get_engine_status()
        online = not isinstance(error, TransportError)
        self.state_manager.set_engine_status(
            dataclasses.replace(previous, online=online, error=str(error), checked_at=time.time())
        )
