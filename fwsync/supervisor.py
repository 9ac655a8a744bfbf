from __future__ import annotations

from threading import Event, Thread

from . import db
from .errors import FwsyncError
from .kube import EventSource
from .models import ChangeKind, ServiceSnapshot, WatchEvent
from .reconciler import Reconciler
from .runtime import ReconcileResult, RuntimeState

SUBSCRIBING = "SUBSCRIBING"
STREAMING = "STREAMING"
BACKOFF = "BACKOFF"
STOPPED = "STOPPED"


class WatchSupervisor:
    """Keeps a service watch open and feeds its events to the reconciler.

    Outer loop: (re)subscribe, back off after any end or failure of the
    stream. Inner loop: one event at a time, in delivery order, on this
    thread. The stop event is checked before each subscription and before
    each dispatch; a reconcile already running is allowed to finish.

    Resyncs only ever run on this thread. Other threads call
    `request_resync()`, which ends the current stream (or cuts the backoff
    short) so the next subscription starts with a level resync.
    """

    def __init__(
        self,
        source: EventSource,
        reconciler: Reconciler,
        runtime: RuntimeState,
        backoff_s: float = 5,
        resync_on_subscribe: bool = True,
    ):
        self.source = source
        self.reconciler = reconciler
        self.runtime = runtime
        self.backoff_s = max(0.0, float(backoff_s))
        self.resync_on_subscribe = resync_on_subscribe
        self._stop = Event()
        self._resync_requested = Event()
        self._wake = Event()
        self._thr: Thread | None = None

    @property
    def state(self) -> str:
        return self.runtime.supervisor_state

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self.runtime.set_supervisor_state(SUBSCRIBING)
        self._thr = Thread(target=self.run, name="fwsync-supervisor", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        self.source.stop()

    def request_resync(self) -> None:
        """Ask the worker thread to run a level resync.

        The current stream is closed so the worker resubscribes and resyncs
        before it handles any further event. Nothing is reconciled on the
        calling thread.
        """
        self._resync_requested.set()
        self._wake.set()
        self.source.stop()

    @property
    def resync_pending(self) -> bool:
        return self._resync_requested.is_set()

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    def run(self) -> None:
        db.log_event("INFO", "Watch supervisor started")
        while not self._stop.is_set():
            self._wake.clear()
            self.runtime.set_supervisor_state(SUBSCRIBING)
            try:
                self._watch_once()
                if not self._stop.is_set():
                    db.log_event("WARN", "Watch connection ended, reconnecting")
            except Exception as e:
                msg = e.message if isinstance(e, FwsyncError) else f"{type(e).__name__}: {e}"
                self.runtime.mark_error(msg)
                db.log_event("ERROR", f"Watch failed, reconnecting in {self.backoff_s:g}s: {msg}")
            if self._stop.is_set():
                break
            if self._resync_requested.is_set():
                continue
            self.runtime.set_supervisor_state(BACKOFF)
            self._wake.wait(self.backoff_s)
        self.runtime.set_supervisor_state(STOPPED)
        db.log_event("INFO", "Watch supervisor stopped")

    def _watch_once(self) -> None:
        stream = self.source.subscribe()
        self.runtime.mark_subscribed()
        wanted = self._resync_requested.is_set() or self.resync_on_subscribe
        self._resync_requested.clear()
        if wanted and not self._stop.is_set():
            self._resync()
        self.runtime.set_supervisor_state(STREAMING)
        db.log_event("INFO", "Watching LoadBalancer services")
        for event in stream:
            if self._stop.is_set() or self._resync_requested.is_set():
                break
            self.handle_event(event)

    def handle_event(self, event: WatchEvent) -> ReconcileResult | None:
        """Filter and dispatch one event. Reconcile errors never escape."""
        snap = event.snapshot
        relevant = self.runtime.track_kind(snap.key, snap.is_load_balancer)
        if event.kind == ChangeKind.DELETED:
            self.runtime.forget(snap.key)
        if not relevant:
            return None

        self.runtime.mark_event()
        db.log_event("INFO", f"Service event {event.kind.value}", service=snap.key, change=event.kind.value)
        return self._dispatch(snap, event.kind)

    def _resync(self) -> list[ReconcileResult]:
        """Reconcile every LoadBalancer service currently in the cluster.

        Level-triggered catch-up for changes missed while disconnected. Runs
        only on the worker thread, right after subscribing, so the listed
        snapshots are never older than an event already applied. A failed
        list is logged and skipped.
        """
        try:
            services = self.source.list_services()
        except Exception as e:
            msg = e.message if isinstance(e, FwsyncError) else f"{type(e).__name__}: {e}"
            self.runtime.mark_error(msg)
            db.log_event("ERROR", f"Resync list failed: {msg}", change=ChangeKind.RESYNC.value)
            return []

        results: list[ReconcileResult] = []
        for snap in services:
            if self._stop.is_set():
                break
            if not self.runtime.track_kind(snap.key, snap.is_load_balancer):
                continue
            result = self._dispatch(snap, ChangeKind.RESYNC)
            if result is not None:
                results.append(result)
        db.log_event("INFO", f"Resync reconciled {len(results)} service(s)", change=ChangeKind.RESYNC.value)
        return results

    def _dispatch(self, snap: ServiceSnapshot, change: ChangeKind) -> ReconcileResult | None:
        try:
            return self.reconciler.reconcile(snap, change)
        except Exception as e:
            self.runtime.mark_error(f"{snap.key}: {type(e).__name__}: {e}")
            db.log_event(
                "ERROR",
                f"Error handling service event: {type(e).__name__}: {e}",
                service=snap.key,
                change=change.value,
            )
            return None
