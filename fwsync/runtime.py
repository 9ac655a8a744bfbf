from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock

from .models import ChangeKind


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class ReconcileResult:
    service: str
    change: ChangeKind
    ok: bool
    wrote: bool = False
    rules: list[str] = field(default_factory=list)
    reason: str | None = None
    finished_at: str = field(default_factory=utc_now)


class RuntimeState:
    """In-memory state shared by the supervisor, the reconciler and the API."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.supervisor_state: str = "STOPPED"
        self.subscriptions: int = 0
        self.events_received: int = 0
        self.reconciles_ok: int = 0
        self.reconciles_failed: int = 0
        self.writes: int = 0
        self.last_error: str | None = None
        self.results: dict[str, ReconcileResult] = {}  # "ns/name" -> last result
        self.load_balancers: set[str] = set()  # services last seen as LoadBalancer

    def set_supervisor_state(self, state: str) -> None:
        with self.lock:
            self.supervisor_state = state

    def mark_subscribed(self) -> None:
        with self.lock:
            self.subscriptions += 1

    def mark_event(self) -> None:
        with self.lock:
            self.events_received += 1

    def mark_error(self, message: str) -> None:
        with self.lock:
            self.last_error = f"{utc_now()} {message}"

    def record(self, result: ReconcileResult) -> None:
        with self.lock:
            if result.change == ChangeKind.DELETED and result.ok:
                # Gone from the cluster and from the firewall.
                self.results.pop(result.service, None)
            else:
                self.results[result.service] = result
            if result.ok:
                self.reconciles_ok += 1
            else:
                self.reconciles_failed += 1
                self.last_error = f"{result.finished_at} {result.service}: {result.reason}"
            if result.wrote:
                self.writes += 1

    def track_kind(self, service: str, is_load_balancer: bool) -> bool:
        """Remember whether a service is a LoadBalancer.

        Returns True when the event is relevant: the service is a LoadBalancer
        now, or was one when last seen (its rules may still need removing).
        """
        with self.lock:
            was = service in self.load_balancers
            if is_load_balancer:
                self.load_balancers.add(service)
            else:
                self.load_balancers.discard(service)
            return is_load_balancer or was

    def forget(self, service: str) -> None:
        with self.lock:
            self.load_balancers.discard(service)
            self.results.pop(service, None)

    def get_results(self) -> list[ReconcileResult]:
        with self.lock:
            return sorted(self.results.values(), key=lambda r: r.service)

    def snapshot(self) -> dict[str, object]:
        with self.lock:
            return {
                "supervisor_state": self.supervisor_state,
                "subscriptions": self.subscriptions,
                "events_received": self.events_received,
                "reconciles_ok": self.reconciles_ok,
                "reconciles_failed": self.reconciles_failed,
                "writes": self.writes,
                "tracked_services": len(self.load_balancers),
                "last_error": self.last_error,
            }
