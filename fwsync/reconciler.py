from __future__ import annotations

from threading import Lock

from . import db
from .errors import RemoteUnavailable, RemoteWriteFailed
from .firewall import NatRuleCollection
from .models import ChangeKind, ServiceSnapshot
from .rules import derive_rules, merge_collection, owned_collection, rule_prefix, skip_reason, valid_label
from .runtime import ReconcileResult, RuntimeState
from .store import FirewallStore


def _same(a: NatRuleCollection, b: NatRuleCollection | None) -> bool:
    return b is not None and a.model_dump(exclude_none=True) == b.model_dump(exclude_none=True)


class Reconciler:
    """Converges the owned NAT collection for one service per call.

    fetch -> derive -> merge -> write. The remote write replaces the whole
    firewall object with no precondition, so calls are serialized: two
    overlapping cycles in this process would drop each other's changes.
    """

    def __init__(self, store: FirewallStore, runtime: RuntimeState):
        self.store = store
        self.runtime = runtime
        self._lock = Lock()

    def reconcile(self, snapshot: ServiceSnapshot, change: ChangeKind) -> ReconcileResult:
        with self._lock:
            result = self._reconcile(snapshot, change)
        self.runtime.record(result)
        return result

    def _reconcile(self, snapshot: ServiceSnapshot, change: ChangeKind) -> ReconcileResult:
        service = snapshot.key
        ch = change.value

        if not (valid_label(snapshot.namespace) and valid_label(snapshot.name)):
            # No safe prefix can be built; leave the firewall alone.
            db.log_event("WARN", "Skipping service with malformed namespace/name", service=service, change=ch)
            return ReconcileResult(service=service, change=change, ok=True, reason="malformed identity")

        try:
            current = self.store.read()
        except RemoteUnavailable as e:
            db.log_event("ERROR", f"Reading firewall failed: {e.message}", service=service, change=ch)
            return ReconcileResult(service=service, change=change, ok=False, reason=e.message)

        if change == ChangeKind.DELETED:
            desired = ()
            db.log_event("INFO", "Removing DNAT rules for deleted service", service=service, change=ch)
        else:
            desired = derive_rules(snapshot)
            reason = skip_reason(snapshot)
            if reason:
                db.log_event("INFO", f"No rules wanted: {reason}", service=service, change=ch)
        for r in desired:
            db.log_event(
                "INFO",
                f"Prepared DNAT rule {r.name}: {r.destination_address}:{r.port} -> "
                f"{r.translated_address}:{r.translated_port} ({'/'.join(r.protocols)})",
                service=service,
                change=ch,
            )

        merged = merge_collection(current, rule_prefix(snapshot.namespace, snapshot.name), desired)
        names = [r.name for r in desired]

        before = owned_collection(current)
        if before is None and not desired:
            return ReconcileResult(service=service, change=change, ok=True, rules=names, reason="nothing to remove")
        if before is not None and _same(before, owned_collection(merged)):
            return ReconcileResult(service=service, change=change, ok=True, rules=names, reason="already up to date")

        try:
            self.store.write(merged)
        except RemoteWriteFailed as e:
            db.log_event("ERROR", f"Updating firewall failed: {e.message}", service=service, change=ch)
            return ReconcileResult(service=service, change=change, ok=False, rules=names, reason=e.message)

        db.log_event("INFO", f"Firewall updated ({len(names)} rule(s) owned)", service=service, change=ch)
        return ReconcileResult(service=service, change=change, ok=True, wrote=True, rules=names)
