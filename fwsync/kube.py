from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Iterator, Protocol

from kubernetes import client, config, watch
from kubernetes.client import ApiException, CoreV1Api, V1Service
from urllib3.exceptions import HTTPError

from .errors import MalformedSnapshot, TransportDisconnected
from .models import ChangeKind, ServicePort, ServiceSnapshot, WatchEvent

logger = logging.getLogger(__name__)

_CHANGE_KINDS = {"ADDED": ChangeKind.ADDED, "MODIFIED": ChangeKind.MODIFIED, "DELETED": ChangeKind.DELETED}


class EventSource(Protocol):
    def subscribe(self) -> Iterator[WatchEvent]: ...

    def list_services(self) -> list[ServiceSnapshot]: ...

    def stop(self) -> None: ...


def snapshot_from_service(svc: Any) -> ServiceSnapshot:
    """Convert a V1Service into a ServiceSnapshot.

    Missing optional parts (spec, status, ports, annotations) convert to empty
    values; only an object without metadata is rejected.
    """
    meta = getattr(svc, "metadata", None)
    if meta is None:
        raise MalformedSnapshot(f"Object of type {type(svc).__name__} has no metadata")

    spec = getattr(svc, "spec", None)
    ports = tuple(
        ServicePort(port=p.port, protocol=p.protocol)
        for p in (getattr(spec, "ports", None) or [])
        if p is not None and p.port is not None
    )

    ingress_ip = None
    lb = getattr(getattr(svc, "status", None), "load_balancer", None)
    ingress = getattr(lb, "ingress", None) or []
    if ingress:
        ingress_ip = ingress[0].ip

    return ServiceSnapshot(
        namespace=meta.namespace or "",
        name=meta.name or "",
        kind=getattr(spec, "type", None),
        ports=ports,
        annotations=dict(meta.annotations or {}),
        ingress_ip=ingress_ip,
    )


def load_kube_config() -> None:
    """In-cluster service account first, local kubeconfig otherwise."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class KubernetesServiceSource:
    """Watches Services across all namespaces.

    Each `subscribe()` opens one watch stream bounded by `timeout_s`; the
    server closes it after that and the supervisor resubscribes. The last seen
    resourceVersion is reused so a resubscribe does not replay history.
    """

    def __init__(self, api: CoreV1Api | None = None, timeout_s: int = 300):
        self.api = api or client.CoreV1Api()
        self.timeout_s = max(1, int(timeout_s))
        self.resource_version: str | None = None
        self._watch: watch.Watch | None = None
        self._lock = Lock()

    def list_services(self) -> list[ServiceSnapshot]:
        try:
            resp = self.api.list_service_for_all_namespaces()
        except (ApiException, HTTPError) as e:
            raise TransportDisconnected(f"Listing services failed: {e}") from e
        self.resource_version = getattr(resp.metadata, "resource_version", None) or self.resource_version
        return [snapshot_from_service(svc) for svc in resp.items or []]

    def subscribe(self) -> Iterator[WatchEvent]:
        w = watch.Watch()
        with self._lock:
            self._watch = w
        kwargs: dict[str, Any] = {"timeout_seconds": self.timeout_s}
        if self.resource_version:
            kwargs["resource_version"] = self.resource_version
        try:
            for event in w.stream(self.api.list_service_for_all_namespaces, **kwargs):
                etype = str(event.get("type", ""))
                obj = event.get("object")
                if etype == "ERROR":
                    self._handle_error_event(event.get("raw_object") or obj)
                kind = _CHANGE_KINDS.get(etype)
                if kind is None or not isinstance(obj, V1Service):
                    logger.debug("Ignoring watch event of type %r", etype)
                    continue
                rv = getattr(obj.metadata, "resource_version", None)
                if rv:
                    self.resource_version = rv
                yield WatchEvent(kind=kind, snapshot=snapshot_from_service(obj))
        except ApiException as e:
            if e.status == 410:
                self.resource_version = None
            raise TransportDisconnected(f"Watch failed: HTTP {e.status} {e.reason}") from e
        except HTTPError as e:
            raise TransportDisconnected(f"Watch connection error: {e}") from e
        finally:
            with self._lock:
                if self._watch is w:
                    self._watch = None

    def _handle_error_event(self, status: Any) -> None:
        code = status.get("code") if isinstance(status, dict) else None
        message = status.get("message") if isinstance(status, dict) else status
        if code == 410:
            # resourceVersion compacted away; start the next watch fresh.
            self.resource_version = None
        raise TransportDisconnected(f"Watch error event (code={code}): {message}")

    def stop(self) -> None:
        with self._lock:
            if self._watch is not None:
                self._watch.stop()
