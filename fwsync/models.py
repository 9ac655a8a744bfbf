from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


LOAD_BALANCER = "LoadBalancer"


class ChangeKind(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    # Self-triggered level resync, not a watch event.
    RESYNC = "RESYNC"


@dataclass(frozen=True)
class ServicePort:
    port: int
    protocol: str | None = "TCP"


@dataclass(frozen=True)
class ServiceSnapshot:
    """A LoadBalancer service as observed at one point in time."""

    namespace: str
    name: str
    kind: str | None = None
    ports: tuple[ServicePort, ...] = ()
    annotations: Mapping[str, str] = field(default_factory=dict)
    ingress_ip: str | None = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_load_balancer(self) -> bool:
        return self.kind == LOAD_BALANCER

    @classmethod
    def identity_only(cls, namespace: str, name: str) -> "ServiceSnapshot":
        """Snapshot for a deletion where only the identity survived."""
        return cls(namespace=namespace, name=name, kind=LOAD_BALANCER)


@dataclass(frozen=True)
class WatchEvent:
    kind: ChangeKind
    snapshot: ServiceSnapshot


@dataclass(frozen=True)
class DesiredRule:
    name: str
    protocols: tuple[str, ...]
    destination_address: str
    port: int
    translated_address: str
    translated_port: int
    description: str = ""
    source_addresses: tuple[str, ...] = ("*",)
