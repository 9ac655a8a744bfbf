"""Desired-rule derivation and the owned-collection merge.

Both halves are pure: no I/O, no logging, no clock. Calling them again with the
same input gives the same output, which is what makes a failed reconcile safe
to repeat on the next event.
"""
from __future__ import annotations

import re
from typing import Iterable

from .firewall import FirewallState, NatRule, NatRuleCollection
from .models import DesiredRule, ServiceSnapshot
from .settings import FIREWALL_IP_ANNOTATION, OWNED_COLLECTION_NAME

# Kubernetes namespaces are DNS-1123 labels and Service names DNS-1035 labels.
# Neither may contain '.', so it separates the parts of a rule name unambiguously.
NAME_SEPARATOR = "."
LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")

_PROTOCOLS = {"tcp": "TCP", "udp": "UDP"}


def valid_label(value: str | None) -> bool:
    return bool(value) and LABEL_RE.match(value) is not None


def rule_prefix(namespace: str, name: str) -> str:
    return f"{namespace}{NAME_SEPARATOR}{name}{NAME_SEPARATOR}"


def rule_name(namespace: str, name: str, port: int) -> str:
    return f"{rule_prefix(namespace, name)}{int(port)}"


def normalize_protocol(protocol: str | None) -> str:
    return _PROTOCOLS.get((protocol or "").strip().lower(), "TCP")


def firewall_address(snapshot: ServiceSnapshot) -> str | None:
    value = (snapshot.annotations or {}).get(FIREWALL_IP_ANNOTATION)
    if value is None:
        return None
    return value.strip() or None


def skip_reason(snapshot: ServiceSnapshot) -> str | None:
    """Why the snapshot yields no rules, or None when it is actionable."""
    if not snapshot.is_load_balancer:
        return f"type is {snapshot.kind!r}, not LoadBalancer"
    if not (valid_label(snapshot.namespace) and valid_label(snapshot.name)):
        return "namespace or name is missing or not a valid DNS label"
    if not snapshot.ingress_ip:
        return "no LoadBalancer IP assigned yet"
    if firewall_address(snapshot) is None:
        return f"no {FIREWALL_IP_ANNOTATION} annotation"
    return None


def derive_rules(snapshot: ServiceSnapshot) -> tuple[DesiredRule, ...]:
    """Map a service snapshot to the DNAT rules it should own.

    One rule per distinct port. A port listed for both TCP and UDP becomes a
    single rule carrying both protocols, so rule names stay unique.
    """
    if skip_reason(snapshot) is not None:
        return ()

    public_ip = firewall_address(snapshot)
    protocols_by_port: dict[int, list[str]] = {}
    for sp in snapshot.ports:
        try:
            port = int(sp.port)
        except (TypeError, ValueError):
            continue
        if not 1 <= port <= 65535:
            continue
        protocols = protocols_by_port.setdefault(port, [])
        proto = normalize_protocol(sp.protocol)
        if proto not in protocols:
            protocols.append(proto)

    description = f"DNAT for K8s service {snapshot.namespace}/{snapshot.name}"
    return tuple(
        DesiredRule(
            name=rule_name(snapshot.namespace, snapshot.name, port),
            protocols=tuple(protocols),
            destination_address=public_ip,
            port=port,
            translated_address=snapshot.ingress_ip,
            translated_port=port,
            description=description,
        )
        for port, protocols in protocols_by_port.items()
    )


def to_nat_rule(rule: DesiredRule) -> NatRule:
    return NatRule(
        name=rule.name,
        description=rule.description,
        source_addresses=list(rule.source_addresses),
        destination_addresses=[rule.destination_address],
        destination_ports=[str(rule.port)],
        protocols=list(rule.protocols),
        translated_address=rule.translated_address,
        translated_port=str(rule.translated_port),
    )


def merge_rules(existing: Iterable[NatRule], prefix: str, desired: Iterable[DesiredRule]) -> list[NatRule]:
    """Replace the rules under `prefix` with `desired`, keeping everything else in order.

    A rule without a usable name never matches the prefix and is kept.
    """
    kept = [r.model_copy(deep=True) for r in existing if not (isinstance(r.name, str) and r.name.startswith(prefix))]
    return kept + [to_nat_rule(r) for r in desired]


def owned_collection(state: FirewallState) -> NatRuleCollection | None:
    for c in state.nat_rule_collections:
        if c.name == OWNED_COLLECTION_NAME:
            return c
    return None


def merge_collection(state: FirewallState, prefix: str, desired: Iterable[DesiredRule]) -> FirewallState:
    """Return a copy of `state` whose owned collection holds the merged rules.

    The owned collection is created (priority and DNAT action fixed) if it does
    not exist yet. Other collections and all other fields are copied through.
    """
    merged = state.model_copy(deep=True)
    current = owned_collection(merged)
    if current is None:
        current = NatRuleCollection.owned()
        merged.nat_rule_collections.append(current)
    current.rules = merge_rules(current.rules, prefix, desired)
    return merged
