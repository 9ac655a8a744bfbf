"""Pydantic view of the remote firewall object.

Only the NAT rule collections are modelled. Every other field of the firewall
(location, tags, sku, ip configurations, application and network rule
collections, fields added by future API versions) is kept as a pydantic extra
and dumped back unchanged, because the write is a full replace.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .settings import OWNED_COLLECTION_NAME, OWNED_COLLECTION_PRIORITY

DNAT_ACTION = "Dnat"


class NatRule(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    description: str | None = None
    source_addresses: list[str] | None = None
    destination_addresses: list[str] | None = None
    destination_ports: list[str] | None = None
    protocols: list[str] | None = None
    translated_address: str | None = None
    translated_port: str | None = None


class NatRuleCollection(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    priority: int | None = None
    action: dict[str, Any] | None = None
    rules: list[NatRule] = Field(default_factory=list)

    @classmethod
    def owned(cls) -> "NatRuleCollection":
        return cls(
            name=OWNED_COLLECTION_NAME,
            priority=OWNED_COLLECTION_PRIORITY,
            action={"type": DNAT_ACTION},
            rules=[],
        )


class FirewallState(BaseModel):
    model_config = ConfigDict(extra="allow")

    nat_rule_collections: list[NatRuleCollection] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Full-object body for the write; None fields are omitted, extras kept."""
        return self.model_dump(exclude_none=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FirewallState":
        data = dict(payload)
        if data.get("nat_rule_collections") is None:
            data["nat_rule_collections"] = []
        return cls.model_validate(data)
