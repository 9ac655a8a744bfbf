from __future__ import annotations

import logging
from typing import Protocol

from azure.core.exceptions import AzureError
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import AzureFirewall

from .errors import RemoteUnavailable, RemoteWriteFailed
from .firewall import FirewallState
from .settings import Settings

logger = logging.getLogger(__name__)


class FirewallStore(Protocol):
    """Whole-object read and replace of the remote firewall."""

    def read(self) -> FirewallState: ...

    def write(self, state: FirewallState) -> None: ...


class AzureFirewallStore:
    """Reads and replaces one Azure Firewall through the ARM network API.

    The client is passed in and owned by the caller; `from_settings` builds one
    with DefaultAzureCredential for the normal process lifetime. Every call
    passes both `timeout` (connection and retries) and `read_timeout` (each
    socket read, which otherwise defaults to 300s in azure-core).
    """

    def __init__(self, client: NetworkManagementClient, resource_group: str, firewall_name: str, timeout_s: int = 60):
        self.client = client
        self.resource_group = resource_group
        self.firewall_name = firewall_name
        self.timeout_s = max(1, int(timeout_s))

    @classmethod
    def from_settings(cls, cfg: Settings) -> "AzureFirewallStore":
        from azure.identity import DefaultAzureCredential

        subscription_id, resource_group, firewall_name = cfg.require_firewall_target()
        client = NetworkManagementClient(DefaultAzureCredential(), subscription_id)
        return cls(client, resource_group, firewall_name, timeout_s=cfg.remote_timeout_s)

    @property
    def target(self) -> str:
        return f"{self.resource_group}/{self.firewall_name}"

    def read(self) -> FirewallState:
        try:
            fw = self.client.azure_firewalls.get(
                self.resource_group, self.firewall_name, timeout=self.timeout_s, read_timeout=self.timeout_s
            )
        except AzureError as e:
            raise RemoteUnavailable(f"GET firewall {self.target} failed: {type(e).__name__}: {e}") from e
        return FirewallState.from_payload(fw.as_dict())

    def write(self, state: FirewallState) -> None:
        body = AzureFirewall.from_dict(state.to_payload())
        try:
            poller = self.client.azure_firewalls.begin_create_or_update(
                self.resource_group, self.firewall_name, body, timeout=self.timeout_s, read_timeout=self.timeout_s
            )
            poller.result(timeout=self.timeout_s)
        except AzureError as e:
            raise RemoteWriteFailed(f"PUT firewall {self.target} failed: {type(e).__name__}: {e}") from e
        if not poller.done():
            raise RemoteWriteFailed(f"PUT firewall {self.target} did not complete within {self.timeout_s}s")
        logger.debug("Firewall %s replaced (status=%s)", self.target, poller.status())

    def close(self) -> None:
        self.client.close()
