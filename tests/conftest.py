import os
import sys
import tempfile

import pytest

# The journal location is read once when fwsync.settings is imported.
os.environ.setdefault("FWSYNC_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="fwsync-tests-"), "fwsync.db"))

# Ensure project root is importable (so `import main` / `import fwsync` work without installing).
_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fwsync import db  # noqa: E402
from fwsync.errors import RemoteUnavailable, RemoteWriteFailed, TransportDisconnected  # noqa: E402
from fwsync.firewall import FirewallState  # noqa: E402
from fwsync.models import ChangeKind, ServicePort, ServiceSnapshot, WatchEvent  # noqa: E402
from fwsync.settings import FIREWALL_IP_ANNOTATION  # noqa: E402


def make_service(
    name="web",
    namespace="default",
    ports=((80, "TCP"),),
    public_ip="20.1.2.3",
    ingress_ip="10.0.0.5",
    kind="LoadBalancer",
):
    annotations = {FIREWALL_IP_ANNOTATION: public_ip} if public_ip else {}
    return ServiceSnapshot(
        namespace=namespace,
        name=name,
        kind=kind,
        ports=tuple(ServicePort(port=p, protocol=proto) for p, proto in ports),
        annotations=annotations,
        ingress_ip=ingress_ip,
    )


def firewall_payload():
    """A firewall as returned by the SDK's as_dict(), with foreign state everywhere."""
    return {
        "id": "/subscriptions/sub/resourceGroups/rg/providers/Microsoft.Network/azureFirewalls/fw1",
        "name": "fw1",
        "type": "Microsoft.Network/azureFirewalls",
        "location": "westeurope",
        "tags": {"env": "prod", "owner": "netops"},
        "etag": 'W/"abc"',
        "zones": ["1", "2"],
        "sku": {"name": "AZFW_VNet", "tier": "Standard"},
        "threat_intel_mode": "Alert",
        "ip_configurations": [
            {
                "name": "ipconfig",
                "private_ip_address": "10.0.1.4",
                "subnet": {"id": "/subscriptions/sub/resourceGroups/rg/providers/Microsoft.Network/virtualNetworks/hub/subnets/AzureFirewallSubnet"},
                "public_ip_address": {"id": "/subscriptions/sub/resourceGroups/rg/providers/Microsoft.Network/publicIPAddresses/fw-pip"},
            }
        ],
        "application_rule_collections": [
            {
                "name": "AllowWeb",
                "priority": 300,
                "action": {"type": "Allow"},
                "rules": [{"name": "github", "source_addresses": ["10.0.0.0/8"], "target_fqdns": ["github.com"]}],
            }
        ],
        "network_rule_collections": [
            {
                "name": "AllowDns",
                "priority": 200,
                "action": {"type": "Allow"},
                "rules": [
                    {
                        "name": "dns",
                        "protocols": ["UDP"],
                        "source_addresses": ["*"],
                        "destination_addresses": ["168.63.129.16"],
                        "destination_ports": ["53"],
                    }
                ],
            }
        ],
        "nat_rule_collections": [
            {
                "name": "ManualDNAT",
                "priority": 50,
                "action": {"type": "Dnat"},
                "rules": [
                    {
                        "name": "jumpbox-ssh",
                        "protocols": ["TCP"],
                        "source_addresses": ["203.0.113.0/24"],
                        "destination_addresses": ["20.1.2.3"],
                        "destination_ports": ["2222"],
                        "translated_address": "10.0.2.10",
                        "translated_port": "22",
                    }
                ],
            }
        ],
    }


class FakeStore:
    """In-memory firewall that behaves like a whole-object replace API."""

    def __init__(self, payload=None):
        self.state = FirewallState.from_payload(payload if payload is not None else firewall_payload())
        self.reads = 0
        self.writes = []
        self.fail_read = False
        self.fail_write = False

    def read(self):
        self.reads += 1
        if self.fail_read:
            raise RemoteUnavailable("GET firewall rg/fw1 failed: ServiceRequestError: connection refused")
        return self.state.model_copy(deep=True)

    def write(self, state):
        if self.fail_write:
            raise RemoteWriteFailed("PUT firewall rg/fw1 failed: HttpResponseError: (Conflict)")
        self.writes.append(state.model_copy(deep=True))
        self.state = state.model_copy(deep=True)

    def rules_named(self, prefix):
        out = []
        for c in self.state.nat_rule_collections:
            out.extend(r.name for r in c.rules if r.name and r.name.startswith(prefix))
        return out


class FakeSource:
    """Scripted event source.

    `streams` is a list of subscriptions; each one is a list of WatchEvents,
    where an Exception instance is raised at that point of the stream. When
    the script runs out, `on_exhausted` is called (tests use it to stop the
    supervisor) and an empty stream is returned.
    """

    def __init__(self, streams=None, services=None, on_exhausted=None):
        self.streams = list(streams or [])
        self.services = list(services or [])
        self.on_exhausted = on_exhausted
        self.subscribe_calls = 0
        self.list_calls = 0
        self.stopped = False
        self.fail_list = False

    def subscribe(self):
        self.subscribe_calls += 1
        if not self.streams:
            if self.on_exhausted:
                self.on_exhausted()
            return iter(())
        return self._stream(self.streams.pop(0))

    def _stream(self, items):
        for item in items:
            if isinstance(item, Exception):
                raise item
            yield item

    def list_services(self):
        self.list_calls += 1
        if self.fail_list:
            raise TransportDisconnected("Listing services failed: connection reset")
        return list(self.services)

    def stop(self):
        self.stopped = True


def event(kind, snapshot):
    return WatchEvent(kind=ChangeKind(kind), snapshot=snapshot)


@pytest.fixture(autouse=True)
def journal():
    db.init_db()
    yield


@pytest.fixture
def store():
    return FakeStore()
