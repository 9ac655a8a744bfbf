"""Firewall DNAT sync for Kubernetes LoadBalancer services (fwsync).

Long-running controller that:
 - watches LoadBalancer services across all namespaces
 - derives one DNAT rule per exposed port
 - merges those rules into a dedicated rule collection on an Azure Firewall
 - leaves every other collection and firewall field untouched

The reconcile path is kept small so it can be audited and explained.
"""
