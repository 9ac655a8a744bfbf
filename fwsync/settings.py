from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigError

# Annotation carrying the firewall's public address for a service.
FIREWALL_IP_ANNOTATION = "azure.firewall/public-ip"

# The single NAT rule collection owned by this controller.
OWNED_COLLECTION_NAME = "K8sServiceDNAT"
OWNED_COLLECTION_PRIORITY = 100


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Target firewall (required)
    subscription_id: str | None = os.getenv("AZURE_SUBSCRIPTION_ID")
    resource_group: str | None = os.getenv("AZURE_RESOURCE_GROUP")
    firewall_name: str | None = os.getenv("AZURE_FIREWALL_NAME")

    # Core
    db_path: str = os.getenv("FWSYNC_DB_PATH", "fwsync.db")
    log_level: str = os.getenv("FWSYNC_LOG_LEVEL", "INFO")
    watch_backoff_s: int = _env_int("FWSYNC_WATCH_BACKOFF_S", 5)
    watch_timeout_s: int = _env_int("FWSYNC_WATCH_TIMEOUT_S", 300)
    remote_timeout_s: int = _env_int("FWSYNC_REMOTE_TIMEOUT_S", 60)
    resync_on_subscribe: bool = _env_bool("FWSYNC_RESYNC_ON_SUBSCRIBE", True)

    # Basic auth for the manual resync endpoint. Unset user disables the endpoint.
    admin_user: str | None = os.getenv("FWSYNC_ADMIN_USER")
    admin_password: str | None = os.getenv("FWSYNC_ADMIN_PASSWORD")

    def require_firewall_target(self) -> tuple[str, str, str]:
        """Return (subscription_id, resource_group, firewall_name) or raise ConfigError."""
        missing = [
            env
            for env, value in (
                ("AZURE_SUBSCRIPTION_ID", self.subscription_id),
                ("AZURE_RESOURCE_GROUP", self.resource_group),
                ("AZURE_FIREWALL_NAME", self.firewall_name),
            )
            if not (value and value.strip())
        ]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
        return self.subscription_id.strip(), self.resource_group.strip(), self.firewall_name.strip()


settings = Settings()
