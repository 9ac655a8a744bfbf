"""HTTP entry point: hosts the watch supervisor and a small status API.

Run with:  uvicorn main:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import asdict
from typing import Callable

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from fwsync import db
from fwsync.api_models import EventOut, ResyncRequestOut, ServiceResultOut, StatusOut
from fwsync.reconciler import Reconciler
from fwsync.runtime import ReconcileResult, RuntimeState
from fwsync.settings import Settings, settings
from fwsync.supervisor import WatchSupervisor

logger = logging.getLogger("fwsync")

SupervisorFactory = Callable[[Settings, RuntimeState], WatchSupervisor]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_supervisor(cfg: Settings, runtime: RuntimeState) -> WatchSupervisor:
    """Wire the Kubernetes source and Azure store. Raises ConfigError on missing settings."""
    from fwsync.kube import KubernetesServiceSource, load_kube_config
    from fwsync.store import AzureFirewallStore

    store = AzureFirewallStore.from_settings(cfg)
    load_kube_config()
    source = KubernetesServiceSource(timeout_s=cfg.watch_timeout_s)
    return WatchSupervisor(
        source,
        Reconciler(store, runtime),
        runtime,
        backoff_s=cfg.watch_backoff_s,
        resync_on_subscribe=cfg.resync_on_subscribe,
    )


def _result_out(r: ReconcileResult) -> ServiceResultOut:
    data = asdict(r)
    data["change"] = r.change.value
    return ServiceResultOut(**data)


def create_app(cfg: Settings = settings, supervisor_factory: SupervisorFactory = build_supervisor) -> FastAPI:
    app = FastAPI(title="fwsync", description="Kubernetes LoadBalancer -> Azure Firewall DNAT sync")
    security = HTTPBasic()
    runtime = RuntimeState()
    app.state.runtime = runtime
    app.state.supervisor = None

    def get_admin(credentials: HTTPBasicCredentials = Depends(security)) -> str:
        if not cfg.admin_user or not cfg.admin_password:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Manual resync is disabled")
        if not (
            secrets.compare_digest(credentials.username, cfg.admin_user)
            and secrets.compare_digest(credentials.password, cfg.admin_password)
        ):
            raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
        return credentials.username

    def get_supervisor() -> WatchSupervisor:
        sup = app.state.supervisor
        if sup is None:
            raise HTTPException(status_code=503, detail="Supervisor not running")
        return sup

    @app.on_event("startup")
    def startup() -> None:
        db.init_db()
        # ConfigError here aborts startup before any watch is opened.
        cfg.require_firewall_target()
        sup = supervisor_factory(cfg, runtime)
        app.state.supervisor = sup
        sup.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        sup = app.state.supervisor
        if sup is not None:
            sup.stop()
            sup.join(timeout=cfg.remote_timeout_s + 5)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/status", response_model=StatusOut)
    def get_status() -> StatusOut:
        return StatusOut(**runtime.snapshot(), firewall=f"{cfg.resource_group}/{cfg.firewall_name}")

    @app.get("/services", response_model=list[ServiceResultOut])
    def list_services() -> list[ServiceResultOut]:
        return [_result_out(r) for r in runtime.get_results()]

    @app.get("/events", response_model=list[EventOut])
    def list_events(limit: int = Query(50, ge=1, le=1000)) -> list[EventOut]:
        return [EventOut(**e) for e in db.latest_events(limit)]

    @app.post("/resync", response_model=ResyncRequestOut, status_code=status.HTTP_202_ACCEPTED)
    def resync(username: str = Depends(get_admin), sup: WatchSupervisor = Depends(get_supervisor)) -> ResyncRequestOut:
        # The supervisor thread runs it; results show up under /services.
        db.log_event("INFO", f"Manual resync requested by {username}")
        sup.request_resync()
        return ResyncRequestOut(requested=True, supervisor_state=sup.state)

    return app


configure_logging(settings.log_level)
app = create_app()
