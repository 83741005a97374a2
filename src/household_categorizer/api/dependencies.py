from fastapi import HTTPException, Request

from household_categorizer.integration.backend import BackendClient
from household_categorizer.manager import CategorizerRegistry
from household_categorizer.services.monitor import CategorizationMonitor


def get_registry(request: Request) -> CategorizerRegistry:
    registry = getattr(request.app.state, "registry", None)
    if not registry:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return registry


def get_backend(request: Request) -> BackendClient:
    backend = getattr(request.app.state, "backend", None)
    if not backend:
        raise HTTPException(status_code=500, detail="Backend not configured")
    return backend


def get_monitor(request: Request) -> CategorizationMonitor:
    monitor = getattr(request.app.state, "monitor", None)
    if not monitor:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return monitor
