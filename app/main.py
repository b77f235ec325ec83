from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app import models  # noqa: F401
from app.api.crm import router as crm_router
from app.container import container
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.middleware.health_monitor import HealthMonitorMiddleware
from app.telemetry import setup_otel
from app.websocket.router import router as ws_router

app = FastAPI(title="omnichannel inbox API")

configure_logging()
setup_otel(app)
app.add_middleware(HealthMonitorMiddleware, stats=container.health_stats())
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(crm_router)
app.include_router(ws_router)


@app.get("/health")
def health_check():
    snapshot = container.health_stats().snapshot()
    snapshot["websocket_connections"] = container.connection_manager().connection_count
    return snapshot


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
async def _start_websocket_manager():
    manager = container.connection_manager()
    await manager.connect()


@app.on_event("shutdown")
async def _stop_websocket_manager():
    manager = container.connection_manager()
    await manager.disconnect()
