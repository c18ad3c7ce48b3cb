from typing import Optional
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
import structlog

from intent_agent.application.service import IntentService, build_service
from intent_agent.domain.memory.exceptions import MemoryStorageError
from intent_agent.infrastructure.config.settings import Settings, get_settings
from intent_agent.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


def _service(request: Request) -> IntentService:
    service = request.app.state.service
    if service is None:
        raise HTTPException(status_code=503, detail="Service not started")
    return service


def create_app(settings: Optional[Settings] = None, service: Optional[IntentService] = None) -> FastAPI:
    """Health and session admin endpoints; also owns the service lifecycle.

    When ``service`` is given it is used as is, otherwise one is built from
    ``settings`` on startup.
    """

    app = FastAPI(title="CDNbuddy Intent Service")
    app.state.service = service

    @app.on_event("startup")
    async def startup_event():
        if app.state.service is None:
            app.state.service = await build_service(settings or get_settings())
        await app.state.service.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.service is not None:
            await app.state.service.close()

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""

        service = _service(request)
        store_ok = await service.memory.ping()
        transport = service.transport
        bus_ok = transport is None or transport.is_connected

        return {
            "status": "healthy" if store_ok and bus_ok else "degraded",
            "store": "ok" if store_ok else "unreachable",
            "bus": "disabled" if transport is None else ("ok" if bus_ok else "disconnected"),
            "in_flight": transport.in_flight if transport is not None else 0,
            "active_sessions": service.memory.active_session_count(),
            "cache": service.memory.cache.get_stats(),
            "metrics": metrics.get_metrics_summary(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str, request: Request):
        service = _service(request)

        try:
            exists = await service.memory.exists(session_id)
            messages = await service.memory.get_messages(session_id) if exists else []
        except MemoryStorageError as e:
            logger.warning("Session lookup failed", session_id=session_id, error=str(e))
            raise HTTPException(status_code=503, detail="Session store unavailable")

        return {
            "session_id": session_id,
            "exists": exists,
            "message_count": len(messages),
            "messages": [message.model_dump(mode="json") for message in messages],
        }

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str, request: Request):
        service = _service(request)

        try:
            await service.memory.clear(session_id)
        except MemoryStorageError as e:
            logger.warning("Session delete failed", session_id=session_id, error=str(e))
            raise HTTPException(status_code=503, detail="Session store unavailable")

        return {"session_id": session_id, "cleared": True}

    return app
