"""FastAPI routes for the OpenWatch analytics API."""

import json
import logging
import os
import sys
import time
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Security,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from openwatch.hub.constants import (
    DEFAULT_LOG_DAYS,
    EVENT_PARAMETERS_UPDATED,
    EVENT_TRANSITION,
    MAX_QUERY_DAYS,
    MODULE_MONITOR,
)
from openwatch.hub.core import MonitorHub
from openwatch.shared.models import WEEKDAY_NAMES

logger = logging.getLogger(__name__)

# --- Optional API key authentication ---
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _configured_api_key() -> str | None:
    return os.environ.get("OPENWATCH_API_KEY")


async def verify_api_key(key: str = Security(_api_key_header)):
    """Verify API key if OPENWATCH_API_KEY is configured, otherwise allow all."""
    expected = _configured_api_key()
    if expected and key != expected:
        raise HTTPException(status_code=403, detail="Invalid API key")


# --- Pydantic request models ---
class ParametersUpdate(BaseModel):
    """Full or partial parameter record. Omitted fields keep their value.

    Strict mode: ``true`` or ``"120000"`` for an integer field is a 422,
    not a silent coercion.
    """

    model_config = {"extra": "forbid", "strict": True}

    poll_interval_open_ms: int | None = None
    poll_interval_closed_ms: int | None = None
    poll_interval_night_ms: int | None = None
    night_start_hour: int | None = None
    night_end_hour: int | None = None
    history_limit_days: int | None = None
    min_session_duration_minutes: int | None = None
    lookback_months: int | None = None
    weight_by_month_offset: dict[str, float] | None = None


class LogCreate(BaseModel):
    date_key: str
    time_logged: str
    is_opening: bool


class WebSocketManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict[str, Any]):
        """Broadcast message to all connected WebSockets."""
        disconnected = set()

        for connection in self.active_connections:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Error broadcasting to WebSocket: {e}")
                disconnected.add(connection)

        for conn in disconnected:
            self.disconnect(conn)


def _register_utility_routes(router: APIRouter, hub: MonitorHub) -> None:
    """Register version, live status and stats endpoints."""
    from openwatch import __version__

    @router.get("/api/version")
    async def get_version():
        """Return package version and runtime info."""
        return {
            "version": __version__,
            "package": "openwatch",
            "python": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        }

    @router.get("/api/status")
    async def get_status():
        """Live monitor state (last known open/closed, current interval)."""
        monitor = hub.get_module(MODULE_MONITOR)
        if monitor is None:
            return {"monitoring": False}
        return {"monitoring": True, **monitor.snapshot()}

    @router.get("/api/stats")
    async def get_stats():
        """Total events and the first/last logged date."""
        try:
            stats = await hub.get_stats()
            return {
                "totalLogs": stats["total_events"],
                "firstDate": stats["first_date"],
                "lastDate": stats["last_date"],
            }
        except Exception:
            logger.exception("Error getting stats")
            raise HTTPException(status_code=500, detail="Internal server error") from None


def _register_parameter_routes(router: APIRouter, hub: MonitorHub) -> None:
    """Register prediction parameter read/update endpoints."""

    @router.get("/api/parameters")
    async def get_parameters():
        """Get the current prediction parameters."""
        try:
            params = await hub.get_parameters()
            return params.to_dict()
        except Exception:
            logger.exception("Error getting parameters")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.put("/api/parameters")
    async def put_parameters(body: ParametersUpdate):
        """Update some or all parameters. Persisted before success is returned."""
        changes = body.model_dump(exclude_none=True)
        if not changes:
            raise HTTPException(status_code=400, detail="No parameters supplied")
        try:
            params = await hub.update_parameters(changes)
            return {"success": True, "parameters": params.to_dict()}
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except Exception:
            logger.exception("Error updating parameters")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.post("/api/parameters/reset")
    async def reset_parameters():
        """Restore the default parameters."""
        try:
            params = await hub.reset_parameters()
            return {"success": True, "parameters": params.to_dict()}
        except Exception:
            logger.exception("Error resetting parameters")
            raise HTTPException(status_code=500, detail="Internal server error") from None


def _register_log_routes(router: APIRouter, hub: MonitorHub) -> None:
    """Register event log, session and history endpoints."""

    @router.get("/api/logs")
    async def get_logs(days: int = Query(default=DEFAULT_LOG_DAYS, ge=0, le=MAX_QUERY_DAYS)):
        """Raw transition events of the last N days, oldest first."""
        try:
            events = await hub.get_logs(days)
            return [event.to_dict() for event in events]
        except Exception:
            logger.exception("Error getting logs")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.get("/api/logs/filtered")
    async def get_filtered_logs(
        days: int = Query(default=DEFAULT_LOG_DAYS, ge=0, le=MAX_QUERY_DAYS),
        min_duration: int | None = Query(default=None, alias="minDuration", ge=0),
    ):
        """One reconstructed session per day, keyed by date."""
        try:
            sessions = await hub.get_sessions(days, min_duration)
            return {date_key: session.to_dict() for date_key, session in sessions.items()}
        except Exception:
            logger.exception("Error getting filtered logs")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.get("/api/history")
    async def get_history(days: int | None = Query(default=None, ge=0, le=MAX_QUERY_DAYS)):
        """Every opening and closing time per day, newest day first."""
        try:
            return await hub.get_history(days)
        except Exception:
            logger.exception("Error getting history")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.post("/api/logs")
    async def create_log(body: LogCreate):
        """Insert a transition event by hand."""
        try:
            event = await hub.add_log(body.date_key, body.time_logged, body.is_opening)
            return {"success": True, "event": event.to_dict()}
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except Exception:
            logger.exception("Error adding log")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.delete("/api/logs/{event_id}")
    async def delete_log(event_id: int):
        """Remove one event by id and return what was removed."""
        try:
            removed = await hub.delete_log(event_id)
        except Exception:
            logger.exception("Error deleting log %s", event_id)
            raise HTTPException(status_code=500, detail="Internal server error") from None
        if removed is None:
            raise HTTPException(status_code=404, detail=f"Log {event_id} not found")
        return {"success": True, "id": event_id, "event": removed.to_dict()}

    @router.post("/api/logs/prune")
    async def prune_logs(max_days: int = Query(ge=1, le=MAX_QUERY_DAYS)):
        """Delete events older than max_days."""
        try:
            pruned = await hub.prune_logs(max_days)
            return {"success": True, "deleted": pruned}
        except Exception:
            logger.exception("Error pruning logs")
            raise HTTPException(status_code=500, detail="Internal server error") from None


def _register_prediction_routes(router: APIRouter, hub: MonitorHub) -> None:
    """Register weekday prediction endpoints."""

    @router.get("/api/predictions")
    async def get_predictions():
        """Weighted-median open/close minutes for each weekday (0=Sunday)."""
        try:
            predictions = await hub.get_predictions()
            return {str(weekday): prediction.to_dict() for weekday, prediction in predictions.items()}
        except Exception:
            logger.exception("Error computing predictions")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.get("/api/predictions/next")
    async def get_next_prediction(is_open: bool | None = None):
        """Typical time of the next flip. Uses the live state if is_open is omitted."""
        if is_open is None:
            monitor = hub.get_module(MODULE_MONITOR)
            is_open = monitor.state.last_known_open if monitor is not None else None
        if is_open is None:
            raise HTTPException(status_code=400, detail="Current state unknown; pass is_open")
        try:
            predicted = await hub.predict_next(is_open)
        except Exception:
            logger.exception("Error computing next prediction")
            raise HTTPException(status_code=500, detail="Internal server error") from None
        today = hub.clock().date()
        return {
            "open": is_open,
            "expected": "close" if is_open else "open",
            "time": predicted,
            "weekday": WEEKDAY_NAMES[(today.weekday() + (1 if is_open else 2)) % 7],
        }


def create_api(hub: MonitorHub) -> FastAPI:
    """Create FastAPI application with hub routes.

    Args:
        hub: MonitorHub instance

    Returns:
        FastAPI application
    """
    from openwatch import __version__

    app = FastAPI(
        title="OpenWatch",
        description="REST API for OpenWatch — open/closed monitoring and weekday predictions",
        version=__version__,
    )

    ws_manager = WebSocketManager()

    @app.middleware("http")
    async def request_timing_middleware(request: Request, call_next):
        hub._request_count += 1
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start
        if elapsed > 1.0:
            logger.warning(f"{request.method} {request.url.path} took {elapsed:.2f}s")
        else:
            logger.debug(f"{request.method} {request.url.path} took {elapsed:.3f}s")
        return response

    # Forward hub events to WebSocket clients
    async def broadcast_transition(data: dict[str, Any]):
        await ws_manager.broadcast({"type": EVENT_TRANSITION, "data": data})

    async def broadcast_parameters(data: dict[str, Any]):
        await ws_manager.broadcast({"type": EVENT_PARAMETERS_UPDATED, "data": data})

    hub.subscribe(EVENT_TRANSITION, broadcast_transition)
    hub.subscribe(EVENT_PARAMETERS_UPDATED, broadcast_parameters)

    # Authenticated router: all /api/* routes require API key when configured
    router = APIRouter(dependencies=[Depends(verify_api_key)])

    @app.get("/")
    async def root():
        """API root - health check."""
        return {"status": "ok", "service": "OpenWatch"}

    @app.get("/health")
    async def health():
        """Detailed health check with module status and event counts."""
        try:
            health_data = await hub.health_check()
            return JSONResponse(content=health_data)
        except Exception:
            logger.exception("Health check failed")
            return JSONResponse(status_code=500, content={"status": "error", "error": "Health check failed"})

    @router.get("/api/metrics")
    async def get_metrics():
        """Return basic operational metrics."""
        return {
            "uptime_seconds": round(hub.get_uptime_seconds()),
            "requests_total": hub._request_count,
            "websocket_clients": len(ws_manager.active_connections),
        }

    _register_utility_routes(router, hub)
    _register_parameter_routes(router, hub)
    _register_log_routes(router, hub)
    _register_prediction_routes(router, hub)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for live transitions and parameter changes."""
        expected = _configured_api_key()
        if expected and websocket.query_params.get("token") != expected:
            await websocket.close(code=4003)
            return

        await ws_manager.connect(websocket)
        try:
            await websocket.send_json({"type": "connected", "message": "Connected to OpenWatch"})
            while True:
                try:
                    data = await websocket.receive_text()
                    message = json.loads(data)
                    if message.get("type") == "ping":
                        await websocket.send_json({"type": "pong"})
                    else:
                        logger.debug(f"Received WebSocket message: {message}")
                except WebSocketDisconnect:
                    break
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                except Exception as e:
                    logger.error(f"WebSocket error: {e}")
                    break
        finally:
            ws_manager.disconnect(websocket)

    app.include_router(router)

    return app
