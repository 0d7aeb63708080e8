"""FastAPI REST and WebSocket interface for soil probe monitoring.

One app owns one ConnectionSession (created by create_app, kept on
app.state) plus an in-memory ReadingsHistory fed from it. Nothing here is a
module-level singleton; tests build their own app around a fake provider.

Error mapping:
- connect() while a session is already open → 400
- connect() failure (no port, open failed) → 503
- Everything else is reported through the event log (GET /logs)
"""

import asyncio
import logging
import os
from threading import RLock
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from data_store import ReadingsHistory
from soil_probe_lib import __version__ as LIB_VERSION
from soil_probe_lib.event_log import EventLog
from soil_probe_lib.models import ConnectionState, Event, Readings, SerialConfig, Severity
from soil_probe_lib.session import ConnectionSession
from soil_probe_lib.transport import SerialTransportProvider

# =============================================================================
# Environment Configuration
# =============================================================================

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "9160"))
DEFAULT_SERIAL_PORT = os.getenv("SERIAL_PORT", "")  # empty = auto-select
DEFAULT_SERIAL_BAUD = int(os.getenv("SERIAL_BAUD", "9600"))
EVENT_LOG_CAPACITY = int(os.getenv("EVENT_LOG_CAPACITY", "100"))
HISTORY_MAX_ROWS = int(os.getenv("HISTORY_MAX_ROWS", "10000"))
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000"
).split(",")

API_VERSION = "0.1.0"

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SERVICE_INFO = {
    "service": "Soil Probe API",
    "version": API_VERSION,
    "status": "online",
}

# =============================================================================
# Request/Response Models
# =============================================================================

class StatusResponse(BaseModel):
    """Response for GET /status."""
    state: str
    connected: bool
    port: Optional[str]
    baud: int
    events: int
    history_rows: int


class ConnectResponse(BaseModel):
    """Response for POST /connect."""
    status: str
    state: str


class ReadingsResponse(BaseModel):
    """Response for GET /readings."""
    N: float
    P: float
    K: float
    EC: float
    temp: float
    moisture: float


class EventResponse(BaseModel):
    """One entry of GET /logs."""
    timestamp: str
    severity: str
    message: str


class CapabilityResponse(BaseModel):
    """Response for GET /capability."""
    supported: bool
    details: str
    ports: List[str]


class BufferResponse(BaseModel):
    """Response for GET /buffer."""
    buffer: str
    length: int


class StatsResponse(BaseModel):
    """Response for GET /stats."""
    row_count: int
    start_time: Optional[str]
    end_time: Optional[str]
    duration_s: float
    mean: Dict[str, float]


def event_to_dict(event: Event) -> Dict[str, Any]:
    """JSON-ready form of an Event."""
    return {
        "timestamp": event.ts.isoformat(),
        "severity": event.severity.value,
        "message": event.message,
    }


# =============================================================================
# App Factory
# =============================================================================

def create_default_session() -> ConnectionSession:
    """Build a pyserial-backed session from environment configuration."""
    return ConnectionSession(
        provider=SerialTransportProvider(port=DEFAULT_SERIAL_PORT or None),
        config=SerialConfig(baud=DEFAULT_SERIAL_BAUD),
        event_log=EventLog(capacity=EVENT_LOG_CAPACITY),
    )


def create_app(
    session: Optional[ConnectionSession] = None,
    history: Optional[ReadingsHistory] = None,
) -> FastAPI:
    """Build the API around one session.

    Args:
        session: Session to expose. Defaults to a pyserial session configured
                 from SERIAL_PORT / SERIAL_BAUD / EVENT_LOG_CAPACITY.
        history: Readings history. Defaults to one with HISTORY_MAX_ROWS rows.

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Soil Probe API",
        description="REST and WebSocket interface for NPK soil probes",
        version=API_VERSION,
    )

    app.state.session = session or create_default_session()
    app.state.history = history or ReadingsHistory(max_rows=HISTORY_MAX_ROWS)
    app.state.history.attach(app.state.session.readings_store)
    app.state.lock = RLock()  # Protects state-changing operations

    # CORS for local development (configurable via CORS_ORIGINS env var)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _session(request: Request) -> ConnectionSession:
    return request.app.state.session


def _history(request: Request) -> ReadingsHistory:
    return request.app.state.history


def _register_routes(app: FastAPI) -> None:

    # =========================================================================
    # Read-Only Endpoints
    # =========================================================================

    @app.get("/status", response_model=StatusResponse)
    async def get_status(request: Request):
        """Get connection state, port settings and log/history sizes."""
        session = _session(request)

        return StatusResponse(
            state=session.state.value,
            connected=session.is_connected(),
            port=getattr(session.provider, "port", None),
            baud=session.config.baud,
            events=len(session.event_log),
            history_rows=len(_history(request)),
        )

    @app.get("/readings", response_model=ReadingsResponse)
    async def get_readings(request: Request):
        """Get the latest value of every probe field."""
        return ReadingsResponse(**_session(request).readings.to_dict())

    @app.get("/logs", response_model=List[EventResponse])
    async def get_logs(request: Request, limit: Optional[int] = Query(None, ge=1)):
        """Get event log entries, newest first.

        Args:
            limit: Return at most this many entries
        """
        events = _session(request).events
        if limit is not None:
            events = events[:limit]
        return [EventResponse(**event_to_dict(event)) for event in events]

    @app.get("/buffer", response_model=BufferResponse)
    async def get_buffer(request: Request):
        """Get the partial line received but not yet terminated."""
        pending = _session(request).pending_buffer
        return BufferResponse(buffer=pending, length=len(pending))

    @app.get("/capability", response_model=CapabilityResponse)
    async def get_capability(request: Request):
        """Probe whether a serial transport is available, without opening one."""
        capability = _session(request).check_capability()
        return CapabilityResponse(
            supported=capability.supported,
            details=capability.details,
            ports=list(capability.ports),
        )

    @app.get("/recent")
    async def get_recent(request: Request, seconds: int = Query(60, ge=1, le=3600)):
        """Get readings snapshots recorded in the last N seconds (max 3600).

        Returns:
            {"rows": [...]} with list of row dicts
        """
        recent_df = _history(request).get_recent(seconds=seconds)
        return {"rows": recent_df.to_dict(orient="records")}

    @app.get("/stats", response_model=StatsResponse)
    async def get_stats(request: Request):
        """Get summary statistics of the readings history."""
        return StatsResponse(**_history(request).get_stats())

    @app.get("/export/csv")
    async def export_csv(request: Request):
        """Download the readings history as CSV."""
        history = _history(request)
        if len(history) == 0:
            raise HTTPException(status_code=404, detail="No readings recorded yet")

        return Response(
            content=history.to_csv(),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="soil_readings.csv"'},
        )

    # =========================================================================
    # Lifecycle Endpoints
    # =========================================================================

    @app.post("/connect", response_model=ConnectResponse)
    async def connect(request: Request):
        """Open the probe port and start reading.

        Raises:
            400: If a session is already connecting or active
            503: If no port is available or it cannot be opened
        """
        session = _session(request)

        with request.app.state.lock:
            if session.state != ConnectionState.IDLE:
                raise HTTPException(
                    status_code=400,
                    detail=f"Already connected (state: {session.state.value}). Disconnect first."
                )

            if not session.connect():
                latest = session.event_log.latest()
                detail = latest.message if latest and latest.severity == Severity.ERROR else "Connection failed"
                raise HTTPException(status_code=503, detail=detail)

            return ConnectResponse(status="connected", state=session.state.value)

    @app.post("/disconnect")
    async def disconnect(request: Request):
        """Stop reading and close the port. Safe to call when not connected."""
        with request.app.state.lock:
            _session(request).disconnect()
            return {"status": "disconnected"}

    @app.post("/logs/clear")
    async def clear_logs(request: Request):
        """Empty the event log."""
        _session(request).event_log.clear()
        return {"status": "cleared"}

    # =========================================================================
    # WebSocket Streaming
    # =========================================================================

    @app.websocket("/stream")
    async def websocket_stream(websocket: WebSocket):
        """Push readings and events to the client as they happen.

        First message is a full snapshot:
            {"type": "snapshot", "state": ..., "readings": {...}, "events": [...]}
        Then one message per change:
            {"type": "readings", "readings": {...}}
            {"type": "event", "timestamp": ..., "severity": ..., "message": ...}
        """
        session: ConnectionSession = websocket.app.state.session

        await websocket.accept()
        logger.info(f"WebSocket client connected: {websocket.client}")

        loop = asyncio.get_running_loop()
        outbox: asyncio.Queue = asyncio.Queue()

        def on_event(event: Event) -> None:
            loop.call_soon_threadsafe(outbox.put_nowait, {"type": "event", **event_to_dict(event)})

        def on_readings(readings: Readings) -> None:
            loop.call_soon_threadsafe(
                outbox.put_nowait, {"type": "readings", "readings": readings.to_dict()}
            )

        unsubscribe_events = session.event_log.subscribe(on_event)
        unsubscribe_readings = session.readings_store.subscribe(on_readings)

        async def send_updates() -> None:
            while True:
                message = await outbox.get()
                await websocket.send_json(message)

        async def wait_for_close() -> None:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return

        try:
            await websocket.send_json({
                "type": "snapshot",
                "state": session.state.value,
                "readings": session.readings.to_dict(),
                "events": [event_to_dict(event) for event in session.events],
            })

            tasks = [
                asyncio.create_task(send_updates()),
                asyncio.create_task(wait_for_close()),
            ]
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                task.result()

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"WebSocket error: {e}", exc_info=True)
        finally:
            unsubscribe_events()
            unsubscribe_readings()
            logger.info(f"WebSocket client disconnected: {websocket.client}")

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/")
    async def root():
        """Service info."""
        return SERVICE_INFO

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return SERVICE_INFO

    @app.get("/version")
    async def version():
        """Version tracking endpoint for debugging and compatibility checks."""
        return {"api": API_VERSION, "lib": LIB_VERSION, "status": "online"}

    # =========================================================================
    # Startup/Shutdown Events
    # =========================================================================

    @app.on_event("startup")
    async def startup_event():
        """Log startup configuration."""
        logger.info("=" * 60)
        logger.info("Soil Probe API started")
        logger.info(f"Version: {API_VERSION}")
        logger.info(f"Host: {API_HOST}")
        logger.info(f"Port: {API_PORT}")
        logger.info(f"Serial Port: {DEFAULT_SERIAL_PORT or '(auto-select)'}")
        logger.info(f"Serial Baud: {DEFAULT_SERIAL_BAUD}")
        logger.info(f"Event Log Capacity: {EVENT_LOG_CAPACITY}")
        logger.info(f"CORS Origins: {CORS_ORIGINS}")
        logger.info(f"Log Level: {LOG_LEVEL}")
        logger.info("=" * 60)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close the port on shutdown."""
        logger.info("Shutting down Soil Probe API...")
        try:
            app.state.session.disconnect()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
        app.state.history.detach()
        logger.info("Shutdown complete")


app = create_app()
