"""
hostpulse - FastAPI application serving the telemetry feed and control endpoints.

Run with:
    hostpulse
or:
    uvicorn hostpulse.server:create_app --factory --port 3001
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from hostpulse import __version__
from hostpulse.config import Settings, get_settings
from hostpulse.control import ControlAction, ControlExecutor
from hostpulse.errors import ExecError, TransportError
from hostpulse.monitor import Sampler
from hostpulse.sessions import SessionManager

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stdout, as the server's only log sink."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


class WebSocketTransport:
    """Adapts a FastAPI WebSocket to the session Transport protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        try:
            await self._websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportError(f"WebSocket send failed: {exc!r}") from exc

    async def close(self) -> None:
        if self.is_open:
            await self._websocket.close()


def get_sampler(request: Request) -> Sampler:
    return request.app.state.sampler


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_executor(request: Request) -> ControlExecutor:
    return request.app.state.executor


router = APIRouter()


@router.get("/")
async def initial_state(sampler: Sampler = Depends(get_sampler)) -> dict:
    """One synchronously computed snapshot for first paint."""
    snapshot = await asyncio.to_thread(sampler.sample)
    return snapshot.to_dict()


@router.get("/health")
async def health(manager: SessionManager = Depends(get_session_manager)) -> dict:
    return {"status": "ok", "sessions": manager.active_count}


async def _run_control(action: ControlAction, executor: ControlExecutor):
    try:
        ack = await executor.execute(action)
    except ExecError as exc:
        return JSONResponse(status_code=500, content={"error": exc.message})
    return {"message": ack.message}


@router.post("/system/restart")
async def restart_system(executor: ControlExecutor = Depends(get_executor)):
    return await _run_control(ControlAction.RESTART, executor)


@router.post("/system/shutdown")
async def shutdown_system(executor: ControlExecutor = Depends(get_executor)):
    return await _run_control(ControlAction.SHUTDOWN, executor)


async def telemetry_feed(websocket: WebSocket) -> None:
    """
    Push channel: one JSON snapshot per tick until either side closes.

    Anything the observer sends is ignored.
    """
    manager: SessionManager = websocket.app.state.sessions
    await websocket.accept()
    session_id = await manager.attach(WebSocketTransport(websocket))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("WebSocket for session %s ended: %r", session_id, exc)
    finally:
        await manager.detach(session_id)


async def internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Application error on %s %s: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    settings: Settings | None = None,
    *,
    sampler: Sampler | None = None,
    sessions: SessionManager | None = None,
    executor: ControlExecutor | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()
    if sampler is None:
        sampler = Sampler(
            disk_path=settings.disk_path,
            cpu_mode=settings.cpu_mode,
            min_window=settings.sample_interval / 2,
        )
    if sessions is None:
        sessions = SessionManager(sampler, interval=settings.sample_interval)
    if executor is None:
        executor = ControlExecutor(settings.control_commands, dry_run=settings.control_dry_run)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("System monitor running at http://%s:%d", settings.host, settings.port)
        yield
        logger.info("Shutting down: closing %d observer session(s)", sessions.active_count)
        await sessions.close_all()
        executor.shutdown()

    app = FastAPI(
        title="hostpulse",
        description="Live host telemetry feed with restart/shutdown control",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sampler = sampler
    app.state.sessions = sessions
    app.state.executor = executor

    app.include_router(router)
    app.add_api_websocket_route("/", telemetry_feed)
    app.add_api_websocket_route("/ws", telemetry_feed)
    app.add_exception_handler(Exception, internal_error)
    return app


def main() -> None:
    """Entry point for the hostpulse server."""
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
