"""FastAPI web server with WebSocket support for the shared fridge state.

Observers connect to /ws, get the current state immediately, and receive a
"state" message after every accepted transition. Requests travel the other
way as {"type": "requestToggle" | "requestOpen" | "requestClose"}.
Non-realtime clients can poll GET /api/state.
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, ValidationError

from config import Settings
from constants import EVENT_ACTION_REJECTED, EVENT_STATE, OBSERVER_QUEUE_SIZE, PERIODIC_SAVE_S
from fridge_gateway import FridgeGateway, UnknownRequestError
from fridge_state import FridgeSnapshot, FridgeStateMachine
from snapshot_store import SnapshotStore

log = logging.getLogger("fridge.web")


# --- WebSocket Manager ---

@dataclass(eq=False)
class Observer:
    """A connected websocket with its own outbound queue and writer task."""
    websocket: WebSocket
    connection_id: str
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(OBSERVER_QUEUE_SIZE))
    writer: Optional[asyncio.Task] = None


class ConnectionManager:
    """Manages WebSocket connections and broadcasts.

    Sends never happen inline: each observer drains its own queue, so a slow
    or dead socket can't hold up delivery to anyone else.
    """

    def __init__(self):
        self.active_connections: dict[WebSocket, Observer] = {}

    async def connect(self, websocket: WebSocket, connection_id: str) -> Observer:
        await websocket.accept()
        observer = Observer(websocket, connection_id)
        observer.writer = asyncio.create_task(
            self._write_loop(observer), name=f"ws-writer-{connection_id}")
        self.active_connections[websocket] = observer
        return observer

    def disconnect(self, websocket: WebSocket):
        observer = self.active_connections.pop(websocket, None)
        if observer and observer.writer and not observer.writer.done():
            observer.writer.cancel()

    def send_personal(self, websocket: WebSocket, message: dict):
        """Queue a message for a single observer."""
        observer = self.active_connections.get(websocket)
        if observer is not None:
            self._enqueue(observer, message)

    def broadcast(self, message: dict):
        """Queue a JSON message for every connected observer."""
        for observer in list(self.active_connections.values()):
            self._enqueue(observer, message)

    def broadcast_state(self, snapshot: FridgeSnapshot):
        """State change listener: push the new snapshot to everyone."""
        self.broadcast(state_message(snapshot))

    def _enqueue(self, observer: Observer, message: dict):
        if observer.queue.full():
            # Observer is far behind; keep the newest messages
            observer.queue.get_nowait()
            log.debug("Dropped oldest queued message for %s", observer.connection_id)
        observer.queue.put_nowait(message)

    async def _write_loop(self, observer: Observer):
        try:
            while True:
                message = await observer.queue.get()
                await observer.websocket.send_text(json.dumps(message))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.info("Send to %s failed, dropping observer: %s", observer.connection_id, e)
            self.active_connections.pop(observer.websocket, None)


def state_message(snapshot: FridgeSnapshot) -> dict:
    return {"type": EVENT_STATE, "data": snapshot.to_wire()}


def rejection_message(payload: dict) -> dict:
    return {"type": EVENT_ACTION_REJECTED, "data": payload}


class ClientMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str


# --- Application wiring ---

@dataclass
class FridgeServices:
    """The collaborating components behind one app instance."""
    machine: FridgeStateMachine
    store: SnapshotStore
    gateway: FridgeGateway
    manager: ConnectionManager
    periodic_save_s: float = PERIODIC_SAVE_S


def build_services(settings: Settings, store: Optional[SnapshotStore] = None) -> FridgeServices:
    """Restore state from disk and wire machine, store, hub and gateway together."""
    store = store or SnapshotStore(settings.data_file)
    machine = FridgeStateMachine.from_snapshot(store.load())
    store.bind(machine.snapshot)

    manager = ConnectionManager()
    machine.add_listener(manager.broadcast_state)
    machine.add_listener(store.save_soon)

    gateway = FridgeGateway(machine, cooldown_ms=settings.cooldown_ms)
    return FridgeServices(machine, store, gateway, manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: FridgeServices = app.state.fridge
    periodic = asyncio.create_task(
        services.store.run_periodic(services.periodic_save_s), name="periodic-save")
    try:
        yield
    finally:
        periodic.cancel()
        try:
            await periodic
        except asyncio.CancelledError:
            pass
        log.info("Shutting down, persisting state...")
        services.store.flush()


def create_app(settings: Optional[Settings] = None,
               services: Optional[FridgeServices] = None) -> FastAPI:
    settings = settings or Settings()
    services = services or build_services(settings)

    app = FastAPI(title="The Fridge", lifespan=lifespan)
    app.state.fridge = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def index():
        """API info."""
        return {
            "message": "The Fridge realtime state server",
            "endpoints": {
                "state": "GET /api/state",
                "websocket": "ws://<host>/ws",
            },
        }

    @app.get("/api/state")
    async def get_state():
        """Return the current fridge snapshot."""
        return services.machine.snapshot().to_wire()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        conn_id = uuid.uuid4().hex[:8]
        manager = services.manager
        await manager.connect(websocket, conn_id)
        services.gateway.connect(conn_id)
        try:
            # Send initial state on connect, before any request
            manager.send_personal(websocket, state_message(services.machine.snapshot()))
            while True:
                data = await websocket.receive_text()
                _handle_client_message(services, websocket, conn_id, data)
        except WebSocketDisconnect:
            pass
        finally:
            services.gateway.disconnect(conn_id)
            manager.disconnect(websocket)

    return app


def _handle_client_message(services: FridgeServices, websocket: WebSocket,
                           conn_id: str, data: str):
    try:
        msg = ClientMessage.model_validate(json.loads(data))
    except (ValueError, ValidationError) as e:
        log.debug("Ignoring malformed message from %s: %s", conn_id, e)
        return

    try:
        rejection = services.gateway.handle_request(conn_id, msg.type)
    except UnknownRequestError:
        log.debug("Ignoring unknown message type %r from %s", msg.type, conn_id)
        return

    if rejection is not None:
        services.manager.send_personal(websocket, rejection_message(rejection))
