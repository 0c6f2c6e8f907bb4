import asyncio
import logging
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from pole_chain.backend.coordination.errors import CoordinationError
from pole_chain.backend.coordination.hub import CoordinationHub
from pole_chain.backend.coordination.mirror import JsonFileMirror
from pole_chain.backend.coordination.staleness import StalenessSweeper
from pole_chain.backend.middleware.bridge import EventBroadcaster
from pole_chain.backend.middleware.sink_mqtt import MQTTEventSink
from pole_chain.settings import load_config
from pole_chain.topology import ChainTopology

logger = logging.getLogger("Arbiter")


# --- Request Models ---
class CommandRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pole_id: Optional[str] = Field(None, alias="poleId")
    action: Optional[str] = None
    reason: Optional[str] = None
    is_simulation: bool = Field(False, alias="isSimulation")


class ResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_simulation: bool = Field(False, alias="isSimulation")


class ModeRequest(BaseModel):
    mode: str


def build_hub(config: Dict[str, Any]) -> CoordinationHub:
    mirror = JsonFileMirror(config["mirror_path"])
    mirror.connect()
    return CoordinationHub(
        topology=ChainTopology(config["poles"]),
        broadcaster=EventBroadcaster(),
        mirror=mirror,
        recovery_stable_s=config["arbiter_recovery_stable_s"],
        overvoltage_v=config["overvoltage_v"],
        overcurrent_a=config["overcurrent_a"],
    )


def create_app(config: Dict[str, Any], hub: Optional[CoordinationHub] = None) -> FastAPI:
    hub = hub or build_hub(config)
    sweeper = StalenessSweeper(hub, interval_s=config["sweep_interval_s"], timeout_s=config["stale_timeout_s"])
    mqtt_sink = None
    if config["mqtt"].get("enabled"):
        mqtt_sink = MQTTEventSink(config["mqtt"]["broker"], config["mqtt"]["port"], config["mqtt"]["topic_prefix"])
        hub.broadcaster.subscribe(mqtt_sink)

    app = FastAPI(title="Pole Chain Coordination Arbiter")
    app.state.hub = hub
    app.state.sweeper = sweeper

    # Allow CORS for the dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CoordinationError)
    async def coordination_error_handler(request: Request, exc: CoordinationError):
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.detail}")
        return JSONResponse(status_code=exc.status_code,
                            content={"error": type(exc).__name__, "detail": exc.detail})

    # --- Lifecycle ---
    @app.on_event("startup")
    async def startup_event():
        hub.broadcaster.attach_loop(asyncio.get_running_loop())
        if mqtt_sink:
            mqtt_sink.connect()
        sweeper.start()

    @app.on_event("shutdown")
    def shutdown_event():
        sweeper.stop()
        if mqtt_sink:
            mqtt_sink.disconnect()

    # --- Health ---
    @app.get("/")
    def read_root():
        return {"status": "ok", "service": "Pole Chain Arbiter", "mode": hub.get_mode().value}

    # --- Coordination ---
    @app.post("/api/coordination/state")
    def publish_state(body: Dict[str, Any] = Body(...)):
        """A pole publishes its full snapshot."""
        is_simulation = body.get("is_simulation", body.get("isSimulation")) is True
        state = hub.publish(None, body, is_simulation)
        return {"success": True, "state": state}

    @app.get("/api/coordination/state/{pole_id}")
    def get_pole_state(pole_id: str, sim: bool = False):
        return hub.poll_peer(pole_id, sim)

    @app.get("/api/coordination/system")
    def get_system(sim: bool = False):
        return hub.summary(sim)

    @app.get("/api/coordination/commands/{pole_id}")
    def get_commands(pole_id: str, sim: bool = False):
        """Drains the queue: each command is returned once."""
        return hub.poll_commands(pole_id, sim)

    @app.post("/api/coordination/command")
    def post_command(request: CommandRequest):
        command = hub.admin_command(request.pole_id, request.action, request.reason, request.is_simulation)
        return {"success": True, "message": "Command queued", "command": command}

    @app.post("/api/coordination/reset")
    def post_reset(request: Optional[ResetRequest] = None):
        is_simulation = request.is_simulation if request else False
        summary = hub.reset(is_simulation)
        return {"success": True, "message": f"State reset for {'sim' if is_simulation else 'real'}",
                "system": summary}

    # --- Pole Telemetry ---
    @app.post("/api/poles/data", status_code=201)
    def post_pole_data(body: Dict[str, Any] = Body(...)):
        """A pole posts one raw voltage/current reading."""
        is_simulation = body.get("is_simulation", body.get("isSimulation")) is True
        record = hub.record_reading(body, is_simulation)
        return {"success": True, "message": f"Data recorded for {record['pole_id']}", "record": record}

    @app.get("/api/poles")
    def get_poles(sim: bool = False):
        return hub.latest_readings(sim)

    @app.get("/api/poles/{pole_id}")
    def get_pole_readings(pole_id: str, sim: bool = False):
        return hub.reading_history(pole_id, sim)

    # --- Settings ---
    @app.get("/api/settings/mode")
    def get_mode():
        return {"mode": hub.get_mode().value}

    @app.post("/api/settings/mode")
    def set_mode(request: ModeRequest):
        mode = hub.set_mode(request.mode)
        return {"success": True, "mode": mode.value}

    @app.get("/api/settings/mirror-check")
    def mirror_check():
        """Write + read-back test against the persistent mirror."""
        return hub.mirror_check()

    # --- Broadcast stream ---
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        manager = hub.broadcaster.manager
        await manager.connect(websocket)
        try:
            while True:
                # Push only; reading keeps the connection open
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


def app_factory() -> FastAPI:
    """uvicorn pole_chain.backend.main:app_factory --factory"""
    return create_app(load_config())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='[ARBITER] %(asctime)s | %(levelname)s | %(message)s',
                        datefmt='%H:%M:%S')
    config = load_config()
    uvicorn.run(create_app(config), host=config["arbiter_host"], port=config["arbiter_port"])
