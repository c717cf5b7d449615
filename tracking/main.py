from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .config import TrackingConfig
from .dispatch import DispatchController
from .exceptions import ExternalServiceError, InvalidStateTransition, UnknownEntityError
from .history import RouteHistory, RouteHistoryItem
from .layers import (
    LayerSet,
    drawing_entities,
    measure,
    measurement_entities,
    route_preview_entities,
    service_area_entities,
)
from .loader import demo_fleet, demo_places, load_vehicles
from .models import Drawing, Measurement, Position, ServiceArea
from .places import PlaceSearchService, make_place_search
from .playback import TrackPlayback
from .router import RoutePlanner, make_planner
from .sim_engine import SimEngine
from .sim_runner import SimRunner
from .surface import CommandSurface
from .ws_manager import SurfaceBroadcaster

_logger = logging.getLogger(__name__)

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
DEFAULT_FLEET = os.path.join(DATA_DIR, "fleet_demo.csv")


class PositionBody(BaseModel):
    lng: float = Field(ge=-180, le=180)
    lat: float = Field(ge=-90, le=90)

    def to_position(self) -> Position:
        return Position(lng=self.lng, lat=self.lat)


class LoadBody(BaseModel):
    fleet_path: str | None = None
    demo: bool = False


class PlayBody(BaseModel):
    tick_ms: int | None = None


class StepBody(BaseModel):
    ticks: int = Field(default=1, ge=1, le=3600)


class AssignBody(BaseModel):
    vehicle_id: str
    delivery_address: PositionBody
    priority: Literal["NORMAL", "URGENT"] = "NORMAL"
    customer_name: str = ""
    customer_phone: str = ""
    items: List[str] = []
    notes: str | None = None


class FailBody(BaseModel):
    reason: str = ""


class TrackSelectBody(BaseModel):
    vehicle_id: str


class PlaybackSpeedBody(BaseModel):
    speed: float


class PlaybackStepBody(BaseModel):
    points: int = 1


class RouteBody(BaseModel):
    origin: PositionBody
    destination: PositionBody
    mode: Literal["driving", "walking", "riding"] = "driving"
    waypoints: List[PositionBody] = []
    strategy: int = Field(default=0, ge=0, le=3)
    origin_text: str = ""
    dest_text: str = ""


class ServiceAreaBody(BaseModel):
    id: str
    center: PositionBody
    radius: float = Field(ge=0)
    visible: bool = True
    fill_color: str = "#1890ff"
    stroke_color: str = "#1890ff"


class DrawingBody(BaseModel):
    id: str
    type: Literal["circle", "polygon"]
    positions: List[PositionBody]
    radius: float | None = None


class MeasurementBody(BaseModel):
    id: str
    type: Literal["distance", "area"]
    positions: List[PositionBody]


def create_app(
    cfg: TrackingConfig | None = None,
    *,
    planner: RoutePlanner | None = None,
    places: PlaceSearchService | None = None,
) -> FastAPI:
    cfg = cfg or TrackingConfig.from_env()

    engine = SimEngine(cfg)
    dispatcher = DispatchController(engine)
    surface = CommandSurface(center=Position(lng=cfg.center_lng, lat=cfg.center_lat))
    layers = LayerSet(surface)
    manager = SurfaceBroadcaster()
    sim_lock = asyncio.Lock()
    playback = TrackPlayback()
    runner = SimRunner(engine, layers, surface, manager, sim_lock, playback)
    planner = planner or make_planner(cfg)
    places = places or make_place_search(cfg, demo_places(cfg))
    history = RouteHistory(limit=cfg.route_history_limit)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await runner.stop()
        async with sim_lock:
            removed = layers.teardown()
        _logger.info("Console shut down, %d map objects removed", removed)

    app = FastAPI(title="Map Tracking Console", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.dispatcher = dispatcher
    app.state.surface = surface
    app.state.layers = layers
    app.state.runner = runner
    app.state.playback = playback

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidStateTransition)
    async def _invalid_transition(_: Request, exc: InvalidStateTransition):
        return JSONResponse(status_code=409, content={"reason": exc.reason, "detail": str(exc)})

    @app.exception_handler(UnknownEntityError)
    async def _unknown(_: Request, exc: UnknownEntityError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ExternalServiceError)
    async def _external(_: Request, exc: ExternalServiceError):
        return JSONResponse(status_code=502, content={"service": exc.service, "code": exc.code, "detail": str(exc)})

    def _require_loaded():
        if not engine.loaded:
            raise HTTPException(status_code=400, detail="Fleet not loaded")

    @app.get("/health")
    def health():
        return {"ok": True, "loaded": engine.loaded, "running": runner.running, "version": app.version}

    @app.post("/fleet/load")
    async def load_fleet(body: LoadBody):
        if body.demo:
            vehicles = demo_fleet(cfg, engine.rng)
        else:
            path = body.fleet_path or DEFAULT_FLEET
            if not os.path.exists(path):
                raise HTTPException(status_code=400, detail=f"Fleet CSV not found: {path}")
            vehicles = load_vehicles(path)

        async with sim_lock:
            engine.load(vehicles)
            playback.clear()
        await runner.push_state()
        return {"loaded": True, "vehicles": len(vehicles)}

    @app.get("/state")
    def get_state():
        _require_loaded()
        return engine.snapshot()

    # ---- simulation controls ----
    @app.post("/sim/play")
    async def sim_play(body: PlayBody):
        _require_loaded()
        await runner.start(tick_ms=body.tick_ms)
        return {"running": runner.running, "tick_ms": runner.tick_ms}

    @app.post("/sim/pause")
    async def sim_pause():
        await runner.stop()
        return {"running": runner.running}

    @app.post("/sim/step")
    async def sim_step(body: StepBody):
        _require_loaded()
        async with sim_lock:
            engine.run(body.ticks)
        await runner.push_state()
        return engine.snapshot()

    # ---- dispatch / driver actions ----
    @app.post("/dispatch/assign")
    async def dispatch_assign(body: AssignBody):
        _require_loaded()
        async with sim_lock:
            task = dispatcher.assign(
                body.vehicle_id,
                body.delivery_address.to_position(),
                body.priority,
                customer_name=body.customer_name,
                customer_phone=body.customer_phone,
                items=body.items,
                notes=body.notes,
            )
        await runner.push_state()
        return {"task_id": task.task_id, "order_id": task.order_id, "status": task.status}

    async def _task_action(action, task_id: str, *args):
        _require_loaded()
        async with sim_lock:
            task = action(task_id, *args)
        await runner.push_state()
        return {"task_id": task.task_id, "status": task.status, "vehicle_status": engine.state.vehicles[task.vehicle_id].status}

    @app.post("/tasks/{task_id}/navigate-pickup")
    async def navigate_pickup(task_id: str):
        return await _task_action(dispatcher.start_navigation_to_pickup, task_id)

    @app.post("/tasks/{task_id}/confirm-pickup")
    async def confirm_pickup(task_id: str):
        return await _task_action(dispatcher.confirm_pickup, task_id)

    @app.post("/tasks/{task_id}/navigate-delivery")
    async def navigate_delivery(task_id: str):
        return await _task_action(dispatcher.start_navigation_to_delivery, task_id)

    @app.post("/tasks/{task_id}/confirm-delivery")
    async def confirm_delivery(task_id: str):
        return await _task_action(dispatcher.confirm_delivery, task_id)

    @app.post("/tasks/{task_id}/fail")
    async def fail_task(task_id: str, body: FailBody):
        return await _task_action(dispatcher.report_failure, task_id, body.reason)

    @app.get("/tasks/{task_id}/timeline")
    def task_timeline(task_id: str):
        return dispatcher.timeline(task_id)

    # ---- track playback ----
    @app.get("/playback")
    def get_playback():
        return playback.as_dict()

    @app.post("/playback/select")
    async def playback_select(body: TrackSelectBody):
        _require_loaded()
        async with sim_lock:
            playback.select(body.vehicle_id, engine.track(body.vehicle_id))
        await runner.push_state()
        return playback.as_dict()

    @app.post("/playback/toggle")
    async def playback_toggle():
        async with sim_lock:
            playback.toggle()
        await runner.push_state()
        return playback.as_dict()

    @app.post("/playback/speed")
    async def playback_speed(body: PlaybackSpeedBody):
        try:
            playback.set_speed(body.speed)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return playback.as_dict()

    @app.post("/playback/step")
    async def playback_step(body: PlaybackStepBody):
        async with sim_lock:
            playback.step(body.points)
        await runner.push_state()
        return playback.as_dict()

    @app.delete("/playback")
    async def playback_clear():
        async with sim_lock:
            playback.clear()
        await runner.push_state()
        return playback.as_dict()

    # ---- route planning / place search (external) ----
    @app.post("/route/plan")
    async def route_plan(body: RouteBody):
        plan = await run_in_threadpool(
            planner.plan_route,
            body.origin.to_position(),
            body.destination.to_position(),
            body.mode,
            [w.to_position() for w in body.waypoints],
            body.strategy,
        )
        if plan.status == "success":
            async with sim_lock:
                layers.sync("route", route_preview_entities("preview", plan.polyline, body.mode))
            history.add(
                RouteHistoryItem(
                    origin_text=body.origin_text,
                    dest_text=body.dest_text,
                    origin=body.origin.to_position(),
                    destination=body.destination.to_position(),
                    mode=body.mode,
                )
            )
            await runner.push_state()
        return plan.as_dict()

    @app.delete("/route/preview")
    async def clear_route_preview():
        async with sim_lock:
            removed = layers.teardown("route")
        await runner.push_state()
        return {"removed": removed}

    @app.get("/route/history")
    def route_history():
        return [h.as_dict() for h in history.items()]

    @app.delete("/route/history/{item_id}")
    def delete_route_history(item_id: str):
        if not history.remove(item_id):
            raise HTTPException(status_code=404, detail=f"No history item {item_id}")
        return {"ok": True}

    @app.delete("/route/history")
    def clear_route_history():
        history.clear()
        return {"ok": True}

    @app.get("/places/search")
    async def places_search(q: str, lng: Optional[float] = None, lat: Optional[float] = None, limit: int = 10):
        bias = Position(lng=lng, lat=lat) if lng is not None and lat is not None else None
        found = await run_in_threadpool(places.text_search, q, bias, limit)
        return [p.as_dict(bias) for p in found]

    # ---- declarative layers ----
    @app.put("/layers/service-areas")
    async def put_service_areas(body: List[ServiceAreaBody]):
        areas = [
            ServiceArea(
                area_id=a.id,
                center=a.center.to_position(),
                radius_m=a.radius,
                visible=a.visible,
                fill_color=a.fill_color,
                stroke_color=a.stroke_color,
            )
            for a in body
        ]
        async with sim_lock:
            stats = layers.sync("service_areas", service_area_entities(areas))
        await runner.push_state()
        return stats.as_dict()

    @app.put("/layers/drawings")
    async def put_drawings(body: List[DrawingBody]):
        drawings = [
            Drawing(
                drawing_id=d.id,
                drawing_type=d.type,
                positions=tuple(p.to_position() for p in d.positions),
                radius_m=d.radius,
            )
            for d in body
        ]
        async with sim_lock:
            stats = layers.sync("drawings", drawing_entities(drawings))
        await runner.push_state()
        return stats.as_dict()

    @app.put("/layers/measurements")
    async def put_measurements(body: List[MeasurementBody]):
        measured = [
            measure(Measurement(m.id, m.type, tuple(p.to_position() for p in m.positions)))
            for m in body
        ]
        async with sim_lock:
            stats = layers.sync("measurements", measurement_entities(measured))
        await runner.push_state()
        return {
            **stats.as_dict(),
            "measurements": [
                {"id": m.measurement_id, "type": m.measurement_type, "value": round(m.value, 2), "unit": m.unit}
                for m in measured
            ],
        }

    @app.get("/layers")
    def get_layers():
        return layers.rendered()

    @app.delete("/layers/{name}")
    async def delete_layer(name: str):
        async with sim_lock:
            removed = layers.teardown(name)
        await runner.push_state()
        return {"removed": removed}

    @app.post("/surface/teardown")
    async def surface_teardown():
        async with sim_lock:
            removed = layers.teardown()
            commands = surface.drain()
        await manager.broadcast({"type": "teardown", "commands": commands})
        return {"removed": removed}

    # ---- WebSocket ----
    @app.websocket("/ws/surface")
    async def ws_surface(ws: WebSocket):
        await manager.connect(ws)
        try:
            await manager.send(ws, {
                "type": "snapshot",
                "objects": [{"handle": h, "options": o} for h, o in surface.objects.items()],
                "center": surface.get_center().as_list(),
                "zoom": surface.get_zoom(),
            })
            while True:
                try:
                    await asyncio.wait_for(ws.receive_text(), timeout=30)
                except asyncio.TimeoutError:
                    await manager.send(ws, {"type": "ping"})
        except WebSocketDisconnect:
            pass
        finally:
            await manager.disconnect(ws)

    return app


_cfg = TrackingConfig.from_env()
logging.basicConfig(level=_cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
app = create_app(_cfg)
