"""Delivery task state machine.

    PENDING -> ASSIGNED -> IN_TRANSIT -> DELIVERED
                      \\-----------\\----> FAILED   (manual report only)

Every function here takes a :class:`SimState` and returns the next one. A
failed precondition raises :class:`InvalidStateTransition` before anything
is built, so callers either get a complete next state or the old one.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import InvalidStateTransition, InvalidVehicleState, UnknownEntityError
from .geo import planar_distance
from .models import (
    CLOSED_TASK_STATUSES,
    ArrivalEvent,
    DeliveryTask,
    Position,
    Priority,
    SimState,
    TaskEvent,
    Vehicle,
)

_KEEP: Any = object()


def _vehicle(state: SimState, vehicle_id: Optional[str]) -> Vehicle:
    v = state.vehicles.get(vehicle_id or "")
    if v is None:
        raise UnknownEntityError(f"unknown vehicle {vehicle_id}")
    return v


def get_task(state: SimState, task_id: str) -> DeliveryTask:
    t = state.tasks.get(task_id)
    if t is None:
        raise UnknownEntityError(f"unknown task {task_id}")
    return t


def _near(a: Position, b: Position, epsilon: float) -> bool:
    return planar_distance(a, b) < epsilon


def _advance(task: DeliveryTask, status: str, now: datetime, note: str = "", **changes: Any) -> DeliveryTask:
    return replace(task, status=status, events=task.events + (TaskEvent(status, now, note),), **changes)


def _commit(
    state: SimState,
    vehicle: Optional[Vehicle],
    task: DeliveryTask,
    target: Any = _KEEP,
    trail: Any = _KEEP,
) -> SimState:
    vehicles = dict(state.vehicles)
    targets = dict(state.targets)
    trails = dict(state.trails)
    tasks = dict(state.tasks)
    tasks[task.task_id] = task

    if vehicle is not None:
        vid = vehicle.vehicle_id
        vehicles[vid] = vehicle
        if target is not _KEEP:
            if target is None:
                targets.pop(vid, None)
            else:
                targets[vid] = target
        if trail is not _KEEP:
            if trail is None:
                trails.pop(vid, None)
            else:
                trails[vid] = tuple(trail)

    return replace(state, vehicles=vehicles, tasks=tasks, targets=targets, trails=trails)


# ---------- transitions ----------

def assign(
    state: SimState,
    vehicle_id: str,
    delivery_address: Position,
    priority: Priority,
    *,
    task_id: str,
    order_id: str,
    now: datetime,
    estimated_arrival: datetime,
    customer_name: str = "",
    customer_phone: str = "",
    items: Sequence[str] = (),
    notes: str = "",
) -> Tuple[SimState, DeliveryTask]:
    v = _vehicle(state, vehicle_id)
    if v.status != "IDLE":
        raise InvalidVehicleState("VEHICLE_NOT_IDLE", f"vehicle {vehicle_id} is {v.status}")
    active = state.active_task(vehicle_id)
    if active is not None:
        raise InvalidVehicleState("VEHICLE_HAS_ACTIVE_TASK", f"vehicle {vehicle_id} already holds {active.task_id}")
    if task_id in state.tasks:
        raise InvalidStateTransition("DUPLICATE_TASK", f"task {task_id} already exists")

    task = DeliveryTask(
        task_id=task_id,
        order_id=order_id,
        vehicle_id=vehicle_id,
        pickup_address=state.warehouse,
        delivery_address=delivery_address,
        status="ASSIGNED",
        priority=priority,
        customer_name=customer_name,
        customer_phone=customer_phone,
        estimated_arrival=estimated_arrival,
        items=tuple(items),
        notes=notes,
        events=(TaskEvent("ASSIGNED", now),),
    )
    # vehicle stays IDLE until navigation starts; the open task blocks reassignment
    vehicle = replace(v, last_update=now)
    return _commit(state, vehicle, task), task


def start_navigation_to_pickup(state: SimState, task_id: str, now: datetime) -> SimState:
    t = get_task(state, task_id)
    if t.status != "ASSIGNED":
        raise InvalidStateTransition("TASK_NOT_ASSIGNED", f"task {task_id} is {t.status}")
    v = _vehicle(state, t.vehicle_id)
    if v.status not in ("IDLE", "DELIVERING", "EN_ROUTE"):
        raise InvalidVehicleState("VEHICLE_NOT_READY", f"vehicle {v.vehicle_id} is {v.status}")

    vehicle = replace(v, status="EN_ROUTE", last_update=now)
    return _commit(state, vehicle, t, target=t.pickup_address, trail=(v.position,))


def confirm_pickup(state: SimState, task_id: str, now: datetime, epsilon: float) -> SimState:
    t = get_task(state, task_id)
    if t.status != "ASSIGNED":
        raise InvalidStateTransition("TASK_NOT_ASSIGNED", f"task {task_id} is {t.status}")
    v = _vehicle(state, t.vehicle_id)
    if v.status != "PICKING_UP":
        raise InvalidVehicleState("VEHICLE_NOT_PICKING_UP", f"vehicle {v.vehicle_id} is {v.status}")
    # position is re-checked here; PICKING_UP alone is not trusted
    if not _near(v.position, t.pickup_address, epsilon):
        raise InvalidStateTransition("NOT_AT_PICKUP", f"vehicle {v.vehicle_id} is not at the pickup address")

    task = _advance(t, "IN_TRANSIT", now)
    vehicle = replace(v, status="DELIVERING_GOODS", speed=0, last_update=now)
    return _commit(state, vehicle, task, target=t.delivery_address, trail=(v.position,))


def start_navigation_to_delivery(state: SimState, task_id: str, now: datetime) -> SimState:
    t = get_task(state, task_id)
    if t.status != "IN_TRANSIT":
        raise InvalidStateTransition("TASK_NOT_IN_TRANSIT", f"task {task_id} is {t.status}")
    v = _vehicle(state, t.vehicle_id)
    if v.status not in ("DELIVERING_GOODS", "EN_ROUTE"):
        raise InvalidVehicleState("VEHICLE_NOT_READY", f"vehicle {v.vehicle_id} is {v.status}")

    trail = state.trails.get(v.vehicle_id) or (v.position,)
    vehicle = replace(v, status="EN_ROUTE", last_update=now)
    return _commit(state, vehicle, t, target=t.delivery_address, trail=trail)


def confirm_delivery(state: SimState, task_id: str, now: datetime, epsilon: float) -> SimState:
    t = get_task(state, task_id)
    if t.status != "IN_TRANSIT":
        raise InvalidStateTransition("TASK_NOT_IN_TRANSIT", f"task {task_id} is {t.status}")
    v = _vehicle(state, t.vehicle_id)
    if v.status != "DELIVERING_GOODS":
        raise InvalidVehicleState("VEHICLE_NOT_DELIVERING", f"vehicle {v.vehicle_id} is {v.status}")
    if not _near(v.position, t.delivery_address, epsilon):
        raise InvalidStateTransition("NOT_AT_DELIVERY", f"vehicle {v.vehicle_id} is not at the delivery address")

    task = _advance(t, "DELIVERED", now, actual_arrival=now)
    vehicle = replace(v, status="IDLE", speed=0, last_update=now)
    return _commit(state, vehicle, task, target=None, trail=None)


def report_failure(state: SimState, task_id: str, now: datetime, reason: str = "") -> SimState:
    t = get_task(state, task_id)
    if t.status in CLOSED_TASK_STATUSES:
        raise InvalidStateTransition("TASK_CLOSED", f"task {task_id} is already {t.status}")

    task = _advance(t, "FAILED", now, note=reason)
    v = state.vehicles.get(t.vehicle_id or "")
    if v is None:
        return _commit(state, None, task)
    vehicle = replace(v, status="IDLE", speed=0, last_update=now)
    return _commit(state, vehicle, task, target=None, trail=None)


# ---------- derived vehicle sub-states ----------

def apply_arrivals(state: SimState, arrivals: Iterable[ArrivalEvent], epsilon: float) -> SimState:
    """Move arrived EN_ROUTE vehicles into their at-stop sub-state.

    ASSIGNED task + at pickup -> PICKING_UP; IN_TRANSIT task + at delivery
    -> DELIVERING_GOODS. Task status is never touched here.
    """
    vehicles: Dict[str, Vehicle] = {}
    for ev in arrivals:
        v = state.vehicles.get(ev.vehicle_id)
        if v is None or v.status != "EN_ROUTE":
            continue
        t = state.active_task(ev.vehicle_id)
        if t is None:
            continue
        if t.status == "ASSIGNED" and _near(v.position, t.pickup_address, epsilon):
            vehicles[v.vehicle_id] = replace(v, status="PICKING_UP", speed=0)
        elif t.status == "IN_TRANSIT" and _near(v.position, t.delivery_address, epsilon):
            vehicles[v.vehicle_id] = replace(v, status="DELIVERING_GOODS", speed=0)

    if not vehicles:
        return state
    merged = dict(state.vehicles)
    merged.update(vehicles)
    return replace(state, vehicles=merged)


# ---------- timeline ----------

def timeline(task: DeliveryTask, vehicle: Optional[Vehicle] = None) -> List[Dict[str, Any]]:
    status = task.status
    plate = vehicle.license_plate if vehicle else task.vehicle_id

    def _node(key: str, title: str, description: str, at: Optional[datetime], node_status: str,
              position: Optional[Position] = None) -> Dict[str, Any]:
        return {
            "id": f"{task.task_id}-{key}",
            "title": title,
            "description": description,
            "timestamp": at.isoformat() if at else None,
            "status": node_status,
            "position": position.as_list() if position else None,
        }

    picked = task.event_at("IN_TRANSIT")
    closed_at = task.event_at("DELIVERED") or task.event_at("FAILED")

    return [
        _node("assigned", "Task assigned", f"Vehicle {plate} assigned", task.event_at("ASSIGNED"),
              "completed" if task.event_at("ASSIGNED") else "pending"),
        _node("pickup", "Pickup", f"Pick up at warehouse for {task.customer_name or task.order_id}", picked,
              "completed" if picked else ("in_progress" if status == "ASSIGNED" else "pending"),
              task.pickup_address),
        _node("transit", "In transit", "Heading to the delivery address", picked,
              "in_progress" if status == "IN_TRANSIT" else ("completed" if status == "DELIVERED" else "pending")),
        _node("delivered", "Delivered" if status == "DELIVERED" else "Awaiting delivery",
              "Estimated arrival " + (task.estimated_arrival.isoformat() if task.estimated_arrival else "unknown"),
              closed_at or task.estimated_arrival,
              "completed" if status == "DELIVERED" else ("failed" if status == "FAILED" else "pending"),
              task.delivery_address),
    ]
