from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Literal, Optional, Tuple


VehicleStatus = Literal[
    "IDLE",
    "DELIVERING",
    "EN_ROUTE",
    "PICKING_UP",        # arrived at pickup
    "DELIVERING_GOODS",  # goods on board / arrived at delivery
    "MAINTENANCE",
    "OFFLINE",
]
TaskStatus = Literal["PENDING", "ASSIGNED", "IN_TRANSIT", "DELIVERED", "FAILED"]
Priority = Literal["NORMAL", "URGENT"]
DrawingType = Literal["circle", "polygon"]
MeasurementType = Literal["distance", "area"]

ACTIVE_TASK_STATUSES: Tuple[str, ...] = ("ASSIGNED", "IN_TRANSIT")
CLOSED_TASK_STATUSES: Tuple[str, ...] = ("DELIVERED", "FAILED")


@dataclass(frozen=True)
class Position:
    lng: float
    lat: float

    def as_list(self) -> List[float]:
        return [self.lng, self.lat]


@dataclass(frozen=True)
class Vehicle:
    vehicle_id: str
    license_plate: str
    driver: str
    position: Position
    status: VehicleStatus = "IDLE"
    battery_level: float = 100.0
    speed: int = 0
    last_update: Optional[datetime] = None
    temperature: float = 21.0


@dataclass(frozen=True)
class TaskEvent:
    status: TaskStatus
    at: datetime
    note: str = ""


@dataclass(frozen=True)
class DeliveryTask:
    task_id: str
    order_id: str
    vehicle_id: Optional[str]
    pickup_address: Position
    delivery_address: Position
    status: TaskStatus = "PENDING"
    priority: Priority = "NORMAL"
    customer_name: str = ""
    customer_phone: str = ""
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    items: Tuple[str, ...] = ()
    notes: str = ""
    events: Tuple[TaskEvent, ...] = ()

    def event_at(self, status: str) -> Optional[datetime]:
        for ev in self.events:
            if ev.status == status:
                return ev.at
        return None


@dataclass(frozen=True)
class ArrivalEvent:
    vehicle_id: str
    target: Position


@dataclass(frozen=True)
class TrackPoint:
    """One recorded sample of a vehicle's movement history."""

    position: Position
    timestamp: datetime
    speed: int
    status: VehicleStatus

    def as_dict(self) -> Dict[str, object]:
        return {
            "position": self.position.as_list(),
            "timestamp": self.timestamp.isoformat(),
            "speed": self.speed,
            "status": self.status,
        }


@dataclass(frozen=True)
class SimState:
    """Everything the simulator and the task lifecycle read and write.

    Treated as immutable: transitions build a new SimState from copies of
    the mappings and never touch the previous one.
    """

    warehouse: Position
    vehicles: Dict[str, Vehicle] = field(default_factory=dict)
    tasks: Dict[str, DeliveryTask] = field(default_factory=dict)
    targets: Dict[str, Position] = field(default_factory=dict)
    trails: Dict[str, Tuple[Position, ...]] = field(default_factory=dict)
    tick: int = 0

    def active_task(self, vehicle_id: str) -> Optional[DeliveryTask]:
        for t in self.tasks.values():
            if t.vehicle_id == vehicle_id and t.status in ACTIVE_TASK_STATUSES:
                return t
        return None


# ---- layer inputs (store locator / drawing / measurement tools) ----

@dataclass(frozen=True)
class ServiceArea:
    area_id: str
    center: Position
    radius_m: float
    visible: bool = True
    fill_color: str = "#1890ff"
    stroke_color: str = "#1890ff"


@dataclass(frozen=True)
class Drawing:
    drawing_id: str
    drawing_type: DrawingType
    positions: Tuple[Position, ...]
    radius_m: Optional[float] = None


@dataclass(frozen=True)
class Measurement:
    measurement_id: str
    measurement_type: MeasurementType
    positions: Tuple[Position, ...]
    value: float = 0.0
    unit: str = "m"
