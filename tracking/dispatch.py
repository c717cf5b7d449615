from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from . import lifecycle
from .models import DeliveryTask, Position, Priority
from .sim_engine import SimEngine

_logger = logging.getLogger(__name__)


class DispatchController:
    """Dispatcher and driver actions on top of a :class:`SimEngine`.

    Each operation computes the full next state through
    :mod:`tracking.lifecycle` and replaces ``engine.state`` in one
    assignment, so a rejected operation leaves nothing half-applied.
    """

    def __init__(self, engine: SimEngine):
        self.engine = engine

    @property
    def epsilon(self) -> float:
        return self.engine.cfg.arrival_epsilon_deg

    def _ids(self) -> Dict[str, str]:
        n = len(self.engine.state.tasks) + 1
        while f"t{n:04d}" in self.engine.state.tasks:
            n += 1
        return {"task_id": f"t{n:04d}", "order_id": f"ORD{n:06d}"}

    def assign(
        self,
        vehicle_id: str,
        delivery_address: Position,
        priority: Priority = "NORMAL",
        *,
        customer_name: str = "",
        customer_phone: str = "",
        items: Sequence[str] = (),
        notes: Optional[str] = None,
    ) -> DeliveryTask:
        cfg = self.engine.cfg
        now = self.engine.clock()
        eta_min = cfg.eta_urgent_min if priority == "URGENT" else cfg.eta_normal_min

        state, task = lifecycle.assign(
            self.engine.state,
            vehicle_id,
            delivery_address,
            priority,
            now=now,
            estimated_arrival=now + timedelta(minutes=eta_min),
            customer_name=customer_name,
            customer_phone=customer_phone,
            items=items,
            notes=notes if notes is not None else ("urgent delivery" if priority == "URGENT" else "standard delivery"),
            **self._ids(),
        )
        self.engine.state = state
        _logger.info("Task %s assigned to vehicle %s (%s)", task.task_id, vehicle_id, priority)
        return task

    def start_navigation_to_pickup(self, task_id: str) -> DeliveryTask:
        self.engine.state = lifecycle.start_navigation_to_pickup(self.engine.state, task_id, self.engine.clock())
        _logger.info("Task %s: navigating to pickup", task_id)
        return self.engine.state.tasks[task_id]

    def confirm_pickup(self, task_id: str) -> DeliveryTask:
        self.engine.state = lifecycle.confirm_pickup(
            self.engine.state, task_id, self.engine.clock(), self.epsilon
        )
        _logger.info("Task %s: pickup confirmed", task_id)
        return self.engine.state.tasks[task_id]

    def start_navigation_to_delivery(self, task_id: str) -> DeliveryTask:
        self.engine.state = lifecycle.start_navigation_to_delivery(self.engine.state, task_id, self.engine.clock())
        _logger.info("Task %s: navigating to delivery", task_id)
        return self.engine.state.tasks[task_id]

    def confirm_delivery(self, task_id: str) -> DeliveryTask:
        self.engine.state = lifecycle.confirm_delivery(
            self.engine.state, task_id, self.engine.clock(), self.epsilon
        )
        _logger.info("Task %s: delivered", task_id)
        return self.engine.state.tasks[task_id]

    def report_failure(self, task_id: str, reason: str = "") -> DeliveryTask:
        self.engine.state = lifecycle.report_failure(self.engine.state, task_id, self.engine.clock(), reason)
        _logger.info("Task %s: failed (%s)", task_id, reason or "no reason given")
        return self.engine.state.tasks[task_id]

    def timeline(self, task_id: str) -> List[Dict[str, Any]]:
        state = self.engine.state
        task = lifecycle.get_task(state, task_id)
        return lifecycle.timeline(task, state.vehicles.get(task.vehicle_id or ""))
