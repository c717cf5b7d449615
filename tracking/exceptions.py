"""Exception hierarchy for the tracking console."""

from __future__ import annotations


class TrackingError(Exception):
    """Base exception for all tracking console errors."""


class UnknownEntityError(TrackingError):
    """A vehicle or task id does not exist."""


class RenderSurfaceError(TrackingError):
    """A render surface call failed (unknown handle, surface closed)."""


class InvalidStateTransition(TrackingError):
    """An operation precondition failed.

    ``reason`` is a stable machine-readable code (``"NOT_AT_PICKUP"``, ...)
    that the HTTP layer forwards to the client.
    """

    def __init__(self, reason: str, message: str = "") -> None:
        self.reason = reason
        super().__init__(message or reason)


class InvalidVehicleState(InvalidStateTransition):
    """The vehicle cannot accept the operation in its current status."""


class StaleTargetError(TrackingError):
    """A vehicle is EN_ROUTE but has no target to move toward.

    Reported by the simulator tick instead of being raised.
    """

    def __init__(self, vehicle_id: str) -> None:
        self.vehicle_id = vehicle_id
        super().__init__(f"vehicle {vehicle_id} is en route without a target")


class ExternalServiceError(TrackingError):
    """Route planning or place search backend failed."""

    def __init__(self, message: str, *, service: str = "", code: str = "") -> None:
        self.service = service
        self.code = code
        super().__init__(message)
