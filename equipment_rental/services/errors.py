from __future__ import annotations


class RentalEngineError(RuntimeError):
    pass


class NotFound(RentalEngineError):
    pass


class RentalNotFound(NotFound):
    def __init__(self, rental_id: int):
        super().__init__(f"Rental {rental_id} not found.")
        self.rental_id = rental_id


class ItemNotFound(NotFound):
    def __init__(self, item_id: int):
        super().__init__(f"Item {item_id} not found.")
        self.item_id = item_id


class UnitNotFound(NotFound):
    def __init__(self, item_id: int, unit_id: str | None):
        super().__init__(f"Unit {unit_id!r} not found for item {item_id}.")
        self.item_id = item_id
        self.unit_id = unit_id


class ApprovalNotFound(NotFound):
    def __init__(self, rental_id: int, approval_index: int):
        super().__init__(f"Approval request {approval_index} not found on rental {rental_id}.")
        self.rental_id = rental_id
        self.approval_index = approval_index


class BillingNotFound(NotFound):
    def __init__(self, billing_id: int):
        super().__init__(f"Billing {billing_id} not found.")
        self.billing_id = billing_id


class InvalidTransition(RentalEngineError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid state transition: {current} -> {target}")
        self.current = current
        self.target = target


class InvalidState(RentalEngineError):
    pass


class InsufficientQuantity(RentalEngineError):
    def __init__(self, item_id: int, requested: int, available: int, pool: str = "available"):
        super().__init__(
            f"Insufficient quantity for item {item_id}. {pool.capitalize()}: {available}, Requested: {requested}"
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available
        self.pool = pool


class UnitNotAvailable(RentalEngineError):
    def __init__(self, item_id: int, unit_id: str | None, status: str | None = None, required: str | None = None):
        detail = f"Unit {unit_id!r} of item {item_id} is not available"
        if status and required:
            detail += f" (status {status}, expected {required})"
        super().__init__(detail + ".")
        self.item_id = item_id
        self.unit_id = unit_id
        self.status = status
        self.required = required


class RateNotConfigured(RentalEngineError):
    def __init__(self, rental_type: str, item_id: int | None = None):
        target = f" for item {item_id}" if item_id is not None else ""
        super().__init__(f"No {rental_type} rate configured{target}.")
        self.rental_type = rental_type
        self.item_id = item_id


class AlreadyResolved(RentalEngineError):
    pass


class Unauthorized(RentalEngineError):
    pass
