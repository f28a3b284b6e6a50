from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from equipment_rental.config import DISCOUNT_APPROVAL_RATIO
from equipment_rental.models.rental_models import PendingApproval, Rental
from equipment_rental.schemas.approvals import dump_details, load_details
from equipment_rental.services import notification_service
from equipment_rental.services.errors import AlreadyResolved, ApprovalNotFound, Unauthorized


LOGGER = logging.getLogger("equipment_rental.approvals")

DEFAULT_ROLE = "viewer"
ROLE_HIERARCHY = {
    "superadmin": 5,
    "admin": 4,
    "manager": 3,
    "operator": 2,
    "viewer": 1,
}
ADMIN_ONLY_MUTATIONS = {"status_change", "rental_type_change", "service_addition"}
ALLOWED = "allowed"
PENDING = "pending"


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str
    company_id: int


@dataclass(frozen=True)
class GateDecision:
    outcome: str
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == ALLOWED


def normalize_role(raw_role: str | None) -> str:
    role = (raw_role or "").strip().lower()
    if role in ROLE_HIERARCHY:
        return role
    return DEFAULT_ROLE


def has_permission(role: str | None, required: str) -> bool:
    return ROLE_HIERARCHY[normalize_role(role)] >= ROLE_HIERARCHY[required]


def is_admin_or_above(role: str | None) -> bool:
    return has_permission(role, "admin")


def requires_approval(actor: Actor, mutation_type: str, details, rental: Rental | None = None) -> GateDecision:
    """Decide whether a mutation applies now or is deferred to an approver.

    Viewers may not mutate at all. Admins and above always apply directly.
    Discounts up to the configured share of the subtotal and extensions are
    open to every other role.
    """
    if not has_permission(actor.role, "operator"):
        raise Unauthorized(f"Role {normalize_role(actor.role)!r} cannot modify rentals.")
    if is_admin_or_above(actor.role):
        return GateDecision(ALLOWED)

    if mutation_type in ADMIN_ONLY_MUTATIONS:
        return GateDecision(PENDING, f"{mutation_type} requires admin approval")
    if mutation_type == "discount":
        subtotal = float(getattr(rental, "Subtotal", 0) or 0)
        if float(details.amount) <= subtotal * DISCOUNT_APPROVAL_RATIO:
            return GateDecision(ALLOWED)
        return GateDecision(PENDING, f"discount above {DISCOUNT_APPROVAL_RATIO:.0%} of subtotal")
    if mutation_type == "extension":
        return GateDecision(ALLOWED)
    raise ValueError(f"Unknown mutation type: {mutation_type}")


def require_resolver(actor: Actor) -> None:
    if not is_admin_or_above(actor.role):
        raise Unauthorized("Only admins can resolve approval requests.")


def queue_request(
    db: Session,
    rental: Rental,
    actor: Actor,
    details,
    notes: str | None = None,
    now: datetime | None = None,
) -> PendingApproval:
    now = now or datetime.now()
    approval = PendingApproval(
        Position=len(rental.PendingApprovals),
        RequestedBy=actor.user_id,
        RequestType=details.requestType,
        Details=dump_details(details),
        Status="pending",
        Notes=notes,
        RequestedAt=now,
    )
    rental.PendingApprovals.append(approval)

    if details.requestType == "status_change":
        notification = notification_service.notify_status_change_request(
            db,
            title="Status change approval required",
            message=(
                f"Rental {rental.RentalNumber}: change from {rental.Status} "
                f"to {details.newStatus} requested by user {actor.user_id}."
            ),
            company_id=rental.CompanyID,
            requested_by=actor.user_id,
            reference_id=rental.RentalID,
            requested_status=details.newStatus,
        )
        approval.NotificationID = notification.NotificationID

    LOGGER.warning(
        "Approval queued rental_id=%s index=%s type=%s requested_by=%s",
        rental.RentalID,
        approval.Position,
        approval.RequestType,
        actor.user_id,
    )
    return approval


def get_approval(rental: Rental, approval_index: int) -> PendingApproval:
    if approval_index < 0 or approval_index >= len(rental.PendingApprovals):
        raise ApprovalNotFound(rental.RentalID, approval_index)
    approval = rental.PendingApprovals[approval_index]
    if approval.Status != "pending":
        raise AlreadyResolved(f"Approval request {approval_index} on rental {rental.RentalID} is already {approval.Status}.")
    return approval


def mark_resolved(approval: PendingApproval, actor: Actor, status: str, notes: str | None = None, now: datetime | None = None) -> None:
    approval.Status = status
    approval.ResolvedBy = actor.user_id
    approval.ResolvedAt = now or datetime.now()
    approval.ResolutionNotes = notes
    LOGGER.info(
        "Approval resolved rental_id=%s index=%s status=%s resolved_by=%s",
        approval.RentalID,
        approval.Position,
        status,
        actor.user_id,
    )


def approval_details(approval: PendingApproval):
    return load_details(approval.Details)


def serialize_approval(approval: PendingApproval) -> dict:
    return {
        "index": approval.Position,
        "requestedBy": approval.RequestedBy,
        "requestType": approval.RequestType,
        "details": approval_details(approval).model_dump(mode="json"),
        "status": approval.Status,
        "notes": approval.Notes,
        "requestedAt": approval.RequestedAt,
        "resolvedBy": approval.ResolvedBy,
        "resolvedAt": approval.ResolvedAt,
        "resolutionNotes": approval.ResolutionNotes,
        "notificationID": approval.NotificationID,
    }
