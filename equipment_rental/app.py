import logging
from datetime import datetime

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from equipment_rental.config import CORS_ALLOW_ORIGINS
from equipment_rental.db.deps import get_rental_db
from equipment_rental.schemas.approvals import ApprovalRequestDto, ApprovalResolutionDto
from equipment_rental.schemas.billing import BillingRejectionDto, CreateBillingDto
from equipment_rental.schemas.inventory import AddUnitDto, AdjustQuantityDto, CreateItemDto
from equipment_rental.schemas.rentals import (
    ChecklistDto,
    CreateRentalDto,
    DiscountRequest,
    ExtensionRequest,
    RentalServiceDto,
    RentalTypeChangeRequest,
    StatusUpdateRequest,
)
from equipment_rental.services import billing_service, inventory_service, notification_service, rental_service
from equipment_rental.services.approval_service import Actor, has_permission, normalize_role, serialize_approval
from equipment_rental.services.errors import AlreadyResolved, NotFound, RentalEngineError, Unauthorized


API_LOGGER = logging.getLogger("equipment_rental.api")

app = FastAPI(title="Equipment Rental Engine")

_CORS_ALLOW_CREDENTIALS = "*" not in CORS_ALLOW_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_status(exc: Exception) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, Unauthorized):
        return 403
    if isinstance(exc, AlreadyResolved):
        return 409
    return 400


@app.exception_handler(RentalEngineError)
async def handle_domain_error(request: Request, exc: RentalEngineError):
    status_code = _error_status(exc)
    API_LOGGER.warning(
        "Request refused method=%s path=%s status=%s error=%s detail=%s",
        request.method,
        request.url.path,
        status_code,
        type(exc).__name__,
        exc,
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(StaleDataError)
async def handle_stale_data(request: Request, exc: StaleDataError):
    API_LOGGER.warning("Concurrent update method=%s path=%s detail=%s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=409,
        content={"detail": "The record was changed concurrently; retry the request.", "error": "Conflict"},
    )


def get_actor(
    x_user_id: int = Header(..., alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
    x_company_id: int = Header(..., alias="X-Company-ID"),
) -> Actor:
    return Actor(user_id=x_user_id, role=normalize_role(x_user_role), company_id=x_company_id)


def _change_response(db: Session, result: rental_service.ChangeResult) -> dict:
    db.commit()
    db.refresh(result.rental)
    payload = {
        "rental": rental_service.serialize_rental(result.rental),
        "requiresApproval": result.requires_approval,
    }
    if result.approval is not None:
        payload["pending"] = serialize_approval(result.approval)
    return payload


def _rental_response(db: Session, rental) -> dict:
    db.commit()
    db.refresh(rental)
    return rental_service.serialize_rental(rental)


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/items")
def create_item(payload: CreateItemDto, db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    if not has_permission(actor.role, "manager"):
        raise Unauthorized("Only managers and admins can register items.")
    item = inventory_service.create_item(db, actor.company_id, payload, actor.user_id)
    db.commit()
    db.refresh(item)
    return inventory_service.serialize_item(item)


@app.get("/api/items/{item_id}")
def get_item(item_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    item = inventory_service.load_item(db, actor.company_id, item_id)
    return inventory_service.serialize_item(item)


@app.post("/api/items/{item_id}/units")
def add_item_unit(
    item_id: int,
    payload: AddUnitDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    if not has_permission(actor.role, "manager"):
        raise Unauthorized("Only managers and admins can add units.")
    item = inventory_service.load_item(db, actor.company_id, item_id, for_update=True)
    inventory_service.add_unit(db, item, payload.unitID, actor.user_id, payload.location)
    db.commit()
    db.refresh(item)
    return inventory_service.serialize_item(item)


@app.post("/api/items/{item_id}/adjust")
def adjust_item_quantity(
    item_id: int,
    payload: AdjustQuantityDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    if not has_permission(actor.role, "operator"):
        raise Unauthorized("Viewers cannot adjust stock.")
    item = inventory_service.load_item(db, actor.company_id, item_id, for_update=True)
    movement = inventory_service.adjust_quantity(
        db,
        item,
        payload.type,
        payload.quantity,
        notes=payload.notes,
        actor_id=actor.user_id,
        unit_id=payload.unitID,
    )
    db.commit()
    db.refresh(item)
    return {
        "item": inventory_service.serialize_item(item),
        "movement": inventory_service.serialize_movement(movement),
    }


@app.get("/api/items/{item_id}/movements")
def get_item_movements(
    item_id: int,
    movement_type: str | None = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    inventory_service.load_item(db, actor.company_id, item_id)
    movements = inventory_service.list_movements(db, actor.company_id, item_id, movement_type, limit)
    return [inventory_service.serialize_movement(movement) for movement in movements]


@app.post("/api/rentals")
def create_rental(payload: CreateRentalDto, db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    rental = rental_service.create_rental(db, actor.company_id, payload, actor)
    return _rental_response(db, rental)


@app.get("/api/rentals/pending-approvals")
def get_pending_approvals(db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    rentals = rental_service.get_pending_approvals(db, actor.company_id)
    return [
        {
            "rentalID": rental.RentalID,
            "rentalNumber": rental.RentalNumber,
            "status": rental.Status,
            "pendingApprovals": [
                serialize_approval(approval) for approval in rental.PendingApprovals if approval.Status == "pending"
            ],
        }
        for rental in rentals
    ]


@app.post("/api/rentals/check-overdue")
def check_overdue(db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    if not has_permission(actor.role, "operator"):
        raise Unauthorized("Viewers cannot run the overdue sweep.")
    count = rental_service.sweep_overdue(db, actor.company_id)
    db.commit()
    return {"updated": count}


@app.get("/api/rentals/{rental_id}")
def get_rental(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    rental = rental_service.load_rental(db, actor.company_id, rental_id, for_update=False)
    return rental_service.serialize_rental(rental)


@app.patch("/api/rentals/{rental_id}/status")
def update_rental_status(
    rental_id: int,
    payload: StatusUpdateRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    result = rental_service.update_rental_status(db, rental_id, payload.status, actor, actor.company_id)
    return _change_response(db, result)


@app.patch("/api/rentals/{rental_id}/extend")
def extend_rental(
    rental_id: int,
    payload: ExtensionRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    result = rental_service.extend_rental(db, rental_id, payload.newReturnDate, actor, actor.company_id)
    return _change_response(db, result)


@app.post("/api/rentals/{rental_id}/discount")
def apply_discount(
    rental_id: int,
    payload: DiscountRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    result = rental_service.apply_discount(db, rental_id, payload.amount, payload.reason, actor, actor.company_id)
    return _change_response(db, result)


@app.post("/api/rentals/{rental_id}/change-rental-type")
def change_rental_type(
    rental_id: int,
    payload: RentalTypeChangeRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    result = rental_service.change_rental_type(
        db,
        rental_id,
        payload.itemIndex,
        payload.newRentalType,
        actor,
        actor.company_id,
    )
    return _change_response(db, result)


@app.post("/api/rentals/{rental_id}/services")
def add_rental_service(
    rental_id: int,
    payload: RentalServiceDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    result = rental_service.add_service(
        db,
        rental_id,
        payload.description,
        payload.price,
        payload.quantity,
        actor,
        actor.company_id,
    )
    return _change_response(db, result)


@app.post("/api/rentals/{rental_id}/request-approval")
def request_approval(
    rental_id: int,
    payload: ApprovalRequestDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    approval = rental_service.request_approval(db, rental_id, payload.details, actor, actor.company_id, payload.notes)
    db.commit()
    db.refresh(approval)
    return serialize_approval(approval)


@app.post("/api/rentals/{rental_id}/approve/{approval_index}")
def approve_request(
    rental_id: int,
    approval_index: int,
    payload: ApprovalResolutionDto | None = None,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    notes = payload.notes if payload else None
    rental = rental_service.approve_request(db, rental_id, approval_index, actor, actor.company_id, notes)
    return _rental_response(db, rental)


@app.post("/api/rentals/{rental_id}/reject/{approval_index}")
def reject_request(
    rental_id: int,
    approval_index: int,
    payload: ApprovalResolutionDto | None = None,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    notes = payload.notes if payload else None
    rental = rental_service.reject_request(db, rental_id, approval_index, actor, actor.company_id, notes)
    return _rental_response(db, rental)


@app.get("/api/rentals/{rental_id}/close-preview")
def close_preview(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    return rental_service.preview_completion(db, rental_id, actor.company_id)


@app.patch("/api/rentals/{rental_id}/checklist/pickup")
def update_pickup_checklist(
    rental_id: int,
    payload: ChecklistDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    rental = rental_service.update_pickup_checklist(db, rental_id, payload, actor, actor.company_id)
    return _rental_response(db, rental)


@app.patch("/api/rentals/{rental_id}/checklist/return")
def update_return_checklist(
    rental_id: int,
    payload: ChecklistDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    rental = rental_service.update_return_checklist(db, rental_id, payload, actor, actor.company_id)
    return _rental_response(db, rental)


def _billing_response(db: Session, billing) -> dict:
    db.commit()
    db.refresh(billing)
    return billing_service.serialize_billing(billing)


@app.post("/api/billings")
def create_billing(payload: CreateBillingDto, db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    billing = billing_service.create_billing(
        db,
        actor.company_id,
        payload.rentalID,
        payload.returnDate,
        actor,
        discount=payload.discount,
        discount_reason=payload.discountReason,
    )
    return _billing_response(db, billing)


@app.get("/api/billings")
def list_billings(
    rental_id: int | None = Query(None, alias="rentalID"),
    customer_id: int | None = Query(None, alias="customerID"),
    status: str | None = Query(None),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    billings = billing_service.list_billings(
        db,
        actor.company_id,
        rental_id=rental_id,
        customer_id=customer_id,
        status=status,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return {
        "billings": [billing_service.serialize_billing(billing) for billing in billings],
        "page": page,
        "limit": limit,
    }


@app.get("/api/billings/pending-approvals")
def get_pending_billings(db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    billings = billing_service.get_pending_billings(db, actor.company_id)
    return [billing_service.serialize_billing(billing) for billing in billings]


@app.get("/api/billings/{billing_id}")
def get_billing(billing_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(get_actor)):
    return billing_service.serialize_billing(billing_service.load_billing(db, actor.company_id, billing_id))


@app.post("/api/billings/{billing_id}/approve")
def approve_billing(
    billing_id: int,
    payload: ApprovalResolutionDto | None = None,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    notes = payload.notes if payload else None
    billing = billing_service.approve_billing(db, actor.company_id, billing_id, actor, notes)
    return _billing_response(db, billing)


@app.post("/api/billings/{billing_id}/reject")
def reject_billing(
    billing_id: int,
    payload: BillingRejectionDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    billing = billing_service.reject_billing(db, actor.company_id, billing_id, actor, payload.notes)
    return _billing_response(db, billing)


@app.get("/api/notifications")
def get_notifications(
    unread: bool = Query(False),
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    notifications = notification_service.list_notifications_for_user(
        db,
        actor.user_id,
        unread_only=unread,
        company_id=actor.company_id,
    )
    return [notification_service.serialize_notification(notification, actor.user_id) for notification in notifications]


@app.post("/api/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(get_actor),
):
    notification = notification_service.mark_notification_read(db, notification_id, actor.user_id, actor.company_id)
    db.commit()
    db.refresh(notification)
    return notification_service.serialize_notification(notification, actor.user_id)
