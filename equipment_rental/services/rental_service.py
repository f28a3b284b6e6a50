from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from equipment_rental.config import AUTO_APPLY_LATE_FEE, LATE_FEE_MULTIPLIER, RENTAL_NUMBER_PREFIX
from equipment_rental.models.inventory_models import Item
from equipment_rental.models.rental_models import (
    PendingApproval,
    Rental,
    RentalChangeHistory,
    RentalCounter,
    RentalItem,
    RentalServiceLine,
)
from equipment_rental.schemas.approvals import (
    DiscountDetails,
    ExtensionDetails,
    RentalTypeChangeDetails,
    ServiceAdditionDetails,
    StatusChangeDetails,
    dump_details,
)
from equipment_rental.services import approval_service, inventory_service, notification_service
from equipment_rental.services.approval_service import Actor
from equipment_rental.services.errors import InvalidState, InvalidTransition, RentalNotFound, Unauthorized
from equipment_rental.services.pricing_service import (
    calculate_billing_period,
    calculate_item_price,
    calculate_late_fee,
    calculate_used_days,
    compute_total,
    prorate_line,
    rate_for,
    rental_days,
    round_money,
)


LOGGER = logging.getLogger("equipment_rental.rentals")

STATE_TRANSITIONS = {
    "reserved": {"active", "cancelled", "overdue"},
    "active": {"completed", "overdue"},
    "overdue": {"completed"},
    "completed": set(),
    "cancelled": set(),
}
# overdue is only ever set by the sweep
USER_TARGETS = {"active", "completed", "cancelled"}
LEDGER_ACTIONS = {
    ("reserved", "active"): "activate",
    ("active", "completed"): "return",
    ("overdue", "completed"): "return",
    ("reserved", "cancelled"): "cancel",
}
OPEN_STATES = {"reserved", "active", "overdue"}
EXTENDABLE_STATES = {"reserved", "active"}
SWEEPABLE_STATES = ("reserved", "active")


@dataclass
class ChangeResult:
    rental: Rental
    requires_approval: bool = False
    approval: PendingApproval | None = None


def load_rental(db: Session, company_id: int, rental_id: int, *, for_update: bool = True) -> Rental:
    stmt = select(Rental).where(Rental.RentalID == rental_id).where(Rental.CompanyID == company_id)
    if for_update:
        stmt = stmt.with_for_update()
    rental = db.execute(stmt).scalars().first()
    if not rental:
        raise RentalNotFound(rental_id)
    return rental


def generate_rental_number(db: Session, company_id: int, prefix: str = RENTAL_NUMBER_PREFIX) -> str:
    token = (prefix or "RNT").upper()
    counter = db.execute(
        select(RentalCounter).where(RentalCounter.CompanyID == company_id).with_for_update()
    ).scalars().first()
    if not counter:
        counter = RentalCounter(CompanyID=company_id, LastNumber=0)
        db.add(counter)
    counter.LastNumber = int(counter.LastNumber or 0) + 1
    return f"{token}-{counter.LastNumber:06d}"


def validate_transition(current: str, target: str) -> None:
    if target not in USER_TARGETS or target not in STATE_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, target)


def _require_operator(actor: Actor) -> None:
    if not approval_service.has_permission(actor.role, "operator"):
        raise Unauthorized(f"Role {approval_service.normalize_role(actor.role)!r} cannot modify rentals.")


def _require_open(rental: Rental) -> None:
    if rental.Status not in OPEN_STATES:
        raise InvalidState(f"Rental {rental.RentalNumber} is {rental.Status} and can no longer be changed.")


def _refresh_totals(rental: Rental) -> None:
    rental.ServicesSubtotal = round_money(sum(float(service.Subtotal or 0) for service in rental.Services))
    rental.Subtotal = round_money(float(rental.EquipmentSubtotal or 0) + float(rental.ServicesSubtotal or 0))
    if float(rental.Discount or 0) > rental.Subtotal:
        LOGGER.info(
            "Discount capped at subtotal rental_id=%s discount=%s subtotal=%s",
            rental.RentalID,
            rental.Discount,
            rental.Subtotal,
        )
        rental.Discount = rental.Subtotal
    rental.Total = compute_total(
        rental.EquipmentSubtotal,
        rental.ServicesSubtotal,
        rental.Deposit,
        rental.Discount,
        rental.LateFee,
    )


def _reprice_totals(rental: Rental) -> None:
    equipment = round_money(sum(float(line.Subtotal or 0) for line in rental.RentalItems))
    rental.EquipmentSubtotal = equipment
    rental.OriginalEquipmentSubtotal = equipment
    _refresh_totals(rental)


def _price_line(line: RentalItem, start: datetime, end: datetime) -> None:
    line.UnitPrice = rate_for(line.Item, line.RentalType)
    line.Subtotal = round_money(calculate_item_price(line.Item, start, end, line.RentalType) * int(line.Quantity or 0))


def _lock_rental_items(db: Session, rental: Rental) -> None:
    item_ids = sorted({line.ItemID for line in rental.RentalItems})
    if item_ids:
        db.execute(select(Item).where(Item.ItemID.in_(item_ids)).order_by(Item.ItemID).with_for_update()).scalars().all()


def create_rental(db: Session, company_id: int, payload, actor: Actor, now: datetime | None = None) -> Rental:
    """Create a reserved rental and place a hold on every requested item.

    Availability and pricing are validated for all lines before any item is
    touched. A discount passed at creation runs through the approval gate and
    is queued as a pending request when the actor may not grant it.
    """
    _require_operator(actor)
    now = now or datetime.now()
    if payload.returnScheduled <= payload.pickupScheduled:
        raise InvalidState("Scheduled return must be after scheduled pickup.")

    plan = inventory_service.plan_reservations(db, company_id, payload.items)

    rental_items = []
    deposit = 0.0
    for position, allocation in enumerate(plan):
        line = payload.items[allocation.line_index]
        rental_item = RentalItem(
            Position=position,
            Item=allocation.item,
            ItemID=allocation.item.ItemID,
            UnitID=allocation.unit_id,
            Quantity=allocation.quantity,
            RentalType=line.rentalType,
        )
        _price_line(rental_item, payload.pickupScheduled, payload.returnScheduled)
        rental_items.append(rental_item)
        deposit += float(allocation.item.DepositAmount or 0) * allocation.quantity

    rental = Rental(
        CompanyID=company_id,
        RentalNumber=generate_rental_number(db, company_id),
        CustomerID=payload.customerID,
        Status="reserved",
        Notes=payload.notes,
        ReservedAt=now,
        PickupScheduled=payload.pickupScheduled,
        ReturnScheduled=payload.returnScheduled,
        BillingCycle=payload.billingCycle,
        ContractedDays=rental_days(payload.pickupScheduled, payload.returnScheduled),
        Deposit=round_money(deposit),
        Discount=0,
        LateFee=0,
        UsedDays=0,
        CreatedBy=actor.user_id,
        CreatedDate=now,
        UpdatedDate=now,
    )
    rental.RentalItems = rental_items
    rental.Services = [
        RentalServiceLine(
            Position=position,
            Description=service.description,
            Price=service.price,
            Quantity=service.quantity,
            Subtotal=round_money(service.price * service.quantity),
        )
        for position, service in enumerate(payload.services)
    ]
    _reprice_totals(rental)

    discount = None
    if payload.discount:
        discount = DiscountDetails(amount=payload.discount, reason=payload.discountReason)
        _check_discount(rental, discount.amount)
        decision = approval_service.requires_approval(actor, "discount", discount, rental)
        if decision.allowed:
            _apply_discount(rental, discount, now)
            discount = None

    db.add(rental)
    db.flush()

    for line in rental.RentalItems:
        inventory_service.apply_rental_action(
            db,
            line.Item,
            "reserve",
            quantity=line.Quantity,
            unit_id=line.UnitID,
            rental=rental,
            actor_id=actor.user_id,
        )

    if discount is not None:
        approval_service.queue_request(db, rental, actor, discount, now=now)

    LOGGER.info(
        "Rental created rental_id=%s number=%s company_id=%s lines=%s total=%s",
        rental.RentalID,
        rental.RentalNumber,
        company_id,
        len(rental.RentalItems),
        rental.Total,
    )
    return rental


def update_rental_status(
    db: Session,
    rental_id: int,
    new_status: str,
    actor: Actor,
    company_id: int,
    now: datetime | None = None,
) -> ChangeResult:
    rental = load_rental(db, company_id, rental_id)
    current = rental.Status
    if new_status == current:
        return ChangeResult(rental)
    try:
        validate_transition(current, new_status)
    except InvalidTransition:
        LOGGER.warning("Rental transition refused rental_id=%s from=%s to=%s", rental_id, current, new_status)
        raise

    details = StatusChangeDetails(newStatus=new_status, currentStatus=current)
    decision = approval_service.requires_approval(actor, "status_change", details, rental)
    if not decision.allowed:
        approval = approval_service.queue_request(db, rental, actor, details, now=now)
        return ChangeResult(rental, requires_approval=True, approval=approval)

    _apply_status_change(db, rental, details, actor, now)
    return ChangeResult(rental)


def _apply_status_change(db: Session, rental: Rental, details: StatusChangeDetails, actor: Actor, now: datetime | None) -> None:
    now = now or datetime.now()
    current = rental.Status
    target = details.newStatus
    if target == current:
        return
    validate_transition(current, target)

    action = LEDGER_ACTIONS[(current, target)]
    if target == "active":
        rental.PickupActual = now
    elif target == "completed":
        if current == "overdue" and rental.PickupActual is None:
            # never picked up, the units are still only held
            action = "cancel"
        _settle(rental, now)

    _lock_rental_items(db, rental)
    for line in rental.RentalItems:
        inventory_service.apply_rental_action(
            db,
            line.Item,
            action,
            quantity=line.Quantity,
            unit_id=line.UnitID,
            rental=rental,
            actor_id=actor.user_id,
        )

    rental.Status = target
    rental.UpdatedDate = now
    LOGGER.info(
        "Rental transition rental_id=%s from=%s to=%s actor_id=%s",
        rental.RentalID,
        current,
        target,
        actor.user_id,
    )


def _settlement_figures(rental: Rental, now: datetime) -> dict:
    start = rental.PickupActual or rental.PickupScheduled
    used_days = calculate_used_days(start, now)
    equipment = round_money(
        sum(prorate_line(line.UnitPrice, line.RentalType, used_days, line.Quantity) for line in rental.RentalItems)
    )
    late_fee = 0.0
    if AUTO_APPLY_LATE_FEE:
        late_fee = round_money(
            sum(
                calculate_late_fee(
                    rental.ReturnScheduled,
                    now,
                    line.Item.DailyRate,
                    line.Quantity,
                    LATE_FEE_MULTIPLIER,
                )
                for line in rental.RentalItems
            )
        )
    services = round_money(sum(float(service.Subtotal or 0) for service in rental.Services))
    subtotal = round_money(equipment + services)
    return {
        "start": start,
        "usedDays": used_days,
        "equipmentSubtotal": equipment,
        "servicesSubtotal": services,
        "discount": min(float(rental.Discount or 0), subtotal),
        "lateFee": late_fee,
    }


def _settle(rental: Rental, now: datetime) -> None:
    figures = _settlement_figures(rental, now)
    rental.ReturnActual = now
    rental.UsedDays = figures["usedDays"]
    rental.EquipmentSubtotal = figures["equipmentSubtotal"]
    rental.LateFee = figures["lateFee"]
    _refresh_totals(rental)


def preview_completion(db: Session, rental_id: int, company_id: int, now: datetime | None = None) -> dict:
    now = now or datetime.now()
    rental = load_rental(db, company_id, rental_id, for_update=False)
    figures = _settlement_figures(rental, now)
    primary_type = rental.RentalItems[0].RentalType if rental.RentalItems else "daily"
    billing = calculate_billing_period(figures["start"], now, primary_type)
    return {
        "rentalID": rental.RentalID,
        "rentalNumber": rental.RentalNumber,
        "status": rental.Status,
        "contractedDays": rental.ContractedDays,
        "usedDays": figures["usedDays"],
        "billingPeriod": billing.as_dict(),
        "originalEquipmentSubtotal": rental.OriginalEquipmentSubtotal,
        "recalculatedEquipmentSubtotal": figures["equipmentSubtotal"],
        "servicesSubtotal": figures["servicesSubtotal"],
        "deposit": rental.Deposit,
        "discount": figures["discount"],
        "lateFee": figures["lateFee"],
        "projectedTotal": compute_total(
            figures["equipmentSubtotal"],
            figures["servicesSubtotal"],
            rental.Deposit,
            figures["discount"],
            figures["lateFee"],
        ),
    }


def extend_rental(
    db: Session,
    rental_id: int,
    new_return_date: datetime,
    actor: Actor,
    company_id: int,
    now: datetime | None = None,
) -> ChangeResult:
    rental = load_rental(db, company_id, rental_id)
    details = ExtensionDetails(newReturnDate=new_return_date, currentReturnDate=rental.ReturnScheduled)
    _check_extension(rental, details)
    decision = approval_service.requires_approval(actor, "extension", details, rental)
    if not decision.allowed:
        approval = approval_service.queue_request(db, rental, actor, details, now=now)
        return ChangeResult(rental, requires_approval=True, approval=approval)
    _apply_extension(rental, details, now)
    return ChangeResult(rental)


def _check_extension(rental: Rental, details: ExtensionDetails) -> None:
    if rental.Status not in EXTENDABLE_STATES:
        raise InvalidState(f"Rental {rental.RentalNumber} is {rental.Status} and cannot be extended.")
    start = rental.PickupActual or rental.PickupScheduled
    if details.newReturnDate <= start:
        raise InvalidState("New return date must be after pickup.")


def _apply_extension(rental: Rental, details: ExtensionDetails, now: datetime | None = None) -> None:
    _check_extension(rental, details)
    previous = rental.ReturnScheduled
    rental.ReturnScheduled = details.newReturnDate
    rental.ContractedDays = rental_days(rental.PickupScheduled, details.newReturnDate)
    for line in rental.RentalItems:
        _price_line(line, rental.PickupScheduled, details.newReturnDate)
    _reprice_totals(rental)
    rental.UpdatedDate = now or datetime.now()
    LOGGER.info(
        "Rental extended rental_id=%s from=%s to=%s total=%s",
        rental.RentalID,
        previous,
        details.newReturnDate,
        rental.Total,
    )


def apply_discount(
    db: Session,
    rental_id: int,
    amount: float,
    reason: str | None,
    actor: Actor,
    company_id: int,
    now: datetime | None = None,
) -> ChangeResult:
    rental = load_rental(db, company_id, rental_id)
    _require_open(rental)
    details = DiscountDetails(amount=amount, reason=reason)
    _check_discount(rental, details.amount)
    decision = approval_service.requires_approval(actor, "discount", details, rental)
    if not decision.allowed:
        approval = approval_service.queue_request(db, rental, actor, details, now=now)
        return ChangeResult(rental, requires_approval=True, approval=approval)
    _apply_discount(rental, details, now)
    return ChangeResult(rental)


def _check_discount(rental: Rental, amount: float) -> None:
    if float(amount) > float(rental.Subtotal or 0):
        raise InvalidState(f"Discount {amount} exceeds the subtotal {rental.Subtotal}.")


def _apply_discount(rental: Rental, details: DiscountDetails, now: datetime | None = None) -> None:
    _require_open(rental)
    _check_discount(rental, details.amount)
    rental.Discount = round_money(details.amount)
    rental.DiscountReason = details.reason
    _refresh_totals(rental)
    rental.UpdatedDate = now or datetime.now()
    LOGGER.info("Discount applied rental_id=%s amount=%s total=%s", rental.RentalID, rental.Discount, rental.Total)


def _rental_line(rental: Rental, item_index: int) -> RentalItem:
    if item_index < 0 or item_index >= len(rental.RentalItems):
        raise InvalidState(f"Rental {rental.RentalNumber} has no item at index {item_index}.")
    return rental.RentalItems[item_index]


def change_rental_type(
    db: Session,
    rental_id: int,
    item_index: int,
    new_rental_type: str,
    actor: Actor,
    company_id: int,
    now: datetime | None = None,
) -> ChangeResult:
    rental = load_rental(db, company_id, rental_id)
    _require_open(rental)
    line = _rental_line(rental, item_index)
    rate_for(line.Item, new_rental_type)
    details = RentalTypeChangeDetails(
        itemIndex=item_index,
        newRentalType=new_rental_type,
        currentRentalType=line.RentalType,
    )
    decision = approval_service.requires_approval(actor, "rental_type_change", details, rental)
    if not decision.allowed:
        approval = approval_service.queue_request(db, rental, actor, details, now=now)
        return ChangeResult(rental, requires_approval=True, approval=approval)
    _apply_rental_type_change(rental, details, now)
    return ChangeResult(rental)


def _apply_rental_type_change(rental: Rental, details: RentalTypeChangeDetails, now: datetime | None = None) -> None:
    _require_open(rental)
    line = _rental_line(rental, details.itemIndex)
    previous = line.RentalType
    line.RentalType = details.newRentalType
    _price_line(line, rental.PickupScheduled, rental.ReturnScheduled)
    _reprice_totals(rental)
    rental.UpdatedDate = now or datetime.now()
    LOGGER.info(
        "Rental type changed rental_id=%s index=%s from=%s to=%s",
        rental.RentalID,
        details.itemIndex,
        previous,
        details.newRentalType,
    )


def add_service(
    db: Session,
    rental_id: int,
    description: str,
    price: float,
    quantity: int,
    actor: Actor,
    company_id: int,
    now: datetime | None = None,
) -> ChangeResult:
    rental = load_rental(db, company_id, rental_id)
    _require_open(rental)
    details = ServiceAdditionDetails(description=description, price=price, quantity=quantity)
    decision = approval_service.requires_approval(actor, "service_addition", details, rental)
    if not decision.allowed:
        approval = approval_service.queue_request(db, rental, actor, details, now=now)
        return ChangeResult(rental, requires_approval=True, approval=approval)
    _apply_service_addition(rental, details, now)
    return ChangeResult(rental)


def _apply_service_addition(rental: Rental, details: ServiceAdditionDetails, now: datetime | None = None) -> None:
    _require_open(rental)
    rental.Services.append(
        RentalServiceLine(
            Position=len(rental.Services),
            Description=details.description,
            Price=details.price,
            Quantity=details.quantity,
            Subtotal=round_money(details.price * details.quantity),
        )
    )
    _refresh_totals(rental)
    rental.UpdatedDate = now or datetime.now()
    LOGGER.info("Service added rental_id=%s description=%s total=%s", rental.RentalID, details.description, rental.Total)


def request_approval(
    db: Session,
    rental_id: int,
    details,
    actor: Actor,
    company_id: int,
    notes: str | None = None,
    now: datetime | None = None,
) -> PendingApproval:
    _require_operator(actor)
    rental = load_rental(db, company_id, rental_id)
    _check_request(rental, details)
    return approval_service.queue_request(db, rental, actor, details, notes=notes, now=now)


def _check_request(rental: Rental, details) -> None:
    if details.requestType == "status_change":
        validate_transition(rental.Status, details.newStatus)
    elif details.requestType == "extension":
        _check_extension(rental, details)
    else:
        _require_open(rental)
        if details.requestType == "discount":
            _check_discount(rental, details.amount)
        elif details.requestType == "rental_type_change":
            rate_for(_rental_line(rental, details.itemIndex).Item, details.newRentalType)


def _apply_details(db: Session, rental: Rental, details, actor: Actor, now: datetime | None) -> None:
    if details.requestType == "status_change":
        _apply_status_change(db, rental, details, actor, now)
    elif details.requestType == "discount":
        _apply_discount(rental, details, now)
    elif details.requestType == "rental_type_change":
        _apply_rental_type_change(rental, details, now)
    elif details.requestType == "extension":
        _apply_extension(rental, details, now)
    elif details.requestType == "service_addition":
        _apply_service_addition(rental, details, now)
    else:
        raise ValueError(f"Unknown request type: {details.requestType}")


def approve_request(
    db: Session,
    rental_id: int,
    approval_index: int,
    actor: Actor,
    company_id: int,
    notes: str | None = None,
    now: datetime | None = None,
) -> Rental:
    approval_service.require_resolver(actor)
    now = now or datetime.now()
    rental = load_rental(db, company_id, rental_id)
    approval = approval_service.get_approval(rental, approval_index)
    details = approval_service.approval_details(approval)

    _apply_details(db, rental, details, actor, now)

    approval_service.mark_resolved(approval, actor, "approved", notes, now)
    rental.ChangeHistory.append(
        RentalChangeHistory(
            ChangeType=details.requestType,
            Details=dump_details(details),
            RequestedBy=approval.RequestedBy,
            ApprovedBy=actor.user_id,
            ApprovalIndex=approval_index,
            ChangedAt=now,
        )
    )
    if approval.NotificationID:
        notification_service.approve_status_change(db, approval.NotificationID, actor.user_id)
    return rental


def reject_request(
    db: Session,
    rental_id: int,
    approval_index: int,
    actor: Actor,
    company_id: int,
    notes: str | None = None,
    now: datetime | None = None,
) -> Rental:
    approval_service.require_resolver(actor)
    rental = load_rental(db, company_id, rental_id)
    approval = approval_service.get_approval(rental, approval_index)
    approval_service.mark_resolved(approval, actor, "rejected", notes, now)
    if approval.RequestType == "status_change" and approval.NotificationID:
        notification_service.reject_status_change(db, approval.NotificationID, actor.user_id)
    return rental


def _record_checklist(
    db: Session,
    rental_id: int,
    stage: str,
    checklist,
    actor: Actor,
    company_id: int,
    now: datetime | None,
) -> Rental:
    _require_operator(actor)
    now = now or datetime.now()
    rental = load_rental(db, company_id, rental_id)
    record = json.dumps(
        {
            "photos": list(checklist.photos or []),
            "conditions": dict(checklist.conditions or {}),
            "notes": checklist.notes,
            "completedAt": now.isoformat(),
            "completedBy": actor.user_id,
        }
    )
    if stage == "pickup":
        rental.PickupChecklist = record
    else:
        rental.ReturnChecklist = record
    rental.UpdatedDate = now
    LOGGER.info("Checklist recorded rental_id=%s stage=%s actor_id=%s", rental.RentalID, stage, actor.user_id)
    return rental


def update_pickup_checklist(
    db: Session,
    rental_id: int,
    checklist,
    actor: Actor,
    company_id: int,
    now: datetime | None = None,
) -> Rental:
    return _record_checklist(db, rental_id, "pickup", checklist, actor, company_id, now)


def update_return_checklist(
    db: Session,
    rental_id: int,
    checklist,
    actor: Actor,
    company_id: int,
    now: datetime | None = None,
) -> Rental:
    return _record_checklist(db, rental_id, "return", checklist, actor, company_id, now)


def get_pending_approvals(db: Session, company_id: int) -> list[Rental]:
    pending_rental_ids = select(PendingApproval.RentalID).where(PendingApproval.Status == "pending")
    return list(
        db.execute(
            select(Rental)
            .where(Rental.CompanyID == company_id)
            .where(Rental.RentalID.in_(pending_rental_ids))
            .order_by(Rental.RentalID)
        ).scalars().all()
    )


def sweep_overdue(db: Session, company_id: int | None = None, now: datetime | None = None) -> int:
    now = now or datetime.now()
    stmt = (
        update(Rental)
        .where(Rental.Status.in_(SWEEPABLE_STATES))
        .where(Rental.ReturnScheduled < now)
        .values(Status="overdue", UpdatedDate=now, Version=Rental.Version + 1)
        .execution_options(synchronize_session=False)
    )
    if company_id is not None:
        stmt = stmt.where(Rental.CompanyID == company_id)
    result = db.execute(stmt)
    count = int(result.rowcount or 0)
    if count:
        LOGGER.info("Overdue sweep company_id=%s marked=%s", company_id, count)
    return count


def _load_json_dict(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def serialize_rental(rental: Rental) -> dict:
    return {
        "rentalID": rental.RentalID,
        "companyID": rental.CompanyID,
        "rentalNumber": rental.RentalNumber,
        "customerID": rental.CustomerID,
        "status": rental.Status,
        "notes": rental.Notes,
        "items": [
            {
                "itemID": line.ItemID,
                "itemName": line.Item.Name if line.Item else None,
                "unitId": line.UnitID,
                "quantity": line.Quantity,
                "unitPrice": line.UnitPrice,
                "rentalType": line.RentalType,
                "subtotal": line.Subtotal,
            }
            for line in rental.RentalItems
        ],
        "services": [
            {
                "description": service.Description,
                "price": service.Price,
                "quantity": service.Quantity,
                "subtotal": service.Subtotal,
            }
            for service in rental.Services
        ],
        "dates": {
            "reservedAt": rental.ReservedAt,
            "pickupScheduled": rental.PickupScheduled,
            "pickupActual": rental.PickupActual,
            "returnScheduled": rental.ReturnScheduled,
            "returnActual": rental.ReturnActual,
            "billingCycle": rental.BillingCycle,
        },
        "pricing": {
            "equipmentSubtotal": rental.EquipmentSubtotal,
            "originalEquipmentSubtotal": rental.OriginalEquipmentSubtotal,
            "servicesSubtotal": rental.ServicesSubtotal,
            "contractedDays": rental.ContractedDays,
            "subtotal": rental.Subtotal,
            "deposit": rental.Deposit,
            "discount": rental.Discount,
            "discountReason": rental.DiscountReason,
            "lateFee": rental.LateFee,
            "usedDays": rental.UsedDays,
            "total": rental.Total,
        },
        "checklists": {
            "pickup": _load_json_dict(rental.PickupChecklist) or None,
            "return": _load_json_dict(rental.ReturnChecklist) or None,
        },
        "pendingApprovals": [approval_service.serialize_approval(approval) for approval in rental.PendingApprovals],
        "changeHistory": [
            {
                "changeType": change.ChangeType,
                "details": _load_json_dict(change.Details),
                "requestedBy": change.RequestedBy,
                "approvedBy": change.ApprovedBy,
                "approvalIndex": change.ApprovalIndex,
                "changedAt": change.ChangedAt,
            }
            for change in rental.ChangeHistory
        ],
        "createdBy": rental.CreatedBy,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
    }
