"""Rental closures: a stored, approvable statement of what a return is billed.

A closure charges every line whole periods of its own rental type between the
actual pickup and the given return date. Early returns and generous discounts
leave the closure waiting for an admin.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from equipment_rental.config import (
    AUTO_APPLY_LATE_FEE,
    DISCOUNT_APPROVAL_RATIO,
    EARLY_RETURN_DISCOUNT_CAP,
    EARLY_RETURN_DISCOUNT_PER_DAY,
    LATE_FEE_MULTIPLIER,
)
from equipment_rental.models.billing_models import Billing, BillingLine, BillingServiceLine
from equipment_rental.services import approval_service, rental_service
from equipment_rental.services.approval_service import Actor
from equipment_rental.services.errors import AlreadyResolved, BillingNotFound, InvalidState, Unauthorized
from equipment_rental.services.pricing_service import (
    calculate_billing_period,
    calculate_late_fee,
    early_return_discount,
    round_money,
)


LOGGER = logging.getLogger("equipment_rental.billing")

PENDING_APPROVAL = "pending_approval"
APPROVED = "approved"
CANCELLED = "cancelled"
OPEN_BILLING_STATUSES = (PENDING_APPROVAL, APPROVED)


def create_billing(
    db: Session,
    company_id: int,
    rental_id: int,
    return_date: datetime,
    actor: Actor,
    discount: float = 0,
    discount_reason: str | None = None,
    now: datetime | None = None,
) -> Billing:
    if not approval_service.has_permission(actor.role, "operator"):
        raise Unauthorized("Viewers cannot close rentals.")
    now = now or datetime.now()
    rental = rental_service.load_rental(db, company_id, rental_id)
    if rental.Status not in rental_service.OPEN_STATES:
        raise InvalidState(f"Rental {rental.RentalNumber} is {rental.Status} and cannot be closed.")
    if _open_billing(db, rental.RentalID) is not None:
        raise InvalidState(f"Rental {rental.RentalNumber} already has an open closure.")

    start = rental.PickupActual or rental.PickupScheduled
    if return_date <= start:
        raise InvalidState("Return date must be after pickup.")

    lines = []
    for position, line in enumerate(rental.RentalItems):
        periods = calculate_billing_period(start, return_date, line.RentalType)
        lines.append(
            BillingLine(
                Position=position,
                ItemID=line.ItemID,
                UnitID=line.UnitID,
                Quantity=line.Quantity,
                UnitPrice=line.UnitPrice,
                RentalType=line.RentalType,
                PeriodsCharged=periods.total_periods,
                Subtotal=round_money(float(line.UnitPrice or 0) * int(line.Quantity or 0) * periods.total_periods),
            )
        )
    services = [
        BillingServiceLine(
            Position=position,
            Description=service.Description,
            Price=service.Price,
            Quantity=service.Quantity,
            Subtotal=service.Subtotal,
        )
        for position, service in enumerate(rental.Services)
    ]

    base_amount = round_money(sum(float(line.Subtotal) for line in lines))
    services_amount = round_money(sum(float(service.Subtotal or 0) for service in services))
    subtotal = round_money(base_amount + services_amount)
    discount = round_money(discount)
    if discount > subtotal:
        raise InvalidState(f"Discount {discount} exceeds the closure subtotal {subtotal}.")

    late_fee = 0.0
    if AUTO_APPLY_LATE_FEE:
        late_fee = round_money(
            sum(
                calculate_late_fee(
                    rental.ReturnScheduled,
                    return_date,
                    line.Item.DailyRate,
                    line.Quantity,
                    LATE_FEE_MULTIPLIER,
                )
                for line in rental.RentalItems
            )
        )
    days_saved, early_discount = early_return_discount(
        subtotal,
        rental.ReturnScheduled,
        return_date,
        EARLY_RETURN_DISCOUNT_PER_DAY,
        EARLY_RETURN_DISCOUNT_CAP,
    )
    approval_required = discount > subtotal * DISCOUNT_APPROVAL_RATIO or early_discount > 0

    primary = rental.RentalItems[0] if rental.RentalItems else None
    primary_type = primary.RentalType if primary else "daily"
    header = calculate_billing_period(start, return_date, primary_type)
    billing = Billing(
        CompanyID=company_id,
        Rental=rental,
        RentalID=rental.RentalID,
        CustomerID=rental.CustomerID,
        BillingDate=now,
        PeriodStart=start,
        PeriodEnd=return_date,
        RentalType=primary_type,
        BaseRate=primary.UnitPrice if primary else 0,
        PeriodsCompleted=header.periods_completed,
        ExtraDays=header.extra_days,
        TotalPeriods=header.total_periods,
        ChargeExtraPeriod=header.charge_extra_period,
        BaseAmount=base_amount,
        ServicesAmount=services_amount,
        Subtotal=subtotal,
        Discount=discount,
        DiscountReason=discount_reason,
        LateFee=late_fee,
        Total=round_money(subtotal - discount + late_fee),
        IsEarlyReturn=days_saved > 0,
        DaysSaved=days_saved,
        EarlyReturnDiscount=early_discount,
        Status=PENDING_APPROVAL if approval_required else APPROVED,
        ApprovalRequired=approval_required,
        RequestedBy=actor.user_id,
        Notes=rental.Notes,
    )
    billing.Lines = lines
    billing.Services = services
    db.add(billing)
    db.flush()
    LOGGER.info(
        "Billing created billing_id=%s rental_id=%s status=%s total=%s days_saved=%s",
        billing.BillingID,
        rental.RentalID,
        billing.Status,
        billing.Total,
        days_saved,
    )
    return billing


def _open_billing(db: Session, rental_id: int) -> Billing | None:
    return db.execute(
        select(Billing).where(Billing.RentalID == rental_id).where(Billing.Status.in_(OPEN_BILLING_STATUSES))
    ).scalars().first()


def load_billing(db: Session, company_id: int, billing_id: int) -> Billing:
    billing = db.execute(
        select(Billing).where(Billing.BillingID == billing_id).where(Billing.CompanyID == company_id)
    ).scalars().first()
    if not billing:
        raise BillingNotFound(billing_id)
    return billing


def _resolve(
    db: Session,
    company_id: int,
    billing_id: int,
    actor: Actor,
    status: str,
    notes: str | None,
    now: datetime | None,
) -> Billing:
    approval_service.require_resolver(actor)
    billing = load_billing(db, company_id, billing_id)
    if billing.Status != PENDING_APPROVAL:
        raise AlreadyResolved(f"Billing {billing_id} is {billing.Status}, not pending approval.")
    billing.Status = status
    billing.ApprovedBy = actor.user_id
    billing.ApprovalDate = now or datetime.now()
    billing.ApprovalNotes = notes
    LOGGER.info("Billing resolved billing_id=%s status=%s actor_id=%s", billing_id, status, actor.user_id)
    return billing


def approve_billing(
    db: Session,
    company_id: int,
    billing_id: int,
    actor: Actor,
    notes: str | None = None,
    now: datetime | None = None,
) -> Billing:
    return _resolve(db, company_id, billing_id, actor, APPROVED, notes, now)


def reject_billing(
    db: Session,
    company_id: int,
    billing_id: int,
    actor: Actor,
    notes: str,
    now: datetime | None = None,
) -> Billing:
    if not (notes or "").strip():
        raise InvalidState("Rejection notes are required.")
    return _resolve(db, company_id, billing_id, actor, CANCELLED, notes, now)


def list_billings(
    db: Session,
    company_id: int,
    *,
    rental_id: int | None = None,
    customer_id: int | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 10,
    offset: int = 0,
) -> list[Billing]:
    stmt = select(Billing).where(Billing.CompanyID == company_id)
    if rental_id is not None:
        stmt = stmt.where(Billing.RentalID == rental_id)
    if customer_id is not None:
        stmt = stmt.where(Billing.CustomerID == customer_id)
    if status:
        stmt = stmt.where(Billing.Status == status)
    if start is not None:
        stmt = stmt.where(Billing.BillingDate >= start)
    if end is not None:
        stmt = stmt.where(Billing.BillingDate <= end)
    stmt = stmt.order_by(Billing.BillingDate.desc(), Billing.BillingID.desc()).offset(offset).limit(limit)
    return list(db.execute(stmt).scalars().all())


def get_pending_billings(db: Session, company_id: int) -> list[Billing]:
    return list(
        db.execute(
            select(Billing)
            .where(Billing.CompanyID == company_id)
            .where(Billing.Status == PENDING_APPROVAL)
            .order_by(Billing.BillingDate.desc(), Billing.BillingID.desc())
        ).scalars().all()
    )


def serialize_billing(billing: Billing) -> dict:
    return {
        "billingID": billing.BillingID,
        "rentalID": billing.RentalID,
        "rentalNumber": billing.Rental.RentalNumber if billing.Rental else None,
        "customerID": billing.CustomerID,
        "billingDate": billing.BillingDate,
        "periodStart": billing.PeriodStart,
        "periodEnd": billing.PeriodEnd,
        "rentalType": billing.RentalType,
        "calculation": {
            "baseRate": billing.BaseRate,
            "periodsCompleted": billing.PeriodsCompleted,
            "extraDays": billing.ExtraDays,
            "chargeExtraPeriod": bool(billing.ChargeExtraPeriod),
            "totalPeriods": billing.TotalPeriods,
            "baseAmount": billing.BaseAmount,
            "servicesAmount": billing.ServicesAmount,
            "subtotal": billing.Subtotal,
            "discount": billing.Discount,
            "discountReason": billing.DiscountReason,
            "lateFee": billing.LateFee,
            "total": billing.Total,
        },
        "earlyReturn": {
            "isEarly": bool(billing.IsEarlyReturn),
            "daysSaved": billing.DaysSaved,
            "discountApplied": billing.EarlyReturnDiscount,
        },
        "items": [
            {
                "itemID": line.ItemID,
                "unitId": line.UnitID,
                "quantity": line.Quantity,
                "unitPrice": line.UnitPrice,
                "rentalType": line.RentalType,
                "periodsCharged": line.PeriodsCharged,
                "subtotal": line.Subtotal,
            }
            for line in billing.Lines
        ],
        "services": [
            {
                "description": service.Description,
                "price": service.Price,
                "quantity": service.Quantity,
                "subtotal": service.Subtotal,
            }
            for service in billing.Services
        ],
        "status": billing.Status,
        "approvalRequired": bool(billing.ApprovalRequired),
        "requestedBy": billing.RequestedBy,
        "approvedBy": billing.ApprovedBy,
        "approvalDate": billing.ApprovalDate,
        "approvalNotes": billing.ApprovalNotes,
        "notes": billing.Notes,
    }
