from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from equipment_rental.models.inventory_models import (
    TRACKING_QUANTITY,
    TRACKING_UNIT,
    UNIT_STATUSES,
    Item,
    ItemMovement,
    ItemUnit,
)
from equipment_rental.services.errors import (
    InsufficientQuantity,
    InvalidState,
    ItemNotFound,
    UnitNotAvailable,
    UnitNotFound,
)


LOGGER = logging.getLogger("equipment_rental.inventory")

QUANTITY_FIELDS = {
    "available": "QuantityAvailable",
    "reserved": "QuantityReserved",
    "rented": "QuantityRented",
    "maintenance": "QuantityMaintenance",
    "damaged": "QuantityDamaged",
}

# action -> (source pool/status, target pool/status)
RENTAL_ACTIONS = {
    "reserve": ("available", "reserved"),
    "activate": ("reserved", "rented"),
    "return": ("rented", "available"),
    "cancel": ("reserved", "available"),
}

ADJUSTMENTS = {
    "in": (None, "available"),
    "out": ("available", None),
    "damage": ("available", "damaged"),
    "repair": ("damaged", "available"),
    "maintenance_start": ("available", "maintenance"),
    "maintenance_end": ("maintenance", "available"),
}

HELD_STATUSES = {"reserved", "rented"}


@dataclass
class PlannedAllocation:
    line_index: int
    item: Item
    quantity: int
    unit_id: str | None = None


def quantity_snapshot(item: Item) -> dict[str, int]:
    return {
        "total": int(item.QuantityTotal or 0),
        "available": int(item.QuantityAvailable or 0),
        "reserved": int(item.QuantityReserved or 0),
        "rented": int(item.QuantityRented or 0),
        "maintenance": int(item.QuantityMaintenance or 0),
        "damaged": int(item.QuantityDamaged or 0),
    }


def quantity_is_consistent(item: Item) -> bool:
    snapshot = quantity_snapshot(item)
    if any(value < 0 for value in snapshot.values()):
        return False
    pools = sum(snapshot[name] for name in QUANTITY_FIELDS)
    if pools != snapshot["total"]:
        return False
    if item.TrackingType == TRACKING_UNIT:
        counts = _count_unit_statuses(item)
        return all(snapshot[name] == counts[name] for name in QUANTITY_FIELDS) and snapshot["total"] == len(item.Units)
    return True


def recompute_unit_quantities(item: Item) -> None:
    counts = _count_unit_statuses(item)
    item.QuantityTotal = len(item.Units)
    for name, field in QUANTITY_FIELDS.items():
        setattr(item, field, counts[name])


def _count_unit_statuses(item: Item) -> dict[str, int]:
    counts = {name: 0 for name in UNIT_STATUSES}
    for unit in item.Units:
        counts[unit.Status] = counts.get(unit.Status, 0) + 1
    return counts


def load_item(db: Session, company_id: int, item_id: int, *, for_update: bool = False) -> Item:
    """Fetch an active item of the tenant.

    A locked read flushes pending work and then reloads the item and its units
    from the database, so a copy already held by this session cannot hide a
    reservation committed elsewhere.
    """
    stmt = select(Item).where(Item.ItemID == item_id).where(Item.CompanyID == company_id)
    if for_update:
        db.flush()
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    item = db.execute(stmt).scalars().first()
    if not item or item.IsActive is False:
        raise ItemNotFound(item_id)
    if for_update and item.TrackingType == TRACKING_UNIT:
        db.execute(
            select(ItemUnit)
            .where(ItemUnit.ItemID == item.ItemID)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
    return item


def find_unit(item: Item, unit_id: str | None) -> ItemUnit:
    for unit in item.Units:
        if unit.UnitID == unit_id:
            return unit
    raise UnitNotFound(item.ItemID, unit_id)


def apply_rental_action(
    db: Session,
    item: Item,
    action: str,
    *,
    quantity: int = 1,
    unit_id: str | None = None,
    rental=None,
    actor_id: int | None = None,
) -> ItemMovement:
    if action not in RENTAL_ACTIONS:
        raise ValueError(f"Unknown rental action: {action}")
    source, target = RENTAL_ACTIONS[action]
    before = quantity_snapshot(item)

    if item.TrackingType == TRACKING_UNIT:
        unit = find_unit(item, unit_id)
        if unit.Status != source:
            LOGGER.warning(
                "Unit refused item_id=%s unit_id=%s action=%s status=%s",
                item.ItemID,
                unit_id,
                action,
                unit.Status,
            )
            raise UnitNotAvailable(item.ItemID, unit_id, unit.Status, source)
        unit.Status = target
        if target in HELD_STATUSES and rental is not None:
            unit.CurrentRentalID = rental.RentalID
            unit.CurrentCustomerID = rental.CustomerID
        elif target not in HELD_STATUSES:
            unit.CurrentRentalID = None
            unit.CurrentCustomerID = None
        unit.UpdatedDate = datetime.now()
        recompute_unit_quantities(item)
        moved = 1
    else:
        _move_quantity(item, source, target, quantity)
        moved = quantity

    return _finish_mutation(
        db,
        item,
        movement_type=action,
        quantity=moved,
        before=before,
        unit_id=unit_id if item.TrackingType == TRACKING_UNIT else None,
        rental_id=getattr(rental, "RentalID", None),
        actor_id=actor_id,
        notes=f"Rental {action}: {moved} units",
    )


def plan_reservations(db: Session, company_id: int, lines: list) -> list[PlannedAllocation]:
    """Validate a whole rental's allocation without touching any item.

    Every referenced item is locked in ascending id order. Unit-tracked lines
    that do not name a unit are assigned the first free units by unit id.
    """
    items: dict[int, Item] = {}
    for item_id in sorted({int(line.itemID) for line in lines}):
        items[item_id] = load_item(db, company_id, item_id, for_update=True)

    claimed: dict[int, set[str]] = {item_id: set() for item_id in items}
    requested: dict[int, int] = {}
    planned: dict[int, list[PlannedAllocation]] = {}

    for index, line in enumerate(lines):
        item = items[int(line.itemID)]
        quantity = int(line.quantity or 1)
        if quantity <= 0:
            raise InvalidState(f"Quantity for item {item.ItemID} must be positive.")
        if item.TrackingType == TRACKING_QUANTITY:
            if line.unitID:
                raise InvalidState(f"Item {item.ItemID} is quantity-tracked; units cannot be selected.")
            requested[item.ItemID] = requested.get(item.ItemID, 0) + quantity
            planned[index] = [PlannedAllocation(index, item, quantity)]
            continue
        if not line.unitID:
            continue
        if quantity != 1:
            raise InvalidState(f"Line selecting unit {line.unitID!r} must have quantity 1.")
        unit = find_unit(item, line.unitID)
        if unit.Status != "available" or unit.UnitID in claimed[item.ItemID]:
            raise UnitNotAvailable(item.ItemID, unit.UnitID, unit.Status, "available")
        claimed[item.ItemID].add(unit.UnitID)
        planned[index] = [PlannedAllocation(index, item, 1, unit.UnitID)]

    for index, line in enumerate(lines):
        item = items[int(line.itemID)]
        if item.TrackingType != TRACKING_UNIT or line.unitID:
            continue
        quantity = int(line.quantity or 1)
        free = [
            unit.UnitID
            for unit in sorted(item.Units, key=lambda unit: unit.UnitID)
            if unit.Status == "available" and unit.UnitID not in claimed[item.ItemID]
        ]
        if len(free) < quantity:
            raise UnitNotAvailable(item.ItemID, None)
        selected = free[:quantity]
        claimed[item.ItemID].update(selected)
        planned[index] = [PlannedAllocation(index, item, 1, unit_id) for unit_id in selected]

    for item_id, quantity in requested.items():
        available = int(items[item_id].QuantityAvailable or 0)
        if available < quantity:
            LOGGER.warning(
                "Reservation refused item_id=%s requested=%s available=%s",
                item_id,
                quantity,
                available,
            )
            raise InsufficientQuantity(item_id, quantity, available)

    return [allocation for index in sorted(planned) for allocation in planned[index]]


def create_item(db: Session, company_id: int, payload, actor_id: int | None = None) -> Item:
    tracking_type = payload.trackingType
    item = Item(
        CompanyID=company_id,
        Name=payload.name,
        Sku=payload.sku,
        Description=payload.description,
        TrackingType=tracking_type,
        DailyRate=payload.dailyRate,
        WeeklyRate=payload.weeklyRate,
        BiweeklyRate=payload.biweeklyRate,
        MonthlyRate=payload.monthlyRate,
        DepositAmount=payload.depositAmount,
        IsActive=True,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )

    if tracking_type == TRACKING_UNIT:
        unit_ids = [unit_id.strip() for unit_id in payload.units if unit_id and unit_id.strip()]
        if len(set(unit_ids)) != len(unit_ids):
            raise InvalidState("Unit ids must be unique within an item.")
        item.Units = [ItemUnit(UnitID=unit_id, Status="available", UpdatedDate=datetime.now()) for unit_id in unit_ids]
        recompute_unit_quantities(item)
    else:
        total = int(payload.quantityTotal or 0)
        maintenance = int(payload.quantityMaintenance or 0)
        damaged = int(payload.quantityDamaged or 0)
        available = total - maintenance - damaged
        if available < 0:
            raise InvalidState("Available quantity cannot be negative.")
        item.QuantityTotal = total
        item.QuantityAvailable = available
        item.QuantityReserved = 0
        item.QuantityRented = 0
        item.QuantityMaintenance = maintenance
        item.QuantityDamaged = damaged

    db.add(item)
    db.flush()
    empty = {name: 0 for name in ("total", *QUANTITY_FIELDS)}
    _finish_mutation(
        db,
        item,
        movement_type="in",
        quantity=int(item.QuantityTotal or 0),
        before=empty,
        actor_id=actor_id,
        notes="Item created",
    )
    return item


def add_unit(db: Session, item: Item, unit_id: str, actor_id: int | None = None, location: str | None = None) -> ItemUnit:
    if item.TrackingType != TRACKING_UNIT:
        raise InvalidState(f"Item {item.ItemID} is quantity-tracked; units cannot be added.")
    unit_id = (unit_id or "").strip()
    if not unit_id:
        raise InvalidState("Unit id is required.")
    if any(unit.UnitID == unit_id for unit in item.Units):
        raise InvalidState(f"Unit {unit_id!r} already exists on item {item.ItemID}.")

    before = quantity_snapshot(item)
    unit = ItemUnit(UnitID=unit_id, Status="available", Location=location, UpdatedDate=datetime.now())
    item.Units.append(unit)
    recompute_unit_quantities(item)
    _finish_mutation(
        db,
        item,
        movement_type="in",
        quantity=1,
        before=before,
        unit_id=unit_id,
        actor_id=actor_id,
        notes=f"Unit {unit_id} added",
    )
    return unit


def adjust_quantity(
    db: Session,
    item: Item,
    movement_type: str,
    quantity: int,
    notes: str | None = None,
    actor_id: int | None = None,
    unit_id: str | None = None,
) -> ItemMovement:
    if movement_type not in ADJUSTMENTS:
        raise ValueError(f"Unknown adjustment type: {movement_type}")
    source, target = ADJUSTMENTS[movement_type]
    before = quantity_snapshot(item)

    if item.TrackingType == TRACKING_UNIT:
        if movement_type == "in":
            raise InvalidState("Add units to a unit-tracked item individually.")
        unit = find_unit(item, unit_id)
        if unit.Status != source:
            raise UnitNotAvailable(item.ItemID, unit_id, unit.Status, source)
        if target is None:
            item.Units.remove(unit)
        else:
            unit.Status = target
            unit.UpdatedDate = datetime.now()
        recompute_unit_quantities(item)
        moved = 1
    else:
        if unit_id:
            raise InvalidState(f"Item {item.ItemID} is quantity-tracked; units cannot be selected.")
        _move_quantity(item, source, target, quantity)
        moved = quantity

    return _finish_mutation(
        db,
        item,
        movement_type=movement_type,
        quantity=-moved if movement_type == "out" else moved,
        before=before,
        unit_id=unit_id if item.TrackingType == TRACKING_UNIT else None,
        actor_id=actor_id,
        notes=notes,
    )


def list_movements(
    db: Session,
    company_id: int,
    item_id: int,
    movement_type: str | None = None,
    limit: int = 50,
) -> list[ItemMovement]:
    stmt = (
        select(ItemMovement)
        .where(ItemMovement.CompanyID == company_id)
        .where(ItemMovement.ItemID == item_id)
        .order_by(ItemMovement.MovementID.desc())
        .limit(max(1, int(limit)))
    )
    if movement_type:
        stmt = stmt.where(ItemMovement.MovementType == movement_type)
    return list(db.execute(stmt).scalars().all())


def _move_quantity(item: Item, source: str | None, target: str | None, quantity: int) -> None:
    quantity = int(quantity or 0)
    if quantity <= 0:
        raise InvalidState(f"Quantity for item {item.ItemID} must be positive.")

    if source is None:
        item.QuantityTotal = int(item.QuantityTotal or 0) + quantity
    else:
        field = QUANTITY_FIELDS[source]
        current = int(getattr(item, field) or 0)
        if current < quantity:
            LOGGER.warning(
                "Quantity refused item_id=%s pool=%s requested=%s current=%s",
                item.ItemID,
                source,
                quantity,
                current,
            )
            raise InsufficientQuantity(item.ItemID, quantity, current, pool=source)
        setattr(item, field, current - quantity)

    if target is None:
        item.QuantityTotal = int(item.QuantityTotal or 0) - quantity
    else:
        field = QUANTITY_FIELDS[target]
        setattr(item, field, int(getattr(item, field) or 0) + quantity)


def _finish_mutation(
    db: Session,
    item: Item,
    *,
    movement_type: str,
    quantity: int,
    before: dict[str, int],
    unit_id: str | None = None,
    rental_id: int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
) -> ItemMovement:
    if not quantity_is_consistent(item):
        raise InvalidState(f"Quantity record of item {item.ItemID} would become inconsistent.")
    item.UpdatedDate = datetime.now()
    after = quantity_snapshot(item)
    movement = ItemMovement(
        CompanyID=item.CompanyID,
        ItemID=item.ItemID,
        UnitID=unit_id,
        MovementType=movement_type,
        Quantity=quantity,
        PreviousQuantity=json.dumps(before, ensure_ascii=True),
        NewQuantity=json.dumps(after, ensure_ascii=True),
        RentalID=rental_id,
        Notes=notes,
        CreatedBy=actor_id,
        CreatedAt=datetime.now(),
    )
    db.add(movement)
    LOGGER.info(
        "Inventory movement item_id=%s type=%s quantity=%s unit_id=%s rental_id=%s",
        item.ItemID,
        movement_type,
        quantity,
        unit_id,
        rental_id,
    )
    return movement


def _parse_snapshot(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def serialize_unit(unit: ItemUnit) -> dict:
    return {
        "unitId": unit.UnitID,
        "status": unit.Status,
        "currentRentalID": unit.CurrentRentalID,
        "currentCustomerID": unit.CurrentCustomerID,
        "location": unit.Location,
        "notes": unit.Notes,
    }


def serialize_item(item: Item) -> dict:
    payload = {
        "itemID": item.ItemID,
        "companyID": item.CompanyID,
        "name": item.Name,
        "sku": item.Sku,
        "description": item.Description,
        "trackingType": item.TrackingType,
        "quantity": quantity_snapshot(item),
        "pricing": {
            "dailyRate": item.DailyRate,
            "weeklyRate": item.WeeklyRate,
            "biweeklyRate": item.BiweeklyRate,
            "monthlyRate": item.MonthlyRate,
            "depositAmount": item.DepositAmount,
        },
        "isActive": bool(item.IsActive),
        "createdDate": item.CreatedDate,
        "updatedDate": item.UpdatedDate,
    }
    if item.TrackingType == TRACKING_UNIT:
        payload["units"] = [serialize_unit(unit) for unit in item.Units]
    return payload


def serialize_movement(movement: ItemMovement) -> dict:
    return {
        "movementID": movement.MovementID,
        "itemID": movement.ItemID,
        "unitId": movement.UnitID,
        "type": movement.MovementType,
        "quantity": movement.Quantity,
        "previousQuantity": _parse_snapshot(movement.PreviousQuantity),
        "newQuantity": _parse_snapshot(movement.NewQuantity),
        "rentalID": movement.RentalID,
        "notes": movement.Notes,
        "createdBy": movement.CreatedBy,
        "createdAt": movement.CreatedAt,
    }
