import sys
from datetime import datetime, timedelta
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from equipment_rental.db.base import Base
from equipment_rental.models import billing_models, rental_models, user_models  # noqa: F401
from equipment_rental.models.inventory_models import ItemMovement
from equipment_rental.models.user_models import User
from equipment_rental.schemas.inventory import CreateItemDto
from equipment_rental.schemas.rentals import CreateRentalDto
from equipment_rental.services import inventory_service
from equipment_rental.services.approval_service import Actor


COMPANY_ID = 1
OTHER_COMPANY_ID = 2
DAY_ZERO = datetime(2026, 3, 2, 9, 0)

SUPERADMIN = Actor(user_id=10, role="superadmin", company_id=COMPANY_ID)
ADMIN = Actor(user_id=11, role="admin", company_id=COMPANY_ID)
MANAGER = Actor(user_id=12, role="manager", company_id=COMPANY_ID)
OPERATOR = Actor(user_id=13, role="operator", company_id=COMPANY_ID)
OTHER_OPERATOR = Actor(user_id=14, role="operator", company_id=COMPANY_ID)
VIEWER = Actor(user_id=15, role="viewer", company_id=COMPANY_ID)


def day(offset: int) -> datetime:
    return DAY_ZERO + timedelta(days=offset)


def make_session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


def seed_users(db) -> None:
    for actor in (SUPERADMIN, ADMIN, MANAGER, OPERATOR, OTHER_OPERATOR, VIEWER):
        db.add(User(UserID=actor.user_id, CompanyID=actor.company_id, Name=f"{actor.role} {actor.user_id}", Role=actor.role))
    db.add(User(UserID=20, CompanyID=COMPANY_ID, Name="inactive admin", Role="admin", IsActive=False))
    db.add(User(UserID=30, CompanyID=OTHER_COMPANY_ID, Name="foreign admin", Role="admin"))
    db.commit()


def make_quantity_item(db, sku="GEN-1", total=10, daily=100, company_id=COMPANY_ID, **rates):
    payload = CreateItemDto(
        name=f"Item {sku}",
        sku=sku,
        trackingType="quantity",
        quantityTotal=total,
        dailyRate=daily,
        **rates,
    )
    item = inventory_service.create_item(db, company_id, payload, actor_id=ADMIN.user_id)
    db.commit()
    return item


def make_unit_item(db, sku="EXC-1", units=("U1", "U2", "U3"), daily=100, company_id=COMPANY_ID, **rates):
    payload = CreateItemDto(
        name=f"Item {sku}",
        sku=sku,
        trackingType="unit",
        units=list(units),
        dailyRate=daily,
        **rates,
    )
    item = inventory_service.create_item(db, company_id, payload, actor_id=ADMIN.user_id)
    db.commit()
    return item


def rental_payload(items, pickup=None, return_scheduled=None, **extra) -> CreateRentalDto:
    return CreateRentalDto(
        customerID=extra.pop("customerID", 500),
        pickupScheduled=pickup or day(0),
        returnScheduled=return_scheduled or day(10),
        items=items,
        **extra,
    )


def movement_count(db, item_id: int, movement_type: str | None = None) -> int:
    stmt = select(func.count(ItemMovement.MovementID)).where(ItemMovement.ItemID == item_id)
    if movement_type:
        stmt = stmt.where(ItemMovement.MovementType == movement_type)
    return int(db.execute(stmt).scalar_one())
