from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, event
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from equipment_rental.db.base import Base


TRACKING_UNIT = "unit"
TRACKING_QUANTITY = "quantity"

UNIT_STATUSES = ("available", "reserved", "rented", "maintenance", "damaged")


class Item(Base):
    __tablename__ = "Items"

    ItemID = Column(Integer, primary_key=True)
    CompanyID = Column(Integer, nullable=False, index=True)
    Name = Column(String(255), nullable=False)
    Sku = Column(String(100), nullable=False)
    Description = Column(String(1000))
    TrackingType = Column(String(20), nullable=False, default=TRACKING_QUANTITY)

    QuantityTotal = Column(Integer, nullable=False, default=0)
    QuantityAvailable = Column(Integer, nullable=False, default=0)
    QuantityReserved = Column(Integer, nullable=False, default=0)
    QuantityRented = Column(Integer, nullable=False, default=0)
    QuantityMaintenance = Column(Integer, nullable=False, default=0)
    QuantityDamaged = Column(Integer, nullable=False, default=0)

    DailyRate = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    WeeklyRate = Column(Numeric(12, 2, asdecimal=False))
    BiweeklyRate = Column(Numeric(12, 2, asdecimal=False))
    MonthlyRate = Column(Numeric(12, 2, asdecimal=False))
    DepositAmount = Column(Numeric(12, 2, asdecimal=False))

    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())
    Version = Column(Integer, nullable=False)

    Units = relationship(
        "ItemUnit",
        back_populates="Item",
        cascade="all, delete-orphan",
        order_by="ItemUnit.UnitID",
    )
    Movements = relationship("ItemMovement", back_populates="Item")

    __table_args__ = (UniqueConstraint("CompanyID", "Sku", name="uq_items_company_sku"),)
    __mapper_args__ = {"version_id_col": Version}


class ItemUnit(Base):
    __tablename__ = "ItemUnits"

    ItemUnitID = Column(Integer, primary_key=True)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    UnitID = Column(String(100), nullable=False)
    Status = Column(String(20), nullable=False, default="available")
    CurrentRentalID = Column(Integer)
    CurrentCustomerID = Column(Integer)
    Location = Column(String(100))
    Notes = Column(String(500))
    UpdatedDate = Column(DateTime, server_default=func.now())

    Item = relationship("Item", back_populates="Units")

    __table_args__ = (UniqueConstraint("ItemID", "UnitID", name="uq_item_units_item_unit"),)


class ItemMovement(Base):
    __tablename__ = "ItemMovements"

    MovementID = Column(Integer, primary_key=True)
    CompanyID = Column(Integer, nullable=False, index=True)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False, index=True)
    UnitID = Column(String(100))
    MovementType = Column(String(30), nullable=False)
    Quantity = Column(Integer, nullable=False)
    PreviousQuantity = Column(Text, nullable=False)
    NewQuantity = Column(Text, nullable=False)
    RentalID = Column(Integer)
    Notes = Column(String(500))
    CreatedBy = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())

    Item = relationship("Item", back_populates="Movements")


@event.listens_for(ItemMovement, "before_update")
def _refuse_movement_update(mapper, connection, target):
    raise RuntimeError(f"ItemMovement {target.MovementID} is append-only.")
