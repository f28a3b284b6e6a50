from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from equipment_rental.db.base import Base
from equipment_rental.models.inventory_models import Item


def _money():
    return Numeric(12, 2, asdecimal=False)


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(Integer, primary_key=True)
    CompanyID = Column(Integer, nullable=False, index=True)
    RentalNumber = Column(String(50), nullable=False)
    CustomerID = Column(Integer, nullable=False, index=True)
    Status = Column(String(20), nullable=False, default="reserved", index=True)
    Notes = Column(String(1000))

    ReservedAt = Column(DateTime, nullable=False)
    PickupScheduled = Column(DateTime, nullable=False)
    PickupActual = Column(DateTime)
    ReturnScheduled = Column(DateTime, nullable=False, index=True)
    ReturnActual = Column(DateTime)
    BillingCycle = Column(String(20))

    EquipmentSubtotal = Column(_money(), nullable=False, default=0)
    OriginalEquipmentSubtotal = Column(_money(), nullable=False, default=0)
    ServicesSubtotal = Column(_money(), nullable=False, default=0)
    ContractedDays = Column(Integer, nullable=False, default=0)
    Subtotal = Column(_money(), nullable=False, default=0)
    Deposit = Column(_money(), nullable=False, default=0)
    Discount = Column(_money(), nullable=False, default=0)
    DiscountReason = Column(String(500))
    LateFee = Column(_money(), nullable=False, default=0)
    UsedDays = Column(Integer, nullable=False, default=0)
    Total = Column(_money(), nullable=False, default=0)

    PickupChecklist = Column(Text)
    ReturnChecklist = Column(Text)

    CreatedBy = Column(Integer, nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())
    Version = Column(Integer, nullable=False)

    RentalItems = relationship(
        "RentalItem",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="RentalItem.Position",
    )
    Services = relationship(
        "RentalServiceLine",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="RentalServiceLine.Position",
    )
    PendingApprovals = relationship(
        "PendingApproval",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="PendingApproval.Position",
    )
    ChangeHistory = relationship(
        "RentalChangeHistory",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="RentalChangeHistory.ChangeID",
    )

    __table_args__ = (UniqueConstraint("CompanyID", "RentalNumber", name="uq_rentals_company_number"),)
    __mapper_args__ = {"version_id_col": Version}


class RentalItem(Base):
    __tablename__ = "RentalItems"

    RentalItemID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    Position = Column(Integer, nullable=False)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    UnitID = Column(String(100))
    Quantity = Column(Integer, nullable=False, default=1)
    UnitPrice = Column(_money(), nullable=False)
    RentalType = Column(String(20), nullable=False, default="daily")
    Subtotal = Column(_money(), nullable=False)

    Rental = relationship("Rental", back_populates="RentalItems")
    Item = relationship(Item)


class RentalServiceLine(Base):
    __tablename__ = "RentalServices"

    RentalServiceID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    Position = Column(Integer, nullable=False)
    Description = Column(String(500), nullable=False)
    Price = Column(_money(), nullable=False)
    Quantity = Column(Integer, nullable=False, default=1)
    Subtotal = Column(_money(), nullable=False)

    Rental = relationship("Rental", back_populates="Services")


class PendingApproval(Base):
    __tablename__ = "PendingApprovals"

    ApprovalID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    Position = Column(Integer, nullable=False)
    RequestedBy = Column(Integer, nullable=False)
    RequestType = Column(String(30), nullable=False)
    Details = Column(Text, nullable=False)
    Status = Column(String(20), nullable=False, default="pending")
    Notes = Column(String(1000))
    RequestedAt = Column(DateTime, nullable=False)
    ResolvedBy = Column(Integer)
    ResolvedAt = Column(DateTime)
    ResolutionNotes = Column(String(1000))
    NotificationID = Column(Integer)

    Rental = relationship("Rental", back_populates="PendingApprovals")


class RentalChangeHistory(Base):
    __tablename__ = "RentalChangeHistory"

    ChangeID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    ChangeType = Column(String(30), nullable=False)
    Details = Column(Text)
    RequestedBy = Column(Integer)
    ApprovedBy = Column(Integer)
    ApprovalIndex = Column(Integer)
    ChangedAt = Column(DateTime, nullable=False)

    Rental = relationship("Rental", back_populates="ChangeHistory")


class RentalCounter(Base):
    __tablename__ = "RentalCounters"

    CompanyID = Column(Integer, primary_key=True)
    LastNumber = Column(Integer, nullable=False, default=0)
