from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from equipment_rental.db.base import Base
from equipment_rental.models.rental_models import Rental


BILLING_STATUSES = ("pending_approval", "approved", "cancelled")


def _money():
    return Numeric(12, 2, asdecimal=False)


class Billing(Base):
    __tablename__ = "Billings"

    BillingID = Column(Integer, primary_key=True)
    CompanyID = Column(Integer, nullable=False, index=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False, index=True)
    CustomerID = Column(Integer, nullable=False, index=True)
    BillingDate = Column(DateTime, nullable=False)
    PeriodStart = Column(DateTime, nullable=False)
    PeriodEnd = Column(DateTime, nullable=False)
    RentalType = Column(String(20), nullable=False)

    BaseRate = Column(_money(), nullable=False, default=0)
    PeriodsCompleted = Column(Integer, nullable=False, default=0)
    ExtraDays = Column(Integer, nullable=False, default=0)
    TotalPeriods = Column(Integer, nullable=False, default=0)
    ChargeExtraPeriod = Column(Boolean, nullable=False, default=False)
    BaseAmount = Column(_money(), nullable=False, default=0)
    ServicesAmount = Column(_money(), nullable=False, default=0)
    Subtotal = Column(_money(), nullable=False, default=0)
    Discount = Column(_money(), nullable=False, default=0)
    DiscountReason = Column(String(500))
    LateFee = Column(_money(), nullable=False, default=0)
    Total = Column(_money(), nullable=False, default=0)

    IsEarlyReturn = Column(Boolean, nullable=False, default=False)
    DaysSaved = Column(Integer, nullable=False, default=0)
    EarlyReturnDiscount = Column(_money(), nullable=False, default=0)

    Status = Column(String(20), nullable=False, default="pending_approval", index=True)
    ApprovalRequired = Column(Boolean, nullable=False, default=False)
    RequestedBy = Column(Integer, nullable=False)
    ApprovedBy = Column(Integer)
    ApprovalDate = Column(DateTime)
    ApprovalNotes = Column(String(1000))
    Notes = Column(String(1000))
    CreatedDate = Column(DateTime, server_default=func.now())

    Rental = relationship(Rental)
    Lines = relationship(
        "BillingLine",
        back_populates="Billing",
        cascade="all, delete-orphan",
        order_by="BillingLine.Position",
    )
    Services = relationship(
        "BillingServiceLine",
        back_populates="Billing",
        cascade="all, delete-orphan",
        order_by="BillingServiceLine.Position",
    )


class BillingLine(Base):
    __tablename__ = "BillingLines"

    BillingLineID = Column(Integer, primary_key=True)
    BillingID = Column(Integer, ForeignKey("Billings.BillingID"), nullable=False)
    Position = Column(Integer, nullable=False)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    UnitID = Column(String(100))
    Quantity = Column(Integer, nullable=False, default=1)
    UnitPrice = Column(_money(), nullable=False)
    RentalType = Column(String(20), nullable=False)
    PeriodsCharged = Column(Integer, nullable=False)
    Subtotal = Column(_money(), nullable=False)

    Billing = relationship("Billing", back_populates="Lines")


class BillingServiceLine(Base):
    __tablename__ = "BillingServices"

    BillingServiceID = Column(Integer, primary_key=True)
    BillingID = Column(Integer, ForeignKey("Billings.BillingID"), nullable=False)
    Position = Column(Integer, nullable=False)
    Description = Column(String(500), nullable=False)
    Price = Column(_money(), nullable=False)
    Quantity = Column(Integer, nullable=False, default=1)
    Subtotal = Column(_money(), nullable=False)

    Billing = relationship("Billing", back_populates="Services")
