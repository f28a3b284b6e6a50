from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from equipment_rental.schemas.approvals import RentalTypeLiteral


class CreateRentalItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemID: int
    unitID: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    rentalType: RentalTypeLiteral = "daily"


class RentalServiceDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: str = Field(min_length=1)
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: int
    pickupScheduled: datetime
    returnScheduled: datetime
    billingCycle: Optional[str] = None
    notes: Optional[str] = None
    items: List[CreateRentalItemDto] = Field(min_length=1)
    services: List[RentalServiceDto] = []
    discount: float = Field(default=0, ge=0)
    discountReason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Literal["reserved", "active", "completed", "cancelled", "overdue"]


class ExtensionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    newReturnDate: datetime


class DiscountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount: float = Field(ge=0)
    reason: Optional[str] = None


class RentalTypeChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemIndex: int = Field(ge=0)
    newRentalType: RentalTypeLiteral


class ChecklistDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    photos: List[str] = []
    conditions: Dict[str, Any] = {}
    notes: Optional[str] = None
