from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


RentalTypeLiteral = Literal["daily", "weekly", "biweekly", "monthly"]


class StatusChangeDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requestType: Literal["status_change"] = "status_change"
    newStatus: str
    currentStatus: Optional[str] = None


class DiscountDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requestType: Literal["discount"] = "discount"
    amount: float = Field(ge=0)
    reason: Optional[str] = None


class RentalTypeChangeDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requestType: Literal["rental_type_change"] = "rental_type_change"
    itemIndex: int = Field(ge=0)
    newRentalType: RentalTypeLiteral
    currentRentalType: Optional[str] = None


class ExtensionDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requestType: Literal["extension"] = "extension"
    newReturnDate: datetime
    currentReturnDate: Optional[datetime] = None


class ServiceAdditionDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requestType: Literal["service_addition"] = "service_addition"
    description: str = Field(min_length=1)
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)


ApprovalDetails = Annotated[
    Union[
        StatusChangeDetails,
        DiscountDetails,
        RentalTypeChangeDetails,
        ExtensionDetails,
        ServiceAdditionDetails,
    ],
    Field(discriminator="requestType"),
]

APPROVAL_DETAILS = TypeAdapter(ApprovalDetails)


def load_details(raw: str):
    return APPROVAL_DETAILS.validate_json(raw)


def dump_details(details) -> str:
    return details.model_dump_json()


class ApprovalRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    details: ApprovalDetails
    notes: Optional[str] = None


class ApprovalResolutionDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes: Optional[str] = None
