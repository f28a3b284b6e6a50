from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateBillingDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalID: int
    returnDate: datetime
    discount: float = Field(default=0, ge=0)
    discountReason: Optional[str] = None


class BillingRejectionDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes: str = Field(min_length=1)
