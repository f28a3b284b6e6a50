from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CreateItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    sku: str = Field(min_length=1)
    description: Optional[str] = None
    trackingType: Literal["unit", "quantity"] = "quantity"
    quantityTotal: int = Field(default=0, ge=0)
    quantityMaintenance: int = Field(default=0, ge=0)
    quantityDamaged: int = Field(default=0, ge=0)
    units: List[str] = []
    dailyRate: float = Field(gt=0)
    weeklyRate: Optional[float] = Field(default=None, gt=0)
    biweeklyRate: Optional[float] = Field(default=None, gt=0)
    monthlyRate: Optional[float] = Field(default=None, gt=0)
    depositAmount: float = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_tracking(self):
        if self.trackingType == "quantity" and self.units:
            raise ValueError("units are only accepted for unit-tracked items")
        return self


class AddUnitDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    unitID: str = Field(min_length=1)
    location: Optional[str] = None


class AdjustQuantityDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["in", "out", "damage", "repair", "maintenance_start", "maintenance_end"]
    quantity: int = Field(default=1, ge=1)
    unitID: Optional[str] = None
    notes: Optional[str] = None
