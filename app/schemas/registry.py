from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.core.enums import FuelType


class VehicleCreate(BaseModel):
    registration_number: str = Field(min_length=2, max_length=32)
    chassis_number: str = Field(min_length=1, max_length=64)
    vehicle_type: str = Field(min_length=1, max_length=40)
    fuel_type: FuelType
    engine_capacity: Optional[float] = Field(None, gt=0)
    owner_ref: Optional[str] = None


class VehicleOut(BaseModel):
    id: int
    registration_number: str
    chassis_number: str
    vehicle_type: str
    fuel_type: FuelType
    engine_capacity: Optional[float] = None
    owner_ref: Optional[str] = None
    created_at: datetime


class StationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    registration_number: str = Field(min_length=1, max_length=32)
    city: Optional[str] = None
    has_petrol: bool = False
    has_diesel: bool = False
    active: bool = True

    @model_validator(mode="after")
    def at_least_one_fuel(self):
        if not (self.has_petrol or self.has_diesel):
            raise ValueError("Station must offer at least one fuel type")
        return self


class StationStatusUpdate(BaseModel):
    active: bool


class StationOut(BaseModel):
    id: int
    name: str
    registration_number: str
    city: Optional[str] = None
    has_petrol: bool
    has_diesel: bool
    active: bool
