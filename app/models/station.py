from sqlalchemy import Boolean, Column, String
from app.models.base import BaseModel
from app.core.enums import FuelType


class Station(BaseModel):
    __tablename__ = "stations"

    name = Column(String(120), nullable=False)
    registration_number = Column(String(32), unique=True, nullable=False, index=True)
    city = Column(String(80), nullable=True)
    has_petrol = Column(Boolean, default=False, nullable=False)
    has_diesel = Column(Boolean, default=False, nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    def supports(self, fuel_type: FuelType) -> bool:
        if fuel_type == FuelType.PETROL:
            return bool(self.has_petrol)
        if fuel_type == FuelType.DIESEL:
            return bool(self.has_diesel)
        return False
