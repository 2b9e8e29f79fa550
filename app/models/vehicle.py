from sqlalchemy import Column, String, Float, Enum
from app.models.base import BaseModel
from app.core.enums import FuelType


class Vehicle(BaseModel):
    __tablename__ = "vehicles"

    registration_number = Column(String(32), unique=True, nullable=False, index=True)
    chassis_number = Column(String(64), nullable=False)
    vehicle_type = Column(String(40), nullable=False)
    fuel_type = Column(Enum(FuelType), nullable=False)
    engine_capacity = Column(Float, nullable=True)
    owner_ref = Column(String(64), nullable=True)
