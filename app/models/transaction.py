from sqlalchemy import Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship
from app.models.base import BaseModel, utcnow
from app.models.quota import AMOUNT
from app.core.enums import FuelType, TransactionStatus


class FuelTransaction(BaseModel):
    __tablename__ = "fuel_transactions"

    vehicle_id = Column(ForeignKey("vehicles.id"), nullable=False, index=True)
    station_id = Column(ForeignKey("stations.id"), nullable=False, index=True)

    vehicle = relationship("Vehicle", backref="transactions")
    station = relationship("Station", backref="transactions")

    fuel_type = Column(Enum(FuelType), nullable=False)
    amount = Column(AMOUNT, nullable=False)
    quota_before = Column(AMOUNT, nullable=False)
    quota_after = Column(AMOUNT, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    idempotency_key = Column(String(128), unique=True, nullable=False)
    request_fingerprint = Column(String(64), nullable=False)

    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    notified_at = Column(DateTime(timezone=True), nullable=True)
