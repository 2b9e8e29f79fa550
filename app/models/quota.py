from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric
from sqlalchemy.orm import relationship
from app.models.base import BaseModel

AMOUNT = Numeric(12, 3, asdecimal=True)


class QuotaAllocation(BaseModel):
    __tablename__ = "quota_allocations"
    __table_args__ = (
        CheckConstraint("used_amount >= 0", name="ck_quota_used_non_negative"),
        CheckConstraint("used_amount <= allocated_amount", name="ck_quota_used_within_allocation"),
        Index("ix_quota_vehicle_active", "vehicle_id", "is_active"),
    )

    vehicle_id = Column(ForeignKey("vehicles.id"), nullable=False)
    vehicle = relationship("Vehicle", backref="allocations")

    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    allocated_amount = Column(AMOUNT, nullable=False)
    used_amount = Column(AMOUNT, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)

    @property
    def remaining(self):
        return self.allocated_amount - self.used_amount
