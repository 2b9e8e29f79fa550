# Import every model so Base.metadata knows all tables before create_all.
from app.models.base import Base  # noqa: F401
from app.models.vehicle import Vehicle  # noqa: F401
from app.models.station import Station  # noqa: F401
from app.models.quota import QuotaAllocation  # noqa: F401
from app.models.transaction import FuelTransaction  # noqa: F401
