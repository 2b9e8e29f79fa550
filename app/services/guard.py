from decimal import Decimal

from app.core.errors import AmountOutOfRange, FuelTypeUnsupported, StationInactive
from app.models.station import Station
from app.models.vehicle import Vehicle

MIN_DISPENSE = Decimal("0.1")
# Anti-fraud ceiling per single scan, independent of remaining quota.
MAX_DISPENSE = Decimal("100")


class StationCompatibilityGuard:
    """Stateless checks run before any ledger mutation; first failing rule wins."""

    def check(self, station: Station, vehicle: Vehicle, amount: Decimal) -> None:
        if not station.active:
            raise StationInactive(station_id=station.id)
        if not station.supports(vehicle.fuel_type):
            raise FuelTypeUnsupported(station_id=station.id, fuel_type=str(vehicle.fuel_type))
        if not MIN_DISPENSE <= amount <= MAX_DISPENSE:
            raise AmountOutOfRange(amount=amount, minimum=MIN_DISPENSE, maximum=MAX_DISPENSE)
