import pytest
from decimal import Decimal

from app.core.enums import FuelType
from app.core.errors import AmountOutOfRange, FuelTypeUnsupported, StationInactive, ValidationError
from app.models.station import Station
from app.models.vehicle import Vehicle
from app.services.guard import StationCompatibilityGuard


def make_station(active=True, has_petrol=True, has_diesel=True):
    return Station(id=1, name="Test", registration_number="ST-1",
                   active=active, has_petrol=has_petrol, has_diesel=has_diesel)


def make_vehicle(fuel_type=FuelType.PETROL):
    return Vehicle(id=1, registration_number="ABC-1", chassis_number="C1",
                   vehicle_type="car", fuel_type=fuel_type)


guard = StationCompatibilityGuard()


@pytest.mark.unit
@pytest.mark.parametrize("amount", ["0.1", "1", "55.5", "100"])
def test_amount_within_range_passes(amount):
    guard.check(make_station(), make_vehicle(), Decimal(amount))


@pytest.mark.unit
@pytest.mark.parametrize("amount", ["0.05", "0", "-1", "100.001", "150"])
def test_amount_out_of_range_rejected(amount):
    with pytest.raises(AmountOutOfRange) as exc:
        guard.check(make_station(), make_vehicle(), Decimal(amount))
    assert isinstance(exc.value, ValidationError)
    assert exc.value.status_code == 422


@pytest.mark.unit
def test_station_without_petrol_rejects_petrol_vehicle():
    with pytest.raises(FuelTypeUnsupported):
        guard.check(make_station(has_petrol=False), make_vehicle(FuelType.PETROL), Decimal("10"))


@pytest.mark.unit
def test_station_without_petrol_accepts_diesel_vehicle():
    guard.check(make_station(has_petrol=False), make_vehicle(FuelType.DIESEL), Decimal("10"))


@pytest.mark.unit
def test_inactive_station_checked_first():
    # Inactive and unsupported and out of range: the station state wins
    station = make_station(active=False, has_petrol=False)
    with pytest.raises(StationInactive):
        guard.check(station, make_vehicle(FuelType.PETROL), Decimal("500"))


@pytest.mark.unit
def test_fuel_support_checked_before_amount():
    with pytest.raises(FuelTypeUnsupported):
        guard.check(make_station(has_diesel=False), make_vehicle(FuelType.DIESEL), Decimal("500"))
