from app.models.station import Station
from app.models.transaction import FuelTransaction
from app.models.vehicle import Vehicle
from app.schemas.quota import QuotaOut
from app.schemas.dispense import TransactionOut
from app.schemas.registry import StationOut, VehicleOut
from app.services.ledger import QuotaSnapshot


def build_quota_response(snapshot: QuotaSnapshot) -> QuotaOut:
    return QuotaOut(
        vehicle_id=snapshot.vehicle_id,
        allocated_quota=float(snapshot.allocated),
        used_quota=float(snapshot.used),
        remaining_quota=float(snapshot.remaining),
        usage_percentage=round(float(snapshot.usage_percentage), 2),
        expiring_soon=snapshot.expiring_soon,
        quota_start_date=snapshot.period_start,
        quota_end_date=snapshot.period_end,
    )


def build_transaction_response(txn: FuelTransaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        vehicle_id=txn.vehicle_id,
        station_id=txn.station_id,
        fuel_type=txn.fuel_type,
        amount=float(txn.amount),
        quota_before=float(txn.quota_before),
        quota_after=float(txn.quota_after),
        timestamp=txn.timestamp,
        status=txn.status,
        notified_at=txn.notified_at,
    )


def build_vehicle_response(vehicle: Vehicle) -> VehicleOut:
    return VehicleOut(
        id=vehicle.id,
        registration_number=vehicle.registration_number,
        chassis_number=vehicle.chassis_number,
        vehicle_type=vehicle.vehicle_type,
        fuel_type=vehicle.fuel_type,
        engine_capacity=vehicle.engine_capacity,
        owner_ref=vehicle.owner_ref,
        created_at=vehicle.created_at,
    )


def build_station_response(station: Station) -> StationOut:
    return StationOut(
        id=station.id,
        name=station.name,
        registration_number=station.registration_number,
        city=station.city,
        has_petrol=station.has_petrol,
        has_diesel=station.has_diesel,
        active=station.active,
    )
