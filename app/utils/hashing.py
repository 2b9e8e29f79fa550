import hashlib, json


def payload_hash(payload: dict) -> str:
    s = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(s.encode()).hexdigest()


def dispense_fingerprint(vehicle_id: int, station_id: int, fuel_type, amount) -> str:
    """Stable hash of what a dispense asks for, so a reused idempotency key can be checked."""
    return payload_hash({
        "vehicle_id": int(vehicle_id),
        "station_id": int(station_id),
        "fuel_type": str(fuel_type),
        "amount": format(amount.normalize(), "f"),
    })
