"""Error taxonomy for the fuel quota ledger.

Every rejection raised here leaves quota allocations and the transaction log
exactly as they were before the call. Each error kind carries one fixed
message so clients can map it to a single user-visible text.
"""
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import exc as sa_exc


class FuelQuotaError(Exception):
    code: str = "internal_error"
    message: str = "Unexpected ledger error"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


def _jsonable(value):
    if isinstance(value, Decimal):
        return float(value)
    return value


class ValidationError(FuelQuotaError):
    code = "validation_error"
    message = "Dispense request is invalid"
    status_code = 422


class StationInactive(ValidationError):
    code = "station_inactive"
    message = "Fuel station is not active"


class FuelTypeUnsupported(ValidationError):
    code = "fuel_type_unsupported"
    message = "Fuel station does not dispense this vehicle's fuel type"


class AmountOutOfRange(ValidationError):
    code = "amount_out_of_range"
    message = "Amount must be between 0.1 and 100 liters per dispense"


class FuelTypeMismatch(ValidationError):
    code = "fuel_type_mismatch"
    message = "Requested fuel type does not match the vehicle's fuel type"


class InsufficientQuota(FuelQuotaError):
    code = "insufficient_quota"
    message = "Insufficient fuel quota remaining"
    status_code = 409

    def __init__(self, remaining: Decimal, requested: Decimal):
        super().__init__(remaining=remaining, requested=requested)
        self.remaining = remaining


class QuotaExpired(FuelQuotaError):
    code = "quota_expired"
    message = "Quota period has ended, renew the allocation"
    status_code = 409


class NotFound(FuelQuotaError):
    code = "not_found"
    message = "Resource not found"
    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} {identifier} not found", resource=resource, id=identifier)


class ConcurrencyConflict(FuelQuotaError):
    code = "concurrency_conflict"
    message = "Vehicle quota is busy, retry with the same idempotency key"
    status_code = 409
    retryable = True


class IdempotencyConflict(FuelQuotaError):
    code = "idempotency_conflict"
    message = "Idempotency key was already used for a different dispense"
    status_code = 409


class StorageUnavailable(FuelQuotaError):
    code = "storage_unavailable"
    message = "Ledger storage is unavailable, retry with the same idempotency key"
    status_code = 503
    retryable = True


class AlreadyRegistered(FuelQuotaError):
    code = "already_registered"
    message = "Registration number is already in use"
    status_code = 409


class SessionExpired(FuelQuotaError):
    code = "session_expired"
    message = "Session has expired, sign in again"
    status_code = 401


@contextmanager
def storage_errors():
    """Translate infrastructure failures from SQLAlchemy into StorageUnavailable."""
    try:
        yield
    except (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError) as e:
        raise StorageUnavailable(reason=type(e).__name__) from e
    except (ConnectionError, TimeoutError) as e:
        raise StorageUnavailable(reason=type(e).__name__) from e
