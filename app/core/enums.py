from enum import Enum


class FuelType(str, Enum):
    PETROL = "Petrol"
    DIESEL = "Diesel"

    def __str__(self):
        return self.value


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"

    def __str__(self):
        return self.value


class QuotaAlert(str, Enum):
    LOW = "low"
    CRITICAL = "critical"

    def __str__(self):
        return self.value


class TrendBucket(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    def __str__(self):
        return self.value


class OperatorRole(str, Enum):
    ADMIN = "admin"
    STATION_OPERATOR = "station_operator"
    VEHICLE_OWNER = "vehicle_owner"

    def __str__(self):
        return self.value


class Capability(str, Enum):
    VIEW_QUOTA = "view_quota"
    DISPENSE = "dispense"
    ACKNOWLEDGE_DELIVERY = "acknowledge_delivery"
    VIEW_REPORTS = "view_reports"
    MANAGE_QUOTAS = "manage_quotas"
    MANAGE_REGISTRY = "manage_registry"

    def __str__(self):
        return self.value


ROLE_CAPABILITIES = {
    OperatorRole.ADMIN: frozenset(Capability),
    OperatorRole.STATION_OPERATOR: frozenset({
        Capability.VIEW_QUOTA,
        Capability.DISPENSE,
        Capability.VIEW_REPORTS,
    }),
    OperatorRole.VEHICLE_OWNER: frozenset({Capability.VIEW_QUOTA}),
}


def capabilities_for(role: OperatorRole) -> frozenset:
    return ROLE_CAPABILITIES.get(role, frozenset())
