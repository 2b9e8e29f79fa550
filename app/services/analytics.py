"""Consumption analytics over the fuel transaction log.

Aggregates are indexed by local calendar day and folded in one transaction
at a time. ``rebuild`` recomputes them from the full log; because every
aggregate is an exact sum or count the two paths always agree.
"""
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.enums import FuelType, TrendBucket
from app.core.errors import storage_errors
from app.core.metrics import analytics_transactions
from app.models.transaction import FuelTransaction
from app.schemas.reports import (
    DailyTotal,
    FuelConsumptionReport,
    PeakDay,
    PeakHour,
    QuotaUtilizationReport,
    StationPerformanceReport,
    StationReport,
    TopConsumer,
    UsageTrendPoint,
    UsageTrends,
)
from app.utils.dates import as_utc, bucket_start, iter_buckets, iter_days, report_zone, to_local

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


@dataclass(frozen=True)
class TransactionFact:
    """The parts of a committed transaction the aggregates need."""
    id: int
    vehicle_id: int
    registration_number: str
    station_id: int
    station_name: str
    fuel_type: FuelType
    amount: Decimal
    timestamp: datetime

    @classmethod
    def from_transaction(cls, txn: FuelTransaction, vehicle=None, station=None) -> "TransactionFact":
        vehicle = vehicle or txn.vehicle
        station = station or txn.station
        return cls(
            id=txn.id,
            vehicle_id=txn.vehicle_id,
            registration_number=vehicle.registration_number,
            station_id=txn.station_id,
            station_name=station.name,
            fuel_type=FuelType(txn.fuel_type),
            amount=Decimal(txn.amount),
            timestamp=as_utc(txn.timestamp),
        )


class _Day:
    __slots__ = ("total", "count", "station_fuel", "station_hours", "vehicles")

    def __init__(self):
        self.total = ZERO
        self.count = 0
        # (station_id, fuel_type) -> [amount, count]
        self.station_fuel: Dict[Tuple[int, FuelType], list] = defaultdict(lambda: [ZERO, 0])
        # (station_id, hour) -> count
        self.station_hours: Dict[Tuple[int, int], int] = defaultdict(int)
        # vehicle_id -> [amount, count]
        self.vehicles: Dict[int, list] = defaultdict(lambda: [ZERO, 0])

    def add(self, fact: TransactionFact, hour: int) -> None:
        self.total += fact.amount
        self.count += 1
        sf = self.station_fuel[(fact.station_id, fact.fuel_type)]
        sf[0] += fact.amount
        sf[1] += 1
        self.station_hours[(fact.station_id, hour)] += 1
        v = self.vehicles[fact.vehicle_id]
        v[0] += fact.amount
        v[1] += 1

    def stations(self) -> Set[int]:
        return {station_id for station_id, _ in self.station_fuel}

    def freeze(self):
        return (
            self.total,
            self.count,
            tuple(sorted((k, tuple(v)) for k, v in self.station_fuel.items())),
            tuple(sorted(self.station_hours.items())),
            tuple(sorted((k, tuple(v)) for k, v in self.vehicles.items())),
        )


def _f(value: Decimal) -> float:
    return float(value)


def _avg(total: Decimal, count: int) -> float:
    return float(total / count) if count else 0.0


class AnalyticsEngine:

    def __init__(self, tz: Optional[tzinfo] = None, catch_up_window: Optional[int] = None):
        self.tz = tz or report_zone()
        self.catch_up_window = settings.ANALYTICS_CATCH_UP_WINDOW if catch_up_window is None else catch_up_window
        self._lock = threading.Lock()
        self._reset()

    def _reset(self) -> None:
        self._days: Dict[date, _Day] = {}
        self._seen: Set[int] = set()
        self._high_water = 0
        self._registrations: Dict[int, str] = {}
        self._station_names: Dict[int, str] = {}

    def __len__(self):
        return len(self._seen)

    def _fold(self, fact: TransactionFact) -> bool:
        if fact.id in self._seen:
            return False
        local = to_local(fact.timestamp, self.tz)
        day = self._days.get(local.date())
        if day is None:
            day = self._days[local.date()] = _Day()
        day.add(fact, local.hour)
        self._seen.add(fact.id)
        self._high_water = max(self._high_water, fact.id)
        self._registrations[fact.vehicle_id] = fact.registration_number
        self._station_names[fact.station_id] = fact.station_name
        return True

    def apply(self, fact: TransactionFact) -> bool:
        """Fold one committed transaction in; returns False if it was already counted."""
        with self._lock:
            applied = self._fold(fact)
            analytics_transactions.set(len(self._seen))
        return applied

    def rebuild(self, facts: Iterable[TransactionFact]) -> bool:
        """Recompute everything from the full log; True if the incremental state already matched."""
        fresh = AnalyticsEngine(tz=self.tz, catch_up_window=self.catch_up_window)
        for fact in facts:
            fresh._fold(fact)
        with self._lock:
            consistent = self._snapshot() == fresh._snapshot()
            if not consistent:
                logger.warning("Incremental analytics drifted from the transaction log; replaced by rebuild")
            self._days = fresh._days
            self._seen = fresh._seen
            self._high_water = fresh._high_water
            self._registrations = fresh._registrations
            self._station_names = fresh._station_names
            analytics_transactions.set(len(self._seen))
        return consistent

    def _snapshot(self):
        return (
            frozenset(self._seen),
            tuple(sorted((d, agg.freeze()) for d, agg in self._days.items())),
        )

    def snapshot(self):
        with self._lock:
            return self._snapshot()

    async def catch_up(self, db: AsyncSession) -> int:
        """Fold in transactions committed elsewhere (other workers, cold start)."""
        floor = max(0, self._high_water - self.catch_up_window)
        stmt = (
            select(FuelTransaction)
            .options(selectinload(FuelTransaction.vehicle), selectinload(FuelTransaction.station))
            .where(FuelTransaction.id > floor)
            .order_by(FuelTransaction.id)
        )
        with storage_errors():
            res = await db.execute(stmt)
        applied = 0
        with self._lock:
            for txn in res.scalars().all():
                if txn.id not in self._seen and self._fold(TransactionFact.from_transaction(txn)):
                    applied += 1
            analytics_transactions.set(len(self._seen))
        if applied:
            logger.debug(f"Analytics caught up {applied} transaction(s)")
        return applied

    async def load_all(self, db: AsyncSession) -> bool:
        stmt = (
            select(FuelTransaction)
            .options(selectinload(FuelTransaction.vehicle), selectinload(FuelTransaction.station))
            .order_by(FuelTransaction.id)
        )
        with storage_errors():
            res = await db.execute(stmt)
        return self.rebuild(TransactionFact.from_transaction(t) for t in res.scalars().all())

    def _range(self, start: date, end: date):
        for d in iter_days(start, end):
            agg = self._days.get(d)
            if agg is not None:
                yield d, agg

    # ------------------------------------------------------------------ reports

    def station_report(self, station_id: int, start: date, end: date) -> StationReport:
        with self._lock:
            by_fuel: Dict[str, Decimal] = {str(f): ZERO for f in FuelType}
            hours = [0] * 24
            daily: List[DailyTotal] = []
            peak: Optional[Tuple[date, Decimal]] = None
            total, count = ZERO, 0
            for d in iter_days(start, end):
                agg = self._days.get(d)
                day_total = ZERO
                if agg is not None:
                    for (sid, fuel), (amount, n) in agg.station_fuel.items():
                        if sid == station_id:
                            by_fuel[str(fuel)] += amount
                            day_total += amount
                            count += n
                    for (sid, hour), n in agg.station_hours.items():
                        if sid == station_id:
                            hours[hour] += n
                total += day_total
                daily.append(DailyTotal(day=d, amount=_f(day_total)))
                # strictly greater keeps the earliest date on ties
                if day_total > 0 and (peak is None or day_total > peak[1]):
                    peak = (d, day_total)

            peak_hour = None
            for hour, n in enumerate(hours):
                if n and (peak_hour is None or n > peak_hour.count):
                    peak_hour = PeakHour(hour=hour, count=n)

            return StationReport(
                station_id=station_id,
                station_name=self._station_names.get(station_id),
                period_start_date=start,
                period_end_date=end,
                total_transactions=count,
                total_fuel_dispensed=_f(total),
                by_fuel_type={k: _f(v) for k, v in by_fuel.items()},
                daily_totals=daily,
                average_per_transaction=_avg(total, count),
                peak_day=PeakDay(day=peak[0], amount=_f(peak[1])) if peak else None,
                peak_hour=peak_hour,
            )

    def top_consumers(self, limit: int, start: date, end: date) -> List[TopConsumer]:
        with self._lock:
            totals: Dict[int, list] = defaultdict(lambda: [ZERO, 0, None])
            for d, agg in self._range(start, end):
                for vehicle_id, (amount, n) in agg.vehicles.items():
                    t = totals[vehicle_id]
                    t[0] += amount
                    t[1] += n
                    t[2] = d
            ranked = sorted(
                totals.items(),
                key=lambda item: (-item[1][0], -item[1][1], self._registrations.get(item[0], "")),
            )
            return [
                TopConsumer(
                    vehicle_id=vehicle_id,
                    registration_number=self._registrations.get(vehicle_id, ""),
                    total_fuel_consumed=_f(amount),
                    transaction_count=n,
                    average_per_transaction=_avg(amount, n),
                    last_transaction_date=last,
                )
                for vehicle_id, (amount, n, last) in ranked[:max(limit, 0)]
            ]

    def fuel_consumption(self, start: date, end: date, fuel_type: Optional[FuelType] = None) -> FuelConsumptionReport:
        with self._lock:
            fuel_totals = {f: ZERO for f in FuelType}
            station_counts: Dict[int, int] = defaultdict(int)
            count = 0
            peak: Optional[Tuple[date, Decimal]] = None
            for d, agg in self._range(start, end):
                day_total = ZERO
                for (sid, fuel), (amount, n) in agg.station_fuel.items():
                    if fuel_type is not None and fuel != fuel_type:
                        continue
                    fuel_totals[fuel] += amount
                    station_counts[sid] += n
                    day_total += amount
                    count += n
                if day_total > 0 and (peak is None or day_total > peak[1]):
                    peak = (d, day_total)

            total = sum(fuel_totals.values(), ZERO)
            return FuelConsumptionReport(
                period_start_date=start,
                period_end_date=end,
                total_petrol_consumed=_f(fuel_totals[FuelType.PETROL]),
                total_diesel_consumed=_f(fuel_totals[FuelType.DIESEL]),
                total_fuel_consumed=_f(total),
                total_transactions=count,
                average_fuel_per_transaction=_avg(total, count),
                most_active_station=self._most(station_counts, busiest=True),
                peak_consumption_day=PeakDay(day=peak[0], amount=_f(peak[1])) if peak else None,
            )

    def station_performance(self, start: date, end: date, active_stations: int) -> StationPerformanceReport:
        with self._lock:
            station_counts: Dict[int, int] = defaultdict(int)
            total, count = ZERO, 0
            for _, agg in self._range(start, end):
                for (sid, _fuel), (amount, n) in agg.station_fuel.items():
                    station_counts[sid] += n
                    total += amount
                    count += n
            return StationPerformanceReport(
                period_start_date=start,
                period_end_date=end,
                total_active_stations=active_stations,
                total_transactions=count,
                total_fuel_dispensed=_f(total),
                top_performing_station=self._most(station_counts, busiest=True),
                least_active_station=self._most(station_counts, busiest=False),
                average_transactions_per_station=count / active_stations if active_stations else 0.0,
                average_fuel_per_station=_f(total / active_stations) if active_stations else 0.0,
            )

    def _most(self, counts: Dict[int, int], busiest: bool) -> Optional[str]:
        if not counts:
            return None
        sign = -1 if busiest else 1
        station_id = min(counts, key=lambda sid: (sign * counts[sid], self._station_names.get(sid, ""), sid))
        return self._station_names.get(station_id)

    def usage_trends(self, start: date, end: date, bucket: TrendBucket = TrendBucket.DAY) -> UsageTrends:
        with self._lock:
            points = {b: [ZERO, 0, set(), set()] for b in iter_buckets(start, end, bucket)}
            for d, agg in self._range(start, end):
                p = points[bucket_start(d, bucket)]
                p[0] += agg.total
                p[1] += agg.count
                p[2].update(agg.vehicles)
                p[3].update(agg.stations())
            return UsageTrends(
                period_start_date=start,
                period_end_date=end,
                bucket=bucket,
                points=[
                    UsageTrendPoint(
                        bucket=b,
                        total_amount=_f(total),
                        transaction_count=n,
                        unique_vehicles=len(vehicles),
                        active_stations=len(stations),
                    )
                    for b, (total, n, vehicles, stations) in points.items()
                ],
            )

    @staticmethod
    def quota_utilization(allocations: Iterable[Tuple[Decimal, Decimal]], period: str) -> QuotaUtilizationReport:
        """Utilization over (allocated, used) pairs, one per vehicle allocation."""
        allocated_total = used_total = ZERO
        vehicles = fully_used = never_used = 0
        for allocated, used in allocations:
            allocated, used = Decimal(allocated), Decimal(used)
            vehicles += 1
            allocated_total += allocated
            used_total += used
            if allocated - used == 0:
                fully_used += 1
            if used == 0:
                never_used += 1
        percentage = used_total / allocated_total * 100 if allocated_total > 0 else ZERO
        return QuotaUtilizationReport(
            period=period,
            total_vehicles=vehicles,
            total_quota_allocated=_f(allocated_total),
            total_quota_used=_f(used_total),
            total_quota_remaining=_f(allocated_total - used_total),
            utilization_percentage=_f(percentage),
            vehicles_fully_utilized=fully_used,
            vehicles_not_used=never_used,
            average_utilization_per_vehicle=_avg(used_total, vehicles),
        )
