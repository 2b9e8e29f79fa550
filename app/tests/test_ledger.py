import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.enums import QuotaAlert
from app.core.errors import InsufficientQuota, NotFound, QuotaExpired
from app.models.quota import QuotaAllocation
from app.services.ledger import QuotaLedger, quota_alert
from app.utils.dates import utcnow

pytestmark = [pytest.mark.integration, pytest.mark.ledger]


async def test_get_quota_reports_derived_remaining(db, ledger, seed):
    quota = await ledger.get_quota(db, seed.petrol_car)
    assert quota.allocated == Decimal("60")
    assert quota.used == Decimal("0")
    assert quota.remaining == Decimal("60")
    assert quota.usage_percentage == Decimal("0")
    assert quota.expiring_soon is False


async def test_get_quota_unknown_vehicle(db, ledger, seed):
    with pytest.raises(NotFound):
        await ledger.get_quota(db, 9999)


async def test_expiring_soon_within_warning_window(db, ledger, seed):
    now = utcnow()
    snapshot = await ledger.rollover(db, seed.petrol_car, Decimal("60"), now - timedelta(days=27), now + timedelta(days=2))
    assert snapshot.expiring_soon is True


async def test_debit_updates_used_and_remaining(db, ledger, seed):
    result = await ledger.debit(db, seed.petrol_car, Decimal("55"))
    assert result.before == Decimal("60")
    assert result.remaining == Decimal("5")

    quota = await ledger.get_quota(db, seed.petrol_car)
    assert quota.used == Decimal("55")
    assert quota.remaining == Decimal("5")


async def test_exact_remaining_then_smallest_amount_fails(db, ledger, seed):
    await ledger.debit(db, seed.petrol_car, Decimal("55"))
    result = await ledger.debit(db, seed.petrol_car, Decimal("5"))
    assert result.remaining == Decimal("0")

    with pytest.raises(InsufficientQuota) as exc:
        await ledger.debit(db, seed.petrol_car, Decimal("0.1"))
    assert exc.value.remaining == Decimal("0")

    quota = await ledger.get_quota(db, seed.petrol_car)
    assert quota.used == quota.allocated == Decimal("60")


async def test_expired_period_rejects_debit(db, ledger, seed):
    now = utcnow()
    await ledger.rollover(db, seed.petrol_car, Decimal("60"), now - timedelta(days=31), now - timedelta(seconds=1))

    with pytest.raises(QuotaExpired):
        await ledger.debit(db, seed.petrol_car, Decimal("1"))
    quota = await ledger.get_quota(db, seed.petrol_car)
    assert quota.used == Decimal("0")


async def test_concurrent_debits_never_overdraw(session_factory, ledger, seed):
    now = utcnow()
    async with session_factory() as setup:
        await ledger.rollover(setup, seed.petrol_car, Decimal("5"), now - timedelta(days=1), now + timedelta(days=10))

    async def attempt():
        async with session_factory() as session:
            try:
                return await ledger.debit(session, seed.petrol_car, Decimal("4"))
            except InsufficientQuota as e:
                return e

    outcomes = await asyncio.gather(attempt(), attempt())

    successes = [o for o in outcomes if not isinstance(o, InsufficientQuota)]
    failures = [o for o in outcomes if isinstance(o, InsufficientQuota)]
    assert len(successes) == 1 and len(failures) == 1
    assert successes[0].remaining == Decimal("1")
    assert failures[0].remaining == Decimal("1")

    async with session_factory() as check:
        quota = await ledger.get_quota(check, seed.petrol_car)
    assert quota.remaining == Decimal("1")


async def test_rollover_keeps_history_and_resets_usage(db, ledger, seed):
    await ledger.debit(db, seed.petrol_car, Decimal("30"))
    now = utcnow()
    snapshot = await ledger.rollover(db, seed.petrol_car, Decimal("80"), now, now + timedelta(days=30))

    assert snapshot.allocated == Decimal("80")
    assert snapshot.used == Decimal("0")

    res = await db.execute(
        select(QuotaAllocation).where(QuotaAllocation.vehicle_id == seed.petrol_car).order_by(QuotaAllocation.id)
        .execution_options(populate_existing=True)
    )
    rows = res.scalars().all()
    assert [r.is_active for r in rows] == [False, True]
    assert rows[0].used_amount == Decimal("30")


async def test_replaced_allocations_are_not_counted_in_window(db, ledger, seed, current_period):
    start, end = current_period
    await ledger.debit(db, seed.petrol_car, Decimal("30"))
    await ledger.rollover(db, seed.petrol_car, Decimal("80"), start, end)

    rows = await ledger.allocations_starting_between(db, start - timedelta(hours=1), start + timedelta(hours=1))

    assert [(r.vehicle_id, r.allocated_amount, r.used_amount) for r in rows] == [
        (seed.petrol_car, Decimal("80"), Decimal("0")),
        (seed.diesel_lorry, Decimal("200"), Decimal("0")),
    ]


async def test_rollover_rejects_bad_period(db, ledger, seed):
    now = utcnow()
    with pytest.raises(ValueError):
        await ledger.rollover(db, seed.petrol_car, Decimal("60"), now, now - timedelta(days=1))
    with pytest.raises(ValueError):
        await ledger.rollover(db, seed.petrol_car, Decimal("0"), now, now + timedelta(days=1))


async def test_write_listeners_run_after_commit(db, seed):
    ledger = QuotaLedger()
    written = []

    async def listener(vehicle_id):
        written.append(vehicle_id)

    async def broken(vehicle_id):
        raise RuntimeError("cache down")

    ledger.add_write_listener(broken)
    ledger.add_write_listener(listener)
    await ledger.debit(db, seed.petrol_car, Decimal("1"))
    assert written == [seed.petrol_car]


async def test_rejected_debit_does_not_notify_listeners(db, seed):
    ledger = QuotaLedger()
    written = []

    async def listener(vehicle_id):
        written.append(vehicle_id)

    ledger.add_write_listener(listener)
    with pytest.raises(InsufficientQuota):
        await ledger.debit(db, seed.petrol_car, Decimal("61"))
    assert written == []


@pytest.mark.unit
@pytest.mark.parametrize("before,after,expected", [
    ("60", "50", None),
    ("60", "12", QuotaAlert.LOW),
    ("13", "12", QuotaAlert.LOW),
    ("12", "11", None),
    ("12", "6", QuotaAlert.CRITICAL),
    ("60", "0", QuotaAlert.CRITICAL),
    ("6", "3", None),
])
def test_quota_alert_only_on_crossing(before, after, expected):
    alert = quota_alert(Decimal("60"), Decimal(before), Decimal(after), Decimal("20"), Decimal("10"))
    assert alert == expected
