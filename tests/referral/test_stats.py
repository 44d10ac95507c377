"""Tests for referrer stats: lifetime totals, current month, code details."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.models.redemption import Redemption
from app.referral.errors import ReferrerNotFound
from app.referral.redemption import RedemptionEngine
from app.referral.stats import StatsService
from app.models.code import ReferralCode


def _code(db, referrer) -> ReferralCode:
    return db.query(ReferralCode).filter(ReferralCode.id == referrer.code_id).one()


def test_overview_sums_history(db, make_user, make_referrer):
    referrer = make_referrer(discount_rate=Decimal("0.2"), commission_rate=Decimal("0.3"))
    code = _code(db, referrer).code
    engine = RedemptionEngine(db)
    engine.redeem(code, make_user().id, 100)
    engine.redeem(code, make_user().id, 50)

    stats = StatsService(db).overview(referrer.id)

    assert stats["total_revenue"] == Decimal("120")
    assert stats["referrer_revenue"] == Decimal("36")
    assert stats["platform_revenue"] == Decimal("84")
    assert stats["total_discount_given"] == Decimal("30")
    assert stats["total_members"] == 2
    assert stats["redemptions"] == 2
    assert stats["available_balance"] == Decimal("36")
    assert stats["commission_rate"] == Decimal("0.3")
    assert stats["code"]["code"] == code
    assert stats["code"]["times_used"] == 2
    assert stats["code"]["left_uses"] == 98
    assert stats["code"]["is_active"] is True
    assert stats["code"]["days_remaining"] in (99, 100)


def test_overview_without_redemptions(db, make_referrer):
    referrer = make_referrer(approve=False)

    stats = StatsService(db).overview(referrer.id)

    assert stats["total_revenue"] == Decimal("0")
    assert stats["total_members"] == 0
    assert stats["code"]["status"] == "pending"
    assert stats["code"]["days_remaining"] is None
    assert stats["code"]["is_active"] is False


def test_monthly_only_counts_current_month(db, make_user, make_referrer):
    referrer = make_referrer(commission_rate=Decimal("0.5"))
    code = _code(db, referrer).code
    RedemptionEngine(db).redeem(code, make_user().id, 10)
    old = db.query(Redemption).one()
    old.redeemed_at = datetime(2025, 8, 31, 23, 59, tzinfo=timezone.utc)
    db.commit()
    RedemptionEngine(db).redeem(code, make_user().id, 20)
    current = db.query(Redemption).filter(Redemption.id != old.id).one()
    current.redeemed_at = datetime(2025, 9, 1, 0, 0, tzinfo=timezone.utc)
    db.commit()

    stats = StatsService(db).monthly(referrer.id, now=datetime(2025, 9, 15, tzinfo=timezone.utc))

    assert stats["month"] == "September 2025"
    assert stats["total_revenue"] == Decimal("20")
    assert stats["referrer_revenue"] == Decimal("10")
    assert stats["new_members"] == 1
    assert stats["redemptions"] == 1
    assert stats["total_codes"] == 1
    assert stats["left_uses"] == 98


def test_monthly_december_rollover(db, make_referrer):
    referrer = make_referrer()

    stats = StatsService(db).monthly(referrer.id, now=datetime(2025, 12, 31, 12, tzinfo=timezone.utc))

    assert stats["month"] == "December 2025"
    assert stats["redemptions"] == 0


def test_unknown_referrer(db):
    with pytest.raises(ReferrerNotFound):
        StatsService(db).overview("missing")
    with pytest.raises(ReferrerNotFound):
        StatsService(db).monthly("missing", now=datetime.now(timezone.utc) - timedelta(days=1))
