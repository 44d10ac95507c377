"""
Referrer dashboards: lifetime and current-month aggregates over redemption history.
"""
from __future__ import annotations

import math
from datetime import datetime

from sqlalchemy import distinct, func
from sqlalchemy.orm import Session

from app.models.code import ReferralCode
from app.models.redemption import Redemption
from app.models.referrer import Referrer
from app.referral.codes import CodeRegistry
from app.referral.config import resolve_commission_rate
from app.referral.errors import ReferrerNotFound
from app.utils.clock import as_utc, utcnow
from app.utils.currency import to_decimal


class StatsService:
    def __init__(self, db: Session):
        self.db = db

    def overview(self, referrer_id: str, now: datetime | None = None) -> dict:
        now = now or utcnow()
        referrer = self._get_referrer(referrer_id)
        totals = self._totals(referrer.id)
        return {
            "referrer_id": referrer.id,
            "role": referrer.role,
            "total_revenue": totals["final_amount"],
            "platform_revenue": totals["platform_revenue"],
            "referrer_revenue": totals["referrer_revenue"],
            "total_discount_given": totals["discount_amount"],
            "total_members": totals["members"],
            "redemptions": totals["redemptions"],
            "available_balance": to_decimal(referrer.available_balance),
            "lifetime_revenue": to_decimal(referrer.total_revenue),
            "commission_rate": resolve_commission_rate(referrer.role, referrer.commission_rate),
            "code": self._code_details(referrer, now),
        }

    def monthly(self, referrer_id: str, now: datetime | None = None) -> dict:
        now = now or utcnow()
        referrer = self._get_referrer(referrer_id)
        start, end = _month_bounds(now)
        totals = self._totals(referrer.id, start, end)

        codes = self.db.query(ReferralCode).filter(ReferralCode.referrer_id == referrer.id).all()
        left_uses = sum(
            max(c.usage_limit - c.times_used, 0) for c in codes if c.usage_limit is not None
        )
        return {
            "referrer_id": referrer.id,
            "role": referrer.role,
            "month": now.strftime("%B %Y"),
            "total_codes": len(codes),
            "left_uses": left_uses,
            "total_revenue": totals["final_amount"],
            "platform_revenue": totals["platform_revenue"],
            "referrer_revenue": totals["referrer_revenue"],
            "total_discount_given": totals["discount_amount"],
            "new_members": totals["members"],
            "redemptions": totals["redemptions"],
            "code": self._code_details(referrer, now),
        }

    def _totals(
        self,
        referrer_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        q = self.db.query(
            func.sum(Redemption.final_amount),
            func.sum(Redemption.platform_revenue),
            func.sum(Redemption.referrer_revenue),
            func.sum(Redemption.discount_amount),
            func.count(distinct(Redemption.user_id)),
            func.count(Redemption.id),
        ).filter(Redemption.referrer_id == referrer_id)
        if start is not None:
            q = q.filter(Redemption.redeemed_at >= start, Redemption.redeemed_at < end)
        final_amount, platform, referrer, discount, members, count = q.one()
        return {
            "final_amount": to_decimal(final_amount),
            "platform_revenue": to_decimal(platform),
            "referrer_revenue": to_decimal(referrer),
            "discount_amount": to_decimal(discount),
            "members": members or 0,
            "redemptions": count or 0,
        }

    def _code_details(self, referrer: Referrer, now: datetime) -> dict | None:
        row = None
        if referrer.code_id:
            row = self.db.query(ReferralCode).filter(ReferralCode.id == referrer.code_id).one_or_none()
        if row is None:
            # latest code issued to the referrer
            row = (
                self.db.query(ReferralCode)
                .filter(ReferralCode.referrer_id == referrer.id)
                .order_by(ReferralCode.created_at.desc())
                .first()
            )
        if row is None:
            return None

        valid_to = as_utc(row.valid_to)
        is_expired = CodeRegistry.is_expired(row, now)
        days_remaining = None
        if valid_to is not None:
            days_remaining = max(math.ceil((valid_to - now).total_seconds() / 86400), 0)
        return {
            "code_id": row.id,
            "code": row.code,
            "status": row.status,
            "discount_rate": to_decimal(row.discount_rate),
            "usage_limit": row.usage_limit,
            "times_used": row.times_used,
            "left_uses": row.usage_limit - row.times_used if row.usage_limit is not None else None,
            "valid_from": as_utc(row.valid_from),
            "valid_to": valid_to,
            "days_remaining": days_remaining,
            "is_expired": is_expired,
            "is_active": row.status == "active" and not is_expired,
        }

    def _get_referrer(self, referrer_id: str) -> Referrer:
        referrer = self.db.query(Referrer).filter(Referrer.id == referrer_id).one_or_none()
        if not referrer:
            raise ReferrerNotFound()
        return referrer


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end
