"""
RedemptionEngine: validate a code for a user, split the revenue, record it.

One redeem() is one unit of work: redemption row, usage counter and ledger
credit commit together or not at all.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.redemption import Redemption
from app.models.referrer import Referrer
from app.models.user import User
from app.referral.codes import CodeRegistry, ValidationResult
from app.referral.config import resolve_commission_rate
from app.referral.errors import (
    AlreadyRedeemed,
    InvalidRequest,
    ReferralError,
    ReferrerNotFound,
    UsageLimitReached,
    UserNotFound,
)
from app.referral.ledger import BalanceLedger
from app.utils.clock import utcnow
from app.utils.currency import to_decimal
from app.utils.metrics import redemptions_rejected_total, redemptions_total

logger = logging.getLogger(__name__)


@dataclass
class RedemptionResult:
    redemption_id: str
    code: str
    user_id: str
    referrer_id: str
    role: str
    original_amount: Decimal
    discount_rate: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    commission_rate: Decimal
    referrer_revenue: Decimal
    platform_revenue: Decimal
    redeemed_at: datetime


class RedemptionEngine:
    def __init__(self, db: Session):
        self.db = db
        self.codes = CodeRegistry(db)
        self.ledger = BalanceLedger(db)

    def verify_for_user(self, code: str, user_id: str) -> ValidationResult:
        """Read-only pre-check used before checkout; nothing is written."""
        if self._already_redeemed(user_id, code):
            raise AlreadyRedeemed()
        return self.codes.validate(code)

    def redeem(self, code: str, user_id: str, amount) -> RedemptionResult:
        code = (code or "").strip()
        try:
            result = self._redeem(code, user_id, amount)
            self.db.commit()
        except ReferralError as exc:
            self.db.rollback()
            redemptions_rejected_total.labels(reason=type(exc).__name__).inc()
            logger.info(
                "redemption_rejected",
                extra={"code": code, "user_id": user_id, "error": type(exc).__name__},
            )
            raise
        except Exception:
            self.db.rollback()
            raise

        redemptions_total.labels(role=result.role).inc()
        logger.info(
            "redemption_recorded",
            extra={
                "code": result.code,
                "user_id": user_id,
                "referrer_id": result.referrer_id,
                "amount": str(result.referrer_revenue),
            },
        )
        return result

    def _redeem(self, code: str, user_id: str, amount) -> RedemptionResult:
        amount = to_decimal(amount)
        if amount < 0:
            raise InvalidRequest("Amount must be non-negative")

        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        if not user:
            raise UserNotFound()

        if self._already_redeemed(user_id, code):
            raise AlreadyRedeemed()

        validation = self.codes.validate(code)
        row = validation.code
        referrer = self.db.query(Referrer).filter(Referrer.id == row.referrer_id).one_or_none()
        if not referrer:
            raise ReferrerNotFound()

        discount_rate = validation.discount_rate
        discount_amount = amount * discount_rate
        final_amount = amount - discount_amount
        commission_rate = resolve_commission_rate(referrer.role, referrer.commission_rate)
        referrer_revenue = final_amount * commission_rate
        platform_revenue = final_amount - referrer_revenue
        now = utcnow()

        redemption = Redemption(
            user_id=user_id,
            code=row.code,
            code_id=row.id,
            referrer_id=referrer.id,
            redeemed_at=now,
            original_amount=amount,
            discount_rate=discount_rate,
            discount_amount=discount_amount,
            final_amount=final_amount,
            commission_rate=commission_rate,
            referrer_revenue=referrer_revenue,
            platform_revenue=platform_revenue,
        )
        self.db.add(redemption)
        try:
            self.db.flush()
        except IntegrityError:
            # concurrent redeem of the same (user, code) won the unique index
            raise AlreadyRedeemed() from None

        if not self.codes.consume(row.id):
            raise UsageLimitReached()

        self.ledger.credit(referrer.id, referrer_revenue, discount_amount=discount_amount, at=now)

        return RedemptionResult(
            redemption_id=redemption.id,
            code=row.code,
            user_id=user_id,
            referrer_id=referrer.id,
            role=referrer.role,
            original_amount=amount,
            discount_rate=discount_rate,
            discount_amount=discount_amount,
            final_amount=final_amount,
            commission_rate=commission_rate,
            referrer_revenue=referrer_revenue,
            platform_revenue=platform_revenue,
            redeemed_at=now,
        )

    def _already_redeemed(self, user_id: str, code: str) -> bool:
        return (
            self.db.query(Redemption.id)
            .filter(Redemption.user_id == user_id, Redemption.code == (code or "").strip())
            .first()
            is not None
        )
