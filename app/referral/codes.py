"""
CodeRegistry: promo codes (partners) and referral codes (ambassadors).

Methods flush but never commit; the calling service owns the unit of work.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.code import ReferralCode
from app.models.redemption import Redemption
from app.models.referrer import Referrer
from app.referral.config import (
    get_default_usage_limit,
    get_generation_attempts,
    get_role_profile,
    get_validity_days,
)
from app.referral.errors import (
    CodeExpired,
    CodeHasHistory,
    CodeInUse,
    CodeNotActive,
    CodeNotFound,
    CodeNotYetValid,
    DuplicateCode,
    GenerationExhausted,
    InvalidRequest,
    UsageLimitReached,
)
from app.services.audit.service import AuditService
from app.utils.clock import as_utc, utcnow
from app.utils.currency import to_decimal
from app.utils.metrics import code_generation_collisions_total, codes_generated_total

logger = logging.getLogger(__name__)

_DEFAULT_LIMIT = object()


@dataclass
class ValidationResult:
    code: ReferralCode
    discount_rate: Decimal


class CodeRegistry:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        referrer_id: str,
        role: str,
        preferred_code: str | None = None,
        discount_rate=0,
        usage_limit=_DEFAULT_LIMIT,
        key: str | None = None,
    ) -> ReferralCode:
        """
        Create a pending code for a referrer.

        A preferred code is taken as-is or rejected with DuplicateCode. Otherwise
        candidates are prefix + last 4 chars of `key` (defaults to referrer_id)
        + random digits, up to `code_generation_attempts` tries.

        Must be the first write of the unit of work: a unique-index rejection
        rolls the session back before the next attempt.
        """
        profile = get_role_profile(role)
        rate = to_decimal(discount_rate)
        if rate < 0 or rate > 1:
            raise InvalidRequest("discount_rate must be between 0 and 1")
        if usage_limit is _DEFAULT_LIMIT:
            usage_limit = get_default_usage_limit()
        if usage_limit is not None and usage_limit < 0:
            raise InvalidRequest("usage_limit must be non-negative")

        preferred = (preferred_code or "").strip()
        attempts = 1 if preferred else get_generation_attempts()

        for attempt in range(1, attempts + 1):
            candidate = preferred or self._candidate(profile.code_prefix, key or referrer_id)
            if self._exists(candidate):
                code_generation_collisions_total.inc()
                logger.info("code_candidate_taken", extra={"code": candidate, "attempt": attempt})
                continue

            row = ReferralCode(
                code=candidate,
                referrer_id=referrer_id,
                role=role,
                status="pending",
                discount_rate=rate,
                valid_from=None,
                valid_to=None,
                times_used=0,
                usage_limit=usage_limit,
            )
            self.db.add(row)
            try:
                self.db.flush()
            except IntegrityError:
                # lost a race against a concurrent insert of the same string
                self.db.rollback()
                code_generation_collisions_total.inc()
                logger.warning("code_insert_collision", extra={"code": candidate, "attempt": attempt})
                continue

            codes_generated_total.labels(role=role).inc()
            logger.info(
                "code_generated",
                extra={"code": candidate, "code_id": row.id, "referrer_id": referrer_id, "role": role},
            )
            return row

        if preferred:
            raise DuplicateCode()
        logger.warning("code_generation_exhausted", extra={"referrer_id": referrer_id, "role": role})
        raise GenerationExhausted()

    @staticmethod
    def _candidate(prefix: str, key: str) -> str:
        return f"{prefix}{key[-4:].upper()}{secrets.randbelow(1000)}"

    def _exists(self, code: str) -> bool:
        return self.db.query(ReferralCode.id).filter(ReferralCode.code == code).first() is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self, code_id: str, now: datetime | None = None) -> ReferralCode:
        """Activate; a still-valid window is kept so re-approval is idempotent."""
        now = now or utcnow()
        row = self._get_for_update(code_id)
        row.status = "active"
        if row.valid_to is None or self.is_expired(row, now):
            row.valid_from = now
            row.valid_to = now + timedelta(days=get_validity_days())
        self.db.flush()
        logger.info("code_activated", extra={"code": row.code, "code_id": row.id})
        return row

    def deactivate(self, code_id: str) -> ReferralCode:
        row = self._get_for_update(code_id)
        row.status = "inactive"
        self.db.flush()
        logger.info("code_deactivated", extra={"code": row.code, "code_id": row.id})
        return row

    def consume(self, code_id: str) -> bool:
        """Atomically bump times_used; False when the usage limit is already reached."""
        result = self.db.execute(
            update(ReferralCode)
            .where(
                ReferralCode.id == code_id,
                or_(
                    ReferralCode.usage_limit.is_(None),
                    ReferralCode.times_used < ReferralCode.usage_limit,
                ),
            )
            .values(times_used=ReferralCode.times_used + 1)
        )
        self.db.flush()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, code: str, at_time: datetime | None = None) -> ValidationResult:
        now = at_time or utcnow()
        row = self.get_by_code(code)
        if row.status != "active":
            raise CodeNotActive()
        valid_from = as_utc(row.valid_from)
        if valid_from is not None and now < valid_from:
            raise CodeNotYetValid()
        if self.is_expired(row, now):
            raise CodeExpired()
        if row.usage_limit is not None and row.times_used >= row.usage_limit:
            raise UsageLimitReached()
        return ValidationResult(code=row, discount_rate=to_decimal(row.discount_rate))

    @staticmethod
    def is_expired(row: ReferralCode, now: datetime | None = None) -> bool:
        valid_to = as_utc(row.valid_to)
        return valid_to is not None and (now or utcnow()) > valid_to

    # ------------------------------------------------------------------
    # Lookup / admin
    # ------------------------------------------------------------------

    def get(self, code_id: str) -> ReferralCode:
        row = self.db.query(ReferralCode).filter(ReferralCode.id == code_id).one_or_none()
        if not row:
            raise CodeNotFound()
        return row

    def get_by_code(self, code: str) -> ReferralCode:
        row = (
            self.db.query(ReferralCode)
            .filter(ReferralCode.code == (code or "").strip())
            .one_or_none()
        )
        if not row:
            raise CodeNotFound()
        return row

    def list_codes(
        self,
        referrer_id: str | None = None,
        role: str | None = None,
        status: str | None = None,
    ) -> list[ReferralCode]:
        q = self.db.query(ReferralCode)
        if referrer_id:
            q = q.filter(ReferralCode.referrer_id == referrer_id)
        if role:
            q = q.filter(ReferralCode.role == role)
        if status:
            q = q.filter(ReferralCode.status == status)
        return q.order_by(ReferralCode.created_at.desc()).all()

    def delete(self, code_id: str, actor_id: str | None = None) -> None:
        """
        Hard delete of a retired code: no redemption may reference it and no
        referrer may still hold it as its current code.
        """
        row = self.get(code_id)
        has_history = (
            self.db.query(Redemption.id).filter(Redemption.code_id == row.id).first() is not None
        )
        if has_history:
            raise CodeHasHistory()
        in_use = self.db.query(Referrer.id).filter(Referrer.code_id == row.id).first() is not None
        if in_use:
            raise CodeInUse()
        AuditService(self.db).log(
            actor_type="admin",
            actor_id=actor_id,
            action="code_deleted",
            entity_type="code",
            entity_id=row.id,
            payload={"code": row.code, "referrer_id": row.referrer_id},
        )
        self.db.delete(row)
        self.db.flush()
        logger.info("code_deleted", extra={"code": row.code, "code_id": row.id})

    def _get_for_update(self, code_id: str) -> ReferralCode:
        row = (
            self.db.query(ReferralCode)
            .filter(ReferralCode.id == code_id)
            .with_for_update()
            .one_or_none()
        )
        if not row:
            raise CodeNotFound()
        return row
