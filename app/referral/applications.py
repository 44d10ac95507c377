"""
ApplicationService: partner/ambassador onboarding and admin status transitions.

submit -> Referrer(pending) + Code(pending)
approved -> code activated; declined -> code deactivated
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.code import ReferralCode
from app.models.payout import PayoutRequest
from app.models.redemption import Redemption
from app.models.referrer import Referrer
from app.models.user import User
from app.referral.codes import CodeRegistry
from app.referral.config import ROLES, get_role_profile
from app.referral.errors import (
    AlreadyApplied,
    CodeNotFound,
    InvalidRequest,
    ReferrerHasHistory,
    ReferrerNotFound,
    UserNotFound,
)
from app.services.audit.service import AuditService
from app.referral.tasks import QueuedEmailNotifier
from app.services.notifications.email import (
    EmailNotifier,
    application_approved_message,
    application_declined_message,
)
from app.utils.clock import utcnow
from app.utils.currency import to_decimal

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "business_name",
    "business_type",
    "website",
    "location",
    "description",
    "why_join",
    "social_links",
)

OPEN_STATUSES = ("pending", "approved")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class StatusUpdate:
    referrer: Referrer
    code: ReferralCode | None
    previous_status: str
    notified: bool


class ApplicationService:
    def __init__(self, db: Session, notifier: EmailNotifier | QueuedEmailNotifier | None = None):
        self.db = db
        self.notifier = notifier if notifier is not None else QueuedEmailNotifier()
        self.codes = CodeRegistry(db)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit_application(
        self,
        user_id: str,
        role: str,
        profile: dict | None = None,
        preferred_code: str | None = None,
        discount_rate=0,
        commission_rate=None,
    ) -> Referrer:
        """Create (or re-open a declined) referrer with a pending code."""
        self._check_role(role)
        profile = self._clean_profile(profile or {})
        rate = self._clean_rate(commission_rate)

        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        if not user:
            raise UserNotFound()

        existing = (
            self.db.query(Referrer)
            .filter(Referrer.user_id == user_id, Referrer.role == role)
            .one_or_none()
        )
        if existing and existing.status in OPEN_STATUSES:
            raise AlreadyApplied(f"You already have a pending or approved {role} profile.")

        try:
            if existing:
                referrer = self._reopen(existing, user_id, preferred_code, discount_rate)
            else:
                referrer_id = str(uuid4())
                code = self.codes.generate(
                    referrer_id,
                    role,
                    preferred_code=preferred_code,
                    discount_rate=discount_rate,
                    key=user_id,
                )
                referrer = Referrer(
                    id=referrer_id,
                    user_id=user_id,
                    role=role,
                    status="pending",
                    code_id=code.id,
                )
                self.db.add(referrer)

            for field, value in profile.items():
                setattr(referrer, field, value)
            if rate is not None:
                referrer.commission_rate = rate

            self._mirror_on_user(user, role, referrer.id, "pending", created=True)
            self.db.commit()
        except IntegrityError:
            # concurrent submit for the same (user, role)
            self.db.rollback()
            raise AlreadyApplied(f"You already have a pending or approved {role} profile.") from None
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(referrer)
        logger.info(
            "application_submitted",
            extra={"user_id": user_id, "referrer_id": referrer.id, "role": role},
        )
        return referrer

    def _reopen(
        self,
        referrer: Referrer,
        user_id: str,
        preferred_code: str | None,
        discount_rate,
    ) -> Referrer:
        """Declined referrer applies again: keep the code unless its window is over."""
        current = None
        if referrer.code_id:
            current = self.db.query(ReferralCode).filter(ReferralCode.id == referrer.code_id).one_or_none()

        if current is None or self.codes.is_expired(current):
            old_code_id = current.id if current is not None else None
            code = self.codes.generate(
                referrer.id,
                referrer.role,
                preferred_code=preferred_code,
                discount_rate=discount_rate,
                key=user_id,
            )
            if old_code_id:
                self.codes.deactivate(old_code_id)
            referrer = self.db.query(Referrer).filter(Referrer.id == referrer.id).one()
            referrer.code_id = code.id
            logger.info(
                "application_code_replaced",
                extra={"referrer_id": referrer.id, "code": code.code},
            )

        referrer.status = "pending"
        return referrer

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def update_status(
        self,
        referrer_id: str,
        new_status: str,
        actor_id: str | None = None,
        role: str | None = None,
    ) -> StatusUpdate:
        new_status = (new_status or "").strip()
        if not new_status:
            raise InvalidRequest("status is required")

        referrer = self._get_for_update(referrer_id)
        if role and referrer.role != role:
            raise ReferrerNotFound()
        previous = referrer.status

        try:
            code = None
            if referrer.code_id:
                try:
                    code = self.codes.get(referrer.code_id)
                except CodeNotFound:
                    logger.warning("referrer_code_missing", extra={"referrer_id": referrer.id})

            if new_status == "approved":
                if code is not None:
                    code = self.codes.activate(code.id)
                if referrer.approved_since is None:
                    referrer.approved_since = utcnow()
            elif new_status == "declined":
                if code is not None:
                    code = self.codes.deactivate(code.id)
            referrer.status = new_status

            user = self.db.query(User).filter(User.id == referrer.user_id).one_or_none()
            if user:
                self._mirror_on_user(user, referrer.role, referrer.id, new_status)

            AuditService(self.db).log(
                actor_type="admin",
                actor_id=actor_id,
                action="referrer_status_updated",
                entity_type="referrer",
                entity_id=referrer.id,
                payload={"role": referrer.role, "from": previous, "to": new_status},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "referrer_status_updated",
            extra={"referrer_id": referrer.id, "role": referrer.role, "status": new_status},
        )
        notified = self._notify_status(referrer, code, new_status, user)
        return StatusUpdate(referrer=referrer, code=code, previous_status=previous, notified=notified)

    def _notify_status(
        self,
        referrer: Referrer,
        code: ReferralCode | None,
        status: str,
        user: User | None,
    ) -> bool:
        if status not in ("approved", "declined"):
            return False
        to = referrer.email or (user.email if user else None)
        if not to:
            return False

        profile = get_role_profile(referrer.role)
        if status == "approved":
            if code is None:
                return False
            subject, body = application_approved_message(
                role=referrer.role,
                name=referrer.display_name,
                code=code.code,
                code_label=profile.code_label,
                discount_rate=code.discount_rate,
                valid_to=code.valid_to,
            )
        else:
            subject, body = application_declined_message(referrer.role, referrer.display_name)

        try:
            return self.notifier.send(to, subject, body)
        except Exception:
            logger.exception(
                "status_email_dispatch_failed",
                extra={"referrer_id": referrer.id, "status": status},
            )
            return False

    # ------------------------------------------------------------------
    # Read / profile / delete
    # ------------------------------------------------------------------

    def get_referrer(self, referrer_id: str) -> Referrer:
        referrer = self.db.query(Referrer).filter(Referrer.id == referrer_id).one_or_none()
        if not referrer:
            raise ReferrerNotFound()
        return referrer

    def list_referrers(self, role: str | None = None, status: str | None = None) -> list[Referrer]:
        q = self.db.query(Referrer)
        if role:
            self._check_role(role)
            q = q.filter(Referrer.role == role)
        if status:
            q = q.filter(Referrer.status == status)
        return q.order_by(Referrer.created_at.desc()).all()

    def update_profile(self, referrer_id: str, updates: dict) -> Referrer:
        """Contact/profile fields and commission rate only; balances are ledger-owned."""
        referrer = self.get_referrer(referrer_id)
        updates = dict(updates or {})
        has_rate = "commission_rate" in updates
        rate = self._clean_rate(updates.pop("commission_rate", None))
        unknown = set(updates) - set(PROFILE_FIELDS)
        if unknown:
            raise InvalidRequest(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        profile = self._clean_profile(updates)
        try:
            for field, value in profile.items():
                setattr(referrer, field, value)
            if has_rate:
                referrer.commission_rate = rate
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(referrer)
        logger.info("referrer_profile_updated", extra={"referrer_id": referrer.id})
        return referrer

    def delete_referrer(self, referrer_id: str, actor_id: str | None = None) -> None:
        referrer = self.get_referrer(referrer_id)
        has_redemptions = (
            self.db.query(Redemption.id).filter(Redemption.referrer_id == referrer.id).first() is not None
        )
        has_payouts = (
            self.db.query(PayoutRequest.id).filter(PayoutRequest.referrer_id == referrer.id).first()
            is not None
        )
        if has_redemptions or has_payouts:
            raise ReferrerHasHistory()

        try:
            self.db.query(ReferralCode).filter(ReferralCode.referrer_id == referrer.id).delete(
                synchronize_session=False
            )
            user = self.db.query(User).filter(User.id == referrer.user_id).one_or_none()
            if user:
                applications = dict(user.applications or {})
                applications.pop(referrer.role, None)
                user.applications = applications
                self._set_role_flag(user, referrer.role, False)
            AuditService(self.db).log(
                actor_type="admin",
                actor_id=actor_id,
                action="referrer_deleted",
                entity_type="referrer",
                entity_id=referrer.id,
                payload={"role": referrer.role, "user_id": referrer.user_id},
            )
            self.db.delete(referrer)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("referrer_deleted", extra={"referrer_id": referrer_id})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_for_update(self, referrer_id: str) -> Referrer:
        referrer = (
            self.db.query(Referrer)
            .filter(Referrer.id == referrer_id)
            .with_for_update()
            .one_or_none()
        )
        if not referrer:
            raise ReferrerNotFound()
        return referrer

    def _mirror_on_user(
        self,
        user: User,
        role: str,
        referrer_id: str,
        status: str,
        created: bool = False,
    ) -> None:
        now = utcnow().isoformat()
        applications = dict(user.applications or {})
        entry = dict(applications.get(role) or {})
        if created or "created_at" not in entry:
            entry["created_at"] = now
        entry.update({"status": status, "referrer_id": referrer_id, "updated_at": now})
        applications[role] = entry
        # reassign: in-place JSON mutation is not tracked
        user.applications = applications
        self._set_role_flag(user, role, status == "approved")

    @staticmethod
    def _set_role_flag(user: User, role: str, value: bool) -> None:
        if role == "partner":
            user.is_partner = value
        else:
            user.is_ambassador = value

    @staticmethod
    def _check_role(role: str) -> None:
        if role not in ROLES:
            raise InvalidRequest(f"Unknown role: {role}")

    @staticmethod
    def _clean_rate(value):
        if value is None:
            return None
        rate = to_decimal(value)
        if rate < 0 or rate > 1:
            raise InvalidRequest("commission_rate must be between 0 and 1")
        return rate

    @staticmethod
    def _clean_profile(profile: dict) -> dict:
        cleaned = {k: v for k, v in profile.items() if k in PROFILE_FIELDS}
        email = cleaned.get("email")
        if email is not None:
            email = str(email).strip()
            if email and not _EMAIL_RE.match(email):
                raise InvalidRequest("Invalid email address")
            cleaned["email"] = email or None
        if "social_links" in cleaned and cleaned["social_links"] is None:
            cleaned["social_links"] = {}
        return cleaned
