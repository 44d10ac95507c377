"""
PayeeAccountService: connected accounts at the funds-transfer processor.
Creates accounts and onboarding links, and applies account webhooks.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.referrer import Referrer
from app.referral.errors import ReferrerNotFound, TransferFailed
from app.services.transfers.base import PayeeStatus, TransferClient, TransferServiceError

logger = logging.getLogger(__name__)

DEAUTHORIZED_REASON = "application_deauthorized"


class PayeeAccountService:
    def __init__(self, db: Session, transfer_client: TransferClient):
        self.db = db
        self.transfer_client = transfer_client

    def create_payee_account(self, referrer_id: str, email: str | None = None) -> Referrer:
        """Create a connected account tagged with the referrer id; reuses an existing one."""
        referrer = self._get_referrer(referrer_id)
        if referrer.payout_account_id:
            return referrer

        try:
            account = self.transfer_client.create_payee(
                email=email or referrer.email,
                metadata={"referrer_id": referrer.id, "role": referrer.role},
            )
        except TransferServiceError as e:
            logger.warning("payee_account_create_failed", extra={"referrer_id": referrer.id, "error": str(e)})
            raise TransferFailed(f"Could not create payee account: {e}") from e

        referrer.payout_account_id = account.id
        referrer.payee_status = account.status.as_dict()
        self.db.commit()
        self.db.refresh(referrer)
        logger.info("payee_account_created", extra={"referrer_id": referrer.id, "account_id": account.id})
        return referrer

    def create_onboarding_link(self, referrer_id: str) -> str:
        referrer = self._get_referrer(referrer_id)
        if not referrer.payout_account_id:
            referrer = self.create_payee_account(referrer_id)

        try:
            link = self.transfer_client.create_onboarding_link(referrer.payout_account_id)
            account = self.transfer_client.retrieve_account(referrer.payout_account_id)
        except TransferServiceError as e:
            logger.warning("onboarding_link_failed", extra={"referrer_id": referrer.id, "error": str(e)})
            raise TransferFailed(f"Could not create onboarding link: {e}") from e

        referrer.onboarding_url = link.url
        referrer.payee_status = account.status.as_dict()
        self.db.commit()
        logger.info(
            "onboarding_link_created",
            extra={"referrer_id": referrer.id, "account_id": referrer.payout_account_id},
        )
        return link.url

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_event(self, event: dict) -> bool:
        """Apply an account event. Returns False for ignored events."""
        event_type = event.get("type") or ""
        account = ((event.get("data") or {}).get("object")) or {}

        if event_type == "account.updated":
            status = PayeeStatus.from_account(account)
        elif event_type == "account.application.deauthorized":
            status = PayeeStatus(disabled_reason=DEAUTHORIZED_REASON)
        else:
            logger.info("webhook_event_ignored", extra={"event_type": event_type})
            return False

        referrer = self._find_for_account(account)
        if referrer is None:
            logger.warning(
                "webhook_referrer_not_found",
                extra={"event_type": event_type, "account_id": account.get("id")},
            )
            return False

        referrer.payee_status = status.as_dict()
        if not referrer.payout_account_id and account.get("id"):
            referrer.payout_account_id = account["id"]
        self.db.commit()
        logger.info(
            "payee_status_updated",
            extra={"event_type": event_type, "referrer_id": referrer.id, "account_id": account.get("id")},
        )
        return True

    def _find_for_account(self, account: dict) -> Referrer | None:
        referrer_id = (account.get("metadata") or {}).get("referrer_id")
        if referrer_id:
            return self.db.query(Referrer).filter(Referrer.id == referrer_id).one_or_none()
        logger.warning("webhook_missing_referrer_metadata", extra={"account_id": account.get("id")})
        if account.get("id"):
            return (
                self.db.query(Referrer)
                .filter(Referrer.payout_account_id == account["id"])
                .first()
            )
        return None

    def _get_referrer(self, referrer_id: str) -> Referrer:
        referrer = self.db.query(Referrer).filter(Referrer.id == referrer_id).one_or_none()
        if not referrer:
            raise ReferrerNotFound()
        return referrer
