"""
PayoutService: payout request state machine.

    pending -> approved   (transfer confirmed, balance settled)
    pending -> cancelled  (balance untouched)

Local state changes only after the processor confirms the transfer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.payout import PayoutRequest
from app.models.referrer import Referrer
from app.referral.config import get_payout_claim_ttl, get_payout_currency
from app.referral.errors import (
    AccountMismatch,
    NoBalance,
    NotPending,
    ReferrerNotFound,
    RequestNotFound,
    TransferFailed,
)
from app.referral.ledger import BalanceLedger
from app.services.audit.service import AuditService
from app.services.idempotency import IdempotencyStore
from app.services.transfers.base import TransferClient, TransferServiceError
from app.utils.clock import utcnow
from app.utils.currency import to_decimal, to_minor_units
from app.utils.metrics import payouts_total

logger = logging.getLogger(__name__)


@dataclass
class PayoutResult:
    request_id: str
    referrer_id: str
    transfer_id: str
    amount: Decimal
    amount_minor: int
    currency: str
    status: str


class PayoutService:
    def __init__(self, db: Session, transfer_client: TransferClient, claims: IdempotencyStore):
        self.db = db
        self.transfer_client = transfer_client
        self.claims = claims
        self.ledger = BalanceLedger(db)

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def request(self, referrer_id: str, payout_account_id: str) -> PayoutRequest:
        """Open a pending request for the full available balance."""
        referrer = self._get_referrer(referrer_id)
        if not referrer.payout_account_id or referrer.payout_account_id != payout_account_id:
            raise AccountMismatch()
        balance = to_decimal(referrer.available_balance)
        if balance <= 0:
            raise NoBalance()

        req = PayoutRequest(
            referrer_id=referrer.id,
            payout_account_id=payout_account_id,
            amount=balance,
            currency=get_payout_currency(),
            status="pending",
        )
        self.db.add(req)
        self.db.commit()
        self.db.refresh(req)

        payouts_total.labels(outcome="requested").inc()
        logger.info(
            "payout_requested",
            extra={"payout_id": req.id, "referrer_id": referrer.id, "amount": str(balance)},
        )
        return req

    # ------------------------------------------------------------------
    # Approve
    # ------------------------------------------------------------------

    def approve(self, request_id: str, actor_id: str | None = None) -> PayoutResult:
        req = self._get_request(request_id)
        if req.status != "pending":
            raise NotPending()

        claim_key = f"payout_approve:{req.id}"
        if not self.claims.check_and_set(claim_key, get_payout_claim_ttl()):
            logger.info("payout_approve_in_flight", extra={"payout_id": req.id})
            raise NotPending("Request is already being processed")
        try:
            # a previous holder may have approved it between our read and the claim
            req = self._get_request(request_id)
            if req.status != "pending":
                logger.info("payout_already_processed", extra={"payout_id": req.id, "status": req.status})
                raise NotPending()
            return self._approve_claimed(req, actor_id)
        finally:
            self.claims.release(claim_key)

    def _approve_claimed(self, req: PayoutRequest, actor_id: str | None) -> PayoutResult:
        referrer = (
            self.db.query(Referrer)
            .filter(Referrer.id == req.referrer_id)
            .populate_existing()
            .one_or_none()
        )
        if not referrer:
            raise ReferrerNotFound()

        balance = to_decimal(referrer.available_balance)
        amount_minor = to_minor_units(balance)
        if balance <= 0 or amount_minor <= 0:
            raise NoBalance()

        try:
            transfer = self.transfer_client.transfer(
                account_id=req.payout_account_id,
                amount_minor=amount_minor,
                currency=req.currency,
                idempotency_key=f"payout-{req.id}",
                metadata={"payout_request_id": req.id, "referrer_id": referrer.id},
            )
        except TransferServiceError as e:
            self.db.rollback()
            payouts_total.labels(outcome="transfer_failed").inc()
            logger.warning(
                "payout_transfer_failed",
                extra={"payout_id": req.id, "referrer_id": referrer.id, "error": str(e)},
            )
            raise TransferFailed(f"Funds transfer failed: {e}") from e

        now = utcnow()
        try:
            result = self.db.execute(
                update(PayoutRequest)
                .where(PayoutRequest.id == req.id, PayoutRequest.status == "pending")
                .values(
                    status="approved",
                    transfer_id=transfer.id,
                    amount=balance,
                    amount_minor=amount_minor,
                    approved_at=now,
                )
            )
            if result.rowcount == 0:
                # the processor deduplicates on the idempotency key; nothing to settle here
                logger.error(
                    "payout_state_changed_during_transfer",
                    extra={"payout_id": req.id, "transfer_id": transfer.id},
                )
                raise NotPending()
            self.ledger.settle(referrer.id, balance, at=now)
            AuditService(self.db).log(
                actor_type="admin",
                actor_id=actor_id,
                action="payout_approved",
                entity_type="payout_request",
                entity_id=req.id,
                payload={
                    "referrer_id": referrer.id,
                    "transfer_id": transfer.id,
                    "amount": str(balance),
                    "amount_minor": amount_minor,
                    "currency": req.currency,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        payouts_total.labels(outcome="approved").inc()
        logger.info(
            "payout_approved",
            extra={
                "payout_id": req.id,
                "referrer_id": referrer.id,
                "transfer_id": transfer.id,
                "amount": str(balance),
                "amount_minor": amount_minor,
            },
        )
        return PayoutResult(
            request_id=req.id,
            referrer_id=referrer.id,
            transfer_id=transfer.id,
            amount=balance,
            amount_minor=amount_minor,
            currency=req.currency,
            status="approved",
        )

    # ------------------------------------------------------------------
    # Cancel / list
    # ------------------------------------------------------------------

    def cancel(self, request_id: str, actor_id: str | None = None) -> PayoutRequest:
        req = self._get_request(request_id)
        if req.status != "pending":
            raise NotPending()
        try:
            result = self.db.execute(
                update(PayoutRequest)
                .where(PayoutRequest.id == req.id, PayoutRequest.status == "pending")
                .values(status="cancelled", cancelled_at=utcnow())
            )
            if result.rowcount == 0:
                raise NotPending()
            AuditService(self.db).log(
                actor_type="admin",
                actor_id=actor_id,
                action="payout_cancelled",
                entity_type="payout_request",
                entity_id=req.id,
                payload={"referrer_id": req.referrer_id, "amount": str(req.amount)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        payouts_total.labels(outcome="cancelled").inc()
        logger.info("payout_cancelled", extra={"payout_id": req.id, "referrer_id": req.referrer_id})
        return self._get_request(request_id)

    def list_requests(
        self,
        referrer_id: str | None = None,
        status: str | None = None,
    ) -> list[PayoutRequest]:
        q = self.db.query(PayoutRequest)
        if referrer_id:
            q = q.filter(PayoutRequest.referrer_id == referrer_id)
        if status:
            q = q.filter(PayoutRequest.status == status)
        return q.order_by(PayoutRequest.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_referrer(self, referrer_id: str) -> Referrer:
        referrer = self.db.query(Referrer).filter(Referrer.id == referrer_id).one_or_none()
        if not referrer:
            raise ReferrerNotFound()
        return referrer

    def _get_request(self, request_id: str) -> PayoutRequest:
        req = (
            self.db.query(PayoutRequest)
            .filter(PayoutRequest.id == request_id)
            .populate_existing()
            .one_or_none()
        )
        if not req:
            raise RequestNotFound()
        return req
