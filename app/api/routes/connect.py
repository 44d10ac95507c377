"""
Payee (connected) accounts and the processor webhook.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.deps import get_transfer_client
from app.core.config import settings
from app.db.session import get_db
from app.referral.payees import PayeeAccountService
from app.schemas.referral import ConnectAccountIn, OnboardingLinkIn
from app.services.transfers import TransferClient
from app.services.transfers.webhooks import WebhookSignatureError, verify_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connect"])


@router.post("/api/connect/accounts")
def create_account(
    payload: ConnectAccountIn,
    db: Session = Depends(get_db),
    transfer_client: TransferClient = Depends(get_transfer_client),
) -> dict:
    referrer = PayeeAccountService(db, transfer_client).create_payee_account(
        payload.referrer_id, email=payload.email
    )
    return {
        "message": "Payee account ready",
        "referrer_id": referrer.id,
        "account_id": referrer.payout_account_id,
        "payee_status": referrer.payee_status or {},
    }


@router.post("/api/connect/onboarding-link")
def onboarding_link(
    payload: OnboardingLinkIn,
    db: Session = Depends(get_db),
    transfer_client: TransferClient = Depends(get_transfer_client),
) -> dict:
    url = PayeeAccountService(db, transfer_client).create_onboarding_link(payload.referrer_id)
    return {"message": "Onboarding link created", "url": url}


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    transfer_client: TransferClient = Depends(get_transfer_client),
) -> dict:
    payload = await request.body()
    try:
        event = verify_event(
            payload,
            request.headers.get("Stripe-Signature"),
            settings.stripe_webhook_secret,
            tolerance=settings.webhook_tolerance_seconds,
        )
    except WebhookSignatureError as e:
        logger.warning("webhook_signature_invalid", extra={"error": str(e)})
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

    handled = PayeeAccountService(db, transfer_client).handle_event(event)
    return {"message": "Webhook received", "received": True, "handled": handled}
