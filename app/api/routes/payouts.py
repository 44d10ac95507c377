"""
Payout requests: open, approve (funds transfer), cancel, list.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_claim_store, get_transfer_client
from app.db.session import get_db
from app.referral.payouts import PayoutService
from app.schemas.referral import PayoutOut, PayoutRequestIn
from app.services.idempotency import IdempotencyStore
from app.services.transfers import TransferClient


router = APIRouter(prefix="/api/payouts", tags=["payouts"])


def _service(
    db: Session = Depends(get_db),
    transfer_client: TransferClient = Depends(get_transfer_client),
    claims: IdempotencyStore = Depends(get_claim_store),
) -> PayoutService:
    return PayoutService(db, transfer_client, claims)


@router.post("", status_code=status.HTTP_201_CREATED)
def request_payout(payload: PayoutRequestIn, service: PayoutService = Depends(_service)) -> dict:
    req = service.request(payload.referrer_id, payload.payout_account_id)
    return {"message": "Payout request submitted", "payout": PayoutOut.from_model(req).model_dump()}


@router.post("/{request_id}/approve")
def approve_payout(
    request_id: str,
    actor_id: str | None = Query(default=None),
    service: PayoutService = Depends(_service),
) -> dict:
    result = service.approve(request_id, actor_id=actor_id)
    return {
        "message": "Payout approved and transferred",
        "request_id": result.request_id,
        "referrer_id": result.referrer_id,
        "transfer_id": result.transfer_id,
        "amount": float(result.amount),
        "amount_minor": result.amount_minor,
        "currency": result.currency,
        "status": result.status,
    }


@router.post("/{request_id}/cancel")
def cancel_payout(
    request_id: str,
    actor_id: str | None = Query(default=None),
    service: PayoutService = Depends(_service),
) -> dict:
    req = service.cancel(request_id, actor_id=actor_id)
    return {"message": "Payout request cancelled", "payout": PayoutOut.from_model(req).model_dump()}


@router.get("")
def list_payouts(
    referrer_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    service: PayoutService = Depends(_service),
) -> dict:
    requests = service.list_requests(referrer_id=referrer_id, status=status_filter)
    return {
        "message": "Payout requests fetched",
        "count": len(requests),
        "payouts": [PayoutOut.from_model(r).model_dump() for r in requests],
    }
