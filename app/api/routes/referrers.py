"""
Partner / ambassador applications, admin status transitions, profiles and stats.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_notifier
from app.db.session import get_db
from app.referral.applications import ApplicationService
from app.referral.config import AMBASSADOR, PARTNER
from app.referral.stats import StatsService
from app.schemas.referral import (
    ApplicationIn,
    CodeOut,
    ProfileUpdateIn,
    ReferrerOut,
    StatusIn,
    stats_out,
)
from app.referral.tasks import QueuedEmailNotifier


def build_role_router(role: str) -> APIRouter:
    """Same endpoints for both roles: /api/partners/..., /api/ambassadors/..."""
    label = role.capitalize()
    router = APIRouter(prefix=f"/api/{role}s", tags=[f"{role}s"])

    @router.post("/applications", status_code=status.HTTP_201_CREATED)
    def submit_application(
        payload: ApplicationIn,
        db: Session = Depends(get_db),
        notifier: QueuedEmailNotifier = Depends(get_notifier),
    ) -> dict:
        service = ApplicationService(db, notifier)
        referrer = service.submit_application(
            payload.user_id,
            role,
            profile=payload.profile(),
            preferred_code=payload.preferred_code,
            discount_rate=payload.discount_rate,
            commission_rate=payload.commission_rate,
        )
        code = service.codes.get(referrer.code_id)
        return {
            "message": f"{label} created successfully (awaiting admin approval)",
            "referrer": ReferrerOut.from_model(referrer).model_dump(),
            "code": CodeOut.from_model(code).model_dump(),
        }

    @router.post("/{referrer_id}/status")
    def update_status(
        referrer_id: str,
        payload: StatusIn,
        actor_id: str | None = Query(default=None),
        db: Session = Depends(get_db),
        notifier: QueuedEmailNotifier = Depends(get_notifier),
    ) -> dict:
        service = ApplicationService(db, notifier)
        result = service.update_status(referrer_id, payload.status, actor_id=actor_id, role=role)
        if result.referrer.status == "approved":
            message = f"{label} approved and code activated"
        elif result.referrer.status == "declined":
            message = f"{label} declined and code deactivated"
        else:
            message = f"{label} status updated to {result.referrer.status}"
        return {
            "message": message,
            "referrer": ReferrerOut.from_model(result.referrer).model_dump(),
            "code": CodeOut.from_model(result.code).model_dump() if result.code else None,
            "email_queued": result.notified,
        }

    @router.get("")
    def list_referrers(
        status_filter: str | None = Query(default=None, alias="status"),
        db: Session = Depends(get_db),
    ) -> dict:
        referrers = ApplicationService(db).list_referrers(role=role, status=status_filter)
        return {
            "message": f"{label}s fetched",
            "count": len(referrers),
            f"{role}s": [ReferrerOut.from_model(r).model_dump() for r in referrers],
        }

    return router


partners_router = build_role_router(PARTNER)
ambassadors_router = build_role_router(AMBASSADOR)

router = APIRouter(prefix="/api/referrers", tags=["referrers"])


@router.get("/{referrer_id}")
def get_referrer(referrer_id: str, db: Session = Depends(get_db)) -> dict:
    referrer = ApplicationService(db).get_referrer(referrer_id)
    return {"message": "Referrer fetched", "referrer": ReferrerOut.from_model(referrer).model_dump()}


@router.put("/{referrer_id}")
def update_referrer(referrer_id: str, payload: ProfileUpdateIn, db: Session = Depends(get_db)) -> dict:
    referrer = ApplicationService(db).update_profile(referrer_id, payload.model_dump(exclude_unset=True))
    return {"message": "Referrer updated", "referrer": ReferrerOut.from_model(referrer).model_dump()}


@router.delete("/{referrer_id}")
def delete_referrer(
    referrer_id: str,
    actor_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    ApplicationService(db).delete_referrer(referrer_id, actor_id=actor_id)
    return {"message": "Referrer deleted", "referrer_id": referrer_id}


@router.get("/{referrer_id}/stats")
def referrer_stats(referrer_id: str, db: Session = Depends(get_db)) -> dict:
    return {"message": "Stats fetched", **stats_out(StatsService(db).overview(referrer_id))}


@router.get("/{referrer_id}/stats/monthly")
def referrer_monthly_stats(referrer_id: str, db: Session = Depends(get_db)) -> dict:
    return {"message": "Monthly stats fetched", **stats_out(StatsService(db).monthly(referrer_id))}
