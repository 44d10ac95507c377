"""
Code listing, validation, redemption and deletion.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.referral.codes import CodeRegistry
from app.referral.redemption import RedemptionEngine
from app.schemas.referral import CodeOut, RedeemIn, RedemptionOut


router = APIRouter(prefix="/api/codes", tags=["codes"])


@router.get("")
def list_codes(
    referrer_id: str | None = Query(default=None),
    role: str | None = Query(default=None),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    codes = CodeRegistry(db).list_codes(referrer_id=referrer_id, role=role, status=status)
    return {
        "message": "Codes fetched",
        "count": len(codes),
        "codes": [CodeOut.from_model(c).model_dump() for c in codes],
    }


@router.get("/{code}/validate")
def validate_code(code: str, db: Session = Depends(get_db)) -> dict:
    result = CodeRegistry(db).validate(code)
    return {
        "message": "Code is valid",
        "code": result.code.code,
        "discount_rate": float(result.discount_rate),
        "valid_to": result.code.valid_to,
    }


@router.get("/{code}/verify/{user_id}")
def verify_code_for_user(code: str, user_id: str, db: Session = Depends(get_db)) -> dict:
    result = RedemptionEngine(db).verify_for_user(code, user_id)
    return {
        "message": "Code can be used",
        "code": result.code.code,
        "discount_rate": float(result.discount_rate),
    }


@router.post("/{code}/redeem")
def redeem_code(code: str, payload: RedeemIn, db: Session = Depends(get_db)) -> dict:
    result = RedemptionEngine(db).redeem(code, payload.user_id, payload.amount)
    return {"message": "Code redeemed", **RedemptionOut.from_result(result).model_dump()}


@router.delete("/{code_id}")
def delete_code(
    code_id: str,
    actor_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    registry = CodeRegistry(db)
    try:
        registry.delete(code_id, actor_id=actor_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"message": "Code deleted", "code_id": code_id}
