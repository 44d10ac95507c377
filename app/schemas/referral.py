from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _money(value: Any) -> float:
    return float(value or 0)


# ---------- Requests ----------


class ProfileFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    business_name: str | None = None
    business_type: str | None = None
    website: str | None = None
    location: str | None = None
    description: str | None = None
    why_join: str | None = None
    social_links: dict[str, Any] | None = None


class ApplicationIn(ProfileFields):
    user_id: str = Field(min_length=1)
    preferred_code: str | None = None
    # fractions: 0.2 means 20%
    discount_rate: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    commission_rate: Decimal | None = Field(default=None, ge=0, le=1)

    @field_validator("preferred_code", mode="before")
    @classmethod
    def blank_code_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def profile(self) -> dict[str, Any]:
        return self.model_dump(
            include=set(ProfileFields.model_fields),
            exclude_none=True,
        )


class ProfileUpdateIn(ProfileFields):
    commission_rate: Decimal | None = Field(default=None, ge=0, le=1)


class StatusIn(BaseModel):
    status: str = Field(min_length=1)


class RedeemIn(BaseModel):
    user_id: str = Field(min_length=1)
    amount: Decimal = Field(ge=0)


class PayoutRequestIn(BaseModel):
    referrer_id: str = Field(min_length=1)
    payout_account_id: str = Field(min_length=1)


class ConnectAccountIn(BaseModel):
    referrer_id: str = Field(min_length=1)
    email: str | None = None


class OnboardingLinkIn(BaseModel):
    referrer_id: str = Field(min_length=1)


# ---------- Responses ----------


class CodeOut(BaseModel):
    id: str
    code: str
    referrer_id: str
    role: str
    status: str
    discount_rate: float
    valid_from: datetime | None
    valid_to: datetime | None
    times_used: int
    usage_limit: int | None

    @classmethod
    def from_model(cls, row) -> "CodeOut":
        return cls(
            id=row.id,
            code=row.code,
            referrer_id=row.referrer_id,
            role=row.role,
            status=row.status,
            discount_rate=float(row.discount_rate or 0),
            valid_from=row.valid_from,
            valid_to=row.valid_to,
            times_used=row.times_used or 0,
            usage_limit=row.usage_limit,
        )


class ReferrerOut(ProfileFields):
    id: str
    user_id: str
    role: str
    status: str
    commission_rate: float | None
    total_revenue: float
    available_balance: float
    total_discount_given: float
    total_redemptions: int
    code_id: str | None
    payout_account_id: str | None
    onboarding_url: str | None
    payee_status: dict[str, Any]
    approved_since: datetime | None
    created_at: datetime | None

    @classmethod
    def from_model(cls, r) -> "ReferrerOut":
        return cls(
            id=r.id,
            user_id=r.user_id,
            role=r.role,
            status=r.status,
            first_name=r.first_name,
            last_name=r.last_name,
            email=r.email,
            phone=r.phone,
            business_name=r.business_name,
            business_type=r.business_type,
            website=r.website,
            location=r.location,
            description=r.description,
            why_join=r.why_join,
            social_links=r.social_links or {},
            commission_rate=float(r.commission_rate) if r.commission_rate is not None else None,
            total_revenue=_money(r.total_revenue),
            available_balance=_money(r.available_balance),
            total_discount_given=_money(r.total_discount_given),
            total_redemptions=r.total_redemptions or 0,
            code_id=r.code_id,
            payout_account_id=r.payout_account_id,
            onboarding_url=r.onboarding_url,
            payee_status=r.payee_status or {},
            approved_since=r.approved_since,
            created_at=r.created_at,
        )


class RedemptionOut(BaseModel):
    redemption_id: str
    code: str
    user_id: str
    referrer_id: str
    original_amount: float
    discount_rate: float
    discount_amount: float
    final_amount: float
    commission_rate: float
    referrer_revenue: float
    platform_revenue: float
    redeemed_at: datetime

    @classmethod
    def from_result(cls, res) -> "RedemptionOut":
        return cls(
            redemption_id=res.redemption_id,
            code=res.code,
            user_id=res.user_id,
            referrer_id=res.referrer_id,
            original_amount=_money(res.original_amount),
            discount_rate=_money(res.discount_rate),
            discount_amount=_money(res.discount_amount),
            final_amount=_money(res.final_amount),
            commission_rate=_money(res.commission_rate),
            referrer_revenue=_money(res.referrer_revenue),
            platform_revenue=_money(res.platform_revenue),
            redeemed_at=res.redeemed_at,
        )


class PayoutOut(BaseModel):
    id: str
    referrer_id: str
    payout_account_id: str
    amount: float
    currency: str
    status: str
    transfer_id: str | None
    amount_minor: int | None
    created_at: datetime | None
    approved_at: datetime | None
    cancelled_at: datetime | None

    @classmethod
    def from_model(cls, p) -> "PayoutOut":
        return cls(
            id=p.id,
            referrer_id=p.referrer_id,
            payout_account_id=p.payout_account_id,
            amount=_money(p.amount),
            currency=p.currency,
            status=p.status,
            transfer_id=p.transfer_id,
            amount_minor=p.amount_minor,
            created_at=p.created_at,
            approved_at=p.approved_at,
            cancelled_at=p.cancelled_at,
        )


def stats_out(data: dict) -> dict:
    """Decimals to floats for JSON; nested code details included."""
    out = {}
    for key, value in data.items():
        if isinstance(value, Decimal):
            out[key] = float(value)
        elif isinstance(value, dict):
            out[key] = stats_out(value)
        else:
            out[key] = value
    return out
