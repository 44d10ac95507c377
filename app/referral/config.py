"""
Referral program config: typed wrappers over app.core.config.settings.
Partners and ambassadors share one engine; a RoleProfile carries what differs.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from app.core.config import settings

PARTNER = "partner"
AMBASSADOR = "ambassador"
ROLES = (PARTNER, AMBASSADOR)


@dataclass(frozen=True)
class RoleProfile:
    role: str
    code_prefix: str
    default_commission_rate: Decimal
    code_label: str  # "promo code" / "referral code" in user-facing text


def get_role_profile(role: str) -> RoleProfile:
    if role == PARTNER:
        return RoleProfile(
            role=PARTNER,
            code_prefix=settings.partner_code_prefix,
            default_commission_rate=_to_rate(settings.partner_default_commission_rate),
            code_label="promo code",
        )
    if role == AMBASSADOR:
        return RoleProfile(
            role=AMBASSADOR,
            code_prefix=settings.ambassador_code_prefix,
            default_commission_rate=_to_rate(settings.ambassador_default_commission_rate),
            code_label="referral code",
        )
    raise ValueError(f"unknown referrer role: {role}")


def get_generation_attempts() -> int:
    return settings.code_generation_attempts


def get_validity_days() -> int:
    return settings.code_validity_days


def get_default_usage_limit() -> int | None:
    return settings.code_default_usage_limit


def get_payout_currency() -> str:
    return settings.payout_currency.lower()


def get_payout_claim_ttl() -> int:
    return settings.payout_claim_ttl


def _to_rate(value: float) -> Decimal:
    # str() first: Decimal(0.3) would carry binary float noise
    return Decimal(str(value))


def resolve_commission_rate(role: str, rate) -> Decimal:
    """Referrer's own rate, or the role default when the record has none."""
    if rate is None:
        return get_role_profile(role).default_commission_rate
    return rate if isinstance(rate, Decimal) else _to_rate(rate)
