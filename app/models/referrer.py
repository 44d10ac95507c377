"""
Referrer: partner or ambassador. One row per (user, role).
Balances change only through app.referral.ledger (atomic in-place updates).
"""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text, UniqueConstraint

from app.db.base import Base, JSONType

MONEY = Numeric(18, 6)


class Referrer(Base):
    __tablename__ = "referrers"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_referrers_user_role"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False, index=True)  # partner / ambassador
    status = Column(String, nullable=False, default="pending")  # pending / approved / declined

    # Profile
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    business_name = Column(String, nullable=True)
    business_type = Column(String, nullable=True)
    website = Column(String, nullable=True)
    location = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    why_join = Column(Text, nullable=True)
    social_links = Column(JSONType, nullable=False, default=dict)

    # Null = role default from app.referral.config
    commission_rate = Column(Numeric(8, 6), nullable=True)

    # Ledger
    total_revenue = Column(MONEY, nullable=False, default=Decimal("0"))
    available_balance = Column(MONEY, nullable=False, default=Decimal("0"))
    total_discount_given = Column(MONEY, nullable=False, default=Decimal("0"))
    total_redemptions = Column(Integer, nullable=False, default=0)

    code_id = Column(String, nullable=True, index=True)

    # Payee account at the funds-transfer processor
    payout_account_id = Column(String, nullable=True, index=True)
    onboarding_url = Column(String, nullable=True)
    payee_status = Column(JSONType, nullable=False, default=dict)

    approved_since = Column(DateTime(timezone=True), nullable=True)
    last_redemption_at = Column(DateTime(timezone=True), nullable=True)
    last_payout_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.business_name or self.role.capitalize()
