from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from app.db.base import Base


class ReferralCode(Base):
    """Promo code (partner) or referral code (ambassador)."""

    __tablename__ = "codes"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    code = Column(String, unique=True, nullable=False, index=True)
    referrer_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending / active / inactive
    discount_rate = Column(Numeric(8, 6), nullable=False, default=Decimal("0"))
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)
    times_used = Column(Integer, nullable=False, default=0)
    usage_limit = Column(Integer, nullable=True)  # null = unlimited
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
