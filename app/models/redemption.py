"""
Redemption: immutable tracking entry for one use of a code.
(user_id, code) is unique: a user redeems a given code at most once.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Numeric, String, UniqueConstraint

from app.db.base import Base
from app.models.referrer import MONEY


class Redemption(Base):
    __tablename__ = "redemptions"
    __table_args__ = (UniqueConstraint("user_id", "code", name="uq_redemptions_user_code"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    code = Column(String, nullable=False, index=True)
    code_id = Column(String, nullable=False, index=True)
    referrer_id = Column(String, nullable=False, index=True)
    redeemed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    original_amount = Column(MONEY, nullable=False)
    discount_rate = Column(Numeric(8, 6), nullable=False)
    discount_amount = Column(MONEY, nullable=False)
    final_amount = Column(MONEY, nullable=False)
    commission_rate = Column(Numeric(8, 6), nullable=False)
    referrer_revenue = Column(MONEY, nullable=False)
    platform_revenue = Column(MONEY, nullable=False)
