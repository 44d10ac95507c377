from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from app.db.base import Base
from app.models.referrer import MONEY


class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    referrer_id = Column(String, nullable=False, index=True)
    payout_account_id = Column(String, nullable=False)
    amount = Column(MONEY, nullable=False)  # balance snapshot; settled amount once approved
    currency = Column(String, nullable=False, default="usd")
    status = Column(String, nullable=False, default="pending")  # pending / approved / cancelled
    transfer_id = Column(String, unique=True, nullable=True)
    amount_minor = Column(Integer, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    approved_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
