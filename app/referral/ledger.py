"""
BalanceLedger: the only writer of referrer revenue and balance columns.

Every mutation is a single UPDATE ... SET col = col + :x so concurrent
redemptions against one referrer never lose an increment.
"""
import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.referrer import Referrer
from app.referral.errors import InvalidRequest, ReferrerNotFound
from app.utils.clock import utcnow
from app.utils.currency import to_decimal

logger = logging.getLogger(__name__)


class BalanceLedger:
    def __init__(self, db: Session):
        self.db = db

    def credit(
        self,
        referrer_id: str,
        amount,
        discount_amount=0,
        at: datetime | None = None,
    ) -> None:
        """Add redemption revenue to lifetime revenue and available balance."""
        amount = to_decimal(amount)
        discount_amount = to_decimal(discount_amount)
        if amount < 0 or discount_amount < 0:
            raise InvalidRequest("Ledger credit must be non-negative")
        result = self.db.execute(
            update(Referrer)
            .where(Referrer.id == referrer_id)
            .values(
                total_revenue=Referrer.total_revenue + amount,
                available_balance=Referrer.available_balance + amount,
                total_discount_given=Referrer.total_discount_given + discount_amount,
                total_redemptions=Referrer.total_redemptions + 1,
                last_redemption_at=at or utcnow(),
            )
        )
        self.db.flush()
        if result.rowcount == 0:
            raise ReferrerNotFound()
        logger.info("ledger_credited", extra={"referrer_id": referrer_id, "amount": str(amount)})

    def settle(self, referrer_id: str, amount, at: datetime | None = None) -> None:
        """
        Debit a settled payout. Subtracting the observed balance (rather than
        writing zero) keeps credits that landed after it was read.
        """
        amount = to_decimal(amount)
        if amount <= 0:
            raise InvalidRequest("Settlement amount must be positive")
        result = self.db.execute(
            update(Referrer)
            .where(Referrer.id == referrer_id)
            .values(
                available_balance=Referrer.available_balance - amount,
                last_payout_at=at or utcnow(),
            )
        )
        self.db.flush()
        if result.rowcount == 0:
            raise ReferrerNotFound()
        logger.info("ledger_settled", extra={"referrer_id": referrer_id, "amount": str(amount)})
