"""Tests for BalanceLedger and the payout state machine."""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from app.models.audit_log import AuditLog
from app.models.payout import PayoutRequest
from app.models.referrer import Referrer
from app.referral.errors import (
    AccountMismatch,
    NoBalance,
    NotPending,
    ReferrerNotFound,
    RequestNotFound,
    TransferFailed,
)
from app.referral.ledger import BalanceLedger
from app.referral.payouts import PayoutService
from app.services.transfers.base import TransferResult, TransferServiceError


def _fresh(db, referrer_id) -> Referrer:
    db.expire_all()
    return db.query(Referrer).filter(Referrer.id == referrer_id).one()


def _transfer_client(transfer_id="tr_123"):
    client = MagicMock()
    client.transfer.side_effect = lambda **kw: TransferResult(
        id=transfer_id,
        amount_minor=kw["amount_minor"],
        currency=kw["currency"],
        destination=kw["account_id"],
    )
    return client


def _claims(granted=True):
    claims = MagicMock()
    claims.check_and_set.return_value = granted
    return claims


@pytest.fixture
def funded(db, make_referrer):
    """Approved partner with a payee account and a 150.456 balance."""

    def _make(balance="150.456"):
        referrer = make_referrer()
        referrer.payout_account_id = "acct_1"
        db.commit()
        BalanceLedger(db).credit(referrer.id, Decimal(balance))
        db.commit()
        return _fresh(db, referrer.id)

    return _make


class TestLedger:
    def test_credit_is_additive(self, db, make_referrer):
        referrer = make_referrer()
        ledger = BalanceLedger(db)

        ledger.credit(referrer.id, Decimal("10.5"), discount_amount=Decimal("2"))
        ledger.credit(referrer.id, Decimal("4.25"))
        db.commit()

        fresh = _fresh(db, referrer.id)
        assert fresh.total_revenue == Decimal("14.75")
        assert fresh.available_balance == Decimal("14.75")
        assert fresh.total_discount_given == Decimal("2")
        assert fresh.total_redemptions == 2

    def test_settle_keeps_later_credit(self, db, make_referrer):
        referrer = make_referrer()
        ledger = BalanceLedger(db)
        ledger.credit(referrer.id, Decimal("30"))
        ledger.credit(referrer.id, Decimal("5"))
        ledger.settle(referrer.id, Decimal("30"))
        db.commit()

        fresh = _fresh(db, referrer.id)
        assert fresh.available_balance == Decimal("5")
        assert fresh.total_revenue == Decimal("35")
        assert fresh.last_payout_at is not None

    def test_credit_unknown_referrer(self, db):
        with pytest.raises(ReferrerNotFound):
            BalanceLedger(db).credit("missing", Decimal("1"))


class TestRequest:
    def test_request_snapshots_balance(self, db, funded):
        referrer = funded()
        service = PayoutService(db, _transfer_client(), _claims())

        req = service.request(referrer.id, "acct_1")

        assert req.status == "pending"
        assert req.amount == Decimal("150.456")
        assert req.currency == "usd"

    def test_account_mismatch(self, db, funded):
        referrer = funded()

        with pytest.raises(AccountMismatch):
            PayoutService(db, _transfer_client(), _claims()).request(referrer.id, "acct_other")

    def test_no_balance(self, db, make_referrer):
        referrer = make_referrer()
        referrer.payout_account_id = "acct_1"
        db.commit()

        with pytest.raises(NoBalance):
            PayoutService(db, _transfer_client(), _claims()).request(referrer.id, "acct_1")

    def test_unknown_referrer(self, db):
        with pytest.raises(ReferrerNotFound):
            PayoutService(db, _transfer_client(), _claims()).request("missing", "acct_1")


class TestApprove:
    def test_approve_rounds_half_up_and_zeroes_balance(self, db, funded):
        referrer = funded("150.456")
        client = _transfer_client("tr_abc")
        service = PayoutService(db, client, _claims())
        req = service.request(referrer.id, "acct_1")

        result = service.approve(req.id, actor_id="admin-1")

        client.transfer.assert_called_once()
        kwargs = client.transfer.call_args.kwargs
        assert kwargs["amount_minor"] == 15046
        assert kwargs["account_id"] == "acct_1"
        assert kwargs["currency"] == "usd"
        assert kwargs["idempotency_key"] == f"payout-{req.id}"
        assert result.transfer_id == "tr_abc"
        assert result.amount_minor == 15046
        assert result.status == "approved"

        fresh = _fresh(db, referrer.id)
        assert fresh.available_balance == Decimal("0")
        assert fresh.total_revenue == Decimal("150.456")

        stored = db.query(PayoutRequest).filter(PayoutRequest.id == req.id).one()
        assert stored.status == "approved"
        assert stored.transfer_id == "tr_abc"
        assert stored.amount_minor == 15046
        assert stored.approved_at is not None
        assert db.query(AuditLog).filter(AuditLog.action == "payout_approved").count() == 1

    def test_approve_twice(self, db, funded):
        referrer = funded()
        client = _transfer_client()
        service = PayoutService(db, client, _claims())
        req = service.request(referrer.id, "acct_1")
        service.approve(req.id)

        with pytest.raises(NotPending):
            service.approve(req.id)

        assert client.transfer.call_count == 1
        assert _fresh(db, referrer.id).available_balance == Decimal("0")

    def test_approve_uses_current_balance(self, db, funded):
        referrer = funded("10")
        client = _transfer_client()
        service = PayoutService(db, client, _claims())
        req = service.request(referrer.id, "acct_1")
        BalanceLedger(db).credit(referrer.id, Decimal("2.5"))
        db.commit()

        result = service.approve(req.id)

        assert result.amount == Decimal("12.5")
        assert client.transfer.call_args.kwargs["amount_minor"] == 1250

    def test_transfer_failure_leaves_request_pending(self, db, funded):
        referrer = funded()
        client = MagicMock()
        client.transfer.side_effect = TransferServiceError("card_declined")
        claims = _claims()
        service = PayoutService(db, client, claims)
        req = service.request(referrer.id, "acct_1")

        with pytest.raises(TransferFailed):
            service.approve(req.id)

        db.expire_all()
        stored = db.query(PayoutRequest).filter(PayoutRequest.id == req.id).one()
        assert stored.status == "pending"
        assert stored.transfer_id is None
        assert _fresh(db, referrer.id).available_balance == Decimal("150.456")
        claims.release.assert_called_once_with(f"payout_approve:{req.id}")

    def test_concurrent_approval_is_rejected(self, db, funded):
        referrer = funded()
        client = _transfer_client()
        service = PayoutService(db, client, _claims(granted=False))
        req = service.request(referrer.id, "acct_1")

        with pytest.raises(NotPending):
            service.approve(req.id)
        client.transfer.assert_not_called()

    def test_claim_granted_after_another_worker_approved(self, db, funded, session_factory):
        referrer = funded("10")
        client = _transfer_client()
        other = session_factory()
        service = PayoutService(db, client, MagicMock())
        req = service.request(referrer.id, "acct_1")

        def _approved_elsewhere(key, ttl):
            # the other worker finishes and a new credit lands before our claim
            PayoutService(other, client, _claims()).approve(req.id)
            BalanceLedger(other).credit(referrer.id, Decimal("5"))
            other.commit()
            return True

        service.claims.check_and_set.side_effect = _approved_elsewhere

        try:
            with pytest.raises(NotPending):
                service.approve(req.id)
        finally:
            other.close()

        assert client.transfer.call_count == 1
        assert client.transfer.call_args.kwargs["amount_minor"] == 1000
        assert _fresh(db, referrer.id).available_balance == Decimal("5")
        service.claims.release.assert_called_once_with(f"payout_approve:{req.id}")

    def test_balance_drained_since_request(self, db, funded):
        referrer = funded("20")
        client = _transfer_client()
        service = PayoutService(db, client, _claims())
        req = service.request(referrer.id, "acct_1")
        BalanceLedger(db).settle(referrer.id, Decimal("20"))
        db.commit()

        with pytest.raises(NoBalance):
            service.approve(req.id)
        client.transfer.assert_not_called()

    def test_unknown_request(self, db):
        with pytest.raises(RequestNotFound):
            PayoutService(db, _transfer_client(), _claims()).approve("missing")


class TestCancel:
    def test_cancel_keeps_balance(self, db, funded):
        referrer = funded("40")
        service = PayoutService(db, _transfer_client(), _claims())
        req = service.request(referrer.id, "acct_1")

        cancelled = service.cancel(req.id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert _fresh(db, referrer.id).available_balance == Decimal("40")

    def test_cannot_approve_cancelled(self, db, funded):
        referrer = funded()
        client = _transfer_client()
        service = PayoutService(db, client, _claims())
        req = service.request(referrer.id, "acct_1")
        service.cancel(req.id)

        with pytest.raises(NotPending):
            service.approve(req.id)
        with pytest.raises(NotPending):
            service.cancel(req.id)
        client.transfer.assert_not_called()

    def test_list_requests_by_status(self, db, funded):
        referrer = funded()
        service = PayoutService(db, _transfer_client(), _claims())
        first = service.request(referrer.id, "acct_1")
        service.cancel(first.id)
        service.request(referrer.id, "acct_1")

        assert len(service.list_requests(referrer_id=referrer.id)) == 2
        assert [r.status for r in service.list_requests(status="pending")] == ["pending"]
