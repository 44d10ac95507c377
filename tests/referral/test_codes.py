"""Tests for CodeRegistry: generation, activation window, validation, deletion."""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from app.models.code import ReferralCode
from app.models.redemption import Redemption
from app.models.referrer import Referrer
from app.referral.applications import ApplicationService
from app.referral.codes import CodeRegistry
from app.referral.errors import (
    CodeExpired,
    CodeHasHistory,
    CodeInUse,
    CodeNotActive,
    CodeNotFound,
    CodeNotYetValid,
    DuplicateCode,
    GenerationExhausted,
    InvalidRequest,
    UsageLimitReached,
)
from app.utils.clock import as_utc, utcnow


class TestGenerate:
    def test_generated_code_has_role_prefix_and_key_suffix(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner", key="user-abcd")
        db.commit()

        assert code.code.startswith("PRMABCD")
        assert code.status == "pending"
        assert code.valid_from is None and code.valid_to is None
        assert code.times_used == 0
        assert code.usage_limit == 100

    def test_ambassador_prefix(self, db):
        code = CodeRegistry(db).generate("ref-2", "ambassador", key="xyz9")
        assert code.code.startswith("AMBXYZ9")

    def test_preferred_code_taken(self, db):
        registry = CodeRegistry(db)
        registry.generate("ref-1", "partner", preferred_code="SUMMER")
        db.commit()

        with pytest.raises(DuplicateCode):
            registry.generate("ref-2", "partner", preferred_code="SUMMER")

    def test_collision_retries_then_succeeds(self, db):
        registry = CodeRegistry(db)
        registry.generate("ref-1", "partner", preferred_code="PRM00011")
        db.commit()

        with patch("app.referral.codes.secrets.randbelow", side_effect=[1, 1, 7]):
            code = registry.generate("ref-2", "partner", key="0001")

        assert code.code == "PRM00017"

    def test_generation_exhausted(self, db):
        registry = CodeRegistry(db)
        registry.generate("ref-1", "partner", preferred_code="PRM00011")
        db.commit()

        with patch("app.referral.codes.secrets.randbelow", return_value=1):
            with pytest.raises(GenerationExhausted):
                registry.generate("ref-2", "partner", key="0001")

    def test_attempt_bound_comes_from_settings(self, db):
        registry = CodeRegistry(db)
        registry.generate("ref-1", "partner", preferred_code="PRM00011")
        db.commit()

        with patch("app.referral.codes.get_generation_attempts", return_value=2):
            with patch("app.referral.codes.secrets.randbelow", side_effect=[1, 1, 5]) as rnd:
                with pytest.raises(GenerationExhausted):
                    registry.generate("ref-2", "partner", key="0001")
        assert rnd.call_count == 2

    def test_codes_are_unique(self, db):
        registry = CodeRegistry(db)
        codes = {registry.generate(f"ref-{i}", "partner", key="same").code for i in range(20)}
        db.commit()

        assert len(codes) == 20
        assert db.query(ReferralCode).count() == 20

    def test_rejects_discount_rate_out_of_range(self, db):
        with pytest.raises(InvalidRequest):
            CodeRegistry(db).generate("ref-1", "partner", discount_rate=Decimal("1.5"))


class TestActivate:
    def test_activate_sets_window(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        now = utcnow()

        registry.activate(code.id, now=now)

        assert code.status == "active"
        assert as_utc(code.valid_from) == now
        assert as_utc(code.valid_to) == now + timedelta(days=100)

    def test_reactivation_keeps_unexpired_window(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        first = utcnow()
        registry.activate(code.id, now=first)
        db.commit()
        window = (as_utc(code.valid_from), as_utc(code.valid_to))

        registry.deactivate(code.id)
        registry.activate(code.id, now=first + timedelta(days=10))
        db.commit()

        assert code.status == "active"
        assert (as_utc(code.valid_from), as_utc(code.valid_to)) == window

    def test_reactivation_after_expiry_gets_new_window(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        first = utcnow() - timedelta(days=150)
        registry.activate(code.id, now=first)
        db.commit()

        later = utcnow()
        registry.activate(code.id, now=later)

        assert as_utc(code.valid_from) == later
        assert as_utc(code.valid_to) == later + timedelta(days=100)

    def test_last_instant_of_window_is_still_valid(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        registry.activate(code.id)
        db.commit()
        window = (as_utc(code.valid_from), as_utc(code.valid_to))
        end = window[1]

        assert registry.validate(code.code, at_time=end).code.id == code.id
        assert CodeRegistry.is_expired(code, end) is False

        registry.activate(code.id, now=end)

        assert (as_utc(code.valid_from), as_utc(code.valid_to)) == window

    def test_deactivate_keeps_window(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        registry.activate(code.id)
        valid_to = code.valid_to

        registry.deactivate(code.id)

        assert code.status == "inactive"
        assert code.valid_to == valid_to

    def test_activate_unknown_code(self, db):
        with pytest.raises(CodeNotFound):
            CodeRegistry(db).activate("missing")


class TestValidate:
    def _active(self, db, **kwargs):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner", discount_rate=Decimal("0.2"), **kwargs)
        registry.activate(code.id)
        db.commit()
        return registry, code

    def test_valid_code_returns_discount(self, db):
        registry, code = self._active(db)

        result = registry.validate(code.code)

        assert result.code.id == code.id
        assert result.discount_rate == Decimal("0.2")

    def test_not_found(self, db):
        with pytest.raises(CodeNotFound):
            CodeRegistry(db).validate("NOPE")

    def test_pending_code_is_not_active(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        db.commit()

        with pytest.raises(CodeNotActive):
            registry.validate(code.code)

    def test_not_yet_valid(self, db):
        registry, code = self._active(db)

        with pytest.raises(CodeNotYetValid):
            registry.validate(code.code, at_time=as_utc(code.valid_from) - timedelta(seconds=1))

    def test_expired(self, db):
        registry, code = self._active(db)

        with pytest.raises(CodeExpired):
            registry.validate(code.code, at_time=as_utc(code.valid_to) + timedelta(seconds=1))

    def test_usage_limit_reached(self, db):
        registry, code = self._active(db, usage_limit=2)
        code.times_used = 2
        db.commit()

        with pytest.raises(UsageLimitReached):
            registry.validate(code.code)

    def test_null_usage_limit_is_unlimited(self, db):
        registry, code = self._active(db, usage_limit=None)
        code.times_used = 10_000
        db.commit()

        assert registry.validate(code.code).code.id == code.id


class TestConsume:
    def test_consume_stops_at_limit(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner", usage_limit=2)
        db.commit()

        assert registry.consume(code.id) is True
        assert registry.consume(code.id) is True
        assert registry.consume(code.id) is False
        db.commit()
        db.refresh(code)
        assert code.times_used == 2


class TestDelete:
    def test_delete_without_history(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        db.commit()

        registry.delete(code.id)
        db.commit()

        assert db.query(ReferralCode).count() == 0

    def test_delete_with_history_refused(self, db):
        registry = CodeRegistry(db)
        code = registry.generate("ref-1", "partner")
        db.add(
            Redemption(
                user_id="u1",
                code=code.code,
                code_id=code.id,
                referrer_id="ref-1",
                original_amount=Decimal("10"),
                discount_rate=Decimal("0"),
                discount_amount=Decimal("0"),
                final_amount=Decimal("10"),
                commission_rate=Decimal("0.3"),
                referrer_revenue=Decimal("3"),
                platform_revenue=Decimal("7"),
            )
        )
        db.commit()

        with pytest.raises(CodeHasHistory):
            registry.delete(code.id)
        assert db.query(ReferralCode).count() == 1

    def test_delete_current_code_refused(self, db, make_referrer, notifier):
        referrer = make_referrer(approve=False)
        registry = CodeRegistry(db)

        with pytest.raises(CodeInUse):
            registry.delete(referrer.code_id)
        db.rollback()

        result = ApplicationService(db, notifier).update_status(referrer.id, "approved")

        assert result.code is not None
        assert result.code.id == referrer.code_id
        assert result.code.status == "active"
        assert db.query(Referrer).filter(Referrer.id == referrer.id).one().code_id == referrer.code_id

    def test_delete_retired_code(self, db, make_referrer, notifier):
        referrer = make_referrer()
        service = ApplicationService(db, notifier)
        service.update_status(referrer.id, "declined")
        old = db.query(ReferralCode).filter(ReferralCode.id == referrer.code_id).one()
        old.valid_to = utcnow() - timedelta(days=1)
        db.commit()
        reopened = service.submit_application(referrer.user_id, "partner")

        CodeRegistry(db).delete(old.id)
        db.commit()

        assert db.query(ReferralCode).filter(ReferralCode.id == old.id).one_or_none() is None
        assert db.query(ReferralCode).filter(ReferralCode.id == reopened.code_id).count() == 1


def test_list_codes_filters_by_referrer(db):
    registry = CodeRegistry(db)
    registry.generate("ref-1", "partner")
    registry.generate("ref-2", "ambassador")
    db.commit()

    assert [c.referrer_id for c in registry.list_codes(referrer_id="ref-2")] == ["ref-2"]
    assert len(registry.list_codes()) == 2
