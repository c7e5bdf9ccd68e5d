"""Tests for the coupon ledger."""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import order_payload
from storefront.core.errors import (
    ConflictError,
    CouponBelowMinimumOrder,
    CouponExpired,
    CouponInactive,
    CouponNotFound,
    CouponNotYetValid,
    CouponPerUserLimitReached,
    CouponRejection,
    CouponUsageConflict,
    CouponUsageLimitReached,
    NotFoundError,
    ValidationError,
)
from storefront.core.utils import now_utc
from storefront.db.models import Coupon, CouponRedemption
from storefront.schemas import CouponCreate, CouponUpdate
from storefront.services import coupons
from storefront.services.orders import create_order


def reload(session, coupon_id):
    return session.get(Coupon, coupon_id, populate_existing=True)


class TestChecks:
    def test_unknown_code(self, db):
        with pytest.raises(CouponNotFound) as exc:
            coupons.preview(db, "NOPE", 100)
        assert exc.value.reason is CouponRejection.NOT_FOUND
        assert exc.value.status_code == 404

    def test_code_is_case_insensitive(self, db, make_coupon):
        make_coupon("SAVE10")
        assert coupons.preview(db, "  save10 ", 100).code == "SAVE10"

    def test_inactive(self, db, make_coupon):
        make_coupon(is_active=False)
        with pytest.raises(CouponInactive):
            coupons.preview(db, "SAVE10", 100)

    def test_not_yet_valid(self, db, make_coupon):
        make_coupon(valid_from=now_utc() + timedelta(days=2))
        with pytest.raises(CouponNotYetValid):
            coupons.preview(db, "SAVE10", 100)

    def test_expired(self, db, make_coupon):
        make_coupon(valid_until=now_utc() - timedelta(minutes=1))
        with pytest.raises(CouponExpired):
            coupons.preview(db, "SAVE10", 100)

    def test_usage_limit_reached(self, db, make_coupon):
        make_coupon(usage_limit=5, used_count=5)
        with pytest.raises(CouponUsageLimitReached):
            coupons.preview(db, "SAVE10", 100)

    def test_below_minimum_order(self, db, make_coupon):
        make_coupon(min_order_amount=Decimal("500"))
        with pytest.raises(CouponBelowMinimumOrder) as exc:
            coupons.preview(db, "SAVE10", 499)
        assert exc.value.min_order_amount == Decimal("500")

    def test_checks_run_in_order(self, db, make_coupon):
        # inactive wins over expired and below-minimum
        make_coupon(is_active=False, valid_until=now_utc() - timedelta(days=1), min_order_amount=Decimal("1000"))
        with pytest.raises(CouponInactive):
            coupons.preview(db, "SAVE10", 10)

    def test_blank_code_and_bad_total(self, db):
        with pytest.raises(ValidationError):
            coupons.preview(db, "  ", 100)
        with pytest.raises(ValidationError):
            coupons.preview(db, "SAVE10", 0)


class TestDiscount:
    def test_percentage(self, db, make_coupon):
        make_coupon(discount_value=Decimal("15"))
        r = coupons.preview(db, "SAVE10", Decimal("199.99"))
        assert r.discount == Decimal("30.00")
        assert r.new_total == Decimal("169.99")

    def test_percentage_capped(self, db, make_coupon):
        make_coupon(max_discount=Decimal("20"))
        assert coupons.preview(db, "SAVE10", 300).discount == Decimal("20.00")

    def test_fixed_never_exceeds_cart_total(self, db, make_coupon):
        make_coupon("FLAT500", discount_type="fixed", discount_value=Decimal("500"))
        r = coupons.preview(db, "FLAT500", 120)
        assert r.discount == Decimal("120.00")
        assert r.new_total == Decimal("0.00")

    def test_preview_records_nothing(self, db, make_coupon):
        coupon = make_coupon()
        coupons.preview(db, "SAVE10", 100, user_id="u1")
        assert reload(db, coupon.id).used_count == 0
        assert db.query(CouponRedemption).count() == 0


class TestRedeem:
    def test_increments_usage(self, db, make_coupon):
        coupon = make_coupon()
        r = coupons.redeem(db, "save10", 100, user_id="u1")
        db.commit()
        assert r.discount == Decimal("10.00")
        assert reload(db, coupon.id).used_count == 1
        assert coupons.user_usage(db, coupon.id, "u1") == 1

    def test_per_user_limit(self, db, make_coupon):
        make_coupon(per_user_limit=1)
        coupons.redeem(db, "SAVE10", 100, user_id="u1")
        db.commit()
        with pytest.raises(CouponPerUserLimitReached):
            coupons.redeem(db, "SAVE10", 100, user_id="u1")
        # someone else can still use it
        coupons.redeem(db, "SAVE10", 100, user_id="u2")
        db.commit()

    def test_per_user_limit_above_one(self, db, make_coupon):
        coupon = make_coupon(per_user_limit=2)
        for _ in range(2):
            coupons.redeem(db, "SAVE10", 100, user_id="u1")
            db.commit()
        assert coupons.user_usage(db, coupon.id, "u1") == 2
        with pytest.raises(CouponPerUserLimitReached):
            coupons.redeem(db, "SAVE10", 100, user_id="u1")

    def test_anonymous_redemption_skips_per_user_tracking(self, db, make_coupon):
        coupon = make_coupon()
        coupons.redeem(db, "SAVE10", 100)
        coupons.redeem(db, "SAVE10", 100)
        db.commit()
        assert reload(db, coupon.id).used_count == 2
        assert db.query(CouponRedemption).count() == 0

    def test_usage_limit_caps_redemptions(self, db, make_coupon):
        coupon = make_coupon(usage_limit=2)
        coupons.redeem(db, "SAVE10", 100, user_id="u1")
        coupons.redeem(db, "SAVE10", 100, user_id="u2")
        db.commit()
        with pytest.raises(CouponUsageLimitReached):
            coupons.redeem(db, "SAVE10", 100, user_id="u3")
        db.rollback()
        assert reload(db, coupon.id).used_count == 2

    def test_failed_redemption_changes_nothing(self, db, make_coupon):
        coupon = make_coupon(min_order_amount=Decimal("1000"))
        with pytest.raises(CouponBelowMinimumOrder):
            coupons.redeem(db, "SAVE10", 100, user_id="u1")
        db.rollback()
        assert reload(db, coupon.id).used_count == 0

    def test_rollback_discards_redemption(self, db, make_coupon):
        coupon = make_coupon()
        coupons.redeem(db, "SAVE10", 100, user_id="u1")
        db.rollback()
        assert reload(db, coupon.id).used_count == 0
        assert coupons.user_usage(db, coupon.id, "u1") is None


class TestConcurrentRedemption:
    def test_stale_claim_matches_nothing(self, session_factory, make_coupon):
        coupon = make_coupon(usage_limit=5)
        first, second = session_factory(), session_factory()
        try:
            stale = coupons.find_coupon(first, "SAVE10")
            assert stale.used_count == 0

            coupons.redeem(second, "SAVE10", 100, user_id="u2")
            second.commit()

            assert coupons._claim(first, stale, "u1", None) is False
            first.rollback()
        finally:
            first.close()
            second.close()
        with session_factory() as check:
            assert reload(check, coupon.id).used_count == 1

    def test_lost_race_revalidates_against_fresh_state(self, db, session_factory, make_coupon, monkeypatch):
        coupon = make_coupon(usage_limit=1)
        real_evaluate = coupons._evaluate
        raced = []

        def evaluate_then_lose_race(session, *args, **kwargs):
            result = real_evaluate(session, *args, **kwargs)
            if not raced:
                raced.append(True)
                with session_factory() as other:
                    coupons.redeem(other, "SAVE10", 100, user_id="u2")
                    other.commit()
            return result

        monkeypatch.setattr(coupons, "_evaluate", evaluate_then_lose_race)
        with pytest.raises(CouponUsageLimitReached):
            coupons.redeem(db, "SAVE10", 100, user_id="u1")
        db.rollback()
        assert reload(db, coupon.id).used_count == 1

    def test_gives_up_after_repeated_conflicts(self, db, make_coupon, monkeypatch):
        coupon = make_coupon()
        attempts = []
        monkeypatch.setattr(coupons, "_claim", lambda *a: attempts.append(1) or False)
        with pytest.raises(CouponUsageConflict) as exc:
            coupons.redeem(db, "SAVE10", 100, user_id="u1", attempts=3)
        assert len(attempts) == 3
        assert exc.value.status_code == 409
        db.rollback()
        assert reload(db, coupon.id).used_count == 0


class TestAdministration:
    def _create(self, db, **overrides):
        fields = dict(
            code=" summer20 ",
            discount_type="percentage",
            discount_value=Decimal("20"),
            valid_until=now_utc() + timedelta(days=10),
        )
        fields.update(overrides)
        return coupons.create_coupon(db, CouponCreate(**fields))

    def test_create_canonicalizes_code(self, db):
        coupon = self._create(db)
        assert coupon.code == "SUMMER20"
        assert coupon.used_count == 0
        assert coupon.per_user_limit == 1
        assert coupon.max_discount is None

    def test_duplicate_code(self, db):
        self._create(db)
        with pytest.raises(ConflictError):
            self._create(db, code="SUMMER20")

    def test_invalid_terms(self, db):
        with pytest.raises(ValidationError):
            self._create(db, discount_type="bogus")
        with pytest.raises(ValidationError):
            self._create(db, discount_value=Decimal("120"))
        with pytest.raises(ValidationError):
            self._create(db, valid_from=now_utc() + timedelta(days=20))

    def test_list_active_filter(self, db, make_coupon):
        make_coupon("LIVE")
        make_coupon("OFF", is_active=False)
        make_coupon("OLD", valid_until=now_utc() - timedelta(days=1))
        assert {c.code for c in coupons.list_coupons(db, active=True)} == {"LIVE"}
        assert {c.code for c in coupons.list_coupons(db, active=False)} == {"OFF", "OLD"}
        assert len(coupons.list_coupons(db)) == 3

    def test_update(self, db, make_coupon):
        coupon = make_coupon()
        updated = coupons.update_coupon(db, coupon.id, CouponUpdate(discount_value=Decimal("25"), is_active=False))
        assert updated.discount_value == Decimal("25")
        assert updated.is_active is False
        assert updated.code == "SAVE10"

    def test_update_cannot_clear_required_fields(self, db, make_coupon):
        coupon = make_coupon()
        with pytest.raises(ValidationError):
            coupons.update_coupon(db, coupon.id, CouponUpdate(valid_until=None))

    def test_get_missing(self, db):
        with pytest.raises(NotFoundError):
            coupons.get_coupon(db, 999)

    def test_delete_unused(self, db, make_coupon):
        coupon = make_coupon()
        coupons.delete_coupon(db, coupon.id)
        assert db.get(Coupon, coupon.id) is None

    def test_delete_refused_when_referenced(self, db, make_coupon, catalog):
        coupon = make_coupon()
        create_order(db, order_payload(coupon_code="SAVE10"), "u1", catalog)
        with pytest.raises(ConflictError):
            coupons.delete_coupon(db, coupon.id)


class TestUpdateCaps:
    def test_zero_max_discount_removes_the_cap(self, db, make_coupon):
        coupon = make_coupon(max_discount=Decimal("5"))
        updated = coupons.update_coupon(db, coupon.id, CouponUpdate(max_discount=Decimal("0")))
        assert updated.max_discount is None
        assert coupons.preview(db, "SAVE10", 300).discount == Decimal("30.00")

    def test_zero_usage_limit_removes_the_cap(self, db, make_coupon):
        coupon = make_coupon(usage_limit=3, used_count=3)
        updated = coupons.update_coupon(db, coupon.id, CouponUpdate(usage_limit=0))
        assert updated.usage_limit is None
        assert coupons.preview(db, "SAVE10", 100).discount == Decimal("10.00")

    def test_zero_per_user_limit_falls_back_to_one(self, db, make_coupon):
        coupon = make_coupon(per_user_limit=3)
        assert coupons.update_coupon(db, coupon.id, CouponUpdate(per_user_limit=0)).per_user_limit == 1
