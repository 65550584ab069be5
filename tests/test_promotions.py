"""
Tests for promotion eligibility and discount computation.
"""

from datetime import date, time
from decimal import Decimal

import pendulum
import pytest

from spabooking.domain.exceptions import PromotionIneligibleError
from spabooking.domain.models import (
    Appointment,
    AppointmentStatus,
    Audience,
    AudienceKind,
    Cart,
    CartItem,
    ClientProfile,
    DiscountType,
    Promotion,
    Redemption,
)
from spabooking.domain.promotions import IneligibilityReason, PromotionEligibilityEvaluator

TODAY = date(2030, 1, 5)
CLIENT = ClientProfile(id="user-1", name="Linh", birthday=date(1990, 5, 5))


def _promotion(**overrides) -> Promotion:
    values = dict(
        id="promo-1",
        code="SAVE10",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("10"),
        expiry_date=date(2030, 12, 31),
    )
    values.update(overrides)
    return Promotion(**values)


def _cart(*items) -> Cart:
    return Cart(items=[CartItem(service_id, Decimal(price), quantity) for service_id, price, quantity in items])


def _redemption(promotion_id="promo-1", user_id="user-1", appointment_id="appt-9", audience=None, at="2030-01-02T10:00:00"):
    return Redemption(
        id=f"r-{promotion_id}-{appointment_id}",
        user_id=user_id,
        promotion_id=promotion_id,
        redeemed_at=pendulum.parse(at),
        appointment_id=appointment_id,
        promotion_audience=audience,
    )


def _evaluate(promotion, cart=None, client=CLIENT, redemptions=(), today=TODAY, appointments=(), booking_date=None):
    return PromotionEligibilityEvaluator().evaluate(
        client=client,
        cart=cart if cart is not None else _cart(("svc-facial", "1000000", 1)),
        promotion=promotion,
        redemptions=redemptions,
        today=today,
        appointments=appointments,
        booking_date=booking_date,
    )


class TestBasicChecks:
    """Activity, expiry, stock, minimum order and services."""

    def test_applicable_percentage_promotion(self):
        result = _evaluate(_promotion())

        assert result.applicable
        assert result.discount_amount == Decimal("100000.00")
        assert result.reason is None

    def test_below_minimum_order(self):
        """A 400,000 cart does not reach a 500,000 minimum order value."""
        promotion = _promotion(min_order_value=Decimal("500000"))

        result = _evaluate(promotion, cart=_cart(("svc-facial", "400000", 1)))

        assert not result.applicable
        assert result.reason is IneligibilityReason.BELOW_MIN_ORDER
        assert result.discount_amount == Decimal("0")

    def test_inactive_promotion(self):
        result = _evaluate(_promotion(is_active=False))

        assert result.reason is IneligibilityReason.INACTIVE

    def test_expiry_is_inclusive(self):
        """A promotion is still valid on its expiry date."""
        assert _evaluate(_promotion(expiry_date=TODAY)).applicable

        result = _evaluate(_promotion(expiry_date=date(2030, 1, 4)))
        assert result.reason is IneligibilityReason.EXPIRED

    def test_public_promotion_out_of_stock(self):
        result = _evaluate(_promotion(stock=0))

        assert result.reason is IneligibilityReason.OUT_OF_STOCK

    def test_unlimited_stock(self):
        assert _evaluate(_promotion(stock=None)).applicable

    def test_service_not_applicable(self):
        promotion = _promotion(applicable_service_ids=frozenset({"svc-massage"}))

        result = _evaluate(promotion)

        assert result.reason is IneligibilityReason.SERVICE_NOT_APPLICABLE

    def test_first_failing_check_is_reported(self):
        """Inactive wins over expired, which wins over the minimum order."""
        promotion = _promotion(
            is_active=False,
            expiry_date=date(2029, 1, 1),
            min_order_value=Decimal("99999999"),
        )
        assert _evaluate(promotion).reason is IneligibilityReason.INACTIVE

        promotion = _promotion(expiry_date=date(2029, 1, 1), min_order_value=Decimal("99999999"))
        assert _evaluate(promotion).reason is IneligibilityReason.EXPIRED

    def test_negative_result_converts_to_warning(self):
        result = _evaluate(_promotion(is_active=False))

        error = result.as_error("SAVE10")

        assert isinstance(error, PromotionIneligibleError)
        assert error.code == "SAVE10"
        assert error.reason == "inactive"

    def test_positive_result_does_not_convert(self):
        with pytest.raises(ValueError):
            _evaluate(_promotion()).as_error("SAVE10")


class TestDiscount:
    """Discount amounts."""

    def test_percentage_of_applicable_services_only(self):
        cart = _cart(("svc-facial", "450000", 1), ("svc-massage", "590000", 1))
        promotion = _promotion(applicable_service_ids=frozenset({"svc-facial"}))

        result = _evaluate(promotion, cart=cart)

        assert result.discount_amount == Decimal("45000.00")

    def test_course_quantity_counts_towards_subtotal(self):
        cart = _cart(("svc-facial", "450000", 6))

        result = _evaluate(_promotion(), cart=cart)

        assert result.discount_amount == Decimal("270000.00")

    def test_fixed_discount_is_capped_at_applicable_subtotal(self):
        promotion = _promotion(discount_type=DiscountType.FIXED, discount_value=Decimal("2000000"))

        result = _evaluate(promotion, cart=_cart(("svc-facial", "450000", 1)))

        assert result.discount_amount == Decimal("450000.00")

    def test_rounds_half_up_to_cents(self):
        cart = _cart(("svc-facial", "1234.55", 1))

        discount = PromotionEligibilityEvaluator.compute_discount(cart, _promotion())

        assert discount == Decimal("123.46")


class TestAudienceRules:
    """Birthday, new client, tier and one-time use."""

    def test_birthday_promotion_on_birthday(self):
        promotion = _promotion(audience=Audience(AudienceKind.BIRTHDAY))

        assert _evaluate(promotion, today=date(2030, 5, 5)).applicable

    def test_birthday_promotion_on_other_day(self):
        promotion = _promotion(audience=Audience(AudienceKind.BIRTHDAY))

        result = _evaluate(promotion, today=date(2030, 5, 6))

        assert result.reason is IneligibilityReason.NOT_BIRTHDAY

    def test_birthday_promotion_once_per_year(self):
        """Any birthday promotion redeemed this year blocks another one."""
        promotion = _promotion(audience=Audience(AudienceKind.BIRTHDAY))
        used = _redemption(promotion_id="promo-old-bday", audience=Audience(AudienceKind.BIRTHDAY), at="2030-01-01T09:00:00")

        result = _evaluate(promotion, today=date(2030, 5, 5), redemptions=[used])

        assert result.reason is IneligibilityReason.BIRTHDAY_ALREADY_USED

    def test_birthday_redemption_last_year_does_not_count(self):
        promotion = _promotion(audience=Audience(AudienceKind.BIRTHDAY))
        used = _redemption(audience=Audience(AudienceKind.BIRTHDAY), at="2029-05-05T09:00:00")

        assert _evaluate(promotion, today=date(2030, 5, 5), redemptions=[used]).applicable

    def test_new_client_with_prior_appointment(self):
        promotion = _promotion(audience=Audience(AudienceKind.NEW_CLIENTS))
        prior = Appointment(
            id="appt-1",
            service_id="svc-facial",
            user_id="user-1",
            date=date(2029, 12, 1),
            time=time(10, 0),
            duration_minutes=60,
            status=AppointmentStatus.COMPLETED,
        )

        result = _evaluate(promotion, appointments=[prior], booking_date=date(2030, 1, 7))

        assert result.reason is IneligibilityReason.NOT_NEW_CLIENT

    def test_new_client_with_only_cancelled_appointments(self):
        promotion = _promotion(audience=Audience(AudienceKind.NEW_CLIENTS))
        cancelled = Appointment(
            id="appt-1",
            service_id="svc-facial",
            user_id="user-1",
            date=date(2029, 12, 1),
            time=time(10, 0),
            duration_minutes=60,
            status=AppointmentStatus.CANCELLED,
        )

        assert _evaluate(promotion, appointments=[cancelled], booking_date=date(2030, 1, 7)).applicable

    def test_new_client_promotion_used_before(self):
        promotion = _promotion(audience=Audience(AudienceKind.NEW_CLIENTS))
        used = _redemption(promotion_id="promo-welcome", audience=Audience(AudienceKind.NEW_CLIENTS))

        result = _evaluate(promotion, redemptions=[used])

        assert result.reason is IneligibilityReason.NOT_NEW_CLIENT

    def test_promotion_already_redeemed(self):
        result = _evaluate(_promotion(), redemptions=[_redemption()])

        assert result.reason is IneligibilityReason.ALREADY_REDEEMED

    def test_other_users_redemptions_are_ignored(self):
        result = _evaluate(_promotion(), redemptions=[_redemption(user_id="user-2")])

        assert result.applicable

    def test_tier_too_low(self):
        """12.5M spent is Bronze (1); Tier Level 2 needs Silver."""
        client = ClientProfile(id="user-1", total_spent=Decimal("12500000"))
        promotion = _promotion(audience=Audience.parse("Tier Level 2"))

        result = _evaluate(promotion, client=client)

        assert result.reason is IneligibilityReason.TIER_TOO_LOW

    def test_tier_reached(self):
        client = ClientProfile(id="user-1", total_spent=Decimal("32000000"))
        promotion = _promotion(audience=Audience.parse("Tier Level 2"))

        assert _evaluate(promotion, client=client).applicable

    def test_vip_means_top_tier(self):
        client = ClientProfile(id="user-1", total_spent=Decimal("32000000"))
        promotion = _promotion(audience=Audience.parse("VIP"))

        assert _evaluate(promotion, client=client).reason is IneligibilityReason.TIER_TOO_LOW


class TestPointsVouchers:
    """Private vouchers bought with loyalty points."""

    def _voucher(self):
        return _promotion(
            id="promo-points",
            code="POINTS100K",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("100000"),
            is_public=False,
            points_required=1000,
            stock=0,
        )

    def test_voucher_needs_reserved_redemption(self):
        result = _evaluate(self._voucher())

        assert result.reason is IneligibilityReason.NOT_REDEEMED_WITH_POINTS

    def test_reserved_redemption_is_returned(self):
        """Private vouchers ignore stock; the reserved instance is handed back."""
        reserved = _redemption(promotion_id="promo-points", appointment_id=None)

        result = _evaluate(self._voucher(), redemptions=[reserved])

        assert result.applicable
        assert result.discount_amount == Decimal("100000.00")
        assert result.reserved_redemption == reserved

    def test_second_bought_voucher_is_usable(self):
        """Using one bought instance does not block another one."""
        used = _redemption(promotion_id="promo-points", appointment_id="appt-1", at="2029-12-01T10:00:00")
        reserved = _redemption(promotion_id="promo-points", appointment_id=None, at="2029-12-20T10:00:00")

        result = _evaluate(self._voucher(), redemptions=[used, reserved])

        assert result.applicable
        assert result.reserved_redemption == reserved

    def test_all_bought_vouchers_used(self):
        used = _redemption(promotion_id="promo-points", appointment_id="appt-1")

        result = _evaluate(self._voucher(), redemptions=[used])

        assert result.reason is IneligibilityReason.NOT_REDEEMED_WITH_POINTS
