"""
Promotion and voucher eligibility at booking time.

Checks run in a fixed order and stop at the first failure, so the reason
reported for an ineligible promotion is always the same for the same inputs.
"""

import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .exceptions import PromotionIneligibleError
from .models import (
    Appointment,
    AudienceKind,
    Cart,
    ClientProfile,
    DiscountType,
    Promotion,
    Redemption,
)


CENT = Decimal("0.01")


class IneligibilityReason(str, Enum):
    UNKNOWN_CODE = "unknown_code"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    OUT_OF_STOCK = "out_of_stock"
    BELOW_MIN_ORDER = "below_min_order"
    SERVICE_NOT_APPLICABLE = "service_not_applicable"
    BIRTHDAY_ALREADY_USED = "birthday_already_used"
    NOT_BIRTHDAY = "not_birthday"
    NOT_NEW_CLIENT = "not_new_client"
    ALREADY_REDEEMED = "already_redeemed"
    TIER_TOO_LOW = "tier_too_low"
    NOT_REDEEMED_WITH_POINTS = "not_redeemed_with_points"


@dataclass(frozen=True)
class EligibilityResult:
    applicable: bool
    discount_amount: Decimal = Decimal("0")
    reason: Optional[IneligibilityReason] = None
    message: str = ""
    reserved_redemption: Optional[Redemption] = None

    @classmethod
    def rejected(cls, reason: IneligibilityReason, message: str) -> "EligibilityResult":
        return cls(applicable=False, reason=reason, message=message)

    def as_error(self, code: str) -> PromotionIneligibleError:
        """Wrap a negative result as the non-fatal warning surfaced to callers."""
        if self.applicable or self.reason is None:
            raise ValueError("Only ineligible results convert to errors")
        return PromotionIneligibleError(code, self.reason.value, self.message)


@dataclass
class _Context:
    client: ClientProfile
    cart: Cart
    promotion: Promotion
    redemptions: List[Redemption]
    appointments: List[Appointment]
    today: dt.date
    booking_date: dt.date


Check = Callable[[_Context], Optional[EligibilityResult]]


class PromotionEligibilityEvaluator:
    """
    Decides whether a promotion applies to a cart and computes the discount.

    Order of checks:
    1. active flag
    2. expiry date (inclusive, date only)
    3. stock of public vouchers
    4. minimum order value against the whole cart
    5. applicable services
    6. audience one-time-use rules (birthday, new client, per promotion, tier)
    7. reserved instance for vouchers bought with points
    """

    def __init__(self):
        self._checks: List[Check] = [
            self._check_active,
            self._check_expiry,
            self._check_stock,
            self._check_min_order,
            self._check_services,
            self._check_audience,
            self._check_points_redemption,
        ]

    def evaluate(
        self,
        client: ClientProfile,
        cart: Cart,
        promotion: Promotion,
        redemptions: Iterable[Redemption],
        today: dt.date,
        appointments: Iterable[Appointment] = (),
        booking_date: Optional[dt.date] = None,
    ) -> EligibilityResult:
        """
        Evaluate a promotion for one booking.

        Args:
            client: The booking client
            cart: Selected services with their prices
            promotion: Candidate promotion or voucher
            redemptions: The client's redemption history (any promotion)
            today: Current calendar day
            appointments: The client's existing appointments (new-client rule)
            booking_date: Day of the booking; defaults to ``today``

        Returns:
            EligibilityResult with the discount when applicable
        """
        context = _Context(
            client=client,
            cart=cart,
            promotion=promotion,
            redemptions=[r for r in redemptions if r.user_id == client.id],
            appointments=list(appointments),
            today=today,
            booking_date=booking_date or today,
        )

        for check in self._checks:
            failure = check(context)
            if failure is not None:
                return failure

        return EligibilityResult(
            applicable=True,
            discount_amount=self.compute_discount(cart, promotion),
            reserved_redemption=self._reserved_redemption(context),
        )

    @staticmethod
    def compute_discount(cart: Cart, promotion: Promotion) -> Decimal:
        """
        Discount on the applicable part of the cart.

        Never negative and never more than the applicable subtotal.
        """
        applicable_subtotal = cart.subtotal_for(promotion.applicable_service_ids)

        if promotion.discount_type is DiscountType.PERCENTAGE:
            discount = applicable_subtotal * promotion.discount_value / Decimal("100")
        else:
            discount = promotion.discount_value

        discount = max(Decimal("0"), min(discount, applicable_subtotal))
        return discount.quantize(CENT, rounding=ROUND_HALF_UP)

    @staticmethod
    def _check_active(ctx: _Context) -> Optional[EligibilityResult]:
        if not ctx.promotion.is_active:
            return EligibilityResult.rejected(
                IneligibilityReason.INACTIVE,
                f"Promotion {ctx.promotion.code} is no longer active",
            )
        return None

    @staticmethod
    def _check_expiry(ctx: _Context) -> Optional[EligibilityResult]:
        if ctx.today > ctx.promotion.expiry_date:
            return EligibilityResult.rejected(
                IneligibilityReason.EXPIRED,
                f"Promotion {ctx.promotion.code} expired on {ctx.promotion.expiry_date.isoformat()}",
            )
        return None

    @staticmethod
    def _check_stock(ctx: _Context) -> Optional[EligibilityResult]:
        promotion = ctx.promotion
        if promotion.is_public and promotion.stock is not None and promotion.stock <= 0:
            return EligibilityResult.rejected(
                IneligibilityReason.OUT_OF_STOCK,
                f"Promotion {promotion.code} has no uses left",
            )
        return None

    @staticmethod
    def _check_min_order(ctx: _Context) -> Optional[EligibilityResult]:
        minimum = ctx.promotion.min_order_value or Decimal("0")
        if ctx.cart.subtotal < minimum:
            return EligibilityResult.rejected(
                IneligibilityReason.BELOW_MIN_ORDER,
                f"Order total {ctx.cart.subtotal} is below the minimum order value {minimum}",
            )
        return None

    @staticmethod
    def _check_services(ctx: _Context) -> Optional[EligibilityResult]:
        applicable = ctx.promotion.applicable_service_ids
        if applicable and not any(sid in applicable for sid in ctx.cart.service_ids):
            return EligibilityResult.rejected(
                IneligibilityReason.SERVICE_NOT_APPLICABLE,
                f"Promotion {ctx.promotion.code} does not apply to the selected services",
            )
        return None

    def _check_audience(self, ctx: _Context) -> Optional[EligibilityResult]:
        kind = ctx.promotion.audience.kind

        if kind is AudienceKind.BIRTHDAY:
            return self._check_birthday(ctx)
        if kind is AudienceKind.NEW_CLIENTS:
            return self._check_new_client(ctx)

        # Points vouchers are limited per bought instance, see _check_points_redemption
        already_used = not ctx.promotion.is_redeemed_with_points and any(
            r.promotion_id == ctx.promotion.id and r.is_consumed
            for r in ctx.redemptions
        )
        if already_used:
            return EligibilityResult.rejected(
                IneligibilityReason.ALREADY_REDEEMED,
                f"Promotion {ctx.promotion.code} has already been used",
            )

        if kind is AudienceKind.TIER and ctx.client.tier_level < ctx.promotion.audience.level:
            return EligibilityResult.rejected(
                IneligibilityReason.TIER_TOO_LOW,
                f"Promotion {ctx.promotion.code} requires tier level {ctx.promotion.audience.level}",
            )
        return None

    @staticmethod
    def _check_birthday(ctx: _Context) -> Optional[EligibilityResult]:
        used_this_year = any(
            r.promotion_audience is not None
            and r.promotion_audience.kind is AudienceKind.BIRTHDAY
            and r.redeemed_at.year == ctx.today.year
            for r in ctx.redemptions
        )
        if used_this_year:
            return EligibilityResult.rejected(
                IneligibilityReason.BIRTHDAY_ALREADY_USED,
                "A birthday promotion has already been used this year",
            )

        if not ctx.client.has_birthday_on(ctx.today):
            return EligibilityResult.rejected(
                IneligibilityReason.NOT_BIRTHDAY,
                "Birthday promotions are only valid on the client's birthday",
            )
        return None

    @staticmethod
    def _check_new_client(ctx: _Context) -> Optional[EligibilityResult]:
        has_prior_booking = any(
            not a.is_cancelled and a.date <= ctx.booking_date
            for a in ctx.appointments
        )
        used_new_client_promo = any(
            r.promotion_audience is not None
            and r.promotion_audience.kind is AudienceKind.NEW_CLIENTS
            for r in ctx.redemptions
        )
        if has_prior_booking or used_new_client_promo:
            return EligibilityResult.rejected(
                IneligibilityReason.NOT_NEW_CLIENT,
                f"Promotion {ctx.promotion.code} is only for new clients",
            )
        return None

    def _check_points_redemption(self, ctx: _Context) -> Optional[EligibilityResult]:
        if ctx.promotion.is_redeemed_with_points and self._reserved_redemption(ctx) is None:
            return EligibilityResult.rejected(
                IneligibilityReason.NOT_REDEEMED_WITH_POINTS,
                f"Voucher {ctx.promotion.code} must be redeemed with points first",
            )
        return None

    @staticmethod
    def _reserved_redemption(ctx: _Context) -> Optional[Redemption]:
        """Oldest reserved-but-unused redemption of this promotion, if any."""
        reserved = [
            r for r in ctx.redemptions
            if r.promotion_id == ctx.promotion.id and not r.is_consumed
        ]
        if not reserved:
            return None
        return min(reserved, key=lambda r: r.redeemed_at)
