"""
Permit fee calculation.

subtotal = base + seats x per-seat rate + MTOW kg x per-kg rate
total    = subtotal x application type multiplier

The breakdown always has base, seat and weight lines. A multiplier other
than 1 adds a surcharge or discount line for the difference.
"""

from decimal import Decimal

from core.exceptions import FeeValidationError
from core.fee_policy import DefaultPermitFeePolicy, PermitFeePolicy
from core.models.catalog import ApplicationType
from core.models.fees import PermitFeeBreakdown, PermitFeeLine
from core.models.money import to_decimal

_ADJUSTMENT_LABELS = {
    ApplicationType.BLANKET: "Blanket Permit Surcharge",
    ApplicationType.EMERGENCY: "Emergency Discount",
}


def _adjustment_label(application_type: ApplicationType, multiplier: Decimal) -> str:
    label = _ADJUSTMENT_LABELS.get(application_type)
    if label is None:
        label = "Surcharge" if multiplier > 1 else "Discount"
    return f"{label} ({multiplier.normalize():f}×)"


class PermitFeeCalculator:
    """Pure permit fee calculation. Safe to share across threads."""

    def __init__(self, policy: PermitFeePolicy | None = None):
        self.policy = policy or DefaultPermitFeePolicy()

    def calculate(
        self,
        application_type: ApplicationType,
        seat_count: int,
        mtow_kg,
        policy: PermitFeePolicy | None = None,
    ) -> PermitFeeBreakdown:
        """
        Calculate the permit fee for one application.

        Args:
            application_type: Selects the multiplier
            seat_count: Passenger seats, >= 0
            mtow_kg: Maximum take-off weight in kilograms, >= 0
            policy: Overrides the calculator's policy for this call

        Raises:
            FeeValidationError: Negative seat count or MTOW
        """
        policy = policy or self.policy
        mtow_kg = to_decimal(mtow_kg)
        if seat_count < 0:
            raise FeeValidationError(f"Seat count cannot be negative: {seat_count}")
        if mtow_kg < 0:
            raise FeeValidationError(f"MTOW cannot be negative: {mtow_kg}")

        base_fee = policy.base_fee()
        per_seat = policy.per_seat_fee()
        per_kg = policy.per_kg_fee()

        seat_fee = per_seat * seat_count
        weight_fee = per_kg * mtow_kg
        subtotal = base_fee + seat_fee + weight_fee

        multiplier = policy.multiplier(application_type)
        total = subtotal * multiplier

        lines = [
            PermitFeeLine(description="Base Fee", amount=base_fee),
            PermitFeeLine(
                description=f"Seat Fee ({seat_count} seats × ${per_seat.amount:.2f})",
                amount=seat_fee,
            ),
            PermitFeeLine(
                description=f"Weight Fee ({mtow_kg:.0f} kg × ${per_kg.amount:.4f})",
                amount=weight_fee,
            ),
        ]

        if multiplier != 1:
            is_discount = multiplier < 1
            adjustment = subtotal - total if is_discount else total - subtotal
            lines.append(PermitFeeLine(
                description=_adjustment_label(application_type, multiplier),
                amount=adjustment,
                is_credit=is_discount,
            ))

        return PermitFeeBreakdown(
            application_type=application_type,
            base_fee=base_fee,
            seat_fee=seat_fee,
            weight_fee=weight_fee,
            subtotal=subtotal,
            multiplier=multiplier,
            total=total,
            lines=lines,
            policy_source=policy.policy_source,
        )
