"""MTOW tier classification.

Four regulatory bands keyed on maximum take-off weight in pounds. Upper
bounds are inclusive: 12,500 lbs is Tier 1, 12,501 lbs is Tier 2.
"""

from decimal import Decimal
from enum import Enum

from core.exceptions import FeeValidationError
from core.models.money import KG_TO_LBS, Weight, to_decimal


class MtowTier(str, Enum):
    """MTOW band, ordered lightest to heaviest."""

    TIER_1 = "tier_1"
    TIER_2 = "tier_2"
    TIER_3 = "tier_3"
    TIER_4 = "tier_4"

    @classmethod
    def from_pounds(cls, pounds) -> "MtowTier":
        pounds = to_decimal(pounds)
        if pounds < 0:
            raise FeeValidationError(f"MTOW cannot be negative: {pounds}")
        for upper_bound, tier in _TIER_BOUNDS:
            if pounds <= upper_bound:
                return tier
        return cls.TIER_4

    @classmethod
    def from_kilograms(cls, kilograms) -> "MtowTier":
        kilograms = to_decimal(kilograms)
        if kilograms < 0:
            raise FeeValidationError(f"MTOW cannot be negative: {kilograms}")
        return cls.from_pounds(kilograms * KG_TO_LBS)

    @classmethod
    def from_weight(cls, weight: Weight) -> "MtowTier":
        return cls.from_pounds(weight.in_pounds)

    @property
    def upper_bound_lbs(self) -> Decimal | None:
        """Inclusive upper bound in pounds. None for the open-ended top tier."""
        for upper_bound, tier in _TIER_BOUNDS:
            if tier is self:
                return upper_bound
        return None

    @property
    def label(self) -> str:
        return f"Tier {self.value[-1]}"


_TIER_BOUNDS = (
    (Decimal("12500"), MtowTier.TIER_1),
    (Decimal("75000"), MtowTier.TIER_2),
    (Decimal("100000"), MtowTier.TIER_3),
)
