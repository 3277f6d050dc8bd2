"""Tests for catalog enums, FeeRate and PermitFeeConfiguration."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from core.exceptions import FeeValidationError
from core.models import (
    ApplicationType,
    FeeCategory,
    FeeRate,
    Money,
    OperationType,
    PermitFeeConfiguration,
)


class TestOperationType:

    @pytest.mark.parametrize("op", [
        OperationType.EMERGENCY, OperationType.MILITARY, OperationType.GOVERNMENT,
    ])
    def test_exempt_types(self, op):
        assert op.is_landing_exempt

    def test_commercial_types_not_exempt(self):
        assert not OperationType.CHARTER.is_landing_exempt

    def test_label(self):
        assert OperationType.GENERAL_AVIATION.label == "General Aviation"


class TestFeeCategoryUnits:

    def test_every_category_has_a_unit(self):
        for category in FeeCategory:
            assert category.unit

    def test_parking_unit(self):
        assert FeeCategory.PARKING.unit == "8-hour blocks"


class TestFeeRate:

    def _rate(self, **overrides) -> FeeRate:
        values = dict(
            category=FeeCategory.SECURITY,
            amount=Decimal("6.00"),
            effective_from=date(2026, 1, 1),
        )
        values.update(overrides)
        return FeeRate(**values)

    def test_effective_within_range(self):
        rate = self._rate(effective_to=date(2026, 12, 31))
        assert rate.is_effective_on(date(2026, 6, 1))
        assert rate.is_effective_on(date(2026, 12, 31))
        assert not rate.is_effective_on(date(2025, 12, 31))
        assert not rate.is_effective_on(date(2027, 1, 1))

    def test_open_ended(self):
        assert self._rate().is_effective_on(date(2099, 1, 1))

    def test_inactive_never_effective(self):
        assert not self._rate(is_active=False).is_effective_on(date(2026, 6, 1))

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            self._rate(effective_to=date(2025, 1, 1))

    def test_deactivate_and_reactivate(self):
        rate = self._rate()
        rate.deactivate(date(2026, 3, 31))
        assert not rate.is_active
        assert rate.effective_to == date(2026, 3, 31)

        rate.reactivate()
        assert rate.is_active
        assert rate.effective_to is None

    def test_deactivate_before_start_raises(self):
        with pytest.raises(FeeValidationError):
            self._rate().deactivate(date(2025, 6, 1))

    def test_percentage_amount_kept_unrounded(self):
        rate = self._rate(category=FeeCategory.LATE_PAYMENT_INTEREST, amount=Decimal("0.015"))
        assert rate.amount == Decimal("0.015")

    def test_rate_property_is_money(self):
        assert self._rate().rate == Money.usd("6.00")

    def test_unit_description_overrides_category_unit(self):
        assert self._rate().unit == "passengers"
        assert self._rate(unit_description="departing pax").unit == "departing pax"


class TestPermitFeeConfiguration:

    def _config(self, **overrides) -> PermitFeeConfiguration:
        values = dict(
            base_fee=Money.usd(200),
            per_seat_fee=Money.usd(12),
            per_kg_fee=Money.usd("0.03"),
            effective_from=date(2026, 1, 1),
        )
        values.update(overrides)
        return PermitFeeConfiguration(**values)

    def test_default_multipliers(self):
        config = self._config()
        assert config.multiplier_for(ApplicationType.ONE_TIME) == Decimal("1.0")
        assert config.multiplier_for(ApplicationType.BLANKET) == Decimal("2.5")
        assert config.multiplier_for(ApplicationType.EMERGENCY) == Decimal("0.5")

    def test_zero_multiplier_rejected(self):
        with pytest.raises(ValidationError):
            self._config(blanket_multiplier=Decimal("0"))

    def test_effective_on(self):
        config = self._config(effective_to=date(2026, 6, 30))
        assert config.is_effective_on(date(2026, 6, 30))
        assert not config.is_effective_on(date(2026, 7, 1))
