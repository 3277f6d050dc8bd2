"""
Late payment interest.

Simple interest, prorated linearly over 30-day months after a 30-day grace
period:

    interest = principal x monthly rate x (days overdue - 30) / 30

No compounding. Rounded to cents.
"""

from decimal import Decimal

from core.exceptions import FeeValidationError
from core.fee_policy import AirportFeePolicy, DefaultAirportFeePolicy
from core.models.money import Money, to_decimal

GRACE_PERIOD_DAYS = 30
DAYS_PER_MONTH = 30


def calculate_interest(principal: Money, days_overdue: int, monthly_rate) -> Money:
    """
    Interest owed on `principal` after `days_overdue` days.

    Raises:
        FeeValidationError: Negative days or negative rate
    """
    monthly_rate = to_decimal(monthly_rate)
    if days_overdue < 0:
        raise FeeValidationError(f"Days overdue cannot be negative: {days_overdue}")
    if monthly_rate < 0:
        raise FeeValidationError(f"Interest rate cannot be negative: {monthly_rate}")
    if days_overdue <= GRACE_PERIOD_DAYS:
        return Money.zero(principal.currency)

    months = Decimal(days_overdue - GRACE_PERIOD_DAYS) / DAYS_PER_MONTH
    return principal * (monthly_rate * months)


class InterestCalculator:
    """Interest at the late payment rate of an airport fee policy."""

    def __init__(self, policy: AirportFeePolicy | None = None):
        self.policy = policy or DefaultAirportFeePolicy()

    def calculate(
        self, principal: Money, days_overdue: int, policy: AirportFeePolicy | None = None
    ) -> Money:
        policy = policy or self.policy
        return calculate_interest(principal, days_overdue, policy.late_payment_monthly_rate())
