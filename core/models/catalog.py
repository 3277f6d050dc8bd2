"""Fee catalog: enumerations, rate records and permit fee configuration.

Rate records are looked up by (category, operation type, airport, MTOW tier,
effective date). Storage lives outside the domain; see
core.services.rate_catalog.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from core.exceptions import FeeValidationError
from core.models.money import Currency, Money
from core.models.mtow import MtowTier


class Airport(str, Enum):
    """Airports operated by the airport authority."""

    TUPJ = "TUPJ"  # Terrance B. Lettsome, Beef Island
    TUPW = "TUPW"  # Virgin Gorda
    TUPY = "TUPY"  # Auguste George, Anegada


class OperationType(str, Enum):
    """Flight operation type."""

    LOCAL_SCHEDULED = "local_scheduled"
    GENERAL_AVIATION = "general_aviation"
    CHARTER = "charter"
    INTERISLAND = "interisland"
    EMERGENCY = "emergency"
    MILITARY = "military"
    GOVERNMENT = "government"

    @property
    def is_landing_exempt(self) -> bool:
        return self in _LANDING_EXEMPT

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


_LANDING_EXEMPT = frozenset({
    OperationType.EMERGENCY,
    OperationType.MILITARY,
    OperationType.GOVERNMENT,
})


class ApplicationType(str, Enum):
    """Foreign operator permit application type."""

    ONE_TIME = "one_time"
    BLANKET = "blanket"
    EMERGENCY = "emergency"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class FeeCategory(str, Enum):
    """Billable fee category. PERMIT covers permit authority charges on an invoice."""

    PERMIT = "permit"
    LANDING = "landing"
    NAVIGATION = "navigation"
    AIRPORT_DEVELOPMENT = "airport_development"
    SECURITY = "security"
    HOLD_BAGGAGE_SCREENING = "hold_baggage_screening"
    PARKING = "parking"
    FIRE_UPGRADE = "fire_upgrade"
    FLIGHT_PLAN_FILING = "flight_plan_filing"
    FUEL_FLOW = "fuel_flow"
    LIGHTING = "lighting"
    LATE_PAYMENT_INTEREST = "late_payment_interest"
    EXTENDED_OPERATIONS = "extended_operations"

    @property
    def unit(self) -> str:
        """Default quantity unit for invoice lines of this category."""
        return CATEGORY_UNITS[self]


# Single source for per-category billing units. A rate record's own
# unit_description takes precedence (see FeeRate.unit).
CATEGORY_UNITS: dict[FeeCategory, str] = {
    FeeCategory.PERMIT: "permit",
    FeeCategory.LANDING: "landing",
    FeeCategory.NAVIGATION: "flight",
    FeeCategory.AIRPORT_DEVELOPMENT: "passengers",
    FeeCategory.SECURITY: "passengers",
    FeeCategory.HOLD_BAGGAGE_SCREENING: "passengers",
    FeeCategory.PARKING: "8-hour blocks",
    FeeCategory.FIRE_UPGRADE: "service",
    FeeCategory.FLIGHT_PLAN_FILING: "filing",
    FeeCategory.FUEL_FLOW: "gallons",
    FeeCategory.LIGHTING: "hours",
    FeeCategory.LATE_PAYMENT_INTEREST: "charge",
    FeeCategory.EXTENDED_OPERATIONS: "operation",
}


class FeeRate(BaseModel):
    """
    A configured airport rate, effective over a date range.

    None for operation_type, airport or mtow_tier means the record applies
    to any value of that dimension. Percentage-style rates (parking share,
    monthly interest) are stored unrounded in amount, e.g. 0.015 for 1.5%.
    """

    id: UUID = Field(default_factory=uuid4)
    category: FeeCategory
    operation_type: OperationType | None = None
    airport: Airport | None = None
    mtow_tier: MtowTier | None = None
    amount: Decimal = Field(..., ge=0)
    currency: Currency = Currency.USD
    is_per_unit: bool = False
    unit_description: str | None = Field(None, max_length=100)
    minimum_fee: Money | None = None
    effective_from: date
    effective_to: date | None = None
    is_active: bool = True
    description: str | None = Field(None, max_length=500)

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _check_dates(self) -> "FeeRate":
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to cannot be before effective_from")
        return self

    @property
    def rate(self) -> Money:
        return Money.of(self.amount, self.currency)

    @property
    def unit(self) -> str:
        return self.unit_description or self.category.unit

    def is_effective_on(self, on: date) -> bool:
        if not self.is_active or on < self.effective_from:
            return False
        return self.effective_to is None or on <= self.effective_to

    def deactivate(self, effective_to: date) -> None:
        """Stop applying this rate after `effective_to`."""
        if effective_to < self.effective_from:
            raise FeeValidationError("effective_to cannot be before effective_from")
        self.is_active = False
        self.effective_to = effective_to

    def reactivate(self) -> None:
        self.is_active = True
        self.effective_to = None


class PermitFeeConfiguration(BaseModel):
    """Tenant override of the permit fee schedule."""

    id: UUID = Field(default_factory=uuid4)
    base_fee: Money
    per_seat_fee: Money
    per_kg_fee: Money
    one_time_multiplier: Decimal = Field(Decimal("1.0"), gt=0)
    blanket_multiplier: Decimal = Field(Decimal("2.5"), gt=0)
    emergency_multiplier: Decimal = Field(Decimal("0.5"), gt=0)
    effective_from: date
    effective_to: date | None = None
    is_active: bool = True
    notes: str | None = Field(None, max_length=2000)

    model_config = {"from_attributes": True}

    def is_effective_on(self, on: date) -> bool:
        if not self.is_active or on < self.effective_from:
            return False
        return self.effective_to is None or on <= self.effective_to

    def multiplier_for(self, application_type: ApplicationType) -> Decimal:
        return {
            ApplicationType.ONE_TIME: self.one_time_multiplier,
            ApplicationType.BLANKET: self.blanket_multiplier,
            ApplicationType.EMERGENCY: self.emergency_multiplier,
        }[application_type]
