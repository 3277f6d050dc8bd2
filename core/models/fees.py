"""Fee calculation requests and breakdowns."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from core.models.catalog import Airport, ApplicationType, FeeCategory, OperationType
from core.models.money import Money
from core.models.mtow import MtowTier
from core.models.operating_window import OperatingWindow


# =============================================================================
# PERMIT FEES
# =============================================================================


class PermitFeeLine(BaseModel):
    """
    One line of a permit fee breakdown.

    Discount lines carry a positive amount with is_credit set, so the signed
    amounts of all lines sum to the total.
    """

    description: str
    amount: Money
    is_credit: bool = False

    model_config = {"frozen": True}

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount.amount if self.is_credit else self.amount.amount


class PermitFeeBreakdown(BaseModel):
    """Result of a permit fee calculation."""

    application_type: ApplicationType
    base_fee: Money
    seat_fee: Money
    weight_fee: Money
    subtotal: Money
    multiplier: Decimal
    total: Money
    lines: list[PermitFeeLine]
    policy_source: str

    model_config = {"frozen": True}

    @property
    def adjustment(self) -> PermitFeeLine | None:
        """Surcharge or discount line, present only when multiplier != 1."""
        if self.multiplier == 1:
            return None
        return self.lines[-1]


# =============================================================================
# AIRPORT FEES
# =============================================================================


class AirportFeeRequest(BaseModel):
    """Everything the airport fee calculation needs about one flight."""

    mtow_lbs: Decimal = Field(..., ge=0)
    operation_type: OperationType
    airport: Airport
    passenger_count: int = Field(0, ge=0)
    parking_hours: Decimal = Field(Decimal("0"), ge=0)
    operating_window: OperatingWindow | None = None
    requires_fire_upgrade: bool = False
    include_flight_plan_filing: bool = False
    fuel_gallons: Decimal = Field(Decimal("0"), ge=0)
    is_interisland: bool = False
    is_departing: bool = True

    model_config = {"frozen": True}


class AirportFeeLine(BaseModel):
    category: FeeCategory
    description: str
    amount: Money

    model_config = {"frozen": True}


class AirportFeeBreakdown(BaseModel):
    """Itemized airport charges. total is the sum of lines."""

    total: Money
    landing_fee: Money
    navigation_fee: Money
    mtow_tier: MtowTier
    lines: list[AirportFeeLine]
    policy_source: str

    model_config = {"frozen": True}

    def amount_for(self, category: FeeCategory) -> Money:
        """Total of lines in `category`, zero if there are none."""
        return Money.total(
            (line.amount for line in self.lines if line.category == category),
            self.total.currency,
        )


# =============================================================================
# UNIFIED QUOTE
# =============================================================================


class FeeSource(str, Enum):
    """Authority that levies a fee."""

    PERMIT_AUTHORITY = "permit_authority"
    AIRPORT_AUTHORITY = "airport_authority"


class UnifiedFeeRequest(BaseModel):
    """One flight under one permit application."""

    application_type: ApplicationType
    operation_type: OperationType
    airport: Airport | None = None
    seat_count: int = Field(..., ge=0)
    mtow_kg: Decimal = Field(..., ge=0)
    passenger_count: int = Field(0, ge=0)
    parking_hours: Decimal = Field(Decimal("0"), ge=0)
    operating_window: OperatingWindow | None = None
    requires_fire_upgrade: bool = False
    include_flight_plan_filing: bool = False
    fuel_gallons: Decimal = Field(Decimal("0"), ge=0)
    is_interisland: bool = False
    is_departing: bool = True

    model_config = {"frozen": True}


class UnifiedFeeLine(BaseModel):
    source: FeeSource
    category: FeeCategory
    description: str
    amount: Money
    is_credit: bool = False

    model_config = {"frozen": True}


class UnifiedFeeBreakdown(BaseModel):
    """Permit and airport fees for one context, merged into one tagged list."""

    permit_fees: PermitFeeBreakdown
    airport_fees: AirportFeeBreakdown
    grand_total: Money
    lines: list[UnifiedFeeLine]

    model_config = {"frozen": True}

    @property
    def permit_total(self) -> Money:
        return self.permit_fees.total

    @property
    def airport_total(self) -> Money:
        return self.airport_fees.total


class PermitIssuanceEligibility(BaseModel):
    """Whether an operator may be issued a new permit."""

    is_eligible: bool
    outstanding_debt: Money
    overdue_invoice_count: int
    block_reasons: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}
