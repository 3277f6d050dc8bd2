"""
Fee policies: where fee amounts come from.

Two independent families, each with a fixed default schedule and a
configured variant backed by tenant rate records:

- PermitFeePolicy: base fee, per-seat and per-kg rates, application type
  multiplier.
- AirportFeePolicy: landing, navigation, passenger, parking, lighting and the
  other airport operational rates.

Configured policies fall back to the default for anything they have no
effective record for. When several records match, rate_precedence decides.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable

from core.models.catalog import (
    Airport,
    ApplicationType,
    FeeCategory,
    FeeRate,
    OperationType,
    PermitFeeConfiguration,
)
from core.models.money import Money
from core.models.mtow import MtowTier

logger = logging.getLogger(__name__)


class ExtendedOperationsBand(str, Enum):
    """Out-of-hours band, selected by scheduled arrival hour."""

    EARLY = "early"            # 04:00-06:00
    LATE = "late"              # 22:00-24:00
    VERY_LATE = "very_late"    # 00:00-02:00

    @classmethod
    def for_hour(cls, hour: int) -> "ExtendedOperationsBand | None":
        if 4 <= hour < 6:
            return cls.EARLY
        if 22 <= hour < 24:
            return cls.LATE
        if 0 <= hour < 2:
            return cls.VERY_LATE
        return None


# =============================================================================
# INTERFACES
# =============================================================================


class PermitFeePolicy(ABC):
    """Source of permit fee amounts."""

    @property
    @abstractmethod
    def policy_source(self) -> str:
        """Human-readable origin of the amounts, recorded on every calculation."""

    @abstractmethod
    def base_fee(self) -> Money: ...

    @abstractmethod
    def per_seat_fee(self) -> Money: ...

    @abstractmethod
    def per_kg_fee(self) -> Money: ...

    @abstractmethod
    def multiplier(self, application_type: ApplicationType) -> Decimal: ...


class AirportFeePolicy(ABC):
    """Source of airport operational fee amounts."""

    @property
    @abstractmethod
    def policy_source(self) -> str: ...

    @abstractmethod
    def landing_rate(
        self, operation_type: OperationType, tier: MtowTier, airport: Airport | None = None
    ) -> Money:
        """Landing charge per 1,000 lbs (or part thereof)."""

    @abstractmethod
    def minimum_landing_fee(
        self, operation_type: OperationType, airport: Airport | None = None
    ) -> Money: ...

    @abstractmethod
    def navigation_fee(self, tier: MtowTier, airport: Airport | None = None) -> Money: ...

    @abstractmethod
    def airport_development_fee(self, airport: Airport, is_interisland: bool) -> Money:
        """Per-passenger development fee."""

    @abstractmethod
    def security_charge(self, airport: Airport | None = None) -> Money: ...

    @abstractmethod
    def hold_baggage_screening_fee(self, airport: Airport | None = None) -> Money: ...

    @abstractmethod
    def parking_percentage(self, airport: Airport | None = None) -> Decimal:
        """Share of the landing fee charged per 8-hour parking block."""

    @abstractmethod
    def fire_upgrade_fee(self, airport: Airport | None = None) -> Money: ...

    @abstractmethod
    def flight_plan_filing_fee(self, airport: Airport | None = None) -> Money: ...

    @abstractmethod
    def fuel_flow_rate(self, airport: Airport | None = None) -> Money:
        """Per gallon."""

    @abstractmethod
    def lighting_rate(self, airport: Airport | None = None) -> Money:
        """Per hour."""

    @abstractmethod
    def late_payment_monthly_rate(self) -> Decimal:
        """Monthly interest on overdue balances, e.g. 0.015 for 1.5%."""

    @abstractmethod
    def extended_operations_fee(self, arrival_hour: int, airport: Airport | None = None) -> Money:
        """Fee for the band containing `arrival_hour`, zero if none does."""


# =============================================================================
# DEFAULT SCHEDULES
# =============================================================================


class DefaultPermitFeePolicy(PermitFeePolicy):
    """Statutory permit fee schedule."""

    BASE_FEE = Money.usd("150.00")
    PER_SEAT_FEE = Money.usd("10.00")
    PER_KG_FEE = Money.usd("0.02")
    MULTIPLIERS = {
        ApplicationType.ONE_TIME: Decimal("1.0"),
        ApplicationType.BLANKET: Decimal("2.5"),
        ApplicationType.EMERGENCY: Decimal("0.5"),
    }

    @property
    def policy_source(self) -> str:
        return "Default Policy"

    def base_fee(self) -> Money:
        return self.BASE_FEE

    def per_seat_fee(self) -> Money:
        return self.PER_SEAT_FEE

    def per_kg_fee(self) -> Money:
        return self.PER_KG_FEE

    def multiplier(self, application_type: ApplicationType) -> Decimal:
        return self.MULTIPLIERS.get(application_type, Decimal("1.0"))


def _usd_table(values: dict) -> dict:
    return {key: Money.usd(value) for key, value in values.items()}


_SCHEDULED_LANDING = ("2.50", "3.00", "3.50", "5.00")
_GENERAL_LANDING = ("5.00", "10.00", "12.00", "15.00")


def _landing_rows(op: OperationType, amounts: tuple) -> dict:
    return {(op, tier): amount for tier, amount in zip(MtowTier, amounts)}


class DefaultAirportFeePolicy(AirportFeePolicy):
    """Published airport authority schedule (USD)."""

    LANDING_RATES = _usd_table({
        **_landing_rows(OperationType.LOCAL_SCHEDULED, _SCHEDULED_LANDING),
        **_landing_rows(OperationType.GENERAL_AVIATION, _GENERAL_LANDING),
        **_landing_rows(OperationType.CHARTER, _GENERAL_LANDING),
        **_landing_rows(OperationType.INTERISLAND, _SCHEDULED_LANDING),
    })
    MINIMUM_LANDING_FEES = _usd_table({
        OperationType.LOCAL_SCHEDULED: "15.00",
        OperationType.GENERAL_AVIATION: "20.00",
        OperationType.CHARTER: "20.00",
        OperationType.INTERISLAND: "10.00",
        OperationType.EMERGENCY: "0.00",
        OperationType.MILITARY: "0.00",
        OperationType.GOVERNMENT: "0.00",
    })
    DEFAULT_MINIMUM_LANDING_FEE = Money.usd("15.00")
    NAVIGATION_FEES = _usd_table({
        MtowTier.TIER_1: "5.00",
        MtowTier.TIER_2: "10.00",
        MtowTier.TIER_3: "15.00",
        MtowTier.TIER_4: "20.00",
    })
    AIRPORT_DEVELOPMENT_FEES = _usd_table({
        Airport.TUPJ: "15.00",
        Airport.TUPW: "10.00",
        Airport.TUPY: "10.00",
    })
    INTERISLAND_DEVELOPMENT_FEE = Money.usd("5.00")
    SECURITY_CHARGE = Money.usd("5.00")
    HOLD_BAGGAGE_SCREENING_FEE = Money.usd("7.00")
    PARKING_PERCENTAGE = Decimal("0.20")
    FIRE_UPGRADE_FEE = Money.usd("100.00")
    FLIGHT_PLAN_FILING_FEE = Money.usd("20.00")
    FUEL_FLOW_RATE = Money.usd("0.20")
    LIGHTING_RATE = Money.usd("35.00")
    LATE_PAYMENT_MONTHLY_RATE = Decimal("0.015")
    EXTENDED_OPERATIONS_FEES = _usd_table({
        ExtendedOperationsBand.EARLY: "975.00",
        ExtendedOperationsBand.LATE: "1650.00",
        ExtendedOperationsBand.VERY_LATE: "3225.00",
    })

    @property
    def policy_source(self) -> str:
        return "Default Policy"

    def landing_rate(self, operation_type, tier, airport=None) -> Money:
        rate = self.LANDING_RATES.get((operation_type, tier))
        if rate is None:
            rate = self.LANDING_RATES[(OperationType.GENERAL_AVIATION, tier)]
        return rate

    def minimum_landing_fee(self, operation_type, airport=None) -> Money:
        return self.MINIMUM_LANDING_FEES.get(operation_type, self.DEFAULT_MINIMUM_LANDING_FEE)

    def navigation_fee(self, tier, airport=None) -> Money:
        return self.NAVIGATION_FEES[tier]

    def airport_development_fee(self, airport, is_interisland) -> Money:
        if is_interisland:
            return self.INTERISLAND_DEVELOPMENT_FEE
        return self.AIRPORT_DEVELOPMENT_FEES.get(airport, Money.usd("10.00"))

    def security_charge(self, airport=None) -> Money:
        return self.SECURITY_CHARGE

    def hold_baggage_screening_fee(self, airport=None) -> Money:
        return self.HOLD_BAGGAGE_SCREENING_FEE

    def parking_percentage(self, airport=None) -> Decimal:
        return self.PARKING_PERCENTAGE

    def fire_upgrade_fee(self, airport=None) -> Money:
        return self.FIRE_UPGRADE_FEE

    def flight_plan_filing_fee(self, airport=None) -> Money:
        return self.FLIGHT_PLAN_FILING_FEE

    def fuel_flow_rate(self, airport=None) -> Money:
        return self.FUEL_FLOW_RATE

    def lighting_rate(self, airport=None) -> Money:
        return self.LIGHTING_RATE

    def late_payment_monthly_rate(self) -> Decimal:
        return self.LATE_PAYMENT_MONTHLY_RATE

    def extended_operations_fee(self, arrival_hour, airport=None) -> Money:
        band = ExtendedOperationsBand.for_hour(arrival_hour)
        if band is None:
            return Money.zero()
        return self.EXTENDED_OPERATIONS_FEES[band]


# =============================================================================
# RATE SELECTION
# =============================================================================


def rate_precedence(rate: FeeRate) -> tuple:
    """
    Sort key ranking rate records, highest first when sorted in reverse.

    Order: tier-specific over tier-agnostic, then airport-specific over
    general, then the latest effective_from. The id breaks any remaining tie
    so the winner never depends on input order.
    """
    return (
        rate.mtow_tier is not None,
        rate.airport is not None,
        rate.effective_from,
        str(rate.id),
    )


def matches(
    rate: FeeRate,
    category: FeeCategory,
    on: date,
    operation_type: OperationType | None = None,
    airport: Airport | None = None,
    tier: MtowTier | None = None,
) -> bool:
    """Whether `rate` is a candidate for the lookup, effective on `on`."""
    if rate.category != category:
        return False
    if operation_type is not None and rate.operation_type != operation_type:
        return False
    if airport is not None and rate.airport not in (None, airport):
        return False
    if tier is not None and rate.mtow_tier not in (None, tier):
        return False
    return rate.is_effective_on(on)


def select_rate(
    rates: Iterable[FeeRate],
    category: FeeCategory,
    on: date,
    operation_type: OperationType | None = None,
    airport: Airport | None = None,
    tier: MtowTier | None = None,
) -> FeeRate | None:
    """Best matching rate record, or None."""
    candidates = [
        r for r in rates
        if matches(r, category, on, operation_type=operation_type, airport=airport, tier=tier)
    ]
    if not candidates:
        return None
    return max(candidates, key=rate_precedence)


# =============================================================================
# CONFIGURED POLICIES
# =============================================================================


class ConfiguredPermitFeePolicy(PermitFeePolicy):
    """
    Permit fees from a tenant's fee configuration.

    A configuration that is missing or not effective on the date means the
    default schedule applies in full.
    """

    def __init__(
        self,
        configuration: PermitFeeConfiguration | None,
        effective_date: date,
        fallback: PermitFeePolicy | None = None,
    ):
        self._fallback = fallback or DefaultPermitFeePolicy()
        self._effective_date = effective_date
        if configuration is not None and not configuration.is_effective_on(effective_date):
            configuration = None
        self._configuration = configuration

    @property
    def policy_source(self) -> str:
        if self._configuration is None:
            return self._fallback.policy_source
        return (
            f"Configured Policy (configuration {self._configuration.id}, "
            f"effective {self._effective_date:%Y-%m-%d})"
        )

    def base_fee(self) -> Money:
        if self._configuration is None:
            return self._fallback.base_fee()
        return self._configuration.base_fee

    def per_seat_fee(self) -> Money:
        if self._configuration is None:
            return self._fallback.per_seat_fee()
        return self._configuration.per_seat_fee

    def per_kg_fee(self) -> Money:
        if self._configuration is None:
            return self._fallback.per_kg_fee()
        return self._configuration.per_kg_fee

    def multiplier(self, application_type: ApplicationType) -> Decimal:
        if self._configuration is None:
            return self._fallback.multiplier(application_type)
        return self._configuration.multiplier_for(application_type)


class ConfiguredAirportFeePolicy(AirportFeePolicy):
    """
    Airport fees from a tenant's rate records, effective on one date.

    Each lookup filters the records and picks the best match with
    rate_precedence. No match means the fallback policy answers.
    """

    def __init__(
        self,
        rates: Iterable[FeeRate],
        effective_date: date,
        fallback: AirportFeePolicy | None = None,
        tenant_id=None,
    ):
        self._rates = list(rates)
        self._effective_date = effective_date
        self._fallback = fallback or DefaultAirportFeePolicy()
        self._tenant_id = tenant_id

    @property
    def effective_date(self) -> date:
        return self._effective_date

    @property
    def policy_source(self) -> str:
        if not self._rates:
            return self._fallback.policy_source
        tenant = f"tenant {self._tenant_id}, " if self._tenant_id else ""
        return (
            f"Configured Policy ({tenant}effective {self._effective_date:%Y-%m-%d}, "
            f"{len(self._rates)} rates)"
        )

    def _find(self, category: FeeCategory, **criteria) -> FeeRate | None:
        rate = select_rate(self._rates, category, self._effective_date, **criteria)
        if rate is None:
            logger.debug("No configured %s rate for %s, using fallback", category.value, criteria)
        return rate

    def landing_rate(self, operation_type, tier, airport=None) -> Money:
        rate = self._find(FeeCategory.LANDING, operation_type=operation_type, airport=airport, tier=tier)
        if rate is None:
            return self._fallback.landing_rate(operation_type, tier, airport)
        return rate.rate

    def minimum_landing_fee(self, operation_type, airport=None) -> Money:
        rate = self._find(FeeCategory.LANDING, operation_type=operation_type, airport=airport)
        if rate is None or rate.minimum_fee is None:
            return self._fallback.minimum_landing_fee(operation_type, airport)
        return rate.minimum_fee

    def navigation_fee(self, tier, airport=None) -> Money:
        rate = self._find(FeeCategory.NAVIGATION, airport=airport, tier=tier)
        if rate is None:
            return self._fallback.navigation_fee(tier, airport)
        return rate.rate

    def airport_development_fee(self, airport, is_interisland) -> Money:
        if is_interisland:
            rate = self._find(
                FeeCategory.AIRPORT_DEVELOPMENT, operation_type=OperationType.INTERISLAND, airport=airport
            )
        else:
            # Interisland records never price other flights
            rate = select_rate(
                (r for r in self._rates if r.operation_type is None),
                FeeCategory.AIRPORT_DEVELOPMENT, self._effective_date, airport=airport,
            )
        if rate is None:
            return self._fallback.airport_development_fee(airport, is_interisland)
        return rate.rate

    def _flat(self, category: FeeCategory, airport: Airport | None) -> FeeRate | None:
        return self._find(category, airport=airport)

    def security_charge(self, airport=None) -> Money:
        rate = self._flat(FeeCategory.SECURITY, airport)
        return rate.rate if rate else self._fallback.security_charge(airport)

    def hold_baggage_screening_fee(self, airport=None) -> Money:
        rate = self._flat(FeeCategory.HOLD_BAGGAGE_SCREENING, airport)
        return rate.rate if rate else self._fallback.hold_baggage_screening_fee(airport)

    def parking_percentage(self, airport=None) -> Decimal:
        rate = self._flat(FeeCategory.PARKING, airport)
        return rate.amount if rate else self._fallback.parking_percentage(airport)

    def fire_upgrade_fee(self, airport=None) -> Money:
        rate = self._flat(FeeCategory.FIRE_UPGRADE, airport)
        return rate.rate if rate else self._fallback.fire_upgrade_fee(airport)

    def flight_plan_filing_fee(self, airport=None) -> Money:
        rate = self._flat(FeeCategory.FLIGHT_PLAN_FILING, airport)
        return rate.rate if rate else self._fallback.flight_plan_filing_fee(airport)

    def fuel_flow_rate(self, airport=None) -> Money:
        rate = self._flat(FeeCategory.FUEL_FLOW, airport)
        return rate.rate if rate else self._fallback.fuel_flow_rate(airport)

    def lighting_rate(self, airport=None) -> Money:
        rate = self._flat(FeeCategory.LIGHTING, airport)
        return rate.rate if rate else self._fallback.lighting_rate(airport)

    def late_payment_monthly_rate(self) -> Decimal:
        rate = self._flat(FeeCategory.LATE_PAYMENT_INTEREST, None)
        return rate.amount if rate else self._fallback.late_payment_monthly_rate()

    def extended_operations_fee(self, arrival_hour, airport=None) -> Money:
        # A single configured record prices every band; outside the bands
        # there is no fee whatever is configured.
        if ExtendedOperationsBand.for_hour(arrival_hour) is None:
            return Money.zero()
        rate = self._flat(FeeCategory.EXTENDED_OPERATIONS, airport)
        return rate.rate if rate else self._fallback.extended_operations_fee(arrival_hour, airport)
