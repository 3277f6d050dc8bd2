"""
Airport operational fee calculation.

Produces an itemized breakdown in a fixed order:

1. Landing (always present; zero for exempt operation types)
2. Navigation/communication (always present)
3. CAT-VI fire upgrade, if requested
4. Parking, if parking hours > 0
5. Airport development, security and hold baggage screening, per passenger
6. Extended operations, if the window is out of hours and a band matches
7. Lighting, if the window needs it
8. Flight plan filing, if requested
9. Fuel flow, if gallons > 0

The total is the sum of the lines, each already rounded to cents.
"""

import logging
from datetime import time
from decimal import Decimal, ROUND_CEILING

from core.exceptions import FeeValidationError
from core.fee_policy import AirportFeePolicy, DefaultAirportFeePolicy
from core.models.catalog import Airport, FeeCategory, OperationType
from core.models.fees import AirportFeeBreakdown, AirportFeeLine, AirportFeeRequest
from core.models.money import Money, to_decimal
from core.models.mtow import MtowTier

logger = logging.getLogger(__name__)

PARKING_BLOCK_HOURS = 8


def _ceil(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_CEILING)


def _validated_mtow(mtow_lbs) -> Decimal:
    mtow_lbs = to_decimal(mtow_lbs)
    if mtow_lbs < 0:
        raise FeeValidationError(f"MTOW cannot be negative: {mtow_lbs}")
    return mtow_lbs


class AirportFeeCalculator:
    """
    Pure airport fee calculation. Safe to share across threads.

    The policy passed to the constructor is used unless a call supplies its
    own (e.g. a tenant's configured policy resolved per request).
    """

    def __init__(self, policy: AirportFeePolicy | None = None):
        self.policy = policy or DefaultAirportFeePolicy()

    def calculate(
        self, request: AirportFeeRequest, policy: AirportFeePolicy | None = None
    ) -> AirportFeeBreakdown:
        """
        Calculate all airport charges for one flight.

        Raises:
            FeeValidationError: Negative MTOW
        """
        policy = policy or self.policy
        tier = MtowTier.from_pounds(request.mtow_lbs)
        airport = request.airport
        lines: list[AirportFeeLine] = []

        def add(category: FeeCategory, description: str, amount: Money) -> None:
            lines.append(AirportFeeLine(category=category, description=description, amount=amount))

        landing_fee = self.landing_fee(request.mtow_lbs, request.operation_type, airport, policy)
        add(
            FeeCategory.LANDING,
            f"Landing Fee ({tier.label}, {request.operation_type.label})",
            landing_fee,
        )

        navigation_fee = self.navigation_fee(request.mtow_lbs, airport, policy)
        add(FeeCategory.NAVIGATION, f"Navigation/Communication Fee ({tier.label})", navigation_fee)

        if request.requires_fire_upgrade:
            add(FeeCategory.FIRE_UPGRADE, "CAT-VI Fire Upgrade", policy.fire_upgrade_fee(airport))

        if request.parking_hours > 0:
            blocks = self.parking_blocks(request.parking_hours)
            add(
                FeeCategory.PARKING,
                f"Parking/Ramp Fee ({blocks} × 8-hour blocks)",
                self.parking_fee(landing_fee, request.parking_hours, airport, policy),
            )

        pax = request.passenger_count
        if pax > 0:
            development = policy.airport_development_fee(airport, request.is_interisland)
            security = policy.security_charge(airport)
            add(
                FeeCategory.AIRPORT_DEVELOPMENT,
                f"Airport Development Fee ({pax} pax × ${development.amount:.2f})",
                development * pax,
            )
            add(
                FeeCategory.SECURITY,
                f"Security Charge ({pax} pax × ${security.amount:.2f})",
                security * pax,
            )
            if request.is_departing:
                screening = policy.hold_baggage_screening_fee(airport)
                add(
                    FeeCategory.HOLD_BAGGAGE_SCREENING,
                    f"Hold Baggage Screening ({pax} pax × ${screening.amount:.2f})",
                    screening * pax,
                )

        window = request.operating_window
        if window is not None and window.requires_extended_operations:
            extended = self.extended_operations_fee(window.arrival, airport, policy)
            if not extended.is_zero:
                add(FeeCategory.EXTENDED_OPERATIONS, "Extended/Early Operations Fee", extended)

        if window is not None and window.requires_lighting:
            add(
                FeeCategory.LIGHTING,
                f"Lighting Fee ({window.lighting_hours} hours)",
                self.lighting_fee(window.lighting_hours, airport, policy),
            )

        if request.include_flight_plan_filing:
            add(FeeCategory.FLIGHT_PLAN_FILING, "Flight Plan Filing Fee", policy.flight_plan_filing_fee(airport))

        if request.fuel_gallons > 0:
            rate = policy.fuel_flow_rate(airport)
            add(
                FeeCategory.FUEL_FLOW,
                f"Fuel Flow Fee ({request.fuel_gallons:,.0f} gallons × ${rate.amount:.2f})",
                rate * request.fuel_gallons,
            )

        total = Money.total((line.amount for line in lines), landing_fee.currency)

        logger.debug(
            "Airport fees for %s %s at %s: %s (%d lines, %s)",
            tier.value, request.operation_type.value, airport.value,
            total, len(lines), policy.policy_source,
        )

        return AirportFeeBreakdown(
            total=total,
            landing_fee=landing_fee,
            navigation_fee=navigation_fee,
            mtow_tier=tier,
            lines=lines,
            policy_source=policy.policy_source,
        )

    # -------------------------------------------------------------------------
    # Individual charges
    # -------------------------------------------------------------------------

    def landing_fee(
        self,
        mtow_lbs,
        operation_type: OperationType,
        airport: Airport | None = None,
        policy: AirportFeePolicy | None = None,
    ) -> Money:
        """Rate per 1,000 lbs or part thereof, floored at the minimum. Exempt types pay nothing."""
        policy = policy or self.policy
        mtow_lbs = _validated_mtow(mtow_lbs)
        if operation_type.is_landing_exempt:
            return Money.zero()

        tier = MtowTier.from_pounds(mtow_lbs)
        rate = policy.landing_rate(operation_type, tier, airport)
        calculated = rate * _ceil(mtow_lbs / 1000)
        minimum = policy.minimum_landing_fee(operation_type, airport)
        return max(calculated, minimum)

    def navigation_fee(
        self, mtow_lbs, airport: Airport | None = None, policy: AirportFeePolicy | None = None
    ) -> Money:
        policy = policy or self.policy
        tier = MtowTier.from_pounds(_validated_mtow(mtow_lbs))
        return policy.navigation_fee(tier, airport)

    @staticmethod
    def parking_blocks(parking_hours) -> int:
        hours = to_decimal(parking_hours)
        if hours <= 0:
            return 0
        return int(_ceil(hours / PARKING_BLOCK_HOURS))

    def parking_fee(
        self,
        landing_fee: Money,
        parking_hours,
        airport: Airport | None = None,
        policy: AirportFeePolicy | None = None,
    ) -> Money:
        """Landing fee x parking percentage, per started 8-hour block."""
        policy = policy or self.policy
        blocks = self.parking_blocks(parking_hours)
        if blocks == 0:
            return Money.zero(landing_fee.currency)
        per_block = landing_fee * policy.parking_percentage(airport)
        return per_block * blocks

    def passenger_fees(
        self,
        passenger_count: int,
        airport: Airport,
        is_departing: bool = True,
        is_interisland: bool = False,
        policy: AirportFeePolicy | None = None,
    ) -> Money:
        """Combined per-passenger charges. Baggage screening applies to departures only."""
        policy = policy or self.policy
        if passenger_count <= 0:
            return Money.zero()
        per_passenger = (
            policy.airport_development_fee(airport, is_interisland)
            + policy.security_charge(airport)
        )
        if is_departing:
            per_passenger = per_passenger + policy.hold_baggage_screening_fee(airport)
        return per_passenger * passenger_count

    def extended_operations_fee(
        self, arrival: time, airport: Airport | None = None, policy: AirportFeePolicy | None = None
    ) -> Money:
        policy = policy or self.policy
        return policy.extended_operations_fee(arrival.hour, airport)

    def lighting_fee(
        self, lighting_hours: int, airport: Airport | None = None, policy: AirportFeePolicy | None = None
    ) -> Money:
        policy = policy or self.policy
        if lighting_hours <= 0:
            return Money.zero()
        return policy.lighting_rate(airport) * lighting_hours
