"""
Revenue engine: one quote covering both fee authorities.

Runs the permit fee and airport fee calculations for the same flight and
merges them into a single tagged breakdown. Also owns the permit issuance
gate: an operator with any overdue airport debt is not eligible.
"""

import logging

from core.exceptions import FeeValidationError
from core.fee_policy import AirportFeePolicy, PermitFeePolicy
from core.models.catalog import FeeCategory
from core.models.fees import (
    AirportFeeRequest,
    FeeSource,
    PermitIssuanceEligibility,
    UnifiedFeeBreakdown,
    UnifiedFeeLine,
    UnifiedFeeRequest,
)
from core.models.money import KG_TO_LBS, Money
from core.services.airport_fee_calculator import AirportFeeCalculator
from core.services.permit_fee_calculator import PermitFeeCalculator

logger = logging.getLogger(__name__)


class RevenueEngine:
    """Stateless; policies may be supplied per call."""

    def __init__(
        self,
        permit_calculator: PermitFeeCalculator | None = None,
        airport_calculator: AirportFeeCalculator | None = None,
    ):
        self.permit_calculator = permit_calculator or PermitFeeCalculator()
        self.airport_calculator = airport_calculator or AirportFeeCalculator()

    def calculate_unified_fee(
        self,
        request: UnifiedFeeRequest,
        permit_policy: PermitFeePolicy | None = None,
        airport_policy: AirportFeePolicy | None = None,
    ) -> UnifiedFeeBreakdown:
        """
        Quote permit and airport fees for one flight.

        MTOW arrives in kilograms; the airport side is priced on pounds.
        Line descriptions and amounts are carried over unchanged, tagged with
        the authority that levies them.

        Raises:
            FeeValidationError: No airport on the request
        """
        if request.airport is None:
            raise FeeValidationError("An airport is required to price airport fees")

        permit = self.permit_calculator.calculate(
            request.application_type,
            request.seat_count,
            request.mtow_kg,
            policy=permit_policy,
        )

        airport = self.airport_calculator.calculate(
            AirportFeeRequest(
                mtow_lbs=request.mtow_kg * KG_TO_LBS,
                operation_type=request.operation_type,
                airport=request.airport,
                passenger_count=request.passenger_count,
                parking_hours=request.parking_hours,
                operating_window=request.operating_window,
                requires_fire_upgrade=request.requires_fire_upgrade,
                include_flight_plan_filing=request.include_flight_plan_filing,
                fuel_gallons=request.fuel_gallons,
                is_interisland=request.is_interisland,
                is_departing=request.is_departing,
            ),
            policy=airport_policy,
        )

        lines = [
            UnifiedFeeLine(
                source=FeeSource.PERMIT_AUTHORITY,
                category=FeeCategory.PERMIT,
                description=line.description,
                amount=line.amount,
                is_credit=line.is_credit,
            )
            for line in permit.lines
        ]
        lines.extend(
            UnifiedFeeLine(
                source=FeeSource.AIRPORT_AUTHORITY,
                category=line.category,
                description=line.description,
                amount=line.amount,
            )
            for line in airport.lines
        )

        return UnifiedFeeBreakdown(
            permit_fees=permit,
            airport_fees=airport,
            grand_total=permit.total + airport.total,
            lines=lines,
        )

    @staticmethod
    def check_permit_issuance_eligibility(
        outstanding_overdue: Money, overdue_invoice_count: int
    ) -> PermitIssuanceEligibility:
        """
        Eligible only when the operator's overdue amount is exactly zero.

        An ineligible result always carries two reasons: the debt amount and
        the number of overdue invoices.
        """
        is_eligible = outstanding_overdue.is_zero
        reasons = []
        if not is_eligible:
            reasons.append(f"Outstanding airport authority debt: {outstanding_overdue}")
            reasons.append(f"Overdue invoices: {overdue_invoice_count}")
            logger.info(
                "Permit issuance blocked: %s overdue across %d invoices",
                outstanding_overdue, overdue_invoice_count,
            )

        return PermitIssuanceEligibility(
            is_eligible=is_eligible,
            outstanding_debt=outstanding_overdue,
            overdue_invoice_count=overdue_invoice_count,
            block_reasons=reasons,
        )
