"""
Rate catalog: where configured fee rates are stored.

The catalog only returns candidates. Choosing between several matching
records is the fee policy's job (core.fee_policy.rate_precedence), so the
same tie-break applies whatever the storage.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import date

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.fee_policy import matches
from core.models import (
    Airport,
    FeeCategory,
    FeeRate,
    MtowTier,
    OperationType,
    PermitFeeConfiguration,
)

logger = logging.getLogger(__name__)


class RateCatalog(ABC):
    """Read access to a tenant's rate records."""

    @abstractmethod
    def active_rates(self, on: date) -> list[FeeRate]:
        """All airport rate records effective on `on`."""

    @abstractmethod
    def active_permit_configuration(self, on: date) -> PermitFeeConfiguration | None:
        """The permit fee configuration effective on `on`, latest effective_from first."""

    def find_rates(
        self,
        category: FeeCategory,
        on: date,
        operation_type: OperationType | None = None,
        airport: Airport | None = None,
        tier: MtowTier | None = None,
    ) -> list[FeeRate]:
        """Candidate records for one lookup, in no particular order."""
        return [
            rate for rate in self.active_rates(on)
            if matches(rate, category, on, operation_type=operation_type, airport=airport, tier=tier)
        ]


class InMemoryRateCatalog(RateCatalog):
    """Rate records held in process. Used for tests and single-tenant tools."""

    def __init__(self, rates=None, permit_configurations=None):
        self._lock = threading.Lock()
        self._rates: list[FeeRate] = list(rates or [])
        self._permit_configurations: list[PermitFeeConfiguration] = list(permit_configurations or [])

    def add_rate(self, rate: FeeRate) -> FeeRate:
        with self._lock:
            self._rates.append(rate)
        return rate

    def add_permit_configuration(self, configuration: PermitFeeConfiguration) -> PermitFeeConfiguration:
        with self._lock:
            self._permit_configurations.append(configuration)
        return configuration

    def active_rates(self, on: date) -> list[FeeRate]:
        with self._lock:
            return [r for r in self._rates if r.is_effective_on(on)]

    def active_permit_configuration(self, on: date) -> PermitFeeConfiguration | None:
        with self._lock:
            effective = [c for c in self._permit_configurations if c.is_effective_on(on)]
        if not effective:
            return None
        return max(effective, key=lambda c: c.effective_from)


class PostgresRateCatalog(RateCatalog):
    """
    Rate records in PostgreSQL, scoped to the current tenant by RLS.

    Tables: fee_rates, permit_fee_configurations.
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    @staticmethod
    def _rate_from_row(row: dict) -> FeeRate:
        minimum = row.pop("minimum_fee_amount", None)
        if minimum is not None:
            row["minimum_fee"] = {"amount": minimum, "currency": row["currency"]}
        return FeeRate.model_validate(row)

    def active_rates(self, on: date) -> list[FeeRate]:
        rows = self.postgres.execute(
            """
            SELECT id, category, operation_type, airport, mtow_tier,
                   amount, currency, is_per_unit, unit_description,
                   minimum_fee_amount, effective_from, effective_to,
                   is_active, description
            FROM fee_rates
            WHERE is_active
              AND effective_from <= %s
              AND (effective_to IS NULL OR effective_to >= %s)
            """,
            (on, on),
        )
        return [self._rate_from_row(row) for row in rows]

    def find_rates(self, category, on, operation_type=None, airport=None, tier=None) -> list[FeeRate]:
        rows = self.postgres.execute(
            """
            SELECT id, category, operation_type, airport, mtow_tier,
                   amount, currency, is_per_unit, unit_description,
                   minimum_fee_amount, effective_from, effective_to,
                   is_active, description
            FROM fee_rates
            WHERE is_active
              AND category = %s
              AND effective_from <= %s
              AND (effective_to IS NULL OR effective_to >= %s)
              AND (%s::text IS NULL OR operation_type = %s)
              AND (%s::text IS NULL OR airport IS NULL OR airport = %s)
              AND (%s::text IS NULL OR mtow_tier IS NULL OR mtow_tier = %s)
            """,
            (
                category.value, on, on,
                *(2 * [operation_type.value if operation_type else None]),
                *(2 * [airport.value if airport else None]),
                *(2 * [tier.value if tier else None]),
            ),
        )
        return [self._rate_from_row(row) for row in rows]

    def active_permit_configuration(self, on: date) -> PermitFeeConfiguration | None:
        row = self.postgres.execute_single(
            """
            SELECT id, document, effective_from, effective_to, is_active
            FROM permit_fee_configurations
            WHERE is_active
              AND effective_from <= %s
              AND (effective_to IS NULL OR effective_to >= %s)
            ORDER BY effective_from DESC
            LIMIT 1
            """,
            (on, on),
        )
        if row is None:
            return None
        return PermitFeeConfiguration.model_validate({
            **row["document"],
            "id": row["id"],
            "effective_from": row["effective_from"],
            "effective_to": row["effective_to"],
            "is_active": row["is_active"],
        })

    def add_rate(self, rate: FeeRate, tenant_id) -> FeeRate:
        self.postgres.execute(
            """
            INSERT INTO fee_rates (
                id, tenant_id, category, operation_type, airport, mtow_tier,
                amount, currency, is_per_unit, unit_description,
                minimum_fee_amount, effective_from, effective_to,
                is_active, description
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                rate.id, tenant_id, rate.category.value,
                rate.operation_type.value if rate.operation_type else None,
                rate.airport.value if rate.airport else None,
                rate.mtow_tier.value if rate.mtow_tier else None,
                rate.amount, rate.currency.value, rate.is_per_unit, rate.unit_description,
                rate.minimum_fee.amount if rate.minimum_fee else None,
                rate.effective_from, rate.effective_to, rate.is_active, rate.description,
            ),
        )
        logger.info("Added %s rate %s effective %s", rate.category.value, rate.id, rate.effective_from)
        return rate

    def add_permit_configuration(self, configuration: PermitFeeConfiguration, tenant_id) -> PermitFeeConfiguration:
        document = configuration.model_dump(
            mode="json", exclude={"id", "effective_from", "effective_to", "is_active"}
        )
        self.postgres.execute(
            """
            INSERT INTO permit_fee_configurations (
                id, tenant_id, document, effective_from, effective_to, is_active
            ) VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                configuration.id, tenant_id, Json(document),
                configuration.effective_from, configuration.effective_to, configuration.is_active,
            ),
        )
        return configuration
