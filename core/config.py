"""Revenue core configuration."""

import os

from pydantic import BaseModel, Field

from core.models.catalog import Airport
from core.models.money import Currency


class RevenueConfig(BaseModel):
    """
    Billing and rate-lookup settings.

    Durations are in their natural units (days for payment terms, seconds
    for cache lifetimes).
    """

    default_currency: Currency = Field(
        default=Currency.USD,
        description="Currency used for zero amounts and fees without an explicit currency",
    )
    payment_terms_days: int = Field(
        default=30,
        description="Days between invoice date and due date",
        ge=1,
        le=365,
    )
    rate_cache_ttl_seconds: int = Field(
        default=300,
        description="How long a tenant's rate snapshot may be served from cache",
        ge=1,
        le=3600,
    )
    invoice_number_prefix: str = Field(
        default="BVIA-INV",
        description="Prefix for generated invoice numbers",
        min_length=1,
        max_length=20,
    )
    receipt_number_prefix: str = Field(
        default="BVIA-RCP",
        description="Prefix for generated payment receipt numbers",
        min_length=1,
        max_length=20,
    )
    default_arrival_airport: Airport = Field(
        default=Airport.TUPJ,
        description="Airport assumed when a quote does not name one",
    )

    @classmethod
    def from_env(cls) -> "RevenueConfig":
        """
        Build config from REVENUE_* environment variables.

        Unset variables keep their defaults. Invalid values raise
        pydantic.ValidationError.
        """
        overrides = {}
        for name in cls.model_fields:
            value = os.getenv(f"REVENUE_{name.upper()}")
            if value is not None:
                overrides[name] = value
        return cls(**overrides)
