"""
Resolves the fee policies in force for the current tenant on a date.

Rate snapshots (every active airport rate plus the permit configuration for
one tenant and date) are read-mostly, so they are cached in Valkey under
fee_rates:<tenant>:<date> with a bounded TTL. invalidate() drops a tenant's
snapshots when its rates change.

Without a tenant context the statutory default schedules apply.
"""

import logging
from datetime import date

from clients.valkey_client import ValkeyClient
from core.fee_policy import (
    AirportFeePolicy,
    ConfiguredAirportFeePolicy,
    ConfiguredPermitFeePolicy,
    DefaultAirportFeePolicy,
    DefaultPermitFeePolicy,
    PermitFeePolicy,
)
from core.models import FeeRate, PermitFeeConfiguration
from core.services.rate_catalog import RateCatalog
from utils.tenant_context import get_current_tenant_id_or_none
from utils.timezone import today_utc

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "fee_rates"
DEFAULT_CACHE_TTL_SECONDS = 300


class FeePolicyProvider:
    """Policy lookup per (tenant, effective date), optionally cached."""

    def __init__(
        self,
        catalog: RateCatalog,
        cache: ValkeyClient | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
    ):
        if cache_ttl_seconds < 1:
            raise ValueError("cache_ttl_seconds must be positive")
        self.catalog = catalog
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self._default_permit = DefaultPermitFeePolicy()
        self._default_airport = DefaultAirportFeePolicy()

    @staticmethod
    def cache_key(tenant_id, on: date) -> str:
        return f"{CACHE_KEY_PREFIX}:{tenant_id}:{on.isoformat()}"

    def _load_snapshot(self, tenant_id, on: date) -> tuple[list[FeeRate], PermitFeeConfiguration | None]:
        key = self.cache_key(tenant_id, on)

        if self.cache is not None:
            cached = self.cache.get_json(key)
            if cached is not None:
                logger.debug("Rate snapshot cache hit: %s", key)
                rates = [FeeRate.model_validate(r) for r in cached["rates"]]
                permit = cached.get("permit_configuration")
                return rates, PermitFeeConfiguration.model_validate(permit) if permit else None

        logger.debug("Rate snapshot cache miss: %s", key)
        rates = self.catalog.active_rates(on)
        permit = self.catalog.active_permit_configuration(on)

        if self.cache is not None:
            self.cache.set_json(
                key,
                {
                    "rates": [r.model_dump(mode="json") for r in rates],
                    "permit_configuration": permit.model_dump(mode="json") if permit else None,
                },
                expire_seconds=self.cache_ttl_seconds,
            )
        return rates, permit

    def permit_policy(self, on: date | None = None) -> PermitFeePolicy:
        on = on or today_utc()
        tenant_id = get_current_tenant_id_or_none()
        if tenant_id is None:
            logger.debug("No tenant context, using default permit fee policy")
            return self._default_permit

        _, configuration = self._load_snapshot(tenant_id, on)
        if configuration is None:
            logger.debug("No permit fee configuration for tenant %s on %s, using defaults", tenant_id, on)
        return ConfiguredPermitFeePolicy(configuration, on, fallback=self._default_permit)

    def airport_policy(self, on: date | None = None) -> AirportFeePolicy:
        on = on or today_utc()
        tenant_id = get_current_tenant_id_or_none()
        if tenant_id is None:
            logger.debug("No tenant context, using default airport fee policy")
            return self._default_airport

        rates, _ = self._load_snapshot(tenant_id, on)
        if not rates:
            logger.debug("No active rates for tenant %s on %s, using defaults", tenant_id, on)
            return self._default_airport
        return ConfiguredAirportFeePolicy(
            rates, on, fallback=self._default_airport, tenant_id=tenant_id,
        )

    def invalidate(self, tenant_id=None) -> int:
        """
        Drop cached snapshots for a tenant (current tenant if not given).

        Returns:
            Number of cache entries removed
        """
        if self.cache is None:
            return 0
        tenant_id = tenant_id or get_current_tenant_id_or_none()
        if tenant_id is None:
            return 0
        removed = self.cache.delete_pattern(f"{CACHE_KEY_PREFIX}:{tenant_id}:*")
        logger.info("Invalidated %d rate snapshots for tenant %s", removed, tenant_id)
        return removed
