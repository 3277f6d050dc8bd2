"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, today_utc
from utils.tenant_context import (
    get_current_tenant_id,
    get_current_tenant_id_or_none,
    set_current_tenant_id,
    clear_current_tenant_id,
    tenant_context,
)
