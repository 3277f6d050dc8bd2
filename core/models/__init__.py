"""Core domain models."""

from core.models.money import Money, Weight, WeightUnit, Currency, KG_TO_LBS
from core.models.mtow import MtowTier
from core.models.operating_window import OperatingWindow
from core.models.catalog import (
    Airport, OperationType, ApplicationType, FeeCategory, CATEGORY_UNITS,
    FeeRate, PermitFeeConfiguration,
)
from core.models.fees import (
    PermitFeeLine, PermitFeeBreakdown,
    AirportFeeRequest, AirportFeeLine, AirportFeeBreakdown,
    FeeSource, UnifiedFeeRequest, UnifiedFeeLine, UnifiedFeeBreakdown,
    PermitIssuanceEligibility,
)
from core.models.invoice import (
    Invoice, InvoiceStatus, InvoiceLineItem,
    Payment, PaymentMethod, PaymentStatus, PaymentExceedsBalanceError,
)
from core.models.account_balance import OperatorAccountBalance, LedgerTotals

__all__ = [
    # Value types
    "Money", "Weight", "WeightUnit", "Currency", "KG_TO_LBS",
    "MtowTier", "OperatingWindow",
    # Catalog
    "Airport", "OperationType", "ApplicationType", "FeeCategory", "CATEGORY_UNITS",
    "FeeRate", "PermitFeeConfiguration",
    # Fees
    "PermitFeeLine", "PermitFeeBreakdown",
    "AirportFeeRequest", "AirportFeeLine", "AirportFeeBreakdown",
    "FeeSource", "UnifiedFeeRequest", "UnifiedFeeLine", "UnifiedFeeBreakdown",
    "PermitIssuanceEligibility",
    # Invoice
    "Invoice", "InvoiceStatus", "InvoiceLineItem",
    "Payment", "PaymentMethod", "PaymentStatus", "PaymentExceedsBalanceError",
    # Ledger
    "OperatorAccountBalance", "LedgerTotals",
]
