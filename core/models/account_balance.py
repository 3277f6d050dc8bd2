"""Operator account balance: running per-operator totals that gate permit issuance.

Mutated only through the record_* methods, one per invoice event. It never
reads invoice internals; recalculate() is the one exception, rebuilding every
total from authoritative invoice figures to correct drift.

Subtractions floor at zero. A ledger that would go negative has drifted and
is repaired by recalculate(), not by carrying a negative balance.
"""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from core.models.invoice import Invoice, InvoiceStatus
from core.models.money import Currency, Money
from utils.timezone import now_utc


def _floored_subtract(left: Money, right: Money) -> Money:
    if right >= left:
        return Money.zero(left.currency)
    return left - right


class LedgerTotals(BaseModel):
    """Authoritative totals for one operator, derived from its invoices."""

    total_invoiced: Money
    total_paid: Money
    total_interest: Money
    total_overdue: Money
    current_balance: Money
    invoice_count: int = Field(0, ge=0)
    paid_invoice_count: int = Field(0, ge=0)
    overdue_invoice_count: int = Field(0, ge=0)

    @classmethod
    def from_invoices(cls, invoices, currency: Currency = Currency.USD) -> "LedgerTotals":
        """
        Sum an operator's invoices.

        Drafts never reached the ledger. Cancellation reverses the invoiced
        and outstanding amounts but not money already received or interest
        already charged, so cancelled invoices still count toward those.
        """
        finalized = [inv for inv in invoices if inv.currency == currency and inv.is_finalized]
        counted = [inv for inv in finalized if inv.status != InvoiceStatus.CANCELLED]
        overdue = [inv for inv in counted if inv.status == InvoiceStatus.OVERDUE]
        return cls(
            total_invoiced=Money.total((inv.subtotal for inv in counted), currency),
            total_paid=Money.total((inv.amount_paid for inv in finalized), currency),
            total_interest=Money.total((inv.total_interest for inv in finalized), currency),
            total_overdue=Money.total((inv.balance_due for inv in overdue), currency),
            current_balance=Money.total((inv.balance_due for inv in counted), currency),
            invoice_count=len(counted),
            paid_invoice_count=sum(1 for inv in counted if inv.status == InvoiceStatus.PAID),
            overdue_invoice_count=len(overdue),
        )


class OperatorAccountBalance(BaseModel):
    """Running totals for one operator."""

    id: UUID = Field(default_factory=uuid4)
    operator_id: UUID
    currency: Currency = Currency.USD

    total_invoiced: Money = Field(default_factory=Money.zero)
    total_paid: Money = Field(default_factory=Money.zero)
    total_interest: Money = Field(default_factory=Money.zero)
    total_overdue: Money = Field(default_factory=Money.zero)
    current_balance: Money = Field(default_factory=Money.zero)

    invoice_count: int = Field(0, ge=0)
    paid_invoice_count: int = Field(0, ge=0)
    overdue_invoice_count: int = Field(0, ge=0)

    last_invoice_at: datetime | None = None
    last_payment_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    version: int = 0

    model_config = {"from_attributes": True}

    @classmethod
    def create(cls, operator_id: UUID, currency: Currency = Currency.USD) -> "OperatorAccountBalance":
        zero = Money.zero(currency)
        return cls(
            operator_id=operator_id,
            currency=currency,
            total_invoiced=zero,
            total_paid=zero,
            total_interest=zero,
            total_overdue=zero,
            current_balance=zero,
        )

    # -------------------------------------------------------------------------
    # Derived
    # -------------------------------------------------------------------------

    @property
    def has_outstanding_debt(self) -> bool:
        return not self.current_balance.is_zero

    @property
    def has_overdue_debt(self) -> bool:
        return not self.total_overdue.is_zero

    @property
    def is_eligible_for_permit_issuance(self) -> bool:
        return not self.has_overdue_debt

    def _touch(self) -> None:
        self.updated_at = now_utc()

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def record_invoice_finalized(self, amount: Money) -> None:
        self.total_invoiced = self.total_invoiced + amount
        self.current_balance = self.current_balance + amount
        self.invoice_count += 1
        self.last_invoice_at = now_utc()
        self._touch()

    def record_payment(self, amount: Money) -> None:
        self.total_paid = self.total_paid + amount
        self.current_balance = _floored_subtract(self.current_balance, amount)
        self.last_payment_at = now_utc()
        self._touch()

    def record_payment_refunded(self, amount: Money, was_paid_in_full: bool) -> None:
        self.total_paid = _floored_subtract(self.total_paid, amount)
        self.current_balance = self.current_balance + amount
        if was_paid_in_full:
            self.paid_invoice_count = max(0, self.paid_invoice_count - 1)
        self._touch()

    def record_invoice_paid(self) -> None:
        self.paid_invoice_count += 1
        self._touch()

    def record_invoice_overdue(self, amount: Money) -> None:
        self.total_overdue = self.total_overdue + amount
        self.overdue_invoice_count += 1
        self._touch()

    def record_overdue_cleared(self, amount: Money) -> None:
        self.total_overdue = _floored_subtract(self.total_overdue, amount)
        self.overdue_invoice_count = max(0, self.overdue_invoice_count - 1)
        self._touch()

    def record_interest_charge(self, amount: Money) -> None:
        self.total_interest = self.total_interest + amount
        self.current_balance = self.current_balance + amount
        self.total_overdue = self.total_overdue + amount
        self._touch()

    def record_invoice_cancelled(self, amount: Money, outstanding: Money | None = None) -> None:
        """
        Reverse a cancelled invoice.

        Args:
            amount: Invoiced amount to remove from total_invoiced
            outstanding: Unpaid balance to remove from current_balance.
                Defaults to `amount` (nothing was paid).
        """
        outstanding = amount if outstanding is None else outstanding
        self.total_invoiced = _floored_subtract(self.total_invoiced, amount)
        self.current_balance = _floored_subtract(self.current_balance, outstanding)
        self.invoice_count = max(0, self.invoice_count - 1)
        self._touch()

    def recalculate(self, totals: LedgerTotals) -> dict[str, tuple]:
        """
        Replace every total with authoritative figures.

        Returns:
            {field: (old, new)} for each field that changed; empty when the
            ledger was already consistent.
        """
        discrepancies = {}
        for name in LedgerTotals.model_fields:
            old = getattr(self, name)
            new = getattr(totals, name)
            if old != new:
                discrepancies[name] = (old, new)
                setattr(self, name, new)
        self._touch()
        return discrepancies

    @classmethod
    def rebuild(cls, operator_id: UUID, invoices: list[Invoice], currency: Currency = Currency.USD):
        """New balance built from an operator's invoices."""
        balance = cls.create(operator_id, currency)
        balance.recalculate(LedgerTotals.from_invoices(invoices, currency))
        return balance
