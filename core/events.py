"""
Domain events for invoicing and the operator ledger.

Immutable event objects that represent invoice state changes. The Invoice
aggregate records them in order as it mutates; the billing service drains
them after the unit of work commits, applies them to the operator's account
balance and publishes them on the event bus.

Events carry plain values (ids, amounts, statuses), not the aggregate, so
a handler sees exactly what was true when the event was raised.

Each event_id is unique and is the idempotency key for ledger updates.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class RevenueEvent:
    """Base class for all revenue domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class InvoiceEvent(RevenueEvent):
    """Events related to invoice lifecycle."""
    invoice_id: UUID | None = None
    operator_id: UUID | None = None
    invoice_number: str = ""

    @classmethod
    def create(cls, invoice, **values) -> "InvoiceEvent":
        """Build the event for `invoice`, copying its identifying fields."""
        return cls(
            invoice_id=invoice.id,
            operator_id=invoice.operator_id,
            invoice_number=invoice.invoice_number,
            **values,
        )


@dataclass(frozen=True, kw_only=True)
class InvoiceCreated(InvoiceEvent):
    """A new invoice was created in DRAFT status."""


@dataclass(frozen=True, kw_only=True)
class LineItemAdded(InvoiceEvent):
    """A line item was added to a draft invoice."""
    line_item_id: UUID | None = None
    amount: Any = None  # Money, Any to avoid circular import


@dataclass(frozen=True, kw_only=True)
class LineItemRemoved(InvoiceEvent):
    """A line item was removed from a draft invoice."""
    line_item_id: UUID | None = None
    amount: Any = None


@dataclass(frozen=True, kw_only=True)
class LineItemUpdated(InvoiceEvent):
    """A draft line item was repriced. amount is the new line amount."""
    line_item_id: UUID | None = None
    previous_amount: Any = None
    amount: Any = None


@dataclass(frozen=True, kw_only=True)
class PassengerCountUpdated(InvoiceEvent):
    """The passenger count on a draft invoice changed."""
    previous_count: int = 0
    passenger_count: int = 0


@dataclass(frozen=True, kw_only=True)
class InvoiceFinalized(InvoiceEvent):
    """Invoice left DRAFT and is now payable. amount is the invoiced total."""
    amount: Any = None
    due_date: date | None = None
    finalized_by: str = ""


@dataclass(frozen=True, kw_only=True)
class PaymentReceived(InvoiceEvent):
    """A payment was applied to the invoice."""
    payment_id: UUID | None = None
    amount: Any = None
    balance_due: Any = None
    previous_status: str = ""


@dataclass(frozen=True, kw_only=True)
class PaymentRefunded(InvoiceEvent):
    """A previously applied payment was refunded."""
    payment_id: UUID | None = None
    amount: Any = None
    was_paid_in_full: bool = False


@dataclass(frozen=True, kw_only=True)
class InvoicePaid(InvoiceEvent):
    """Balance due reached zero."""
    amount: Any = None


@dataclass(frozen=True, kw_only=True)
class InvoiceOverdue(InvoiceEvent):
    """Invoice passed its due date unpaid. amount is the balance due."""
    amount: Any = None
    days_overdue: int = 0


@dataclass(frozen=True, kw_only=True)
class InvoiceOverdueCleared(InvoiceEvent):
    """Invoice left OVERDUE. amount is the balance that was overdue."""
    amount: Any = None


@dataclass(frozen=True, kw_only=True)
class InterestCharged(InvoiceEvent):
    """Late payment interest was added to an overdue invoice."""
    amount: Any = None
    line_item_id: UUID | None = None


@dataclass(frozen=True, kw_only=True)
class InvoiceCancelled(InvoiceEvent):
    """
    Invoice was cancelled.

    invoiced_amount is what finalize put on the ledger (zero for drafts);
    outstanding_amount is the unpaid balance being written off.
    """
    invoiced_amount: Any = None
    outstanding_amount: Any = None
    was_finalized: bool = False
    previous_status: str = ""
    cancelled_by: str = ""
    reason: str = ""
