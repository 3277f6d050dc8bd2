"""Invoice aggregate: line items, payments and the billing state machine.

    DRAFT --finalize--> PENDING --payment--> PARTIALLY_PAID --payment--> PAID
                           |                      |
                           +--mark_overdue--> OVERDUE --payment--> PARTIALLY_PAID / PAID
    any state except PAID --cancel--> CANCELLED

Totals are always recomputed from the full line item and payment lists,
never adjusted incrementally. Every mutation appends domain events to an
ordered pending list; the persistence layer drains it with pull_events()
after a successful save.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, PrivateAttr

from core.events import (
    InterestCharged,
    InvoiceCancelled,
    InvoiceCreated,
    InvoiceEvent,
    InvoiceFinalized,
    InvoiceOverdue,
    InvoiceOverdueCleared,
    InvoicePaid,
    LineItemAdded,
    LineItemRemoved,
    LineItemUpdated,
    PassengerCountUpdated,
    PaymentReceived,
    PaymentRefunded,
)
from core.exceptions import (
    CurrencyMismatchError,
    FeeValidationError,
    InvalidInvoiceStateError,
    LineItemNotFoundError,
    PaymentNotFoundError,
)
from core.models.catalog import Airport, FeeCategory, OperationType
from core.models.money import Currency, Money, Weight, to_decimal
from utils.timezone import now_utc, today_utc

DEFAULT_PAYMENT_TERMS_DAYS = 30


def generate_document_number(prefix: str, on: date) -> str:
    """
    Generate a document number.

    Format: PREFIX-YYYYMMDD-XXXXXXXX where XXXXXXXX is random hex.
    """
    return f"{prefix}-{on:%Y%m%d}-{uuid4().hex[:8].upper()}"


def _require_actor(actor: str | None, action: str) -> str:
    if actor is None or not actor.strip():
        raise FeeValidationError(f"{action} requires the acting user")
    return actor.strip()


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    WIRE_TRANSFER = "wire_transfer"
    CASH = "cash"
    CHECK = "check"
    ONLINE = "online"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# =============================================================================
# LINE ITEMS
# =============================================================================


class InvoiceLineItem(BaseModel):
    """
    One priced component of an invoice.

    amount = quantity x unit_rate, except interest lines which carry a fixed
    amount with quantity 1.
    """

    id: UUID = Field(default_factory=uuid4)
    category: FeeCategory
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0)
    quantity_unit: str | None = Field(None, max_length=50)
    unit_rate: Money
    amount: Money
    is_interest_charge: bool = False
    display_order: int = Field(..., ge=1)
    fee_rate_id: UUID | None = None
    created_at: datetime = Field(default_factory=now_utc)

    model_config = {"from_attributes": True}

    @classmethod
    def create(
        cls,
        category: FeeCategory,
        description: str,
        quantity,
        unit_rate: Money,
        display_order: int,
        quantity_unit: str | None = None,
        fee_rate_id: UUID | None = None,
    ) -> "InvoiceLineItem":
        quantity = to_decimal(quantity)
        if not description or not description.strip():
            raise FeeValidationError("Line item description is required")
        if quantity <= 0:
            raise FeeValidationError(f"Quantity must be positive: {quantity}")
        return cls(
            category=category,
            description=description.strip(),
            quantity=quantity,
            quantity_unit=quantity_unit or category.unit,
            unit_rate=unit_rate,
            amount=unit_rate * quantity,
            display_order=display_order,
            fee_rate_id=fee_rate_id,
        )

    @classmethod
    def interest(cls, amount: Money, description: str, display_order: int) -> "InvoiceLineItem":
        return cls(
            category=FeeCategory.LATE_PAYMENT_INTEREST,
            description=description,
            quantity=Decimal("1"),
            quantity_unit=FeeCategory.LATE_PAYMENT_INTEREST.unit,
            unit_rate=amount,
            amount=amount,
            is_interest_charge=True,
            display_order=display_order,
        )

    def update_amount(self, unit_rate: Money, quantity=None) -> None:
        """Reprice the line. Quantity is kept unless given."""
        if quantity is not None:
            quantity = to_decimal(quantity)
            if quantity <= 0:
                raise FeeValidationError(f"Quantity must be positive: {quantity}")
            self.quantity = quantity
        self.unit_rate = unit_rate
        self.amount = unit_rate * self.quantity


# =============================================================================
# PAYMENTS
# =============================================================================


class Payment(BaseModel):
    """A recorded payment. Immutable apart from the refund transition."""

    id: UUID = Field(default_factory=uuid4)
    amount: Money
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.COMPLETED
    transaction_reference: str | None = Field(None, max_length=200)
    receipt_number: str | None = None
    payment_date: datetime = Field(default_factory=now_utc)
    recorded_by: str
    recorded_at: datetime = Field(default_factory=now_utc)
    notes: str | None = Field(None, max_length=2000)
    refunded_at: datetime | None = None
    refunded_by: str | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def create(
        cls,
        amount: Money,
        method: PaymentMethod,
        recorded_by: str,
        transaction_reference: str | None = None,
        notes: str | None = None,
        receipt_prefix: str = "BVIA-RCP",
    ) -> "Payment":
        if amount.is_zero:
            raise FeeValidationError("Payment amount must be positive")
        now = now_utc()
        return cls(
            amount=amount,
            method=method,
            transaction_reference=transaction_reference,
            receipt_number=generate_document_number(receipt_prefix, now.date()),
            payment_date=now,
            recorded_by=_require_actor(recorded_by, "Recording a payment"),
            recorded_at=now,
            notes=notes,
        )

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    def refund(self, by: str, reason: str) -> None:
        """
        Mark the payment refunded.

        Raises:
            InvalidInvoiceStateError: Payment is not COMPLETED
        """
        by = _require_actor(by, "Refunding a payment")
        if self.status != PaymentStatus.COMPLETED:
            raise InvalidInvoiceStateError(
                f"Only completed payments can be refunded (status: {self.status.value})",
                status=self.status.value,
            )
        now = now_utc()
        self.status = PaymentStatus.REFUNDED
        self.refunded_at = now
        self.refunded_by = by
        entry = f"Refunded by {by} on {now:%Y-%m-%d}: {reason}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry


# =============================================================================
# INVOICE
# =============================================================================


class PaymentExceedsBalanceError(InvalidInvoiceStateError):
    """Payment larger than the invoice's current balance due."""


class Invoice(BaseModel):
    """
    Invoice aggregate.

    Usage:
        invoice = Invoice.create(operator_id)
        invoice.add_line_item(FeeCategory.LANDING, "Landing Fee", 1, Money.usd(50))
        invoice.finalize(by="clerk@airport")
        invoice.record_payment(Money.usd(50), PaymentMethod.BANK_TRANSFER, "clerk@airport")
        events = invoice.pull_events()
    """

    id: UUID = Field(default_factory=uuid4)
    invoice_number: str
    operator_id: UUID
    application_id: UUID | None = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    currency: Currency = Currency.USD

    # Flight context
    arrival_airport: Airport | None = None
    departure_airport: Airport | None = None
    operation_type: OperationType | None = None
    flight_date: date | None = None
    aircraft_registration: str | None = Field(None, max_length=20)
    mtow: Weight | None = None
    seat_count: int | None = Field(None, ge=0)
    passenger_count: int | None = Field(None, ge=0)

    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)

    # Derived from line_items and payments
    subtotal: Money = Field(default_factory=Money.zero)
    total_interest: Money = Field(default_factory=Money.zero)
    total_amount: Money = Field(default_factory=Money.zero)
    amount_paid: Money = Field(default_factory=Money.zero)
    balance_due: Money = Field(default_factory=Money.zero)

    invoice_date: date
    due_date: date
    finalized_at: datetime | None = None
    finalized_by: str | None = None
    marked_overdue_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    notes: str | None = Field(None, max_length=4000)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    version: int = 0

    model_config = {"from_attributes": True}

    _events: list[InvoiceEvent] = PrivateAttr(default_factory=list)

    @classmethod
    def create(
        cls,
        operator_id: UUID,
        invoice_date: date | None = None,
        payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS,
        currency: Currency = Currency.USD,
        number_prefix: str = "BVIA-INV",
        **flight_details,
    ) -> "Invoice":
        """
        Create an empty DRAFT invoice.

        Args:
            operator_id: Operator being billed
            invoice_date: Defaults to today (UTC)
            payment_terms_days: Due date offset from invoice_date
            currency: Currency of every amount on the invoice
            number_prefix: Invoice number prefix
            **flight_details: application_id, airports, operation_type,
                flight_date, aircraft_registration, mtow, seat_count,
                passenger_count, notes

        Raises:
            FeeValidationError: Missing operator or non-positive payment terms
        """
        if operator_id is None:
            raise FeeValidationError("Operator is required")
        if payment_terms_days < 1:
            raise FeeValidationError(f"Payment terms must be at least one day: {payment_terms_days}")

        invoice_date = invoice_date or today_utc()
        zero = Money.zero(currency)
        invoice = cls(
            invoice_number=generate_document_number(number_prefix, invoice_date),
            operator_id=operator_id,
            currency=currency,
            subtotal=zero,
            total_interest=zero,
            total_amount=zero,
            amount_paid=zero,
            balance_due=zero,
            invoice_date=invoice_date,
            due_date=invoice_date + timedelta(days=payment_terms_days),
            **flight_details,
        )
        invoice._raise(InvoiceCreated.create(invoice))
        return invoice

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _raise(self, event: InvoiceEvent) -> None:
        self._events.append(event)

    @property
    def pending_events(self) -> tuple[InvoiceEvent, ...]:
        return tuple(self._events)

    def pull_events(self) -> list[InvoiceEvent]:
        """Return pending events in the order raised and clear them."""
        events = list(self._events)
        self._events.clear()
        return events

    # -------------------------------------------------------------------------
    # Guards and derived state
    # -------------------------------------------------------------------------

    def _require_status(self, allowed: tuple[InvoiceStatus, ...], action: str) -> None:
        if self.status not in allowed:
            raise InvalidInvoiceStateError(
                f"Cannot {action} invoice {self.invoice_number} in status {self.status.value}",
                status=self.status.value,
            )

    def _require_currency(self, amount: Money) -> None:
        if amount.currency != self.currency:
            raise CurrencyMismatchError(self.currency.value, amount.currency.value)

    def _recalculate_totals(self) -> None:
        zero = Money.zero(self.currency)
        self.subtotal = Money.total(
            (item.amount for item in self.line_items if not item.is_interest_charge), self.currency
        )
        self.total_interest = Money.total(
            (item.amount for item in self.line_items if item.is_interest_charge), self.currency
        )
        self.total_amount = self.subtotal + self.total_interest
        self.amount_paid = Money.total(
            (p.amount for p in self.payments if p.is_completed), self.currency
        )
        self.balance_due = (
            self.total_amount - self.amount_paid if self.total_amount > self.amount_paid else zero
        )
        self.updated_at = now_utc()

    def _renumber_lines(self) -> None:
        for position, item in enumerate(self.line_items, start=1):
            item.display_order = position

    def _find_line_item(self, line_item_id: UUID) -> InvoiceLineItem:
        for item in self.line_items:
            if item.id == line_item_id:
                return item
        raise LineItemNotFoundError(f"Line item {line_item_id} not found on {self.invoice_number}")

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None

    def is_past_due(self, today: date | None = None) -> bool:
        today = today or today_utc()
        if self.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            return False
        return today > self.due_date

    def days_overdue(self, today: date | None = None) -> int:
        today = today or today_utc()
        if not self.is_past_due(today):
            return 0
        return (today - self.due_date).days

    # -------------------------------------------------------------------------
    # Draft editing
    # -------------------------------------------------------------------------

    def add_line_item(
        self,
        category: FeeCategory,
        description: str,
        quantity,
        unit_rate: Money,
        quantity_unit: str | None = None,
        fee_rate_id: UUID | None = None,
    ) -> InvoiceLineItem:
        """
        Append a line to a DRAFT invoice.

        Raises:
            InvalidInvoiceStateError: Invoice is not DRAFT
            FeeValidationError: Empty description or non-positive quantity
            CurrencyMismatchError: unit_rate in another currency
        """
        self._require_status((InvoiceStatus.DRAFT,), "add line items to")
        self._require_currency(unit_rate)
        item = InvoiceLineItem.create(
            category=category,
            description=description,
            quantity=quantity,
            unit_rate=unit_rate,
            display_order=len(self.line_items) + 1,
            quantity_unit=quantity_unit,
            fee_rate_id=fee_rate_id,
        )
        self.line_items.append(item)
        self._recalculate_totals()
        self._raise(LineItemAdded.create(self, line_item_id=item.id, amount=item.amount))
        return item

    def remove_line_item(self, line_item_id: UUID) -> InvoiceLineItem:
        """Remove a line from a DRAFT invoice. Raises LineItemNotFoundError if absent."""
        self._require_status((InvoiceStatus.DRAFT,), "remove line items from")
        item = self._find_line_item(line_item_id)
        self.line_items.remove(item)
        self._renumber_lines()
        self._recalculate_totals()
        self._raise(LineItemRemoved.create(self, line_item_id=item.id, amount=item.amount))
        return item

    def update_line_item_amount(self, line_item_id: UUID, unit_rate: Money, quantity=None) -> InvoiceLineItem:
        self._require_status((InvoiceStatus.DRAFT,), "reprice line items on")
        self._require_currency(unit_rate)
        item = self._find_line_item(line_item_id)
        previous_amount = item.amount
        item.update_amount(unit_rate, quantity)
        self._recalculate_totals()
        self._raise(LineItemUpdated.create(
            self, line_item_id=item.id, previous_amount=previous_amount, amount=item.amount,
        ))
        return item

    def update_passenger_count(self, passenger_count: int) -> None:
        self._require_status((InvoiceStatus.DRAFT,), "change passengers on")
        if passenger_count < 0:
            raise FeeValidationError(f"Passenger count cannot be negative: {passenger_count}")
        previous_count = self.passenger_count or 0
        self.passenger_count = passenger_count
        self.updated_at = now_utc()
        self._raise(PassengerCountUpdated.create(
            self, previous_count=previous_count, passenger_count=passenger_count,
        ))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def finalize(self, by: str) -> None:
        """
        DRAFT -> PENDING.

        Raises:
            FeeValidationError: No acting user
            InvalidInvoiceStateError: Not DRAFT, or no line items
        """
        by = _require_actor(by, "Finalizing an invoice")
        self._require_status((InvoiceStatus.DRAFT,), "finalize")
        if not self.line_items:
            raise InvalidInvoiceStateError(
                f"Cannot finalize invoice {self.invoice_number} without line items",
                status=self.status.value,
            )

        self._recalculate_totals()
        self.status = InvoiceStatus.PENDING
        self.finalized_at = now_utc()
        self.finalized_by = by
        self._raise(InvoiceFinalized.create(
            self, amount=self.total_amount, due_date=self.due_date, finalized_by=by,
        ))

    def record_payment(
        self,
        amount: Money,
        method: PaymentMethod,
        recorded_by: str,
        transaction_reference: str | None = None,
        notes: str | None = None,
        receipt_prefix: str = "BVIA-RCP",
    ) -> Payment:
        """
        Apply a payment. PENDING/PARTIALLY_PAID/OVERDUE -> PARTIALLY_PAID or PAID.

        A payment on an OVERDUE invoice clears the overdue state first.

        Raises:
            InvalidInvoiceStateError: DRAFT, PAID or CANCELLED
            PaymentExceedsBalanceError: amount > balance due
            FeeValidationError: Zero amount or no acting user
        """
        self._require_status(
            (InvoiceStatus.PENDING, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE),
            "record a payment on",
        )
        self._require_currency(amount)
        if amount > self.balance_due:
            raise PaymentExceedsBalanceError(
                f"Payment {amount} exceeds balance due {self.balance_due} "
                f"on invoice {self.invoice_number}",
                status=self.status.value,
            )

        payment = Payment.create(
            amount=amount,
            method=method,
            recorded_by=recorded_by,
            transaction_reference=transaction_reference,
            notes=notes,
            receipt_prefix=receipt_prefix,
        )

        previous_status = self.status
        if previous_status == InvoiceStatus.OVERDUE:
            self._raise(InvoiceOverdueCleared.create(self, amount=self.balance_due))

        self.payments.append(payment)
        self._recalculate_totals()
        self.status = InvoiceStatus.PAID if self.balance_due.is_zero else InvoiceStatus.PARTIALLY_PAID

        self._raise(PaymentReceived.create(
            self,
            payment_id=payment.id,
            amount=payment.amount,
            balance_due=self.balance_due,
            previous_status=previous_status.value,
        ))
        if self.status == InvoiceStatus.PAID:
            self._raise(InvoicePaid.create(self, amount=self.total_amount))
        return payment

    def refund_payment(self, payment_id: UUID, by: str, reason: str) -> Payment:
        """
        Refund a completed payment and reopen the balance it covered.

        PAID/PARTIALLY_PAID -> PARTIALLY_PAID, or PENDING when nothing
        remains paid.
        """
        self._require_status(
            (InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID), "refund a payment on"
        )
        payment = next((p for p in self.payments if p.id == payment_id), None)
        if payment is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found on {self.invoice_number}")

        was_paid = self.status == InvoiceStatus.PAID
        payment.refund(by, reason)
        self._recalculate_totals()
        self.status = InvoiceStatus.PENDING if self.amount_paid.is_zero else InvoiceStatus.PARTIALLY_PAID
        self._raise(PaymentRefunded.create(
            self, payment_id=payment.id, amount=payment.amount, was_paid_in_full=was_paid,
        ))
        return payment

    def mark_overdue(self, today: date | None = None) -> None:
        """
        PENDING/PARTIALLY_PAID -> OVERDUE, once the due date has passed.

        Raises:
            InvalidInvoiceStateError: Wrong status or not yet past due
        """
        today = today or today_utc()
        self._require_status(
            (InvoiceStatus.PENDING, InvoiceStatus.PARTIALLY_PAID), "mark overdue"
        )
        if not today > self.due_date:
            raise InvalidInvoiceStateError(
                f"Invoice {self.invoice_number} is not past due (due {self.due_date})",
                status=self.status.value,
            )

        self.status = InvoiceStatus.OVERDUE
        self.marked_overdue_at = now_utc()
        self.updated_at = self.marked_overdue_at
        self._raise(InvoiceOverdue.create(
            self, amount=self.balance_due, days_overdue=self.days_overdue(today),
        ))

    def add_interest_charge(self, amount: Money, description: str | None = None) -> InvoiceLineItem:
        """
        Append a late payment interest line to an OVERDUE invoice.

        Raises:
            InvalidInvoiceStateError: Not OVERDUE
            FeeValidationError: Zero amount
        """
        self._require_status((InvoiceStatus.OVERDUE,), "add interest to")
        self._require_currency(amount)
        if amount.is_zero:
            raise FeeValidationError("Interest charge must be positive")

        item = InvoiceLineItem.interest(
            amount=amount,
            description=description or f"Late Payment Interest ({self.days_overdue()} days overdue)",
            display_order=len(self.line_items) + 1,
        )
        self.line_items.append(item)
        self._recalculate_totals()
        self._raise(InterestCharged.create(self, amount=amount, line_item_id=item.id))
        return item

    def cancel(self, by: str, reason: str) -> None:
        """
        Any status except PAID -> CANCELLED.

        A second cancel is rejected so the ledger reversal can only happen
        once.

        Raises:
            FeeValidationError: No acting user
            InvalidInvoiceStateError: PAID or already CANCELLED
        """
        by = _require_actor(by, "Cancelling an invoice")
        self._require_status(
            (
                InvoiceStatus.DRAFT,
                InvoiceStatus.PENDING,
                InvoiceStatus.PARTIALLY_PAID,
                InvoiceStatus.OVERDUE,
            ),
            "cancel",
        )

        previous_status = self.status
        if previous_status == InvoiceStatus.OVERDUE:
            self._raise(InvoiceOverdueCleared.create(self, amount=self.balance_due))

        was_finalized = self.is_finalized
        now = now_utc()
        self.status = InvoiceStatus.CANCELLED
        self.cancelled_at = now
        self.cancelled_by = by
        self.updated_at = now
        entry = f"Cancelled by {by} on {now:%Y-%m-%d}: {reason}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry

        zero = Money.zero(self.currency)
        self._raise(InvoiceCancelled.create(
            self,
            invoiced_amount=self.subtotal if was_finalized else zero,
            outstanding_amount=self.balance_due if was_finalized else zero,
            was_finalized=was_finalized,
            previous_status=previous_status.value,
            cancelled_by=by,
            reason=reason,
        ))
