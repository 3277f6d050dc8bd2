"""
Billing service: invoice use cases as units of work.

Every mutation runs the same sequence inside one store transaction:

    load invoice -> mutate -> drain events -> save invoice
        -> project ledger events onto the operator balance -> commit

and only after the commit are the drained events published on the event
bus. A failure anywhere before the commit leaves both the invoice and the
balance untouched.
"""

import logging
from datetime import date
from typing import Callable, TypeVar
from uuid import UUID

from core.config import RevenueConfig
from core.event_bus import EventBus
from core.exceptions import (
    ConcurrencyConflictError,
    FeeValidationError,
    InvalidInvoiceStateError,
    InvoiceNotFoundError,
)
from core.handlers.account_balance_handler import apply_ledger_events
from core.models import (
    Currency,
    FeeCategory,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    LedgerTotals,
    Money,
    OperatorAccountBalance,
    Payment,
    PaymentMethod,
    PermitIssuanceEligibility,
    UnifiedFeeBreakdown,
    UnifiedFeeRequest,
)
from core.services.fee_policy_provider import FeePolicyProvider
from core.services.interest_calculator import calculate_interest
from core.services.rate_catalog import InMemoryRateCatalog
from core.services.revenue_engine import RevenueEngine
from core.services.revenue_store import RevenueStore
from utils.timezone import today_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BillingService:
    """Invoice lifecycle, interest accrual and operator ledger upkeep."""

    def __init__(
        self,
        store: RevenueStore,
        policy_provider: FeePolicyProvider | None = None,
        event_bus: EventBus | None = None,
        engine: RevenueEngine | None = None,
        config: RevenueConfig | None = None,
    ):
        self.store = store
        self.config = config or RevenueConfig()
        self.policy_provider = policy_provider or FeePolicyProvider(
            InMemoryRateCatalog(), cache_ttl_seconds=self.config.rate_cache_ttl_seconds,
        )
        self.event_bus = event_bus or EventBus()
        self.engine = engine or RevenueEngine()

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def _load(self, invoice_id: UUID) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def _persist(self, invoice: Invoice) -> list:
        """Save `invoice` and project its events. Caller holds the transaction."""
        events = invoice.pull_events()
        self.store.save_invoice(invoice)
        apply_ledger_events(self.store, invoice.operator_id, events, invoice.currency)
        return events

    def _publish(self, events: list) -> None:
        self.event_bus.publish_all(events)

    def _mutate(self, invoice_id: UUID, action: Callable[[Invoice], T]) -> tuple[Invoice, T]:
        with self.store.transaction():
            invoice = self._load(invoice_id)
            result = action(invoice)
            events = self._persist(invoice)
        self._publish(events)
        return invoice, result

    # -------------------------------------------------------------------------
    # Quotes and eligibility
    # -------------------------------------------------------------------------

    def quote(self, request: UnifiedFeeRequest, on: date | None = None) -> UnifiedFeeBreakdown:
        """
        Price a flight with the policies in force on `on` (default today).

        A request without an airport is priced at the configured default
        arrival airport.
        """
        on = on or today_utc()
        if request.airport is None:
            request = request.model_copy(update={"airport": self.config.default_arrival_airport})
        return self.engine.calculate_unified_fee(
            request,
            permit_policy=self.policy_provider.permit_policy(on),
            airport_policy=self.policy_provider.airport_policy(on),
        )

    def check_permit_eligibility(self, operator_id: UUID) -> PermitIssuanceEligibility:
        balance = self.get_account_status(operator_id)
        return self.engine.check_permit_issuance_eligibility(
            balance.total_overdue, balance.overdue_invoice_count
        )

    # -------------------------------------------------------------------------
    # Creation and draft editing
    # -------------------------------------------------------------------------

    def _require_operator_currency(self, operator_id: UUID, currency: Currency) -> None:
        """
        An operator is billed in one currency: that of its ledger, or before
        it has one, that of its invoices that are not cancelled.

        Raises:
            FeeValidationError: `currency` differs from the operator's
        """
        balance = self.store.get_account_balance(operator_id)
        if balance is not None:
            billed_in = balance.currency
        else:
            billed_in = next(
                (
                    invoice.currency
                    for invoice in self.store.list_invoices(operator_id=operator_id)
                    if invoice.status != InvoiceStatus.CANCELLED
                ),
                None,
            )
        if billed_in is not None and billed_in != currency:
            raise FeeValidationError(
                f"Operator {operator_id} is billed in {billed_in.value}, not {currency.value}"
            )

    def create_invoice(
        self,
        operator_id: UUID,
        invoice_date: date | None = None,
        currency: Currency | None = None,
        **flight_details,
    ) -> Invoice:
        """Create and store an empty DRAFT invoice."""
        currency = currency or self.config.default_currency
        self._require_operator_currency(operator_id, currency)
        invoice = Invoice.create(
            operator_id,
            invoice_date=invoice_date,
            payment_terms_days=self.config.payment_terms_days,
            currency=currency,
            number_prefix=self.config.invoice_number_prefix,
            **flight_details,
        )
        with self.store.transaction():
            events = self._persist(invoice)
        self._publish(events)
        logger.info("Created invoice %s for operator %s", invoice.invoice_number, operator_id)
        return invoice

    @staticmethod
    def _add_quote_lines(invoice: Invoice, breakdown: UnifiedFeeBreakdown) -> None:
        permit = breakdown.permit_fees
        # Adjustments can be credits, so the permit side goes on as one net line
        if not permit.total.is_zero:
            invoice.add_line_item(
                FeeCategory.PERMIT,
                f"{permit.application_type.label} Permit Fee",
                1,
                permit.total,
            )
        for line in breakdown.airport_fees.lines:
            if line.amount.is_zero:
                continue
            invoice.add_line_item(line.category, line.description, 1, line.amount)

    def create_invoice_from_quote(
        self,
        operator_id: UUID,
        breakdown: UnifiedFeeBreakdown,
        invoice_date: date | None = None,
        **flight_details,
    ) -> Invoice:
        """
        Create a DRAFT invoice carrying the lines of a unified quote.

        Zero-amount airport lines (exempt landing fees, for example) are not
        billed.
        """
        self._require_operator_currency(operator_id, breakdown.grand_total.currency)
        invoice = Invoice.create(
            operator_id,
            invoice_date=invoice_date,
            payment_terms_days=self.config.payment_terms_days,
            currency=breakdown.grand_total.currency,
            number_prefix=self.config.invoice_number_prefix,
            **flight_details,
        )
        self._add_quote_lines(invoice, breakdown)

        with self.store.transaction():
            events = self._persist(invoice)
        self._publish(events)
        logger.info(
            "Created invoice %s from quote for operator %s: %d lines, %s",
            invoice.invoice_number, operator_id, len(invoice.line_items), invoice.subtotal,
        )
        return invoice

    def add_line_item(
        self,
        invoice_id: UUID,
        category: FeeCategory,
        description: str,
        quantity,
        unit_rate: Money,
        quantity_unit: str | None = None,
        fee_rate_id: UUID | None = None,
    ) -> InvoiceLineItem:
        _, item = self._mutate(
            invoice_id,
            lambda inv: inv.add_line_item(
                category, description, quantity, unit_rate,
                quantity_unit=quantity_unit, fee_rate_id=fee_rate_id,
            ),
        )
        return item

    def remove_line_item(self, invoice_id: UUID, line_item_id: UUID) -> InvoiceLineItem:
        _, item = self._mutate(invoice_id, lambda inv: inv.remove_line_item(line_item_id))
        return item

    def update_line_item_amount(
        self, invoice_id: UUID, line_item_id: UUID, unit_rate: Money, quantity=None
    ) -> InvoiceLineItem:
        _, item = self._mutate(
            invoice_id, lambda inv: inv.update_line_item_amount(line_item_id, unit_rate, quantity)
        )
        return item

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def finalize(self, invoice_id: UUID, by: str) -> Invoice:
        def finalize(invoice: Invoice) -> None:
            self._require_operator_currency(invoice.operator_id, invoice.currency)
            invoice.finalize(by)

        invoice, _ = self._mutate(invoice_id, finalize)
        logger.info(
            "Finalized invoice %s: %s due %s",
            invoice.invoice_number, invoice.total_amount, invoice.due_date,
        )
        return invoice

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Money,
        method: PaymentMethod,
        recorded_by: str,
        transaction_reference: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        invoice, payment = self._mutate(
            invoice_id,
            lambda inv: inv.record_payment(
                amount,
                method,
                recorded_by,
                transaction_reference=transaction_reference,
                notes=notes,
                receipt_prefix=self.config.receipt_number_prefix,
            ),
        )
        logger.info(
            "Recorded payment %s (%s) on invoice %s, balance due %s",
            payment.receipt_number, payment.amount, invoice.invoice_number, invoice.balance_due,
        )
        return payment

    def refund_payment(self, invoice_id: UUID, payment_id: UUID, by: str, reason: str) -> Payment:
        invoice, payment = self._mutate(
            invoice_id, lambda inv: inv.refund_payment(payment_id, by, reason)
        )
        logger.info(
            "Refunded payment %s (%s) on invoice %s",
            payment.receipt_number, payment.amount, invoice.invoice_number,
        )
        return payment

    def mark_overdue(self, invoice_id: UUID, today: date | None = None) -> Invoice:
        invoice, _ = self._mutate(invoice_id, lambda inv: inv.mark_overdue(today))
        logger.info("Invoice %s is overdue: %s", invoice.invoice_number, invoice.balance_due)
        return invoice

    def cancel(self, invoice_id: UUID, by: str, reason: str) -> Invoice:
        invoice, _ = self._mutate(invoice_id, lambda inv: inv.cancel(by, reason))
        logger.info("Cancelled invoice %s by %s", invoice.invoice_number, by)
        return invoice

    # -------------------------------------------------------------------------
    # Interest
    # -------------------------------------------------------------------------

    def _interest_due(self, invoice: Invoice, today: date) -> Money:
        """Interest owed to date on unpaid principal, less interest already charged."""
        zero = Money.zero(invoice.currency)
        if invoice.status != InvoiceStatus.OVERDUE:
            return zero

        principal = (
            invoice.subtotal - invoice.amount_paid
            if invoice.subtotal > invoice.amount_paid else zero
        )
        rate = self.policy_provider.airport_policy(today).late_payment_monthly_rate()
        owed = calculate_interest(principal, invoice.days_overdue(today), rate)
        if owed <= invoice.total_interest:
            return zero
        return owed - invoice.total_interest

    def accrue_interest(self, invoice_id: UUID, today: date | None = None) -> Money:
        """
        Charge interest accrued since the last charge on an OVERDUE invoice.

        Returns:
            Amount charged, zero when nothing new has accrued
        """
        today = today or today_utc()
        current = self._load(invoice_id)
        if self._interest_due(current, today).is_zero:
            return Money.zero(current.currency)

        def charge(invoice: Invoice) -> Money:
            amount = self._interest_due(invoice, today)
            if amount.is_zero:
                return amount
            invoice.add_interest_charge(
                amount,
                f"Late Payment Interest ({invoice.days_overdue(today)} days overdue)",
            )
            return amount

        invoice, amount = self._mutate(invoice_id, charge)
        if not amount.is_zero:
            logger.info("Charged %s interest on invoice %s", amount, invoice.invoice_number)
        return amount

    # -------------------------------------------------------------------------
    # Batch jobs
    # -------------------------------------------------------------------------

    def sweep_overdue(self, today: date | None = None) -> list[Invoice]:
        """
        Mark every past-due PENDING/PARTIALLY_PAID invoice OVERDUE.

        An invoice changed concurrently is skipped: a version conflict is
        picked up by the next sweep, and one settled or cancelled since the
        candidates were listed no longer needs marking.
        """
        today = today or today_utc()
        candidates = self.store.list_invoices(
            statuses=[InvoiceStatus.PENDING, InvoiceStatus.PARTIALLY_PAID]
        )

        marked = []
        for candidate in candidates:
            if not candidate.is_past_due(today):
                continue
            try:
                invoice, _ = self._mutate(candidate.id, lambda inv: inv.mark_overdue(today))
            except (ConcurrencyConflictError, InvalidInvoiceStateError) as e:
                logger.warning("Skipping invoice %s in overdue sweep: %s", candidate.invoice_number, e)
                continue
            marked.append(invoice)

        logger.info("Overdue sweep for %s: %d of %d open invoices marked", today, len(marked), len(candidates))
        return marked

    def accrue_overdue_interest(self, today: date | None = None) -> Money:
        """Accrue interest on every OVERDUE invoice. Returns the total charged."""
        today = today or today_utc()
        total = Money.zero(self.config.default_currency)
        charged = 0
        for invoice in self.store.list_invoices(statuses=[InvoiceStatus.OVERDUE]):
            try:
                amount = self.accrue_interest(invoice.id, today)
            except (ConcurrencyConflictError, InvalidInvoiceStateError) as e:
                logger.warning("Skipping interest on invoice %s: %s", invoice.invoice_number, e)
                continue
            if amount.is_zero:
                continue
            charged += 1
            if amount.currency == total.currency:
                total = total + amount

        logger.info("Interest accrual for %s: %d invoices charged, %s", today, charged, total)
        return total

    # -------------------------------------------------------------------------
    # Queries and reconciliation
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self._load(invoice_id)

    def list_invoices(
        self, operator_id: UUID | None = None, statuses: list[InvoiceStatus] | None = None
    ) -> list[Invoice]:
        return self.store.list_invoices(operator_id=operator_id, statuses=statuses)

    def get_account_status(self, operator_id: UUID) -> OperatorAccountBalance:
        """Current ledger for `operator_id`; an all-zero balance if it has none yet."""
        return self.store.get_or_create_account_balance(operator_id, self.config.default_currency)

    def reconcile_account(self, operator_id: UUID) -> dict[str, tuple]:
        """
        Rebuild an operator's ledger from its invoices.

        Returns:
            {field: (ledger value, corrected value)} for every total that had
            drifted; empty when the ledger was consistent
        """
        with self.store.transaction():
            balance = self.get_account_status(operator_id)
            invoices = self.store.list_invoices(operator_id=operator_id)
            discrepancies = balance.recalculate(LedgerTotals.from_invoices(invoices, balance.currency))
            if discrepancies:
                self.store.save_account_balance(balance)

        for name, (old, new) in discrepancies.items():
            logger.warning(
                "Ledger discrepancy for operator %s: %s was %s, corrected to %s",
                operator_id, name, old, new,
            )
        logger.info(
            "Reconciled account for operator %s: %d discrepancies", operator_id, len(discrepancies)
        )
        return discrepancies
