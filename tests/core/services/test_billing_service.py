"""
Tests for BillingService.

Covers the invoice lifecycle as units of work: each call must leave the
stored invoice and the operator's ledger consistent, publish events only
after commit, and leave nothing behind when it fails.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from core.config import RevenueConfig
from core.event_bus import EventBus
from core.exceptions import (
    ConcurrencyConflictError,
    FeeValidationError,
    InvalidInvoiceStateError,
    InvoiceNotFoundError,
)
from core.handlers.account_balance_handler import handle_invoice_event
from core.models import (
    Airport,
    ApplicationType,
    Currency,
    FeeCategory,
    FeeRate,
    Invoice,
    InvoiceStatus,
    Money,
    OperationType,
    PaymentExceedsBalanceError,
    PaymentMethod,
    UnifiedFeeRequest,
)
from core.services.billing_service import BillingService
from core.services.fee_policy_provider import FeePolicyProvider
from core.services.rate_catalog import InMemoryRateCatalog
from core.services.revenue_store import InMemoryRevenueStore

INVOICE_DATE = date(2026, 3, 1)
DUE_DATE = INVOICE_DATE + timedelta(days=30)
CLERK = "clerk@airport"


@pytest.fixture
def store():
    return InMemoryRevenueStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def billing(store, bus):
    return BillingService(store, event_bus=bus)


@pytest.fixture
def published(bus):
    """Names of events published on the bus, in order."""
    names = []
    bus.subscribe(EventBus.WILDCARD, lambda event: names.append(event.__class__.__name__))
    return names


def _request(**overrides) -> UnifiedFeeRequest:
    values = dict(
        application_type=ApplicationType.ONE_TIME,
        operation_type=OperationType.GENERAL_AVIATION,
        airport=Airport.TUPJ,
        seat_count=10,
        mtow_kg=Decimal("5000"),
    )
    values.update(overrides)
    return UnifiedFeeRequest(**values)


def _finalized_invoice(billing, operator_id, amount="1000.00"):
    invoice = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)
    billing.add_line_item(invoice.id, FeeCategory.LANDING, "Landing Fee", 1, Money.usd(amount))
    return billing.finalize(invoice.id, by=CLERK)


def assert_ledger_consistent(billing, operator_id):
    assert billing.reconcile_account(operator_id) == {}


class SettlingStore(InMemoryRevenueStore):
    """Pays one invoice in full just after the next listing is taken."""

    settle_after_listing = None

    def list_invoices(self, operator_id=None, statuses=None):
        invoices = super().list_invoices(operator_id=operator_id, statuses=statuses)
        if self.settle_after_listing is not None:
            invoice_id, self.settle_after_listing = self.settle_after_listing, None
            invoice = self.get_invoice(invoice_id)
            BillingService(self).record_payment(invoice_id, invoice.balance_due, PaymentMethod.CASH, CLERK)
        return invoices


# =============================================================================
# QUOTES
# =============================================================================


class TestQuote:

    def test_default_policies_without_tenant(self, billing):
        breakdown = billing.quote(_request(), on=date(2026, 6, 1))
        assert breakdown.grand_total == Money.usd(415)

    def test_tenant_rates_apply(self, store, as_test_tenant):
        catalog = InMemoryRateCatalog(rates=[FeeRate(
            category=FeeCategory.LANDING,
            operation_type=OperationType.GENERAL_AVIATION,
            amount=Decimal("6.00"),
            effective_from=date(2026, 1, 1),
        )])
        billing = BillingService(store, policy_provider=FeePolicyProvider(catalog))

        breakdown = billing.quote(_request(), on=date(2026, 6, 1))

        # 12 x 6.00 landing + 5.00 navigation + 350.00 permit
        assert breakdown.grand_total == Money.usd(427)
        assert breakdown.airport_fees.policy_source.startswith("Configured Policy")

    def test_missing_airport_uses_configured_default(self, store):
        billing = BillingService(store, config=RevenueConfig(default_arrival_airport=Airport.TUPW))

        defaulted = billing.quote(_request(airport=None, passenger_count=2), on=INVOICE_DATE)
        virgin_gorda = billing.quote(_request(airport=Airport.TUPW, passenger_count=2), on=INVOICE_DATE)
        tortola = billing.quote(_request(airport=Airport.TUPJ, passenger_count=2), on=INVOICE_DATE)

        assert defaulted.grand_total == virgin_gorda.grand_total
        assert defaulted.grand_total != tortola.grand_total


# =============================================================================
# INVOICE CREATION
# =============================================================================


class TestCreateInvoice:

    def test_draft_is_stored(self, billing, store, operator_id):
        invoice = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)

        stored = store.get_invoice(invoice.id)
        assert stored.status == InvoiceStatus.DRAFT
        assert stored.due_date == DUE_DATE
        assert stored.invoice_number.startswith("BVIA-INV-20260301-")

    def test_payment_terms_from_config(self, store, operator_id):
        billing = BillingService(store, config=RevenueConfig(payment_terms_days=15))
        invoice = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)
        assert invoice.due_date == date(2026, 3, 16)

    def test_draft_does_not_touch_ledger(self, billing, store, operator_id, published):
        billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)
        assert store.get_account_balance(operator_id) is None
        assert published == ["InvoiceCreated"]

    def test_from_quote(self, billing, operator_id):
        breakdown = billing.quote(_request(passenger_count=2), on=INVOICE_DATE)

        invoice = billing.create_invoice_from_quote(
            operator_id, breakdown, invoice_date=INVOICE_DATE, arrival_airport=Airport.TUPJ,
        )

        assert invoice.line_items[0].category == FeeCategory.PERMIT
        assert invoice.line_items[0].description == "One Time Permit Fee"
        assert invoice.line_items[0].amount == Money.usd(350)
        assert invoice.subtotal == breakdown.grand_total
        assert invoice.arrival_airport == Airport.TUPJ

    def test_from_quote_nets_discount_and_skips_zero_lines(self, billing, operator_id):
        breakdown = billing.quote(
            _request(application_type=ApplicationType.EMERGENCY, operation_type=OperationType.MILITARY),
            on=INVOICE_DATE,
        )

        invoice = billing.create_invoice_from_quote(operator_id, breakdown, invoice_date=INVOICE_DATE)

        assert [item.category for item in invoice.line_items] == [
            FeeCategory.PERMIT, FeeCategory.NAVIGATION,
        ]
        assert invoice.line_items[0].description == "Emergency Permit Fee"
        assert invoice.subtotal == Money.usd(180)


class TestOperatorCurrency:

    def test_second_currency_rejected_after_ledger_exists(self, billing, store, operator_id):
        _finalized_invoice(billing, operator_id)

        with pytest.raises(FeeValidationError, match="billed in USD"):
            billing.create_invoice(operator_id, invoice_date=INVOICE_DATE, currency=Currency.XCD)
        assert len(store.list_invoices(operator_id=operator_id)) == 1

    def test_second_currency_rejected_while_draft_open(self, billing, operator_id):
        billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)

        with pytest.raises(FeeValidationError):
            billing.create_invoice(operator_id, invoice_date=INVOICE_DATE, currency=Currency.XCD)

    def test_cancelled_draft_does_not_fix_currency(self, billing, operator_id):
        draft = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)
        billing.cancel(draft.id, by=CLERK, reason="wrong currency")

        invoice = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE, currency=Currency.XCD)
        billing.add_line_item(invoice.id, FeeCategory.LANDING, "Landing Fee", 1, Money.xcd(100))
        billing.finalize(invoice.id, by=CLERK)

        balance = billing.get_account_status(operator_id)
        assert balance.currency == Currency.XCD
        assert balance.total_invoiced == Money.xcd(100)

    def test_finalize_rejects_other_currency_and_leaves_draft(self, billing, store, operator_id):
        _finalized_invoice(billing, operator_id)
        stray = Invoice.create(operator_id, invoice_date=INVOICE_DATE, currency=Currency.XCD)
        stray.add_line_item(FeeCategory.LANDING, "Landing Fee", 1, Money.xcd(100))
        stray.pull_events()
        store.save_invoice(stray)

        with pytest.raises(FeeValidationError):
            billing.finalize(stray.id, by=CLERK)

        assert store.get_invoice(stray.id).status == InvoiceStatus.DRAFT
        assert billing.get_account_status(operator_id).total_invoiced == Money.usd(1000)


class TestDraftEditing:

    def test_add_update_remove(self, billing, operator_id):
        invoice = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)
        landing = billing.add_line_item(invoice.id, FeeCategory.LANDING, "Landing Fee", 1, Money.usd(50))
        billing.add_line_item(invoice.id, FeeCategory.PARKING, "Parking", 2, Money.usd(10))

        billing.update_line_item_amount(invoice.id, landing.id, Money.usd(60))
        assert billing.get_invoice(invoice.id).subtotal == Money.usd(80)

        billing.remove_line_item(invoice.id, landing.id)
        stored = billing.get_invoice(invoice.id)
        assert stored.subtotal == Money.usd(20)
        assert stored.line_items[0].display_order == 1

    def test_unknown_invoice(self, billing):
        with pytest.raises(InvoiceNotFoundError):
            billing.finalize(uuid4(), by=CLERK)


# =============================================================================
# LIFECYCLE AND LEDGER
# =============================================================================


class TestFinalize:

    def test_ledger_records_invoice(self, billing, operator_id):
        _finalized_invoice(billing, operator_id)

        balance = billing.get_account_status(operator_id)
        assert balance.total_invoiced == Money.usd(1000)
        assert balance.current_balance == Money.usd(1000)
        assert balance.invoice_count == 1
        assert_ledger_consistent(billing, operator_id)

    def test_invalid_transition_changes_nothing(self, billing, store, operator_id, published):
        invoice = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)
        published.clear()

        with pytest.raises(InvalidInvoiceStateError):
            billing.finalize(invoice.id, by=CLERK)

        assert store.get_invoice(invoice.id).version == 1
        assert published == []

    def test_ledger_failure_rolls_back_invoice(self, billing, store, operator_id, published, monkeypatch):
        invoice = billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)
        billing.add_line_item(invoice.id, FeeCategory.LANDING, "Landing Fee", 1, Money.usd(50))
        published.clear()

        def fail(balance):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(store, "save_account_balance", fail)
        with pytest.raises(RuntimeError):
            billing.finalize(invoice.id, by=CLERK)

        assert store.get_invoice(invoice.id).status == InvoiceStatus.DRAFT
        assert published == []

    def test_events_published_after_commit(self, billing, store, bus, operator_id):
        seen = []

        def on_finalized(event):
            seen.append(store.get_invoice(event.invoice_id).status)

        bus.subscribe("InvoiceFinalized", on_finalized)
        _finalized_invoice(billing, operator_id)

        assert seen == [InvoiceStatus.PENDING]


class TestPayments:

    def test_partial_then_full(self, billing, operator_id, published):
        invoice = _finalized_invoice(billing, operator_id)

        first = billing.record_payment(invoice.id, Money.usd(400), PaymentMethod.BANK_TRANSFER, CLERK)
        assert first.receipt_number.startswith("BVIA-RCP-")
        assert billing.get_invoice(invoice.id).status == InvoiceStatus.PARTIALLY_PAID

        billing.record_payment(invoice.id, Money.usd(600), PaymentMethod.CASH, CLERK)

        stored = billing.get_invoice(invoice.id)
        assert stored.status == InvoiceStatus.PAID
        balance = billing.get_account_status(operator_id)
        assert balance.total_paid == Money.usd(1000)
        assert balance.current_balance.is_zero
        assert balance.paid_invoice_count == 1
        assert published[-2:] == ["PaymentReceived", "InvoicePaid"]
        assert_ledger_consistent(billing, operator_id)

    def test_overpayment_rejected(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        with pytest.raises(PaymentExceedsBalanceError):
            billing.record_payment(invoice.id, Money.usd("1000.01"), PaymentMethod.CASH, CLERK)
        assert billing.get_account_status(operator_id).total_paid.is_zero

    def test_refund_reopens_balance(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        payment = billing.record_payment(invoice.id, Money.usd(1000), PaymentMethod.CASH, CLERK)

        billing.refund_payment(invoice.id, payment.id, by=CLERK, reason="Duplicate transfer")

        assert billing.get_invoice(invoice.id).status == InvoiceStatus.PENDING
        balance = billing.get_account_status(operator_id)
        assert balance.total_paid.is_zero
        assert balance.current_balance == Money.usd(1000)
        assert balance.paid_invoice_count == 0
        assert_ledger_consistent(billing, operator_id)


class TestOverdueAndInterest:

    def test_overdue_blocks_permits(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        assert billing.check_permit_eligibility(operator_id).is_eligible

        billing.mark_overdue(invoice.id, today=DUE_DATE + timedelta(days=1))

        eligibility = billing.check_permit_eligibility(operator_id)
        assert not eligibility.is_eligible
        assert eligibility.block_reasons == [
            "Outstanding airport authority debt: USD 1,000.00",
            "Overdue invoices: 1",
        ]
        assert_ledger_consistent(billing, operator_id)

    def test_not_yet_due(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        with pytest.raises(InvalidInvoiceStateError):
            billing.mark_overdue(invoice.id, today=DUE_DATE)

    def test_interest_accrues_incrementally(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        billing.mark_overdue(invoice.id, today=DUE_DATE + timedelta(days=1))

        assert billing.accrue_interest(invoice.id, today=DUE_DATE + timedelta(days=30)).is_zero
        assert billing.accrue_interest(invoice.id, today=DUE_DATE + timedelta(days=60)) == Money.usd(15)
        assert billing.accrue_interest(invoice.id, today=DUE_DATE + timedelta(days=60)).is_zero
        assert billing.accrue_interest(invoice.id, today=DUE_DATE + timedelta(days=90)) == Money.usd(15)

        stored = billing.get_invoice(invoice.id)
        assert stored.total_interest == Money.usd(30)
        assert stored.balance_due == Money.usd(1030)
        assert stored.line_items[-1].description == "Late Payment Interest (90 days overdue)"
        assert billing.get_account_status(operator_id).total_overdue == Money.usd(1030)
        assert_ledger_consistent(billing, operator_id)

    def test_interest_only_on_unpaid_principal(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        billing.record_payment(invoice.id, Money.usd(600), PaymentMethod.CASH, CLERK)
        billing.mark_overdue(invoice.id, today=DUE_DATE + timedelta(days=1))

        assert billing.accrue_interest(invoice.id, today=DUE_DATE + timedelta(days=60)) == Money.usd(6)

    def test_interest_requires_overdue(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        assert billing.accrue_interest(invoice.id, today=DUE_DATE + timedelta(days=90)).is_zero

    def test_payment_clears_overdue(self, billing, operator_id, published):
        invoice = _finalized_invoice(billing, operator_id)
        billing.mark_overdue(invoice.id, today=DUE_DATE + timedelta(days=1))
        billing.accrue_interest(invoice.id, today=DUE_DATE + timedelta(days=60))
        published.clear()

        billing.record_payment(invoice.id, Money.usd(1015), PaymentMethod.WIRE_TRANSFER, CLERK)

        assert published == ["InvoiceOverdueCleared", "PaymentReceived", "InvoicePaid"]
        balance = billing.get_account_status(operator_id)
        assert balance.total_overdue.is_zero
        assert balance.overdue_invoice_count == 0
        assert billing.check_permit_eligibility(operator_id).is_eligible
        assert_ledger_consistent(billing, operator_id)


class TestCancel:

    def test_cancel_partially_paid(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        billing.record_payment(invoice.id, Money.usd(400), PaymentMethod.CASH, CLERK)

        cancelled = billing.cancel(invoice.id, by=CLERK, reason="Flight did not operate")

        assert cancelled.status == InvoiceStatus.CANCELLED
        balance = billing.get_account_status(operator_id)
        assert balance.total_invoiced.is_zero
        assert balance.current_balance.is_zero
        assert balance.total_paid == Money.usd(400)
        assert balance.invoice_count == 0
        assert_ledger_consistent(billing, operator_id)

    def test_cancel_overdue_clears_overdue(self, billing, operator_id, published):
        invoice = _finalized_invoice(billing, operator_id)
        billing.mark_overdue(invoice.id, today=DUE_DATE + timedelta(days=1))
        published.clear()

        billing.cancel(invoice.id, by=CLERK, reason="Waived")

        assert published == ["InvoiceOverdueCleared", "InvoiceCancelled"]
        assert billing.check_permit_eligibility(operator_id).is_eligible
        assert_ledger_consistent(billing, operator_id)

    def test_paid_cannot_be_cancelled(self, billing, operator_id):
        invoice = _finalized_invoice(billing, operator_id)
        billing.record_payment(invoice.id, Money.usd(1000), PaymentMethod.CASH, CLERK)
        with pytest.raises(InvalidInvoiceStateError):
            billing.cancel(invoice.id, by=CLERK, reason="Too late")


# =============================================================================
# BATCH JOBS
# =============================================================================


class TestBatchJobs:

    def test_sweep_marks_only_past_due(self, billing, operator_id):
        past_due = _finalized_invoice(billing, operator_id)
        later = billing.create_invoice(operator_id, invoice_date=DUE_DATE)
        billing.add_line_item(later.id, FeeCategory.LANDING, "Landing Fee", 1, Money.usd(50))
        billing.finalize(later.id, by=CLERK)
        billing.create_invoice(operator_id, invoice_date=INVOICE_DATE)  # draft

        marked = billing.sweep_overdue(today=DUE_DATE + timedelta(days=1))

        assert [inv.id for inv in marked] == [past_due.id]
        assert billing.get_invoice(later.id).status == InvoiceStatus.PENDING
        assert_ledger_consistent(billing, operator_id)

    def test_sweep_skips_conflicts(self, billing, store, operator_id, monkeypatch, caplog):
        conflicted = _finalized_invoice(billing, operator_id)
        other = _finalized_invoice(billing, operator_id)
        original_save = store.save_invoice

        def save(invoice):
            if invoice.id == conflicted.id:
                raise ConcurrencyConflictError("Invoice", invoice.id, invoice.version, invoice.version + 1)
            original_save(invoice)

        monkeypatch.setattr(store, "save_invoice", save)
        with caplog.at_level(logging.WARNING, logger="core.services.billing_service"):
            marked = billing.sweep_overdue(today=DUE_DATE + timedelta(days=1))

        assert [inv.id for inv in marked] == [other.id]
        assert "Skipping invoice" in caplog.text
        assert store.get_invoice(conflicted.id).status == InvoiceStatus.PENDING

    def test_sweep_skips_invoice_settled_after_listing(self, operator_id, caplog):
        store = SettlingStore()
        billing = BillingService(store)
        settled = _finalized_invoice(billing, operator_id)
        other = _finalized_invoice(billing, operator_id)
        store.settle_after_listing = settled.id

        with caplog.at_level(logging.WARNING, logger="core.services.billing_service"):
            marked = billing.sweep_overdue(today=DUE_DATE + timedelta(days=1))

        assert [inv.id for inv in marked] == [other.id]
        assert store.get_invoice(settled.id).status == InvoiceStatus.PAID
        assert "Skipping invoice" in caplog.text
        assert_ledger_consistent(billing, operator_id)

    def test_accrue_overdue_interest(self, billing, operator_id):
        first = _finalized_invoice(billing, operator_id)
        second = _finalized_invoice(billing, operator_id, amount="2000.00")
        billing.sweep_overdue(today=DUE_DATE + timedelta(days=1))

        total = billing.accrue_overdue_interest(today=DUE_DATE + timedelta(days=60))

        assert total == Money.usd(45)
        assert billing.get_invoice(first.id).total_interest == Money.usd(15)
        assert billing.get_invoice(second.id).total_interest == Money.usd(30)


# =============================================================================
# LEDGER UPKEEP
# =============================================================================


class TestLedger:

    def test_reconcile_repairs_drift(self, billing, store, operator_id, caplog):
        _finalized_invoice(billing, operator_id)
        balance = store.get_account_balance(operator_id)
        balance.current_balance = Money.usd(1)
        store.save_account_balance(balance)

        with caplog.at_level(logging.WARNING, logger="core.services.billing_service"):
            discrepancies = billing.reconcile_account(operator_id)

        assert discrepancies == {"current_balance": (Money.usd(1), Money.usd(1000))}
        assert "Ledger discrepancy" in caplog.text
        assert store.get_account_balance(operator_id).current_balance == Money.usd(1000)
        assert billing.reconcile_account(operator_id) == {}

    def test_unknown_operator_has_zero_balance(self, billing, operator_id):
        balance = billing.get_account_status(operator_id)
        assert balance.current_balance.is_zero
        assert billing.check_permit_eligibility(operator_id).is_eligible

    def test_bus_redelivery_is_not_double_counted(self, billing, store, bus, operator_id, caplog):
        bus.subscribe(EventBus.WILDCARD, handle_invoice_event(store))

        with caplog.at_level(logging.DEBUG, logger="core.handlers.account_balance_handler"):
            invoice = _finalized_invoice(billing, operator_id)
            billing.record_payment(invoice.id, Money.usd(250), PaymentMethod.CASH, CLERK)

        balance = billing.get_account_status(operator_id)
        assert balance.total_invoiced == Money.usd(1000)
        assert balance.total_paid == Money.usd(250)
        skipped = [r for r in caplog.records if "Skipping already applied InvoiceFinalized" in r.getMessage()]
        assert skipped
        assert all(r.levelno == logging.DEBUG for r in skipped)
        assert_ledger_consistent(billing, operator_id)

    def test_operators_are_separate(self, billing, operator_id, test_tenant_b_id):
        _finalized_invoice(billing, operator_id)
        _finalized_invoice(billing, test_tenant_b_id, amount="50.00")

        assert billing.get_account_status(operator_id).total_invoiced == Money.usd(1000)
        assert billing.get_account_status(test_tenant_b_id).total_invoiced == Money.usd(50)
        assert len(billing.list_invoices(operator_id=operator_id)) == 1
