"""Tests for the in-memory revenue store."""

from datetime import date
from uuid import uuid4

import pytest

from core.exceptions import ConcurrencyConflictError
from core.models import FeeCategory, Invoice, InvoiceStatus, Money, OperatorAccountBalance
from core.services.revenue_store import InMemoryRevenueStore


@pytest.fixture
def store():
    return InMemoryRevenueStore()


def _invoice(operator_id, invoice_date=date(2026, 3, 1)) -> Invoice:
    invoice = Invoice.create(operator_id, invoice_date=invoice_date)
    invoice.add_line_item(FeeCategory.LANDING, "Landing Fee", 1, Money.usd(50))
    invoice.pull_events()
    return invoice


# =============================================================================
# INVOICES
# =============================================================================


class TestInvoices:

    def test_save_and_get(self, store, operator_id):
        invoice = _invoice(operator_id)
        store.save_invoice(invoice)

        loaded = store.get_invoice(invoice.id)
        assert loaded.id == invoice.id
        assert loaded.subtotal == Money.usd(50)
        assert loaded.version == 1

    def test_get_missing_returns_none(self, store):
        assert store.get_invoice(uuid4()) is None

    def test_returned_copy_is_detached(self, store, operator_id):
        invoice = _invoice(operator_id)
        store.save_invoice(invoice)

        loaded = store.get_invoice(invoice.id)
        loaded.finalize(by="clerk")

        assert store.get_invoice(invoice.id).status == InvoiceStatus.DRAFT

    def test_version_increments_on_save(self, store, operator_id):
        invoice = _invoice(operator_id)
        store.save_invoice(invoice)
        store.save_invoice(invoice)
        assert invoice.version == 2
        assert store.get_invoice(invoice.id).version == 2

    def test_stale_write_conflicts(self, store, operator_id):
        invoice = _invoice(operator_id)
        store.save_invoice(invoice)

        first = store.get_invoice(invoice.id)
        second = store.get_invoice(invoice.id)
        first.finalize(by="clerk")
        store.save_invoice(first)

        second.notes = "stale"
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            store.save_invoice(second)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert store.get_invoice(invoice.id).notes is None

    def test_list_filters_and_orders(self, store, operator_id, test_tenant_b_id):
        later = _invoice(operator_id, date(2026, 3, 5))
        earlier = _invoice(operator_id, date(2026, 3, 1))
        other = _invoice(test_tenant_b_id)
        for invoice in (later, earlier, other):
            store.save_invoice(invoice)

        listed = store.list_invoices(operator_id=operator_id)
        assert [i.id for i in listed] == [earlier.id, later.id]

        assert store.list_invoices(statuses=[InvoiceStatus.PENDING]) == []
        assert len(store.list_invoices(statuses=[InvoiceStatus.DRAFT])) == 3


# =============================================================================
# ACCOUNT BALANCES
# =============================================================================


class TestAccountBalances:

    def test_get_or_create_does_not_persist(self, store, operator_id):
        balance = store.get_or_create_account_balance(operator_id)
        assert balance.version == 0
        assert store.get_account_balance(operator_id) is None

    def test_save_and_conflict(self, store, operator_id):
        balance = OperatorAccountBalance.create(operator_id)
        store.save_account_balance(balance)

        stale = OperatorAccountBalance.create(operator_id)
        with pytest.raises(ConcurrencyConflictError):
            store.save_account_balance(stale)


# =============================================================================
# TRANSACTIONS AND EVENT CLAIMS
# =============================================================================


class TestTransaction:

    def test_rolls_back_on_error(self, store, operator_id):
        invoice = _invoice(operator_id)

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.save_invoice(invoice)
                store.claim_event("evt-1")
                raise RuntimeError("boom")

        assert store.get_invoice(invoice.id) is None
        assert store.claim_event("evt-1")

    def test_commits_on_success(self, store, operator_id):
        invoice = _invoice(operator_id)
        with store.transaction():
            store.save_invoice(invoice)
        assert store.get_invoice(invoice.id) is not None

    def test_claim_event_once(self, store):
        assert store.claim_event("evt-1")
        assert not store.claim_event("evt-1")
        assert store.claim_event("evt-2")
