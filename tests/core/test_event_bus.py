"""Tests for EventBus."""

import logging
from uuid import uuid4

import pytest

from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoicePaid
from core.models import Invoice


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def _invoice():
    invoice = Invoice.create(uuid4())
    invoice.pull_events()
    return invoice


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceCreated", received.append)

        event = InvoiceCreated.create(_invoice)
        bus.publish(event)

        assert len(received) == 1
        assert received[0] is event

    def test_handler_can_read_payload_fields(self, _invoice):
        bus = EventBus()
        invoice_ids = []
        bus.subscribe("InvoiceCreated", lambda e: invoice_ids.append(e.invoice_id))

        bus.publish(InvoiceCreated.create(_invoice))

        assert invoice_ids == [_invoice.id]

    def test_multiple_handlers_called_in_subscription_order(self, _invoice):
        bus = EventBus()
        order = []
        bus.subscribe("InvoiceCreated", lambda e: order.append("A"))
        bus.subscribe("InvoiceCreated", lambda e: order.append("B"))
        bus.subscribe("InvoiceCreated", lambda e: order.append("C"))

        bus.publish(InvoiceCreated.create(_invoice))

        assert order == ["A", "B", "C"]

    def test_type_isolation_only_matching_subscribers_called(self, _invoice):
        bus = EventBus()
        created_calls = []
        paid_calls = []
        bus.subscribe("InvoiceCreated", created_calls.append)
        bus.subscribe("InvoicePaid", paid_calls.append)

        bus.publish(InvoiceCreated.create(_invoice))

        assert len(created_calls) == 1
        assert paid_calls == []

    def test_wildcard_receives_every_event(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe(EventBus.WILDCARD, received.append)

        bus.publish(InvoiceCreated.create(_invoice))
        bus.publish(InvoicePaid.create(_invoice))

        assert [type(e) for e in received] == [InvoiceCreated, InvoicePaid]

    def test_publish_all_keeps_order(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe(EventBus.WILDCARD, received.append)

        events = [InvoicePaid.create(_invoice), InvoiceCreated.create(_invoice)]
        bus.publish_all(events)

        assert received == events

    def test_no_subscribers_does_not_raise(self, _invoice):
        bus = EventBus()
        bus.publish(InvoiceCreated.create(_invoice))


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_does_not_propagate(self, _invoice):
        bus = EventBus()
        bus.subscribe("InvoiceCreated", lambda e: (_ for _ in ()).throw(RuntimeError("boom")))

        # Must not raise
        bus.publish(InvoiceCreated.create(_invoice))

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, _invoice, caplog):
        bus = EventBus()

        def failing_handler(event):
            raise ValueError("ledger unavailable")

        bus.subscribe("InvoiceCreated", failing_handler)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = InvoiceCreated.create(_invoice)
            bus.publish(event)

        assert "ledger unavailable" in caplog.text
        assert "InvoiceCreated" in caplog.text
        assert "failing_handler" in caplog.text
        assert event.event_id in caplog.text

    def test_all_handlers_run_even_if_multiple_fail(self, _invoice):
        bus = EventBus()
        results = []

        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 1")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_1"))
        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 2")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_2"))

        bus.publish(InvoicePaid.create(_invoice))

        assert results == ["survived_1", "survived_2"]
