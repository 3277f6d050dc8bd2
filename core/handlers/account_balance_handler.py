"""
Handler projecting invoice events onto the operator account balance.

apply_ledger_event() is the single mapping from event type to ledger
mutation. The billing service calls it inside the same transaction that
saves the invoice; handle_invoice_event() wraps it for event bus delivery,
where the same event may arrive more than once.

Every application is keyed by event_id through the store's claim_event(),
so an event already applied (in the billing transaction or by an earlier
delivery) is skipped.
"""

import logging
from typing import Callable

from core.events import (
    InterestCharged,
    InvoiceCancelled,
    InvoiceEvent,
    InvoiceFinalized,
    InvoiceOverdue,
    InvoiceOverdueCleared,
    InvoicePaid,
    PaymentReceived,
    PaymentRefunded,
)
from core.models import OperatorAccountBalance

logger = logging.getLogger(__name__)


def _finalized(balance: OperatorAccountBalance, event: InvoiceFinalized) -> None:
    balance.record_invoice_finalized(event.amount)


def _payment(balance: OperatorAccountBalance, event: PaymentReceived) -> None:
    balance.record_payment(event.amount)


def _refund(balance: OperatorAccountBalance, event: PaymentRefunded) -> None:
    balance.record_payment_refunded(event.amount, event.was_paid_in_full)


def _paid(balance: OperatorAccountBalance, event: InvoicePaid) -> None:
    balance.record_invoice_paid()


def _overdue(balance: OperatorAccountBalance, event: InvoiceOverdue) -> None:
    balance.record_invoice_overdue(event.amount)


def _overdue_cleared(balance: OperatorAccountBalance, event: InvoiceOverdueCleared) -> None:
    balance.record_overdue_cleared(event.amount)


def _interest(balance: OperatorAccountBalance, event: InterestCharged) -> None:
    balance.record_interest_charge(event.amount)


def _cancelled(balance: OperatorAccountBalance, event: InvoiceCancelled) -> None:
    # Drafts never reached the ledger
    if event.was_finalized:
        balance.record_invoice_cancelled(event.invoiced_amount, event.outstanding_amount)


LEDGER_APPLIERS: dict[type, Callable] = {
    InvoiceFinalized: _finalized,
    PaymentReceived: _payment,
    PaymentRefunded: _refund,
    InvoicePaid: _paid,
    InvoiceOverdue: _overdue,
    InvoiceOverdueCleared: _overdue_cleared,
    InterestCharged: _interest,
    InvoiceCancelled: _cancelled,
}


def is_ledger_event(event) -> bool:
    # A cancelled draft never reached the ledger and must not open one
    if isinstance(event, InvoiceCancelled) and not event.was_finalized:
        return False
    return type(event) in LEDGER_APPLIERS


def apply_ledger_event(balance: OperatorAccountBalance, event: InvoiceEvent) -> bool:
    """
    Apply one event to `balance`.

    Does no deduplication; callers claim the event id first.

    Returns:
        True if the event affects the ledger, False if it was ignored
    """
    applier = LEDGER_APPLIERS.get(type(event))
    if applier is None:
        return False
    applier(balance, event)
    return True


def apply_ledger_events(
    store, operator_id, events, currency=None, duplicate_log_level=logging.WARNING,
) -> OperatorAccountBalance | None:
    """
    Claim and apply `events` to an operator's balance, saving it if changed.

    Events already claimed are skipped and logged at `duplicate_log_level`.

    Must run inside store.transaction() so the claims and the balance
    commit together.

    Returns:
        The balance if any event was applied, else None
    """
    ledger_events = [e for e in events if is_ledger_event(e)]
    if not ledger_events:
        return None

    balance = store.get_or_create_account_balance(operator_id, currency)
    applied = 0
    for event in ledger_events:
        if not store.claim_event(event.event_id):
            logger.log(
                duplicate_log_level,
                "Skipping already applied %s (event_id=%s)",
                event.__class__.__name__, event.event_id,
            )
            continue
        apply_ledger_event(balance, event)
        applied += 1

    if applied == 0:
        return None
    store.save_account_balance(balance)
    return balance


def handle_invoice_event(store) -> Callable:
    """
    Factory that returns a handler applying invoice events to the ledger.

    Events published by BillingService were claimed when it committed, so
    seeing them again here is expected and logged at debug only.

    Args:
        store: RevenueStore instance

    Returns:
        Handler callable for EventBus subscription
    """

    def handler(event: InvoiceEvent):
        if not is_ledger_event(event):
            return
        with store.transaction():
            apply_ledger_events(
                store, event.operator_id, [event], duplicate_log_level=logging.DEBUG,
            )

    return handler
