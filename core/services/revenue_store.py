"""
Persistence for invoices and operator account balances.

Both aggregates are stored as versioned documents. save_* enforces
optimistic concurrency: the caller's version must match the stored one,
otherwise ConcurrencyConflictError is raised and nothing is written. On
success the aggregate's version is incremented.

claim_event() records an event id as applied; it is the idempotency key for
ledger updates and must run in the same transaction as the balance save.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.exceptions import ConcurrencyConflictError
from core.models import Currency, Invoice, InvoiceStatus, OperatorAccountBalance
from utils.tenant_context import get_current_tenant_id_or_none

logger = logging.getLogger(__name__)


class RevenueStore(ABC):
    """Unit-of-work boundary for invoice and ledger writes."""

    @abstractmethod
    def transaction(self):
        """Context manager; everything inside commits or rolls back together."""

    @abstractmethod
    def get_invoice(self, invoice_id: UUID) -> Invoice | None: ...

    @abstractmethod
    def list_invoices(
        self,
        operator_id: UUID | None = None,
        statuses: list[InvoiceStatus] | None = None,
    ) -> list[Invoice]: ...

    @abstractmethod
    def save_invoice(self, invoice: Invoice) -> None: ...

    @abstractmethod
    def get_account_balance(self, operator_id: UUID) -> OperatorAccountBalance | None: ...

    @abstractmethod
    def save_account_balance(self, balance: OperatorAccountBalance) -> None: ...

    @abstractmethod
    def claim_event(self, event_id: str) -> bool:
        """Mark `event_id` applied. False if it already was."""

    def get_or_create_account_balance(
        self, operator_id: UUID, currency: Currency | None = None
    ) -> OperatorAccountBalance:
        balance = self.get_account_balance(operator_id)
        if balance is None:
            balance = OperatorAccountBalance.create(operator_id, currency or Currency.USD)
        return balance


# =============================================================================
# IN-MEMORY
# =============================================================================


class InMemoryRevenueStore(RevenueStore):
    """
    Process-local store.

    Documents are deep-copied in and out, so callers never share state with
    the store. A transaction holds the store lock and restores a snapshot if
    the block raises.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._invoices: dict[UUID, Invoice] = {}
        self._balances: dict[UUID, OperatorAccountBalance] = {}
        self._processed_events: set[str] = set()

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = (
                dict(self._invoices),
                dict(self._balances),
                set(self._processed_events),
            )
            try:
                yield
            except Exception:
                self._invoices, self._balances, self._processed_events = snapshot
                raise

    def get_invoice(self, invoice_id):
        with self._lock:
            stored = self._invoices.get(invoice_id)
            return stored.model_copy(deep=True) if stored else None

    def list_invoices(self, operator_id=None, statuses=None):
        with self._lock:
            invoices = [
                inv.model_copy(deep=True) for inv in self._invoices.values()
                if (operator_id is None or inv.operator_id == operator_id)
                and (statuses is None or inv.status in statuses)
            ]
        return sorted(invoices, key=lambda inv: (inv.invoice_date, inv.invoice_number))

    def save_invoice(self, invoice):
        with self._lock:
            stored = self._invoices.get(invoice.id)
            actual = stored.version if stored else 0
            if invoice.version != actual:
                raise ConcurrencyConflictError("Invoice", invoice.id, invoice.version, actual)
            invoice.version += 1
            self._invoices[invoice.id] = invoice.model_copy(deep=True)

    def get_account_balance(self, operator_id):
        with self._lock:
            stored = self._balances.get(operator_id)
            return stored.model_copy(deep=True) if stored else None

    def save_account_balance(self, balance):
        with self._lock:
            stored = self._balances.get(balance.operator_id)
            actual = stored.version if stored else 0
            if balance.version != actual:
                raise ConcurrencyConflictError("Account balance", balance.operator_id, balance.version, actual)
            balance.version += 1
            self._balances[balance.operator_id] = balance.model_copy(deep=True)

    def claim_event(self, event_id):
        with self._lock:
            if event_id in self._processed_events:
                return False
            self._processed_events.add(event_id)
            return True


# =============================================================================
# POSTGRES
# =============================================================================


class PostgresRevenueStore(RevenueStore):
    """
    Invoices and balances as JSONB documents, scoped to the current tenant by RLS.

    Tables: revenue_invoices, operator_account_balances, processed_events.
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def transaction(self):
        return self.postgres.transaction()

    @staticmethod
    def _tenant_id():
        tenant_id = get_current_tenant_id_or_none()
        if tenant_id is None:
            raise RuntimeError("Revenue store requires a tenant context")
        return tenant_id

    @staticmethod
    def _invoice_from_row(row: dict) -> Invoice:
        invoice = Invoice.model_validate(row["document"])
        invoice.version = row["version"]
        return invoice

    def get_invoice(self, invoice_id):
        row = self.postgres.execute_single(
            "SELECT document, version FROM revenue_invoices WHERE id = %s",
            (invoice_id,),
        )
        return self._invoice_from_row(row) if row else None

    def list_invoices(self, operator_id=None, statuses=None):
        status_values = [s.value for s in statuses] if statuses is not None else None
        rows = self.postgres.execute(
            """
            SELECT document, version FROM revenue_invoices
            WHERE (%s::uuid IS NULL OR operator_id = %s::uuid)
              AND (%s::text[] IS NULL OR status = ANY(%s::text[]))
            ORDER BY invoice_date, invoice_number
            """,
            (operator_id, operator_id, status_values, status_values),
        )
        return [self._invoice_from_row(row) for row in rows]

    def save_invoice(self, invoice):
        document = Json(invoice.model_dump(mode="json", exclude={"version"}))
        if invoice.version == 0:
            row = self.postgres.execute_single(
                """
                INSERT INTO revenue_invoices (
                    id, tenant_id, operator_id, invoice_number, status,
                    invoice_date, due_date, document, version, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 1, now())
                ON CONFLICT (id) DO NOTHING
                RETURNING version
                """,
                (
                    invoice.id, self._tenant_id(), invoice.operator_id, invoice.invoice_number,
                    invoice.status.value, invoice.invoice_date, invoice.due_date, document,
                ),
            )
        else:
            row = self.postgres.execute_single(
                """
                UPDATE revenue_invoices
                SET status = %s, due_date = %s, document = %s,
                    version = version + 1, updated_at = now()
                WHERE id = %s AND version = %s
                RETURNING version
                """,
                (invoice.status.value, invoice.due_date, document, invoice.id, invoice.version),
            )

        if row is None:
            actual = self.postgres.execute_scalar(
                "SELECT version FROM revenue_invoices WHERE id = %s", (invoice.id,)
            )
            raise ConcurrencyConflictError("Invoice", invoice.id, invoice.version, actual)
        invoice.version = row["version"]

    def get_account_balance(self, operator_id):
        row = self.postgres.execute_single(
            "SELECT document, version FROM operator_account_balances WHERE operator_id = %s",
            (operator_id,),
        )
        if row is None:
            return None
        balance = OperatorAccountBalance.model_validate(row["document"])
        balance.version = row["version"]
        return balance

    def save_account_balance(self, balance):
        document = Json(balance.model_dump(mode="json", exclude={"version"}))
        if balance.version == 0:
            row = self.postgres.execute_single(
                """
                INSERT INTO operator_account_balances (
                    operator_id, tenant_id, document, version, updated_at
                ) VALUES (%s, %s, %s, 1, now())
                ON CONFLICT (operator_id) DO NOTHING
                RETURNING version
                """,
                (balance.operator_id, self._tenant_id(), document),
            )
        else:
            row = self.postgres.execute_single(
                """
                UPDATE operator_account_balances
                SET document = %s, version = version + 1, updated_at = now()
                WHERE operator_id = %s AND version = %s
                RETURNING version
                """,
                (document, balance.operator_id, balance.version),
            )

        if row is None:
            actual = self.postgres.execute_scalar(
                "SELECT version FROM operator_account_balances WHERE operator_id = %s",
                (balance.operator_id,),
            )
            raise ConcurrencyConflictError("Account balance", balance.operator_id, balance.version, actual)
        balance.version = row["version"]

    def claim_event(self, event_id):
        row = self.postgres.execute_single(
            """
            INSERT INTO processed_events (event_id, tenant_id, processed_at)
            VALUES (%s, %s, now())
            ON CONFLICT (event_id) DO NOTHING
            RETURNING event_id
            """,
            (event_id, self._tenant_id()),
        )
        return row is not None
