"""Typed exceptions for fee calculation, invoicing and the operator ledger.

Two families callers need to tell apart:

- FeeValidationError: bad input. Also a ValueError, so pydantic validation
  failures and hand-raised checks are caught the same way.
- InvalidInvoiceStateError: the input is fine but the invoice is in the wrong
  state for the operation (paying a draft, cancelling a paid invoice).

Nothing here is transient. Retrying the same call gives the same error.
"""


class RevenueError(Exception):
    """Base class for revenue core errors."""


class FeeValidationError(RevenueError, ValueError):
    """Input failed validation (negative quantity, empty identifier, bad factor)."""


class CurrencyMismatchError(RevenueError):
    """Arithmetic attempted between two different currencies."""

    def __init__(self, left: str, right: str):
        self.left = left
        self.right = right
        super().__init__(f"Cannot combine {left} with {right}")


class InvalidInvoiceStateError(RevenueError):
    """Operation not allowed in the invoice's current status."""

    def __init__(self, message: str, status: str | None = None):
        self.status = status
        super().__init__(message)


class InvoiceNotFoundError(RevenueError, LookupError):
    """No invoice with the given id exists for the current tenant."""


class LineItemNotFoundError(RevenueError, LookupError):
    """No line item with the given id exists on the invoice."""


class PaymentNotFoundError(RevenueError, LookupError):
    """No payment with the given id exists on the invoice."""


class ConcurrencyConflictError(RevenueError):
    """
    Stored version differs from the version the caller loaded.

    Raised at the store boundary. The caller should reload and reapply.
    """

    def __init__(self, entity: str, entity_id, expected: int, actual: int | None):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )
