# core/exceptions.py

"""
Error taxonomy for the fee ledger.

Four families, each telling the caller what to do next:

- ``LedgerValidationError``: the request is malformed; fix it and resubmit.
- ``StateConflictError``: the request is well formed but the ledger forbids it
  right now (duplicate invoice, paid invoice, inactive budget...).
- ``ConcurrencyError``: another writer got there first or a lock wait timed
  out. The only family that is safe to retry automatically.
- ``NotFoundError``: a referenced record does not exist.

``LedgerValidationError`` also subclasses Django's ``ValidationError`` so
forms and ``full_clean`` callers can treat it like any other validation
failure.
"""

from django.core.exceptions import ValidationError


class LedgerError(Exception):
    """Base class for every error raised by the ledger services."""

    code = 'LEDGER_ERROR'
    retryable = False

    def __init__(self, message='', **details):
        self.message = message or self.__class__.__doc__ or self.code
        self.details = details
        Exception.__init__(self, self.message)

    def to_dict(self):
        data = {
            'error': self.code,
            'message': self.message,
            'retryable': self.retryable,
        }
        if self.details:
            data['details'] = {key: str(value) for key, value in self.details.items()}
        return data


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class LedgerValidationError(LedgerError, ValidationError):
    """Malformed input."""

    code = 'VALIDATION_ERROR'

    def __init__(self, message='', **details):
        LedgerError.__init__(self, message, **details)
        # ValidationError stores its own ``code`` attribute on the instance
        ValidationError.__init__(self, self.message, code=type(self).code)

    def __str__(self):
        return self.message


class AllocationMismatch(LedgerValidationError):
    """Payment allocations do not add up to the payment amount."""
    code = 'ALLOCATION_MISMATCH'


class InvalidPeriod(LedgerValidationError):
    """Date falls outside the academic period."""
    code = 'INVALID_PERIOD'


class InvalidAmount(LedgerValidationError):
    """Amount is not a valid monetary value."""
    code = 'INVALID_AMOUNT'


# =============================================================================
# STATE CONFLICTS
# =============================================================================

class StateConflictError(LedgerError):
    """The request conflicts with the current ledger state."""
    code = 'STATE_CONFLICT'


class DuplicateInvoice(StateConflictError):
    """Student already has an active invoice for this period."""
    code = 'DUPLICATE_INVOICE'


class InvalidInvoiceState(StateConflictError):
    """Invoice status does not allow this operation."""
    code = 'INVALID_INVOICE_STATE'


class OverpaymentRejected(StateConflictError):
    """Payment exceeds the invoice balance."""
    code = 'OVERPAYMENT_REJECTED'


class ItemOverpaymentRejected(StateConflictError):
    """Allocation exceeds the invoice item balance."""
    code = 'ITEM_OVERPAYMENT_REJECTED'


class InvalidPaymentState(StateConflictError):
    """Payment status does not allow this operation."""
    code = 'INVALID_PAYMENT_STATE'


class BudgetNotActive(StateConflictError):
    """Budget is not active."""
    code = 'BUDGET_NOT_ACTIVE'


class InvalidBudgetState(StateConflictError):
    """Budget status does not allow this operation."""
    code = 'INVALID_BUDGET_STATE'


class CategoryAllocationExceeded(StateConflictError):
    """Spending would exceed the category allocation."""
    code = 'CATEGORY_ALLOCATION_EXCEEDED'


class BudgetFrozen(StateConflictError):
    """Spending would reach the budget freeze threshold."""
    code = 'BUDGET_FROZEN'


class BudgetCeilingExceeded(StateConflictError):
    """Utilization would exceed the budget without an override."""
    code = 'BUDGET_CEILING_EXCEEDED'


class InvalidProgression(StateConflictError):
    """Class progression is not allowed."""
    code = 'INVALID_PROGRESSION'


# =============================================================================
# CONCURRENCY
# =============================================================================

class ConcurrencyError(LedgerError):
    """The record was modified concurrently or a lock could not be acquired."""
    code = 'CONCURRENT_MODIFICATION'
    retryable = True


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(LedgerError):
    """Referenced record does not exist."""
    code = 'NOT_FOUND'


class FeeDefinitionNotFound(NotFoundError):
    """Fee structure not found or inactive."""
    code = 'FEE_DEFINITION_NOT_FOUND'


class InvoiceNotFound(NotFoundError):
    """Invoice not found."""
    code = 'INVOICE_NOT_FOUND'


class PaymentNotFound(NotFoundError):
    """Payment not found."""
    code = 'PAYMENT_NOT_FOUND'


class BudgetNotFound(NotFoundError):
    """Budget not found."""
    code = 'BUDGET_NOT_FOUND'


class StudentNotFound(NotFoundError):
    """Student not found."""
    code = 'STUDENT_NOT_FOUND'


class SessionNotFound(NotFoundError):
    """Academic session not found."""
    code = 'SESSION_NOT_FOUND'


class TransferNotFound(NotFoundError):
    """Fee balance transfer not found."""
    code = 'TRANSFER_NOT_FOUND'


class UtilizationNotFound(NotFoundError):
    """Budget utilization entry not found."""
    code = 'UTILIZATION_NOT_FOUND'
