# tests/test_exceptions.py

import pytest
from django.core.exceptions import ValidationError

from core.exceptions import (
    AllocationMismatch, ConcurrencyError, DuplicateInvoice, InvalidAmount,
    InvalidPeriod, InvoiceNotFound, LedgerValidationError,
)


class TestErrorCodes:

    @pytest.mark.parametrize('error_class, code', [
        (LedgerValidationError, 'VALIDATION_ERROR'),
        (AllocationMismatch, 'ALLOCATION_MISMATCH'),
        (InvalidPeriod, 'INVALID_PERIOD'),
        (InvalidAmount, 'INVALID_AMOUNT'),
    ])
    def test_validation_errors_keep_their_code(self, error_class, code):
        error = error_class("Allocations total 50.00 but the payment is 100.00", amount='100.00')

        assert error.code == code
        assert error.to_dict() == {
            'error': code,
            'message': "Allocations total 50.00 but the payment is 100.00",
            'retryable': False,
            'details': {'amount': '100.00'},
        }

    def test_validation_errors_are_django_validation_errors(self):
        error = AllocationMismatch("Totals differ")

        assert isinstance(error, ValidationError)
        assert error.messages == ["Totals differ"]
        assert str(error) == "Totals differ"

    @pytest.mark.parametrize('error_class, code, retryable', [
        (DuplicateInvoice, 'DUPLICATE_INVOICE', False),
        (ConcurrencyError, 'CONCURRENT_MODIFICATION', True),
        (InvoiceNotFound, 'INVOICE_NOT_FOUND', False),
    ])
    def test_other_families(self, error_class, code, retryable):
        error = error_class("boom")
        assert error.to_dict()['error'] == code
        assert error.retryable is retryable

    def test_message_defaults_to_docstring(self):
        assert AllocationMismatch().message == AllocationMismatch.__doc__
