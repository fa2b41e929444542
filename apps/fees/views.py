# fees/views.py

"""
Fee Ledger JSON Endpoints

Thin wrappers over InvoiceGenerator, InvoiceService and PaymentAllocator.
The acting user comes from the request context set by AuditContextMiddleware;
authentication itself is handled outside the ledger.

Mutations go through ``run_with_retry`` so a lost race is retried before the
caller sees a 503.
"""

import logging

from django.utils.dateparse import parse_date

from core.exceptions import InvalidPeriod, StudentNotFound
from core.utils import fetch_or_raise, run_with_retry
from fees.invoice_generators import InvoiceGenerator
from fees.services import InvoiceService, PaymentAllocator
from fees.stats import get_invoice_statistics, get_payment_statistics
from fees.utils import serialize_invoice, serialize_payment
from students.models import Student
from utils.utils import json_success, ledger_api, parse_filters, parse_json_body

logger = logging.getLogger(__name__)


def _parse_date_field(data, field, required=True):
    value = data.get(field)
    if value in (None, ''):
        if required:
            raise InvalidPeriod(f"{field} is required", field=field)
        return None
    try:
        parsed = parse_date(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise InvalidPeriod(f"{field} is not a valid date: {value!r}", field=field)
    return parsed


# =============================================================================
# INVOICES
# =============================================================================

@ledger_api(["POST"])
def generate_invoice(request):
    data = parse_json_body(request)
    invoice = run_with_retry(
        InvoiceGenerator.generate,
        data.get('student_id'),
        data.get('fee_structure_id'),
        data.get('session_id'),
        due_date=_parse_date_field(data, 'due_date', required=False),
        remarks=data.get('remarks', ''),
    )
    return json_success(serialize_invoice(invoice), message="Invoice generated", status=201)


@ledger_api(["GET"])
def invoice_detail(request, invoice_id):
    invoice = InvoiceService.get_invoice(invoice_id)
    return json_success(serialize_invoice(invoice))


@ledger_api(["POST"])
def cancel_invoice(request, invoice_id):
    data = parse_json_body(request)
    invoice = run_with_retry(InvoiceService.cancel_invoice, invoice_id, data.get('reason'))
    return json_success(serialize_invoice(invoice, include_items=False), message="Invoice cancelled")


@ledger_api(["POST"])
def update_invoice_due_date(request, invoice_id):
    data = parse_json_body(request)
    invoice = run_with_retry(
        InvoiceService.update_due_date, invoice_id, _parse_date_field(data, 'due_date')
    )
    return json_success(serialize_invoice(invoice), message="Due date updated")


@ledger_api(["GET"])
def student_invoices(request, student_id):
    student = fetch_or_raise(Student.objects, StudentNotFound, "Student", pk=student_id)
    filters = parse_filters(request, ['academic_year', 'term', 'status'])
    invoices = InvoiceService.get_student_invoices(student.pk, **filters)
    return json_success([serialize_invoice(invoice, include_items=False) for invoice in invoices])


@ledger_api(["GET"])
def outstanding_invoices(request):
    student_id = request.GET.get('student_id')
    if student_id:
        fetch_or_raise(Student.objects, StudentNotFound, "Student", pk=student_id)
    invoices = InvoiceService.get_outstanding_invoices(student_id=student_id)
    return json_success([serialize_invoice(invoice, include_items=False) for invoice in invoices])


# =============================================================================
# PAYMENTS
# =============================================================================

@ledger_api(["GET"])
def student_payments(request, student_id):
    student = fetch_or_raise(Student.objects, StudentNotFound, "Student", pk=student_id)
    params = request.GET
    payments = PaymentAllocator.get_student_payments(
        student.pk,
        start_date=_parse_date_field(params, 'start_date', required=False),
        end_date=_parse_date_field(params, 'end_date', required=False),
        status=params.get('status') or None,
    )
    return json_success([serialize_payment(payment) for payment in payments])



@ledger_api(["POST"])
def process_payment(request, invoice_id):
    data = parse_json_body(request)
    details = {
        field: data[field]
        for field in PaymentAllocator.DETAIL_FIELDS
        if data.get(field) not in (None, '')
    }
    if 'cheque_date' in details:
        details['cheque_date'] = _parse_date_field(details, 'cheque_date')

    payment = run_with_retry(
        PaymentAllocator.process_payment,
        invoice_id,
        data.get('amount'),
        data.get('payment_mode'),
        data.get('allocations') or [],
        **details,
    )
    return json_success(serialize_payment(payment), message="Payment recorded", status=201)


@ledger_api(["GET"])
def payment_detail(request, payment_id):
    payment = PaymentAllocator.get_payment(payment_id)
    return json_success(serialize_payment(payment))


@ledger_api(["POST"])
def verify_payment(request, payment_id):
    payment = run_with_retry(PaymentAllocator.verify_payment, payment_id)
    return json_success(serialize_payment(payment), message="Payment verified")


@ledger_api(["POST"])
def cancel_payment(request, payment_id):
    data = parse_json_body(request)
    payment = run_with_retry(PaymentAllocator.cancel_payment, payment_id, data.get('reason'))
    return json_success(serialize_payment(payment), message="Payment cancelled")


@ledger_api(["POST"])
def refund_payment(request, payment_id):
    data = parse_json_body(request)
    payment = run_with_retry(
        PaymentAllocator.refund_payment,
        payment_id,
        data.get('amount'),
        data.get('reference'),
        reason=data.get('reason', ''),
    )
    return json_success(serialize_payment(payment), message="Refund recorded")


# =============================================================================
# STATISTICS
# =============================================================================

@ledger_api(["GET"])
def invoice_statistics(request):
    filters = parse_filters(request, [
        'status', 'academic_session', 'academic_year', 'class_level', 'date_from', 'date_to',
    ])
    return json_success(get_invoice_statistics(filters))


@ledger_api(["GET"])
def payment_statistics(request):
    filters = parse_filters(request, [
        'status', 'payment_mode', 'academic_session', 'student', 'date_from', 'date_to',
    ])
    return json_success(get_payment_statistics(filters))
