# fees/utils.py

"""
Document numbering and small helpers for the fee ledger.

Numbers are sequential per prefix (and year, when configured):
- With prefix and year: INV-2026-0001
- With prefix only: INV-0001
- No prefix: 0001

Numbering must run inside the caller's ledger transaction; the write lock
held there keeps two writers from computing the same next number, and the
unique constraint on the number column catches any that slip through.
"""

import logging

from django.db.models.functions import Length
from django.utils import timezone

logger = logging.getLogger(__name__)


def _next_number(model, field, prefix, include_year, width=4):
    prefix = (prefix or '').strip()
    year = timezone.localdate().year

    if prefix and include_year:
        search_prefix = f"{prefix}-{year}-"
    elif prefix:
        search_prefix = f"{prefix}-"
    else:
        search_prefix = ""

    queryset = model.objects.all()
    if search_prefix:
        queryset = queryset.filter(**{f"{field}__startswith": search_prefix})

    # Longest number first so 10000 sorts after 9999
    last_value = (
        queryset
        .annotate(_number_length=Length(field))
        .order_by('-_number_length', f'-{field}')
        .values_list(field, flat=True)
        .first()
    )

    last_number = 0
    if last_value:
        tail = last_value[len(search_prefix):] if search_prefix else last_value
        try:
            last_number = int(tail)
        except ValueError:
            logger.warning(f"Unparseable {model.__name__}.{field} value: {last_value}")

    return f"{search_prefix}{last_number + 1:0{width}d}"


def generate_invoice_number():
    """
    Generate the next invoice number from the financial settings.

    Returns:
        str: Unique invoice number, e.g. INV-2026-0001
    """
    from core.models import FinancialSettings
    from fees.models import FeeInvoice

    settings = FinancialSettings.get_instance()
    return _next_number(
        FeeInvoice, 'invoice_number',
        settings.invoice_prefix, settings.include_year_in_invoice_number,
    )


def generate_payment_number():
    from core.models import FinancialSettings
    from fees.models import Payment

    settings = FinancialSettings.get_instance()
    return _next_number(
        Payment, 'payment_number',
        settings.payment_prefix, settings.include_year_in_payment_number,
    )


def generate_receipt_number():
    from core.models import FinancialSettings
    from fees.models import Payment

    settings = FinancialSettings.get_instance()
    return _next_number(Payment, 'receipt_number', settings.receipt_prefix, True, width=5)


def generate_refund_number():
    from core.models import FinancialSettings
    from fees.models import Refund

    settings = FinancialSettings.get_instance()
    return _next_number(Refund, 'refund_number', settings.refund_prefix, True)


def get_invoice_status_color(status):
    """Colour for an invoice status badge in the admin."""
    return {
        'UNPAID': '#95a5a6',
        'PARTIALLY_PAID': '#3498db',
        'PAID': '#27ae60',
        'OVERDUE': '#e74c3c',
        'CANCELLED': '#34495e',
    }.get(status, '#95a5a6')


# =============================================================================
# JSON SERIALIZATION
# =============================================================================

def serialize_invoice_item(item):
    return {
        'id': str(item.pk),
        'name': item.name,
        'category': item.category,
        'amount': item.amount,
        'paid_amount': item.paid_amount,
        'balance_amount': item.balance_amount,
        'payment_status': item.payment_status,
        'due_date': item.due_date,
        'display_order': item.display_order,
    }


def serialize_invoice(invoice, include_items=True):
    """Invoice as a JSON-ready dict; amounts stay Decimal for the encoder."""
    data = {
        'id': str(invoice.pk),
        'invoice_number': invoice.invoice_number,
        'student_id': str(invoice.student_id),
        'academic_session': str(invoice.academic_session),
        'class_level': invoice.class_level,
        'issue_date': invoice.issue_date,
        'due_date': invoice.due_date,
        'total_amount': invoice.total_amount,
        'paid_amount': invoice.paid_amount,
        'balance_amount': invoice.balance_amount,
        'status': invoice.status,
        'version': invoice.version,
    }
    if include_items:
        data['items'] = [serialize_invoice_item(item) for item in invoice.items.order_by('display_order')]
    return data


def serialize_payment(payment):
    return {
        'id': str(payment.pk),
        'payment_number': payment.payment_number,
        'receipt_number': payment.receipt_number,
        'invoice_id': str(payment.invoice_id),
        'student_id': str(payment.student_id),
        'amount': payment.amount,
        'refunded_amount': payment.refunded_amount,
        'net_amount_received': payment.net_amount_received,
        'payment_mode': payment.payment_mode,
        'payment_date': payment.payment_date,
        'status': payment.status,
        'items': [
            {
                'invoice_item_id': str(payment_item.invoice_item_id),
                'amount': payment_item.amount,
                'payment_sequence': payment_item.payment_sequence,
            }
            for payment_item in payment.items.order_by('payment_sequence')
        ],
    }
