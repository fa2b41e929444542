# fees/stats.py

"""
Statistics for invoices and payments.

Read-only aggregates, computed outside any ledger transaction; figures may
trail writes that are in flight. Amounts are returned as Decimals.
"""

from decimal import Decimal
import logging

from django.db.models import Count, DecimalField, Sum
from django.db.models.functions import Coalesce

from core.utils import TWO_PLACES, calculate_percentage, get_ledger_today

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def _money_sum(field):
    return Coalesce(
        Sum(field),
        ZERO,
        output_field=DecimalField(max_digits=15, decimal_places=2),
    )


def _money(value):
    # SQLite hands back sums without their trailing zeros
    return Decimal(value or 0).quantize(TWO_PLACES)


# =============================================================================
# INVOICE STATISTICS
# =============================================================================

def get_invoice_statistics(filters=None):
    """
    Get invoice statistics

    Args:
        filters (dict): Optional filters
            - status: Filter by invoice status
            - academic_session: Filter by session ID
            - academic_year: Filter by session academic year
            - class_level: Filter by class at invoicing time
            - date_from: Start date for issue_date filter
            - date_to: End date for issue_date filter

    Returns:
        dict: total_invoices, by_status, financial_totals, payment_rate, overdue
    """
    from .models import FeeInvoice

    invoices = FeeInvoice.objects.all()

    if filters:
        if filters.get('status'):
            invoices = invoices.filter(status=filters['status'])

        if filters.get('academic_session'):
            invoices = invoices.filter(academic_session_id=filters['academic_session'])

        if filters.get('academic_year'):
            invoices = invoices.filter(academic_session__academic_year=filters['academic_year'])

        if filters.get('class_level'):
            invoices = invoices.filter(class_level=filters['class_level'])

        if filters.get('date_from'):
            invoices = invoices.filter(issue_date__gte=filters['date_from'])

        if filters.get('date_to'):
            invoices = invoices.filter(issue_date__lte=filters['date_to'])

    stats = {
        'total_invoices': invoices.count(),
        'by_status': {},
    }

    status_breakdown = invoices.values('status').annotate(
        count=Count('id'),
        total_amount=_money_sum('total_amount'),
        paid_amount=_money_sum('paid_amount'),
        balance_amount=_money_sum('balance_amount'),
    ).order_by('status')

    for row in status_breakdown:
        stats['by_status'][row['status']] = {
            'count': row['count'],
            'total_amount': _money(row['total_amount']),
            'paid_amount': _money(row['paid_amount']),
            'balance_amount': _money(row['balance_amount']),
        }

    # Cancelled invoices are not receivable
    receivable = invoices.exclude(status='CANCELLED')
    totals = receivable.aggregate(
        total_amount=_money_sum('total_amount'),
        paid_amount=_money_sum('paid_amount'),
        balance_amount=_money_sum('balance_amount'),
    )

    stats['financial_totals'] = {
        'total_billed': _money(totals['total_amount']),
        'total_paid': _money(totals['paid_amount']),
        'total_outstanding': _money(totals['balance_amount']),
    }
    stats['payment_rate'] = calculate_percentage(totals['paid_amount'], totals['total_amount'])

    today = get_ledger_today()
    overdue = receivable.filter(
        due_date__lt=today,
        balance_amount__gt=ZERO,
    ).aggregate(
        count=Count('id'),
        balance_amount=_money_sum('balance_amount'),
    )
    stats['overdue'] = {
        'count': overdue['count'],
        'balance_amount': _money(overdue['balance_amount']),
    }

    return stats


# =============================================================================
# PAYMENT STATISTICS
# =============================================================================

def get_payment_statistics(filters=None):
    """
    Get payment statistics

    Args:
        filters (dict): Optional filters
            - status: Filter by payment status
            - payment_mode: Filter by payment mode
            - academic_session: Filter by session ID
            - student: Filter by student ID
            - date_from: Start date for payment_date filter
            - date_to: End date for payment_date filter

    Returns:
        dict: total_payments, by_mode, by_status, totals (amount,
        refunded, net received)
    """
    from .models import Payment

    payments = Payment.objects.all()

    if filters:
        if filters.get('status'):
            payments = payments.filter(status=filters['status'])

        if filters.get('payment_mode'):
            payments = payments.filter(payment_mode=filters['payment_mode'])

        if filters.get('academic_session'):
            payments = payments.filter(academic_session_id=filters['academic_session'])

        if filters.get('student'):
            payments = payments.filter(student_id=filters['student'])

        if filters.get('date_from'):
            payments = payments.filter(payment_date__date__gte=filters['date_from'])

        if filters.get('date_to'):
            payments = payments.filter(payment_date__date__lte=filters['date_to'])

    stats = {
        'total_payments': payments.count(),
        'by_mode': {},
        'by_status': {},
    }

    for row in payments.values('payment_mode').annotate(
        count=Count('id'),
        amount=_money_sum('amount'),
    ).order_by('payment_mode'):
        stats['by_mode'][row['payment_mode']] = {
            'count': row['count'],
            'amount': _money(row['amount']),
        }

    for row in payments.values('status').annotate(
        count=Count('id'),
        amount=_money_sum('amount'),
    ).order_by('status'):
        stats['by_status'][row['status']] = {
            'count': row['count'],
            'amount': _money(row['amount']),
        }

    # Cancelled payments were reversed and count towards nothing
    received = payments.exclude(status='CANCELLED').aggregate(
        amount=_money_sum('amount'),
        refunded=_money_sum('refunded_amount'),
        net_received=_money_sum('net_amount_received'),
    )
    stats['totals'] = {
        'amount': _money(received['amount']),
        'refunded': _money(received['refunded']),
        'net_received': _money(received['net_received']),
    }

    return stats
