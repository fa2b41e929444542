# tests/test_payments.py

from datetime import timedelta
from decimal import Decimal
import uuid

import pytest

from core.exceptions import (
    AllocationMismatch, ConcurrencyError, InvalidAmount, InvalidInvoiceState,
    InvalidPaymentState, InvoiceNotFound, ItemOverpaymentRejected,
    LedgerValidationError, OverpaymentRejected, PaymentNotFound,
)
from core.utils import ledger_transaction
from fees.models import FeeInvoice, Payment, PaymentItem, Refund
from fees.services import InvoiceService, PaymentAllocator
from fees.stats import get_invoice_statistics, get_payment_statistics


pytestmark = pytest.mark.django_db


def allocation(item, amount):
    return {'invoice_item_id': item.pk, 'amount': amount}


class TestProcessPayment:

    def test_split_payment_updates_items_and_invoice(self, invoice, invoice_items):
        tuition, meals = invoice_items

        payment = PaymentAllocator.process_payment(
            invoice.pk, '500.00', 'CASH',
            [allocation(tuition, '300.00'), allocation(meals, '200.00')],
            paid_by_name='Jane Otieno',
        )

        assert payment.amount == Decimal('500.00')
        assert payment.status == 'COMPLETED'
        assert payment.net_amount_received == Decimal('500.00')
        assert payment.paid_by_name == 'Jane Otieno'
        assert payment.payment_number
        assert payment.receipt_number
        assert payment.allocated_total == payment.amount

        invoice.refresh_from_db()
        tuition.refresh_from_db()
        meals.refresh_from_db()
        assert invoice.paid_amount == Decimal('500.00')
        assert invoice.balance_amount == Decimal('4000.00')
        assert invoice.status == 'PARTIALLY_PAID'
        assert tuition.balance_amount == Decimal('2700.00')
        assert tuition.payment_status == 'PARTIALLY_PAID'
        assert meals.balance_amount == Decimal('1300.00')
        assert InvoiceService.verify_invoice_integrity(invoice) == []

    def test_payment_items_record_balances_before(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        PaymentAllocator.process_payment(invoice.pk, '1000.00', 'CASH', [allocation(tuition, '1000.00')])
        second = PaymentAllocator.process_payment(invoice.pk, '500.00', 'CASH', [allocation(tuition, '500.00')])

        payment_item = PaymentItem.objects.get(payment=second)
        assert payment_item.item_balance_before == Decimal('2000.00')
        assert payment_item.original_invoice_item_amount == Decimal('3000.00')
        assert payment_item.payment_sequence == 1

    def test_full_payment_marks_invoice_paid(self, invoice, invoice_items):
        tuition, meals = invoice_items
        PaymentAllocator.process_payment(
            invoice.pk, '4500.00', 'CASH',
            [allocation(tuition, '3000.00'), allocation(meals, '1500.00')],
        )
        invoice.refresh_from_db()
        assert invoice.status == 'PAID'
        assert invoice.balance_amount == Decimal('0.00')
        assert set(invoice.items.values_list('payment_status', flat=True)) == {'PAID'}

    def test_paid_invoice_rejects_further_payments(self, invoice, invoice_items):
        tuition, meals = invoice_items
        PaymentAllocator.process_payment(
            invoice.pk, '4500.00', 'CASH',
            [allocation(tuition, '3000.00'), allocation(meals, '1500.00')],
        )
        with pytest.raises(InvalidInvoiceState):
            PaymentAllocator.process_payment(invoice.pk, '1.00', 'CASH', [allocation(tuition, '1.00')])

    def test_non_cash_payment_is_pending_but_applied(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(
            invoice.pk, '750.00', 'BANK_TRANSFER', [allocation(tuition, '750.00')],
            reference_number='BT-7781',
        )
        assert payment.status == 'PENDING'
        assert payment.reference_number == 'BT-7781'
        invoice.refresh_from_db()
        assert invoice.balance_amount == Decimal('3750.00')

    def test_allocations_must_match_total(self, invoice, invoice_items):
        tuition, meals = invoice_items
        with pytest.raises(AllocationMismatch):
            PaymentAllocator.process_payment(
                invoice.pk, '500.00', 'CASH',
                [allocation(tuition, '300.00'), allocation(meals, '100.00')],
            )
        assert not Payment.objects.exists()

    @pytest.mark.parametrize('allocations', [
        [],
        [{'amount': '10.00'}],
        ['abc'],
        [{'x': '1'}],
        'abc',
        {'invoice_item_id': 'x', 'amount': '10.00'},
    ])
    def test_malformed_allocations(self, invoice, allocations):
        with pytest.raises(AllocationMismatch):
            PaymentAllocator.process_payment(invoice.pk, '10.00', 'CASH', allocations)

    @pytest.mark.parametrize('sequence', ['first', -2, [1]])
    def test_malformed_sequence(self, invoice, invoice_items, sequence):
        tuition, _meals = invoice_items
        with pytest.raises(LedgerValidationError):
            PaymentAllocator.process_payment(
                invoice.pk, '10.00', 'CASH',
                [{'invoice_item_id': tuition.pk, 'amount': '10.00', 'sequence': sequence}],
            )
        assert not Payment.objects.exists()

    def test_non_positive_allocation(self, invoice, invoice_items):
        tuition, meals = invoice_items
        with pytest.raises(AllocationMismatch):
            PaymentAllocator.process_payment(
                invoice.pk, '10.00', 'CASH',
                [allocation(tuition, '20.00'), allocation(meals, '-10.00')],
            )

    def test_duplicate_item_allocation(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        with pytest.raises(AllocationMismatch):
            PaymentAllocator.process_payment(
                invoice.pk, '20.00', 'CASH',
                [allocation(tuition, '10.00'), allocation(tuition, '10.00')],
            )

    def test_sub_cent_amount(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        with pytest.raises(InvalidAmount):
            PaymentAllocator.process_payment(invoice.pk, '10.005', 'CASH', [allocation(tuition, '10.005')])

    def test_unknown_mode(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        with pytest.raises(LedgerValidationError):
            PaymentAllocator.process_payment(invoice.pk, '10.00', 'BARTER', [allocation(tuition, '10.00')])

    def test_overpayment_rejected(self, invoice, invoice_items):
        tuition, meals = invoice_items
        with pytest.raises(OverpaymentRejected):
            PaymentAllocator.process_payment(
                invoice.pk, '4600.00', 'CASH',
                [allocation(tuition, '3100.00'), allocation(meals, '1500.00')],
            )
        invoice.refresh_from_db()
        assert invoice.balance_amount == Decimal('4500.00')

    def test_item_overpayment_rejected(self, invoice, invoice_items):
        _tuition, meals = invoice_items
        with pytest.raises(ItemOverpaymentRejected):
            PaymentAllocator.process_payment(invoice.pk, '2000.00', 'CASH', [allocation(meals, '2000.00')])
        meals.refresh_from_db()
        assert meals.paid_amount == Decimal('0.00')

    def test_item_from_another_invoice(self, invoice, student, fee_structure, term_two):
        from fees.invoice_generators import InvoiceGenerator

        other = InvoiceGenerator.generate(student.pk, fee_structure.pk, term_two)
        foreign_item = other.items.first()
        with pytest.raises(ItemOverpaymentRejected):
            PaymentAllocator.process_payment(invoice.pk, '10.00', 'CASH', [allocation(foreign_item, '10.00')])

    def test_cancelled_invoice(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        InvoiceService.cancel_invoice(invoice.pk, 'Duplicate')
        with pytest.raises(InvalidInvoiceState):
            PaymentAllocator.process_payment(invoice.pk, '10.00', 'CASH', [allocation(tuition, '10.00')])

    def test_unknown_invoice(self):
        with pytest.raises(InvoiceNotFound):
            PaymentAllocator.process_payment(uuid.uuid4(), '10.00', 'CASH', [])

    def test_stale_snapshot_is_a_concurrency_error(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        snapshot = PaymentAllocator._load_invoice(invoice.pk)
        FeeInvoice.objects.filter(pk=invoice.pk).update(version=snapshot.version + 1)

        normalized = PaymentAllocator._normalize_allocations([allocation(tuition, '10.00')])
        with pytest.raises(ConcurrencyError) as exc_info:
            with ledger_transaction():
                PaymentAllocator._apply_payment(snapshot, Decimal('10.00'), 'CASH', normalized, None, {})
        assert exc_info.value.retryable
        assert not Payment.objects.exists()


class TestVerifyPayment:

    def test_verify_pending(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(
            invoice.pk, '100.00', 'CHEQUE', [allocation(tuition, '100.00')], cheque_number='000123',
        )
        verified = PaymentAllocator.verify_payment(payment.pk, user='bursar-1')
        assert verified.status == 'COMPLETED'
        assert verified.verified_by_id == 'bursar-1'
        invoice.refresh_from_db()
        assert invoice.balance_amount == Decimal('4400.00')

    def test_completed_payment_cannot_be_verified(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(invoice.pk, '100.00', 'CASH', [allocation(tuition, '100.00')])
        with pytest.raises(InvalidPaymentState):
            PaymentAllocator.verify_payment(payment.pk)

    def test_student_payments_filters(self, invoice, invoice_items, today):
        tuition, meals = invoice_items
        cash = PaymentAllocator.process_payment(invoice.pk, '100.00', 'CASH', [allocation(tuition, '100.00')])
        PaymentAllocator.process_payment(invoice.pk, '50.00', 'MOBILE_WALLET', [allocation(meals, '50.00')])

        assert PaymentAllocator.get_student_payments(invoice.student_id).count() == 2
        assert list(PaymentAllocator.get_student_payments(invoice.student_id, status='COMPLETED')) == [cash]
        assert PaymentAllocator.get_student_payments(invoice.student_id, start_date=today).count() == 2
        assert not PaymentAllocator.get_student_payments(
            invoice.student_id, end_date=today - timedelta(days=1)
        ).exists()

    def test_unknown_payment(self):
        with pytest.raises(PaymentNotFound):
            PaymentAllocator.verify_payment(uuid.uuid4())


class TestCancelPayment:

    def test_cancel_restores_balances_exactly(self, invoice, invoice_items):
        tuition, meals = invoice_items
        PaymentAllocator.process_payment(invoice.pk, '200.00', 'CASH', [allocation(meals, '200.00')])
        invoice.refresh_from_db()
        before = (invoice.paid_amount, invoice.balance_amount, invoice.status)

        payment = PaymentAllocator.process_payment(
            invoice.pk, '500.00', 'CASH',
            [allocation(tuition, '300.00'), allocation(meals, '200.00')],
        )
        cancelled = PaymentAllocator.cancel_payment(payment.pk, 'Bounced')

        assert cancelled.status == 'CANCELLED'
        assert cancelled.cancellation_reason == 'Bounced'
        invoice.refresh_from_db()
        tuition.refresh_from_db()
        meals.refresh_from_db()
        assert (invoice.paid_amount, invoice.balance_amount, invoice.status) == before
        assert tuition.balance_amount == Decimal('3000.00')
        assert tuition.payment_status == 'UNPAID'
        assert meals.balance_amount == Decimal('1300.00')
        assert meals.payment_status == 'PARTIALLY_PAID'
        assert InvoiceService.verify_invoice_integrity(invoice) == []

    def test_cancel_reopens_paid_invoice(self, invoice, invoice_items):
        tuition, meals = invoice_items
        payment = PaymentAllocator.process_payment(
            invoice.pk, '4500.00', 'CASH',
            [allocation(tuition, '3000.00'), allocation(meals, '1500.00')],
        )
        PaymentAllocator.cancel_payment(payment.pk, 'Recorded against the wrong student')
        invoice.refresh_from_db()
        assert invoice.status == 'UNPAID'
        assert invoice.balance_amount == Decimal('4500.00')

    def test_cancel_requires_reason(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(invoice.pk, '100.00', 'CASH', [allocation(tuition, '100.00')])
        with pytest.raises(LedgerValidationError):
            PaymentAllocator.cancel_payment(payment.pk, '')

    def test_cancel_twice(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(invoice.pk, '100.00', 'CASH', [allocation(tuition, '100.00')])
        PaymentAllocator.cancel_payment(payment.pk, 'Bounced')
        with pytest.raises(InvalidPaymentState):
            PaymentAllocator.cancel_payment(payment.pk, 'Bounced again')


class TestRefundPayment:

    def test_refund_is_independent_of_invoice_balance(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(invoice.pk, '1000.00', 'CASH', [allocation(tuition, '1000.00')])

        refunded = PaymentAllocator.refund_payment(payment.pk, '400.00', 'RF-001', reason='Overcharged')

        assert refunded.status == 'REFUNDED'
        assert refunded.refunded_amount == Decimal('400.00')
        assert refunded.net_amount_received == Decimal('600.00')
        assert refunded.refund_reference == 'RF-001'
        refund = Refund.objects.get(payment=payment)
        assert refund.amount == Decimal('400.00')
        assert refund.refund_number
        assert refund.reason == 'Overcharged'
        # the payment status is the only refund state
        assert not hasattr(refund, 'status')

        invoice.refresh_from_db()
        assert invoice.balance_amount == Decimal('3500.00')

    def test_refund_cannot_exceed_payment(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(invoice.pk, '100.00', 'CASH', [allocation(tuition, '100.00')])
        with pytest.raises(InvalidAmount):
            PaymentAllocator.refund_payment(payment.pk, '100.01', 'RF-002')

    def test_refund_requires_reference(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(invoice.pk, '100.00', 'CASH', [allocation(tuition, '100.00')])
        with pytest.raises(LedgerValidationError):
            PaymentAllocator.refund_payment(payment.pk, '50.00', ' ')

    def test_pending_payment_cannot_be_refunded(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        payment = PaymentAllocator.process_payment(
            invoice.pk, '100.00', 'MOBILE_WALLET', [allocation(tuition, '100.00')],
        )
        with pytest.raises(InvalidPaymentState):
            PaymentAllocator.refund_payment(payment.pk, '50.00', 'RF-003')


class TestStatistics:

    def test_invoice_statistics(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        PaymentAllocator.process_payment(invoice.pk, '900.00', 'CASH', [allocation(tuition, '900.00')])

        stats = get_invoice_statistics()

        assert stats['total_invoices'] == 1
        assert stats['by_status']['PARTIALLY_PAID']['count'] == 1
        assert stats['financial_totals'] == {
            'total_billed': Decimal('4500.00'),
            'total_paid': Decimal('900.00'),
            'total_outstanding': Decimal('3600.00'),
        }
        assert stats['payment_rate'] == Decimal('20.00')
        assert stats['overdue']['count'] == 0

    def test_amounts_keep_two_decimal_places(self, invoice, invoice_items):
        tuition, _meals = invoice_items
        PaymentAllocator.process_payment(invoice.pk, '1000.00', 'CASH', [allocation(tuition, '1000.00')])

        invoice_stats = get_invoice_statistics()
        payment_stats = get_payment_statistics()

        assert str(invoice_stats['financial_totals']['total_billed']) == '4500.00'
        assert str(invoice_stats['financial_totals']['total_outstanding']) == '3500.00'
        assert str(invoice_stats['by_status']['PARTIALLY_PAID']['paid_amount']) == '1000.00'
        assert str(invoice_stats['overdue']['balance_amount']) == '0.00'
        assert str(payment_stats['by_mode']['CASH']['amount']) == '1000.00'
        assert str(payment_stats['totals']['refunded']) == '0.00'

    def test_cancelled_invoices_are_not_receivable(self, invoice):
        InvoiceService.cancel_invoice(invoice.pk, 'Duplicate')
        stats = get_invoice_statistics()
        assert stats['by_status']['CANCELLED']['count'] == 1
        assert stats['financial_totals']['total_billed'] == Decimal('0.00')

    def test_payment_statistics(self, invoice, invoice_items):
        tuition, meals = invoice_items
        cash = PaymentAllocator.process_payment(invoice.pk, '1000.00', 'CASH', [allocation(tuition, '1000.00')])
        PaymentAllocator.process_payment(invoice.pk, '500.00', 'BANK_TRANSFER', [allocation(meals, '500.00')])
        PaymentAllocator.refund_payment(cash.pk, '250.00', 'RF-010')

        stats = get_payment_statistics({'student': str(invoice.student_id)})

        assert stats['total_payments'] == 2
        assert stats['by_mode']['CASH']['amount'] == Decimal('1000.00')
        assert stats['by_status']['PENDING']['count'] == 1
        assert stats['totals'] == {
            'amount': Decimal('1500.00'),
            'refunded': Decimal('250.00'),
            'net_received': Decimal('1250.00'),
        }
