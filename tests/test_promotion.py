# tests/test_promotion.py

from datetime import timedelta
from decimal import Decimal
import uuid

import pytest

from academics.models import AcademicSession
from core.exceptions import InvalidProgression, SessionNotFound, StudentNotFound, TransferNotFound
from fees.services import InvoiceService, PaymentAllocator
from students.models import FeeBalanceDetail, FeeBalanceTransfer, Student, StudentPromotion
from students.services import PromotionService


pytestmark = pytest.mark.django_db


def pay_in_full(invoice):
    items = list(invoice.items.order_by('display_order'))
    PaymentAllocator.process_payment(
        invoice.pk, str(invoice.balance_amount), 'CASH',
        [{'invoice_item_id': item.pk, 'amount': item.balance_amount} for item in items],
    )


class TestPromote:

    def test_promotion_without_balance_has_no_transfer(self, student, term_two):
        result = PromotionService.promote(student.pk, 'grade7', term_two.pk, remarks='Passed')

        assert result.transfer is None
        assert result.details == []
        assert result.total_balance_transferred == Decimal('0.00')
        assert result.promotion.from_class == 'grade6'
        assert result.promotion.to_class == 'grade7'
        assert result.promotion.remarks == 'Passed'
        assert not FeeBalanceTransfer.objects.exists()

        student.refresh_from_db()
        assert student.current_class == 'grade7'
        assert student.current_session == term_two

    def test_paid_up_student_has_no_transfer(self, student, invoice, term_two):
        pay_in_full(invoice)
        result = PromotionService.promote(student.pk, 'grade7', term_two)
        assert result.transfer is None

    def test_outstanding_balance_is_carried_forward(self, student, invoice, invoice_items, term_two):
        tuition, meals = invoice_items
        PaymentAllocator.process_payment(
            invoice.pk, '4000.00', 'CASH',
            [
                {'invoice_item_id': tuition.pk, 'amount': '2700.00'},
                {'invoice_item_id': meals.pk, 'amount': '1300.00'},
            ],
        )

        result = PromotionService.promote(student.pk, 'grade7', term_two)

        transfer = result.transfer
        assert transfer.status == 'TRANSFERRED'
        assert transfer.total_balance_transferred == Decimal('500.00')
        assert result.total_balance_transferred == Decimal('500.00')
        assert transfer.from_class == 'grade6'
        assert transfer.to_class == 'grade7'
        assert transfer.promotion == result.promotion

        details = list(transfer.details.order_by('display_order'))
        assert [(d.fee_item_name, d.original_amount, d.paid_amount, d.balance_amount) for d in details] == [
            ('Tuition', Decimal('3000.00'), Decimal('2700.00'), Decimal('300.00')),
            ('Meals', Decimal('1500.00'), Decimal('1300.00'), Decimal('200.00')),
        ]
        assert all(d.invoice_number == invoice.invoice_number for d in details)
        assert all(d.academic_year == '2025-2026' and d.term == 'TERM_1' for d in details)

    def test_carry_forward_leaves_invoices_untouched(self, student, invoice, invoice_items, term_two):
        PromotionService.promote(student.pk, 'grade7', term_two)

        invoice.refresh_from_db()
        assert invoice.balance_amount == Decimal('4500.00')
        assert invoice.status == 'UNPAID'

        tuition, _meals = invoice_items
        PaymentAllocator.process_payment(
            invoice.pk, '100.00', 'CASH', [{'invoice_item_id': tuition.pk, 'amount': '100.00'}],
        )
        invoice.refresh_from_db()
        assert invoice.balance_amount == Decimal('4400.00')

    def test_cancelled_invoices_are_not_carried(self, student, invoice, term_two):
        InvoiceService.cancel_invoice(invoice.pk, 'Issued in error')
        result = PromotionService.promote(student.pk, 'grade7', term_two)
        assert result.transfer is None

    def test_history_entry(self, student, term_two):
        result = PromotionService.promote(student.pk, 'Grade 7', term_two)

        student.refresh_from_db()
        assert len(student.promotion_history) == 1
        entry = student.promotion_history[0]
        assert entry['from_class'] == 'grade6'
        assert entry['to_class'] == 'grade7'
        assert entry['academic_year'] == '2025-2026'
        assert entry['promotion_id'] == str(result.promotion.pk)
        assert entry['date']

    @pytest.mark.parametrize('to_class', ['grade8', 'grade5', 'grade6', 'form1'])
    def test_invalid_progression(self, student, term_two, to_class):
        with pytest.raises(InvalidProgression):
            PromotionService.promote(student.pk, to_class, term_two)

        student.refresh_from_db()
        assert student.current_class == 'grade6'
        assert not StudentPromotion.objects.exists()

    def test_terminal_class(self, term_one, term_two):
        senior = Student.objects.create(
            admission_number='ADM-0099', first_name='Brian', last_name='Mwangi',
            current_class='grade10', current_session=term_one,
        )
        with pytest.raises(InvalidProgression):
            PromotionService.promote(senior.pk, 'grade11', term_two)

    def test_second_promotion_into_same_session(self, student, term_two):
        PromotionService.promote(student.pk, 'grade7', term_two)
        with pytest.raises(InvalidProgression):
            PromotionService.promote(student.pk, 'grade8', term_two)

    def test_consecutive_promotions(self, student, term_two):
        PromotionService.promote(student.pk, 'grade7', term_two)
        term_three = AcademicSession.objects.create(
            academic_year='2025-2026', term='TERM_3',
            start_date=term_two.end_date + timedelta(days=1),
            end_date=term_two.end_date + timedelta(days=90),
        )
        PromotionService.promote(student.pk, 'grade8', term_three)

        history = PromotionService.get_promotion_history(student.pk)
        assert [p.to_class for p in history] == ['grade8', 'grade7']
        student.refresh_from_db()
        assert len(student.promotion_history) == 2

    def test_unknown_student(self, term_two):
        with pytest.raises(StudentNotFound):
            PromotionService.promote(uuid.uuid4(), 'grade7', term_two)

    def test_unknown_session(self, student):
        with pytest.raises(SessionNotFound):
            PromotionService.promote(student.pk, 'grade7', uuid.uuid4())


class TestTransferRecords:

    def test_transfer_details_lookup(self, student, invoice, term_two):
        result = PromotionService.promote(student.pk, 'grade7', term_two)
        transfer = PromotionService.get_transfer_details(result.transfer.pk)
        assert transfer.total_balance_transferred == Decimal('4500.00')
        assert [d.fee_item_name for d in transfer.details.all()] == ['Tuition', 'Meals']

    def test_unknown_transfer(self):
        with pytest.raises(TransferNotFound):
            PromotionService.get_transfer_details(uuid.uuid4())

    def test_snapshots_are_immutable(self, student, invoice, term_two):
        from django.core.exceptions import ValidationError

        result = PromotionService.promote(student.pk, 'grade7', term_two)
        detail = FeeBalanceDetail.objects.filter(transfer=result.transfer).first()

        detail.balance_amount = Decimal('0.00')
        with pytest.raises(ValidationError):
            detail.save()
        with pytest.raises(ValidationError):
            result.transfer.delete()
