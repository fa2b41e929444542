# fees/invoice_generators.py

"""
Invoice generation from fee structures.

An invoice is a snapshot: item amounts are copied from the fee structure at
generation time and are not affected by later edits to the structure.
"""

from datetime import date, timedelta
import logging

from django.db import IntegrityError
from django.utils import timezone

from academics.models import AcademicSession
from core.exceptions import (
    ConcurrencyError, DuplicateInvoice, FeeDefinitionNotFound,
    InvalidPeriod, SessionNotFound, StudentNotFound,
)
from core.models import FinancialSettings
from core.utils import ZERO, fetch_or_raise, ledger_transaction, money_str, to_money
from fees.models import FeeInvoice, FeeInvoiceItem, FeesStructure
from students.models import Student
from utils.audit import log_financial_activity

logger = logging.getLogger(__name__)


# =============================================================================
# INVOICE GENERATOR
# =============================================================================

class InvoiceGenerator:
    """Generate a student's invoice for one academic session"""

    @staticmethod
    def generate(student_id, fee_structure_id, session, due_date=None, remarks='', user=None):
        """
        Generate an invoice and its items from a fee structure.

        Preconditions are checked in order and the first failure wins:
        student exists, fee structure exists and is active with at least one
        active item, session exists, due date is not before the session
        start, and the student has no other non-cancelled invoice for the
        session. The duplicate check runs with the student row locked, so two
        concurrent generations for the same student cannot both succeed.

        Args:
            student_id: Student ID
            fee_structure_id: FeesStructure ID
            session: AcademicSession instance or ID
            due_date (date, optional): Defaults to issue date plus payment terms
            remarks (str, optional): Free text stored on the invoice
            user (optional): Acting user; defaults to the request context

        Returns:
            FeeInvoice instance with its items

        Raises:
            StudentNotFound, FeeDefinitionNotFound, SessionNotFound,
            InvalidPeriod, DuplicateInvoice, ConcurrencyError

        Example:
            invoice = InvoiceGenerator.generate(
                student.id, structure.id, term_1,
                due_date=date(2026, 2, 15),
            )
        """
        try:
            with ledger_transaction():
                invoice, student = InvoiceGenerator._generate_locked(
                    student_id, fee_structure_id, session, due_date, remarks
                )

                log_financial_activity(
                    action='INVOICE_CREATE',
                    user=user,
                    target_object=invoice,
                    amount=invoice.total_amount,
                    student=student,
                    new_values={
                        'invoice_number': invoice.invoice_number,
                        'academic_session': str(invoice.academic_session),
                        'total_amount': money_str(invoice.total_amount),
                        'due_date': invoice.due_date.isoformat(),
                        'items': invoice.items.count(),
                    },
                )
        except IntegrityError as e:
            # A concurrent writer took the invoice number or the session slot
            logger.warning(f"Invoice generation for student {student_id} lost a race: {e}")
            raise ConcurrencyError(
                "Invoice could not be generated because of a concurrent change; retry the request"
            ) from e

        logger.info(
            f"Generated invoice {invoice.invoice_number} for {student.get_full_name()} "
            f"({invoice.academic_session}): {invoice.total_amount}"
        )
        return invoice

    @staticmethod
    def _generate_locked(student_id, fee_structure_id, session, due_date, remarks):
        student = fetch_or_raise(
            Student.objects, StudentNotFound, "Student", lock=True, pk=student_id
        )

        fee_structure = fetch_or_raise(
            FeesStructure.objects.filter(is_active=True),
            FeeDefinitionNotFound,
            "Active fee structure",
            pk=fee_structure_id,
        )

        definition_items = list(fee_structure.get_definition_items())
        if not definition_items:
            raise FeeDefinitionNotFound(
                f"Fee structure '{fee_structure.name}' has no active items",
                fee_structure_id=fee_structure_id,
            )

        session = InvoiceGenerator._resolve_session(session)

        issue_date = timezone.localdate()
        if due_date is None:
            terms = fee_structure.payment_terms_days or FinancialSettings.get_instance().default_payment_terms_days
            due_date = max(issue_date, session.start_date) + timedelta(days=terms)
        elif not isinstance(due_date, date):
            raise InvalidPeriod(f"Invalid due date: {due_date!r}", due_date=due_date)

        if due_date < session.start_date:
            raise InvalidPeriod(
                f"Due date {due_date} is before the start of {session} ({session.start_date})",
                due_date=due_date,
                session_start=session.start_date,
            )

        existing = FeeInvoice.objects.filter(
            student=student,
            academic_session=session,
        ).exclude(status='CANCELLED').first()
        if existing:
            raise DuplicateInvoice(
                f"{student.get_full_name()} already has invoice {existing.invoice_number} for {session}",
                invoice_number=existing.invoice_number,
            )

        total_amount = sum((to_money(item.amount) for item in definition_items), ZERO)

        invoice = FeeInvoice(
            student=student,
            academic_session=session,
            fee_structure=fee_structure,
            class_level=student.current_class,
            issue_date=issue_date,
            due_date=due_date,
            total_amount=total_amount,
            paid_amount=ZERO,
            balance_amount=total_amount,
            remarks=remarks or '',
        )
        invoice.status = 'PAID' if total_amount == ZERO else 'UNPAID'
        invoice.save()

        for position, definition_item in enumerate(definition_items, start=1):
            amount = to_money(definition_item.amount)
            FeeInvoiceItem.objects.create(
                invoice=invoice,
                fee_structure_item=definition_item,
                name=definition_item.name,
                category=definition_item.category,
                description=definition_item.description,
                amount=amount,
                paid_amount=ZERO,
                balance_amount=amount,
                due_date=due_date,
                payment_status='PAID' if amount == ZERO else 'UNPAID',
                is_mandatory=definition_item.is_mandatory,
                display_order=definition_item.display_order or position,
            )

        return invoice, student

    @staticmethod
    def _resolve_session(session):
        if isinstance(session, AcademicSession):
            return session
        return fetch_or_raise(
            AcademicSession.objects, SessionNotFound, "Academic session", pk=session
        )
