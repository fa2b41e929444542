# students/services.py
"""
Student promotion with fee balance carry-forward.

Promoting a student moves them to a new class and session and, when they
still owe fees, records an immutable snapshot of every outstanding invoice
item. The snapshot is informational: invoices keep their balances and keep
receiving payments as before.
"""

from collections import namedtuple
import logging

from django.db import IntegrityError
from django.db.models import Prefetch
from django.utils import timezone

from academics.models import AcademicSession
from academics.utils import is_valid_progression, normalize_class_level
from core.exceptions import (
    ConcurrencyError, InvalidProgression, SessionNotFound,
    StudentNotFound, TransferNotFound,
)
from core.utils import ZERO, fetch_or_raise, ledger_transaction, money_str
from fees.models import FeeInvoiceItem
from students.models import FeeBalanceDetail, FeeBalanceTransfer, Student, StudentPromotion
from utils.audit import log_financial_activity
from utils.context import get_actor_id

logger = logging.getLogger(__name__)


PromotionResult = namedtuple(
    'PromotionResult',
    ['promotion', 'transfer', 'details', 'total_balance_transferred'],
)


# =============================================================================
# PROMOTION SERVICE
# =============================================================================

class PromotionService:
    """Class advancement and fee balance carry-forward"""

    @staticmethod
    def promote(student_id, to_class, to_session, remarks='', user=None):
        """
        Promote a student and carry their outstanding fee balances forward.

        Preconditions, in order: student exists, target session exists, the
        move is a valid class progression, and the student has not already
        been promoted into the target session.

        Runs as one transaction with the student row locked. Outstanding
        items are those with a positive balance on any non-cancelled invoice.
        With nothing outstanding only the promotion is recorded; otherwise a
        TRANSFERRED FeeBalanceTransfer with one detail per item is written.

        Args:
            student_id: Student ID
            to_class (str): Target class code, e.g. 'grade7'
            to_session: AcademicSession instance or ID
            remarks (str, optional): Free text on the promotion
            user (optional): Acting user

        Returns:
            PromotionResult(promotion, transfer, details, total_balance_transferred);
            transfer is None and details empty when nothing was owed

        Raises:
            StudentNotFound, SessionNotFound, InvalidProgression, ConcurrencyError
        """
        try:
            with ledger_transaction():
                result, student, from_class = PromotionService._promote_locked(
                    student_id, to_class, to_session, remarks, user
                )
        except IntegrityError as e:
            logger.warning(f"Promotion of student {student_id} lost a race: {e}")
            raise ConcurrencyError(
                "Promotion could not be recorded because of a concurrent change; retry the request"
            ) from e

        logger.info(
            f"Promoted {student.get_full_name()} from {from_class} to {student.current_class}; "
            f"balance carried forward: {result.total_balance_transferred}"
        )
        return result

    @staticmethod
    def _promote_locked(student_id, to_class, to_session, remarks, user):
        student = fetch_or_raise(
            Student.objects.select_related('current_session'),
            StudentNotFound, "Student", lock=True, pk=student_id,
        )

        if isinstance(to_session, AcademicSession):
            target_session = to_session
        else:
            target_session = fetch_or_raise(
                AcademicSession.objects, SessionNotFound, "Academic session", pk=to_session
            )

        from_class = student.current_class
        target_class = normalize_class_level(to_class)
        if not is_valid_progression(from_class, target_class):
            raise InvalidProgression(
                f"{student.get_full_name()} cannot be promoted from {from_class} to {to_class}",
                from_class=from_class,
                to_class=to_class,
            )

        if StudentPromotion.objects.filter(student=student, to_session=target_session).exists():
            raise InvalidProgression(
                f"{student.get_full_name()} has already been promoted into {target_session}",
                to_session=target_session,
            )

        from_session = student.current_session
        now = timezone.now()

        promotion = StudentPromotion.objects.create(
            student=student,
            from_class=from_class,
            to_class=target_class,
            from_session=from_session,
            to_session=target_session,
            promotion_date=now,
            promoted_by_id=get_actor_id(user),
            remarks=remarks or '',
        )

        outstanding = list(
            FeeInvoiceItem.objects.filter(
                invoice__student=student,
                balance_amount__gt=ZERO,
            ).exclude(
                invoice__status='CANCELLED',
            ).select_related(
                'invoice__academic_session',
            ).order_by(
                'invoice__academic_session__start_date', 'invoice__issue_date', 'display_order',
            )
        )
        total_balance = sum((item.balance_amount for item in outstanding), ZERO)

        transfer = None
        details = []
        if total_balance > ZERO:
            transfer = FeeBalanceTransfer.objects.create(
                student=student,
                promotion=promotion,
                from_class=from_class,
                to_class=target_class,
                from_term=str(from_session) if from_session else '',
                to_term=str(target_session),
                transfer_date=now,
                total_balance_transferred=total_balance,
                status='TRANSFERRED',
                remarks=remarks or '',
            )

            for position, item in enumerate(outstanding, start=1):
                session = item.invoice.academic_session
                details.append(FeeBalanceDetail.objects.create(
                    transfer=transfer,
                    invoice_item=item,
                    invoice_number=item.invoice.invoice_number,
                    fee_item_name=item.name,
                    category=item.category,
                    original_amount=item.amount,
                    paid_amount=item.paid_amount,
                    balance_amount=item.balance_amount,
                    term=session.term,
                    academic_year=session.academic_year,
                    carried_forward_date=now,
                    display_order=position,
                ))

        history = list(student.promotion_history or [])
        history.append({
            'from_class': from_class,
            'to_class': target_class,
            'date': now.isoformat(),
            'academic_year': from_session.academic_year if from_session else target_session.academic_year,
            'promotion_id': str(promotion.pk),
        })
        student.current_class = target_class
        student.current_session = target_session
        student.promotion_history = history
        student.save(update_fields=['current_class', 'current_session', 'promotion_history'])

        log_financial_activity(
            action='STUDENT_PROMOTE',
            user=user,
            target_object=promotion,
            student=student,
            old_values={
                'class': from_class,
                'session': str(from_session) if from_session else None,
            },
            new_values={
                'class': target_class,
                'session': str(target_session),
            },
            notes=remarks or None,
        )

        if transfer is not None:
            log_financial_activity(
                action='BALANCE_TRANSFER',
                user=user,
                target_object=transfer,
                amount=total_balance,
                student=student,
                new_values={
                    'total_balance_transferred': money_str(total_balance),
                    'items': len(details),
                },
                additional_data={
                    'invoices': sorted({detail.invoice_number for detail in details}),
                },
                risk_level='MEDIUM',
            )

        result = PromotionResult(
            promotion=promotion,
            transfer=transfer,
            details=details,
            total_balance_transferred=total_balance,
        )
        return result, student, from_class

    # -------------------------------------------------------------------------
    # READ ACCESSORS
    # -------------------------------------------------------------------------

    @staticmethod
    def get_promotion_history(student_id):
        """
        A student's promotions, newest first, each with its balance transfer
        and transfer details prefetched.

        Raises:
            StudentNotFound
        """
        student = fetch_or_raise(Student.objects, StudentNotFound, "Student", pk=student_id)
        return list(
            StudentPromotion.objects.filter(student=student).select_related(
                'from_session', 'to_session', 'balance_transfer',
            ).prefetch_related(
                Prefetch('balance_transfer__details', queryset=FeeBalanceDetail.objects.order_by('display_order')),
            ).order_by('-promotion_date')
        )

    @staticmethod
    def get_transfer_details(transfer_id):
        """
        A balance transfer with its student and details.

        Raises:
            TransferNotFound
        """
        return fetch_or_raise(
            FeeBalanceTransfer.objects.select_related('student', 'promotion').prefetch_related(
                Prefetch('details', queryset=FeeBalanceDetail.objects.order_by('display_order')),
            ),
            TransferNotFound,
            "Balance transfer",
            pk=transfer_id,
        )
