# fees/services.py

"""
Core Invoice and Payment Operations

InvoiceService handles the invoice lifecycle after generation (cancellation,
due dates, overdue marking, lookups). PaymentAllocator applies payments to
invoice items and reverses or refunds them.

Every mutation runs in one ledger transaction with the invoice row locked.
Payment preconditions are evaluated against a snapshot of the invoice taken
with its ``version``; the write re-reads the invoice under the lock and
aborts with ConcurrencyError when another writer changed it in between.

For invoice generation, see fees/invoice_generators.py
"""

from decimal import Decimal
import logging

from django.db import IntegrityError
from django.db.models import F, Prefetch
from django.utils import timezone

from core.exceptions import (
    AllocationMismatch, ConcurrencyError, InvalidAmount, InvalidInvoiceState,
    InvalidPaymentState, InvalidPeriod, InvoiceNotFound, ItemOverpaymentRejected,
    LedgerValidationError, OverpaymentRejected, PaymentNotFound,
)
from core.utils import (
    ZERO, check_version, fetch_or_raise, get_ledger_today, ledger_transaction,
    money_str, to_money, to_positive_money,
)
from fees.models import FeeInvoice, FeeInvoiceItem, Payment, PaymentItem, Refund
from utils.audit import log_financial_activity
from utils.context import get_actor_id

logger = logging.getLogger(__name__)


# =============================================================================
# INVOICE SERVICE - CORE INVOICE OPERATIONS
# =============================================================================

class InvoiceService:
    """
    Invoice lifecycle operations.
    Invoices are never deleted; cancellation is terminal.
    """

    @staticmethod
    def get_invoice(invoice_id):
        return fetch_or_raise(
            FeeInvoice.objects.select_related('student', 'academic_session', 'fee_structure'),
            InvoiceNotFound,
            "Invoice",
            pk=invoice_id,
        )

    @staticmethod
    def cancel_invoice(invoice_id, reason, user=None):
        """
        Cancel an invoice that has not received any payment.

        Args:
            invoice_id: FeeInvoice ID
            reason (str): Why the invoice is cancelled (required)
            user (optional): Acting user

        Returns:
            FeeInvoice instance

        Raises:
            InvoiceNotFound: Unknown invoice
            LedgerValidationError: Missing reason
            InvalidInvoiceState: Already cancelled, or payments exist
        """
        reason = (reason or '').strip()

        with ledger_transaction():
            invoice = fetch_or_raise(
                FeeInvoice.objects.select_related('student'),
                InvoiceNotFound, "Invoice", lock=True, pk=invoice_id,
            )

            if not reason:
                raise LedgerValidationError("A cancellation reason is required", invoice=invoice.invoice_number)

            if invoice.is_cancelled:
                raise InvalidInvoiceState(
                    f"Invoice {invoice.invoice_number} is already cancelled",
                    status=invoice.status,
                )

            if invoice.paid_amount > ZERO:
                raise InvalidInvoiceState(
                    f"Invoice {invoice.invoice_number} has payments of {invoice.paid_amount}; "
                    f"cancel the payments first",
                    paid_amount=invoice.paid_amount,
                )

            old_status = invoice.status
            invoice.status = 'CANCELLED'
            invoice.cancelled_by_id = get_actor_id(user)
            invoice.cancellation_date = timezone.now()
            invoice.cancellation_reason = reason
            invoice.version = F('version') + 1
            invoice.save()
            invoice.refresh_from_db()

            log_financial_activity(
                action='INVOICE_CANCEL',
                user=user,
                target_object=invoice,
                amount=invoice.total_amount,
                student=invoice.student,
                old_values={'status': old_status},
                new_values={'status': 'CANCELLED'},
                notes=reason,
                risk_level='MEDIUM',
            )

        logger.info(f"Cancelled invoice {invoice.invoice_number}: {reason}")
        return invoice

    @staticmethod
    def update_due_date(invoice_id, due_date, user=None):
        """
        Move an invoice's due date. Items that are still unpaid follow the
        invoice; partially or fully paid items keep their original date.

        Raises:
            InvoiceNotFound, InvalidInvoiceState (cancelled), InvalidPeriod
        """
        with ledger_transaction():
            invoice = fetch_or_raise(
                FeeInvoice.objects.select_related('student', 'academic_session'),
                InvoiceNotFound, "Invoice", lock=True, pk=invoice_id,
            )

            if invoice.is_cancelled:
                raise InvalidInvoiceState(
                    f"Cannot change the due date of cancelled invoice {invoice.invoice_number}",
                    status=invoice.status,
                )

            session = invoice.academic_session
            if due_date < session.start_date:
                raise InvalidPeriod(
                    f"Due date {due_date} is before the start of {session} ({session.start_date})",
                    due_date=due_date,
                )

            old_due_date = invoice.due_date
            invoice.due_date = due_date
            invoice.status = invoice.derive_status(get_ledger_today())
            invoice.version = F('version') + 1
            invoice.save()
            invoice.refresh_from_db()

            items_updated = invoice.items.filter(payment_status='UNPAID').update(
                due_date=due_date,
                updated_at=timezone.now(),
            )

            log_financial_activity(
                action='INVOICE_UPDATE',
                user=user,
                target_object=invoice,
                student=invoice.student,
                old_values={'due_date': old_due_date.isoformat()},
                new_values={'due_date': due_date.isoformat(), 'items_updated': items_updated},
            )

        logger.info(
            f"Invoice {invoice.invoice_number} due date moved {old_due_date} -> {due_date} "
            f"({items_updated} items)"
        )
        return invoice

    @staticmethod
    def mark_overdue_invoices(today=None):
        """
        Flag open invoices whose due date has passed as OVERDUE.

        Returns:
            int: Number of invoices marked
        """
        today = today or get_ledger_today()

        with ledger_transaction():
            overdue = list(
                FeeInvoice.objects.select_for_update()
                .select_related('student')
                .filter(
                    status__in=['UNPAID', 'PARTIALLY_PAID'],
                    due_date__lt=today,
                    balance_amount__gt=ZERO,
                )
            )

            for invoice in overdue:
                old_status = invoice.status
                invoice.status = 'OVERDUE'
                invoice.version = F('version') + 1
                invoice.save(update_fields=['status', 'version'])

                log_financial_activity(
                    action='INVOICE_OVERDUE',
                    target_object=invoice,
                    amount=invoice.balance_amount,
                    student=invoice.student,
                    old_values={'status': old_status},
                    new_values={'status': 'OVERDUE'},
                    additional_data={'as_of': today.isoformat()},
                )

        if overdue:
            logger.info(f"Marked {len(overdue)} invoices overdue as of {today}")
        return len(overdue)

    @staticmethod
    def get_student_invoices(student_id, academic_year=None, term=None, status=None):
        queryset = FeeInvoice.objects.filter(student_id=student_id).select_related('academic_session')
        if academic_year:
            queryset = queryset.filter(academic_session__academic_year=academic_year)
        if term:
            queryset = queryset.filter(academic_session__term=term)
        if status:
            queryset = queryset.filter(status=status)
        return queryset.order_by('-academic_session__start_date', '-created_at')

    @staticmethod
    def get_outstanding_invoices(student_id=None):
        queryset = FeeInvoice.objects.filter(
            status__in=FeeInvoice.OPEN_STATUSES,
            balance_amount__gt=ZERO,
        ).select_related('student', 'academic_session')
        if student_id:
            queryset = queryset.filter(student_id=student_id)
        return queryset.order_by('due_date')

    @staticmethod
    def verify_invoice_integrity(invoice):
        """
        Check an invoice against the ledger invariants.

        Returns:
            list[str]: Violations, empty when the invoice is consistent
        """
        problems = []
        items = list(invoice.items.all())

        items_total = sum((item.amount for item in items), ZERO)
        items_paid = sum((item.paid_amount for item in items), ZERO)

        if invoice.total_amount != items_total:
            problems.append(f"total_amount {invoice.total_amount} != sum of items {items_total}")
        if invoice.paid_amount != items_paid:
            problems.append(f"paid_amount {invoice.paid_amount} != sum of item payments {items_paid}")
        if invoice.balance_amount != invoice.total_amount - invoice.paid_amount:
            problems.append(
                f"balance_amount {invoice.balance_amount} != total {invoice.total_amount} - paid {invoice.paid_amount}"
            )

        for item in items:
            if item.balance_amount != item.amount - item.paid_amount:
                problems.append(f"item {item.name}: balance {item.balance_amount} != amount - paid")
            if not ZERO <= item.paid_amount <= item.amount:
                problems.append(f"item {item.name}: paid {item.paid_amount} outside 0..{item.amount}")

            allocated = sum(
                (pi.amount for pi in item.payment_items.exclude(payment__status='CANCELLED')),
                ZERO,
            )
            if allocated != item.paid_amount:
                problems.append(f"item {item.name}: allocations {allocated} != paid {item.paid_amount}")

        for payment in invoice.payments.exclude(status='CANCELLED'):
            if payment.allocated_total != payment.amount:
                problems.append(
                    f"payment {payment.payment_number}: allocations {payment.allocated_total} != amount {payment.amount}"
                )

        return problems


# =============================================================================
# PAYMENT ALLOCATOR
# =============================================================================

class PaymentAllocator:
    """
    Apply payments across invoice items, keeping item and invoice balances
    in step.
    """

    PAYMENT_MODES = dict(Payment.PAYMENT_MODE_CHOICES)

    # Optional keyword details copied onto the payment record
    DETAIL_FIELDS = (
        'reference_number', 'transaction_id', 'bank_name', 'cheque_number',
        'cheque_date', 'mobile_number', 'paid_by_name', 'remarks',
    )

    @staticmethod
    def _load_invoice(invoice_id):
        """Unlocked snapshot of an invoice and its items."""
        return fetch_or_raise(
            FeeInvoice.objects.select_related('student', 'academic_session').prefetch_related(
                Prefetch('items', queryset=FeeInvoiceItem.objects.order_by('display_order'))
            ),
            InvoiceNotFound,
            "Invoice",
            pk=invoice_id,
        )

    @staticmethod
    def _normalize_allocations(allocations):
        """
        Turn raw allocations into ``[(item_id, amount, sequence)]``.

        Raises:
            AllocationMismatch: Not a list of mappings, empty list, missing
                item, non-positive amount or the same item allocated twice
            InvalidAmount: Malformed amount
            LedgerValidationError: Sequence is not a positive whole number
        """
        if not isinstance(allocations, (list, tuple)):
            raise AllocationMismatch(
                f"Allocations must be a list, not {type(allocations).__name__}"
            )
        if not allocations:
            raise AllocationMismatch("A payment needs at least one allocation")

        normalized = []
        seen = set()
        for position, allocation in enumerate(allocations, start=1):
            if not isinstance(allocation, dict):
                raise AllocationMismatch(
                    f"Allocation {position} must be an object with invoice_item_id and amount"
                )

            item_id = allocation.get('invoice_item_id') or allocation.get('invoice_item')
            if not item_id:
                raise AllocationMismatch(f"Allocation {position} does not name an invoice item")
            item_id = str(getattr(item_id, 'pk', item_id))

            amount = to_money(allocation.get('amount'), field=f'allocation {position} amount')
            if amount <= ZERO:
                raise AllocationMismatch(
                    f"Allocation {position} amount must be greater than zero",
                    invoice_item_id=item_id,
                )

            if item_id in seen:
                raise AllocationMismatch(
                    f"Invoice item {item_id} is allocated more than once",
                    invoice_item_id=item_id,
                )
            seen.add(item_id)

            sequence = allocation.get('sequence') or position
            try:
                sequence = int(sequence)
            except (TypeError, ValueError):
                sequence = None
            if sequence is None or sequence < 1:
                raise LedgerValidationError(
                    f"Allocation {position} sequence must be a positive whole number",
                    sequence=allocation.get('sequence'),
                )
            normalized.append((item_id, amount, sequence))

        return normalized

    @staticmethod
    def process_payment(invoice_id, total_amount, mode, allocations, user=None, **details):
        """
        Record a payment and apply it to invoice items.

        Preconditions, in order (first failure wins):
        1. invoice exists and is not CANCELLED or PAID
        2. allocations sum exactly to total_amount
        3. total_amount does not exceed the invoice balance
        4. every allocated item belongs to the invoice and the allocation
           does not exceed the item balance

        CASH payments are COMPLETED immediately; other modes stay PENDING
        until verified. Balances are applied in both cases.

        Args:
            invoice_id: FeeInvoice ID
            total_amount: Payment amount (Decimal, int or str)
            mode (str): One of Payment.PAYMENT_MODE_CHOICES
            allocations (list): ``{'invoice_item_id', 'amount', 'sequence'?}`` dicts
            user (optional): Collecting user
            **details: reference_number, transaction_id, bank_name,
                cheque_number, cheque_date, mobile_number, paid_by_name, remarks

        Returns:
            Payment instance

        Raises:
            InvoiceNotFound, InvalidInvoiceState, AllocationMismatch,
            InvalidAmount, OverpaymentRejected, ItemOverpaymentRejected,
            ConcurrencyError

        Example:
            payment = PaymentAllocator.process_payment(
                invoice.id, '500.00', 'CASH',
                [{'invoice_item_id': tuition.id, 'amount': '300.00'},
                 {'invoice_item_id': meals.id, 'amount': '200.00'}],
            )
        """
        # 1. Invoice state
        snapshot = PaymentAllocator._load_invoice(invoice_id)
        if snapshot.status in ('CANCELLED', 'PAID'):
            raise InvalidInvoiceState(
                f"Invoice {snapshot.invoice_number} is {snapshot.get_status_display().lower()} "
                f"and cannot receive payments",
                status=snapshot.status,
            )

        # 2. Allocation totals
        total_amount = to_positive_money(total_amount, field='total_amount')
        normalized = PaymentAllocator._normalize_allocations(allocations)
        allocated = sum((amount for _item_id, amount, _sequence in normalized), ZERO)
        if allocated != total_amount:
            raise AllocationMismatch(
                f"Allocations total {allocated} but the payment is {total_amount}",
                allocated=allocated,
                total_amount=total_amount,
            )

        if mode not in PaymentAllocator.PAYMENT_MODES:
            raise LedgerValidationError(f"Unknown payment mode: {mode}", mode=mode)

        # 3. Invoice balance
        if total_amount > snapshot.balance_amount:
            raise OverpaymentRejected(
                f"Payment {total_amount} exceeds invoice {snapshot.invoice_number} "
                f"balance {snapshot.balance_amount}",
                total_amount=total_amount,
                balance_amount=snapshot.balance_amount,
            )

        # 4. Item balances
        snapshot_items = {str(item.pk): item for item in snapshot.items.all()}
        for item_id, amount, _sequence in normalized:
            item = snapshot_items.get(item_id)
            if item is None:
                raise ItemOverpaymentRejected(
                    f"Invoice item {item_id} does not belong to invoice {snapshot.invoice_number}",
                    invoice_item_id=item_id,
                )
            if amount > item.balance_amount:
                raise ItemOverpaymentRejected(
                    f"Allocation {amount} exceeds the balance {item.balance_amount} of '{item.name}'",
                    invoice_item_id=item_id,
                    balance_amount=item.balance_amount,
                )

        try:
            with ledger_transaction():
                payment = PaymentAllocator._apply_payment(
                    snapshot, total_amount, mode, normalized, user, details
                )
        except IntegrityError as e:
            logger.warning(f"Payment on invoice {snapshot.invoice_number} lost a race: {e}")
            raise ConcurrencyError(
                "Payment could not be recorded because of a concurrent change; retry the request"
            ) from e

        logger.info(
            f"Processed payment {payment.payment_number} ({mode}) for invoice "
            f"{snapshot.invoice_number}: {total_amount}"
        )
        return payment

    @staticmethod
    def _apply_payment(snapshot, total_amount, mode, normalized, user, details):
        invoice = fetch_or_raise(
            FeeInvoice.objects.select_related('student', 'academic_session'),
            InvoiceNotFound, "Invoice", lock=True, pk=snapshot.pk,
        )
        check_version(invoice, snapshot.version)

        item_ids = [item_id for item_id, _amount, _sequence in normalized]
        items = {
            str(item.pk): item
            for item in FeeInvoiceItem.objects.select_for_update().filter(invoice=invoice, pk__in=item_ids)
        }

        collector_id = get_actor_id(user)
        is_immediate = mode in Payment.IMMEDIATE_MODES
        now = timezone.now()

        payment = Payment(
            invoice=invoice,
            student=invoice.student,
            academic_session=invoice.academic_session,
            amount=total_amount,
            refunded_amount=ZERO,
            net_amount_received=total_amount,
            payment_mode=mode,
            payment_date=details.get('payment_date') or now,
            status='COMPLETED' if is_immediate else 'PENDING',
            collected_by_id=collector_id,
        )
        for field in PaymentAllocator.DETAIL_FIELDS:
            if details.get(field) not in (None, ''):
                setattr(payment, field, details[field])
        if is_immediate:
            payment.verified_by_id = collector_id
            payment.verification_date = now
        payment.save()

        breakdown = []
        for item_id, amount, sequence in normalized:
            item = items[item_id]
            balance_before = item.balance_amount

            PaymentItem.objects.create(
                payment=payment,
                invoice_item=item,
                amount=amount,
                original_invoice_item_amount=item.amount,
                item_balance_before=balance_before,
                payment_sequence=sequence,
            )

            item.paid_amount += amount
            item.balance_amount = item.amount - item.paid_amount
            item.payment_status = item.derive_payment_status()
            item.save(update_fields=['paid_amount', 'balance_amount', 'payment_status'])

            breakdown.append({'item': item.name, 'amount': money_str(amount), 'balance': money_str(item.balance_amount)})

        old_balance = invoice.balance_amount
        invoice.paid_amount += total_amount
        invoice.balance_amount = invoice.total_amount - invoice.paid_amount
        invoice.status = 'PAID' if invoice.balance_amount == ZERO else 'PARTIALLY_PAID'
        invoice.version += 1
        invoice.save(update_fields=['paid_amount', 'balance_amount', 'status', 'version'])

        log_financial_activity(
            action='PAYMENT_RECEIVE',
            user=user,
            target_object=payment,
            amount=total_amount,
            student=invoice.student,
            old_values={'invoice_balance': money_str(old_balance)},
            new_values={
                'invoice_number': invoice.invoice_number,
                'invoice_balance': money_str(invoice.balance_amount),
                'invoice_status': invoice.status,
                'payment_status': payment.status,
            },
            additional_data={'mode': mode, 'allocations': breakdown},
        )

        return payment

    # -------------------------------------------------------------------------
    # VERIFICATION
    # -------------------------------------------------------------------------

    @staticmethod
    def verify_payment(payment_id, user=None):
        """
        Mark a PENDING payment as cleared. Balances were already applied when
        the payment was processed and are not touched here.

        Raises:
            PaymentNotFound, InvalidPaymentState
        """
        with ledger_transaction():
            payment = fetch_or_raise(
                Payment.objects.select_related('student', 'invoice'),
                PaymentNotFound, "Payment", lock=True, pk=payment_id,
            )

            if payment.status != 'PENDING':
                raise InvalidPaymentState(
                    f"Only pending payments can be verified; {payment.payment_number} is {payment.status}",
                    status=payment.status,
                )

            payment.status = 'COMPLETED'
            payment.verified_by_id = get_actor_id(user)
            payment.verification_date = timezone.now()
            payment.save(update_fields=['status', 'verified_by_id', 'verification_date'])

            log_financial_activity(
                action='PAYMENT_VERIFY',
                user=user,
                target_object=payment,
                amount=payment.amount,
                student=payment.student,
                old_values={'status': 'PENDING'},
                new_values={'status': 'COMPLETED'},
            )

        logger.info(f"Verified payment {payment.payment_number}")
        return payment

    # -------------------------------------------------------------------------
    # CANCELLATION
    # -------------------------------------------------------------------------

    @staticmethod
    def cancel_payment(payment_id, reason, user=None):
        """
        Reverse a payment: every allocation is taken back off its invoice
        item and the invoice, restoring the balances it changed exactly.

        Raises:
            PaymentNotFound, LedgerValidationError (missing reason),
            InvalidPaymentState (already cancelled)
        """
        reason = (reason or '').strip()

        with ledger_transaction():
            payment = fetch_or_raise(
                Payment.objects.select_related('student'),
                PaymentNotFound, "Payment", lock=True, pk=payment_id,
            )

            if not reason:
                raise LedgerValidationError("A cancellation reason is required", payment=payment.payment_number)

            if payment.status == 'CANCELLED':
                raise InvalidPaymentState(
                    f"Payment {payment.payment_number} is already cancelled",
                    status=payment.status,
                )

            invoice = FeeInvoice.objects.select_for_update().get(pk=payment.invoice_id)
            payment_items = list(payment.items.select_related('invoice_item').order_by('payment_sequence'))
            items = {
                item.pk: item
                for item in FeeInvoiceItem.objects.select_for_update().filter(
                    pk__in=[pi.invoice_item_id for pi in payment_items]
                )
            }

            for payment_item in payment_items:
                item = items[payment_item.invoice_item_id]
                if payment_item.amount > item.paid_amount:
                    raise ConcurrencyError(
                        f"Invoice item '{item.name}' no longer carries allocation {payment_item.amount}"
                    )
                item.paid_amount -= payment_item.amount
                item.balance_amount = item.amount - item.paid_amount
                item.payment_status = item.derive_payment_status()
                item.save(update_fields=['paid_amount', 'balance_amount', 'payment_status'])

            old_status = invoice.status
            invoice.paid_amount -= payment.amount
            invoice.balance_amount = invoice.total_amount - invoice.paid_amount
            invoice.status = invoice.derive_status(get_ledger_today())
            invoice.version += 1
            invoice.save(update_fields=['paid_amount', 'balance_amount', 'status', 'version'])

            old_payment_status = payment.status
            payment.status = 'CANCELLED'
            payment.cancelled_by_id = get_actor_id(user)
            payment.cancellation_date = timezone.now()
            payment.cancellation_reason = reason
            payment.save(update_fields=['status', 'cancelled_by_id', 'cancellation_date', 'cancellation_reason'])

            log_financial_activity(
                action='PAYMENT_CANCEL',
                user=user,
                target_object=payment,
                amount=payment.amount,
                student=payment.student,
                old_values={'payment_status': old_payment_status, 'invoice_status': old_status},
                new_values={
                    'payment_status': 'CANCELLED',
                    'invoice_status': invoice.status,
                    'invoice_balance': money_str(invoice.balance_amount),
                },
                notes=reason,
                risk_level='HIGH',
            )

        logger.info(
            f"Cancelled payment {payment.payment_number}; invoice {invoice.invoice_number} "
            f"balance restored to {invoice.balance_amount}"
        )
        return payment

    # -------------------------------------------------------------------------
    # REFUNDS
    # -------------------------------------------------------------------------

    @staticmethod
    def refund_payment(payment_id, amount, reference, reason='', user=None):
        """
        Record a refund against a completed payment.

        The refund is an independent event: the payment's
        ``net_amount_received`` drops by the refunded amount, but the invoice
        and item balances stay as they are.

        Raises:
            PaymentNotFound, InvalidPaymentState (not COMPLETED),
            InvalidAmount (not 0 < amount <= payment amount),
            LedgerValidationError (missing reference)
        """
        reference = (reference or '').strip()

        with ledger_transaction():
            payment = fetch_or_raise(
                Payment.objects.select_related('student', 'invoice'),
                PaymentNotFound, "Payment", lock=True, pk=payment_id,
            )

            if payment.status != 'COMPLETED':
                raise InvalidPaymentState(
                    f"Only completed payments can be refunded; {payment.payment_number} is {payment.status}",
                    status=payment.status,
                )

            amount = to_positive_money(amount, field='refund amount')
            if amount > payment.amount:
                raise InvalidAmount(
                    f"Refund {amount} exceeds payment amount {payment.amount}",
                    amount=amount,
                    payment_amount=payment.amount,
                )

            if not reference:
                raise LedgerValidationError("A refund reference is required", payment=payment.payment_number)

            now = timezone.now()
            refund = Refund.objects.create(
                payment=payment,
                invoice=payment.invoice,
                student=payment.student,
                amount=amount,
                reference=reference,
                reason=reason or '',
                refund_date=now,
                processed_by_id=get_actor_id(user),
            )

            payment.refunded_amount = amount
            payment.net_amount_received = payment.amount - amount
            payment.refund_reference = reference
            payment.refund_date = now
            payment.status = 'REFUNDED'
            payment.save(update_fields=[
                'refunded_amount', 'net_amount_received', 'refund_reference', 'refund_date', 'status',
            ])

            log_financial_activity(
                action='PAYMENT_REFUND',
                user=user,
                target_object=payment,
                amount=amount,
                student=payment.student,
                old_values={'status': 'COMPLETED'},
                new_values={
                    'status': 'REFUNDED',
                    'refund_number': refund.refund_number,
                    'net_amount_received': money_str(payment.net_amount_received),
                },
                notes=reason,
                risk_level='HIGH',
            )

        logger.info(f"Refunded {amount} on payment {payment.payment_number} ({refund.refund_number})")
        return payment

    # -------------------------------------------------------------------------
    # LOOKUPS
    # -------------------------------------------------------------------------

    @staticmethod
    def get_payment(payment_id):
        return fetch_or_raise(
            Payment.objects.select_related('invoice', 'student').prefetch_related('items__invoice_item'),
            PaymentNotFound,
            "Payment",
            pk=payment_id,
        )

    @staticmethod
    def get_student_payments(student_id, start_date=None, end_date=None, status=None):
        queryset = Payment.objects.filter(student_id=student_id).select_related('invoice')
        if start_date:
            queryset = queryset.filter(payment_date__date__gte=start_date)
        if end_date:
            queryset = queryset.filter(payment_date__date__lte=end_date)
        if status:
            queryset = queryset.filter(status=status)
        return queryset.order_by('-payment_date')
