# fees/models.py

"""
Student Fee Ledger Models

- Fee structures (the fee definitions invoices are generated from)
- Invoices and their line items
- Payments and their per-item allocations
- Refunds

Balances on invoices and items are only ever changed by the services in
``fees.services``; every change to an invoice or its items bumps
``FeeInvoice.version``.

All user tracking handled automatically by BaseModel
"""

from decimal import Decimal
import logging

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q

from academics.models import AcademicSession, CLASS_LEVEL_CHOICES
from students.models import Student
from utils.models import BaseModel

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


# =============================================================================
# FEE STRUCTURE MODELS
# =============================================================================

FEE_CATEGORY_CHOICES = [
    ('TUITION', 'Tuition'),
    ('ADMISSION', 'Admission'),
    ('EXAMINATION', 'Examination'),
    ('TRANSPORT', 'Transport'),
    ('MEALS', 'Meals'),
    ('BOARDING', 'Boarding'),
    ('ACTIVITY', 'Activity'),
    ('LIBRARY', 'Library'),
    ('UNIFORM', 'Uniform'),
    ('OTHER', 'Other'),
]


class FeesStructure(BaseModel):
    """Fee definition for a class level: the items an invoice is copied from"""

    name = models.CharField(
        "Structure Name",
        max_length=100,
        help_text="Name of this fee structure (e.g., 'Grade 4 Day Scholar Fees')"
    )
    description = models.TextField("Description", blank=True)

    class_level = models.CharField(
        "Class Level",
        max_length=10,
        choices=CLASS_LEVEL_CHOICES,
        blank=True,
        db_index=True,
        help_text="Leave blank for a structure that applies to every class"
    )

    payment_terms_days = models.PositiveIntegerField(
        "Payment Terms (Days)",
        null=True,
        blank=True,
        help_text="Days from issue to due date; defaults to the financial settings"
    )

    is_active = models.BooleanField("Active", default=True, db_index=True)

    class Meta:
        verbose_name = "Fee Structure"
        verbose_name_plural = "Fee Structures"
        ordering = ['class_level', 'name']
        indexes = [
            models.Index(fields=['class_level', 'is_active']),
        ]

    def __str__(self):
        return self.name

    def get_definition_items(self):
        """Active items in display order."""
        return self.items.filter(is_active=True).order_by('display_order', 'created_at')

    @property
    def total_amount(self):
        return sum((item.amount for item in self.get_definition_items()), ZERO)


class FeesStructureItem(BaseModel):
    """Individual items within a fee structure"""

    fee_structure = models.ForeignKey(
        FeesStructure,
        verbose_name="Fee Structure",
        on_delete=models.CASCADE,
        related_name='items'
    )
    name = models.CharField("Item Name", max_length=200)
    category = models.CharField(
        "Category",
        max_length=20,
        choices=FEE_CATEGORY_CHOICES,
        default='TUITION'
    )
    description = models.CharField("Description", max_length=255, blank=True)
    amount = models.DecimalField(
        "Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(ZERO)]
    )
    is_mandatory = models.BooleanField("Mandatory", default=True)
    is_active = models.BooleanField("Active", default=True)
    display_order = models.PositiveIntegerField("Display Order", default=0)

    class Meta:
        verbose_name = "Fee Structure Item"
        verbose_name_plural = "Fee Structure Items"
        ordering = ['fee_structure', 'display_order']

    def __str__(self):
        return f"{self.fee_structure.name} - {self.name}"


# =============================================================================
# INVOICE MODELS
# =============================================================================

class FeeInvoice(BaseModel):
    """
    One bill for a student for one academic session.

    Invariants maintained by the ledger services:
    total_amount == sum(items.amount), paid_amount == sum(items.paid_amount),
    balance_amount == total_amount - paid_amount.
    """

    STATUS_CHOICES = [
        ('UNPAID', 'Unpaid'),
        ('PARTIALLY_PAID', 'Partially Paid'),
        ('PAID', 'Paid in Full'),
        ('OVERDUE', 'Overdue'),
        ('CANCELLED', 'Cancelled'),
    ]

    OPEN_STATUSES = ('UNPAID', 'PARTIALLY_PAID', 'OVERDUE')

    # -------------------------------------------------------------------------
    # IDENTIFICATION
    # -------------------------------------------------------------------------

    invoice_number = models.CharField("Invoice Number", max_length=30, unique=True, db_index=True)
    student = models.ForeignKey(
        Student,
        verbose_name="Student",
        on_delete=models.PROTECT,
        related_name='fee_invoices'
    )
    academic_session = models.ForeignKey(
        AcademicSession,
        verbose_name="Academic Session",
        on_delete=models.PROTECT,
        related_name='fee_invoices',
        help_text="Academic session this invoice covers"
    )
    fee_structure = models.ForeignKey(
        FeesStructure,
        verbose_name="Fee Structure",
        on_delete=models.PROTECT,
        related_name='invoices'
    )
    class_level = models.CharField(
        "Class at Invoicing",
        max_length=10,
        choices=CLASS_LEVEL_CHOICES,
        blank=True
    )

    # -------------------------------------------------------------------------
    # DATES
    # -------------------------------------------------------------------------

    issue_date = models.DateField("Issue Date", db_index=True)
    due_date = models.DateField("Due Date", db_index=True)

    # -------------------------------------------------------------------------
    # AMOUNTS
    # -------------------------------------------------------------------------

    total_amount = models.DecimalField("Total Amount", max_digits=12, decimal_places=2)
    paid_amount = models.DecimalField("Paid Amount", max_digits=12, decimal_places=2, default=ZERO)
    balance_amount = models.DecimalField("Balance", max_digits=12, decimal_places=2)

    # -------------------------------------------------------------------------
    # STATUS
    # -------------------------------------------------------------------------

    status = models.CharField("Status", max_length=15, choices=STATUS_CHOICES, default='UNPAID', db_index=True)
    version = models.PositiveIntegerField(
        "Version",
        default=1,
        help_text="Incremented on every balance or status change"
    )

    remarks = models.TextField("Remarks", blank=True)

    cancelled_by_id = models.CharField("Cancelled By ID", max_length=50, null=True, blank=True)
    cancellation_date = models.DateTimeField("Cancellation Date", null=True, blank=True)
    cancellation_reason = models.TextField("Cancellation Reason", blank=True)

    class Meta:
        verbose_name = "Fee Invoice"
        verbose_name_plural = "Fee Invoices"
        ordering = ['-issue_date', '-created_at']
        indexes = [
            models.Index(fields=['student', 'academic_session']),
            models.Index(fields=['status', 'due_date']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'academic_session'],
                condition=~Q(status='CANCELLED'),
                name='unique_active_invoice_per_student_session'
            ),
            models.CheckConstraint(
                condition=Q(paid_amount__gte=0) & Q(paid_amount__lte=F('total_amount')),
                name='invoice_paid_within_total'
            ),
        ]

    def __str__(self):
        return f"{self.invoice_number} - {self.student.get_full_name()}"

    # -------------------------------------------------------------------------
    # STATUS HELPERS
    # -------------------------------------------------------------------------

    @property
    def is_cancelled(self):
        return self.status == 'CANCELLED'

    def is_past_due(self, today):
        return self.due_date < today

    def derive_status(self, today):
        """
        Status implied by the current balances. Cancelled invoices stay
        cancelled.
        """
        if self.is_cancelled:
            return 'CANCELLED'
        if self.balance_amount == ZERO:
            return 'PAID'
        if self.is_past_due(today):
            return 'OVERDUE'
        if self.paid_amount > ZERO:
            return 'PARTIALLY_PAID'
        return 'UNPAID'


class FeeInvoiceItem(BaseModel):
    """One fee line on an invoice, snapshotted from a fee structure item"""

    PAYMENT_STATUS_CHOICES = [
        ('UNPAID', 'Unpaid'),
        ('PARTIALLY_PAID', 'Partially Paid'),
        ('PAID', 'Paid'),
    ]

    invoice = models.ForeignKey(
        FeeInvoice,
        verbose_name="Invoice",
        on_delete=models.CASCADE,
        related_name='items'
    )
    fee_structure_item = models.ForeignKey(
        FeesStructureItem,
        verbose_name="Source Fee Item",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invoice_items'
    )

    name = models.CharField("Item Name", max_length=200)
    category = models.CharField("Category", max_length=20, choices=FEE_CATEGORY_CHOICES)
    description = models.CharField("Description", max_length=255, blank=True)

    amount = models.DecimalField("Amount", max_digits=12, decimal_places=2)
    paid_amount = models.DecimalField("Paid Amount", max_digits=12, decimal_places=2, default=ZERO)
    balance_amount = models.DecimalField("Balance", max_digits=12, decimal_places=2)

    due_date = models.DateField("Due Date")
    payment_status = models.CharField(
        "Payment Status",
        max_length=15,
        choices=PAYMENT_STATUS_CHOICES,
        default='UNPAID',
        db_index=True
    )
    is_mandatory = models.BooleanField("Mandatory", default=True)
    display_order = models.PositiveIntegerField("Display Order", default=0)

    class Meta:
        verbose_name = "Fee Invoice Item"
        verbose_name_plural = "Fee Invoice Items"
        ordering = ['invoice', 'display_order']
        constraints = [
            models.CheckConstraint(
                condition=Q(paid_amount__gte=0) & Q(paid_amount__lte=F('amount')),
                name='invoice_item_paid_within_amount'
            ),
        ]

    def __str__(self):
        return f"{self.invoice.invoice_number} - {self.name}"

    def derive_payment_status(self):
        if self.balance_amount == ZERO:
            return 'PAID'
        if self.paid_amount > ZERO:
            return 'PARTIALLY_PAID'
        return 'UNPAID'


# =============================================================================
# PAYMENT MODELS
# =============================================================================

class Payment(BaseModel):
    """One payment event against exactly one invoice"""

    PAYMENT_MODE_CHOICES = [
        ('CASH', 'Cash'),
        ('CHEQUE', 'Cheque'),
        ('BANK_TRANSFER', 'Bank Transfer'),
        ('CREDIT_CARD', 'Credit Card'),
        ('DEBIT_CARD', 'Debit Card'),
        ('UPI', 'UPI'),
        ('MOBILE_WALLET', 'Mobile Wallet'),
        ('OTHER', 'Other'),
    ]

    PAYMENT_STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('COMPLETED', 'Completed'),
        ('CANCELLED', 'Cancelled'),
        ('REFUNDED', 'Refunded'),
    ]

    # Modes that clear immediately; everything else waits for verification
    IMMEDIATE_MODES = ('CASH',)

    # -------------------------------------------------------------------------
    # IDENTIFICATION
    # -------------------------------------------------------------------------

    payment_number = models.CharField("Payment Number", max_length=30, unique=True, db_index=True)
    receipt_number = models.CharField("Receipt Number", max_length=30, unique=True, db_index=True)
    invoice = models.ForeignKey(
        FeeInvoice,
        verbose_name="Invoice",
        on_delete=models.PROTECT,
        related_name='payments'
    )
    student = models.ForeignKey(
        Student,
        verbose_name="Student",
        on_delete=models.PROTECT,
        related_name='payments'
    )
    academic_session = models.ForeignKey(
        AcademicSession,
        verbose_name="Academic Session",
        on_delete=models.PROTECT,
        related_name='payments'
    )

    # -------------------------------------------------------------------------
    # AMOUNTS
    # -------------------------------------------------------------------------

    amount = models.DecimalField(
        "Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    refunded_amount = models.DecimalField("Refunded Amount", max_digits=12, decimal_places=2, default=ZERO)
    net_amount_received = models.DecimalField(
        "Net Amount Received",
        max_digits=12,
        decimal_places=2,
        help_text="Amount less refunds; invoice balances are not affected by refunds"
    )

    # -------------------------------------------------------------------------
    # PAYMENT METHOD DETAILS
    # -------------------------------------------------------------------------

    payment_mode = models.CharField("Payment Mode", max_length=20, choices=PAYMENT_MODE_CHOICES, db_index=True)
    payment_date = models.DateTimeField("Payment Date", db_index=True)
    reference_number = models.CharField("Reference Number", max_length=100, blank=True, db_index=True)
    transaction_id = models.CharField("Transaction ID", max_length=100, blank=True, db_index=True)
    bank_name = models.CharField("Bank Name", max_length=100, blank=True)
    cheque_number = models.CharField("Cheque Number", max_length=50, blank=True)
    cheque_date = models.DateField("Cheque Date", null=True, blank=True)
    mobile_number = models.CharField("Mobile Number", max_length=20, blank=True)
    paid_by_name = models.CharField("Paid By (Name)", max_length=200, blank=True)

    # -------------------------------------------------------------------------
    # STATUS AND VERIFICATION
    # -------------------------------------------------------------------------

    status = models.CharField(
        "Payment Status",
        max_length=12,
        choices=PAYMENT_STATUS_CHOICES,
        default='PENDING',
        db_index=True
    )
    collected_by_id = models.CharField("Collected By ID", max_length=50, null=True, blank=True)
    verified_by_id = models.CharField("Verified By ID", max_length=50, null=True, blank=True)
    verification_date = models.DateTimeField("Verification Date", null=True, blank=True)

    # -------------------------------------------------------------------------
    # CANCELLATION & REFUND
    # -------------------------------------------------------------------------

    cancelled_by_id = models.CharField("Cancelled By ID", max_length=50, null=True, blank=True)
    cancellation_date = models.DateTimeField("Cancellation Date", null=True, blank=True)
    cancellation_reason = models.TextField("Cancellation Reason", blank=True)

    refund_reference = models.CharField("Refund Reference", max_length=100, blank=True)
    refund_date = models.DateTimeField("Refund Date", null=True, blank=True)

    remarks = models.TextField("Remarks", blank=True)

    class Meta:
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        ordering = ['-payment_date', '-created_at']
        indexes = [
            models.Index(fields=['student', 'payment_date']),
            models.Index(fields=['invoice', 'status']),
        ]

    def __str__(self):
        return f"{self.payment_number} - {self.student.get_full_name()}"

    @property
    def allocated_total(self):
        return sum((item.amount for item in self.items.all()), ZERO)


class PaymentItem(BaseModel):
    """The part of a payment applied to one invoice item"""

    payment = models.ForeignKey(
        Payment,
        verbose_name="Payment",
        on_delete=models.CASCADE,
        related_name='items'
    )
    invoice_item = models.ForeignKey(
        FeeInvoiceItem,
        verbose_name="Invoice Item",
        on_delete=models.PROTECT,
        related_name='payment_items'
    )
    amount = models.DecimalField(
        "Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    original_invoice_item_amount = models.DecimalField(
        "Item Amount",
        max_digits=12,
        decimal_places=2,
        help_text="The invoice item's amount when this allocation was made"
    )
    item_balance_before = models.DecimalField("Item Balance Before", max_digits=12, decimal_places=2)
    payment_sequence = models.PositiveIntegerField("Sequence", default=1)

    class Meta:
        verbose_name = "Payment Item"
        verbose_name_plural = "Payment Items"
        ordering = ['payment', 'payment_sequence']
        constraints = [
            models.UniqueConstraint(fields=['payment', 'invoice_item'], name='unique_payment_allocation_per_item'),
            models.CheckConstraint(condition=Q(amount__gt=0), name='payment_item_amount_positive'),
        ]

    def __str__(self):
        return f"{self.payment.payment_number} -> {self.invoice_item.name}: {self.amount}"


# =============================================================================
# REFUND MODELS
# =============================================================================

class Refund(BaseModel):
    """
    A refund recorded against a completed payment.

    Refunds are independent events: they reduce the payment's net amount
    received but never reopen the invoice balance.
    """

    refund_number = models.CharField("Refund Number", max_length=30, unique=True, db_index=True)
    payment = models.ForeignKey(
        Payment,
        verbose_name="Related Payment",
        on_delete=models.PROTECT,
        related_name='refunds'
    )
    invoice = models.ForeignKey(
        FeeInvoice,
        verbose_name="Related Invoice",
        on_delete=models.PROTECT,
        related_name='refunds'
    )
    student = models.ForeignKey(
        Student,
        verbose_name="Student",
        on_delete=models.PROTECT,
        related_name='refunds'
    )
    amount = models.DecimalField(
        "Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    reference = models.CharField("Refund Reference", max_length=100)
    reason = models.TextField("Reason", blank=True)
    refund_date = models.DateTimeField("Refund Date", db_index=True)
    processed_by_id = models.CharField("Processed By ID", max_length=50, null=True, blank=True)

    class Meta:
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        ordering = ['-refund_date']
        indexes = [
            models.Index(fields=['student', 'refund_date']),
        ]

    def __str__(self):
        return f"{self.refund_number} - {self.amount}"
