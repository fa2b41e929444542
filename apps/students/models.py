# students/models.py

from decimal import Decimal
import logging

from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MinValueValidator
from django.db import models

from academics.models import CLASS_LEVEL_CHOICES
from utils.models import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# STUDENT MODEL
# =============================================================================

class Student(BaseModel):
    """Core model for student information"""

    # -------------------------------------------------------------------------
    # CHOICE FIELDS
    # -------------------------------------------------------------------------

    GENDER_CHOICES = (
        ('M', 'Male'),
        ('F', 'Female'),
    )

    ENROLLMENT_STATUS_CHOICES = (
        ('ACTIVE', 'Active'),
        ('SUSPENDED', 'Suspended'),
        ('GRADUATED', 'Graduated'),
        ('TRANSFERRED', 'Transferred'),
        ('WITHDRAWN', 'Withdrawn'),
    )

    # -------------------------------------------------------------------------
    # IDENTIFICATION & BASIC INFORMATION
    # -------------------------------------------------------------------------

    admission_number = models.CharField(
        "Admission Number",
        max_length=20,
        unique=True,
        db_index=True
    )

    first_name = models.CharField("First Name", max_length=50)
    middle_name = models.CharField("Middle Name", max_length=50, blank=True)
    last_name = models.CharField("Last Name", max_length=50)
    gender = models.CharField("Gender", max_length=1, choices=GENDER_CHOICES, blank=True)

    # -------------------------------------------------------------------------
    # ACADEMIC INFORMATION
    # -------------------------------------------------------------------------

    current_class = models.CharField(
        "Current Class",
        max_length=10,
        choices=CLASS_LEVEL_CHOICES,
        db_index=True
    )

    current_session = models.ForeignKey(
        'academics.AcademicSession',
        verbose_name="Current Session",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='current_students'
    )

    enrollment_status = models.CharField(
        "Enrollment Status",
        max_length=20,
        choices=ENROLLMENT_STATUS_CHOICES,
        default='ACTIVE',
        db_index=True
    )

    promotion_history = models.JSONField(
        "Promotion History",
        default=list,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="One entry per promotion: from_class, to_class, date, academic_year, promotion_id"
    )

    class Meta:
        ordering = ['admission_number']
        verbose_name = "Student"
        verbose_name_plural = "Students"
        indexes = [
            models.Index(fields=['first_name', 'last_name']),
            models.Index(fields=['current_class', 'enrollment_status']),
        ]

    def __str__(self):
        return f"{self.get_full_name()} ({self.admission_number})"

    def get_full_name(self):
        """Get student's full name"""
        if self.middle_name:
            return f"{self.first_name} {self.middle_name} {self.last_name}"
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self):
        return self.enrollment_status == 'ACTIVE'


# =============================================================================
# STUDENT PROMOTION
# =============================================================================

class StudentPromotion(BaseModel):
    """A student's move from one class and session to the next."""

    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='promotions'
    )

    from_class = models.CharField("From Class", max_length=10, choices=CLASS_LEVEL_CHOICES)
    to_class = models.CharField("To Class", max_length=10, choices=CLASS_LEVEL_CHOICES)

    from_session = models.ForeignKey(
        'academics.AcademicSession',
        verbose_name="From Session",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='promotions_out'
    )
    to_session = models.ForeignKey(
        'academics.AcademicSession',
        verbose_name="To Session",
        on_delete=models.PROTECT,
        related_name='promotions_in'
    )

    promotion_date = models.DateTimeField("Promotion Date", db_index=True)
    promoted_by_id = models.CharField("Promoted By ID", max_length=50, null=True, blank=True)
    remarks = models.TextField("Remarks", blank=True)

    class Meta:
        ordering = ['-promotion_date']
        verbose_name = "Student Promotion"
        verbose_name_plural = "Student Promotions"
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'to_session'],
                name='unique_promotion_per_student_session'
            ),
        ]

    def __str__(self):
        return f"{self.student} {self.get_from_class_display()} -> {self.get_to_class_display()}"


# =============================================================================
# FEE BALANCE CARRY-FORWARD
# =============================================================================

class ImmutableRecordMixin:
    """
    Historical snapshot rows: written once, never updated or deleted through
    the ORM instance API.
    """

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError(
                f"{self._meta.verbose_name} records are immutable once created."
            )
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            f"{self._meta.verbose_name} records cannot be deleted."
        )


class FeeBalanceTransfer(ImmutableRecordMixin, BaseModel):
    """
    Snapshot of a student's outstanding fees at the moment of promotion.

    Informational only: the source invoices keep their own balances and this
    record is never recomputed, even if those balances change later.
    """

    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('TRANSFERRED', 'Transferred'),
        ('FAILED', 'Failed'),
    ]

    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='fee_balance_transfers'
    )
    promotion = models.OneToOneField(
        StudentPromotion,
        on_delete=models.PROTECT,
        related_name='balance_transfer'
    )

    from_class = models.CharField("From Class", max_length=10, choices=CLASS_LEVEL_CHOICES)
    to_class = models.CharField("To Class", max_length=10, choices=CLASS_LEVEL_CHOICES)
    from_term = models.CharField("From Term", max_length=50, blank=True)
    to_term = models.CharField("To Term", max_length=50)

    transfer_date = models.DateTimeField("Transfer Date", db_index=True)

    total_balance_transferred = models.DecimalField(
        "Total Balance Transferred",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))]
    )

    status = models.CharField(
        "Status",
        max_length=15,
        choices=STATUS_CHOICES,
        default='PENDING',
        db_index=True
    )

    remarks = models.TextField("Remarks", blank=True)

    class Meta:
        ordering = ['-transfer_date']
        verbose_name = "Fee Balance Transfer"
        verbose_name_plural = "Fee Balance Transfers"
        indexes = [
            models.Index(fields=['student', 'transfer_date']),
        ]

    def __str__(self):
        return f"Balance transfer {self.total_balance_transferred} for {self.student}"


class FeeBalanceDetail(ImmutableRecordMixin, BaseModel):
    """One outstanding invoice item captured by a FeeBalanceTransfer."""

    transfer = models.ForeignKey(
        FeeBalanceTransfer,
        on_delete=models.PROTECT,
        related_name='details'
    )

    # Provenance; the snapshot survives even if the item goes away
    invoice_item = models.ForeignKey(
        'fees.FeeInvoiceItem',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='balance_transfer_details'
    )
    invoice_number = models.CharField("Invoice Number", max_length=30, blank=True)

    fee_item_name = models.CharField("Fee Item", max_length=200)
    category = models.CharField("Category", max_length=20, blank=True)

    original_amount = models.DecimalField("Original Amount", max_digits=12, decimal_places=2)
    paid_amount = models.DecimalField("Paid Amount", max_digits=12, decimal_places=2, default=Decimal('0.00'))
    balance_amount = models.DecimalField("Balance Amount", max_digits=12, decimal_places=2)

    term = models.CharField("Term", max_length=10)
    academic_year = models.CharField("Academic Year", max_length=9)
    carried_forward_date = models.DateTimeField("Carried Forward Date")

    display_order = models.PositiveIntegerField("Display Order", default=0)

    class Meta:
        ordering = ['academic_year', 'term', 'display_order']
        verbose_name = "Fee Balance Detail"
        verbose_name_plural = "Fee Balance Details"

    def __str__(self):
        return f"{self.fee_item_name}: {self.balance_amount}"
