# finance/models.py

"""
Budget Tracking Models

- Expense categories (reference data budgets allocate against)
- Budgets: spending envelopes with category caps and warning/freeze thresholds
- Budget utilization ledger: one row per reservation or override spend

Counters on a budget are only changed through ``finance.services.BudgetTracker``;
every change bumps ``Budget.version``.

User tracking handled automatically by BaseModel
"""

from decimal import Decimal
import logging

from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import Q, Sum

from utils.models import BaseModel

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


# =============================================================================
# EXPENSE CATEGORIES
# =============================================================================

class ExpenseCategory(BaseModel):
    """Categories for organizing expenses"""

    name = models.CharField("Category Name", max_length=100)
    code = models.CharField("Category Code", max_length=20, unique=True)
    description = models.TextField("Description", blank=True)
    is_active = models.BooleanField("Is Active", default=True, db_index=True)

    class Meta:
        verbose_name = "Expense Category"
        verbose_name_plural = "Expense Categories"
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.code})"


# =============================================================================
# BUDGETS
# =============================================================================

class Budget(BaseModel):
    """School budget planning and tracking"""

    BUDGET_TYPE_CHOICES = [
        ('ANNUAL', 'Annual Budget'),
        ('TERM', 'Term Budget'),
        ('MONTHLY', 'Monthly Budget'),
        ('PROJECT', 'Project Budget'),
        ('SPECIAL', 'Special Budget'),
    ]

    STATUS_CHOICES = [
        ('DRAFT', 'Draft'),
        ('ACTIVE', 'Active'),
        ('CLOSED', 'Closed'),
        ('CANCELLED', 'Cancelled'),
    ]

    # -------------------------------------------------------------------------
    # BUDGET IDENTIFICATION
    # -------------------------------------------------------------------------

    title = models.CharField("Budget Title", max_length=100)
    description = models.TextField("Description", blank=True)
    academic_year = models.CharField(
        "Academic Year",
        max_length=9,
        db_index=True,
        help_text="Format: YYYY-YYYY"
    )
    budget_type = models.CharField("Budget Type", max_length=10, choices=BUDGET_TYPE_CHOICES, db_index=True)

    # -------------------------------------------------------------------------
    # PERIOD
    # -------------------------------------------------------------------------

    start_date = models.DateField("Start Date", db_index=True)
    end_date = models.DateField("End Date", db_index=True)

    # -------------------------------------------------------------------------
    # BUDGET TOTALS
    # -------------------------------------------------------------------------

    total_amount = models.DecimalField(
        "Total Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(ZERO)]
    )
    allocated_amount = models.DecimalField(
        "Allocated Amount",
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Sum of the category allocations"
    )
    utilized_amount = models.DecimalField(
        "Utilized Amount",
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Reserved and recorded spending"
    )
    remaining_amount = models.DecimalField(
        "Remaining Amount",
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Total less allocated; still free to allocate"
    )

    category_allocations = models.JSONField(
        "Category Allocations",
        default=dict,
        blank=True,
        help_text="Spending cap per expense category, keyed by category ID"
    )
    monthly_allocations = models.JSONField(
        "Monthly Allocations",
        default=dict,
        blank=True,
        help_text="Month-by-month budget breakdown"
    )

    # -------------------------------------------------------------------------
    # THRESHOLDS
    # -------------------------------------------------------------------------

    warning_threshold = models.PositiveSmallIntegerField(
        "Warning Threshold (%)",
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Utilization percentage at which spending is flagged"
    )
    freeze_threshold = models.PositiveSmallIntegerField(
        "Freeze Threshold (%)",
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Utilization percentage at which new spending is denied"
    )

    # -------------------------------------------------------------------------
    # STATUS AND WORKFLOW
    # -------------------------------------------------------------------------

    status = models.CharField("Status", max_length=10, choices=STATUS_CHOICES, default='DRAFT', db_index=True)
    version = models.PositiveIntegerField(
        "Version",
        default=1,
        help_text="Incremented on every counter or status change"
    )
    has_override = models.BooleanField(
        "Has Override",
        default=False,
        help_text="Set once spending beyond the ceiling was recorded with an override"
    )

    approved_by_id = models.CharField("Approved By ID", max_length=50, null=True, blank=True)
    approval_date = models.DateTimeField("Approval Date", null=True, blank=True)

    closed_by_id = models.CharField("Closed By ID", max_length=50, null=True, blank=True)
    closure_date = models.DateTimeField("Closure Date", null=True, blank=True)
    closure_notes = models.TextField("Closure Notes", blank=True)

    cancelled_by_id = models.CharField("Cancelled By ID", max_length=50, null=True, blank=True)
    cancellation_date = models.DateTimeField("Cancellation Date", null=True, blank=True)
    cancellation_reason = models.TextField("Cancellation Reason", blank=True)

    notes = models.TextField("Notes", blank=True)

    class Meta:
        verbose_name = "Budget"
        verbose_name_plural = "Budgets"
        ordering = ['-start_date', 'title']
        indexes = [
            models.Index(fields=['budget_type', 'status']),
            models.Index(fields=['start_date', 'end_date']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__gt=models.F('start_date')),
                name='budget_end_after_start'
            ),
            models.CheckConstraint(
                condition=Q(total_amount__gte=0) & Q(allocated_amount__gte=0) & Q(utilized_amount__gte=0),
                name='budget_amounts_non_negative'
            ),
        ]

    def __str__(self):
        return f"{self.title} ({self.get_budget_type_display()})"

    def save(self, *args, **kwargs):
        # remaining always tracks total - allocated
        if self.total_amount is not None:
            self.remaining_amount = self.total_amount - (self.allocated_amount or ZERO)
            update_fields = kwargs.get('update_fields')
            if update_fields is not None and 'remaining_amount' not in update_fields:
                kwargs['update_fields'] = list(update_fields) + ['remaining_amount']
        super().save(*args, **kwargs)

    # -------------------------------------------------------------------------
    # UTILIZATION HELPERS
    # -------------------------------------------------------------------------

    @property
    def is_active(self):
        return self.status == 'ACTIVE'

    @property
    def spending_ceiling(self):
        """Allocated amount when categories are capped, otherwise the total."""
        if self.category_allocations:
            return self.allocated_amount
        return self.total_amount

    def get_utilization_percentage(self, extra=ZERO):
        if not self.total_amount:
            return Decimal('0.00')
        return ((self.utilized_amount + extra) / self.total_amount) * 100

    def needs_warning(self):
        if self.warning_threshold is None:
            return False
        return self.get_utilization_percentage() >= self.warning_threshold

    def is_frozen(self):
        if self.freeze_threshold is None:
            return False
        return self.get_utilization_percentage() >= self.freeze_threshold

    def is_over_budget(self):
        return self.utilized_amount > self.total_amount

    def get_category_cap(self, category_id):
        """Cap for a category as a Decimal, or None when the category is uncapped."""
        cap = (self.category_allocations or {}).get(str(category_id))
        if cap is None:
            return None
        return Decimal(str(cap))

    def get_category_utilized(self, category_id):
        total = self.utilizations.filter(
            category_id=category_id,
            status='RESERVED',
        ).aggregate(total=Sum('amount'))['total']
        return total or ZERO


# =============================================================================
# BUDGET UTILIZATION LEDGER
# =============================================================================

class BudgetUtilization(BaseModel):
    """One reservation or recorded spend against a budget"""

    STATUS_CHOICES = [
        ('RESERVED', 'Reserved'),
        ('RELEASED', 'Released'),
    ]

    DECISION_CHOICES = [
        ('ALLOW', 'Allowed'),
        ('WARN', 'Allowed with Warning'),
        ('OVERRIDE', 'Override'),
    ]

    budget = models.ForeignKey(
        Budget,
        verbose_name="Budget",
        on_delete=models.PROTECT,
        related_name='utilizations'
    )
    category = models.ForeignKey(
        ExpenseCategory,
        verbose_name="Expense Category",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='budget_utilizations'
    )
    amount = models.DecimalField("Amount", max_digits=12, decimal_places=2)
    reference = models.CharField(
        "Reference",
        max_length=100,
        blank=True,
        help_text="Expense or voucher reference from the spending system"
    )

    status = models.CharField("Status", max_length=10, choices=STATUS_CHOICES, default='RESERVED', db_index=True)
    decision = models.CharField("Decision", max_length=10, choices=DECISION_CHOICES, default='ALLOW')
    is_override = models.BooleanField("Is Override", default=False)
    utilization_percentage = models.DecimalField(
        "Utilization After (%)",
        max_digits=7,
        decimal_places=2,
        default=ZERO
    )

    released_by_id = models.CharField("Released By ID", max_length=50, null=True, blank=True)
    release_date = models.DateTimeField("Release Date", null=True, blank=True)
    release_reason = models.TextField("Release Reason", blank=True)

    class Meta:
        verbose_name = "Budget Utilization"
        verbose_name_plural = "Budget Utilizations"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['budget', 'category', 'status']),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='budget_utilization_amount_positive'),
        ]

    def __str__(self):
        return f"{self.budget.title}: {self.amount} ({self.get_status_display()})"
