# utils/models.py

"""
Base models for the fee ledger with actor tracking and the financial audit
trail.

Key Features:
- UUID primary keys for every ledger record
- Automatic created/updated timestamps
- User and IP tracking from the thread-local request context
- Change reason tracking
- Financial audit log written for every committed state transition
"""

import logging
import uuid
from decimal import Decimal, InvalidOperation

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

logger = logging.getLogger(__name__)


# =============================================================================
# BASE MODEL
# =============================================================================

class BaseModel(models.Model):
    """
    Abstract base model carrying the audit fields shared by ledger records.

    The actor fields are filled from ``utils.context`` so services never pass
    the current user around just to stamp a row.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    created_at = models.DateTimeField(
        "Created At",
        db_index=True,
        help_text="When this record was created"
    )
    updated_at = models.DateTimeField(
        "Updated At",
        db_index=True,
        help_text="When this record was last updated"
    )

    # CharField so ledger rows never depend on the auth tables
    created_by_id = models.CharField(
        "Created By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of user who created this record"
    )
    updated_by_id = models.CharField(
        "Updated By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of user who last updated this record"
    )

    created_from_ip = models.GenericIPAddressField(
        "Created From IP",
        null=True,
        blank=True,
        help_text="IP address from which this record was created"
    )
    updated_from_ip = models.GenericIPAddressField(
        "Updated From IP",
        null=True,
        blank=True,
        help_text="IP address from which this record was last updated"
    )

    change_reason = models.CharField(
        "Change Reason",
        max_length=255,
        blank=True,
        null=True,
        help_text="Explanation for why this change was made"
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """
        Stamp timestamps and actor fields before saving.

        ``update_fields`` callers get ``updated_at``/``updated_by_id`` added
        so partial saves still record who touched the row.
        """
        from utils.context import get_request_context

        is_new = self._state.adding
        now = timezone.now()

        if is_new:
            if not self.created_at:
                self.created_at = now
            if not self.updated_at:
                self.updated_at = now
        else:
            self.updated_at = now

        context = get_request_context()
        stamped = ['updated_at']

        if context:
            user = context.get('user')
            ip_address = context.get('ip_address')

            if is_new:
                if user and not self.created_by_id:
                    self.created_by_id = str(user.pk)
                if ip_address and not self.created_from_ip:
                    self.created_from_ip = ip_address

            if user:
                self.updated_by_id = str(user.pk)
                stamped.append('updated_by_id')
            if ip_address:
                self.updated_from_ip = ip_address
                stamped.append('updated_from_ip')
        elif is_new:
            logger.debug(
                f"No request context available when creating {self.__class__.__name__}. "
                f"Actor fields will not be populated."
            )

        update_fields = kwargs.get('update_fields')
        if update_fields is not None and not is_new:
            kwargs['update_fields'] = list(set(update_fields) | set(stamped))

        return super().save(*args, **kwargs)

    # -------------------------------------------------------------------------
    # AUDIT TRAIL HELPER METHODS
    # -------------------------------------------------------------------------

    def get_financial_history(self, limit=20):
        """Financial audit entries recorded against this object."""
        return FinancialAuditLog.objects.filter(
            object_type=self._meta.label_lower,
            object_id=str(self.pk),
        ).order_by('-timestamp')[:limit]


# =============================================================================
# FINANCIAL AUDIT LOG
# =============================================================================

class FinancialAuditLog(models.Model):
    """
    Audit log for ledger state transitions.

    Rows are written after the owning transaction commits (see
    ``utils.audit.log_financial_activity``), so the log only ever describes
    changes that actually happened.
    """

    FINANCIAL_ACTIONS = [
        # Invoices
        ('INVOICE_CREATE', 'Invoice Created'),
        ('INVOICE_UPDATE', 'Invoice Updated'),
        ('INVOICE_CANCEL', 'Invoice Cancelled'),
        ('INVOICE_OVERDUE', 'Invoice Marked Overdue'),

        # Payments
        ('PAYMENT_RECEIVE', 'Payment Received'),
        ('PAYMENT_VERIFY', 'Payment Verified'),
        ('PAYMENT_CANCEL', 'Payment Cancelled'),
        ('PAYMENT_REFUND', 'Payment Refunded'),

        # Budgets
        ('BUDGET_CREATE', 'Budget Created'),
        ('BUDGET_UPDATE', 'Budget Updated'),
        ('BUDGET_ALLOCATE', 'Budget Category Allocated'),
        ('BUDGET_APPROVE', 'Budget Approved'),
        ('BUDGET_CLOSE', 'Budget Closed'),
        ('BUDGET_CANCEL', 'Budget Cancelled'),
        ('BUDGET_RESERVE', 'Budget Spending Reserved'),
        ('BUDGET_UTILIZE', 'Budget Utilization Recorded'),
        ('BUDGET_RELEASE', 'Budget Reservation Released'),

        # Promotion
        ('STUDENT_PROMOTE', 'Student Promoted'),
        ('BALANCE_TRANSFER', 'Fee Balance Carried Forward'),
    ]

    RISK_LEVEL_CHOICES = [
        ('LOW', 'Low Risk'),
        ('MEDIUM', 'Medium Risk'),
        ('HIGH', 'High Risk'),
        ('CRITICAL', 'Critical Risk'),
    ]

    id = models.AutoField(primary_key=True)

    timestamp = models.DateTimeField(
        db_index=True,
        help_text="When this financial action occurred"
    )

    action = models.CharField(max_length=30, choices=FINANCIAL_ACTIONS, db_index=True)

    # User information
    user_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of user who performed this action"
    )
    user_name = models.CharField(max_length=200, null=True, blank=True)

    # Request context
    ip_address = models.GenericIPAddressField(null=True, blank=True, db_index=True)
    user_agent = models.TextField(null=True, blank=True)
    request_path = models.CharField(max_length=500, null=True, blank=True)

    # Target object, stored as "app_label.model" so the log has no FK
    object_type = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    object_id = models.CharField(max_length=100, null=True, blank=True)
    object_description = models.CharField(max_length=500, null=True, blank=True)

    amount_involved = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Monetary amount involved in the action"
    )
    currency = models.CharField(max_length=3, null=True, blank=True)

    # Student context
    student_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    student_name = models.CharField(max_length=200, null=True, blank=True)
    student_admission_number = models.CharField(max_length=50, null=True, blank=True)

    old_values = models.JSONField(
        null=True, blank=True, encoder=DjangoJSONEncoder,
        help_text="Values before change"
    )
    new_values = models.JSONField(
        null=True, blank=True, encoder=DjangoJSONEncoder,
        help_text="Values after change"
    )

    risk_level = models.CharField(
        max_length=10,
        choices=RISK_LEVEL_CHOICES,
        default='LOW',
        db_index=True
    )
    additional_data = models.JSONField(
        default=dict,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Additional context-specific data"
    )
    notes = models.TextField(null=True, blank=True)

    class Meta:
        verbose_name = "Financial Audit Log"
        verbose_name_plural = "Financial Audit Logs"
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['timestamp', 'action']),
            models.Index(fields=['user_id', 'timestamp']),
            models.Index(fields=['student_id', 'timestamp']),
        ]

    def __str__(self):
        return f"{self.get_action_display()} at {self.timestamp}"

    def save(self, *args, **kwargs):
        if not self.timestamp:
            self.timestamp = timezone.now()
        return super().save(*args, **kwargs)

    # -------------------------------------------------------------------------
    # CREATING ENTRIES
    # -------------------------------------------------------------------------

    @classmethod
    def log_financial_action(
        cls,
        action,
        user=None,
        target_object=None,
        amount=None,
        student=None,
        old_values=None,
        new_values=None,
        risk_level='LOW',
        additional_data=None,
        notes=None,
        currency=None,
        context=None,
    ):
        """
        Create one audit entry.

        Unlike ``utils.audit.log_financial_activity`` this raises on failure;
        callers that must never fail go through that wrapper instead.

        Args:
            action: Action type from FINANCIAL_ACTIONS
            user: User performing the action
            target_object: Object being acted upon
            amount: Monetary amount involved
            student: Student object (for student-related actions)
            old_values: Values before change
            new_values: Values after change
            risk_level: Risk level of the action
            additional_data: Additional contextual data
            notes: Optional notes
            currency: Currency code (defaults to FinancialSettings)
            context: Request context dict captured when the action happened

        Returns:
            FinancialAuditLog: The created entry
        """
        context = context or {}

        log_data = {
            'action': action,
            'risk_level': risk_level,
            'timestamp': timezone.now(),
            'notes': (notes or '')[:2000],
            'old_values': old_values,
            'new_values': new_values,
            'additional_data': additional_data or {},
            'ip_address': context.get('ip_address') or None,
            'user_agent': (context.get('user_agent') or '')[:512],
            'request_path': (context.get('request_path') or '')[:500],
        }

        if currency:
            log_data['currency'] = str(currency)[:3].upper()
        else:
            from core.models import FinancialSettings
            log_data['currency'] = FinancialSettings.get_instance().school_currency[:3].upper()

        if amount is not None:
            try:
                log_data['amount_involved'] = Decimal(str(amount))
            except (ValueError, InvalidOperation, TypeError):
                logger.warning(f"Invalid amount for financial audit log: {amount}")

        user = user or context.get('user')
        if user is not None:
            full_name = getattr(user, 'get_full_name', lambda: '')() or getattr(user, 'username', '') or str(user)
            log_data.update({
                'user_id': str(getattr(user, 'pk', user)),
                'user_name': full_name[:200],
            })

        if target_object is not None:
            log_data.update({
                'object_type': target_object._meta.label_lower,
                'object_id': str(target_object.pk),
                'object_description': str(target_object)[:500],
            })

        if student is not None:
            student_name = getattr(student, 'get_full_name', lambda: str(student))()
            log_data.update({
                'student_id': str(student.pk),
                'student_name': student_name[:200],
                'student_admission_number': str(getattr(student, 'admission_number', ''))[:50],
            })

        return cls.objects.create(**log_data)

    # -------------------------------------------------------------------------
    # QUERY HELPERS
    # -------------------------------------------------------------------------

    @classmethod
    def get_student_financial_history(cls, student_id, limit=50):
        return cls.objects.filter(student_id=str(student_id)).order_by('-timestamp')[:limit]
