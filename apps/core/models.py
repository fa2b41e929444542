# core/models.py

from decimal import Decimal, InvalidOperation
import logging

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models

from utils.models import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# FINANCIAL SETTINGS
# =============================================================================

class FinancialSettings(BaseModel):
    """
    Core financial settings for the school.
    Manages currency, document numbering, payment terms and ledger retry
    policy. Singleton pattern - only one instance per database.
    """

    # -------------------------------------------------------------------------
    # CHOICE FIELDS
    # -------------------------------------------------------------------------

    CURRENCY_POSITION_CHOICES = [
        ('BEFORE', 'Before amount (KES 100.00)'),
        ('AFTER', 'After amount (100.00 KES)'),
        ('BEFORE_NO_SPACE', 'Before, no space (KES100.00)'),
        ('AFTER_NO_SPACE', 'After, no space (100.00KES)'),
    ]

    # -------------------------------------------------------------------------
    # CURRENCY CONFIGURATION
    # -------------------------------------------------------------------------

    school_currency = models.CharField(
        "School Currency",
        max_length=3,
        default='KES',
        help_text='Currency every ledger amount is kept in (ISO 4217 code)'
    )

    currency_position = models.CharField(
        "Currency Position",
        max_length=20,
        choices=CURRENCY_POSITION_CHOICES,
        default='BEFORE',
        help_text="How to display currency symbols"
    )

    use_thousand_separator = models.BooleanField(
        "Use Thousand Separator",
        default=True,
        help_text="Display numbers with comma separators (e.g., 1,000,000)"
    )

    # -------------------------------------------------------------------------
    # NUMBERING CONFIGURATION
    # -------------------------------------------------------------------------

    invoice_prefix = models.CharField(
        "Invoice Number Prefix",
        max_length=10,
        default="INV",
        blank=True,
        help_text="Prefix for invoice numbers (leave blank for no prefix)"
    )

    include_year_in_invoice_number = models.BooleanField(
        "Include Year in Invoice Number",
        default=True
    )

    payment_prefix = models.CharField(
        "Payment Number Prefix",
        max_length=10,
        default="PMT",
        blank=True,
        help_text="Prefix for payment numbers (leave blank for no prefix)"
    )

    include_year_in_payment_number = models.BooleanField(
        "Include Year in Payment Number",
        default=True
    )

    receipt_prefix = models.CharField(
        "Receipt Number Prefix",
        max_length=10,
        default="RCPT",
        blank=True
    )

    refund_prefix = models.CharField(
        "Refund Number Prefix",
        max_length=10,
        default="RFD",
        blank=True
    )

    # -------------------------------------------------------------------------
    # PAYMENT SETTINGS
    # -------------------------------------------------------------------------

    default_payment_terms_days = models.PositiveIntegerField(
        "Default Payment Terms (Days)",
        default=30,
        validators=[MinValueValidator(1), MaxValueValidator(365)],
        help_text="Days after generation an invoice falls due when no due date is given"
    )

    # -------------------------------------------------------------------------
    # LEDGER POLICY
    # -------------------------------------------------------------------------

    concurrency_retry_attempts = models.PositiveIntegerField(
        "Concurrency Retry Attempts",
        default=3,
        validators=[MinValueValidator(1), MaxValueValidator(10)],
        help_text="How many times a ledger operation is attempted when it loses a race"
    )

    class Meta:
        verbose_name = "Financial Settings"
        verbose_name_plural = "Financial Settings"

    def __str__(self):
        return f"Financial Settings ({self.school_currency})"

    def clean(self):
        super().clean()
        if self.school_currency and len(self.school_currency) != 3:
            raise ValidationError({'school_currency': 'Currency must be a 3-letter ISO code.'})

    def save(self, *args, **kwargs):
        if self.school_currency:
            self.school_currency = self.school_currency.upper()
        super().save(*args, **kwargs)

    def format_currency(self, amount, include_symbol=True):
        """Format amount based on school settings."""
        try:
            amount = Decimal(str(amount or 0))
            formatted = f"{amount:,.2f}"

            if not self.use_thousand_separator:
                formatted = formatted.replace(',', '')

            if include_symbol:
                symbol = self.school_currency
                if self.currency_position == 'AFTER':
                    return f"{formatted} {symbol}"
                elif self.currency_position == 'BEFORE_NO_SPACE':
                    return f"{symbol}{formatted}"
                elif self.currency_position == 'AFTER_NO_SPACE':
                    return f"{formatted}{symbol}"
                return f"{symbol} {formatted}"
            return formatted

        except (ValueError, TypeError, InvalidOperation) as e:
            logger.warning(f"Error formatting currency: {e}")
            return f"{self.school_currency} 0.00" if include_symbol else "0.00"

    @classmethod
    def get_instance(cls):
        """Get or create the singleton instance of FinancialSettings."""
        instance = cls.objects.order_by('created_at').first()
        if instance is None:
            instance = cls.objects.create()
        return instance
