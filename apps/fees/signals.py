# fees/signals.py

"""
Fee Ledger Signal Handlers

- Invoice, payment, receipt and refund number generation
- Net amount received initialisation for new payments
"""

from django.db.models.signals import pre_save
from django.dispatch import receiver
import logging

from fees.utils import (
    generate_invoice_number,
    generate_payment_number,
    generate_receipt_number,
    generate_refund_number,
)

logger = logging.getLogger(__name__)


# =============================================================================
# INVOICE SIGNALS
# =============================================================================

@receiver(pre_save, sender='fees.FeeInvoice')
def fee_invoice_pre_save(sender, instance, **kwargs):
    if not instance.invoice_number:
        instance.invoice_number = generate_invoice_number()
        logger.info(f"Generated invoice number: {instance.invoice_number}")


# =============================================================================
# PAYMENT SIGNALS
# =============================================================================

@receiver(pre_save, sender='fees.Payment')
def payment_pre_save(sender, instance, **kwargs):
    """
    Pre-save processing for payments:
    - Auto-generate payment and receipt numbers
    - Initialise net amount received from the payment amount
    """
    if not instance.payment_number:
        instance.payment_number = generate_payment_number()
        logger.info(f"Generated payment number: {instance.payment_number}")

    if not instance.receipt_number:
        instance.receipt_number = generate_receipt_number()

    if instance.net_amount_received is None:
        instance.net_amount_received = instance.amount - instance.refunded_amount


# =============================================================================
# REFUND SIGNALS
# =============================================================================

@receiver(pre_save, sender='fees.Refund')
def refund_pre_save(sender, instance, **kwargs):
    if not instance.refund_number:
        instance.refund_number = generate_refund_number()
        logger.info(f"Generated refund number: {instance.refund_number}")
