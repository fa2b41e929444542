# utils/audit.py

import logging

from django.db import transaction

from utils.context import get_request_context

# Fallback channel for entries that could not be persisted
audit_logger = logging.getLogger("financial_audit")
logger = logging.getLogger(__name__)


def log_financial_activity(
    action,
    user=None,
    target_object=None,
    amount=None,
    student=None,
    old_values=None,
    new_values=None,
    notes=None,
    risk_level='LOW',
    additional_data=None,
    currency=None,
):
    """
    Record a financial state transition once the surrounding transaction
    commits.

    Audit logging is fire-and-forget: the entry is written in an
    ``on_commit`` hook, so a rolled back operation leaves no trace and a
    failing audit write can never undo the operation. Failures are written to
    the ``financial_audit`` logger instead.

    Args:
        action (str): Type of financial action (e.g., PAYMENT_RECEIVE).
        user (User instance, optional): User performing the action.
        target_object (Model instance, optional): Object affected.
        amount (Decimal, optional): Amount involved in the action.
        student (Student instance, optional): Related student.
        old_values (dict, optional): Values before the change.
        new_values (dict, optional): Values after the change.
        notes (str, optional): Additional notes or comments.
        risk_level (str, optional): 'LOW', 'MEDIUM', 'HIGH' or 'CRITICAL'.
        additional_data (dict, optional): Extra context-specific data.
        currency (str, optional): Currency code.
    """
    # Captured now; the request context is gone by the time a deferred
    # callback runs outside the request.
    context = dict(get_request_context() or {})

    def _write():
        try:
            from utils.models import FinancialAuditLog

            FinancialAuditLog.log_financial_action(
                action=action,
                user=user,
                target_object=target_object,
                amount=amount,
                student=student,
                old_values=old_values,
                new_values=new_values,
                risk_level=risk_level,
                additional_data=additional_data,
                notes=notes,
                currency=currency,
                context=context,
            )
        except Exception as e:
            logger.error(f"Error in financial activity logging: {e}", exc_info=True)
            audit_logger.warning(
                f"action={action} object={target_object!r} amount={amount} "
                f"user={getattr(user, 'pk', user)} new_values={new_values} notes={notes}"
            )

    transaction.on_commit(_write)
