# students/utils.py

"""
Serialization of promotions and fee balance transfers for the JSON endpoints.
"""


def serialize_balance_detail(detail):
    return {
        'id': str(detail.pk),
        'invoice_item_id': str(detail.invoice_item_id) if detail.invoice_item_id else None,
        'invoice_number': detail.invoice_number,
        'fee_item_name': detail.fee_item_name,
        'category': detail.category,
        'original_amount': detail.original_amount,
        'paid_amount': detail.paid_amount,
        'balance_amount': detail.balance_amount,
        'term': detail.term,
        'academic_year': detail.academic_year,
        'carried_forward_date': detail.carried_forward_date,
    }


def serialize_transfer(transfer, details=None):
    """Transfer with its details; pass ``details`` to skip the query."""
    if details is None:
        details = transfer.details.all()
    return {
        'id': str(transfer.pk),
        'student_id': str(transfer.student_id),
        'promotion_id': str(transfer.promotion_id),
        'from_class': transfer.from_class,
        'to_class': transfer.to_class,
        'from_term': transfer.from_term,
        'to_term': transfer.to_term,
        'transfer_date': transfer.transfer_date,
        'total_balance_transferred': transfer.total_balance_transferred,
        'status': transfer.status,
        'details': [serialize_balance_detail(detail) for detail in details],
    }


def serialize_promotion(promotion, transfer=None, details=None):
    """
    Promotion with its balance transfer, if any. Without an explicit
    ``transfer`` the reverse one-to-one is followed.
    """
    if transfer is None and _has_transfer(promotion):
        transfer = promotion.balance_transfer
    return {
        'id': str(promotion.pk),
        'student_id': str(promotion.student_id),
        'from_class': promotion.from_class,
        'to_class': promotion.to_class,
        'from_session': str(promotion.from_session) if promotion.from_session_id else None,
        'to_session': str(promotion.to_session),
        'promotion_date': promotion.promotion_date,
        'remarks': promotion.remarks,
        'balance_transfer': serialize_transfer(transfer, details) if transfer else None,
    }


def _has_transfer(promotion):
    from students.models import FeeBalanceTransfer
    try:
        promotion.balance_transfer
    except FeeBalanceTransfer.DoesNotExist:
        return False
    return True
