# finance/utils.py

"""
Finance utility functions: JSON serialization of budgets and their
utilization ledger.
"""

import logging

logger = logging.getLogger(__name__)


def serialize_budget(budget):
    return {
        'id': str(budget.pk),
        'title': budget.title,
        'academic_year': budget.academic_year,
        'budget_type': budget.budget_type,
        'start_date': budget.start_date,
        'end_date': budget.end_date,
        'total_amount': budget.total_amount,
        'allocated_amount': budget.allocated_amount,
        'utilized_amount': budget.utilized_amount,
        'remaining_amount': budget.remaining_amount,
        'category_allocations': budget.category_allocations,
        'warning_threshold': budget.warning_threshold,
        'freeze_threshold': budget.freeze_threshold,
        'status': budget.status,
        'has_override': budget.has_override,
        'version': budget.version,
    }


def serialize_utilization(utilization):
    return {
        'id': str(utilization.pk),
        'budget_id': str(utilization.budget_id),
        'category_id': str(utilization.category_id) if utilization.category_id else None,
        'amount': utilization.amount,
        'reference': utilization.reference,
        'status': utilization.status,
        'decision': utilization.decision,
        'is_override': utilization.is_override,
        'utilization_percentage': utilization.utilization_percentage,
    }
