# finance/views.py

"""
Budget Tracking JSON Endpoints

Spending checks and reservations for the expense system, plus the budget
lifecycle. Denied reservations are a normal answer (200 with
``allowed: false``), not an error.
"""

import logging

from core.utils import run_with_retry
from finance.services import BudgetTracker
from finance.utils import serialize_budget, serialize_utilization
from utils.context import get_actor_id
from utils.utils import json_success, ledger_api, paginate_queryset, parse_filters, parse_json_body

logger = logging.getLogger(__name__)


# =============================================================================
# BUDGETS
# =============================================================================

@ledger_api(["GET", "POST"])
def budget_list(request):
    if request.method == "POST":
        budget = BudgetTracker.create_budget(parse_json_body(request))
        return json_success(serialize_budget(budget), message="Budget created", status=201)

    filters = parse_filters(request, ['academic_year', 'budget_type', 'status'])
    page_obj, paginator = paginate_queryset(request, BudgetTracker.list_budgets(filters))
    return json_success({
        'results': [serialize_budget(budget) for budget in page_obj],
        'pagination': {
            'total': paginator.count,
            'page': page_obj.number,
            'total_pages': paginator.num_pages,
        },
    })


@ledger_api(["GET", "POST"])
def budget_detail(request, budget_id):
    if request.method == "POST":
        budget = run_with_retry(BudgetTracker.update_budget, budget_id, parse_json_body(request))
        return json_success(serialize_budget(budget), message="Budget updated")

    return json_success(BudgetTracker.get_budget_summary(budget_id))


@ledger_api(["POST"])
def allocate_budget(request, budget_id):
    data = parse_json_body(request)
    budget = run_with_retry(BudgetTracker.allocate, budget_id, data.get('category_id'), data.get('amount'))
    return json_success(serialize_budget(budget), message="Allocation added")


# =============================================================================
# SPENDING
# =============================================================================

@ledger_api(["POST"])
def check_spending(request, budget_id):
    data = parse_json_body(request)
    decision = BudgetTracker.check_spending(budget_id, data.get('category_id'), data.get('amount'))
    return json_success(decision.to_dict())


@ledger_api(["POST"])
def reserve_spending(request, budget_id):
    data = parse_json_body(request)
    decision = run_with_retry(
        BudgetTracker.check_and_reserve,
        budget_id,
        data.get('category_id'),
        data.get('amount'),
        reference=data.get('reference', ''),
    )
    return json_success(decision.to_dict(), status=201 if decision.utilization else 200)


@ledger_api(["POST"])
def record_utilization(request, budget_id):
    data = parse_json_body(request)
    utilization = run_with_retry(
        BudgetTracker.record_utilization,
        budget_id,
        data.get('amount'),
        category_id=data.get('category_id'),
        reference=data.get('reference', ''),
        override=bool(data.get('override', False)),
    )
    return json_success(serialize_utilization(utilization), message="Utilization recorded", status=201)


@ledger_api(["POST"])
def release_reservation(request, utilization_id):
    data = parse_json_body(request)
    utilization = run_with_retry(BudgetTracker.release_reservation, utilization_id, data.get('reason'))
    return json_success(serialize_utilization(utilization), message="Reservation released")


# =============================================================================
# LIFECYCLE
# =============================================================================

@ledger_api(["POST"])
def approve_budget(request, budget_id):
    data = parse_json_body(request)
    approver_id = data.get('approver_id') or get_actor_id()
    budget = run_with_retry(BudgetTracker.approve, budget_id, approver_id)
    return json_success(serialize_budget(budget), message="Budget approved")


@ledger_api(["POST"])
def close_budget(request, budget_id):
    data = parse_json_body(request)
    budget = run_with_retry(BudgetTracker.close, budget_id, get_actor_id(), data.get('notes'))
    return json_success(serialize_budget(budget), message="Budget closed")


@ledger_api(["POST"])
def cancel_budget(request, budget_id):
    data = parse_json_body(request)
    budget = run_with_retry(BudgetTracker.cancel, budget_id, get_actor_id(), data.get('reason'))
    return json_success(serialize_budget(budget), message="Budget cancelled")
