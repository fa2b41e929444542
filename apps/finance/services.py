# finance/services.py

"""
Budget Tracking Services

BudgetTracker maintains a budget's allocation and utilization counters and
answers whether a proposed spend is allowed. Expenses themselves are written
by the spending system; this module only reserves, records and releases
amounts against the budget envelope.

A spending check and its reservation happen in one transaction with the
budget row locked (``check_and_reserve``), so two concurrent expenses cannot
both pass the thresholds and jointly overrun them.
"""

from decimal import Decimal
import logging
import re

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from core.exceptions import (
    BudgetCeilingExceeded, BudgetFrozen, BudgetNotActive, BudgetNotFound,
    CategoryAllocationExceeded, InvalidAmount, InvalidBudgetState,
    InvalidPeriod, LedgerValidationError, UtilizationNotFound,
)
from core.utils import (
    ZERO, calculate_percentage, fetch_or_raise, get_ledger_today,
    ledger_transaction, money_str, sum_money, to_money, to_positive_money,
)
from finance.models import Budget, BudgetUtilization, ExpenseCategory
from utils.audit import log_financial_activity
from utils.context import get_actor_id

logger = logging.getLogger(__name__)

ACADEMIC_YEAR_PATTERN = re.compile(r'^(\d{4})-(\d{4})$')

# Fields a caller may set on create/update; counters and workflow fields are
# owned by the tracker.
EDITABLE_FIELDS = (
    'title', 'description', 'academic_year', 'budget_type', 'start_date',
    'end_date', 'total_amount', 'category_allocations', 'monthly_allocations',
    'warning_threshold', 'freeze_threshold', 'notes',
)


# =============================================================================
# SPENDING DECISION
# =============================================================================

class BudgetDecision:
    """Outcome of a spending check"""

    ALLOW = 'ALLOW'
    WARN = 'WARN'
    DENY = 'DENY'

    def __init__(self, outcome, reason=None, message='', budget=None,
                 amount=ZERO, utilization_percentage=ZERO, utilization=None):
        self.outcome = outcome
        self.reason = reason
        self.message = message
        self.budget = budget
        self.amount = amount
        self.utilization_percentage = utilization_percentage
        self.utilization = utilization

    def __repr__(self):
        return f"<BudgetDecision {self.outcome} reason={self.reason}>"

    @property
    def allowed(self):
        return self.outcome != self.DENY

    @property
    def is_warning(self):
        return self.outcome == self.WARN

    def to_dict(self):
        return {
            'decision': self.outcome,
            'allowed': self.allowed,
            'reason': self.reason,
            'message': self.message,
            'budget_id': str(self.budget.pk) if self.budget else None,
            'amount': money_str(self.amount),
            'utilization_percentage': str(self.utilization_percentage),
            'utilization_id': str(self.utilization.pk) if self.utilization else None,
        }


# =============================================================================
# BUDGET TRACKER
# =============================================================================

class BudgetTracker:
    """
    Budget lifecycle, allocation and utilization tracking.

    Lifecycle: DRAFT -> ACTIVE (approve) -> CLOSED (close); CANCELLED from
    DRAFT or ACTIVE. Every transition is one-way.
    """

    # -------------------------------------------------------------------------
    # LOOKUPS
    # -------------------------------------------------------------------------

    @staticmethod
    def get_budget(budget_id, lock=False):
        return fetch_or_raise(Budget.objects, BudgetNotFound, "Budget", lock=lock, pk=budget_id)

    @staticmethod
    def _resolve_category(category_id):
        if category_id in (None, ''):
            return None
        category_id = getattr(category_id, 'pk', category_id)
        try:
            return ExpenseCategory.objects.get(pk=category_id)
        except (ExpenseCategory.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise LedgerValidationError(
                f"Unknown expense category: {category_id}",
                category_id=category_id,
            )

    # -------------------------------------------------------------------------
    # VALIDATION
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_date(value, field):
        if hasattr(value, 'isoformat') and not isinstance(value, str):
            return value
        try:
            parsed = parse_date(value) if isinstance(value, str) else None
        except ValueError:
            parsed = None
        if parsed is None:
            raise InvalidPeriod(f"{field} is not a valid date: {value!r}", field=field)
        return parsed

    @staticmethod
    def _parse_threshold(value, field):
        if value in (None, ''):
            return None
        try:
            threshold = int(value)
        except (TypeError, ValueError):
            raise LedgerValidationError(f"{field} must be a whole percentage", field=field)
        if threshold < 0 or threshold > 100:
            raise LedgerValidationError(f"{field} must be between 0 and 100", field=field)
        return threshold

    @staticmethod
    def _clean_allocations(allocations, total_amount, label):
        """Amounts as exact strings keyed by string key, plus their sum."""
        cleaned = {}
        for key, value in (allocations or {}).items():
            amount = to_money(value, field=f"{label} '{key}'")
            if amount < ZERO:
                raise InvalidAmount(f"{label} '{key}' cannot be negative", key=key)
            cleaned[str(key)] = str(amount)

        total = sum_money(cleaned.values())
        if total > total_amount:
            raise LedgerValidationError(
                f"Total {label} {total} exceed the budget amount {total_amount}",
                allocated=total,
                total_amount=total_amount,
            )
        return cleaned, total

    @staticmethod
    def _clean_budget_data(data):
        """
        Validate and normalize budget fields.

        Raises:
            LedgerValidationError, InvalidPeriod, InvalidAmount
        """
        cleaned = {}

        title = (data.get('title') or '').strip()
        if len(title) < 2:
            raise LedgerValidationError("Budget title must be at least 2 characters")
        cleaned['title'] = title

        academic_year = (data.get('academic_year') or '').strip()
        match = ACADEMIC_YEAR_PATTERN.match(academic_year)
        if not match or int(match.group(2)) != int(match.group(1)) + 1:
            raise LedgerValidationError(
                f"Academic year must be in the format YYYY-YYYY: {academic_year!r}",
                academic_year=academic_year,
            )
        cleaned['academic_year'] = academic_year

        budget_type = data.get('budget_type') or data.get('type')
        if budget_type not in dict(Budget.BUDGET_TYPE_CHOICES):
            raise LedgerValidationError(f"Unknown budget type: {budget_type}", budget_type=budget_type)
        cleaned['budget_type'] = budget_type

        start_date = BudgetTracker._parse_date(data.get('start_date'), 'start_date')
        end_date = BudgetTracker._parse_date(data.get('end_date'), 'end_date')
        if end_date <= start_date:
            raise InvalidPeriod(
                "End date must be after start date",
                start_date=start_date,
                end_date=end_date,
            )
        cleaned['start_date'] = start_date
        cleaned['end_date'] = end_date

        total_amount = to_money(data.get('total_amount'), field='total_amount')
        if total_amount < ZERO:
            raise InvalidAmount("total_amount cannot be negative", field='total_amount')
        cleaned['total_amount'] = total_amount

        warning = BudgetTracker._parse_threshold(data.get('warning_threshold'), 'warning_threshold')
        freeze = BudgetTracker._parse_threshold(data.get('freeze_threshold'), 'freeze_threshold')
        if warning is not None and freeze is not None and warning > freeze:
            raise LedgerValidationError(
                "Warning threshold cannot be above the freeze threshold",
                warning_threshold=warning,
                freeze_threshold=freeze,
            )
        cleaned['warning_threshold'] = warning
        cleaned['freeze_threshold'] = freeze

        category_allocations, allocated = BudgetTracker._clean_allocations(
            data.get('category_allocations'), total_amount, 'category allocations'
        )
        for category_id in category_allocations:
            BudgetTracker._resolve_category(category_id)
        cleaned['category_allocations'] = category_allocations
        cleaned['allocated_amount'] = allocated

        cleaned['monthly_allocations'], _monthly_total = BudgetTracker._clean_allocations(
            data.get('monthly_allocations'), total_amount, 'monthly allocations'
        )

        cleaned['description'] = data.get('description') or ''
        cleaned['notes'] = data.get('notes') or ''
        return cleaned

    # -------------------------------------------------------------------------
    # CREATE / UPDATE
    # -------------------------------------------------------------------------

    @staticmethod
    def create_budget(data, user=None):
        """
        Create a DRAFT budget.

        Args:
            data (dict): title, academic_year, budget_type, start_date,
                end_date, total_amount and optionally description,
                category_allocations ``{category_id: cap}``,
                monthly_allocations ``{month: amount}``, warning_threshold,
                freeze_threshold, notes
            user (optional): Acting user

        Returns:
            Budget instance

        Raises:
            LedgerValidationError, InvalidPeriod, InvalidAmount
        """
        cleaned = BudgetTracker._clean_budget_data(data)

        with ledger_transaction():
            budget = Budget(status='DRAFT', **cleaned)
            budget.save()

            log_financial_activity(
                action='BUDGET_CREATE',
                user=user,
                target_object=budget,
                amount=budget.total_amount,
                new_values={
                    'title': budget.title,
                    'budget_type': budget.budget_type,
                    'total_amount': money_str(budget.total_amount),
                    'allocated_amount': money_str(budget.allocated_amount),
                },
            )

        logger.info(f"Created {budget.budget_type} budget '{budget.title}': {budget.total_amount}")
        return budget

    @staticmethod
    def update_budget(budget_id, data, user=None):
        """
        Update a DRAFT budget. Counters are recomputed from the new
        allocations; approved budgets cannot be edited.

        Raises:
            BudgetNotFound, InvalidBudgetState, LedgerValidationError
        """
        with ledger_transaction():
            budget = BudgetTracker.get_budget(budget_id, lock=True)

            if budget.status != 'DRAFT':
                raise InvalidBudgetState(
                    f"Only draft budgets can be updated; '{budget.title}' is {budget.get_status_display().lower()}",
                    status=budget.status,
                )

            merged = {field: getattr(budget, field) for field in EDITABLE_FIELDS}
            merged.update({key: value for key, value in data.items() if key in EDITABLE_FIELDS or key == 'type'})
            if 'type' in data:
                merged['budget_type'] = data['type']
            cleaned = BudgetTracker._clean_budget_data(merged)

            old_values = {
                'title': budget.title,
                'total_amount': money_str(budget.total_amount),
                'allocated_amount': money_str(budget.allocated_amount),
            }
            for field, value in cleaned.items():
                setattr(budget, field, value)
            budget.version += 1
            budget.save()

            log_financial_activity(
                action='BUDGET_UPDATE',
                user=user,
                target_object=budget,
                amount=budget.total_amount,
                old_values=old_values,
                new_values={
                    'title': budget.title,
                    'total_amount': money_str(budget.total_amount),
                    'allocated_amount': money_str(budget.allocated_amount),
                },
            )

        logger.info(f"Updated budget '{budget.title}'")
        return budget

    @staticmethod
    def allocate(budget_id, category_id, amount, user=None):
        """
        Add ``amount`` to a category's cap, drawing on the unallocated
        remainder of the budget.

        Raises:
            BudgetNotFound, InvalidBudgetState (closed or cancelled),
            LedgerValidationError (unknown category), InvalidAmount
            (amount above the remaining budget)
        """
        amount = to_positive_money(amount)

        with ledger_transaction():
            budget = BudgetTracker.get_budget(budget_id, lock=True)

            if budget.status not in ('DRAFT', 'ACTIVE'):
                raise InvalidBudgetState(
                    f"Cannot allocate on a {budget.get_status_display().lower()} budget",
                    status=budget.status,
                )

            category = BudgetTracker._resolve_category(category_id)
            if category is None:
                raise LedgerValidationError("An expense category is required for an allocation")

            if amount > budget.remaining_amount:
                raise InvalidAmount(
                    f"Insufficient budget for allocation: {amount} requested, "
                    f"{budget.remaining_amount} remaining",
                    amount=amount,
                    remaining_amount=budget.remaining_amount,
                )

            key = str(category.pk)
            allocations = dict(budget.category_allocations or {})
            old_cap = to_money(allocations.get(key, ZERO))
            allocations[key] = str(old_cap + amount)

            budget.category_allocations = allocations
            budget.allocated_amount += amount
            budget.version += 1
            budget.save(update_fields=['category_allocations', 'allocated_amount', 'version'])

            log_financial_activity(
                action='BUDGET_ALLOCATE',
                user=user,
                target_object=budget,
                amount=amount,
                old_values={'category': category.code, 'cap': money_str(old_cap)},
                new_values={'category': category.code, 'cap': allocations[key]},
            )

        logger.info(f"Allocated {amount} to {category.code} on budget '{budget.title}'")
        return budget

    # -------------------------------------------------------------------------
    # SPENDING CHECKS
    # -------------------------------------------------------------------------

    @staticmethod
    def _evaluate(budget, category, amount):
        """
        Apply the spending rules to a budget's current counters.

        Order: not ACTIVE -> DENY, category cap -> DENY, spending ceiling ->
        DENY, freeze threshold -> DENY, warning threshold -> WARN, otherwise
        ALLOW.
        """
        prospective = budget.utilized_amount + amount
        percentage = calculate_percentage(prospective, budget.total_amount)

        def decide(outcome, reason=None, message=''):
            return BudgetDecision(
                outcome, reason=reason, message=message, budget=budget,
                amount=amount, utilization_percentage=percentage,
            )

        if budget.status != 'ACTIVE':
            return decide(
                BudgetDecision.DENY, BudgetNotActive.code,
                f"Budget '{budget.title}' is {budget.get_status_display().lower()}",
            )

        if category is not None:
            cap = budget.get_category_cap(category.pk)
            if cap is not None:
                category_utilized = budget.get_category_utilized(category.pk)
                if category_utilized + amount > cap:
                    return decide(
                        BudgetDecision.DENY, CategoryAllocationExceeded.code,
                        f"{category.name} would reach {category_utilized + amount} "
                        f"against an allocation of {cap}",
                    )

        ceiling = budget.spending_ceiling
        if prospective > ceiling:
            return decide(
                BudgetDecision.DENY, BudgetCeilingExceeded.code,
                f"Spending would bring utilization to {prospective} "
                f"against a ceiling of {ceiling}",
            )

        # Compare prospective * 100 against threshold * total to avoid
        # rounding the percentage.
        if budget.freeze_threshold is not None and _reaches(prospective, budget.total_amount, budget.freeze_threshold):
            return decide(
                BudgetDecision.DENY, BudgetFrozen.code,
                f"Spending would bring utilization to {percentage}% "
                f"(freeze threshold {budget.freeze_threshold}%)",
            )

        if budget.warning_threshold is not None and _reaches(prospective, budget.total_amount, budget.warning_threshold):
            return decide(
                BudgetDecision.WARN, 'BUDGET_WARNING',
                f"Spending brings utilization to {percentage}% "
                f"(warning threshold {budget.warning_threshold}%)",
            )

        return decide(BudgetDecision.ALLOW)

    @staticmethod
    def check_spending(budget_id, category_id, amount):
        """
        Evaluate a proposed spend without reserving it.

        Returns:
            BudgetDecision
        """
        amount = to_positive_money(amount)
        budget = BudgetTracker.get_budget(budget_id)
        category = BudgetTracker._resolve_category(category_id)
        return BudgetTracker._evaluate(budget, category, amount)

    @staticmethod
    def check_and_reserve(budget_id, category_id, amount, reference='', user=None):
        """
        Evaluate a proposed spend and, unless denied, reserve it in the same
        transaction with the budget row locked.

        A DENY decision is returned, not raised; nothing is written for it.

        Args:
            budget_id: Budget ID
            category_id: ExpenseCategory ID or None
            amount: Amount to reserve
            reference (str, optional): Expense reference
            user (optional): Acting user

        Returns:
            BudgetDecision, with ``utilization`` set when the amount was reserved

        Raises:
            BudgetNotFound, LedgerValidationError, InvalidAmount, ConcurrencyError

        Example:
            decision = BudgetTracker.check_and_reserve(budget.id, stationery.id, '850.00')
            if not decision.allowed:
                reject_expense(decision.reason)
        """
        amount = to_positive_money(amount)

        with ledger_transaction():
            budget = BudgetTracker.get_budget(budget_id, lock=True)
            category = BudgetTracker._resolve_category(category_id)
            decision = BudgetTracker._evaluate(budget, category, amount)

            if not decision.allowed:
                logger.warning(
                    f"Denied {amount} on budget '{budget.title}': {decision.reason} - {decision.message}"
                )
                return decision

            old_utilized = budget.utilized_amount
            decision.utilization = BudgetUtilization.objects.create(
                budget=budget,
                category=category,
                amount=amount,
                reference=reference or '',
                status='RESERVED',
                decision=decision.outcome,
                utilization_percentage=decision.utilization_percentage,
            )

            budget.utilized_amount += amount
            budget.version += 1
            budget.save(update_fields=['utilized_amount', 'version'])

            log_financial_activity(
                action='BUDGET_RESERVE',
                user=user,
                target_object=budget,
                amount=amount,
                old_values={'utilized_amount': money_str(old_utilized)},
                new_values={
                    'utilized_amount': money_str(budget.utilized_amount),
                    'decision': decision.outcome,
                    'category': category.code if category else None,
                },
                additional_data={'reference': reference or ''},
                risk_level='MEDIUM' if decision.is_warning else 'LOW',
            )

        logger.info(
            f"Reserved {amount} on budget '{budget.title}' ({decision.outcome}, "
            f"{decision.utilization_percentage}%)"
        )
        return decision

    @staticmethod
    def record_utilization(budget_id, amount, category_id=None, reference='', override=False, user=None):
        """
        Record approved spending against an ACTIVE budget.

        Spending past the ceiling (the allocated amount when categories are
        capped, otherwise the total) or past a category cap is refused unless
        ``override`` is set; an override is flagged on the ledger row and on
        the budget.

        Raises:
            BudgetNotFound, BudgetNotActive, BudgetCeilingExceeded,
            CategoryAllocationExceeded, InvalidAmount
        """
        amount = to_positive_money(amount)

        with ledger_transaction():
            budget = BudgetTracker.get_budget(budget_id, lock=True)

            if budget.status != 'ACTIVE':
                raise BudgetNotActive(
                    f"Budget '{budget.title}' is {budget.get_status_display().lower()}",
                    status=budget.status,
                )

            category = BudgetTracker._resolve_category(category_id)
            new_utilized = budget.utilized_amount + amount
            is_override = False

            if category is not None:
                cap = budget.get_category_cap(category.pk)
                if cap is not None and budget.get_category_utilized(category.pk) + amount > cap:
                    if not override:
                        raise CategoryAllocationExceeded(
                            f"{category.name} allocation of {cap} would be exceeded",
                            category=category.code,
                            cap=cap,
                        )
                    is_override = True

            ceiling = budget.spending_ceiling
            if new_utilized > ceiling:
                if not override:
                    raise BudgetCeilingExceeded(
                        f"Utilization {new_utilized} would exceed the budget ceiling {ceiling}",
                        utilized_amount=new_utilized,
                        ceiling=ceiling,
                    )
                is_override = True

            old_utilized = budget.utilized_amount
            utilization = BudgetUtilization.objects.create(
                budget=budget,
                category=category,
                amount=amount,
                reference=reference or '',
                status='RESERVED',
                decision='OVERRIDE' if is_override else 'ALLOW',
                is_override=is_override,
                utilization_percentage=calculate_percentage(new_utilized, budget.total_amount),
            )

            budget.utilized_amount = new_utilized
            update_fields = ['utilized_amount', 'version']
            if is_override:
                budget.has_override = True
                update_fields.append('has_override')
            budget.version += 1
            budget.save(update_fields=update_fields)

            log_financial_activity(
                action='BUDGET_UTILIZE',
                user=user,
                target_object=budget,
                amount=amount,
                old_values={'utilized_amount': money_str(old_utilized)},
                new_values={
                    'utilized_amount': money_str(budget.utilized_amount),
                    'override': is_override,
                },
                additional_data={'reference': reference or ''},
                risk_level='HIGH' if is_override else 'LOW',
            )

        if is_override:
            logger.warning(f"Override spend of {amount} recorded on budget '{budget.title}'")
        else:
            logger.info(f"Recorded {amount} on budget '{budget.title}'")
        return utilization

    @staticmethod
    def release_reservation(utilization_id, reason, user=None):
        """
        Reverse a reservation whose expense was rejected or cancelled.

        Raises:
            UtilizationNotFound, LedgerValidationError (no reason),
            InvalidBudgetState (already released)
        """
        reason = (reason or '').strip()
        if not reason:
            raise LedgerValidationError("A release reason is required")

        entry = fetch_or_raise(
            BudgetUtilization.objects, UtilizationNotFound, "Budget utilization", pk=utilization_id
        )

        with ledger_transaction():
            budget = BudgetTracker.get_budget(entry.budget_id, lock=True)
            utilization = fetch_or_raise(
                BudgetUtilization.objects, UtilizationNotFound, "Budget utilization",
                lock=True, pk=entry.pk,
            )

            if utilization.status != 'RESERVED':
                raise InvalidBudgetState(
                    "This utilization has already been released",
                    status=utilization.status,
                )

            old_utilized = budget.utilized_amount
            utilization.status = 'RELEASED'
            utilization.released_by_id = get_actor_id(user)
            utilization.release_date = timezone.now()
            utilization.release_reason = reason
            utilization.save()

            budget.utilized_amount -= utilization.amount
            budget.version += 1
            budget.save(update_fields=['utilized_amount', 'version'])

            log_financial_activity(
                action='BUDGET_RELEASE',
                user=user,
                target_object=budget,
                amount=utilization.amount,
                old_values={'utilized_amount': money_str(old_utilized)},
                new_values={'utilized_amount': money_str(budget.utilized_amount)},
                notes=reason,
            )

        logger.info(f"Released {utilization.amount} on budget '{budget.title}': {reason}")
        return utilization

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    @staticmethod
    def approve(budget_id, approver_id, user=None):
        """
        DRAFT -> ACTIVE.

        Raises:
            LedgerValidationError (no approver), BudgetNotFound,
            InvalidBudgetState (not DRAFT, or an ACTIVE budget of the same
            type overlaps the period)
        """
        approver_id = getattr(approver_id, 'pk', approver_id)
        if approver_id in (None, ''):
            raise LedgerValidationError("An approver is required to activate a budget")

        with ledger_transaction():
            budget = BudgetTracker.get_budget(budget_id, lock=True)

            if budget.status != 'DRAFT':
                raise InvalidBudgetState(
                    f"Only draft budgets can be approved; '{budget.title}' is "
                    f"{budget.get_status_display().lower()}",
                    status=budget.status,
                )

            overlapping = Budget.objects.filter(
                budget_type=budget.budget_type,
                status='ACTIVE',
                start_date__lte=budget.end_date,
                end_date__gte=budget.start_date,
            ).exclude(pk=budget.pk).first()
            if overlapping:
                raise InvalidBudgetState(
                    f"An active {budget.get_budget_type_display().lower()} already covers this period: "
                    f"'{overlapping.title}'",
                    overlapping_budget=overlapping.pk,
                )

            budget.status = 'ACTIVE'
            budget.approved_by_id = str(approver_id)
            budget.approval_date = timezone.now()
            budget.version += 1
            budget.save(update_fields=['status', 'approved_by_id', 'approval_date', 'version'])

            log_financial_activity(
                action='BUDGET_APPROVE',
                user=user,
                target_object=budget,
                amount=budget.total_amount,
                old_values={'status': 'DRAFT'},
                new_values={'status': 'ACTIVE', 'approved_by_id': budget.approved_by_id},
                risk_level='MEDIUM',
            )

        logger.info(f"Approved budget '{budget.title}' by {approver_id}")
        return budget

    @staticmethod
    def close(budget_id, user_id, notes, user=None):
        """
        ACTIVE -> CLOSED. Closure notes are required.

        Raises:
            LedgerValidationError, BudgetNotFound, InvalidBudgetState
        """
        notes = (notes or '').strip()
        if not notes:
            raise LedgerValidationError("Closure notes are required")

        with ledger_transaction():
            budget = BudgetTracker.get_budget(budget_id, lock=True)

            if budget.status != 'ACTIVE':
                raise InvalidBudgetState(
                    f"Only active budgets can be closed; '{budget.title}' is "
                    f"{budget.get_status_display().lower()}",
                    status=budget.status,
                )

            budget.status = 'CLOSED'
            budget.closed_by_id = get_actor_id(user_id if user_id not in (None, '') else user)
            budget.closure_date = timezone.now()
            budget.closure_notes = notes
            budget.version += 1
            budget.save(update_fields=['status', 'closed_by_id', 'closure_date', 'closure_notes', 'version'])

            log_financial_activity(
                action='BUDGET_CLOSE',
                user=user,
                target_object=budget,
                amount=budget.utilized_amount,
                old_values={'status': 'ACTIVE'},
                new_values={'status': 'CLOSED', 'utilized_amount': money_str(budget.utilized_amount)},
                notes=notes,
            )

        logger.info(f"Closed budget '{budget.title}'")
        return budget

    @staticmethod
    def cancel(budget_id, user_id, reason, user=None):
        """
        DRAFT or ACTIVE -> CANCELLED.

        Raises:
            LedgerValidationError, BudgetNotFound, InvalidBudgetState
        """
        reason = (reason or '').strip()
        if not reason:
            raise LedgerValidationError("A cancellation reason is required")

        with ledger_transaction():
            budget = BudgetTracker.get_budget(budget_id, lock=True)

            if budget.status not in ('DRAFT', 'ACTIVE'):
                raise InvalidBudgetState(
                    f"A {budget.get_status_display().lower()} budget cannot be cancelled",
                    status=budget.status,
                )

            old_status = budget.status
            budget.status = 'CANCELLED'
            budget.cancelled_by_id = get_actor_id(user_id if user_id not in (None, '') else user)
            budget.cancellation_date = timezone.now()
            budget.cancellation_reason = reason
            budget.version += 1
            budget.save(update_fields=[
                'status', 'cancelled_by_id', 'cancellation_date', 'cancellation_reason', 'version'
            ])

            log_financial_activity(
                action='BUDGET_CANCEL',
                user=user,
                target_object=budget,
                amount=budget.total_amount,
                old_values={'status': old_status},
                new_values={'status': 'CANCELLED'},
                notes=reason,
                risk_level='MEDIUM',
            )

        logger.info(f"Cancelled budget '{budget.title}': {reason}")
        return budget

    # -------------------------------------------------------------------------
    # READ ACCESSORS
    # -------------------------------------------------------------------------

    @staticmethod
    def get_budget_summary(budget):
        """
        Utilization figures for a budget (instance or ID).

        Returns:
            dict with counters, utilization percentage, warning/frozen/over
            budget flags and per-category utilization
        """
        if not isinstance(budget, Budget):
            budget = BudgetTracker.get_budget(budget)

        category_ids = list((budget.category_allocations or {}).keys())
        categories = {
            str(category.pk): category
            for category in ExpenseCategory.objects.filter(pk__in=category_ids)
        }

        category_summary = []
        for category_id in category_ids:
            cap = budget.get_category_cap(category_id)
            utilized = budget.get_category_utilized(category_id)
            category = categories.get(category_id)
            category_summary.append({
                'category_id': category_id,
                'name': category.name if category else None,
                'code': category.code if category else None,
                'allocated': cap,
                'utilized': utilized,
                'remaining': cap - utilized,
                'utilization_percentage': calculate_percentage(utilized, cap),
            })

        return {
            'id': str(budget.pk),
            'title': budget.title,
            'budget_type': budget.budget_type,
            'status': budget.status,
            'total_amount': budget.total_amount,
            'allocated_amount': budget.allocated_amount,
            'utilized_amount': budget.utilized_amount,
            'remaining_amount': budget.remaining_amount,
            'available_amount': budget.spending_ceiling - budget.utilized_amount,
            'utilization_percentage': calculate_percentage(budget.utilized_amount, budget.total_amount),
            'warning_threshold': budget.warning_threshold,
            'freeze_threshold': budget.freeze_threshold,
            'needs_warning': budget.needs_warning(),
            'is_frozen': budget.is_frozen(),
            'is_over_budget': budget.is_over_budget(),
            'has_override': budget.has_override,
            'categories': category_summary,
        }

    @staticmethod
    def list_budgets(filters=None):
        """
        Budgets filtered by ``academic_year``, ``budget_type`` and ``status``,
        newest first.
        """
        filters = filters or {}
        budgets = Budget.objects.all()

        if filters.get('academic_year'):
            budgets = budgets.filter(academic_year=filters['academic_year'])
        budget_type = filters.get('budget_type') or filters.get('type')
        if budget_type:
            budgets = budgets.filter(budget_type=budget_type)
        if filters.get('status'):
            budgets = budgets.filter(status=filters['status'])

        return budgets.order_by('-created_at')

    @staticmethod
    def get_current_budget(budget_type='ANNUAL', today=None):
        """The ACTIVE budget of a type whose period covers today, or None."""
        today = today or get_ledger_today()
        return Budget.objects.filter(
            Q(start_date__lte=today) & Q(end_date__gte=today),
            budget_type=budget_type,
            status='ACTIVE',
        ).first()


def _reaches(prospective, total_amount, threshold):
    """True when ``prospective`` is at least ``threshold`` percent of the total."""
    if total_amount <= ZERO:
        return prospective > ZERO
    return prospective * 100 >= Decimal(threshold) * total_amount
