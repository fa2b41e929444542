# tests/test_budget.py

from datetime import timedelta
from decimal import Decimal
import uuid

import pytest

from core.exceptions import (
    BudgetCeilingExceeded, BudgetNotActive, BudgetNotFound,
    CategoryAllocationExceeded, InvalidAmount, InvalidBudgetState,
    InvalidPeriod, LedgerValidationError, UtilizationNotFound,
)
from finance.models import BudgetUtilization
from finance.services import BudgetDecision, BudgetTracker


pytestmark = pytest.mark.django_db


class TestCreateBudget:

    def test_creates_draft(self, draft_budget):
        assert draft_budget.status == 'DRAFT'
        assert draft_budget.total_amount == Decimal('10000.00')
        assert draft_budget.allocated_amount == Decimal('0.00')
        assert draft_budget.remaining_amount == Decimal('10000.00')
        assert draft_budget.utilized_amount == Decimal('0.00')
        assert draft_budget.warning_threshold == 80
        assert draft_budget.freeze_threshold == 90

    def test_category_allocations_are_counted(self, budget_data, stationery, transport):
        budget_data['category_allocations'] = {
            str(stationery.pk): '2500.00',
            str(transport.pk): '1500.50',
        }
        budget = BudgetTracker.create_budget(budget_data)
        assert budget.allocated_amount == Decimal('4000.50')
        assert budget.remaining_amount == Decimal('5999.50')
        assert budget.get_category_cap(stationery.pk) == Decimal('2500.00')

    def test_unknown_fields_are_not_stored(self, budget_data):
        budget_data['approval_required'] = True
        budget = BudgetTracker.create_budget(budget_data)
        assert not hasattr(budget, 'approval_required')
        assert budget.status == 'DRAFT'
        assert budget.get_category_cap(uuid.uuid4()) is None

    def test_allocations_cannot_exceed_total(self, budget_data, stationery):
        budget_data['category_allocations'] = {str(stationery.pk): '10000.01'}
        with pytest.raises(LedgerValidationError):
            BudgetTracker.create_budget(budget_data)

    def test_unknown_category(self, budget_data):
        budget_data['category_allocations'] = {str(uuid.uuid4()): '100.00'}
        with pytest.raises(LedgerValidationError):
            BudgetTracker.create_budget(budget_data)

    @pytest.mark.parametrize('field, value', [
        ('title', 'x'),
        ('academic_year', '2025-2027'),
        ('academic_year', '2025/2026'),
        ('budget_type', 'WEEKLY'),
        ('warning_threshold', 120),
        ('freeze_threshold', 'high'),
    ])
    def test_invalid_fields(self, budget_data, field, value):
        budget_data[field] = value
        with pytest.raises(LedgerValidationError):
            BudgetTracker.create_budget(budget_data)

    def test_warning_above_freeze(self, budget_data):
        budget_data.update(warning_threshold=95, freeze_threshold=90)
        with pytest.raises(LedgerValidationError):
            BudgetTracker.create_budget(budget_data)

    def test_end_before_start(self, budget_data):
        budget_data['end_date'] = budget_data['start_date']
        with pytest.raises(InvalidPeriod):
            BudgetTracker.create_budget(budget_data)

    def test_impossible_date(self, budget_data):
        budget_data['end_date'] = '2026-02-30'
        with pytest.raises(InvalidPeriod):
            BudgetTracker.create_budget(budget_data)

    def test_negative_total(self, budget_data):
        budget_data['total_amount'] = '-1.00'
        with pytest.raises(InvalidAmount):
            BudgetTracker.create_budget(budget_data)


class TestUpdateBudget:

    def test_update_draft(self, draft_budget):
        updated = BudgetTracker.update_budget(draft_budget.pk, {'total_amount': '12000.00', 'title': 'Ops'})
        assert updated.total_amount == Decimal('12000.00')
        assert updated.remaining_amount == Decimal('12000.00')
        assert updated.title == 'Ops'
        assert updated.version == draft_budget.version + 1

    def test_active_budget_cannot_be_updated(self, active_budget):
        with pytest.raises(InvalidBudgetState):
            BudgetTracker.update_budget(active_budget.pk, {'title': 'Changed'})


class TestAllocate:

    def test_allocate_draws_on_remaining(self, draft_budget, stationery):
        BudgetTracker.allocate(draft_budget.pk, stationery.pk, '2000.00')
        budget = BudgetTracker.allocate(draft_budget.pk, stationery.pk, '500.00')
        assert budget.get_category_cap(stationery.pk) == Decimal('2500.00')
        assert budget.allocated_amount == Decimal('2500.00')
        assert budget.remaining_amount == Decimal('7500.00')

    def test_allocate_beyond_remaining(self, draft_budget, stationery):
        with pytest.raises(InvalidAmount):
            BudgetTracker.allocate(draft_budget.pk, stationery.pk, '10000.01')

    def test_allocate_requires_category(self, draft_budget):
        with pytest.raises(LedgerValidationError):
            BudgetTracker.allocate(draft_budget.pk, None, '100.00')

    def test_allocate_on_closed_budget(self, active_budget, stationery):
        BudgetTracker.close(active_budget.pk, 'bursar-1', 'Year end')
        with pytest.raises(InvalidBudgetState):
            BudgetTracker.allocate(active_budget.pk, stationery.pk, '100.00')


class TestSpendingDecisions:

    def test_spend_to_ninety_one_percent_is_denied(self, active_budget):
        decision = BudgetTracker.check_spending(active_budget.pk, None, '9100.00')
        assert decision.outcome == BudgetDecision.DENY
        assert decision.reason == 'BUDGET_FROZEN'
        assert not decision.allowed

    def test_spend_to_eighty_five_percent_is_allowed_with_warning(self, active_budget):
        decision = BudgetTracker.check_spending(active_budget.pk, None, '8500.00')
        assert decision.outcome == BudgetDecision.WARN
        assert decision.allowed
        assert decision.is_warning
        assert decision.utilization_percentage == Decimal('85.00')

    def test_below_warning_is_allowed(self, active_budget):
        decision = BudgetTracker.check_spending(active_budget.pk, None, '7999.99')
        assert decision.outcome == BudgetDecision.ALLOW
        assert decision.reason is None

    def test_thresholds_are_inclusive_and_exact(self, active_budget):
        assert BudgetTracker.check_spending(active_budget.pk, None, '8000.00').outcome == BudgetDecision.WARN
        assert BudgetTracker.check_spending(active_budget.pk, None, '8999.99').outcome == BudgetDecision.WARN
        assert BudgetTracker.check_spending(active_budget.pk, None, '9000.00').outcome == BudgetDecision.DENY

    def test_draft_budget_denies(self, draft_budget):
        decision = BudgetTracker.check_spending(draft_budget.pk, None, '10.00')
        assert decision.outcome == BudgetDecision.DENY
        assert decision.reason == 'BUDGET_NOT_ACTIVE'

    def test_category_cap_denies_first(self, budget_data, stationery):
        budget_data['category_allocations'] = {str(stationery.pk): '1000.00'}
        budget = BudgetTracker.create_budget(budget_data)
        BudgetTracker.approve(budget.pk, 'bursar-1')

        decision = BudgetTracker.check_spending(budget.pk, stationery.pk, '1000.01')
        assert decision.outcome == BudgetDecision.DENY
        assert decision.reason == 'CATEGORY_ALLOCATION_EXCEEDED'
        assert BudgetTracker.check_spending(budget.pk, stationery.pk, '1000.00').allowed

    def test_check_does_not_write(self, active_budget):
        BudgetTracker.check_spending(active_budget.pk, None, '100.00')
        active_budget.refresh_from_db()
        assert active_budget.utilized_amount == Decimal('0.00')
        assert not BudgetUtilization.objects.exists()

    def test_zero_total_budget_denies_any_spend(self, budget_data):
        budget_data['total_amount'] = '0.00'
        budget = BudgetTracker.create_budget(budget_data)
        BudgetTracker.approve(budget.pk, 'bursar-1')
        decision = BudgetTracker.check_spending(budget.pk, None, '0.01')
        assert decision.outcome == BudgetDecision.DENY

    def test_unknown_category(self, active_budget):
        with pytest.raises(LedgerValidationError):
            BudgetTracker.check_spending(active_budget.pk, uuid.uuid4(), '10.00')

    def test_unknown_budget(self):
        with pytest.raises(BudgetNotFound):
            BudgetTracker.check_spending(uuid.uuid4(), None, '10.00')


class TestCheckAndReserve:

    def test_reserve_updates_counters(self, active_budget, stationery):
        decision = BudgetTracker.check_and_reserve(active_budget.pk, stationery.pk, '850.00', reference='EXP-1')

        assert decision.outcome == BudgetDecision.ALLOW
        assert decision.utilization is not None
        assert decision.utilization.status == 'RESERVED'
        assert decision.utilization.reference == 'EXP-1'
        active_budget.refresh_from_db()
        assert active_budget.utilized_amount == Decimal('850.00')
        assert active_budget.version == 3

    def test_reservations_accumulate_into_denial(self, active_budget):
        assert BudgetTracker.check_and_reserve(active_budget.pk, None, '6000.00').outcome == BudgetDecision.ALLOW
        assert BudgetTracker.check_and_reserve(active_budget.pk, None, '2500.00').outcome == BudgetDecision.WARN

        denied = BudgetTracker.check_and_reserve(active_budget.pk, None, '600.00')
        assert denied.outcome == BudgetDecision.DENY
        assert denied.utilization is None

        active_budget.refresh_from_db()
        assert active_budget.utilized_amount == Decimal('8500.00')
        assert BudgetUtilization.objects.filter(budget=active_budget).count() == 2

    def test_uncapped_category_cannot_pass_the_allocated_ceiling(self, active_budget, stationery, transport):
        BudgetTracker.allocate(active_budget.pk, stationery.pk, '1000.00')

        denied = BudgetTracker.check_and_reserve(active_budget.pk, transport.pk, '5000.00')

        assert denied.outcome == BudgetDecision.DENY
        assert denied.reason == 'BUDGET_CEILING_EXCEEDED'
        assert denied.utilization is None
        active_budget.refresh_from_db()
        assert active_budget.utilized_amount == Decimal('0.00')
        assert not active_budget.has_override

        assert BudgetTracker.check_and_reserve(active_budget.pk, transport.pk, '1000.00').allowed
        assert BudgetTracker.check_spending(active_budget.pk, transport.pk, '0.01').reason == 'BUDGET_CEILING_EXCEEDED'

    def test_release_frees_the_amount(self, active_budget):
        decision = BudgetTracker.check_and_reserve(active_budget.pk, None, '8500.00')
        released = BudgetTracker.release_reservation(decision.utilization.pk, 'Expense rejected')

        assert released.status == 'RELEASED'
        assert released.release_reason == 'Expense rejected'
        active_budget.refresh_from_db()
        assert active_budget.utilized_amount == Decimal('0.00')

        with pytest.raises(InvalidBudgetState):
            BudgetTracker.release_reservation(decision.utilization.pk, 'Again')

    def test_release_requires_reason(self, active_budget):
        decision = BudgetTracker.check_and_reserve(active_budget.pk, None, '100.00')
        with pytest.raises(LedgerValidationError):
            BudgetTracker.release_reservation(decision.utilization.pk, '')

    def test_release_unknown(self):
        with pytest.raises(UtilizationNotFound):
            BudgetTracker.release_reservation(uuid.uuid4(), 'Rejected')


class TestRecordUtilization:

    def test_record_within_ceiling(self, active_budget):
        utilization = BudgetTracker.record_utilization(active_budget.pk, '9500.00', reference='EXP-9')
        assert utilization.decision == 'ALLOW'
        assert not utilization.is_override
        active_budget.refresh_from_db()
        assert active_budget.utilized_amount == Decimal('9500.00')
        assert active_budget.is_frozen()
        assert not active_budget.has_override

    def test_ceiling_requires_override(self, active_budget):
        BudgetTracker.record_utilization(active_budget.pk, '9500.00')
        with pytest.raises(BudgetCeilingExceeded):
            BudgetTracker.record_utilization(active_budget.pk, '600.00')

        utilization = BudgetTracker.record_utilization(active_budget.pk, '600.00', override=True)
        assert utilization.is_override
        assert utilization.decision == 'OVERRIDE'
        active_budget.refresh_from_db()
        assert active_budget.has_override
        assert active_budget.is_over_budget()

    def test_ceiling_is_allocated_amount_when_categories_are_capped(self, active_budget, stationery, transport):
        BudgetTracker.allocate(active_budget.pk, stationery.pk, '3000.00')
        with pytest.raises(BudgetCeilingExceeded):
            BudgetTracker.record_utilization(active_budget.pk, '3000.01', category_id=transport.pk)

    def test_category_cap_requires_override(self, active_budget, stationery):
        BudgetTracker.allocate(active_budget.pk, stationery.pk, '1000.00')
        with pytest.raises(CategoryAllocationExceeded):
            BudgetTracker.record_utilization(active_budget.pk, '1200.00', category_id=stationery.pk)

    def test_inactive_budget(self, draft_budget):
        with pytest.raises(BudgetNotActive):
            BudgetTracker.record_utilization(draft_budget.pk, '10.00')


class TestLifecycle:

    def test_approve(self, draft_budget):
        budget = BudgetTracker.approve(draft_budget.pk, 'principal-7')
        assert budget.status == 'ACTIVE'
        assert budget.approved_by_id == 'principal-7'
        assert budget.approval_date is not None

    def test_approve_requires_approver(self, draft_budget):
        with pytest.raises(LedgerValidationError):
            BudgetTracker.approve(draft_budget.pk, None)

    def test_approve_twice(self, active_budget):
        with pytest.raises(InvalidBudgetState):
            BudgetTracker.approve(active_budget.pk, 'principal-7')

    def test_overlapping_active_budget_of_same_type(self, active_budget, budget_data):
        budget_data['title'] = 'Second annual'
        second = BudgetTracker.create_budget(budget_data)
        with pytest.raises(InvalidBudgetState):
            BudgetTracker.approve(second.pk, 'principal-7')

        budget_data.update(title='Term one', budget_type='TERM')
        term_budget = BudgetTracker.create_budget(budget_data)
        assert BudgetTracker.approve(term_budget.pk, 'principal-7').status == 'ACTIVE'

    def test_close(self, active_budget):
        with pytest.raises(LedgerValidationError):
            BudgetTracker.close(active_budget.pk, 'bursar-1', '')

        budget = BudgetTracker.close(active_budget.pk, 'bursar-1', 'Year end reconciliation')
        assert budget.status == 'CLOSED'
        assert budget.closed_by_id == 'bursar-1'
        assert budget.closure_notes == 'Year end reconciliation'

        decision = BudgetTracker.check_spending(budget.pk, None, '1.00')
        assert decision.reason == 'BUDGET_NOT_ACTIVE'

    def test_close_draft(self, draft_budget):
        with pytest.raises(InvalidBudgetState):
            BudgetTracker.close(draft_budget.pk, 'bursar-1', 'Done')

    def test_cancel(self, draft_budget):
        budget = BudgetTracker.cancel(draft_budget.pk, 'bursar-1', 'Superseded')
        assert budget.status == 'CANCELLED'
        assert budget.cancellation_reason == 'Superseded'
        with pytest.raises(InvalidBudgetState):
            BudgetTracker.cancel(draft_budget.pk, 'bursar-1', 'Again')


class TestReadAccessors:

    def test_summary(self, active_budget, stationery):
        BudgetTracker.allocate(active_budget.pk, stationery.pk, '2000.00')
        BudgetTracker.check_and_reserve(active_budget.pk, stationery.pk, '500.00')

        summary = BudgetTracker.get_budget_summary(active_budget.pk)

        assert summary['utilized_amount'] == Decimal('500.00')
        assert summary['allocated_amount'] == Decimal('2000.00')
        assert summary['available_amount'] == Decimal('1500.00')
        assert summary['utilization_percentage'] == Decimal('5.00')
        assert not summary['needs_warning']
        assert summary['categories'] == [{
            'category_id': str(stationery.pk),
            'name': 'Stationery',
            'code': 'STAT',
            'allocated': Decimal('2000.00'),
            'utilized': Decimal('500.00'),
            'remaining': Decimal('1500.00'),
            'utilization_percentage': Decimal('25.00'),
        }]

    def test_list_and_current(self, active_budget, budget_data, today):
        budget_data.update(title='Term budget', budget_type='TERM')
        BudgetTracker.create_budget(budget_data)

        assert BudgetTracker.list_budgets().count() == 2
        assert list(BudgetTracker.list_budgets({'status': 'ACTIVE'})) == [active_budget]
        assert BudgetTracker.get_current_budget() == active_budget
        assert BudgetTracker.get_current_budget('TERM') is None
        assert BudgetTracker.get_current_budget(today=today + timedelta(days=400)) is None
