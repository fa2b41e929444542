# tests/conftest.py

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from academics.models import AcademicSession
from fees.invoice_generators import InvoiceGenerator
from fees.models import FeesStructure, FeesStructureItem
from finance.models import ExpenseCategory
from finance.services import BudgetTracker
from students.models import Student


@pytest.fixture
def today():
    return timezone.localdate()


@pytest.fixture
def term_one(db, today):
    return AcademicSession.objects.create(
        academic_year='2025-2026',
        term='TERM_1',
        start_date=today - timedelta(days=30),
        end_date=today + timedelta(days=60),
        is_current=True,
    )


@pytest.fixture
def term_two(db, today):
    return AcademicSession.objects.create(
        academic_year='2025-2026',
        term='TERM_2',
        start_date=today + timedelta(days=61),
        end_date=today + timedelta(days=150),
    )


@pytest.fixture
def student(db, term_one):
    return Student.objects.create(
        admission_number='ADM-0001',
        first_name='Amina',
        last_name='Otieno',
        current_class='grade6',
        current_session=term_one,
    )


@pytest.fixture
def fee_structure(db):
    structure = FeesStructure.objects.create(name='Grade 6 Day Scholar Fees', class_level='grade6')
    FeesStructureItem.objects.create(
        fee_structure=structure, name='Tuition', category='TUITION',
        amount=Decimal('3000.00'), display_order=1,
    )
    FeesStructureItem.objects.create(
        fee_structure=structure, name='Meals', category='MEALS',
        amount=Decimal('1500.00'), display_order=2,
    )
    return structure


@pytest.fixture
def invoice(student, fee_structure, term_one):
    return InvoiceGenerator.generate(student.pk, fee_structure.pk, term_one)


@pytest.fixture
def invoice_items(invoice):
    """(tuition, meals) items of the generated invoice."""
    tuition, meals = invoice.items.order_by('display_order')
    return tuition, meals


@pytest.fixture
def stationery(db):
    return ExpenseCategory.objects.create(name='Stationery', code='STAT')


@pytest.fixture
def transport(db):
    return ExpenseCategory.objects.create(name='Transport', code='TRANS')


@pytest.fixture
def budget_data(today):
    return {
        'title': 'Operations 2025-2026',
        'academic_year': '2025-2026',
        'budget_type': 'ANNUAL',
        'start_date': (today - timedelta(days=30)).isoformat(),
        'end_date': (today + timedelta(days=300)).isoformat(),
        'total_amount': '10000.00',
        'warning_threshold': 80,
        'freeze_threshold': 90,
    }


@pytest.fixture
def draft_budget(budget_data):
    return BudgetTracker.create_budget(budget_data)


@pytest.fixture
def active_budget(draft_budget):
    return BudgetTracker.approve(draft_budget.pk, approver_id='bursar-1')
