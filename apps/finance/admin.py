# finance/admin.py

from django.contrib import admin
from django.utils.html import format_html

from .models import ExpenseCategory, Budget, BudgetUtilization


@admin.register(ExpenseCategory)
class ExpenseCategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'code', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'code']


class BudgetUtilizationInline(admin.TabularInline):
    model = BudgetUtilization
    extra = 0
    can_delete = False
    fields = ('category', 'amount', 'reference', 'status', 'decision', 'is_override', 'created_at')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Budget)
class BudgetAdmin(admin.ModelAdmin):
    """Counters and workflow fields are maintained by BudgetTracker."""

    list_display = [
        'title', 'budget_type', 'academic_year', 'total_amount',
        'allocated_amount', 'utilized_amount', 'utilization_display', 'status',
    ]
    list_filter = ['budget_type', 'status', 'academic_year', 'has_override']
    search_fields = ['title']
    readonly_fields = [
        'allocated_amount', 'utilized_amount', 'remaining_amount', 'status',
        'version', 'has_override', 'approved_by_id', 'approval_date',
        'closed_by_id', 'closure_date', 'closure_notes',
        'cancelled_by_id', 'cancellation_date', 'cancellation_reason',
    ]
    inlines = [BudgetUtilizationInline]

    def utilization_display(self, obj):
        percentage = round(obj.get_utilization_percentage(), 2)
        if obj.is_frozen():
            color = '#e74c3c'
        elif obj.needs_warning():
            color = '#e67e22'
        else:
            color = '#27ae60'
        return format_html('<span style="color: {};">{}%</span>', color, percentage)
    utilization_display.short_description = 'Utilization'


@admin.register(BudgetUtilization)
class BudgetUtilizationAdmin(admin.ModelAdmin):
    list_display = ['budget', 'category', 'amount', 'reference', 'status', 'decision', 'is_override', 'created_at']
    list_filter = ['status', 'decision', 'is_override']
    search_fields = ['reference', 'budget__title']
    readonly_fields = [f.name for f in BudgetUtilization._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
