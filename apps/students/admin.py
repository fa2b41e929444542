# students/admin.py

from django.contrib import admin

from .models import Student, StudentPromotion, FeeBalanceTransfer, FeeBalanceDetail


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ['admission_number', 'get_full_name', 'current_class', 'current_session', 'enrollment_status']
    list_filter = ['current_class', 'enrollment_status']
    search_fields = ['admission_number', 'first_name', 'last_name']
    readonly_fields = ['promotion_history']


@admin.register(StudentPromotion)
class StudentPromotionAdmin(admin.ModelAdmin):
    list_display = ['student', 'from_class', 'to_class', 'from_session', 'to_session', 'promotion_date']
    list_filter = ['to_session', 'to_class']
    search_fields = ['student__admission_number', 'student__first_name', 'student__last_name']
    readonly_fields = [f.name for f in StudentPromotion._meta.fields]

    def has_add_permission(self, request):
        return False


# -------------------------------------------------------------------------
# BALANCE TRANSFERS (historical snapshots, never edited)
# -------------------------------------------------------------------------

class FeeBalanceDetailInline(admin.TabularInline):
    model = FeeBalanceDetail
    extra = 0
    can_delete = False
    fields = (
        'invoice_number', 'fee_item_name', 'category', 'original_amount',
        'paid_amount', 'balance_amount', 'term', 'academic_year',
    )
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(FeeBalanceTransfer)
class FeeBalanceTransferAdmin(admin.ModelAdmin):
    list_display = ['student', 'from_class', 'to_class', 'to_term', 'total_balance_transferred', 'status', 'transfer_date']
    list_filter = ['status', 'to_class']
    search_fields = ['student__admission_number', 'student__first_name', 'student__last_name']
    readonly_fields = [f.name for f in FeeBalanceTransfer._meta.fields]
    inlines = [FeeBalanceDetailInline]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
