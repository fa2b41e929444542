# utils/admin.py

from django.contrib import admin
from .models import FinancialAuditLog


@admin.register(FinancialAuditLog)
class FinancialAuditLogAdmin(admin.ModelAdmin):
    list_display = [
        'timestamp', 'action', 'object_description', 'amount_involved',
        'student_name', 'user_name', 'risk_level'
    ]
    list_filter = ['action', 'risk_level', 'timestamp']
    search_fields = ['object_description', 'student_name', 'student_admission_number', 'user_name', 'object_id']
    readonly_fields = [f.name for f in FinancialAuditLog._meta.fields]

    fieldsets = (
        ('What Happened', {
            'fields': ('action', 'object_type', 'object_id', 'object_description', 'amount_involved', 'currency')
        }),
        ('Who', {
            'fields': ('user_id', 'user_name', 'student_id', 'student_name', 'student_admission_number')
        }),
        ('When & Where', {
            'fields': ('timestamp', 'ip_address', 'request_path', 'user_agent')
        }),
        ('Values', {
            'fields': ('old_values', 'new_values', 'additional_data', 'notes', 'risk_level'),
            'classes': ('collapse',)
        }),
    )

    def has_add_permission(self, request):
        # Audit entries are written by the ledger services only
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return request.user.is_superuser
