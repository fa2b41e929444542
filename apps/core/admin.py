# core/admin.py

from django.contrib import admin

from .models import FinancialSettings


@admin.register(FinancialSettings)
class FinancialSettingsAdmin(admin.ModelAdmin):
    list_display = ['school_currency', 'invoice_prefix', 'payment_prefix', 'default_payment_terms_days']

    fieldsets = (
        ('Currency', {
            'fields': ('school_currency', 'currency_position', 'use_thousand_separator')
        }),
        ('Document Numbering', {
            'fields': (
                'invoice_prefix', 'include_year_in_invoice_number',
                'payment_prefix', 'include_year_in_payment_number',
                'receipt_prefix', 'refund_prefix',
            )
        }),
        ('Ledger Policy', {
            'fields': ('default_payment_terms_days', 'concurrency_retry_attempts')
        }),
    )

    def has_add_permission(self, request):
        # Single settings row, created on first use
        return not FinancialSettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
