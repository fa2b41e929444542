# fees/admin.py

from django.contrib import admin
from django.utils.html import format_html

from .models import (
    FeesStructure, FeesStructureItem, FeeInvoice, FeeInvoiceItem,
    Payment, PaymentItem, Refund,
)
from .services import InvoiceService
from .utils import get_invoice_status_color


# =============================================================================
# FEE STRUCTURES
# =============================================================================

class FeesStructureItemInline(admin.TabularInline):
    model = FeesStructureItem
    extra = 1
    fields = ('name', 'category', 'amount', 'is_mandatory', 'is_active', 'display_order')


@admin.register(FeesStructure)
class FeesStructureAdmin(admin.ModelAdmin):
    list_display = ['name', 'class_level', 'payment_terms_days', 'is_active']
    list_filter = ['class_level', 'is_active']
    search_fields = ['name']
    inlines = [FeesStructureItemInline]


# =============================================================================
# INVOICES
# =============================================================================

class FeeInvoiceItemInline(admin.TabularInline):
    model = FeeInvoiceItem
    extra = 0
    can_delete = False
    fields = ('name', 'category', 'amount', 'paid_amount', 'balance_amount', 'payment_status', 'due_date')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(FeeInvoice)
class FeeInvoiceAdmin(admin.ModelAdmin):
    """Invoices are read-only here; balances change through the ledger services."""

    list_display = [
        'invoice_number', 'student', 'academic_session', 'total_amount',
        'paid_amount', 'balance_amount', 'status_badge', 'due_date',
    ]
    list_filter = ['status', 'academic_session', 'class_level']
    search_fields = ['invoice_number', 'student__admission_number', 'student__first_name', 'student__last_name']
    readonly_fields = [f.name for f in FeeInvoice._meta.fields] + ['integrity_report']
    inlines = [FeeInvoiceItemInline]

    def status_badge(self, obj):
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            get_invoice_status_color(obj.status),
            obj.get_status_display()
        )
    status_badge.short_description = 'Status'
    status_badge.admin_order_field = 'status'

    def integrity_report(self, obj):
        problems = InvoiceService.verify_invoice_integrity(obj)
        if not problems:
            return format_html('<span style="color: #27ae60;">{}</span>', 'Consistent')
        return format_html('<span style="color: #e74c3c;">{}</span>', '; '.join(problems))
    integrity_report.short_description = 'Integrity'

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================================
# PAYMENTS
# =============================================================================

class PaymentItemInline(admin.TabularInline):
    model = PaymentItem
    extra = 0
    can_delete = False
    fields = ('invoice_item', 'amount', 'original_invoice_item_amount', 'item_balance_before', 'payment_sequence')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = [
        'payment_number', 'receipt_number', 'student', 'amount',
        'refunded_amount', 'payment_mode', 'status', 'payment_date',
    ]
    list_filter = ['status', 'payment_mode']
    search_fields = ['payment_number', 'receipt_number', 'reference_number', 'transaction_id']
    readonly_fields = [f.name for f in Payment._meta.fields]
    inlines = [PaymentItemInline]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ['refund_number', 'payment', 'student', 'amount', 'reference', 'refund_date']
    date_hierarchy = 'refund_date'
    search_fields = ['refund_number', 'reference']
    readonly_fields = [f.name for f in Refund._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
