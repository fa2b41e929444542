# fees/urls.py

from django.urls import path
from . import views

app_name = 'fees'

urlpatterns = [
    # =============================================================================
    # INVOICE URLS
    # =============================================================================
    path('invoices/generate/', views.generate_invoice, name='generate_invoice'),
    path('invoices/outstanding/', views.outstanding_invoices, name='outstanding_invoices'),
    path('invoices/<str:invoice_id>/', views.invoice_detail, name='invoice_detail'),
    path('invoices/<str:invoice_id>/cancel/', views.cancel_invoice, name='cancel_invoice'),
    path('invoices/<str:invoice_id>/due-date/', views.update_invoice_due_date, name='update_invoice_due_date'),
    path('students/<str:student_id>/invoices/', views.student_invoices, name='student_invoices'),


    # =============================================================================
    # PAYMENT URLS
    # =============================================================================
    path('invoices/<str:invoice_id>/payments/', views.process_payment, name='process_payment'),
    path('payments/<str:payment_id>/', views.payment_detail, name='payment_detail'),
    path('payments/<str:payment_id>/verify/', views.verify_payment, name='verify_payment'),
    path('payments/<str:payment_id>/cancel/', views.cancel_payment, name='cancel_payment'),
    path('payments/<str:payment_id>/refund/', views.refund_payment, name='refund_payment'),
    path('students/<str:student_id>/payments/', views.student_payments, name='student_payments'),


    # =============================================================================
    # STATISTICS
    # =============================================================================
    path('stats/invoices/', views.invoice_statistics, name='invoice_statistics'),
    path('stats/payments/', views.payment_statistics, name='payment_statistics'),
]
