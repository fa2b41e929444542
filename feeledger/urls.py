"""
URL configuration for the feeledger project.

Each ledger app exposes its JSON endpoints under its own prefix.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # Django admin
    path('admin/', admin.site.urls),

    # Fees app - invoices, payments, refunds, statistics
    path('fees/', include(('fees.urls', 'fees'), namespace='fees')),

    # Finance app - budgets and spending checks
    path('finance/', include(('finance.urls', 'finance'), namespace='finance')),

    # Students app - promotions and balance carry-forward
    path('students/', include(('students.urls', 'students'), namespace='students')),
]
