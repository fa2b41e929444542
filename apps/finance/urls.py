# finance/urls.py
from django.urls import path
from . import views

app_name = 'finance'

urlpatterns = [
    # =============================================================================
    # BUDGETS
    # =============================================================================
    path('budgets/', views.budget_list, name='budget_list'),
    path('budgets/<str:budget_id>/', views.budget_detail, name='budget_detail'),
    path('budgets/<str:budget_id>/allocate/', views.allocate_budget, name='allocate_budget'),

    # Spending
    path('budgets/<str:budget_id>/check/', views.check_spending, name='check_spending'),
    path('budgets/<str:budget_id>/reserve/', views.reserve_spending, name='reserve_spending'),
    path('budgets/<str:budget_id>/utilize/', views.record_utilization, name='record_utilization'),
    path('utilizations/<str:utilization_id>/release/', views.release_reservation, name='release_reservation'),

    # Lifecycle
    path('budgets/<str:budget_id>/approve/', views.approve_budget, name='approve_budget'),
    path('budgets/<str:budget_id>/close/', views.close_budget, name='close_budget'),
    path('budgets/<str:budget_id>/cancel/', views.cancel_budget, name='cancel_budget'),
]
