# students/urls.py

from django.urls import path
from . import views

app_name = 'students'

urlpatterns = [
    # =============================================================================
    # PROMOTION & BALANCE CARRY-FORWARD
    # =============================================================================
    path('<str:student_id>/promote/', views.promote_student, name='promote_student'),
    path('<str:student_id>/promotions/', views.promotion_history, name='promotion_history'),
    path('transfers/<str:transfer_id>/', views.transfer_detail, name='transfer_detail'),
]
