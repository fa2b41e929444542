# academics/admin.py

from django.contrib import admin

from .models import AcademicSession


@admin.register(AcademicSession)
class AcademicSessionAdmin(admin.ModelAdmin):
    list_display = ['academic_year', 'term', 'start_date', 'end_date', 'is_current']
    list_filter = ['academic_year', 'term', 'is_current']
    ordering = ['-start_date']
