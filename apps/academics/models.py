# academics/models.py

import logging
import re

from django.core.exceptions import ValidationError
from django.db import models

from utils.models import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# CLASS LEVELS
# =============================================================================

PRIMARY_BAND = 'PRIMARY'
JUNIOR_BAND = 'JUNIOR'

# (code, label, band, ordinal within band)
CLASS_LEVELS = [
    ('pg', 'Playgroup', PRIMARY_BAND, 1),
    ('pp1', 'Pre-Primary 1', PRIMARY_BAND, 2),
    ('pp2', 'Pre-Primary 2', PRIMARY_BAND, 3),
    ('grade1', 'Grade 1', PRIMARY_BAND, 4),
    ('grade2', 'Grade 2', PRIMARY_BAND, 5),
    ('grade3', 'Grade 3', PRIMARY_BAND, 6),
    ('grade4', 'Grade 4', PRIMARY_BAND, 7),
    ('grade5', 'Grade 5', PRIMARY_BAND, 8),
    ('grade6', 'Grade 6', PRIMARY_BAND, 9),
    ('grade7', 'Grade 7', JUNIOR_BAND, 1),
    ('grade8', 'Grade 8', JUNIOR_BAND, 2),
    ('grade9', 'Grade 9', JUNIOR_BAND, 3),
    ('grade10', 'Grade 10', JUNIOR_BAND, 4),
]

CLASS_LEVEL_CHOICES = [(code, label) for code, label, _band, _ordinal in CLASS_LEVELS]


# =============================================================================
# ACADEMIC SESSION
# =============================================================================

class AcademicSession(BaseModel):
    """
    One term of an academic year.

    This is the billing period: a student has at most one active invoice per
    session, and promotion moves a student from one session to another.
    """

    TERM_CHOICES = [
        ('TERM_1', 'Term 1'),
        ('TERM_2', 'Term 2'),
        ('TERM_3', 'Term 3'),
    ]

    academic_year = models.CharField(
        "Academic Year",
        max_length=9,
        db_index=True,
        help_text="Format YYYY-YYYY, e.g. '2025-2026'"
    )

    term = models.CharField(
        "Term",
        max_length=10,
        choices=TERM_CHOICES,
        db_index=True
    )

    start_date = models.DateField(
        "Start Date",
        db_index=True,
        help_text="When classes begin for this session"
    )

    end_date = models.DateField(
        "End Date",
        db_index=True,
        help_text="When classes end for this session"
    )

    is_current = models.BooleanField(
        "Is Current Session",
        default=False,
        db_index=True
    )

    description = models.TextField("Description", blank=True)

    class Meta:
        verbose_name = "Academic Session"
        verbose_name_plural = "Academic Sessions"
        ordering = ['-start_date']
        constraints = [
            models.UniqueConstraint(
                fields=['academic_year', 'term'],
                name='unique_session_per_year_term'
            ),
        ]

    def __str__(self):
        return f"{self.academic_year} - {self.get_term_display()}"

    @property
    def name(self):
        return str(self)

    def clean(self):
        super().clean()
        errors = {}

        match = re.fullmatch(r'(\d{4})-(\d{4})', self.academic_year or '')
        if not match or int(match.group(2)) != int(match.group(1)) + 1:
            errors['academic_year'] = "Academic year must look like '2025-2026'."

        if self.start_date and self.end_date and self.end_date <= self.start_date:
            errors['end_date'] = "End date must be after start date."

        if errors:
            raise ValidationError(errors)
