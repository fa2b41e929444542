# academics/utils.py
"""
Utility functions for academics app
Class progression rules used by promotion
"""

import logging

from academics.models import CLASS_LEVELS

logger = logging.getLogger(__name__)


# =============================================================================
# CLASS PROGRESSION
# =============================================================================

# code -> (band, ordinal within band)
CLASS_ORDINALS = {code: (band, ordinal) for code, _label, band, ordinal in CLASS_LEVELS}

# The only progression allowed to leave a band
CROSS_BAND_PROGRESSION = ('grade6', 'grade7')

TERMINAL_CLASS = 'grade10'


def normalize_class_level(class_level):
    """Lowercase, strip and drop inner spaces: 'Grade 6' -> 'grade6'."""
    if class_level is None:
        return ''
    return str(class_level).strip().lower().replace(' ', '')


def get_class_position(class_level):
    """
    Return (band, ordinal) for a class code, or None if the class is unknown.
    """
    return CLASS_ORDINALS.get(normalize_class_level(class_level))


def is_valid_progression(from_class, to_class):
    """
    Whether a student may move from one class to another.

    Classes form two bands, primary (pg .. grade6) and junior
    (grade7 .. grade10). Within a band a move must be strictly upward; the
    only move between bands is grade6 -> grade7. grade10 is terminal and
    unknown class names are never valid.

    Args:
        from_class (str): Current class code (case-insensitive)
        to_class (str): Target class code (case-insensitive)

    Returns:
        bool

    Example:
        >>> is_valid_progression('grade6', 'grade7')
        True
        >>> is_valid_progression('grade5', 'grade7')
        False
    """
    source = normalize_class_level(from_class)
    target = normalize_class_level(to_class)

    from_position = CLASS_ORDINALS.get(source)
    to_position = CLASS_ORDINALS.get(target)
    if from_position is None or to_position is None:
        return False

    if source == TERMINAL_CLASS:
        return False

    from_band, from_ordinal = from_position
    to_band, to_ordinal = to_position

    if from_band == to_band:
        return to_ordinal > from_ordinal

    return (source, target) == CROSS_BAND_PROGRESSION


def get_next_class(class_level):
    """
    The class a student normally moves to next, or None at grade10.
    """
    source = normalize_class_level(class_level)
    if source == CROSS_BAND_PROGRESSION[0]:
        return CROSS_BAND_PROGRESSION[1]

    position = CLASS_ORDINALS.get(source)
    if position is None:
        return None

    band, ordinal = position
    for code, (other_band, other_ordinal) in CLASS_ORDINALS.items():
        if other_band == band and other_ordinal == ordinal + 1:
            return code
    return None


def get_class_band(class_level):
    position = get_class_position(class_level)
    if position is None:
        return None
    return position[0]
