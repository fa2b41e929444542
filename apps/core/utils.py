# core/utils.py

"""
Central utilities for the fee ledger: money arithmetic, percentages and the
transaction helpers every ledger service runs its mutations through.
"""

from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
import logging

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.db import transaction, OperationalError, connection
from django.utils import timezone

from core.exceptions import ConcurrencyError, InvalidAmount

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')

# Largest value a DecimalField(max_digits=12, decimal_places=2) can hold
MAX_AMOUNT = Decimal('9999999999.99')


# =============================================================================
# MONEY
# =============================================================================

def to_money(value, field='amount'):
    """
    Convert a value to a two-place Decimal without rounding.

    Accepts Decimal, int and numeric strings. Floats go through ``str()`` so
    ``0.1`` becomes ``Decimal('0.10')`` rather than its binary expansion.
    A value carrying more than two significant decimal places is rejected
    instead of being silently rounded.

    Args:
        value: Amount to convert
        field: Field name used in the error message

    Returns:
        Decimal: The amount quantized to 2 decimal places

    Raises:
        InvalidAmount: If the value is not numeric, not finite, has more
            than two decimal places or does not fit a ledger column

    Example:
        >>> to_money('1500')
        Decimal('1500.00')
        >>> to_money('10.005')
        Traceback (most recent call last):
        InvalidAmount: amount has more than two decimal places: 10.005
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field} is required", field=field)

    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmount(f"{field} is not a valid amount: {value!r}", field=field)

    if not amount.is_finite():
        raise InvalidAmount(f"{field} is not a valid amount: {value!r}", field=field)

    try:
        quantized = amount.quantize(TWO_PLACES)
    except InvalidOperation:
        raise InvalidAmount(f"{field} is too large: {value}", field=field)

    if quantized != amount:
        raise InvalidAmount(f"{field} has more than two decimal places: {value}", field=field)

    if abs(quantized) > MAX_AMOUNT:
        raise InvalidAmount(f"{field} is too large: {value}", field=field)

    return quantized


def to_positive_money(value, field='amount'):
    """Like ``to_money`` but the amount must be greater than zero."""
    amount = to_money(value, field=field)
    if amount <= ZERO:
        raise InvalidAmount(f"{field} must be greater than zero", field=field)
    return amount


def sum_money(values):
    """Exact sum of monetary values, ``Decimal('0.00')`` for an empty iterable."""
    total = ZERO
    for value in values:
        total += to_money(value)
    return total


def calculate_percentage(part, whole, decimal_places=2):
    """
    Calculate percentage with safe division.

    Args:
        part: The part value
        whole: The whole value
        decimal_places: Number of decimal places (default: 2)

    Returns:
        Decimal: Percentage value, 0 if whole is 0

    Example:
        >>> calculate_percentage(75, 100)
        Decimal('75.00')
    """
    part = Decimal(str(part or 0))
    whole = Decimal(str(whole or 0))

    if whole == 0:
        return Decimal('0').quantize(Decimal(1).scaleb(-decimal_places))

    percentage = (part / whole) * 100
    return percentage.quantize(Decimal(1).scaleb(-decimal_places))


def format_money(amount, include_symbol=True):
    """
    Format a money amount according to the school financial settings.

    Example:
        >>> format_money(1500000)
        'KES 1,500,000.00'
    """
    from core.models import FinancialSettings
    return FinancialSettings.get_instance().format_currency(amount, include_symbol)


def money_str(amount):
    """Serialize an amount for JSON payloads and audit values."""
    return str(to_money(amount)) if amount is not None else None


def get_ledger_today():
    """Today's date in the configured time zone."""
    return timezone.localdate()


# =============================================================================
# TRANSACTIONS & LOCKING
# =============================================================================

def _is_lock_error(error):
    message = str(error).lower()
    return any(marker in message for marker in (
        'database is locked',
        'database table is locked',
        'could not obtain lock',
        'lock wait timeout',
        'deadlock',
        'could not serialize',
    ))


@contextmanager
def ledger_transaction():
    """
    Run a ledger mutation as one atomic unit.

    Lock waits are bounded by the database timeout; when that runs out the
    driver's OperationalError is surfaced as a retryable ``ConcurrencyError``
    and the whole unit is rolled back.

    Example:
        with ledger_transaction():
            invoice = fetch_or_raise(
                FeeInvoice.objects, InvoiceNotFound, "Invoice", lock=True, pk=invoice_id
            )
            ...
    """
    try:
        with transaction.atomic():
            yield
    except OperationalError as e:
        if _is_lock_error(e):
            logger.warning(f"Ledger lock wait failed: {e}")
            raise ConcurrencyError(
                "Could not acquire a lock on the ledger; retry the request"
            ) from e
        raise


def check_version(instance, expected_version):
    """
    Raise ``ConcurrencyError`` when a locked row has moved on since the
    snapshot its preconditions were evaluated against.
    """
    if expected_version is not None and instance.version != expected_version:
        logger.warning(
            f"Version mismatch on {instance._meta.label} {instance.pk}: "
            f"expected {expected_version}, found {instance.version}"
        )
        raise ConcurrencyError(
            f"{instance._meta.verbose_name} was modified by another request",
            expected_version=expected_version,
            current_version=instance.version,
        )


def get_retry_attempts():
    from core.models import FinancialSettings
    try:
        return FinancialSettings.get_instance().concurrency_retry_attempts
    except OperationalError:
        return getattr(settings, 'LEDGER_RETRY_ATTEMPTS', 3)


def run_with_retry(func, *args, attempts=None, **kwargs):
    """
    Call ``func`` and transparently retry it when it raises
    ``ConcurrencyError``. Every other error propagates on the first attempt.

    Inside an enclosing atomic block the call is made once: retrying inside a
    transaction that already saw the conflict cannot succeed.

    Example:
        payment = run_with_retry(
            PaymentAllocator.process_payment,
            invoice_id, amount, 'CASH', allocations,
        )
    """
    if connection.in_atomic_block:
        return func(*args, **kwargs)

    attempts = attempts or get_retry_attempts()
    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except ConcurrencyError:
            if attempt >= attempts:
                raise
            logger.info(f"Retrying {getattr(func, '__qualname__', func)} after concurrency conflict ({attempt}/{attempts})")


def fetch_or_raise(queryset, not_found, label, lock=False, **lookup):
    """
    ``queryset.get(**lookup)`` that raises the ledger's ``NotFoundError``
    subclass instead of ``DoesNotExist``. Malformed ids (a bad UUID string)
    count as not found. With ``lock=True`` the row is locked for update.
    """
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(**lookup)
    except (ObjectDoesNotExist, DjangoValidationError, ValueError, TypeError):
        lookup_repr = ', '.join(f"{key}={value}" for key, value in lookup.items())
        raise not_found(f"{label} not found ({lookup_repr})", **lookup)
