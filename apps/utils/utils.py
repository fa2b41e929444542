# utils/utils.py

from functools import wraps
import json
import logging

from django.core.paginator import Paginator, EmptyPage, PageNotAnInteger
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from core.exceptions import (
    ConcurrencyError, LedgerError, LedgerValidationError,
    NotFoundError, StateConflictError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CORE UTILITY HELPER FUNCTIONS
# =============================================================================

def paginate_queryset(request, queryset, per_page=20):
    paginator = Paginator(queryset, per_page)
    page = request.GET.get('page', 1)
    try:
        page_obj = paginator.page(page)
    except PageNotAnInteger:
        page_obj = paginator.page(1)
    except EmptyPage:
        page_obj = paginator.page(paginator.num_pages)
    return page_obj, paginator


def parse_filters(request, filter_keys):
    """
    Extract filter values from request.GET.
    filter_keys: list of filter names to extract
    Returns dict: {key: value or None}
    """
    filters = {}
    for key in filter_keys:
        value = request.GET.get(key, '').strip()
        filters[key] = value if value else None
    return filters


# =============================================================================
# JSON ENDPOINT HELPERS
# =============================================================================

# Most specific family first
ERROR_STATUS_CODES = (
    (LedgerValidationError, 400),
    (NotFoundError, 404),
    (StateConflictError, 409),
    (ConcurrencyError, 503),
)


def parse_json_body(request):
    """
    Decode a JSON object request body. An empty body is an empty dict.

    Raises:
        LedgerValidationError: Body is not a JSON object
    """
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise LedgerValidationError("Invalid JSON data.")
    if not isinstance(data, dict):
        raise LedgerValidationError("Request body must be a JSON object.")
    return data


def json_success(data=None, message='', status=200):
    payload = {"success": True, "data": data}
    if message:
        payload["message"] = message
    return JsonResponse(payload, status=status)


def json_error(error):
    """Map a ledger error to its HTTP status and JSON body."""
    status = 500
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            status = code
            break
    return JsonResponse({"success": False, **error.to_dict()}, status=status)


def ledger_api(methods):
    """
    Decorator for the JSON endpoints: CSRF exempt, restricted to ``methods``,
    and ledger errors turned into JSON error responses.

    Example:
        @ledger_api(["POST"])
        def cancel_invoice(request, invoice_id):
            ...
    """
    def decorator(view):
        @csrf_exempt
        @require_http_methods(methods)
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            try:
                return view(request, *args, **kwargs)
            except LedgerError as e:
                if isinstance(e, ConcurrencyError):
                    logger.warning(f"{view.__name__}: {e.message}")
                else:
                    logger.info(f"{view.__name__} rejected: {e.code} - {e.message}")
                return json_error(e)
        return wrapper
    return decorator
