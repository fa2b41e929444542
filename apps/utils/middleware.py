# utils/middleware.py

import logging

from utils.context import set_request_context, clear_request_context

logger = logging.getLogger(__name__)


class AuditContextMiddleware:
    """
    Capture the acting user and client details for the duration of a request
    so ledger records and audit entries can be attributed.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        set_request_context(request=request)

        try:
            response = self.get_response(request)
        finally:
            clear_request_context()

        return response

    def process_exception(self, request, exception):
        clear_request_context()
        return None
