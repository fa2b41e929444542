# utils/context.py

"""
Thread-local actor context.

The authentication layer is external to the ledger; whoever handles the
request (the middleware, a management command, a worker) records here who is
acting, and models and the audit sink read it back.
"""

from threading import local
import logging

logger = logging.getLogger(__name__)

_thread_locals = local()


def set_request_context(user=None, ip_address=None, user_agent=None,
                        request_path=None, request=None):
    """
    Set the actor context for the current thread.

    Args:
        user: The acting user (anonymous users are stored as None)
        ip_address: Client IP address
        user_agent: Client user agent string
        request_path: The request path
        request: A request object to extract all of the above from
    """
    if request is not None:
        user = getattr(request, 'user', None)
        ip_address = get_client_ip(request)
        user_agent = request.META.get('HTTP_USER_AGENT', '')
        request_path = getattr(request, 'path', '')

    if user is not None and not getattr(user, 'is_authenticated', False):
        user = None

    _thread_locals.request_context = {
        'user': user,
        'ip_address': ip_address,
        'user_agent': user_agent or '',
        'request_path': request_path or '',
    }

    logger.debug(f"Set request context: user={user}, ip={ip_address}")


def get_request_context():
    """Return the current thread's context dict, or None when unset."""
    return getattr(_thread_locals, 'request_context', None)


def get_current_user():
    context = get_request_context()
    return context.get('user') if context else None


def clear_request_context():
    if hasattr(_thread_locals, 'request_context'):
        delattr(_thread_locals, 'request_context')


def get_client_ip(request):
    """
    Extract the client's IP address, honouring X-Forwarded-For.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


# ============================================================================
# CONTEXT MANAGER
# ============================================================================

class RequestContext:
    """
    Temporarily set the actor context outside a request.

    Example:
        with RequestContext(user=bursar, ip_address='127.0.0.1'):
            PaymentAllocator.process_payment(...)
    """

    def __init__(self, user=None, ip_address=None, user_agent=None, request_path=None):
        self.context = {
            'user': user,
            'ip_address': ip_address,
            'user_agent': user_agent or '',
            'request_path': request_path or '',
        }
        self.previous_context = None

    def __enter__(self):
        self.previous_context = get_request_context()
        _thread_locals.request_context = self.context
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_context:
            _thread_locals.request_context = self.previous_context
        else:
            clear_request_context()


def get_actor_id(user=None):
    """
    ID string for the acting user: the explicit ``user`` (an instance or a
    raw id) wins, else the user in the thread's context.
    """
    if user is None:
        user = get_current_user()
    if user is None:
        return None
    return str(getattr(user, 'pk', user))
