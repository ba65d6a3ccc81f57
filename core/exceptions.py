"""
DRF exception handler translating loyalty domain errors into HTTP responses.
"""

import logging

from django.db import OperationalError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from loyalty.exceptions import LoyaltyError, TransientStorageError

logger = logging.getLogger(__name__)


def loyalty_exception_handler(exc, context):
    """
    Renders `LoyaltyError` subclasses as `{"detail", "code"}` with the status code
    of their taxonomy bucket. Storage lock timeouts become retryable 503s.
    Everything else falls through to the stock DRF handler.
    """
    if isinstance(exc, OperationalError):
        logger.warning("Storage error surfaced as transient failure: %s", exc)
        exc = TransientStorageError()

    if isinstance(exc, LoyaltyError):
        data = {"detail": exc.detail, "code": exc.code}
        if exc.retryable:
            data["retryable"] = True
        return Response(data, status=exc.status_code)

    return exception_handler(exc, context)
