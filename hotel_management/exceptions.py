"""Typed failures raised by the service layer.

Each error carries a machine-readable ``code`` and the HTTP status the API
answers with; ``api_exception_handler`` turns them into responses of the
form ``{"error": ..., "code": ...}``.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class HotelError(Exception):
    code = "error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be processed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(HotelError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InvalidInterval(HotelError):
    code = "invalid_interval"
    default_message = "Invalid date range"


class Unavailable(HotelError):
    code = "unavailable"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Room unavailable for requested dates"


class ConcurrencyConflict(HotelError):
    code = "concurrency_conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Booking conflicted with a concurrent request, please retry"


class StoreError(HotelError):
    code = "store_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Storage failure"


class InvalidTransition(HotelError):
    code = "invalid_transition"
    default_message = "Invalid status transition"


class PaymentError(HotelError):
    code = "payment_error"
    default_message = "Payment could not be processed"


class ReviewError(HotelError):
    code = "review_error"
    default_message = "Review could not be processed"


def api_exception_handler(exc, context):
    if isinstance(exc, HotelError):
        if exc.status_code >= 500:
            logger.error("Request failed with %s: %s", exc.code, exc.message)
        return Response({'error': exc.message, 'code': exc.code}, status=exc.status_code)
    return exception_handler(exc, context)
