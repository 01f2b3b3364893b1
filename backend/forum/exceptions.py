"""
Domain errors and the DRF exception handler.

The core modules raise ForumError subclasses; the request layer turns
them into a consistent {'error': ...} response.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class ForumError(Exception):
    """Base class for errors surfaced to the caller."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Forum error.'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ForumError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Resource not found.'


class Conflict(ForumError):
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Resource already exists.'


class Forbidden(ForumError):
    """Role or ownership check failed. Names the missing role when known."""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You do not have permission to perform this action.'

    def __init__(self, message=None, required_role=None):
        self.required_role = required_role
        super().__init__(message)


class InvalidOperation(ForumError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid operation.'


class RateLimited(ForumError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = 'Too many requests. Please try again later.'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Converts ForumError to its status code
    2. Converts Django exceptions to DRF responses
    3. Logs anything unexpected
    """
    if isinstance(exc, ForumError):
        data = {'error': exc.message}
        if isinstance(exc, Forbidden) and exc.required_role:
            data['required_role'] = str(exc.required_role)
        return Response(data, status=exc.status_code)

    # Call DRF's default exception handler
    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, ValueError):
        return Response(
            {'error': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    logger.exception(f"Unhandled exception: {exc}")

    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
