"""
Exception handler that renders loot errors for API clients.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import ProtectedError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from ..exceptions import InsufficientFunds, LootError

logger = logging.getLogger(__name__)


def error_body(error: str, message, code: str) -> dict:
    return {'error': error, 'message': message, 'code': code}


def loot_exception_handler(exc, context):
    """
    Custom exception handler for loot errors.

    Args:
        exc: The exception instance
        context: The context in which the exception occurred

    Returns:
        Response object or None
    """
    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        # Framework errors with a single detail get the same shape as ours;
        # serializer field errors keep DRF's per-field layout
        if isinstance(response.data, dict) and set(response.data) == {'detail'}:
            code = getattr(getattr(exc, 'detail', None), 'code', None) or 'error'
            response.data = error_body(
                exc.__class__.__name__,
                str(response.data['detail']),
                str(code).upper(),
            )
        return response

    view = context.get('view')
    view_name = view.__class__.__name__ if view is not None else 'unknown view'

    if isinstance(exc, LootError):
        if exc.status_code >= 500:
            logger.error(f"{view_name}: {exc.message}", exc_info=True)
        else:
            logger.warning(f"{view_name} rejected request: {exc.code} {exc.message}")
        data = error_body(exc.__class__.__name__, exc.message, exc.code)
        if isinstance(exc, InsufficientFunds):
            data['available'] = exc.available
            data['required'] = exc.required
        return Response(data, status=exc.status_code)

    elif isinstance(exc, ProtectedError):
        logger.warning(f"{view_name} rejected delete of a referenced record")
        return Response(
            error_body('Conflict', 'Record is still referenced and cannot be deleted', 'CONFLICT'),
            status=status.HTTP_409_CONFLICT
        )

    elif isinstance(exc, DjangoValidationError):
        logger.warning(f"Validation error in {view_name}: {exc.messages}")
        return Response(
            error_body('ValidationFailed', '; '.join(exc.messages), 'VALIDATION_FAILED'),
            status=status.HTTP_400_BAD_REQUEST
        )

    # Return None to use Django's default 500 error handler
    return None
