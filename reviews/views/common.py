import logging

from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


def error_response(code, message, http_status):
    return Response({
        'error': {
            'code': code,
            'message': message
        }
    }, status=http_status)


def validation_error(message):
    return error_response('VALIDATION_ERROR', message, status.HTTP_400_BAD_REQUEST)


def server_error(exc):
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    return error_response('SERVER_ERROR', 'Internal server error', status.HTTP_500_INTERNAL_SERVER_ERROR)


def parse_id(value):
    """Приводит ID из запроса к int, None если это не целое положительное число"""
    if isinstance(value, bool):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def field_max_length(model, field_name):
    return model._meta.get_field(field_name).max_length


def is_valid_text(value, max_length):
    """Непустая строка, которая влезает в колонку"""
    return isinstance(value, str) and 0 < len(value) <= max_length
