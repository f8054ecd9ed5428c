import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from backend.sales.exceptions import SalesDocumentError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """Map engine errors to ``{'error': kind, 'detail': ...}`` responses"""
    if isinstance(exc, SalesDocumentError):
        request = context.get('request')
        path = request.path if request is not None else None
        logger.warning(f"{exc.kind} on {path}: {exc.message}")
        return Response(exc.to_dict(), status=exc.http_status)
    return exception_handler(exc, context)
