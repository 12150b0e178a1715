import logging

from django.http import JsonResponse
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)

ERROR_TITLES = {
    status.HTTP_400_BAD_REQUEST: "Invalid request",
    status.HTTP_404_NOT_FOUND: "Not found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "Method not allowed",
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: "File too large",
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: "Unsupported media type",
    status.HTTP_429_TOO_MANY_REQUESTS: "Too many requests",
}


def error_response(status_code: int, error: str, message: str | None = None, **extra) -> Response:
    body = {"error": error}
    if message is not None:
        body["message"] = message
    body.update(extra)
    return Response(body, status=status_code)


def _first_message(detail) -> str:
    """Flatten DRF's nested error detail to the first human-readable message."""
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
        return ""
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else ""
    return str(detail)


def api_exception_handler(exc, context):
    """Every API error leaves as {error, message}; tracebacks stay in the log."""
    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("Unhandled error in %s", type(view).__name__ if view else "request")
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", str(exc)
        )

    if isinstance(exc, exceptions.ValidationError):
        message = _first_message(exc.detail)
        error = message if message in {"No file uploaded", "No files uploaded"} else "Invalid request"
        response.data = {"error": error, "message": message}
    else:
        response.data = {
            "error": ERROR_TITLES.get(response.status_code, "Request failed"),
            "message": _first_message(getattr(exc, "detail", str(exc))),
        }
    return response


def not_found(request, exception=None):
    return JsonResponse(
        {"error": "Not found", "message": "The requested endpoint does not exist"},
        status=404,
    )
