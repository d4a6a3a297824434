# avatar_api/exceptions.py
import logging

from django.conf import settings
from django.http import Http404, JsonResponse
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler
from sentry_sdk import capture_exception

logger = logging.getLogger(__name__)

# Código de error por tipo de excepción DRF
_ERROR_CODES = {
    exceptions.ValidationError: "validation_error",
    exceptions.ParseError: "validation_error",
    exceptions.NotAuthenticated: "not_authenticated",
    exceptions.AuthenticationFailed: "authentication_failed",
    exceptions.PermissionDenied: "not_found",
    exceptions.NotFound: "not_found",
    exceptions.MethodNotAllowed: "method_not_allowed",
    exceptions.Throttled: "rate_limit_exceeded",
}


def public_error_message(exc: Exception) -> str:
    """Mensaje de error para el cliente: detalle solo en DEBUG."""
    return str(exc) if settings.DEBUG else "Internal server error"


def _first_message(detail) -> str:
    if isinstance(detail, dict):
        for field, value in detail.items():
            msg = _first_message(value)
            return f"{field}: {msg}" if field != "non_field_errors" else msg
        return ""
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else ""
    return str(detail)


def api_exception_handler(exc, context):
    """
    Normaliza todas las respuestas de error a {"error": <código>, "message": <texto>}.
    Las excepciones no controladas se registran y devuelven un 500 saneado.
    """
    # 403 y 404 se tratan igual para no filtrar la existencia de recursos
    if isinstance(exc, exceptions.PermissionDenied):
        exc = exceptions.NotFound()

    response = exception_handler(exc, context)

    if response is None:
        view = context.get("view")
        logger.exception("Unhandled error in %s", type(view).__name__)
        capture_exception(exc)
        return Response(
            {"error": "internal_error", "message": public_error_message(exc)},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    code = "error"
    for exc_cls, exc_code in _ERROR_CODES.items():
        if isinstance(exc, exc_cls):
            code = exc_code
            break
    if isinstance(exc, Http404):
        code = "not_found"

    body = {"error": code, "message": _first_message(response.data.get("detail", response.data)
                                                    if isinstance(response.data, dict) else response.data)}
    if code == "validation_error":
        body["details"] = response.data
    if isinstance(exc, exceptions.Throttled) and exc.wait is not None:
        body["retryAfter"] = int(exc.wait)
    response.data = body
    return response


def error_response(code: str, message: str, status_code: int, **extra) -> JsonResponse:
    """Respuesta de error con el mismo formato que api_exception_handler."""
    body = {"error": code, "message": message}
    body.update(extra)
    return JsonResponse(body, status=status_code)


def validation_error_response(errors) -> JsonResponse:
    return error_response(
        "validation_error",
        _first_message(errors),
        status.HTTP_400_BAD_REQUEST,
        details=errors,
    )
