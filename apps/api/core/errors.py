# ===============================================================================
# API ERROR MAPPING 🚨
# ===============================================================================
#
# Business errors raised by the services become JSON responses:
#   {"success": false, "error": <message>, "error_code": <code>}
#

import functools
import logging
from collections.abc import Callable
from typing import Any

from rest_framework import status
from rest_framework.request import Request
from rest_framework.response import Response

from apps.common.types import (
    BusinessError,
    ConflictError,
    ExhaustedError,
    InvalidStateError,
    NotFoundError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def status_for(error: BusinessError) -> int:
    match error:
        case ValidationError():
            return status.HTTP_400_BAD_REQUEST
        case NotFoundError():
            return status.HTTP_404_NOT_FOUND
        case ConflictError() | InvalidStateError() | ExhaustedError():
            return status.HTTP_409_CONFLICT
        case RateLimitedError():
            return status.HTTP_429_TOO_MANY_REQUESTS
        case StoreUnavailableError():
            return status.HTTP_503_SERVICE_UNAVAILABLE
        case _:
            return status.HTTP_400_BAD_REQUEST


def error_response(error: BusinessError) -> Response:
    response = Response({"success": False, **error.to_dict()}, status=status_for(error))
    if isinstance(error, RateLimitedError):
        response["Retry-After"] = str(error.retry_after_seconds)
    return response


def invalid_input_response(errors: dict[str, Any]) -> Response:
    """Serializer validation failure in the same envelope as business errors."""
    field, messages = next(iter(errors.items()))
    message = messages[0] if isinstance(messages, list) and messages else str(messages)
    return Response(
        {"success": False, "error": f"{field}: {message}", "error_code": ValidationError.code, "field": field},
        status=status.HTTP_400_BAD_REQUEST,
    )


def handle_business_errors(view: Callable[..., Response]) -> Callable[..., Response]:
    """Translate BusinessError raised by a view into the JSON error envelope."""

    @functools.wraps(view)
    def wrapper(request: Request, *args: Any, **kwargs: Any) -> Response:
        try:
            return view(request, *args, **kwargs)
        except BusinessError as e:
            log = logger.warning if e.retryable else logger.info
            log(f"⚠️ [API] {request.method} {request.path} → {e.code}: {e.message}")
            return error_response(e)

    return wrapper
