"""
Custom exceptions and handlers with request ID support
Standardized error response format: { code, message, status_code, details?, request_id }
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional, Dict, Any

from .logging_config import get_request_id

logger = logging.getLogger(__name__)

SUPPORT_BASE_PATH = "/support/runbooks"

# Error categories
CATEGORY_AUTH = "auth"
CATEGORY_VALIDATION = "validation"
CATEGORY_ENTITLEMENTS = "entitlements"
CATEGORY_BILLING = "billing"
CATEGORY_INTERNAL = "internal"

# Error classifications
USER_ACTION_REQUIRED = "user_action_required"
DEVELOPER_BUG = "developer_bug"
SYSTEM_TRANSIENT = "system_transient"


def _entry(status_code: int, hint: Optional[str], anchor: str, category: str, classification: str) -> Dict[str, Any]:
    return {
        "status_code": status_code,
        "hint": hint,
        "support_url": f"{SUPPORT_BASE_PATH}/{anchor}",
        "category": category,
        "classification": classification,
    }


ERROR_CODE_REGISTRY: Dict[str, Dict[str, Any]] = {
    "UNAUTHORIZED": _entry(401, "Log in again and retry", "auth#unauthorized", CATEGORY_AUTH, USER_ACTION_REQUIRED),
    "FORBIDDEN": _entry(403, "You do not have permission to perform this action", "auth#forbidden", CATEGORY_AUTH, USER_ACTION_REQUIRED),
    "NOT_FOUND": _entry(404, None, "resources#not-found", CATEGORY_VALIDATION, DEVELOPER_BUG),
    "CONFLICT": _entry(409, "The resource is not in a state that allows this action", "resources#conflict", CATEGORY_VALIDATION, USER_ACTION_REQUIRED),
    "VALIDATION_ERROR": _entry(422, "Check request parameters and retry", "validation#validation-error", CATEGORY_VALIDATION, DEVELOPER_BUG),
    "RATE_LIMIT_EXCEEDED": _entry(429, "Wait for the rate limit to reset or upgrade your plan.", "rate-limits#exceeded", CATEGORY_INTERNAL, USER_ACTION_REQUIRED),
    "QUERY_ERROR": _entry(500, "Retry the request. If the problem persists, contact support.", "database#query-error", CATEGORY_INTERNAL, SYSTEM_TRANSIENT),
    "EXPORT_ERROR": _entry(500, "Retry the export. If the problem persists, contact support.", "export#export-error", CATEGORY_INTERNAL, SYSTEM_TRANSIENT),
    "PDF_GENERATION_ERROR": _entry(500, "Retry generating the PDF. If the problem persists, contact support.", "export#pdf-generation", CATEGORY_INTERNAL, SYSTEM_TRANSIENT),
    "ENTITLEMENTS_JOB_LIMIT_REACHED": _entry(403, "Upgrade plan or wait for monthly limit reset", "entitlements#job-limit-reached", CATEGORY_ENTITLEMENTS, USER_ACTION_REQUIRED),
    "ENTITLEMENTS_PLAN_PAST_DUE": _entry(402, "Update payment method in billing settings", "entitlements#plan-past-due", CATEGORY_ENTITLEMENTS, USER_ACTION_REQUIRED),
    "ENTITLEMENTS_PLAN_INACTIVE": _entry(403, "Reactivate subscription or upgrade plan", "entitlements#plan-inactive", CATEGORY_ENTITLEMENTS, USER_ACTION_REQUIRED),
    "ENTITLEMENTS_FEATURE_NOT_ALLOWED": _entry(403, "Upgrade plan to access this feature", "entitlements#feature-not-allowed", CATEGORY_ENTITLEMENTS, USER_ACTION_REQUIRED),
    "RECONCILIATION_NOT_CONFIGURED": _entry(503, "Set RECONCILE_SECRET on the server", "billing#reconcile-not-configured", CATEGORY_BILLING, DEVELOPER_BUG),
    "WEBHOOK_SIGNATURE_INVALID": _entry(400, "Check STRIPE_WEBHOOK_SECRET matches the endpoint secret", "billing#webhook-signature", CATEGORY_BILLING, DEVELOPER_BUG),
    "STRIPE_ERROR": _entry(502, "Retry the request. Stripe may be temporarily unavailable.", "billing#stripe-error", CATEGORY_BILLING, SYSTEM_TRANSIENT),
    "INTERNAL_ERROR": _entry(500, "Retry the request. If the problem persists, contact support with the error ID.", "internal#error", CATEGORY_INTERNAL, SYSTEM_TRANSIENT),
}

STATUS_CODE_TO_ERROR_CODE = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_ERROR",
}


def get_error_metadata(code: str) -> Dict[str, Any]:
    """Look up registry metadata, falling back to INTERNAL_ERROR"""
    return ERROR_CODE_REGISTRY.get(code, ERROR_CODE_REGISTRY["INTERNAL_ERROR"])


class ApiError(Exception):
    """
    Error raised by services and routes, rendered as the standard envelope

    The HTTP status defaults to the registry entry for the code.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code or get_error_metadata(code)["status_code"]
        self.details = details
        self.retry_after_seconds = retry_after_seconds

    @property
    def retryable(self) -> bool:
        if self.code == "RATE_LIMIT_EXCEEDED":
            return True
        return get_error_metadata(self.code)["classification"] == SYSTEM_TRANSIENT


class ErrorResponse:
    """
    Standard error response format

    Schema: { code, message, status_code, details?, request_id }
    """

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """
        Create standardized error response

        Args:
            message: Human-readable error message
            code: Error code from ERROR_CODE_REGISTRY
            status_code: HTTP status code
            request_id: Request ID from context (auto-fetched if None)
            details: Optional additional error details

        Returns:
            Dictionary with error details
        """
        if request_id is None:
            request_id = get_request_id()

        response = {
            "code": code,
            "message": message,
            "status_code": status_code,
        }

        if request_id:
            response["request_id"] = request_id

        if details:
            response["details"] = details

        return response


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError with registry hints and Retry-After"""
    request_id = get_request_id()
    metadata = get_error_metadata(exc.code)

    content = ErrorResponse.create(
        message=exc.message,
        code=exc.code,
        status_code=exc.status_code,
        request_id=request_id,
        details=exc.details,
    )
    content["error_hint"] = metadata["hint"]
    content["support_url"] = metadata["support_url"]
    content["retryable"] = exc.retryable

    headers = {}
    if exc.retry_after_seconds is not None:
        content["retry_after_seconds"] = exc.retry_after_seconds
        headers["Retry-After"] = str(exc.retry_after_seconds)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"API error {exc.code} ({exc.status_code}): {exc.message}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers or None)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with request ID"""
    request_id = get_request_id()
    error_code = STATUS_CODE_TO_ERROR_CODE.get(exc.status_code, "HTTP_ERROR")

    detail = exc.detail
    error_message = str(detail) if detail else f"HTTP {exc.status_code} error"
    error_details = None

    # Dict details may carry their own code and message
    if isinstance(detail, dict):
        error_message = detail.get("message", str(detail))
        error_code = detail.get("code", error_code)
        error_details = {k: v for k, v in detail.items() if k not in ["code", "message"]} or None

    error_response = ErrorResponse.create(
        message=error_message,
        code=error_code,
        status_code=exc.status_code,
        request_id=request_id,
        details=error_details,
    )

    logger.warning(
        f"HTTP {exc.status_code}: {detail}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response,
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation exceptions with request ID"""
    request_id = get_request_id()

    errors = exc.errors()
    error_messages = [f"{err['loc']}: {err['msg']}" for err in errors]
    detail = "; ".join(error_messages)

    error_response = ErrorResponse.create(
        message=f"Validation error: {detail}",
        code="VALIDATION_ERROR",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        request_id=request_id,
        details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors]},
    )

    logger.warning(
        f"Validation error: {detail}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with request ID"""
    request_id = get_request_id()

    # Don't expose internal error details outside dev
    from .config import config
    error_message = "Internal server error"
    error_details = None

    if config.is_dev:
        error_message = f"Internal server error: {str(exc)}"
        error_details = {"exception_type": type(exc).__name__}

    error_response = ErrorResponse.create(
        message=error_message,
        code="INTERNAL_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
        details=error_details,
    )

    logger.error(
        f"Unhandled exception: {str(exc)}",
        exc_info=True,
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response
    )
