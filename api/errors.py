"""
api/errors.py -- Builds the JSON error envelope for auth failures.

Shared by the AuthError exception handler in api/main.py and by routes that
need to attach cookies to an error response (a failed refresh clears them).
"""

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.errors import AuthError


def auth_error_response(exc: AuthError) -> JSONResponse:
    """Return exc as {"error": {"code", "message"}} with its HTTP status."""
    resp = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
