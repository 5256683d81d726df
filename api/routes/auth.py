"""
api/routes/auth.py -- Account and session REST endpoints.

Routes:
  POST /auth/register         -- create an unverified account; 201
  POST /auth/login            -- email + password; sets access/refresh cookies
  POST /auth/verify-email     -- consume verification token; sets cookies
  POST /auth/forgot-password  -- request a reset link; same answer for unknown emails
  POST /auth/reset-password   -- consume reset token, set new password
  POST /auth/refresh          -- rotate the refresh cookie into a new pair
  POST /auth/logout           -- revoke the refresh token, clear cookies
  GET  /auth/me               -- current user's profile (requires auth)

Security:
  Tokens travel only in httpOnly, samesite=strict cookies. The refresh
  cookie is scoped to /auth so it is never sent to other endpoints.
  Every response that sets or clears tokens, or carries a verification or
  reset link, sends Cache-Control: no-store.
  login, register and forgot-password are rate-limited per client IP. See
  api/limiter.py for the decorator order slowapi needs.
  AuthError subclasses raised by AuthService propagate to the handler in
  api/main.py; only /auth/refresh catches its error, to clear stale cookies.

Handlers are plain `def`: FastAPI runs them in its thread pool, which is
where the blocking bcrypt and database calls belong.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import auth_error_response
from api.limiter import FORGOT_PASSWORD_LIMIT, LOGIN_LIMIT, limiter
from api.models import (
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserEnvelope,
    UserPublic,
    VerifyEmailRequest,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.errors import InvalidRefreshToken
from auth.models import User, public_profile
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from core.config import Settings, get_settings

router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _user_envelope(user: User) -> dict:
    return UserEnvelope(user=UserPublic(**public_profile(user))).model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(LOGIN_LIMIT)
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Create an unverified account and email the verification link."""
    result = service.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        native_language=body.native_language,
        learning_language=body.learning_language,
    )
    content = RegisterResponse(
        message=result.message,
        verification_url=result.verification_url if settings.expose_action_urls else None,
        user_id=result.user_id,
    )
    return _no_store(JSONResponse(status_code=201, content=content.model_dump(by_alias=True)))


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(
    body: VerifyEmailRequest,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Mark the account verified. Verification doubles as the first login."""
    session = service.verify_email(body.token)
    resp = JSONResponse(content=MessageResponse(message=session.message).model_dump(by_alias=True))
    set_auth_cookies(resp, session.tokens, secure=settings.secure_cookies)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=UserEnvelope)
@limiter.limit(LOGIN_LIMIT)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Authenticate with email and password; set access and refresh cookies.

    Unknown email and wrong password produce the same invalid_credentials
    error. The body carries the user profile only, never the tokens.
    """
    session = service.login(body.email, body.password)
    resp = JSONResponse(content=_user_envelope(session.user))
    set_auth_cookies(resp, session.tokens, secure=settings.secure_cookies)
    return _no_store(resp)


@router.post("/auth/refresh", response_model=MessageResponse)
def refresh(
    request: Request,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Exchange the refresh cookie for a new pair. The old refresh token dies."""
    try:
        session = service.refresh(request.cookies.get(REFRESH_COOKIE))
    except InvalidRefreshToken as exc:
        resp = auth_error_response(exc)
        clear_auth_cookies(resp)
        return resp
    resp = JSONResponse(content=MessageResponse(message="Token refreshed.").model_dump(by_alias=True))
    set_auth_cookies(resp, session.tokens, secure=settings.secure_cookies)
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Revoke the presented refresh token and clear both cookies."""
    service.logout(request.cookies.get(REFRESH_COOKIE))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(by_alias=True))
    clear_auth_cookies(resp)
    return _no_store(resp)


@router.get("/auth/me", response_model=UserEnvelope)
def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the profile of the currently authenticated user."""
    return _no_store(JSONResponse(content=_user_envelope(current_user)))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=ForgotPasswordResponse)
@limiter.limit(FORGOT_PASSWORD_LIMIT)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Email a reset link. The response is the same whether or not the account exists."""
    result = service.forgot_password(body.email)
    content = ForgotPasswordResponse(
        message=result.message,
        reset_url=result.reset_url if settings.expose_action_urls else None,
    )
    return _no_store(JSONResponse(content=content.model_dump(by_alias=True)))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Set a new password using a live reset token."""
    return MessageResponse(message=service.reset_password(body.token, body.new_password))
