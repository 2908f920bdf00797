"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login             -- email + password; token pair
  POST /api/v1/auth/google            -- Google ID token; token pair
  POST /api/v1/auth/refresh           -- refresh token; new access token
  POST /api/v1/auth/logout            -- revoke every refresh token (bearer)
  POST /api/v1/auth/logout-device     -- revoke one refresh token (bearer)
  GET  /api/v1/auth/me                -- current user (bearer)
  POST /api/v1/auth/register          -- pending registration + verification mail
  GET  /api/v1/auth/verify-email      -- verification link; 302 to the frontend
  POST /api/v1/auth/exchange-session  -- one-time session token; token pair
  POST /api/v1/auth/forgot-password   -- always the same generic answer
  POST /api/v1/auth/reset-password    -- encrypted link token + new password

Security:
  [H2] Login, Google login, refresh, register and recovery routes are
       rate-limited per IP (limits from settings).
  [C1] LoginService.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a credential.

Handlers are plain `def`: the User Directory is blocking I/O, and FastAPI
runs sync handlers in its threadpool. Every failure is an AuthError raised by
the service layer and rendered by the handler in api/main.py.
"""

from __future__ import annotations

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from api.limiter import limiter
from api.models import (
    ExchangeSessionRequest,
    ForgotPasswordRequest,
    GoogleLoginRequest,
    LoginRequest,
    LoginResponse,
    LogoutDeviceRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from auth.dependencies import get_current_principal, get_current_user
from auth.models import AccessClaims, User, UserSummary
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - login, google, refresh, register, verify-email, exchange-session,
#   forgot-password, reset-password: public
# - logout, logout-device, me: require a valid access token
router = APIRouter()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password.

    Wrong password and unknown email return the same 401 [C1].
    """
    result = request.app.state.login_service.login(body.email, body.password)
    _no_store(response)
    return LoginResponse.from_result(result)


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/auth/google", response_model=LoginResponse)
def login_google(request: Request, response: Response, body: GoogleLoginRequest) -> LoginResponse:
    """Sign in with a Google ID token verified server-side."""
    result = request.app.state.login_service.login_with_google(body.id_token)
    _no_store(response)
    return LoginResponse.from_result(result)


@limiter.limit(_settings.token_rate_limit)  # [H2]
@router.post("/auth/refresh", response_model=RefreshResponse, response_model_exclude_none=True)
def refresh(request: Request, response: Response, body: RefreshRequest) -> RefreshResponse:
    result = request.app.state.login_service.refresh(body.refresh_token)
    _no_store(response)
    return RefreshResponse(
        access_token=result.access_token,
        expires_in=result.expires_in,
        refresh_token=result.refresh_token,
    )


@limiter.limit(_settings.token_rate_limit)  # [H2]
@router.post("/auth/exchange-session", response_model=LoginResponse)
def exchange_session(request: Request, response: Response, body: ExchangeSessionRequest) -> LoginResponse:
    """Trade the one-time token from the verification redirect for a session."""
    result = request.app.state.registration_service.exchange(body.session_token)
    _no_store(response)
    return LoginResponse.from_result(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: AccessClaims = Depends(get_current_principal)) -> MessageResponse:
    """Sign out everywhere: revoke every refresh token of the caller."""
    request.app.state.login_service.logout(principal.subject)
    return MessageResponse(message="Signed out from all devices.")


@router.post("/auth/logout-device", response_model=MessageResponse)
def logout_device(
    request: Request,
    body: LogoutDeviceRequest,
    principal: AccessClaims = Depends(get_current_principal),
) -> MessageResponse:
    """Sign out this device only. The token must belong to the caller."""
    request.app.state.login_service.logout_device(principal.subject, body.refresh_token)
    return MessageResponse(message="Signed out from this device.")


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_summary(UserSummary.from_user(current_user))


# ---------------------------------------------------------------------------
# Registration and email verification
# ---------------------------------------------------------------------------


@limiter.limit(_settings.recovery_rate_limit)  # [H2]
@router.post("/auth/register", response_model=MessageResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> MessageResponse:
    message = request.app.state.registration_service.register(
        body.email,
        body.first_name,
        body.last_name,
        body.password,
        date_of_birth=body.date_of_birth.isoformat() if body.date_of_birth else None,
        gender=body.gender,
    )
    return MessageResponse(message=message)


@limiter.limit(_settings.recovery_rate_limit)  # [H2]
@router.get("/auth/verify-email", include_in_schema=True)
def verify_email(request: Request, token: str = Query(default="", max_length=128)) -> RedirectResponse:
    """Open the verification link; always redirects to the frontend page."""
    outcome = request.app.state.registration_service.verify_email(token)
    page = f"{_settings.frontend_url.rstrip('/')}/verif-email"
    if outcome.session_token:
        query = urlencode({"status": "success", "session": outcome.session_token})
    else:
        query = urlencode({"status": "error", "message": outcome.error_message or ""})
    response = RedirectResponse(f"{page}?{query}", status_code=302)
    _no_store(response)
    return response


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@limiter.limit(_settings.recovery_rate_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Same answer whether or not the email is registered."""
    return MessageResponse(message=request.app.state.recovery_service.request_reset(body.email))


@limiter.limit(_settings.recovery_rate_limit)  # [H2]
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    message = request.app.state.recovery_service.reset_password(body.token, body.new_password)
    return MessageResponse(message=message)
