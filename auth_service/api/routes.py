"""HTTP route definitions for the authentication service."""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from ..config import get_settings
from ..domain.contracts import LoginInput, ResetPasswordInput, SignupInput, VerifyOtpInput
from ..domain.errors import AuthError, ErrorKind
from ..domain.service import AuthOutcome, AuthService
from ..security.rate_limiter import RateLimiter, build_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

_PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON while exposing snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupRequest(CamelModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)
    referral_code: str | None = None


class VerifyOtpRequest(CamelModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    email: EmailStr
    reset_otp: str = Field(..., min_length=1)
    new_password: str
    confirm_password: str = Field(..., min_length=1)

    @field_validator("new_password")
    @classmethod
    def _check_strength(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("New password must be at least 8 characters long")
        if not _PASSWORD_RULE.match(value):
            raise ValueError(
                "New password must contain at least one uppercase letter, one lowercase "
                "letter, one number, and one special character"
            )
        return value


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class AccountView(CamelModel):
    """Public projection of an account; credential fields have no place here."""

    account_id: str
    first_name: str
    last_name: str
    email: EmailStr
    status: str
    is_active: bool
    referral_code: str | None = None
    referred_by: str | None = None
    created_at: datetime
    updated_at: datetime


class TokenView(CamelModel):
    access_token: str
    refresh_token: str


settings = get_settings()
rate_limiter: RateLimiter = build_rate_limiter(settings)
bearer_scheme = HTTPBearer(auto_error=False)


def get_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def get_current_account_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: AuthService = Depends(get_service),
) -> str:
    """Authenticate the bearer access token and return the caller's account id."""
    if credentials is None:
        raise AuthError(ErrorKind.UNAUTHORIZED, "Unauthorized")
    return service.authenticate(credentials.credentials)


def _enforce_rate_limit(key: str) -> None:
    """Reject the request with 429 once ``key`` exceeds its window."""
    if not rate_limiter.allow(key):
        logger.warning("rate limited %s request", key.split(":", 1)[0])
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")


def _respond(outcome: AuthOutcome) -> JSONResponse:
    """Render a flow outcome as the success envelope."""
    status_code = status.HTTP_201_CREATED if outcome.created else status.HTTP_200_OK
    body: dict = {"statusCode": status_code, "message": outcome.message}
    if outcome.account is not None:
        data = AccountView.model_validate(outcome.account).model_dump(by_alias=True, mode="json")
        if outcome.tokens is not None:
            data["tokens"] = TokenView(
                access_token=outcome.tokens.access_token,
                refresh_token=outcome.tokens.refresh_token,
            ).model_dump(by_alias=True)
        body["data"] = data
    return JSONResponse(status_code=status_code, content=body)


@router.post("/auth/signup", status_code=status.HTTP_201_CREATED, tags=["auth"])
def signup(
    payload: SignupRequest,
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Register an account and email it a verification code."""
    _enforce_rate_limit(f"signup:{payload.email.lower()}")
    outcome = service.signup(
        SignupInput(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            password=payload.password,
            confirm_password=payload.confirm_password,
            referral_code=payload.referral_code,
        )
    )
    return _respond(outcome)


@router.post("/auth/resend", tags=["auth"])
def resend_otp(
    email: EmailStr = Query(...),
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Mail a fresh verification code to ``email``."""
    _enforce_rate_limit(f"resend:{email.lower()}")
    return _respond(service.resend_otp(email))


@router.post("/auth/verify", tags=["auth"])
def verify_otp(
    payload: VerifyOtpRequest,
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Confirm email ownership and start a session."""
    _enforce_rate_limit(f"verify:{payload.email.lower()}")
    return _respond(service.verify_otp(VerifyOtpInput(email=payload.email, otp=payload.otp)))


@router.post("/auth/login", tags=["auth"])
def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Exchange credentials for a token pair."""
    _enforce_rate_limit(f"login:{payload.email.lower()}")
    return _respond(service.login(LoginInput(email=payload.email, password=payload.password)))


@router.post("/auth/logout", tags=["auth"])
def logout(
    account_id: str = Depends(get_current_account_id),
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """End the caller's session."""
    return _respond(service.logout(account_id))


@router.post("/auth/forgot-password", tags=["auth"])
def forgot_password(
    payload: ForgotPasswordRequest,
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Mail a password reset code."""
    _enforce_rate_limit(f"forgot:{payload.email.lower()}")
    return _respond(service.forgot_password(payload.email))


@router.post("/auth/reset-password", tags=["auth"])
def reset_password(
    payload: ResetPasswordRequest,
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Set a new password using the emailed reset code."""
    _enforce_rate_limit(f"reset:{payload.email.lower()}")
    outcome = service.reset_password(
        ResetPasswordInput(
            email=payload.email,
            reset_otp=payload.reset_otp,
            new_password=payload.new_password,
            confirm_password=payload.confirm_password,
        )
    )
    return _respond(outcome)


@router.post("/auth/refresh-token", tags=["auth"])
def refresh_token(
    payload: RefreshTokenRequest,
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Rotate the refresh token and issue a new access token."""
    token_digest = hashlib.sha256(payload.refresh_token.encode("utf-8")).hexdigest()[:12]
    _enforce_rate_limit(f"refresh:{token_digest}")
    return _respond(service.refresh_token(payload.refresh_token))


@router.get("/users/me", tags=["users"])
def get_me(
    account_id: str = Depends(get_current_account_id),
    service: AuthService = Depends(get_service),
) -> JSONResponse:
    """Return the authenticated caller's account."""
    return _respond(service.get_account(account_id))
