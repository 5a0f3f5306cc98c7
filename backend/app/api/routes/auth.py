import logging
from datetime import datetime
from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from app.core.database import get_db
from app.core.config import settings
from app.core.exceptions import AppError, NotFound
from app.core.security import create_session_token
from app.models.user import User
from app.api.dependencies import TOKEN_COOKIE, require_admin
from app.services.auth_service import auth_service
from app.services.email_service import email_service
from app.services.oauth_service import OAuthError, google_oauth
from app.services import policy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

GENERIC_OTP_MESSAGE = "If the account exists, a code has been sent to the email address"


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)


class AdminCreate(UserCreate):
    admin_code: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class VerifyRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1, max_length=12)


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(VerifyRequest):
    password: str = Field(..., min_length=6, max_length=72)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str
    is_active: bool
    is_verified: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AuthResponse(UserResponse):
    token: str


class PendingVerificationResponse(BaseModel):
    message: str
    email: str
    requires_verification: bool = True


class MessageResponse(BaseModel):
    message: str


class RoleChangeResponse(MessageResponse):
    user: UserResponse


def _set_token_cookie(response: Response, token: str):
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )


def _auth_response(response: Response, user: User) -> AuthResponse:
    token = create_session_token(user.id)
    _set_token_cookie(response, token)
    return AuthResponse(**UserResponse.model_validate(user).model_dump(), token=token)


@router.post("/register", response_model=AuthResponse | PendingVerificationResponse,
             status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, response: Response, db: Session = Depends(get_db)):
    """Register a new user; the very first user becomes an admin"""
    result = auth_service.register(db, user_data.name, user_data.email, user_data.password)

    if result.otp_code:
        await email_service.send_otp_email(result.user.email, result.otp_code, purpose="verify")
        return PendingVerificationResponse(
            message="Registration successful. Check your email for the verification code.",
            email=result.user.email,
        )

    _set_token_cookie(response, result.token)
    return AuthResponse(**UserResponse.model_validate(result.user).model_dump(), token=result.token)


@router.post("/admin-register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def admin_register(user_data: AdminCreate, response: Response, db: Session = Depends(get_db)):
    """Register an admin directly, gated by the configured admin code"""
    user = auth_service.admin_register(
        db, user_data.name, user_data.email, user_data.password, user_data.admin_code
    )
    return _auth_response(response, user)


@router.post("/login", response_model=AuthResponse)
async def login(credentials: LoginRequest, response: Response, db: Session = Depends(get_db)):
    """Login and get access token"""
    user = auth_service.login(db, credentials.email, credentials.password)
    return _auth_response(response, user)


@router.post("/verify-email", response_model=AuthResponse)
async def verify_email(payload: VerifyRequest, response: Response, db: Session = Depends(get_db)):
    """Confirm the emailed OTP and sign in"""
    user = auth_service.verify_otp(db, payload.email, payload.otp)
    return _auth_response(response, user)


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(payload: EmailRequest, db: Session = Depends(get_db)):
    code = auth_service.resend_verification(db, payload.email)
    if code:
        await email_service.send_otp_email(payload.email, code, purpose="verify")
    return {"message": GENERIC_OTP_MESSAGE}


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(payload: EmailRequest, db: Session = Depends(get_db)):
    """Email a reset code; the answer does not reveal whether the account exists"""
    code = auth_service.forgot_password(db, payload.email)
    if code:
        await email_service.send_otp_email(payload.email, code, purpose="reset")
    return {"message": GENERIC_OTP_MESSAGE}


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    auth_service.reset_password(db, payload.email, payload.otp, payload.password)
    return {"message": "Password reset successfully"}


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response):
    # Tokens are stateless; logging out only drops the cookie
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out successfully"}


@router.get("/google")
async def google_login():
    """Redirect the browser to Google's consent screen"""
    if not google_oauth.enabled:
        raise NotFound("Google login is not configured")
    return RedirectResponse(google_oauth.authorization_url())


@router.get("/google/callback")
async def google_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    """Finish Google login and hand the session token to the frontend"""
    failure = RedirectResponse(f"{settings.FRONTEND_ORIGIN}/login?error=oauth_failed")

    if error or not code or not google_oauth.validate_state(state):
        logger.warning(f"Google callback rejected (error={error}, code present={bool(code)})")
        return failure

    try:
        identity = await google_oauth.fetch_identity(code)
        user = auth_service.external_identity_login(db, identity.google_id, identity.email, identity.name)
    except (OAuthError, AppError) as exc:
        logger.warning(f"Google login failed: {exc}")
        return failure

    token = create_session_token(user.id)
    return RedirectResponse(f"{settings.FRONTEND_ORIGIN}/auth/success?token={token}")


@router.post("/promote/{user_id}", response_model=RoleChangeResponse)
async def promote(user_id: int, current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Promote user to admin (admin only)"""
    user = policy.promote_to_admin(db, current_user, user_id)
    return {"message": "User promoted to admin successfully", "user": user}


@router.post("/demote/{user_id}", response_model=RoleChangeResponse)
async def demote(user_id: int, current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Demote admin to user (admin only); the last admin is protected"""
    user = policy.demote_to_user(db, current_user, user_id)
    return {"message": "Admin demoted to user successfully", "user": user}
