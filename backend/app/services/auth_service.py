import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from app.core.config import settings
from app.core.exceptions import (
    AccountDeactivated, DuplicateEmail, Forbidden, InvalidCredentials,
    InvalidOrExpiredCode, Unauthenticated,
)
from app.core.security import (
    create_session_token, decode_access_token, generate_otp, get_password_hash, verify_password,
)
from app.models.user import User, ROLE_ADMIN, ROLE_USER

logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    user: User
    # Set when the account is usable right away
    token: Optional[str] = None
    # Set when the account waits for email verification
    otp_code: Optional[str] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """
    Registration, login, OTP and OAuth flows.

    Policy: the first user ever created is an admin; further admins come from
    /auth/admin-register (code gated) or promotion. Whether new password
    accounts need OTP verification is fixed at construction.
    """

    def __init__(self, require_verification: bool, otp_expire_minutes: int,
                 admin_registration_code: Optional[str], otp_max_attempts: int = 5):
        self.require_verification = require_verification
        self.otp_expire_minutes = otp_expire_minutes
        self.admin_registration_code = admin_registration_code
        self.otp_max_attempts = otp_max_attempts

    @staticmethod
    def _initial_role(db: Session) -> str:
        return ROLE_ADMIN if db.query(User).count() == 0 else ROLE_USER

    @staticmethod
    def ensure_email_free(db: Session, email: str, exclude_user_id: Optional[int] = None):
        query = db.query(User).filter(User.email == email)
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        if query.first():
            raise DuplicateEmail()

    def _issue_otp(self, user: User) -> str:
        code = generate_otp()
        user.otp_code = code
        user.otp_expires = datetime.now(timezone.utc) + timedelta(minutes=self.otp_expire_minutes)
        user.otp_attempts = 0
        return code

    def _consume_otp(self, db: Session, email: str, code: str) -> User:
        """
        Check `code` against the user's unexpired code and clear it (single use).

        Every wrong guess is counted; once `otp_max_attempts` is reached the
        code is discarded, so even the right code fails afterwards.
        """
        user = db.query(User).filter(
            User.email == normalize_email(email),
            User.otp_code.isnot(None),
            User.otp_expires > datetime.now(timezone.utc),
        ).first()
        if not user:
            raise InvalidOrExpiredCode()

        if not secrets.compare_digest(user.otp_code.encode(), code.encode()):
            user.otp_attempts = (user.otp_attempts or 0) + 1
            if user.otp_attempts >= self.otp_max_attempts:
                logger.warning(f"OTP for user {user.id} discarded after {user.otp_attempts} wrong attempts")
                user.clear_otp()
            db.commit()
            raise InvalidOrExpiredCode()

        user.clear_otp()
        return user

    @staticmethod
    def _commit_new_user(db: Session, user: User) -> User:
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Two registrations for the same email raced past the explicit check
            db.rollback()
            raise DuplicateEmail()
        db.refresh(user)
        return user

    def register(self, db: Session, name: str, email: str, password: str) -> RegistrationResult:
        email = normalize_email(email)
        self.ensure_email_free(db, email)

        user = User(
            name=name.strip(),
            email=email,
            hashed_password=get_password_hash(password),
            role=self._initial_role(db),
            is_active=True,
            is_verified=not self.require_verification,
        )
        otp_code = self._issue_otp(user) if self.require_verification else None
        user = self._commit_new_user(db, user)
        logger.info(f"Registered user {user.id} ({user.email}) as {user.role}")

        if otp_code:
            return RegistrationResult(user=user, otp_code=otp_code)
        return RegistrationResult(user=user, token=create_session_token(user.id))

    def admin_register(self, db: Session, name: str, email: str, password: str, admin_code: str) -> User:
        if not self.admin_registration_code or not secrets.compare_digest(
            admin_code.encode(), self.admin_registration_code.encode()
        ):
            raise Forbidden("Invalid admin code")

        email = normalize_email(email)
        self.ensure_email_free(db, email)
        user = self._commit_new_user(db, User(
            name=name.strip(),
            email=email,
            hashed_password=get_password_hash(password),
            role=ROLE_ADMIN,
            is_active=True,
            is_verified=True,
        ))
        logger.info(f"Registered admin {user.id} ({user.email}) via admin code")
        return user

    def verify_otp(self, db: Session, email: str, code: str) -> User:
        user = self._consume_otp(db, email, code)
        user.is_verified = True
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.id} verified email")
        return user

    def resend_verification(self, db: Session, email: str) -> Optional[str]:
        """Fresh OTP for an unverified account; None when there is nothing to send"""
        user = db.query(User).filter(User.email == normalize_email(email)).first()
        if not user or user.is_verified or not user.is_active:
            return None
        code = self._issue_otp(user)
        db.commit()
        return code

    def login(self, db: Session, email: str, password: str) -> User:
        user = db.query(User).filter(User.email == normalize_email(email)).first()

        # Same message for unknown email and wrong password (no enumeration)
        if not user or not verify_password(password, user.hashed_password):
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDeactivated()
        if not user.is_verified:
            raise InvalidCredentials("Email not verified. Please verify your email first.")

        logger.info(f"User {user.id} logged in")
        return user

    def forgot_password(self, db: Session, email: str) -> Optional[str]:
        user = db.query(User).filter(User.email == normalize_email(email)).first()
        if not user or not user.is_active:
            return None
        code = self._issue_otp(user)
        db.commit()
        logger.info(f"Password reset requested for user {user.id}")
        return code

    def reset_password(self, db: Session, email: str, code: str, new_password: str) -> User:
        user = self._consume_otp(db, email, code)
        user.hashed_password = get_password_hash(new_password)
        # Receiving the code proves ownership of the address
        user.is_verified = True
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.id} reset password")
        return user

    def external_identity_login(self, db: Session, google_id: str, email: str, name: str) -> User:
        """Resolve or provision the account behind a Google identity"""
        email = normalize_email(email)
        user = db.query(User).filter(User.google_id == google_id).first()
        linked = user is not None
        if user is None:
            user = db.query(User).filter(User.email == email).first()

        # Checked before linking so a refused login changes nothing
        if user is not None and not user.is_active:
            raise AccountDeactivated()

        if user is None:
            user = self._commit_new_user(db, User(
                name=(name or email.split("@")[0]).strip(),
                email=email,
                google_id=google_id,
                role=self._initial_role(db),
                is_active=True,
                is_verified=True,
            ))
            logger.info(f"Provisioned user {user.id} from Google login")
        elif not linked:
            user.google_id = google_id
            user.is_verified = True
            db.commit()
            db.refresh(user)
            logger.info(f"Linked Google account to user {user.id}")
        return user

    def create_admin(self, db: Session, name: str, email: str, password: str) -> User:
        """Operator bootstrap: create an admin, or promote and reset an existing account"""
        email = normalize_email(email)
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            return self._commit_new_user(db, User(
                name=name.strip(),
                email=email,
                hashed_password=get_password_hash(password),
                role=ROLE_ADMIN,
                is_active=True,
                is_verified=True,
            ))

        user.role = ROLE_ADMIN
        user.hashed_password = get_password_hash(password)
        user.is_active = True
        user.is_verified = True
        db.commit()
        db.refresh(user)
        return user

    def update_profile(self, db: Session, user: User, name: Optional[str] = None,
                       email: Optional[str] = None) -> User:
        if email is not None:
            email = normalize_email(email)
            self.ensure_email_free(db, email, exclude_user_id=user.id)
            user.email = email
        if name is not None:
            user.name = name.strip()
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise DuplicateEmail()
        db.refresh(user)
        return user

    @staticmethod
    def resolve_session(db: Session, token: Optional[str]) -> User:
        if not token:
            raise Unauthenticated("Not authorized, no token")

        payload = decode_access_token(token)
        if payload is None:
            raise Unauthenticated("Not authorized, token failed")

        # Token stores the id as a string 'sub' claim
        try:
            user_id = int(payload.get("sub"))
        except (ValueError, TypeError):
            raise Unauthenticated("Not authorized, token failed")

        user = db.query(User).filter(User.id == user_id).first()
        if user is None or not user.is_active:
            raise Unauthenticated("Not authorized, account unavailable")
        return user


auth_service = AuthService(
    require_verification=settings.REQUIRE_EMAIL_VERIFICATION,
    otp_expire_minutes=settings.OTP_EXPIRE_MINUTES,
    admin_registration_code=settings.ADMIN_REGISTRATION_CODE,
    otp_max_attempts=settings.OTP_MAX_ATTEMPTS,
)
