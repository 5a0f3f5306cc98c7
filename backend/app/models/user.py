from sqlalchemy import Column, Integer, String, DateTime, Boolean, CheckConstraint
from sqlalchemy.sql import func
from app.core.database import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class User(Base):
    """
    User model representing application users.

    Password accounts store a bcrypt hash; Google accounts store the provider
    id instead (an account may hold both). Users are never deleted, only
    deactivated through is_active.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "hashed_password IS NOT NULL OR google_id IS NOT NULL",
            name="ck_users_has_credential",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    # Email is unique and indexed for fast lookups during login
    email = Column(String, unique=True, index=True, nullable=False)
    # Null for OAuth-only accounts
    hashed_password = Column(String, nullable=True)
    google_id = Column(String, unique=True, index=True, nullable=True)
    role = Column(String, nullable=False, default=ROLE_USER)
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    # One-time code for email verification / password reset; cleared once used
    otp_code = Column(String, nullable=True)
    otp_expires = Column(DateTime(timezone=True), nullable=True)
    # Wrong guesses against the current code
    otp_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def clear_otp(self):
        self.otp_code = None
        self.otp_expires = None
        self.otp_attempts = 0
