import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from app.core.config import settings

# CryptContext handles password hashing using bcrypt
# 'deprecated="auto"' lets passlib flag hashes that need upgrading
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

OTP_LENGTH = 6


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against a hash using constant-time comparison"""
    # OAuth-only accounts have no hash; nothing can match
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt"""
    # bcrypt generates and embeds a per-hash salt
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token with expiration"""
    # Copy data to avoid mutating the original dict
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(
            timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    # JWT standard 'exp' claim; python-jose rejects the token once it passes
    to_encode.update({"exp": expire})

    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def create_session_token(user_id: int) -> str:
    """Session token binding a user id; validity is signature + expiry only"""
    return create_access_token(data={"sub": str(user_id)})


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT token"""
    try:
        # Verify signature and expiration automatically
        payload = jwt.decode(token, settings.SECRET_KEY,
                             algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        # Token is invalid - could be expired, tampered, or wrong secret key
        return None


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Generate a numeric one-time code"""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))
