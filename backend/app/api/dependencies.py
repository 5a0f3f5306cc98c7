from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.models.user import User, ROLE_ADMIN
from app.services.auth_service import auth_service
from app.services.policy import require_role

# Extracts the token from the Authorization header; auto_error=False so the
# `token` cookie can be tried before giving up
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

TOKEN_COOKIE = "token"


async def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the acting user from a bearer token or the `token` cookie.

    Raises 401 when the token is missing, malformed or expired, or when its
    user no longer exists or has been deactivated.
    """
    return auth_service.resolve_session(db, token or request.cookies.get(TOKEN_COOKIE))


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    require_role(current_user, ROLE_ADMIN)
    return current_user
