import logging
from typing import List, Literal
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr, Field
from app.core.database import get_db
from app.core.exceptions import NotFound
from app.models.user import User, ROLE_ADMIN, ROLE_USER
from app.api.dependencies import require_admin
from app.api.routes.auth import MessageResponse, UserResponse
from app.services.auth_service import AuthService, normalize_email
from app.services import policy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class AdminUserUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    role: Literal["user", "admin"] | None = None
    is_active: bool | None = None


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")
    return user


@router.get("/users", response_model=List[UserResponse])
async def list_users(current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """All users, newest first"""
    return db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    changes: AdminUserUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Edit a user. Role and activation changes go through the same guards as
    /auth/demote, so the last admin cannot be demoted or deactivated here.
    """
    user = _get_user(db, user_id)
    data = changes.model_dump(exclude_unset=True, exclude_none=True)

    # All checks run before anything is written
    if data.get("role") == ROLE_USER and user.role == ROLE_ADMIN:
        policy.check_demotion(db, current_user, user)
    if data.get("is_active") is False and user.is_active:
        policy.check_deactivation(db, current_user, user)
    if "email" in data:
        data["email"] = normalize_email(data["email"])
        AuthService.ensure_email_free(db, data["email"], exclude_user_id=user.id)

    for name, value in data.items():
        setattr(user, name, value.strip() if name == "name" else value)
    db.commit()
    db.refresh(user)
    logger.info(f"Admin {current_user.id} updated user {user.id}: {sorted(data)}")
    return user


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def deactivate_user(user_id: int, current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Users are never deleted, only deactivated"""
    user = _get_user(db, user_id)
    policy.check_deactivation(db, current_user, user)
    user.is_active = False
    db.commit()
    logger.info(f"Admin {current_user.id} deactivated user {user.id}")
    return {"message": "Deactivated"}
