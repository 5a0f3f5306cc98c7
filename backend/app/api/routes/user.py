from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr, Field
from app.core.database import get_db
from app.models.user import User
from app.api.dependencies import get_current_user
from app.api.routes.auth import UserResponse
from app.services.auth_service import auth_service

router = APIRouter(prefix="/user", tags=["user"])


class ProfileUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user


@router.put("/me", response_model=UserResponse)
async def update_me(
    profile: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update own name and/or email"""
    return auth_service.update_profile(db, current_user, name=profile.name, email=profile.email)
