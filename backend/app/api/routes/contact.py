from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, EmailStr
from app.core.database import get_db
from app.api.dependencies import get_current_user, require_admin
from app.models.user import User
from app.services.contact_service import contact_service

router = APIRouter(tags=["contact"])


class ContactCreate(BaseModel):
    # Lengths are checked after trimming by the service, which answers 400
    subject: str
    message: str
    name: Optional[str] = None
    email: Optional[EmailStr] = None


class ContactUpdate(BaseModel):
    subject: Optional[str] = None
    message: Optional[str] = None


class SenderSummary(BaseModel):
    id: int
    name: str
    email: str
    role: str

    model_config = ConfigDict(from_attributes=True)


class ContactResponse(BaseModel):
    id: int
    user_id: int
    name: str
    email: str
    subject: str
    message: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class AdminContactResponse(ContactResponse):
    user: Optional[SenderSummary] = None


class MessageResponse(BaseModel):
    message: str


@router.post("/contact", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_message(payload: ContactCreate, current_user: User = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    """Submit a new message to the administrators"""
    return contact_service.create(
        db, current_user, payload.subject, payload.message, name=payload.name, email=payload.email
    )


@router.get("/contact/mymessages", response_model=List[ContactResponse])
async def my_messages(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return contact_service.list_mine(db, current_user)


@router.put("/contact/{message_id}", response_model=ContactResponse)
async def update_message(message_id: int, payload: ContactUpdate,
                         current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return contact_service.update_mine(db, current_user, message_id, payload.model_dump(exclude_unset=True))


@router.delete("/contact/{message_id}", response_model=MessageResponse)
async def delete_message(message_id: int, current_user: User = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    contact_service.delete_mine(db, current_user, message_id)
    return {"message": "Deleted"}


@router.get("/admin/contact", response_model=List[AdminContactResponse])
async def all_messages(current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Every message, newest first (admin only)"""
    return contact_service.admin_list(db)


@router.delete("/admin/contact/{message_id}", response_model=MessageResponse)
async def admin_delete_message(message_id: int, current_user: User = Depends(require_admin),
                               db: Session = Depends(get_db)):
    contact_service.admin_delete(db, message_id)
    return {"message": "Deleted"}
