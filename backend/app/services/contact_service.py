import logging
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from app.core.exceptions import NotFound, ValidationError
from app.models.contact_message import ContactMessage, MAX_MESSAGE_LENGTH, MAX_SUBJECT_LENGTH
from app.models.user import User

logger = logging.getLogger(__name__)

MESSAGE_NOT_FOUND_MESSAGE = "Message not found"


def _clean_subject(subject: Optional[str]) -> str:
    subject = (subject or "").strip()
    if not subject:
        raise ValidationError("Subject and message are required")
    if len(subject) > MAX_SUBJECT_LENGTH:
        raise ValidationError(f"Subject too long (max {MAX_SUBJECT_LENGTH})")
    return subject


def _clean_message(message: Optional[str]) -> str:
    message = (message or "").strip()
    if not message:
        raise ValidationError("Subject and message are required")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message too long (max {MAX_MESSAGE_LENGTH})")
    return message


class ContactService:

    @staticmethod
    def create(db: Session, owner: User, subject: str, message: str,
               name: Optional[str] = None, email: Optional[str] = None) -> ContactMessage:
        doc = ContactMessage(
            user_id=owner.id,
            name=(name or owner.name).strip(),
            email=(email or owner.email).strip(),
            subject=_clean_subject(subject),
            message=_clean_message(message),
        )
        db.add(doc)
        db.commit()
        db.refresh(doc)
        logger.info(f"User {owner.id} sent contact message {doc.id}")
        return doc

    @staticmethod
    def _get_mine(db: Session, owner: User, message_id: int) -> ContactMessage:
        doc = db.query(ContactMessage).filter(
            ContactMessage.id == message_id,
            ContactMessage.user_id == owner.id,
        ).first()
        if not doc:
            raise NotFound(MESSAGE_NOT_FOUND_MESSAGE)
        return doc

    @staticmethod
    def list_mine(db: Session, owner: User) -> List[ContactMessage]:
        return db.query(ContactMessage).filter(
            ContactMessage.user_id == owner.id
        ).order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc()).all()

    def update_mine(self, db: Session, owner: User, message_id: int, changes: Dict[str, Any]) -> ContactMessage:
        doc = self._get_mine(db, owner, message_id)
        if "subject" in changes:
            doc.subject = _clean_subject(changes["subject"])
        if "message" in changes:
            doc.message = _clean_message(changes["message"])
        db.commit()
        db.refresh(doc)
        return doc

    def delete_mine(self, db: Session, owner: User, message_id: int) -> None:
        doc = self._get_mine(db, owner, message_id)
        db.delete(doc)
        db.commit()

    @staticmethod
    def admin_list(db: Session) -> List[ContactMessage]:
        return db.query(ContactMessage).order_by(
            ContactMessage.created_at.desc(), ContactMessage.id.desc()
        ).all()

    @staticmethod
    def admin_delete(db: Session, message_id: int) -> None:
        doc = db.query(ContactMessage).filter(ContactMessage.id == message_id).first()
        if not doc:
            raise NotFound(MESSAGE_NOT_FOUND_MESSAGE)
        db.delete(doc)
        db.commit()
        logger.info(f"Admin deleted contact message {message_id}")


contact_service = ContactService()
