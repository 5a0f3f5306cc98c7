from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base

MAX_SUBJECT_LENGTH = 200
MAX_MESSAGE_LENGTH = 2000


class ContactMessage(Base):
    """Message sent by a user to the administrators."""
    __tablename__ = "contact_messages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Sender display values, defaulting to the user's profile at creation time
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    subject = Column(String(MAX_SUBJECT_LENGTH), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", backref="contact_messages")
