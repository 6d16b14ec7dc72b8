import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from docportal.utils.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentCategory(str, enum.Enum):
    PRESCRIPTION = "prescription"
    TEST_RESULT = "test_result"
    REFERRAL = "referral"
    OTHER = "other"


class Users(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(255))
    last_name = Column(String(255))
    profile_image_url = Column(String(1024))
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    documents = relationship("Documents", back_populates="owner", cascade="all, delete-orphan")


class Documents(Base):
    __tablename__ = 'documents'

    id = Column(String(36), primary_key=True, default=_uuid)
    filename = Column(Text, nullable=False)
    original_filename = Column(Text, nullable=False)
    filepath = Column(Text, nullable=False)
    filesize = Column(Integer, nullable=False)
    mimetype = Column(Text, nullable=False, default="application/pdf")
    category = Column(String(32), nullable=False, default=DocumentCategory.OTHER.value)
    user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    owner = relationship("Users", back_populates="documents")
