import enum

from sqlalchemy import Column, String, Text

from .base import Base, TimestampMixin, UUIDMixin


class ContactStatus(str, enum.Enum):
    NEW = "new"
    READ = "read"
    REPLIED = "replied"
    ARCHIVED = "archived"


class ContactMessage(Base, UUIDMixin, TimestampMixin):
    """A sanitized contact submission kept for the site owner's inbox."""

    __tablename__ = "contact_messages"

    name = Column(String(100), nullable=False)
    email = Column(String(254), nullable=False, index=True)
    subject = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    source_address = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ContactStatus.NEW.value, index=True)  # new, read, replied, archived

    def __repr__(self) -> str:
        return f"<ContactMessage(id={self.id}, status={self.status})>"
