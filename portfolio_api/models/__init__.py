from .base import Base
from .contact import ContactMessage, ContactStatus

__all__ = ["Base", "ContactMessage", "ContactStatus"]
