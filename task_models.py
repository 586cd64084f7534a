from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from models import Base, utcnow
from encryption import EncryptedString

TASK_STATUSES = ("pending", "in-progress", "completed")


class TaskDB(Base):
    __tablename__ = "tasks"
    id = Column(Integer, primary_key=True, index=True)
    # Title and description are encrypted at rest when DB_ENCRYPTION_KEY is set.
    title = Column(EncryptedString, nullable=False)
    description = Column(EncryptedString)
    status = Column(String(50), nullable=False, default="pending", index=True)
    due_date = Column(Date)
    # NULL owner = legacy row from before ownership existed; claimable once.
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    attachments = relationship(
        "AttachmentDB",
        back_populates="task",
        order_by="AttachmentDB.id",
        lazy="selectin",
        passive_deletes=True,
    )


class AttachmentDB(Base):
    __tablename__ = "attachments"
    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    task = relationship("TaskDB", back_populates="attachments")
