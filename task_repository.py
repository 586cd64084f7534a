from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from models import utcnow
from task_models import AttachmentDB, TaskDB


class TaskRepository:
    """
    Task and attachment rows, always scoped to an owner.

    Every mutation is a single statement (or one transaction for a batch of
    attachments). Concurrent updates to the same task are last-write-wins.
    """

    def __init__(self, db: Session):
        self.db = db

    def list_for_owner(self, owner_id: int, status: Optional[str] = None) -> List[TaskDB]:
        query = self.db.query(TaskDB).filter(TaskDB.user_id == owner_id)
        if status is not None:
            query = query.filter(TaskDB.status == status)
        return query.order_by(TaskDB.created_at.desc(), TaskDB.id.desc()).all()

    def get_owned(self, task_id: int, owner_id: int) -> Optional[TaskDB]:
        return self.db.query(TaskDB).filter(TaskDB.id == task_id, TaskDB.user_id == owner_id).first()

    def claim_orphan(self, task_id: int, owner_id: int) -> Optional[TaskDB]:
        """Assign an ownerless task to ``owner_id``. Returns None if there was nothing to claim."""
        result = self.db.execute(
            update(TaskDB)
            .where(TaskDB.id == task_id, TaskDB.user_id.is_(None))
            .values(user_id=owner_id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return None
        return self.get_owned(task_id, owner_id)

    def create(
        self,
        owner_id: Optional[int],
        title: str,
        description: Optional[str] = None,
        status: str = "pending",
        due_date: Optional[date] = None,
    ) -> TaskDB:
        task = TaskDB(
            title=title,
            description=description,
            status=status,
            due_date=due_date,
            user_id=owner_id,
        )
        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        return task

    def update(self, task_id: int, owner_id: int, **fields) -> Optional[TaskDB]:
        result = self.db.execute(
            update(TaskDB)
            .where(TaskDB.id == task_id, TaskDB.user_id == owner_id)
            .values(updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return None
        return self.get_owned(task_id, owner_id)

    def delete(self, task_id: int, owner_id: int) -> bool:
        # Attachment rows go with the task via ON DELETE CASCADE.
        result = self.db.execute(
            delete(TaskDB)
            .where(TaskDB.id == task_id, TaskDB.user_id == owner_id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    def add_attachments(self, task_id: int, records: Sequence[dict]) -> List[AttachmentDB]:
        """Insert all records in one transaction; nothing is kept if one fails."""
        attachments = [AttachmentDB(task_id=task_id, **record) for record in records]
        try:
            self.db.add_all(attachments)
            self.db.execute(
                update(TaskDB)
                .where(TaskDB.id == task_id)
                .values(updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        for attachment in attachments:
            self.db.refresh(attachment)
        return attachments

    def get_attachment(self, attachment_id: int) -> Optional[AttachmentDB]:
        return self.db.get(AttachmentDB, attachment_id)

    def delete_attachment(self, attachment_id: int) -> bool:
        result = self.db.execute(
            delete(AttachmentDB)
            .where(AttachmentDB.id == attachment_id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0
