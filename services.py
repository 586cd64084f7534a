"""
Business logic shared by the HTTP routers and the Socket.IO gateway.

Both transports call the same methods with the same pydantic payloads and get
the same output models back; they only differ in how errors and results are
put on the wire.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import errors
from attachments import AttachmentIngestion, AttachmentStorage, IncomingFile
from auth_utils import PasswordHasher, TokenService
from credentials import CredentialStore
from models import User
from schemas import AttachmentOut, LoginRequest, RegisterRequest, Task, TaskCreate, TaskStatus, TaskUpdate, UserOut
from task_models import AttachmentDB, TaskDB
from task_repository import TaskRepository

logger = logging.getLogger(__name__)

STATUS_FILTER_ALL = "all"


@contextmanager
def store_errors(db: Session, action: str) -> Iterator[None]:
    """Turn database failures into a generic InternalError, logged with context."""
    try:
        yield
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Database error while trying to %s", action)
        raise errors.InternalError(f"Failed to {action}")


@dataclass
class AuthResult:
    user: UserOut
    token: str


class AuthService:
    def __init__(self, db: Session, hasher: PasswordHasher, tokens: TokenService):
        self.db = db
        self.credentials = CredentialStore(db, hasher)
        self.tokens = tokens

    def register(self, payload: RegisterRequest) -> AuthResult:
        with store_errors(self.db, "register"):
            user = self.credentials.create_user(payload.username, payload.email, payload.password)
        return AuthResult(user=UserOut.model_validate(user), token=self.tokens.issue(user))

    def login(self, payload: LoginRequest) -> AuthResult:
        with store_errors(self.db, "log in"):
            user = self.credentials.verify_password(payload.username, payload.password)
        if user is None:
            logger.info("Failed login for username=%s", payload.username)
            raise errors.Unauthenticated("Invalid username or password")
        return AuthResult(user=UserOut.model_validate(user), token=self.tokens.issue(user))

    def me(self, user: User) -> UserOut:
        return UserOut.model_validate(user)


class TaskService:
    """Ownership-scoped task and attachment operations for one caller request."""

    def __init__(
        self,
        db: Session,
        storage: AttachmentStorage,
        repair_filename_encoding: bool = True,
        enforce_attachment_ownership: bool = False,
    ):
        self.db = db
        self.tasks = TaskRepository(db)
        self.storage = storage
        self.ingestion = AttachmentIngestion(storage, repair_encoding=repair_filename_encoding)
        self.enforce_attachment_ownership = enforce_attachment_ownership

    # --- Normalisation ---
    def attachment_out(self, attachment: AttachmentDB) -> AttachmentOut:
        return AttachmentOut(
            id=attachment.id,
            filename=attachment.filename,
            original_name=attachment.original_name,
            url=self.storage.url_for(attachment.filename),
            uploaded_at=attachment.uploaded_at,
        )

    def task_out(self, task: TaskDB) -> Task:
        return Task(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            due_date=task.due_date,
            created_at=task.created_at,
            updated_at=task.updated_at,
            attachments=[self.attachment_out(a) for a in task.attachments],
        )

    # --- Ownership ---
    def _resolve_for_mutation(self, user: User, task_id: int) -> TaskDB:
        """
        Find the caller's task, claiming it first if it has no owner yet.

        Ownerless rows predate per-user tasks; whoever mutates one first
        becomes its owner.
        """
        task = self.tasks.get_owned(task_id, user.id)
        if task is not None:
            return task
        task = self.tasks.claim_orphan(task_id, user.id)
        if task is None:
            raise errors.NotFound("Task not found")
        logger.info("User id=%s claimed ownerless task id=%s", user.id, task_id)
        return task

    # --- Operations ---
    def list_tasks(self, user: User, status: Optional[str] = STATUS_FILTER_ALL) -> List[Task]:
        status = status or STATUS_FILTER_ALL
        if status != STATUS_FILTER_ALL and status not in {s.value for s in TaskStatus}:
            raise errors.ValidationError(f"Unknown status filter: {status}")
        with store_errors(self.db, "fetch tasks"):
            rows = self.tasks.list_for_owner(user.id, None if status == STATUS_FILTER_ALL else status)
            return [self.task_out(t) for t in rows]

    def get_task(self, user: User, task_id: int) -> Task:
        with store_errors(self.db, "fetch task"):
            task = self.tasks.get_owned(task_id, user.id)
            if task is None:
                raise errors.NotFound("Task not found")
            return self.task_out(task)

    def create_task(self, user: User, payload: TaskCreate) -> Task:
        with store_errors(self.db, "create task"):
            created = self.tasks.create(
                owner_id=user.id,
                title=payload.title,
                description=payload.description,
                status=payload.status.value,
                due_date=payload.due_date,
            )
            full = self.tasks.get_owned(created.id, user.id)
            logger.info("Created task id=%s for user id=%s", full.id, user.id)
            return self.task_out(full)

    def update_task(self, user: User, task_id: int, payload: TaskUpdate) -> Task:
        with store_errors(self.db, "update task"):
            self._resolve_for_mutation(user, task_id)
            updated = self.tasks.update(task_id, user.id, **payload.changes())
            if updated is None:
                # Deleted between the lookup and the update.
                raise errors.NotFound("Task not found")
            return self.task_out(updated)

    def delete_task(self, user: User, task_id: int) -> None:
        with store_errors(self.db, "delete task"):
            task = self._resolve_for_mutation(user, task_id)
            file_paths = [a.file_path for a in task.attachments]
            if not self.tasks.delete(task_id, user.id):
                raise errors.NotFound("Task not found")
        for path in file_paths:
            self.storage.remove(path)
        logger.info("Deleted task id=%s for user id=%s", task_id, user.id)

    def add_attachments(self, user: User, task_id: int, files: Sequence[IncomingFile]) -> List[AttachmentOut]:
        self.ingestion.validate(files)
        with store_errors(self.db, "upload attachment"):
            self._resolve_for_mutation(user, task_id)
        # Checked after the lookup: a missing task answers 404 even without files.
        self.ingestion.require_files(files)
        try:
            stored = self.ingestion.store(files)
        except OSError:
            logger.exception("Could not write attachments for task id=%s", task_id)
            raise errors.InternalError("Failed to upload attachment")
        try:
            with store_errors(self.db, "upload attachment"):
                created = self.tasks.add_attachments(
                    task_id,
                    [
                        {"filename": s.filename, "original_name": s.original_name, "file_path": s.file_path}
                        for s in stored
                    ],
                )
                result = [self.attachment_out(a) for a in created]
        except errors.InternalError:
            self.ingestion.discard(stored)
            raise
        logger.info("Stored %d attachment(s) on task id=%s", len(result), task_id)
        return result

    def delete_attachment(self, user: User, attachment_id: int) -> None:
        """
        Delete an attachment by id.

        The parent task's owner is only checked when enforce_attachment_ownership
        is on; otherwise any authenticated caller may delete any attachment.
        A missing id is a no-op.
        """
        with store_errors(self.db, "delete attachment"):
            attachment = self.tasks.get_attachment(attachment_id)
            if attachment is None:
                return
            if self.enforce_attachment_ownership and self.tasks.get_owned(attachment.task_id, user.id) is None:
                raise errors.NotFound("Attachment not found")
            file_path = attachment.file_path
            self.tasks.delete_attachment(attachment_id)
        self.storage.remove(file_path)
