import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterator

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from attachments import AttachmentStorage
from auth_utils import PasswordHasher, TokenService
from config import Settings
from database import create_db_engine, init_db, make_session_factory
from services import AuthService, TaskService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """
    Everything a request handler needs, built once per process by create_app
    and handed to both transports. Replaces module-level engines/sessions.
    """
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    hasher: PasswordHasher
    tokens: TokenService
    storage: AttachmentStorage

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppContext":
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        return cls(
            settings=settings,
            engine=engine,
            session_factory=make_session_factory(engine),
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            tokens=TokenService(
                settings.secret_key,
                algorithm=settings.algorithm,
                ttl=timedelta(hours=settings.token_ttl_hours),
            ),
            storage=AttachmentStorage(settings.upload_dir, settings.uploads_url_prefix),
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def auth_service(self, db: Session) -> AuthService:
        return AuthService(db, self.hasher, self.tokens)

    def task_service(self, db: Session) -> TaskService:
        return TaskService(
            db,
            self.storage,
            repair_filename_encoding=self.settings.repair_filename_encoding,
            enforce_attachment_ownership=self.settings.enforce_attachment_ownership,
        )

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")
