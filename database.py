import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        # Sessions are used from FastAPI's threadpool and from socket handlers.
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, connect_args=connect_args)

    if is_sqlite:
        # Attachment rows rely on ON DELETE CASCADE, which SQLite ignores by default.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    from models import Base
    import task_models  # noqa: F401  registers TaskDB/AttachmentDB on Base

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized (%s)", engine.url.render_as_string(hide_password=True))
