"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides
small helpers used by the application and tests.
"""

import logging

from sqlmodel import SQLModel, create_engine, Session, select

from .config import settings

logger = logging.getLogger("efs.db")

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    deployments; it is idempotent and also seeds the initial admin
    account when `ADMIN_EMAIL`/`ADMIN_PASSWORD` are configured.
    """
    from . import models  # noqa: F401  (register tables on the metadata)

    SQLModel.metadata.create_all(engine)
    _ensure_admin()


def _ensure_admin():
    """Create the configured admin user once."""
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        return
    from . import models
    from .services import PWD_CTX

    with Session(engine) as session:
        existing = session.exec(select(models.User).where(models.User.email == settings.ADMIN_EMAIL)).first()
        if existing:
            return
        session.add(models.User(
            sid="admin",
            email=settings.ADMIN_EMAIL,
            password_hash=PWD_CTX.hash(settings.ADMIN_PASSWORD),
            role="admin",
            credits=settings.INITIAL_CREDITS,
        ))
        session.commit()
        logger.info("created admin account %s", settings.ADMIN_EMAIL)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
