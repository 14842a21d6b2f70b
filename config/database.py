"""
Database Configuration and Management (SQLAlchemy)

Handles engine/session setup, table creation and backups.
"""

import shutil
import logging
from datetime import datetime
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config.models import Base

logger = logging.getLogger(__name__)

BACKUP_DIR = Path(__file__).parent.parent / "backups"


def create_db_engine(database_url):
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite databases are opened with check_same_thread disabled because the
    check workers share the engine. In-memory SQLite uses a single static
    connection so every session sees the same tables.

    Args:
        database_url (str): SQLAlchemy database URL

    Returns:
        sqlalchemy.engine.Engine: Configured engine
    """
    url = make_url(database_url)
    kwargs = {}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if not url.database or url.database == ":memory:":
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(database_url, echo=False, **kwargs)


def create_session_factory(database_url):
    """
    Create a session factory bound to a fresh engine.

    Returns:
        sqlalchemy.orm.sessionmaker: Session factory
    """
    engine = create_db_engine(database_url)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_database(session_factory):
    """
    Create all tables defined in models.
    """
    logger.info("Initializing database...")
    engine = session_factory.kw["bind"]
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully!")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


def backup_database(database_url):
    """
    Create a timestamped copy of a file-backed SQLite database.

    Returns:
        str or None: Backup path, or None when nothing was copied
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        logger.warning("Backups are only supported for file-backed SQLite databases")
        return None

    db_path = Path(url.database)
    if not db_path.exists():
        logger.warning("Database file does not exist, cannot create backup")
        return None

    BACKUP_DIR.mkdir(exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = BACKUP_DIR / f"practice_radar_backup_{timestamp}.db"

    try:
        shutil.copy2(db_path, backup_path)
        logger.info(f"Database backed up to: {backup_path}")
        return str(backup_path)
    except OSError as e:
        logger.error(f"Error creating backup: {e}")
        return None
