import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, func, inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased, declarative_base, sessionmaker

from requinte_bot.config import get_settings
from requinte_bot.errors import StorageError

logger = logging.getLogger(__name__)

settings = get_settings()

# check_same_thread=False is required for SQLite to work with FastAPI's
# threadpool and background tasks
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from requinte_bot.models import Message  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise StorageError(f"Failed to initialize database: {e}") from e


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and the messages table exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        if not inspect(engine).has_table("messages"):
            logger.error("Database schema not applied: 'messages' table not found")
            return False
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def record_message(db: Session, record) -> "Message":
    """
    Append one message record. Never updates existing rows.

    Args:
        db: Database session
        record: object carrying from_jid, text, step, tipo, peso, local
            (see conversation.MessageRecord)

    Returns:
        The stored Message row

    Raises:
        StorageError: on any database failure (the session is rolled back)
    """
    from requinte_bot.models import Message

    logger.debug(f"Recording message: from={record.from_jid}, step={record.step}")

    try:
        message = Message(
            from_jid=record.from_jid,
            text=record.text,
            step=record.step,
            tipo=record.tipo,
            peso=record.peso,
            local=record.local,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.info(f"Message recorded: id={message.id}, from={record.from_jid}, step={record.step}")
        return message

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record message from {record.from_jid}: {e}")
        raise StorageError(f"Failed to record message: {e}") from e


def find_latest(db: Session, from_jid: str) -> Optional["Message"]:
    """
    Most recent record for a contact, or None if the contact is new.
    Ties on timestamp are broken by insertion order.
    """
    from requinte_bot.models import Message

    try:
        return (
            db.query(Message)
            .filter(Message.from_jid == from_jid)
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .first()
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to load latest record for {from_jid}: {e}")
        raise StorageError(f"Failed to load latest record: {e}") from e


def count_distinct_contacts(db: Session) -> int:
    """Number of distinct contacts that ever had a message recorded."""
    from requinte_bot.models import Message

    try:
        count = db.query(func.count(func.distinct(Message.from_jid))).scalar() or 0
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to count contacts: {e}")
        raise StorageError(f"Failed to count contacts: {e}") from e

    logger.debug(f"Distinct contacts: {count}")
    return count


def latest_per_contact(db: Session) -> list[dict]:
    """
    Latest answers per contact.

    For every distinct contact, tipo, peso and local are each taken from the
    most recent record that set them (independently per field, so they may
    come from different records). Fields never set stay None.

    Returns:
        List of {"from", "tipo", "peso", "local"} dicts ordered by contact
    """
    from requinte_bot.models import Message

    logger.info("Computing latest answers per contact")

    def latest_value(column_name: str):
        # Newest non-null value of one column for the outer row's contact
        newer = aliased(Message)
        column = getattr(newer, column_name)
        return (
            select(column)
            .where(newer.from_jid == Message.from_jid, column.isnot(None))
            .order_by(newer.timestamp.desc(), newer.id.desc())
            .limit(1)
            .correlate(Message)
            .scalar_subquery()
            .label(column_name)
        )

    try:
        rows = (
            db.query(
                Message.from_jid.label("from_jid"),
                latest_value("tipo"),
                latest_value("peso"),
                latest_value("local"),
            )
            .group_by(Message.from_jid)
            .order_by(Message.from_jid.asc())
            .all()
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to build report: {e}")
        raise StorageError(f"Failed to build report: {e}") from e

    logger.debug(f"Report rows: {len(rows)} contacts")
    return [
        {"from": row.from_jid, "tipo": row.tipo, "peso": row.peso, "local": row.local}
        for row in rows
    ]
