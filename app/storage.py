import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Iterator

from sqlalchemy import create_engine, delete, event, inspect, text, update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from app.config import settings
from app.errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

DEMO_USERS = (
    ("79001234567", "User 1"),
    ("79009876543", "User 2"),
)

REQUIRED_TABLES = ("users", "deals", "messages")

_url = make_url(settings.DATABASE_URL)
_is_sqlite = _url.get_backend_name() == "sqlite"

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        # SQLite ships with foreign key enforcement off per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def ensure_storage_dir() -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if not _is_sqlite or _url.database in (None, "", ":memory:"):
        return
    directory = Path(_url.database).parent
    if not directory.exists():
        logger.info(f"Creating storage directory: {directory}")
        directory.mkdir(parents=True, exist_ok=True)


def open_store() -> None:
    """
    First startup phase: make sure the database can be opened at all.
    Any failure here aborts application startup.
    """
    logger.debug(f"Opening database: {_url.render_as_string(hide_password=True)}")
    try:
        ensure_storage_dir()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection established")
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Failed to open database: {e}")
        raise


def init_db() -> None:
    """
    Second startup phase: create tables and indexes if absent and seed the
    demo users into an empty users table. Safe to run on every boot.
    """
    logger.info("Initializing database schema")
    try:
        # Import models to register them with Base.metadata
        from app.models import User, Deal, Message  # noqa: F401

        Base.metadata.create_all(bind=engine)

        if settings.SEED_DEMO_USERS:
            with SessionLocal() as db:
                seed_demo_users(db)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def seed_demo_users(db: Session) -> int:
    """Insert DEMO_USERS when the users table is empty. Returns rows added."""
    from app.models import User

    if db.query(User).count() > 0:
        logger.debug("Users table not empty, skipping demo seed")
        return 0

    logger.info("Adding demo users")
    db.add_all([User(phone=phone, name=name) for phone, name in DEMO_USERS])
    db.commit()
    return len(DEMO_USERS)


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
        True if DB is healthy and all tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            existing = set(inspect(conn).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        logger.debug("Database health check passed")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


@contextmanager
def storage_errors(db: Session, action: str) -> Iterator[None]:
    """
    Roll back and translate SQLAlchemy failures into StorageError.

    The client-facing message is the driver's own text unless
    EXPOSE_STORAGE_ERRORS is off; the full error is always logged.
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        raw = str(getattr(e, "orig", None) or e)
        logger.error(f"Storage error during {action}: {e}")
        message = raw if settings.EXPOSE_STORAGE_ERRORS else "storage error"
        raise StorageError(message) from e


# =============================================================================
# User Repository Functions
# =============================================================================

def get_or_create_user(db: Session, phone: str):
    """
    Return the user with this phone, creating a bare row (name NULL) first if
    none exists. A concurrent insert of the same phone counts as "exists".

    Returns:
        Tuple of (user, created)
    """
    from app.models import User

    with storage_errors(db, "login"):
        user = db.get(User, phone)
        if user is not None:
            logger.info(f"User found: {phone}")
            return user, False

        db.add(User(phone=phone))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"User created concurrently: {phone}")
            user = db.get(User, phone)
            if user is None:
                raise
            return user, False

        user = db.get(User, phone)
        db.refresh(user)
        logger.info(f"User created: {phone}")
        return user, True


def list_users(db: Session) -> list:
    from app.models import User

    with storage_errors(db, "list users"):
        return db.query(User).all()


# =============================================================================
# Deal Repository Functions
# =============================================================================

def list_deals(db: Session) -> list:
    """All deals, newest id first."""
    from app.models import Deal

    with storage_errors(db, "list deals"):
        return db.query(Deal).order_by(Deal.id.desc()).all()


def create_deal(
    db: Session,
    name: str,
    amount: float,
    created_by: str,
    currency: str | None = None,
):
    """
    Insert a deal at stage 0 and return the stored row.

    currency falls back to "$" when absent or empty.
    """
    from app.models import Deal

    logger.info(f"Creating deal: name={name}, created_by={created_by}")
    with storage_errors(db, "create deal"):
        deal = Deal(
            name=name,
            amount=amount,
            currency=currency or "$",
            created_by=created_by,
            stage_index=0,
        )
        db.add(deal)
        db.commit()
        db.refresh(deal)
        logger.info(f"Deal created: id={deal.id}")
        return deal


def build_deal_update(deal_id: int, changes: dict[str, Any]):
    """
    Build a bound UPDATE for the supplied columns only.

    Raises:
        ValidationError: if changes is empty
    """
    from app.models import Deal

    if not changes:
        raise ValidationError("No fields to update")
    return (
        update(Deal)
        .where(Deal.id == deal_id)
        .values(**changes)
        .execution_options(synchronize_session=False)
    )


def update_deal(db: Session, deal_id: int, changes: dict[str, Any]):
    """
    Apply a partial update and return the refreshed deal.

    Raises:
        ValidationError: nothing to update
        NotFoundError: no deal with this id
    """
    from app.models import Deal

    stmt = build_deal_update(deal_id, changes)
    logger.info(f"Updating deal {deal_id}: fields={sorted(changes)}")
    with storage_errors(db, "update deal"):
        result = db.execute(stmt)
        if result.rowcount == 0:
            db.rollback()
            raise NotFoundError("Deal not found")
        db.commit()
        deal = db.get(Deal, deal_id)
        db.refresh(deal)
        return deal


def delete_deal(db: Session, deal_id: int) -> int:
    """
    Delete a deal's messages and then the deal, committed together.

    Raises:
        NotFoundError: no deal with this id
    """
    from app.models import Deal, Message

    logger.info(f"Deleting deal {deal_id}")
    with storage_errors(db, "delete deal"):
        removed = db.execute(delete(Message).where(Message.deal_id == deal_id)).rowcount
        result = db.execute(delete(Deal).where(Deal.id == deal_id))
        if result.rowcount == 0:
            db.rollback()
            raise NotFoundError("Deal not found")
        db.commit()
        logger.info(f"Deal {deal_id} deleted with {removed} messages")
        return deal_id


# =============================================================================
# Message Repository Functions
# =============================================================================

def list_messages(db: Session, deal_id: int) -> list:
    """Messages of a deal in chat order (timestamp ASC, id ASC)."""
    from app.models import Message

    with storage_errors(db, "list messages"):
        return (
            db.query(Message)
            .filter(Message.deal_id == deal_id)
            .order_by(Message.timestamp.asc(), Message.id.asc())
            .all()
        )


def create_message(db: Session, deal_id: int, sender: str, text: str):
    """
    Append a message to a deal. The store stamps the timestamp; is_read is 0.
    An unknown deal_id or sender fails the foreign key check.
    """
    from app.models import Message

    logger.info(f"Creating message: deal_id={deal_id}, sender={sender}")
    with storage_errors(db, "create message"):
        message = Message(deal_id=deal_id, sender=sender, text=text, is_read=0)
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.debug(f"Message created: id={message.id}")
        return message
