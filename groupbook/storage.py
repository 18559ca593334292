import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, delete, insert, inspect, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from groupbook.config import Settings

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("messages", "transactions")


class StoreUnavailable(RuntimeError):
    """Raised at startup when the database can't be reached or initialized."""


def engine_options(settings: Settings) -> dict:
    """
    Build create_engine() keyword arguments for the configured database.

    - SQLite: check_same_thread=False so FastAPI's threadpool can share connections
    - Postgres in production: require TLS (server certificate is not verified)
    - In-memory SQLite: one shared connection (StaticPool), otherwise every
      threadpool worker would see its own empty database
    - Everything else gets a bounded QueuePool
    """
    url = make_url(settings.DATABASE_URL)
    backend = url.get_backend_name()
    options: dict = {"echo": False, "pool_pre_ping": True}
    connect_args: dict = {}

    if backend == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database in (None, "", ":memory:"):
            return {**options, "connect_args": connect_args, "poolclass": StaticPool}
    elif backend == "postgresql" and settings.is_production:
        connect_args["sslmode"] = "require"

    options.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        connect_args=connect_args,
    )
    return options


class Store:
    """
    Owns the engine (and its connection pool) for one application instance.

    Built by create_app() and handed to request handlers through dependencies.
    start() probes connectivity and creates the schema; close() drains the pool.
    """

    def __init__(self, settings: Settings, engine: Optional[Engine] = None):
        self.settings = settings
        self.engine = engine if engine is not None else create_engine(
            settings.DATABASE_URL, **engine_options(settings)
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.schema_ready = False

    def ping(self) -> None:
        """Run SELECT 1 on a pooled connection. Raises SQLAlchemyError on failure."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def init_schema(self) -> None:
        """
        Create tables and indexes that don't exist yet. Safe to run repeatedly.

        create_all() skips existing tables but not their missing indexes, so
        every index is also created with its own existence check.
        """
        from groupbook import models  # noqa: F401  registers tables on Base.metadata

        logger.debug("Creating database tables and indexes...")
        with self.engine.begin() as conn:
            Base.metadata.create_all(bind=conn, checkfirst=True)
            for table in Base.metadata.sorted_tables:
                for index in table.indexes:
                    index.create(bind=conn, checkfirst=True)
        self.schema_ready = True
        logger.info("Database tables initialized")

    def ensure_schema(self) -> bool:
        """Probe the database and initialize the schema. Returns False instead of raising."""
        try:
            self.ping()
            logger.info("Database connected successfully")
            self.init_schema()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database startup check failed: {e}")
            return False

    def start(self) -> None:
        """
        Startup sequence: connectivity probe, then schema initialization.

        With STARTUP_FAIL_FAST the first failure aborts startup. Otherwise the
        service runs degraded and /health/ready retries ensure_schema().
        """
        if self.ensure_schema():
            return
        if self.settings.STARTUP_FAIL_FAST:
            raise StoreUnavailable("Database is unreachable or schema initialization failed")
        logger.warning("Starting without a usable database; readiness checks will retry")

    def check_health(self) -> bool:
        """
        Check if the database is reachable and both tables exist.

        Returns:
            True if DB is healthy and schema exists, False otherwise.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                inspector = inspect(conn)
                missing = [name for name in REQUIRED_TABLES if not inspector.has_table(name)]
            if missing:
                logger.error(f"Database schema not applied, missing tables: {missing}")
                return False
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def session(self) -> Generator[Session, None, None]:
        """Yield a session bound to a pooled connection and close it after use."""
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def close(self) -> None:
        """
        Drain the pool. Idle connections close now; connections still checked
        out by in-flight requests close when they are returned.
        """
        logger.info("Closing database connection pool")
        self.engine.dispose()


# =============================================================================
# Repository Functions
# =============================================================================

def _list_records(db: Session, model, group_name: Optional[str], limit: int, offset: int) -> list:
    query = select(model)
    if group_name:
        query = query.where(model.group_name == group_name)
    # Newest first; id breaks ties between rows sharing a timestamp
    query = query.order_by(model.created_at.desc(), model.id.desc()).limit(limit).offset(offset)
    return list(db.scalars(query).all())


def _insert_returning(db: Session, model, values: dict) -> dict:
    table = model.__table__
    row = db.execute(insert(table).values(**values).returning(*table.c)).mappings().one()
    db.commit()
    return dict(row)


def list_messages(
    db: Session,
    group_name: Optional[str] = None,
    limit: int = 50,
    offset: int = 0
) -> list:
    """
    Retrieve messages, newest first.

    Args:
        db: Database session
        group_name: Only return messages from this group
        limit: Maximum number of messages to return
        offset: Number of messages to skip
    """
    from groupbook.models import Message

    logger.info(f"Querying messages: group_name={group_name}, limit={limit}, offset={offset}")
    messages = _list_records(db, Message, group_name, limit, offset)
    logger.debug(f"Retrieved {len(messages)} messages")
    return messages


def create_message(
    db: Session,
    message: str,
    sender: str,
    group_name: str,
    item_id: Optional[int] = None,
    amount: Optional[int] = None
) -> dict:
    """
    Insert a message and return the stored row, including the server-assigned
    id and created_at.
    """
    from groupbook.models import Message

    logger.info(f"Creating message: sender={sender}, group_name={group_name}")
    row = _insert_returning(db, Message, {
        "message": message,
        "sender": sender,
        "item_id": item_id,
        "amount": amount,
        "group_name": group_name,
    })
    logger.info(f"Message created: id={row['id']}")
    return row


def delete_message(db: Session, message_id: int, group_name: Optional[str] = None) -> bool:
    """
    Delete one message by id, optionally only within group_name.

    Returns:
        True if a row was deleted, False if nothing matched
    """
    from groupbook.models import Message

    logger.info(f"Deleting message: id={message_id}, group_name={group_name}")
    query = delete(Message).where(Message.id == message_id)
    if group_name:
        query = query.where(Message.group_name == group_name)
    result = db.execute(query)
    db.commit()

    deleted = result.rowcount > 0
    logger.info(f"Message delete result: {'deleted' if deleted else 'not found'}")
    return deleted


def list_transactions(
    db: Session,
    group_name: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    """Retrieve transactions, newest first. Same filtering as list_messages()."""
    from groupbook.models import Transaction

    logger.info(f"Querying transactions: group_name={group_name}, limit={limit}, offset={offset}")
    transactions = _list_records(db, Transaction, group_name, limit, offset)
    logger.debug(f"Retrieved {len(transactions)} transactions")
    return transactions


def create_transaction(
    db: Session,
    item_id: int,
    item: str,
    user: str,
    amount: int,
    group_name: str
) -> dict:
    from groupbook.models import Transaction

    logger.info(f"Creating transaction: item_id={item_id}, user={user}, group_name={group_name}")
    row = _insert_returning(db, Transaction, {
        "item_id": item_id,
        "item": item,
        "user": user,
        "amount": amount,
        "group_name": group_name,
    })
    logger.info(f"Transaction created: id={row['id']}")
    return row
