"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for record storage.
"""

from pathlib import Path
from typing import NamedTuple

from sqlalchemy import create_engine, event, Column, String, Integer, Float, Text, DateTime, Index
from sqlalchemy.orm import declarative_base, sessionmaker

from .normalize import utcnow

Base = declarative_base()


class RecordKey(NamedTuple):
    """Composite identity: numbering is only unique per origin."""

    external_id: str
    source: str


ORIGIN_FIELDS = (
    "author",
    "title",
    "popularity",
    "description",
    "url",
    "created_at",
)

MUTABLE_FIELDS = (
    "relevance_score",
    "matched_category",
    "summary",
    "summary_localized",
    "scored_at",
    "embedded_at",
    "enrich_attempt_count",
    "content_checked_at",
    "sent_to_telegram_at",
    "sent_to_slack_at",
)

# Notification channel -> sent marker column
CHANNEL_MARKERS = {
    "telegram": "sent_to_telegram_at",
    "slack": "sent_to_slack_at",
}


class Record(Base):
    """One ingested item and its pipeline progress."""

    __tablename__ = "records"

    external_id = Column(String, primary_key=True)
    source = Column(String, primary_key=True)  # github, reddit

    author = Column(String)
    title = Column(String)
    popularity = Column(Integer, nullable=False, default=0)  # stars / upvotes
    description = Column(Text, nullable=False, default="")
    url = Column(String)
    created_at = Column(DateTime)

    relevance_score = Column(Float)
    matched_category = Column(String)
    summary = Column(Text)
    summary_localized = Column(Text)
    scored_at = Column(DateTime)
    embedded_at = Column(DateTime)
    enrich_attempt_count = Column(Integer, nullable=False, default=0)
    content_checked_at = Column(DateTime)
    sent_to_telegram_at = Column(DateTime)
    sent_to_slack_at = Column(DateTime)

    inserted_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_records_created_at", "created_at"),
        Index("idx_records_relevance", "relevance_score"),
        Index("idx_records_source", "source"),
        Index("idx_records_scored", "scored_at"),
        Index("idx_records_embedded", "embedded_at"),
    )

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.external_id, self.source)

    def to_dict(self) -> dict:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def __repr__(self):
        return f"<Record {self.source}:{self.external_id}>"


def _enable_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def get_engine(db_path: Path):
    """
    Create a SQLite engine in WAL mode.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    event.listen(engine, "connect", _enable_wal)
    return engine


def init_database(db_path: Path):
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        The engine bound to the database
    """
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)
    return engine


def get_session(engine):
    """
    Get database session.

    Objects stay readable after commit so records can be handed to worker
    threads without touching the connection again.

    Args:
        engine: Engine returned by init_database

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    return Session()
