"""SQLAlchemy database models for notesync.

Two independent databases are defined here:

* the relational store (``Base``): users, notes, tags, note_tags and
  note_shares. It is authoritative.
* the search index (``IndexBase``): one denormalized ``note_documents`` row
  per note plus an FTS5 table over title and content. It is derived and can
  be rebuilt from the relational store at any time.
"""
import datetime

from sqlalchemy import (JSON, Column, DateTime, ForeignKey, Integer, String, Table,
                        Text, UniqueConstraint, create_engine, event, text)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notesync.config import config
from notesync.models.schema import utc_now

# Create base class for relational models
Base = declarative_base()

# Separate metadata for the search index database
IndexBase = declarative_base()

# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", String(36), ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class DBUser(Base):
    """Database model for a user."""
    __tablename__ = "users"
    id = Column(String(36), primary_key=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    # Relationships
    notes = relationship("DBNote", back_populates="owner")
    received_shares = relationship(
        "DBNoteShare", back_populates="shared_with_user"
    )

    def __repr__(self) -> str:
        """Return string representation of user."""
        return f"<User(id='{self.id}', username='{self.username}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False, index=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # Relationships
    owner = relationship("DBUser", back_populates="notes")
    tags = relationship(
        "DBTag", secondary=note_tags, back_populates="notes"
    )
    shares = relationship(
        "DBNoteShare",
        back_populates="note",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)

    # Relationships
    notes = relationship(
        "DBNote", secondary=note_tags, back_populates="tags"
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBNoteShare(Base):
    """Database model for a note shared with another user."""
    __tablename__ = "note_shares"
    id = Column(String(36), primary_key=True)
    note_id = Column(
        String(36), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    shared_with_user_id = Column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    shared_at = Column(DateTime, default=utc_now, nullable=False)

    # Relationships
    note = relationship("DBNote", back_populates="shares")
    shared_with_user = relationship("DBUser", back_populates="received_shares")

    # A note can be shared with a given user only once
    __table_args__ = (
        UniqueConstraint('note_id', 'shared_with_user_id',
                         name='unique_note_share'),
    )

    def __repr__(self) -> str:
        """Return string representation of share."""
        return (
            f"<NoteShare(id='{self.id}', note='{self.note_id}', "
            f"user='{self.shared_with_user_id}')>"
        )


class DBNoteDocument(IndexBase):
    """Search projection row for a note (lives in the index database)."""
    __tablename__ = "note_documents"
    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    owner_username = Column(String(255), nullable=False, index=True)
    shared_with_usernames = Column(JSON, nullable=False, default=list)
    indexed_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    def __repr__(self) -> str:
        """Return string representation of document."""
        return f"<NoteDocument(id='{self.id}', owner='{self.owner_username}')>"


def create_store_engine(url: str):
    """Create a SQLite engine with the pragmas both stores rely on.

    - foreign_keys=ON so note deletion cascades to shares and tag links
    - WAL journal and NORMAL sync for file databases
    - StaticPool for in-memory databases so every session sees the same data
    """
    in_memory = ":memory:" in url
    if in_memory:
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return engine


def init_db(url: str = None):
    """Initialize the relational store and return its engine."""
    engine = create_store_engine(url or config.get_db_url())
    Base.metadata.create_all(engine)
    return engine


def init_index_db(url: str = None):
    """Initialize the search index database and return its engine."""
    engine = create_store_engine(url or config.get_index_url())
    IndexBase.metadata.create_all(engine)
    init_fts5(engine)
    return engine


def init_fts5(engine) -> None:
    """Initialize the FTS5 table that mirrors note_documents.

    External content table keyed by rowid; triggers keep it in step with
    inserts, updates (including upserts) and deletes on note_documents.
    """
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE VIRTUAL TABLE IF NOT EXISTS note_documents_fts USING fts5(
                title,
                content,
                content='note_documents',
                content_rowid='rowid'
            )
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS note_documents_ai
            AFTER INSERT ON note_documents BEGIN
                INSERT INTO note_documents_fts(rowid, title, content)
                VALUES (NEW.rowid, NEW.title, NEW.content);
            END
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS note_documents_ad
            AFTER DELETE ON note_documents BEGIN
                INSERT INTO note_documents_fts(note_documents_fts, rowid, title, content)
                VALUES ('delete', OLD.rowid, OLD.title, OLD.content);
            END
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS note_documents_au
            AFTER UPDATE ON note_documents BEGIN
                INSERT INTO note_documents_fts(note_documents_fts, rowid, title, content)
                VALUES ('delete', OLD.rowid, OLD.title, OLD.content);
                INSERT INTO note_documents_fts(rowid, title, content)
                VALUES (NEW.rowid, NEW.title, NEW.content);
            END
        """))

        conn.commit()


def rebuild_fts_index(engine) -> int:
    """Rebuild the FTS5 table from note_documents.

    Returns:
        Number of documents indexed.
    """
    with engine.connect() as conn:
        conn.execute(
            text("INSERT INTO note_documents_fts(note_documents_fts) VALUES('rebuild')")
        )
        conn.commit()
        count = conn.execute(text("SELECT COUNT(*) FROM note_documents")).scalar()

    return count


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)


def to_naive_utc(value: datetime.datetime) -> datetime.datetime:
    """Strip tzinfo after converting to UTC; SQLite stores naive datetimes."""
    if value.tzinfo is None:
        return value
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
