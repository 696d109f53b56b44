"""Search projection store: NoteDocuments with FTS5 ranking.

Holds one denormalized document per note in its own database. Queries are
always scoped to what a user may see (owner or recipient) and return note
ids ordered by relevance; hydration happens against the relational store.
"""
import json
import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import DateTime, bindparam, delete, func, select, text
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError

from notesync.config import config
from notesync.exceptions import ErrorCode, InvalidSearchCriteriaError, SearchError
from notesync.models.db_models import (
    DBNoteDocument,
    get_session_factory,
    init_index_db,
    rebuild_fts_index,
)
from notesync.models.schema import NoteDocument, normalize_tag_names, utc_now
from notesync.utils import escape_like_pattern, split_words

logger = logging.getLogger(__name__)

# Visible to the user: owner, or listed among the recipients
_ACCESS_PREDICATE = """(
    d.owner_username = :username
    OR EXISTS (
        SELECT 1 FROM json_each(d.shared_with_usernames) AS s
        WHERE s.value = :username
    )
)"""

_UPSERT_SQL = text("""
    INSERT INTO note_documents
        (id, title, content, tags, owner_username, shared_with_usernames, indexed_at)
    VALUES
        (:id, :title, :content, :tags, :owner_username, :shared_with_usernames, :indexed_at)
    ON CONFLICT(id) DO UPDATE SET
        title = excluded.title,
        content = excluded.content,
        tags = excluded.tags,
        owner_username = excluded.owner_username,
        shared_with_usernames = excluded.shared_with_usernames,
        indexed_at = excluded.indexed_at
""").bindparams(bindparam("indexed_at", type_=DateTime))


def _tag_predicate(position: int) -> str:
    return (
        "EXISTS (SELECT 1 FROM json_each(d.tags) AS t"
        f" WHERE t.value = :tag_{position})"
    )


class NoteSearchIndex:
    """Search index adapter with graceful degradation.

    Args:
        engine: SQLAlchemy engine of the index database. When None, the
            index database from config is initialized.
        session_factory: Callable returning a context-manager session.
        title_weight: bm25 weight of the title column (content weighs 1.0).
        limit: Maximum number of ids returned by one search.
    """

    def __init__(
        self,
        engine: Optional[Any] = None,
        session_factory: Optional[Callable] = None,
        title_weight: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> None:
        self.engine = engine if engine is not None else init_index_db()
        self._session_factory = session_factory or get_session_factory(self.engine)
        self.title_weight = float(title_weight or config.title_weight)
        self.limit = limit or config.search_limit
        self.available: bool = True
        logger.info(f"NoteSearchIndex initialized: db_url={self.engine.url}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, document: NoteDocument) -> None:
        """Insert or replace the document keyed by its id (idempotent)."""
        with self._session_factory() as session:
            session.execute(
                _UPSERT_SQL,
                {
                    "id": document.id,
                    "title": document.title,
                    "content": document.content,
                    "tags": json.dumps(list(document.tags)),
                    "owner_username": document.owner_username,
                    "shared_with_usernames": json.dumps(
                        list(document.shared_with_usernames)
                    ),
                    "indexed_at": utc_now().replace(tzinfo=None),
                },
            )
            session.commit()
        logger.debug(f"Indexed document {document.id}")

    def delete_by_id(self, id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        with self._session_factory() as session:
            result = session.execute(
                delete(DBNoteDocument).where(DBNoteDocument.id == id)
            )
            session.commit()
        if result.rowcount:
            logger.debug(f"Removed document {id}")

    def clear(self) -> int:
        """Remove every document; returns how many were removed."""
        with self._session_factory() as session:
            result = session.execute(delete(DBNoteDocument))
            session.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, id: str) -> Optional[NoteDocument]:
        with self._session_factory() as session:
            row = session.get(DBNoteDocument, id)
            return self._row_to_document(row) if row else None

    def get_all_ids(self) -> List[str]:
        with self._session_factory() as session:
            return list(session.scalars(select(DBNoteDocument.id)).all())

    def count(self) -> int:
        with self._session_factory() as session:
            return session.scalar(select(func.count()).select_from(DBNoteDocument))

    def search(
        self,
        text_query: Optional[str],
        tags: Optional[Sequence[str]],
        access_username: str,
        limit: Optional[int] = None,
    ) -> List[str]:
        """Find ids of documents visible to a user, most relevant first.

        Args:
            text_query: Free text matched against title and content. Words are
                OR-ed; more matching words and title hits rank higher.
            tags: Tag names that must ALL be present on the document.
            access_username: Only documents owned by or shared with this user.
            limit: Maximum ids (defaults to the configured search limit).

        Returns:
            Note ids ordered by relevance (by recency of indexing when only
            tags are given).

        Raises:
            InvalidSearchCriteriaError: If neither text nor tags is given.
        """
        has_text = bool(text_query and text_query.strip())
        tag_names = normalize_tag_names(list(tags) if tags else None)
        if not has_text and not tag_names:
            raise InvalidSearchCriteriaError()

        limit = limit or self.limit
        params: Dict[str, Any] = {"username": access_username, "limit": limit}
        clauses = [_ACCESS_PREDICATE]
        for i, tag in enumerate(tag_names):
            params[f"tag_{i}"] = tag
            clauses.append(_tag_predicate(i))

        if not has_text:
            return self._tag_only_search(clauses, params)

        words = split_words(text_query)
        if not words:
            # Nothing indexable in the text (punctuation only)
            return []

        if not self.available:
            logger.debug("FTS5 unavailable, using fallback search")
            return self._fallback_text_search(words, clauses, params)

        params["query"] = self._build_match_expression(words)
        return self._fts_search(words, clauses, params)

    def _fts_search(
        self,
        words: List[str],
        clauses: List[str],
        params: Dict[str, Any],
        allow_recovery: bool = True,
    ) -> List[str]:
        """Ranked FTS5 query. Corruption triggers at most one rebuild and retry."""
        sql = text(f"""
            SELECT d.id
            FROM note_documents_fts
            JOIN note_documents AS d ON d.rowid = note_documents_fts.rowid
            WHERE note_documents_fts MATCH :query
              AND {' AND '.join(clauses)}
            ORDER BY bm25(note_documents_fts, {self.title_weight:.4f}, 1.0), d.id
            LIMIT :limit
        """)

        with self._session_factory() as session:
            try:
                return [row[0] for row in session.execute(sql, params).fetchall()]

            except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
                logger.warning(
                    f"FTS5 query failed for {words}: {e}. Using fallback search."
                )
                return self._fallback_text_search(words, clauses, params)

            except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
                error_msg = str(e).lower()
                if "malformed" in error_msg or "corrupt" in error_msg:
                    if allow_recovery:
                        logger.error(
                            f"FTS5 corruption detected: {e}. Attempting auto-rebuild..."
                        )
                        if self._attempt_recovery():
                            logger.info("FTS5 rebuilt successfully, retrying search")
                            return self._fts_search(
                                words, clauses, params, allow_recovery=False
                            )
                    logger.error("FTS5 recovery failed. Disabling FTS5 for this session.")
                    self.available = False
                else:
                    logger.error(f"FTS5 database error: {e}. Using fallback search.")
                return self._fallback_text_search(words, clauses, params)

    def rebuild(self) -> int:
        """Rebuild the FTS5 table from the stored documents."""
        return rebuild_fts_index(self.engine)

    def reset_availability(self) -> bool:
        """Re-enable FTS5 after manual repair."""
        try:
            with self._session_factory() as session:
                session.execute(
                    text(
                        "INSERT INTO note_documents_fts(note_documents_fts) "
                        "VALUES('integrity-check')"
                    )
                )
            self.available = True
            logger.info("FTS5 availability reset, FTS5 is now enabled")
            return True
        except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
            logger.error(f"FTS5 still unavailable: {e}")
            self.available = False
            return False

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build_match_expression(words: List[str]) -> str:
        """Quote each word and OR them, so FTS5 syntax in user text is inert."""
        quoted = ['"{}"'.format(w.replace('"', '""')) for w in words]
        return " OR ".join(quoted)

    def _tag_only_search(self, clauses: List[str], params: Dict[str, Any]) -> List[str]:
        sql = text(f"""
            SELECT d.id FROM note_documents AS d
            WHERE {' AND '.join(clauses)}
            ORDER BY d.indexed_at DESC, d.id
            LIMIT :limit
        """)
        try:
            with self._session_factory() as session:
                return [row[0] for row in session.execute(sql, params).fetchall()]
        except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
            raise SearchError(
                f"Tag search failed: {e}", code=ErrorCode.SEARCH_FAILED
            ) from e

    def _fallback_text_search(
        self, words: List[str], clauses: List[str], params: Dict[str, Any]
    ) -> List[str]:
        """LIKE-based fallback when FTS5 is unavailable.

        Ranks by number of matching words, counting title hits twice.
        """
        like_params = {k: v for k, v in params.items() if k != "query"}
        score_terms = []
        match_terms = []
        for i, word in enumerate(words):
            key = f"word_{i}"
            like_params[key] = f"%{escape_like_pattern(word)}%"
            title_hit = f"(d.title LIKE :{key} ESCAPE '\\')"
            content_hit = f"(d.content LIKE :{key} ESCAPE '\\')"
            score_terms.append(f"{title_hit} * 2 + {content_hit}")
            match_terms.append(f"{title_hit} OR {content_hit}")

        sql = text(f"""
            SELECT d.id, ({' + '.join(score_terms)}) AS score
            FROM note_documents AS d
            WHERE ({' OR '.join(match_terms)})
              AND {' AND '.join(clauses)}
            ORDER BY score DESC, d.id
            LIMIT :limit
        """)
        try:
            with self._session_factory() as session:
                ids = [row[0] for row in session.execute(sql, like_params).fetchall()]
        except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
            raise SearchError(
                f"Fallback text search failed: {e}",
                query=" ".join(words),
                code=ErrorCode.SEARCH_FAILED,
            ) from e

        logger.debug(f"Fallback search returned {len(ids)} results for {words}")
        return ids

    def _attempt_recovery(self) -> bool:
        """Attempt to recover FTS5 by rebuilding the index."""
        try:
            count = self.rebuild()
            logger.info(f"FTS5 index rebuilt with {count} documents")
            return True
        except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
            logger.error(f"FTS5 rebuild failed: {e}")
            return False

    @staticmethod
    def _row_to_document(row: DBNoteDocument) -> NoteDocument:
        return NoteDocument(
            id=row.id,
            title=row.title,
            content=row.content,
            tags=list(row.tags or []),
            owner_username=row.owner_username,
            shared_with_usernames=list(row.shared_with_usernames or []),
        )
