"""Tests for the FTS5-backed search index."""
import sqlite3

import pytest

from notesync.exceptions import InvalidSearchCriteriaError
from notesync.models.schema import NoteDocument


def _doc(id, title="Untitled", content="nothing here", tags=None,
         owner="alice", shared_with=None):
    return NoteDocument(
        id=id,
        title=title,
        content=content,
        tags=tags or [],
        owner_username=owner,
        shared_with_usernames=shared_with or [],
    )


@pytest.fixture
def filler(search_index):
    """Unrelated documents so every query term is rare enough to score."""
    for i in range(5):
        search_index.upsert(_doc(f"filler-{i}", title=f"Filler {i}", content="lorem ipsum dolor"))


class TestDocuments:
    """Writing and reading documents."""

    def test_upsert_and_get(self, search_index):
        doc = _doc("n1", title="Hello", tags=["A"], shared_with=["bob"])
        search_index.upsert(doc)
        assert search_index.get("n1") == doc

    def test_upsert_replaces(self, search_index):
        search_index.upsert(_doc("n1", title="First"))
        search_index.upsert(_doc("n1", title="Second"))
        assert search_index.count() == 1
        assert search_index.get("n1").title == "Second"

    def test_replaced_text_is_searchable(self, search_index):
        search_index.upsert(_doc("n1", title="apples"))
        search_index.upsert(_doc("n1", title="oranges"))
        assert search_index.search("apples", None, "alice") == []
        assert search_index.search("oranges", None, "alice") == ["n1"]

    def test_delete_is_idempotent(self, search_index):
        search_index.upsert(_doc("n1"))
        search_index.delete_by_id("n1")
        search_index.delete_by_id("n1")
        assert search_index.get("n1") is None
        assert search_index.get_all_ids() == []

    def test_clear(self, search_index):
        search_index.upsert(_doc("n1"))
        search_index.upsert(_doc("n2"))
        assert search_index.clear() == 2
        assert search_index.count() == 0


class TestSearch:
    """Query semantics: access, tags, text and ordering."""

    def test_requires_text_or_tags(self, search_index):
        with pytest.raises(InvalidSearchCriteriaError):
            search_index.search(None, None, "alice")
        with pytest.raises(InvalidSearchCriteriaError):
            search_index.search("   ", ["  "], "alice")

    def test_access_scope(self, search_index):
        search_index.upsert(_doc("n1", title="java tips", owner="alice", shared_with=["bob"]))
        search_index.upsert(_doc("n2", title="java tricks", owner="carol"))

        assert search_index.search("java", None, "alice") == ["n1"]
        assert search_index.search("java", None, "bob") == ["n1"]
        assert search_index.search("java", None, "carol") == ["n2"]
        assert search_index.search("java", None, "dave") == []

    def test_tags_must_all_match(self, search_index):
        search_index.upsert(_doc("both", tags=["JAVA", "SPRING"]))
        search_index.upsert(_doc("one", tags=["JAVA"]))

        assert search_index.search(None, ["java", "spring"], "alice") == ["both"]
        assert set(search_index.search(None, ["Java"], "alice")) == {"both", "one"}
        assert search_index.search(None, ["kotlin"], "alice") == []

    def test_tag_only_orders_most_recent_first(self, search_index):
        search_index.upsert(_doc("older", tags=["X"]))
        search_index.upsert(_doc("newer", tags=["X"]))
        assert search_index.search(None, ["x"], "alice") == ["newer", "older"]

    def test_text_and_tags_combined(self, search_index):
        search_index.upsert(_doc("tagged", title="python", tags=["LANG"]))
        search_index.upsert(_doc("untagged", title="python"))
        assert search_index.search("python", ["lang"], "alice") == ["tagged"]

    def test_title_match_outranks_content_match(self, search_index, filler):
        search_index.upsert(_doc("in-content", title="misc notes", content="python snippets"))
        search_index.upsert(_doc("in-title", title="python notes", content="misc snippets"))
        assert search_index.search("python", None, "alice") == ["in-title", "in-content"]

    def test_more_matching_words_rank_higher(self, search_index, filler):
        search_index.upsert(_doc("one-word", content="alpha gamma delta"))
        search_index.upsert(_doc("two-words", content="alpha beta delta"))
        assert search_index.search("alpha beta", None, "alice") == ["two-words", "one-word"]

    def test_any_word_matches(self, search_index):
        search_index.upsert(_doc("n1", content="kubernetes cluster"))
        assert search_index.search("docker kubernetes", None, "alice") == ["n1"]

    def test_punctuation_only_text(self, search_index):
        search_index.upsert(_doc("n1", content="something"))
        assert search_index.search("?!...", None, "alice") == []

    def test_query_syntax_is_inert(self, search_index):
        search_index.upsert(_doc("n1", title="python"))
        assert search_index.search('python AND "NEAR(', None, "alice") == ["n1"]

    def test_limit(self, search_index):
        for i in range(5):
            search_index.upsert(_doc(f"n{i}", title="shared word"))
        assert len(search_index.search("word", None, "alice", limit=3)) == 3


class TestFallback:
    """LIKE-based search when FTS5 is disabled."""

    def test_fallback_ranks_titles_first(self, search_index):
        search_index.upsert(_doc("in-content", title="misc", content="python snippets"))
        search_index.upsert(_doc("in-title", title="python", content="misc"))
        search_index.available = False

        assert search_index.search("python", None, "alice") == ["in-title", "in-content"]

    def test_fallback_keeps_access_scope(self, search_index):
        search_index.upsert(_doc("n1", title="python", owner="carol"))
        search_index.available = False
        assert search_index.search("python", None, "alice") == []

    def test_fallback_treats_wildcards_literally(self, search_index):
        search_index.upsert(_doc("n1", title="100 percent"))
        search_index.available = False
        assert search_index.search("100_", None, "alice") == []

    def test_reset_and_rebuild(self, search_index):
        search_index.upsert(_doc("n1", title="python"))
        search_index.available = False
        assert search_index.reset_availability() is True
        assert search_index.available is True
        assert search_index.rebuild() == 1
        assert search_index.search("python", None, "alice") == ["n1"]


class _CorruptFtsSession:
    """Session whose FTS5 queries always report a malformed database."""

    def __init__(self, inner):
        self.inner = inner

    def __enter__(self):
        self.inner.__enter__()
        return self

    def __exit__(self, *exc_info):
        return self.inner.__exit__(*exc_info)

    def execute(self, statement, params=None):
        if "MATCH" in str(statement):
            raise sqlite3.DatabaseError("database disk image is malformed")
        return self.inner.execute(statement, params)


class TestCorruptionRecovery:
    def test_persistent_corruption_rebuilds_once(self, search_index, monkeypatch):
        search_index.upsert(_doc("n1", title="python"))
        real_factory = search_index._session_factory
        monkeypatch.setattr(
            search_index, "_session_factory", lambda: _CorruptFtsSession(real_factory())
        )
        rebuilds = []
        monkeypatch.setattr(search_index, "_attempt_recovery", lambda: rebuilds.append(1) or True)

        assert search_index.search("python", None, "alice") == ["n1"]
        assert rebuilds == [1]
        assert search_index.available is False

    def test_failed_rebuild_falls_back(self, search_index, monkeypatch):
        search_index.upsert(_doc("n1", title="python"))
        real_factory = search_index._session_factory
        monkeypatch.setattr(
            search_index, "_session_factory", lambda: _CorruptFtsSession(real_factory())
        )
        monkeypatch.setattr(search_index, "_attempt_recovery", lambda: False)

        assert search_index.search("python", None, "alice") == ["n1"]
        assert search_index.available is False
