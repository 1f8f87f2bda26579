"""Tests for refgraph.index: incremental maintenance and queries."""
from __future__ import annotations

import orjson

from refgraph.index import ReferenceIndex
from refgraph.io_utils import dumps
from refgraph.policies import PolicyKind, get_policy
from refgraph.reference_types import ReferenceRecord, make_record


def _records(document: str, *links: str) -> list[ReferenceRecord]:
    return [make_record(link, document, position=i * 10) for i, link in enumerate(links)]


def _state(index: ReferenceIndex) -> dict:
    return {
        "keys": {key: index.raw_records(key) for key in sorted(index.keys())},
        "sources": {doc: index.keys_for_source(doc) for doc in sorted(index.documents())},
        "targets": {t: index.keys_for_target(t) for t in ("Alpha.md", "Beta.md", "Gamma.md")},
    }


# ── maintenance ─────────────────────────────────────────────────────


class TestUpdateDocument:
    def test_update_is_idempotent(self) -> None:
        once = ReferenceIndex()
        once.update_document("a.md", _records("a.md", "Alpha", "Beta"))
        twice = ReferenceIndex()
        twice.update_document("a.md", _records("a.md", "Alpha", "Beta"))
        twice.update_document("a.md", _records("a.md", "Alpha", "Beta"))
        assert _state(once) == _state(twice)

    def test_remove_then_update_equals_fresh_update(self) -> None:
        fresh = ReferenceIndex()
        fresh.update_document("b.md", _records("b.md", "Alpha"))
        fresh.update_document("a.md", _records("a.md", "Alpha", "Gamma"))

        index = ReferenceIndex()
        index.update_document("b.md", _records("b.md", "Alpha"))
        index.update_document("a.md", _records("a.md", "Beta"))
        index.remove_document("a.md")
        index.update_document("a.md", _records("a.md", "Alpha", "Gamma"))
        assert _state(index) == _state(fresh)

    def test_update_replaces_prior_contributions(self) -> None:
        index = ReferenceIndex()
        index.update_document("a.md", _records("a.md", "Alpha"))
        index.update_document("a.md", _records("a.md", "Beta"))
        assert "ALPHA.MD" not in index
        assert index.query("BETA.MD")[0].source_document == "a.md"
        assert index.keys_for_target("Alpha.md") == []

    def test_other_documents_untouched(self) -> None:
        index = ReferenceIndex()
        index.update_document("a.md", _records("a.md", "Alpha"))
        index.update_document("b.md", _records("b.md", "Alpha"))
        index.remove_document("a.md")
        assert [r.source_document for r in index.query("ALPHA.MD")] == ["b.md"]

    def test_key_failure_skips_only_that_record(self) -> None:
        index = ReferenceIndex()
        records = [ReferenceRecord(raw_text="", source_document="a.md"), *_records("a.md", "Alpha")]
        assert index.update_document("a.md", records) == 1
        assert index.count("ALPHA.MD") == 1

    def test_foreign_source_record_skipped(self) -> None:
        index = ReferenceIndex()
        assert index.update_document("a.md", _records("b.md", "Alpha")) == 0
        assert len(index) == 0

    def test_empty_update_clears_document(self) -> None:
        index = ReferenceIndex()
        index.update_document("a.md", _records("a.md", "Alpha"))
        index.update_document("a.md", [])
        assert index.documents() == []
        assert index.total_records() == 0

    def test_remove_unknown_document(self) -> None:
        assert ReferenceIndex().remove_document("missing.md") == 0

    def test_version_advances(self) -> None:
        index = ReferenceIndex()
        before = index.version
        index.update_document("a.md", _records("a.md", "Alpha"))
        assert index.version > before


# ── queries ─────────────────────────────────────────────────────────


class TestQueries:
    def test_query_keeps_insertion_order(self) -> None:
        index = ReferenceIndex()
        index.update_document("b.md", _records("b.md", "Alpha"))
        index.update_document("a.md", _records("a.md", "alpha"))
        assert [r.source_document for r in index.query("ALPHA.MD")] == ["b.md", "a.md"]

    def test_missing_key(self) -> None:
        index = ReferenceIndex()
        assert index.query("NOPE") == []
        assert index.count("NOPE") == 0

    def test_unique_files_filtering(self) -> None:
        index = ReferenceIndex(get_policy(PolicyKind.UNIQUE_FILES))
        index.update_document("a.md", _records("a.md", "Alpha", "alpha", "ALPHA"))
        index.update_document("b.md", _records("b.md", "Alpha"))
        assert len(index.raw_records("ALPHA.MD")) == 4
        assert index.count("ALPHA.MD") == 2
        assert [r.source_document for r in index.query("ALPHA.MD")] == ["a.md", "b.md"]

    def test_entries_for_source_by_position(self) -> None:
        index = ReferenceIndex()
        index.update_document("a.md", _records("a.md", "Beta", "Alpha", "Beta#Intro"))
        assert [key for key, _ in index.entries_for_source("a.md")] == [
            "BETA.MD", "ALPHA.MD", "BETA#INTRO",
        ]

    def test_keys_for_target(self) -> None:
        index = ReferenceIndex()
        index.update_document("a.md", _records("a.md", "Alpha", "alpha.md"))
        assert index.keys_for_target("Alpha.md") == ["ALPHA.MD"]
        index.remove_document("a.md")
        assert index.keys_for_target("Alpha.md") == []


# ── policy switching and export ─────────────────────────────────────


class TestPolicy:
    def test_set_policy_clears(self) -> None:
        index = ReferenceIndex()
        index.update_document("a.md", _records("a.md", "Alpha"))
        index.set_policy(get_policy(PolicyKind.BASE_NAME))
        assert len(index) == 0
        assert index.policy.kind is PolicyKind.BASE_NAME

    def test_reindex_keeps_total_records(self) -> None:
        docs = {
            "a.md": _records("a.md", "Alpha", "alpha", "Notes/Alpha"),
            "b.md": _records("b.md", "ALPHA.md", "Beta"),
        }
        totals = {}
        key_counts = {}
        index = ReferenceIndex()
        for kind in (PolicyKind.CASE_SENSITIVE, PolicyKind.CASE_INSENSITIVE, PolicyKind.BASE_NAME):
            index.set_policy(get_policy(kind))
            for doc, records in docs.items():
                index.update_document(doc, records)
            totals[kind] = index.total_records()
            key_counts[kind] = len(index)
        assert set(totals.values()) == {5}
        assert key_counts == {
            PolicyKind.CASE_SENSITIVE: 5,
            PolicyKind.CASE_INSENSITIVE: 3,
            PolicyKind.BASE_NAME: 2,
        }

    def test_export_is_serializable(self) -> None:
        index = ReferenceIndex()
        index.update_document("a.md", _records("a.md", "Alpha"))
        payload = orjson.loads(dumps(index.export()))
        assert payload["policy"] == "case-insensitive"
        assert payload["record_count"] == 1
        assert payload["keys"]["ALPHA.MD"]["records"][0]["source_document"] == "a.md"
