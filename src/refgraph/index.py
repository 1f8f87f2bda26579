"""The reference index: canonical key -> reference records.

Three mappings are maintained together:

* ``key -> [records]`` in insertion order, for display and counting
* ``source document -> {keys}``, so a document's contributions can be
  purged in time proportional to the keys it touched
* ``target identity -> {key: n}``, so a document view can find incoming
  references without scanning every key

Every mutation replaces one document's whole contribution in a single
synchronous call, so readers on the same event loop never observe a
half-updated document. Records that fail key generation are logged and
skipped; the rest of the document is still indexed.
"""
from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Iterable
from typing import Any

from refgraph.policies import EquivalencePolicy, get_policy
from refgraph.reference_types import ReferenceRecord

log = logging.getLogger(__name__)


class ReferenceIndex:
    def __init__(self, policy: EquivalencePolicy | None = None) -> None:
        self._policy = policy or get_policy()
        self._by_key: dict[str, list[ReferenceRecord]] = {}
        self._keys_by_source: dict[str, set[str]] = {}
        self._keys_by_target: dict[str, Counter[str]] = {}
        self._version = 0
        self.last_updated = 0.0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def policy(self) -> EquivalencePolicy:
        return self._policy

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        return self._version

    def _touch(self) -> None:
        self._version += 1
        self.last_updated = time.time()

    def set_policy(self, policy: EquivalencePolicy) -> None:
        """Switch policy. All keys become invalid, so the index is emptied;
        the caller must rebuild."""
        self._policy = policy
        self.clear()

    def clear(self) -> None:
        self._by_key = {}
        self._keys_by_source = {}
        self._keys_by_target = {}
        self._touch()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update_document(self, document: str, records: Iterable[ReferenceRecord]) -> int:
        """Replace *document*'s contributions with *records*.

        Returns the number of records indexed. Calling twice with the same
        records leaves the same state as calling once.
        """
        self._purge(document)
        keys: set[str] = set()
        inserted = 0
        for record in records:
            if record.source_document != document:
                log.warning(
                    "Skipping reference %r: attributed to %s, not %s",
                    record.raw_text, record.source_document, document,
                )
                continue
            try:
                key = self._policy.generate_key(record)
            except Exception as exc:
                log.warning(
                    "Skipping reference %r in %s: key generation failed: %s",
                    record.raw_text, document, exc,
                )
                continue
            self._by_key.setdefault(key, []).append(record)
            self._keys_by_target.setdefault(record.target_identity, Counter())[key] += 1
            keys.add(key)
            inserted += 1
        if keys:
            self._keys_by_source[document] = keys
        self._touch()
        return inserted

    def remove_document(self, document: str) -> int:
        """Purge *document*'s contributions; returns the number removed."""
        removed = self._purge(document)
        self._touch()
        return removed

    def _purge(self, document: str) -> int:
        keys = self._keys_by_source.pop(document, None)
        if not keys:
            return 0
        removed = 0
        for key in keys:
            kept: list[ReferenceRecord] = []
            for record in self._by_key.get(key, ()):
                if record.source_document == document:
                    removed += 1
                    self._release_target(record.target_identity, key)
                else:
                    kept.append(record)
            if kept:
                self._by_key[key] = kept
            else:
                self._by_key.pop(key, None)
        return removed

    def _release_target(self, target: str, key: str) -> None:
        counts = self._keys_by_target.get(target)
        if counts is None:
            return
        counts[key] -= 1
        if counts[key] <= 0:
            del counts[key]
        if not counts:
            del self._keys_by_target[target]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, key: str) -> list[ReferenceRecord]:
        """Records for *key* in insertion order, filtered by the policy."""
        return self._policy.filter_references(self._by_key.get(key))

    def count(self, key: str) -> int:
        return self._policy.count_references(self.query(key))

    def raw_records(self, key: str) -> tuple[ReferenceRecord, ...]:
        return tuple(self._by_key.get(key, ()))

    def keys(self) -> list[str]:
        return list(self._by_key)

    def documents(self) -> list[str]:
        """Source documents that currently contribute records."""
        return list(self._keys_by_source)

    def keys_for_source(self, document: str) -> frozenset[str]:
        return frozenset(self._keys_by_source.get(document, ()))

    def keys_for_target(self, target: str) -> list[str]:
        return sorted(self._keys_by_target.get(target, ()))

    def entries_for_source(self, document: str) -> list[tuple[str, ReferenceRecord]]:
        """``(key, record)`` pairs contributed by *document*, by position."""
        entries = [
            (key, record)
            for key in self._keys_by_source.get(document, ())
            for record in self._by_key.get(key, ())
            if record.source_document == document
        ]
        entries.sort(key=lambda kv: (kv[1].position, kv[0]))
        return entries

    def total_records(self) -> int:
        return sum(len(records) for records in self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def export(self) -> dict[str, Any]:
        """JSON-compatible snapshot of the forward mapping."""
        return {
            "policy": str(self._policy.kind),
            "version": self._version,
            "key_count": len(self._by_key),
            "record_count": self.total_records(),
            "keys": {
                key: {
                    "count": self.count(key),
                    "records": [r.to_dict() for r in records],
                }
                for key, records in self._by_key.items()
            },
        }
