"""Per-document snapshots of the reference index.

A :class:`DocumentView` is built synchronously from the latest completed
index state; it never waits for in-flight updates.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from refgraph.index import ReferenceIndex
from refgraph.reference_types import DocumentMetadata, ReferenceRecord

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutgoingReference:
    record: ReferenceRecord
    key: str
    count: int  # policy-counted references sharing this key, corpus-wide


@dataclass(frozen=True, slots=True)
class DocumentView:
    document: str
    outgoing: tuple[OutgoingReference, ...] = ()
    incoming_by_key: dict[str, tuple[ReferenceRecord, ...]] = field(default_factory=dict)
    index_version: int = 0

    @property
    def incoming_count(self) -> int:
        return sum(len(records) for records in self.incoming_by_key.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "document": self.document,
            "index_version": self.index_version,
            "outgoing": [
                {"key": o.key, "count": o.count, **o.record.to_dict()}
                for o in self.outgoing
            ],
            "incoming": {
                key: [r.to_dict() for r in records]
                for key, records in self.incoming_by_key.items()
            },
        }


def _self_keys(index: ReferenceIndex, document: str, metadata: DocumentMetadata | None) -> list[str]:
    probes = [ReferenceRecord(raw_text=document, source_document=document, target_key=document)]
    if metadata is not None:
        probes.extend(
            ReferenceRecord(
                raw_text=f"{document}#{heading}",
                source_document=document,
                target_key=document,
                subpath=heading,
            )
            for heading in metadata.headings
            if heading
        )
    keys: list[str] = []
    for probe in probes:
        try:
            keys.append(index.policy.generate_key(probe))
        except Exception as exc:
            log.debug("No self key for %r in %s: %s", probe.raw_text, document, exc)
    return keys


def build_document_view(
    index: ReferenceIndex,
    document: str,
    metadata: DocumentMetadata | None = None,
) -> DocumentView:
    """Snapshot of *document*'s outgoing and incoming references.

    Incoming keys are those whose records target *document*, plus the keys
    the active policy assigns to the document itself and to each of its
    headings, so anchor links show up under their heading.
    """
    outgoing = tuple(
        OutgoingReference(record=record, key=key, count=index.count(key))
        for key, record in index.entries_for_source(document)
    )

    candidate_keys = dict.fromkeys(index.keys_for_target(document))
    candidate_keys.update(dict.fromkeys(_self_keys(index, document, metadata)))

    incoming: dict[str, tuple[ReferenceRecord, ...]] = {}
    for key in candidate_keys:
        records = index.query(key)
        if records:
            incoming[key] = tuple(records)

    return DocumentView(
        document=document,
        outgoing=outgoing,
        incoming_by_key=incoming,
        index_version=index.version,
    )
