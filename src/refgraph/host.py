"""Contract for the host that owns the documents."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol, runtime_checkable

from refgraph.reference_types import DocumentMetadata, ReferenceRecord


@runtime_checkable
class DocumentHost(Protocol):
    """Document access the engine needs; injected, never global.

    Document identities are opaque strings (paths for file-backed hosts).
    """

    def list_documents(self) -> Iterable[str]:
        """Every document identity, for a full rebuild."""
        ...

    def get_structured_references(self, document: str) -> Sequence[ReferenceRecord]:
        """References from the host's own link parser, with positions."""
        ...

    def get_cleaned_text(self, document: str) -> str:
        """Text with code and existing links blanked; offsets match the source."""
        ...

    def get_metadata(self, document: str) -> DocumentMetadata:
        ...

    def resolve_link(self, link_path: str, source_document: str) -> str | None:
        """Resolve a link path to a document identity, or None."""
        ...
