"""Shared fixtures: an in-memory document host."""
from __future__ import annotations

from collections.abc import Iterable

import pytest

from refgraph.reference_types import (
    DocumentMetadata,
    ReferenceRecord,
    make_record,
    split_link_text,
    with_default_extension,
)


class FakeHost:
    """Dictionary-backed :class:`refgraph.host.DocumentHost`."""

    def __init__(self) -> None:
        self.texts: dict[str, str] = {}
        self.links: dict[str, list[ReferenceRecord]] = {}
        self.metadata: dict[str, DocumentMetadata] = {}
        self.fail_on: set[str] = set()
        self.metadata_fail_on: set[str] = set()

    def add(
        self,
        document: str,
        text: str = "",
        links: Iterable[str] = (),
        metadata: DocumentMetadata | None = None,
    ) -> FakeHost:
        self.texts[document] = text
        self.links[document] = [
            make_record(
                link,
                document,
                target_key=self.resolve_link(split_link_text(link)[0], document),
                position=i * 10,
            )
            for i, link in enumerate(links)
        ]
        if metadata is not None:
            self.metadata[document] = metadata
        return self

    def list_documents(self) -> list[str]:
        return list(self.texts)

    def get_structured_references(self, document: str) -> list[ReferenceRecord]:
        if document in self.fail_on:
            raise OSError(f"cannot read {document}")
        return list(self.links.get(document, ()))

    def get_cleaned_text(self, document: str) -> str:
        return self.texts.get(document, "")

    def get_metadata(self, document: str) -> DocumentMetadata:
        if document in self.metadata_fail_on:
            raise FileNotFoundError(document)
        return self.metadata.get(document, DocumentMetadata())

    def resolve_link(self, link_path: str, source_document: str) -> str | None:
        if not link_path:
            return None
        wanted = with_default_extension(link_path).lower()
        for document in self.texts:
            if document.lower() == wanted:
                return document
        return None


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()
