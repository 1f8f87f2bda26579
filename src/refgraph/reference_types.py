"""Core reference data model.

A :class:`ReferenceRecord` is one reference from a source document to a
(possibly unresolved) target. Records come from three origins:

* ``link``: explicit structured links parsed by the host
* ``detected``: implicit mentions found by pattern detectors
* ``virtual``: references computed by registered providers

Link text follows the ``path#anchor`` convention: ``"Notes/Alpha#Setup"``
targets ``Notes/Alpha`` at the ``Setup`` anchor, and ``"#Setup"`` targets
the source document itself.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Origin(StrEnum):
    LINK = "link"
    DETECTED = "detected"
    VIRTUAL = "virtual"


# ---------------------------------------------------------------------------
# Link text helpers
# ---------------------------------------------------------------------------

DEFAULT_EXTENSION = ".md"


def split_link_text(link_text: str) -> tuple[str, str | None]:
    """Split ``path#anchor`` link text into ``(path, anchor)``.

    The anchor is returned without its leading ``#``; an empty anchor
    becomes ``None``. Display aliases (``target|alias``) are dropped.
    """
    text = (link_text or "").split("|", 1)[0].strip()
    if "#" not in text:
        return text, None
    path, anchor = text.split("#", 1)
    anchor = anchor.strip()
    return path.strip(), anchor or None


def split_extension(name: str) -> tuple[str, str]:
    """Split ``"dir/Note.md"`` into ``("dir/Note", ".md")``.

    Only the final path component is inspected, and a leading dot does not
    start an extension (``".hidden"`` has none).
    """
    slash = name.rfind("/")
    base = name[slash + 1:]
    dot = base.rfind(".")
    if dot <= 0:
        return name, ""
    cut = slash + 1 + dot
    return name[:cut], name[cut:]


def basename_without_ext(path: str) -> str:
    """Return the last path component with its extension removed."""
    stem, _ = split_extension(path)
    return stem.rsplit("/", 1)[-1]


def with_default_extension(path: str) -> str:
    if not path or split_extension(path)[1]:
        return path
    return path + DEFAULT_EXTENSION


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ReferenceRecord:
    """One reference from ``source_document`` to a target."""

    # Literal link text, may include "#anchor". Detected records carry the
    # detector's target text here so unresolved detections still key by
    # target; the matched text goes to ``display``.
    raw_text: str
    source_document: str           # identity of the containing document
    target_key: str | None = None  # resolved target document, None if unresolved
    subpath: str | None = None     # in-document anchor without "#"
    position: int = 0              # start offset in the source document
    origin: Origin = Origin.LINK
    display: str | None = None     # text shown to the reader, if different

    def __post_init__(self) -> None:
        if not isinstance(self.source_document, str) or not self.source_document:
            raise ValueError("source_document must be a non-empty string")

    @property
    def link_path(self) -> str:
        """Path part of ``raw_text`` (anchor and alias removed)."""
        return split_link_text(self.raw_text)[0]

    @property
    def target_identity(self) -> str:
        """Resolved target, or the raw path with the default extension."""
        if self.target_key:
            return self.target_key
        path = self.link_path or self.source_document
        return with_default_extension(path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw_text": self.raw_text,
            "source_document": self.source_document,
            "target_key": self.target_key,
            "subpath": self.subpath,
            "position": self.position,
            "origin": str(self.origin),
            "display": self.display,
        }


def make_record(
    link_text: str,
    source_document: str,
    *,
    target_key: str | None = None,
    position: int = 0,
    origin: Origin = Origin.LINK,
    display: str | None = None,
) -> ReferenceRecord:
    """Build a record from link text, splitting off the anchor.

    Link text starting with ``#`` targets the source document itself.
    """
    path, anchor = split_link_text(link_text)
    if not path and anchor is not None and target_key is None:
        target_key = source_document
    return ReferenceRecord(
        raw_text=link_text,
        source_document=source_document,
        target_key=target_key,
        subpath=anchor,
        position=position,
        origin=origin,
        display=display,
    )


@dataclass(frozen=True, slots=True)
class DetectedSpan:
    """A candidate implicit reference found in a document's cleaned text."""

    start: int
    end: int
    display: str
    target_key: str
    detector: str = ""

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid span ({self.start}, {self.end})")

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class DocumentMetadata:
    """Structured metadata a host exposes for a document."""

    headings: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    properties: dict[str, Any] = field(default_factory=dict)
