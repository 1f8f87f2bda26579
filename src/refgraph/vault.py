"""Filesystem-backed document host over a folder of Markdown notes.

Document identities are POSIX paths relative to the vault root
(``"Projects/Alpha.md"``). The vault recognizes:

* wikilinks and embeds: ``[[Target]]``, ``[[Target#Heading|alias]]``, ``![[img.png]]``
* Markdown links to local files: ``[text](Notes/Target.md)``
* ATX headings (``# Title``)
* YAML frontmatter; ``aliases`` (or ``alias``) become document aliases and
  every key is exposed as a metadata property

Links inside code are ignored. Parsed documents are cached per file and
reparsed when the file's modification time changes.
"""
from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import yaml

from refgraph.cleaning import FRONTMATTER_RE, clean_text, code_ranges
from refgraph.reference_types import (
    DEFAULT_EXTENSION,
    DocumentMetadata,
    ReferenceRecord,
    make_record,
    split_link_text,
    with_default_extension,
)

log = logging.getLogger(__name__)

WIKILINK_RE = re.compile(r"!?\[\[([^\]\n]+?)\]\]")
MDLINK_RE = re.compile(r"!?\[([^\]\n]*)\]\(([^)\s]+)(?:\s+\"[^\"\n]*\")?\)")
HEADING_RE = re.compile(r"^#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")


def parse_frontmatter(text: str) -> dict[str, Any]:
    """Parse the leading YAML block; malformed or non-mapping YAML yields ``{}``."""
    m = FRONTMATTER_RE.match(text)
    if not m:
        return {}
    body = m.group(0)
    body = body[body.index("\n") + 1:body.rstrip().rfind("\n")]
    try:
        data = yaml.safe_load(body) or {}
    except yaml.YAMLError as exc:
        log.debug("Failed to parse frontmatter: %s", exc)
        return {}
    return data if isinstance(data, dict) else {}


def _aliases(frontmatter: dict[str, Any]) -> tuple[str, ...]:
    value = frontmatter.get("aliases", frontmatter.get("alias"))
    if value is None:
        return ()
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if v is not None and str(v).strip())


def _inside(ranges: list[tuple[int, int]], offset: int) -> bool:
    return any(start <= offset < end for start, end in ranges)


@dataclass(frozen=True, slots=True)
class _ParsedNote:
    mtime_ns: int
    text: str
    links: tuple[tuple[str, int, str | None], ...]  # (link text, offset, display)
    metadata: DocumentMetadata


def parse_note(text: str, mtime_ns: int = 0) -> _ParsedNote:
    frontmatter = parse_frontmatter(text)
    skip = code_ranges(text)
    fm = FRONTMATTER_RE.match(text)
    if fm:
        skip.append((0, fm.end()))

    links: list[tuple[str, int, str | None]] = []
    for m in WIKILINK_RE.finditer(text):
        if _inside(skip, m.start()):
            continue
        target, _, alias = m.group(1).partition("|")
        if target.strip():
            links.append((target.strip(), m.start(), alias.strip() or None))
    for m in MDLINK_RE.finditer(text):
        if _inside(skip, m.start()):
            continue
        href = unquote(m.group(2).strip("<>"))
        if not href or _SCHEME_RE.match(href):
            continue
        links.append((href, m.start(), m.group(1) or None))
    links.sort(key=lambda link: link[1])

    headings = tuple(
        m.group(1).strip()
        for m in HEADING_RE.finditer(text)
        if not _inside(skip, m.start())
    )
    metadata = DocumentMetadata(
        headings=headings,
        aliases=_aliases(frontmatter),
        properties=frontmatter,
    )
    return _ParsedNote(mtime_ns, text, tuple(links), metadata)


class MarkdownVault:
    """A :class:`refgraph.host.DocumentHost` over ``root``."""

    def __init__(self, root: Path, *, extension: str = DEFAULT_EXTENSION) -> None:
        self.root = Path(root)
        self.extension = extension
        self._files: dict[str, str] | None = None  # lower-cased path -> path
        self._by_name: dict[str, list[str]] = {}   # lower-cased file name -> paths
        self._notes: dict[str, _ParsedNote] = {}

    # ------------------------------------------------------------------
    # File listing
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Rescan the vault folder (call after files are added or removed)."""
        files: dict[str, str] = {}
        by_name: dict[str, list[str]] = {}
        for path in sorted(self.root.rglob("*")):
            rel = path.relative_to(self.root)
            if any(part.startswith(".") for part in rel.parts) or not path.is_file():
                continue
            name = rel.as_posix()
            files[name.lower()] = name
            by_name.setdefault(rel.name.lower(), []).append(name)
        self._files = files
        self._by_name = by_name
        self._notes = {k: v for k, v in self._notes.items() if k.lower() in files}
        log.debug("Scanned %s: %d files", self.root, len(files))

    def _file_map(self) -> dict[str, str]:
        if self._files is None:
            self.refresh()
        return self._files or {}

    def list_documents(self) -> list[str]:
        return [
            name for name in self._file_map().values()
            if name.lower().endswith(self.extension)
        ]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _note(self, document: str) -> _ParsedNote:
        path = self.root / document
        mtime_ns = path.stat().st_mtime_ns
        cached = self._notes.get(document)
        if cached is not None and cached.mtime_ns == mtime_ns:
            return cached
        note = parse_note(path.read_text(encoding="utf-8"), mtime_ns)
        self._notes[document] = note
        return note

    def read_text(self, document: str) -> str:
        return self._note(document).text

    def get_structured_references(self, document: str) -> list[ReferenceRecord]:
        return [
            make_record(
                link,
                document,
                target_key=self.resolve_link(split_link_text(link)[0], document),
                position=offset,
                display=display,
            )
            for link, offset, display in self._note(document).links
        ]

    def get_cleaned_text(self, document: str) -> str:
        return clean_text(self._note(document).text)

    def get_metadata(self, document: str) -> DocumentMetadata:
        if not document.lower().endswith(self.extension):
            return DocumentMetadata()
        if document.lower() not in self._file_map():
            return DocumentMetadata()
        return self._note(document).metadata

    # ------------------------------------------------------------------
    # Link resolution
    # ------------------------------------------------------------------

    def resolve_link(self, link_path: str, source_document: str) -> str | None:
        """Resolve *link_path* as written in *source_document*.

        Lookup order: relative to the source's folder, then from the vault
        root, then by file name anywhere (path suffix when the link has a
        folder). Among several name matches the one in the source's folder
        wins, then the shortest path. Matching ignores case.
        """
        path = (link_path or "").strip()
        if not path:
            return None
        files = self._file_map()
        candidate = with_default_extension(path.lstrip("/"))
        folder = posixpath.dirname(source_document) if source_document else ""

        if not path.startswith("/") and folder:
            relative = posixpath.normpath(posixpath.join(folder, candidate))
            if relative.lower() in files:
                return files[relative.lower()]
        rooted = posixpath.normpath(candidate)
        if rooted.lower() in files:
            return files[rooted.lower()]

        name = posixpath.basename(candidate).lower()
        matches = self._by_name.get(name, [])
        if "/" in candidate:
            suffix = "/" + candidate.lower()
            matches = [m for m in matches if m.lower().endswith(suffix)]
        if not matches:
            return None
        return min(
            matches,
            key=lambda m: (posixpath.dirname(m) != folder, m.count("/"), len(m), m),
        )
