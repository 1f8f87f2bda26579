"""Canonicalization (equivalence) policies.

A policy maps a :class:`ReferenceRecord` to a canonical key; records with
equal keys are the same reference target for counting and display. The
policy set is closed: every variant is a :class:`PolicyKind` member
dispatched through one :class:`EquivalencePolicy` interface with three
operations (``generate_key``, ``count_references``, ``filter_references``).
Variants that do not override counting/filtering share the default
implementation (count = length, filter = identity).

Variants:

* **case-insensitive** (default): resolved path or raw path, upper-cased,
  ``.md`` appended when there is neither extension nor anchor
* **case-sensitive**: as above, original case preserved
* **same-file**: ``{source}:{case-insensitive key}``; never unifies
  references from different source documents
* **word-form**: Lancaster stems of the base name words joined with ``-``
* **base-name**: upper-cased base name, directory and extension dropped
* **unique-files**: case-insensitive key, but each source document is
  counted/kept at most once per key
* **prefix-overlap**: upper-cased base name up to the first separator

The anchor (subpath) is part of every key, so ``Note#Setup`` never
collapses into ``Note``.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from nltk.stem.lancaster import LancasterStemmer

from refgraph.reference_types import (
    DEFAULT_EXTENSION,
    ReferenceRecord,
    basename_without_ext,
    split_extension,
    split_link_text,
)

log = logging.getLogger(__name__)


class KeyGenerationError(ValueError):
    """A record carries no usable target for key generation."""


class PolicyKind(StrEnum):
    CASE_INSENSITIVE = "case-insensitive"
    CASE_SENSITIVE = "case-sensitive"
    SAME_FILE = "same-file"
    WORD_FORM = "word-form"
    BASE_NAME = "base-name"
    UNIQUE_FILES = "unique-files"
    PREFIX_OVERLAP = "prefix-overlap"


DEFAULT_POLICY = PolicyKind.CASE_INSENSITIVE

_WORD_RE = re.compile(r"[^\W_]+")
_PREFIX_SPLIT_RE = re.compile(r"[-–—:·|_ ]")
_stemmer = LancasterStemmer()


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------

def record_anchor(record: ReferenceRecord) -> str | None:
    """Anchor of *record*: explicit ``subpath`` wins over the raw text."""
    if record.subpath:
        return record.subpath.lstrip("#") or None
    return split_link_text(record.raw_text)[1]


def target_path(record: ReferenceRecord) -> str:
    """Resolved target path, else the raw link path.

    A pure-anchor link (``#Setup``) targets its own source document.
    """
    path = record.target_key or record.link_path
    if path:
        return path
    if record_anchor(record) is not None:
        return record.source_document
    raise KeyGenerationError(
        f"reference {record.raw_text!r} in {record.source_document} has no target"
    )


def normalize_base(record: ReferenceRecord, *, fold: bool = True) -> str:
    """Target path plus anchor, with the default extension when neither is present."""
    path = target_path(record)
    anchor = record_anchor(record)
    if anchor:
        path = f"{path}#{anchor}"
    elif not split_extension(path)[1]:
        path += DEFAULT_EXTENSION
    return path.upper() if fold else path


def _with_anchor(key: str, record: ReferenceRecord, fold: Callable[[str], str]) -> str:
    anchor = record_anchor(record)
    return f"{key}#{fold(anchor)}" if anchor else key


def stem_words(text: str) -> list[str]:
    return [_stemmer.stem(word) for word in _WORD_RE.findall(text.lower())]


# ---------------------------------------------------------------------------
# Variant implementations
# ---------------------------------------------------------------------------

def _case_insensitive_key(record: ReferenceRecord) -> str:
    return normalize_base(record)


def _case_sensitive_key(record: ReferenceRecord) -> str:
    return normalize_base(record, fold=False)


def _same_file_key(record: ReferenceRecord) -> str:
    return f"{record.source_document}:{normalize_base(record)}"


def _word_form_key(record: ReferenceRecord) -> str:
    base = basename_without_ext(target_path(record))
    key = "-".join(stem_words(base)) or base.lower()
    return _with_anchor(key, record, str.lower)


def _base_name_key(record: ReferenceRecord) -> str:
    base = basename_without_ext(target_path(record)).upper()
    return _with_anchor(base, record, str.upper)


def _prefix_overlap_key(record: ReferenceRecord) -> str:
    base = basename_without_ext(target_path(record)).upper()
    prefix = _PREFIX_SPLIT_RE.split(base, maxsplit=1)[0] or base
    return _with_anchor(prefix, record, str.upper)


def _default_count(records: Sequence[ReferenceRecord]) -> int:
    return len(records)


def _default_filter(records: Sequence[ReferenceRecord]) -> list[ReferenceRecord]:
    return list(records)


def _unique_source_filter(records: Sequence[ReferenceRecord]) -> list[ReferenceRecord]:
    seen: set[str] = set()
    kept: list[ReferenceRecord] = []
    for record in records:
        if record.source_document in seen:
            continue
        seen.add(record.source_document)
        kept.append(record)
    return kept


def _unique_source_count(records: Sequence[ReferenceRecord]) -> int:
    return len({record.source_document for record in records})


_KEY_FUNCS: dict[PolicyKind, Callable[[ReferenceRecord], str]] = {
    PolicyKind.CASE_INSENSITIVE: _case_insensitive_key,
    PolicyKind.CASE_SENSITIVE: _case_sensitive_key,
    PolicyKind.SAME_FILE: _same_file_key,
    PolicyKind.WORD_FORM: _word_form_key,
    PolicyKind.BASE_NAME: _base_name_key,
    PolicyKind.UNIQUE_FILES: _case_insensitive_key,
    PolicyKind.PREFIX_OVERLAP: _prefix_overlap_key,
}

# Only variants that change counting/filtering appear here.
_COUNT_FUNCS: dict[PolicyKind, Callable[[Sequence[ReferenceRecord]], int]] = {
    PolicyKind.UNIQUE_FILES: _unique_source_count,
}
_FILTER_FUNCS: dict[PolicyKind, Callable[[Sequence[ReferenceRecord]], list[ReferenceRecord]]] = {
    PolicyKind.UNIQUE_FILES: _unique_source_filter,
}

_DISPLAY_NAMES: dict[PolicyKind, str] = {
    PolicyKind.CASE_INSENSITIVE: "Case Insensitive",
    PolicyKind.CASE_SENSITIVE: "Case Sensitive",
    PolicyKind.SAME_FILE: "Same File Unification",
    PolicyKind.WORD_FORM: "Word Form Unification",
    PolicyKind.BASE_NAME: "Base Name Only",
    PolicyKind.UNIQUE_FILES: "Unique Files Only",
    PolicyKind.PREFIX_OVERLAP: "Prefix Overlap",
}


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class EquivalencePolicy:
    """A canonicalization policy variant."""

    kind: PolicyKind

    @property
    def name(self) -> str:
        return _DISPLAY_NAMES[self.kind]

    def generate_key(self, record: ReferenceRecord) -> str:
        return _KEY_FUNCS[self.kind](record)

    def count_references(self, records: Sequence[ReferenceRecord] | None) -> int:
        if not records:
            return 0
        return _COUNT_FUNCS.get(self.kind, _default_count)(records)

    def filter_references(self, records: Sequence[ReferenceRecord] | None) -> list[ReferenceRecord]:
        if not records:
            return []
        return _FILTER_FUNCS.get(self.kind, _default_filter)(records)


POLICIES: dict[PolicyKind, EquivalencePolicy] = {
    kind: EquivalencePolicy(kind) for kind in PolicyKind
}


def get_policy(policy_id: str | PolicyKind | None = None) -> EquivalencePolicy:
    """Look up a policy by id; unknown ids fall back to case-insensitive."""
    if policy_id is None:
        return POLICIES[DEFAULT_POLICY]
    try:
        return POLICIES[PolicyKind(policy_id)]
    except ValueError:
        log.warning("Unknown equivalence policy %r, using %s", policy_id, DEFAULT_POLICY)
        return POLICIES[DEFAULT_POLICY]


def policy_options() -> list[dict[str, str]]:
    """``{"value", "name"}`` pairs for every policy, in declaration order."""
    return [{"value": str(kind), "name": policy.name} for kind, policy in POLICIES.items()]
