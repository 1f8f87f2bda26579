"""Implicit reference detectors.

A detector scans a document's cleaned text and returns candidate
:class:`DetectedSpan` objects. Several detectors may run per document;
their output is concatenated and passed through
:func:`refgraph.spans.resolve_conflicts`. A failing detector contributes
nothing for that document and never affects the others.

Two detectors ship with the package:

* :class:`RegexDetector`: configured rules with ``${N}`` templates
* :class:`DictionaryDetector`: a phrase trie built from document names,
  aliases, headings and custom phrases
"""
from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Awaitable, Iterable, Sequence
from typing import Protocol, runtime_checkable

from refgraph.config import DetectionSettings, DictionarySettings, RegexRule
from refgraph.host import DocumentHost
from refgraph.policies import EquivalencePolicy
from refgraph.reference_types import (
    DetectedSpan,
    ReferenceRecord,
    basename_without_ext,
    with_default_extension,
)
from refgraph.spans import resolve_conflicts

log = logging.getLogger(__name__)


@runtime_checkable
class Detector(Protocol):
    name: str

    def detect(
        self, document: str, text: str,
    ) -> Sequence[DetectedSpan] | Awaitable[Sequence[DetectedSpan]]:
        ...


# ---------------------------------------------------------------------------
# Regex detector
# ---------------------------------------------------------------------------

_TEMPLATE_RE = re.compile(r"\$\{(\d+)\}")

_FLAG_BITS: dict[str, int] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "g": 0,  # global matching is implicit with finditer
    "u": 0,  # str patterns are unicode already
}


def expand_template(template: str, match: re.Match[str]) -> str:
    """Replace ``${N}`` with match group N; missing groups become empty."""

    def _group(m: re.Match[str]) -> str:
        try:
            value = match.group(int(m.group(1)))
        except IndexError:
            return ""
        return value or ""

    return _TEMPLATE_RE.sub(_group, template)


def compile_flags(flags: str) -> int:
    bits = 0
    for letter in flags or "":
        if letter not in _FLAG_BITS:
            raise ValueError(f"unsupported regex flag {letter!r}")
        bits |= _FLAG_BITS[letter]
    return bits


class RegexDetector:
    name = "regex"

    def __init__(self, rules: Iterable[RegexRule]) -> None:
        self._rules: list[tuple[re.Pattern[str], RegexRule]] = []
        for rule in rules:
            try:
                pattern = re.compile(rule.pattern, compile_flags(rule.flags))
            except (re.error, ValueError) as exc:
                log.warning("Skipping regex rule %r: %s", rule.pattern, exc)
                continue
            self._rules.append((pattern, rule))

    @property
    def rule_count(self) -> int:
        return len(self._rules)

    def detect(self, document: str, text: str) -> list[DetectedSpan]:
        results: list[DetectedSpan] = []
        for pattern, rule in self._rules:
            for m in pattern.finditer(text):
                if m.end() == m.start():
                    continue
                target = expand_template(rule.target_template, m).strip()
                if not target:
                    continue
                display = (
                    expand_template(rule.display_template, m)
                    if rule.display_template else m.group(0)
                )
                results.append(
                    DetectedSpan(
                        start=m.start(),
                        end=m.end(),
                        display=display,
                        target_key=target,
                        detector=self.name,
                    )
                )
        return results


# ---------------------------------------------------------------------------
# Dictionary detector
# ---------------------------------------------------------------------------

# Synthetic source for keying dictionary phrases through the policy.
DICTIONARY_SOURCE = "<dictionary>"


def fold_text(text: str) -> str:
    """Upper-case per character, keeping characters whose upper form changes length."""
    out = []
    for ch in text:
        up = ch.upper()
        out.append(up if len(up) == 1 else ch)
    return "".join(out)


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _is_boundary(text: str, idx: int) -> bool:
    if idx < 0 or idx >= len(text):
        return True
    return not _is_word_char(text[idx])


class _TrieNode:
    __slots__ = ("children", "key")

    def __init__(self) -> None:
        self.children: dict[str, _TrieNode] = {}
        self.key: str | None = None


class DictionaryDetector:
    """Detect mentions of known phrases (note names, aliases, headings).

    The dictionary is built lazily on first use; call :meth:`invalidate`
    when documents or settings change.
    """

    name = "dictionary"

    def __init__(
        self,
        host: DocumentHost,
        settings: DictionarySettings,
        policy: EquivalencePolicy,
    ) -> None:
        self._host = host
        self._settings = settings
        self._policy = policy
        self._root = _TrieNode()
        self._targets: dict[str, str] = {}  # key -> target
        self._built = False

    @property
    def phrase_count(self) -> int:
        if not self._built:
            self.build()
        return len(self._targets)

    def invalidate(self) -> None:
        self._built = False

    def set_policy(self, policy: EquivalencePolicy) -> None:
        self._policy = policy
        self.invalidate()

    def _collect_phrases(self) -> list[tuple[str, str | None]]:
        """``(phrase, target)`` pairs; a None target is resolved through the host."""
        s = self._settings
        pairs: list[tuple[str, str | None]] = []
        if s.basenames or s.aliases or s.headings:
            for document in self._host.list_documents():
                if s.basenames:
                    pairs.append((basename_without_ext(document), document))
                if s.aliases or s.headings:
                    meta = self._host.get_metadata(document)
                    if s.aliases:
                        pairs.extend((alias, document) for alias in meta.aliases)
                    if s.headings:
                        pairs.extend((h, f"{document}#{h}") for h in meta.headings)
        if s.custom_list:
            pairs.extend((phrase, None) for phrase in s.custom_phrases)
        return pairs

    def build(self) -> None:
        self._root = _TrieNode()
        self._targets = {}
        for name, target in self._collect_phrases():
            phrase = name.strip() if isinstance(name, str) else ""
            if not phrase or len(phrase) < self._settings.min_phrase_length:
                continue
            probe = ReferenceRecord(raw_text=phrase, source_document=DICTIONARY_SOURCE)
            try:
                key = self._policy.generate_key(probe)
            except Exception as exc:
                log.warning("Cannot key dictionary phrase %r: %s", phrase, exc)
                continue
            if key in self._targets:
                continue
            if target is None:
                target = self._host.resolve_link(phrase, "") or with_default_extension(phrase)
            self._targets[key] = target
            self._insert(phrase, key)
        self._built = True
        log.debug("Dictionary built with %d phrases", len(self._targets))

    def _insert(self, phrase: str, key: str) -> None:
        node = self._root
        for ch in fold_text(phrase):
            node = node.children.setdefault(ch, _TrieNode())
        node.key = key

    def _scan(self, text: str) -> list[tuple[int, int, str]]:
        folded = fold_text(text)
        require_wb = self._settings.require_word_boundaries
        out: list[tuple[int, int, str]] = []
        n = len(folded)
        i = 0
        while i < n:
            node = self._root
            j = i
            last_key: str | None = None
            last_end = i
            while j < n:
                nxt = node.children.get(folded[j])
                if nxt is None:
                    break
                node = nxt
                j += 1
                if node.key is not None:
                    last_key = node.key
                    last_end = j
            if last_key is not None and last_end > i:
                if not require_wb or (
                    _is_boundary(folded, i - 1) and _is_boundary(folded, last_end)
                ):
                    out.append((i, last_end, last_key))
                    i = last_end
                    continue
            i += 1
        return out

    def detect(self, document: str, text: str) -> list[DetectedSpan]:
        if not self._built:
            self.build()
        results: list[DetectedSpan] = []
        for start, end, key in self._scan(text):
            target = self._targets[key]
            results.append(
                DetectedSpan(
                    start=start,
                    end=end,
                    display=text[start:end],
                    target_key=target,
                    detector=self.name,
                )
            )
        return results


# ---------------------------------------------------------------------------
# Factory and runner
# ---------------------------------------------------------------------------

def build_detectors(
    settings: DetectionSettings,
    host: DocumentHost,
    policy: EquivalencePolicy,
) -> list[Detector]:
    """Instantiate the detectors selected by ``settings.mode``."""
    detectors: list[Detector] = []
    if settings.mode in ("regex", "all"):
        detectors.append(RegexDetector(settings.regex_rules))
    if settings.mode in ("dictionary", "all"):
        detectors.append(DictionaryDetector(host, settings.dictionary, policy))
    return detectors


async def run_detectors(
    detectors: Sequence[Detector],
    document: str,
    text: str,
) -> list[DetectedSpan]:
    """Run every detector over *text*; a failing detector yields no spans."""
    spans: list[DetectedSpan] = []
    for detector in detectors:
        name = getattr(detector, "name", type(detector).__name__)
        try:
            result = detector.detect(document, text)
            if inspect.isawaitable(result):
                result = await result
            found = []
            for item in result or ():
                if isinstance(item, DetectedSpan):
                    found.append(item)
                else:
                    log.warning("Detector %s returned a non-span %r", name, item)
        except Exception:
            log.warning("Detector %s failed on %s", name, document, exc_info=True)
            continue
        log.debug("Detector %s found %d raw matches in %s", name, len(found), document)
        spans.extend(found)
    return spans


async def detect_spans(
    detectors: Sequence[Detector],
    document: str,
    text: str,
) -> list[DetectedSpan]:
    """Run all detectors and resolve overlaps into the final span set."""
    if not detectors or not text:
        return []
    resolved = resolve_conflicts(await run_detectors(detectors, document, text))
    log.debug("Resolved to %d spans in %s", len(resolved), document)
    return resolved
