"""Tests for refgraph.detectors: regex and dictionary detection."""
from __future__ import annotations

import asyncio
import re

import pytest

from refgraph.config import DetectionSettings, DictionarySettings, RegexRule
from refgraph.detectors import (
    DictionaryDetector,
    RegexDetector,
    build_detectors,
    compile_flags,
    detect_spans,
    expand_template,
    fold_text,
    run_detectors,
)
from refgraph.policies import get_policy
from refgraph.reference_types import DetectedSpan, DocumentMetadata


# ── regex ───────────────────────────────────────────────────────────


class TestTemplates:
    def test_expand_groups(self) -> None:
        m = re.match(r"(\w+)-(\d+)", "JIRA-12")
        assert m is not None
        assert expand_template("${1}/${2}", m) == "JIRA/12"

    def test_missing_group_is_empty(self) -> None:
        m = re.match(r"(\w+)", "abc")
        assert m is not None
        assert expand_template("x${3}y", m) == "xy"

    def test_flags(self) -> None:
        assert compile_flags("gi") == re.IGNORECASE
        assert compile_flags("ms") == re.MULTILINE | re.DOTALL
        assert compile_flags("") == 0

    def test_unknown_flag(self) -> None:
        with pytest.raises(ValueError):
            compile_flags("q")


class TestRegexDetector:
    def test_detects_with_target_template(self) -> None:
        detector = RegexDetector([RegexRule(r"\bTICKET-(\d+)\b", "Tickets/${1}")])
        spans = detector.detect("a.md", "see ticket-42 now")
        assert len(spans) == 1
        span = spans[0]
        assert (span.start, span.end) == (4, 13)
        assert span.target_key == "Tickets/42"
        assert span.display == "ticket-42"
        assert span.detector == "regex"

    def test_display_template(self) -> None:
        rule = RegexRule(r"RFC (\d+)", "RFC${1}", display_template="RFC-${1}")
        spans = RegexDetector([rule]).detect("a.md", "per RFC 9110")
        assert [s.display for s in spans] == ["RFC-9110"]

    def test_case_sensitive_without_flag(self) -> None:
        detector = RegexDetector([RegexRule("Alpha", "Alpha", flags="")])
        assert detector.detect("a.md", "alpha Alpha")[0].start == 6

    def test_bad_rules_are_skipped(self) -> None:
        rules = [RegexRule("(", "x"), RegexRule("ok", "Ok", flags="z"), RegexRule("ok", "Ok")]
        assert RegexDetector(rules).rule_count == 1

    def test_empty_matches_and_targets_ignored(self) -> None:
        detector = RegexDetector([RegexRule(r"x*", "X"), RegexRule(r"(y?)z", "${1}")])
        assert detector.detect("a.md", "abz") == []


# ── dictionary ──────────────────────────────────────────────────────


def _dictionary_host(host):
    host.add("Project Alpha.md")
    host.add(
        "Beta.md",
        metadata=DocumentMetadata(headings=("Setup Guide",), aliases=("B-Team",)),
    )
    host.add("AB.md")
    return host


class TestDictionaryDetector:
    def test_basenames_and_aliases(self, host) -> None:
        detector = DictionaryDetector(_dictionary_host(host), DictionarySettings(), get_policy())
        assert detector.phrase_count == 3
        spans = detector.detect("c.md", "The project alpha and beta plan")
        assert [(s.start, s.end, s.display, s.target_key) for s in spans] == [
            (4, 17, "project alpha", "Project Alpha.md"),
            (22, 26, "beta", "Beta.md"),
        ]

    def test_alias_targets_owning_document(self, host) -> None:
        detector = DictionaryDetector(_dictionary_host(host), DictionarySettings(), get_policy())
        spans = detector.detect("c.md", "ask the b-team")
        assert [s.target_key for s in spans] == ["Beta.md"]

    def test_word_boundaries(self, host) -> None:
        _dictionary_host(host)
        strict = DictionaryDetector(host, DictionarySettings(), get_policy())
        assert strict.detect("c.md", "alphabeta") == []
        loose = DictionaryDetector(
            host, DictionarySettings(require_word_boundaries=False), get_policy()
        )
        assert [(s.start, s.end) for s in loose.detect("c.md", "alphabeta")] == [(5, 9)]

    def test_headings_target_anchor(self, host) -> None:
        settings = DictionarySettings(basenames=False, aliases=False, headings=True)
        detector = DictionaryDetector(_dictionary_host(host), settings, get_policy())
        spans = detector.detect("c.md", "read the setup guide first")
        assert [s.target_key for s in spans] == ["Beta.md#Setup Guide"]

    def test_custom_phrases(self, host) -> None:
        settings = DictionarySettings(
            basenames=False, aliases=False, custom_list=True, custom_phrases=("Gamma Ray",),
        )
        detector = DictionaryDetector(host, settings, get_policy())
        spans = detector.detect("c.md", "a gamma ray burst")
        assert [(s.start, s.end, s.target_key) for s in spans] == [(2, 11, "Gamma Ray.md")]

    def test_short_phrases_ignored(self, host) -> None:
        host.add("AB.md")
        detector = DictionaryDetector(host, DictionarySettings(), get_policy())
        assert detector.phrase_count == 0
        assert detector.detect("c.md", "AB ab") == []

    def test_invalidate_picks_up_new_documents(self, host) -> None:
        host.add("Alpha.md")
        detector = DictionaryDetector(host, DictionarySettings(), get_policy())
        assert detector.phrase_count == 1
        host.add("Gamma.md")
        assert detector.phrase_count == 1
        detector.invalidate()
        assert detector.phrase_count == 2

    def test_fold_text_preserves_length(self) -> None:
        assert fold_text("straße") == "STRAßE"
        assert len(fold_text("İstanbul")) == len("İstanbul")


# ── factory and runner ──────────────────────────────────────────────


class _Boom:
    name = "boom"

    def detect(self, document: str, text: str) -> list[DetectedSpan]:
        raise RuntimeError("boom")


class _AsyncFixed:
    name = "async"

    async def detect(self, document: str, text: str) -> list[DetectedSpan]:
        return [DetectedSpan(start=0, end=3, display="abc", target_key="Abc.md")]


class _Malformed:
    name = "malformed"

    def detect(self, document: str, text: str) -> list:
        return [(0, 5, "x", "y"), DetectedSpan(start=4, end=7, display="def", target_key="Def.md")]


class TestRunners:
    def test_failing_detector_is_isolated(self) -> None:
        spans = asyncio.run(run_detectors([_Boom(), _AsyncFixed()], "a.md", "abc def"))
        assert [(s.start, s.end) for s in spans] == [(0, 3)]

    def test_detect_spans_resolves_conflicts(self) -> None:
        regex = RegexDetector([RegexRule("abc def", "Long")])
        spans = asyncio.run(detect_spans([_AsyncFixed(), regex], "a.md", "abc def"))
        assert [s.target_key for s in spans] == ["Long"]

    def test_empty_text(self) -> None:
        assert asyncio.run(detect_spans([_AsyncFixed()], "a.md", "")) == []

    def test_non_span_results_dropped(self) -> None:
        spans = asyncio.run(run_detectors([_Malformed(), _AsyncFixed()], "a.md", "abc def"))
        assert [s.target_key for s in spans] == ["Def.md", "Abc.md"]

    def test_detect_spans_skips_non_spans(self) -> None:
        spans = asyncio.run(detect_spans([_Malformed()], "a.md", "abc def"))
        assert spans == [DetectedSpan(start=4, end=7, display="def", target_key="Def.md")]

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            ("off", []),
            ("regex", ["regex"]),
            ("dictionary", ["dictionary"]),
            ("all", ["regex", "dictionary"]),
        ],
    )
    def test_build_detectors(self, host, mode: str, expected: list[str]) -> None:
        detectors = build_detectors(DetectionSettings(mode=mode), host, get_policy())
        assert [d.name for d in detectors] == expected
