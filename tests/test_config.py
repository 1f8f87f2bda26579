"""Tests for refgraph.config: settings defaults and persistence."""
from __future__ import annotations

from pathlib import Path

import pytest

from refgraph.config import (
    DetectionSettings,
    DictionarySettings,
    EngineSettings,
    RegexRule,
    load_settings,
    save_settings,
)
from refgraph.io_utils import save_json


class TestDefaults:
    def test_engine_defaults(self) -> None:
        settings = EngineSettings()
        assert settings.policy == "case-insensitive"
        assert settings.rebuild_chunk_size == 50
        assert settings.exclude_property == "index-exclude"
        assert settings.detection.mode == "off"
        assert settings.detection.dictionary.min_phrase_length == 3

    def test_frozen(self) -> None:
        with pytest.raises(AttributeError):
            EngineSettings().policy = "base-name"  # type: ignore[misc]

    def test_invalid_mode(self) -> None:
        with pytest.raises(ValueError):
            DetectionSettings(mode="sometimes")

    def test_invalid_chunk_size(self) -> None:
        with pytest.raises(ValueError):
            EngineSettings(rebuild_chunk_size=0)


class TestFromDict:
    def test_tolerates_unknown_and_missing_keys(self) -> None:
        settings = EngineSettings.from_dict({"policy": "word-form", "legacy_flag": True})
        assert settings.policy == "word-form"
        assert settings.detection == DetectionSettings()

    def test_nested_detection(self) -> None:
        settings = EngineSettings.from_dict({
            "rebuild_chunk_size": "10",
            "detection": {
                "mode": "all",
                "regex_rules": [
                    {"pattern": r"JIRA-(\d+)", "target_template": "Issues/${1}", "flags": "i"},
                    "not a rule",
                ],
                "dictionary": {"headings": True, "custom_phrases": ["Alpha", 3]},
            },
        })
        assert settings.rebuild_chunk_size == 10
        assert settings.detection.mode == "all"
        assert settings.detection.regex_rules == (
            RegexRule(pattern=r"JIRA-(\d+)", target_template="Issues/${1}", flags="i"),
        )
        assert settings.detection.dictionary == DictionarySettings(
            headings=True, custom_phrases=("Alpha",),
        )


class TestPersistence:
    def test_save_then_load(self, tmp_path: Path) -> None:
        settings = EngineSettings(
            policy="unique-files",
            detection=DetectionSettings(
                mode="regex", regex_rules=(RegexRule(r"RFC (\d+)", "RFC${1}"),),
            ),
        )
        path = tmp_path / "conf" / "settings.json"
        save_settings(settings, path)
        assert load_settings(path) == settings

    def test_non_object_payload(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        save_json([1, 2], path)
        with pytest.raises(ValueError):
            load_settings(path)
