"""Engine settings and their JSON persistence.

Settings are plain frozen dataclasses passed into the engine; nothing
reads them from global state. ``from_dict`` tolerates missing and unknown
keys so older settings files keep loading.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from refgraph.io_utils import load_json, save_json

DETECTION_MODES: frozenset[str] = frozenset({"off", "regex", "dictionary", "all"})


def _known(cls: type, payload: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in payload.items() if k in names}


@dataclass(frozen=True, slots=True)
class RegexRule:
    """One regex detection rule; templates use ``${N}`` for match group N."""

    pattern: str
    target_template: str
    flags: str = "i"
    display_template: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RegexRule:
        return cls(**_known(cls, payload))


@dataclass(frozen=True, slots=True)
class DictionarySettings:
    basenames: bool = True
    aliases: bool = True
    headings: bool = False
    custom_list: bool = False
    min_phrase_length: int = 3
    require_word_boundaries: bool = True
    custom_phrases: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DictionarySettings:
        data = _known(cls, payload)
        if "custom_phrases" in data:
            data["custom_phrases"] = tuple(
                str(p) for p in data["custom_phrases"] or () if isinstance(p, str)
            )
        if "min_phrase_length" in data:
            data["min_phrase_length"] = int(data["min_phrase_length"] or 0)
        return cls(**data)


@dataclass(frozen=True, slots=True)
class DetectionSettings:
    mode: str = "off"  # off | regex | dictionary | all
    regex_rules: tuple[RegexRule, ...] = ()
    dictionary: DictionarySettings = field(default_factory=DictionarySettings)

    def __post_init__(self) -> None:
        if self.mode not in DETECTION_MODES:
            raise ValueError(
                f"detection mode must be one of {sorted(DETECTION_MODES)}, got {self.mode!r}"
            )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DetectionSettings:
        return cls(
            mode=str(payload.get("mode", "off")),
            regex_rules=tuple(
                RegexRule.from_dict(r) for r in payload.get("regex_rules") or ()
                if isinstance(r, dict)
            ),
            dictionary=DictionarySettings.from_dict(payload.get("dictionary") or {}),
        )


@dataclass(frozen=True, slots=True)
class EngineSettings:
    policy: str = "case-insensitive"
    rebuild_chunk_size: int = 50
    exclude_property: str = "index-exclude"
    detection: DetectionSettings = field(default_factory=DetectionSettings)

    def __post_init__(self) -> None:
        if self.rebuild_chunk_size < 1:
            raise ValueError("rebuild_chunk_size must be at least 1")

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> EngineSettings:
        data = _known(cls, payload)
        data["detection"] = DetectionSettings.from_dict(payload.get("detection") or {})
        if "rebuild_chunk_size" in data:
            data["rebuild_chunk_size"] = int(data["rebuild_chunk_size"])
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_settings(path: Path) -> EngineSettings:
    payload = load_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Settings payload must be a JSON object: {path}")
    return EngineSettings.from_dict(payload)


def save_settings(settings: EngineSettings, path: Path) -> None:
    save_json(settings.to_dict(), path)
