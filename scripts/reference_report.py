#!/usr/bin/env python3
"""Index a folder of Markdown notes and print a reference report.

Builds the reference index over the vault under the chosen equivalence
policy, then writes JSON to stdout with summary messages to stderr.

Usage::

    python3 scripts/reference_report.py notes/ [--policy word-form] [--top 20]
    python3 scripts/reference_report.py notes/ --document Projects/Alpha.md
    python3 scripts/reference_report.py notes/ --key "ALPHA.MD"
    python3 scripts/reference_report.py notes/ --jsonl out/references.jsonl
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from refgraph.config import DETECTION_MODES, EngineSettings, load_settings
from refgraph.engine import ReferenceEngine
from refgraph.io_utils import dumps, save_jsonl
from refgraph.policies import PolicyKind
from refgraph.spans import line_starts, offset_to_position
from refgraph.vault import MarkdownVault

log = logging.getLogger("reference_report")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Index a Markdown vault and report its references."
    )
    parser.add_argument("vault", type=Path, help="Vault root folder")
    parser.add_argument(
        "--settings", type=Path, default=None,
        help="Engine settings JSON (default: built-in defaults)",
    )
    parser.add_argument(
        "--policy", choices=[str(k) for k in PolicyKind], default=None,
        help="Equivalence policy (overrides the settings file)",
    )
    parser.add_argument(
        "--detection", choices=sorted(DETECTION_MODES), default=None,
        help="Implicit detection mode (overrides the settings file)",
    )
    parser.add_argument(
        "--top", type=int, default=20,
        help="Number of most-referenced keys to list (default: 20)",
    )
    parser.add_argument(
        "--document", action="append", default=[],
        help="Include the view for this document (repeatable)",
    )
    parser.add_argument(
        "--key", action="append", default=[],
        help="Include the records for this canonical key (repeatable)",
    )
    parser.add_argument(
        "--jsonl", type=Path, default=None,
        help="Also write every indexed record as JSON Lines",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def resolve_settings(args: argparse.Namespace) -> EngineSettings:
    settings = load_settings(args.settings) if args.settings else EngineSettings()
    if args.policy:
        settings = replace(settings, policy=args.policy)
    if args.detection:
        settings = replace(
            settings, detection=replace(settings.detection, mode=args.detection)
        )
    return settings


def document_report(engine: ReferenceEngine, vault: MarkdownVault, document: str) -> dict[str, Any]:
    view = engine.get_document_view(document).to_dict()
    text = vault.read_text(document)
    starts = line_starts(text)
    for entry in view["outgoing"]:
        line, column = offset_to_position(text, entry["position"], starts=starts)
        entry["line"] = line + 1
        entry["column"] = column + 1
    return view


async def run(args: argparse.Namespace) -> dict[str, Any]:
    vault = MarkdownVault(args.vault)
    engine = ReferenceEngine(vault, settings=resolve_settings(args))
    result = await engine.rebuild_all()
    index = engine.index

    ranked = sorted(index.keys(), key=lambda k: (-index.count(k), k))
    report: dict[str, Any] = {
        "vault": str(args.vault),
        "policy": str(engine.policy.kind),
        "rebuild": asdict(result),
        "key_count": len(index),
        "record_count": index.total_records(),
        "top_keys": [{"key": k, "count": index.count(k)} for k in ranked[: args.top]],
    }
    if args.key:
        report["keys"] = {k: [r.to_dict() for r in engine.query(k)] for k in args.key}
    if args.document:
        report["documents"] = {d: document_report(engine, vault, d) for d in args.document}

    if args.jsonl:
        rows = [
            {"key": key, **record.to_dict()}
            for key in index.keys()
            for record in index.raw_records(key)
        ]
        save_jsonl(rows, args.jsonl)
        log.info("Wrote %d records to %s", len(rows), args.jsonl)
    return report


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    if not args.vault.is_dir():
        print(f"Error: vault folder not found: {args.vault}", file=sys.stderr)
        sys.exit(1)

    report = asyncio.run(run(args))
    log.info(
        "Indexed %d references under %d keys (%s)",
        report["record_count"], report["key_count"], report["policy"],
    )
    sys.stdout.buffer.write(dumps(report))
    sys.stdout.buffer.write(b"\n")


if __name__ == "__main__":
    main()
