"""Reference engine: wires a document host to the index.

For each document the engine assembles one record list from three
sources, in this order:

1. structured references parsed by the host
2. detected references: detector spans over the cleaned text, resolved
   through :func:`refgraph.spans.resolve_conflicts`
3. virtual references from registered providers

Records whose resolved target carries the exclusion property are dropped,
and the rest replace the document's previous contributions in the index.

Scheduling is cooperative (one event loop). Each document has a
generation counter: an update captures the counter when it starts and is
discarded on completion if a newer update (or a removal) has started
since. ``rebuild_all`` processes documents in chunks, yields to the loop
between chunks and stops early when :meth:`ReferenceEngine.request_stop`
is called.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from refgraph.config import EngineSettings
from refgraph.detectors import Detector, build_detectors, detect_spans
from refgraph.host import DocumentHost
from refgraph.index import ReferenceIndex
from refgraph.policies import EquivalencePolicy, get_policy
from refgraph.providers import (
    ProviderContext,
    ProviderRegistration,
    ProviderRegistry,
    VirtualProvider,
    run_providers,
)
from refgraph.reference_types import (
    DocumentMetadata,
    Origin,
    ReferenceRecord,
    make_record,
    split_link_text,
)
from refgraph.views import DocumentView, build_document_view

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RebuildResult:
    total: int = 0
    processed: int = 0
    failed: int = 0
    interrupted: bool = False
    elapsed: float = 0.0


def _flag_set(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


class ReferenceEngine:
    def __init__(
        self,
        host: DocumentHost,
        *,
        settings: EngineSettings | None = None,
        registry: ProviderRegistry | None = None,
        detectors: Iterable[Detector] | None = None,
    ) -> None:
        self._host = host
        self._settings = settings or EngineSettings()
        self._policy = get_policy(self._settings.policy)
        self.index = ReferenceIndex(self._policy)
        self._registry = registry or ProviderRegistry()
        self._registry.activate()
        if detectors is None:
            self._detectors = build_detectors(self._settings.detection, host, self._policy)
        else:
            self._detectors = list(detectors)
        self._generations: dict[str, int] = {}
        self._tasks: dict[str, asyncio.Task[bool]] = {}
        self._rebuild_token = 0
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def host(self) -> DocumentHost:
        return self._host

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def policy(self) -> EquivalencePolicy:
        return self._policy

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def detectors(self) -> tuple[Detector, ...]:
        return tuple(self._detectors)

    @property
    def pending_updates(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    # ------------------------------------------------------------------
    # Record assembly
    # ------------------------------------------------------------------

    def _resolve(self, link_text: str, document: str) -> str | None:
        path, _ = split_link_text(link_text)
        if not path:
            return None
        return self._host.resolve_link(path, document)

    def _reference_factory(self, document: str):
        def make_reference(
            link_text: str, display: str | None = None, position: int = 0,
        ) -> ReferenceRecord:
            return make_record(
                link_text,
                document,
                target_key=self._resolve(link_text, document),
                position=position,
                origin=Origin.VIRTUAL,
                display=display,
            )

        return make_reference

    async def _detected_records(self, document: str) -> list[ReferenceRecord]:
        if not self._detectors:
            return []
        text = self._host.get_cleaned_text(document)
        spans = await detect_spans(self._detectors, document, text)
        return [
            make_record(
                span.target_key,
                document,
                target_key=self._resolve(span.target_key, document),
                position=span.start,
                origin=Origin.DETECTED,
                display=span.display,
            )
            for span in spans
        ]

    def _is_excluded(self, target: str, document: str, prop: str) -> bool:
        try:
            meta = self._host.get_metadata(target)
        except Exception as exc:
            log.warning(
                "Cannot read metadata for %s referenced from %s: %s", target, document, exc,
            )
            return False
        return _flag_set(meta.properties.get(prop))

    def _drop_excluded(
        self, document: str, records: list[ReferenceRecord],
    ) -> list[ReferenceRecord]:
        prop = self._settings.exclude_property
        if not prop:
            return records
        excluded: dict[str, bool] = {}
        kept: list[ReferenceRecord] = []
        for record in records:
            target = record.target_key
            if target is not None:
                if target not in excluded:
                    excluded[target] = self._is_excluded(target, document, prop)
                if excluded[target]:
                    continue
            kept.append(record)
        if len(kept) != len(records):
            log.debug("Dropped %d references to excluded documents", len(records) - len(kept))
        return kept

    async def compute_records(
        self,
        document: str,
        references: Sequence[ReferenceRecord] | None = None,
    ) -> list[ReferenceRecord]:
        """Assemble every record *document* contributes, without touching the index.

        *references* replaces the host's structured references when the
        change event already carries a parsed snapshot.
        """
        if references is None:
            references = self._host.get_structured_references(document)
        records = list(references)
        records.extend(await self._detected_records(document))
        context = ProviderContext(
            document=document,
            metadata=self._host.get_metadata(document),
            make_reference=self._reference_factory(document),
        )
        records.extend(await run_providers(self._registry.providers(), context))
        return self._drop_excluded(document, records)

    # ------------------------------------------------------------------
    # Per-document maintenance
    # ------------------------------------------------------------------

    def _begin(self, document: str) -> int:
        token = self._generations.get(document, 0) + 1
        self._generations[document] = token
        return token

    def _is_current(self, document: str, token: int) -> bool:
        return self._generations.get(document) == token

    def _invalidate_detectors(self) -> None:
        for detector in self._detectors:
            invalidate = getattr(detector, "invalidate", None)
            if callable(invalidate):
                invalidate()

    async def update_document(
        self,
        document: str,
        references: Sequence[ReferenceRecord] | None = None,
    ) -> bool:
        """Recompute and replace *document*'s contributions.

        Returns False when the update was superseded by a newer update or
        removal of the same document, or when assembling the document
        failed; in both cases the index is left untouched.
        """
        token = self._begin(document)
        try:
            records = await self.compute_records(document, references)
        except Exception:
            log.warning("Failed to build references for %s", document, exc_info=True)
            return False
        if not self._is_current(document, token):
            log.debug("Discarding superseded update for %s", document)
            return False
        count = self.index.update_document(document, records)
        log.debug("Indexed %d references from %s", count, document)
        return True

    def schedule_update(
        self,
        document: str,
        references: Sequence[ReferenceRecord] | None = None,
    ) -> asyncio.Task[bool]:
        """Start an update task for *document*, cancelling any still in flight.

        Must be called with a running event loop.
        """
        previous = self._tasks.get(document)
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.get_running_loop().create_task(
            self.update_document(document, references),
            name=f"refgraph-update:{document}",
        )
        self._tasks[document] = task

        def _forget(done: asyncio.Task[bool]) -> None:
            if self._tasks.get(document) is done:
                del self._tasks[document]

        task.add_done_callback(_forget)
        return task

    def on_document_changed(
        self,
        document: str,
        references: Sequence[ReferenceRecord] | None = None,
    ) -> asyncio.Task[bool]:
        self._invalidate_detectors()
        return self.schedule_update(document, references)

    def remove_document(self, document: str) -> int:
        """Purge *document* and supersede any update still in flight for it."""
        task = self._tasks.pop(document, None)
        if task is not None and not task.done():
            task.cancel()
        self._begin(document)
        removed = self.index.remove_document(document)
        log.debug("Removed %d references from %s", removed, document)
        return removed

    def on_document_deleted(self, document: str) -> int:
        self._invalidate_detectors()
        return self.remove_document(document)

    async def drain(self) -> None:
        """Wait for every scheduled update to finish."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Full rebuild
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Ask a running rebuild to stop at the next chunk boundary."""
        self._stop_requested = True

    async def rebuild_all(self) -> RebuildResult:
        """Clear the index and rebuild it from every host document.

        A host failure on one document is logged and that document
        contributes nothing. On a stop request (or a newer rebuild
        starting) the index keeps the documents already processed.
        """
        self._stop_requested = False
        self._rebuild_token += 1
        token = self._rebuild_token
        started = time.perf_counter()

        documents = list(self._host.list_documents())
        self._invalidate_detectors()
        self.index.clear()
        total = len(documents)
        log.info("Rebuilding reference index over %d documents (%s)", total, self._policy.kind)

        processed = failed = 0
        chunk = self._settings.rebuild_chunk_size
        for offset in range(0, total, chunk):
            if self._stop_requested or token != self._rebuild_token:
                elapsed = time.perf_counter() - started
                log.info("Rebuild interrupted after %d of %d documents", offset, total)
                return RebuildResult(total, processed, failed, True, elapsed)
            for document in documents[offset:offset + chunk]:
                doc_token = self._begin(document)
                try:
                    records = await self.compute_records(document)
                except Exception:
                    failed += 1
                    log.warning("Failed to build references for %s", document, exc_info=True)
                    continue
                if self._is_current(document, doc_token):
                    self.index.update_document(document, records)
                processed += 1
            await asyncio.sleep(0)

        elapsed = time.perf_counter() - started
        log.info(
            "Rebuild finished: %d documents, %d keys, %d references in %.2fs (%d failed)",
            processed, len(self.index), self.index.total_records(), elapsed, failed,
        )
        return RebuildResult(total, processed, failed, False, elapsed)

    async def set_active_policy(self, policy_id: str) -> RebuildResult:
        """Switch equivalence policy and rebuild the index under it."""
        policy = get_policy(policy_id)
        self._policy = policy
        self._settings = replace(self._settings, policy=str(policy.kind))
        self.index.set_policy(policy)
        for detector in self._detectors:
            set_policy = getattr(detector, "set_policy", None)
            if callable(set_policy):
                set_policy(policy)
        log.info("Equivalence policy set to %s", policy.kind)
        return await self.rebuild_all()

    # ------------------------------------------------------------------
    # Queries and providers
    # ------------------------------------------------------------------

    def query(self, key: str) -> list[ReferenceRecord]:
        return self.index.query(key)

    def count(self, key: str) -> int:
        return self.index.count(key)

    def key_for(self, record: ReferenceRecord) -> str:
        return self._policy.generate_key(record)

    def get_document_view(self, document: str) -> DocumentView:
        try:
            metadata = self._host.get_metadata(document)
        except Exception:
            log.warning("No metadata for %s", document, exc_info=True)
            metadata = DocumentMetadata()
        return build_document_view(self.index, document, metadata)

    def register_virtual_provider(self, provider: VirtualProvider) -> ProviderRegistration:
        return self._registry.register(provider)

    def close(self) -> None:
        """Stop any rebuild and cancel scheduled updates."""
        self.request_stop()
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()
