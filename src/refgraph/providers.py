"""Virtual reference providers.

A provider is any callable taking a :class:`ProviderContext` and
returning reference records (or an awaitable of them). Providers read the
document's metadata and return new records; they never modify documents.

Providers can be registered before the engine exists. The registry starts
``pending``, queueing registrations, and :meth:`ProviderRegistry.activate`
flushes the queue into the live list in registration order. Unregistering
stops a provider contributing to future document builds; records it
already produced stay indexed until those documents are rebuilt.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from enum import StrEnum

from refgraph.reference_types import DocumentMetadata, Origin, ReferenceRecord

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProviderContext:
    document: str
    metadata: DocumentMetadata
    # make_reference(link_text, display=None, position=0) -> ReferenceRecord
    make_reference: Callable[..., ReferenceRecord]


VirtualProvider = Callable[
    [ProviderContext],
    Iterable[ReferenceRecord] | Awaitable[Iterable[ReferenceRecord]],
]


class RegistryState(StrEnum):
    PENDING = "pending"
    READY = "ready"


class ProviderRegistration:
    """Handle returned by :meth:`ProviderRegistry.register`.

    Calling the handle (or :meth:`unregister`) removes the provider;
    repeated calls are no-ops.
    """

    __slots__ = ("_registry", "provider", "_active")

    def __init__(self, registry: ProviderRegistry, provider: VirtualProvider) -> None:
        self._registry = registry
        self.provider = provider
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unregister(self) -> None:
        if not self._active:
            return
        self._active = False
        self._registry._remove(self)

    def __call__(self) -> None:
        self.unregister()


class ProviderRegistry:
    def __init__(self) -> None:
        self._state = RegistryState.PENDING
        self._pending: list[ProviderRegistration] = []
        self._live: list[ProviderRegistration] = []

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def register(self, provider: VirtualProvider) -> ProviderRegistration:
        if not callable(provider):
            raise TypeError(f"provider must be callable, got {type(provider).__name__}")
        registration = ProviderRegistration(self, provider)
        if self._state is RegistryState.PENDING:
            self._pending.append(registration)
            log.debug("Queued provider %r until the index is ready", provider)
        else:
            self._live.append(registration)
        return registration

    def activate(self) -> int:
        """Move queued registrations into the live list; returns how many moved."""
        if self._state is RegistryState.READY:
            return 0
        flushed = len(self._pending)
        self._live.extend(self._pending)
        self._pending = []
        self._state = RegistryState.READY
        if flushed:
            log.info("Activated %d queued virtual provider(s)", flushed)
        return flushed

    def providers(self) -> tuple[VirtualProvider, ...]:
        """Live providers in registration order (empty while pending)."""
        return tuple(r.provider for r in self._live)

    def _remove(self, registration: ProviderRegistration) -> None:
        for bucket in (self._pending, self._live):
            if registration in bucket:
                bucket.remove(registration)
                return


def _provider_name(provider: VirtualProvider) -> str:
    return getattr(provider, "__qualname__", None) or type(provider).__name__


async def _call_provider(provider: VirtualProvider, context: ProviderContext) -> list[ReferenceRecord]:
    result = provider(context)
    if inspect.isawaitable(result):
        result = await result
    return list(result or ())


async def run_providers(
    providers: Sequence[VirtualProvider],
    context: ProviderContext,
) -> list[ReferenceRecord]:
    """Run providers concurrently and concatenate their records in provider order.

    A provider that raises contributes nothing. Records attributed to a
    different source document are dropped; every kept record is tagged
    ``virtual``.
    """
    if not providers:
        return []
    results = await asyncio.gather(
        *(_call_provider(p, context) for p in providers),
        return_exceptions=True,
    )
    records: list[ReferenceRecord] = []
    for provider, result in zip(providers, results, strict=True):
        name = _provider_name(provider)
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            log.warning(
                "Provider %s failed on %s: %s", name, context.document, result,
                exc_info=result,
            )
            continue
        for record in result:
            if not isinstance(record, ReferenceRecord):
                log.warning("Provider %s returned a non-record %r", name, record)
                continue
            if record.source_document != context.document:
                log.warning(
                    "Provider %s returned a record for %s while building %s; dropped",
                    name, record.source_document, context.document,
                )
                continue
            if record.origin is not Origin.VIRTUAL:
                record = replace(record, origin=Origin.VIRTUAL)
            records.append(record)
    return records
