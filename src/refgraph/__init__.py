"""Cross-document reference graph.

Indexes explicit links, implicitly detected mentions and provider-computed
references between documents under a pluggable equivalence policy.
"""
from __future__ import annotations

from refgraph.config import EngineSettings, load_settings
from refgraph.engine import RebuildResult, ReferenceEngine
from refgraph.index import ReferenceIndex
from refgraph.policies import EquivalencePolicy, PolicyKind, get_policy
from refgraph.providers import ProviderRegistration, ProviderRegistry
from refgraph.reference_types import DetectedSpan, DocumentMetadata, Origin, ReferenceRecord
from refgraph.spans import resolve_conflicts
from refgraph.views import DocumentView

__all__ = [
    "DetectedSpan",
    "DocumentMetadata",
    "DocumentView",
    "EngineSettings",
    "EquivalencePolicy",
    "Origin",
    "PolicyKind",
    "ProviderRegistration",
    "ProviderRegistry",
    "RebuildResult",
    "ReferenceEngine",
    "ReferenceIndex",
    "ReferenceRecord",
    "get_policy",
    "load_settings",
    "resolve_conflicts",
]
