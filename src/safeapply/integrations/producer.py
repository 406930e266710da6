"""
safeapply.integrations.producer - Feature Producer Boundary
=============================================================

Producers are the external collaborators that generate code (converters,
code generators, AI pipelines). SafeApply only sees what they hand over: one
FeatureBundle per feature.

    ┌──────────────────┐  produce()   ┌──────────────┐  save_feature_artifacts
    │ FeatureProducer   │ ──────────→ │ save_produced │ ───────────────────────→ RunSession
    └──────────────────┘             └──────────────┘

build_feature_bundle() is the helper most producers need: given the files
they generated, it computes the preview diffs against the current target.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import structlog

from safeapply.core.models import DiffRecord, FeatureBundle, FeatureSummary, GeneratedFile
from safeapply.infrastructure.artifact_store import RunSession
from safeapply.infrastructure.diffing import unified_diff


logger = structlog.get_logger()

FileInput = Union[Iterable[GeneratedFile], Mapping[str, Union[str, bytes]]]


class FeatureProducer(ABC):
    """Source of generated features."""

    @abstractmethod
    async def produce(self) -> Iterable[tuple[str, FeatureBundle]]:
        """Return ``(feature_name, bundle)`` pairs in save order."""
        ...


class StaticFeatureProducer(FeatureProducer):
    """Producer over features that were generated up front."""

    def __init__(self, features: Mapping[str, FeatureBundle]) -> None:
        self._features = dict(features)

    async def produce(self) -> Iterable[tuple[str, FeatureBundle]]:
        return list(self._features.items())


def _as_generated_files(files: FileInput) -> list[GeneratedFile]:
    if isinstance(files, Mapping):
        return [
            GeneratedFile(relative_path=path, content=content)
            for path, content in files.items()
        ]
    return list(files)


def build_feature_bundle(
    files: FileInput,
    target_root: Union[str, Path],
    metadata: Optional[Mapping[str, Any]] = None,
) -> FeatureBundle:
    """Bundle generated files with their preview diffs.

    Each file is diffed against its current version under ``target_root``
    (or against ``/dev/null`` when it does not exist yet). Files identical
    to the target get no diff.

    Args:
        files: GeneratedFile objects, or a ``{relative_path: content}`` map.
        target_root: The tree the feature will later be applied to.
        metadata: Free-form metadata stored with the feature.

    Returns:
        The FeatureBundle.
    """
    target_root = Path(target_root)
    generated = _as_generated_files(files)

    diffs: list[DiffRecord] = []
    for item in generated:
        current_path = target_root / item.relative_path
        current = current_path.read_bytes() if current_path.is_file() else None
        diff_text = unified_diff(item.relative_path, current, item.content)
        if diff_text:
            diffs.append(DiffRecord(name=item.relative_path, content=diff_text))

    return FeatureBundle(metadata=dict(metadata or {}), files=generated, diffs=diffs)


async def save_produced(session: RunSession, producer: FeatureProducer) -> list[FeatureSummary]:
    """Save every feature a producer yields into the session's run."""
    summaries: list[FeatureSummary] = []
    for name, bundle in await producer.produce():
        summaries.append(await session.save_feature_artifacts(name, bundle))

    logger.info(
        "features_produced",
        run_id=session.id,
        features=[s.name for s in summaries],
    )
    return summaries
