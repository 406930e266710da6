"""
safeapply.facade - SafeApply Top-Level Facade
===============================================

This module implements the SafeApply facade, the single entry point that
wires the store, the apply engine, and the version-control adapter together
from one SafeApplyConfig.

Architecture Context:
    ┌──────────────────────────────────────────────────┐
    │               SafeApply (Facade)                  │
    │                                                   │
    │  ┌─────────────────────────────────────────────┐ │
    │  │         Orchestration Layer                   │ │
    │  │  ApplyEngine, ConflictResolver, Toolchain     │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │         Infrastructure Layer                  │ │
    │  │  ArtifactStore, RunSession, BackupManager     │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │         Integration Layer                     │ │
    │  │  GitAdapter, CommandRunner, FeatureProducer   │ │
    │  └─────────────────────────────────────────────┘ │
    └──────────────────────────────────────────────────┘

Usage:
    >>> async with SafeApply(project_path) as safeapply:
    ...     run = await safeapply.stage(producer, {"source": "react-app"})
    ...     result = await safeapply.apply("login")
    ...     result.raise_for_status()
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from safeapply.core.config import SafeApplyConfig
from safeapply.core.logging import configure_logging
from safeapply.core.models import (
    ApplyOptions,
    ApplyResult,
    RetentionStats,
    Run,
    StorageStats,
)
from safeapply.infrastructure.artifact_store import ArtifactStore, RunSession
from safeapply.integrations.producer import FeatureProducer, save_produced
from safeapply.integrations.vcs.base import VcsAdapter
from safeapply.integrations.vcs.factory import create_vcs_adapter
from safeapply.orchestration.apply_engine import ApplyEngine
from safeapply.orchestration.conflicts import ConflictResolver
from safeapply.orchestration.toolchain import Toolchain


logger = structlog.get_logger()


class SafeApply:
    """Top-level facade for staging and applying generated changes.

    Lifecycle:
        1. ``SafeApply(project_path, config)``
        2. ``await initialize()``: create the state root, apply retention
        3. ``await stage(producer)`` / ``await start_run()``: record a run
        4. ``await apply(feature)``: commit a feature into the target
        5. ``await shutdown()``

    Attributes:
        _config: SafeApply configuration.
        _store: Run and artifact persistence.
        _engine: The apply state machine.
        _initialized: Whether initialize() has been called.
    """

    def __init__(
        self,
        project_path: Union[str, Path] = ".",
        config: Optional[SafeApplyConfig] = None,
        *,
        resolver: Optional[ConflictResolver] = None,
        toolchain: Optional[Toolchain] = None,
        vcs_factory: Optional[Callable[[Path], VcsAdapter]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        configure_logs: bool = False,
    ) -> None:
        """Initialize the SafeApply facade.

        Args:
            project_path: Project root; also the default apply target.
            config: Configuration. Defaults to SafeApplyConfig(), which reads
                ``SAFEAPPLY_*`` environment variables.
            resolver: Conflict resolver for interactive applies.
            toolchain: Custom toolchain. Defaults to one built from
                ``config.apply``.
            vcs_factory: Custom adapter factory, e.g. a fake in tests.
            clock: Time source for run ids, timestamps, and retention.
            configure_logs: Install the structlog configuration for
                ``config.log_level`` during initialize(); JSON lines outside
                the "dev" environment.
        """
        self._config = config or SafeApplyConfig()
        self._project_path = Path(project_path)
        self._store = ArtifactStore(self._project_path, self._config.storage, clock=clock)
        self._vcs_config = self._config.vcs
        state_dir = self._config.storage.state_dir
        if state_dir not in self._vcs_config.protected_paths:
            self._vcs_config = self._vcs_config.model_copy(
                update={"protected_paths": [*self._vcs_config.protected_paths, state_dir]}
            )
        self._vcs_factory = vcs_factory or (
            lambda path: create_vcs_adapter(path, self._vcs_config)
        )
        self._engine = ApplyEngine(
            self._store,
            vcs_factory=self._vcs_factory,
            resolver=resolver,
            toolchain=toolchain or Toolchain(self._config.apply),
            config=self._config.apply,
            vcs_config=self._vcs_config,
        )
        self._configure_logs = configure_logs
        self._initialized = False
        self._logger = logger.bind(component="safeapply")

    # =========================================================================
    # Properties
    # =========================================================================
    @property
    def config(self) -> SafeApplyConfig:
        return self._config

    @property
    def store(self) -> ArtifactStore:
        return self._store

    @property
    def engine(self) -> ApplyEngine:
        return self._engine

    @property
    def project_path(self) -> Path:
        return self._project_path

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Lifecycle
    # =========================================================================
    async def initialize(self) -> RetentionStats:
        """Create the state root and apply the retention policy.

        Idempotent: a second call does nothing and reports empty stats.
        """
        if self._initialized:
            return RetentionStats()
        if self._configure_logs:
            configure_logging(
                self._config.log_level,
                json_output=self._config.environment != "dev",
            )

        stats = await self._store.initialize()
        self._initialized = True
        self._logger.info(
            "safeapply_initialized",
            project=str(self._project_path),
            environment=self._config.environment,
        )
        return stats

    async def shutdown(self) -> None:
        self._initialized = False
        self._logger.info("safeapply_shutdown")

    async def __aenter__(self) -> "SafeApply":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "SafeApply has not been initialized. "
                "Call await safeapply.initialize() or use 'async with SafeApply() as safeapply:'"
            )

    # =========================================================================
    # Staging
    # =========================================================================
    async def start_run(self, metadata: Optional[Mapping[str, Any]] = None) -> RunSession:
        self._ensure_initialized()
        return await self._store.start_run(metadata)

    async def stage(
        self,
        producer: FeatureProducer,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Run:
        """Run a producer inside a new run and save every feature it yields.

        The run ends SUCCESS, or FAILED with the error recorded if the
        producer raises (the error is re-raised).
        """
        session = await self.start_run(metadata)
        async with session:
            await save_produced(session, producer)
        return session.run

    # =========================================================================
    # Applying
    # =========================================================================
    async def apply(
        self,
        feature: str,
        target_path: Optional[Union[str, Path]] = None,
        options: Union[ApplyOptions, Mapping[str, Any], None] = None,
    ) -> ApplyResult:
        """Apply a staged feature; the target defaults to the project path."""
        self._ensure_initialized()
        return await self._engine.execute(
            feature,
            target_path if target_path is not None else self._project_path,
            options,
        )

    def vcs(self, path: Optional[Union[str, Path]] = None) -> VcsAdapter:
        """The version-control adapter for ``path`` (default: project path)."""
        return self._vcs_factory(Path(path) if path is not None else self._project_path)

    # =========================================================================
    # Store queries
    # =========================================================================
    async def list_features(self) -> list[str]:
        return await self._store.list_features()

    async def get_recent_runs(self, count: int = 10) -> list[Run]:
        return await self._store.get_recent_runs(count)

    async def cleanup(self) -> RetentionStats:
        return await self._store.cleanup()

    async def get_storage_stats(self) -> StorageStats:
        return await self._store.get_storage_stats()

    def __repr__(self) -> str:
        return (
            f"SafeApply(project={str(self._project_path)!r}, "
            f"initialized={self._initialized})"
        )
