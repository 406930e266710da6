"""
SafeApply Test Suite
====================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/          → Tests for safeapply.core (config, models, exceptions)
    ├── test_infrastructure/→ Tests for safeapply.infrastructure (store, backups, trees)
    ├── test_integrations/  → Tests for safeapply.integrations (process, git, producers)
    ├── test_orchestration/ → Tests for safeapply.orchestration (engine, conflicts, tools)
    ├── test_integration/   → End-to-end scenarios through the facade
    └── conftest.py         → Shared pytest fixtures

Running Tests:
    pytest                          # Run all tests
    pytest tests/test_core/         # Run only core tests
    pytest --cov=safeapply          # Run with coverage report

Tests that need the git executable are skipped when it is not installed.
"""
