"""
Stage and Apply Example: One Feature, One Conflict
==================================================

This example walks a generated feature through the whole pipeline:
a producer stages it inside a run, the feature is applied to a scratch
project, a local edit then causes a conflict, and the conflict is resolved
by reviewing it file by file.

Usage:
    python examples/stage_and_apply.py
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from safeapply import SafeApply
from safeapply.core.config import ApplyConfig, SafeApplyConfig
from safeapply.core.enums import ConflictPolicy, ReviewAction
from safeapply.integrations.producer import StaticFeatureProducer, build_feature_bundle
from safeapply.orchestration.conflicts import CallbackResolver


LOGIN_SCREEN = """\
class LoginScreen extends StatelessWidget {
  const LoginScreen({super.key});
}
"""


def _print_diff(conflict, diff_text: str) -> None:
    print(f"--- review {conflict.path} ---")
    print(diff_text)


async def main() -> None:
    """Stage a login feature, apply it, then resolve a conflicting edit."""
    project = Path(tempfile.mkdtemp(prefix="safeapply-demo-"))
    config = SafeApplyConfig(apply=ApplyConfig(git_integration=False))

    answers = iter([ReviewAction.DIFF, ReviewAction.OVERWRITE])
    resolver = CallbackResolver(
        choose_policy=lambda conflicts: ConflictPolicy.REVIEW,
        review=lambda conflict: next(answers, ReviewAction.SKIP),
        show_diff=_print_diff,
    )

    async with SafeApply(project, config, resolver=resolver, configure_logs=True) as safeapply:
        bundle = build_feature_bundle({"lib/login_screen.dart": LOGIN_SCREEN}, project)
        run = await safeapply.stage(
            StaticFeatureProducer({"login": bundle}), {"source": "react-app"}
        )
        print(f"Run {run.id}: {run.status.value}, features={[f.name for f in run.features]}")

        result = await safeapply.apply("login")
        print(f"First apply : {result.status.value} - {result.message}")

        (project / "lib" / "login_screen.dart").write_text("// edited by hand\n")

        result = await safeapply.apply("login")
        print(f"Second apply: {result.status.value} - {result.message}")

        result = await safeapply.apply("login", options={"interactive": True})
        print(f"Reviewed    : {result.status.value} - {result.message}")
        print(f"Backup      : {result.backup_path}")

        stats = await safeapply.get_storage_stats()
        print(f"State root  : {stats.total_size} bytes under {safeapply.store.state_root}")


if __name__ == "__main__":
    asyncio.run(main())
