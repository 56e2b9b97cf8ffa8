"""Build and test-stage orchestration over engines and the artifact store."""

from forgekit.orchestrate.build import BuildSummary, run_build
from forgekit.orchestrate.test_runner import (
    clear_test_environments,
    merge_test_reports,
    run_test_stage,
)

__all__ = [
    "BuildSummary",
    "clear_test_environments",
    "merge_test_reports",
    "run_build",
    "run_test_stage",
]
