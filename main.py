"""MCP server exposing the SpecLinter feature store."""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from mcp.server.fastmcp import FastMCP

from speclinter import FeatureWorkflow, resolve_project_root
from speclinter.config import CONFIG_FILENAME, LOG_LEVEL_ENV, LoggingConfig, load_config
from speclinter.errors import SpecLinterError
from speclinter.speclinter_logging import setup_logging
from speclinter.workspace import PROJECT_MARKER_DIRECTORY

mcp = FastMCP("speclinter")


@contextmanager
def _workflow(project_root: Optional[str]) -> Iterator[FeatureWorkflow]:
    workflow = FeatureWorkflow(resolve_project_root(project_root))
    try:
        yield workflow
    finally:
        workflow.close()


def _root_error(error: ValueError) -> Dict[str, Any]:
    return {
        "success": False,
        "error": str(error),
        "suggestion": "Provide the 'project_root' argument or set the SPECLINTER_PROJECT_ROOT environment variable.",
    }


@mcp.tool()
def speclinter_init_project(force_reinit: bool = False, project_root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 1: Initialize SpecLinter in a project.
    Creates .speclinter/ with the default config, database and context directories,
    plus the tasks/ directory where feature task files are written."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.init_project(force_reinit=force_reinit)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_process_spec_analysis(
    analysis: Dict[str, Any],
    feature_name: str,
    original_spec: str = "",
    deduplication_strategy: Optional[str] = None,
    similarity_threshold: Optional[float] = None,
    skip_similarity_check: bool = False,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Save an AI spec analysis as a feature with tasks.
    The analysis must match the spec analysis schema (quality, tasks, scope, ...).
    deduplication_strategy is one of merge, replace, skip or prompt; with prompt
    (the default) nothing is saved when duplicates exist and duplicate_info
    describes them so you can call again with an explicit strategy."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.process_spec_analysis(
                analysis,
                feature_name,
                original_spec=original_spec,
                deduplication_strategy=deduplication_strategy,
                similarity_threshold=similarity_threshold,
                skip_similarity_check=skip_similarity_check,
            )
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_find_similar(
    spec: str,
    threshold: Optional[float] = None,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """Find stored features whose specification resembles the given text."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.find_similar(spec, threshold)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_process_similarity_analysis(
    analysis: Dict[str, Any],
    threshold: float = 0.8,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """Validate an AI similarity analysis and keep features at or above the threshold."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.process_similarity_analysis(analysis, threshold)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_get_task_status(feature_name: str, project_root: Optional[str] = None) -> Dict[str, Any]:
    """Report task counts and the overall status of a feature."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.get_task_status(feature_name)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_get_feature_tasks(feature_name: str, project_root: Optional[str] = None) -> Dict[str, Any]:
    """List a feature's tasks in order."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.get_feature_tasks(feature_name)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_update_task_status(
    feature_name: str,
    task_id: str,
    status: str,
    notes: Optional[str] = None,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """Set a task to not_started, in_progress, completed or blocked.
    Omitting notes keeps the existing notes. The task file and _active.md are refreshed."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.update_task_status(feature_name, task_id, status, notes)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_process_gherkin_analysis(
    analysis: Dict[str, Any],
    feature_name: str,
    task_id: str,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 3: Store AI-written Gherkin scenarios for a task.
    The analysis must match the Gherkin analysis schema (feature, qualityMetrics,
    automationReadiness, ...). The scenarios replace the placeholder .feature file
    of the task and are kept across later status updates."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.process_gherkin_analysis(analysis, feature_name, task_id)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_record_test_results(
    feature_name: str,
    results: Dict[str, Any],
    task_id: Optional[str] = None,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """Record the outcome of a Gherkin test run you executed.
    results holds passed, failed and skipped counts, an optional coverage
    percentage and per-scenario details. Omit task_id for a whole-feature run."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.record_test_results(feature_name, results, task_id)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_get_test_results(
    feature_name: str,
    task_id: Optional[str] = None,
    limit: Optional[int] = None,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """List recorded test runs of a feature, newest first."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.get_test_results(feature_name, task_id, limit)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_validate_implementation(
    analysis: Dict[str, Any],
    feature_name: str,
    project_root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 4: Apply an AI review of the implementation to the feature's tasks.
    The analysis must match the implementation validation schema. Tasks judged
    fully implemented with quality 80 or more are completed; completed tasks
    judged not implemented go back to in_progress."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.process_implementation_validation(analysis, feature_name)
    except ValueError as e:
        return _root_error(e)


@mcp.tool()
def speclinter_list_features(project_root: Optional[str] = None) -> Dict[str, Any]:
    """Enumerate stored features with their grade and progress."""

    try:
        with _workflow(project_root) as workflow:
            return workflow.list_features()
    except ValueError as e:
        return _root_error(e)


@mcp.resource("speclinter://features")
def resource_features():
    """Resource view exposing stored features for discovery."""

    try:
        with _workflow(None) as workflow:
            result = workflow.list_features()
    except ValueError:
        result = {"success": False}

    if not result.get("success"):
        return "No SpecLinter project detected. Run speclinter_init_project or set SPECLINTER_PROJECT_ROOT."

    features = result["features"]
    if not features:
        return "No features have been saved yet."

    lines = ["SpecLinter Features"]
    for feature in features:
        lines.append("")
        lines.append(f"- {feature['name']} (grade {feature['grade']}, score {feature['score']})")
        lines.append(f"  Tasks: {feature['task_count']}, status: {feature['status']}")

    return "\n".join(lines)


def _project_logging() -> Optional[LoggingConfig]:
    """Logging settings of the project the server starts in, if it has one."""
    try:
        config_path = resolve_project_root() / PROJECT_MARKER_DIRECTORY / CONFIG_FILENAME
        return load_config(config_path).logging
    except (SpecLinterError, ValueError):
        return None


def _configure_logging() -> None:
    logging_config = _project_logging()
    if logging_config is None:
        setup_logging(os.getenv(LOG_LEVEL_ENV, "INFO").upper())
        return
    log_file = resolve_project_root() / logging_config.file if logging_config.file else None
    setup_logging(logging_config.level.upper(), log_file)


if __name__ == "__main__":
    _configure_logging()
    mcp.run(transport="stdio")
