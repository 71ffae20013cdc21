"""Tool-facing orchestration for SpecLinter.

:class:`FeatureWorkflow` wraps a project workspace and returns plain
dictionaries for the MCP tools: ``success`` plus the payload on the happy
path, ``error`` and ``suggestion`` when something went wrong.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .analysis import (
    AnalysisKind,
    GherkinAnalysis,
    GherkinRunReport,
    ImplementationValidation,
    SimilarityAnalysis,
    SpecAnalysis,
    TaskValidation,
    gherkin_scenario_count,
    render_gherkin_analysis,
    run_result_from_report,
    spec_result_from_analysis,
    tasks_from_analysis,
    validate_analysis,
)
from .errors import InvalidInputError, NotFoundError, SpecLinterError
from .models import DuplicateStrategy, SaveOptions, Task, TaskStatus
from .speclinter_logging import log_error_with_context, log_operation, log_performance
from .workspace import SpecLinterWorkspace, initialize_project

logger = logging.getLogger("speclinter.workflow")

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
AUTO_COMPLETE_QUALITY = 80


def _error_response(error: Exception, operation: str, **context: Any) -> Dict[str, Any]:
    """Convert an exception into the error dict returned by every tool."""
    log_error_with_context(error, {"operation": operation, **context})
    response: Dict[str, Any] = {
        "success": False,
        "error": str(error),
        "error_type": type(error).__name__,
    }
    if isinstance(error, SpecLinterError) and error.suggestion:
        response["suggestion"] = error.suggestion
    if isinstance(error, InvalidInputError):
        response["validation_errors"] = error.issues
    return response


class FeatureWorkflow:
    """Runs SpecLinter operations for one project root."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self._workspace: Optional[SpecLinterWorkspace] = None

    @property
    def workspace(self) -> SpecLinterWorkspace:
        if self._workspace is None:
            self._workspace = SpecLinterWorkspace.open(self.root)
        return self._workspace

    def close(self) -> None:
        if self._workspace is not None:
            self._workspace.close()
            self._workspace = None

    # ------------------------------------------------------------------
    # Project setup
    # ------------------------------------------------------------------

    @log_performance("init_project")
    def init_project(self, force_reinit: bool = False) -> Dict[str, Any]:
        """Create the ``.speclinter/`` layout in the project root."""
        try:
            self.close()
            result = initialize_project(self.root, force=force_reinit)
        except (SpecLinterError, OSError) as e:
            response = _error_response(e, "init_project", root=str(self.root))
            if not force_reinit and (self.root / ".speclinter").exists():
                response["suggestion"] = "Call again with force_reinit=True to overwrite the configuration."
            return response

        return {
            "success": True,
            **result,
            "message": f"SpecLinter initialized in {self.root}",
            "next_steps": [
                "Analyze a specification and pass the result to speclinter_process_spec_analysis",
                "Review .speclinter/config.json to tune deduplication thresholds",
            ],
        }

    # ------------------------------------------------------------------
    # Saving analysed specs
    # ------------------------------------------------------------------

    @log_performance("process_spec_analysis")
    def process_spec_analysis(
        self,
        analysis: Any,
        feature_name: str,
        original_spec: str = "",
        deduplication_strategy: Union[DuplicateStrategy, str, None] = None,
        similarity_threshold: Optional[float] = None,
        skip_similarity_check: bool = False,
    ) -> Dict[str, Any]:
        """Validate an AI spec analysis, turn it into tasks and save the feature."""
        try:
            with log_operation("process_spec_analysis", feature_name=feature_name):
                validated: SpecAnalysis = validate_analysis(AnalysisKind.SPEC, analysis)
                workspace = self.workspace
                tasks = tasks_from_analysis(
                    validated, feature_name, workspace.config.generation.coverage_target
                )
                spec_result = spec_result_from_analysis(validated, original_spec)
                options = SaveOptions(
                    skip_similarity_check=skip_similarity_check,
                    similarity_threshold=similarity_threshold,
                    on_similar_found=deduplication_strategy,
                )
                result = workspace.save_feature(feature_name, tasks, spec_result, options)
        except SpecLinterError as e:
            return _error_response(e, "process_spec_analysis", feature_name=feature_name)

        response: Dict[str, Any] = {
            "success": True,
            "feature_name": result.feature_name,
            "persisted": result.persisted,
            "strategy": result.strategy.value if result.strategy else None,
            "grade": spec_result.grade,
            "score": spec_result.score,
            "tasks": [task.to_dict() for task in tasks],
            "files_created": result.files,
            "ai_insights": {
                "technical_considerations": validated.technical_considerations,
                "business_value": validated.business_value,
                "scope": validated.scope.model_dump(),
                "quality_issues": [issue.model_dump() for issue in validated.quality.issues],
                "strengths": validated.quality.strengths,
            },
        }
        if result.merge_result:
            response["merge_result"] = result.merge_result.to_dict()
            response["tasks"] = [task.to_dict() for task in result.merge_result.merged_tasks]
        if result.duplicate_info:
            response["duplicate_info"] = result.duplicate_info.to_dict()

        if result.persisted:
            response["message"] = f"Saved feature '{result.feature_name}' with {len(response['tasks'])} tasks"
            response["next_steps"] = [
                f"Review the task files under {self.workspace.tasks_dir / result.feature_name}",
                "Track progress with speclinter_update_task_status",
            ]
        else:
            action = result.duplicate_info.recommended_action.value if result.duplicate_info else "merge"
            response["message"] = (
                f"Feature '{feature_name}' was not saved: duplicates found "
                f"(recommended action: {action})"
            )
            response["next_steps"] = [
                "Call again with deduplication_strategy set to merge, replace or skip",
                "Or choose a different feature_name if this is a separate feature",
            ]
        return response

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def find_similar(self, spec: str, threshold: Optional[float] = None) -> Dict[str, Any]:
        """Score stored features against ``spec`` with the lexical heuristic."""
        try:
            similar = self.workspace.find_similar(spec, threshold)
        except SpecLinterError as e:
            return _error_response(e, "find_similar")

        return {
            "success": True,
            "similar_features": [feature.to_dict() for feature in similar],
            "threshold": threshold if threshold is not None else self.workspace.config.deduplication.similarity_threshold,
            "message": f"Found {len(similar)} similar feature(s)" if similar else "No similar features found",
        }

    def process_similarity_analysis(self, analysis: Any, threshold: float = 0.8) -> Dict[str, Any]:
        """Validate an AI similarity judgement and keep matches above ``threshold``."""
        try:
            validated: SimilarityAnalysis = validate_analysis(AnalysisKind.SIMILARITY, analysis)
            if not 0.0 <= threshold <= 1.0:
                raise InvalidInputError([f"Similarity threshold must be between 0 and 1, got: {threshold}"])
            known = {feature["name"]: feature for feature in self.workspace.list_features()}
        except SpecLinterError as e:
            return _error_response(e, "process_similarity_analysis")

        similar: List[Dict[str, Any]] = []
        for judgement in validated.similar_features:
            if judgement.similarity_score < threshold:
                continue
            stored = known.get(judgement.feature_name)
            similar.append(
                {
                    "feature_name": judgement.feature_name,
                    "similarity": judgement.similarity_score,
                    "summary": "; ".join(judgement.similarity_reasons),
                    "task_count": stored["task_count"] if stored else 0,
                    "status": stored["status"] if stored else "unknown",
                    "ai_insights": {
                        "reasons": judgement.similarity_reasons,
                        "differences": judgement.differences,
                        "recommendation": judgement.recommendation,
                    },
                }
            )

        return {
            "success": True,
            "similar_features": similar,
            "ai_assessment": validated.overall_assessment,
            "ai_confidence": validated.confidence,
            "recommendations": [
                {
                    "feature": judgement.feature_name,
                    "action": judgement.recommendation,
                    "reasoning": "; ".join(judgement.similarity_reasons),
                }
                for judgement in validated.similar_features
            ],
            "next_steps": [
                "Review similar features and their differences",
                "Consider merging, refactoring, or keeping separate based on AI recommendations",
            ]
            if similar
            else ["No similar features found - proceed with implementation"],
        }

    # ------------------------------------------------------------------
    # Task tracking
    # ------------------------------------------------------------------

    def get_task_status(self, feature_name: str) -> Dict[str, Any]:
        try:
            status = self.workspace.feature_status(feature_name)
        except SpecLinterError as e:
            return _error_response(e, "get_task_status", feature_name=feature_name)
        return {"success": True, **status.to_dict()}

    def get_feature_tasks(self, feature_name: str) -> Dict[str, Any]:
        try:
            tasks = self.workspace.feature_tasks(feature_name)
        except SpecLinterError as e:
            return _error_response(e, "get_feature_tasks", feature_name=feature_name)
        return {
            "success": True,
            "feature_name": feature_name,
            "tasks": [task.to_dict() for task in tasks],
        }

    def update_task_status(
        self,
        feature_name: str,
        task_id: str,
        status: str,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            task = self.workspace.update_task_status(feature_name, task_id, status, notes)
            feature_status = self.workspace.feature_status(feature_name)
        except SpecLinterError as e:
            response = _error_response(e, "update_task_status", feature_name=feature_name, task_id=task_id)
            if isinstance(e, NotFoundError):
                response["next_steps"] = [f"List the tasks with speclinter_get_task_status('{feature_name}')"]
            return response

        return {
            "success": True,
            "task": task.to_dict(),
            "feature_status": feature_status.to_dict(),
            "message": f"Task {task_id} is now {task.status_emoji} {task.status.value}",
        }

    def list_features(self) -> Dict[str, Any]:
        try:
            features = self.workspace.list_features()
        except SpecLinterError as e:
            return _error_response(e, "list_features")
        return {"success": True, "features": features, "count": len(features)}

    # ------------------------------------------------------------------
    # Gherkin scenarios and test runs
    # ------------------------------------------------------------------

    @log_performance("process_gherkin_analysis")
    def process_gherkin_analysis(self, analysis: Any, feature_name: str, task_id: str) -> Dict[str, Any]:
        """Validate AI-written scenarios and store them as the task's ``.feature`` file."""
        try:
            validated: GherkinAnalysis = validate_analysis(AnalysisKind.GHERKIN, analysis)
            content = render_gherkin_analysis(validated)
            task, path = self.workspace.save_task_gherkin(feature_name, task_id, content)
        except SpecLinterError as e:
            response = _error_response(e, "process_gherkin_analysis", feature_name=feature_name, task_id=task_id)
            if isinstance(e, NotFoundError):
                response["next_steps"] = [f"List the tasks with speclinter_get_feature_tasks('{feature_name}')"]
            return response

        scenario_count = gherkin_scenario_count(validated)
        metrics = validated.quality_metrics
        readiness = validated.automation_readiness
        return {
            "success": True,
            "feature_name": feature_name,
            "task_id": task.id,
            "gherkin_file": str(path),
            "scenario_count": scenario_count,
            "quality_metrics": metrics.model_dump(),
            "automation_readiness": readiness.model_dump(),
            "ai_confidence": validated.ai_insights.confidence,
            "next_steps": [
                f"Generated {scenario_count} specific scenarios",
                f"Coverage score: {metrics.coverage_score:g}/100",
                f"Automation readiness: {readiness.score:g}/100",
                "Review scenarios and customize as needed",
            ],
        }

    def record_test_results(self, feature_name: str, results: Any, task_id: Optional[str] = None) -> Dict[str, Any]:
        """Store the outcome of a Gherkin test run executed outside SpecLinter."""
        try:
            report: GherkinRunReport = validate_analysis(AnalysisKind.TEST_RESULTS, results)
            stored = self.workspace.record_test_results(run_result_from_report(report, feature_name, task_id))
        except SpecLinterError as e:
            return _error_response(e, "record_test_results", feature_name=feature_name, task_id=task_id)

        next_steps = []
        if stored.failed:
            next_steps.append(f"Fix {stored.failed} failing scenario(s)")
        if stored.skipped:
            next_steps.append(f"Implement or unskip {stored.skipped} skipped scenario(s)")
        if not next_steps:
            next_steps.append("All scenarios pass - update the task status with speclinter_update_task_status")
        return {
            "success": True,
            **stored.to_dict(),
            "message": f"Recorded {stored.passed}/{stored.total} passing scenario(s) for {feature_name}",
            "next_steps": next_steps,
        }

    def get_test_results(
        self, feature_name: str, task_id: Optional[str] = None, limit: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            runs = self.workspace.list_test_results(feature_name, task_id, limit)
        except SpecLinterError as e:
            return _error_response(e, "get_test_results", feature_name=feature_name)
        return {
            "success": True,
            "feature_name": feature_name,
            "runs": [run.to_dict() for run in runs],
            "count": len(runs),
        }

    # ------------------------------------------------------------------
    # Implementation validation
    # ------------------------------------------------------------------

    @log_performance("process_implementation_validation")
    def process_implementation_validation(self, analysis: Any, feature_name: str) -> Dict[str, Any]:
        """Apply an AI implementation review to the feature's task statuses.

        A task judged fully implemented with a quality score of at least 80
        is completed; a completed task judged not implemented goes back to
        in progress. Judgements for unknown task ids are ignored.
        """
        try:
            validated: ImplementationValidation = validate_analysis(AnalysisKind.VALIDATION, analysis)
            current = {task.id: task for task in self.workspace.feature_tasks(feature_name)}
            updates = _status_updates(validated.task_validations, current)
            changed = self.workspace.apply_task_statuses(feature_name, updates) if updates else []
        except SpecLinterError as e:
            return _error_response(e, "process_implementation_validation", feature_name=feature_name)

        validations = validated.task_validations
        next_steps = sorted(validated.next_steps, key=lambda step: PRIORITY_ORDER[step.priority])
        return {
            "success": True,
            "feature_name": feature_name,
            "validation_results": {
                "overall_status": validated.overall_status,
                "completion_percentage": validated.completion_percentage,
                "quality_score": validated.quality_score,
                "tasks_validated": len(validations),
                "tasks_implemented": sum(
                    1
                    for task in validations
                    if task.implementation_status in ("fully_implemented", "partially_implemented")
                ),
                "critical_issues": sum(
                    1 for task in validations for issue in task.code_quality_issues if issue.severity == "critical"
                ),
                "security_concerns": sum(
                    1 for item in validated.security_considerations if item.status == "vulnerable"
                ),
            },
            "task_details": [
                {
                    "task_id": task.task_id,
                    "title": task.title,
                    "status": task.implementation_status,
                    "quality_score": task.quality_score,
                    "files": task.implementation_files,
                    "issues": len(task.code_quality_issues),
                    "recommendations": len(task.recommendations),
                }
                for task in validations
            ],
            "status_updates": [
                {"task_id": task.id, "status": task.status.value, "notes": task.notes} for task in changed
            ],
            "architectural_assessment": validated.architectural_alignment.model_dump(),
            "test_coverage": validated.test_coverage.model_dump(),
            "security_assessment": [item.model_dump() for item in validated.security_considerations],
            "performance_assessment": [item.model_dump() for item in validated.performance_considerations],
            "next_steps": [step.model_dump() for step in next_steps],
            "ai_insights": validated.ai_insights.model_dump(),
        }


def _status_updates(
    validations: List[TaskValidation], current: Dict[str, Task]
) -> List[Tuple[str, TaskStatus, str]]:
    updates = []
    for validation in validations:
        task = current.get(validation.task_id)
        if task is None:
            logger.warning(f"Ignoring validation for unknown task {validation.task_id}")
            continue
        if (
            validation.implementation_status == "fully_implemented"
            and validation.quality_score >= AUTO_COMPLETE_QUALITY
            and task.status is not TaskStatus.COMPLETED
        ):
            updates.append(
                (
                    task.id,
                    TaskStatus.COMPLETED,
                    f"Auto-updated based on AI validation (Quality Score: {validation.quality_score:g})",
                )
            )
        elif validation.implementation_status == "not_implemented" and task.status is TaskStatus.COMPLETED:
            updates.append(
                (task.id, TaskStatus.IN_PROGRESS, "Reverted based on AI validation - implementation not found")
            )
    return updates
