"""Data models for the SpecLinter feature store.

This module contains the core data structures used throughout SpecLinter,
representing features, their tasks, duplicate detection results and the
outcome of save and merge operations.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


GRADES = ("A+", "A", "B", "C", "D", "F")


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class DuplicateStrategy(str, Enum):
    """Policy applied when a save collides with stored features."""

    MERGE = "merge"
    REPLACE = "replace"
    SKIP = "skip"
    PROMPT = "prompt"


class RecommendedAction(str, Enum):
    MERGE = "merge"
    REPLACE = "replace"
    RENAME = "rename"
    SKIP = "skip"


class DuplicateType(str, Enum):
    EXACT_MATCH = "exact_match"
    SIMILAR_FEATURES = "similar_features"


STATUS_EMOJI = {
    TaskStatus.COMPLETED: "✅",
    TaskStatus.IN_PROGRESS: "🔄",
    TaskStatus.BLOCKED: "🚫",
    TaskStatus.NOT_STARTED: "⏳",
}


def task_id_for(sequence: int) -> str:
    """Return the task id that belongs to a 0-based sequence index."""
    return f"task_{sequence + 1:02d}"


_TASK_ID_PREFIX = re.compile(r"^task_\d+_")


def gherkin_filename(task_id: str, test_file: str) -> str:
    """Prefix a Gherkin file name with its task id, dropping any earlier id prefix.

    Ids are unique within a feature, so the prefixed names never collide.
    """
    if not test_file:
        return ""
    base = _TASK_ID_PREFIX.sub("", test_file)
    return f"{task_id}_{base}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(slots=True)
class RelevantPattern:
    """Pointer to a code pattern documented in the project context."""

    name: str
    anchor: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "anchor": self.anchor}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelevantPattern":
        return cls(name=data["name"], anchor=data.get("anchor", ""))


@dataclass(slots=True)
class SpecResult:
    """Validated outcome of analysing a specification."""

    spec: str
    grade: str
    score: int
    improvements: List[str] = field(default_factory=list)
    missing_elements: List[str] = field(default_factory=list)

    def validate(self) -> List[str]:
        """Validate the result and return any issues."""
        issues = []

        if not self.spec or not self.spec.strip():
            issues.append("Specification text is required")
        if self.grade not in GRADES:
            issues.append(f"Invalid grade: {self.grade}")
        if isinstance(self.score, bool) or not isinstance(self.score, int):
            issues.append(f"Score must be an integer, got: {self.score!r}")
        elif not 0 <= self.score <= 100:
            issues.append(f"Score must be 0-100, got: {self.score}")

        return issues


@dataclass(slots=True)
class Feature:
    """A named specification together with its quality grade."""

    name: str
    spec: str
    grade: str
    score: int
    id: str = ""
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "spec": self.spec,
            "grade": self.grade,
            "score": self.score,
            "created_at": _iso(self.created_at),
        }


@dataclass(slots=True)
class Task:
    """One actionable unit of work belonging to a feature."""

    id: str
    title: str
    summary: str
    implementation: str
    acceptance_criteria: List[str]
    feature_name: str = ""
    slug: str = ""
    status: TaskStatus = TaskStatus.NOT_STARTED
    sequence: int = 0
    test_file: str = ""
    coverage_target: str = ""
    notes: str = ""
    gherkin: str = ""
    dependencies: List[str] = field(default_factory=list)
    blocks: List[str] = field(default_factory=list)
    relevant_patterns: List[RelevantPattern] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def status_emoji(self) -> str:
        return STATUS_EMOJI[self.status]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "feature_name": self.feature_name,
            "sequence": self.sequence,
            "title": self.title,
            "slug": self.slug,
            "summary": self.summary,
            "implementation": self.implementation,
            "status": self.status.value,
            "status_emoji": self.status_emoji,
            "acceptance_criteria": list(self.acceptance_criteria),
            "test_file": self.test_file,
            "coverage_target": self.coverage_target,
            "notes": self.notes,
            "gherkin": self.gherkin,
            "dependencies": list(self.dependencies),
            "blocks": list(self.blocks),
            "relevant_patterns": [pattern.to_dict() for pattern in self.relevant_patterns],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            title=data["title"],
            summary=data["summary"],
            implementation=data.get("implementation", ""),
            acceptance_criteria=list(data.get("acceptance_criteria", [])),
            feature_name=data.get("feature_name", ""),
            slug=data.get("slug", ""),
            status=TaskStatus(data.get("status", TaskStatus.NOT_STARTED.value)),
            sequence=data.get("sequence", 0),
            test_file=data.get("test_file", ""),
            coverage_target=data.get("coverage_target", ""),
            notes=data.get("notes", ""),
            gherkin=data.get("gherkin", ""),
            dependencies=list(data.get("dependencies", [])),
            blocks=list(data.get("blocks", [])),
            relevant_patterns=[RelevantPattern.from_dict(p) for p in data.get("relevant_patterns", [])],
        )

    def validate(self) -> List[str]:
        """Validate task data and return any issues."""
        issues = []
        label = self.id or self.title or "<unnamed>"

        if not self.id:
            issues.append("Task ID is required")
        if not self.title or not self.title.strip():
            issues.append(f"Task {label}: title is required")
        if not self.summary or not self.summary.strip():
            issues.append(f"Task {label}: summary is required")
        if not self.acceptance_criteria:
            issues.append(f"Task {label}: at least one acceptance criterion is required")
        if not isinstance(self.status, TaskStatus):
            issues.append(f"Task {label}: invalid status {self.status!r}")

        return issues


@dataclass(slots=True)
class SimilarFeature:
    """A stored feature whose spec scored above the similarity threshold."""

    feature_name: str
    score: float
    summary: str
    task_count: int
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_name": self.feature_name,
            "score": self.score,
            "summary": self.summary,
            "task_count": self.task_count,
            "status": self.status,
        }


@dataclass(slots=True)
class ExistingFeature:
    """Snapshot of a stored feature that has the exact requested name."""

    name: str
    spec: str
    grade: str
    score: int
    task_count: int
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "spec": self.spec,
            "grade": self.grade,
            "score": self.score,
            "task_count": self.task_count,
            "last_updated": _iso(self.last_updated),
        }


@dataclass(slots=True)
class DuplicateInfo:
    """Why a save collided with stored features and what to do about it."""

    type: DuplicateType
    recommended_action: RecommendedAction
    similar_features: List[SimilarFeature] = field(default_factory=list)
    existing_feature: Optional[ExistingFeature] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "existing_feature": self.existing_feature.to_dict() if self.existing_feature else None,
            "similar_features": [feature.to_dict() for feature in self.similar_features],
            "recommended_action": self.recommended_action.value,
        }


@dataclass(slots=True)
class MergeResult:
    """Outcome of reconciling an existing task list with a new one."""

    merged_tasks: List[Task]
    merged_spec: str
    original_task_count: int
    new_task_count: int
    duplicate_tasks_skipped: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merged_tasks": [task.to_dict() for task in self.merged_tasks],
            "merged_spec": self.merged_spec,
            "original_task_count": self.original_task_count,
            "new_task_count": self.new_task_count,
            "duplicate_tasks_skipped": self.duplicate_tasks_skipped,
        }


@dataclass(slots=True)
class SaveOptions:
    """Caller overrides for a single save; None falls back to configuration."""

    skip_similarity_check: bool = False
    similarity_threshold: Optional[float] = None
    on_similar_found: Optional[DuplicateStrategy] = None


@dataclass(slots=True)
class SaveResult:
    """What a save did. ``persisted`` is False for skip and prompt outcomes."""

    feature_name: str
    strategy: Optional[DuplicateStrategy]
    persisted: bool
    files: List[str] = field(default_factory=list)
    duplicate_info: Optional[DuplicateInfo] = None
    merge_result: Optional[MergeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_name": self.feature_name,
            "strategy": self.strategy.value if self.strategy else None,
            "persisted": self.persisted,
            "files": list(self.files),
            "duplicate_info": self.duplicate_info.to_dict() if self.duplicate_info else None,
            "merge_result": self.merge_result.to_dict() if self.merge_result else None,
        }


@dataclass(slots=True)
class FeatureStatus:
    """Progress summary of a feature computed from its task statuses."""

    feature_name: str
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    blocked_tasks: int = 0
    not_started_tasks: int = 0
    overall_status: str = TaskStatus.NOT_STARTED.value
    last_updated: Optional[datetime] = None

    @classmethod
    def from_tasks(cls, feature_name: str, tasks: Iterable[Task]) -> "FeatureStatus":
        tasks = list(tasks)
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1
        stamps = [task.updated_at for task in tasks if task.updated_at]
        return cls(
            feature_name=feature_name,
            total_tasks=len(tasks),
            completed_tasks=counts[TaskStatus.COMPLETED],
            in_progress_tasks=counts[TaskStatus.IN_PROGRESS],
            blocked_tasks=counts[TaskStatus.BLOCKED],
            not_started_tasks=counts[TaskStatus.NOT_STARTED],
            overall_status=_overall_status(counts, len(tasks)),
            last_updated=max(stamps) if stamps else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "feature_name": self.feature_name,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "in_progress_tasks": self.in_progress_tasks,
            "blocked_tasks": self.blocked_tasks,
            "not_started_tasks": self.not_started_tasks,
            "overall_status": self.overall_status,
            "last_updated": _iso(self.last_updated),
            "completion_rate": self.get_completion_rate(),
        }

    def get_completion_rate(self) -> float:
        """Get task completion rate as percentage."""
        if self.total_tasks == 0:
            return 0.0
        return (self.completed_tasks / self.total_tasks) * 100


def _overall_status(counts: Dict[TaskStatus, int], total: int) -> str:
    if total == 0:
        return TaskStatus.NOT_STARTED.value
    if counts[TaskStatus.COMPLETED] == total:
        return TaskStatus.COMPLETED.value
    if counts[TaskStatus.IN_PROGRESS]:
        return TaskStatus.IN_PROGRESS.value
    if counts[TaskStatus.BLOCKED]:
        return TaskStatus.BLOCKED.value
    # some work done, nothing active or blocked
    if counts[TaskStatus.COMPLETED]:
        return TaskStatus.IN_PROGRESS.value
    return TaskStatus.NOT_STARTED.value


def renumber_tasks(
    tasks: Iterable[Task],
    feature_name: str,
    *,
    start: int = 0,
    id_map: Optional[Dict[str, str]] = None,
) -> List[Task]:
    """Return copies of ``tasks`` with contiguous sequences from ``start``.

    Ids are regenerated from the sequence. ``dependencies`` and ``blocks``
    are rewritten to the new ids; ``id_map`` supplies translations for ids
    that live outside this group.
    """
    tasks = list(tasks)
    translations = dict(id_map or {})
    for offset, task in enumerate(tasks):
        translations[task.id] = task_id_for(start + offset)

    return [
        replace(
            task,
            id=task_id_for(start + offset),
            sequence=start + offset,
            feature_name=feature_name,
            test_file=gherkin_filename(task_id_for(start + offset), task.test_file),
            dependencies=[translations.get(ref, ref) for ref in task.dependencies],
            blocks=[translations.get(ref, ref) for ref in task.blocks],
            acceptance_criteria=list(task.acceptance_criteria),
            relevant_patterns=list(task.relevant_patterns),
        )
        for offset, task in enumerate(tasks)
    ]


class ScenarioOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class ScenarioResult:
    """Outcome of one Gherkin scenario in a recorded test run."""

    scenario: str
    status: ScenarioOutcome
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"scenario": self.scenario, "status": self.status.value, "error": self.error}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioResult":
        return cls(
            scenario=data["scenario"],
            status=ScenarioOutcome(data["status"]),
            error=data.get("error"),
        )


@dataclass(slots=True)
class GherkinRunResult:
    """Counts and per-scenario details of one recorded test run.

    ``task_id`` is None when the run covers the whole feature.
    """

    feature_name: str
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    coverage: Optional[float] = None
    details: List[ScenarioResult] = field(default_factory=list)
    task_id: Optional[str] = None
    id: Optional[int] = None
    run_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    def validate(self) -> List[str]:
        """Validate the run and return any issues."""
        issues = []

        for label in ("passed", "failed", "skipped"):
            value = getattr(self, label)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                issues.append(f"{label} must be a non-negative integer, got: {value!r}")
        if self.coverage is not None and not 0 <= self.coverage <= 100:
            issues.append(f"coverage must be 0-100, got: {self.coverage}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "feature_name": self.feature_name,
            "task_id": self.task_id,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "coverage": self.coverage,
            "details": [detail.to_dict() for detail in self.details],
            "run_at": _iso(self.run_at),
        }
