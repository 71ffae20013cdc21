"""Feature repository over the SQLite store.

Reads and writes go through a :class:`FeatureUnitOfWork` bound to one
session. :meth:`FeatureRepository.transaction` hands one out under the
process-wide write lock so a read-modify-write sequence commits or rolls
back as a whole; the convenience methods on the repository each run in
their own short transaction.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .database import Database, FeatureRecord, GherkinRunRecord, TaskRecord
from .errors import InvalidInputError, NotFoundError
from .models import (
    ExistingFeature,
    Feature,
    FeatureStatus,
    GherkinRunResult,
    RelevantPattern,
    ScenarioResult,
    SpecResult,
    Task,
    TaskStatus,
    renumber_tasks,
)

logger = logging.getLogger("speclinter.repository")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def coerce_status(status: Union[TaskStatus, str]) -> TaskStatus:
    try:
        return TaskStatus(status)
    except ValueError:
        valid = ", ".join(s.value for s in TaskStatus)
        raise InvalidInputError([f"Invalid status '{status}'. Expected one of: {valid}"]) from None


def _task_content(task: Task) -> Tuple[Any, ...]:
    """Fields that decide whether a stored task changed."""
    return (
        task.title,
        task.slug,
        task.summary,
        task.implementation,
        task.status.value,
        tuple(task.acceptance_criteria),
        task.test_file,
        task.coverage_target,
        task.notes,
        task.gherkin,
        tuple(task.dependencies),
        tuple(task.blocks),
        tuple((p.name, p.anchor) for p in task.relevant_patterns),
    )


def _to_feature(record: FeatureRecord) -> Feature:
    return Feature(
        id=record.id,
        name=record.name,
        spec=record.spec,
        grade=record.grade,
        score=record.score,
        created_at=_as_utc(record.created_at),
    )


def _to_task(record: TaskRecord) -> Task:
    return Task(
        id=record.id,
        feature_name=record.feature_name,
        sequence=record.sequence,
        title=record.title,
        slug=record.slug,
        summary=record.summary,
        implementation=record.implementation or "",
        status=TaskStatus(record.status),
        acceptance_criteria=list(record.acceptance_criteria or []),
        test_file=record.test_file or "",
        coverage_target=record.coverage_target or "",
        notes=record.notes or "",
        gherkin=record.gherkin or "",
        dependencies=list(record.dependencies or []),
        blocks=list(record.blocks or []),
        relevant_patterns=[RelevantPattern.from_dict(p) for p in (record.relevant_patterns or [])],
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


def _to_record(task: Task) -> TaskRecord:
    return TaskRecord(
        feature_name=task.feature_name,
        id=task.id,
        sequence=task.sequence,
        title=task.title,
        slug=task.slug,
        summary=task.summary,
        implementation=task.implementation,
        status=task.status.value,
        acceptance_criteria=list(task.acceptance_criteria),
        test_file=task.test_file,
        coverage_target=task.coverage_target,
        notes=task.notes,
        gherkin=task.gherkin,
        dependencies=list(task.dependencies),
        blocks=list(task.blocks),
        relevant_patterns=[p.to_dict() for p in task.relevant_patterns],
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _to_run(record: GherkinRunRecord) -> GherkinRunResult:
    return GherkinRunResult(
        id=record.id,
        feature_name=record.feature_name,
        task_id=record.task_id,
        passed=record.passed,
        failed=record.failed,
        skipped=record.skipped,
        coverage=record.coverage,
        details=[ScenarioResult.from_dict(d) for d in (record.details or [])],
        run_at=_as_utc(record.run_at),
    )


class FeatureUnitOfWork:
    """Repository operations bound to a single open session."""

    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _feature_record(self, name: str) -> Optional[FeatureRecord]:
        return self.session.scalars(select(FeatureRecord).where(FeatureRecord.name == name)).first()

    def _task_records(self, name: str) -> List[TaskRecord]:
        return list(
            self.session.scalars(
                select(TaskRecord).where(TaskRecord.feature_name == name).order_by(TaskRecord.sequence)
            )
        )

    def get(self, name: str) -> Optional[Feature]:
        record = self._feature_record(name)
        return _to_feature(record) if record else None

    def require(self, name: str) -> Feature:
        feature = self.get(name)
        if feature is None:
            raise NotFoundError("feature", name)
        return feature

    def get_existing(self, name: str) -> Optional[ExistingFeature]:
        """Snapshot of the feature called ``name`` for duplicate reporting."""
        record = self._feature_record(name)
        if record is None:
            return None
        tasks = self.get_tasks(name)
        stamps = [task.updated_at for task in tasks if task.updated_at]
        return ExistingFeature(
            name=record.name,
            spec=record.spec,
            grade=record.grade,
            score=record.score,
            task_count=len(tasks),
            last_updated=max(stamps) if stamps else _as_utc(record.created_at),
        )

    def get_all(self) -> List[Tuple[str, str]]:
        """All ``(name, spec)`` pairs ordered by name.

        This is a full scan; fine for the tens to hundreds of features a
        project holds.
        """
        rows = self.session.execute(select(FeatureRecord.name, FeatureRecord.spec).order_by(FeatureRecord.name))
        return [(name, spec) for name, spec in rows]

    def task_count(self, name: str) -> int:
        return self.session.scalar(
            select(func.count()).select_from(TaskRecord).where(TaskRecord.feature_name == name)
        ) or 0

    def get_tasks(self, name: str) -> List[Task]:
        return [_to_task(record) for record in self._task_records(name)]

    def get_test_results(self, name: str, task_id: Optional[str] = None, limit: Optional[int] = None) -> List[GherkinRunResult]:
        """Recorded runs for a feature, newest first; ``task_id`` narrows to one task."""
        self.require(name)
        query = select(GherkinRunRecord).where(GherkinRunRecord.feature_name == name)
        if task_id is not None:
            query = query.where(GherkinRunRecord.task_id == task_id)
        query = query.order_by(GherkinRunRecord.run_at.desc(), GherkinRunRecord.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return [_to_run(record) for record in self.session.scalars(query)]

    def feature_status(self, name: str) -> FeatureStatus:
        self.require(name)
        return FeatureStatus.from_tasks(name, self.get_tasks(name))

    def list_features(self) -> List[Dict[str, Any]]:
        tasks_by_feature: Dict[str, List[Task]] = {}
        for record in self.session.scalars(select(TaskRecord).order_by(TaskRecord.feature_name, TaskRecord.sequence)):
            tasks_by_feature.setdefault(record.feature_name, []).append(_to_task(record))

        features = []
        for record in self.session.scalars(select(FeatureRecord).order_by(FeatureRecord.name)):
            status = FeatureStatus.from_tasks(record.name, tasks_by_feature.get(record.name, []))
            features.append(
                {
                    "name": record.name,
                    "grade": record.grade,
                    "score": record.score,
                    "task_count": status.total_tasks,
                    "status": status.overall_status,
                    "completion_rate": status.get_completion_rate(),
                    "created_at": _as_utc(record.created_at).isoformat(),
                }
            )
        return features

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, feature_name: str, spec_result: SpecResult, tasks: List[Task]) -> Tuple[Feature, List[Task]]:
        """Insert the feature or replace it and its whole task list.

        The feature id and creation time survive a replace, and a task whose
        content did not change keeps its timestamps, so replaying the same
        save leaves the store unchanged.
        """
        now = self._clock()
        record = self._feature_record(feature_name)
        if record is None:
            record = FeatureRecord(id=f"feat_{uuid.uuid4().hex[:16]}", name=feature_name, created_at=now)
            self.session.add(record)
        record.spec = spec_result.spec
        record.grade = spec_result.grade
        record.score = spec_result.score

        old_records = self._task_records(feature_name)
        previous = {record.id: _to_task(record) for record in old_records}
        stored: List[Task] = []
        for task in renumber_tasks(tasks, feature_name):
            prior = previous.get(task.id)
            if prior is None:
                task.created_at = task.updated_at = now
            elif _task_content(prior) == _task_content(task):
                task.created_at, task.updated_at = prior.created_at, prior.updated_at
            else:
                task.created_at, task.updated_at = prior.created_at, now
            stored.append(task)

        # the old rows must be gone before the new ones reuse their keys
        for old in old_records:
            self.session.delete(old)
        self.session.flush()
        self.session.add_all(_to_record(task) for task in stored)
        self.session.flush()

        logger.debug(f"Upserted feature {feature_name} with {len(stored)} tasks")
        return _to_feature(record), stored

    def update_task_status(
        self,
        name: str,
        task_id: str,
        status: Union[TaskStatus, str],
        notes: Optional[str] = None,
    ) -> Task:
        """Set a task's status; ``notes=None`` leaves the notes untouched."""
        status = coerce_status(status)
        record = self._task_record(name, task_id)

        record.status = status.value
        if notes is not None:
            record.notes = notes
        record.updated_at = self._clock()
        self.session.flush()
        return _to_task(record)

    def set_task_gherkin(self, name: str, task_id: str, content: str) -> Task:
        """Store rendered Gherkin scenarios on a task."""
        record = self._task_record(name, task_id)
        if record.gherkin != content:
            record.gherkin = content
            record.updated_at = self._clock()
            self.session.flush()
        return _to_task(record)

    def record_test_results(self, run: GherkinRunResult) -> GherkinRunResult:
        """Append one test run; the feature and any named task must exist."""
        issues = run.validate()
        if issues:
            raise InvalidInputError(issues)
        if run.task_id is None:
            self.require(run.feature_name)
        else:
            self._task_record(run.feature_name, run.task_id)

        record = GherkinRunRecord(
            feature_name=run.feature_name,
            task_id=run.task_id,
            passed=run.passed,
            failed=run.failed,
            skipped=run.skipped,
            coverage=run.coverage,
            details=[detail.to_dict() for detail in run.details],
            run_at=run.run_at or self._clock(),
        )
        self.session.add(record)
        self.session.flush()
        logger.debug(f"Recorded test run {record.id} for {run.feature_name}")
        return _to_run(record)

    def _task_record(self, name: str, task_id: str) -> TaskRecord:
        self.require(name)
        record = self.session.get(TaskRecord, {"feature_name": name, "id": task_id})
        if record is None:
            raise NotFoundError("task", task_id, name)
        return record


class FeatureRepository:
    """Durable store of features and their tasks."""

    def __init__(self, database: Database, *, clock: Optional[Clock] = None):
        self.database = database
        self._clock = clock or utcnow
        self._write_lock = threading.RLock()

    @property
    def write_lock(self) -> threading.RLock:
        """The lock held by :meth:`transaction`; re-entrant for the owning thread."""
        return self._write_lock

    @contextmanager
    def transaction(self) -> Iterator[FeatureUnitOfWork]:
        """Serialize writers and commit everything done in the block together.

        Usage:
            with repository.transaction() as uow:
                tasks = uow.get_tasks(name)
                uow.upsert(name, spec_result, tasks + extra)
        """
        with self._write_lock:
            with self.database.session() as session:
                yield FeatureUnitOfWork(session, self._clock)

    @contextmanager
    def _reader(self) -> Iterator[FeatureUnitOfWork]:
        with self.database.session() as session:
            yield FeatureUnitOfWork(session, self._clock)

    def get(self, name: str) -> Optional[Feature]:
        with self._reader() as uow:
            return uow.get(name)

    def require(self, name: str) -> Feature:
        with self._reader() as uow:
            return uow.require(name)

    def get_existing(self, name: str) -> Optional[ExistingFeature]:
        with self._reader() as uow:
            return uow.get_existing(name)

    def get_all(self) -> List[Tuple[str, str]]:
        with self._reader() as uow:
            return uow.get_all()

    def task_count(self, name: str) -> int:
        with self._reader() as uow:
            return uow.task_count(name)

    def get_tasks(self, name: str) -> List[Task]:
        with self._reader() as uow:
            return uow.get_tasks(name)

    def feature_status(self, name: str) -> FeatureStatus:
        with self._reader() as uow:
            return uow.feature_status(name)

    def list_features(self) -> List[Dict[str, Any]]:
        with self._reader() as uow:
            return uow.list_features()

    def snapshot(self, name: str) -> Optional[Tuple[Feature, List[Task]]]:
        """The committed feature and its tasks, or None when it is not stored."""
        with self._reader() as uow:
            feature = uow.get(name)
            if feature is None:
                return None
            return feature, uow.get_tasks(name)

    def get_test_results(self, name: str, task_id: Optional[str] = None, limit: Optional[int] = None) -> List[GherkinRunResult]:
        with self._reader() as uow:
            return uow.get_test_results(name, task_id, limit)

    def upsert(self, feature_name: str, spec_result: SpecResult, tasks: List[Task]) -> Tuple[Feature, List[Task]]:
        with self.transaction() as uow:
            return uow.upsert(feature_name, spec_result, tasks)

    def update_task_status(
        self,
        name: str,
        task_id: str,
        status: Union[TaskStatus, str],
        notes: Optional[str] = None,
    ) -> Task:
        with self.transaction() as uow:
            return uow.update_task_status(name, task_id, status, notes)
