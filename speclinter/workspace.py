"""Project workspace for SpecLinter.

A project is any directory holding a ``.speclinter/`` folder with the
configuration and database. :class:`SpecLinterWorkspace` is the explicit
handle that owns both and wires the storage components together; nothing
is cached at module level.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import CONFIG_FILENAME, SpecLinterConfig, load_config, write_default_config
from .database import Database
from .deduplication import DeduplicationEngine
from .errors import InvalidInputError, NotInitializedError, SpecLinterError
from .materializer import GHERKIN_DIRNAME, FeatureFileMaterializer
from .merge import TaskMergeResolver
from .models import (
    FeatureStatus,
    GherkinRunResult,
    SaveOptions,
    SaveResult,
    SimilarFeature,
    SpecResult,
    Task,
    TaskStatus,
)
from .repository import FeatureRepository
from .similarity import SimilarityScorer
from .speclinter_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    log_task_status_update,
    observability_hooks,
)

logger = logging.getLogger("speclinter.workspace")

PROJECT_MARKER_DIRECTORY = ".speclinter"
PROJECT_ROOT_ENV = "SPECLINTER_PROJECT_ROOT"
GITIGNORE_CONTENT = "cache/\n*.db\n*.db-journal\n"


def resolve_project_root(explicit: Optional[Union[str, Path]] = None) -> Path:
    """Find the project root.

    Order: the explicit argument, ``SPECLINTER_PROJECT_ROOT``, the nearest
    directory at or above the working directory holding ``.speclinter/``,
    and finally the working directory itself.
    """
    if explicit:
        resolved = Path(explicit).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{explicit}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    cwd = Path.cwd().resolve()
    for base in (cwd, *cwd.parents):
        if (base / PROJECT_MARKER_DIRECTORY).is_dir():
            return base
    return cwd


def initialize_project(root: Union[str, Path], *, force: bool = False) -> Dict[str, Any]:
    """Create the ``.speclinter/`` layout, default config and database schema.

    Refuses to touch an already initialized project unless ``force`` is set;
    forcing rewrites the config but keeps stored features.
    """
    root = Path(root).resolve()
    base_dir = root / PROJECT_MARKER_DIRECTORY
    config_path = base_dir / CONFIG_FILENAME

    if config_path.exists() and not force:
        raise SpecLinterError(f"SpecLinter is already initialized in {root}. Use force to reinitialize.")

    with log_operation("initialize_project", root=str(root), force=force):
        for directory in (base_dir, base_dir / "context", base_dir / "cache"):
            directory.mkdir(parents=True, exist_ok=True)
        config = write_default_config(config_path, overwrite=force)
        (base_dir / ".gitignore").write_text(GITIGNORE_CONTENT, encoding="utf-8")

        tasks_dir = root / config.storage.tasks_dir
        tasks_dir.mkdir(parents=True, exist_ok=True)

        database = Database(root / config.storage.db_path)
        database.initialize()
        database.close()

    observability_hooks.log_workflow_event("project_initialized", root=str(root))
    return {
        "root": str(root),
        "config_path": str(config_path),
        "tasks_dir": str(tasks_dir),
        "db_path": str(root / config.storage.db_path),
        "directories": [
            str(base_dir),
            str(base_dir / "context"),
            str(base_dir / "cache"),
            str(tasks_dir),
        ],
    }


class SpecLinterWorkspace:
    """An opened SpecLinter project."""

    def __init__(self, root: Path, config: SpecLinterConfig, database: Database):
        self.root = root
        self.config = config
        self.database = database

        dedup = config.deduplication
        self.scorer = SimilarityScorer()
        self.repository = FeatureRepository(database)
        self.materializer = FeatureFileMaterializer(root / config.storage.tasks_dir)
        self.resolver = TaskMergeResolver(self.scorer, dedup.task_similarity_threshold)
        self.engine = DeduplicationEngine(
            self.repository, self.scorer, self.resolver, self.materializer, dedup
        )

    @classmethod
    def open(cls, root: Union[str, Path], *, auto_initialize: bool = False) -> "SpecLinterWorkspace":
        """Open the project at ``root``.

        Raises NotInitializedError when ``root`` has no ``.speclinter/``
        directory, unless ``auto_initialize`` creates one.
        """
        root = Path(root).resolve()
        config_path = root / PROJECT_MARKER_DIRECTORY / CONFIG_FILENAME
        if not config_path.exists():
            if not auto_initialize:
                raise NotInitializedError(f"SpecLinter not initialized in {root}.")
            initialize_project(root)

        try:
            config = load_config(config_path)
            database = Database(root / config.storage.db_path)
            database.initialize()
        except SpecLinterError as e:
            log_error_with_context(e, {"operation": "open_workspace", "root": str(root)})
            raise

        logger.info(f"Workspace opened at {root}")
        return cls(root, config, database)

    @property
    def tasks_dir(self) -> Path:
        return self.materializer.tasks_dir

    def close(self) -> None:
        self.database.close()

    def __enter__(self) -> "SpecLinterWorkspace":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def save_feature(
        self,
        feature_name: str,
        tasks: List[Task],
        spec_result: SpecResult,
        options: Optional[SaveOptions] = None,
    ) -> SaveResult:
        return self.engine.save(feature_name, tasks, spec_result, options)

    def find_similar(self, spec: str, threshold: Optional[float] = None) -> List[SimilarFeature]:
        return self.engine.find_similar(spec, threshold)

    def list_features(self) -> List[Dict[str, Any]]:
        return self.repository.list_features()

    def feature_status(self, feature_name: str) -> FeatureStatus:
        return self.repository.feature_status(feature_name)

    def feature_tasks(self, feature_name: str) -> List[Task]:
        self.repository.require(feature_name)
        return self.repository.get_tasks(feature_name)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @log_performance("update_task_status")
    def update_task_status(
        self,
        feature_name: str,
        task_id: str,
        status: Union[TaskStatus, str],
        notes: Optional[str] = None,
    ) -> Task:
        """Change a task's status and refresh the feature's files.

        The database row and the files are updated together; if either
        fails, the files are rewritten from the committed state.
        """
        (task,) = self.apply_task_statuses(feature_name, [(task_id, status, notes)])
        return task

    def apply_task_statuses(
        self,
        feature_name: str,
        updates: Sequence[Tuple[str, Union[TaskStatus, str], Optional[str]]],
    ) -> List[Task]:
        """Apply several ``(task_id, status, notes)`` changes in one transaction."""
        with self.materializer.synced_transaction(self.repository, feature_name) as uow:
            changed = [
                uow.update_task_status(feature_name, task_id, status, notes) for task_id, status, notes in updates
            ]
            feature = uow.require(feature_name)
            self.materializer.write(feature, uow.get_tasks(feature_name))

        for task in changed:
            log_task_status_update(feature_name, task.id, task.status.value)
        return changed

    def save_task_gherkin(self, feature_name: str, task_id: str, content: str) -> Tuple[Task, Path]:
        """Store Gherkin scenarios on a task and write its ``.feature`` file."""
        with self.materializer.synced_transaction(self.repository, feature_name) as uow:
            task = uow.set_task_gherkin(feature_name, task_id, content)
            if not task.test_file:
                raise InvalidInputError([f"Task {task_id} has no Gherkin file name"])
            feature = uow.require(feature_name)
            self.materializer.write(feature, uow.get_tasks(feature_name))

        path = self.materializer.feature_dir(feature_name) / GHERKIN_DIRNAME / task.test_file
        logger.info(f"Stored Gherkin scenarios for {feature_name}/{task_id} in {path}")
        return task, path

    # ------------------------------------------------------------------
    # Test results
    # ------------------------------------------------------------------

    def record_test_results(self, run: GherkinRunResult) -> GherkinRunResult:
        with self.repository.transaction() as uow:
            stored = uow.record_test_results(run)

        observability_hooks.log_workflow_event(
            "test_results_recorded",
            feature_name=run.feature_name,
            task_id=run.task_id,
            passed=stored.passed,
            failed=stored.failed,
            skipped=stored.skipped,
        )
        return stored

    def list_test_results(
        self, feature_name: str, task_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[GherkinRunResult]:
        return self.repository.get_test_results(feature_name, task_id, limit)
