"""Project stored features onto the file system.

Each feature gets a directory under the tasks dir::

    tasks/<feature>/
        task_01_<slug>.md
        gherkin/task_01_<slug>.feature
        _active.md
        meta.json

Output is a pure function of the stored feature and tasks, so writing the
same state twice produces byte-identical files. Writes that change the store
go through :meth:`FeatureFileMaterializer.synced_transaction`, which rewrites
the directory from the committed state when anything in the block fails.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, List, Optional, Tuple

from .errors import InvalidInputError, SpecLinterError
from .models import Feature, FeatureStatus, Task, TaskStatus
from .speclinter_logging import log_error_with_context, log_performance

if TYPE_CHECKING:
    from .repository import FeatureRepository, FeatureUnitOfWork

logger = logging.getLogger("speclinter.materializer")

ACTIVE_FILENAME = "_active.md"
META_FILENAME = "meta.json"
GHERKIN_DIRNAME = "gherkin"


def task_filename(task: Task) -> str:
    return f"{task.id}_{task.slug}.md"


def atomic_write(path: Path, content: str) -> None:
    """Write ``content`` to a sibling temp file and move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(content)
        os.replace(temp_name, path)
    except OSError:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


class FeatureFileMaterializer:
    """Write task files, Gherkin scenarios, the dashboard and metadata."""

    def __init__(self, tasks_dir: Path | str):
        self.tasks_dir = Path(tasks_dir)

    def feature_dir(self, feature_name: str) -> Path:
        path = self.tasks_dir / feature_name
        if path.resolve().parent != self.tasks_dir.resolve():
            raise InvalidInputError([f"Feature name '{feature_name}' cannot be used as a directory name"])
        return path

    @log_performance("materialize_feature")
    def write(self, feature: Feature, tasks: List[Task]) -> List[str]:
        """Write every file for ``feature`` and return their paths.

        Task and Gherkin files left over from an earlier, larger task list
        are removed. Tasks that share a Gherkin file name are rejected.
        """
        feature_dir = self.feature_dir(feature.name)
        gherkin_paths = [task.test_file for task in tasks if task.test_file]
        clashes = sorted({name for name in gherkin_paths if gherkin_paths.count(name) > 1})
        if clashes:
            raise InvalidInputError([f"Gherkin file '{name}' is used by more than one task" for name in clashes])

        gherkin_dir = feature_dir / GHERKIN_DIRNAME
        gherkin_dir.mkdir(parents=True, exist_ok=True)

        files: List[Path] = []
        for task in tasks:
            task_path = feature_dir / task_filename(task)
            atomic_write(task_path, self.render_task(task, feature.name))
            files.append(task_path)

            if task.test_file:
                gherkin_path = gherkin_dir / task.test_file
                atomic_write(gherkin_path, self.render_gherkin(task))
                files.append(gherkin_path)

        status = FeatureStatus.from_tasks(feature.name, tasks)
        last_updated = status.last_updated or feature.created_at

        meta_path = feature_dir / META_FILENAME
        atomic_write(meta_path, self.render_meta(feature, tasks, last_updated))
        files.append(meta_path)

        active_path = feature_dir / ACTIVE_FILENAME
        atomic_write(active_path, self.render_active(feature.name, tasks, status, last_updated))
        files.append(active_path)

        self._remove_stale(feature_dir, set(files))
        logger.debug(f"Materialized {len(files)} files for {feature.name}")
        return [str(path) for path in files]

    def restore(self, feature_name: str, snapshot: Optional[Tuple[Feature, List[Task]]]) -> None:
        """Rewrite the feature directory from ``snapshot``; None removes it."""
        if snapshot is None:
            feature_dir = self.feature_dir(feature_name)
            if feature_dir.exists():
                shutil.rmtree(feature_dir)
            return
        feature, tasks = snapshot
        self.write(feature, tasks)

    @contextmanager
    def synced_transaction(self, repository: "FeatureRepository", feature_name: str) -> Iterator["FeatureUnitOfWork"]:
        """Run a repository transaction whose files must match what commits.

        Usage:
            with materializer.synced_transaction(repository, name) as uow:
                feature, tasks = uow.upsert(name, spec_result, tasks)
                materializer.write(feature, tasks)

        If the block or the commit fails, the files of ``feature_name`` are
        rewritten from the committed state before the error propagates.
        """
        with repository.write_lock:
            try:
                with repository.transaction() as uow:
                    yield uow
            except Exception:
                self._restore_committed(repository, feature_name)
                raise

    def _restore_committed(self, repository: "FeatureRepository", feature_name: str) -> None:
        try:
            self.restore(feature_name, repository.snapshot(feature_name))
        except (SpecLinterError, OSError) as e:
            log_error_with_context(e, {"operation": "restore_feature_files", "feature_name": feature_name})
        else:
            logger.info(f"Restored files for {feature_name} from committed state")

    def _remove_stale(self, feature_dir: Path, keep: set) -> None:
        candidates = list(feature_dir.glob("task_*.md")) + list((feature_dir / GHERKIN_DIRNAME).glob("*.feature"))
        for path in candidates:
            if path not in keep:
                path.unlink()
                logger.debug(f"Removed stale file {path}")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_task(self, task: Task, feature_name: str) -> str:
        header = [
            f"# Task: {task.title}",
            "",
            f"**ID**: {task.id}",
            f"**Status**: {task.status_emoji} {task.status.value}",
            f"**Feature**: {feature_name}",
        ]
        if task.dependencies:
            header.append(f"**Dependencies**: {', '.join(task.dependencies)}")
        if task.blocks:
            header.append(f"**Blocks**: {', '.join(task.blocks)}")

        sections = [
            "\n".join(header),
            f"## Summary\n{task.summary}",
            f"## Implementation Details\n{task.implementation}",
        ]
        if task.relevant_patterns:
            patterns = "\n".join(
                f"- {p.name}: See `.speclinter/context/patterns.md#{p.anchor}`" for p in task.relevant_patterns
            )
            sections.append(f"## Patterns to Follow\n{patterns}")
        criteria = "\n".join(f"- [ ] {item}" for item in task.acceptance_criteria)
        sections.append(f"## Acceptance Criteria\n{criteria}")
        sections.append(
            "## Test Coverage\n"
            f"- **Gherkin**: `{GHERKIN_DIRNAME}/{task.test_file}`\n"
            f"- **Target**: {task.coverage_target}"
        )
        sections.append(f"## Implementation Notes\n{task.notes}")
        sections.append("---\n*Generated by SpecLinter - Do not edit header metadata directly*")
        return "\n\n".join(sections) + "\n"

    def render_gherkin(self, task: Task) -> str:
        if task.gherkin:
            return task.gherkin if task.gherkin.endswith("\n") else task.gherkin + "\n"
        return (
            f"Feature: {task.title}\n"
            "\n"
            f"  Scenario: {task.title} - Happy Path\n"
            "    Given the system is ready\n"
            f"    When {task.summary}\n"
            "    Then the acceptance criteria are met\n"
            "\n"
            f"  Scenario: {task.title} - Error Handling\n"
            "    Given the system is ready\n"
            "    When an error occurs\n"
            "    Then it should be handled gracefully\n"
        )

    def render_meta(self, feature: Feature, tasks: List[Task], last_updated) -> str:
        meta = {
            "featureName": feature.name,
            "id": feature.id,
            "grade": feature.grade,
            "score": feature.score,
            "taskCount": len(tasks),
            "createdAt": feature.created_at.isoformat() if feature.created_at else None,
            "updatedAt": last_updated.isoformat() if last_updated else None,
        }
        return json.dumps(meta, indent=2) + "\n"

    def render_active(self, feature_name: str, tasks: List[Task], status: FeatureStatus, last_updated) -> str:
        lines = [
            f"# {feature_name} - Active Status",
            "",
            f"**Overall Progress**: {status.completed_tasks}/{status.total_tasks} tasks completed",
            f"**Status**: {status.overall_status}",
            f"**Last Updated**: {last_updated.isoformat() if last_updated else 'never'}",
            "",
            "## Tasks",
            "",
        ]
        for task in tasks:
            lines.append(f"### {task.status_emoji} {task.title} ({task.id})")
            lines.append(task.summary)
            lines.append("")
            if task.status is not TaskStatus.COMPLETED:
                lines.append(f"**Next Steps**: {task.implementation}")
                lines.append("")

        lines.append("## Next Actions")
        lines.extend(f"- {action}" for action in next_actions(tasks))
        return "\n".join(lines) + "\n"


def next_actions(tasks: List[Task]) -> List[str]:
    """Suggest what to do next from the current task statuses."""
    actions = []
    blocked = [task for task in tasks if task.status is TaskStatus.BLOCKED]
    if blocked:
        actions.append(f"Unblock {len(blocked)} blocked task(s)")

    upcoming: Optional[Task] = next((task for task in tasks if task.status is TaskStatus.NOT_STARTED), None)
    if upcoming is not None:
        actions.append(f"Start work on: {upcoming.title}")
    return actions
