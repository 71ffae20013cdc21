"""Reconcile an existing task list with a newly generated one."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .models import MergeResult, Task, renumber_tasks, task_id_for
from .similarity import SimilarityScorer

logger = logging.getLogger("speclinter.merge")

SPEC_SEPARATOR = "\n\n--- Additional Requirements ---\n"


def merge_specs(existing_spec: str, new_spec: str) -> str:
    """Combine two spec texts without dropping either.

    When one text already contains the other the longer one wins; otherwise
    the new text is appended under an "Additional Requirements" heading.
    """
    if new_spec in existing_spec:
        return existing_spec
    if existing_spec in new_spec:
        return new_spec
    return existing_spec + SPEC_SEPARATOR + new_spec


class TaskMergeResolver:
    """Append the genuinely new tasks of a save to an existing feature."""

    def __init__(self, scorer: SimilarityScorer, task_similarity_threshold: float = 0.9):
        self.scorer = scorer
        self.task_similarity_threshold = task_similarity_threshold

    def find_duplicate(self, task: Task, existing_tasks: List[Task]) -> Optional[Task]:
        """Return the best existing match scoring above the task threshold."""
        best: Optional[Task] = None
        best_score = self.task_similarity_threshold
        for candidate in existing_tasks:
            score = self.scorer.score(task.summary, candidate.summary)
            if score > best_score:
                best, best_score = candidate, score
        return best

    def merge(
        self,
        existing_tasks: List[Task],
        new_tasks: List[Task],
        existing_spec: str,
        new_spec: str,
        feature_name: Optional[str] = None,
    ) -> MergeResult:
        """Merge ``new_tasks`` into ``existing_tasks``.

        Existing tasks keep their order, status and notes. Every task is
        renumbered so sequences run contiguously from 0; references to a
        skipped duplicate are redirected to the task it matched.
        """
        if feature_name is None:
            feature_name = existing_tasks[0].feature_name if existing_tasks else ""

        existing_ids = {task.id: task_id_for(index) for index, task in enumerate(existing_tasks)}
        unique: List[Task] = []
        redirects: Dict[str, str] = {}
        for task in new_tasks:
            match = self.find_duplicate(task, existing_tasks)
            if match is None:
                unique.append(task)
            else:
                redirects[task.id] = existing_ids[match.id]
                logger.debug(f"Skipping task '{task.title}': duplicate of {match.id} '{match.title}'")

        merged = renumber_tasks(existing_tasks, feature_name)
        merged.extend(renumber_tasks(unique, feature_name, start=len(existing_tasks), id_map=redirects))

        return MergeResult(
            merged_tasks=merged,
            merged_spec=merge_specs(existing_spec, new_spec),
            original_task_count=len(existing_tasks),
            new_task_count=len(unique),
            duplicate_tasks_skipped=len(new_tasks) - len(unique),
        )

