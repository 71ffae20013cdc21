"""Duplicate-aware feature saves.

:class:`DeduplicationEngine` is the single entry point for persisting a
feature. It looks for a stored feature with the same name and for features
whose spec scores above the similarity threshold, then resolves the
collision with one :class:`~speclinter.models.DuplicateStrategy`:

* ``skip`` and ``prompt`` change nothing and report what was found; with
  ``prompt`` the caller is expected to call again with a concrete strategy.
* ``replace`` overwrites the feature called ``feature_name``.
* ``merge`` folds the new tasks into the exact-name feature, or into the
  most similar one when there is no exact match.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .config import DeduplicationConfig
from .errors import InvalidInputError
from .materializer import FeatureFileMaterializer
from .merge import TaskMergeResolver
from .models import (
    DuplicateInfo,
    DuplicateStrategy,
    DuplicateType,
    ExistingFeature,
    RecommendedAction,
    SaveOptions,
    SaveResult,
    SimilarFeature,
    SpecResult,
    Task,
)
from .repository import FeatureRepository
from .similarity import SimilarityScorer
from .speclinter_logging import (
    log_duplicate_detected,
    log_feature_saved,
    log_operation,
    log_performance,
    log_tasks_merged,
)

logger = logging.getLogger("speclinter.deduplication")

FEATURE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
SUMMARY_LENGTH = 100


class _NameLocks:
    """One lock per feature name, dropped once no save holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, Tuple[threading.Lock, int]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(name, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[name] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                _, users = self._locks[name]
                if users == 1:
                    del self._locks[name]
                else:
                    self._locks[name] = (lock, users - 1)


def _summarize(spec: str) -> str:
    if len(spec) <= SUMMARY_LENGTH:
        return spec
    return spec[:SUMMARY_LENGTH] + "..."


def validate_save_request(
    feature_name: str,
    tasks: List[Task],
    spec_result: SpecResult,
    options: SaveOptions,
) -> List[str]:
    """Return every problem with a save request; empty when it is valid."""
    issues: List[str] = []

    if not feature_name or not feature_name.strip():
        issues.append("Feature name is required")
    elif len(feature_name) > 255 or not FEATURE_NAME_PATTERN.match(feature_name):
        issues.append(
            f"Invalid feature name '{feature_name}': use letters, digits, '.', '_' or '-', "
            "starting with a letter or digit"
        )

    if not tasks:
        issues.append("At least one task is required")

    issues.extend(spec_result.validate())

    seen_ids = set()
    for task in tasks:
        issues.extend(task.validate())
        if task.id in seen_ids:
            issues.append(f"Duplicate task id: {task.id}")
        seen_ids.add(task.id)
        if task.test_file and (
            "/" in task.test_file or "\\" in task.test_file or task.test_file in {".", ".."}
        ):
            issues.append(f"Task {task.id}: test file must be a plain file name, got '{task.test_file}'")

    threshold = options.similarity_threshold
    if threshold is not None and not 0.0 <= threshold <= 1.0:
        issues.append(f"Similarity threshold must be between 0 and 1, got: {threshold}")

    return issues


class DeduplicationEngine:
    """Save features while detecting exact and near duplicates."""

    def __init__(
        self,
        repository: FeatureRepository,
        scorer: SimilarityScorer,
        resolver: TaskMergeResolver,
        materializer: FeatureFileMaterializer,
        config: Optional[DeduplicationConfig] = None,
    ):
        self.repository = repository
        self.scorer = scorer
        self.resolver = resolver
        self.materializer = materializer
        self.config = config or DeduplicationConfig()
        self._locks = _NameLocks()
        self._strategies: Dict[DuplicateStrategy, Callable[..., SaveResult]] = {
            DuplicateStrategy.SKIP: self._defer,
            DuplicateStrategy.PROMPT: self._defer,
            DuplicateStrategy.REPLACE: self._replace,
            DuplicateStrategy.MERGE: self._merge,
        }

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def find_similar(self, spec: str, threshold: Optional[float] = None) -> List[SimilarFeature]:
        """Stored features scoring at least ``threshold`` against ``spec``.

        Results are ordered by score, highest first, then by name.
        """
        if threshold is None:
            threshold = self.config.similarity_threshold
        if not 0.0 <= threshold <= 1.0:
            raise InvalidInputError([f"Similarity threshold must be between 0 and 1, got: {threshold}"])

        matches = []
        for name, stored_spec in self.repository.get_all():
            score = self.scorer.score(spec, stored_spec)
            if score >= threshold:
                matches.append((name, stored_spec, score))

        similar = []
        for name, stored_spec, score in matches:
            status = self.repository.feature_status(name)
            similar.append(
                SimilarFeature(
                    feature_name=name,
                    score=score,
                    summary=_summarize(stored_spec),
                    task_count=status.total_tasks,
                    status=status.overall_status,
                )
            )
        similar.sort(key=lambda feature: (-feature.score, feature.feature_name))
        return similar

    def recommend(
        self,
        similar_features: List[SimilarFeature],
        existing_feature: Optional[ExistingFeature],
    ) -> RecommendedAction:
        """Suggest how to resolve a collision."""
        if existing_feature is not None:
            return RecommendedAction.REPLACE
        if not similar_features:
            return RecommendedAction.MERGE

        highest = max(feature.score for feature in similar_features)
        if highest > self.config.skip_threshold:
            return RecommendedAction.SKIP
        if highest > self.config.auto_merge_threshold:
            return RecommendedAction.MERGE
        return RecommendedAction.RENAME

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def _resolve_strategy(self, options: SaveOptions) -> DuplicateStrategy:
        value = options.on_similar_found or self.config.default_strategy
        try:
            return DuplicateStrategy(value)
        except ValueError:
            valid = ", ".join(s.value for s in DuplicateStrategy)
            raise InvalidInputError([f"Invalid strategy '{value}'. Expected one of: {valid}"]) from None

    @log_performance("save_feature")
    def save(
        self,
        feature_name: str,
        tasks: List[Task],
        spec_result: SpecResult,
        options: Optional[SaveOptions] = None,
    ) -> SaveResult:
        """Persist a feature, or report why it was not persisted.

        Raises InvalidInputError before touching storage when the request is
        malformed, and PersistenceError when the write fails; in that case
        nothing was committed.
        """
        options = options or SaveOptions()
        issues = validate_save_request(feature_name, tasks, spec_result, options)
        if issues:
            raise InvalidInputError(issues)
        strategy = self._resolve_strategy(options)

        with log_operation("save_feature", feature_name=feature_name, task_count=len(tasks)):
            with self._locks.hold(feature_name):
                existing = self.repository.get_existing(feature_name)

                similar: List[SimilarFeature] = []
                if not options.skip_similarity_check and self.config.enabled:
                    similar = self.find_similar(spec_result.spec, options.similarity_threshold)

                if existing is None and not similar:
                    return self._replace(feature_name, tasks, spec_result, None, strategy=None)

                info = DuplicateInfo(
                    type=DuplicateType.EXACT_MATCH if existing else DuplicateType.SIMILAR_FEATURES,
                    existing_feature=existing,
                    similar_features=similar,
                    recommended_action=self.recommend(similar, existing),
                )
                log_duplicate_detected(
                    feature_name,
                    info.type.value,
                    info.recommended_action.value,
                    strategy=strategy.value,
                    similar_count=len(similar),
                )
                return self._strategies[strategy](feature_name, tasks, spec_result, info, strategy=strategy)

    def _defer(
        self,
        feature_name: str,
        tasks: List[Task],
        spec_result: SpecResult,
        info: DuplicateInfo,
        *,
        strategy: DuplicateStrategy,
    ) -> SaveResult:
        logger.info(f"Not saving {feature_name}: strategy '{strategy.value}' with duplicate info")
        return SaveResult(feature_name=feature_name, strategy=strategy, persisted=False, duplicate_info=info)

    def _replace(
        self,
        feature_name: str,
        tasks: List[Task],
        spec_result: SpecResult,
        info: Optional[DuplicateInfo],
        *,
        strategy: Optional[DuplicateStrategy],
    ) -> SaveResult:
        with self.materializer.synced_transaction(self.repository, feature_name) as uow:
            feature, stored = uow.upsert(feature_name, spec_result, tasks)
            files = self.materializer.write(feature, stored)

        log_feature_saved(feature_name, len(stored), strategy=strategy.value if strategy else None)
        return SaveResult(
            feature_name=feature_name,
            strategy=strategy,
            persisted=True,
            files=files,
            duplicate_info=info,
        )

    def _merge(
        self,
        feature_name: str,
        tasks: List[Task],
        spec_result: SpecResult,
        info: DuplicateInfo,
        *,
        strategy: DuplicateStrategy,
    ) -> SaveResult:
        if info.existing_feature is not None:
            target = info.existing_feature.name
        else:
            target = info.similar_features[0].feature_name

        with self.materializer.synced_transaction(self.repository, target) as uow:
            target_feature = uow.require(target)
            result = self.resolver.merge(
                uow.get_tasks(target),
                tasks,
                target_feature.spec,
                spec_result.spec,
                feature_name=target,
            )
            feature, stored = uow.upsert(target, replace(spec_result, spec=result.merged_spec), result.merged_tasks)
            files = self.materializer.write(feature, stored)
        result.merged_tasks = stored

        log_tasks_merged(
            target,
            result.new_task_count,
            result.duplicate_tasks_skipped,
            source_feature=feature_name,
        )
        log_feature_saved(target, len(stored), strategy=strategy.value)
        return SaveResult(
            feature_name=target,
            strategy=strategy,
            persisted=True,
            files=files,
            duplicate_info=info,
            merge_result=result,
        )
