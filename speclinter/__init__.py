"""SpecLinter feature store.

Turns analysed specifications into persisted features and task files,
detecting exact and near duplicates on the way in.
"""

from .deduplication import DeduplicationEngine
from .errors import (
    InvalidInputError,
    NotFoundError,
    NotInitializedError,
    PersistenceError,
    SpecLinterError,
)
from .materializer import FeatureFileMaterializer
from .merge import TaskMergeResolver
from .models import (
    DuplicateInfo,
    DuplicateStrategy,
    DuplicateType,
    ExistingFeature,
    Feature,
    FeatureStatus,
    GherkinRunResult,
    MergeResult,
    RecommendedAction,
    RelevantPattern,
    SaveOptions,
    SaveResult,
    ScenarioOutcome,
    ScenarioResult,
    SimilarFeature,
    SpecResult,
    Task,
    TaskStatus,
)
from .repository import FeatureRepository
from .similarity import SimilarityScorer
from .workflow import FeatureWorkflow
from .workspace import SpecLinterWorkspace, initialize_project, resolve_project_root

__all__ = [
    "DeduplicationEngine",
    "DuplicateInfo",
    "DuplicateStrategy",
    "DuplicateType",
    "ExistingFeature",
    "Feature",
    "FeatureFileMaterializer",
    "FeatureRepository",
    "FeatureStatus",
    "FeatureWorkflow",
    "GherkinRunResult",
    "InvalidInputError",
    "MergeResult",
    "NotFoundError",
    "NotInitializedError",
    "PersistenceError",
    "RecommendedAction",
    "RelevantPattern",
    "SaveOptions",
    "SaveResult",
    "ScenarioOutcome",
    "ScenarioResult",
    "SimilarFeature",
    "SimilarityScorer",
    "SpecLinterError",
    "SpecLinterWorkspace",
    "SpecResult",
    "Task",
    "TaskMergeResolver",
    "TaskStatus",
    "initialize_project",
    "resolve_project_root",
]
