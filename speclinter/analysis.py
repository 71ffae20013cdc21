"""Validation of AI analysis payloads.

The AI model does the semantic work (grading a spec, extracting tasks,
judging similarity); SpecLinter only checks the shape of what comes back.
Each payload kind has one pydantic model, looked up through
:data:`ANALYSIS_MODELS` by :class:`AnalysisKind`.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .errors import InvalidInputError
from .models import (
    GherkinRunResult,
    RelevantPattern,
    ScenarioOutcome,
    ScenarioResult,
    SpecResult,
    Task,
    TaskStatus,
    task_id_for,
)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QualityIssue(_Payload):
    type: str
    severity: Literal["low", "medium", "high", "critical"]
    message: str
    suggestion: str
    points: float


class SpecQuality(_Payload):
    score: float = Field(ge=0, le=100)
    grade: Literal["A+", "A", "B", "C", "D", "F"]
    issues: List[QualityIssue]
    strengths: List[str]
    improvements: List[str]


class AITask(_Payload):
    title: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    implementation: str
    acceptance_criteria: List[str] = Field(min_length=1)
    estimated_effort: Literal["XS", "S", "M", "L", "XL"]
    dependencies: List[str]
    testing_notes: str
    relevant_patterns: List[str]
    risk_factors: List[str]
    security_considerations: List[str]
    performance_considerations: List[str]
    user_experience: str
    technical_debt: List[str]


class Scope(_Payload):
    in_scope: List[str]
    out_of_scope: List[str]
    assumptions: List[str]


class SpecAnalysis(_Payload):
    """AI analysis of one specification: its quality and extracted tasks."""

    quality: SpecQuality
    tasks: List[AITask]
    technical_considerations: List[str]
    user_stories: List[str]
    business_value: str
    scope: Scope


class SimilarFeatureJudgement(_Payload):
    feature_name: str
    similarity_score: float = Field(ge=0, le=1)
    similarity_reasons: List[str]
    differences: List[str]
    recommendation: Literal["merge", "separate", "refactor"]


class SimilarityAnalysis(_Payload):
    """AI judgement of how a new spec relates to stored features."""

    similar_features: List[SimilarFeatureJudgement]
    overall_assessment: str
    confidence: float = Field(ge=0, le=1)


class GherkinParameter(_Payload):
    name: str
    value: str
    type: Optional[Literal["string", "number", "boolean", "object"]] = None


class GherkinStep(_Payload):
    type: Literal["given", "when", "then", "and", "but"]
    text: str = Field(min_length=1)
    parameters: Optional[List[GherkinParameter]] = None


class GherkinExample(_Payload):
    description: str
    data: Dict[str, str]


class GherkinScenario(_Payload):
    type: Literal["happy_path", "error_handling", "edge_case", "integration", "security", "performance", "validation"]
    title: str = Field(min_length=1)
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    steps: List[GherkinStep] = Field(min_length=1)
    examples: Optional[List[GherkinExample]] = None
    priority: Literal["critical", "high", "medium", "low"]
    estimated_duration: Optional[str] = None


class GherkinRule(_Payload):
    title: str
    scenarios: List[GherkinScenario]


class GherkinFeature(_Payload):
    title: str = Field(min_length=1)
    description: str
    background: Optional[List[GherkinStep]] = None
    scenarios: List[GherkinScenario]
    rules: Optional[List[GherkinRule]] = None
    testing_notes: str
    coverage_areas: List[str]


class GherkinQualityMetrics(_Payload):
    scenario_count: int = Field(ge=0)
    coverage_score: float = Field(ge=0, le=100)
    actionability_score: float = Field(ge=0, le=100)
    maintainability_score: float = Field(ge=0, le=100)


class AutomationReadiness(_Payload):
    score: float = Field(ge=0, le=100)
    blockers: List[str]
    recommendations: List[str]


class GherkinInsights(_Payload):
    confidence: float = Field(ge=0, le=1)
    improvements: List[str]
    patterns: List[str]


class GherkinAnalysis(_Payload):
    """AI-written Gherkin scenarios for one task."""

    feature: GherkinFeature
    quality_metrics: GherkinQualityMetrics
    technical_considerations: List[str]
    automation_readiness: AutomationReadiness
    ai_insights: GherkinInsights


Severity = Literal["low", "medium", "high", "critical"]
Effort = Literal["XS", "S", "M", "L", "XL"]


class CriterionCheck(_Payload):
    criteria: str
    status: Literal["met", "partially_met", "not_met", "unclear"]
    evidence: str
    confidence: float = Field(ge=0, le=1)


class PatternCompliance(_Payload):
    pattern: str
    compliance: Literal["follows", "partially_follows", "violates", "not_applicable"]
    examples: List[str]


class CodeQualityIssue(_Payload):
    type: Literal["error_handling", "validation", "security", "performance", "maintainability"]
    severity: Severity
    description: str
    location: str
    suggestion: str


class TaskValidation(_Payload):
    task_id: str
    title: str
    implementation_status: Literal["not_implemented", "partially_implemented", "fully_implemented", "over_implemented"]
    quality_score: float = Field(ge=0, le=100)
    implementation_files: List[str]
    acceptance_criteria_validation: List[CriterionCheck]
    pattern_compliance: List[PatternCompliance]
    code_quality_issues: List[CodeQualityIssue]
    missing_components: List[str]
    recommendations: List[str]


class ArchitecturalAlignment(_Payload):
    score: float = Field(ge=0, le=100)
    strengths: List[str]
    concerns: List[str]
    recommendations: List[str]


class CoverageAssessment(_Payload):
    has_tests: bool
    test_types: List[Literal["unit", "integration", "e2e", "manual"]]
    coverage: Optional[float] = Field(default=None, ge=0, le=100)
    test_quality: Literal["poor", "fair", "good", "excellent"]
    missing_tests: List[str]


class SecurityConsideration(_Payload):
    area: str
    status: Literal["secure", "needs_attention", "vulnerable"]
    details: str
    recommendations: List[str]


class PerformanceConsideration(_Payload):
    area: str
    assessment: str
    concerns: List[str]
    optimizations: List[str]


class NextStep(_Payload):
    priority: Severity
    action: str
    effort: Effort
    rationale: str


class ValidationInsights(_Payload):
    strengths: List[str]
    weaknesses: List[str]
    surprises: List[str]
    confidence: float = Field(ge=0, le=1)


class ImplementationValidation(_Payload):
    """AI review of how far the code base implements a feature's tasks."""

    feature_name: str
    overall_status: Literal["not_started", "in_progress", "mostly_complete", "complete", "over_engineered"]
    completion_percentage: float = Field(ge=0, le=100)
    quality_score: float = Field(ge=0, le=100)
    task_validations: List[TaskValidation]
    architectural_alignment: ArchitecturalAlignment
    test_coverage: CoverageAssessment
    security_considerations: List[SecurityConsideration]
    performance_considerations: List[PerformanceConsideration]
    next_steps: List[NextStep]
    ai_insights: ValidationInsights


class ScenarioRun(_Payload):
    scenario: str = Field(min_length=1)
    status: Literal["passed", "failed", "skipped"]
    error: Optional[str] = None


class GherkinRunReport(_Payload):
    """Counts reported by an external Gherkin test run."""

    passed: int = Field(ge=0)
    failed: int = Field(ge=0)
    skipped: int = Field(ge=0)
    coverage: Optional[float] = Field(default=None, ge=0, le=100)
    details: List[ScenarioRun] = Field(default_factory=list)


AnalysisResult = Union[SpecAnalysis, SimilarityAnalysis, GherkinAnalysis, ImplementationValidation, GherkinRunReport]


class AnalysisKind(str, Enum):
    SPEC = "spec_analysis"
    SIMILARITY = "similarity_analysis"
    GHERKIN = "gherkin_analysis"
    VALIDATION = "implementation_validation"
    TEST_RESULTS = "test_results"


ANALYSIS_MODELS: Dict[AnalysisKind, Type[BaseModel]] = {
    AnalysisKind.SPEC: SpecAnalysis,
    AnalysisKind.SIMILARITY: SimilarityAnalysis,
    AnalysisKind.GHERKIN: GherkinAnalysis,
    AnalysisKind.VALIDATION: ImplementationValidation,
    AnalysisKind.TEST_RESULTS: GherkinRunReport,
}


def format_validation_errors(error: ValidationError) -> List[str]:
    return [f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}" for err in error.errors()]


def validate_analysis(kind: Union[AnalysisKind, str], payload: Any) -> AnalysisResult:
    """Validate ``payload`` against the model registered for ``kind``.

    Raises InvalidInputError listing every schema violation.
    """
    try:
        model = ANALYSIS_MODELS[AnalysisKind(kind)]
    except ValueError:
        raise InvalidInputError([f"Unknown analysis kind: {kind}"]) from None

    if payload is None:
        raise InvalidInputError(["No analysis data provided"])
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidInputError(format_validation_errors(e)) from e


def slugify(text: str) -> str:
    """Lowercase ``text`` and collapse everything else into single hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "task"


def tasks_from_analysis(analysis: SpecAnalysis, feature_name: str, coverage_target: str = "90%") -> List[Task]:
    """Turn the AI's task list into not-started :class:`Task` objects."""
    tasks = []
    for index, ai_task in enumerate(analysis.tasks):
        slug = slugify(ai_task.title)
        tasks.append(
            Task(
                id=task_id_for(index),
                sequence=index,
                feature_name=feature_name,
                title=ai_task.title,
                slug=slug,
                summary=ai_task.summary,
                implementation=ai_task.implementation,
                acceptance_criteria=list(ai_task.acceptance_criteria),
                status=TaskStatus.NOT_STARTED,
                test_file=f"{task_id_for(index)}_{slug}.feature",
                coverage_target=coverage_target,
                notes=ai_task.testing_notes,
                relevant_patterns=[
                    RelevantPattern(name=pattern, anchor=slugify(pattern)) for pattern in ai_task.relevant_patterns
                ],
            )
        )
    return tasks


def spec_result_from_analysis(analysis: SpecAnalysis, original_spec: str = "") -> SpecResult:
    """Build the :class:`SpecResult` saved alongside the tasks.

    Without the original text the spec falls back to the improvement list,
    so a feature never ends up with an empty spec.
    """
    quality = analysis.quality
    return SpecResult(
        spec=original_spec or " ".join(quality.improvements),
        grade=quality.grade,
        score=int(round(quality.score)),
        improvements=list(quality.improvements),
        missing_elements=[issue.message for issue in quality.issues],
    )


# ----------------------------------------------------------------------
# Gherkin rendering
# ----------------------------------------------------------------------

def _step_line(step: GherkinStep, indent: str) -> str:
    return f"{indent}{step.type.capitalize()} {step.text}"


def _examples_table(examples: List[GherkinExample], indent: str) -> List[str]:
    columns: List[str] = []
    for example in examples:
        columns.extend(key for key in example.data if key not in columns)

    header = ["description", *columns]
    rows = [[example.description, *(example.data.get(key, "") for key in columns)] for example in examples]
    return [f"{indent}| {' | '.join(row)} |" for row in [header, *rows]]


def _scenario_lines(scenario: GherkinScenario, indent: str) -> List[str]:
    lines = []
    if scenario.tags:
        lines.append(indent + " ".join(tag if tag.startswith("@") else f"@{tag}" for tag in scenario.tags))
    keyword = "Scenario Outline" if scenario.examples else "Scenario"
    lines.append(f"{indent}{keyword}: {scenario.title}")
    if scenario.description:
        lines.append(f"{indent}  {scenario.description}")
    lines.extend(_step_line(step, indent + "  ") for step in scenario.steps)
    if scenario.examples:
        lines.append("")
        lines.append(f"{indent}  Examples:")
        lines.extend(_examples_table(scenario.examples, indent + "    "))
    return lines


def gherkin_scenario_count(analysis: GherkinAnalysis) -> int:
    """Scenarios in the feature body plus those nested under rules."""
    feature = analysis.feature
    return len(feature.scenarios) + sum(len(rule.scenarios) for rule in feature.rules or [])


def render_gherkin_analysis(analysis: GherkinAnalysis) -> str:
    """Render the analysed feature as a ``.feature`` document."""
    feature = analysis.feature
    lines = [f"Feature: {feature.title}"]
    if feature.description:
        lines.append(f"  {feature.description}")

    if feature.background:
        lines.append("")
        lines.append("  Background:")
        lines.extend(_step_line(step, "    ") for step in feature.background)

    for scenario in feature.scenarios:
        lines.append("")
        lines.extend(_scenario_lines(scenario, "  "))

    for rule in feature.rules or []:
        lines.append("")
        lines.append(f"  Rule: {rule.title}")
        for scenario in rule.scenarios:
            lines.append("")
            lines.extend(_scenario_lines(scenario, "    "))

    if feature.testing_notes:
        lines.append("")
        lines.append("# Testing Notes:")
        lines.extend(f"# {note}" for note in feature.testing_notes.splitlines() if note.strip())
    return "\n".join(lines) + "\n"


def run_result_from_report(report: GherkinRunReport, feature_name: str, task_id: Optional[str] = None) -> GherkinRunResult:
    return GherkinRunResult(
        feature_name=feature_name,
        task_id=task_id,
        passed=report.passed,
        failed=report.failed,
        skipped=report.skipped,
        coverage=report.coverage,
        details=[
            ScenarioResult(scenario=run.scenario, status=ScenarioOutcome(run.status), error=run.error)
            for run in report.details
        ],
    )
