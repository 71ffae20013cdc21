"""Unit tests for AI analysis validation and conversion."""

import copy

import pytest

from speclinter.analysis import (
    AnalysisKind,
    GherkinAnalysis,
    GherkinRunReport,
    ImplementationValidation,
    SimilarityAnalysis,
    SpecAnalysis,
    gherkin_scenario_count,
    render_gherkin_analysis,
    run_result_from_report,
    slugify,
    spec_result_from_analysis,
    tasks_from_analysis,
    validate_analysis,
)
from speclinter.errors import InvalidInputError
from speclinter.models import ScenarioOutcome, TaskStatus


SPEC_PAYLOAD = {
    "quality": {
        "score": 84.6,
        "grade": "B",
        "issues": [
            {
                "type": "missing-error-handling",
                "severity": "medium",
                "message": "No behaviour defined for locked accounts",
                "suggestion": "Describe what a locked user sees",
                "points": 8,
            }
        ],
        "strengths": ["Clear user story"],
        "improvements": ["Define lockout duration", "Name the session lifetime"],
    },
    "tasks": [
        {
            "title": "Build Login Form!",
            "summary": "Render email and password inputs with client-side validation",
            "implementation": "Add a LoginForm component",
            "acceptanceCriteria": ["Form rejects malformed email", "Submit is disabled while pending"],
            "estimatedEffort": "S",
            "dependencies": [],
            "testingNotes": "Cover keyboard submission",
            "relevantPatterns": ["Form Validation", "Error Boundaries"],
            "riskFactors": [],
            "securityConsiderations": ["Never log passwords"],
            "performanceConsiderations": [],
            "userExperience": "Inline errors",
            "technicalDebt": [],
        },
        {
            "title": "Session API",
            "summary": "Issue a session cookie after verifying credentials",
            "implementation": "POST /sessions",
            "acceptanceCriteria": ["Valid credentials return 201"],
            "estimatedEffort": "M",
            "dependencies": ["Build Login Form!"],
            "testingNotes": "",
            "relevantPatterns": [],
            "riskFactors": ["Timing attacks"],
            "securityConsiderations": [],
            "performanceConsiderations": [],
            "userExperience": "",
            "technicalDebt": [],
        },
    ],
    "technicalConsiderations": ["Rate limit the endpoint"],
    "userStories": ["As a user I want to log in"],
    "businessValue": "Users can reach their dashboard",
    "scope": {"inScope": ["Email login"], "outOfScope": ["SSO"], "assumptions": []},
}

SIMILARITY_PAYLOAD = {
    "similarFeatures": [
        {
            "featureName": "user-login",
            "similarityScore": 0.91,
            "similarityReasons": ["Same form"],
            "differences": ["Adds remember-me"],
            "recommendation": "merge",
        }
    ],
    "overallAssessment": "Mostly overlapping",
    "confidence": 0.8,
}


@pytest.fixture
def spec_payload():
    return copy.deepcopy(SPEC_PAYLOAD)


class TestValidateAnalysis:
    """Test cases for validate_analysis."""

    def test_valid_spec_analysis(self, spec_payload):
        analysis = validate_analysis(AnalysisKind.SPEC, spec_payload)

        assert isinstance(analysis, SpecAnalysis)
        assert analysis.quality.grade == "B"
        assert analysis.tasks[0].acceptance_criteria[0] == "Form rejects malformed email"
        assert analysis.scope.out_of_scope == ["SSO"]

    def test_kind_given_as_string(self):
        analysis = validate_analysis("similarity_analysis", SIMILARITY_PAYLOAD)

        assert isinstance(analysis, SimilarityAnalysis)
        assert analysis.similar_features[0].feature_name == "user-login"

    def test_snake_case_keys_accepted(self):
        payload = {
            "similar_features": [],
            "overall_assessment": "Nothing similar",
            "confidence": 1.0,
        }
        assert validate_analysis(AnalysisKind.SIMILARITY, payload).confidence == 1.0

    def test_unknown_kind(self, spec_payload):
        with pytest.raises(InvalidInputError, match="Unknown analysis kind"):
            validate_analysis("grading", spec_payload)

    def test_missing_payload(self):
        with pytest.raises(InvalidInputError, match="No analysis data provided"):
            validate_analysis(AnalysisKind.SPEC, None)

    def test_every_violation_reported(self, spec_payload):
        spec_payload["quality"]["grade"] = "Z"
        spec_payload["quality"]["score"] = 140
        spec_payload["tasks"][0]["acceptanceCriteria"] = []
        del spec_payload["scope"]

        with pytest.raises(InvalidInputError) as exc_info:
            validate_analysis(AnalysisKind.SPEC, spec_payload)

        issues = exc_info.value.issues
        assert len(issues) == 4
        assert any(issue.startswith("quality.grade") for issue in issues)
        assert any(issue.startswith("quality.score") for issue in issues)
        assert any(issue.startswith("tasks.0.acceptanceCriteria") for issue in issues)
        assert any(issue.startswith("scope") for issue in issues)

    def test_similarity_score_out_of_range(self):
        payload = copy.deepcopy(SIMILARITY_PAYLOAD)
        payload["similarFeatures"][0]["similarityScore"] = 1.5
        with pytest.raises(InvalidInputError):
            validate_analysis(AnalysisKind.SIMILARITY, payload)


class TestConversion:
    """Test cases for turning a validated analysis into stored types."""

    def test_tasks_from_analysis(self, spec_payload):
        analysis = validate_analysis(AnalysisKind.SPEC, spec_payload)
        tasks = tasks_from_analysis(analysis, "user-login", coverage_target="80%")

        assert [t.id for t in tasks] == ["task_01", "task_02"]
        assert [t.sequence for t in tasks] == [0, 1]
        first = tasks[0]
        assert first.slug == "build-login-form"
        assert first.test_file == "task_01_build-login-form.feature"
        assert first.status is TaskStatus.NOT_STARTED
        assert first.coverage_target == "80%"
        assert first.notes == "Cover keyboard submission"
        assert first.feature_name == "user-login"
        assert [(p.name, p.anchor) for p in first.relevant_patterns] == [
            ("Form Validation", "form-validation"),
            ("Error Boundaries", "error-boundaries"),
        ]
        assert all(not task.validate() for task in tasks)

    def test_spec_result_from_analysis(self, spec_payload):
        analysis = validate_analysis(AnalysisKind.SPEC, spec_payload)
        result = spec_result_from_analysis(analysis, "Users log in with email")

        assert result.spec == "Users log in with email"
        assert result.score == 85
        assert result.grade == "B"
        assert result.missing_elements == ["No behaviour defined for locked accounts"]
        assert result.validate() == []

    def test_spec_falls_back_to_improvements(self, spec_payload):
        analysis = validate_analysis(AnalysisKind.SPEC, spec_payload)
        result = spec_result_from_analysis(analysis)

        assert result.spec == "Define lockout duration Name the session lifetime"


class TestSlugify:
    """Test cases for slugify."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Build Login Form", "build-login-form"),
            ("  API: v2 / sessions  ", "api-v2-sessions"),
            ("already-slugged", "already-slugged"),
            ("!!!", "task"),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected


class TestGherkinAnalysis:
    """Test cases for validating and rendering Gherkin analyses."""

    def test_validates_and_renders(self, gherkin_factory):
        analysis = validate_analysis(AnalysisKind.GHERKIN, gherkin_factory())

        assert isinstance(analysis, GherkinAnalysis)
        assert render_gherkin_analysis(analysis) == (
            "Feature: Build login form\n"
            "  Users sign in with email and password\n"
            "\n"
            "  Scenario: Valid credentials\n"
            "    Given a registered user\n"
            "    When they submit the form\n"
            "    Then the dashboard opens\n"
            "\n"
            "# Testing Notes:\n"
            "# Seed one registered user\n"
        )

    def test_background_tags_and_examples(self, gherkin_factory):
        payload = gherkin_factory()
        payload["feature"]["background"] = [{"type": "given", "text": "the login page is open"}]
        scenario = payload["feature"]["scenarios"][0]
        scenario["tags"] = ["smoke", "@auth"]
        scenario["examples"] = [
            {"description": "valid", "data": {"email": "a@b.c", "password": "secret"}},
            {"description": "uppercase", "data": {"email": "A@B.C"}},
        ]

        text = render_gherkin_analysis(validate_analysis(AnalysisKind.GHERKIN, payload))

        assert "  Background:\n    Given the login page is open\n" in text
        assert "  @smoke @auth\n  Scenario Outline: Valid credentials\n" in text
        assert (
            "    Examples:\n"
            "      | description | email | password |\n"
            "      | valid | a@b.c | secret |\n"
            "      | uppercase | A@B.C |  |\n"
        ) in text

    def test_rules_count_towards_scenarios(self, gherkin_factory):
        payload = gherkin_factory(rules=[("Lockout", [("Too many attempts", [("when", "five logins fail")])])])
        analysis = validate_analysis(AnalysisKind.GHERKIN, payload)

        assert gherkin_scenario_count(analysis) == 2
        assert "  Rule: Lockout\n\n    Scenario: Too many attempts\n      When five logins fail\n" in (
            render_gherkin_analysis(analysis)
        )

    def test_unknown_step_type_rejected(self, gherkin_factory):
        payload = gherkin_factory()
        payload["feature"]["scenarios"][0]["steps"][0]["type"] = "whenever"

        with pytest.raises(InvalidInputError) as exc_info:
            validate_analysis(AnalysisKind.GHERKIN, payload)
        assert any(issue.startswith("feature.scenarios.0.steps.0.type") for issue in exc_info.value.issues)


class TestValidationAndRunPayloads:
    """Test cases for implementation validation and test run payloads."""

    def test_implementation_validation(self, validation_factory, task_validation_factory):
        payload = validation_factory(task_validations=[task_validation_factory("task_01", issues=("critical",))])
        validation = validate_analysis(AnalysisKind.VALIDATION, payload)

        assert isinstance(validation, ImplementationValidation)
        assert validation.task_validations[0].code_quality_issues[0].severity == "critical"
        assert validation.test_coverage.coverage is None

    def test_implementation_validation_quality_out_of_range(self, validation_factory, task_validation_factory):
        payload = validation_factory(task_validations=[task_validation_factory("task_01", quality=140)])

        with pytest.raises(InvalidInputError) as exc_info:
            validate_analysis(AnalysisKind.VALIDATION, payload)
        assert any(issue.startswith("taskValidations.0.qualityScore") for issue in exc_info.value.issues)

    def test_run_report_to_result(self):
        report = validate_analysis(
            AnalysisKind.TEST_RESULTS,
            {
                "passed": 3,
                "failed": 1,
                "skipped": 0,
                "coverage": 72.5,
                "details": [{"scenario": "Locked account", "status": "failed", "error": "expected 423"}],
            },
        )
        result = run_result_from_report(report, "user-login", "task_02")

        assert isinstance(report, GherkinRunReport)
        assert (result.feature_name, result.task_id, result.total) == ("user-login", "task_02", 4)
        assert result.details[0].status is ScenarioOutcome.FAILED
        assert result.details[0].error == "expected 423"

    def test_run_report_rejects_negative_counts(self):
        with pytest.raises(InvalidInputError):
            validate_analysis(AnalysisKind.TEST_RESULTS, {"passed": -1, "failed": 0, "skipped": 0})
