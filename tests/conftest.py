"""Shared fixtures for SpecLinter tests."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from speclinter.database import Database
from speclinter.models import SpecResult, Task
from speclinter.repository import FeatureRepository
from speclinter.workspace import SpecLinterWorkspace, initialize_project


LOGIN_SPEC = (
    "As a registered user I want to log in with my email address and password so that "
    "I can reach my personal dashboard. The login form should validate the email format "
    "and must show a clear error message when the credentials are wrong. Acceptance criteria: "
    "successful login redirects to the dashboard and failed attempts are counted for lockout."
)


def make_task(index: int, summary: str, title: str = "", **overrides) -> Task:
    """Build a valid task; ``index`` is 1-based like the task ids."""
    title = title or f"Task {index}"
    slug = title.lower().replace(" ", "-")
    fields = dict(
        id=f"task_{index:02d}",
        title=title,
        slug=slug,
        summary=summary,
        implementation=f"Implement {title.lower()}",
        acceptance_criteria=[f"{title} works"],
        sequence=index - 1,
        test_file=f"{slug}.feature",
        coverage_target="90%",
    )
    fields.update(overrides)
    return Task(**fields)


def make_spec_result(spec: str = LOGIN_SPEC, grade: str = "B", score: int = 82) -> SpecResult:
    return SpecResult(spec=spec, grade=grade, score=score)


class FakeClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def login_tasks() -> List[Task]:
    return [make_task(1, "Validate email and password and open a session for the user", title="Build login form")]


@pytest.fixture
def database(tmp_path):
    db = Database(tmp_path / ".speclinter" / "speclinter.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def repository(database):
    return FeatureRepository(database, clock=FakeClock())


@pytest.fixture
def workspace(tmp_path):
    initialize_project(tmp_path)
    ws = SpecLinterWorkspace.open(tmp_path)
    yield ws
    ws.close()


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def spec_result_factory():
    return make_spec_result


@pytest.fixture
def login_spec() -> str:
    return LOGIN_SPEC


def make_spec_analysis(tasks=None, grade: str = "B", score: float = 82) -> dict:
    """Build a camelCase spec analysis payload as the AI would return it.

    ``tasks`` is a list of (title, summary) pairs.
    """
    tasks = tasks or [("Build login form", "Validate email and password and open a session for the user")]
    return {
        "quality": {
            "score": score,
            "grade": grade,
            "issues": [],
            "strengths": ["Clear user story"],
            "improvements": ["Define lockout duration"],
        },
        "tasks": [
            {
                "title": title,
                "summary": summary,
                "implementation": f"Implement {title.lower()}",
                "acceptanceCriteria": [f"{title} works"],
                "estimatedEffort": "M",
                "dependencies": [],
                "testingNotes": "",
                "relevantPatterns": [],
                "riskFactors": [],
                "securityConsiderations": [],
                "performanceConsiderations": [],
                "userExperience": "",
                "technicalDebt": [],
            }
            for title, summary in tasks
        ],
        "technicalConsiderations": [],
        "userStories": [],
        "businessValue": "Users reach their dashboard",
        "scope": {"inScope": [], "outOfScope": [], "assumptions": []},
    }


@pytest.fixture
def analysis_factory():
    return make_spec_analysis


def make_gherkin_analysis(title: str = "Build login form", scenarios=None, rules=None) -> dict:
    """Build a camelCase Gherkin analysis payload.

    ``scenarios`` is a list of (title, [(step type, text), ...]) pairs.
    """
    scenarios = scenarios or [
        (
            "Valid credentials",
            [("given", "a registered user"), ("when", "they submit the form"), ("then", "the dashboard opens")],
        ),
    ]

    def scenario(name, steps):
        return {
            "type": "happy_path",
            "title": name,
            "steps": [{"type": kind, "text": text} for kind, text in steps],
            "priority": "high",
        }

    feature = {
        "title": title,
        "description": "Users sign in with email and password",
        "scenarios": [scenario(name, steps) for name, steps in scenarios],
        "testingNotes": "Seed one registered user",
        "coverageAreas": ["login"],
    }
    if rules:
        feature["rules"] = [
            {"title": rule_title, "scenarios": [scenario(name, steps) for name, steps in rule_scenarios]}
            for rule_title, rule_scenarios in rules
        ]
    return {
        "feature": feature,
        "qualityMetrics": {
            "scenarioCount": len(scenarios),
            "coverageScore": 85,
            "actionabilityScore": 90,
            "maintainabilityScore": 80,
        },
        "technicalConsiderations": [],
        "automationReadiness": {"score": 75, "blockers": [], "recommendations": ["Use page objects"]},
        "aiInsights": {"confidence": 0.8, "improvements": [], "patterns": ["Given-When-Then"]},
    }


def make_task_validation(task_id: str, status: str = "fully_implemented", quality: float = 90, issues=()) -> dict:
    """One camelCase task validation; ``issues`` lists severities of code quality issues."""
    return {
        "taskId": task_id,
        "title": f"Task {task_id}",
        "implementationStatus": status,
        "qualityScore": quality,
        "implementationFiles": ["src/login.py"],
        "acceptanceCriteriaValidation": [],
        "patternCompliance": [],
        "codeQualityIssues": [
            {
                "type": "security",
                "severity": severity,
                "description": "Password compared in plain text",
                "location": "src/login.py:12",
                "suggestion": "Use a constant-time comparison",
            }
            for severity in issues
        ],
        "missingComponents": [],
        "recommendations": ["Add rate limiting"],
    }


def make_implementation_validation(feature_name: str = "user-login", task_validations=None, next_steps=None) -> dict:
    return {
        "featureName": feature_name,
        "overallStatus": "in_progress",
        "completionPercentage": 50,
        "qualityScore": 78,
        "taskValidations": task_validations or [],
        "architecturalAlignment": {"score": 80, "strengths": [], "concerns": [], "recommendations": []},
        "testCoverage": {"hasTests": True, "testTypes": ["unit"], "testQuality": "fair", "missingTests": []},
        "securityConsiderations": [
            {"area": "auth", "status": "vulnerable", "details": "No lockout", "recommendations": []}
        ],
        "performanceConsiderations": [],
        "nextSteps": next_steps or [],
        "aiInsights": {"strengths": [], "weaknesses": [], "surprises": [], "confidence": 0.7},
    }


@pytest.fixture
def gherkin_factory():
    return make_gherkin_analysis


@pytest.fixture
def validation_factory():
    return make_implementation_validation


@pytest.fixture
def task_validation_factory():
    return make_task_validation
