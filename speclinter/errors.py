"""Error taxonomy for the SpecLinter feature store."""

from __future__ import annotations

from typing import Iterable, List, Optional


class SpecLinterError(Exception):
    """Base exception for SpecLinter."""

    suggestion: Optional[str] = None


class NotInitializedError(SpecLinterError, RuntimeError):
    """Raised when the project or its storage is used before setup."""

    suggestion = "Run the speclinter_init_project tool (or initialize_project) in your project root first."

    def __init__(self, message: str = "SpecLinter not initialized."):
        super().__init__(f"{message} {self.suggestion}")


class NotFoundError(SpecLinterError, LookupError):
    """Raised when a feature or task lookup misses."""

    suggestion = "Check the feature name and task id with speclinter_list_features."

    def __init__(self, kind: str, key: str, feature_name: Optional[str] = None):
        self.kind = kind
        self.key = key
        self.feature_name = feature_name
        if feature_name and kind != "feature":
            message = f"{kind.capitalize()} '{key}' not found for feature '{feature_name}'"
        else:
            message = f"{kind.capitalize()} '{key}' not found"
        super().__init__(message)


class InvalidInputError(SpecLinterError, ValueError):
    """Raised when input is rejected before any persistence attempt."""

    suggestion = "Fix the reported issues and call the tool again."

    def __init__(self, issues: Iterable[str]):
        self.issues: List[str] = list(issues)
        super().__init__("Invalid input: " + "; ".join(self.issues))


class PersistenceError(SpecLinterError, RuntimeError):
    """Raised when the database or file system write fails; nothing was committed."""

    suggestion = "Check that the project directory is writable, then retry the whole save."
