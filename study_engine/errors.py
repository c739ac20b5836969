"""Exception types raised by the study engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class StudyEngineError(Exception):
    """Base class for engine errors."""


class ValidationError(StudyEngineError):
    """Input rejected before any external call was made."""


class NotFoundError(StudyEngineError):
    """A referenced set, document or exam session does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ProviderError(StudyEngineError):
    """Every candidate model failed, or the provider is not configured."""

    def __init__(self, message: str, failures: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.failures: List[Dict[str, Any]] = failures or []

    def __str__(self) -> str:
        base = super().__str__()
        if not self.failures:
            return base
        attempts = "; ".join(
            f"{f.get('model')}: {f.get('status')} {f.get('message')}" for f in self.failures
        )
        return f"{base} ({attempts})"


class ExamAlreadySubmittedError(ValidationError):
    """An exam session is terminal once submitted."""

    def __init__(self, session_id: str):
        super().__init__(f"Exam session already submitted: {session_id}")
        self.session_id = session_id
