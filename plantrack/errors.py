"""Error taxonomy for PlanTrack.

Lifecycle services return ``NotFound`` and ``InvalidTransition`` outcomes as
typed results rather than raising them; the exception classes exist so the
creation paths and the tool layer can carry the same codes. Invariant and
validation failures are raised.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PlanTrackError(Exception):
    """Base error envelope carrying a stable code."""

    code = "E_PLANTRACK"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"code": self.code, "message": self.message}


class NotFound(PlanTrackError):
    """A referenced entity or edge does not exist."""

    code = "E_NOT_FOUND"

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} not found: {entity_id}")


class InvalidTransition(PlanTrackError):
    """The state machine rejected a status change."""

    code = "E_INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition from {from_state} to {to_state}")


class InvariantViolation(PlanTrackError):
    """Self-dependency, duplicate edge, cycle or cross-scope edge."""

    code = "E_INVARIANT"


class ValidationError(PlanTrackError, ValueError):
    """Malformed input such as an unknown enum member."""

    code = "E_VALIDATION"
