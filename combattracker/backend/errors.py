"""Typed failures raised by the encounter engine and its stores.

Every failure is deterministic and locally detectable. The engine never retries;
the host decides how to surface the failure and whether to try again.
"""

from __future__ import annotations

from typing import Any


class EncounterEngineError(Exception):
    """Base class for all engine failures.

    Attributes:
        message: Human-readable reason.
        details: Extra context (ids, offending values, validation errors).
    """

    kind = "error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


class NotFound(EncounterEngineError):
    """A referenced encounter, combatant or effect does not exist."""

    kind = "not_found"


class InvalidState(EncounterEngineError):
    """The operation is illegal in the encounter's current lifecycle phase."""

    kind = "invalid_state"


class InvalidInput(EncounterEngineError):
    """Supplied data violates a constraint."""

    kind = "invalid_input"
