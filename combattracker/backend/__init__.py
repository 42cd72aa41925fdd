"""Backend package for the combat encounter tracker."""

from .config import BackendSettings, load_settings
from .engine import ActionResult, apply_host_action
from .errors import EncounterEngineError, InvalidInput, InvalidState, NotFound
from .models import Combatant, Encounter, EncounterStatus, StatusEffect
from .state import build_encounter
from .store import EncounterStore, InMemoryEncounterStore, PostgresEncounterStore, create_store
from .summary import EncounterSummary, get_summary

__all__ = [
    "ActionResult",
    "apply_host_action",
    "BackendSettings",
    "build_encounter",
    "Combatant",
    "create_store",
    "Encounter",
    "EncounterEngineError",
    "EncounterStatus",
    "EncounterStore",
    "EncounterSummary",
    "get_summary",
    "InMemoryEncounterStore",
    "InvalidInput",
    "InvalidState",
    "load_settings",
    "NotFound",
    "PostgresEncounterStore",
    "StatusEffect",
]
