"""State builders for new encounters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
import uuid

from combattracker.backend.models import Encounter, EncounterStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def build_encounter(
    campaign_id: str,
    owner_id: str,
    name: str,
    description: str = "",
    notes: str = "",
    environment_effects: list[Any] | None = None,
    encounter_id: str | None = None,
) -> Encounter:
    """Return a fresh `preparing` encounter: round 0, empty roster, version 1."""
    now = utc_now()
    return Encounter(
        id=encounter_id or new_id(),
        campaign_id=campaign_id,
        owner_id=owner_id,
        name=name,
        description=description,
        notes=notes,
        status=EncounterStatus.PREPARING,
        current_round=0,
        current_turn_index=0,
        environment_effects=list(environment_effects or []),
        version=1,
        created_at=now,
        updated_at=now,
    )
