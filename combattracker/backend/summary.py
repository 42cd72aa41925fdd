"""Read-only derived views over an encounter."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from combattracker.backend.models import Combatant, Encounter, EncounterStatus
from combattracker.backend.state import utc_now


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 1)


@dataclass(frozen=True)
class EffectView:
    id: str
    name: str
    kind: str
    remaining_rounds: int | None
    indefinite: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "remainingRounds": self.remaining_rounds,
            "indefinite": self.indefinite,
        }


@dataclass(frozen=True)
class CombatantView:
    id: str
    name: str
    type: str
    initiative: int
    hp: int
    max_hp: int
    hp_percent: float
    is_down: bool
    is_current: bool
    effects: tuple[EffectView, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "initiative": self.initiative,
            "hp": self.hp,
            "maxHp": self.max_hp,
            "hpPercent": self.hp_percent,
            "isDown": self.is_down,
            "isCurrent": self.is_current,
            "effects": [effect.to_dict() for effect in self.effects],
        }


@dataclass(frozen=True)
class EncounterSummary:
    encounter_id: str
    status: EncounterStatus
    current_round: int
    current_turn_index: int | None
    current_combatant_id: str | None
    combatants: tuple[CombatantView, ...]
    conscious_count: int
    down_count: int
    counts_by_type: dict[str, int]
    health_percent: float
    duration_minutes: int | None

    @property
    def total_combatants(self) -> int:
        return len(self.combatants)

    def to_dict(self) -> dict[str, Any]:
        return {
            "encounterId": self.encounter_id,
            "status": self.status.value,
            "currentRound": self.current_round,
            "currentTurnIndex": self.current_turn_index,
            "currentCombatantId": self.current_combatant_id,
            "combatants": [view.to_dict() for view in self.combatants],
            "totalCombatants": self.total_combatants,
            "consciousCount": self.conscious_count,
            "downCount": self.down_count,
            "countsByType": dict(self.counts_by_type),
            "healthPercent": self.health_percent,
            "durationMinutes": self.duration_minutes,
        }


def _combatant_view(combatant: Combatant, is_current: bool) -> CombatantView:
    return CombatantView(
        id=combatant.id,
        name=combatant.name,
        type=combatant.type,
        initiative=combatant.initiative,
        hp=combatant.hp,
        max_hp=combatant.max_hp,
        hp_percent=_percent(combatant.hp, combatant.max_hp),
        is_down=combatant.is_down,
        is_current=is_current,
        effects=tuple(
            EffectView(
                id=effect.id,
                name=effect.name,
                kind=effect.kind,
                remaining_rounds=effect.duration_rounds,
                indefinite=effect.is_indefinite,
            )
            for effect in combatant.status_effects
        ),
    )


def _ordered_roster(encounter: Encounter) -> list[Combatant]:
    ordered = [encounter.combatants[cid] for cid in encounter.initiative_order if cid in encounter.combatants]
    listed = {combatant.id for combatant in ordered}
    ordered.extend(combatant for combatant in encounter.combatants.values() if combatant.id not in listed)
    return ordered


def get_summary(encounter: Encounter, now: datetime | None = None) -> EncounterSummary:
    """Build the summary view. Pure: the encounter is only read.

    `now` anchors the elapsed-duration figure and defaults to the current UTC time.
    """
    current = encounter.current_combatant
    roster = _ordered_roster(encounter)
    views = tuple(_combatant_view(combatant, current is not None and combatant.id == current.id) for combatant in roster)

    duration_minutes: int | None = None
    if encounter.started_at is not None:
        until = encounter.ended_at or now or utc_now()
        duration_minutes = max(0, int((until - encounter.started_at).total_seconds() // 60))

    down_count = sum(1 for view in views if view.is_down)
    return EncounterSummary(
        encounter_id=encounter.id,
        status=encounter.status,
        current_round=encounter.current_round,
        current_turn_index=encounter.current_turn_index if current is not None else None,
        current_combatant_id=current.id if current is not None else None,
        combatants=views,
        conscious_count=len(views) - down_count,
        down_count=down_count,
        counts_by_type=dict(Counter(combatant.type for combatant in roster)),
        health_percent=_percent(sum(c.hp for c in roster), sum(c.max_hp for c in roster)),
        duration_minutes=duration_minutes,
    )
