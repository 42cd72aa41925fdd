"""Domain models for encounter state and their JSON persistence contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EncounterStatus(str, Enum):
    PREPARING = "preparing"
    ACTIVE = "active"
    COMPLETED = "completed"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class StatusEffect:
    id: str
    name: str
    description: str = ""
    duration_rounds: int | None = None
    kind: str = "neutral"

    @property
    def is_indefinite(self) -> bool:
        return self.duration_rounds is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "durationRounds": self.duration_rounds,
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusEffect":
        duration = data.get("durationRounds")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            description=str(data.get("description", "")),
            duration_rounds=int(duration) if duration is not None else None,
            kind=str(data.get("kind", "neutral")),
        )


@dataclass
class Combatant:
    id: str
    name: str
    initiative: int
    hp: int
    max_hp: int
    type: str = "enemy"
    status_effects: list[StatusEffect] = field(default_factory=list)
    # display-only data (ac, notes, characterId, ...) passed through untouched
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_down(self) -> bool:
        return self.hp == 0

    def find_effect(self, effect_id: str) -> StatusEffect | None:
        for effect in self.status_effects:
            if effect.id == effect_id:
                return effect
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "initiative": self.initiative,
            "hp": self.hp,
            "maxHp": self.max_hp,
            "statusEffects": [effect.to_dict() for effect in self.status_effects],
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Combatant":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            type=str(data.get("type", "enemy")),
            initiative=int(data["initiative"]),
            hp=int(data["hp"]),
            max_hp=int(data["maxHp"]),
            status_effects=[StatusEffect.from_dict(item) for item in data.get("statusEffects", [])],
            extra=dict(data.get("extra", {})),
        )


@dataclass
class Encounter:
    id: str
    campaign_id: str
    owner_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    notes: str = ""
    status: EncounterStatus = EncounterStatus.PREPARING
    current_round: int = 0
    current_turn_index: int = 0
    # insertion order of this mapping is the initiative tiebreak
    combatants: dict[str, Combatant] = field(default_factory=dict)
    initiative_order: list[str] = field(default_factory=list)
    environment_effects: list[Any] = field(default_factory=list)
    version: int = 1
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def current_combatant(self) -> Combatant | None:
        if self.status is not EncounterStatus.ACTIVE or not self.initiative_order:
            return None
        if not 0 <= self.current_turn_index < len(self.initiative_order):
            return None
        return self.combatants.get(self.initiative_order[self.current_turn_index])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "campaignId": self.campaign_id,
            "ownerId": self.owner_id,
            "name": self.name,
            "description": self.description,
            "notes": self.notes,
            "status": self.status.value,
            "currentRound": self.current_round,
            "currentTurnIndex": self.current_turn_index,
            "combatants": [combatant.to_dict() for combatant in self.combatants.values()],
            "initiativeOrder": list(self.initiative_order),
            "environmentEffects": list(self.environment_effects),
            "version": self.version,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "startedAt": _iso(self.started_at),
            "endedAt": _iso(self.ended_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Encounter":
        combatants = [Combatant.from_dict(item) for item in data.get("combatants", [])]
        created_at = datetime.fromisoformat(str(data["createdAt"]))
        updated_at = _parse_iso(data.get("updatedAt")) or created_at
        return cls(
            id=str(data["id"]),
            campaign_id=str(data["campaignId"]),
            owner_id=str(data["ownerId"]),
            name=str(data["name"]),
            description=str(data.get("description", "")),
            notes=str(data.get("notes", "")),
            status=EncounterStatus(data.get("status", EncounterStatus.PREPARING.value)),
            current_round=int(data.get("currentRound", 0)),
            current_turn_index=int(data.get("currentTurnIndex", 0)),
            combatants={combatant.id: combatant for combatant in combatants},
            initiative_order=[str(item) for item in data.get("initiativeOrder", [])],
            environment_effects=list(data.get("environmentEffects", [])),
            version=int(data.get("version", 1)),
            created_at=created_at,
            updated_at=updated_at,
            started_at=_parse_iso(data.get("startedAt")),
            ended_at=_parse_iso(data.get("endedAt")),
        )


@dataclass(frozen=True)
class ExpiredEffect:
    combatant_id: str
    combatant_name: str
    effect: StatusEffect

    def to_dict(self) -> dict[str, Any]:
        return {
            "combatantId": self.combatant_id,
            "combatantName": self.combatant_name,
            "effect": self.effect.to_dict(),
        }


@dataclass(frozen=True)
class TurnAdvance:
    combatant: Combatant
    round: int
    expired_effects: tuple[ExpiredEffect, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "combatant": self.combatant.to_dict(),
            "round": self.round,
            "expiredEffects": [item.to_dict() for item in self.expired_effects],
        }
