"""Encounter state machine: roster mutation, turn advancement, effect expiry and HP changes.

Every operation takes the current `Encounter`, works on a deep copy and returns an
`ActionResult` holding the next state. A rejected operation raises before anything
is returned, so the caller's encounter is never partially mutated.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from combattracker.backend.commands import (
    AmountInput,
    CombatantInput,
    CombatantPatch,
    EncounterDetailsPatch,
    StatusEffectInput,
    parse_payload,
)
from combattracker.backend.errors import InvalidInput, InvalidState, NotFound
from combattracker.backend.logging import get_logger
from combattracker.backend.models import (
    Combatant,
    Encounter,
    EncounterStatus,
    ExpiredEffect,
    StatusEffect,
    TurnAdvance,
)
from combattracker.backend.state import new_id, utc_now


logger = get_logger(__name__)


@dataclass(frozen=True)
class ActionResult:
    encounter: Encounter
    engine_events: list[dict[str, Any]]
    value: Any = None
    changed: bool = True


def initiative_sorted(encounter: Encounter) -> list[str]:
    """Roster ids by descending initiative; ties keep the order combatants were added."""
    ordered = sorted(encounter.combatants.values(), key=lambda combatant: -combatant.initiative)
    return [combatant.id for combatant in ordered]


def _working_copy(encounter: Encounter) -> Encounter:
    return copy.deepcopy(encounter)


def _require_not_completed(encounter: Encounter, operation: str) -> None:
    if encounter.status is EncounterStatus.COMPLETED:
        raise InvalidState(
            f"Cannot {operation}: encounter is completed",
            details={"encounter_id": encounter.id},
        )


def _require_combatant(encounter: Encounter, combatant_id: str) -> Combatant:
    combatant = encounter.combatants.get(combatant_id)
    if combatant is None:
        raise NotFound(
            "Combatant not found",
            details={"encounter_id": encounter.id, "combatant_id": combatant_id},
        )
    return combatant


def _turn_started_event(encounter: Encounter) -> dict[str, Any]:
    actor = encounter.current_combatant
    return {
        "kind": "turn_started",
        "round": encounter.current_round,
        "turnIndex": encounter.current_turn_index,
        "combatantId": actor.id if actor is not None else None,
    }


def _advance_round(encounter: Encounter, events: list[dict[str, Any]]) -> list[ExpiredEffect]:
    """Start the next round: reset the turn, re-sort the order and tick effect durations."""
    encounter.current_round += 1
    encounter.current_turn_index = 0
    encounter.initiative_order = initiative_sorted(encounter)
    events.append({"kind": "round_started", "round": encounter.current_round})

    expired: list[ExpiredEffect] = []
    for combatant_id in encounter.initiative_order:
        combatant = encounter.combatants[combatant_id]
        remaining: list[StatusEffect] = []
        for effect in combatant.status_effects:
            if effect.duration_rounds is None:
                remaining.append(effect)
                continue
            effect.duration_rounds -= 1
            if effect.duration_rounds > 0:
                remaining.append(effect)
                continue
            expired.append(ExpiredEffect(combatant_id=combatant.id, combatant_name=combatant.name, effect=effect))
            events.append(
                {
                    "kind": "effect_expired",
                    "combatantId": combatant.id,
                    "effectId": effect.id,
                    "name": effect.name,
                }
            )
        combatant.status_effects = remaining

    logger.info(
        "Round started",
        encounter_id=encounter.id,
        round=encounter.current_round,
        expired_effects=[f"{item.effect.name} on {item.combatant_name}" for item in expired],
    )
    return expired


def add_combatant(encounter: Encounter, data: Any) -> ActionResult:
    """Add a combatant; returns its new id as `value`.

    While preparing, the whole order is re-sorted. While active, the newcomer acts
    right after the current combatant so nobody who already acted this round is moved.
    """
    payload = parse_payload(CombatantInput, data)
    _require_not_completed(encounter, "add combatant")

    next_encounter = _working_copy(encounter)
    combatant = Combatant(
        id=new_id(),
        name=payload.name,
        type=payload.type,
        initiative=payload.initiative,
        hp=payload.hp,
        max_hp=payload.max_hp,
        extra=payload.extra_fields,
    )
    next_encounter.combatants[combatant.id] = combatant

    if next_encounter.status is EncounterStatus.ACTIVE:
        next_encounter.initiative_order.insert(next_encounter.current_turn_index + 1, combatant.id)
    else:
        next_encounter.initiative_order = initiative_sorted(next_encounter)

    logger.info("Combatant added", encounter_id=encounter.id, combatant_id=combatant.id, name=combatant.name)
    return ActionResult(
        encounter=next_encounter,
        engine_events=[{"kind": "combatant_added", "combatantId": combatant.id, "name": combatant.name}],
        value=combatant.id,
    )


def update_combatant(encounter: Encounter, combatant_id: str, patch: Any) -> ActionResult:
    """Apply a partial update.

    An initiative change re-sorts the order only while preparing; during an active
    encounter it takes effect when the next round starts. Lowering maxHp below the
    current hp clamps hp down; an explicit hp above maxHp is rejected.
    """
    payload = parse_payload(CombatantPatch, patch)
    _require_not_completed(encounter, "update combatant")

    next_encounter = _working_copy(encounter)
    combatant = _require_combatant(next_encounter, combatant_id)
    fields = payload.model_fields_set

    max_hp = payload.max_hp if "max_hp" in fields and payload.max_hp is not None else combatant.max_hp
    if "hp" in fields and payload.hp is not None:
        if payload.hp > max_hp:
            raise InvalidInput(
                "hp must not exceed maxHp",
                details={"combatant_id": combatant_id, "hp": payload.hp, "max_hp": max_hp},
            )
        hp = payload.hp
    else:
        hp = min(combatant.hp, max_hp)

    initiative_changed = payload.initiative is not None and payload.initiative != combatant.initiative
    if payload.name is not None:
        combatant.name = payload.name
    if payload.type is not None:
        combatant.type = payload.type
    if payload.initiative is not None:
        combatant.initiative = payload.initiative
    combatant.hp = hp
    combatant.max_hp = max_hp
    for key, value in payload.extra_fields.items():
        if value is None:
            combatant.extra.pop(key, None)
        else:
            combatant.extra[key] = value

    if initiative_changed and next_encounter.status is EncounterStatus.PREPARING:
        next_encounter.initiative_order = initiative_sorted(next_encounter)

    changed_fields = sorted(fields | set(payload.extra_fields))
    return ActionResult(
        encounter=next_encounter,
        engine_events=[{"kind": "combatant_updated", "combatantId": combatant_id, "fields": changed_fields}],
        value=combatant,
    )


def remove_combatant(encounter: Encounter, combatant_id: str) -> ActionResult:
    """Remove a combatant and its effects.

    If the current actor is removed, the next combatant in the order becomes current
    without an extra turn being consumed; removing the last actor of a round wraps
    into the next round.
    """
    _require_not_completed(encounter, "remove combatant")
    next_encounter = _working_copy(encounter)
    removed = _require_combatant(next_encounter, combatant_id)
    events: list[dict[str, Any]] = [{"kind": "combatant_removed", "combatantId": combatant_id, "name": removed.name}]

    if next_encounter.status is not EncounterStatus.ACTIVE:
        del next_encounter.combatants[combatant_id]
        next_encounter.initiative_order = initiative_sorted(next_encounter)
        return ActionResult(encounter=next_encounter, engine_events=events, value=removed)

    if len(next_encounter.combatants) == 1:
        raise InvalidState(
            "Cannot remove the last combatant of an active encounter; end the encounter instead",
            details={"encounter_id": encounter.id, "combatant_id": combatant_id},
        )

    position = next_encounter.initiative_order.index(combatant_id)
    del next_encounter.combatants[combatant_id]
    next_encounter.initiative_order.pop(position)

    if position < next_encounter.current_turn_index:
        next_encounter.current_turn_index -= 1
    elif position == next_encounter.current_turn_index:
        if next_encounter.current_turn_index >= len(next_encounter.initiative_order):
            _advance_round(next_encounter, events)
        events.append(_turn_started_event(next_encounter))

    logger.info("Combatant removed", encounter_id=encounter.id, combatant_id=combatant_id)
    return ActionResult(encounter=next_encounter, engine_events=events, value=removed)


def start_encounter(encounter: Encounter) -> ActionResult:
    if encounter.status is not EncounterStatus.PREPARING:
        raise InvalidState(
            f"Encounter can only be started while preparing (status is {encounter.status.value})",
            details={"encounter_id": encounter.id},
        )
    if not encounter.combatants:
        raise InvalidState(
            "Encounter needs at least one combatant to start",
            details={"encounter_id": encounter.id},
        )

    next_encounter = _working_copy(encounter)
    next_encounter.initiative_order = initiative_sorted(next_encounter)
    next_encounter.status = EncounterStatus.ACTIVE
    next_encounter.current_round = 1
    next_encounter.current_turn_index = 0
    next_encounter.started_at = utc_now()

    logger.info("Encounter started", encounter_id=encounter.id, combatants=len(next_encounter.combatants))
    return ActionResult(
        encounter=next_encounter,
        engine_events=[
            {"kind": "encounter_started", "initiativeOrder": list(next_encounter.initiative_order)},
            {"kind": "round_started", "round": 1},
            _turn_started_event(next_encounter),
        ],
        value=next_encounter.current_combatant,
    )


def end_encounter(encounter: Encounter) -> ActionResult:
    """Complete the encounter; from `preparing` this acts as a cancel."""
    _require_not_completed(encounter, "end encounter")
    next_encounter = _working_copy(encounter)
    previous_status = next_encounter.status
    next_encounter.status = EncounterStatus.COMPLETED
    next_encounter.ended_at = utc_now()

    logger.info(
        "Encounter ended",
        encounter_id=encounter.id,
        previous_status=previous_status.value,
        rounds=next_encounter.current_round,
    )
    return ActionResult(
        encounter=next_encounter,
        engine_events=[{"kind": "encounter_ended", "previousStatus": previous_status.value}],
    )


def next_turn(encounter: Encounter) -> ActionResult:
    """Advance to the next combatant; `value` is a `TurnAdvance`.

    Wrapping past the last combatant starts a new round: finite effect durations
    drop by one and effects reaching zero are removed and reported as expired.
    """
    if encounter.status is not EncounterStatus.ACTIVE:
        raise InvalidState(
            f"Turns can only advance while the encounter is active (status is {encounter.status.value})",
            details={"encounter_id": encounter.id},
        )

    next_encounter = _working_copy(encounter)
    ending = next_encounter.current_combatant
    events: list[dict[str, Any]] = [
        {"kind": "turn_ended", "round": next_encounter.current_round, "combatantId": ending.id if ending else None}
    ]

    expired: list[ExpiredEffect] = []
    new_turn_index = next_encounter.current_turn_index + 1
    if new_turn_index >= len(next_encounter.initiative_order):
        expired = _advance_round(next_encounter, events)
    else:
        next_encounter.current_turn_index = new_turn_index
    events.append(_turn_started_event(next_encounter))

    actor = next_encounter.current_combatant
    if actor is None:
        raise InvalidState("Encounter has no combatant to act", details={"encounter_id": encounter.id})
    return ActionResult(
        encounter=next_encounter,
        engine_events=events,
        value=TurnAdvance(combatant=actor, round=next_encounter.current_round, expired_effects=tuple(expired)),
    )


def add_status_effect(encounter: Encounter, combatant_id: str, data: Any) -> ActionResult:
    payload = parse_payload(StatusEffectInput, data)
    _require_not_completed(encounter, "add status effect")

    next_encounter = _working_copy(encounter)
    combatant = _require_combatant(next_encounter, combatant_id)
    effect = StatusEffect(
        id=new_id(),
        name=payload.name,
        description=payload.description,
        duration_rounds=payload.rounds,
        kind=payload.kind,
    )
    combatant.status_effects.append(effect)

    return ActionResult(
        encounter=next_encounter,
        engine_events=[
            {
                "kind": "effect_added",
                "combatantId": combatant_id,
                "effectId": effect.id,
                "name": effect.name,
                "durationRounds": effect.duration_rounds,
            }
        ],
        value=effect.id,
    )


def remove_status_effect(encounter: Encounter, combatant_id: str, effect_id: str) -> ActionResult:
    """Remove an effect; `value` is False when the combatant or effect is already gone."""
    _require_not_completed(encounter, "remove status effect")
    combatant = encounter.combatants.get(combatant_id)
    if combatant is None or combatant.find_effect(effect_id) is None:
        return ActionResult(encounter=encounter, engine_events=[], value=False, changed=False)

    next_encounter = _working_copy(encounter)
    target = next_encounter.combatants[combatant_id]
    target.status_effects = [effect for effect in target.status_effects if effect.id != effect_id]
    return ActionResult(
        encounter=next_encounter,
        engine_events=[{"kind": "effect_removed", "combatantId": combatant_id, "effectId": effect_id}],
        value=True,
    )


def apply_damage(encounter: Encounter, combatant_id: str, amount: Any) -> ActionResult:
    """Reduce hp, clamped at zero. Reaching zero is reported but changes nothing else."""
    damage = parse_payload(AmountInput, {"amount": amount}).amount
    _require_not_completed(encounter, "apply damage")

    next_encounter = _working_copy(encounter)
    combatant = _require_combatant(next_encounter, combatant_id)
    hp_before = combatant.hp
    combatant.hp = max(0, combatant.hp - damage)

    events: list[dict[str, Any]] = [
        {
            "kind": "damage_applied",
            "combatantId": combatant_id,
            "amount": damage,
            "hpBefore": hp_before,
            "hpAfter": combatant.hp,
        }
    ]
    if hp_before > 0 and combatant.hp == 0:
        events.append({"kind": "combatant_down", "combatantId": combatant_id})

    logger.debug("Damage applied", encounter_id=encounter.id, combatant_id=combatant_id, amount=damage, hp=combatant.hp)
    return ActionResult(encounter=next_encounter, engine_events=events, value=combatant)


def apply_healing(encounter: Encounter, combatant_id: str, amount: Any) -> ActionResult:
    healing = parse_payload(AmountInput, {"amount": amount}).amount
    _require_not_completed(encounter, "apply healing")

    next_encounter = _working_copy(encounter)
    combatant = _require_combatant(next_encounter, combatant_id)
    hp_before = combatant.hp
    combatant.hp = min(combatant.max_hp, combatant.hp + healing)

    events: list[dict[str, Any]] = [
        {
            "kind": "healing_applied",
            "combatantId": combatant_id,
            "amount": healing,
            "hpBefore": hp_before,
            "hpAfter": combatant.hp,
        }
    ]
    if hp_before == 0 and combatant.hp > 0:
        events.append({"kind": "combatant_revived", "combatantId": combatant_id})

    logger.debug("Healing applied", encounter_id=encounter.id, combatant_id=combatant_id, amount=healing, hp=combatant.hp)
    return ActionResult(encounter=next_encounter, engine_events=events, value=combatant)


def update_details(encounter: Encounter, patch: Any) -> ActionResult:
    """Edit free-text fields and environment effects; allowed in every status."""
    payload = parse_payload(EncounterDetailsPatch, patch)
    next_encounter = _working_copy(encounter)
    if payload.name is not None:
        next_encounter.name = payload.name
    if payload.description is not None:
        next_encounter.description = payload.description
    if payload.notes is not None:
        next_encounter.notes = payload.notes
    if payload.environment_effects is not None:
        next_encounter.environment_effects = list(payload.environment_effects)
    return ActionResult(
        encounter=next_encounter,
        engine_events=[{"kind": "details_updated", "fields": sorted(payload.model_fields_set)}],
    )


def _require_str(action: dict[str, Any], key: str) -> str:
    value = action.get(key)
    if not isinstance(value, str) or value == "":
        raise InvalidInput(f"{key} is required", details={"action_type": action.get("type")})
    return value


def apply_host_action(encounter: Encounter, action: dict[str, Any]) -> ActionResult:
    """Dispatch an action dict such as `{"type": "APPLY_DAMAGE", "combatantId": ..., "amount": 7}`."""
    action_type = str(action.get("type", "")).upper()
    if action_type == "ADD_COMBATANT":
        return add_combatant(encounter, action.get("combatant"))
    if action_type == "UPDATE_COMBATANT":
        return update_combatant(encounter, _require_str(action, "combatantId"), action.get("patch"))
    if action_type == "REMOVE_COMBATANT":
        return remove_combatant(encounter, _require_str(action, "combatantId"))
    if action_type == "START_ENCOUNTER":
        return start_encounter(encounter)
    if action_type == "END_ENCOUNTER":
        return end_encounter(encounter)
    if action_type == "NEXT_TURN":
        return next_turn(encounter)
    if action_type == "ADD_EFFECT":
        return add_status_effect(encounter, _require_str(action, "combatantId"), action.get("effect"))
    if action_type == "REMOVE_EFFECT":
        return remove_status_effect(
            encounter,
            _require_str(action, "combatantId"),
            _require_str(action, "effectId"),
        )
    if action_type == "APPLY_DAMAGE":
        return apply_damage(encounter, _require_str(action, "combatantId"), action.get("amount"))
    if action_type == "APPLY_HEALING":
        return apply_healing(encounter, _require_str(action, "combatantId"), action.get("amount"))
    if action_type == "UPDATE_DETAILS":
        return update_details(encounter, action.get("patch"))
    raise InvalidInput(f"Unknown action type {action.get('type')!r}")
