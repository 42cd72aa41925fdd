"""Predefined status effects offered by the tracker UI.

Static reference data: the host looks presets up and passes the chosen one to
`add_status_effect` like any other effect payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class StatusEffectPreset:
    name: str
    description: str
    kind: str

    def to_payload(self, duration_rounds: int | None = None) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "kind": self.kind,
            "durationRounds": duration_rounds,
        }


PREDEFINED_STATUS_EFFECTS: tuple[StatusEffectPreset, ...] = (
    StatusEffectPreset("Blessed", "+1d4 to attack rolls and saves", "buff"),
    StatusEffectPreset("Poisoned", "Disadvantage on attack rolls and ability checks", "debuff"),
    StatusEffectPreset("Paralyzed", "Cannot move or act", "debuff"),
    StatusEffectPreset("Stunned", "Cannot move or act, fails Str/Dex saves", "debuff"),
    StatusEffectPreset(
        "Charmed",
        "Cannot attack charmer, charmer has advantage on social interactions",
        "debuff",
    ),
    StatusEffectPreset(
        "Frightened",
        "Disadvantage on ability checks and attacks while source is in sight",
        "debuff",
    ),
    StatusEffectPreset("Blinded", "Cannot see, auto-fail sight checks, disadvantage on attacks", "debuff"),
    StatusEffectPreset("Deafened", "Cannot hear, auto-fail hearing checks", "debuff"),
    StatusEffectPreset("Prone", "Can only crawl, disadvantage on melee attacks", "debuff"),
    StatusEffectPreset("Restrained", "Speed 0, disadvantage on attacks and Dex saves", "debuff"),
    StatusEffectPreset("Haste", "Double speed, extra action, +2 AC", "buff"),
    StatusEffectPreset("Slow", "Half speed, -2 AC, limited actions", "debuff"),
    StatusEffectPreset("Invisible", "Cannot be seen, advantage on attacks", "buff"),
    StatusEffectPreset("Concentration", "Maintaining a spell", "neutral"),
)


def find_preset(name: str) -> StatusEffectPreset | None:
    wanted = name.strip().casefold()
    for preset in PREDEFINED_STATUS_EFFECTS:
        if preset.name.casefold() == wanted:
            return preset
    return None
