"""Validated input payloads for engine operations.

Payloads arrive as plain dicts (camelCase from the browser, snake_case from Python
callers); both spellings are accepted.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, model_validator

from combattracker.backend.errors import InvalidInput


EffectKind = Literal["buff", "debuff", "neutral"]

RESERVED_COMBATANT_KEYS = frozenset({"id", "statusEffects", "status_effects", "extra"})

TModel = TypeVar("TModel", bound=BaseModel)


class CombatantInput(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    initiative: StrictInt
    hp: StrictInt = Field(ge=0)
    max_hp: StrictInt = Field(ge=0, alias="maxHp")
    type: str = Field(default="enemy", min_length=1, max_length=50)

    @model_validator(mode="after")
    def _check_hp(self) -> "CombatantInput":
        if self.hp > self.max_hp:
            raise ValueError("hp must not exceed maxHp")
        reserved = RESERVED_COMBATANT_KEYS.intersection(self.model_extra or {})
        if reserved:
            raise ValueError(f"fields cannot be set on creation: {', '.join(sorted(reserved))}")
        return self

    @property
    def extra_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class CombatantPatch(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    initiative: Optional[StrictInt] = None
    hp: Optional[StrictInt] = Field(default=None, ge=0)
    max_hp: Optional[StrictInt] = Field(default=None, ge=0, alias="maxHp")
    type: Optional[str] = Field(default=None, min_length=1, max_length=50)

    @model_validator(mode="after")
    def _check_patch(self) -> "CombatantPatch":
        for name in ("name", "initiative", "hp", "max_hp", "type"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        reserved = RESERVED_COMBATANT_KEYS.intersection(self.model_extra or {})
        if reserved:
            raise ValueError(f"fields cannot be patched: {', '.join(sorted(reserved))}")
        return self

    @property
    def extra_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class StatusEffectInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    duration_rounds: Union[StrictInt, Literal["indefinite"], None] = Field(default=None, alias="durationRounds")
    kind: EffectKind = "neutral"

    @model_validator(mode="after")
    def _check_duration(self) -> "StatusEffectInput":
        if isinstance(self.duration_rounds, int) and self.duration_rounds < 1:
            raise ValueError("durationRounds must be a positive integer or 'indefinite'")
        return self

    @property
    def rounds(self) -> int | None:
        return self.duration_rounds if isinstance(self.duration_rounds, int) else None


class EncounterInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    notes: str = ""
    environment_effects: list[Any] = Field(default_factory=list, alias="environmentEffects")


class EncounterDetailsPatch(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    notes: Optional[str] = None
    environment_effects: Optional[list[Any]] = Field(default=None, alias="environmentEffects")


class AmountInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: StrictInt = Field(ge=0)


def parse_payload(model_cls: type[TModel], data: Any) -> TModel:
    """Validate `data` against `model_cls`, raising `InvalidInput` on any violation."""
    if isinstance(data, model_cls):
        return data
    if not isinstance(data, Mapping):
        raise InvalidInput(f"{model_cls.__name__} payload must be an object")
    try:
        return model_cls.model_validate(dict(data))
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        first = errors[0]
        location = ".".join(str(part) for part in first["loc"]) or "payload"
        raise InvalidInput(
            f"{location}: {first['msg']}",
            details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors]},
        ) from exc
