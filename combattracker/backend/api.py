"""FastAPI endpoints for encounter management and live combat tracking."""

from __future__ import annotations

from functools import partial
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import engine
from .errors import EncounterEngineError, InvalidInput, NotFound
from .logging import get_logger, request_context
from .models import EncounterStatus
from .presets import PREDEFINED_STATUS_EFFECTS, find_preset
from .store import EncounterStore, InMemoryEncounterStore, Operation
from .summary import get_summary


logger = get_logger(__name__)


class EncounterStateResponse(BaseModel):
    state: dict[str, Any]


class EncounterListResponse(BaseModel):
    encounters: list[dict[str, Any]]


class ActionResponse(BaseModel):
    state: dict[str, Any]
    events: list[dict[str, Any]]
    result: Any = None


class SummaryResponse(BaseModel):
    summary: dict[str, Any]


class PresetListResponse(BaseModel):
    presets: list[dict[str, Any]]


def _status_code_for(exc: EncounterEngineError) -> int:
    if isinstance(exc, NotFound):
        return 404
    return 400


def _jsonable_value(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


def _parse_status(raw: str | None) -> EncounterStatus | None:
    if raw is None or raw == "":
        return None
    try:
        return EncounterStatus(raw)
    except ValueError as exc:
        valid = ", ".join(status.value for status in EncounterStatus)
        raise InvalidInput(f"Invalid status. Valid values: {valid}", details={"status": raw}) from exc


def get_user_id(x_user_id: str = Header(min_length=1)) -> str:
    """Identity of the caller, established by the authentication layer in front of this API."""
    return x_user_id


def create_app(store: EncounterStore | None = None) -> FastAPI:
    app = FastAPI(title="Combat Tracker API", version="0.3.0")
    encounter_store = store if store is not None else InMemoryEncounterStore()

    @app.exception_handler(EncounterEngineError)
    async def handle_engine_error(request: Request, exc: EncounterEngineError) -> JSONResponse:
        status_code = _status_code_for(exc)
        logger.info("Request rejected", kind=exc.kind, reason=exc.message, status_code=status_code)
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "kind": exc.kind, "details": exc.details},
        )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next: Any) -> Response:
        with request_context(method=request.method, path=request.url.path):
            return await call_next(request)

    def get_store() -> EncounterStore:
        return encounter_store

    def run(local_store: EncounterStore, encounter_id: str, user_id: str, operation: Operation) -> ActionResponse:
        result = local_store.apply(encounter_id=encounter_id, owner_id=user_id, operation=operation)
        return ActionResponse(
            state=result.encounter.to_dict(),
            events=result.engine_events,
            result=_jsonable_value(result.value),
        )

    @app.get("/api/status-effects", response_model=PresetListResponse)
    def list_status_effect_presets(name: str | None = Query(default=None)) -> PresetListResponse:
        if not name:
            return PresetListResponse(presets=[preset.to_payload() for preset in PREDEFINED_STATUS_EFFECTS])
        preset = find_preset(name)
        if preset is None:
            raise NotFound("Status effect preset not found", details={"name": name})
        return PresetListResponse(presets=[preset.to_payload()])

    @app.get("/api/campaigns/{campaign_id}/encounters", response_model=EncounterListResponse)
    def list_encounters(
        campaign_id: str,
        status: str | None = Query(default=None),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> EncounterListResponse:
        encounters = local_store.list_encounters(
            campaign_id=campaign_id,
            owner_id=user_id,
            status=_parse_status(status),
        )
        return EncounterListResponse(encounters=[encounter.to_dict() for encounter in encounters])

    @app.post("/api/campaigns/{campaign_id}/encounters", response_model=EncounterStateResponse, status_code=201)
    def create_encounter(
        campaign_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> EncounterStateResponse:
        encounter = local_store.create_encounter(campaign_id=campaign_id, owner_id=user_id, data=payload)
        return EncounterStateResponse(state=encounter.to_dict())

    @app.get("/api/encounters/{encounter_id}", response_model=EncounterStateResponse)
    def get_encounter(
        encounter_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> EncounterStateResponse:
        encounter = local_store.get_encounter(encounter_id=encounter_id, owner_id=user_id)
        return EncounterStateResponse(state=encounter.to_dict())

    @app.patch("/api/encounters/{encounter_id}", response_model=ActionResponse)
    def update_encounter(
        encounter_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        return run(local_store, encounter_id, user_id, partial(engine.update_details, patch=payload))

    @app.delete("/api/encounters/{encounter_id}", status_code=204)
    def delete_encounter(
        encounter_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> Response:
        local_store.delete_encounter(encounter_id=encounter_id, owner_id=user_id)
        return Response(status_code=204)

    @app.get("/api/encounters/{encounter_id}/summary", response_model=SummaryResponse)
    def encounter_summary(
        encounter_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> SummaryResponse:
        encounter = local_store.get_encounter(encounter_id=encounter_id, owner_id=user_id)
        return SummaryResponse(summary=get_summary(encounter).to_dict())

    @app.post("/api/encounters/{encounter_id}/start", response_model=ActionResponse)
    def start_encounter(
        encounter_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        return run(local_store, encounter_id, user_id, engine.start_encounter)

    @app.post("/api/encounters/{encounter_id}/end", response_model=ActionResponse)
    def end_encounter(
        encounter_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        return run(local_store, encounter_id, user_id, engine.end_encounter)

    @app.post("/api/encounters/{encounter_id}/next-turn", response_model=ActionResponse)
    def next_turn(
        encounter_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        return run(local_store, encounter_id, user_id, engine.next_turn)

    @app.post("/api/encounters/{encounter_id}/combatants", response_model=ActionResponse)
    def add_combatant(
        encounter_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        return run(local_store, encounter_id, user_id, partial(engine.add_combatant, data=payload))

    @app.patch("/api/encounters/{encounter_id}/combatants/{combatant_id}", response_model=ActionResponse)
    def update_combatant(
        encounter_id: str,
        combatant_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        operation = partial(engine.update_combatant, combatant_id=combatant_id, patch=payload)
        return run(local_store, encounter_id, user_id, operation)

    @app.delete("/api/encounters/{encounter_id}/combatants/{combatant_id}", response_model=ActionResponse)
    def remove_combatant(
        encounter_id: str,
        combatant_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        return run(local_store, encounter_id, user_id, partial(engine.remove_combatant, combatant_id=combatant_id))

    @app.post("/api/encounters/{encounter_id}/combatants/{combatant_id}/effects", response_model=ActionResponse)
    def add_status_effect(
        encounter_id: str,
        combatant_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        operation = partial(engine.add_status_effect, combatant_id=combatant_id, data=payload)
        return run(local_store, encounter_id, user_id, operation)

    @app.delete(
        "/api/encounters/{encounter_id}/combatants/{combatant_id}/effects/{effect_id}",
        response_model=ActionResponse,
    )
    def remove_status_effect(
        encounter_id: str,
        combatant_id: str,
        effect_id: str,
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        operation = partial(engine.remove_status_effect, combatant_id=combatant_id, effect_id=effect_id)
        return run(local_store, encounter_id, user_id, operation)

    @app.post("/api/encounters/{encounter_id}/combatants/{combatant_id}/damage", response_model=ActionResponse)
    def apply_damage(
        encounter_id: str,
        combatant_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        operation = partial(engine.apply_damage, combatant_id=combatant_id, amount=payload.get("amount"))
        return run(local_store, encounter_id, user_id, operation)

    @app.post("/api/encounters/{encounter_id}/combatants/{combatant_id}/healing", response_model=ActionResponse)
    def apply_healing(
        encounter_id: str,
        combatant_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        operation = partial(engine.apply_healing, combatant_id=combatant_id, amount=payload.get("amount"))
        return run(local_store, encounter_id, user_id, operation)

    @app.post("/api/encounters/{encounter_id}/actions", response_model=ActionResponse)
    def post_action(
        encounter_id: str,
        payload: dict[str, Any] = Body(...),
        user_id: str = Depends(get_user_id),
        local_store: EncounterStore = Depends(get_store),
    ) -> ActionResponse:
        return run(local_store, encounter_id, user_id, partial(engine.apply_host_action, action=payload))

    return app


app = create_app()
