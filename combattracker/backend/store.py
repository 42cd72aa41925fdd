"""Persistence interfaces and implementations for encounter data.

Stores are the single writer for each encounter: `apply` loads the encounter, runs one
engine operation and persists the result while holding a per-encounter exclusive lock.
A rejected operation raises and nothing is written.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import threading
from typing import Any, Callable, Protocol

from combattracker.backend.commands import EncounterInput, parse_payload
from combattracker.backend.engine import ActionResult
from combattracker.backend.errors import NotFound
from combattracker.backend.logging import get_logger
from combattracker.backend.models import Encounter, EncounterStatus
from combattracker.backend.state import build_encounter, utc_now


logger = get_logger(__name__)

Operation = Callable[[Encounter], ActionResult]


class EncounterStore(Protocol):
    def create_encounter(self, campaign_id: str, owner_id: str, data: Any) -> Encounter:
        """Validate encounter details and persist a fresh `preparing` encounter."""

    def get_encounter(self, encounter_id: str, owner_id: str) -> Encounter:
        """Return the encounter or raise NotFound when missing or owned by someone else."""

    def list_encounters(
        self, campaign_id: str, owner_id: str, status: EncounterStatus | None = None
    ) -> list[Encounter]:
        """Return the owner's encounters for a campaign, newest first."""

    def delete_encounter(self, encounter_id: str, owner_id: str) -> None:
        """Delete the encounter or raise NotFound."""

    def apply(self, encounter_id: str, owner_id: str, operation: Operation) -> ActionResult:
        """Run one engine operation under the encounter's lock and persist its result."""


def _not_found(encounter_id: str) -> NotFound:
    return NotFound("Encounter not found", details={"encounter_id": encounter_id})


def _stamp(result: ActionResult) -> ActionResult:
    if result.changed:
        result.encounter.version += 1
        result.encounter.updated_at = utc_now()
    return result


class InMemoryEncounterStore:
    def __init__(self) -> None:
        # serialized snapshots, so callers never share mutable state with the store
        self._encounters: dict[str, dict[str, Any]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, encounter_id: str) -> threading.Lock:
        # locks are created with their encounter; unknown ids never allocate one
        with self._locks_guard:
            lock = self._locks.get(encounter_id)
        if lock is None:
            raise _not_found(encounter_id)
        return lock

    def _load(self, encounter_id: str, owner_id: str) -> Encounter:
        payload = self._encounters.get(encounter_id)
        if payload is None or payload["ownerId"] != owner_id:
            raise _not_found(encounter_id)
        return Encounter.from_dict(payload)

    def create_encounter(self, campaign_id: str, owner_id: str, data: Any) -> Encounter:
        details = parse_payload(EncounterInput, data)
        encounter = build_encounter(
            campaign_id=campaign_id,
            owner_id=owner_id,
            name=details.name,
            description=details.description,
            notes=details.notes,
            environment_effects=details.environment_effects,
        )
        with self._locks_guard:
            self._locks[encounter.id] = threading.Lock()
            self._encounters[encounter.id] = encounter.to_dict()
        logger.info("Encounter created", encounter_id=encounter.id, campaign_id=campaign_id)
        return encounter

    def get_encounter(self, encounter_id: str, owner_id: str) -> Encounter:
        with self._lock_for(encounter_id):
            return self._load(encounter_id, owner_id)

    def list_encounters(
        self, campaign_id: str, owner_id: str, status: EncounterStatus | None = None
    ) -> list[Encounter]:
        matches = [
            Encounter.from_dict(payload)
            for payload in list(self._encounters.values())
            if payload["campaignId"] == campaign_id
            and payload["ownerId"] == owner_id
            and (status is None or payload["status"] == status.value)
        ]
        return sorted(matches, key=lambda encounter: encounter.created_at, reverse=True)

    def delete_encounter(self, encounter_id: str, owner_id: str) -> None:
        with self._lock_for(encounter_id):
            self._load(encounter_id, owner_id)
            del self._encounters[encounter_id]
        with self._locks_guard:
            self._locks.pop(encounter_id, None)
        logger.info("Encounter deleted", encounter_id=encounter_id)

    def apply(self, encounter_id: str, owner_id: str, operation: Operation) -> ActionResult:
        with self._lock_for(encounter_id):
            encounter = self._load(encounter_id, owner_id)
            result = _stamp(operation(encounter))
            if result.changed:
                self._encounters[encounter_id] = result.encounter.to_dict()
            return result


@dataclass
class PostgresEncounterStore:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    @staticmethod
    def _decode(state_json: Any) -> Encounter:
        state = state_json if isinstance(state_json, dict) else json.loads(state_json)
        return Encounter.from_dict(state)

    def create_encounter(self, campaign_id: str, owner_id: str, data: Any) -> Encounter:
        details = parse_payload(EncounterInput, data)
        encounter = build_encounter(
            campaign_id=campaign_id,
            owner_id=owner_id,
            name=details.name,
            description=details.description,
            notes=details.notes,
            environment_effects=details.environment_effects,
        )

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO encounters
                        (id, campaign_id, owner_id, name, status, current_version, state_json, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s)
                    """,
                    (
                        encounter.id,
                        campaign_id,
                        owner_id,
                        encounter.name,
                        encounter.status.value,
                        encounter.version,
                        json.dumps(encounter.to_dict()),
                        encounter.created_at,
                        encounter.updated_at,
                    ),
                )
            conn.commit()

        logger.info("Encounter created", encounter_id=encounter.id, campaign_id=campaign_id)
        return encounter

    def get_encounter(self, encounter_id: str, owner_id: str) -> Encounter:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT state_json
                    FROM encounters
                    WHERE id = %s AND owner_id = %s
                    """,
                    (encounter_id, owner_id),
                )
                row = cur.fetchone()

        if row is None:
            raise _not_found(encounter_id)
        return self._decode(row[0])

    def list_encounters(
        self, campaign_id: str, owner_id: str, status: EncounterStatus | None = None
    ) -> list[Encounter]:
        sql = """
            SELECT state_json
            FROM encounters
            WHERE campaign_id = %s AND owner_id = %s
        """
        params: tuple[Any, ...] = (campaign_id, owner_id)
        if status is not None:
            sql += " AND status = %s"
            params += (status.value,)
        sql += " ORDER BY created_at DESC"

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [self._decode(row[0]) for row in rows]

    def delete_encounter(self, encounter_id: str, owner_id: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM encounters WHERE id = %s AND owner_id = %s",
                    (encounter_id, owner_id),
                )
                deleted = cur.rowcount
            conn.commit()

        if not deleted:
            raise _not_found(encounter_id)
        logger.info("Encounter deleted", encounter_id=encounter_id)

    def apply(self, encounter_id: str, owner_id: str, operation: Operation) -> ActionResult:
        # FOR UPDATE holds the row lock until commit, serializing writers per encounter
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT state_json
                    FROM encounters
                    WHERE id = %s AND owner_id = %s
                    FOR UPDATE
                    """,
                    (encounter_id, owner_id),
                )
                row = cur.fetchone()
                if row is None:
                    raise _not_found(encounter_id)

                result = _stamp(operation(self._decode(row[0])))
                if result.changed:
                    encounter = result.encounter
                    cur.execute(
                        """
                        UPDATE encounters
                        SET name = %s, status = %s, current_version = %s, state_json = %s::jsonb, updated_at = %s
                        WHERE id = %s
                        """,
                        (
                            encounter.name,
                            encounter.status.value,
                            encounter.version,
                            json.dumps(encounter.to_dict()),
                            encounter.updated_at,
                            encounter_id,
                        ),
                    )
            conn.commit()

        return result


def create_store(database_url: str | None) -> EncounterStore:
    if database_url:
        return PostgresEncounterStore(database_url=database_url)
    return InMemoryEncounterStore()
