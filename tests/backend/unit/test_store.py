from functools import partial
import json

import pytest

from combattracker.backend import engine
from combattracker.backend.errors import InvalidInput, InvalidState, NotFound
from combattracker.backend.models import EncounterStatus
from combattracker.backend.state import build_encounter
from combattracker.backend.store import InMemoryEncounterStore, PostgresEncounterStore, create_store


def test_create_store_returns_postgres_store_when_database_url_present() -> None:
    store = create_store(database_url="postgresql://local")

    assert isinstance(store, PostgresEncounterStore)


def test_create_store_returns_in_memory_store_when_database_url_missing() -> None:
    store = create_store(database_url=None)

    assert isinstance(store, InMemoryEncounterStore)


def test_in_memory_store_creates_and_scopes_encounters_by_owner() -> None:
    store = InMemoryEncounterStore()
    created = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Goblin Cave"})

    loaded = store.get_encounter(encounter_id=created.id, owner_id="user-1")

    assert loaded == created
    assert loaded.status is EncounterStatus.PREPARING
    with pytest.raises(NotFound):
        store.get_encounter(encounter_id=created.id, owner_id="user-2")
    with pytest.raises(NotFound):
        store.get_encounter(encounter_id="missing", owner_id="user-1")


def test_in_memory_store_rejects_invalid_encounter_details() -> None:
    store = InMemoryEncounterStore()

    with pytest.raises(InvalidInput):
        store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": ""})


def test_in_memory_store_lists_by_campaign_owner_and_status() -> None:
    store = InMemoryEncounterStore()
    first = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "One"})
    second = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Two"})
    store.create_encounter(campaign_id="camp-2", owner_id="user-1", data={"name": "Elsewhere"})
    store.create_encounter(campaign_id="camp-1", owner_id="user-2", data={"name": "Not mine"})
    store.apply(encounter_id=second.id, owner_id="user-1", operation=engine.end_encounter)

    everything = store.list_encounters(campaign_id="camp-1", owner_id="user-1")
    completed = store.list_encounters(campaign_id="camp-1", owner_id="user-1", status=EncounterStatus.COMPLETED)

    assert {encounter.id for encounter in everything} == {first.id, second.id}
    assert [encounter.id for encounter in completed] == [second.id]


def test_in_memory_store_apply_persists_and_bumps_version() -> None:
    store = InMemoryEncounterStore()
    created = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Crypt"})

    result = store.apply(
        encounter_id=created.id,
        owner_id="user-1",
        operation=partial(engine.add_combatant, data={"name": "Orc", "initiative": 9, "hp": 15, "maxHp": 15}),
    )
    loaded = store.get_encounter(encounter_id=created.id, owner_id="user-1")

    assert result.encounter.version == 2
    assert loaded.version == 2
    assert list(loaded.combatants) == [result.value]
    assert loaded.updated_at >= created.updated_at


def test_in_memory_store_persists_nothing_when_operation_is_rejected() -> None:
    store = InMemoryEncounterStore()
    created = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Crypt"})

    with pytest.raises(InvalidState):
        store.apply(encounter_id=created.id, owner_id="user-1", operation=engine.start_encounter)

    assert store.get_encounter(encounter_id=created.id, owner_id="user-1") == created


def test_in_memory_store_skips_write_for_unchanged_result() -> None:
    store = InMemoryEncounterStore()
    created = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Crypt"})

    result = store.apply(
        encounter_id=created.id,
        owner_id="user-1",
        operation=partial(engine.remove_status_effect, combatant_id="ghost", effect_id="gone"),
    )

    assert result.value is False
    assert store.get_encounter(encounter_id=created.id, owner_id="user-1").version == 1


def test_in_memory_store_returned_state_is_detached_from_store() -> None:
    store = InMemoryEncounterStore()
    created = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Crypt"})

    loaded = store.get_encounter(encounter_id=created.id, owner_id="user-1")
    loaded.name = "Changed locally"

    assert store.get_encounter(encounter_id=created.id, owner_id="user-1").name == "Crypt"


def test_in_memory_store_delete_requires_owner() -> None:
    store = InMemoryEncounterStore()
    created = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Crypt"})

    with pytest.raises(NotFound):
        store.delete_encounter(encounter_id=created.id, owner_id="user-2")
    store.delete_encounter(encounter_id=created.id, owner_id="user-1")

    with pytest.raises(NotFound):
        store.get_encounter(encounter_id=created.id, owner_id="user-1")
    with pytest.raises(NotFound):
        store.delete_encounter(encounter_id=created.id, owner_id="user-1")


def test_in_memory_store_does_not_allocate_locks_for_unknown_ids() -> None:
    store = InMemoryEncounterStore()

    for index in range(50):
        with pytest.raises(NotFound):
            store.get_encounter(encounter_id=f"missing-{index}", owner_id="user-1")
        with pytest.raises(NotFound):
            store.apply(encounter_id=f"missing-{index}", owner_id="user-1", operation=engine.next_turn)
        with pytest.raises(NotFound):
            store.delete_encounter(encounter_id=f"missing-{index}", owner_id="user-1")

    assert store._locks == {}


def test_in_memory_store_releases_lock_on_delete() -> None:
    store = InMemoryEncounterStore()
    created = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Crypt"})
    assert list(store._locks) == [created.id]

    store.delete_encounter(encounter_id=created.id, owner_id="user-1")

    assert store._locks == {}


class _FakeCursor:
    def __init__(self, row: tuple | None = None, rowcount: int = 0) -> None:
        self.commands: list[tuple[str, tuple]] = []
        self.row = row
        self.rowcount = rowcount

    def execute(self, sql: str, params: tuple) -> None:
        self.commands.append((sql, params))

    def fetchone(self) -> tuple | None:
        return self.row

    def fetchall(self) -> list[tuple]:
        return [] if self.row is None else [self.row]

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _FakeConnection:
    def __init__(self, cursor: _FakeCursor) -> None:
        self.cursor_instance = cursor
        self.committed = False

    def cursor(self) -> _FakeCursor:
        return self.cursor_instance

    def commit(self) -> None:
        self.committed = True

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _PostgresStoreWithFakeConnection(PostgresEncounterStore):
    def __init__(self, row: tuple | None = None, rowcount: int = 0) -> None:
        super().__init__(database_url="postgresql://local")
        self.fake_connection = _FakeConnection(_FakeCursor(row=row, rowcount=rowcount))

    def _connect(self) -> _FakeConnection:
        return self.fake_connection


def _stored_encounter():
    encounter = build_encounter(campaign_id="camp-1", owner_id="user-1", name="Session", encounter_id="enc-1")
    for name, initiative in [("A", 20), ("B", 10)]:
        encounter = engine.add_combatant(
            encounter, {"name": name, "initiative": initiative, "hp": 5, "maxHp": 5}
        ).encounter
    return engine.start_encounter(encounter).encounter


def test_postgres_create_inserts_row_and_commits() -> None:
    store = _PostgresStoreWithFakeConnection()

    encounter = store.create_encounter(campaign_id="camp-1", owner_id="user-1", data={"name": "Session"})

    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert "INSERT INTO encounters" in sql
    assert params[0] == encounter.id
    assert params[4] == "preparing"
    assert store.fake_connection.committed is True


def test_postgres_apply_locks_row_and_persists_new_version() -> None:
    stored = _stored_encounter()
    store = _PostgresStoreWithFakeConnection(row=(stored.to_dict(),))

    result = store.apply(encounter_id="enc-1", owner_id="user-1", operation=engine.next_turn)

    commands = store.fake_connection.cursor_instance.commands
    assert result.encounter.version == stored.version + 1
    assert result.value.combatant.name == "B"
    assert store.fake_connection.committed is True
    assert len(commands) == 2
    assert "FOR UPDATE" in commands[0][0]
    assert "UPDATE encounters" in commands[1][0]
    assert commands[1][1][2] == result.encounter.version


def test_postgres_apply_raises_not_found_for_missing_row() -> None:
    store = _PostgresStoreWithFakeConnection(row=None)

    with pytest.raises(NotFound):
        store.apply(encounter_id="enc-1", owner_id="user-1", operation=engine.next_turn)

    assert store.fake_connection.committed is False


def test_postgres_apply_writes_nothing_when_operation_is_rejected() -> None:
    stored = _stored_encounter()
    store = _PostgresStoreWithFakeConnection(row=(stored.to_dict(),))

    with pytest.raises(InvalidState):
        store.apply(encounter_id="enc-1", owner_id="user-1", operation=engine.start_encounter)

    assert len(store.fake_connection.cursor_instance.commands) == 1
    assert store.fake_connection.committed is False


def test_postgres_get_decodes_text_payload() -> None:
    stored = _stored_encounter()
    store = _PostgresStoreWithFakeConnection(row=(json.dumps(stored.to_dict()),))

    assert store.get_encounter(encounter_id="enc-1", owner_id="user-1") == stored


def test_postgres_list_adds_status_filter() -> None:
    stored = _stored_encounter()
    store = _PostgresStoreWithFakeConnection(row=(stored.to_dict(),))

    encounters = store.list_encounters(campaign_id="camp-1", owner_id="user-1", status=EncounterStatus.ACTIVE)

    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert "AND status = %s" in sql
    assert params == ("camp-1", "user-1", "active")
    assert [encounter.id for encounter in encounters] == ["enc-1"]


def test_postgres_delete_missing_row_is_not_found() -> None:
    store = _PostgresStoreWithFakeConnection(rowcount=0)

    with pytest.raises(NotFound):
        store.delete_encounter(encounter_id="enc-1", owner_id="user-1")
