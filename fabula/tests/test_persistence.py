"""
Tests for save stores and state serialization.
"""

import asyncio
import json

import pytest

from ..engine_core.errors import PersistenceError, ValidationError
from ..engine_core.state import ChoiceRecord, GameState, InventoryItem, TimedEffect
from ..persistence.store import MAX_SAVE_SLOTS, FileSaveStore, MemorySaveStore


@pytest.fixture
def played_state(state):
    """A state with something in every section."""
    state.current_scene_id = "vault"
    state.player.gold = 115
    state.player.attributes["luck"] = 12
    state.inventory.append(InventoryItem(id="brass_key", name="Brass Key", type="key", properties={"keyId": "vault"}))
    state.flags.update({"lit": True, "visits": 3, "ratio": 0.5, "mood": "grim", "gone": False})
    state.relationships["keeper"] = 25
    state.progress.scenes_visited.extend(["courtyard", "vault"])
    state.progress.choices_made.append(ChoiceRecord(choice_id="open_vault", scene_id="courtyard"))
    state.progress.achievements_unlocked.append("treasure_hunter")
    state.timed_effects["curse_frailty"] = TimedEffect("curse", "frailty", start_time=100.0, duration=600.0)
    return state


class TestStateDocument:
    """Tests for GameState to_dict/from_dict."""

    def test_round_trip_through_json(self, played_state):
        document = json.loads(json.dumps(played_state.to_dict()))
        restored = GameState.from_dict(document)
        assert restored.to_dict() == played_state.to_dict()

    def test_flag_types_survive(self, played_state):
        restored = GameState.from_dict(json.loads(json.dumps(played_state.to_dict())))

        assert restored.flags["lit"] is True
        assert restored.flags["gone"] is False
        assert restored.flags["visits"] == 3 and not isinstance(restored.flags["visits"], bool)
        assert restored.flags["ratio"] == 0.5
        assert restored.flags["mood"] == "grim"

    def test_document_uses_camel_case(self, played_state):
        document = played_state.to_dict()
        assert document["storyId"] == "lantern"
        assert document["currentSceneId"] == "vault"
        assert document["progress"]["scenesVisited"] == ["gate", "courtyard", "vault"]
        assert document["timedEffects"]["curse_frailty"]["startTime"] == 100.0

    def test_missing_fields_rejected(self):
        with pytest.raises(ValidationError):
            GameState.from_dict({"id": "x", "storyId": "lantern"})

    def test_relationships_clamped_on_load(self, played_state):
        document = played_state.to_dict()
        document["relationships"]["keeper"] = 400
        assert GameState.from_dict(document).relationships["keeper"] == 100

    def test_clone_is_deep(self, played_state):
        copy = played_state.clone()
        copy.inventory[0].quantity = 9
        copy.flags["lit"] = False
        assert played_state.inventory[0].quantity == 1
        assert played_state.flags["lit"] is True


class TestMemorySaveStore:
    def test_save_and_load(self, played_state):
        async def scenario():
            store = MemorySaveStore()
            slot = await store.save(played_state, "Vault")

            assert slot.id.startswith("save_")
            assert slot.scene_id == "vault"
            assert not slot.is_autosave

            loaded = await store.load(slot.id)
            assert loaded.to_dict() == played_state.to_dict()
            assert loaded is not played_state

        asyncio.run(scenario())

    def test_loaded_state_is_independent(self, played_state):
        async def scenario():
            store = MemorySaveStore()
            slot = await store.save(played_state, "Vault")
            played_state.player.gold = 0
            assert (await store.load(slot.id)).player.gold == 115

        asyncio.run(scenario())

    def test_autosave_slot_is_reused(self, played_state):
        async def scenario():
            store = MemorySaveStore()
            first = await store.save(played_state, "Autosave", autosave=True)
            second = await store.save(played_state, "Autosave", autosave=True)

            assert first.id == second.id == "autosave_test_state"
            assert len(await store.list_slots()) == 1

        asyncio.run(scenario())

    def test_manual_slots_are_capped(self, played_state):
        """Saving past the cap drops the oldest manual slots."""
        async def scenario():
            store = MemorySaveStore()
            auto = await store.save(played_state, "Auto", autosave=True)
            first = await store.save(played_state, "Save 0")
            for i in range(1, MAX_SAVE_SLOTS + 2):
                await store.save(played_state, f"Save {i}")

            slots = await store.list_slots()
            manual = [s for s in slots if not s.is_autosave]
            assert len(manual) == MAX_SAVE_SLOTS
            assert manual[0].name == f"Save {MAX_SAVE_SLOTS + 1}"
            assert "Save 0" not in {s.name for s in slots}
            with pytest.raises(PersistenceError):
                await store.load(first.id)
            # Autosaves do not count against the cap
            assert auto.id in {s.id for s in slots}

        asyncio.run(scenario())

    def test_missing_slot(self):
        async def scenario():
            with pytest.raises(PersistenceError):
                await MemorySaveStore().load("save_nope")

        asyncio.run(scenario())

    def test_delete(self, played_state):
        async def scenario():
            store = MemorySaveStore()
            slot = await store.save(played_state, "Vault")
            assert await store.delete(slot.id)
            assert not await store.delete(slot.id)

        asyncio.run(scenario())


class TestFileSaveStore:
    """Tests for the JSON file store."""

    def test_save_writes_json_file(self, played_state, tmp_path):
        async def scenario():
            store = FileSaveStore(tmp_path)
            slot = await store.save(played_state, "Vault")

            path = tmp_path / f"{slot.id}.json"
            document = json.loads(path.read_text())
            assert document["slot"]["name"] == "Vault"
            assert document["state"]["flags"]["visits"] == 3
            assert not list(tmp_path.glob("*.tmp"))

            loaded = await store.load(slot.id)
            assert loaded.to_dict() == played_state.to_dict()

        asyncio.run(scenario())

    def test_creates_save_dir(self, tmp_path):
        FileSaveStore(tmp_path / "nested" / "saves")
        assert (tmp_path / "nested" / "saves").is_dir()

    def test_corrupt_file(self, tmp_path):
        async def scenario():
            (tmp_path / "save_broken.json").write_text("{not json")
            store = FileSaveStore(tmp_path)
            with pytest.raises(PersistenceError):
                await store.load("save_broken")
            # Unreadable files are skipped in listings
            assert await store.list_slots() == []

        asyncio.run(scenario())

    def test_invalid_state_document(self, tmp_path):
        async def scenario():
            (tmp_path / "save_bad.json").write_text(json.dumps({"slot": {"id": "save_bad"}, "state": {"id": "x"}}))
            with pytest.raises(PersistenceError, match="corrupt"):
                await FileSaveStore(tmp_path).load("save_bad")

        asyncio.run(scenario())

    def test_invalid_slot_ids(self, tmp_path):
        async def scenario():
            store = FileSaveStore(tmp_path)
            for slot_id in ("", "../escape", "a/b", ".hidden"):
                with pytest.raises(PersistenceError):
                    await store.load(slot_id)

        asyncio.run(scenario())

    def test_list_and_delete(self, played_state, tmp_path):
        async def scenario():
            store = FileSaveStore(tmp_path)
            await store.save(played_state, "One")
            await store.save(played_state, "Auto", autosave=True)
            slot = await store.save(played_state, "Two")

            slots = await store.list_slots()
            assert {s.name for s in slots} == {"One", "Auto", "Two"}
            assert [s.saved_at for s in slots] == sorted((s.saved_at for s in slots), reverse=True)

            assert await store.delete(slot.id)
            assert not await store.delete(slot.id)
            assert len(await store.list_slots()) == 2

        asyncio.run(scenario())

    def test_prunes_oldest_manual_files(self, played_state, tmp_path):
        async def scenario():
            store = FileSaveStore(tmp_path)
            await store.save(played_state, "Auto", autosave=True)
            first = await store.save(played_state, "Save 0")
            for i in range(1, MAX_SAVE_SLOTS + 1):
                await store.save(played_state, f"Save {i}")

            assert not (tmp_path / f"{first.id}.json").exists()
            names = {s.name for s in await store.list_slots()}
            assert "Save 0" not in names
            assert f"Save {MAX_SAVE_SLOTS}" in names
            assert "Auto" in names
            assert len(names) == MAX_SAVE_SLOTS + 1

        asyncio.run(scenario())

    def test_delete_failure_is_a_persistence_error(self, tmp_path):
        """Filesystem errors surface as PersistenceError."""
        async def scenario():
            store = FileSaveStore(tmp_path)
            (tmp_path / "save_stuck.json").mkdir()

            with pytest.raises(PersistenceError, match="Could not delete"):
                await store.delete("save_stuck")

        asyncio.run(scenario())
