"""
Save Stores - Persistence of GameState snapshots into save slots.

The stores:
- Serialize the full camelCase state document
- Keep one autosave slot per play-through, overwritten on every autosave
- Keep at most MAX_SAVE_SLOTS manual slots; saving past the cap deletes
  the oldest manual slots, and listings return the newest first

Design decisions:
- MemorySaveStore for tests and embedding
- FileSaveStore writes one JSON file per slot, no database required
- Every failure surfaces as PersistenceError
"""

from __future__ import annotations
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..engine_core.errors import PersistenceError, ValidationError
from ..engine_core.state import GameState, utc_now_iso

logger = logging.getLogger(__name__)

MAX_SAVE_SLOTS = 10


@dataclass
class SaveSlot:
    """Summary of one saved game."""
    id: str
    name: str
    story_id: str
    state_id: str
    scene_id: str
    player_level: int
    playtime: int
    story_progress: int
    is_autosave: bool
    saved_at: str

    @classmethod
    def for_state(cls, slot_id: str, state: GameState, name: str, autosave: bool) -> SaveSlot:
        return cls(
            id=slot_id,
            name=name,
            story_id=state.story_id,
            state_id=state.id,
            scene_id=state.current_scene_id,
            player_level=state.player.level,
            playtime=state.progress.playtime,
            story_progress=state.progress.story_progress,
            is_autosave=autosave,
            saved_at=utc_now_iso(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "storyId": self.story_id,
            "stateId": self.state_id,
            "sceneId": self.scene_id,
            "playerLevel": self.player_level,
            "playtime": self.playtime,
            "storyProgress": self.story_progress,
            "isAutosave": self.is_autosave,
            "savedAt": self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SaveSlot:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            story_id=data.get("storyId", ""),
            state_id=data.get("stateId", ""),
            scene_id=data.get("sceneId", ""),
            player_level=int(data.get("playerLevel", 1)),
            playtime=int(data.get("playtime", 0)),
            story_progress=int(data.get("storyProgress", 0)),
            is_autosave=bool(data.get("isAutosave", False)),
            saved_at=data.get("savedAt", ""),
        )


class SaveStore(Protocol):
    """Persistence contract consumed by the engine."""

    async def save(self, state: GameState, name: str, autosave: bool = False) -> SaveSlot: ...

    async def load(self, slot_id: str) -> GameState: ...

    async def list_slots(self) -> list[SaveSlot]: ...

    async def delete(self, slot_id: str) -> bool: ...


def slot_id_for(state: GameState, autosave: bool) -> str:
    if autosave:
        return f"autosave_{state.id}"
    return f"save_{uuid.uuid4().hex[:12]}"


def _restore(document: dict[str, Any], slot_id: str) -> GameState:
    try:
        return GameState.from_dict(document["state"])
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise PersistenceError(f"Save slot {slot_id} is corrupt: {e}")


def _newest_first(slots: list[SaveSlot]) -> list[SaveSlot]:
    # Stable sort keeps the most recently written slot first on ties
    return sorted(reversed(slots), key=lambda s: s.saved_at, reverse=True)


def _over_cap(slots: list[SaveSlot]) -> list[SaveSlot]:
    """Manual slots beyond the newest MAX_SAVE_SLOTS."""
    manual = [s for s in _newest_first(slots) if not s.is_autosave]
    return manual[MAX_SAVE_SLOTS:]


class MemorySaveStore:
    """SaveStore keeping serialized documents in a dict."""

    def __init__(self):
        self._documents: dict[str, dict[str, Any]] = {}

    async def save(self, state: GameState, name: str, autosave: bool = False) -> SaveSlot:
        slot = SaveSlot.for_state(slot_id_for(state, autosave), state, name, autosave)
        # Re-insert so iteration order follows write order
        self._documents.pop(slot.id, None)
        self._documents[slot.id] = {"slot": slot.to_dict(), "state": state.to_dict()}
        if not autosave:
            for old in _over_cap(self._slots()):
                del self._documents[old.id]
        return slot

    async def load(self, slot_id: str) -> GameState:
        document = self._documents.get(slot_id)
        if document is None:
            raise PersistenceError(f"Save slot not found: {slot_id}")
        return _restore(json.loads(json.dumps(document)), slot_id)

    async def list_slots(self) -> list[SaveSlot]:
        return _newest_first(self._slots())

    def _slots(self) -> list[SaveSlot]:
        return [SaveSlot.from_dict(d["slot"]) for d in self._documents.values()]

    async def delete(self, slot_id: str) -> bool:
        return self._documents.pop(slot_id, None) is not None


class FileSaveStore:
    """
    SaveStore writing one JSON file per slot.

    Usage:
        store = FileSaveStore(save_dir="~/.fabula/saves")
        slot = await store.save(state, "Before the bridge")
        state = await store.load(slot.id)
    """

    def __init__(self, save_dir: str | Path | None = None):
        if save_dir is None:
            save_dir = Path.home() / ".fabula" / "saves"
        self.save_dir = Path(save_dir).expanduser()

        # Ensure save directory exists
        self.save_dir.mkdir(parents=True, exist_ok=True)

    async def save(self, state: GameState, name: str, autosave: bool = False) -> SaveSlot:
        slot = SaveSlot.for_state(slot_id_for(state, autosave), state, name, autosave)
        document = {"slot": slot.to_dict(), "state": state.to_dict()}
        await asyncio.to_thread(self._write, self._get_path(slot.id), document)
        logger.debug(f"Saved slot {slot.id} to {self.save_dir}")
        if not autosave:
            await asyncio.to_thread(self._prune, slot.id)
        return slot

    async def load(self, slot_id: str) -> GameState:
        path = self._get_path(slot_id)
        if not path.exists():
            raise PersistenceError(f"Save slot not found: {slot_id}")
        document = await asyncio.to_thread(self._read, path)
        return _restore(document, slot_id)

    async def list_slots(self) -> list[SaveSlot]:
        return await asyncio.to_thread(self._list)

    async def delete(self, slot_id: str) -> bool:
        return await asyncio.to_thread(self._delete, self._get_path(slot_id))

    def _delete(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Could not delete {path.name}: {e}")
        return True

    def _prune(self, keep: str):
        for old in _over_cap(self._scan()):
            if old.id == keep:
                continue
            logger.debug(f"Pruning save slot {old.id}")
            self._delete(self._get_path(old.id))

    def _list(self) -> list[SaveSlot]:
        return _newest_first(self._scan())

    def _scan(self) -> list[SaveSlot]:
        slots = []
        for path in self.save_dir.glob("*.json"):
            try:
                slots.append(SaveSlot.from_dict(self._read(path)["slot"]))
            except (PersistenceError, KeyError) as e:
                logger.warning(f"Skipping unreadable save file {path.name}: {e}")
        return slots

    def _get_path(self, slot_id: str) -> Path:
        if not slot_id or "/" in slot_id or "\\" in slot_id or slot_id.startswith("."):
            raise PersistenceError(f"Invalid save slot id: {slot_id!r}")
        return self.save_dir / f"{slot_id}.json"

    def _write(self, path: Path, document: dict[str, Any]):
        tmp = path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Could not write {path.name}: {e}")

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {path.name}: {e}")
