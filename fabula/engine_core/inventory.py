"""
Inventory Manager - Item stacking, capacity, equipment and item use.

Items are held in an ordered list on the GameState:
- Stackable items with a matching id combine quantities up to a max stack
- Anything else becomes a new entry, even with a duplicate id
- Capacity counts total quantity, not entries

Using an item never touches player stats directly. It returns an
ItemUseResult carrying the Effect to apply, and the engine routes that
Effect through the EffectProcessor like any other bundle.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable
import logging

from .events import EventBus, GameEvent
from .state import GameState, InventoryItem
from ..story_schema.effects import Effect, ItemRemoval

logger = logging.getLogger(__name__)

MAX_STACK_SIZE = 99

RARITY_ORDER = {"common": 0, "uncommon": 1, "rare": 2, "epic": 3, "legendary": 4}

CONSUMABLE_TYPES = ("potion", "food", "scroll")

EQUIPMENT_SLOTS = ("weapon", "head", "chest", "legs", "feet", "hands", "accessory")


@dataclass
class ItemUseResult:
    """Outcome of using an item."""
    success: bool
    message: str
    item_id: str
    effect: Effect = field(default_factory=Effect)
    equipped: bool = False
    consumed: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "itemId": self.item_id,
            "effect": self.effect.to_dict(),
            "equipped": self.equipped,
            "consumed": self.consumed,
            "details": dict(self.details),
        }


class InventoryManager:
    """Mutation and query helpers over the player's inventory."""

    def __init__(self, bus: EventBus | None = None):
        self.bus = bus or EventBus()

    # =========================================================================
    # Queries
    # =========================================================================

    def used_slots(self, state: GameState) -> int:
        return sum(item.quantity for item in state.inventory)

    def has_space(self, state: GameState, required_slots: int = 1) -> bool:
        return self.used_slots(state) + required_slots <= state.player.inventory_capacity

    def count(self, state: GameState, item_id: str) -> int:
        return sum(item.quantity for item in state.inventory if item.id == item_id)

    def total_weight(self, state: GameState) -> float:
        return sum(item.properties.get("weight", 1) * item.quantity for item in state.inventory)

    def total_value(self, state: GameState) -> int:
        return sum(item.value * item.quantity for item in state.inventory)

    # =========================================================================
    # Mutation
    # =========================================================================

    def add_item(self, state: GameState, item: InventoryItem) -> bool:
        """Add one item entry, respecting capacity. Returns False when full."""
        return self.add_items(state, [item])

    def add_items(self, state: GameState, items: list[InventoryItem]) -> bool:
        """
        Add several items atomically.

        Capacity is checked for the whole list first; if it does not fit,
        nothing is added and inventoryFull is emitted.
        """
        required = sum(item.quantity for item in items)
        if not self.has_space(state, required):
            logger.info(f"Inventory full, cannot add {[i.id for i in items]}")
            self.bus.emit(
                GameEvent.INVENTORY_FULL,
                item_ids=[i.id for i in items],
                required=required,
                capacity=state.player.inventory_capacity,
            )
            return False

        for item in items:
            self._insert(state, item)
        return True

    def _insert(self, state: GameState, item: InventoryItem):
        if item.stackable:
            max_stack = item.max_stack or MAX_STACK_SIZE
            for existing in state.inventory:
                if existing.id == item.id and existing.stackable:
                    if existing.quantity + item.quantity <= max_stack:
                        existing.quantity += item.quantity
                        self._changed("add", existing, item.quantity)
                        return
        entry = item.copy()
        state.inventory.append(entry)
        self._changed("add", entry, entry.quantity)

    def remove_item(self, state: GameState, item_id: str, quantity: int = 1) -> bool:
        return self.remove_items(state, [ItemRemoval(item_id=item_id, quantity=quantity)])

    def remove_items(self, state: GameState, removals: list[ItemRemoval]) -> bool:
        """
        Remove several items atomically.

        Every requested item must be present in sufficient quantity,
        otherwise nothing is removed.
        """
        needed: dict[str, int] = {}
        for removal in removals:
            needed[removal.item_id] = needed.get(removal.item_id, 0) + removal.quantity

        for item_id, quantity in needed.items():
            if self.count(state, item_id) < quantity:
                logger.info(f"Cannot remove {quantity}x {item_id}: not enough in inventory")
                return False

        for item_id, quantity in needed.items():
            self._take(state, item_id, quantity)
        return True

    def _take(self, state: GameState, item_id: str, quantity: int):
        remaining = quantity
        for item in list(state.inventory):
            if remaining <= 0:
                break
            if item.id != item_id:
                continue
            taken = min(item.quantity, remaining)
            item.quantity -= taken
            remaining -= taken
            if item.quantity <= 0:
                state.inventory.remove(item)
            self._changed("remove", item, taken)

    def sort(self, state: GameState, by: str = "type"):
        """Sort by name, type, value (highest first) or rarity (rarest first)."""
        keys: dict[str, Callable[[InventoryItem], Any]] = {
            "name": lambda i: i.name.lower(),
            "type": lambda i: i.type,
            "value": lambda i: -i.value,
            "rarity": lambda i: -RARITY_ORDER.get(i.rarity, 0),
        }
        if by not in keys:
            raise ValueError(f"Cannot sort inventory by '{by}'")
        state.inventory.sort(key=keys[by])
        self.bus.emit(GameEvent.INVENTORY_CHANGED, action="sort", sort_by=by)

    # =========================================================================
    # Equipment
    # =========================================================================

    def equip(self, state: GameState, item_id: str, slot: str) -> InventoryItem | None:
        """
        Move one unit of an item into an equipment slot.

        Returns the previously equipped item, which goes back to inventory.
        """
        item = state.find_item(item_id)
        if item is None:
            raise ValueError(f"Item {item_id} is not in the inventory")

        self._take(state, item_id, 1)
        previous = state.player.equipment.get(slot)
        state.player.equipment[slot] = item.copy(quantity=1)
        if previous is not None:
            self._insert(state, previous.copy(quantity=1))
        logger.debug(f"Equipped {item_id} in slot {slot}")
        return previous

    def unequip(self, state: GameState, slot: str) -> InventoryItem | None:
        """Return the item in a slot to inventory. None when the slot is empty or inventory is full."""
        item = state.player.equipment.get(slot)
        if item is None or not self.has_space(state, 1):
            return None
        del state.player.equipment[slot]
        self._insert(state, item.copy(quantity=1))
        return item

    # =========================================================================
    # Item use
    # =========================================================================

    def use_item(self, state: GameState, item_id: str) -> ItemUseResult:
        """
        Use an item by type.

        Consumables are removed on success; equipment moves to its slot.
        The returned Effect is not applied here.
        """
        item = state.find_item(item_id)
        if item is None:
            return ItemUseResult(success=False, message="Item not found", item_id=item_id)

        handlers: dict[str, Callable[[GameState, InventoryItem], ItemUseResult]] = {
            "potion": self._use_potion,
            "food": self._use_food,
            "weapon": self._use_weapon,
            "armor": self._use_armor,
            "tool": self._use_tool,
            "key": self._use_key,
            "book": self._use_book,
            "scroll": self._use_scroll,
        }
        handler = handlers.get(item.type, self._use_generic)
        result = handler(state, item)

        consumable = item.properties.get("consumable", item.type in CONSUMABLE_TYPES)
        if result.success and consumable and not result.equipped:
            self._take(state, item.id, 1)
            result.consumed = True

        self.bus.emit(GameEvent.ITEM_USED, item_id=item.id, success=result.success, message=result.message)
        return result

    def _use_potion(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        effects = item.properties.get("effects") or {}
        effect = Effect(health=effects.get("health"), mana=effects.get("mana"))
        applied = [f"{stat.capitalize()}: +{effects[stat]}" for stat in ("health", "mana") if effects.get(stat)]
        message = f"You drink {item.name}."
        if applied:
            message = f"{message} {', '.join(applied)}"
        return ItemUseResult(True, message, item.id, effect=effect)

    def _use_food(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        nutrition = item.properties.get("nutrition", 10)
        gain = nutrition // 2
        return ItemUseResult(
            True,
            f"You eat {item.name} and recover a little.",
            item.id,
            effect=Effect(health=gain),
            details={"health": gain},
        )

    def _use_weapon(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        previous = self.equip(state, item.id, "weapon")
        return ItemUseResult(
            True,
            f"You wield {item.name}.",
            item.id,
            equipped=True,
            details={"slot": "weapon", "replaced": previous.id if previous else None},
        )

    def _use_armor(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        slot = item.properties.get("slot", "chest")
        previous = self.equip(state, item.id, slot)
        return ItemUseResult(
            True,
            f"You put on {item.name}.",
            item.id,
            equipped=True,
            details={"slot": slot, "replaced": previous.id if previous else None},
        )

    def _use_tool(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        tool_type = item.properties.get("toolType")
        if tool_type in ("lockpick", "rope"):
            return ItemUseResult(
                True, f"You ready {item.name}.", item.id, details={"toolReady": True}
            )
        return ItemUseResult(True, f"You use {item.name}.", item.id)

    def _use_key(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        key_id = item.properties.get("keyId")
        effect = Effect(flags={f"key_{key_id}_used": True}) if key_id else Effect()
        return ItemUseResult(
            True, f"You use {item.name}.", item.id, effect=effect, details={"keyUsed": key_id}
        )

    def _use_book(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        knowledge = item.properties.get("knowledge") or []
        experience = item.properties.get("experience", 10)
        effect = Effect(
            flags={f"knowledge_{k}": True for k in knowledge},
            experience=experience if experience > 0 else None,
        )
        return ItemUseResult(
            True,
            f"You read {item.name} and learn something new.",
            item.id,
            effect=effect,
            details={"experience": experience, "knowledge": list(knowledge)},
        )

    def _use_scroll(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        spell = item.properties.get("spell")
        mana_cost = item.properties.get("manaCost", 0)
        if mana_cost > state.player.mana:
            return ItemUseResult(False, "Not enough mana to use the scroll.", item.id)

        effect = Effect(
            mana=-mana_cost if mana_cost else None,
            flags={f"spell_{spell}_cast": True} if spell else {},
        )
        return ItemUseResult(
            True,
            f"You read the scroll and cast {spell or 'a spell'}.",
            item.id,
            effect=effect,
            details={"spell": spell, "manaCost": mana_cost},
        )

    def _use_generic(self, state: GameState, item: InventoryItem) -> ItemUseResult:
        return ItemUseResult(
            True,
            f"You use {item.name}.",
            item.id,
            effect=Effect(flags={f"item_{item.id}_used": True}),
        )

    def _changed(self, action: str, item: InventoryItem, quantity: int):
        self.bus.emit(
            GameEvent.INVENTORY_CHANGED,
            action=action,
            item_id=item.id,
            quantity=quantity,
        )
