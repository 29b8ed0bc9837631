"""
Tests for character interactions.
"""

import pytest

from ..engine_core.characters import GIFT_COOLDOWN, CharacterManager, InteractionKind, price_modifier
from ..engine_core.errors import ValidationError
from ..stories.lantern import lantern_story


@pytest.fixture
def keeper():
    return lantern_story().characters["keeper"]


@pytest.fixture
def characters(bus, clock, keeper):
    manager = CharacterManager(bus, now=clock)
    manager.load_scene_characters([keeper])
    return manager


class TestTalk:
    """Tests for dialogue selection."""

    def test_stranger_gets_default_line(self, characters, state):
        result = characters.interact(state, "keeper", "talk")

        assert result.success
        assert result.message == "Oh! A visitor. Mind the garden."
        assert result.options == ["Sorry", "Lovely herbs"]

    def test_friend_gets_priority_line(self, characters, state):
        state.relationships["keeper"] = 25
        state.flags["met_keeper"] = True
        result = characters.interact(state, "keeper", InteractionKind.TALK)
        assert result.message.startswith("The lamp needs oil")

    def test_required_flags_are_type_strict(self, characters, state):
        state.relationships["keeper"] = 25
        state.flags["met_keeper"] = 1
        result = characters.interact(state, "keeper", "talk")
        assert result.message.startswith("Oh! A visitor")

    def test_shy_character_is_nervous_when_talking(self, characters, state, events):
        result = characters.interact(state, "keeper", "talk")

        assert result.metadata["mood"] == "nervous"
        assert characters.get_state("keeper").last_interaction == "talk"
        interaction = events.of("characterInteraction")[0]
        assert interaction.payload == {"character_id": "keeper", "kind": "talk", "success": True}


class TestTrade:
    def test_trade_offers_wares_with_price_modifier(self, characters, state):
        state.relationships["keeper"] = 100
        result = characters.interact(state, "keeper", "trade")

        assert result.success
        assert result.trade_items[0]["id"] == "herb_tea"
        assert result.metadata["priceModifier"] == pytest.approx(0.9)
        assert result.metadata["mood"] == "happy"

    def test_hostile_character_refuses_trade(self, characters, state):
        state.relationships["keeper"] = -60
        result = characters.interact(state, "keeper", "trade")

        assert not result.success
        assert result.metadata["mood"] == "angry"

    def test_price_modifier_bounds(self):
        assert price_modifier(0) == 1.0
        assert 0.5 <= price_modifier(100) <= 1.5
        assert 0.5 <= price_modifier(-100) <= 1.5


class TestQuests:
    def test_quest_needs_prerequisites_and_relationship(self, characters, state):
        assert not characters.interact(state, "keeper", "quest").success

        state.flags["met_keeper"] = True
        assert not characters.interact(state, "keeper", "quest").success

        state.relationships["keeper"] = 10
        result = characters.interact(state, "keeper", "quest")
        assert result.success
        assert result.quest.id == "relight"

    def test_active_or_completed_quests_are_hidden(self, characters, state):
        state.flags["met_keeper"] = True
        state.relationships["keeper"] = 10
        state.flags["quest_relight_active"] = True
        assert not characters.interact(state, "keeper", "quest").success


class TestGifts:
    """Tests for the once-per-day gift cooldown."""

    def test_gift_cooldown(self, characters, state, clock):
        first = characters.interact(state, "keeper", "gift")
        assert first.success
        assert first.preferences["likes"] == ["tea", "herbs"]

        clock.advance(GIFT_COOLDOWN - 1)
        assert not characters.interact(state, "keeper", "gift").success

        clock.advance(1)
        assert characters.interact(state, "keeper", "gift").success


class TestManager:
    def test_unknown_character_or_kind(self, characters, state):
        with pytest.raises(ValidationError):
            characters.interact(state, "ghost", "talk")
        with pytest.raises(ValidationError):
            characters.interact(state, "keeper", "dance")

    def test_relationship_adjustment_clamps(self, characters, state, events):
        assert characters.adjust_relationship(state, "keeper", 150) == 100
        assert characters.adjust_relationship(state, "keeper", 10) == 100
        # No change, no event
        assert len(events.of("relationshipChanged")) == 1

    def test_scene_change_replaces_loaded_characters(self, characters):
        characters.load_scene_characters([])
        assert characters.loaded == []
        # Runtime state survives leaving the scene
        assert characters.get_state("keeper") is not None
