"""
Tests for condition evaluation.

Tests:
- Combinators and vacuous conditions
- Every leaf type and operator
- Type strictness (booleans are never numbers)
- Unknown keys at runtime and at validation time
"""

import logging
from datetime import datetime

import pytest

from ..engine_core.condition import ConditionEvaluator, compare
from ..engine_core.errors import ValidationError
from ..engine_core.state import ChoiceRecord, InventoryItem


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


class TestCombinators:
    """Tests for and/or/not and vacuous conditions."""

    def test_none_and_empty_pass(self, evaluator, state):
        assert evaluator.evaluate(None, state)
        assert evaluator.evaluate({}, state)
        assert evaluator.evaluate([], state)

    def test_empty_and_is_true_empty_or_is_false(self, evaluator, state):
        assert evaluator.evaluate({"and": []}, state)
        assert not evaluator.evaluate({"or": []}, state)

    def test_and_or_not(self, evaluator, state):
        state.flags["brave"] = True
        brave = {"flag": "brave"}
        coward = {"flag": "coward"}

        assert evaluator.evaluate({"and": [brave, {"playerLevel": 1}]}, state)
        assert not evaluator.evaluate({"and": [brave, coward]}, state)
        assert evaluator.evaluate({"or": [coward, brave]}, state)
        assert evaluator.evaluate({"not": coward}, state)
        assert not evaluator.evaluate({"not": brave}, state)

    def test_list_is_implicit_and(self, evaluator, state):
        state.flags["a"] = True
        assert evaluator.evaluate([{"flag": "a"}, {"playerLevel": 1}], state)
        assert not evaluator.evaluate([{"flag": "a"}, {"flag": "b"}], state)

    def test_malformed_combinators_raise(self, evaluator, state):
        with pytest.raises(ValidationError):
            evaluator.evaluate({"and": {"flag": "a"}}, state)
        with pytest.raises(ValidationError):
            evaluator.evaluate({"not": [{"flag": "a"}]}, state)

    def test_evaluation_does_not_mutate_state(self, evaluator, state):
        state.flags["x"] = 3
        before = state.to_dict()
        evaluator.evaluate({"or": [{"flag": "x", "flagValue": 3}, {"hasItem": "sword"}]}, state)
        assert state.to_dict() == before


class TestNumericLeaves:
    """Tests for player stat and progress leaves."""

    def test_default_operator_is_gte(self, evaluator, state):
        state.player.level = 3
        assert evaluator.evaluate({"playerLevel": 3}, state)
        assert evaluator.evaluate({"playerLevel": 2}, state)
        assert not evaluator.evaluate({"playerLevel": 4}, state)

    def test_explicit_operators(self, evaluator, state):
        state.player.gold = 50
        assert evaluator.evaluate({"playerGold": 50, "op": "eq"}, state)
        assert evaluator.evaluate({"playerGold": 10, "op": "ne"}, state)
        assert evaluator.evaluate({"playerGold": 100, "playerGoldOperator": "lt"}, state)
        assert not evaluator.evaluate({"playerGold": 50, "op": "gt"}, state)
        assert evaluator.evaluate({"playerGold": 50, "op": "lte"}, state)

    def test_in_and_nin(self, evaluator, state):
        state.player.level = 2
        assert evaluator.evaluate({"playerLevel": [1, 2, 3], "op": "in"}, state)
        assert evaluator.evaluate({"playerLevel": [4, 5], "op": "nin"}, state)
        assert not evaluator.evaluate({"playerLevel": 2, "op": "in"}, state)

    def test_numeric_strings_are_coerced(self, evaluator, state):
        state.player.health = 40
        assert evaluator.evaluate({"playerHealth": "40", "op": "eq"}, state)

    def test_boolean_is_never_a_number(self, evaluator, state):
        state.player.gold = 1
        assert not evaluator.evaluate({"playerGold": True, "op": "eq"}, state)
        assert not evaluator.evaluate({"playerGold": True}, state)

    def test_player_stat(self, evaluator, state):
        state.player.attributes["strength"] = 14
        assert evaluator.evaluate({"playerStat": "strength", "value": 12}, state)
        assert not evaluator.evaluate({"playerStat": "strength", "value": 15}, state)
        assert not evaluator.evaluate({"playerStat": "wisdom", "value": 1}, state)

    def test_progress_leaves(self, evaluator, state):
        state.progress.playtime = 120
        state.progress.story_progress = 50
        assert evaluator.evaluate({"playtime": 60}, state)
        assert evaluator.evaluate({"storyProgress": 50, "op": "eq"}, state)


class TestFlagLeaves:
    """Tests for flag conditions."""

    def test_flag_without_value_checks_set(self, evaluator, state):
        assert not evaluator.evaluate({"flag": "door_open"}, state)
        state.flags["door_open"] = True
        assert evaluator.evaluate({"flag": "door_open"}, state)
        state.flags["door_open"] = False
        assert not evaluator.evaluate({"flag": "door_open"}, state)

    def test_flag_value_comparison(self, evaluator, state):
        state.flags["visits"] = 3
        state.flags["mood"] = "grim"
        assert evaluator.evaluate({"flag": "visits", "flagValue": 3}, state)
        assert evaluator.evaluate({"flag": "visits", "flagValue": 2, "op": "gt"}, state)
        assert evaluator.evaluate({"flag": "mood", "flagValue": "grim"}, state)
        assert not evaluator.evaluate({"flag": "mood", "flagValue": "cheerful"}, state)

    def test_flag_types_are_strict(self, evaluator, state):
        state.flags["lit"] = True
        state.flags["count"] = 1
        assert not evaluator.evaluate({"flag": "lit", "flagValue": 1}, state)
        assert not evaluator.evaluate({"flag": "count", "flagValue": True}, state)

    def test_flag_exists(self, evaluator, state):
        assert not evaluator.evaluate({"flag": "seen", "flagValue": None, "op": "exists"}, state)
        state.flags["seen"] = False
        assert evaluator.evaluate({"flag": "seen", "flagValue": None, "op": "exists"}, state)


class TestStateLeaves:
    """Tests for inventory, history and relationship leaves."""

    def test_has_item_and_item_count(self, evaluator, state):
        state.inventory.append(InventoryItem(id="herb", name="Herb", quantity=2, stackable=True))
        state.inventory.append(InventoryItem(id="herb", name="Herb", quantity=3, stackable=True))

        assert evaluator.evaluate({"hasItem": "herb"}, state)
        assert not evaluator.evaluate({"hasItem": "sword"}, state)
        assert evaluator.evaluate({"itemCount": 5, "itemCountId": "herb"}, state)
        assert not evaluator.evaluate({"itemCount": 6, "itemCountId": "herb"}, state)
        assert evaluator.evaluate({"itemCount": 5, "itemCountId": "herb", "itemCountOperator": "eq"}, state)

    def test_visited_scenes(self, evaluator, state):
        assert evaluator.evaluate({"visitedScene": "gate"}, state)
        assert not evaluator.evaluate({"visitedScene": "vault"}, state)
        assert evaluator.evaluate({"notVisitedScene": "vault"}, state)

    def test_relationship(self, evaluator, state):
        state.relationships["keeper"] = 30
        assert evaluator.evaluate({"relationship": "keeper", "relationshipValue": 20}, state)
        assert not evaluator.evaluate({"relationship": "keeper", "relationshipValue": 40}, state)
        assert evaluator.evaluate({"relationship": "stranger", "relationshipValue": 0, "op": "eq"}, state)

    def test_achievement_and_choice_history(self, evaluator, state):
        state.progress.achievements_unlocked.append("first_light")
        state.progress.choices_made.append(ChoiceRecord(choice_id="greet_keeper", scene_id="courtyard"))

        assert evaluator.evaluate({"hasAchievement": "first_light"}, state)
        assert not evaluator.evaluate({"hasAchievement": "treasure_hunter"}, state)
        assert evaluator.evaluate({"madeChoice": "greet_keeper"}, state)
        assert not evaluator.evaluate({"madeChoice": "leave_dark"}, state)

    def test_time_of_day_uses_injected_clock(self, state):
        evening = ConditionEvaluator(now=lambda: datetime(2024, 1, 1, 19, 30))
        assert evening.evaluate({"timeOfDay": "evening"}, state)
        assert not evening.evaluate({"timeOfDay": "morning"}, state)

        late = ConditionEvaluator(now=lambda: datetime(2024, 1, 1, 2, 0))
        assert late.evaluate({"timeOfDay": "night"}, state)


class TestUnknownConditions:
    """Tests for unknown keys and operators."""

    def test_unknown_leaf_denies_with_warning(self, evaluator, state, caplog):
        with caplog.at_level(logging.WARNING):
            assert not evaluator.evaluate({"moonPhase": "full"}, state)
        assert "Unknown condition type" in caplog.text

    def test_unknown_operator_raises(self, evaluator, state):
        with pytest.raises(ValidationError):
            evaluator.evaluate({"playerLevel": 1, "op": "approximately"}, state)

    def test_validate_reports_unknown_key(self, evaluator):
        problems = evaluator.validate({"and": [{"playerLevel": 2}, {"moonPhase": "full"}]})
        assert len(problems) == 1
        assert problems[0].unknown_key == "moonPhase"
        assert problems[0].path == "conditions.and[1]"

    def test_validate_reports_shape_problems(self, evaluator):
        assert evaluator.validate({"itemCount": 2})[0].message == "'itemCount' needs an 'itemCountId'"
        assert evaluator.validate({"timeOfDay": "teatime"})
        assert evaluator.validate({"playerLevel": 1, "op": "approximately"})
        assert evaluator.validate({"or": {"flag": "a"}})

    def test_validate_accepts_well_formed_tree(self, evaluator):
        condition = {
            "or": [
                {"flag": "met_keeper", "flagValue": True},
                {"not": {"visitedScene": "vault"}},
                {"itemCount": 2, "itemCountId": "herb", "itemCountOperator": "lt"},
            ]
        }
        assert evaluator.validate(condition) == []


class TestResources:
    """Tests for resource helpers."""

    def test_check_resources(self, evaluator, state):
        state.player.gold = 20
        state.inventory.append(InventoryItem(id="herb", name="Herb", quantity=2))

        assert evaluator.check_resources({"gold": 20, "herb": 2}, state)
        assert not evaluator.check_resources({"gold": 21}, state)
        assert not evaluator.check_resources({"herb": 3}, state)

    def test_has_inventory_space(self, evaluator, state):
        state.player.inventory_capacity = 3
        state.inventory.append(InventoryItem(id="herb", name="Herb", quantity=2))
        assert evaluator.has_inventory_space(1, state)
        assert not evaluator.has_inventory_space(2, state)


class TestCompare:
    def test_uncomparable_operands_are_false(self):
        assert not compare("abc", 3, "gt", numeric=True)
        assert not compare(None, 3, "lt", numeric=True)
        assert compare(None, None, "nexists")
