"""
Condition Evaluator - Boolean predicate trees over game state.

Conditions are JSON objects:
- Combinators: {"and": [...]}, {"or": [...]}, {"not": {...}}
- Leaves: one recognised key plus optional modifiers, e.g.
  {"playerLevel": 5, "op": "gte"}
  {"flag": "met_wizard", "flagValue": true}
  {"itemCount": 3, "itemCountId": "herb", "itemCountOperator": "gte"}

Semantics:
- None or {} is a vacuous pass
- Empty "and" is true, empty "or" is false
- Numeric leaves coerce both operands to numbers; booleans never count as numbers
- Unknown leaf keys evaluate to False with a warning (content loading rejects them)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, TYPE_CHECKING
import logging

from .errors import ValidationError

if TYPE_CHECKING:
    from .state import GameState

logger = logging.getLogger(__name__)

OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "nin", "exists", "nexists")

COMBINATORS = ("and", "or", "not")

# Leaf key -> state accessor for plain numeric comparisons
NUMERIC_LEAVES: dict[str, Callable[[GameState], Any]] = {
    "playerLevel": lambda s: s.player.level,
    "playerHealth": lambda s: s.player.health,
    "playerGold": lambda s: s.player.gold,
    "playerMana": lambda s: s.player.mana,
    "playerExperience": lambda s: s.player.experience,
    "playtime": lambda s: s.progress.playtime,
    "storyProgress": lambda s: s.progress.story_progress,
}

SPECIAL_LEAVES = (
    "playerStat",
    "flag",
    "hasItem",
    "itemCount",
    "visitedScene",
    "notVisitedScene",
    "relationship",
    "hasAchievement",
    "madeChoice",
    "timeOfDay",
)

LEAF_KEYS = tuple(NUMERIC_LEAVES) + SPECIAL_LEAVES

# Keys that qualify a leaf rather than name one
MODIFIER_KEYS = {"op", "value", "flagValue", "itemCountId", "relationshipValue"} | {
    f"{key}Operator" for key in LEAF_KEYS
}

DEFAULT_OPERATORS = {key: "gte" for key in NUMERIC_LEAVES} | {
    "playerStat": "gte",
    "itemCount": "gte",
    "relationship": "gte",
    "flag": "eq",
}

TIME_OF_DAY = {
    "morning": lambda h: 6 <= h < 12,
    "afternoon": lambda h: 12 <= h < 18,
    "evening": lambda h: 18 <= h < 22,
    "night": lambda h: h >= 22 or h < 6,
}


@dataclass
class ConditionProblem:
    """A problem found while validating a condition tree."""
    path: str
    message: str
    unknown_key: str | None = None


class ConditionEvaluator:
    """
    Evaluates condition trees against a GameState.

    Pure: never mutates the state.
    """

    def __init__(self, now: Callable[[], datetime] | None = None):
        self._now = now or datetime.now

    def evaluate(self, condition: dict | list | None, state: GameState) -> bool:
        """
        Evaluate a condition tree.

        Raises ValidationError for malformed combinators or operators.
        """
        if not condition:
            return True
        return self._evaluate_node(condition, state)

    def _evaluate_node(self, node: Any, state: GameState) -> bool:
        # A bare list is an implicit "and"
        if isinstance(node, list):
            return all(self._evaluate_node(child, state) for child in node)

        if not isinstance(node, dict):
            raise ValidationError(f"Condition must be an object, got {type(node).__name__}")

        if "and" in node:
            children = node["and"]
            if not isinstance(children, list):
                raise ValidationError("'and' expects a list of conditions")
            return all(self._evaluate_node(child, state) for child in children)

        if "or" in node:
            children = node["or"]
            if not isinstance(children, list):
                raise ValidationError("'or' expects a list of conditions")
            return any(self._evaluate_node(child, state) for child in children)

        if "not" in node:
            child = node["not"]
            if not isinstance(child, dict):
                raise ValidationError("'not' expects a single condition object")
            return not self._evaluate_node(child, state)

        if not node:
            return True
        return self._evaluate_leaf(node, state)

    def _evaluate_leaf(self, leaf: dict, state: GameState) -> bool:
        key = _leaf_key(leaf)
        if key is None:
            logger.warning(f"Unknown condition type: {leaf!r}")
            return False

        op = _operator(leaf, key)

        if key in NUMERIC_LEAVES:
            return compare(NUMERIC_LEAVES[key](state), leaf[key], op, numeric=True)

        if key == "playerStat":
            value = state.player.attributes.get(leaf[key])
            return compare(value, leaf.get("value", 0), op, numeric=True)

        if key == "flag":
            flag_value = state.flags.get(leaf["flag"])
            if "flagValue" in leaf:
                return compare(flag_value, leaf["flagValue"], op)
            return state.flags.is_set(leaf["flag"])

        if key == "hasItem":
            return state.find_item(leaf["hasItem"]) is not None

        if key == "itemCount":
            count = sum(i.quantity for i in state.inventory if i.id == leaf.get("itemCountId"))
            return compare(count, leaf["itemCount"], op, numeric=True)

        if key == "visitedScene":
            return state.has_visited(leaf["visitedScene"])

        if key == "notVisitedScene":
            return not state.has_visited(leaf["notVisitedScene"])

        if key == "relationship":
            value = state.get_relationship(leaf["relationship"])
            return compare(value, leaf.get("relationshipValue", 0), op, numeric=True)

        if key == "hasAchievement":
            return leaf["hasAchievement"] in state.progress.achievements_unlocked

        if key == "madeChoice":
            return state.has_made_choice(leaf["madeChoice"])

        if key == "timeOfDay":
            check = TIME_OF_DAY.get(leaf["timeOfDay"])
            return bool(check and check(self._now().hour))

        return False

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, condition: Any, path: str = "conditions") -> list[ConditionProblem]:
        """
        Check a condition tree without evaluating it.

        Returns every problem found; unknown leaf keys carry `unknown_key`.
        """
        if condition is None or condition == {} or condition == []:
            return []

        problems: list[ConditionProblem] = []

        if isinstance(condition, list):
            for i, child in enumerate(condition):
                problems.extend(self.validate(child, f"{path}[{i}]"))
            return problems

        if not isinstance(condition, dict):
            return [ConditionProblem(path, f"condition must be an object, got {type(condition).__name__}")]

        for combinator in ("and", "or"):
            if combinator in condition:
                children = condition[combinator]
                if not isinstance(children, list):
                    return [ConditionProblem(path, f"'{combinator}' expects a list")]
                for i, child in enumerate(children):
                    problems.extend(self.validate(child, f"{path}.{combinator}[{i}]"))
                return problems

        if "not" in condition:
            if not isinstance(condition["not"], dict):
                return [ConditionProblem(path, "'not' expects a single condition object")]
            return self.validate(condition["not"], f"{path}.not")

        key = _leaf_key(condition)
        if key is None:
            unknown = next((k for k in condition if k not in MODIFIER_KEYS), None)
            return [ConditionProblem(
                path,
                f"unknown condition key '{unknown}'",
                unknown_key=unknown or "",
            )]

        extra = [k for k in condition if k != key and k not in MODIFIER_KEYS]
        for k in extra:
            problems.append(ConditionProblem(path, f"unknown condition key '{k}'", unknown_key=k))

        op = condition.get("op") or condition.get(f"{key}Operator") or DEFAULT_OPERATORS.get(key, "eq")
        if op not in OPERATORS:
            problems.append(ConditionProblem(path, f"unknown operator '{op}'"))

        if key == "timeOfDay" and condition[key] not in TIME_OF_DAY:
            problems.append(ConditionProblem(path, f"unknown time of day '{condition[key]}'"))

        if key == "itemCount" and not condition.get("itemCountId"):
            problems.append(ConditionProblem(path, "'itemCount' needs an 'itemCountId'"))

        return problems

    # =========================================================================
    # Resource helpers
    # =========================================================================

    def check_resources(self, resources: dict[str, int], state: GameState) -> bool:
        """True when the player holds at least the given amount of each resource."""
        for resource, required in resources.items():
            if _resource_amount(resource, state) < required:
                return False
        return True

    def has_inventory_space(self, required_slots: int, state: GameState) -> bool:
        used = sum(item.quantity for item in state.inventory)
        return used + required_slots <= state.player.inventory_capacity


def _leaf_key(leaf: dict) -> str | None:
    for key in LEAF_KEYS:
        if key in leaf:
            return key
    return None


def _operator(leaf: dict, key: str) -> str:
    op = leaf.get("op") or leaf.get(f"{key}Operator") or DEFAULT_OPERATORS.get(key, "eq")
    if op not in OPERATORS:
        raise ValidationError(f"Unknown operator '{op}' in condition {leaf!r}")
    return op


def _resource_amount(resource: str, state: GameState) -> int:
    if resource in ("gold", "health", "mana", "experience"):
        return getattr(state.player, resource)
    return state.item_quantity(resource)


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def compare(value: Any, target: Any, op: str, numeric: bool = False) -> bool:
    """
    Compare a state value to an authored target.

    Returns False when operands cannot be compared.
    """
    if op == "exists":
        return value is not None
    if op == "nexists":
        return value is None

    if op in ("in", "nin"):
        if not isinstance(target, (list, tuple, set)):
            return False
        if numeric:
            value = _to_number(value)
            target = [_to_number(t) for t in target]
        found = value is not None and any(_equal(value, t) for t in target)
        return found if op == "in" else not found

    if numeric:
        value, target = _to_number(value), _to_number(target)
        if value is None or target is None:
            return False

    if op == "eq":
        return _equal(value, target)
    if op == "ne":
        return not _equal(value, target)

    if value is None or isinstance(value, bool) or isinstance(target, bool):
        return False
    try:
        if op == "gt":
            return value > target
        if op == "gte":
            return value >= target
        if op == "lt":
            return value < target
        if op == "lte":
            return value <= target
    except TypeError:
        return False
    return False
