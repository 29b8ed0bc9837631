"""
The Lantern Keeper - a short built-in story.

Used by the CLI demo, the API's default repository and the tests.
It exercises every choice type, items, a character, a timed curse,
a teleport and two endings.
"""

from __future__ import annotations
import copy
from typing import Any

from ..content.repository import StoryRepository
from ..story_schema.story import Story

STORY_ID = "lantern"

LANTERN: dict[str, Any] = {
    "id": STORY_ID,
    "title": "The Lantern Keeper",
    "description": "Relight the lighthouse before the fishing fleet returns.",
    "version": "1.0",
    "startingSceneId": "gate",
    "scenes": [
        {
            "id": "gate",
            "title": "The Gate",
            "content": (
                "Welcome, {player.name}. The lighthouse gate creaks in the wind. "
                "You carry {inventory.count.lantern_oil} flasks of lantern oil."
            ),
            "effects": {
                "addItems": [
                    {
                        "id": "lantern_oil",
                        "name": "Lantern Oil",
                        "type": "misc",
                        "quantity": 2,
                        "stackable": True,
                        "value": 5,
                    }
                ]
            },
            "choiceIds": ["enter_courtyard"],
            "backgroundMusic": "harbor-wind",
        },
        {
            "id": "courtyard",
            "title": "The Courtyard",
            "content": "An old keeper tends a herb garden. Gold in your purse: {player.gold}.",
            "effects": {
                "addItems": [
                    {
                        "id": "healing_potion",
                        "name": "Healing Potion",
                        "type": "potion",
                        "stackable": True,
                        "value": 20,
                        "properties": {"effects": {"health": 25}},
                    }
                ]
            },
            "choiceIds": [
                "greet_keeper",
                "ask_about_light",
                "search_shed",
                "open_vault",
                "climb_stairs",
            ],
            "characterIds": ["keeper"],
        },
        {
            "id": "shed",
            "title": "The Shed",
            "content": "Rusty tools, fishing nets and, under a sack, a brass key.",
            "effects": {
                "gold": 15,
                "addItems": [
                    {
                        "id": "brass_key",
                        "name": "Brass Key",
                        "type": "key",
                        "properties": {"keyId": "vault"},
                    }
                ],
            },
            "choiceIds": ["back_to_courtyard"],
        },
        {
            "id": "vault",
            "title": "The Vault",
            "content": "Coins glitter beside a tall, dark mirror.",
            "conditions": {"hasItem": "brass_key"},
            "effects": {"gold": 100, "flags": {"vault_opened": True}},
            "choiceIds": ["touch_mirror", "back_to_courtyard"],
        },
        {
            "id": "stairwell",
            "title": "The Stairwell",
            "content": "The spiral stairs groan. Health: {player.health}/{player.maxHealth}.",
            "effects": {"health": -10, "sound": "stairs-creak"},
            "choiceIds": ["dash_up", "take_it_slow"],
        },
        {
            "id": "lamp_room",
            "title": "The Lamp Room",
            "content": "The great lens waits, cold and dark. Lamp lit: {flag.lamp_lit}.",
            "choiceIds": ["light_lamp", "leave_dark"],
            "backgroundMusic": "lamp-room",
        },
    ],
    "choices": [
        {
            "id": "enter_courtyard",
            "text": "Push the gate open",
            "targetSceneId": "courtyard",
            "effects": {"experience": 50},
        },
        {
            "id": "greet_keeper",
            "text": "Greet the keeper",
            "targetSceneId": "courtyard",
            "conditions": {"not": {"flag": "met_keeper"}},
            "effects": {
                "flags": {"met_keeper": True},
                "relationships": {"keeper": 25},
            },
        },
        {
            "id": "ask_about_light",
            "text": "Ask the keeper about the light",
            "type": "conditional",
            "targetSceneId": "stairwell",
            "effects": {"experience": 25, "flags": {"knows_the_way": True}},
            "metadata": {"conditions": {"flag": "met_keeper"}},
        },
        {
            "id": "search_shed",
            "text": "Search the shed",
            "targetSceneId": "shed",
            "conditions": {"notVisitedScene": "shed"},
        },
        {
            "id": "open_vault",
            "text": "Unlock the vault {require:Brass Key}",
            "targetSceneId": "vault",
            "requirements": [
                {"type": "item", "key": "brass_key", "errorMessage": "The vault is locked"}
            ],
        },
        {
            "id": "climb_stairs",
            "text": "Climb the stairs",
            "targetSceneId": "stairwell",
        },
        {
            "id": "back_to_courtyard",
            "text": "Return to the courtyard",
            "targetSceneId": "courtyard",
        },
        {
            "id": "touch_mirror",
            "text": "Touch the mirror",
            "targetSceneId": "courtyard",
            "effects": {
                "custom": [
                    {"type": "teleport", "targetScene": "lamp_room"},
                    {"type": "curse", "curseType": "frailty", "duration": 600},
                ]
            },
        },
        {
            "id": "dash_up",
            "text": "Race up before the steps give way",
            "type": "timed",
            "targetSceneId": "lamp_room",
            "effects": {"experience": 100},
            "metadata": {"timeLimit": 20},
        },
        {
            "id": "take_it_slow",
            "text": "Take it slow",
            "targetSceneId": "lamp_room",
            "effects": {"health": -30},
        },
        {
            "id": "light_lamp",
            "text": "Light the lamp",
            "targetSceneId": None,
            "requirements": [
                {"type": "item", "key": "lantern_oil", "errorMessage": "You need lantern oil"}
            ],
            "effects": {
                "removeItems": [{"id": "lantern_oil", "quantity": 1}],
                "flags": {"lamp_lit": True},
                "experience": 150,
                "sound": "lamp-ignite",
            },
        },
        {
            "id": "leave_dark",
            "text": "Leave the lamp dark",
            "targetSceneId": None,
            "effects": {"flags": {"lamp_lit": False}},
        },
    ],
    "characters": [
        {
            "id": "keeper",
            "name": "Old Maren",
            "description": "The last keeper of the lighthouse.",
            "traits": ["shy"],
            "preferences": {"likes": ["tea", "herbs"], "dislikes": ["noise"]},
            "dialogue": [
                {
                    "text": "Oh! A visitor. Mind the garden.",
                    "responses": ["Sorry", "Lovely herbs"],
                    "priority": 0,
                },
                {
                    "text": "The lamp needs oil. Climb carefully, friend.",
                    "responses": ["I will"],
                    "minRelationship": 20,
                    "requiredFlags": {"met_keeper": True},
                    "priority": 1,
                    "optimalRelationship": 50,
                },
            ],
            "tradeItems": [
                {"id": "herb_tea", "name": "Herb Tea", "type": "food", "value": 3}
            ],
            "quests": [
                {
                    "id": "relight",
                    "description": "Relight the lamp before nightfall.",
                    "prerequisites": ["met_keeper"],
                    "requiredRelationship": 10,
                }
            ],
        }
    ],
    "achievements": [
        {
            "id": "first_light",
            "name": "First Light",
            "description": "Relight the lighthouse.",
            "conditions": {"flag": "lamp_lit", "flagValue": True},
            "points": 50,
        },
        {
            "id": "treasure_hunter",
            "name": "Treasure Hunter",
            "description": "Open the vault.",
            "conditions": {"flag": "vault_opened"},
            "points": 25,
        },
        {
            "id": "friend_of_the_keeper",
            "name": "Friend of the Keeper",
            "conditions": {"relationship": "keeper", "relationshipValue": 20},
            "points": 20,
        },
    ],
}


def lantern_story() -> Story:
    return Story.from_dict(copy.deepcopy(LANTERN))


def build_repository() -> StoryRepository:
    """A validated repository holding the built-in story."""
    return StoryRepository([lantern_story()])
