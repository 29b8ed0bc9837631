"""
Tests for story parsing, validation and the story repository.
"""

import asyncio
import copy
import json

import pytest

from ..content.repository import StoryRepository
from ..engine_core.errors import SceneNotFoundError, UnknownConditionError, ValidationError
from ..stories.lantern import LANTERN, lantern_story
from ..story_schema.story import ChoiceType, Requirement, Story
from ..story_schema.validation import StoryValidationError, ensure_valid, validate_story


@pytest.fixture
def document():
    return copy.deepcopy(LANTERN)


def find(records, record_id):
    return next(r for r in records if r["id"] == record_id)


class TestStoryParsing:
    """Tests for Story.from_dict."""

    def test_built_in_story(self):
        story = lantern_story()

        assert story.starting_scene_id == "gate"
        assert list(story.scenes) == ["gate", "courtyard", "shed", "vault", "stairwell", "lamp_room"]
        assert story.choices["dash_up"].type == ChoiceType.TIMED
        assert story.choices["dash_up"].time_limit == 20
        assert story.choices["light_lamp"].ends_story
        assert story.characters["keeper"].name == "Old Maren"

    def test_starting_scene_defaults_to_first(self, document):
        del document["startingSceneId"]
        assert Story.from_dict(document).starting_scene_id == "gate"

    def test_duplicate_ids_rejected(self, document):
        document["scenes"].append(copy.deepcopy(document["scenes"][0]))
        with pytest.raises(ValidationError, match="Duplicate scene"):
            Story.from_dict(document)

    def test_story_needs_scenes(self):
        with pytest.raises(ValidationError):
            Story.from_dict({"id": "empty", "scenes": []})

    def test_unknown_choice_type(self, document):
        find(document["choices"], "dash_up")["type"] = "sudden"
        with pytest.raises(ValidationError):
            Story.from_dict(document)

    def test_scene_time_effects(self, document):
        """metadata.timeEffects becomes a delayed effect; the delay is authored in ms."""
        find(document["scenes"], "lamp_room")["metadata"] = {
            "timeEffects": {"delay": 1500, "health": -5, "flags": {"cold": True}}
        }
        scene = Story.from_dict(document).scenes["lamp_room"]

        assert scene.time_effects_delay == 1.5
        assert scene.time_effects.health == -5
        assert scene.time_effects.flags == {"cold": True}
        assert scene.effects.is_empty
        assert lantern_story().scenes["lamp_room"].time_effects is None

    @pytest.mark.parametrize("time_effects", [
        {"delay": -1, "gold": 1},
        {"delay": "soon", "gold": 1},
        {"delay": 10, "warmth": 3},
        ["gold"],
    ])
    def test_bad_time_effects(self, document, time_effects):
        find(document["scenes"], "lamp_room")["metadata"] = {"timeEffects": time_effects}
        with pytest.raises(ValidationError):
            Story.from_dict(document)

    def test_round_trip(self):
        story = lantern_story()
        assert Story.from_dict(story.to_dict()) == story


class TestRequirements:
    def test_item_requirement_counts_quantity(self):
        requirement = Requirement.from_dict({"type": "item", "key": "herb", "value": 3})
        assert requirement.to_condition() == {"itemCount": 3, "itemCountId": "herb"}

    def test_item_requirement_defaults_to_one(self):
        assert Requirement("item", key="brass_key").to_condition() == {"itemCount": 1, "itemCountId": "brass_key"}

    def test_operator_is_carried(self):
        condition = Requirement("level", operator="lt", value=5).to_condition()
        assert condition == {"playerLevel": 5, "op": "lt"}

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            Requirement("karma", value=1).to_condition()

    def test_describe(self):
        assert Requirement("item", key="brass_key", error_message="Locked").describe() == "Locked"
        assert Requirement("level", value=3).describe() == "Requires level 3"
        assert Requirement("stat", key="strength", value=12).describe() == "Requires stat strength 12"


class TestValidateStory:
    """Tests for validate_story and ensure_valid."""

    def test_built_in_story_is_clean(self):
        result = validate_story(lantern_story())
        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_unknown_condition_key_raises(self, document):
        find(document["scenes"], "vault")["conditions"] = {"moonPhase": "full"}
        story = Story.from_dict(document)

        with pytest.raises(UnknownConditionError) as exc:
            ensure_valid(story)
        assert exc.value.key == "moonPhase"
        assert "vault" in exc.value.path

    def test_nested_unknown_key_in_achievement(self, document):
        document["achievements"][0]["conditions"] = {"and": [{"flag": "lamp_lit"}, {"fullMoon": True}]}
        result = validate_story(Story.from_dict(document))

        assert not result.valid
        assert result.unknown_conditions[0].unknown_key == "fullMoon"

    def test_broken_references(self, document):
        find(document["choices"], "climb_stairs")["targetSceneId"] = "attic"
        find(document["scenes"], "gate")["choiceIds"].append("fly_away")
        find(document["scenes"], "courtyard")["characterIds"].append("ghost")

        with pytest.raises(StoryValidationError) as exc:
            ensure_valid(Story.from_dict(document))

        errors = exc.value.errors
        assert "choice 'climb_stairs' targets unknown scene 'attic'" in errors
        assert "scene 'gate' references unknown choice 'fly_away'" in errors
        assert "scene 'courtyard' references unknown character 'ghost'" in errors

    def test_missing_starting_scene(self, document):
        document["startingSceneId"] = "lobby"
        result = validate_story(Story.from_dict(document))
        assert "Starting scene 'lobby' does not exist" in result.errors

    def test_custom_effect_checks(self, document):
        find(document["choices"], "touch_mirror")["effects"]["custom"] = [
            {"type": "teleport", "targetScene": "attic"},
            {"type": "explode"},
        ]
        result = validate_story(Story.from_dict(document))

        assert "choice 'touch_mirror' teleports to unknown scene 'attic'" in result.errors
        assert "choice 'touch_mirror' uses unknown custom effect 'explode'" in result.errors

    def test_bad_requirement(self, document):
        find(document["choices"], "open_vault")["requirements"] = [{"type": "karma", "value": 1}]
        result = validate_story(Story.from_dict(document))
        assert any("requirements[0]" in e for e in result.errors)

    def test_warnings(self, document):
        document["choices"].append({"id": "orphan", "text": "Nobody offers this", "targetSceneId": "gate"})
        document["scenes"].append({"id": "attic", "title": "Attic", "content": "Dust."})
        result = validate_story(Story.from_dict(document))

        assert result.valid
        assert "choice 'orphan' is not offered by any scene" in result.warnings
        assert "scene 'attic' is unreachable" in result.warnings
        assert "scene 'attic' has no choices" in result.warnings

    def test_teleport_target_counts_as_reachable(self, document):
        find(document["choices"], "dash_up")["targetSceneId"] = "courtyard"
        find(document["choices"], "take_it_slow")["targetSceneId"] = "courtyard"
        result = validate_story(Story.from_dict(document))
        assert "scene 'lamp_room' is unreachable" not in result.warnings


class TestStoryRepository:
    def test_rejects_invalid_story(self, document):
        find(document["scenes"], "vault")["conditions"] = {"moonPhase": "full"}
        with pytest.raises(UnknownConditionError):
            StoryRepository.from_dict(document)

    def test_skip_validation(self, document):
        find(document["scenes"], "vault")["conditions"] = {"moonPhase": "full"}
        repository = StoryRepository.from_dict(document, validate=False)
        assert repository.get_story("lantern").id == "lantern"

    def test_multi_story_document(self, document):
        second = copy.deepcopy(document)
        second["id"] = "lantern_two"
        repository = StoryRepository.from_dict({"stories": [document, second]})
        assert [s.id for s in repository.list_stories()] == ["lantern", "lantern_two"]

    def test_from_json_file(self, document, tmp_path):
        path = tmp_path / "lantern.json"
        path.write_text(json.dumps(document))
        repository = StoryRepository.from_json_file(path)
        assert repository.validation_result("lantern").valid

        bad = tmp_path / "bad.json"
        bad.write_text("{")
        with pytest.raises(ValidationError):
            StoryRepository.from_json_file(bad)

    def test_content_queries(self):
        repository = StoryRepository([lantern_story()])

        async def scenario():
            assert (await repository.get_scene("lantern", "vault")).title == "The Vault"
            with pytest.raises(SceneNotFoundError):
                await repository.get_scene("lantern", "attic")
            choices = await repository.get_choices("lantern", ["climb_stairs", "missing", "dash_up"])
            assert [c.id for c in choices] == ["climb_stairs", "dash_up"]
            characters = await repository.get_scene_characters("lantern", "courtyard")
            assert [c.id for c in characters] == ["keeper"]
            assert await repository.get_scene_count("lantern") == 6
            assert await repository.get_starting_scene_id("lantern") == "gate"
            assert len(await repository.get_story_achievements("lantern")) == 3

        asyncio.run(scenario())

    def test_unknown_story(self):
        with pytest.raises(ValidationError):
            StoryRepository().get_story("nope")
