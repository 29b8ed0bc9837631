"""
Tests for the scene and choice processors.

Tests:
- Templating and unresolved placeholders
- Scene gating and choice visibility
- Choice validation order, requirements and timed choices
- Consequence previews
"""

import pytest

from ..engine_core.choice_processor import ChoiceProcessor
from ..engine_core.errors import SceneInaccessibleError
from ..engine_core.scene_processor import SceneProcessor, render_choice_text, render_template
from ..engine_core.state import InventoryItem
from ..stories.lantern import lantern_story
from ..story_schema.story import Choice


@pytest.fixture
def story():
    return lantern_story()


@pytest.fixture
def scenes():
    return SceneProcessor()


@pytest.fixture
def choices(clock):
    return ChoiceProcessor(now=clock)


def scene_choices(story, scene_id):
    return [story.choices[cid] for cid in story.scenes[scene_id].choice_ids]


class TestTemplating:
    """Tests for placeholder substitution."""

    def test_player_flag_and_inventory_placeholders(self, state):
        state.flags["lamp_lit"] = True
        state.inventory.append(InventoryItem(id="lantern_oil", name="Lantern Oil", quantity=2))

        text = "{player.name} L{player.level} {player.maxHealth} {player.luck} {flag.lamp_lit} {inventory.count.lantern_oil}"
        assert render_template(text, state) == "Ada L1 100 10 true 2"

    def test_inventory_count_by_name(self, state):
        state.inventory.append(InventoryItem(id="lantern_oil", name="Lantern Oil", quantity=3))
        assert render_template("{inventory.count.Lantern Oil}", state) == "3"

    def test_unresolved_placeholders_are_left_alone(self, state):
        text = "{flag.unknown} {player.wisdom} {weather.today}"
        assert render_template(text, state) == text

    def test_substitution_is_not_recursive(self, state):
        state.player.name = "{flag.secret}"
        state.flags["secret"] = "leaked"
        assert render_template("Hi {player.name}", state) == "Hi {flag.secret}"

    def test_requirement_hint(self, state):
        assert render_choice_text("Open {require:Brass Key}", state) == "Open [Requires: Brass Key]"


class TestSceneProcessor:
    def test_inaccessible_scene_raises(self, scenes, story, state):
        with pytest.raises(SceneInaccessibleError):
            scenes.process(story.scenes["vault"], state)

    def test_render_skips_the_gate(self, scenes, story, state):
        processed = scenes.render(story.scenes["vault"], state)
        assert processed.id == "vault"

    def test_visible_choices_keep_authored_order(self, scenes, story, state):
        processed = scenes.process(story.scenes["courtyard"], state, scene_choices(story, "courtyard"))
        # Conditional choices stay visible; their metadata is checked on selection
        assert [c.id for c in processed.choices] == [
            "greet_keeper", "ask_about_light", "search_shed", "open_vault", "climb_stairs",
        ]

        state.flags["met_keeper"] = True
        state.progress.scenes_visited.append("shed")
        processed = scenes.process(story.scenes["courtyard"], state, scene_choices(story, "courtyard"))
        assert [c.id for c in processed.choices] == ["ask_about_light", "open_vault", "climb_stairs"]

    def test_processed_scene_shape(self, scenes, story, state):
        processed = scenes.process(story.scenes["gate"], state, scene_choices(story, "gate"))
        data = processed.to_dict()

        assert data["id"] == "gate"
        assert data["backgroundMusic"] == "harbor-wind"
        assert data["choices"][0] == {
            "id": "enter_courtyard",
            "text": "Push the gate open",
            "type": "plain",
            "targetSceneId": "courtyard",
            "requirements": [],
        }
        assert data["metadata"]["availableChoices"] == 1

    def test_choice_text_is_rendered(self, scenes, story, state):
        processed = scenes.process(story.scenes["courtyard"], state, scene_choices(story, "courtyard"))
        vault = [c for c in processed.choices if c.id == "open_vault"][0]
        assert vault.text == "Unlock the vault [Requires: Brass Key]"


class TestChoiceValidation:
    """Tests for ChoiceProcessor.process."""

    def test_plain_choice(self, choices, story, state):
        result = choices.process(story.choices["enter_courtyard"], state)

        assert result.success
        assert result.target_scene_id == "courtyard"
        assert result.effects.experience == 50

    def test_conditions_checked_first(self, choices, story, state):
        state.flags["met_keeper"] = True
        result = choices.process(story.choices["greet_keeper"], state)
        assert not result.success
        assert result.error == "Conditions not met"

    def test_unavailable_choice(self, choices, state):
        choice = Choice.from_dict({"id": "sealed", "text": "Sealed door", "isAvailable": False})
        result = choices.process(choice, state)
        assert result.error == "Choice is not available"

    def test_requirements_report_unmet_messages(self, choices, story, state):
        result = choices.process(story.choices["open_vault"], state)

        assert not result.success
        assert result.unmet_requirements == ["The vault is locked"]
        assert "The vault is locked" in result.error

        state.inventory.append(InventoryItem(id="brass_key", name="Brass Key", type="key"))
        assert choices.process(story.choices["open_vault"], state).success

    def test_level_requirement_with_operator(self, choices, state):
        choice = Choice.from_dict({
            "id": "novice_only",
            "text": "Novices only",
            "requirements": [{"type": "level", "operator": "lt", "value": 2}],
        })
        assert choices.process(choice, state).success
        state.player.level = 2
        result = choices.process(choice, state)
        assert not result.success
        assert len(result.unmet_requirements) == 1

    def test_conditional_choice_rechecks_metadata(self, choices, story, state):
        result = choices.process(story.choices["ask_about_light"], state)
        assert result.error == "Conditional requirements not met"

        state.flags["met_keeper"] = True
        assert choices.process(story.choices["ask_about_light"], state).success

    def test_timed_choice_within_limit(self, choices, story, state, clock):
        presented = clock()
        clock.advance(19)
        assert choices.process(story.choices["dash_up"], state, started_at=presented).success

    def test_timed_choice_expires(self, choices, story, state, clock):
        presented = clock()
        clock.advance(20)
        result = choices.process(story.choices["dash_up"], state, started_at=presented)
        assert not result.success
        assert result.error == "Time limit of 20s exceeded"

    def test_timed_choice_without_start_fails_closed(self, choices, story, state):
        result = choices.process(story.choices["dash_up"], state)
        assert result.error == "Timed choice has no start time"

    def test_metadata_start_time_wins(self, choices, state, clock):
        choice = Choice.from_dict({
            "id": "quick",
            "text": "Quick!",
            "type": "timed",
            "metadata": {"startTime": clock() - 100},
        })
        assert not choices.process(choice, state, started_at=clock()).success

    def test_validation_does_not_mutate_state(self, choices, story, state):
        before = state.to_dict()
        choices.process(story.choices["light_lamp"], state)
        choices.process(story.choices["open_vault"], state)
        assert state.to_dict() == before


class TestConsequences:
    def test_preview(self, choices, story, state):
        state.inventory.append(InventoryItem(id="lantern_oil", name="Lantern Oil", quantity=1))
        result = choices.process(story.choices["light_lamp"], state)

        assert [c.type for c in result.consequences] == ["experience", "flag", "item"]
        item = result.consequences[-1]
        assert item.change == -1
        assert item.key == "lantern_oil"

    def test_relationship_preview(self, choices, story, state):
        result = choices.process(story.choices["greet_keeper"], state)
        relationship = [c for c in result.consequences if c.type == "relationship"][0]
        assert relationship.description == "Relationship improved"
        assert relationship.to_dict() == {
            "type": "relationship",
            "description": "Relationship improved",
            "change": 25,
            "key": "keeper",
        }

    def test_result_to_dict(self, choices, story, state):
        data = choices.process(story.choices["enter_courtyard"], state).to_dict()
        assert data["choiceId"] == "enter_courtyard"
        assert data["targetSceneId"] == "courtyard"
        assert data["effects"] == {"experience": 50}
        assert data["error"] is None
