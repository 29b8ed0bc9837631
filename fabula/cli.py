"""
Fabula CLI - Command-line interface for the engine.

Usage:
    fabula play [story_file]        Play a story interactively
    fabula validate <story_file>    Validate a story document
    fabula demo                     Auto-play the built-in story
    fabula serve                    Run the REST API

Without a story file, `play` uses the built-in story.
"""

import argparse
import asyncio
import logging
import sys

# Choices the demo makes in order, falling back to the first visible one
DEMO_ROUTE = [
    "enter_courtyard",
    "greet_keeper",
    "search_shed",
    "back_to_courtyard",
    "open_vault",
    "touch_mirror",
    "light_lamp",
]


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Fabula - Interactive Fiction Rule Engine",
        prog="fabula",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Play command
    play_parser = subparsers.add_parser("play", help="Play a story interactively")
    play_parser.add_argument("story_file", nargs="?", help="Path to a story JSON file")
    play_parser.add_argument("--story", help="Story id when the file holds several")
    play_parser.add_argument("--name", default="Player", help="Player name")
    play_parser.add_argument("--save-dir", help="Directory for save files")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a story document")
    validate_parser.add_argument("story_file", help="Path to a story JSON file")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Auto-play the built-in story")
    demo_parser.add_argument("--name", default="Ada", help="Player name")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the REST API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "play":
        asyncio.run(cmd_play(args))
    elif args.command == "validate":
        cmd_validate(args)
    elif args.command == "demo":
        asyncio.run(cmd_demo(args))
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()
        sys.exit(1)


def cmd_validate(args):
    """Validate a story document."""
    from .content.repository import StoryRepository
    from .engine_core.errors import ValidationError
    from .story_schema.validation import validate_story

    print(f"Validating: {args.story_file}")
    try:
        repository = StoryRepository.from_json_file(args.story_file, validate=False)
    except FileNotFoundError:
        print(f"Error: File not found: {args.story_file}")
        sys.exit(1)
    except ValidationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    failed = False
    for story in repository.list_stories():
        result = validate_story(story)
        status = "valid" if result.valid else "INVALID"
        print(f"\n{story.id} ({story.title}): {status}")
        print(f"  Scenes: {len(story.scenes)}  Choices: {len(story.choices)}  Achievements: {len(story.achievements)}")

        if result.warnings:
            print("  Warnings:")
            for w in result.warnings:
                print(f"    - {w}")
        if result.errors:
            print("  Errors:")
            for e in result.errors:
                print(f"    - {e}")
        failed = failed or not result.valid

    if failed:
        sys.exit(1)


async def cmd_play(args):
    """Play a story interactively."""
    from .content.repository import StoryRepository
    from .engine_core.errors import FabulaError
    from .persistence.store import FileSaveStore
    from .session.engine import EngineConfig, EngineState, GameEngine
    from .stories.lantern import STORY_ID, build_repository

    try:
        if args.story_file:
            repository = StoryRepository.from_json_file(args.story_file)
        else:
            repository = build_repository()
    except (FileNotFoundError, FabulaError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    story_id = args.story or (repository.list_stories()[0].id if args.story_file else STORY_ID)
    engine = GameEngine(
        repository,
        store=FileSaveStore(args.save_dir),
        config=EngineConfig.from_env(),
    )
    await engine.initialize()

    try:
        scene = await engine.start_new_game(story_id, player_name=args.name)
        print_scene(scene)

        while engine.status != EngineState.ENDED:
            command = (await asyncio.to_thread(input, "\n> ")).strip()
            if not command:
                continue
            if command in ("q", "quit"):
                await engine.autosave()
                break
            try:
                scene = await handle_command(engine, command, scene)
            except FabulaError as e:
                print(f"  {e}")
    finally:
        await engine.shutdown()


async def handle_command(engine, command: str, scene):
    """
    Run one interactive command. Returns the scene to display next.

    Commands:
        <number>              make the numbered choice
        i                     show inventory
        u <item_id>           use an item
        t <character> [kind]  interact (talk, trade, quest, gift)
        s <name>              save
        l                     list saves
    """
    verb, _, rest = command.partition(" ")

    if verb.isdigit():
        index = int(verb) - 1
        if not 0 <= index < len(scene.choices):
            print("  No such choice.")
            return scene
        outcome = await engine.make_choice(scene.choices[index].id)
        for effect in outcome.effects:
            if effect.description:
                print(f"  * {effect.description}")
        if outcome.ended:
            print_ending(engine)
            return scene
        print_scene(outcome.scene)
        return outcome.scene

    if verb == "i":
        state = engine.state
        player = state.player
        print(f"  {player.name} - level {player.level}, health {player.health}/{player.max_health}, gold {player.gold}")
        for item in state.inventory:
            print(f"  - {item.id}: {item.name} x{item.quantity}")
    elif verb == "u":
        result = await engine.use_item(rest.strip())
        print(f"  {result.message}")
    elif verb == "t":
        character_id, _, kind = rest.strip().partition(" ")
        result = await engine.interact(character_id, kind.strip() or "talk")
        print(f"  {result.message}")
        for option in result.options:
            print(f"    ~ {option}")
    elif verb == "s":
        slot = await engine.manual_save(rest.strip() or "Quick save")
        print(f"  Saved to {slot.id}")
    elif verb == "l":
        for slot in await engine.list_save_slots():
            print(f"  {slot.id}: {slot.name} ({slot.scene_id}, {slot.story_progress}%)")
    else:
        print(handle_command.__doc__)
    return scene


async def cmd_demo(args):
    """Auto-play the built-in story."""
    from .session.engine import EngineConfig, EngineState, GameEngine
    from .stories.lantern import STORY_ID, build_repository

    engine = GameEngine(build_repository(), config=EngineConfig(autosave=False))
    await engine.initialize()
    engine.bus.subscribe("achievementUnlocked", lambda e: print(f"  ** Achievement: {e.payload['name']}"))
    engine.bus.subscribe("levelUp", lambda e: print(f"  ** Level {e.payload['new_level']}!"))

    try:
        scene = await engine.start_new_game(STORY_ID, player_name=args.name)
        print_scene(scene)
        route = list(DEMO_ROUTE)

        while engine.status != EngineState.ENDED:
            visible = [c.id for c in scene.choices]
            choice_id = route.pop(0) if route and route[0] in visible else visible[0]
            print(f"\n> {choice_id}")
            outcome = await engine.make_choice(choice_id)
            if outcome.ended:
                print_ending(engine)
                break
            scene = outcome.scene
            print_scene(scene)
    finally:
        await engine.shutdown()


def cmd_serve(args):
    """Run the REST API with uvicorn."""
    import uvicorn

    uvicorn.run("fabula.api.app:app", host=args.host, port=args.port)


def print_scene(scene):
    print(f"\n== {scene.scene.title} ==")
    print(scene.content)
    for i, choice in enumerate(scene.choices, 1):
        print(f"  {i}. {choice.text}")


def print_ending(engine):
    progress = engine.state.progress
    print("\n== The End ==")
    print(f"Scenes visited: {len(set(progress.scenes_visited))}  Story progress: {progress.story_progress}%")
    if progress.achievements_unlocked:
        print(f"Achievements: {', '.join(progress.achievements_unlocked)}")


if __name__ == "__main__":
    main()
