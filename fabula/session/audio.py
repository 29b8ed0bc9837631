"""
Audio sinks - Fire-and-forget audio collaborators.

The engine never awaits audio. A real presentation layer implements
AudioSink; NullAudioSink discards everything and RecordingAudioSink keeps
a log of calls for inspection.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Protocol


class AudioSink(Protocol):
    def play_sound(self, name: str, volume: float | None = None, loop: bool = False): ...

    def play_background_music(self, name: str, volume: float | None = None): ...

    def pause_all(self): ...

    def resume_all(self): ...

    def stop_all(self): ...


class NullAudioSink:
    """Discards every cue."""

    def play_sound(self, name: str, volume: float | None = None, loop: bool = False):
        pass

    def play_background_music(self, name: str, volume: float | None = None):
        pass

    def pause_all(self):
        pass

    def resume_all(self):
        pass

    def stop_all(self):
        pass


@dataclass
class RecordingAudioSink:
    """Records cues as (call, args) tuples."""
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    current_music: str | None = None
    paused: bool = False

    def play_sound(self, name: str, volume: float | None = None, loop: bool = False):
        self.calls.append(("play_sound", {"name": name, "volume": volume, "loop": loop}))

    def play_background_music(self, name: str, volume: float | None = None):
        self.current_music = name
        self.calls.append(("play_background_music", {"name": name, "volume": volume}))

    def pause_all(self):
        self.paused = True
        self.calls.append(("pause_all", {}))

    def resume_all(self):
        self.paused = False
        self.calls.append(("resume_all", {}))

    def stop_all(self):
        self.current_music = None
        self.calls.append(("stop_all", {}))

    def names(self, call: str) -> list[str]:
        """Names passed to a given call, in order."""
        return [args["name"] for c, args in self.calls if c == call]
