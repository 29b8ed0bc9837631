"""
Fabula - Interactive Fiction Rule Engine

A rules-driven engine for branching narrative games.
The engine loads story content and provides:
- Condition evaluation over game state
- Ordered effect application with events
- Scene and choice processing
- A game lifecycle with autosave and playtime tracking
"""

__version__ = "0.1.0"
