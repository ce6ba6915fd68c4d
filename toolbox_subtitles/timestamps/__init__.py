"""Word timing models and cue assembly."""
