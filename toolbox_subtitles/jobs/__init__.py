"""Subtitle processing job aggregate, persistence and state machine."""
