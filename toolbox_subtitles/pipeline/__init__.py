"""Subtitle generation and translation pipeline."""
