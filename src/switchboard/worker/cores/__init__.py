"""Bundled agent cores."""
