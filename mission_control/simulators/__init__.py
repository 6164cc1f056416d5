"""Bundled stand-in agents for development and tests."""
