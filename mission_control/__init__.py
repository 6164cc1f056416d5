"""mission-control: orchestrate interactive CLI agent sessions per project."""

__version__ = "0.1.0"
