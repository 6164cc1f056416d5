"""Desktop helpers kept outside the orchestration core."""
