"""Projects, sessions, the registry and durable state."""
