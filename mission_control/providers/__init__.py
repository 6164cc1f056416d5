"""Agent launch resolution, output classification and PTY runtimes."""
