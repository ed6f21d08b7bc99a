"""Integration tests: the bootstrap loop end to end."""
