"""Generation services: orchestration, state, broadcasting and repositories."""
