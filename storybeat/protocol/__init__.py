"""Wire protocol for generation events."""
