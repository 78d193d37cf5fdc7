"""Prose document model, beat node schema and streaming mutations."""
