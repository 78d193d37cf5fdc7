"""Prompt building blocks: relevance, codex formatting, story context and templates."""
