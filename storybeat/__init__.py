"""Storybeat: streamed AI continuation of story beats inside a prose document."""
