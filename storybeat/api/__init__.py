"""HTTP API for storybeat."""
