"""Story and codex endpoints that seed the in-memory repositories."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from storybeat.core.story_context import story_stats
from storybeat.models.requests import CodexRequest, StoryResponse
from storybeat.models.story import Story, flatten_scenes
from storybeat.services.runtime import get_runtime

router = APIRouter()
logger = logging.getLogger(__name__)


@router.put("/stories/{story_id}", response_model=StoryResponse, response_model_by_alias=True)
async def put_story(story_id: str, story: Story) -> StoryResponse:
    """Store a story; the path id wins over the body id."""
    story = story.model_copy(update={"id": story_id})
    get_runtime().stories.put(story)
    stats = story_stats(flatten_scenes(story))
    logger.info(f"Stored story {story_id}: {stats['totalChapters']} chapters, {stats['totalScenes']} scenes")
    return StoryResponse(story_id=story_id, stats=stats)


@router.get("/stories/{story_id}", response_model=Story, response_model_by_alias=True)
async def get_story(story_id: str) -> Story:
    story = await get_runtime().stories.get_story(story_id)
    if story is None:
        raise HTTPException(status_code=404, detail={
            "error": "Story not found",
            "storyId": story_id,
        })
    return story


@router.put("/stories/{story_id}/codex", response_model=StoryResponse, response_model_by_alias=True)
async def put_codex(story_id: str, body: CodexRequest) -> StoryResponse:
    """Replace the codex of a story."""
    get_runtime().knowledge.put(story_id, body.categories)
    entries = sum(len(c.entries) for c in body.categories)
    logger.info(f"Stored codex for story {story_id}: {len(body.categories)} categories, {entries} entries")
    return StoryResponse(story_id=story_id, stats={"categories": len(body.categories), "entries": entries})
