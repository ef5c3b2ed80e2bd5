"""Export a stored run into aggregate JSON files."""
import json
import logging
import os
from typing import Any, Iterable, List

from normalizer import format_size
from ffcrawler.storage import ContentStore

logger = logging.getLogger(__name__)

CHAPTER_PATTERN = r'chapter\.\d+\.json'


def format_output(records: Iterable[Any]) -> str:
    """Render records as a JSON array with one record per line."""
    return "[" + ",\n".join(json.dumps(record, ensure_ascii=False) for record in records) + "]\n"


async def get_stories(store: ContentStore) -> List[Any]:
    logger.debug("Getting stories.")
    stories = [await store.read(path) for path in store.find_files(r'story\.json')]
    logger.debug(f"Got stories. (length={len(stories)})")
    return stories


async def get_chapters(store: ContentStore, story_id: int) -> List[Any]:
    """Canonical chapters of a story in ordinal order; versions are left out."""
    logger.debug(f"Getting chapters. (id={story_id})")
    paths = store.find_files(CHAPTER_PATTERN, subdir=f"story.{story_id}")
    chapters = [await store.read(path) for path in paths]
    logger.debug(f"Got chapters. (id={story_id} length={len(chapters)})")
    return chapters


async def export_output(key: str, src: str, dest: str) -> str:
    """
    Export run ``key`` from ``src`` into ``dest``.

    Writes ``<dest>/<key>/stories.json`` holding every story and
    ``<dest>/<key>/chapters/<id>.json`` holding each story's chapters.

    Returns:
        The export directory
    """
    source = ContentStore(os.path.join(src, key))
    target = ContentStore(os.path.join(dest, key))
    if not os.path.isdir(source.root):
        raise FileNotFoundError(f"No stored run for key {key} in {src}")

    stories = await get_stories(source)
    output = format_output(stories)
    await target.write_text("stories.json", output)
    logger.info(f"Exported stories. (stories={len(stories)} size={format_size(len(output))})")

    for index, story in enumerate(stories, start=1):
        story_id = story["id"]
        logger.debug(f"Exporting chapters for story {story_id} {index}/{len(stories)}.")
        chapters = await get_chapters(source, story_id)
        await target.write_text(os.path.join("chapters", f"{story_id}.json"), format_output(chapters))

    logger.info(f"Export finished. (key={key} dir={target.root})")
    return target.root
