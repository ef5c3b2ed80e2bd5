"""Crawl orchestration for fanfiction.net category listings."""
import asyncio
import enum
import logging
import os
import uuid
from typing import List, Optional

from schemas import Chapter, Story
from ffcrawler.parser import FFParser
from ffcrawler.request_queue import RequestQueue
from ffcrawler.storage import ContentStore, chapter_file, story_file

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.fanfiction.net"


class UpdateState(str, enum.Enum):
    """States of the incremental update scan."""
    SCANNING = "scanning"
    LOOKING_AHEAD = "looking_ahead"
    DONE = "done"


class FFNetScraper:
    """
    Crawl a fanfiction.net category into a file tree.

    Stories are written to ``<out_dir>/<key>/story.<id>/story.json`` and their
    chapters beside them. All requests go through a single RequestQueue, so
    the many concurrent fetches issued here are still made one at a time.
    """

    def __init__(
        self,
        queue: RequestQueue,
        *,
        key: Optional[str] = None,
        category: str = "anime/RWBY",
        out_dir: str = "./output",
        base_url: str = DEFAULT_BASE_URL,
        parser: Optional[FFParser] = None,
    ):
        """
        Initialize scraper for a run.

        Args:
            queue: Request queue every fetch goes through
            key: Key of an existing run to continue; a new one is generated if None
            category: Category path, e.g. ``anime/RWBY``
            out_dir: Directory holding all runs
            base_url: Site root
            parser: Markup parser
        """
        self.queue = queue
        self.key = key or uuid.uuid4().hex
        self.category = category.strip('/')
        self.base_url = base_url.rstrip('/')
        self.parser = parser or FFParser()
        self.store = ContentStore(os.path.join(out_dir, self.key))

    def get_page_url(self, page: int) -> str:
        # srt=1 sorts by update date, r=10 includes every rating
        return f"{self.base_url}/{self.category}/?srt=1&r=10&p={page}"

    def get_chapter_url(self, story_id: int, chapter: int) -> str:
        return f"{self.base_url}/s/{story_id}/{chapter}"

    async def get_last_page_number(self) -> int:
        """Get the page number of the last page of results."""
        html = await self.queue.request(self.get_page_url(1))
        last_page = self.parser.parse_last_page(html)
        logger.info(f"Resolved last page. (lastPage={last_page})")
        return last_page

    async def fetch_page(self, page: int) -> List[Story]:
        """Fetch and parse one listing page without storing anything."""
        logger.debug(f"Getting page. ({page})")
        html = await self.queue.request(self.get_page_url(page))
        stories = self.parser.parse_page(html)
        for story in stories:
            if story.errors:
                logger.warning(f"Story parsed with errors. ({story.id} errors={len(story.errors)})")
        logger.debug(
            f"Parsed stories. (page={page} stories={len(stories)} "
            f"chapters={sum(story.last_chapter for story in stories)})"
        )
        return stories

    async def get_chapter(self, story_id: int, chapter: int, skip_if_exists: bool = False) -> Optional[Chapter]:
        """
        Get a story chapter and store it.

        An existing chapter whose content changed is rotated to a versioned
        file before the new content takes the canonical path.

        Args:
            story_id: The story id
            chapter: The (1-indexed) chapter number
            skip_if_exists: Do nothing if the chapter is already stored

        Returns:
            The parsed chapter, or None if it was skipped
        """
        path = chapter_file(story_id, chapter)
        if skip_if_exists and self.store.exists(path):
            logger.debug(f"Skipping existing chapter. ({story_id}/{chapter})")
            return None

        logger.debug(f"Getting chapter. ({story_id}/{chapter})")
        html = await self.queue.request(self.get_chapter_url(story_id, chapter), priority=True)
        parsed = self.parser.parse_chapter(html, story_id, chapter)

        if self.store.exists(path):
            stored = Chapter.model_validate(await self.store.read(path))
            if not stored.same_content(parsed):
                versioned = await self.store.rotate(path)
                logger.info(f"Chapter changed, kept previous version. ({story_id}/{chapter} file={versioned})")

        await self.store.write(path, parsed)
        logger.debug(f"Got chapter. ({story_id}/{chapter} words={parsed.words})")
        return parsed

    async def get_chapters(self, story: Story, skip_if_exists: bool = True) -> List[Optional[Chapter]]:
        """Get every chapter of a story, 1 through ``last_chapter``."""
        logger.debug(f"Getting chapters. ({story.id} lastChapter={story.last_chapter})")
        chapters = await asyncio.gather(*(
            self.get_chapter(story.id, chapter, skip_if_exists=skip_if_exists)
            for chapter in range(1, story.last_chapter + 1)
        ))
        logger.debug(f"Got chapters. ({story.id} lastChapter={story.last_chapter})")
        return list(chapters)

    async def get_page(self, page: int) -> List[Story]:
        """
        Get a listing page, store its stories and fetch their chapters.

        Returns:
            The stories on the page
        """
        stories = await self.fetch_page(page)
        await asyncio.gather(*(self.store.write(story_file(story.id), story) for story in stories))
        await asyncio.gather(*(self.get_chapters(story, skip_if_exists=True) for story in stories))
        logger.info(f"Got page. ({page} stories={len(stories)})")
        return stories

    async def get_pages(self, first_page: int = 1, last_page: Optional[int] = None) -> List[Story]:
        """
        Get a range of listing pages.

        Pages are requested last page first; the result keeps page order.

        Args:
            first_page: The first (1-indexed) page to get
            last_page: The last page to get, resolved from page 1 if None

        Returns:
            Stories from every page in the range

        Raises:
            ValueError: if first_page is greater than last_page
        """
        if last_page is not None and first_page > last_page:
            raise ValueError(f"firstPage={first_page} must not be greater than lastPage={last_page}")
        if last_page is None:
            last_page = await self.get_last_page_number()
            if first_page > last_page:
                raise ValueError(f"firstPage={first_page} must not be greater than lastPage={last_page}")

        logger.info(f"Getting pages. [{first_page}, {last_page}] (key={self.key})")
        pending = {
            page: asyncio.ensure_future(self.get_page(page))
            for page in range(last_page, first_page - 1, -1)
        }
        try:
            results = await asyncio.gather(*(pending[page] for page in range(first_page, last_page + 1)))
        except BaseException:
            for task in pending.values():
                task.cancel()
            raise
        stories = [story for page_stories in results for story in page_stories]
        logger.info(f"Got pages. [{first_page}, {last_page}] (stories={len(stories)})")
        return stories

    async def load_stories(self) -> List[Story]:
        """Read every stored story of this run, in path order."""
        paths = self.store.find_files(r'story\.json')
        return [Story.model_validate(await self.store.read(path)) for path in paths]

    async def get_chapters_from_existing(self) -> int:
        """
        Fetch chapters missing from the stored stories of this run.

        Returns:
            Number of stories visited
        """
        stories = await self.load_stories()
        logger.info(
            f"Getting chapters for existing stories. (stories={len(stories)} "
            f"chapters={sum(story.last_chapter for story in stories)})"
        )
        await asyncio.gather(*(self.get_chapters(story, skip_if_exists=True) for story in stories))
        logger.info(f"Got chapters for existing stories. (stories={len(stories)})")
        return len(stories)

    async def update_story(self, story: Story) -> bool:
        """
        Bring one stored story up to date with its listing entry.

        Returns:
            True if the story is new or changed
        """
        path = story_file(story.id)
        if not self.store.exists(path):
            logger.info(f"New story. ({story.id} lastChapter={story.last_chapter})")
            await self.get_chapters(story, skip_if_exists=True)
            await self.store.write(path, story)
            return True

        stored = Story.model_validate(await self.store.read(path))
        if stored.is_same_revision(story):
            await self.store.write(path, story)
            return False

        force = stored.last_chapter != story.last_chapter
        logger.info(
            f"Updated story. ({story.id} lastChapter={stored.last_chapter}->{story.last_chapter} "
            f"words={stored.words}->{story.words} force={force})"
        )
        await self.get_chapters(story, skip_if_exists=not force)
        # Only record the new revision once every chapter of it is stored
        await self.store.write(path, story)
        return True

    async def update_page(self, page: int) -> bool:
        """
        Update every story on a listing page.

        Returns:
            True if any story on the page is new or changed
        """
        stories = await self.fetch_page(page)
        changes = await asyncio.gather(*(self.update_story(story) for story in stories))
        changed = any(changes)
        logger.info(f"Updated page. ({page} stories={len(stories)} changed={sum(changes)})")
        return changed

    async def update_existing(self, last_page: Optional[int] = None) -> int:
        """
        Scan listing pages, most recently updated first, until caught up.

        A page without changes could mean the scan reached stories that are
        already up to date, but updates made while scanning can push changed
        stories past the boundary. So one more page is checked before
        stopping; a change on it resumes the scan.

        Args:
            last_page: Last page to scan, resolved from page 1 if None

        Returns:
            Number of pages scanned
        """
        if last_page is None:
            last_page = await self.get_last_page_number()

        state = UpdateState.SCANNING
        page = 0
        while state != UpdateState.DONE:
            page += 1
            changed = await self.update_page(page)

            if changed:
                if state == UpdateState.LOOKING_AHEAD:
                    logger.info(f"Lookahead page changed, resuming scan. ({page})")
                state = UpdateState.SCANNING
            elif state == UpdateState.SCANNING:
                state = UpdateState.LOOKING_AHEAD
            else:
                state = UpdateState.DONE

            if page >= last_page:
                state = UpdateState.DONE

        logger.info(f"Update finished. (pages={page} lastPage={last_page} key={self.key})")
        return page
