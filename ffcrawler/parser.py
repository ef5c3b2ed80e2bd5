"""HTML parsers for fanfiction.net listing and chapter pages."""
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Comment, Tag

from normalizer import CharacterNormalizer, ContentCleaner, GenreNormalizer, parse_count
from schemas import Align, Author, Chapter, FieldError, Fragment, Line, NonTextLine, Rating, Story
from ffcrawler.errors import ParseError

logger = logging.getLogger(__name__)

STORY_HREF = re.compile(r'^/s/(\d+)/')
AUTHOR_HREF = re.compile(r'/u/(\d+)')
PAGE_PARAM = re.compile(r'[?&]p=(\d+)')
STAT_PATTERN = re.compile(r'^(\w+?): (.+?)$')
CHAPTER_PREFIX = re.compile(r'^\d+\. ')
TEXT_DECORATION = re.compile(r'text-decoration\s*:\s*([\w-]+)', re.IGNORECASE)
TEXT_ALIGN = re.compile(r'text-align\s*:\s*(\w+)', re.IGNORECASE)

# Stats keys holding plain counts, mapped to Story fields
COUNT_FIELDS = {
    'Chapters': 'last_chapter',
    'Words': 'words',
    'Reviews': 'reviews',
    'Favs': 'faves',
    'Follows': 'follows',
}

# Errors a field extractor may raise on malformed markup
EXTRACTION_ERRORS = (AttributeError, IndexError, KeyError, TypeError, ValueError)


class StoryBuilder:
    """
    Collect story fields one at a time.

    Each field is extracted independently. A failing extractor records a
    FieldError instead of aborting the row.
    """

    def __init__(self, cached: float):
        self.fields: Dict[str, Any] = {'cached': cached}
        self.errors: List[FieldError] = []

    def set(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def field(self, name: str, extract: Callable[[], Any]) -> None:
        try:
            self.fields[name] = extract()
        except EXTRACTION_ERRORS as e:
            self.errors.append(FieldError(field=name, message=str(e) or type(e).__name__))

    def build(self) -> Optional[Story]:
        """Build the story, or None when not even the id could be read."""
        if self.fields.get('id') is None:
            return None
        return Story(**self.fields, errors=self.errors)


class FFParser:
    """Parse fanfiction.net markup into stories and chapters."""

    def __init__(self):
        self.cleaner = ContentCleaner()

    def parse_page(self, html: str) -> List[Story]:
        """
        Parse every story row on a listing page.

        Rows whose story id cannot be read are logged and skipped; any
        other malformed field is recorded in the story's ``errors``.
        """
        now = time.time()
        soup = BeautifulSoup(html, 'lxml')
        stories = []
        for row in soup.select('div.z-list.zhover.zpointer'):
            builder = self.parse_story(now, row)
            story = builder.build()
            if story is None:
                logger.warning(f"Skipping story row without an id. (errors={builder.errors})")
                continue
            stories.append(story)
        return stories

    def parse_story(self, now: float, row: Tag) -> StoryBuilder:
        """Extract a single listing row."""
        story = StoryBuilder(now)

        title = row.select_one('a.stitle')
        story.field('id', lambda: int(STORY_HREF.match(title['href']).group(1)))
        story.field('title', lambda: title.get_text().strip())

        author = row.select_one('a[href^="/u/"]')
        story.field('author', lambda: Author(
            id=int(AUTHOR_HREF.search(author['href']).group(1)),
            username=author.get_text().strip(),
        ))

        summary = row.select_one('div.z-indent.z-padtop')
        story.field('summary', lambda: self.cleaner.normalize_whitespace(
            ''.join(summary.find_all(string=True, recursive=False))
        ).strip())

        stats = summary.select_one('div.z-padtop2.xgray') if summary is not None else None
        if stats is None:
            story.errors.append(FieldError(field='stats', message='stats line not found'))
            return story

        dates = stats.select('span[data-xutime]')
        story.field('updated', lambda: int(dates[0]['data-xutime']))
        story.field('published', lambda: int(dates[1 if len(dates) > 1 else 0]['data-xutime']))

        self.parse_stats(story, stats.get_text())
        return story

    def parse_stats(self, story: StoryBuilder, text: str) -> None:
        """
        Parse the ``" - "`` separated stats line.

        Keyed segments (``Words: 1,234``) map to fields. Of the bare
        segments, the second is the language, the third the genres, and one
        following ``Published`` is the character list.
        """
        published_seen = False
        for index, segment in enumerate(s.strip() for s in text.strip().split(' - ')):
            match = STAT_PATTERN.match(segment)
            if match is not None:
                key, value = match.groups()
                if key == 'Rated':
                    story.field('rating', lambda: Rating(value.split()[-1]))
                elif key in COUNT_FIELDS:
                    story.field(COUNT_FIELDS[key], lambda: parse_count(value))
                elif key == 'Published':
                    published_seen = True
            elif segment == 'Complete':
                story.set('complete', True)
            elif published_seen:
                characters, relationships = CharacterNormalizer.parse_characters(segment)
                story.set('characters', characters)
                story.set('relationships', relationships)
            elif index == 1:
                story.set('language', segment)
            elif index == 2:
                story.set('genres', GenreNormalizer.split_genres(segment))

    def parse_last_page(self, html: str) -> int:
        """Highest page number linked from the pagination bar, 1 if none."""
        soup = BeautifulSoup(html, 'lxml')
        pages = [1]
        for link in soup.select('center a[href]'):
            match = PAGE_PARAM.search(link['href'])
            if match:
                pages.append(int(match.group(1)))
        return max(pages)

    def parse_chapter(self, html: str, story_id: int, number: int) -> Chapter:
        """
        Parse a chapter page.

        Raises:
            ParseError: if the page has no story text
        """
        soup = BeautifulSoup(html, 'lxml')
        storytext = soup.select_one('#storytext') or soup.select_one('.storytext')
        if storytext is None:
            raise ParseError('chapter', f"story text not found for {story_id}/{number}")

        title = None
        selected = soup.select_one('#chap_select > option[selected]')
        if selected is not None:
            title = CHAPTER_PREFIX.sub('', selected.get_text().strip())

        content = [self.parse_line(line) for line in storytext.find_all(recursive=False)]
        words = sum(
            self.cleaner.count_words(fragment.value for fragment in line)
            for line in content
            if isinstance(line, list)
        )
        return Chapter(
            story_id=story_id,
            number=number,
            title=title,
            content=content,
            words=words,
            cached=time.time(),
        )

    def parse_line(self, line: Tag) -> Line:
        name = line.name.lower()
        if name == 'p':
            return self.parse_paragraph(line)
        if name == 'hr':
            return NonTextLine.HORIZONTAL_LINE
        # TODO: ordered and unordered lists are still reported as UNKNOWN
        return NonTextLine.UNKNOWN

    def parse_paragraph(self, root: Tag) -> List[Fragment]:
        """Split a paragraph into fragments by the formatting of each text node."""
        align = Align.LEFT
        match = TEXT_ALIGN.search(root.get('style', ''))
        if match and match.group(1).upper() in Align.__members__:
            align = Align[match.group(1).upper()]

        fragments = []
        for node in root.find_all(string=True):
            if isinstance(node, Comment) or not str(node):
                continue
            flags = {'b': False, 'i': False, 's': False, 'u': False}
            for parent in node.parents:
                if parent is root:
                    break
                tag = parent.name.lower()
                if tag in ('strong', 'b'):
                    flags['b'] = True
                elif tag in ('em', 'i'):
                    flags['i'] = True
                elif tag == 'u':
                    flags['u'] = True
                elif tag in ('s', 'strike', 'del'):
                    flags['s'] = True
                elif tag == 'span':
                    decoration = TEXT_DECORATION.search(parent.get('style', ''))
                    if decoration and decoration.group(1).lower() == 'line-through':
                        flags['s'] = True
                    elif decoration and decoration.group(1).lower() == 'underline':
                        flags['u'] = True
            fragments.append(Fragment(value=str(node), a=align, **flags))
        return fragments
