"""Shared fixtures: an in-memory fanfiction.net served through httpx.MockTransport."""
import re
from typing import Dict, List

import httpx
import pytest

from ffcrawler.request_queue import RequestQueue

BASE_URL = "https://www.fanfiction.net"
CHAPTER_PATH = re.compile(r'^/s/(\d+)/(\d+)$')


def listing_row(story_id: int, chapters: int = 1, words: int = 100, updated: int = 1600000000) -> str:
    return (
        '<div class="z-list zhover zpointer">'
        f'<a class="stitle" href="/s/{story_id}/1/Story-{story_id}">Story {story_id}</a>'
        '<a href="/u/7/Writer">Writer</a>'
        f'<div class="z-indent z-padtop">Summary of {story_id}'
        '<div class="z-padtop2 xgray">Rated: Fiction T - English - Drama - '
        f'Chapters: {chapters} - Words: {words:,} - '
        f'Updated: <span data-xutime="{updated}">Sep 13</span> - '
        'Published: <span data-xutime="1500000000">Jul 14, 2017</span>'
        '</div></div></div>'
    )


def listing_page(rows: List[str], last_page: int = 1) -> str:
    links = ''.join(
        f'<a href="/anime/RWBY/?&srt=1&r=10&p={page}">{page}</a>'
        for page in range(1, last_page + 1)
    )
    return f'<html><body>{"".join(rows)}<center>{links}</center></body></html>'


def chapter_page(text: str) -> str:
    return f'<html><body><div id="storytext"><p>{text}</p></div></body></html>'


class FakeSite:
    """
    Serve listing and chapter pages from dictionaries.

    ``pages`` maps a page number to the story dicts listed on it, and
    ``chapters`` maps ``(story_id, number)`` to chapter text. Every
    requested URL is recorded in ``requests``.
    """

    def __init__(self):
        self.pages: Dict[int, List[dict]] = {}
        self.chapters: Dict[tuple, str] = {}
        self.requests: List[str] = []
        self.last_page = 1

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        path = request.url.path

        match = CHAPTER_PATH.match(path)
        if match:
            key = (int(match.group(1)), int(match.group(2)))
            text = self.chapters.get(key, f"Chapter {key[1]} of {key[0]}")
            return httpx.Response(200, text=chapter_page(text))

        if path == "/anime/RWBY/":
            page = int(request.url.params["p"])
            rows = [listing_row(**story) for story in self.pages.get(page, [])]
            return httpx.Response(200, text=listing_page(rows, self.last_page))

        return httpx.Response(404, text="Not found")

    def listing_requests(self) -> List[int]:
        pages = []
        for url in self.requests:
            match = re.search(r'[?&]p=(\d+)', url)
            if match:
                pages.append(int(match.group(1)))
        return pages

    def chapter_requests(self) -> List[str]:
        return [url for url in self.requests if '/s/' in url]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def make_queue(client: httpx.AsyncClient, **kwargs) -> RequestQueue:
    """Request queue without delays around a stubbed client."""
    kwargs.setdefault('min_delay', 0)
    kwargs.setdefault('max_delay', 0)
    return RequestQueue(client, **kwargs)


@pytest.fixture
def site():
    return FakeSite()
