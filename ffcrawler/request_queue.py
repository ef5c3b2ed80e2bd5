"""Serialized, throttled HTTP request queue with retries."""
import asyncio
import logging
import random
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

import httpx

from normalizer import format_size
from ffcrawler.errors import ConfigurationError, FetchError
from ffcrawler.storage import ContentStore

logger = logging.getLogger(__name__)


def url_file(url: str) -> str:
    """Filesystem-safe dump filename for a URL."""
    return re.sub(r'^https?://', '', url).replace('/', '-') + '.html'


@dataclass
class QueueTask:
    """A pending request and the future its caller is waiting on."""
    url: str
    priority: bool
    future: asyncio.Future
    attempt: int = field(default=1)


class RequestQueue:
    """
    Run HTTP GET requests one at a time with a randomized delay before each.

    Any number of callers may await ``request`` concurrently; a single drain
    loop services them so that at most one request is in flight. Urgent
    requests are serviced before normal ones and each class is FIFO.

    Failures are retried up to ``max_attempts`` times per request. A run-wide
    failure counter increments on every failed attempt and resets on any
    success; when it reaches ``failure_ceiling`` the remote service is
    assumed to be down and every pending and future request fails with the
    error that tripped it.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        min_delay: float = 2.5,
        max_delay: float = 5.0,
        max_attempts: int = 3,
        failure_ceiling: int = 10,
        dump_store: Optional[ContentStore] = None,
        headers: Optional[dict] = None,
        timeout: float = 60.0,
    ):
        if min_delay > max_delay:
            raise ConfigurationError("min_delay must not be larger than max_delay.")
        if max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1.")

        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.failure_ceiling = failure_ceiling
        self.dump_store = dump_store

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
        )

        self.urgent: Deque[QueueTask] = deque()
        self.normal: Deque[QueueTask] = deque()
        self.global_attempt = 1
        self._fatal_error: Optional[BaseException] = None
        self._drain_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self.urgent) + len(self.normal)

    async def __aenter__(self) -> "RequestQueue":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this queue created it."""
        if self._owns_client:
            await self.client.aclose()

    async def request(self, url: str, priority: bool = False) -> str:
        """
        Queue a GET request and wait for its body.

        Args:
            url: URL to fetch
            priority: Service before all non-priority requests

        Returns:
            Response body text

        Raises:
            FetchError: if every attempt failed or the failure ceiling was hit
        """
        if self._fatal_error is not None:
            raise FetchError(url, self._fatal_error)

        task = QueueTask(url, priority, asyncio.get_running_loop().create_future())
        self._queue_for(task).append(task)
        logger.debug(f"Adding request. (url={url} priority={priority} queue={len(self)})")

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.ensure_future(self.drain())
        return await task.future

    async def delay(self) -> None:
        delay = random.uniform(self.min_delay, self.max_delay)
        logger.debug(f"Beginning delay. ({delay:.2f}s)")
        await asyncio.sleep(delay)

    async def drain(self) -> None:
        """Service queued tasks until both queues are empty."""
        while self.urgent or self.normal:
            task = self._next_task()
            if task.future.done():
                # Caller went away
                continue
            if self._fatal_error is not None:
                self._reject(task, self._fatal_error)
                continue

            await self.delay()
            logger.debug(f"Request begun. (queue={len(self)} url={task.url} attempt={task.attempt})")
            try:
                body = await self._get(task.url)
            except httpx.HTTPError as error:
                logger.debug(f"Errored request. (url={task.url} message={error})")
                await self._dump_failure(task.url, error)
                self._handle_failure(task, error)
                continue
            except Exception as error:
                # Not a transport failure, hand it to the caller unretried
                self._settle(task, error=error)
                continue

            self.global_attempt = 1
            logger.debug(f"Request finished. (queue={len(self)} url={task.url} length={format_size(len(body))})")
            try:
                if self.dump_store is not None:
                    await self.dump_store.write_text(url_file(task.url), body)
            except OSError as error:
                self._settle(task, error=error)
            else:
                self._settle(task, body=body)

    async def _get(self, url: str) -> str:
        response = await self.client.get(url)
        response.raise_for_status()
        return response.text

    def _queue_for(self, task: QueueTask) -> Deque[QueueTask]:
        return self.urgent if task.priority else self.normal

    def _next_task(self) -> QueueTask:
        if self.urgent:
            return self.urgent.popleft()
        return self.normal.popleft()

    def _handle_failure(self, task: QueueTask, error: BaseException) -> None:
        self.global_attempt += 1

        if self.global_attempt >= self.failure_ceiling:
            logger.error(
                f"Failure ceiling reached, abandoning all requests. "
                f"(failures={self.global_attempt} url={task.url} message={error})"
            )
            self._fatal_error = error
            self._reject(task, error)
            while self.urgent or self.normal:
                self._reject(self._next_task(), error)
            return

        if task.attempt < self.max_attempts:
            task.attempt += 1
            logger.warning(
                f"Retrying {task.url} "
                f"(attempt {task.attempt}/{self.max_attempts}, failures={self.global_attempt})"
            )
            self._queue_for(task).appendleft(task)
        else:
            logger.error(f"Max retries reached for {task.url}")
            self._reject(task, error)

    def _reject(self, task: QueueTask, error: BaseException) -> None:
        self._settle(task, error=FetchError(task.url, error))

    def _settle(self, task: QueueTask, body: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        if task.future.done():
            return
        if error is not None:
            task.future.set_exception(error)
        else:
            task.future.set_result(body)

    async def _dump_failure(self, url: str, error: httpx.HTTPError) -> None:
        if self.dump_store is None:
            return
        if isinstance(error, httpx.HTTPStatusError):
            payload = error.response.text
        else:
            payload = repr(error)
        try:
            await self.dump_store.write_text(url_file(url), payload)
        except OSError as dump_error:
            logger.error(f"Unable to dump failed response. (url={url} message={dump_error})")
