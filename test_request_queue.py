"""
Tests for the throttled request queue.

Usage:
    pytest test_request_queue.py
"""
import asyncio
import os

import httpx
import pytest

from conftest import make_queue
from ffcrawler.errors import ConfigurationError, FetchError
from ffcrawler.request_queue import RequestQueue, url_file
from ffcrawler.storage import ContentStore


def flaky(failures: int, body: str = "ok"):
    """Handler failing the first ``failures`` calls with a 500."""
    calls = []

    def handler(request):
        calls.append(str(request.url))
        if len(calls) <= failures:
            return httpx.Response(500, text="down")
        return httpx.Response(200, text=body)

    return handler, calls


def count_delays(queue: RequestQueue):
    delays = []

    async def delay():
        delays.append(True)

    queue.delay = delay
    return delays


def test_rejects_inverted_delays():
    with pytest.raises(ConfigurationError):
        RequestQueue(min_delay=5, max_delay=1)


def test_url_file():
    assert url_file("https://www.fanfiction.net/s/1/2") == "www.fanfiction.net-s-1-2.html"


def test_one_request_in_flight():
    in_flight = []
    peak = []

    async def handler(request):
        in_flight.append(request)
        peak.append(len(in_flight))
        await asyncio.sleep(0.01)
        in_flight.remove(request)
        return httpx.Response(200, text=request.url.path)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client)
            return await asyncio.gather(*(queue.request(f"https://example.com/{n}") for n in range(5)))

    bodies = asyncio.run(run())
    assert bodies == [f"/{n}" for n in range(5)]
    assert max(peak) == 1


def test_priority_requests_first():
    order = []

    def handler(request):
        order.append(request.url.path)
        return httpx.Response(200, text="ok")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client)
            await asyncio.gather(
                queue.request("https://example.com/a"),
                queue.request("https://example.com/b"),
                queue.request("https://example.com/c", priority=True),
                queue.request("https://example.com/d", priority=True),
            )

    asyncio.run(run())
    assert order == ["/c", "/d", "/a", "/b"]


def test_retries_until_success():
    handler, calls = flaky(2, body="finally")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client)
            body = await queue.request("https://example.com/flaky")
            return queue, body

    queue, body = asyncio.run(run())
    assert body == "finally"
    assert len(calls) == 3
    assert queue.global_attempt == 1


def test_gives_up_after_max_attempts():
    handler, calls = flaky(100)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client, max_attempts=3)
            with pytest.raises(FetchError) as excinfo:
                await queue.request("https://example.com/broken")
            return queue, excinfo.value

    queue, error = asyncio.run(run())
    assert len(calls) == 3
    assert error.url == "https://example.com/broken"
    assert isinstance(error.cause, httpx.HTTPStatusError)
    assert queue.global_attempt == 4


def test_success_resets_failure_counter():
    statuses = [500, 200, 500, 200]

    def handler(request):
        return httpx.Response(statuses.pop(0), text="x")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client, failure_ceiling=3)
            await queue.request("https://example.com/1")
            await queue.request("https://example.com/2")
            return queue

    queue = asyncio.run(run())
    assert queue.global_attempt == 1
    assert statuses == []


def test_failure_ceiling_fails_fast():
    handler, calls = flaky(100)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client, max_attempts=3, failure_ceiling=3)
            delays = count_delays(queue)
            first = await asyncio.gather(
                queue.request("https://example.com/1"),
                queue.request("https://example.com/2"),
                return_exceptions=True,
            )
            delays_before = len(delays)
            with pytest.raises(FetchError):
                await queue.request("https://example.com/3")
            return first, delays_before, len(delays)

    first, delays_before, delays_after = asyncio.run(run())
    assert all(isinstance(result, FetchError) for result in first)
    # Two failures reach the ceiling, the queued request is never attempted
    assert len(calls) == 2
    assert delays_before == 2
    assert delays_after == delays_before


def test_other_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        raise RuntimeError("handler bug")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client)
            with pytest.raises(RuntimeError):
                await queue.request("https://example.com/bug")
            return queue

    queue = asyncio.run(run())
    assert len(calls) == 1
    assert queue.global_attempt == 1


def test_dumps_successful_bodies(tmp_path):
    def handler(request):
        return httpx.Response(200, text="<html>page</html>")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client, dump_store=ContentStore(str(tmp_path)))
            await queue.request("https://www.fanfiction.net/s/1/1")

    asyncio.run(run())
    with open(os.path.join(tmp_path, "www.fanfiction.net-s-1-1.html"), encoding="utf-8") as f:
        assert f.read() == "<html>page</html>"


def test_dumps_failed_attempts(tmp_path):
    handler, calls = flaky(100)

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    async def run():
        store = ContentStore(str(tmp_path))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client, max_attempts=1, dump_store=store)
            with pytest.raises(FetchError):
                await queue.request("https://example.com/status")
        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            queue = make_queue(client, max_attempts=1, dump_store=store)
            with pytest.raises(FetchError):
                await queue.request("https://example.com/connect")

    asyncio.run(run())
    with open(os.path.join(tmp_path, "example.com-status.html"), encoding="utf-8") as f:
        assert f.read() == "down"
    with open(os.path.join(tmp_path, "example.com-connect.html"), encoding="utf-8") as f:
        assert "ConnectError" in f.read()


def test_dump_error_keeps_request_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    handler, calls = flaky(100)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            queue = make_queue(client, max_attempts=1, dump_store=ContentStore(str(blocker)))
            with pytest.raises(FetchError) as excinfo:
                await queue.request("https://example.com/status")
            return excinfo.value

    error = asyncio.run(run())
    assert isinstance(error.cause, httpx.HTTPStatusError)
    assert len(calls) == 1
