import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from peru_prices import sources
from peru_prices.errors import NavigationError, SessionError
from peru_prices.sources import BrowserSession, HTTPStatusError, HttpPageSource, is_transient
from peru_prices.spiders import MultipageSpider


def make_app(statuses):
    """App answering /page with the given statuses in order, then 200."""
    calls = {"count": 0}

    async def page(request):
        calls["count"] += 1
        if calls["count"] <= len(statuses):
            return web.Response(status=statuses[calls["count"] - 1], text="busy")
        return web.Response(text="<div class='product-item' data-id='1'></div>", content_type="text/html")

    app = web.Application()
    app.router.add_get("/page", page)
    return app, calls


def fetch(statuses, max_retries=3):
    app, calls = make_app(statuses)

    async def run():
        source = HttpPageSource(max_retries=max_retries, backoff_min=0, backoff_max=0)
        async with test_utils.TestServer(app) as server:
            await source.open()
            try:
                return await source.fetch(str(server.make_url("/page"))), calls["count"]
            finally:
                await source.close()

    return asyncio.run(run())


def test_fetch_returns_body():
    body, calls = fetch([])
    assert "product-item" in body
    assert calls == 1


def test_fetch_retries_transient_statuses():
    body, calls = fetch([503, 429, 502])
    assert "product-item" in body
    assert calls == 4


def test_fetch_gives_up_after_max_retries():
    with pytest.raises(HTTPStatusError) as excinfo:
        fetch([503, 503, 503], max_retries=2)
    assert excinfo.value.status == 503


def test_fetch_does_not_retry_client_errors():
    app, calls = make_app([404])

    async def run():
        source = HttpPageSource(backoff_min=0, backoff_max=0)
        async with test_utils.TestServer(app) as server:
            await source.open()
            try:
                await source.fetch(str(server.make_url("/page")))
            finally:
                await source.close()

    with pytest.raises(HTTPStatusError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status == 404
    assert calls["count"] == 1


def test_fetch_requires_open_session():
    with pytest.raises(SessionError):
        asyncio.run(HttpPageSource().fetch("http://localhost/"))


def test_is_transient():
    assert is_transient(HTTPStatusError("u", 503))
    assert is_transient(asyncio.TimeoutError())
    assert not is_transient(HTTPStatusError("u", 404))
    assert not is_transient(ValueError("bad"))


def test_undecodable_body_is_a_navigation_error():
    async def page(request):
        return web.Response(body=b"<div>\xff\xfe\xfa</div>", content_type="text/html", charset="utf-8")

    app = web.Application()
    app.router.add_get("/page", page)

    async def run():
        spider = MultipageSpider("plaza_vea", "http://unused", ["page"], "div",
                                 source=HttpPageSource(backoff_min=0, backoff_max=0),
                                 show_progress=False)
        async with test_utils.TestServer(app) as server:
            async with spider:
                await spider.scrape(str(server.make_url("/page")))

    with pytest.raises(NavigationError) as excinfo:
        asyncio.run(run())
    assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)


class FailingChromium:
    async def connect_over_cdp(self, url):
        raise OSError(f"connection refused: {url}")


class FakePlaywright:
    def __init__(self):
        self.chromium = FailingChromium()
        self.stopped = False

    async def stop(self):
        self.stopped = True


def test_launch_stops_driver_on_any_failure(monkeypatch):
    driver = FakePlaywright()

    class Starter:
        async def start(self):
            return driver

    monkeypatch.setattr(sources, "async_playwright", Starter)

    with pytest.raises(SessionError) as excinfo:
        asyncio.run(BrowserSession.launch(cdp_url="http://localhost:9222"))
    assert isinstance(excinfo.value.__cause__, OSError)
    assert driver.stopped
