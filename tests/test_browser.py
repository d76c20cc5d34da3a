"""Tests for the browser adapter that do not need a real browser."""

import asyncio

import pytest

from helm.browser import Browser, is_context_destroyed, map_key_name, retry_on_error
from helm.dom import PageObservation
from helm.errors import BrowserNotInitializedError


class FakeKeyboard:

    def __init__(self):
        self.events = []

    async def down(self, key):
        self.events.append(("down", key))

    async def up(self, key):
        self.events.append(("up", key))

    async def type(self, text):
        self.events.append(("type", text))

    async def press(self, key):
        self.events.append(("press", key))


class Closable:
    """Resource whose close() either returns, hangs or raises."""

    def __init__(self, mode="ok"):
        self.mode = mode
        self.close_started = False

    async def _close(self):
        self.close_started = True
        if self.mode == "hang":
            await asyncio.sleep(60)
        if self.mode == "raise":
            raise RuntimeError("Target closed")

    def close(self):
        return self._close()

    def stop(self):
        return self._close()


class FakePage(Closable):

    def __init__(self, mode="ok"):
        super().__init__(mode)
        self.keyboard = FakeKeyboard()
        self.url = "https://example.com/"


def fast_browser() -> Browser:
    browser = Browser(retry_delay=0)
    browser.PAGE_CLOSE_TIMEOUT = 0.05
    browser.CONTEXT_CLOSE_TIMEOUT = 0.05
    browser.BROWSER_CLOSE_TIMEOUT = 0.05
    return browser


class TestRetry:

    @pytest.mark.asyncio
    async def test_retries_once_on_destroyed_context(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("Execution context was destroyed, most likely because of a navigation")
            return "ok"

        assert await retry_on_error(flaky, is_context_destroyed, delay=0) == "ok"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_second_failure_propagates(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise RuntimeError("Execution context was destroyed")

        with pytest.raises(RuntimeError):
            await retry_on_error(broken, is_context_destroyed, delay=0)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("bad selector")

        with pytest.raises(ValueError):
            await retry_on_error(broken, is_context_destroyed, delay=0)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_observe_uses_retry(self):
        browser = fast_browser()
        attempts = []

        async def observe_once(include_screenshot):
            attempts.append(include_screenshot)
            if len(attempts) == 1:
                raise RuntimeError("Execution context was destroyed")
            return PageObservation(url="u", title="t", content="c")

        browser._observe = observe_once
        obs = await browser.observe()
        assert obs.content == "c"
        assert attempts == [False, False]


class TestUninitialized:

    @pytest.mark.asyncio
    async def test_operations_raise(self):
        browser = Browser()
        assert not browser.is_initialized
        with pytest.raises(BrowserNotInitializedError):
            await browser.click("#x")
        with pytest.raises(BrowserNotInitializedError):
            await browser.new_cdp_session()

    @pytest.mark.asyncio
    async def test_close_tolerates_partial_init(self):
        browser = Browser()
        await browser.close()
        assert browser._page is None


class TestClose:

    @pytest.mark.asyncio
    async def test_hung_and_failing_resources_are_forced_closed(self):
        browser = fast_browser()
        page, context, pw_browser, driver = FakePage("hang"), Closable("raise"), Closable("hang"), Closable()
        browser._page, browser._context, browser._browser, browser._playwright = page, context, pw_browser, driver

        await asyncio.wait_for(browser.close(), timeout=2)

        assert all(r.close_started for r in (page, context, pw_browser, driver))
        assert browser._page is None
        assert browser._context is None
        assert browser._browser is None
        assert browser._playwright is None


class TestKeyboard:

    def test_map_key_name(self):
        assert map_key_name("ctrl") == "Control"
        assert map_key_name("ESC") == "Escape"
        assert map_key_name("up") == "ArrowUp"
        assert map_key_name("f5") == "F5"
        assert map_key_name("a") == "a"

    @pytest.mark.asyncio
    async def test_modifiers_wrap_the_key(self):
        browser = Browser()
        page = FakePage()
        browser._page = page

        await browser.key_down("a", ["ctrl", "shift"])
        await browser.key_up("a", ["ctrl", "shift"])

        assert page.keyboard.events == [
            ("down", "Control"),
            ("down", "Shift"),
            ("down", "a"),
            ("up", "a"),
            ("up", "Shift"),
            ("up", "Control"),
        ]

    @pytest.mark.asyncio
    async def test_current_url(self):
        browser = Browser()
        browser._page = FakePage()
        assert await browser.current_url() == "https://example.com/"
