"""Playwright browser adapter for helm sessions."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from playwright.async_api import (
    async_playwright,
    Browser as PWBrowser,
    BrowserContext,
    CDPSession,
    Page,
    TimeoutError as PWTimeoutError,
)

from .dom import DEFAULT_CHAR_BUDGET, PageObservation, extract_observation
from .errors import BrowserNotInitializedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-plugins",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
    "--disable-background-networking",
    "--disable-sync",
    "--disable-default-apps",
    "--no-first-run",
]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

KEY_MAP = {
    # Modifiers
    "meta": "Meta",
    "cmd": "Meta",
    "command": "Meta",
    "ctrl": "Control",
    "control": "Control",
    "alt": "Alt",
    "shift": "Shift",
    # Special keys
    "enter": "Enter",
    "return": "Enter",
    "space": "Space",
    "spacebar": "Space",
    "backspace": "Backspace",
    "delete": "Delete",
    "tab": "Tab",
    "escape": "Escape",
    "esc": "Escape",
    # Arrows
    "arrowup": "ArrowUp",
    "arrowdown": "ArrowDown",
    "arrowleft": "ArrowLeft",
    "arrowright": "ArrowRight",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "dead": "Dead",
}
KEY_MAP.update({f"f{i}": f"F{i}" for i in range(1, 13)})

MODIFIER_KEYS = {"shift", "control", "ctrl", "alt", "meta", "cmd", "command"}


def map_key_name(key: str) -> str:
    """Map browser key names to Playwright key names."""
    return KEY_MAP.get(key.lower(), key)


def is_context_destroyed(error: BaseException) -> bool:
    """True for the navigation race where the page's JS context went away."""
    return "Execution context was destroyed" in str(error)


async def retry_on_error(
    operation: Callable[[], Awaitable[T]],
    should_retry: Callable[[BaseException], bool],
    delay: float = 1.0,
) -> T:
    """Run operation, retrying exactly once after delay if should_retry(error)."""
    try:
        return await operation()
    except Exception as e:
        if not should_retry(e):
            raise
        logger.warning(f"Retrying after transient error: {e}")
        await asyncio.sleep(delay)
        return await operation()


class Browser:
    """
    Async Playwright browser for one session.

    Owns the playwright driver, browser process, context and page. All page
    operations raise BrowserNotInitializedError before initialize().
    """

    DEFAULT_TIMEOUT_MS = 10000
    ACTION_TIMEOUT_MS = 3000
    NAVIGATION_TIMEOUT_MS = 45000
    PAGE_CLOSE_TIMEOUT = 5.0
    CONTEXT_CLOSE_TIMEOUT = 5.0
    BROWSER_CLOSE_TIMEOUT = 10.0

    def __init__(
        self,
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 720,
        start_url: Optional[str] = None,
        char_budget: int = DEFAULT_CHAR_BUDGET,
        retry_delay: float = 1.0,
    ):
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.start_url = start_url
        self.char_budget = char_budget
        self.retry_delay = retry_delay
        self._playwright = None
        self._browser: Optional[PWBrowser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise BrowserNotInitializedError()
        return self._page

    @property
    def is_initialized(self) -> bool:
        return self._page is not None

    async def initialize(self) -> None:
        """Launch Chromium and open a page."""
        logger.info("Initializing browser...")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless, args=LAUNCH_ARGS
            )
            self._context = await self._browser.new_context(
                viewport={"width": self.viewport_width, "height": self.viewport_height},
                user_agent=USER_AGENT,
            )
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self.DEFAULT_TIMEOUT_MS)
            self._page.on("pageerror", lambda error: logger.error(f"Page error: {error}"))
        except Exception:
            logger.exception("Failed to initialize browser")
            await self.close()
            raise

        if self.start_url:
            await self.navigate(self.start_url)
        logger.info("Browser initialized")

    async def navigate(self, url: str, wait_until: str = "domcontentloaded") -> None:
        """Navigate to a URL."""
        logger.info(f"Navigating to {url}")
        await self.page.goto(url, wait_until=wait_until, timeout=self.NAVIGATION_TIMEOUT_MS)

    async def click(self, selector: str) -> None:
        """Click an element by selector."""
        await self.page.click(selector, timeout=self.ACTION_TIMEOUT_MS)

    async def type(self, selector: str, text: str) -> None:
        """Fill a form field."""
        await self.page.fill(selector, text, timeout=self.ACTION_TIMEOUT_MS)

    async def press_enter(self) -> None:
        await self.page.keyboard.press("Enter")

    async def go_back(self) -> None:
        await self.page.go_back()

    async def current_url(self) -> str:
        return await retry_on_error(
            self._read_url, is_context_destroyed, delay=self.retry_delay
        )

    async def _read_url(self) -> str:
        return self.page.url

    async def observe(self, include_screenshot: bool = False) -> PageObservation:
        """
        Observe the current page.

        The element map is rebuilt from scratch on every call. A navigation
        racing the observation ("Execution context was destroyed") is retried
        once.
        """
        return await retry_on_error(
            lambda: self._observe(include_screenshot),
            is_context_destroyed,
            delay=self.retry_delay,
        )

    async def _observe(self, include_screenshot: bool) -> PageObservation:
        page = self.page
        await page.wait_for_load_state("domcontentloaded")
        try:
            await page.wait_for_load_state("networkidle", timeout=2000)
        except PWTimeoutError:
            logger.debug("networkidle not reached, observing anyway")

        html = await page.content()
        observation = extract_observation(
            html, url=page.url, title=await page.title(), char_budget=self.char_budget
        )
        if include_screenshot:
            observation.screenshot = await self.screenshot()
        logger.info(f"Observed {observation.url}: {len(observation.element_map)} elements")
        return observation

    async def screenshot(self, format: str = "png", quality: Optional[int] = None) -> bytes:
        """Capture the viewport."""
        page = self.page
        if page.is_closed():
            raise BrowserNotInitializedError("Page is closed")
        if format == "jpeg":
            return await page.screenshot(type="jpeg", quality=quality or 80)
        return await page.screenshot(type="png")

    async def new_cdp_session(self) -> CDPSession:
        """Open a Chrome DevTools Protocol session on the page."""
        if self._context is None:
            raise BrowserNotInitializedError()
        return await self._context.new_cdp_session(self.page)

    # --- pointer / keyboard passthrough ------------------------------------

    async def mouse_move(self, x: float, y: float) -> None:
        await self.page.mouse.move(x, y)

    async def mouse_click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        await self.page.mouse.click(x, y, button=button, click_count=click_count)

    async def mouse_down(self, x: float, y: float, button: str = "left") -> None:
        await self.page.mouse.move(x, y)
        await self.page.mouse.down(button=button)

    async def mouse_up(self, x: float, y: float, button: str = "left") -> None:
        await self.page.mouse.move(x, y)
        await self.page.mouse.up(button=button)

    async def scroll(self, x: float, y: float, delta_x: float = 0, delta_y: float = 0) -> None:
        await self.page.mouse.move(x, y)
        await self.page.mouse.wheel(delta_x, delta_y)

    async def key_down(self, key: str, modifiers: Optional[List[str]] = None) -> None:
        keyboard = self.page.keyboard
        for modifier in modifiers or []:
            await keyboard.down(map_key_name(modifier))
        await keyboard.down(map_key_name(key))

    async def key_up(self, key: str, modifiers: Optional[List[str]] = None) -> None:
        keyboard = self.page.keyboard
        await keyboard.up(map_key_name(key))
        for modifier in reversed(modifiers or []):
            await keyboard.up(map_key_name(modifier))

    async def type_text(self, text: str) -> None:
        await self.page.keyboard.type(text)

    # --- teardown ----------------------------------------------------------

    async def close(self) -> None:
        """
        Release page, context, browser and driver.

        Each resource gets a bounded timeout; on timeout or error the handle
        is dropped and cleanup moves on to the next one.
        """
        logger.info("Starting browser cleanup...")

        if self._page is not None:
            await self._close_resource("page", self._page.close(), self.PAGE_CLOSE_TIMEOUT)
            self._page = None

        if self._context is not None:
            await self._close_resource("context", self._context.close(), self.CONTEXT_CLOSE_TIMEOUT)
            self._context = None

        if self._browser is not None:
            await self._close_resource("browser", self._browser.close(), self.BROWSER_CLOSE_TIMEOUT)
            self._browser = None

        if self._playwright is not None:
            await self._close_resource("playwright", self._playwright.stop(), self.BROWSER_CLOSE_TIMEOUT)
            self._playwright = None

        logger.info("Browser cleanup completed")

    async def _close_resource(self, name: str, closing: Awaitable, timeout: float) -> None:
        try:
            await asyncio.wait_for(closing, timeout=timeout)
            logger.info(f"Closed {name}")
        except asyncio.TimeoutError:
            logger.error(f"Timed out closing {name} after {timeout}s (forcing cleanup)")
        except Exception as e:
            logger.error(f"Error closing {name} (forcing cleanup): {e}")
