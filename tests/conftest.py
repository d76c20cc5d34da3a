"""
Shared fakes for the helm test suite.

Nothing here starts a browser or talks to a model: FakeBrowser serves a
fixed HTML page through the real extractor, FakeLLM replays scripted
responses.

Run with: python -m pytest tests -v
"""

import json
from typing import Any, Dict, List, Optional

import pytest

from helm.dom import PageObservation, extract_observation
from helm.llm import LLMResponse, ToolCall


LOGIN_PAGE = """
<html><head><title>Example Domain</title></head>
<body>
  <nav><a href="/">Home</a><a href="/docs">Docs</a><a href="/about">About</a></nav>
  <main>
    <h1>Example Domain</h1>
    <p>This domain is for use in illustrative examples.</p>
    <button id="login">Login</button>
    <input name="q" placeholder="Search">
  </main>
</body></html>
"""


class FakeBrowser:
    """Records calls; clicks may navigate via the `navigations` map."""

    viewport_width = 1280
    viewport_height = 720

    def __init__(self, html: str = LOGIN_PAGE, url: str = "https://example.com/"):
        self.html = html
        self.url = url
        self.calls: List[tuple] = []
        self.navigations: Dict[str, str] = {}
        self.failures: Dict[str, Exception] = {}
        self.observe_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.initialized = False
        self.closed = False
        self.cdp_sessions: List["FakeCDPSession"] = []
        self.cdp_error: Optional[Exception] = None

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    @property
    def is_initialized(self) -> bool:
        return self.initialized

    async def initialize(self) -> None:
        self._record("initialize")
        self.initialized = True

    async def navigate(self, url: str) -> None:
        self._record("navigate", url)
        self.url = url

    async def click(self, selector: str) -> None:
        self._record("click", selector)
        if selector in self.navigations:
            self.url = self.navigations[selector]

    async def type(self, selector: str, text: str) -> None:
        self._record("type", selector, text)

    async def press_enter(self) -> None:
        self._record("press_enter")

    async def go_back(self) -> None:
        self._record("go_back")

    async def current_url(self) -> str:
        return self.url

    async def observe(self, include_screenshot: bool = False) -> PageObservation:
        self.calls.append(("observe",))
        if self.observe_error is not None:
            raise self.observe_error
        return extract_observation(self.html, url=self.url)

    async def screenshot(self, format: str = "png", quality: Optional[int] = None) -> bytes:
        self.calls.append(("screenshot", format, quality))
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return b"\xff\xd8fake-jpeg"

    async def new_cdp_session(self) -> "FakeCDPSession":
        if self.cdp_error is not None:
            raise self.cdp_error
        session = FakeCDPSession()
        self.cdp_sessions.append(session)
        return session

    async def mouse_move(self, x, y):
        self._record("mouse_move", x, y)

    async def mouse_click(self, x, y, button="left", click_count=1):
        self._record("mouse_click", x, y, button, click_count)

    async def mouse_down(self, x, y, button="left"):
        self._record("mouse_down", x, y, button)

    async def mouse_up(self, x, y, button="left"):
        self._record("mouse_up", x, y, button)

    async def scroll(self, x, y, delta_x=0, delta_y=0):
        self._record("scroll", x, y, delta_x, delta_y)

    async def key_down(self, key, modifiers=None):
        self._record("key_down", key, list(modifiers or []))

    async def key_up(self, key, modifiers=None):
        self._record("key_up", key, list(modifiers or []))

    async def type_text(self, text):
        self._record("type_text", text)

    async def close(self) -> None:
        self.calls.append(("close",))
        self.closed = True


class FakeCDPSession:
    """Minimal stand-in for a Playwright CDPSession (pyee-style listeners)."""

    def __init__(self):
        self.listeners: Dict[str, List[Any]] = {}
        self.sent: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}
        self.detached = False

    def on(self, event: str, handler) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler) -> None:
        self.listeners[event].remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self.listeners.get(event, []))

    def emit(self, event: str, params: Dict[str, Any]) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(params)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None):
        self.sent.append((method, params))
        if method in self.fail_on:
            raise self.fail_on[method]
        return {}

    def sent_methods(self) -> List[str]:
        return [m for m, _ in self.sent]

    async def detach(self) -> None:
        self.detached = True


class FakeLLM:
    """Replays scripted responses; once they run out it calls stop."""

    def __init__(self, responses: Optional[List[LLMResponse]] = None):
        self.responses = list(responses or [])
        self.contexts: List[str] = []
        self.error: Optional[Exception] = None

    async def chat(self, messages: List[Dict[str, str]]) -> LLMResponse:
        self.contexts.append(messages[-1]["content"])
        if self.error is not None:
            error, self.error = self.error, None
            raise error
        if self.responses:
            return self.responses.pop(0)
        return LLMResponse(tool_calls=[ToolCall("stop", {"answer": "done"})])


class Recorder:
    """Async emitter that records (type, payload) events."""

    def __init__(self):
        self.events: List[tuple] = []

    async def __call__(self, type: str, payload: Dict[str, Any]) -> None:
        self.events.append((type, payload))

    def types(self) -> List[str]:
        return [t for t, _ in self.events]

    def of(self, type: str) -> List[Dict[str, Any]]:
        return [p for t, p in self.events if t == type]


class FakeChannel:
    """WebSocket stand-in that decodes everything sent to it."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def of(self, type: str) -> List[Dict[str, Any]]:
        return [m["payload"] for m in self.sent if m["type"] == type]

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]


def calls(*pairs) -> LLMResponse:
    """LLMResponse with tool calls from (name, arguments) pairs."""
    return LLMResponse(tool_calls=[ToolCall(name, args) for name, args in pairs])


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def channel():
    return FakeChannel()
