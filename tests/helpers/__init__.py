"""Test helpers for browser_worker: an in-memory stand-in for the Playwright engine."""
from __future__ import annotations

import asyncio

from browser_worker.engine import BrowserResource


class FakeTimeoutError(Exception):
    pass


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBrowser:
    def __init__(self) -> None:
        self.closed = False


class FakePage:
    def __init__(self) -> None:
        self.url = "about:blank"
        self.title = ""
        self.filled: dict[str, str] = {}
        self.typed: list[str] = []
        self.pressed: list[str] = []
        self.mouse_clicks: list[tuple[float, float]] = []
        self.scrolls: list[tuple[float, float]] = []


class FakeEngine:
    """Records every call; selectors containing "missing" never appear.

    Set `gate` to an asyncio.Event to make goto() block until it is set.
    """

    def __init__(self) -> None:
        self.started = False
        self.opened: list[BrowserResource] = []
        self.closed: list[BrowserResource] = []
        self.calls: list[tuple] = []
        self.fail_launch = False
        self.fail_screenshot = False
        self.fail_close = False
        self.gate: asyncio.Event | None = None

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def open(self) -> BrowserResource:
        await asyncio.sleep(0)  # launching always suspends
        if self.fail_launch:
            raise RuntimeError("chromium failed to launch")
        resource = BrowserResource(browser=FakeBrowser(), context=object(), page=FakePage())
        self.opened.append(resource)
        return resource

    async def close(self, resource: BrowserResource) -> None:
        self.closed.append(resource)
        if self.fail_close:
            raise RuntimeError("browser already gone")
        resource.browser.closed = True

    def _check_selector(self, selector: str, timeout: int) -> None:
        if "missing" in selector:
            raise FakeTimeoutError(
                f"Timeout {timeout}ms exceeded waiting for locator('{selector}')"
            )

    async def goto(self, page: FakePage, url: str, wait_until: str, timeout: int) -> None:
        self.calls.append(("goto", url, wait_until, timeout))
        if self.gate is not None:
            await self.gate.wait()
        if url.startswith("bad://"):
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        page.url = url
        page.title = f"Title of {url}"

    async def click(self, page: FakePage, selector: str, timeout: int) -> None:
        self.calls.append(("click", selector, timeout))
        self._check_selector(selector, timeout)

    async def fill(self, page: FakePage, selector: str, value: str, timeout: int) -> None:
        self.calls.append(("fill", selector, value, timeout))
        self._check_selector(selector, timeout)
        page.filled[selector] = value

    async def wait(self, page: FakePage, ms: int) -> None:
        self.calls.append(("wait", ms))

    async def wait_for_selector(self, page: FakePage, selector: str, timeout: int) -> None:
        self.calls.append(("wait_for_selector", selector, timeout))
        self._check_selector(selector, timeout)

    async def mouse_click(self, page: FakePage, x: float, y: float) -> None:
        self.calls.append(("mouse_click", x, y))
        page.mouse_clicks.append((x, y))

    async def mouse_wheel(self, page: FakePage, delta_x: float, delta_y: float) -> None:
        self.calls.append(("mouse_wheel", delta_x, delta_y))
        page.scrolls.append((delta_x, delta_y))

    async def keyboard_type(self, page: FakePage, text: str) -> None:
        self.calls.append(("keyboard_type", text))
        page.typed.append(text)

    async def keyboard_press(self, page: FakePage, key: str) -> None:
        self.calls.append(("keyboard_press", key))
        page.pressed.append(key)

    async def screenshot(self, page: FakePage) -> bytes:
        if self.fail_screenshot:
            raise RuntimeError("screenshot failed")
        return f"png:{page.url}".encode()

    async def current_url(self, page: FakePage) -> str:
        return page.url

    async def title(self, page: FakePage) -> str:
        return page.title
