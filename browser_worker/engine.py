"""Playwright-backed automation engine.

The worker never touches Playwright directly outside this module: the
session registry asks for a BrowserResource via open() and releases it
via close(); the step executor and the direct control surface drive the
page through the thin async wrappers below.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from browser_worker.config import Config

log = logging.getLogger(__name__)

_LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]


@dataclass
class BrowserResource:
    """One browser + context + page, owned by exactly one session."""

    browser: Browser
    context: BrowserContext
    page: Page


class PlaywrightEngine:
    """Async wrapper around a single Playwright driver shared by all sessions."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._pw: Playwright | None = None

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the Playwright driver. Idempotent."""
        if self._pw is None:
            self._pw = await async_playwright().start()
            log.info("Playwright driver started")

    async def stop(self) -> None:
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None
            log.info("Playwright driver stopped")

    @property
    def playwright(self) -> Playwright:
        if self._pw is None:
            raise RuntimeError("PlaywrightEngine not started")
        return self._pw

    async def launch(self) -> Browser:
        return await self.playwright.chromium.launch(
            headless=self.config.headless,
            args=_LAUNCH_ARGS,
        )

    async def new_context(
        self,
        browser: Browser,
        viewport: tuple[int, int],
        user_agent: str | None = None,
        ignore_https_errors: bool = True,
    ) -> BrowserContext:
        ctx_kwargs: dict = {
            "viewport": {"width": viewport[0], "height": viewport[1]},
            "ignore_https_errors": ignore_https_errors,
        }
        if user_agent:
            ctx_kwargs["user_agent"] = user_agent
        return await browser.new_context(**ctx_kwargs)

    async def new_page(self, context: BrowserContext) -> Page:
        return await context.new_page()

    async def open(self) -> BrowserResource:
        """Launch a browser with a fresh context and page.

        If context or page creation fails the browser is closed before the
        error propagates, so no process is leaked.
        """
        browser = await self.launch()
        try:
            context = await self.new_context(
                browser,
                self.config.viewport,
                self.config.user_agent,
                self.config.ignore_https_errors,
            )
            page = await self.new_page(context)
        except BaseException:
            try:
                await browser.close()
            except Exception as exc:
                log.warning("Failed to close browser after launch error: %s", exc)
            raise
        return BrowserResource(browser=browser, context=context, page=page)

    async def close(self, resource: BrowserResource) -> None:
        """Close the browser; this also closes its context and page."""
        await resource.browser.close()

    # -- Navigation ------------------------------------------------------------

    async def goto(self, page: Page, url: str, wait_until: str, timeout: int) -> None:
        await page.goto(url, wait_until=wait_until, timeout=timeout)

    async def wait(self, page: Page, ms: int) -> None:
        await page.wait_for_timeout(ms)

    async def wait_for_selector(self, page: Page, selector: str, timeout: int) -> None:
        await page.wait_for_selector(selector, state="visible", timeout=timeout)

    # -- Interaction -----------------------------------------------------------

    async def click(self, page: Page, selector: str, timeout: int) -> None:
        await page.click(selector, timeout=timeout)

    async def fill(self, page: Page, selector: str, value: str, timeout: int) -> None:
        await page.fill(selector, value, timeout=timeout)

    async def mouse_click(self, page: Page, x: float, y: float) -> None:
        await page.mouse.click(x, y)

    async def mouse_wheel(self, page: Page, delta_x: float, delta_y: float) -> None:
        await page.mouse.wheel(delta_x, delta_y)

    async def keyboard_type(self, page: Page, text: str) -> None:
        await page.keyboard.type(text)

    async def keyboard_press(self, page: Page, key: str) -> None:
        await page.keyboard.press(key)

    # -- Page state ------------------------------------------------------------

    async def screenshot(self, page: Page) -> bytes:
        """Viewport-only PNG capture."""
        return await page.screenshot(type="png", full_page=False)

    async def current_url(self, page: Page) -> str:
        return page.url

    async def title(self, page: Page) -> str:
        return await page.title()
