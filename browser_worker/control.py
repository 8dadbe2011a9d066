"""Direct control surface for live, human-in-the-loop interaction with a session."""
from __future__ import annotations

import base64
import math
from typing import Any

import structlog

from browser_worker.engine import PlaywrightEngine
from browser_worker.errors import EngineFatalError, StepValidationError, ValidationError
from browser_worker.steps import NAVIGATE_TIMEOUT_MS, WaitUntil, check_ms

log = structlog.get_logger(__name__)

ACTIONS = ("click", "type", "press", "scroll", "navigate")


def _number(body: dict, key: str, required: bool = True) -> float:
    value = body.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} required", field=key)
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{key} must be a number", field=key)
    return value


def _timeout(body: dict) -> int:
    value = body.get("timeout")
    if value is None:
        return NAVIGATE_TIMEOUT_MS
    try:
        return check_ms(value, "timeout")
    except StepValidationError as exc:
        raise ValidationError(exc.message, field="timeout") from None


def _string(body: dict, key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or value == "":
        raise ValidationError(f"{key} required", field=key)
    return value


class DirectControl:
    """Coordinate clicks, keystrokes, scrolling and navigation on a session's page."""

    def __init__(self, engine: PlaywrightEngine) -> None:
        self.engine = engine

    async def info(self, page: Any) -> dict[str, Any]:
        try:
            return {
                "url": await self.engine.current_url(page),
                "title": await self.engine.title(page),
            }
        except Exception as exc:
            raise EngineFatalError(f"Failed to read page state: {exc}") from exc

    async def snapshot(self, page: Any) -> dict[str, Any]:
        try:
            data = await self.engine.screenshot(page)
        except Exception as exc:
            raise EngineFatalError(f"Screenshot failed: {exc}") from exc
        state = await self.info(page)
        return {"screenshotBase64": base64.b64encode(data).decode("ascii"), **state}

    async def interact(self, page: Any, body: Any) -> dict[str, Any]:
        """Apply one action and return the resulting screenshot, url and title.

        Field validation happens before the page is touched.
        """
        if not isinstance(body, dict):
            raise ValidationError("request body must be a JSON object")
        action = body.get("action")
        if not action:
            raise ValidationError("action required", field="action")
        if action not in ACTIONS:
            raise ValidationError(
                f"unknown action {action!r} (expected one of: {', '.join(ACTIONS)})",
                field="action",
            )

        engine = self.engine
        if action == "click":
            x, y = _number(body, "x"), _number(body, "y")
            call = engine.mouse_click(page, x, y)
        elif action == "type":
            call = engine.keyboard_type(page, _string(body, "text"))
        elif action == "press":
            call = engine.keyboard_press(page, _string(body, "key"))
        elif action == "scroll":
            dx = _number(body, "deltaX", required=False)
            dy = _number(body, "deltaY", required=False)
            call = engine.mouse_wheel(page, dx, dy)
        else:
            url = _string(body, "url")
            try:
                wait_until = WaitUntil.parse(body.get("waitUntil"))
            except StepValidationError as exc:
                raise ValidationError(exc.message, field="waitUntil") from None
            call = engine.goto(page, url, wait_until.value, _timeout(body))

        try:
            await call
        except Exception as exc:
            log.info("interaction failed", action=action, error=str(exc))
            raise EngineFatalError(f"{action} failed: {exc}") from exc
        return await self.snapshot(page)
