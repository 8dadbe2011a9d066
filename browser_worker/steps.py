"""Step, StepResult and RunResult types plus request parsing.

A run request is validated in two layers:

* parse_run_request() checks the request shape (steps array of 1..MAX_STEPS
  items, optional sessionId). Failures are request-level ValidationErrors.
* parse_step() turns one raw step object into a typed Step. Failures are
  StepValidationErrors, recorded in that step's result by the executor.
"""
from __future__ import annotations

import base64
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from browser_worker.errors import StepValidationError, ValidationError

MAX_STEPS = 15

NAVIGATE_TIMEOUT_MS = 30_000
ELEMENT_TIMEOUT_MS = 10_000
SELECTOR_WAIT_TIMEOUT_MS = 15_000

# Upper bounds on caller-supplied timeouts and fixed waits
MAX_TIMEOUT_MS = 120_000
MAX_WAIT_MS = 60_000


class WaitUntil(str, Enum):
    """Navigation completion policy."""

    CONTENT_LOADED = "domcontentloaded"
    LOAD = "load"
    NETWORK_IDLE = "networkidle"

    @classmethod
    def parse(cls, raw: Any) -> WaitUntil:
        if raw is None:
            return cls.LOAD
        if isinstance(raw, str):
            key = raw.strip().lower()
            if key in _WAIT_UNTIL_ALIASES:
                return _WAIT_UNTIL_ALIASES[key]
        choices = ", ".join(sorted(_WAIT_UNTIL_ALIASES))
        raise StepValidationError(f"invalid waitUntil {raw!r} (expected one of: {choices})")


_WAIT_UNTIL_ALIASES = {
    "domcontentloaded": WaitUntil.CONTENT_LOADED,
    "content-loaded": WaitUntil.CONTENT_LOADED,
    "load": WaitUntil.LOAD,
    "full-load": WaitUntil.LOAD,
    "networkidle": WaitUntil.NETWORK_IDLE,
    "network-idle": WaitUntil.NETWORK_IDLE,
}


# ---------------------------------------------------------------------------
# Step variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NavigateStep:
    url: str
    wait_until: WaitUntil = WaitUntil.LOAD
    timeout: int = NAVIGATE_TIMEOUT_MS
    action = "navigate"


@dataclass(frozen=True)
class ClickStep:
    selector: str
    timeout: int = ELEMENT_TIMEOUT_MS
    action = "click"


@dataclass(frozen=True)
class FillStep:
    selector: str
    value: str = ""
    timeout: int = ELEMENT_TIMEOUT_MS
    action = "fill"


@dataclass(frozen=True)
class WaitStep:
    ms: int | None = None
    selector: str | None = None
    selector_timeout: int = SELECTOR_WAIT_TIMEOUT_MS
    action = "wait"


@dataclass(frozen=True)
class SnapshotStep:
    action = "snapshot"


Step = Union[NavigateStep, ClickStep, FillStep, WaitStep, SnapshotStep]


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _require_str(raw: dict, key: str, action: str) -> str:
    value = raw.get(key)
    if value is None or value == "":
        raise StepValidationError(f"{key} required for {action}")
    if not isinstance(value, str):
        raise StepValidationError(f"{key} must be a string for {action}")
    return value


def check_ms(value: Any, key: str, minimum: int = 1, maximum: int = MAX_TIMEOUT_MS) -> int:
    """Validate a millisecond value from a request; Playwright treats 0 as "no timeout"."""
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise StepValidationError(f"{key} must be a number of milliseconds")
    if value < minimum:
        raise StepValidationError(f"{key} must be at least {minimum}")
    if value > maximum:
        raise StepValidationError(f"{key} must be at most {maximum}")
    return int(value)


def _optional_ms(
    raw: dict, key: str, default: int | None, minimum: int = 1, maximum: int = MAX_TIMEOUT_MS,
) -> int | None:
    value = raw.get(key)
    if value is None:
        return default
    return check_ms(value, key, minimum, maximum)


def step_action(raw: Any) -> str:
    """Best-effort action name for a raw step, used when parsing fails."""
    if isinstance(raw, dict):
        action = raw.get("action")
        if action is None:
            return "snapshot"
        return str(action)
    return "unknown"


def parse_step(raw: Any) -> Step:
    """Turn one raw step object into a typed Step.

    A step without an action is a snapshot.
    """
    if not isinstance(raw, dict):
        raise StepValidationError("step must be an object")

    action = raw.get("action") or "snapshot"

    if action == "navigate":
        timeout = _optional_ms(raw, "timeout", NAVIGATE_TIMEOUT_MS)
        return NavigateStep(
            url=_require_str(raw, "url", action),
            wait_until=WaitUntil.parse(raw.get("waitUntil")),
            timeout=timeout,
        )
    if action == "click":
        return ClickStep(
            selector=_require_str(raw, "selector", action),
            timeout=_optional_ms(raw, "timeout", ELEMENT_TIMEOUT_MS),
        )
    if action == "fill":
        value = raw.get("value")
        if value is None:
            value = ""
        elif not isinstance(value, str):
            value = str(value)
        return FillStep(
            selector=_require_str(raw, "selector", action),
            value=value,
            timeout=_optional_ms(raw, "timeout", ELEMENT_TIMEOUT_MS),
        )
    if action == "wait":
        ms = _optional_ms(raw, "ms", None, minimum=0, maximum=MAX_WAIT_MS)
        if ms is None:
            ms = _optional_ms(raw, "delay", None, minimum=0, maximum=MAX_WAIT_MS)
        selector = raw.get("selector")
        if selector is not None and not isinstance(selector, str):
            raise StepValidationError("selector must be a string for wait")
        if ms is None and not selector:
            raise StepValidationError("wait requires ms or selector")
        return WaitStep(
            ms=ms,
            selector=selector or None,
            selector_timeout=_optional_ms(raw, "selectorTimeout", SELECTOR_WAIT_TIMEOUT_MS),
        )
    if action == "snapshot":
        return SnapshotStep()
    raise StepValidationError(f"unknown action {action!r}")


# ---------------------------------------------------------------------------
# Run request
# ---------------------------------------------------------------------------


@dataclass
class RunRequest:
    session_id: str | None
    raw_steps: list[Any]


def parse_run_request(body: Any) -> RunRequest:
    """Validate the /run request shape. No step content is inspected here."""
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")

    steps = body.get("steps")
    if not isinstance(steps, list) or not steps:
        raise ValidationError(f"steps array required (1-{MAX_STEPS} items)", field="steps")
    if len(steps) > MAX_STEPS:
        raise ValidationError(f"max {MAX_STEPS} steps", field="steps")

    session_id = body.get("sessionId")
    if session_id is not None and (not isinstance(session_id, str) or not session_id):
        raise ValidationError("sessionId must be a non-empty string", field="sessionId")

    return RunRequest(session_id=session_id, raw_steps=steps)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class StepResult:
    index: int
    action: str
    success: bool
    screenshot: bytes | None = None
    error: str | None = None

    @property
    def screenshot_base64(self) -> str | None:
        if self.screenshot is None:
            return None
        return base64.b64encode(self.screenshot).decode("ascii")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "step",
            "stepIndex": self.index,
            "action": self.action,
            "screenshotBase64": self.screenshot_base64,
            "success": self.success,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class RunResult:
    session_id: str | None
    success: bool
    steps: list[StepResult] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "steps": [s.to_dict() for s in self.steps],
            "sessionId": self.session_id,
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_event(self) -> dict[str, Any]:
        return {"type": "done", **self.to_dict()}
