"""Sequential step execution against a session's page."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar, assert_never

import structlog

from browser_worker.engine import PlaywrightEngine
from browser_worker.steps import (
    ClickStep,
    FillStep,
    NavigateStep,
    SnapshotStep,
    Step,
    StepResult,
    WaitStep,
    parse_step,
    step_action,
)

log = structlog.get_logger(__name__)

T = TypeVar("T")

Emit = Callable[[StepResult], Awaitable[None]]


async def best_effort(aw: Awaitable[T], default: T | None = None) -> T | None:
    """Await a secondary operation, discarding any failure."""
    try:
        return await aw
    except Exception as exc:
        log.debug("best-effort operation failed", error=str(exc))
        return default


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class StepExecutor:
    """Runs steps one at a time, recording one StepResult per input step.

    A failing step never stops the run: its error is recorded and the next
    step executes against whatever state the page is in.
    """

    def __init__(self, engine: PlaywrightEngine) -> None:
        self.engine = engine

    async def run(self, page: Any, raw_steps: list[Any], emit: Emit) -> list[StepResult]:
        results: list[StepResult] = []
        for index, raw in enumerate(raw_steps):
            result = await self._run_one(page, index, raw)
            results.append(result)
            await emit(result)
        return results

    async def _run_one(self, page: Any, index: int, raw: Any) -> StepResult:
        action = step_action(raw)
        try:
            step = parse_step(raw)
            action = step.action
            await self._dispatch(page, step)
            screenshot = await self.engine.screenshot(page)
        except Exception as exc:
            error = _error_message(exc)
            log.info("step failed", step=index, action=action, error=error)
            screenshot = await best_effort(self.engine.screenshot(page))
            return StepResult(
                index=index, action=action, success=False,
                screenshot=screenshot, error=error,
            )
        return StepResult(index=index, action=action, success=True, screenshot=screenshot)

    async def _dispatch(self, page: Any, step: Step) -> None:
        engine = self.engine
        if isinstance(step, NavigateStep):
            await engine.goto(page, step.url, step.wait_until.value, step.timeout)
        elif isinstance(step, ClickStep):
            await engine.click(page, step.selector, step.timeout)
        elif isinstance(step, FillStep):
            await engine.fill(page, step.selector, step.value, step.timeout)
        elif isinstance(step, WaitStep):
            if step.ms is not None:
                await engine.wait(page, step.ms)
            if step.selector is not None:
                await engine.wait_for_selector(page, step.selector, step.selector_timeout)
        elif isinstance(step, SnapshotStep):
            pass  # artifact only
        else:
            assert_never(step)
