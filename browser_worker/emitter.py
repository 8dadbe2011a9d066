"""Delivery of step results: one buffered JSON response or a server-sent event stream."""
from __future__ import annotations

import json
from typing import Any

import structlog
from aiohttp import web

from browser_worker.steps import RunResult, StepResult

log = structlog.get_logger(__name__)


def sse_event(data: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(data)}\n\n".encode()


def wants_stream(request: web.Request) -> bool:
    """?stream=1 or an event-stream Accept header selects streaming mode."""
    if request.query.get("stream", "").lower() in ("1", "true"):
        return True
    return request.headers.get("Accept", "") == "text/event-stream"


class BufferedEmitter:
    """Collects step results and answers with a single JSON body."""

    def __init__(self) -> None:
        self.results: list[StepResult] = []

    async def open(self) -> None:
        pass

    async def emit(self, result: StepResult) -> None:
        self.results.append(result)

    async def finish(self, run: RunResult) -> web.StreamResponse:
        status = 200 if run.success else 500
        return web.json_response(run.to_dict(), status=status)


class EventStreamEmitter:
    """Writes one event per step, then exactly one terminal "done" event.

    Writes are best-effort: once a write fails the client is treated as
    gone and the rest of the run completes without notifying it.
    """

    def __init__(self, request: web.Request) -> None:
        self.request = request
        self.response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        self.results: list[StepResult] = []
        self.disconnected = False
        self._finished = False

    async def open(self) -> None:
        await self.response.prepare(self.request)

    async def _write(self, data: dict[str, Any]) -> None:
        if self.disconnected:
            return
        try:
            await self.response.write(sse_event(data))
        except Exception as exc:
            self.disconnected = True
            log.info("event stream client disconnected", error=str(exc))

    async def emit(self, result: StepResult) -> None:
        self.results.append(result)
        await self._write(result.to_dict())

    async def finish(self, run: RunResult) -> web.StreamResponse:
        if self._finished:
            return self.response
        self._finished = True
        await self._write(run.to_event())
        if not self.disconnected:
            try:
                await self.response.write_eof()
            except Exception as exc:
                self.disconnected = True
                log.info("event stream close failed", error=str(exc))
        return self.response
