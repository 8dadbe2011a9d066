"""Async HTTP browser worker (aiohttp).

Run as: python -m browser_worker
"""
from __future__ import annotations

import asyncio
import json
import logging
import secrets
import sys
from typing import Any

import structlog
from aiohttp import web

from browser_worker import config as config_module
from browser_worker.config import Config
from browser_worker.control import DirectControl
from browser_worker.emitter import BufferedEmitter, EventStreamEmitter, wants_stream
from browser_worker.engine import PlaywrightEngine
from browser_worker.errors import AuthError, BrowserWorkerError, EngineFatalError, ValidationError
from browser_worker.executor import StepExecutor
from browser_worker.sessions import IdleReaper, SessionRegistry
from browser_worker.steps import RunRequest, RunResult, parse_run_request

log = structlog.get_logger(__name__)

SERVICE_NAME = "browser-worker"

CONFIG_KEY = web.AppKey("config", Config)
ENGINE_KEY = web.AppKey("engine", PlaywrightEngine)
REGISTRY_KEY = web.AppKey("registry", SessionRegistry)
REAPER_KEY = web.AppKey("reaper", IdleReaper)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Authorization, Content-Type, Accept",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
}

# Routes reachable without a bearer token
_PUBLIC_PATHS = frozenset({"/health"})


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def configure_logging(level: str = "INFO") -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def check_auth(request: web.Request, secret: str | None) -> None:
    """Raise AuthError unless the request carries `Authorization: Bearer <secret>`."""
    if not secret:
        return
    auth = request.headers.get("Authorization", "")
    token = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
    if not token or not secrets.compare_digest(token.encode(), secret.encode()):
        log.info("auth rejected", path=request.path, remote=request.remote)
        raise AuthError()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _json_body(request: web.Request) -> Any:
    raw = await request.read()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw.decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"invalid JSON body: {exc.msg}") from None
    except UnicodeDecodeError:
        raise ValidationError("invalid JSON body: not valid UTF-8") from None
    except RecursionError:
        raise ValidationError("invalid JSON body: nested too deeply") from None


async def _add_cors_headers(_request: web.Request, response: web.StreamResponse) -> None:
    for name, value in _CORS_HEADERS.items():
        response.headers.setdefault(name, value)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def create_app(
    cfg: Config,
    engine: PlaywrightEngine | None = None,
    registry: SessionRegistry | None = None,
) -> web.Application:
    """Build the aiohttp application with all routes."""
    if engine is None:
        engine = PlaywrightEngine(cfg)
    if registry is None:
        registry = SessionRegistry(engine)
    executor = StepExecutor(engine)
    control = DirectControl(engine)
    reaper = IdleReaper(registry, ttl=cfg.session_ttl, interval=cfg.sweep_interval_s)

    @web.middleware
    async def preflight_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        if request.method == "OPTIONS":
            return web.Response(status=204)
        return await handler(request)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            return await handler(request)
        except BrowserWorkerError as exc:
            return web.json_response(exc.to_dict(), status=exc.status)

    @web.middleware
    async def auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        if request.path not in _PUBLIC_PATHS:
            check_auth(request, cfg.secret)
        return await handler(request)

    # -- Handlers --------------------------------------------------------------

    async def health(_request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "service": SERVICE_NAME, "sessions": len(registry)})

    async def execute_run(
        run_request: RunRequest,
        emitter: BufferedEmitter | EventStreamEmitter,
    ) -> web.StreamResponse:
        await emitter.open()
        session = None
        error: EngineFatalError | None = None
        try:
            async with registry.use(run_request.session_id, create=True) as session:
                log.info("run started", session_id=session.id, steps=len(run_request.raw_steps))
                await executor.run(session.page, run_request.raw_steps, emitter.emit)
        except EngineFatalError as exc:
            error = exc
        except Exception as exc:
            log.exception("run aborted", session_id=session.id if session else None)
            error = EngineFatalError(str(exc) or exc.__class__.__name__)
            if session is not None:
                # Page state is unknown after an error escaped the loop
                await registry.close(session.id)

        session_id = session.id if session is not None else run_request.session_id
        run = RunResult(
            session_id=session_id,
            success=error is None,
            steps=list(emitter.results),
            error=error.message if error else None,
        )
        log.info(
            "run finished",
            session_id=session_id,
            success=run.success,
            failed_steps=sum(1 for s in run.steps if not s.success),
        )
        return await emitter.finish(run)

    async def run(request: web.Request) -> web.StreamResponse:
        run_request = parse_run_request(await _json_body(request))
        if wants_stream(request):
            emitter: BufferedEmitter | EventStreamEmitter = EventStreamEmitter(request)
        else:
            emitter = BufferedEmitter()
        # Shielded so a client disconnect does not cancel in-flight automation
        task = asyncio.ensure_future(execute_run(run_request, emitter))
        return await asyncio.shield(task)

    async def close_session(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        closed = await registry.close(session_id)
        return web.json_response({"success": True, "closed": closed})

    async def session_screenshot(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        async with registry.use(session_id) as session:
            state = await control.snapshot(session.page)
        return web.json_response({"success": True, **state})

    async def session_info(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        async with registry.use(session_id) as session:
            state = await control.info(session.page)
        return web.json_response({"success": True, "sessionId": session_id, **state})

    async def session_interact(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        body = await _json_body(request)
        async with registry.use(session_id) as session:
            state = await control.interact(session.page, body)
        return web.json_response({"success": True, **state})

    # -- Lifecycle -------------------------------------------------------------

    async def on_startup(_app: web.Application) -> None:
        await engine.start()
        reaper.start()
        log.info("browser worker started", auth=cfg.auth_enabled, ttl_ms=cfg.session_ttl_ms)

    async def on_cleanup(_app: web.Application) -> None:
        await reaper.stop()
        closed = await registry.close_all()
        await engine.stop()
        log.info("browser worker stopped", sessions_closed=closed)

    app = web.Application(
        client_max_size=cfg.max_body_bytes,
        middlewares=[preflight_middleware, error_middleware, auth_middleware],
    )
    app[CONFIG_KEY] = cfg
    app[ENGINE_KEY] = engine
    app[REGISTRY_KEY] = registry
    app[REAPER_KEY] = reaper

    app.on_response_prepare.append(_add_cors_headers)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/health", health)
    app.router.add_post("/run", run)
    app.router.add_delete("/session/{session_id}", close_session)
    app.router.add_get("/session/{session_id}/screenshot", session_screenshot)
    app.router.add_get("/session/{session_id}/info", session_info)
    app.router.add_post("/session/{session_id}/interact", session_interact)
    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    try:
        cfg = config_module.load()
    except (ValueError, OSError) as exc:
        print(f"browser-worker: config error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(cfg.log_level)
    app = create_app(cfg)

    log.info("listening", host=cfg.host, port=cfg.port)
    web.run_app(app, host=cfg.host, port=cfg.port, print=None)


if __name__ == "__main__":
    main()
