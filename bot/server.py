"""
HTTP surface: platform webhooks, scheduled-task trigger, CSV export,
per-platform stats, health and metrics.
"""
from __future__ import annotations

import json
import secrets
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from bot.context import AppContext
from core.errors import (
    AuthenticationError,
    BackupNotFound,
    BotBackendError,
    CryptoError,
    InvalidInput,
)
from core.types import ReportPeriod, to_iso, utc_now
from utils.logger import get_logger

LOGGER = get_logger(__name__)

ContextFactory = Callable[[], Awaitable[AppContext]]

WEBHOOK_PREFIX = "/webhooks/"


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def require_api_key(request: Request, context: AppContext = Depends(get_context)) -> str:
    supplied = request.headers.get("x-api-key") or ""
    expected = context.config.API_KEY
    if not expected or not secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return supplied


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidInput("Request body is not valid JSON") from exc


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(context_factory: Optional[ContextFactory] = None) -> FastAPI:
    factory = context_factory or AppContext.create

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.context = await factory()
        try:
            yield
        finally:
            await app.state.context.aclose()

    app = FastAPI(
        title="Multi-platform Bot Backend",
        description="Webhooks for Discord, Telegram and Meta plus backup and reporting tasks",
        version="1.0.0",
        lifespan=lifespan,
    )

    # -- error mapping --------------------------------------------------------

    @app.exception_handler(InvalidInput)
    async def on_invalid_input(request: Request, exc: InvalidInput):
        return _error(400, str(exc))

    @app.exception_handler(AuthenticationError)
    async def on_auth_error(request: Request, exc: AuthenticationError):
        return _error(403, str(exc))

    @app.exception_handler(BackupNotFound)
    async def on_backup_not_found(request: Request, exc: BackupNotFound):
        return _error(404, str(exc))

    @app.exception_handler(CryptoError)
    async def on_crypto_error(request: Request, exc: CryptoError):
        LOGGER.error(f"Backup artifact rejected on {request.url.path}: {exc}")
        return _error(500, f"Backup artifact is corrupted: {exc}")

    @app.exception_handler(BotBackendError)
    async def on_backend_error(request: Request, exc: BotBackendError):
        LOGGER.error(f"Request {request.method} {request.url.path} failed: {exc}", exc_info=exc)
        return _error(500, str(exc))

    # -- timing ---------------------------------------------------------------

    @app.middleware("http")
    async def track_webhook_timing(request: Request, call_next):
        path = request.url.path
        if not path.startswith(WEBHOOK_PREFIX):
            return await call_next(request)

        platform = path[len(WEBHOOK_PREFIX):].split("/", 1)[0]
        started = time.perf_counter()
        ok = False
        try:
            response = await call_next(request)
            ok = response.status_code < 500
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            request.app.state.context.tracker.record(platform, elapsed_ms, ok)

    # -- routes ---------------------------------------------------------------

    @app.get("/health")
    async def health(context: AppContext = Depends(get_context)):
        return {
            "status": "healthy",
            "timestamp": to_iso(utc_now()),
            "rateLimiter": context.rate_limiter.get_stats(),
        }

    @app.get("/metrics", dependencies=[Depends(require_api_key)])
    async def metrics(context: AppContext = Depends(get_context)):
        return context.tracker.report().to_item()

    @app.post("/webhooks/telegram")
    async def telegram_webhook(request: Request, context: AppContext = Depends(get_context)):
        secret = context.config.TELEGRAM_WEBHOOK_SECRET
        if secret:
            supplied = request.headers.get("X-Telegram-Bot-Api-Secret-Token") or ""
            if not secrets.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8")):
                raise AuthenticationError("Telegram secret token mismatch")
        await context.telegram.handle(await _json_body(request))
        return {"ok": True}

    @app.post("/webhooks/discord")
    async def discord_webhook(request: Request, context: AppContext = Depends(get_context)):
        response = await context.discord.handle(await _json_body(request))
        if response is None:
            return Response(status_code=204)
        return response

    @app.get("/webhooks/meta")
    async def meta_verify(
        mode: Optional[str] = Query(default=None, alias="hub.mode"),
        token: Optional[str] = Query(default=None, alias="hub.verify_token"),
        challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
        context: AppContext = Depends(get_context),
    ):
        return PlainTextResponse(context.meta.verify(mode, token, challenge))

    @app.post("/webhooks/meta")
    async def meta_webhook(request: Request, context: AppContext = Depends(get_context)):
        processed = await context.meta.handle(await _json_body(request))
        return {"success": True, "processed": processed}

    @app.get("/export", dependencies=[Depends(require_api_key)])
    async def export_csv(
        request: Request,
        platform: Optional[str] = None,
        start_date: Optional[str] = Query(default=None, alias="startDate"),
        end_date: Optional[str] = Query(default=None, alias="endDate"),
        context: AppContext = Depends(get_context),
    ):
        client = request.client.host if request.client else "unknown"
        if not context.rate_limiter.is_allowed(f"api:{client}", "export"):
            return _error(429, "Too many export requests, try again in a minute")
        result = await context.exporter.export(platform or "", start_date or "", end_date or "")
        return result.to_item()

    @app.post("/tasks/{task_type}", dependencies=[Depends(require_api_key)])
    async def run_task(
        task_type: str,
        notify: bool = Query(default=False, alias="notifyOnCompletion"),
        period: str = ReportPeriod.WEEKLY.value,
        context: AppContext = Depends(get_context),
    ):
        return await context.tasks.run_task(task_type, notify_on_completion=notify, period=period)

    @app.get("/stats/{platform}", dependencies=[Depends(require_api_key)])
    async def platform_stats(platform: str, days: int = 7, context: AppContext = Depends(get_context)):
        stats = await context.analytics.platform_stats_for(platform, days)
        return {"platform": platform, "days": days, **stats.to_item()}

    return app


__all__ = ["create_app", "get_context", "require_api_key"]
