from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.api.routes import router
from backend.app.dependencies import get_dispatcher, get_settings, get_telemetry
from backend.app.logging_config import configure_application_logging
from backend.app.services.scheduler_service import SchedulerService


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    scheduler: SchedulerService | None = None

    if settings.scheduler_enabled:
        scheduler = SchedulerService(
            dispatcher=get_dispatcher(),
            interval_seconds=settings.token_check_interval_seconds,
            telemetry=get_telemetry(),
            lock_path=settings.data_dir / "scheduler.lock",
        )
        scheduler.start()

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


def _resolve_request_id(request: Request) -> str:
    incoming = (request.headers.get("X-Request-ID") or "").strip()
    return incoming or str(uuid4())


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)


def create_app() -> FastAPI:
    app = FastAPI(title="YouTube Field API", version="0.1.0", lifespan=app_lifespan)

    @app.middleware("http")
    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        request_id = _resolve_request_id(request)
        request_attrs = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit("http.request.start", **request_attrs)
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                **request_attrs,
                duration_ms=_elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            reset_contextvars(**context_tokens)

        response.headers["X-Request-ID"] = request_id
        telemetry.emit(
            "http.request.finish",
            **request_attrs,
            duration_ms=_elapsed_ms(started_at),
            status_code=response.status_code,
        )
        return response

    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
