"""FastAPI app factory: health endpoint plus the message route."""
from __future__ import annotations

import time
from collections.abc import Callable
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import router as api_router
from .domain.device import get_apk_id
from .logging_conf import get_logger, setup_logging

setup_logging()
logger = get_logger("agent")


def create_app() -> FastAPI:
    app = FastAPI(title="Mod Agent", version=__version__)

    @app.on_event("startup")
    async def _on_startup() -> None:
        logger.info("startup", extra={"event": "startup", "apk_id": get_apk_id()})

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        logger.info("shutdown", extra={"event": "shutdown"})

    @app.middleware("http")
    async def message_logger(request: Request, call_next: Callable[[Request], Response]):
        """Log one line per exchange: message type, outcome and latency.

        The message route stores the decoded ``type`` on request.state; health
        checks and rejected bodies log with message_type null. X-Request-ID is
        reused when sent, otherwise minted, and always echoed back.
        """
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        request.state.request_id = request_id
        start = time.perf_counter()

        def _fields(**more) -> dict:
            return {
                "request_id": request_id,
                "path": request.url.path,
                "message_type": getattr(request.state, "message_type", None),
                "elapsed_ms": round((time.perf_counter() - start) * 1000.0, 2),
                **more,
            }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("exchange.error", extra=_fields(event="exchange_error"))
            raise

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "exchange.end",
            extra=_fields(event="exchange_end", status_code=response.status_code),
        )
        return response

    @app.get("/health", summary="Liveness/readiness check")
    async def health() -> JSONResponse:
        return JSONResponse(content={"ok": True})

    app.include_router(api_router)

    return app


# `uvicorn mbf_agent.main:app --host 0.0.0.0 --port 8000`
app = create_app()
