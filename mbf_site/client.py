from __future__ import annotations

import asyncio
import time

import httpx

from mbf_agent.api.messages import (
    GetModStatus,
    Patch,
    Request,
    Response,
    dump_message,
    parse_response,
)
from mbf_agent.logging_conf import get_logger
from mbf_site.types import AgentRequestError, AgentUnavailableError

logger = get_logger("site.client")

MESSAGES_PATH = "/messages"


async def wait_for_health(
    base_url: str,
    timeout_s: float = 20.0,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Ping /health until it returns ok, or raise after `timeout_s`."""
    deadline = time.monotonic() + timeout_s
    async with httpx.AsyncClient(base_url=base_url, timeout=5.0, transport=transport) as client:
        while time.monotonic() < deadline:
            try:
                r = await client.get("/health")
                body = r.json() if r.status_code == 200 else None
                if isinstance(body, dict) and body.get("ok") is True:
                    logger.info("health.ok", extra={"event": "health_ok"})
                    return
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("health.wait", extra={"event": "health_wait", "error": str(e)})
            await asyncio.sleep(0.25)
    raise AgentUnavailableError("Agent health check did not pass within timeout")


def _rejection(r: httpx.Response) -> AgentRequestError:
    """Build an AgentRequestError from a 4xx body shaped {"detail": {...}}."""
    try:
        body = r.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict) and "error_code" in detail:
        return AgentRequestError(
            r.status_code, str(detail["error_code"]), str(detail.get("error_message", ""))
        )
    return AgentRequestError(r.status_code, "http_error", r.text)


async def send_request(
    base_url: str,
    request: Request,
    *,
    retries: int = 3,
    timeout_s: float = 600.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Response:
    """Send one request message and decode the agent's response.

    - Transport errors and 5xx answers are retried up to `retries` times
    - 4xx answers raise AgentRequestError immediately
    - A body that is not a valid response raises MalformedMessageError
    """
    body = dump_message(request)
    last_err: Exception | None = None
    for attempt in range(retries):
        try:
            async with httpx.AsyncClient(
                base_url=base_url, timeout=timeout_s, transport=transport
            ) as client:
                r = await client.post(
                    MESSAGES_PATH,
                    content=body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            last_err = e
        else:
            if r.status_code < 400:
                response = parse_response(r.content)
                logger.info(
                    "message.answered",
                    extra={
                        "event": "message_answered",
                        "request": request.type,
                        "response": response.type,
                        "attempt": attempt + 1,
                    },
                )
                return response
            if r.status_code < 500:
                raise _rejection(r)
            last_err = _rejection(r)

        logger.warning(
            "message.retry",
            extra={
                "event": "message_retry",
                "request": request.type,
                "attempt": attempt + 1,
                "error": str(last_err),
            },
        )
    raise AgentUnavailableError(str(last_err) if last_err else f"{request.type} failed")


async def get_mod_status(
    base_url: str, *, retries: int = 3, transport: httpx.AsyncBaseTransport | None = None
) -> Response:
    """Ask the agent for the app's current mod status."""
    return await send_request(base_url, GetModStatus(), retries=retries, transport=transport)


async def patch(base_url: str, *, transport: httpx.AsyncBaseTransport | None = None) -> Response:
    """Ask the agent to patch the app; sent once since patching is not idempotent."""
    return await send_request(base_url, Patch(), retries=1, transport=transport)
