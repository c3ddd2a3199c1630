from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from ..domain.apk import ApkReadError
from ..domain.device import DeviceCommandError
from ..logging_conf import get_logger
from ..service import mod_service
from .messages import (
    GetModStatus,
    MessageError,
    ModStatus,
    Patch,
    parse_request,
)

router = APIRouter()
logger = get_logger("api")

# Only one patch may touch the device at a time.
_patch_lock = asyncio.Lock()

_ERROR_STATUS = {
    mod_service.AppNotInstalledError: status.HTTP_404_NOT_FOUND,
    mod_service.AlreadyModdedError: status.HTTP_409_CONFLICT,
    mod_service.PatchError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error_code": code, "error_message": message},
    )


async def _patch() -> ModStatus:
    if _patch_lock.locked():
        raise _error(
            status.HTTP_409_CONFLICT, "patch_in_progress", "A patch is already running"
        )
    async with _patch_lock:
        try:
            return await run_in_threadpool(mod_service.patch_app)
        except mod_service.ModServiceError as e:
            code = _ERROR_STATUS.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
            raise _error(code, e.code, str(e))


@router.post(
    "/messages",
    response_model=ModStatus,
    summary="Handle a GetModStatus or Patch request",
)
async def handle_message(request: Request) -> ModStatus:
    """Decode one request message and answer it with a ModStatus.

    The raw body goes straight to parse_request so that bad JSON gets the same
    error detail as any other malformed message.
    """
    try:
        req = parse_request(await request.body())
    except MessageError as e:
        raise _error(status.HTTP_422_UNPROCESSABLE_ENTITY, e.code, str(e))

    request.state.message_type = req.type
    logger.info("message.received", extra={"event": "message_received", "type": req.type})
    try:
        if isinstance(req, GetModStatus):
            return await run_in_threadpool(mod_service.get_mod_status)
        if isinstance(req, Patch):
            return await _patch()
    except (DeviceCommandError, ApkReadError) as e:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, "device_unavailable", str(e))
    # parse_request only yields the variants above.
    raise AssertionError(f"unhandled request type {req.type}")
