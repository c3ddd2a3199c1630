from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path

from ..logging_conf import get_logger

__all__ = [
    "DEFAULT_APK_ID",
    "DeviceCommandError",
    "get_apk_id",
    "get_temp_path",
    "get_obb_path",
    "get_data_path",
    "get_modloader_dir",
    "get_libmain_source",
    "get_modloader_source",
    "get_signer_command",
    "run_command",
]

DEFAULT_APK_ID = "com.beatgames.beatsaber"

logger = get_logger("domain.device")


class DeviceCommandError(RuntimeError):
    """A device tool (pm, dumpsys, appops, signer) was missing or failed."""

    def __init__(self, args: Sequence[str], message: str) -> None:
        super().__init__(f"{shlex.join(args)}: {message}")
        self.args_list = list(args)


# ------------------------
# Settings
# ------------------------

def get_apk_id() -> str:
    return os.getenv("MBF_APK_ID", DEFAULT_APK_ID)


def get_temp_path() -> Path:
    return Path(os.getenv("MBF_TEMP_PATH", "/data/local/tmp/mbf-tmp"))


def get_obb_path(apk_id: str) -> Path:
    """Directory holding the app's OBB files."""
    return Path(os.getenv("MBF_OBB_ROOT", "/sdcard/Android/obb")) / apk_id


def get_data_path(apk_id: str) -> Path:
    """Directory holding the app's files/ (PlayerData.dat lives there)."""
    return Path(os.getenv("MBF_DATA_ROOT", "/sdcard/Android/data")) / apk_id / "files"


def get_modloader_dir(apk_id: str) -> Path:
    return Path(os.getenv("MBF_MODDATA_ROOT", "/sdcard/ModData")) / apk_id / "Modloader"


def _optional_path(var: str) -> Path | None:
    raw = os.getenv(var)
    return Path(raw) if raw else None


def get_libmain_source() -> Path | None:
    """Replacement libmain.so to inject into the APK, if configured."""
    return _optional_path("MBF_LIBMAIN_PATH")


def get_modloader_source() -> Path | None:
    """Modloader binary to install alongside the patched app, if configured."""
    return _optional_path("MBF_MODLOADER_PATH")


def get_signer_command() -> list[str] | None:
    """Command used to sign the patched APK; the APK path is appended."""
    raw = os.getenv("MBF_APK_SIGNER")
    return shlex.split(raw) if raw else None


# ------------------------
# Commands
# ------------------------

def run_command(args: Sequence[str], *, check: bool = True) -> str:
    """Run a device tool and return its stdout.

    With check=False a non-zero exit is not an error and stdout is returned
    as-is (`pm path` exits 1 with no output for a missing package).

    Raises:
        DeviceCommandError: if the binary is missing, or exits non-zero and
            `check` is set.
    """
    logger.debug("device.command", extra={"event": "device_command", "argv": list(args)})
    try:
        proc = subprocess.run(list(args), capture_output=True, text=True, check=False)
    except OSError as e:
        raise DeviceCommandError(args, str(e)) from e
    if check and proc.returncode != 0:
        raise DeviceCommandError(
            args, f"exit {proc.returncode}: {proc.stderr.strip() or proc.stdout.strip()}"
        )
    return proc.stdout
