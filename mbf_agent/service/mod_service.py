from __future__ import annotations

import shutil
from pathlib import Path
from zipfile import BadZipFile

from ..api.messages import AppInfo, ModStatus
from ..domain import device
from ..domain.apk import InstalledApp, inspect_installed, rewrite_apk
from ..domain.mod_tag import MOD_TAG_PATH, default_tag, encode_tag
from ..logging_conf import get_logger

logger = get_logger("service.mod")

LIB_MAIN_PATH = "lib/arm64-v8a/libmain.so"
MODLOADER_NAME = "libsl2.so"
PLAYER_DATA_NAME = "PlayerData.dat"


# ------------------------
# Errors
# ------------------------
class ModServiceError(RuntimeError):
    """Base class for failures answering a request; `code` is a stable machine code."""

    code: str = "mod_service_error"


class AppNotInstalledError(ModServiceError):
    code = "app_not_installed"


class AlreadyModdedError(ModServiceError):
    code = "already_modded"


class PatchError(ModServiceError):
    code = "patch_failed"


# ------------------------
# Use-cases
# ------------------------

def to_app_info(app: InstalledApp | None) -> AppInfo | None:
    if app is None:
        return None
    return AppInfo(version=app.version, is_modded=app.is_modded)


def get_mod_status() -> ModStatus:
    """Describe the installed target app, or report that none is installed."""
    apk_id = device.get_apk_id()
    app = inspect_installed(apk_id)
    logger.info(
        "status.read",
        extra={
            "event": "status_read",
            "apk_id": apk_id,
            "installed": app is not None,
            "version": app.version if app else None,
            "modloader": app.modloader.value if app and app.modloader else None,
        },
    )
    return ModStatus(app_info=to_app_info(app))


def patch_app() -> ModStatus:
    """Patch the installed app and return its refreshed status.

    Raises:
        AppNotInstalledError: no target app on the device.
        AlreadyModdedError: the app already carries a modloader.
        PatchError: a device command or file operation failed mid-way.
    """
    apk_id = device.get_apk_id()
    app = inspect_installed(apk_id)
    if app is None:
        raise AppNotInstalledError(f"{apk_id} is not installed")
    if app.is_modded:
        raise AlreadyModdedError(f"{apk_id} {app.version} is already modded")

    logger.info(
        "patch.start",
        extra={"event": "patch_start", "apk_id": apk_id, "version": app.version},
    )
    try:
        _mod_current_apk(apk_id, app)
    except (device.DeviceCommandError, OSError, BadZipFile) as e:
        logger.exception("patch.error", extra={"event": "patch_error", "apk_id": apk_id})
        raise PatchError(str(e)) from e

    status = get_mod_status()
    logger.info(
        "patch.done",
        extra={
            "event": "patch_done",
            "apk_id": apk_id,
            "is_modded": bool(status.app_info and status.app_info.is_modded),
        },
    )
    return status


# ------------------------
# Patch steps
# ------------------------

def _mod_current_apk(apk_id: str, app: InstalledApp) -> None:
    temp_path = device.get_temp_path()
    temp_path.mkdir(parents=True, exist_ok=True)

    temp_apk = temp_path / "mbf-tmp.apk"
    patched_apk = temp_path / "mbf-patched.apk"
    logger.info("patch.copy_apk", extra={"event": "patch_copy_apk", "to": str(temp_apk)})
    shutil.copyfile(app.path, temp_apk)

    player_data = device.get_data_path(apk_id) / PLAYER_DATA_NAME
    player_data_backup = temp_path / f"{PLAYER_DATA_NAME}.backup"
    backed_up_data = player_data.exists()
    if backed_up_data:
        logger.info("patch.backup_player_data", extra={"event": "patch_backup_player_data"})
        shutil.copyfile(player_data, player_data_backup)

    obb_dir = device.get_obb_path(apk_id)
    obb_backup_dir = temp_path / "obbs"
    obb_backups = save_obbs(obb_dir, obb_backup_dir)

    try:
        patch_apk(temp_apk, patched_apk)
        reinstall_modded_app(apk_id, patched_apk)
    finally:
        # Also on failure, so the still-installed app keeps its OBBs.
        restore_obbs(obb_dir, obb_backup_dir, obb_backups)
        if backed_up_data:
            logger.info("patch.restore_player_data", extra={"event": "patch_restore_player_data"})
            player_data.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(player_data_backup, player_data)

    install_modloader(apk_id)
    temp_apk.unlink(missing_ok=True)
    patched_apk.unlink(missing_ok=True)


def save_obbs(obb_dir: Path, backup_dir: Path) -> list[Path]:
    """Move the app's .obb files to `backup_dir`; return their original paths.

    Only *.obb files are moved; extension-less DLC files stay put.
    """
    if not obb_dir.is_dir():
        return []
    backup_dir.mkdir(parents=True, exist_ok=True)
    moved: list[Path] = []
    for path in sorted(obb_dir.iterdir()):
        if path.is_file() and path.suffix == ".obb":
            # Copy + delete: obb and temp dirs sit on different mounts.
            shutil.copyfile(path, backup_dir / path.name)
            path.unlink()
            moved.append(path)
    logger.info("patch.save_obbs", extra={"event": "patch_save_obbs", "count": len(moved)})
    return moved


def restore_obbs(obb_dir: Path, backup_dir: Path, originals: list[Path]) -> None:
    """Copy backed-up OBBs back into `obb_dir`, creating it if needed."""
    if not originals:
        return
    obb_dir.mkdir(parents=True, exist_ok=True)
    for original in originals:
        backup = backup_dir / original.name
        logger.info("patch.restore_obb", extra={"event": "patch_restore_obb", "file": original.name})
        shutil.copyfile(backup, obb_dir / original.name)
        backup.unlink()


def patch_apk(src: Path, dst: Path) -> None:
    """Write the patched APK: mod tag, optional libmain, then sign."""
    replacements: dict[str, bytes] = {MOD_TAG_PATH: encode_tag(default_tag())}
    libmain = device.get_libmain_source()
    if libmain is not None:
        replacements[LIB_MAIN_PATH] = libmain.read_bytes()
    else:
        logger.warning("patch.no_libmain", extra={"event": "patch_no_libmain"})

    rewrite_apk(src, dst, replacements)

    signer = device.get_signer_command()
    if signer is None:
        logger.warning("patch.unsigned", extra={"event": "patch_unsigned", "apk": str(dst)})
        return
    device.run_command([*signer, str(dst)])


def reinstall_modded_app(apk_id: str, apk_path: Path) -> None:
    logger.info("patch.reinstall", extra={"event": "patch_reinstall", "apk_id": apk_id})
    device.run_command(["pm", "uninstall", apk_id])
    device.run_command(["pm", "install", str(apk_path)])
    device.run_command(["appops", "set", "--uid", apk_id, "MANAGE_EXTERNAL_STORAGE", "allow"])


def install_modloader(apk_id: str) -> Path | None:
    """Copy the configured modloader into the app's ModData directory."""
    source = device.get_modloader_source()
    if source is None:
        return None
    target_dir = device.get_modloader_dir(apk_id)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / MODLOADER_NAME
    logger.info("patch.install_modloader", extra={"event": "patch_install_modloader", "to": str(target)})
    shutil.copyfile(source, target)
    return target
