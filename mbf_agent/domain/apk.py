from __future__ import annotations

import re
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from zipfile import ZIP_DEFLATED, ZIP_STORED, BadZipFile, ZipFile, ZipInfo

from .device import run_command
from .mod_tag import ModLoader, get_modloader_installed

__all__ = [
    "STORED_ALIGNMENT",
    "ApkReadError",
    "InstalledApp",
    "find_apk_path",
    "read_version",
    "inspect_installed",
    "is_signature_entry",
    "rewrite_apk",
]

_VERSION_RE = re.compile(r"^\s*versionName=(\S+)\s*$", re.MULTILINE)
_SIGNATURE_SUFFIXES = (".SF", ".RSA", ".DSA", ".EC")
_LOCAL_HEADER_SIZE = 30
STORED_ALIGNMENT = 4


class ApkReadError(RuntimeError):
    """The installed APK exists but could not be read as a zip."""


@dataclass(frozen=True)
class InstalledApp:
    """The target app as found on the device."""

    path: Path
    version: str
    modloader: ModLoader | None

    @property
    def is_modded(self) -> bool:
        return self.modloader is not None


def find_apk_path(apk_id: str) -> Path | None:
    """Return the installed base APK for `apk_id`, or None if not installed.

    `pm path` prints one ``package:<path>`` line per split; the base APK is
    the one named base.apk (falling back to the first line). For a missing
    package it prints nothing and exits 1.
    """
    out = run_command(["pm", "path", apk_id], check=False)
    paths = [
        line.split(":", 1)[1].strip()
        for line in out.splitlines()
        if line.startswith("package:")
    ]
    if not paths:
        return None
    for p in paths:
        if p.endswith("/base.apk"):
            return Path(p)
    return Path(paths[0])


def read_version(apk_id: str) -> str | None:
    """Parse the installed versionName from `dumpsys package`."""
    out = run_command(["dumpsys", "package", apk_id])
    match = _VERSION_RE.search(out)
    return match.group(1) if match else None


def inspect_installed(apk_id: str) -> InstalledApp | None:
    """Locate the app, read its version and detect its modloader.

    Raises:
        ApkReadError: if the installed APK cannot be read as a zip.
    """
    path = find_apk_path(apk_id)
    if path is None:
        return None

    version = read_version(apk_id)
    if version is None:
        # Installed but the package manager no longer knows it (mid-reinstall).
        return None

    try:
        with ZipFile(path) as apk:
            modloader = get_modloader_installed(apk)
    except FileNotFoundError:
        # Removed between `pm path` and the read (a patch is reinstalling it).
        return None
    except (OSError, BadZipFile) as e:
        raise ApkReadError(f"{path}: {e}") from e
    return InstalledApp(path=path, version=version, modloader=modloader)


def is_signature_entry(name: str) -> bool:
    """True for JAR-signature files under META-INF that must go before re-signing."""
    if not name.startswith("META-INF/"):
        return False
    return name == "META-INF/MANIFEST.MF" or name.upper().endswith(_SIGNATURE_SUFFIXES)


def _alignment_padding(header_offset: int, filename: str) -> bytes:
    """Zero bytes for the local extra field so the entry's data starts aligned."""
    data_offset = header_offset + _LOCAL_HEADER_SIZE + len(filename.encode("utf-8"))
    return b"\0" * (-data_offset % STORED_ALIGNMENT)


def rewrite_apk(src: Path, dst: Path, replacements: Mapping[str, bytes]) -> None:
    """Copy `src` to `dst` entry by entry, replacing/adding `replacements`.

    Stored entries are padded to 4-byte boundaries the way zipalign does,
    which `pm install` requires for resources.arsc on API 30+. Old signature
    files are dropped; the output must be signed again before it can be
    installed.
    """
    if src.resolve() == dst.resolve():
        raise ValueError("rewrite_apk needs distinct source and destination")

    tmp = dst.with_suffix(dst.suffix + ".part")
    try:
        with ZipFile(src) as zin, ZipFile(tmp, "w") as zout:
            for info in zin.infolist():
                if info.filename in replacements or is_signature_entry(info.filename):
                    continue
                # Keep each entry's compression; resources.arsc must stay stored.
                out_info = ZipInfo(info.filename, date_time=info.date_time)
                out_info.compress_type = info.compress_type
                out_info.external_attr = info.external_attr
                out_info.file_size = info.file_size
                if info.compress_type == ZIP_STORED:
                    out_info.extra = _alignment_padding(zout.start_dir, out_info.filename)
                with zin.open(info) as fin, zout.open(out_info, "w") as fout:
                    shutil.copyfileobj(fin, fout)
            for name, data in replacements.items():
                zout.writestr(name, data, compress_type=ZIP_DEFLATED)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
    tmp.replace(dst)
