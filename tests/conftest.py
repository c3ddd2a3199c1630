from __future__ import annotations

import shutil
from collections.abc import Sequence
from pathlib import Path
from zipfile import ZIP_STORED, ZipFile

import pytest

from mbf_agent.domain import apk as apk_module
from mbf_agent.domain import device

APK_ID = "com.example.game"
VERSION = "1.28.0_4124311467"


def make_apk(path: Path, extra: dict[str, bytes] | None = None) -> Path:
    """Write a small zip laid out like an APK."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with ZipFile(path, "w") as z:
        z.writestr("AndroidManifest.xml", b"<manifest/>")
        z.writestr("classes.dex", b"dex\n035")
        z.writestr("resources.arsc", b"arsc", compress_type=ZIP_STORED)
        z.writestr("lib/arm64-v8a/libmain.so", b"vanilla libmain")
        z.writestr("META-INF/MANIFEST.MF", b"Manifest-Version: 1.0\n")
        z.writestr("META-INF/CERT.SF", b"sig")
        z.writestr("META-INF/CERT.RSA", b"rsa")
        for name, data in (extra or {}).items():
            z.writestr(name, data)
    return path


class FakeDevice:
    """Stands in for pm/dumpsys/appops/signer, keeping an 'installed' APK on disk."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.installed: Path | None = None
        self.version: str = VERSION
        self.calls: list[list[str]] = []
        self.fail_on: str | None = None

    def install(self, extra: dict[str, bytes] | None = None) -> Path:
        self.installed = make_apk(self.root / "data" / "app" / APK_ID / "base.apk", extra)
        return self.installed

    def __call__(self, args: Sequence[str], *, check: bool = True) -> str:
        args = list(args)
        self.calls.append(args)
        if self.fail_on and args[:2] == self.fail_on.split():
            raise device.DeviceCommandError(args, "exit 1: Failure")
        match args:
            case ["pm", "path", _]:
                if self.installed:
                    return f"package:{self.installed}\n"
                # Real pm exits 1 with no output for an unknown package.
                if check:
                    raise device.DeviceCommandError(args, "exit 1: ")
                return ""
            case ["dumpsys", "package", _]:
                if not self.installed:
                    return ""
                return f"Packages:\n  Package [{APK_ID}]\n    versionCode=1\n    versionName={self.version}\n"
            case ["pm", "uninstall", _]:
                assert self.installed is not None
                self.installed.unlink()
                return "Success\n"
            case ["pm", "install", src]:
                target = self.root / "data" / "app" / APK_ID / "base.apk"
                shutil.copyfile(src, target)
                self.installed = target
                return "Success\n"
            case ["appops", *_]:
                return ""
            case ["sign-apk", *_]:
                return ""
        raise AssertionError(f"unexpected command {args}")


@pytest.fixture
def fake_device(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeDevice:
    fake = FakeDevice(tmp_path)
    monkeypatch.setattr(device, "run_command", fake)
    monkeypatch.setattr(apk_module, "run_command", fake)

    monkeypatch.setenv("MBF_APK_ID", APK_ID)
    monkeypatch.setenv("MBF_TEMP_PATH", str(tmp_path / "tmp"))
    monkeypatch.setenv("MBF_OBB_ROOT", str(tmp_path / "obb"))
    monkeypatch.setenv("MBF_DATA_ROOT", str(tmp_path / "android-data"))
    monkeypatch.setenv("MBF_MODDATA_ROOT", str(tmp_path / "ModData"))
    for var in ("MBF_LIBMAIN_PATH", "MBF_MODLOADER_PATH", "MBF_APK_SIGNER"):
        monkeypatch.delenv(var, raising=False)
    return fake
