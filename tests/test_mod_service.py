import json
from zipfile import ZipFile

import pytest

from mbf_agent.api.messages import AppInfo, ModStatus
from mbf_agent.domain.mod_tag import MOD_TAG_PATH
from mbf_agent.service import mod_service

from .conftest import APK_ID, VERSION


def test_status_without_app(fake_device):
    assert mod_service.get_mod_status() == ModStatus(app_info=None)


def test_status_vanilla_app(fake_device):
    fake_device.install()

    status = mod_service.get_mod_status()

    assert status.app_info == AppInfo(version=VERSION, is_modded=False)


def test_patch_without_app_fails(fake_device):
    with pytest.raises(mod_service.AppNotInstalledError) as exc:
        mod_service.patch_app()

    assert exc.value.code == "app_not_installed"


def test_patch_refuses_modded_app(fake_device):
    fake_device.install({MOD_TAG_PATH: b'{"patcher_name": "x", "modloader_name": "Scotland2"}'})

    with pytest.raises(mod_service.AlreadyModdedError):
        mod_service.patch_app()


def test_patch_mods_reinstalls_and_restores(fake_device, tmp_path, monkeypatch):
    fake_device.install()
    obb_dir = tmp_path / "obb" / APK_ID
    obb_dir.mkdir(parents=True)
    (obb_dir / "main.1.obb").write_bytes(b"obb data")
    (obb_dir / "dlc_pack").write_bytes(b"dlc")
    data_dir = tmp_path / "android-data" / APK_ID / "files"
    data_dir.mkdir(parents=True)
    (data_dir / "PlayerData.dat").write_bytes(b"scores")
    libmain = tmp_path / "libmain.so"
    libmain.write_bytes(b"modded libmain")
    modloader = tmp_path / "libsl2.so"
    modloader.write_bytes(b"sl2")
    monkeypatch.setenv("MBF_LIBMAIN_PATH", str(libmain))
    monkeypatch.setenv("MBF_MODLOADER_PATH", str(modloader))
    monkeypatch.setenv("MBF_APK_SIGNER", "sign-apk --v2")

    status = mod_service.patch_app()

    assert status.app_info == AppInfo(version=VERSION, is_modded=True)
    commands = [c[:2] for c in fake_device.calls]
    assert commands.index(["sign-apk", "--v2"]) < commands.index(["pm", "uninstall"])
    assert commands.index(["pm", "uninstall"]) < commands.index(["pm", "install"])
    assert ["appops", "set", "--uid", APK_ID, "MANAGE_EXTERNAL_STORAGE", "allow"] in fake_device.calls

    with ZipFile(fake_device.installed) as z:
        assert z.read("lib/arm64-v8a/libmain.so") == b"modded libmain"
        assert json.loads(z.read(MOD_TAG_PATH))["patcher_name"] == "ModsBeforeFriday"

    assert (obb_dir / "main.1.obb").read_bytes() == b"obb data"
    assert (obb_dir / "dlc_pack").read_bytes() == b"dlc"
    assert (data_dir / "PlayerData.dat").read_bytes() == b"scores"
    assert (tmp_path / "ModData" / APK_ID / "Modloader" / "libsl2.so").read_bytes() == b"sl2"
    assert not (tmp_path / "tmp" / "mbf-tmp.apk").exists()
    assert not (tmp_path / "tmp" / "mbf-patched.apk").exists()


def test_patch_without_signer_or_libmain_still_tags(fake_device, caplog):
    fake_device.install()

    status = mod_service.patch_app()

    assert status.app_info.is_modded is True
    messages = {r.getMessage() for r in caplog.records}
    assert {"patch.unsigned", "patch.no_libmain"} <= messages


def test_install_failure_is_a_patch_error(fake_device):
    fake_device.install()
    fake_device.fail_on = "pm install"

    with pytest.raises(mod_service.PatchError) as exc:
        mod_service.patch_app()

    assert exc.value.code == "patch_failed"
    assert "pm install" in str(exc.value)


def test_save_obbs_skips_dlc(tmp_path):
    obb_dir = tmp_path / "obb"
    obb_dir.mkdir()
    (obb_dir / "a.obb").write_bytes(b"a")
    (obb_dir / "dlc").write_bytes(b"d")

    moved = mod_service.save_obbs(obb_dir, tmp_path / "backup")

    assert moved == [obb_dir / "a.obb"]
    assert not (obb_dir / "a.obb").exists()
    assert (tmp_path / "backup" / "a.obb").read_bytes() == b"a"
    assert (obb_dir / "dlc").exists()


def test_save_obbs_missing_dir(tmp_path):
    assert mod_service.save_obbs(tmp_path / "nope", tmp_path / "backup") == []


def test_failed_signing_puts_obbs_and_player_data_back(fake_device, tmp_path, monkeypatch):
    fake_device.install()
    obb_dir = tmp_path / "obb" / APK_ID
    obb_dir.mkdir(parents=True)
    (obb_dir / "main.1.obb").write_bytes(b"obb data")
    data_dir = tmp_path / "android-data" / APK_ID / "files"
    data_dir.mkdir(parents=True)
    (data_dir / "PlayerData.dat").write_bytes(b"scores")
    monkeypatch.setenv("MBF_APK_SIGNER", "sign-apk --v2")
    fake_device.fail_on = "sign-apk --v2"

    with pytest.raises(mod_service.PatchError):
        mod_service.patch_app()

    assert (obb_dir / "main.1.obb").read_bytes() == b"obb data"
    assert (data_dir / "PlayerData.dat").read_bytes() == b"scores"
    assert fake_device.installed.exists()
    assert ["pm", "uninstall", APK_ID] not in fake_device.calls


def test_missing_libmain_file_puts_obbs_back(fake_device, tmp_path, monkeypatch):
    fake_device.install()
    obb_dir = tmp_path / "obb" / APK_ID
    obb_dir.mkdir(parents=True)
    (obb_dir / "main.1.obb").write_bytes(b"obb data")
    monkeypatch.setenv("MBF_LIBMAIN_PATH", str(tmp_path / "missing-libmain.so"))

    with pytest.raises(mod_service.PatchError):
        mod_service.patch_app()

    assert (obb_dir / "main.1.obb").read_bytes() == b"obb data"
