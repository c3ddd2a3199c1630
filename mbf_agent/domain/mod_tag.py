from __future__ import annotations

import json
from enum import Enum
from typing import Optional
from zipfile import ZipFile

from pydantic import BaseModel, ValidationError

from .. import __version__
from ..logging_conf import get_logger

__all__ = [
    "MOD_TAG_PATH",
    "PATCHER_NAME",
    "ModLoader",
    "ModTag",
    "default_tag",
    "encode_tag",
    "get_modloader_installed",
]

# Written at the root of every patched APK.
MOD_TAG_PATH = "modded.json"
PATCHER_NAME = "ModsBeforeFriday"

logger = get_logger("domain.mod_tag")


class ModLoader(str, Enum):
    quest_loader = "QuestLoader"
    scotland2 = "Scotland2"
    unknown = "Unknown"


class ModTag(BaseModel):
    """Contents of ``modded.json``, shared by the patchers in the ecosystem."""

    patcher_name: str
    patcher_version: Optional[str] = None
    modloader_name: str
    modloader_version: Optional[str] = None


def default_tag() -> ModTag:
    """The tag this agent writes when it patches an APK."""
    return ModTag(
        patcher_name=PATCHER_NAME,
        patcher_version=__version__,
        modloader_name=ModLoader.scotland2.value,
        modloader_version=None,
    )


def encode_tag(tag: ModTag) -> bytes:
    return json.dumps(tag.model_dump(), indent=2).encode("utf-8")


def _loader_from_name(name: str) -> ModLoader:
    lowered = name.lower()
    for loader in (ModLoader.quest_loader, ModLoader.scotland2):
        if lowered == loader.value.lower():
            return loader
    return ModLoader.unknown


def get_modloader_installed(apk: ZipFile) -> ModLoader | None:
    """Detect which modloader (if any) an APK was patched with.

    - A readable mod tag names the loader (case-insensitive).
    - An unreadable tag, or no tag but an entry with "modded" in its name,
      means the APK is modded with an unknown loader.
    - Otherwise the APK is vanilla and None is returned.
    """
    names = apk.namelist()
    if MOD_TAG_PATH in names:
        raw = apk.read(MOD_TAG_PATH)
        try:
            tag = ModTag.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "mod_tag.invalid",
                extra={"event": "mod_tag_invalid", "error": str(e)},
            )
            return ModLoader.unknown
        return _loader_from_name(tag.modloader_name)

    if any("modded" in name for name in names):
        return ModLoader.unknown
    return None
