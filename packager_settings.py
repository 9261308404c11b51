"""
Packager configuration.

Settings are read from a JSON file and can be overridden from the command
line. Only ``game_root`` is required:

{
    "game_root": "C:/Games/Grand Theft Auto V",
    "name_map": "namemap.json",
    "own_dlc_name": "oivpack",
    "metadata": {"name": "Merged Mods", "author": "me"}
}

Directory layout under the game root (everything the packager writes lives
below ``mods/``, never in the game's own files):

    mods/
    ├── source/content/          <- package content root
    │   ├── <mod>/...            <- one sanitized folder per deployed mod
    │   ├── <pkg>.oiv/...        <- .oiv packages extracted for merging
    │   ├── assembly.xml         <- master manifest
    │   └── <package>.oiv        <- final package handed to OpenIV
    └── update/x64/dlcpacks/     <- DLC mods, registered in dlclist.xml

Every ``source`` in the master manifest is relative to ``source/content``,
which becomes ``content/`` inside the final package.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from oiv_manifest import ASSEMBLY_FILENAME, DEFAULT_ARCHIVE_TYPE

ModType = Literal["default", "asi", "dlc"]

_SANITIZE_RE = re.compile(r"[._\- ]")

_log = logging.getLogger(__name__)


def sanitize_mod_name(name: str) -> str:
    """Folder name a mod is deployed under; OpenIV chokes on dots and spaces."""
    return _SANITIZE_RE.sub("", name)


class PackageMetadata(BaseModel):
    name: str = "Merged Mods"
    author: str = "oivpack"
    version_major: int = Field(default=1, ge=0)
    version_minor: int = Field(default=0, ge=0)
    description: str | None = None


class PackagerSettings(BaseModel):
    game_root: Path
    name_map: Path | None = None
    archive_type: str = DEFAULT_ARCHIVE_TYPE
    own_dlc_name: str = "oivpack"
    package_filename: str = "oivpack.oiv"
    metadata: PackageMetadata = Field(default_factory=PackageMetadata)

    @field_validator("own_dlc_name")
    @classmethod
    def _check_dlc_name(cls, v: str) -> str:
        v = v.strip()
        if not v or "/" in v or "\\" in v:
            raise ValueError(f"Invalid DLC folder name {v!r}")
        return v

    @field_validator("package_filename")
    @classmethod
    def _check_package_name(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().endswith(".oiv"):
            raise ValueError(f"Package filename must end in .oiv, got {v!r}")
        return v

    # ── Derived locations ─────────────────────────────────────────────

    @property
    def mods_dir(self) -> Path:
        return self.game_root / "mods"

    @property
    def content_dir(self) -> Path:
        return self.mods_dir / "source" / "content"

    @property
    def assembly_path(self) -> Path:
        return self.content_dir / ASSEMBLY_FILENAME

    @property
    def dlcpacks_dir(self) -> Path:
        return self.mods_dir / "update" / "x64" / "dlcpacks"

    @property
    def package_path(self) -> Path:
        return self.content_dir / self.package_filename

    @property
    def own_dlc_container(self) -> str:
        """Container that receives loose assets not aimed at a specific RPF."""
        return f"update\\x64\\dlcpacks\\{self.own_dlc_name}\\dlc.rpf"

    def deployment_dir(self, mod_type: ModType, mod_name: str | None = None) -> Path:
        """Where the copy step puts a mod's files.

        Script hooks go next to the game executable, DLC packs into
        ``dlcpacks``; everything else into the mod's own content folder.
        """
        if mod_type == "asi":
            return self.game_root
        if mod_type == "dlc":
            return self.dlcpacks_dir
        if mod_name is None:
            return self.content_dir
        return self.content_dir / sanitize_mod_name(mod_name)


def load_settings(path: str | Path | None = None, **overrides) -> PackagerSettings:
    """Read settings from ``path`` (if given), then apply non-None ``overrides``."""
    data: dict = {}
    if path is not None:
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in settings file: {path}") from exc
        _log.info("Loaded settings from %s", path)
    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return PackagerSettings.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid settings: {exc}") from exc
