"""
Known-file lookup table for GTA V asset replacers.

Replacer mods usually ship a loose file (``vehicles.meta``, ``adder.yft``)
with no hint of where it belongs inside the game's RPF hierarchy.
``namemap.json`` maps each known base filename to every in-archive location
the game keeps a file of that name:

{
    "vehicles.meta": [
        "update\\\\update.rpf\\\\common\\\\data\\\\levels\\\\gta5\\\\vehicles.meta",
        "x64e.rpf\\\\levels\\\\gta5\\\\vehicles.meta"
    ],
    "adder.yft": [
        "x64e.rpf\\\\levels\\\\gta5\\\\vehicles.rpf\\\\adder.yft"
    ]
}

A file with more than one location has to be disambiguated at install time.
The table is loaded once at startup and passed to whoever needs it; it is
never modified afterwards.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ConfigDict, RootModel, ValidationError, field_validator

NAME_MAP_FILENAME = "namemap.json"

# extensions that show up in the table but aren't assets worth merging
NON_ASSET_EXTENSIONS = frozenset({"", ".txt"})

_log = logging.getLogger(__name__)


def _extension(filename: str) -> str:
    return Path(filename).suffix.lower()


class KnownFileTable(RootModel[dict[str, list[str]]]):
    """Parsed contents of ``namemap.json``."""

    model_config = ConfigDict(frozen=True)

    @field_validator("root")
    @classmethod
    def _check_entries(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        for filename, destinations in v.items():
            if not filename.strip():
                raise ValueError("Empty filename in known-file table")
            if not destinations:
                raise ValueError(f"Known file {filename!r} has no destinations")
            if any(not dest.strip() for dest in destinations):
                raise ValueError(f"Known file {filename!r} has an empty destination")
        return v

    def get(self, filename: str) -> list[str] | None:
        destinations = self.root.get(filename)
        return list(destinations) if destinations is not None else None

    def __contains__(self, filename: str) -> bool:
        return filename in self.root

    def __len__(self) -> int:
        return len(self.root)

    def asset_extensions(self) -> frozenset[str]:
        """Distinct (lowercase) extensions of the known files, minus non-assets."""
        return frozenset(_extension(name) for name in self.root) - NON_ASSET_EXTENSIONS


def parse_known_files(data: bytes | str) -> KnownFileTable:
    """Parse raw JSON into a KnownFileTable.

    Raises ``pydantic.ValidationError`` if the data is invalid.
    Raises ``json.JSONDecodeError`` if the bytes are not valid JSON.
    """
    return KnownFileTable.model_validate(json.loads(data))


def load_known_files(path: str | Path | None) -> KnownFileTable:
    """Load the table from disk; no path means an empty table."""
    if path is None:
        return KnownFileTable({})
    path = Path(path)
    try:
        table = parse_known_files(path.read_bytes())
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError(f"Invalid known-file table {path}: {exc}") from exc
    _log.info("Loaded %d known file name(s) from %s", len(table), path.name)
    return table
