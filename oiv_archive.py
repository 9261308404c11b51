"""
Reading mod archives and writing the final OIV package.

An ``.oiv`` is a plain zip:

    package.oiv
    ├── assembly.xml
    ├── icon.png        <- optional
    └── content/        <- every ``source`` in assembly.xml is relative to this

Mods reach us as ``.zip``/``.7z``/``.rar`` downloads or as ``.oiv`` packages
of their own; both are read here.
"""

from __future__ import annotations

import logging
import os
import zipfile
from pathlib import Path

import py7zr
import rarfile
from py7zr.exceptions import Bad7zFile, PasswordRequired

from errors import PackageExtractionFailed
from oiv_manifest import ASSEMBLY_FILENAME

SUPPORTED_EXTENSIONS = {".zip", ".oiv", ".7z", ".rar"}
_ZIP_EXTENSIONS = {".zip", ".oiv"}

PACKAGE_CONTENT_DIR = "content"
PACKAGE_ICON = "icon.png"

_log = logging.getLogger(__name__)


def _normalize_names(names: list[str]) -> list[str]:
    return [name.replace("\\", "/") for name in names]


def is_supported_archive(filepath: Path) -> bool:
    return filepath.suffix.lower() in SUPPORTED_EXTENSIONS


def list_archive_names(filepath: Path) -> list[str]:
    ext = filepath.suffix.lower()
    try:
        if ext in _ZIP_EXTENSIONS:
            with zipfile.ZipFile(filepath, "r") as zf:
                return _normalize_names(zf.namelist())
        if ext == ".7z":
            with py7zr.SevenZipFile(filepath, "r") as sz:
                return _normalize_names(sz.getnames())
        if ext == ".rar":
            with rarfile.RarFile(filepath, "r") as rf:
                return _normalize_names([info.filename for info in rf.infolist()])
    except (zipfile.BadZipFile, Bad7zFile, PasswordRequired, rarfile.Error) as exc:
        raise PackageExtractionFailed(filepath, str(exc)) from exc
    raise PackageExtractionFailed(filepath, f"unsupported archive format: {ext}")


def extract_archive(filepath: Path, dest: Path) -> Path:
    """Extract everything in ``filepath`` below ``dest``."""
    ext = filepath.suffix.lower()
    dest.mkdir(parents=True, exist_ok=True)
    try:
        if ext in _ZIP_EXTENSIONS:
            with zipfile.ZipFile(filepath, "r") as zf:
                zf.extractall(dest)
        elif ext == ".7z":
            with py7zr.SevenZipFile(filepath, "r") as sz:
                sz.extractall(path=dest)
        elif ext == ".rar":
            with rarfile.RarFile(filepath, "r") as rf:
                rf.extractall(dest)
        else:
            raise PackageExtractionFailed(filepath, f"unsupported archive format: {ext}")
    except RuntimeError as exc:
        # zipfile reports encrypted members this way
        raise PackageExtractionFailed(filepath, f"password protected? {exc}") from exc
    except PasswordRequired as exc:
        raise PackageExtractionFailed(filepath, "password protected?") from exc
    except (zipfile.BadZipFile, Bad7zFile, rarfile.Error) as exc:
        raise PackageExtractionFailed(filepath, str(exc)) from exc
    _log.info("Extracted %s -> %s", filepath.name, dest)
    return dest


def list_mod_files(source: Path) -> list[str]:
    """Relative paths of every entry in a mod, from an archive or a folder.

    Directory entries keep their trailing ``/``.
    """
    if source.is_dir():
        names = []
        for path in sorted(source.rglob("*")):
            rel = path.relative_to(source).as_posix()
            names.append(rel + "/" if path.is_dir() else rel)
        return names
    return list_archive_names(source)


def write_oiv_package(
    out_path: Path,
    assembly_path: Path,
    content_dir: Path,
    icon_path: Path | None = None,
) -> Path:
    """Zip ``assembly_path`` and ``content_dir`` into an OIV package at ``out_path``.

    ``out_path`` may live inside ``content_dir``; the package itself, the
    in-progress zip and any stale top-level package are left out.
    """
    tmp_path = out_path.with_name(out_path.name + ".zip")
    skipped = {out_path.resolve(), tmp_path.resolve(), (content_dir / ASSEMBLY_FILENAME).resolve()}
    written = 0
    with zipfile.ZipFile(tmp_path, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.write(assembly_path, ASSEMBLY_FILENAME)
        if icon_path is not None and icon_path.is_file():
            zf.write(icon_path, PACKAGE_ICON)
        for path in sorted(content_dir.rglob("*")):
            if not path.is_file() or path.resolve() in skipped:
                continue
            if path.parent == content_dir and path.suffix.lower() in {".oiv", ".tmp"}:
                continue
            zf.write(path, f"{PACKAGE_CONTENT_DIR}/{path.relative_to(content_dir).as_posix()}")
            written += 1
    os.replace(tmp_path, out_path)
    _log.info("Wrote %s with %d content file(s)", out_path.name, written)
    return out_path
