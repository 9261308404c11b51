"""
OIV Packager - Core Logic

Turns mod files into copy instructions at install time, and folds every
deployed mod into one master ``assembly.xml`` + ``.oiv`` package at deploy
time, so OpenIV has to run only once for all mods.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from disambiguator import (
    ChoiceProvider,
    CopyInstruction,
    DestinationCandidates,
    InstallDisambiguator,
    PendingChoiceProvider,
)
from errors import UnsupportedSourceEncoding
from name_map import KnownFileTable
from oiv_archive import PACKAGE_CONTENT_DIR, extract_archive, write_oiv_package
from oiv_manifest import ASSEMBLY_FILENAME, ManifestDocument
from packager_settings import ModType, PackagerSettings, sanitize_mod_name
from path_decomposer import is_archive_name, split_path

PACKAGE_EXTENSION = ".oiv"
ARCHIVE_EXTENSION = ".rpf"
DLC_ARCHIVE_NAME = "dlc.rpf"

# script hooks and DLC archives always go to the root of their install location
PULL_TO_ROOT_EXTENSIONS = {".dll", ".asi"}
PULL_TO_ROOT_FILENAMES = {DLC_ARCHIVE_NAME}

_log = logging.getLogger(__name__)


def _extension(name: str) -> str:
    dot = name.rfind(".")
    return name[dot:].lower() if dot > 0 else ""


def _base_name(path: str) -> str:
    return split_path(path)[-1]


def ensure_latin1(path: str | Path) -> None:
    # OpenIV stores names in latin-1
    try:
        str(path).encode("latin-1")
    except UnicodeEncodeError as exc:
        raise UnsupportedSourceEncoding(path) from exc


class PackagingOrchestrator:
    """
    Main packaging controller.

    Workflow:
        1. install() for each mod: classify its files, disambiguate, and hand
           the copy instructions to the (external) copy step
        2. deploy(): merge_installed() folds every deployed file into a fresh
           master manifest, finalize_deploy() registers DLC packs and writes
           the .oiv package for OpenIV
    """

    def __init__(
        self,
        settings: PackagerSettings,
        known_files: KnownFileTable,
        choice_provider: Optional[ChoiceProvider] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings
        self.known_files = known_files
        self.choice_provider = choice_provider or PendingChoiceProvider()
        self._asset_exts = known_files.asset_extensions()
        self._log_cb = log_callback or _log.info

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    # ── Install ───────────────────────────────────────────────────────

    def plan_install(self, files: Iterable[str]) -> list[DestinationCandidates]:
        """Propose destinations for every file of a mod."""
        candidates: list[DestinationCandidates] = []
        for file_path in files:
            if file_path.endswith(("/", "\\")):
                continue
            file_name = _base_name(file_path)
            known = self.known_files.get(file_name)
            if known is not None:
                # replacer for a known game file
                candidates.append(DestinationCandidates(file_path, known))
            elif (
                _extension(file_name) in PULL_TO_ROOT_EXTENSIONS
                or file_name.lower() in PULL_TO_ROOT_FILENAMES
            ):
                candidates.append(DestinationCandidates(file_path, [file_name]))
            else:
                candidates.append(DestinationCandidates(file_path, [file_path]))
        return candidates

    async def install(self, files: Iterable[str], mod_name: str = "mod") -> list[CopyInstruction]:
        """Resolve a mod's files into copy instructions.

        Suspends while the choice provider has open questions; raises
        ``AmbiguityCancelled`` (and produces nothing) if any is cancelled.
        """
        candidates = self.plan_install(files)
        self.log(f"Installing {mod_name}: {len(candidates)} file(s)")
        ambiguous = sum(1 for entry in candidates if entry.is_ambiguous)
        if ambiguous:
            self.log(f"  {ambiguous} file(s) match more than one game file")
        disambiguator = InstallDisambiguator(self.choice_provider, batch=mod_name)
        return await disambiguator.resolve(candidates)

    def classify_mod_type(self, instructions: Sequence[CopyInstruction]) -> ModType:
        destinations = [inst.destination for inst in instructions if inst.destination]
        if any(_base_name(dest).lower() == DLC_ARCHIVE_NAME for dest in destinations):
            return "dlc"
        exts = [_extension(_base_name(dest)) for dest in destinations]
        has_asi = ".asi" in exts
        has_assets = any(ext in self._asset_exts or ext == ARCHIVE_EXTENSION for ext in exts)
        if has_asi and not has_assets:
            return "asi"
        return "default"

    # ── Merge ─────────────────────────────────────────────────────────

    def is_mergeable(self, file_path: str | Path) -> bool:
        ext = _extension(Path(file_path).name)
        return ext in (PACKAGE_EXTENSION, ARCHIVE_EXTENSION) or ext in self._asset_exts

    def new_master(self) -> ManifestDocument:
        meta = self.settings.metadata
        return ManifestDocument.create_base(
            name=meta.name,
            author=meta.author,
            version=(meta.version_major, meta.version_minor),
            description=meta.description,
            archive_type=self.settings.archive_type,
        )

    def merge_file(self, master: ManifestDocument, file_path: Path) -> bool:
        """Fold one deployed file into ``master``; False if it was skipped."""
        ext = _extension(file_path.name)
        if ext == PACKAGE_EXTENSION:
            self._merge_package(master, file_path)
        elif ext == ARCHIVE_EXTENSION:
            master.add_dlc(file_path.parent.name)
        else:
            return self._merge_asset(master, file_path)
        return True

    def _merge_package(self, master: ManifestDocument, file_path: Path) -> None:
        package_name = file_path.name
        temp_path = self.settings.content_dir / package_name
        extract_archive(file_path, temp_path)
        master.merge(temp_path, f"{package_name}\\{PACKAGE_CONTENT_DIR}")
        self.log(f"  Merged package {package_name}")

    def _merge_asset(self, master: ManifestDocument, file_path: Path) -> bool:
        try:
            rel = file_path.relative_to(self.settings.content_dir)
        except ValueError:
            _log.warning(
                "Asset outside %s not included in package: %s", self.settings.content_dir, file_path
            )
            return False
        ensure_latin1(rel)
        parts = list(rel.parts)
        if len(parts) < 2:
            # sources are always below a mod folder
            _log.warning("Asset not inside a mod folder, not included in package: %s", file_path)
            return False
        parts[0] = sanitize_mod_name(parts[0])

        rpf_idx = next((i for i, part in enumerate(parts) if is_archive_name(part)), None)
        if rpf_idx is not None:
            container = "\\".join(parts[1 : rpf_idx + 1])
            out_parts = parts[rpf_idx + 1 :]
        else:
            container = self.settings.own_dlc_container
            out_parts = parts[1:]
        master.add_file("\\".join(parts), "\\".join(out_parts), container)
        return True

    def merge_installed(self, files: Iterable[Path]) -> ManifestDocument:
        """Build the master manifest from deployed files and save it once."""
        master = self.new_master()
        merged = skipped = 0
        for file_path in files:
            file_path = Path(file_path)
            if not self.is_mergeable(file_path):
                continue
            try:
                if not self.merge_file(master, file_path):
                    skipped += 1
                    continue
                merged += 1
            except UnsupportedSourceEncoding as exc:
                # hopefully this is only a readme or something
                _log.warning("File not included in package, OpenIV wouldn't support it: %s", exc.path)
                skipped += 1

        master.save(self.settings.assembly_path)
        self.log(f"Merged {merged} file(s) into {ASSEMBLY_FILENAME} ({skipped} skipped)")
        return master

    def collect_deployed_files(self) -> list[Path]:
        """Every file deployed into a mod folder below the content root."""
        content_dir = self.settings.content_dir
        if not content_dir.exists():
            return []
        files: list[Path] = []
        for entry in sorted(content_dir.iterdir()):
            if not entry.is_dir() or entry.suffix.lower() == PACKAGE_EXTENSION:
                continue
            files.extend(path for path in sorted(entry.rglob("*")) if path.is_file())
        return files

    # ── Deploy ────────────────────────────────────────────────────────

    def prepare_directories(self):
        self.settings.content_dir.mkdir(parents=True, exist_ok=True)
        self.settings.dlcpacks_dir.mkdir(parents=True, exist_ok=True)

    def installed_dlc_names(self) -> list[str]:
        dlcpacks = self.settings.dlcpacks_dir
        if not dlcpacks.exists():
            return []
        return [
            entry.name
            for entry in sorted(dlcpacks.iterdir())
            if entry.is_dir() and entry.name != self.settings.own_dlc_name
        ]

    def finalize_deploy(self, icon_path: Path | None = None) -> Path:
        """Register DLC packs and write the final package.

        Raises ``ManifestLoadFailed`` if nothing was merged yet.
        """
        assembly_path = self.settings.assembly_path
        master = ManifestDocument.load(assembly_path, archive_type=self.settings.archive_type)
        dlc_names = self.installed_dlc_names()
        for name in dlc_names:
            master.add_dlc(name)
        master.save(assembly_path)
        if dlc_names:
            self.log(f"Registered {len(dlc_names)} DLC pack(s): {dlc_names}")

        package_path = write_oiv_package(
            self.settings.package_path, assembly_path, self.settings.content_dir, icon_path
        )
        self.remove_temp_packages()
        self.log(f"Package ready: {package_path}")
        return package_path

    def deploy(self, files: Iterable[Path] | None = None, icon_path: Path | None = None) -> Path:
        self.prepare_directories()
        if files is None:
            files = self.collect_deployed_files()
        self.merge_installed(files)
        return self.finalize_deploy(icon_path)

    # ── Cleanup ───────────────────────────────────────────────────────

    def remove_temp_packages(self) -> int:
        """Remove .oiv packages extracted for merging."""
        removed = 0
        content_dir = self.settings.content_dir
        if not content_dir.exists():
            return removed
        for entry in content_dir.iterdir():
            if entry.is_dir() and entry.suffix.lower() == PACKAGE_EXTENSION:
                shutil.rmtree(entry)
                removed += 1
        return removed

    def clean_mods(self, whitelist: set[str]) -> int:
        """Reset ``mods/`` to the files of the last deployment.

        OpenIV copies whole RPFs into ``mods/``; removing them makes sure no
        change from a previous deployment carries over. Files whose name is in
        ``whitelist`` or starts with ``__`` stay.
        """
        removed = 0
        mods_dir = self.settings.mods_dir
        if mods_dir.exists():
            for path in sorted(mods_dir.rglob("*")):
                if not path.is_file():
                    continue
                if path.name.startswith("__") or path.name in whitelist:
                    continue
                path.unlink()
                removed += 1
        self.prepare_directories()
        self.log(f"Cleaned {removed} file(s) from {mods_dir}")
        return removed
