"""
Error kinds raised by the OIV packager.

Everything derives from ``PackagerError`` so the CLI can report any failure
of the core with a single ``except`` clause.
"""

from __future__ import annotations

from pathlib import Path


class PackagerError(Exception):
    pass


class AmbiguityCancelled(PackagerError):
    """The user declined to pick an option for an ambiguous install."""

    def __init__(self, key: str | None = None, batch: str | None = None):
        self.key = key
        self.batch = batch
        where = f" for {key!r}" if key else ""
        scope = f" (mod {batch!r})" if batch else ""
        super().__init__(f"Disambiguation cancelled{where}{scope}")


class InvalidChoice(PackagerError, ValueError):
    def __init__(self, key: str, choice: str, options: tuple[str, ...]):
        self.key = key
        self.choice = choice
        self.options = options
        super().__init__(
            f"{choice!r} is not one of the options offered for {key!r}: {list(options)}"
        )


class ManifestLoadFailed(PackagerError):
    """A referenced assembly.xml is missing or could not be parsed."""

    def __init__(self, path: str | Path | None, reason: str):
        self.path = Path(path) if path is not None else None
        self.reason = reason
        source = self.path if self.path is not None else "<document text>"
        super().__init__(f"Could not load manifest {source}: {reason}")


class UnsupportedSourceEncoding(PackagerError):
    def __init__(self, path: str | Path):
        self.path = str(path)
        super().__init__(f"Path can't be represented in the archive charset: {self.path}")


class PackageExtractionFailed(PackagerError):
    def __init__(self, path: str | Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Could not extract {self.path.name}: {reason}")


class ChoiceAlreadyPending(PackagerError, ValueError):
    """The same question is already open in this batch."""

    def __init__(self, key: str, batch: str):
        self.key = key
        self.batch = batch
        super().__init__(f"A choice for {key!r} is already pending in {batch!r}")
