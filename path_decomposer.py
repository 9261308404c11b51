"""
Path helpers for nested RPF containers.

An output path such as ``x64/levels/gta5.rpf/props/prop.ydr`` crosses an
archive boundary at every segment that names an ``.rpf``. ``decompose``
cuts the path at those boundaries:

    x64/levels/gta5.rpf/props/prop.ydr
    -> archives      ["x64/levels/gta5.rpf"]
    -> relative_path "props/prop.ydr"

Both separator styles are accepted; groups are joined back with the
separator the input used (OpenIV writes backslashes, mod authors often
don't).
"""

from __future__ import annotations

import re
from typing import NamedTuple

ARCHIVE_EXTENSION = ".rpf"

_SEPARATOR_RE = re.compile(r"[\\/]")


class PathDecomposition(NamedTuple):
    archives: list[str]
    relative_path: str

    @property
    def segments(self) -> list[str]:
        """Archive segments followed by the in-archive relative path."""
        return [*self.archives, self.relative_path]


def detect_separator(*paths: str) -> str:
    for path in paths:
        if "\\" in path:
            return "\\"
    return "/"


def split_path(path: str) -> list[str]:
    return _SEPARATOR_RE.split(path)


def _extension(token: str) -> str:
    dot = token.rfind(".")
    if dot <= 0:
        return ""
    return token[dot:].lower()


def is_archive_name(token: str, extension: str = ARCHIVE_EXTENSION) -> bool:
    return _extension(token) == extension.lower()


def decompose(output_path: str, extension: str = ARCHIVE_EXTENSION) -> PathDecomposition:
    """Split ``output_path`` at every archive-extension segment.

    Every returned archive segment names one level of nesting. The relative
    path is never itself an archive name. It is empty for an empty input,
    and also for a path that ends on an archive (``dlcpacks/foo/dlc.rpf``):
    such a path names the container itself, not a file inside it. Callers
    that register whole archives go through ``add_dlc`` and never hit this.
    """
    sep = detect_separator(output_path)
    groups: list[list[str]] = [[]]
    for token in split_path(output_path):
        groups[-1].append(token)
        if is_archive_name(token, extension):
            groups.append([])

    joined = [sep.join(group) for group in groups]
    return PathDecomposition(archives=joined[:-1], relative_path=joined[-1])


def archive_key(path: str) -> str:
    """Lookup key for a container path; separator style is not significant."""
    return "\\".join(token for token in split_path(path.strip()) if token)


def join_oiv_path(prefix: str, path: str) -> str:
    if not prefix:
        return path
    if not path:
        return prefix
    sep = detect_separator(prefix, path)
    return prefix.rstrip("\\/") + sep + path.lstrip("\\/")
