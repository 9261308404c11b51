"""
Shared fixtures and helpers for the OIV Packager test suite.
"""

import zipfile
from pathlib import Path

import pytest

from name_map import parse_known_files
from packager_settings import PackagerSettings

KNOWN_FILES_JSON = """
{
    "vehicles.meta": [
        "update\\\\update.rpf\\\\common\\\\data\\\\levels\\\\gta5\\\\vehicles.meta",
        "x64e.rpf\\\\levels\\\\gta5\\\\vehicles.meta"
    ],
    "handling.meta": ["update\\\\update.rpf\\\\common\\\\data\\\\handling.meta"],
    "adder.yft": ["x64e.rpf\\\\levels\\\\gta5\\\\vehicles.rpf\\\\adder.yft"],
    "credits.txt": ["credits.txt"]
}
"""


class ScriptedChoiceProvider:
    """Answers choice requests from a ``{(phase, key): answer}`` script.

    An exception instance as answer is raised instead. Every request is
    recorded in ``requests``.
    """

    def __init__(self, answers=None):
        self.answers = dict(answers or {})
        self.requests = []

    async def request_choice(self, request):
        self.requests.append(request)
        answer = self.answers[(request.phase, request.key)]
        if isinstance(answer, BaseException):
            raise answer
        return answer


def make_zip(path: Path, members: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


def write_file(path: Path, data: str = "data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data, encoding="utf-8")
    return path


@pytest.fixture
def known_files():
    return parse_known_files(KNOWN_FILES_JSON)


@pytest.fixture
def settings(tmp_path):
    """Settings rooted at a fresh fake game directory."""
    game_root = tmp_path / "game"
    game_root.mkdir()
    return PackagerSettings(game_root=game_root)
