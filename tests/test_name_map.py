"""
Tests for the known-file table loaded from namemap.json.
"""

import json

import pytest
from pydantic import ValidationError

from name_map import KnownFileTable, load_known_files, parse_known_files


def test_lookup(known_files):
    assert "vehicles.meta" in known_files
    assert len(known_files.get("vehicles.meta")) == 2
    assert known_files.get("unknown.meta") is None
    assert len(known_files) == 4


def test_lookup_returns_a_copy(known_files):
    destinations = known_files.get("handling.meta")
    destinations.append("elsewhere")
    assert known_files.get("handling.meta") == ["update\\update.rpf\\common\\data\\handling.meta"]


def test_asset_extensions_skip_non_assets():
    table = parse_known_files(
        json.dumps({"a.META": ["x"], "b.yft": ["y"], "readme.txt": ["z"], "LICENSE": ["w"]})
    )
    assert table.asset_extensions() == frozenset({".meta", ".yft"})


@pytest.mark.parametrize(
    "data",
    [
        {"a.meta": []},
        {"a.meta": ["  "]},
        {" ": ["x"]},
        {"a.meta": "x"},
    ],
)
def test_invalid_entries_are_rejected(data):
    with pytest.raises(ValidationError):
        parse_known_files(json.dumps(data))


def test_load_without_path_is_empty():
    table = load_known_files(None)
    assert len(table) == 0
    assert table.asset_extensions() == frozenset()


def test_load_from_disk(tmp_path):
    path = tmp_path / "namemap.json"
    path.write_text(json.dumps({"adder.yft": ["x64e.rpf\\adder.yft"]}), encoding="utf-8")
    table = load_known_files(path)
    assert isinstance(table, KnownFileTable)
    assert table.get("adder.yft") == ["x64e.rpf\\adder.yft"]


def test_load_invalid_json_raises_value_error(tmp_path):
    path = tmp_path / "namemap.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid known-file table"):
        load_known_files(path)
