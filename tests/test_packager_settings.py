"""
Tests for settings loading and the derived directory layout.
"""

import json

import pytest

from packager_settings import PackagerSettings, load_settings, sanitize_mod_name


def test_sanitize_mod_name():
    assert sanitize_mod_name("My Mod_v1.2-final") == "MyModv12final"


def test_layout(settings):
    root = settings.game_root
    assert settings.content_dir == root / "mods" / "source" / "content"
    assert settings.assembly_path == settings.content_dir / "assembly.xml"
    assert settings.package_path == settings.content_dir / "oivpack.oiv"
    assert settings.dlcpacks_dir == root / "mods" / "update" / "x64" / "dlcpacks"
    assert settings.own_dlc_container == "update\\x64\\dlcpacks\\oivpack\\dlc.rpf"


def test_deployment_dir_per_mod_type(settings):
    assert settings.deployment_dir("asi") == settings.game_root
    assert settings.deployment_dir("dlc") == settings.dlcpacks_dir
    assert settings.deployment_dir("default", "Real Cars 1.0") == settings.content_dir / "RealCars10"


def test_load_settings_with_overrides(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"game_root": "C:/Games/GTAV", "metadata": {"name": "Pack", "author": "me"}}),
        encoding="utf-8",
    )
    settings = load_settings(path, game_root=str(tmp_path), name_map=None)
    assert settings.game_root == tmp_path
    assert settings.name_map is None
    assert settings.metadata.name == "Pack"
    assert settings.metadata.version_major == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {},
        {"game_root": "x", "own_dlc_name": "a/b"},
        {"game_root": "x", "package_filename": "pack.zip"},
        {"game_root": "x", "metadata": {"version_major": -1}},
    ],
)
def test_invalid_settings_raise_value_error(overrides):
    with pytest.raises(ValueError, match="Invalid settings"):
        load_settings(None, **overrides)


def test_invalid_json_raises_value_error(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid JSON"):
        load_settings(path)


def test_names_are_stripped(tmp_path):
    settings = PackagerSettings(game_root=tmp_path, own_dlc_name=" mine ", package_filename=" p.OIV")
    assert settings.own_dlc_name == "mine"
    assert settings.package_filename == "p.OIV"
