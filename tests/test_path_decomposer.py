"""
Tests for splitting output paths at nested RPF boundaries.
"""

from path_decomposer import (
    archive_key,
    decompose,
    detect_separator,
    is_archive_name,
    join_oiv_path,
)


def test_path_without_archive_is_one_relative_path():
    result = decompose("common/data/x.meta")
    assert result.archives == []
    assert result.relative_path == "common/data/x.meta"
    assert result.segments == ["common/data/x.meta"]


def test_each_archive_segment_closes_a_group():
    result = decompose("x64/levels/gta5.rpf/props.rpf/lev_des/prop.ydr")
    assert result.archives == ["x64/levels/gta5.rpf", "props.rpf"]
    assert result.relative_path == "lev_des/prop.ydr"
    assert len(result.segments) == 3


def test_backslash_input_is_joined_with_backslashes():
    result = decompose("x64\\levels\\gta5.rpf\\props\\prop.ydr")
    assert result.archives == ["x64\\levels\\gta5.rpf"]
    assert result.relative_path == "props\\prop.ydr"


def test_archive_extension_is_case_insensitive():
    result = decompose("update/UPDATE.RPF/common/data/x.meta")
    assert result.archives == ["update/UPDATE.RPF"]
    assert result.relative_path == "common/data/x.meta"


def test_empty_input_gives_empty_relative_path():
    result = decompose("")
    assert result.archives == []
    assert result.relative_path == ""


def test_path_ending_on_archive_has_empty_relative_path():
    result = decompose("dlcpacks/foo/dlc.rpf")
    assert result.archives == ["dlcpacks/foo/dlc.rpf"]
    assert result.relative_path == ""


def test_custom_extension():
    result = decompose("data/pack.img/file.dat", extension=".img")
    assert result.archives == ["data/pack.img"]
    assert result.relative_path == "file.dat"


def test_dotfiles_are_not_archives():
    assert not is_archive_name(".rpf")
    assert is_archive_name("dlc.rpf")
    assert not is_archive_name("dlc.rpf.bak")


def test_detect_separator_prefers_backslash():
    assert detect_separator("a/b", "c\\d") == "\\"
    assert detect_separator("a/b") == "/"


def test_archive_key_ignores_separator_style():
    assert archive_key("update/update.rpf") == archive_key("update\\update.rpf")
    assert archive_key("\\update\\\\update.rpf ") == "update\\update.rpf"
    assert archive_key("Update.rpf") != archive_key("update.rpf")


def test_join_oiv_path():
    assert join_oiv_path("pkg.oiv\\content", "mod\\x.meta") == "pkg.oiv\\content\\mod\\x.meta"
    assert join_oiv_path("pkg/content/", "/x.meta") == "pkg/content/x.meta"
    assert join_oiv_path("", "x.meta") == "x.meta"
    assert join_oiv_path("prefix", "") == "prefix"
