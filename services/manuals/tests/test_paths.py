import os
from pathlib import Path

from app.paths import PathResolver


def test_join_and_relative_round_trip(tmp_path):
    resolver = PathResolver(tmp_path)
    absolute = resolver.join("manuals", "1-HG Zaku.pdf")
    assert absolute == tmp_path / "manuals" / "1-HG Zaku.pdf"
    assert resolver.to_relative(absolute) == os.path.join("manuals", "1-HG Zaku.pdf")
    assert resolver.to_absolute(os.path.join("manuals", "1-HG Zaku.pdf")) == absolute


def test_to_absolute_leaves_absolute_values(tmp_path):
    resolver = PathResolver(tmp_path / "root")
    other = tmp_path / "other" / "x.pdf"
    assert resolver.to_absolute(str(other)) == other


def test_is_inside_root(tmp_path):
    resolver = PathResolver(tmp_path / "root")
    assert resolver.is_inside_root(tmp_path / "root" / "manuals" / "a.pdf")
    assert resolver.is_inside_root(tmp_path / "root")
    assert not resolver.is_inside_root(tmp_path / "rootish" / "a.pdf")
    assert not resolver.is_inside_root(tmp_path / "root" / ".." / "a.pdf")


def test_resolve_legacy_uses_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert PathResolver.resolve_legacy("downloads/manuals/a.pdf") == tmp_path / "downloads" / "manuals" / "a.pdf"
    assert PathResolver.resolve_legacy(str(tmp_path / "a.pdf")) == tmp_path / "a.pdf"


def test_root_is_normalised(tmp_path):
    resolver = PathResolver(str(tmp_path / "a" / ".." / "root"))
    assert resolver.root == Path(os.path.abspath(tmp_path / "root"))
