import json

import pytest

from avorepo import fragments
from avorepo.errors import PrerequisiteError
from avorepo.repomap import RepositoryMap

from conftest import touch_rpm, write_map


def test_generate_writes_populated_repos_and_extension(deploy, tmp_path):
    out = tmp_path / "fragments"
    frag = fragments.generate(deploy, "qemux86-64", out, "apollo")
    assert frag.path == out / "qemux86-64-fragment.json"
    assert frag.path.read_text() == '{"qemux86-64":["sdk/x86_64","target/qemux86-64-ext"]}'


def test_generate_is_idempotent(deploy, tmp_path):
    out = tmp_path / "fragments"
    first = fragments.generate(deploy, "qemux86-64", out, "apollo").path.read_bytes()
    second = fragments.generate(deploy, "qemux86-64", out, "apollo").path.read_bytes()
    assert first == second


def test_extension_repo_is_appended_even_without_packages(tmp_path):
    d = tmp_path / "deploy"
    write_map(d, ["target/raspberrypi4=$releasever/target/raspberrypi4"])
    frag = fragments.generate(d, "raspberrypi4", tmp_path / "out", "edge")
    assert json.loads(frag.path.read_text()) == {"raspberrypi4": ["target/raspberrypi4-ext"]}


def test_map_order_is_kept(tmp_path):
    d = tmp_path / "deploy"
    write_map(d, [
        "target/qemuarm64=$releasever/target/qemuarm64",
        "target/all=$releasever/target/all",
        "sdk/x86_64=$releasever/sdk/x86_64",
    ])
    for sub in ("target/qemuarm64", "target/all", "sdk/x86_64"):
        touch_rpm(d / sub)
    repos = fragments.collect_repos(RepositoryMap.load(d / "avocado-repo.map"), d, "qemuarm64", "edge")
    assert repos == ["target/qemuarm64", "target/all", "sdk/x86_64", "target/qemuarm64-ext"]


def test_packages_in_subdirectories_do_not_count(tmp_path):
    d = tmp_path / "deploy"
    write_map(d, ["target/qemuarm64=$releasever/target/qemuarm64"])
    touch_rpm(d / "target" / "qemuarm64" / "nested")
    repos = fragments.collect_repos(RepositoryMap.load(d / "avocado-repo.map"), d, "qemuarm64", "edge")
    assert repos == ["target/qemuarm64-ext"]


def test_package_suffix_from_config(tmp_path, isolated_config):
    d = tmp_path / "deploy"
    write_map(d, ["a=$releasever/a"])
    (d / "a").mkdir()
    (d / "a" / "x.ipk").write_text("")
    rm = RepositoryMap.load(d / "avocado-repo.map")
    assert fragments.collect_repos(rm, d, "t", "r") == ["target/t-ext"]
    assert fragments.collect_repos(rm, d, "t", "r", package_suffix=".ipk") == ["a", "target/t-ext"]


def test_missing_map_file_raises_and_writes_nothing(tmp_path):
    d = tmp_path / "deploy"
    d.mkdir()
    out = tmp_path / "out"
    with pytest.raises(PrerequisiteError):
        fragments.generate(d, "qemux86-64", out, "apollo")
    assert not (out / "qemux86-64-fragment.json").exists()


def test_render_fragment_is_compact():
    assert fragments.Fragment("t", ["a", "b"]).render() == '{"t":["a","b"]}'


def test_literal_codename_prefix_is_stripped(tmp_path):
    d = tmp_path / "deploy"
    write_map(d, ["sdk/x86_64=latest/apollo/edge/sdk/x86_64"])
    touch_rpm(d / "sdk" / "x86_64")
    frag = fragments.generate(d, "qemux86-64", tmp_path / "out", "latest/apollo/edge")
    assert frag.path.read_text() == '{"qemux86-64":["sdk/x86_64","target/qemux86-64-ext"]}'
