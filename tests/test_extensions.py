import json

import pytest

from avorepo import extensions
from avorepo.errors import AvorepoError


def write_ext(root, name, body):
    d = root / name
    d.mkdir(parents=True)
    (d / "avocado.toml").write_text(body)
    return d


@pytest.fixture
def ext_root(tmp_path):
    root = tmp_path / "extensions"
    write_ext(root, "app", '[ext.app]\nversion = "1.0"\n')
    write_ext(root, "nvidia", 'supported_targets = ["jetson-orin-nano-devkit-nvme"]\n')
    write_ext(root, "pi", 'supported_targets = "raspberrypi4, raspberrypi5"\n')
    write_ext(root, "broken", "this is not toml\n")
    (root / "not-an-extension").mkdir()
    return root


def test_discovery_sorted_and_parsed(ext_root):
    exts = {e.name: e for e in extensions.discover_extensions(ext_root)}
    assert list(exts) == ["app", "broken", "nvidia", "pi"]
    assert exts["app"].supports_all
    assert exts["broken"].supports_all
    assert exts["nvidia"].supported_targets == ["jetson-orin-nano-devkit-nvme"]
    assert exts["pi"].supported_targets == ["raspberrypi4", "raspberrypi5"]


def test_extensions_for_target(ext_root):
    exts = extensions.discover_extensions(ext_root)
    names = [e.name for e in extensions.extensions_for_target(exts, "raspberrypi5")]
    assert names == ["app", "broken", "pi"]
    assert extensions.supports_target(exts[2], "jetson-orin-nano-devkit-nvme")


def test_missing_root_gives_no_extensions(tmp_path):
    assert extensions.discover_extensions(tmp_path / "nope") == []


def test_root_defaults_to_config(tmp_path):
    write_ext(tmp_path / "extensions", "x", "")
    assert [e.name for e in extensions.discover_extensions()] == ["x"]


def test_extensions_section_from_config_file(tmp_path):
    from avorepo import config

    d = tmp_path / "ext-src" / "cam"
    d.mkdir(parents=True)
    (d / "ext.toml").write_text('supported_targets = ["imx8"]\n')
    cfg_file = tmp_path / "avorepo.yaml"
    cfg_file.write_text(f"extensions:\n  root: {tmp_path / 'ext-src'}\n  manifest: ext.toml\n")
    config.load(str(cfg_file))
    (ext,) = extensions.discover_extensions()
    assert (ext.name, ext.supported_targets) == ("cam", ["imx8"])


def test_build_matrix():
    assert extensions.build_matrix(True) == extensions.machines()
    assert len(extensions.machines()) == 11
    assert extensions.build_matrix(False, "qemux86-64") == ["qemux86-64"]
    with pytest.raises(AvorepoError, match="Unknown target"):
        extensions.build_matrix(False, "pdp11")
    with pytest.raises(AvorepoError):
        extensions.build_matrix(False, None)


def test_extension_matrix(ext_root):
    exts = extensions.discover_extensions(ext_root)
    rows = extensions.extension_matrix(exts, False, "raspberrypi4")
    assert rows == [
        {"extension": "app", "target": "raspberrypi4"},
        {"extension": "broken", "target": "raspberrypi4"},
        {"extension": "pi", "target": "raspberrypi4"},
    ]
    full = extensions.extension_matrix(exts, True)
    assert {"extension": "nvidia", "target": "jetson-orin-nano-devkit-nvme"} in full
    assert not any(r["extension"] == "nvidia" and r["target"] == "qemux86-64" for r in full)


def test_to_json_is_compact():
    assert extensions.to_json(["a", "b"]) == '["a","b"]'
    assert json.loads(extensions.to_json([{"extension": "e", "target": "t"}])) == [{"extension": "e", "target": "t"}]
