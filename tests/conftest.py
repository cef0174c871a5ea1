import json
from pathlib import Path

import pytest

from avorepo import config

AVOCADO_ENV = ("AVOCADO_REPO_DIR", "AVOCADO_DISTRO_CODENAME", "AVOCADO_RELEASE_ID", "AVOCADO_REPO_BASE")


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Every test starts from DEFAULTS: no config files, no env overrides."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("AVOREPO_CONFIG", raising=False)
    for name in AVOCADO_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "_find_candidates", _no_system_candidates(config._find_candidates))
    return config.load()


def _no_system_candidates(orig):
    def wrapper(explicit=None):
        return [p for p in orig(explicit) if not str(p).startswith("/etc/")]
    return wrapper


def touch_rpm(directory: Path, name: str = "pkg-1.0-r0.core2_64.rpm") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    p = directory / name
    p.write_bytes(b"\xed\xab\xee\xdb")
    return p


def write_map(deploy: Path, lines) -> Path:
    deploy.mkdir(parents=True, exist_ok=True)
    p = deploy / "avocado-repo.map"
    p.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return p


def write_json(path: Path, obj) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, separators=(",", ":")), encoding="utf-8")
    return path


@pytest.fixture
def deploy(tmp_path):
    """Deploy dir of a qemux86-64 build: sdk and target populated, arch dirs empty."""
    d = tmp_path / "deploy"
    write_map(d, [
        "# generated by the build",
        "sdk/x86_64=$releasever/sdk/x86_64",
        "target/qemux86-64=$releasever/target/qemux86-64",
        "target/all=$releasever/target/all",
        "target/core2-64=$releasever/target/core2-64",
    ])
    touch_rpm(d / "sdk" / "x86_64", "nativesdk-foo-1.0-r0.x86_64.rpm")
    (d / "target" / "qemux86-64").mkdir(parents=True)
    (d / "target" / "all").mkdir(parents=True)
    return d
