import json
import os
import time

import pytest

from avorepo import publish
from avorepo.errors import PrerequisiteError
from avorepo.releases import RepoLayout

from conftest import write_json

RELEASE = "dev-20240101-000000"


@pytest.fixture
def layout(tmp_path):
    return RepoLayout(tmp_path / "repo", "edge", RELEASE)


def test_find_fragments_dir_prefers_own_release(tmp_path):
    base = tmp_path / "staging"
    (base / RELEASE / "fragments").mkdir(parents=True)
    (base / "other" / "fragments").mkdir(parents=True)
    assert publish.find_fragments_dir(base, RELEASE) == base / RELEASE / "fragments"


def test_find_fragments_dir_falls_back_to_newest_staging(tmp_path):
    base = tmp_path / "staging"
    old = base / "2024-01-01-000000"
    new = base / "2024-02-01-000000"
    (old / "fragments").mkdir(parents=True)
    (new / "fragments").mkdir(parents=True)
    past = time.time() - 3600
    os.utime(old, (past, past))
    assert publish.find_fragments_dir(base, RELEASE) == new / "fragments"


def test_find_fragments_dir_none(tmp_path):
    assert publish.find_fragments_dir(tmp_path / "missing", RELEASE) is None
    (tmp_path / "staging" / "x").mkdir(parents=True)
    assert publish.find_fragments_dir(tmp_path / "staging", RELEASE) is None


def test_publish_without_fragments_is_a_noop(layout):
    assert publish.publish_targets(layout) is None
    assert not layout.manifest.exists()


def test_publish_merges_persistent_manifest_and_refreshes_it(layout):
    write_json(layout.persistent_manifest, {"raspberrypi4": ["target/raspberrypi4-ext"]})
    write_json(layout.fragments_dir / "qemux86-64-fragment.json", {"qemux86-64": ["target/qemux86-64-ext"]})
    res = publish.publish_targets(layout)
    expected = {"raspberrypi4": ["target/raspberrypi4-ext"], "qemux86-64": ["target/qemux86-64-ext"]}
    assert json.loads(layout.manifest.read_text()) == expected
    assert json.loads(layout.persistent_manifest.read_text()) == expected
    assert res.preserved == ["raspberrypi4"]


def test_publish_ignores_empty_persistent_manifest(layout):
    layout.persistent_manifest.parent.mkdir(parents=True)
    layout.persistent_manifest.write_text("")
    write_json(layout.fragments_dir / "a-fragment.json", {"a": ["x"]})
    publish.publish_targets(layout)
    assert json.loads(layout.persistent_manifest.read_text()) == {"a": ["x"]}


def test_stage_target_writes_into_staging(layout, deploy):
    frag = publish.stage_target(layout, deploy, "qemux86-64")
    assert frag.path == layout.fragments_dir / "qemux86-64-fragment.json"
    assert json.loads(frag.path.read_text()) == {"qemux86-64": ["sdk/x86_64", "target/qemux86-64-ext"]}


def test_stage_target_prerequisites(layout, tmp_path):
    with pytest.raises(PrerequisiteError, match="has the build"):
        publish.stage_target(layout, tmp_path / "missing", "qemux86-64")
    (tmp_path / "deploy").mkdir()
    with pytest.raises(PrerequisiteError, match="Map file"):
        publish.stage_target(layout, tmp_path / "deploy", "qemux86-64")


def test_publish_leaves_no_lock_in_release_dir(layout):
    write_json(layout.fragments_dir / "a-fragment.json", {"a": ["x"]})
    publish.publish_targets(layout)
    assert [p.name for p in layout.release_dir.iterdir()] == ["targets.json"]
    assert layout.manifest_lock.exists()
