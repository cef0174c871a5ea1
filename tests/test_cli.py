import json
from unittest import mock

import pytest

from avorepo import checksums, metadata
from avorepo.checksums import RpmRecord
from avorepo.cli import main

from conftest import touch_rpm


def test_generate_and_aggregate(deploy, tmp_path, capsys):
    frags = tmp_path / "fragments"
    assert main(["generate", str(deploy), "qemux86-64", str(frags), "apollo"]) == 0
    out = tmp_path / "targets.json"
    assert main(["aggregate", str(frags), str(out)]) == 0
    assert json.loads(out.read_text()) == {"qemux86-64": ["sdk/x86_64", "target/qemux86-64-ext"]}
    assert capsys.readouterr().out == ""


def test_generate_without_map_fails(tmp_path):
    (tmp_path / "deploy").mkdir()
    assert main(["generate", str(tmp_path / "deploy"), "t", str(tmp_path / "o"), "r"]) == 1


def test_aggregate_missing_fragments_dir_fails(tmp_path):
    assert main(["aggregate", str(tmp_path / "nope"), str(tmp_path / "t.json")]) == 1


def test_update_metadata_exit_codes(tmp_path):
    d = tmp_path / "deploy"
    touch_rpm(d / "target" / "qemux86-64")
    with mock.patch.object(metadata.Indexer, "run", return_value=(0, "")) as run:
        assert main(["update-metadata", "distro", str(d), ""]) == 0
    assert run.call_count == 1
    with mock.patch.object(metadata.Indexer, "run", return_value=(1, "broken")):
        assert main(["update-metadata", "distro", str(d)]) == 1
    # nothing to do is success
    assert main(["update-metadata", "extensions", str(d)]) == 0
    assert main(["update-metadata", "sdk", str(tmp_path / "missing")]) == 1


def test_update_metadata_failure_lists_failed_dirs(tmp_path, capsys):
    d = tmp_path / "deploy"
    touch_rpm(d / "target" / "qemux86-64")
    touch_rpm(d / "target" / "all")
    with mock.patch.object(metadata.Indexer, "run", return_value=(1, "broken")):
        assert main(["update-metadata", "distro", str(d)]) == 1
    err = capsys.readouterr().err
    assert "failed for 2" in err


def test_update_metadata_dry_run_lists_jobs(tmp_path, capsys):
    d = tmp_path / "deploy"
    touch_rpm(d / "sdk" / "x86_64")
    with mock.patch.object(metadata.Indexer, "run") as run:
        assert main(["update-metadata", "sdk", str(d), "--dry-run"]) == 0
    run.assert_not_called()
    line = capsys.readouterr().out.strip()
    assert line.startswith("create\t")
    assert line.endswith(str(d / "sdk" / "x86_64"))


def test_latest_release(tmp_path, capsys):
    for n in ("dev-20240101-000000", "dev-20240501-000000"):
        (tmp_path / "rel" / n).mkdir(parents=True)
    assert main(["latest-release", str(tmp_path / "rel")]) == 0
    assert capsys.readouterr().out == "dev-20240501-000000\n"
    assert main(["latest-release", str(tmp_path / "none")]) == 1


def test_stage_and_publish(deploy, tmp_path):
    repo = tmp_path / "repo"
    release = "dev-20240101-000000"
    (repo / "releases" / "edge" / release).mkdir(parents=True)
    args = ["-r", str(repo), "-d", "edge"]
    assert main(["stage-target", "qemux86-64", str(deploy)] + args) == 0
    assert main(["publish-targets"] + args) == 0
    published = repo.resolve() / "releases" / "edge" / release / "targets.json"
    assert json.loads(published.read_text()) == {"qemux86-64": ["sdk/x86_64", "target/qemux86-64-ext"]}
    assert (repo.resolve() / "staging" / "edge" / "targets.json").is_file()


def test_publish_without_release_fails(tmp_path):
    assert main(["publish-targets", "-r", str(tmp_path / "repo"), "-d", "edge"]) == 1


def test_publish_unknown_release_fails_without_creating_it(tmp_path):
    repo = tmp_path / "repo"
    (repo / "releases" / "edge" / "dev-20240101-000000").mkdir(parents=True)
    args = ["-r", str(repo), "-d", "edge", "-i", "dev-29990101-000000"]
    assert main(["publish-targets"] + args) == 1
    assert not (repo / "releases" / "edge" / "dev-29990101-000000").exists()


def test_stage_target_on_fresh_repo_starts_release(deploy, tmp_path):
    repo = tmp_path / "repo"
    assert main(["stage-target", "qemux86-64", str(deploy), "-r", str(repo), "-d", "edge"]) == 0
    staged = list((repo / "staging").glob("dev-*/fragments/qemux86-64-fragment.json"))
    assert len(staged) == 1


def test_checksums_anomalies_exit_1(tmp_path, capsys):
    staging = tmp_path / "2024-01-01-000000"
    touch_rpm(staging / "a", "x.rpm")
    touch_rpm(staging / "a", "y.rpm")

    sums = {"x.rpm": "a" * 64, "y.rpm": "b" * 64}

    def fake(path, staging_dir, rpm_cmd="rpm"):
        return RpmRecord(sums[path.name], "x-1-r0.all", "a", path)

    with mock.patch.object(checksums, "query_rpm", side_effect=fake):
        assert main(["checksums", str(staging), "-j", "2", "--format", "json"]) == 1
    data = json.loads(capsys.readouterr().out)
    assert data["anomalies"][0]["package_name"] == "x-1-r0.all"


def test_checksums_clean_exit_0(tmp_path):
    staging = tmp_path / "2024-01-01-000000"
    staging.mkdir()
    assert main(["checksums", str(staging)]) == 0


def test_extensions_matrix(tmp_path, capsys):
    ext = tmp_path / "extensions" / "pi"
    ext.mkdir(parents=True)
    (ext / "avocado.toml").write_text('supported_targets = ["raspberrypi4"]\n')

    assert main(["extensions", "matrix", "--target", "qemux86-64"]) == 0
    assert capsys.readouterr().out == '["qemux86-64"]\n'

    assert main(["extensions", "matrix", "--all", "--extensions"]) == 0
    assert json.loads(capsys.readouterr().out) == [{"extension": "pi", "target": "raspberrypi4"}]

    assert main(["extensions", "for-target", "raspberrypi4"]) == 0
    assert capsys.readouterr().out == "pi\n"

    assert main(["extensions", "matrix", "--target", "pdp11"]) == 1


def test_config_show_and_save(tmp_path, capsys):
    assert main(["config", "show"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["metadata"]["indexer"] == "createrepo_c"
    assert main(["config", "validate"]) == 0
    assert main(["config", "save", str(tmp_path / "out.yaml")]) == 0
    assert (tmp_path / "out.yaml").is_file()


def test_explicit_config_missing_fails(tmp_path):
    assert main(["-c", str(tmp_path / "nope.yaml"), "config", "show"]) == 1


def test_usage_errors_exit_1():
    with pytest.raises(SystemExit) as ei:
        main(["update-metadata", "bogus", "/tmp"])
    assert ei.value.code == 1
    with pytest.raises(SystemExit) as ei:
        main([])
    assert ei.value.code == 1


def test_no_color_turns_off_log_colors():
    from avorepo import config

    assert main(["--no-color", "config", "show"]) == 0
    assert config.get_config().get("logging.color") is False
