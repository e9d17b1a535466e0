from __future__ import annotations

import json
import os
import subprocess
import sys
import zipfile
from pathlib import Path

import pytest

from gomod_linker import get_version
from gomod_linker.__main__ import main, parse_artifact
from gomod_linker.canonical import to_canonical_json
from gomod_linker.errors import ConfigError
from gomod_linker.models import BuildStartReport
from gomod_linker.settings import RuntimeSettings


REPO_ROOT = Path(__file__).resolve().parents[1]

_ENV_NAMES = (
    "GOMOD_LINKER_SCAN_DEPENDENCIES",
    "GOMOD_LINKER_MODULE_MODE",
    "GOMOD_LINKER_PARALLEL_SESSION",
    "GOMOD_LINKER_RESTORE_GO_MOD",
    "GOMOD_LINKER_DEPENDENCY_TEMP_FOLDER",
    "GOMOD_LINKER_SESSION_ID",
    "GOMOD_LINKER_BUILD_FOLDERS_MANIFEST",
    "GOMOD_LINKER_SESSION_LOCK_DIR",
    "GOMOD_LINKER_INCLUDE_TEST_DEPENDENCIES",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_runtime_settings_defaults(tmp_path: Path) -> None:
    settings = RuntimeSettings.from_env()
    assert settings.scan_dependencies is True
    assert settings.module_mode is True
    assert settings.restore_go_mod is True
    assert settings.force_clean_dependency is False
    assert settings.needs_session_lock is False
    assert settings.dependency_temp_path(tmp_path) == tmp_path / ".__deps__"


def test_runtime_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GOMOD_LINKER_MODULE_MODE", "off")
    monkeypatch.setenv("GOMOD_LINKER_PARALLEL_SESSION", "YES")
    monkeypatch.setenv("GOMOD_LINKER_DEPENDENCY_TEMP_FOLDER", " unpacked ")
    settings = RuntimeSettings.from_env()
    assert settings.module_mode is False
    assert settings.parallel_session is True
    assert settings.needs_session_lock is False
    assert settings.dependency_temp_path(tmp_path) == tmp_path / "unpacked"
    assert settings.dependency_temp_path(Path("/elsewhere")) == Path("/elsewhere/unpacked")


def test_runtime_settings_reads_dotenv_file(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("GOMOD_LINKER_RESTORE_GO_MOD=false\n", encoding="utf-8")
    try:
        assert RuntimeSettings.from_env().restore_go_mod is False
    finally:
        os.environ.pop("GOMOD_LINKER_RESTORE_GO_MOD", None)


def test_runtime_settings_invalid_env_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOMOD_LINKER_SCAN_DEPENDENCIES", "maybe")
    with pytest.raises(ValueError):
        RuntimeSettings.from_env()


def test_runtime_settings_rejects_unsafe_session_id(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOMOD_LINKER_SESSION_ID", "../x")
    with pytest.raises(ValueError):
        RuntimeSettings.from_env()


def test_parse_artifact() -> None:
    artifact = parse_artifact("ex:lib=/tmp/lib-1.0.zip")
    assert artifact.artifact_id == "ex:lib"
    assert artifact.archive == Path("/tmp/lib-1.0.zip")
    assert parse_artifact("/tmp/util.zip").artifact_id == "util.zip"
    with pytest.raises(ConfigError):
        parse_artifact("=/tmp/x.zip")


def test_canonical_json_report_is_sorted_and_compact() -> None:
    report = BuildStartReport(module_mode=True, scanned=False)
    rendered = to_canonical_json(report)
    assert rendered.startswith('{"dependency_descriptors_changed":0,')
    assert json.loads(rendered)["scanned"] is False


def test_get_version_returns_string() -> None:
    assert isinstance(get_version(), str)


def test_main_link_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "src"
    dep = tmp_path / "dep"
    source.mkdir()
    dep.mkdir()
    (source / "go.mod").write_text("module app\n\nrequire ex.org/dep v1.0.0\n", encoding="utf-8")
    (dep / "go.mod").write_text("module ex.org/dep\n", encoding="utf-8")

    assert main(["link", "--source", str(source), "--deps", str(dep)]) == 0

    out = capsys.readouterr().out
    assert "project_changes=1" in out
    assert f"replace ex.org/dep => {os.path.join('..', 'dep')}" in (source / "go.mod").read_text(encoding="utf-8")


def test_main_reports_malformed_descriptor(tmp_path: Path) -> None:
    source = tmp_path / "src"
    source.mkdir()
    (source / "go.mod").write_text("module app\nrequire (\n", encoding="utf-8")
    assert main(["link", "--source", str(source)]) == 1


def test_cli_start_and_end_round_trip(tmp_path: Path) -> None:
    source = tmp_path / "src"
    source.mkdir()
    original = "module app\n\nrequire ex.org/dep v1.0.0\n"
    (source / "go.mod").write_text(original, encoding="utf-8")
    archive = tmp_path / "dep-1.0.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("go.mod", "module ex.org/dep\n")

    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join([str(REPO_ROOT / "src"), env.get("PYTHONPATH", "")])
    common = ["--source", str(source), "--build-dir", str(tmp_path / "target")]

    started = subprocess.run(
        [sys.executable, "-m", "gomod_linker", "start", *common, "--artifact", f"ex:dep={archive}"],
        cwd=tmp_path,
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )
    assert started.returncode == 0, started.stderr
    report = json.loads(started.stdout)
    assert report["project_descriptors_changed"] == 1
    assert "replace ex.org/dep =>" in (source / "go.mod").read_text(encoding="utf-8")

    ended = subprocess.run(
        [sys.executable, "-m", "gomod_linker", "end", *common],
        cwd=tmp_path,
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )
    assert ended.returncode == 0, ended.stderr
    assert json.loads(ended.stdout)["restored_directories"] == [str(source)]
    assert (source / "go.mod").read_text(encoding="utf-8") == original
