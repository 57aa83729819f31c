import pytest

from umini_builder import build
from umini_builder.errors import (
    BuildInterrupted,
    ConfigError,
    ExhaustedFallbackError,
    PreflightError,
    ResourceError,
    StageError,
    exit_status_for,
)
from umini_builder.lib.command import CmdResult, CommandError
from umini_builder.lib.manifests import load_package_sets
from umini_builder.pipeline import PipelineResult

from conftest import FakeExecutor


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(build, "configure_logging", lambda **_kwargs: "test.log")


def test_invalid_thread_count_exits_with_config_status(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BUILD_THREADS", "0")
    monkeypatch.setattr(build, "detect_timezone", lambda: "UTC")

    assert build.main(["--dry-run"]) == 2
    assert not (tmp_path / "uminibuild").exists()


@pytest.mark.parametrize(
    "error,status",
    [
        (ConfigError("bad"), 2),
        (PreflightError("root"), 2),
        (ResourceError("bind"), 3),
        (StageError("compress-root", "failed"), 4),
        (BuildInterrupted(2), 130),
    ],
)
def test_main_maps_errors_to_exit_status(monkeypatch, error, status):
    def fail(**_kwargs):
        raise error

    monkeypatch.setattr(build, "run_build", fail)
    assert build.main([]) == status


def test_main_returns_zero_on_success(monkeypatch):
    seen = {}

    def ok(**kwargs):
        seen.update(kwargs)
        return PipelineResult(completed=["checksum"])

    monkeypatch.setattr(build, "run_build", ok)

    assert build.main(["--dry-run", "--config", "build.yaml"]) == 0
    assert seen["dry_run"] is True
    assert seen["config_path"] == "build.yaml"


def test_exhausted_stage_error_status():
    try:
        try:
            raise ExhaustedFallbackError(["a"])
        except ExhaustedFallbackError as e:
            raise StageError("assemble-artifact", str(e)) from e
    except StageError as err:
        assert exit_status_for(err) == 5


def test_human_size():
    assert build._human_size(512) == "512B"
    assert build._human_size(10 * 1024 * 1024) == "10M"
    assert build._human_size(3 * 1024 ** 4) == "3.0T"


def test_non_numeric_config_value_exits_with_config_status(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(build, "detect_timezone", lambda: "UTC")
    (tmp_path / "build.yaml").write_text("iso:\n  min_size_bytes: ten\n", encoding="utf-8")

    assert build.main(["--dry-run", "--config", "build.yaml"]) == 2
    assert not (tmp_path / "uminibuild").exists()


def _broken_host_dependencies(executor, **_kwargs):
    result = CmdResult(argv=["apt-get", "install", "-y", "xorriso"], returncode=100, stdout="", stderr="E: broken packages")
    raise CommandError(result)


def test_prepare_failure_is_a_stage_error(monkeypatch, make_ctx):
    monkeypatch.setattr(build, "ensure_sudo", lambda executor: None)
    monkeypatch.setattr(build, "check_host_dependencies", _broken_host_dependencies)

    with pytest.raises(StageError) as excinfo:
        build.prepare(make_ctx(), FakeExecutor(), load_package_sets())

    assert excinfo.value.stage == "prepare"
    assert "apt-get install" in str(excinfo.value)
    assert "E: broken packages" in excinfo.value.diagnostics
    assert exit_status_for(excinfo.value) == 4


def test_prepare_failure_exits_with_stage_status(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WORKDIR", str(tmp_path / "uminibuild"))
    monkeypatch.setattr(build, "ensure_unprivileged", lambda: None)
    monkeypatch.setattr(build, "detect_timezone", lambda: "UTC")
    monkeypatch.setattr(build, "PrivilegedExecutor", lambda dry_run=False: FakeExecutor())
    monkeypatch.setattr(build, "ensure_sudo", lambda executor: None)
    monkeypatch.setattr(build, "check_host_dependencies", _broken_host_dependencies)

    assert build.main([]) == 4
    assert not (tmp_path / "uminibuild").exists()
