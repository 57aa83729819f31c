import os
from datetime import datetime

import pytest

from umini_builder.build_config import BuildConfig, BuildContext, build_context, load_build_config
from umini_builder.errors import ConfigError


def test_defaults_resolve_against_cwd(tmp_path):
    ctx = build_context(BuildConfig(raw={}), {}, cwd=tmp_path)

    assert ctx.release == "noble"
    assert ctx.arch == "amd64"
    assert ctx.work_dir == tmp_path / "uminibuild"
    assert ctx.output_dir == tmp_path
    assert ctx.threads == (os.cpu_count() or 1)
    assert (ctx.squashfs_comp, ctx.squashfs_block_size, ctx.iso_compression) == ("xz", "1M", "xz")
    assert ctx.preserve_work_dir is False
    assert ctx.chroot_dir == tmp_path / "uminibuild" / "chroot"
    assert ctx.squashfs_path == tmp_path / "uminibuild" / "iso" / "casper" / "filesystem.squashfs"


def test_environment_overrides_yaml(tmp_path):
    cfg = BuildConfig(raw={"release": "jammy", "squashfs": {"compression": "gzip"}})
    env = {
        "RELEASE": "noble",
        "ARCH": "arm64",
        "MIRROR": "http://ports.ubuntu.com/ubuntu-ports",
        "WORKDIR": "build",
        "OUTPUT_DIR": str(tmp_path / "isos"),
        "BUILD_THREADS": "3",
        "SQUASHFS_COMP": "zstd",
        "SQUASHFS_BLOCK_SIZE": "256K",
        "ISO_COMPRESSION": "no",
        "PRESERVE_WORKDIR": "yes",
    }

    ctx = build_context(cfg, env, cwd=tmp_path)

    assert ctx.release == "noble"
    assert ctx.arch == "arm64"
    assert ctx.mirror.startswith("http://ports.")
    assert ctx.work_dir == tmp_path / "build"
    assert ctx.output_dir == tmp_path / "isos"
    assert ctx.threads == 3
    assert ctx.squashfs_comp == "zstd"
    assert ctx.squashfs_block_size == "256K"
    assert ctx.iso_compression == "no"
    assert ctx.preserve_work_dir is True


def test_empty_env_value_falls_back_to_yaml(tmp_path):
    cfg = BuildConfig(raw={"release": "jammy"})
    assert build_context(cfg, {"RELEASE": ""}, cwd=tmp_path).release == "jammy"


@pytest.mark.parametrize("value", ["0", "-2", "many"])
def test_invalid_thread_count_is_rejected(tmp_path, value):
    with pytest.raises(ConfigError, match="BUILD_THREADS"):
        build_context(BuildConfig(raw={}), {"BUILD_THREADS": value}, cwd=tmp_path)


@pytest.mark.parametrize(
    "env",
    [
        {"SQUASHFS_COMP": "bzip2"},
        {"SQUASHFS_BLOCK_SIZE": "1X"},
        {"SQUASHFS_BLOCK_SIZE": "0"},
        {"ISO_COMPRESSION": "zstd"},
    ],
)
def test_invalid_compression_settings_are_rejected(tmp_path, env):
    with pytest.raises(ConfigError):
        build_context(BuildConfig(raw={}), env, cwd=tmp_path)


@pytest.mark.parametrize("value,expected", [("1", True), ("on", True), ("0", False), ("", False)])
def test_preserve_flag_parsing(tmp_path, value, expected):
    ctx = build_context(BuildConfig(raw={}), {"PRESERVE_WORKDIR": value}, cwd=tmp_path)
    assert ctx.preserve_work_dir is expected


def test_live_user_must_be_configured(tmp_path):
    cfg = BuildConfig(raw={"live": {"user": "guest", "users": {"umini": "umini"}}})
    with pytest.raises(ConfigError, match="guest"):
        build_context(cfg, {}, cwd=tmp_path)


def test_users_must_be_a_mapping():
    with pytest.raises(ConfigError):
        BuildConfig(raw={"live": {"users": ["umini"]}}).users


def test_image_name_is_timestamped():
    ctx = BuildContext(
        release="noble",
        arch="amd64",
        mirror="http://archive.ubuntu.com/ubuntu",
        work_dir=None,
        output_dir=None,
        threads=1,
        squashfs_comp="xz",
        squashfs_block_size="1M",
        iso_compression="xz",
        build_time=datetime(2024, 5, 1, 9, 7),
    )
    assert ctx.image_name == "uMini-noble-20240501-0907.iso"


def test_load_yaml_config(tmp_path):
    path = tmp_path / "build.yaml"
    path.write_text(
        "release: jammy\n"
        "iso:\n  volume_id: TEST_LIVE\n  min_size_bytes: 1024\n"
        "live:\n  hostname: testbox\n",
        encoding="utf-8",
    )

    cfg = load_build_config(str(path))
    ctx = build_context(cfg, {}, cwd=tmp_path)

    assert ctx.release == "jammy"
    assert ctx.volume_id == "TEST_LIVE"
    assert ctx.min_artifact_bytes == 1024
    assert ctx.hostname == "testbox"


def test_no_config_path_gives_defaults():
    assert load_build_config(None).raw == {}


def test_config_errors(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_build_config(str(tmp_path / "missing.yaml"))

    json_path = tmp_path / "build.json"
    json_path.write_text("{}", encoding="utf-8")
    with pytest.raises(ConfigError, match="YAML"):
        load_build_config(str(json_path))

    list_path = tmp_path / "list.yaml"
    list_path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_build_config(str(list_path))


@pytest.mark.parametrize(
    "text,key",
    [
        ("iso: foo\n", "'iso' must be a mapping"),
        ("live: [a, b]\n", "'live' must be a mapping"),
        ("iso:\n  min_size_bytes: ten\n", "iso.min_size_bytes"),
        ("iso:\n  min_free_bytes: -5\n", "iso.min_free_bytes"),
        ("iso:\n  min_size_bytes: true\n", "iso.min_size_bytes"),
        ("umount_timeout: soon\n", "umount_timeout"),
        ("umount_timeout: 0\n", "umount_timeout"),
    ],
)
def test_bad_yaml_values_are_config_errors(tmp_path, text, key):
    path = tmp_path / "build.yaml"
    path.write_text(text, encoding="utf-8")

    with pytest.raises(ConfigError, match=key):
        build_context(load_build_config(str(path)), {}, cwd=tmp_path)


def test_numeric_yaml_values_accept_numeric_strings():
    cfg = BuildConfig(raw={"iso": {"min_size_bytes": "2048"}, "umount_timeout": "2.5"})

    assert cfg.min_artifact_bytes == 2048
    assert cfg.umount_timeout == 2.5
    assert cfg.min_free_bytes == 2 * 1024 ** 3
