from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError

SQUASHFS_COMPRESSORS = {"gzip", "lzo", "lz4", "xz", "zstd", "lzma"}
ISO_COMPRESSORS = {"no", "xz", "gz", "lzo"}
_BLOCK_SIZE_RE = re.compile(r"^[1-9][0-9]*[KkMm]?$")
_TRUE = {"1", "true", "yes", "on"}

MIB = 1024 * 1024
GIB = 1024 * MIB


@dataclass(frozen=True)
class BuildConfig:
    """YAML defaults; every property is overridable from the environment."""

    raw: Dict[str, Any]

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.raw.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"'{name}' must be a mapping, got {section!r}")
        return section

    def _number(self, key: str, value: Any, default: float, cast: Callable[[Any], float]) -> Any:
        if value is None or value == "":
            return cast(default)
        if isinstance(value, bool):
            raise ConfigError(f"{key} must be a number, got {value!r}")
        try:
            n = cast(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be a number, got {value!r}") from None
        if n <= 0:
            raise ConfigError(f"{key} must be positive, got {value!r}")
        return n

    @property
    def release(self) -> str:
        return str(self.raw.get("release") or "noble")

    @property
    def arch(self) -> str:
        return str(self.raw.get("arch") or "amd64")

    @property
    def mirror(self) -> str:
        return str(self.raw.get("mirror") or "http://archive.ubuntu.com/ubuntu")

    @property
    def work_dir(self) -> Optional[str]:
        return self._section("paths").get("work_dir")

    @property
    def output_dir(self) -> Optional[str]:
        return self._section("paths").get("output_dir")

    @property
    def squashfs_comp(self) -> str:
        return str(self._section("squashfs").get("compression") or "xz")

    @property
    def squashfs_block_size(self) -> str:
        return str(self._section("squashfs").get("block_size") or "1M")

    @property
    def iso_compression(self) -> str:
        return str(self._section("iso").get("compression") or "xz")

    @property
    def volume_id(self) -> str:
        return str(self._section("iso").get("volume_id") or "UMINI_LIVE")

    @property
    def min_artifact_bytes(self) -> int:
        return self._number("iso.min_size_bytes", self._section("iso").get("min_size_bytes"), 10 * MIB, int)

    @property
    def min_free_bytes(self) -> int:
        return self._number("iso.min_free_bytes", self._section("iso").get("min_free_bytes"), 2 * GIB, int)

    @property
    def hostname(self) -> str:
        return str(self._section("live").get("hostname") or "uMini")

    @property
    def live_user(self) -> str:
        return str(self._section("live").get("user") or "umini")

    @property
    def users(self) -> Tuple[Tuple[str, str], ...]:
        users = self._section("live").get("users") or {"umini": "umini", "ubuntu": "ubuntu"}
        if not isinstance(users, dict):
            raise ConfigError("live.users must be a mapping of username: password")
        return tuple((str(k), str(v)) for k, v in users.items())

    @property
    def root_password(self) -> str:
        return str(self._section("live").get("root_password") or "toor")

    @property
    def umount_timeout(self) -> float:
        return self._number("umount_timeout", self.raw.get("umount_timeout"), 10.0, float)


def load_build_config(path: Optional[str]) -> BuildConfig:
    if not path:
        return BuildConfig(raw={})

    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Build config not found: {path}")

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("build config must be YAML")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError("build config must contain a mapping/object")

    return BuildConfig(raw=raw)


@dataclass(frozen=True)
class BuildContext:
    release: str
    arch: str
    mirror: str
    work_dir: Path
    output_dir: Path
    threads: int
    squashfs_comp: str
    squashfs_block_size: str
    iso_compression: str
    preserve_work_dir: bool = False
    dry_run: bool = False
    hostname: str = "uMini"
    live_user: str = "umini"
    users: Tuple[Tuple[str, str], ...] = (("umini", "umini"), ("ubuntu", "ubuntu"))
    root_password: str = "toor"
    timezone: str = "UTC"
    volume_id: str = "UMINI_LIVE"
    min_artifact_bytes: int = 10 * MIB
    min_free_bytes: int = 2 * GIB
    umount_timeout: float = 10.0
    squashfs_exclude: Tuple[str, ...] = ("boot",)
    build_time: datetime = field(default_factory=datetime.now)

    @property
    def chroot_dir(self) -> Path:
        return self.work_dir / "chroot"

    @property
    def iso_dir(self) -> Path:
        return self.work_dir / "iso"

    @property
    def casper_dir(self) -> Path:
        return self.iso_dir / "casper"

    @property
    def squashfs_path(self) -> Path:
        return self.casper_dir / "filesystem.squashfs"

    @property
    def image_name(self) -> str:
        return f"uMini-{self.release}-{self.build_time:%Y%m%d-%H%M}.iso"

    @property
    def image_path(self) -> Path:
        return self.output_dir / self.image_name


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUE


def _threads(value: Optional[str]) -> int:
    if not value:
        return os.cpu_count() or 1
    try:
        n = int(value)
    except ValueError:
        raise ConfigError(f"BUILD_THREADS must be an integer, got {value!r}") from None
    if n < 1:
        raise ConfigError(f"BUILD_THREADS must be >= 1, got {n}")
    return n


def build_context(
    cfg: BuildConfig,
    environ: Mapping[str, str],
    *,
    cwd: Optional[Path] = None,
    timezone: str = "UTC",
    dry_run: bool = False,
) -> BuildContext:
    """Resolve YAML defaults and environment overrides into a BuildContext."""

    base = cwd or Path.cwd()

    def pick(var: str, default: Any) -> str:
        v = environ.get(var)
        return str(v) if v not in (None, "") else str(default)

    work_dir = Path(pick("WORKDIR", cfg.work_dir or base / "uminibuild")).expanduser()
    if not work_dir.is_absolute():
        work_dir = base / work_dir
    output_dir = Path(pick("OUTPUT_DIR", cfg.output_dir or base)).expanduser()
    if not output_dir.is_absolute():
        output_dir = base / output_dir

    squashfs_comp = pick("SQUASHFS_COMP", cfg.squashfs_comp)
    if squashfs_comp not in SQUASHFS_COMPRESSORS:
        raise ConfigError(
            f"SQUASHFS_COMP={squashfs_comp!r} not supported (expected one of {sorted(SQUASHFS_COMPRESSORS)})"
        )

    block_size = pick("SQUASHFS_BLOCK_SIZE", cfg.squashfs_block_size)
    if not _BLOCK_SIZE_RE.match(block_size):
        raise ConfigError(f"SQUASHFS_BLOCK_SIZE={block_size!r} is not a size like 131072, 128K or 1M")

    iso_compression = pick("ISO_COMPRESSION", cfg.iso_compression)
    if iso_compression not in ISO_COMPRESSORS:
        raise ConfigError(
            f"ISO_COMPRESSION={iso_compression!r} not supported (expected one of {sorted(ISO_COMPRESSORS)})"
        )

    live_user = cfg.live_user
    users = cfg.users
    if live_user not in dict(users):
        raise ConfigError(f"live.user {live_user!r} is not one of the configured users")

    return BuildContext(
        release=pick("RELEASE", cfg.release),
        arch=pick("ARCH", cfg.arch),
        mirror=pick("MIRROR", cfg.mirror),
        work_dir=work_dir,
        output_dir=output_dir,
        threads=_threads(environ.get("BUILD_THREADS")),
        squashfs_comp=squashfs_comp,
        squashfs_block_size=block_size,
        iso_compression=iso_compression,
        preserve_work_dir=_env_flag(environ.get("PRESERVE_WORKDIR")) or bool(cfg.raw.get("preserve_work_dir")),
        dry_run=dry_run,
        hostname=cfg.hostname,
        live_user=live_user,
        users=users,
        root_password=cfg.root_password,
        timezone=timezone,
        volume_id=cfg.volume_id,
        min_artifact_bytes=cfg.min_artifact_bytes,
        min_free_bytes=cfg.min_free_bytes,
        umount_timeout=cfg.umount_timeout,
    )
