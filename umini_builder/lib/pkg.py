from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .chroot import chroot_cmd
from .privileged import PrivilegedExecutor

logger = logging.getLogger(__name__)


def debootstrap_rootfs(
    executor: PrivilegedExecutor,
    *,
    target_root: Path,
    suite: str,
    mirror: str,
    arch: str,
    include: Sequence[str] = (),
    variant: str = "minbase",
) -> None:
    argv = ["debootstrap", f"--arch={arch}", f"--variant={variant}"]
    if include:
        argv.append("--include=" + ",".join(include))
    argv += [suite, str(target_root), mirror]
    executor.run(argv)


def apt_update(executor: PrivilegedExecutor, target_root: Path) -> None:
    chroot_cmd(executor, target_root, ["apt-get", "-qq", "update"])


def apt_install(
    executor: PrivilegedExecutor,
    target_root: Path,
    packages: Sequence[str],
    *,
    with_recommends: bool = False,
) -> None:
    if not packages:
        return
    argv = [
        "apt-get",
        "-qq",
        "install",
        "-y",
    ]
    if not with_recommends:
        argv.append("--no-install-recommends")
    chroot_cmd(executor, target_root, [*argv, *packages])


def apt_cleanup(executor: PrivilegedExecutor, target_root: Path) -> None:
    chroot_cmd(executor, target_root, ["apt-get", "-qq", "clean"])
    chroot_cmd(executor, target_root, ["apt-get", "-qq", "autoremove", "-y"])


def installed_packages(executor: PrivilegedExecutor, target_root: Path) -> str:
    """Return ``name version`` lines for every installed package."""
    r = chroot_cmd(executor, target_root, ["dpkg-query", "-W", "--showformat=${Package} ${Version}\\n"])
    return r.stdout
