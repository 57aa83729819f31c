from __future__ import annotations

import logging
from typing import Optional

from ..build_config import BuildContext
from ..lib.manifests import PackageSets
from ..lib.pkg import debootstrap_rootfs
from ..lib.privileged import PrivilegedExecutor

logger = logging.getLogger(__name__)


class BootstrapStage:
    name = "bootstrap"

    def __init__(self, executor: PrivilegedExecutor, packages: PackageSets) -> None:
        self.executor = executor
        self.packages = packages

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        for d in (ctx.chroot_dir, ctx.iso_dir):
            if not d.is_dir():
                return f"working directory {d} does not exist"
        if any(ctx.chroot_dir.iterdir()):
            return f"{ctx.chroot_dir} is not empty (stale root from another run?)"
        return None

    def run(self, ctx: BuildContext) -> None:
        logger.info("Creating minimal base system (%s/%s) from %s", ctx.release, ctx.arch, ctx.mirror)
        logger.info("Essential packages: %s", ",".join(self.packages.debootstrap_essential))
        debootstrap_rootfs(
            self.executor,
            target_root=ctx.chroot_dir,
            suite=ctx.release,
            mirror=ctx.mirror,
            arch=ctx.arch,
            include=self.packages.debootstrap_essential,
        )

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        for rel in ("usr/bin/dpkg", "etc/apt"):
            if not (ctx.chroot_dir / rel).exists():
                return f"bootstrapped root is missing {rel}"
        return None
