from __future__ import annotations

import logging
from typing import Optional

from ..build_config import BuildContext
from ..errors import StageError
from ..lib.privileged import PrivilegedExecutor
from .stage_20_configure import kernel_images

logger = logging.getLogger(__name__)


class ExtractBootAssetsStage:
    name = "extract-boot-assets"

    def __init__(self, executor: PrivilegedExecutor) -> None:
        self.executor = executor

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        if not kernel_images(ctx.chroot_dir):
            return "no kernel image in the root filesystem"
        return None

    def run(self, ctx: BuildContext) -> None:
        self.executor.make_dirs(ctx.casper_dir)
        kernels = kernel_images(ctx.chroot_dir)
        if not kernels:
            if ctx.dry_run:
                logger.info("Would copy kernel and initrd into %s", ctx.casper_dir)
                return
            raise StageError(self.name, "no kernel image found")

        version = kernels[0].name[len("vmlinuz-"):]
        logger.info("Using kernel version: %s", version)
        boot = ctx.chroot_dir / "boot"
        self.executor.copy(boot / f"vmlinuz-{version}", ctx.casper_dir / "vmlinuz")
        self.executor.copy(boot / f"initrd.img-{version}", ctx.casper_dir / "initrd.img")

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        for name in ("vmlinuz", "initrd.img"):
            p = ctx.casper_dir / name
            if not p.is_file() or p.stat().st_size == 0:
                return f"{p} missing or empty"
        return None
