from __future__ import annotations

import logging
from typing import List, Optional

from ..build_config import BuildContext
from ..lib.privileged import PrivilegedExecutor
from ..resources import ResourceGuard

logger = logging.getLogger(__name__)


def mksquashfs_argv(ctx: BuildContext) -> List[str]:
    argv = [
        "mksquashfs",
        str(ctx.chroot_dir),
        str(ctx.squashfs_path),
        "-comp",
        ctx.squashfs_comp,
        "-b",
        ctx.squashfs_block_size,
        "-processors",
        str(ctx.threads),
        "-noappend",
        "-no-progress",
    ]
    if ctx.squashfs_exclude:
        # -e consumes the remaining arguments on older squashfs-tools
        argv += ["-e", *ctx.squashfs_exclude]
    return argv


class CompressRootStage:
    name = "compress-root"

    def __init__(self, executor: PrivilegedExecutor, guard: ResourceGuard) -> None:
        self.executor = executor
        self.guard = guard

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        # Compressing with /proc or /dev bound would pull the host into the image.
        bound = [
            mp.rel_path
            for mp in self.guard.mount_points
            if mp.mounted or self.executor.is_mounted(mp.target(ctx.chroot_dir))
        ]
        if bound:
            return f"pseudo-filesystems still bound under the root: {', '.join(bound)}"
        if not ctx.casper_dir.is_dir():
            return f"{ctx.casper_dir} does not exist"
        return None

    def run(self, ctx: BuildContext) -> None:
        logger.info("Creating compressed filesystem (this may take several minutes)...")
        self.executor.run(mksquashfs_argv(ctx))

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        if not ctx.squashfs_path.is_file():
            return f"{ctx.squashfs_path} was not created"
        r = self.executor.run(["unsquashfs", "-l", str(ctx.squashfs_path)], check=False)
        if r.returncode != 0:
            return f"{ctx.squashfs_path} failed the integrity check"
        return None
