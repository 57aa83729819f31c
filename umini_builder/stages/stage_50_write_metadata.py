from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from .. import rootfs_content
from ..build_config import BuildContext
from ..lib.manifests import PackageSets
from ..lib.pkg import installed_packages
from ..lib.privileged import PrivilegedExecutor

logger = logging.getLogger(__name__)

REQUIRED_FILES = (
    "casper/vmlinuz",
    "casper/initrd.img",
    "casper/filesystem.squashfs",
    "casper/filesystem.size",
    "casper/filesystem.manifest",
    "boot/grub/grub.cfg",
    "md5sum.txt",
)


class WriteMetadataStage:
    name = "write-metadata"

    def __init__(self, executor: PrivilegedExecutor, packages: PackageSets) -> None:
        self.executor = executor
        self.packages = packages

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        if not ctx.squashfs_path.is_file():
            return "compressed root image is missing"
        return None

    def root_size(self, ctx: BuildContext) -> int:
        r = self.executor.run(["du", "-sb", str(ctx.chroot_dir)])
        return int(r.stdout.split()[0]) if r.stdout.strip() else 0

    def md5sums(self, ctx: BuildContext) -> str:
        r = self.executor.run(
            ["find", ".", "-type", "f", "!", "-name", "md5sum.txt", "-exec", "md5sum", "{}", "+"],
            cwd=str(ctx.iso_dir),
        )
        lines = sorted(r.stdout.splitlines(), key=lambda line: line.split("  ", 1)[-1])
        return "\n".join(lines) + "\n"

    def run(self, ctx: BuildContext) -> None:
        casper = ctx.casper_dir
        size = self.root_size(ctx)
        logger.info("Filesystem size: %d bytes (%d MB)", size, size // (1024 * 1024))
        self.executor.write_file(casper / "filesystem.size", f"{size}\n")

        now = datetime.now(timezone.utc)
        self.executor.write_file(ctx.iso_dir / ".disk/info", rootfs_content.disk_info(ctx.hostname, f"{ctx.build_time:%c}"))
        self.executor.write_file(ctx.iso_dir / ".disk/casper-uuid", f"{now:%Y%m%d-%H:%M}\n")

        manifest = installed_packages(self.executor, ctx.chroot_dir)
        self.executor.write_file(casper / "filesystem.manifest", manifest)
        self.executor.write_file(casper / "filesystem.manifest-desktop", manifest)
        self.executor.write_file(
            casper / "filesystem.manifest-remove", "".join(f"{p}\n" for p in self.packages.manifest_remove)
        )

        logger.info("Creating bootloader configuration...")
        self.executor.write_file(ctx.iso_dir / "boot/grub/grub.cfg", rootfs_content.grub_cfg(ctx.hostname, ctx.live_user))

        logger.info("Generating checksums...")
        self.executor.write_file(ctx.iso_dir / "md5sum.txt", self.md5sums(ctx))

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        missing = [rel for rel in REQUIRED_FILES if not (ctx.iso_dir / rel).is_file()]
        if missing:
            return f"missing from the ISO tree: {', '.join(missing)}"
        return None
