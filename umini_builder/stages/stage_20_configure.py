from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .. import rootfs_content
from ..build_config import BuildContext
from ..lib.chroot import chroot_cmd
from ..lib.manifests import PackageSets
from ..lib.pkg import apt_cleanup, apt_install, apt_update
from ..lib.privileged import PrivilegedExecutor
from ..resources import ResourceGuard

logger = logging.getLogger(__name__)

# Emptied (not removed) to keep the live image small.
PRUNED_DIRS = [
    "usr/share/doc",
    "usr/share/man",
    "usr/share/info",
    "var/cache/apt",
    "var/lib/apt/lists",
    "tmp",
    "var/tmp",
]


def kernel_images(root: Path) -> List[Path]:
    return sorted((root / "boot").glob("vmlinuz-*"))


class ConfigureStage:
    name = "configure"

    def __init__(self, executor: PrivilegedExecutor, guard: ResourceGuard, packages: PackageSets) -> None:
        self.executor = executor
        self.guard = guard
        self.packages = packages

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        if not (ctx.chroot_dir / "usr/bin/dpkg").exists():
            return "root filesystem has not been bootstrapped"
        return None

    def _write(self, ctx: BuildContext, rel: str, contents: str, *, mode: Optional[int] = None) -> None:
        self.executor.write_file(ctx.chroot_dir / rel, contents, mode=mode)

    def write_static_config(self, ctx: BuildContext) -> None:
        self._write(ctx, "etc/hostname", ctx.hostname + "\n")
        self._write(ctx, "etc/hosts", rootfs_content.hosts(ctx.hostname))
        self._write(ctx, "etc/locale.gen", rootfs_content.locale_gen())
        self._write(ctx, "etc/timezone", ctx.timezone + "\n")
        self._write(ctx, "etc/apt/sources.list", rootfs_content.sources_list(ctx.mirror, ctx.release))
        self._write(ctx, "etc/apt/apt.conf.d/99umini", rootfs_content.apt_tuning())
        self._write(ctx, "etc/systemd/network/20-wired.network", rootfs_content.wired_network())
        self._write(
            ctx,
            "etc/systemd/system/getty@tty1.service.d/override.conf",
            rootfs_content.autologin_override(ctx.live_user),
        )
        self._write(
            ctx,
            "etc/profile.d/uminilive.sh",
            rootfs_content.welcome_script(ctx.users, ctx.root_password, ctx.live_user),
            mode=0o755,
        )

    def _in_root(self, ctx: BuildContext, *argv: str, input_text: Optional[str] = None) -> None:
        chroot_cmd(self.executor, ctx.chroot_dir, list(argv), input_text=input_text)

    def create_users(self, ctx: BuildContext) -> None:
        for user, password in ctx.users:
            exists = chroot_cmd(self.executor, ctx.chroot_dir, ["id", user], check=False)
            if exists.returncode != 0:
                self._in_root(ctx, "adduser", "--disabled-password", "--gecos", "", user)
            self._in_root(ctx, "chpasswd", input_text=f"{user}:{password}\n")
            self._in_root(ctx, "usermod", "-aG", "sudo", user)
        self._in_root(ctx, "chpasswd", input_text=f"root:{ctx.root_password}\n")

    def prune(self, ctx: BuildContext) -> None:
        for rel in PRUNED_DIRS:
            self.executor.run(["find", str(ctx.chroot_dir / rel), "-mindepth", "1", "-delete"], check=False)

    def run(self, ctx: BuildContext) -> None:
        root = ctx.chroot_dir
        self.write_static_config(ctx)
        # Host DNS for apt while configuring; replaced by the resolved stub below.
        self.executor.copy(Path("/etc/resolv.conf"), root / "etc/resolv.conf")

        self.guard.acquire()
        try:
            self._in_root(ctx, "locale-gen")
            self._in_root(
                ctx, "update-locale", f"LANG={rootfs_content.LOCALE}", "LANGUAGE=en_US", f"LC_ALL={rootfs_content.LOCALE}"
            )
            self._in_root(ctx, "ln", "-sfn", f"/usr/share/zoneinfo/{ctx.timezone}", "/etc/localtime")

            apt_update(self.executor, root)
            logger.info("Installing system packages...")
            apt_install(self.executor, root, self.packages.system)
            logger.info("Installing live system packages...")
            apt_install(self.executor, root, self.packages.live_system)

            logger.info("Creating users...")
            self.create_users(ctx)

            self._in_root(ctx, "systemctl", "enable", "iwd", "systemd-networkd", "systemd-resolved")

            apt_cleanup(self.executor, root)
            self.prune(ctx)
            self._in_root(ctx, "ln", "-sf", rootfs_content.RESOLVED_STUB, "/etc/resolv.conf")

            logger.info("Updating initramfs...")
            self._in_root(ctx, "update-initramfs", "-u", "-k", "all")
        finally:
            errors = self.guard.release()
        if errors:
            # teardown retries the release; the postcondition reports it
            logger.warning("%d mount(s) could not be released after configure", len(errors))

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        if not kernel_images(ctx.chroot_dir):
            return f"no kernel image (vmlinuz-*) found under {ctx.chroot_dir / 'boot'}"
        if self.guard.bound():
            return "pseudo-filesystems are still bound under the root"
        return None
