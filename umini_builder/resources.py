from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import ResourceError
from .lib.command import CommandError
from .lib.privileged import PrivilegedExecutor

logger = logging.getLogger(__name__)


@dataclass
class MountPoint:
    """A host pseudo-filesystem bound under the working root."""

    rel_path: str
    source: str
    mounted: bool = False

    def target(self, root: Path) -> Path:
        return root / self.rel_path


def default_mount_points() -> List[MountPoint]:
    # Acquisition order; dev must be bound before dev/pts.
    return [
        MountPoint("dev", "/dev"),
        MountPoint("dev/pts", "/dev/pts"),
        MountPoint("proc", "/proc"),
        MountPoint("sys", "/sys"),
        MountPoint("run", "/run"),
    ]


class ResourceGuard:
    """Acquire and release bind mounts under a chroot.

    Release order is always the exact reverse of the declared acquisition
    order. ``release()`` never raises: failures are logged and returned.
    """

    def __init__(
        self,
        executor: PrivilegedExecutor,
        root: Path,
        mount_points: Optional[Sequence[MountPoint]] = None,
        *,
        umount_timeout: float = 10.0,
    ) -> None:
        self.executor = executor
        self.root = root
        self.mount_points: List[MountPoint] = list(mount_points) if mount_points is not None else default_mount_points()
        self.umount_timeout = umount_timeout

    def bound(self) -> List[MountPoint]:
        return [mp for mp in self.mount_points if mp.mounted]

    def acquire(self, mount_points: Optional[Sequence[MountPoint]] = None) -> None:
        """Bind each entry in declared order; already-bound entries are left alone.

        Passing ``mount_points`` replaces the declared sequence, but only
        while nothing is bound, so release order cannot be scrambled.
        """

        if mount_points is not None:
            if self.bound():
                raise ResourceError("cannot redeclare mount points while some are bound")
            self.mount_points = list(mount_points)

        for mp in self.mount_points:
            target = mp.target(self.root)
            if mp.mounted or self.executor.is_mounted(target):
                if not mp.mounted:
                    logger.info("Already bound: %s", target)
                mp.mounted = True
                continue
            try:
                self.executor.make_dirs(target)
                self.executor.run(["mount", "--bind", mp.source, str(target)])
            except (CommandError, OSError) as e:
                raise ResourceError(f"failed to bind {mp.source} -> {target}: {e}", path=str(target)) from e
            mp.mounted = True
            logger.info("Bound %s -> %s", mp.source, target)

    def _unbind(self, mp: MountPoint) -> Optional[ResourceError]:
        target = str(mp.target(self.root))
        try:
            r = self.executor.run(["umount", target], check=False, timeout=self.umount_timeout)
            if r.returncode == 0:
                mp.mounted = False
                logger.info("Unmounted %s", target)
                return None
            logger.warning("Normal unmount failed for %s (rc=%s), trying lazy unmount", target, r.returncode)
        except subprocess.TimeoutExpired:
            logger.warning("Unmount of %s timed out after %ss, trying lazy unmount", target, self.umount_timeout)
        except OSError as e:
            logger.warning("Unmount of %s failed (%s), trying lazy unmount", target, e)

        try:
            r = self.executor.run(["umount", "-l", target], check=False)
        except OSError as e:
            return self._unbind_failed(mp, f"lazy unmount of {target} failed: {e}")
        if r.returncode != 0:
            return self._unbind_failed(mp, f"lazy unmount of {target} failed (rc={r.returncode}): {r.tail(5)}")
        mp.mounted = False
        logger.info("Lazily unmounted %s", target)
        return None

    def _unbind_failed(self, mp: MountPoint, message: str) -> Optional[ResourceError]:
        # umount also fails when the target was already gone (unmounted
        # elsewhere, or the whole tree lazily detached with a parent).
        target = mp.target(self.root)
        try:
            still_mounted = self.executor.is_mounted(target)
        except OSError:
            still_mounted = True
        if not still_mounted:
            mp.mounted = False
            logger.info("%s is no longer mounted", target)
            return None
        return ResourceError(message, path=str(target))

    def release(self) -> List[ResourceError]:
        """Unbind every bound entry in reverse order. Safe to call repeatedly."""

        errors: List[ResourceError] = []
        for mp in reversed(self.mount_points):
            if not mp.mounted:
                # An interrupted acquire may have bound it without recording it.
                try:
                    if not self.executor.is_mounted(mp.target(self.root)):
                        continue
                except OSError:
                    continue
                mp.mounted = True
            err = self._unbind(mp)
            if err is not None:
                logger.error("%s", err)
                errors.append(err)
        return errors

    def holders(self) -> List[int]:
        """PIDs with files open under the root (via lsof)."""
        try:
            r = self.executor.run(["lsof", "-t", "+D", str(self.root)], check=False)
        except OSError:
            return []
        pids = set()
        for line in r.stdout.splitlines():
            line = line.strip()
            if line.isdigit():
                pids.add(int(line))
        return sorted(pids)

    def terminate_holders(self) -> List[int]:
        """Kill processes still holding files under the root. Best-effort."""
        if not self.root.exists():
            return []
        pids = self.holders()
        if not pids:
            return []
        logger.warning("Killing processes still using %s: %s", self.root, pids)
        try:
            self.executor.run(["kill", "-9", *[str(p) for p in pids]], check=False)
        except OSError as e:
            logger.warning("Could not kill processes under %s: %s", self.root, e)
        return pids
