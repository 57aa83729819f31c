from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Sequence

from ..errors import PreflightError
from .command import run_cmd
from .privileged import PrivilegedExecutor

logger = logging.getLogger(__name__)

ZONEINFO_DIR = Path("/usr/share/zoneinfo")


def ensure_unprivileged() -> None:
    if os.geteuid() == 0:
        raise PreflightError("Do not run as root; privileged calls are elevated individually via sudo")


def ensure_sudo(executor: PrivilegedExecutor) -> None:
    """Make sure the elevation command works, prompting once if needed."""
    if executor.dry_run:
        return
    try:
        r = run_cmd([*executor.elevate, "-n", "true"], check=False)
        if r.returncode == 0:
            return
        logger.info("Sudo privileges required; prompting for password")
        # Interactive: stdin/stdout stay attached to the terminal.
        rc = subprocess.call([*executor.elevate, "-v"])
    except OSError as e:
        raise PreflightError(f"Elevation command unavailable: {executor.elevate[0]}") from e
    if rc != 0:
        raise PreflightError("Could not obtain sudo privileges")


def missing_host_packages(packages: Sequence[str]) -> List[str]:
    missing = []
    for pkg in packages:
        r = run_cmd(["dpkg", "-s", pkg], check=False)
        if r.returncode != 0:
            missing.append(pkg)
    return missing


def check_host_dependencies(
    executor: PrivilegedExecutor,
    *,
    required: Sequence[str],
    optional: Sequence[str] = (),
) -> None:
    logger.info("Checking build dependencies...")
    if executor.dry_run:
        return
    missing = missing_host_packages(required)
    if missing:
        logger.info("Installing missing required packages: %s", " ".join(missing))
        executor.run(["apt-get", "-qq", "update"])
        executor.run(["apt-get", "-qq", "install", "-y", *missing])

    optional_missing = missing_host_packages(optional)
    if optional_missing:
        logger.info("Optional packages not found (would improve performance): %s", " ".join(optional_missing))


def _valid_timezone(name: str, zoneinfo: Path) -> bool:
    return bool(name) and (zoneinfo / name).is_file()


def detect_timezone(
    *,
    localtime: Path = Path("/etc/localtime"),
    timezone_file: Path = Path("/etc/timezone"),
    zoneinfo: Path = ZONEINFO_DIR,
) -> str:
    """Best-effort host timezone, falling back to UTC.

    Tries timedatectl, then the /etc/localtime symlink, then /etc/timezone.
    """

    candidate = ""
    if shutil.which("timedatectl"):
        r = run_cmd(["timedatectl", "show", "--property=Timezone", "--value"], check=False)
        if r.returncode == 0:
            candidate = r.stdout.strip()

    if not candidate and localtime.is_symlink():
        target = os.readlink(localtime)
        if "zoneinfo/" in target:
            candidate = target.split("zoneinfo/", 1)[1]

    if not candidate and timezone_file.is_file():
        candidate = timezone_file.read_text(encoding="utf-8").strip()

    if _valid_timezone(candidate, zoneinfo):
        return candidate
    logger.info("Could not detect host timezone (got %r); using UTC", candidate)
    return "UTC"


def free_bytes(path: Path) -> int:
    return shutil.disk_usage(str(path)).free
