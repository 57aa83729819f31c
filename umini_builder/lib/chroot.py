from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Sequence

from .command import CmdResult
from .privileged import PrivilegedExecutor

logger = logging.getLogger(__name__)

CHROOT_ENV: Mapping[str, str] = {
    "LANG": "C.UTF-8",
    "LC_ALL": "C.UTF-8",
    "DEBIAN_FRONTEND": "noninteractive",
    "APT_LISTCHANGES_FRONTEND": "none",
    "DEBCONF_NONINTERACTIVE_SEEN": "true",
    "DEBCONF_NOWARNINGS": "yes",
}


def chroot_cmd(
    executor: PrivilegedExecutor,
    target_root: Path,
    argv: Sequence[str],
    *,
    check: bool = True,
    input_text: str | None = None,
) -> CmdResult:
    """Run a command inside target root.

    The environment is passed as explicit ``env`` assignments so nothing
    depends on sudo preserving the caller's variables.
    """

    env_args = [f"{k}={v}" for k, v in CHROOT_ENV.items()]
    return executor.run(
        ["chroot", str(target_root), "env", *env_args, *argv],
        check=check,
        input_text=input_text,
    )
