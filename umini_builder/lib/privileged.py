from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)


class PrivilegedExecutor:
    """Explicit capability for commands that need elevated privileges.

    The build process itself runs unprivileged. Every call made through
    ``run()`` is prefixed with the elevation command (``sudo`` by default),
    so no code path assumes it already runs as root. Read-only checks that
    need no elevation go through ``run_unprivileged()``.
    """

    def __init__(self, *, elevate: Sequence[str] = ("sudo",), dry_run: bool = False) -> None:
        self.elevate = list(elevate)
        self.dry_run = dry_run

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> CmdResult:
        return run_cmd(
            [*self.elevate, *argv],
            check=check,
            env=env,
            cwd=cwd,
            input_text=input_text,
            timeout=timeout,
            dry_run=self.dry_run,
            send_signal=self.signal_elevated,
        )

    def signal_elevated(self, pids: Sequence[int], sig: int) -> None:
        """Signal root-owned processes (the command sudo started) via an elevated kill."""
        name = signal.Signals(sig).name[len("SIG"):]
        run_cmd([*self.elevate, "kill", "-s", name, "--", *[str(p) for p in pids]], check=False, timeout=10)

    def run_unprivileged(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        timeout: float | None = None,
    ) -> CmdResult:
        return run_cmd(argv, check=check, timeout=timeout, dry_run=self.dry_run)

    def make_dirs(self, *paths: Path) -> None:
        self.run(["mkdir", "-p", *[str(p) for p in paths]])

    def write_file(self, path: Path, contents: str, *, mode: Optional[int] = None) -> None:
        """Write a root-owned file, creating parent directories."""
        self.run(["mkdir", "-p", str(path.parent)])
        self.run(["tee", str(path)], input_text=contents)
        if mode is not None:
            self.run(["chmod", format(mode, "o"), str(path)])

    def copy(self, src: Path, dst: Path) -> None:
        self.run(["cp", "--remove-destination", str(src), str(dst)])

    def remove(self, path: Path) -> None:
        self.run(["rm", "-f", str(path)], check=False)

    def remove_tree(self, path: Path) -> CmdResult:
        # --one-file-system keeps rm from descending into anything still bound
        return self.run(["rm", "-rf", "--one-file-system", str(path)], check=False)

    def is_mounted(self, path: Path) -> bool:
        if self.dry_run:
            return False
        r = run_cmd(["mountpoint", "-q", str(path)], check=False)
        return r.returncode == 0
