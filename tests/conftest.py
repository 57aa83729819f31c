import shutil
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from umini_builder.build_config import BuildContext
from umini_builder.lib.command import CmdResult, CommandError
from umini_builder.lib.privileged import PrivilegedExecutor

Responder = Callable[..., Optional[CmdResult]]


class FakeExecutor(PrivilegedExecutor):
    """Records privileged argv lists and simulates the few commands tests inspect.

    A ``responder(argv, timeout=..., input_text=...)`` may return a CmdResult
    or raise (e.g. TimeoutExpired); returning None falls back to success.
    """

    def __init__(self, responder: Optional[Responder] = None) -> None:
        super().__init__(elevate=("sudo",), dry_run=False)
        self.calls: List[List[str]] = []
        self.mounted: set = set()
        self.responder = responder

    def run(self, argv, *, check=True, env=None, cwd=None, input_text=None, timeout=None):
        argv = list(argv)
        self.calls.append(argv)
        result = None
        if self.responder is not None:
            result = self.responder(argv, timeout=timeout, input_text=input_text)
        if result is None:
            result = CmdResult(argv=argv, returncode=0, stdout="", stderr="")
            self._simulate(argv, input_text)
        if result.returncode == 0:
            self._track_mounts(argv)
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def run_unprivileged(self, argv, *, check=True, timeout=None):
        return self.run(argv, check=check, timeout=timeout)

    def is_mounted(self, path):
        return str(path) in self.mounted

    def _track_mounts(self, argv):
        if argv[:2] == ["mount", "--bind"]:
            self.mounted.add(argv[3])
        elif argv and argv[0] == "umount":
            self.mounted.discard(argv[-1])

    def _simulate(self, argv, input_text):
        cmd = argv[0] if argv else ""
        if cmd == "mkdir":
            for p in argv[2:]:
                Path(p).mkdir(parents=True, exist_ok=True)
        elif cmd == "tee":
            p = Path(argv[1])
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(input_text or "", encoding="utf-8")
        elif cmd == "cp" and Path(argv[-2]).exists():
            shutil.copy(argv[-2], argv[-1])
        elif cmd == "rm" and "-rf" in argv:
            shutil.rmtree(argv[-1], ignore_errors=True)
        elif cmd == "rm" and "-f" in argv:
            Path(argv[-1]).unlink(missing_ok=True)

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if c and c[0] == name]


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def make_ctx(tmp_path):
    def _make(**overrides) -> BuildContext:
        values = dict(
            release="noble",
            arch="amd64",
            mirror="http://archive.ubuntu.com/ubuntu",
            work_dir=tmp_path / "uminibuild",
            output_dir=tmp_path / "out",
            threads=2,
            squashfs_comp="xz",
            squashfs_block_size="1M",
            iso_compression="xz",
        )
        values.update(overrides)
        return BuildContext(**values)

    return _make
