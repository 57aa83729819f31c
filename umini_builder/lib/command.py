from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence

logger = logging.getLogger(__name__)

DIAGNOSTIC_TAIL_LINES = 20
STOP_GRACE_SECONDS = 5.0

Signaller = Callable[[Sequence[int], int], None]


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
        """Last ``lines`` lines of combined stdout/stderr."""
        combined = (self.stdout or "").splitlines() + (self.stderr or "").splitlines()
        return "\n".join(combined[-lines:])


class CommandError(RuntimeError):
    def __init__(self, result: CmdResult) -> None:
        super().__init__(f"{format_argv(result.argv)} exited with status {result.returncode}\n{result.stderr}")
        self.result = result


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _log_stream(label: str, text: str) -> None:
    text = text.strip()
    if text:
        logger.debug("%s\n%s", label, text)


def process_descendants(pid: int) -> List[int]:
    """PIDs of every process below ``pid`` in the process tree (via /proc)."""
    children: Dict[int, List[int]] = {}
    try:
        entries = [e for e in Path("/proc").iterdir() if e.name.isdigit()]
    except OSError:
        return []
    for entry in entries:
        try:
            stat = (entry / "stat").read_text()
        except OSError:
            continue
        # fields after the command name, which may itself contain ")"
        ppid = int(stat.rsplit(")", 1)[1].split()[1])
        children.setdefault(ppid, []).append(int(entry.name))

    found: List[int] = []
    stack = [pid]
    while stack:
        for child in children.get(stack.pop(), []):
            found.append(child)
            stack.append(child)
    return found


def _alive(pid: int) -> bool:
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return False
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


def signal_pids(pids: Sequence[int], sig: int) -> None:
    for pid in pids:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            pass


def stop_process_tree(
    proc: subprocess.Popen,
    *,
    send_signal: Signaller = signal_pids,
    grace: float = STOP_GRACE_SECONDS,
) -> None:
    """Stop a command and everything it started, then reap it.

    The tree is captured before signalling, so grandchildren orphaned when
    the wrapper (e.g. sudo) exits are still tracked. SIGTERM first, SIGKILL
    for whatever is left after ``grace`` seconds.
    """

    tree = [proc.pid, *process_descendants(proc.pid)]
    logger.warning("Stopping %s and its children (pids %s)", proc.args[0], tree)
    for sig in (signal.SIGTERM, signal.SIGKILL):
        alive = [p for p in tree if _alive(p)]
        if not alive:
            break
        try:
            send_signal(alive, sig)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Could not send %s to %s: %s", signal.Signals(sig).name, alive, e)
        deadline = time.monotonic() + grace
        while time.monotonic() < deadline and any(_alive(p) for p in alive):
            time.sleep(0.05)

    if proc.poll() is None:
        try:
            proc.kill()
        except OSError as e:
            logger.warning("Could not kill %s: %s", proc.pid, e)
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.error("%s (pid %s) is still running", proc.args[0], proc.pid)
    for stream in (proc.stdin, proc.stdout, proc.stderr):
        if stream is not None:
            stream.close()


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    timeout: float | None = None,
    dry_run: bool = False,
    send_signal: Signaller = signal_pids,
) -> CmdResult:
    """Run one external command and capture its output.

    The command line is logged before it runs; output goes to the DEBUG
    log. In a dry run nothing is executed and a successful empty result is
    returned.

    If waiting is cut short (timeout, or an exception raised by a signal
    handler) the command's whole process tree is stopped through
    ``send_signal`` and reaped before the exception propagates, so nothing
    it started outlives the call.
    """

    cmd = list(argv)
    logger.info("CMD %s", format_argv(cmd))
    if dry_run:
        return CmdResult(argv=cmd, returncode=0, stdout="", stderr="")

    started = time.monotonic()
    proc = subprocess.Popen(
        cmd,
        stdin=subprocess.PIPE if input_text is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        cwd=cwd,
        env={**os.environ, **env} if env else None,
    )
    try:
        stdout, stderr = proc.communicate(input_text, timeout=timeout)
    except BaseException:
        stop_process_tree(proc, send_signal=send_signal)
        raise

    logger.debug("rc=%s after %.1fs: %s", proc.returncode, time.monotonic() - started, cmd[0])
    _log_stream("stdout:", stdout)
    _log_stream("stderr:", stderr)

    result = CmdResult(argv=cmd, returncode=proc.returncode, stdout=stdout or "", stderr=stderr or "")
    if check and not result.ok:
        raise CommandError(result)
    return result
