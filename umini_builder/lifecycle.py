from __future__ import annotations

import atexit
import enum
import fcntl
import logging
import os
import signal
from pathlib import Path
from typing import Any, Callable, Dict, IO, Optional, Sequence, TypeVar

from .build_config import BuildContext
from .errors import BuildInterrupted, ResourceError, WorkdirLockedError
from .lib.privileged import PrivilegedExecutor
from .resources import ResourceGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class BuildPhase(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    TORN_DOWN = "torn_down"


def lock_path_for(work_dir: Path) -> Path:
    return work_dir.parent / f".{work_dir.name}.lock"


def is_protected_dir(path: Path, *, home: Path) -> bool:
    """True for paths teardown must never delete."""
    resolved = path.resolve()
    return resolved == Path(resolved.anchor) or resolved == home.resolve()


class SignalCoordinator:
    """Own the build lifecycle and guarantee teardown runs exactly once.

    ``run()`` moves Idle -> Running, executes the body, records Completed,
    Failed or Interrupted, and tears down. Signal handlers, ``atexit`` and
    explicit ``teardown()`` calls all funnel into the same gated routine.
    """

    def __init__(
        self,
        ctx: BuildContext,
        guard: ResourceGuard,
        executor: PrivilegedExecutor,
        *,
        signals: Sequence[int] = DEFAULT_SIGNALS,
        home: Optional[Path] = None,
    ) -> None:
        self.ctx = ctx
        self.guard = guard
        self.executor = executor
        self.signals = tuple(signals)
        self.home = home if home is not None else Path.home()
        self.phase = BuildPhase.IDLE
        self.torn_down = False
        self.outcome: Optional[BuildPhase] = None
        self.received_signals: list[int] = []
        self._previous_handlers: Dict[int, Any] = {}
        self._lock_file: Optional[IO[str]] = None

    # -- collision detection -------------------------------------------------

    def acquire_lock(self) -> None:
        path = lock_path_for(self.ctx.work_dir)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(path, "a+", encoding="utf-8")
        except OSError as e:
            raise ResourceError(f"cannot create lock file {path}: {e}", path=str(path)) from e
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.seek(0)
            holder = fh.read().strip() or "unknown"
            fh.close()
            raise WorkdirLockedError(
                f"{self.ctx.work_dir} is in use by another build (pid {holder})", path=str(self.ctx.work_dir)
            ) from None
        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        self._lock_file = fh

    def release_lock(self) -> None:
        if self._lock_file is None:
            return
        fh, self._lock_file = self._lock_file, None
        try:
            lock_path_for(self.ctx.work_dir).unlink()
        except FileNotFoundError:
            pass
        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        fh.close()

    # -- signals ---------------------------------------------------------------

    def install_handlers(self) -> None:
        for signum in self.signals:
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)

    def restore_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def handle_signal(self, signum: int, frame: Any = None) -> None:
        """Interrupt the running build once; later signals are only logged.

        Raising unwinds the in-flight stage: run_cmd stops the command and
        everything it started before the exception propagates, so mounts
        are released only after the action is gone.
        """

        self.received_signals.append(signum)
        if self.phase is BuildPhase.RUNNING:
            self.phase = BuildPhase.INTERRUPTED
            logger.warning("Received signal %s, stopping build", signum)
            raise BuildInterrupted(signum)
        logger.warning("Received signal %s while %s; teardown already in progress", signum, self.phase.value)

    # -- lifecycle -------------------------------------------------------------

    def run(self, body: Callable[[], T]) -> T:
        if self.phase is not BuildPhase.IDLE:
            raise RuntimeError(f"build already started (phase={self.phase.value})")

        # Raises before anything is registered: a locked workdir belongs to
        # another run and must not be torn down by this one.
        self.acquire_lock()
        atexit.register(self.teardown)
        try:
            self.phase = BuildPhase.RUNNING
            self.install_handlers()
            result = body()
        except BuildInterrupted:
            self.phase = BuildPhase.INTERRUPTED
            raise
        except BaseException:
            if self.phase is BuildPhase.RUNNING:
                self.phase = BuildPhase.FAILED
            raise
        else:
            if self.phase is BuildPhase.RUNNING:
                self.phase = BuildPhase.COMPLETED
            return result
        finally:
            self.teardown()
            self.restore_handlers()
            atexit.unregister(self.teardown)

    def teardown(self) -> bool:
        """Release mounts and remove the working directory. Runs at most once.

        Returns False when teardown had already run.
        """

        if self.torn_down:
            return False
        self.torn_down = True
        self.outcome = self.phase

        logger.info("Starting cleanup (build %s)...", self.outcome.value)
        errors = self.guard.release()
        if errors:
            logger.error("%d bind mount(s) could not be released", len(errors))

        self._remove_work_dir()
        self.release_lock()
        self.phase = BuildPhase.TORN_DOWN
        logger.info("Cleanup finished")
        return True

    def _remove_work_dir(self) -> None:
        work_dir = self.ctx.work_dir
        if self.ctx.preserve_work_dir:
            logger.info("Preserving work directory as requested: %s", work_dir)
            return
        if not work_dir.exists():
            return
        if is_protected_dir(work_dir, home=self.home):
            logger.error("Refusing to remove %s: it is the filesystem root or the home directory", work_dir)
            return
        if self.guard.bound():
            logger.error("Refusing to remove %s: bind mounts are still present", work_dir)
            return

        self.guard.terminate_holders()
        logger.info("Removing work directory: %s", work_dir)
        try:
            r = self.executor.remove_tree(work_dir)
        except OSError as e:
            logger.error("Failed to remove %s: %s", work_dir, e)
            return
        if r.returncode != 0:
            logger.error("Failed to remove %s (rc=%s): %s", work_dir, r.returncode, r.tail(5))
