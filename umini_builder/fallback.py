from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .errors import ExhaustedFallbackError, ValidationError
from .lib.command import CmdResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FallbackOption:
    """One way of producing the artifact: a named, fully parameterized invocation."""

    name: str
    argv: Sequence[str]


@dataclass(frozen=True)
class FallbackAttempt:
    option: str
    returncode: Optional[int]
    accepted: bool
    reason: str = ""
    diagnostics: str = ""


@dataclass(frozen=True)
class FallbackOutcome:
    option: FallbackOption
    artifact: Path
    attempts: List[FallbackAttempt] = field(default_factory=list)


class ArtifactValidator:
    """Accept a file only if it exists and is at least ``min_bytes`` long."""

    def __init__(self, min_bytes: int) -> None:
        self.min_bytes = min_bytes

    def __call__(self, path: Path) -> None:
        if not path.is_file():
            raise ValidationError(f"{path} was not created")
        size = path.stat().st_size
        if size < self.min_bytes:
            raise ValidationError(f"{path} is too small ({size} bytes < {self.min_bytes}), probably incomplete")


Invoker = Callable[[Sequence[str]], CmdResult]


class FallbackExecutor:
    """Try alternative ways of producing one artifact until one validates.

    ``invoke`` runs an option's argv and returns its result without raising
    on a non-zero status. ``discard`` removes a rejected candidate so a
    failed attempt never leaves a half-written artifact behind.
    """

    def __init__(
        self,
        options: Sequence[FallbackOption],
        *,
        validate: Callable[[Path], None],
        invoke: Invoker,
        discard: Optional[Callable[[Path], None]] = None,
    ) -> None:
        if not options:
            raise ValueError("FallbackExecutor needs at least one option")
        self.options = list(options)
        self.validate = validate
        self.invoke = invoke
        self.discard = discard

    def execute(self, artifact: Path) -> FallbackOutcome:
        attempts: List[FallbackAttempt] = []
        for i, option in enumerate(self.options, start=1):
            logger.info("Assembling with %s (method %d/%d)", option.name, i, len(self.options))
            try:
                result = self.invoke(option.argv)
            except OSError as e:
                attempts.append(FallbackAttempt(option.name, None, False, f"could not start: {e}", str(e)))
                logger.warning("%s could not start: %s", option.name, e)
                self._discard(artifact)
                continue

            if result.returncode != 0:
                attempts.append(
                    FallbackAttempt(option.name, result.returncode, False, f"exit status {result.returncode}", result.tail())
                )
                logger.warning("%s failed with exit status %s", option.name, result.returncode)
                self._discard(artifact)
                continue

            try:
                self.validate(artifact)
            except ValidationError as e:
                attempts.append(FallbackAttempt(option.name, result.returncode, False, str(e), result.tail()))
                logger.warning("%s produced an unusable artifact: %s", option.name, e)
                self._discard(artifact)
                continue

            attempts.append(FallbackAttempt(option.name, result.returncode, True))
            logger.info("Artifact created with %s", option.name)
            return FallbackOutcome(option=option, artifact=artifact, attempts=attempts)

        last = attempts[-1]
        raise ExhaustedFallbackError([a.option for a in attempts], diagnostics=last.diagnostics or last.reason)

    def _discard(self, artifact: Path) -> None:
        if self.discard is not None and (artifact.exists() or artifact.is_symlink()):
            self.discard(artifact)
