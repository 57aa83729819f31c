from __future__ import annotations

from typing import List, Optional, Sequence


class BuildError(RuntimeError):
    """Base class for every checked build failure."""

    exit_code = 1


class ConfigError(BuildError):
    exit_code = 2


class PreflightError(BuildError):
    exit_code = 2


class ResourceError(BuildError):
    """A bind mount could not be acquired or released."""

    exit_code = 3

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class WorkdirLockedError(ResourceError):
    """Another build already holds the working directory."""


class StageError(BuildError):
    exit_code = 4

    def __init__(self, stage: str, message: str, *, diagnostics: str = "") -> None:
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.reason = message
        self.diagnostics = diagnostics

    @property
    def exhausted(self) -> bool:
        return isinstance(self.__cause__, ExhaustedFallbackError)

    def exit_status(self) -> int:
        return ExhaustedFallbackError.exit_code if self.exhausted else self.exit_code


class ValidationError(BuildError):
    """A candidate artifact was rejected by the validation predicate."""

    exit_code = 4


class ExhaustedFallbackError(BuildError):
    exit_code = 5

    def __init__(self, tried: Sequence[str], *, diagnostics: str = "") -> None:
        super().__init__(f"all {len(tried)} assembly strategies failed: {', '.join(tried)}")
        self.tried: List[str] = list(tried)
        self.diagnostics = diagnostics


class BuildInterrupted(BuildError):
    exit_code = 130

    def __init__(self, signum: int) -> None:
        super().__init__(f"interrupted by signal {signum}")
        self.signum = signum


def exit_status_for(error: BuildError) -> int:
    if isinstance(error, StageError):
        return error.exit_status()
    return error.exit_code
