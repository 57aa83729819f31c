from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from .build_config import BuildContext
from .errors import BuildError, ExhaustedFallbackError, StageError
from .lib.command import CommandError

logger = logging.getLogger(__name__)


class Stage(Protocol):
    """A single build stage.

    Conditions return ``None`` when satisfied, otherwise a short
    description of what is missing.
    """

    name: str

    def precondition(self, ctx: BuildContext) -> Optional[str]:
        ...

    def run(self, ctx: BuildContext) -> None:
        ...

    def postcondition(self, ctx: BuildContext) -> Optional[str]:
        ...


@dataclass
class PipelineResult:
    completed: List[str] = field(default_factory=list)
    durations: Dict[str, float] = field(default_factory=dict)


class StageRunner:
    """Run stages strictly in order; the first unmet condition aborts the run.

    Stages are never retried or skipped. With ``check_conditions=False``
    (dry runs) conditions are logged as skipped.
    """

    def __init__(self, stages: Sequence[Stage], ctx: BuildContext, *, check_conditions: bool = True) -> None:
        self.stages = list(stages)
        self.ctx = ctx
        self.check_conditions = check_conditions
        self.current: Optional[str] = None

    def _check(self, stage: Stage, kind: str) -> None:
        if not self.check_conditions:
            logger.debug("[%s] %s check skipped", stage.name, kind)
            return
        check = stage.precondition if kind == "precondition" else stage.postcondition
        unmet = check(self.ctx)
        if unmet:
            raise StageError(stage.name, f"{kind} not met: {unmet}")

    def run(self) -> PipelineResult:
        result = PipelineResult()
        for stage in self.stages:
            self.current = stage.name
            logger.info("=== Stage: %s ===", stage.name)
            started = time.monotonic()

            self._check(stage, "precondition")
            try:
                stage.run(self.ctx)
            except StageError:
                raise
            except CommandError as e:
                raise StageError(stage.name, str(e).splitlines()[0], diagnostics=e.result.tail()) from e
            except ExhaustedFallbackError as e:
                raise StageError(stage.name, str(e), diagnostics=e.diagnostics) from e
            except BuildError:
                # interrupts and resource failures keep their own type
                raise
            except OSError as e:
                raise StageError(stage.name, str(e)) from e
            self._check(stage, "postcondition")

            elapsed = time.monotonic() - started
            result.completed.append(stage.name)
            result.durations[stage.name] = elapsed
            logger.info("Stage %s finished in %.1fs", stage.name, elapsed)

        self.current = None
        return result
