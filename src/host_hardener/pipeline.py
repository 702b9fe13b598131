"""Sequential stage runner with typed outcomes."""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

import structlog

from host_hardener.exceptions import HardenerError
from host_hardener.types import StageStatus

logger = structlog.get_logger(__name__)


@dataclass
class Stage:
    """One pipeline step.

    ``action`` performs the mutation and may return a short detail string
    for the report. ``check`` is the post-condition; returning a message
    marks the stage failed. A recoverable stage's failure is recorded and
    the pipeline moves on; any other failure halts it.
    """

    name: str
    action: Callable[[], Optional[str]]
    recoverable: bool = False
    check: Optional[Callable[[], Optional[str]]] = None
    enabled: bool = True


@dataclass
class StageOutcome:
    name: str
    status: StageStatus
    detail: str = ""
    error: Optional[BaseException] = None


@dataclass
class PipelineResult:
    outcomes: List[StageOutcome] = field(default_factory=list)

    @property
    def fatal(self) -> Optional[StageOutcome]:
        return next((o for o in self.outcomes if o.status == StageStatus.FAILED_FATAL), None)

    @property
    def recoverable_failures(self) -> List[StageOutcome]:
        return [o for o in self.outcomes if o.status == StageStatus.FAILED_RECOVERABLE]

    def status_of(self, name: str) -> Optional[StageStatus]:
        return next((o.status for o in self.outcomes if o.name == name), None)


class Pipeline:
    """Run stages in order; each stage is a barrier for the next."""

    def __init__(self, stages: List[Stage]) -> None:
        self.stages = stages

    def run(self) -> PipelineResult:
        result = PipelineResult()
        halted = False

        for index, stage in enumerate(self.stages, start=1):
            if halted or not stage.enabled:
                result.outcomes.append(StageOutcome(stage.name, StageStatus.SKIPPED))
                continue

            logger.info("Stage started", stage=stage.name, step=f"{index}/{len(self.stages)}")
            outcome = self._run_stage(stage)
            result.outcomes.append(outcome)

            if outcome.status == StageStatus.FAILED_FATAL:
                logger.error("Stage failed, aborting", stage=stage.name, error=outcome.detail)
                halted = True
            elif outcome.status == StageStatus.FAILED_RECOVERABLE:
                logger.warning("Stage failed, continuing", stage=stage.name, error=outcome.detail)
            else:
                logger.info("Stage succeeded", stage=stage.name, detail=outcome.detail or None)

        return result

    def _run_stage(self, stage: Stage) -> StageOutcome:
        failed = StageStatus.FAILED_RECOVERABLE if stage.recoverable else StageStatus.FAILED_FATAL
        try:
            detail = stage.action() or ""
            problem = stage.check() if stage.check else None
        except (HardenerError, OSError) as e:
            return StageOutcome(stage.name, failed, str(e), e)

        if problem:
            return StageOutcome(stage.name, failed, problem)
        return StageOutcome(stage.name, StageStatus.SUCCEEDED, detail)
