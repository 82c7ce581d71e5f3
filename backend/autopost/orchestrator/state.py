"""Stage definitions, session state and pure transition helpers for the creative pipeline.

The stage ordering defined here is the only source of "downstream": every
stage's request is built from the nearest earlier stage that produced an
artifact, so anything after an edited stage is stale and must be dropped.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from autopost.schemas.context import PostContext


class Phase(str, Enum):
    """Lifecycle phase of a pipeline session."""

    CONFIGURING = "configuring"
    RUNNING = "running"
    FINISHED = "finished"


class StepOutcome(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"


class StageStatus(str, Enum):
    """Per-stage status shown by a step indicator."""

    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StageDefinition:
    key: str
    label: str


# Pipeline stages in execution order
PIPELINE_STAGES: Tuple[StageDefinition, ...] = (
    StageDefinition("base_scene", "Base scene"),
    StageDefinition("composition", "Composition"),
    StageDefinition("color_grading", "Color grading"),
    StageDefinition("typography", "Typography"),
)


@dataclass(frozen=True)
class StepResult:
    """Outcome of one attempted stage. Skipped results carry no artifact."""

    outcome: StepOutcome
    artifact: Optional[str] = None


@dataclass(frozen=True)
class PipelineSession:
    """Immutable snapshot of one editing session.

    Transitions never mutate a session; they return a new one built with
    dataclasses.replace() and a fresh results dict.
    """

    context: PostContext
    caption: str
    stages: Tuple[StageDefinition, ...] = PIPELINE_STAGES
    active_stage_index: int = 0
    phase: Phase = Phase.RUNNING
    results: Mapping[str, StepResult] = field(default_factory=dict)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def active_stage(self) -> StageDefinition:
        return self.stages[self.active_stage_index]

    @property
    def is_last_stage(self) -> bool:
        return self.active_stage_index == len(self.stages) - 1

    def result_at(self, index: int) -> Optional[StepResult]:
        return self.results.get(self.stages[index].key)


def stage_index(stages: Sequence[StageDefinition], key: str) -> int:
    """Return the position of a stage key in the ordering.

    Raises:
        KeyError: If no stage has this key
    """
    for i, stage in enumerate(stages):
        if stage.key == key:
            return i
    raise KeyError(f"Unknown stage: {key}")


def _scan_done_artifact(session: PipelineSession, start: int) -> Optional[str]:
    for i in range(start, -1, -1):
        result = session.result_at(i)
        if result is not None and result.outcome is StepOutcome.DONE and result.artifact:
            return result.artifact
    return None


def previous_done_artifact(session: PipelineSession) -> Optional[str]:
    """Return the artifact of the nearest Done stage before the active stage.

    Skipped stages are bridged transparently: they are markers, not sources.
    Returns None when no earlier stage produced an artifact (e.g. stage 0).
    """
    return _scan_done_artifact(session, session.active_stage_index - 1)


def latest_done_artifact(session: PipelineSession) -> Optional[str]:
    """Return the pipeline's current output: the last Done artifact in stage order."""
    return _scan_done_artifact(session, len(session.stages) - 1)


def invalidate_from(
    results: Mapping[str, StepResult],
    stages: Sequence[StageDefinition],
    index: int,
) -> Dict[str, StepResult]:
    """Return a copy of results with every stage at or after index removed."""
    dropped = {stage.key for stage in stages[index:]}
    return {key: result for key, result in results.items() if key not in dropped}


def record_and_advance(session: PipelineSession, result: StepResult) -> PipelineSession:
    """Record a result at the active stage and move to the next stage.

    The last stage finishes the session instead of advancing.
    """
    results = dict(session.results)
    results[session.active_stage.key] = result

    if session.is_last_stage:
        return replace(session, results=results, phase=Phase.FINISHED)
    return replace(
        session,
        results=results,
        active_stage_index=session.active_stage_index + 1,
    )


def stage_statuses(session: PipelineSession) -> List[Tuple[StageDefinition, StageStatus]]:
    """Derive the status of each stage for progress display."""
    statuses = []
    for i, stage in enumerate(session.stages):
        result = session.results.get(stage.key)
        if i == session.active_stage_index and session.phase is Phase.RUNNING:
            status = StageStatus.ACTIVE
        elif result is not None and result.outcome is StepOutcome.DONE:
            status = StageStatus.DONE
        elif result is not None and result.outcome is StepOutcome.SKIPPED:
            status = StageStatus.SKIPPED
        else:
            status = StageStatus.PENDING
        statuses.append((stage, status))
    return statuses
