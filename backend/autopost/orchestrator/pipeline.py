"""Creative pipeline state machine.

Coordinates the staged image pipeline with:
- Strictly sequential stage transitions (run, skip, external edit)
- Backward navigation that invalidates every downstream result
- Early finish with the latest Done artifact as output
- Per-stage timing and logging
- Progress callback interface for CLI integration

Sessions are immutable snapshots; every transition returns a new session and
leaves the argument untouched, so a failed stage never writes partial state.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, Optional, Sequence, Tuple

from autopost.errors import ConfigurationError, InvalidTransition
from autopost.orchestrator.state import (
    PIPELINE_STAGES,
    Phase,
    PipelineSession,
    StageDefinition,
    StepOutcome,
    StepResult,
    invalidate_from,
    latest_done_artifact,
    previous_done_artifact,
    record_and_advance,
)
from autopost.pipeline.stages import build_stage_request
from autopost.schemas.context import PostContext
from autopost.schemas.generation import GenerationRequest
from autopost.schemas.stage_params import StageParams
from autopost.services.generation import Generator

logger = logging.getLogger(__name__)

RequestBuilder = Callable[
    [str, PostContext, Optional[StageParams], Optional[str]], GenerationRequest
]


class PipelineStateMachine:
    """Runs a PipelineSession through its ordered stages.

    The machine itself holds no session state: callers own the session value
    returned by start() and thread it through every later call.
    """

    def __init__(
        self,
        generator: Generator,
        stages: Sequence[StageDefinition] = PIPELINE_STAGES,
        request_builder: RequestBuilder = build_stage_request,
        progress_callback: Optional[Callable[[PipelineSession], None]] = None,
    ) -> None:
        """Initialize the state machine.

        Args:
            generator: Image generation collaborator
            stages: Ordered stage definitions; the order defines downstream
            request_builder: Builds a stage request from (stage key, context,
                params, reference artifact)
            progress_callback: Optional callback invoked with every new session
        """
        if not stages:
            raise ConfigurationError("Pipeline needs at least one stage")
        keys = [stage.key for stage in stages]
        if len(set(keys)) != len(keys):
            raise ConfigurationError(f"Duplicate stage keys: {keys}")

        self._generator = generator
        self._stages: Tuple[StageDefinition, ...] = tuple(stages)
        self._build_request = request_builder
        self._progress_callback = progress_callback

    @property
    def stages(self) -> Tuple[StageDefinition, ...]:
        return self._stages

    def _emit(self, session: PipelineSession) -> PipelineSession:
        if self._progress_callback:
            self._progress_callback(session)
        return session

    @staticmethod
    def _require_running(session: PipelineSession, operation: str) -> None:
        if session.phase is not Phase.RUNNING:
            raise ConfigurationError(
                f"{operation} requires a running session (phase is {session.phase.value})"
            )

    def start(self, context: PostContext, caption: str) -> PipelineSession:
        """Create a session at the first stage.

        Args:
            context: Completed post configuration
            caption: Caption generated for the post

        Raises:
            ConfigurationError: If the configuration is incomplete or the
                caption is empty
        """
        missing = context.missing_fields()
        if missing:
            raise ConfigurationError(f"Configuration incomplete, missing: {', '.join(missing)}")
        if not caption.strip():
            raise ConfigurationError("A caption must be generated before the pipeline starts")

        session = PipelineSession(context=context, caption=caption, stages=self._stages)
        logger.info(
            f"Session {session.session_id}: started with {len(self._stages)} stages "
            f"({context.platform}, {context.style}/{context.tone})"
        )
        return self._emit(session)

    async def run_active_stage(
        self,
        session: PipelineSession,
        params: Optional[StageParams] = None,
    ) -> PipelineSession:
        """Generate the active stage and advance.

        The request conditions on the nearest earlier Done artifact. On
        success the artifact is recorded and the session advances (or
        finishes after the last stage).

        Args:
            session: Current session
            params: Stage parameters overriding the stage defaults

        Returns:
            New session with the stage recorded

        Raises:
            ConfigurationError: If the session is not running
            GenerationFailure: If the Generator fails; nothing is recorded
        """
        self._require_running(session, "run_active_stage")
        stage = session.active_stage
        reference = previous_done_artifact(session)
        request = self._build_request(stage.key, session.context, params, reference)
        request = request.model_copy(
            update={"auxiliary": {**request.auxiliary, "owner_id": session.session_id}}
        )

        step_start = time.monotonic()
        logger.info(
            f"Session {session.session_id}: running stage {stage.key} "
            f"(reference={reference or 'none'})"
        )
        try:
            artifact = await self._generator.generate(request)
        except Exception as e:
            logger.error(
                f"Session {session.session_id}: stage {stage.key} failed after "
                f"{time.monotonic() - step_start:.2f}s: {type(e).__name__}: {e}"
            )
            raise

        logger.info(
            f"Session {session.session_id}: stage {stage.key} completed in "
            f"{time.monotonic() - step_start:.2f}s"
        )
        return self._emit(
            record_and_advance(session, StepResult(StepOutcome.DONE, artifact))
        )

    def skip(self, session: PipelineSession) -> PipelineSession:
        """Mark the active stage Skipped and advance without generating.

        Raises:
            ConfigurationError: If the session is not running
            InvalidTransition: On the first stage, which must produce the base artifact
        """
        self._require_running(session, "skip")
        if session.active_stage_index == 0:
            raise InvalidTransition(
                f"Stage {session.active_stage.key} produces the base artifact and cannot be skipped"
            )
        logger.info(f"Session {session.session_id}: skipped stage {session.active_stage.key}")
        return self._emit(record_and_advance(session, StepResult(StepOutcome.SKIPPED)))

    def apply_external_edit(self, session: PipelineSession, artifact: str) -> PipelineSession:
        """Record an artifact produced outside the Generator (e.g. canvas text editor).

        The active stage is marked Done with the given artifact and the
        session advances exactly as after a successful run.

        Raises:
            ConfigurationError: If the session is not running or artifact is empty
        """
        self._require_running(session, "apply_external_edit")
        if not artifact:
            raise ConfigurationError("External edit requires an artifact handle")
        logger.info(
            f"Session {session.session_id}: external edit recorded for stage "
            f"{session.active_stage.key}"
        )
        return self._emit(record_and_advance(session, StepResult(StepOutcome.DONE, artifact)))

    def go_to(self, session: PipelineSession, target_index: int) -> PipelineSession:
        """Return to an earlier (or the current) stage, invalidating downstream work.

        Every result at or after target_index is removed and the session is
        Running again, even if it had finished.

        Raises:
            InvalidTransition: If target_index is ahead of the active stage or
                out of range
        """
        if target_index < 0 or target_index >= len(session.stages):
            raise InvalidTransition(f"Stage index {target_index} out of range")
        if target_index > session.active_stage_index:
            raise InvalidTransition(
                f"Cannot jump ahead from stage {session.active_stage_index} to {target_index}"
            )

        results = invalidate_from(session.results, session.stages, target_index)
        dropped = len(session.results) - len(results)
        logger.info(
            f"Session {session.session_id}: back to stage "
            f"{session.stages[target_index].key}, invalidated {dropped} result(s)"
        )
        return self._emit(
            replace(
                session,
                results=results,
                active_stage_index=target_index,
                phase=Phase.RUNNING,
            )
        )

    def finish_early(self, session: PipelineSession) -> PipelineSession:
        """Finish without attempting the remaining stages.

        Raises:
            ConfigurationError: If the session is not running
        """
        self._require_running(session, "finish_early")
        logger.info(
            f"Session {session.session_id}: finished early at stage {session.active_stage.key}"
        )
        return self._emit(replace(session, phase=Phase.FINISHED))

    def output(self, session: PipelineSession) -> Optional[str]:
        """Return the pipeline output (latest Done artifact), or None."""
        return latest_done_artifact(session)

    def reset(self, session: Optional[PipelineSession] = None) -> Phase:
        """Discard the session and return to configuration."""
        if session is not None:
            logger.info(f"Session {session.session_id}: discarded")
        return Phase.CONFIGURING
