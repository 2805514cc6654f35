from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Literal, Optional

from inputforge.core.ai.gateway import AIGateway
from inputforge.core.ai.interpreter import clamp, parse_response
from inputforge.core.ai.prompts import AnalysisRequest, build_analysis_request
from inputforge.core.bundle import ProjectBundle
from inputforge.core.errors import ForgeError, GatewayError, ValidationError
from inputforge.core.model import AnalysisResult, VersionSnapshot

logger = logging.getLogger(__name__)


StateKind = Literal["idle", "analyzing", "completed", "error"]


@dataclass(frozen=True)
class AnalysisState:
    kind: StateKind = "idle"
    progress: float = 0.0
    message: Optional[str] = None
    error: Optional[ForgeError] = None

    @property
    def is_analyzing(self) -> bool:
        return self.kind == "analyzing"


IDLE = AnalysisState()
COMPLETED = AnalysisState(kind="completed", progress=1.0)

Interpreter = Callable[[str, int], AnalysisResult]
StateListener = Callable[[AnalysisState], None]


class AnalysisOrchestrator:
    """Owns the lifecycle of one in-flight generation run.

    Only the most recently submitted run may change state or append to the
    ledger. A superseded or cancelled run keeps executing until its next
    suspension point, but anything it delivers afterwards is dropped.
    """

    def __init__(
        self,
        gateway: AIGateway,
        *,
        interpreter: Interpreter = parse_response,
        on_state: Optional[StateListener] = None,
    ) -> None:
        self._gateway = gateway
        self._interpret = interpreter
        self._on_state = on_state
        self._state = IDLE
        self._run_seq = 0
        self._active_run: Optional[int] = None
        self._task: Optional[asyncio.Task[Optional[VersionSnapshot]]] = None

    @property
    def state(self) -> AnalysisState:
        return self._state

    def _set_state(self, state: AnalysisState) -> None:
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    def _is_active(self, run_id: int) -> bool:
        return self._active_run == run_id

    def submit(self, bundle: ProjectBundle) -> asyncio.Task[Optional[VersionSnapshot]]:
        """Start a run for `bundle`, superseding any run in flight.

        Must be called from inside a running event loop. The returned task
        resolves to the appended snapshot, or None when the run failed, was
        cancelled or was superseded; `state` says which.
        """
        self._supersede()

        if not bundle.inputs:
            err = ValidationError(
                code="E_NO_INPUTS",
                message="No inputs to analyze. Add inputs before running analysis.",
                path="inputs",
            )
            self._set_state(AnalysisState(kind="error", message=err.message, error=err))
            raise err

        self._run_seq += 1
        run_id = self._run_seq
        self._active_run = run_id

        # Label only; the ledger assigns the real number at append time.
        next_version = bundle.ledger.latest_version_number() + 1
        request = build_analysis_request(
            persona=bundle.persona,
            inputs=bundle.inputs,
            project_name=bundle.name,
            version_number=next_version,
            goal_text=bundle.goal_text,
        )

        logger.info(f"Run {run_id}: submitting analysis for '{bundle.name}' (v{next_version})")
        self._set_state(AnalysisState(kind="analyzing", progress=0.0))
        self._task = asyncio.get_running_loop().create_task(self._run(run_id, bundle, request))
        return self._task

    def cancel(self) -> None:
        self._supersede()
        self._set_state(IDLE)

    def dismiss_error(self) -> None:
        if self._state.kind == "error":
            self._set_state(IDLE)

    async def wait(self) -> Optional[VersionSnapshot]:
        task = self._task
        if task is None:
            return None
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    def _supersede(self) -> None:
        if self._active_run is not None:
            logger.info(f"Run {self._active_run}: superseded")
        self._active_run = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(
        self, run_id: int, bundle: ProjectBundle, request: AnalysisRequest
    ) -> Optional[VersionSnapshot]:
        def on_progress(progress: float) -> None:
            if self._is_active(run_id):
                logger.debug(f"Run {run_id}: progress {progress:.2f}")
                self._set_state(AnalysisState(kind="analyzing", progress=clamp(progress)))

        try:
            text = await self._gateway.submit(request, on_progress=on_progress)
            if not self._is_active(run_id):
                return None
            result = self._interpret(text, request.version_number)
            snapshot = bundle.set_analysis_result(result)
        except asyncio.CancelledError:
            if self._is_active(run_id):
                self._active_run = None
                self._set_state(IDLE)
            raise
        except GatewayError as e:
            if self._is_active(run_id):
                self._active_run = None
                if e.kind == "cancelled":
                    logger.info(f"Run {run_id}: cancelled by gateway")
                    self._set_state(IDLE)
                else:
                    self._fail(run_id, e)
            return None
        except ForgeError as e:
            if self._is_active(run_id):
                self._active_run = None
                self._fail(run_id, e)
            return None
        except Exception as e:
            logger.exception(f"Run {run_id}: unexpected failure")
            if self._is_active(run_id):
                self._active_run = None
                self._fail(
                    run_id,
                    ForgeError(code="E_ANALYSIS_FAILED", message=str(e) or type(e).__name__),
                )
            return None

        self._active_run = None
        logger.info(f"Run {run_id}: completed as v{snapshot.version_number}")
        self._set_state(COMPLETED)
        return snapshot

    def _fail(self, run_id: int, error: ForgeError) -> None:
        logger.error(f"Run {run_id}: {error}")
        self._set_state(AnalysisState(kind="error", message=error.message, error=error))
