import threading
import time
from typing import Callable

import structlog

from gltrigger.ci_adapters.base import GatewayError, GatewayProtocol
from gltrigger.classifier import is_terminal
from gltrigger.errors import PipelineTimeout, PollError, RunCancelled

logger = structlog.get_logger()


class PipelinePoller:
    """Decides when to stop waiting for a pipeline.

    ``timeout`` of ``None`` or ``<= 0`` means no deadline: only a terminal
    status (or cancellation) ends the wait.
    """

    def __init__(
        self,
        gateway: GatewayProtocol,
        project_id: int,
        pipeline_id: int,
        web_url: str,
        interval: float,
        timeout: float | None,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._gateway = gateway
        self._project_id = project_id
        self._pipeline_id = pipeline_id
        self._web_url = web_url
        self._interval = interval
        self._timeout = timeout if timeout and timeout > 0 else None
        self._cancel = cancel or threading.Event()
        self._clock = clock
        self._deadline = (
            clock() + self._timeout if self._timeout is not None else None
        )
        self.ticks = 0

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise RunCancelled(f"waiting for pipeline {self._web_url} was cancelled")

    def wait(self) -> None:
        """Sleep until the next tick, the deadline, or cancellation, whichever comes first."""
        self.check_cancelled()
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise self._timed_out()

        delay = self._interval if remaining is None else min(self._interval, remaining)
        if self._cancel.wait(delay):
            self.check_cancelled()

        if self._deadline is not None and self._clock() >= self._deadline:
            raise self._timed_out()

    def poll(self) -> tuple[bool, str]:
        """Fetch the pipeline status once; return (finished, status)."""
        self.check_cancelled()
        self.ticks += 1
        try:
            status = self._gateway.get_pipeline_status(
                self._project_id, self._pipeline_id
            )
        except GatewayError as exc:
            raise PollError(
                f"failed to check if pipeline {self._web_url} is finished: {exc}"
            ) from exc

        if is_terminal(status):
            logger.info(
                "Pipeline finished",
                pipeline_id=self._pipeline_id,
                status=status,
                ticks=self.ticks,
            )
            return True, status

        logger.debug(
            "Pipeline still running",
            pipeline_id=self._pipeline_id,
            status=status,
            tick=self.ticks,
        )
        return False, status

    def _timed_out(self) -> PipelineTimeout:
        return PipelineTimeout(
            f"timed out after {self._timeout:g}s waiting for pipeline {self._web_url}"
        )
