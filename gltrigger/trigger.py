"""Trigger a downstream pipeline and follow it to completion.

The run is a single sequential loop: trigger, then on every tick fetch the
pipeline status, list its jobs and write whatever each job log gained since
the previous tick. Once the pipeline reaches a terminal status the logs are
drained one last time and the status is classified.
"""

import sys
import threading
import time
from typing import BinaryIO, Callable

import structlog

from gltrigger.ci_adapters.base import GatewayError, GatewayProtocol
from gltrigger.classifier import classify
from gltrigger.config import RunConfig, settings
from gltrigger.errors import (
    PipelineFailed,
    PipelineTriggerFailed,
    PollError,
    RunCancelled,
)
from gltrigger.log_cursor import LogCursorTracker
from gltrigger.models import Outcome, Pipeline
from gltrigger.poller import PipelinePoller

logger = structlog.get_logger()

SEPARATOR = b"---\n"


class TriggerOrchestrator:
    def __init__(
        self,
        config: RunConfig,
        gateway: GatewayProtocol,
        out: BinaryIO | None = None,
        interval: float | None = None,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._gateway = gateway
        self._out = out if out is not None else sys.stdout.buffer
        self._interval = (
            settings.poll_interval_seconds if interval is None else interval
        )
        self._cancel = cancel or threading.Event()
        self._clock = clock
        self._tracker = LogCursorTracker()

    @property
    def tracker(self) -> LogCursorTracker:
        return self._tracker

    def run(self) -> Outcome:
        """Trigger the pipeline and block until it finishes.

        Returns ``Outcome.succeeded``; every other ending raises a
        ``TriggerError`` subclass.
        """
        self._config.validate()
        pipeline = self._trigger()

        self._write(
            f"Outputting logs of downstream pipeline {pipeline.web_url}\n".encode()
        )
        self._write(SEPARATOR)

        poller = PipelinePoller(
            self._gateway,
            self._config.project_id,
            pipeline.id,
            pipeline.web_url,
            interval=self._interval,
            timeout=self._config.timeout,
            cancel=self._cancel,
            clock=self._clock,
        )

        while True:
            poller.wait()
            finished, status = poller.poll()
            self._emit_job_logs(poller, pipeline)
            if finished:
                break

        # Pick up bytes appended between the last fetch and the terminal status
        self._emit_job_logs(poller, pipeline)
        self._write(SEPARATOR)

        outcome = classify(status)
        if outcome is Outcome.failed:
            logger.warning(
                "Downstream pipeline failed",
                pipeline_id=pipeline.id,
                web_url=pipeline.web_url,
                status=status,
            )
            raise PipelineFailed(pipeline.web_url, status)

        logger.info(
            "Downstream pipeline succeeded",
            pipeline_id=pipeline.id,
            web_url=pipeline.web_url,
            status=status,
        )
        return outcome

    def _trigger(self) -> Pipeline:
        if self._cancel.is_set():
            raise RunCancelled("run was cancelled before the pipeline was triggered")
        config = self._config
        try:
            pipeline = self._gateway.trigger_pipeline(
                config.project_id,
                config.ref,
                config.trigger_token,
                config.variables,
            )
        except GatewayError as exc:
            raise PipelineTriggerFailed(
                f"failed to trigger project pipeline {config.project_id} "
                f"on ref '{config.ref}': {exc}"
            ) from exc

        logger.info(
            "Triggered downstream pipeline",
            project_id=config.project_id,
            ref=config.ref,
            pipeline_id=pipeline.id,
            web_url=pipeline.web_url,
        )
        return pipeline

    def _emit_job_logs(self, poller: PipelinePoller, pipeline: Pipeline) -> None:
        poller.check_cancelled()
        try:
            listed = self._gateway.list_jobs(self._config.project_id, pipeline.id)
        except GatewayError as exc:
            raise PollError(
                f"failed to list jobs of pipeline {pipeline.web_url}: {exc}"
            ) from exc

        for job in self._tracker.observe(listed):
            poller.check_cancelled()
            try:
                content = self._gateway.fetch_job_log(self._config.project_id, job.id)
            except GatewayError as exc:
                raise PollError(
                    f"failed to output log of job {job.name} ({job.web_url or job.id}): {exc}"
                ) from exc
            chunk = self._tracker.advance(job.id, content)
            if chunk:
                self._write(chunk)

    def _write(self, data: bytes) -> None:
        self._out.write(data)
        self._out.flush()
